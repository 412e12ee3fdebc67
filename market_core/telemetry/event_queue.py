# =============================================================================
# market_core/telemetry/event_queue.py
# Durable Queue of Undelivered Telemetry Events
# =============================================================================

from __future__ import annotations
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional
import logging

from market_core.models import TelemetryEvent, format_timestamp, parse_timestamp, utcnow
from market_core.offline.local_database import LocalDatabase

logger = logging.getLogger(__name__)


class TelemetryEventQueue:
    """
    FIFO of telemetry events stored in the ``telemetry_events`` table.

    Rows leave the queue only through ``delete`` (after the backend accepted
    them) or when the retention cap / age cleanup discards the oldest ones.
    """

    def __init__(self, database: LocalDatabase, max_events: int = 5000):
        self.database = database
        self.max_events = max_events

    def append(self, event: TelemetryEvent) -> int:
        """Persist ``event`` and return its local id."""
        if event.enqueued_at is None:
            event.enqueued_at = utcnow()
        row = event.to_row()
        columns = list(row.keys())
        with self.database.transaction() as conn:
            cursor = conn.execute(
                f"INSERT INTO telemetry_events ({', '.join(columns)}) "
                f"VALUES ({', '.join('?' for _ in columns)})",
                [row[c] for c in columns],
            )
            event.local_id = cursor.lastrowid
            overflow = conn.execute("SELECT COUNT(*) FROM telemetry_events").fetchone()[0] - self.max_events
            if overflow > 0:
                conn.execute(
                    "DELETE FROM telemetry_events WHERE local_id IN "
                    "(SELECT local_id FROM telemetry_events ORDER BY local_id LIMIT ?)",
                    [overflow],
                )
        if overflow > 0:
            logger.warning(f"Telemetry queue over {self.max_events} events, dropped {overflow} oldest")
        return event.local_id

    def pending(self, limit: Optional[int] = None) -> List[TelemetryEvent]:
        """Undelivered events, oldest first."""
        sql = "SELECT * FROM telemetry_events WHERE delivered = 0 ORDER BY local_id"
        params: List[Any] = []
        if limit:
            sql += " LIMIT ?"
            params.append(limit)
        return [TelemetryEvent.from_row(r) for r in self.database.query(sql, params)]

    def delete(self, local_ids: Iterable[int]) -> int:
        ids = list(local_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        return self.database.execute(f"DELETE FROM telemetry_events WHERE local_id IN ({placeholders})", ids)

    def count(self) -> int:
        return self.database.query_one("SELECT COUNT(*) AS n FROM telemetry_events")["n"]

    def stats(self) -> Dict[str, Any]:
        """Queue statistics for diagnostics screens."""
        summary = self.database.query_one(
            """
            SELECT COUNT(*) AS total,
                   COUNT(DISTINCT user_id) AS unique_users,
                   MIN(occurred_at) AS oldest
            FROM telemetry_events
            """
        )
        by_type = self.database.query(
            "SELECT event_type, COUNT(*) AS n FROM telemetry_events GROUP BY event_type ORDER BY n DESC"
        )
        return {
            "total_events": summary["total"],
            "unique_users": summary["unique_users"],
            "events_by_type": {row["event_type"]: row["n"] for row in by_type},
            "oldest_event": parse_timestamp(summary["oldest"]) if summary["oldest"] else None,
        }

    def cleanup_older_than(self, days: int = 7) -> int:
        """Drop events that occurred more than ``days`` ago."""
        cutoff = format_timestamp(utcnow() - timedelta(days=days))
        removed = self.database.execute("DELETE FROM telemetry_events WHERE occurred_at < ?", [cutoff])
        if removed:
            logger.info(f"Removed {removed} telemetry events older than {days} days")
        return removed

    def clear(self) -> int:
        return self.database.execute("DELETE FROM telemetry_events")

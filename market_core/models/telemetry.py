# =============================================================================
# market_core/models/telemetry.py
# Telemetry Event Record
# =============================================================================

from __future__ import annotations
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from .entities import format_timestamp, parse_timestamp, utcnow


@dataclass
class TelemetryEvent:
    """A client-side analytics event waiting in (or read from) the local queue."""

    event_type: str
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    listing_id: Optional[str] = None
    order_id: Optional[str] = None
    chat_id: Optional[str] = None
    step: Optional[str] = None
    properties: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)
    enqueued_at: Optional[datetime] = None
    delivered: bool = False
    local_id: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        """Backend ingestion shape; optional ids are omitted when unset."""
        payload: Dict[str, Any] = {
            "event_type": self.event_type,
            "session_id": self.session_id,
        }
        for key in ("user_id", "listing_id", "order_id", "chat_id", "step"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        payload["properties"] = self.properties
        payload["occurred_at"] = format_timestamp(self.occurred_at)
        return payload

    def to_row(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "listing_id": self.listing_id,
            "order_id": self.order_id,
            "chat_id": self.chat_id,
            "step": self.step,
            "properties_json": json.dumps(self.properties, default=str),
            "occurred_at": format_timestamp(self.occurred_at),
            "enqueued_at": format_timestamp(self.enqueued_at or utcnow()),
            "delivered": int(self.delivered),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> TelemetryEvent:
        return cls(
            local_id=row["local_id"],
            event_type=row["event_type"],
            session_id=row["session_id"],
            user_id=row["user_id"],
            listing_id=row["listing_id"],
            order_id=row["order_id"],
            chat_id=row["chat_id"],
            step=row["step"],
            properties=json.loads(row["properties_json"] or "{}"),
            occurred_at=parse_timestamp(row["occurred_at"]),
            enqueued_at=parse_timestamp(row["enqueued_at"]),
            delivered=bool(row["delivered"]),
        )

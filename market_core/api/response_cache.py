"""
HTTP response cache backing the pipeline's hit-on-error policy.

Successful GET responses are stored in the local database keyed by
method + URL + query params. They are only served when the network call
fails, and only while younger than ``max_stale``.
"""
from __future__ import annotations
import hashlib
import json
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
import logging

from market_core.api.transport import ApiResponse
from market_core.errors import StorageError
from market_core.models import format_timestamp, parse_timestamp, utcnow
from market_core.offline.local_database import LocalDatabase

logger = logging.getLogger(__name__)


class ResponseCache:
    """Stores 2xx GET responses; 401/403 are never stored or served."""

    EXCLUDED_STATUSES = frozenset({401, 403})

    def __init__(self, database: LocalDatabase, max_stale: timedelta = timedelta(days=7)):
        self.database = database
        self.max_stale = max_stale

    @staticmethod
    def key_for(method: str, url: str, params: Optional[Dict[str, Any]] = None) -> str:
        canonical = json.dumps(params or {}, sort_keys=True, default=str)
        raw = f"{method.upper()} {url}?{canonical}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def store(self, key: str, method: str, url: str, response: ApiResponse) -> bool:
        if not response.ok or response.status_code in self.EXCLUDED_STATUSES:
            return False
        try:
            with self.database.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO http_cache (cache_key, method, url, status_code, body_json, headers_json, stored_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(cache_key) DO UPDATE SET
                        status_code = excluded.status_code,
                        body_json = excluded.body_json,
                        headers_json = excluded.headers_json,
                        stored_at = excluded.stored_at
                    """,
                    [
                        key,
                        method.upper(),
                        url,
                        response.status_code,
                        json.dumps(response.data, default=str),
                        json.dumps(response.headers),
                        format_timestamp(utcnow()),
                    ],
                )
        except StorageError as e:
            logger.warning(f"Response cache write failed for {url}: {e}")
            return False
        return True

    def lookup(self, key: str, now: Optional[datetime] = None) -> Optional[ApiResponse]:
        """Return the cached response if present and not older than ``max_stale``."""
        try:
            row = self.database.query_one("SELECT * FROM http_cache WHERE cache_key = ?", [key])
        except StorageError as e:
            logger.warning(f"Response cache read failed: {e}")
            return None
        if row is None or row["status_code"] in self.EXCLUDED_STATUSES:
            return None

        age = (now or utcnow()) - parse_timestamp(row["stored_at"])
        if age > self.max_stale:
            logger.debug(f"Cached response for {row['url']} is stale ({age})")
            return None

        return ApiResponse(
            status_code=row["status_code"],
            data=json.loads(row["body_json"]) if row["body_json"] else None,
            headers=json.loads(row["headers_json"] or "{}"),
            from_cache=True,
        )

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        cutoff = format_timestamp((now or utcnow()) - self.max_stale)
        return self.database.execute("DELETE FROM http_cache WHERE stored_at < ?", [cutoff])

    def clear(self) -> None:
        self.database.execute("DELETE FROM http_cache")

    def count(self) -> int:
        return self.database.query_one("SELECT COUNT(*) AS n FROM http_cache")["n"]

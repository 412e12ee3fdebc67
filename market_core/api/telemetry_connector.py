"""
Telemetry ingestion endpoint
"""
from typing import Any, Dict, List

from market_core.api.base_connector import BaseConnector


class TelemetryConnector(BaseConnector):
    """POST /events"""

    resource_name = "events"

    async def send_batch(self, events: List[Dict[str, Any]]) -> None:
        """Raises on any failure so the caller keeps the batch queued."""
        await self._make_request("/events", method="POST", data={"events": events}, use_cache=False)

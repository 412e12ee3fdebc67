# =============================================================================
# market_core/telemetry/buffer.py
# Batched, At-Least-Once Telemetry Delivery
# =============================================================================
"""
TelemetryBuffer - durably queues analytics events and ships them in batches.

Features:
- Every tracked action is written to the local queue before anything else
- Flush when the queue reaches the threshold (20) or on a periodic timer
- Batches of at most 50 events; a batch is deleted only after the backend
  accepted it, and the first failed batch stops the flush
- A flush already in progress suppresses concurrent flush requests
"""

from __future__ import annotations
import asyncio
import secrets
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
import logging

from market_core.api.telemetry_connector import TelemetryConnector
from market_core.config import CoreConfig
from market_core.errors import MarketCoreError, error_boundary
from market_core.models import TelemetryEvent
from market_core.offline.task_supervisor import BackgroundTaskSupervisor
from .event_queue import TelemetryEventQueue

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    """URL-safe id from 16 random bytes (base64url, no padding)."""
    return secrets.token_urlsafe(16)


@dataclass
class FlushReport:
    """Outcome of one flush call."""
    sent: int = 0
    batches: int = 0
    remaining: int = 0
    skipped: bool = False
    error: Optional[MarketCoreError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.skipped


class TelemetryBuffer:
    """
    Usage:
        buffer = TelemetryBuffer(queue, connector, supervisor, config)
        buffer.start()
        await buffer.track_screen_view("home")
        ...
        await buffer.stop()
    """

    def __init__(
        self,
        queue: TelemetryEventQueue,
        connector: TelemetryConnector,
        supervisor: BackgroundTaskSupervisor,
        config: Optional[CoreConfig] = None,
        user_id_provider: Optional[Callable[[], Optional[str]]] = None,
        session_id: Optional[str] = None,
    ):
        config = config or CoreConfig()
        self.queue = queue
        self.connector = connector
        self.supervisor = supervisor
        self.flush_threshold = config.telemetry_flush_threshold
        self.batch_size = config.telemetry_batch_size
        self.flush_interval = config.telemetry_flush_interval
        self.user_id_provider = user_id_provider
        self.session_id = session_id or new_session_id()
        self._flushing = False
        self._timer_task: Optional[asyncio.Task] = None

    @property
    def flushing(self) -> bool:
        return self._flushing

    # =========================================================================
    # ENQUEUE
    # =========================================================================

    async def enqueue(self, event: TelemetryEvent) -> int:
        """
        Persist ``event`` and schedule a flush once the threshold is reached.

        Returns:
            The event's local id
        """
        if not event.session_id:
            event.session_id = self.session_id
        if event.user_id is None and self.user_id_provider is not None:
            event.user_id = self.user_id_provider()

        local_id = self.queue.append(event)
        if not self._flushing and self.queue.count() >= self.flush_threshold:
            self.supervisor.spawn(self.flush(), name="telemetry-flush")
        return local_id

    async def track(self, event_type: str, **fields: Any) -> int:
        properties: Dict[str, Any] = fields.pop("properties", None) or {}
        return await self.enqueue(TelemetryEvent(event_type=event_type, properties=properties, **fields))

    async def track_click(self, target: str, screen: Optional[str] = None, **properties: Any) -> int:
        return await self.track("click", properties={"target": target, "screen": screen, **properties})

    async def track_screen_view(self, screen: str, **properties: Any) -> int:
        return await self.track("screen_view", step=screen, properties={"screen": screen, **properties})

    async def track_search(self, query: str, results: Optional[int] = None, **properties: Any) -> int:
        return await self.track("search", properties={"query": query, "results": results, **properties})

    async def track_feature_used(self, feature: str, **properties: Any) -> int:
        return await self.track("feature_used", properties={"feature": feature, **properties})

    # =========================================================================
    # FLUSH
    # =========================================================================

    async def flush(self) -> FlushReport:
        """Send queued events in batches; concurrent calls return a skipped report."""
        # Set before the first await so a second caller sees it
        if self._flushing:
            logger.debug("Telemetry flush already running, skipping")
            return FlushReport(skipped=True)
        self._flushing = True
        try:
            return await self._flush_pending()
        finally:
            self._flushing = False

    async def _flush_pending(self) -> FlushReport:
        report = FlushReport()
        pending = self.queue.pending()
        if not pending:
            return report

        for start in range(0, len(pending), self.batch_size):
            batch = pending[start:start + self.batch_size]
            try:
                await self.connector.send_batch([event.to_payload() for event in batch])
            except MarketCoreError as e:
                logger.warning(f"Telemetry batch of {len(batch)} failed, keeping it queued: {e}")
                report.error = e
                break
            self.queue.delete(event.local_id for event in batch)
            report.sent += len(batch)
            report.batches += 1

        report.remaining = self.queue.count()
        if report.sent:
            logger.debug(f"Flushed {report.sent} telemetry events in {report.batches} batch(es)")
        return report

    @error_boundary(default_return=None)
    async def _timed_flush(self) -> Optional[FlushReport]:
        return await self.flush()

    # =========================================================================
    # TIMER
    # =========================================================================

    def start(self) -> None:
        """Start the periodic flush timer (requires a running loop)."""
        if self._timer_task is not None and not self._timer_task.done():
            return
        self._timer_task = asyncio.get_running_loop().create_task(self._timer_loop())
        logger.debug(f"Telemetry timer started ({self.flush_interval}s)")

    async def stop(self, final_flush: bool = True) -> Optional[FlushReport]:
        task, self._timer_task = self._timer_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if final_flush:
            return await self._timed_flush()
        return None

    async def _timer_loop(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            await self._timed_flush()

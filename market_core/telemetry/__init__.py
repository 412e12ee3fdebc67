# =============================================================================
# market_core/telemetry/__init__.py
# Client Analytics Events
# =============================================================================

from .event_queue import TelemetryEventQueue
from .buffer import TelemetryBuffer, FlushReport, new_session_id

__all__ = ["TelemetryEventQueue", "TelemetryBuffer", "FlushReport", "new_session_id"]

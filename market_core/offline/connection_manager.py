# =============================================================================
# market_core/offline/connection_manager.py
# Connection Status Detection and Management
# =============================================================================
"""
ConnectionManager - Detects and monitors internet/backend connectivity.

Features:
- Socket probes executed off the event loop (asyncio.to_thread)
- Periodic health checks as an asyncio task
- ConnectionChanged events on the EventBus
- Manual override (force offline/online) for tests and user preference
"""

from __future__ import annotations
import asyncio
import socket
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple
from urllib.parse import urlparse
import logging

from market_core.offline.event_bus import ConnectionChanged, EventBus

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"           # Backend reachable
    OFFLINE = "offline"         # Neither backend nor internet reachable
    DEGRADED = "degraded"       # Internet OK but backend unavailable
    CHECKING = "checking"       # Currently checking status
    UNKNOWN = "unknown"         # Initial state


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    internet_available: bool = False
    backend_available: bool = False
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None


class ConnectionManager:
    """
    Connectivity oracle for connectivity-gated reads.

    Usage:
        manager = ConnectionManager(backend_url=config.base_url, bus=bus)
        if await manager.is_online():
            ...  # fetch remotely
        else:
            ...  # serve the local cache
    """

    PROBE_HOSTS: Tuple[Tuple[str, int], ...] = (
        ("8.8.8.8", 53),        # Google DNS
        ("1.1.1.1", 53),        # Cloudflare DNS
        ("208.67.222.222", 53), # OpenDNS
    )

    def __init__(
        self,
        backend_url: Optional[str] = None,
        bus: Optional[EventBus] = None,
        check_interval_online: float = 30.0,
        check_interval_offline: float = 10.0,
        connection_timeout: float = 5.0,
        max_state_age: float = 5.0,
    ):
        self.backend_url = backend_url
        self.bus = bus
        self.check_interval_online = check_interval_online
        self.check_interval_offline = check_interval_offline
        self.connection_timeout = connection_timeout
        self.max_state_age = max_state_age
        self._state = ConnectionState()
        self._checked_at: Optional[float] = None
        self._override: Optional[bool] = None
        self._monitor_task: Optional[asyncio.Task] = None
        self._check_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def forced(self) -> bool:
        return self._override is not None

    async def is_online(self) -> bool:
        """
        True when the backend is reachable.

        Uses the last known state if it is recent enough, otherwise probes.
        """
        if self._override is not None:
            return self._override
        fresh = self._checked_at is not None and (time.monotonic() - self._checked_at) < self.max_state_age
        if not fresh:
            await self.check_connection()
        return self._state.status == ConnectionStatus.ONLINE

    async def check_connection(self) -> ConnectionState:
        """
        Perform a connection check and update state.

        Concurrent callers share the check already in flight.

        Returns:
            Updated ConnectionState
        """
        if self._override is not None:
            return self._state

        # No await between the check and the assignment
        if self._check_task is None:
            task = asyncio.get_running_loop().create_task(self._run_check())
            task.add_done_callback(self._on_check_done)
            self._check_task = task
        return await asyncio.shield(self._check_task)

    def _on_check_done(self, task: asyncio.Task) -> None:
        if self._check_task is task:
            self._check_task = None
        if not task.cancelled():
            task.exception()

    async def _run_check(self) -> ConnectionState:
        old_status = self._state.status
        self._state.status = ConnectionStatus.CHECKING
        self._state.last_check = datetime.now()

        # Backend first; internet is probed only to tell DEGRADED from OFFLINE
        backend_ok = await asyncio.to_thread(self._check_backend)
        internet_ok = backend_ok or await asyncio.to_thread(self._check_internet)
        self._state.internet_available = internet_ok
        self._state.backend_available = backend_ok

        if backend_ok:
            new_status = ConnectionStatus.ONLINE
            self._state.last_online = datetime.now()
            self._state.consecutive_failures = 0
            self._state.error_message = None
        elif internet_ok:
            new_status = ConnectionStatus.DEGRADED
            self._state.consecutive_failures += 1
        else:
            new_status = ConnectionStatus.OFFLINE
            self._state.consecutive_failures += 1

        self._checked_at = time.monotonic()
        self._set_status(old_status, new_status)
        return self._state

    def _set_status(self, old_status: ConnectionStatus, new_status: ConnectionStatus) -> None:
        self._state.status = new_status
        if old_status != new_status:
            logger.info(f"Connection status changed: {old_status.value} -> {new_status.value}")
            if self.bus is not None:
                self.bus.publish(ConnectionChanged(
                    previous=old_status.value,
                    current=new_status.value,
                    is_online=new_status == ConnectionStatus.ONLINE,
                ))

    def _probe(self, host: str, port: int) -> bool:
        try:
            with socket.create_connection((host, port), timeout=self.connection_timeout):
                return True
        except OSError:
            return False

    def _check_internet(self) -> bool:
        """Check internet connectivity by reaching well-known DNS hosts."""
        return any(self._probe(host, port) for host, port in self.PROBE_HOSTS)

    def _check_backend(self) -> bool:
        """Check that the backend host accepts TCP connections."""
        if not self.backend_url:
            # No backend configured: internet is all we can check
            return self._check_internet()

        parsed = urlparse(self.backend_url)
        if not parsed.hostname:
            self._state.error_message = f"Invalid backend URL: {self.backend_url}"
            return False
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        reachable = self._probe(parsed.hostname, port)
        if not reachable:
            self._state.error_message = f"Backend {parsed.hostname}:{port} unreachable"
        return reachable

    # =========================================================================
    # MONITORING
    # =========================================================================

    def start_monitoring(self) -> None:
        """Start background connection monitoring (requires a running loop)."""
        if self._monitor_task is not None and not self._monitor_task.done():
            return
        self._monitor_task = asyncio.get_running_loop().create_task(self._monitoring_loop())
        logger.debug("Connection monitoring started")

    async def stop_monitoring(self) -> None:
        """Stop background connection monitoring."""
        task, self._monitor_task = self._monitor_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("Connection monitoring stopped")

    async def _monitoring_loop(self) -> None:
        while True:
            interval = (
                self.check_interval_online
                if self._state.status == ConnectionStatus.ONLINE
                else self.check_interval_offline
            )
            await asyncio.sleep(interval)
            try:
                await self.check_connection()
            except OSError as e:
                logger.error(f"Error in connection check: {e}")

    # =========================================================================
    # OVERRIDES
    # =========================================================================

    def force_offline(self) -> None:
        """Force offline mode (for testing or user preference)."""
        old_status = self._state.status
        self._override = False
        self._state.internet_available = False
        self._state.backend_available = False
        self._set_status(old_status, ConnectionStatus.OFFLINE)
        logger.info("Forced offline mode")

    def force_online(self) -> None:
        """Treat the backend as reachable without probing (tests)."""
        old_status = self._state.status
        self._override = True
        self._state.internet_available = True
        self._state.backend_available = True
        self._state.last_online = datetime.now()
        self._set_status(old_status, ConnectionStatus.ONLINE)

    def clear_override(self) -> None:
        """Return to probing; the next is_online() call checks again."""
        self._override = None
        self._checked_at = None

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        return {
            "status": self._state.status.value,
            "is_online": self._state.status == ConnectionStatus.ONLINE,
            "forced": self.forced,
            "internet": self._state.internet_available,
            "backend": self._state.backend_available,
            "last_check": self._state.last_check.isoformat() if self._state.last_check else None,
            "last_online": self._state.last_online.isoformat() if self._state.last_online else None,
            "failures": self._state.consecutive_failures,
            "error": self._state.error_message,
        }

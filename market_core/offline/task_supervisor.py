# =============================================================================
# market_core/offline/task_supervisor.py
# Supervised Fire-and-Forget Background Tasks
# =============================================================================
"""
BackgroundTaskSupervisor - owns detached asyncio tasks started by the core.

Features:
- spawn(coro) returns immediately; the task keeps running after its caller
  has moved on
- failures are logged here and never reach the caller
- tracked task set so shutdown can wait for (or cancel) outstanding work
"""

from __future__ import annotations
import asyncio
from typing import Any, Coroutine, Optional, Set
import logging

logger = logging.getLogger(__name__)


class BackgroundTaskSupervisor:
    """
    Supervises background refreshes and telemetry flushes.

    Usage:
        supervisor = BackgroundTaskSupervisor()
        supervisor.spawn(refresh_orders(), name="orders-refresh")
        ...
        await supervisor.join()
    """

    def __init__(self, name: str = "market-core"):
        self.name = name
        self._active_tasks: Set[asyncio.Task] = set()
        self._failures = 0
        self._closed = False

    @property
    def active_count(self) -> int:
        return len(self._active_tasks)

    @property
    def failure_count(self) -> int:
        return self._failures

    def spawn(self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> Optional[asyncio.Task]:
        """
        Start ``coro`` as a detached task.

        Must be called from inside a running event loop. Returns None (and
        closes the coroutine) once the supervisor has been shut down.
        """
        if self._closed:
            logger.debug(f"[{self.name}] Ignoring task {name or coro!r}: supervisor is shut down")
            coro.close()
            return None

        task = asyncio.get_running_loop().create_task(self._guard(coro, name or repr(coro)))
        self._active_tasks.add(task)
        task.add_done_callback(self._active_tasks.discard)
        return task

    async def _guard(self, coro: Coroutine[Any, Any, Any], name: str) -> Any:
        try:
            return await coro
        except asyncio.CancelledError:
            logger.debug(f"[{self.name}] Background task cancelled: {name}")
            raise
        except Exception as e:
            self._failures += 1
            logger.warning(f"[{self.name}] Background task failed: {name}: {e}", exc_info=True)
            return None

    async def join(self, timeout: Optional[float] = None) -> None:
        """Wait until every task (including ones spawned meanwhile) has finished."""
        async def _drain() -> None:
            while self._active_tasks:
                await asyncio.gather(*list(self._active_tasks), return_exceptions=True)

        if timeout is None:
            await _drain()
        else:
            await asyncio.wait_for(_drain(), timeout)

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Refuse new work, give running tasks ``timeout`` seconds, then cancel the rest."""
        self._closed = True
        if not self._active_tasks:
            return
        done, pending = await asyncio.wait(list(self._active_tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info(f"[{self.name}] Cancelled {len(pending)} background task(s) at shutdown")

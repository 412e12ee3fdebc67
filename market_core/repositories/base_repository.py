# =============================================================================
# market_core/repositories/base_repository.py
# Base Repository Class with Common Functionality
# =============================================================================

from __future__ import annotations
from abc import ABC
from typing import Optional

from market_core.logging import get_logger, LogContext
from market_core.offline.connection_manager import ConnectionManager
from market_core.offline.event_bus import EventBus
from market_core.offline.local_database import LocalDatabase
from market_core.offline.strategies import CacheFirstReader, GatedFetcher, save_quietly
from market_core.offline.task_supervisor import BackgroundTaskSupervisor


class BaseRepository(ABC):
    """
    Abstract base class for domain repositories.

    Provides common functionality:
    - Logging
    - The two offline-first read strategies (cache-first and gated fetch)
    - Write-through after remote acknowledgment

    Usage:
        class ThingsRepository(BaseRepository):
            async def get_things(self) -> ReadResult[List[Thing]]:
                return await self.gated.fetch("things", fetch, save, load)
    """

    def __init__(
        self,
        database: LocalDatabase,
        connectivity: ConnectionManager,
        supervisor: BackgroundTaskSupervisor,
        bus: Optional[EventBus] = None,
    ):
        self.logger = get_logger(self.__class__.__name__)
        self.database = database
        self.connectivity = connectivity
        self.bus = bus
        self.cache_first = CacheFirstReader(supervisor, bus)
        self.gated = GatedFetcher(connectivity)

    def log_operation(self, operation: str) -> LogContext:
        """
        Create a logging context for an operation.

        Usage:
            with self.log_operation("Creating order"):
                ...
        """
        return LogContext(self.logger, operation)

    def write_through(self, save, value, resource: str) -> bool:
        """Persist a remote-acknowledged result; local failures are logged only."""
        return save_quietly(save, value, resource)

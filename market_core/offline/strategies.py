# =============================================================================
# market_core/offline/strategies.py
# Offline-First Read Strategies
# =============================================================================
"""
Read strategies composed into every domain repository.

- CacheFirstReader: answer from the local store immediately, refresh in the
  background, write the fresh data through and notify listeners.
- GatedFetcher: ask the connectivity oracle first; online reads go to the
  network (write-through, cache fallback on failure), offline reads go
  straight to the local store.

Both report where the data came from (ReadResult.source) so callers can
show "using cached data" / "offline" indicators.
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sized, TypeVar
import logging

from market_core.errors import (
    AuthError,
    CacheMissError,
    MarketCoreError,
    NetworkError,
    ServerError,
    StorageError,
)
from market_core.offline.connection_manager import ConnectionManager
from market_core.offline.event_bus import DataUpdated, EventBus
from market_core.offline.task_supervisor import BackgroundTaskSupervisor

logger = logging.getLogger(__name__)

T = TypeVar("T")

LoadCached = Callable[[], Optional[T]]
FetchRemote = Callable[[], Awaitable[T]]
SaveFresh = Callable[[T], Any]

# Failures that a cached copy may paper over
FALLBACK_ERRORS = (NetworkError, ServerError, AuthError)


class DataSource(Enum):
    REMOTE = "remote"                  # fresh from the backend
    CACHE = "cache"                    # cache-first answer, refresh pending
    CACHE_FALLBACK = "cache_fallback"  # network failed, cache served
    OFFLINE = "offline"                # no connectivity, cache served


class ReadState(Enum):
    CHECKING = "checking-connectivity"
    ONLINE_FETCH = "online-fetch"
    OFFLINE_FALLBACK = "offline-fallback"
    CACHE_FALLBACK = "cache-fallback"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class ReadResult(Generic[T]):
    """Value plus provenance of a repository read."""
    value: Optional[T]
    source: DataSource
    error: Optional[MarketCoreError] = None
    states: List[ReadState] = field(default_factory=list)
    refresh_task: Optional[asyncio.Task] = None

    @property
    def has_value(self) -> bool:
        return not is_empty(self.value)

    @property
    def using_cached_data(self) -> bool:
        return self.source in (DataSource.CACHE_FALLBACK, DataSource.OFFLINE)

    @property
    def offline(self) -> bool:
        return self.source == DataSource.OFFLINE


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, Sized) and not isinstance(value, str) and len(value) == 0


def load_quietly(load_cached: LoadCached, resource: str) -> Optional[Any]:
    """Read the local store; storage failures count as a cache miss."""
    try:
        return load_cached()
    except StorageError as e:
        logger.warning(f"Local read of {resource} failed, treating as cache miss: {e}")
        return None


def save_quietly(save: SaveFresh, value: Any, resource: str) -> bool:
    try:
        save(value)
        return True
    except StorageError as e:
        logger.warning(f"Write-through of {resource} failed: {e}")
        return False


class CacheFirstReader(Generic[T]):
    """
    Cache-first read with background refresh.

    The returned ReadResult is produced from the local store only; the
    network fetch runs as a supervised task and finishes (including the
    cache write) even if the caller no longer cares.
    """

    def __init__(self, supervisor: BackgroundTaskSupervisor, bus: Optional[EventBus] = None):
        self.supervisor = supervisor
        self.bus = bus

    async def read(
        self,
        topic: str,
        load_cached: LoadCached,
        fetch_remote: FetchRemote,
        save: SaveFresh,
        on_updated: Optional[Callable[[T], None]] = None,
        is_relevant: Optional[Callable[[], bool]] = None,
    ) -> ReadResult[T]:
        """
        Args:
            topic: Name used in logs and DataUpdated events
            load_cached: Synchronous local lookup
            fetch_remote: Coroutine factory fetching fresh data
            save: Write-through of fresh data into the local store
            on_updated: Called with fresh data after it was saved
            is_relevant: Checked before calling ``on_updated``
        """
        cached = load_quietly(load_cached, topic)
        task = self.supervisor.spawn(
            self._refresh(topic, fetch_remote, save, on_updated, is_relevant),
            name=f"refresh:{topic}",
        )
        return ReadResult(
            value=cached,
            source=DataSource.CACHE,
            states=[ReadState.SUCCESS],
            refresh_task=task,
        )

    async def _refresh(
        self,
        topic: str,
        fetch_remote: FetchRemote,
        save: SaveFresh,
        on_updated: Optional[Callable[[T], None]],
        is_relevant: Optional[Callable[[], bool]],
    ) -> Optional[T]:
        try:
            fresh = await fetch_remote()
        except MarketCoreError as e:
            logger.info(f"Background refresh of {topic} failed, cached data stays: {e}")
            return None

        save_quietly(save, fresh, topic)
        if self.bus is not None:
            self.bus.publish(DataUpdated(topic=topic, value=fresh))
        if on_updated is not None and (is_relevant is None or is_relevant()):
            on_updated(fresh)
        return fresh


class GatedFetcher(Generic[T]):
    """
    Connectivity-gated fetch with write-through and cache fallback.

    States: checking-connectivity -> online-fetch | offline-fallback
            -> success | cache-fallback | error
    """

    def __init__(self, connectivity: ConnectionManager):
        self.connectivity = connectivity

    async def fetch(
        self,
        resource: str,
        fetch_remote: FetchRemote,
        save: SaveFresh,
        load_cached: LoadCached,
    ) -> ReadResult[T]:
        """
        Raises:
            CacheMissError: nothing from the network and nothing cached
            AuthError: session is gone and nothing is cached
            ValidationError: the backend rejected the request
        """
        states = [ReadState.CHECKING]

        if not await self.connectivity.is_online():
            states.append(ReadState.OFFLINE_FALLBACK)
            cached = load_quietly(load_cached, resource)
            if is_empty(cached):
                states.append(ReadState.ERROR)
                raise CacheMissError(f"No cached {resource} available offline", resource=resource, offline=True)
            states.append(ReadState.SUCCESS)
            logger.debug(f"Offline: served {resource} from local store")
            return ReadResult(value=cached, source=DataSource.OFFLINE, states=states)

        states.append(ReadState.ONLINE_FETCH)
        try:
            fresh = await fetch_remote()
        except FALLBACK_ERRORS as e:
            states.append(ReadState.CACHE_FALLBACK)
            logger.warning(f"Fetching {resource} failed, trying local store: {e}")
            cached = load_quietly(load_cached, resource)
            if is_empty(cached):
                states.append(ReadState.ERROR)
                if isinstance(e, AuthError):
                    raise
                raise CacheMissError(f"No {resource} available: {e.message}", resource=resource) from e
            return ReadResult(value=cached, source=DataSource.CACHE_FALLBACK, error=e, states=states)

        save_quietly(save, fresh, resource)
        states.append(ReadState.SUCCESS)
        return ReadResult(value=fresh, source=DataSource.REMOTE, states=states)

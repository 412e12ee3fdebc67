# =============================================================================
# market_core/runtime.py
# Process-Wide Wiring and Lifecycle of the Client Core
# =============================================================================
"""
CoreServices - the explicit replacement for module-level singletons.

``init_core()`` builds every component once, injects dependencies through
constructors and registers the container returned by ``get_core()``.
Tests build their own container (or pass fakes to ``init_core``) instead of
patching globals.

Usage:
    services = init_core(CoreConfig.from_env())
    await services.start()
    orders = await services.orders.get_orders(user_id)
    ...
    await shutdown_core()
"""

from __future__ import annotations
import threading
from dataclasses import dataclass
from typing import Optional
import logging

from market_core.api.auth_connector import AuthConnector
from market_core.api.listings_connector import ListingsConnector
from market_core.api.orders_connector import OrdersConnector
from market_core.api.pipeline import RequestPipeline
from market_core.api.response_cache import ResponseCache
from market_core.api.reviews_connector import ReviewsConnector
from market_core.api.session import FernetTokenStore, TokenSessionManager, TokenStore
from market_core.api.telemetry_connector import TelemetryConnector
from market_core.api.transport import Transport
from market_core.config import CoreConfig
from market_core.errors import ConfigurationError, ErrorContext
from market_core.offline.cart import CartStore
from market_core.offline.connection_manager import ConnectionManager
from market_core.offline.event_bus import EventBus
from market_core.offline.local_database import LocalDatabase
from market_core.offline.task_supervisor import BackgroundTaskSupervisor
from market_core.repositories import (
    AuthRepository,
    ListingsRepository,
    OrdersRepository,
    ProfileRepository,
    ReviewsRepository,
)
from market_core.telemetry import TelemetryBuffer, TelemetryEventQueue

logger = logging.getLogger(__name__)


@dataclass
class CoreServices:
    """Every long-lived component of the client core."""
    config: CoreConfig
    bus: EventBus
    supervisor: BackgroundTaskSupervisor
    database: LocalDatabase
    token_store: TokenStore
    session_manager: TokenSessionManager
    response_cache: ResponseCache
    pipeline: RequestPipeline
    connectivity: ConnectionManager
    auth: AuthRepository
    listings: ListingsRepository
    orders: OrdersRepository
    reviews: ReviewsRepository
    profile: ProfileRepository
    telemetry: TelemetryBuffer
    cart: CartStore
    started: bool = False

    async def start(self) -> None:
        """Start connectivity monitoring and the telemetry timer."""
        if self.started:
            return
        if not self.connectivity.forced:
            self.connectivity.start_monitoring()
        self.telemetry.start()
        self.started = True
        logger.info("Client core started")

    def cleanup_telemetry(self, days: Optional[int] = None) -> int:
        """
        Drop queued telemetry events older than ``days`` (default
        ``telemetry_max_age_days``), delivered or not. Never called
        implicitly.
        """
        return self.telemetry.queue.cleanup_older_than(
            days if days is not None else self.config.telemetry_max_age_days
        )

    async def shutdown(self, final_flush: bool = True) -> None:
        """Stop timers, flush telemetry once more, drain background work, close the database."""
        await self.connectivity.stop_monitoring()
        with ErrorContext("Final telemetry flush", suppress=True):
            await self.telemetry.stop(final_flush=final_flush)
        await self.supervisor.shutdown()
        self.pipeline.close()
        self.database.close()
        self.started = False
        logger.info("Client core shut down")


_core: Optional[CoreServices] = None
_core_lock = threading.Lock()


def build_core(
    config: Optional[CoreConfig] = None,
    transport: Optional[Transport] = None,
    token_store: Optional[TokenStore] = None,
    connection_manager: Optional[ConnectionManager] = None,
) -> CoreServices:
    """Construct a CoreServices container without registering it."""
    config = config or CoreConfig.from_env()
    config.validate()

    bus = EventBus()
    supervisor = BackgroundTaskSupervisor()
    database = LocalDatabase(config.database_path)
    database.initialize()

    token_store = token_store or FernetTokenStore(
        config.token_path,
        key=config.token_key,
        key_path=config.token_key_path,
    )
    session_manager = TokenSessionManager(token_store, bus=bus)
    response_cache = ResponseCache(database, max_stale=config.cache_max_stale)
    pipeline = RequestPipeline(config, session_manager, transport=transport, cache=response_cache)
    session_manager.attach_refresh_handler(pipeline.refresh_tokens)

    connectivity = connection_manager or ConnectionManager(
        backend_url=config.base_url,
        bus=bus,
        check_interval_online=config.connectivity_check_interval,
        check_interval_offline=config.connectivity_offline_interval,
        connection_timeout=config.connectivity_timeout,
    )

    listings_api = ListingsConnector(pipeline)
    orders_api = OrdersConnector(pipeline)
    reviews_api = ReviewsConnector(pipeline)
    shared = dict(database=database, connectivity=connectivity, supervisor=supervisor, bus=bus)

    auth = AuthRepository(AuthConnector(pipeline), session_manager, response_cache, **shared)
    queue = TelemetryEventQueue(database, max_events=config.telemetry_max_events)

    return CoreServices(
        config=config,
        bus=bus,
        supervisor=supervisor,
        database=database,
        token_store=token_store,
        session_manager=session_manager,
        response_cache=response_cache,
        pipeline=pipeline,
        connectivity=connectivity,
        auth=auth,
        listings=ListingsRepository(listings_api, **shared),
        orders=OrdersRepository(orders_api, **shared),
        reviews=ReviewsRepository(reviews_api, **shared),
        profile=ProfileRepository(listings_api, orders_api, reviews_api, **shared),
        telemetry=TelemetryBuffer(
            queue,
            TelemetryConnector(pipeline),
            supervisor,
            config,
            user_id_provider=lambda: auth.current_user_id,
        ),
        cart=CartStore(database, bus),
    )


def init_core(
    config: Optional[CoreConfig] = None,
    transport: Optional[Transport] = None,
    token_store: Optional[TokenStore] = None,
    connection_manager: Optional[ConnectionManager] = None,
) -> CoreServices:
    """
    Build and register the process-wide CoreServices.

    Raises:
        ConfigurationError: already initialized, or invalid configuration
    """
    global _core
    with _core_lock:
        if _core is not None:
            raise ConfigurationError("Client core is already initialized; call shutdown_core() first")
        _core = build_core(config, transport, token_store, connection_manager)
    logger.info(f"Client core initialized (backend: {_core.config.base_url})")
    return _core


def get_core() -> CoreServices:
    """
    Get the process-wide CoreServices.

    Raises:
        ConfigurationError: ``init_core()`` has not been called
    """
    if _core is None:
        raise ConfigurationError("Client core is not initialized; call init_core() first")
    return _core


async def shutdown_core(final_flush: bool = True) -> None:
    """Shut down and unregister the process-wide CoreServices; no-op if none."""
    global _core
    with _core_lock:
        core, _core = _core, None
    if core is not None:
        await core.shutdown(final_flush=final_flush)

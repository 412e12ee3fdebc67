# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import pytest

from market_core.api.pipeline import RequestPipeline
from market_core.api.response_cache import ResponseCache
from market_core.api.session import MemoryTokenStore, Session, TokenSessionManager
from market_core.api.transport import ApiRequest, ApiResponse, Transport
from market_core.config import CoreConfig
from market_core.models import Account, Listing, Order, OrderStatus, Review
from market_core.offline.connection_manager import ConnectionManager
from market_core.offline.event_bus import EventBus
from market_core.offline.local_database import LocalDatabase
from market_core.offline.task_supervisor import BackgroundTaskSupervisor


BASE_URL = "http://api.test"
T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# FAKE TRANSPORT
# =============================================================================

Scripted = Union[ApiResponse, Exception, Callable[[ApiRequest], ApiResponse]]


@dataclass
class RecordedCall:
    method: str
    path: str
    params: Optional[Dict[str, Any]]
    json: Any
    headers: Dict[str, str] = field(default_factory=dict)


def respond(status_code: int = 200, data: Any = None) -> ApiResponse:
    return ApiResponse(status_code=status_code, data=data)


class FakeTransport(Transport):
    """
    Scripted async transport.

    Each (method, path) has a list of scripted outcomes consumed in order;
    the last one repeats. An outcome is an ApiResponse, an exception to
    raise, or a callable building the response from the request.
    """

    def __init__(self, delay: float = 0.0):
        self.routes: Dict[Tuple[str, str], List[Scripted]] = {}
        self.delays: Dict[Tuple[str, str], float] = {}
        self.calls: List[RecordedCall] = []
        self.delay = delay
        self.closed = False

    def add(self, method: str, path: str, *outcomes: Scripted, delay: Optional[float] = None) -> None:
        key = (method.upper(), path)
        self.routes.setdefault(key, []).extend(outcomes)
        if delay is not None:
            self.delays[key] = delay

    def calls_to(self, method: str, path: str) -> List[RecordedCall]:
        return [c for c in self.calls if c.method == method.upper() and c.path == path]

    async def send(self, request: ApiRequest, base_url: str, timeout: float) -> ApiResponse:
        key = (request.method, request.path)
        self.calls.append(RecordedCall(
            method=request.method,
            path=request.path,
            params=dict(request.params) if request.params else None,
            json=request.json,
            headers=dict(request.headers),
        ))
        # Always yield to the loop, like a real network call
        await asyncio.sleep(self.delays.get(key, self.delay))

        outcomes = self.routes.get(key)
        if not outcomes:
            raise AssertionError(f"Unexpected request {request.method} {request.path}")
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        if callable(outcome):
            return outcome(request)
        return outcome

    def close(self) -> None:
        self.closed = True


# =============================================================================
# CORE FIXTURES
# =============================================================================

@pytest.fixture
def config(tmp_path):
    """Test configuration: local data under tmp_path, no retry backoff"""
    return CoreConfig(base_url=BASE_URL, data_dir=tmp_path, retry_backoff=0.0)


@pytest.fixture
def database(config):
    db = LocalDatabase(config.database_path)
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def supervisor():
    return BackgroundTaskSupervisor(name="test")


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def token_store():
    return MemoryTokenStore(Session(access_token="access-1", refresh_token="refresh-1"))


@pytest.fixture
def session_manager(token_store, bus):
    return TokenSessionManager(token_store, bus=bus)


@pytest.fixture
def response_cache(database, config):
    return ResponseCache(database, max_stale=config.cache_max_stale)


@pytest.fixture
def pipeline(config, session_manager, transport, response_cache):
    pipeline = RequestPipeline(config, session_manager, transport=transport, cache=response_cache)
    session_manager.attach_refresh_handler(pipeline.refresh_tokens)
    return pipeline


@pytest.fixture
def online(bus):
    """Connectivity oracle that always reports online (no sockets)"""
    manager = ConnectionManager(backend_url=BASE_URL, bus=bus)
    manager.force_online()
    return manager


@pytest.fixture
def offline(bus):
    manager = ConnectionManager(backend_url=BASE_URL, bus=bus)
    manager.force_offline()
    return manager


# =============================================================================
# SAMPLE ENTITIES
# =============================================================================

@pytest.fixture
def seller():
    return Account(id="U1", name="Sofia Seller", email="sofia@uni.edu", campus="north", created_at=T0)


@pytest.fixture
def buyer():
    return Account(id="U2", name="Bruno Buyer", email="bruno@uni.edu", campus="north", created_at=T0)


@pytest.fixture
def listing(seller):
    return Listing(
        id="L1",
        seller_id=seller.id,
        title="Calculus textbook",
        description="Stewart, 8th edition",
        category_id="books",
        price_cents=45000,
        created_at=T0,
        updated_at=T0,
    )


@pytest.fixture
def order(buyer, seller, listing):
    return Order(
        id="O1",
        buyer_id=buyer.id,
        seller_id=seller.id,
        listing_id=listing.id,
        total_cents=45000,
        status=OrderStatus.CREATED,
        created_at=T0,
        updated_at=T0,
    )


@pytest.fixture
def review(order, buyer, seller):
    return Review(id="R1", order_id=order.id, rater_id=buyer.id, ratee_id=seller.id, rating=5, created_at=T0)


@pytest.fixture
def populated_database(database, seller, buyer, listing, order, review):
    """Database holding one account pair, listing, order and review"""
    database.upsert_accounts([seller, buyer])
    database.upsert_listing(listing)
    database.upsert_order(order)
    database.upsert_review(review)
    return database


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def order_json(order_id: str, status: str = "created", buyer_id: str = "U2", seller_id: str = "U1",
               listing_id: str = "L1", total_cents: int = 45000, minutes: int = 0) -> Dict[str, Any]:
    """Backend JSON for an order"""
    stamp = (T0 + timedelta(minutes=minutes)).isoformat().replace("+00:00", "Z")
    return {
        "id": order_id,
        "buyer_id": buyer_id,
        "seller_id": seller_id,
        "listing_id": listing_id,
        "total_cents": total_cents,
        "currency": "COP",
        "status": status,
        "created_at": stamp,
        "updated_at": stamp,
    }


def listing_json(listing_id: str, title: str = "Desk lamp", seller_id: str = "U1",
                 price_cents: int = 30000, category_id: str = "home") -> Dict[str, Any]:
    return {
        "id": listing_id,
        "seller_id": seller_id,
        "title": title,
        "category_id": category_id,
        "price_cents": price_cents,
        "created_at": "2024-03-01T12:00:00Z",
        "updated_at": "2024-03-01T12:00:00Z",
    }

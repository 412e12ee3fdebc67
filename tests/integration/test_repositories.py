# =============================================================================
# tests/integration/test_repositories.py
# Integration Tests for Repository Flows (Pipeline → Strategies → SQLite)
# =============================================================================

from datetime import timedelta

import pytest

from conftest import listing_json, order_json, respond
from market_core import get_core, init_core, shutdown_core
from market_core.api.auth_connector import AuthConnector, hash_email
from market_core.api.listings_connector import ListingsConnector
from market_core.api.orders_connector import OrdersConnector
from market_core.api.reviews_connector import ReviewsConnector
from market_core.api.session import MemoryTokenStore
from market_core.api.transport import ApiResponse
from market_core.errors import AuthError, CacheMissError, ConfigurationError, NetworkError, ValidationError
from market_core.models import Listing, Order, OrderStatus, TelemetryEvent, utcnow
from market_core.offline.cart import CartItem, CartStore
from market_core.offline.strategies import DataSource
from market_core.repositories import (
    CURRENT_USER_KEY,
    AuthRepository,
    ListingsRepository,
    OrdersRepository,
    ProfileRepository,
    ReviewsRepository,
)
from market_core.telemetry import TelemetryEventQueue


@pytest.fixture
def shared(database, online, supervisor, bus):
    return dict(database=database, connectivity=online, supervisor=supervisor, bus=bus)


@pytest.fixture
def orders_repo(pipeline, shared):
    return OrdersRepository(OrdersConnector(pipeline), **shared)


class TestOrdersRepository:
    """
    Tests the flow:
    1. Connectivity check
    2. Remote fetch through the pipeline
    3. Write-through into SQLite
    4. Fallback to SQLite when the network or connectivity is gone
    """

    @pytest.mark.asyncio
    async def test_online_read_writes_through(self, orders_repo, transport, database):
        transport.add("GET", "/orders", respond(200, [order_json("O1"), order_json("O2", minutes=5)]))

        result = await orders_repo.get_orders("U2", role="buyer")

        assert result.source == DataSource.REMOTE
        assert [o.id for o in result.value] == ["O1", "O2"]
        assert [o.id for o in database.orders_by_buyer("U2")] == ["O2", "O1"]

    @pytest.mark.asyncio
    async def test_both_roles_are_merged(self, orders_repo, transport):
        def by_role(request):
            if request.params.get("buyer_id"):
                return respond(200, [order_json("O1")])
            return respond(200, {"items": [order_json("O2", buyer_id="U9", seller_id="U2"), order_json("O1")]})

        transport.add("GET", "/orders", by_role)

        result = await orders_repo.get_orders("U2")

        assert sorted(o.id for o in result.value) == ["O1", "O2"]

    @pytest.mark.asyncio
    async def test_offline_read_uses_snapshot_without_network(self, pipeline, shared, offline, transport, database):
        database.upsert_order(Order(id="O1", buyer_id="U2", seller_id="U1", listing_id="L1", total_cents=100))
        shared["connectivity"] = offline
        repo = OrdersRepository(OrdersConnector(pipeline), **shared)

        result = await repo.get_orders("U2", role="buyer")

        assert result.offline
        assert [o.id for o in result.value] == ["O1"]
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_offline_with_empty_cache(self, pipeline, shared, offline, transport):
        shared["connectivity"] = offline
        repo = OrdersRepository(OrdersConnector(pipeline), **shared)

        with pytest.raises(CacheMissError):
            await repo.get_orders("U2")
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_network_failure_falls_back_to_cache(self, orders_repo, transport, populated_database):
        transport.add("GET", "/orders", NetworkError("timeout", kind="timeout"))

        result = await orders_repo.get_orders("U2", role="buyer")

        assert result.source == DataSource.CACHE_FALLBACK
        assert result.using_cached_data
        assert [o.id for o in result.value] == ["O1"]

    @pytest.mark.asyncio
    async def test_cached_http_response_is_reported_as_fallback(self, orders_repo, transport, database):
        transport.add("GET", "/orders", respond(200, [order_json("O1")]), NetworkError("timeout", kind="timeout"))

        first = await orders_repo.get_orders("U2", role="buyer")
        synced = database.get_order("O1").last_synced_at
        second = await orders_repo.get_orders("U2", role="buyer")

        assert first.source == DataSource.REMOTE
        assert second.source == DataSource.CACHE_FALLBACK
        assert second.using_cached_data
        assert [o.id for o in second.value] == ["O1"]
        assert database.get_order("O1").last_synced_at == synced

    @pytest.mark.asyncio
    async def test_transition_updates_cache_after_ack(self, orders_repo, transport, populated_database):
        transport.add("POST", "/orders/O1/pay", respond(200, order_json("O1", status="paid")))

        order = await orders_repo.pay_order("O1")

        assert order.status == OrderStatus.PAID
        assert populated_database.get_order("O1").status == OrderStatus.PAID

    @pytest.mark.asyncio
    async def test_failed_transition_leaves_cache_untouched(self, orders_repo, transport, populated_database):
        transport.add("POST", "/orders/O1/ship", respond(409, {"detail": "Order is not paid"}))

        with pytest.raises(ValidationError):
            await orders_repo.ship_order("O1", tracking_number="TRK-1")

        assert transport.calls[0].json == {"tracking_number": "TRK-1"}
        assert populated_database.get_order("O1").status == OrderStatus.CREATED

    @pytest.mark.asyncio
    async def test_final_orders_cannot_transition(self, orders_repo, transport, populated_database, order):
        order.status = OrderStatus.COMPLETED
        populated_database.upsert_order(order)

        with pytest.raises(ValidationError) as exc_info:
            await orders_repo.cancel_order("O1", reason="changed my mind")

        assert exc_info.value.status_code == 409
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_created_order_flows_to_completion(self, orders_repo, transport, populated_database):
        transport.add("POST", "/orders", respond(201, order_json("O7")))
        transport.add("POST", "/orders/O7/complete", respond(200, order_json("O7", status="completed")))

        created = await orders_repo.create_order("L1", 45000)
        completed = await orders_repo.complete_order(created.id)

        assert transport.calls[0].json == {"listing_id": "L1", "total_cents": 45000, "currency": "COP"}
        assert completed.is_final
        assert orders_repo.order_counts("U1")[OrderStatus.COMPLETED] == 1

    @pytest.mark.asyncio
    async def test_watch_orders_returns_cache_then_notifies(self, orders_repo, transport, populated_database):
        transport.add("GET", "/orders", respond(200, [order_json("O1", status="paid")]))
        updates = []

        result = await orders_repo.watch_orders("U2", role="buyer", on_updated=updates.append)
        assert result.value[0].status == OrderStatus.CREATED

        await result.refresh_task
        assert updates[0][0].status == OrderStatus.PAID
        assert orders_repo.order_details("O1").order.status == OrderStatus.PAID


class TestReviewsRepository:

    @pytest.fixture
    def reviews_repo(self, pipeline, shared):
        return ReviewsRepository(ReviewsConnector(pipeline), **shared)

    @pytest.mark.asyncio
    async def test_rating_is_validated_locally(self, reviews_repo, transport):
        with pytest.raises(ValidationError) as exc_info:
            await reviews_repo.create_review("O1", "U1", rating=7)

        assert "rating" in exc_info.value.field_errors
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_created_review_is_cached(self, reviews_repo, transport, populated_database):
        transport.add("POST", "/reviews", respond(201, {
            "id": "R2", "order_id": "O1", "rater_id": "U2", "ratee_id": "U1", "rating": 3,
            "created_at": "2024-03-02T10:00:00Z",
        }))

        await reviews_repo.create_review("O1", "U1", rating=3, comment="ok")

        assert populated_database.review_for_order("O1").id == "R2"
        assert reviews_repo.get_user_rating("U1").average == pytest.approx(3.0)

    @pytest.mark.asyncio
    async def test_user_reviews_fall_back_to_cache(self, reviews_repo, transport, populated_database):
        transport.add("GET", "/reviews/users/U1", respond(503, {"detail": "maintenance"}))

        result = await reviews_repo.get_user_reviews("U1")

        assert result.using_cached_data
        assert [r.id for r in result.value] == ["R1"]

    @pytest.mark.asyncio
    async def test_watch_user_reviews_ignores_stale_callers(self, reviews_repo, transport, populated_database):
        transport.add("GET", "/reviews/users/U1", respond(200, [
            {"id": "R1", "order_id": "O1", "rater_id": "U2", "ratee_id": "U1", "rating": 4},
        ]))
        updates = []

        result = await reviews_repo.watch_user_reviews("U1", on_updated=updates.append, is_relevant=lambda: False)
        await result.refresh_task

        assert result.value[0].rating == 5
        assert updates == []
        assert reviews_repo.get_user_rating("U1").average == pytest.approx(4.0)

    @pytest.mark.asyncio
    async def test_missing_order_review(self, reviews_repo, transport):
        transport.add("GET", "/reviews/orders/O5", respond(404, {"detail": "Not found"}))

        result = await reviews_repo.get_order_review("O5")

        assert result.value is None


class TestListingsRepository:

    @pytest.fixture
    def listings_repo(self, pipeline, shared):
        return ListingsRepository(ListingsConnector(pipeline), **shared)

    @pytest.mark.asyncio
    async def test_remote_page(self, listings_repo, transport, database):
        transport.add("GET", "/listings", respond(200, {
            "items": [listing_json("L1"), listing_json("L2", title="Bike")],
            "total": 3, "page": 1, "page_size": 2, "has_next": True,
        }))

        result = await listings_repo.get_listings(page_size=2)

        assert result.value.has_next
        assert result.value.total == 3
        assert database.get_listing("L2").title == "Bike"

    @pytest.mark.asyncio
    async def test_offline_page_is_built_from_cache(self, pipeline, shared, offline, database):
        database.upsert_listings([
            Listing(id=f"L{i}", seller_id="U1", title=f"Item {i}", category_id="home", price_cents=i)
            for i in range(3)
        ])
        shared["connectivity"] = offline
        repo = ListingsRepository(ListingsConnector(pipeline), **shared)

        result = await repo.get_listings(page=1, page_size=2)

        assert len(result.value.items) == 2
        assert result.value.has_next
        assert repo.search_local("item 1")[0].id == "L1"

    @pytest.mark.asyncio
    async def test_offline_query_pages_through_matches(self, pipeline, shared, offline, database):
        now = utcnow()
        database.upsert_listings([
            Listing(id=f"L{i}", seller_id="U1", title=f"Lamp {i}", category_id="home", price_cents=100,
                    created_at=now - timedelta(minutes=i))
            for i in range(5)
        ] + [Listing(id="B1", seller_id="U1", title="Bike", category_id="home", price_cents=100)])
        shared["connectivity"] = offline
        repo = ListingsRepository(ListingsConnector(pipeline), **shared)

        second = (await repo.get_listings(q="lamp", page=2, page_size=2)).value
        last = (await repo.get_listings(q="lamp", page=3, page_size=2)).value

        assert [listing.id for listing in second.items] == ["L2", "L3"]
        assert (second.page, second.total, second.has_next) == (2, 4, True)
        assert [listing.id for listing in last.items] == ["L4"]
        assert (last.page, last.total, last.has_next) == (3, 5, False)

    @pytest.mark.asyncio
    async def test_created_listing_is_cached(self, listings_repo, transport, database):
        transport.add("POST", "/listings", respond(201, listing_json("L9", title="Road bike")))

        listing = await listings_repo.create_listing(
            {"title": "Road bike", "category_id": "home", "price_cents": 30000}
        )

        assert listing.id == "L9"
        assert database.get_listing("L9").title == "Road bike"

    @pytest.mark.asyncio
    async def test_watch_listings(self, listings_repo, transport, populated_database):
        transport.add("GET", "/listings", respond(200, {"items": [listing_json("L2", title="Bike")]}))
        updates = []

        result = await listings_repo.watch_listings(on_updated=updates.append)
        assert [item.id for item in result.value.items] == ["L1"]

        await result.refresh_task
        assert [item.id for item in updates[0].items] == ["L2"]
        assert populated_database.get_listing("L2") is not None

    @pytest.mark.asyncio
    async def test_price_suggestion_not_available(self, listings_repo, transport):
        transport.add("GET", "/price-suggestions/suggest", respond(404, {"detail": "not enough data"}))

        assert await listings_repo.suggest_price("books") is None

    @pytest.mark.asyncio
    async def test_price_suggestion_params(self, listings_repo, transport):
        transport.add("GET", "/price-suggestions/suggest", respond(200, {
            "suggested_price_cents": 42000, "algorithm": "market_median", "p25": 38000, "p75": 47000,
        }))

        suggestion = await listings_repo.suggest_price("books", condition="good")

        assert suggestion.has_market_data
        assert transport.calls[0].params == {"category_id": "books", "condition": "good"}


class TestProfileRepository:

    @pytest.mark.asyncio
    async def test_stats_from_cache_then_refreshed(self, pipeline, shared, transport, populated_database):
        repo = ProfileRepository(
            ListingsConnector(pipeline), OrdersConnector(pipeline), ReviewsConnector(pipeline), **shared
        )

        def orders_for(request):
            if request.params.get("seller_id"):
                return respond(200, [order_json("O1", status="completed"), order_json("O2", status="paid")])
            return respond(200, [])

        transport.add("GET", "/listings", respond(200, {"items": [listing_json("L1", title="Calculus textbook")]}))
        transport.add("GET", "/orders", orders_for)
        transport.add("GET", "/reviews/users/U1", respond(200, [
            {"id": "R9", "order_id": "O2", "rater_id": "U2", "ratee_id": "U1", "rating": 3},
        ]))
        updates = []

        result = await repo.load_stats("U1", on_updated=updates.append)
        assert result.value.rating.count == 1
        assert result.value.order_counts[OrderStatus.CREATED] == 1

        await result.refresh_task
        fresh = updates[0]
        assert fresh.order_counts[OrderStatus.COMPLETED] == 1
        assert fresh.order_counts[OrderStatus.PAID] == 1
        assert fresh.rating.count == 2
        assert fresh.seller.completed_revenue_cents == 45000
        assert fresh.active_orders == 1


class TestAuthRepository:

    @pytest.fixture
    def auth_repo(self, pipeline, session_manager, response_cache, shared):
        return AuthRepository(AuthConnector(pipeline), session_manager, response_cache, **shared)

    @pytest.mark.asyncio
    async def test_login_stores_tokens_and_account(self, auth_repo, transport, session_manager, database):
        transport.add("POST", "/auth/login", respond(200, {"access_token": "fresh", "refresh_token": "r-fresh"}))
        transport.add("GET", "/auth/me", respond(200, {"id": "U1", "name": "Sofia", "email": "sofia@uni.edu"}))

        account = await auth_repo.login("sofia@uni.edu", "secret")

        assert account.id == "U1"
        assert session_manager.get_access_token() == "fresh"
        assert transport.calls_to("GET", "/auth/me")[0].headers["Authorization"] == "Bearer fresh"
        assert database.get_setting(CURRENT_USER_KEY) == "U1"

    @pytest.mark.asyncio
    async def test_rejected_login(self, auth_repo, transport):
        transport.add("POST", "/auth/login", respond(401, {"detail": "Invalid credentials"}))

        with pytest.raises(AuthError):
            await auth_repo.login("sofia@uni.edu", "wrong")

    def test_logout_clears_everything_but_the_cart(self, auth_repo, session_manager, populated_database,
                                                   response_cache):
        cart = CartStore(populated_database)
        cart.add_item(CartItem(listing_id="L1", title="Book", price_cents=100))
        response_cache.store("k", "GET", "http://api.test/orders", ApiResponse(status_code=200, data=[]))
        populated_database.set_setting(CURRENT_USER_KEY, "U2")

        auth_repo.logout()

        counts = populated_database.counts()
        assert not session_manager.is_authenticated
        assert counts["orders"] == counts["accounts"] == 0
        assert counts["http_cache"] == 0
        assert counts["cart_items"] == 1
        assert auth_repo.current_user_id is None

    @pytest.mark.asyncio
    async def test_current_user_offline(self, pipeline, session_manager, response_cache, shared, offline,
                                        populated_database):
        populated_database.set_setting(CURRENT_USER_KEY, "U2")
        shared["connectivity"] = offline
        repo = AuthRepository(AuthConnector(pipeline), session_manager, response_cache, **shared)

        result = await repo.current_user()

        assert result.offline
        assert result.value.name == "Bruno Buyer"

    @pytest.mark.asyncio
    async def test_contacts_are_matched_by_hash(self, auth_repo, transport):
        transport.add("POST", "/contacts/match", respond(200, {"matches": [{"user_id": "U1", "name": "Sofia"}]}))

        matches = await auth_repo.match_contacts([" Sofia@Uni.edu ", "sofia@uni.edu", ""])

        assert [m.user_id for m in matches] == ["U1"]
        sent = transport.calls[0].json["email_hashes"]
        assert sent == [hash_email("sofia@uni.edu")]
        assert "sofia" not in sent[0]


class TestCoreLifecycle:

    @pytest.mark.asyncio
    async def test_init_get_and_shutdown(self, config, transport, online):
        transport.add("POST", "/events", respond(202))
        core = init_core(config, transport=transport, token_store=MemoryTokenStore(), connection_manager=online)
        try:
            assert get_core() is core
            with pytest.raises(ConfigurationError):
                init_core(config, transport=transport)

            await core.start()
            await core.telemetry.track_screen_view("home")
            assert core.telemetry.queue.count() == 1
        finally:
            await shutdown_core()

        assert transport.calls_to("POST", "/events")
        assert transport.closed
        with pytest.raises(ConfigurationError):
            get_core()

    @pytest.mark.asyncio
    async def test_startup_keeps_old_undelivered_telemetry(self, config, transport, online, database):
        old = utcnow() - timedelta(days=config.telemetry_max_age_days + 1)
        TelemetryEventQueue(database).append(TelemetryEvent(event_type="old", session_id="s", occurred_at=old))

        core = init_core(config, transport=transport, token_store=MemoryTokenStore(), connection_manager=online)
        try:
            assert core.telemetry.queue.count() == 1
            assert core.cleanup_telemetry() == 1
            assert core.telemetry.queue.count() == 0
        finally:
            await shutdown_core(final_flush=False)

    @pytest.mark.asyncio
    async def test_shutdown_without_core_is_noop(self):
        await shutdown_core()

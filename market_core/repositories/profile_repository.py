# =============================================================================
# market_core/repositories/profile_repository.py
# Profile Statistics Computed From the Local Cache
# =============================================================================

from __future__ import annotations
import asyncio
from typing import Callable, List, Optional, Tuple

from market_core.api.listings_connector import ListingsConnector
from market_core.api.orders_connector import OrdersConnector
from market_core.api.reviews_connector import ReviewsConnector
from market_core.models import Listing, Order, ProfileStats, Review
from market_core.offline.strategies import ReadResult
from .base_repository import BaseRepository

ProfileSnapshot = Tuple[List[Listing], List[Order], List[Review]]


class ProfileRepository(BaseRepository):
    """
    Rating, order counts and seller summary for a profile screen.

    Stats are always computed from the local store; the background refresh
    pulls the user's listings, orders and received reviews so the next
    computation (and ``on_updated``) sees fresh numbers.
    """

    def __init__(
        self,
        listings: ListingsConnector,
        orders: OrdersConnector,
        reviews: ReviewsConnector,
        *args,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.listings = listings
        self.orders = orders
        self.reviews = reviews

    def compute_stats(self, user_id: str) -> ProfileStats:
        return ProfileStats(
            user_id=user_id,
            rating=self.database.average_rating(user_id),
            order_counts=self.database.order_counts_by_status(user_id),
            seller=self.database.seller_summary(user_id),
        )

    async def _fetch_snapshot(self, user_id: str) -> ProfileSnapshot:
        listings_page, bought, sold, received = await asyncio.gather(
            self.listings.search(seller_id=user_id, page_size=100),
            self.orders.list(buyer_id=user_id, page_size=100),
            self.orders.list(seller_id=user_id, page_size=100),
            self.reviews.for_user(user_id, limit=100),
        )
        orders = {order.id: order for order in bought + sold}
        return listings_page.items, list(orders.values()), received

    def _save_snapshot(self, snapshot: ProfileSnapshot) -> None:
        listings, orders, reviews = snapshot
        # Parents before children so reviews find their orders
        self.database.upsert_listings(listings)
        self.database.upsert_orders(orders)
        self.database.upsert_reviews(reviews)

    async def load_stats(
        self,
        user_id: str,
        on_updated: Optional[Callable[[ProfileStats], None]] = None,
        is_relevant: Optional[Callable[[], bool]] = None,
    ) -> ReadResult[ProfileStats]:
        """Cached stats now; recomputed stats via ``on_updated`` after the refresh."""

        def notify(_snapshot: ProfileSnapshot) -> None:
            if on_updated is not None:
                on_updated(self.compute_stats(user_id))

        return await self.cache_first.read(
            f"profile:{user_id}",
            lambda: self.compute_stats(user_id),
            lambda: self._fetch_snapshot(user_id),
            self._save_snapshot,
            on_updated=notify,
            is_relevant=is_relevant,
        )

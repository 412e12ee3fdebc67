# =============================================================================
# market_core/repositories/listings_repository.py
# Listings: Paginated Browsing, Detail, Creation and Price Suggestions
# =============================================================================

from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional

from market_core.api.listings_connector import ListingsConnector
from market_core.models import Listing, Page, PriceSuggestion
from market_core.offline.strategies import DataSource, ReadResult
from .base_repository import BaseRepository


class ListingsRepository(BaseRepository):
    """
    Listings browsing for the home/search screens.

    Remote pages are written through to the local store; offline (or after a
    failed fetch) the same page is rebuilt from cached active listings.
    """

    def __init__(self, connector: ListingsConnector, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.connector = connector

    def _cached_page(
        self, category_id: Optional[str], page: int, page_size: int, q: Optional[str] = None
    ) -> Page[Listing]:
        # One extra row tells us whether another page exists
        limit, offset = page_size + 1, (page - 1) * page_size
        if q:
            rows = self.database.search_listings(q, limit=limit, offset=offset)
        else:
            rows = self.database.active_listings(limit=limit, offset=offset, category_id=category_id)
        items = rows[:page_size]
        return Page(
            items=items,
            total=(page - 1) * page_size + len(items),
            page=page,
            page_size=page_size,
            has_next=len(rows) > page_size,
        )

    async def get_listings(
        self,
        q: Optional[str] = None,
        category_id: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
        **filters: Any,
    ) -> ReadResult[Page[Listing]]:
        """
        Browse listings.

        Args:
            q: Free-text query (local fallback matches title/description)
            category_id: Category filter
            page: 1-based page number
            page_size: Items per page
            **filters: brand_id, seller_id, min_price, max_price, near_lat,
                near_lon, radius_km (remote only)
        """

        def load_cached() -> Optional[Page[Listing]]:
            cached = self._cached_page(category_id, page, page_size, q=q)
            return cached if cached.items else None

        result = await self.gated.fetch(
            "listings",
            lambda: self.connector.search(
                q=q, category_id=category_id, page=page, page_size=page_size, **filters
            ),
            lambda fresh: self.database.upsert_listings(fresh.items),
            load_cached,
        )
        if result.source != DataSource.REMOTE:
            self.logger.info(f"Listings page {page} served from local store ({result.source.value})")
        return result

    async def watch_listings(
        self,
        category_id: Optional[str] = None,
        page_size: int = 20,
        on_updated: Optional[Callable[[Page[Listing]], None]] = None,
        is_relevant: Optional[Callable[[], bool]] = None,
    ) -> ReadResult[Page[Listing]]:
        """First page of listings from the cache, refreshed in the background."""
        return await self.cache_first.read(
            f"listings:{category_id or 'all'}",
            lambda: self._cached_page(category_id, 1, page_size),
            lambda: self.connector.search(category_id=category_id, page=1, page_size=page_size),
            lambda fresh: self.database.upsert_listings(fresh.items),
            on_updated=on_updated,
            is_relevant=is_relevant,
        )

    async def get_listing(self, listing_id: str) -> ReadResult[Listing]:
        return await self.gated.fetch(
            f"listing {listing_id}",
            lambda: self.connector.get(listing_id),
            self.database.upsert_listing,
            lambda: self.database.get_listing(listing_id),
        )

    async def create_listing(self, payload: Dict[str, Any]) -> Listing:
        with self.log_operation(f"Creating listing '{payload.get('title', '')}'"):
            listing = await self.connector.create(payload)
        self.write_through(self.database.upsert_listing, listing, f"listing {listing.id}")
        return listing

    async def suggest_price(
        self,
        category_id: str,
        brand_id: Optional[str] = None,
        condition: Optional[str] = None,
        msrp_cents: Optional[int] = None,
        months_since_release: Optional[int] = None,
        rounding_quantum: Optional[int] = None,
    ) -> Optional[PriceSuggestion]:
        """Remote only; None when the backend has no suggestion for this draft."""
        return await self.connector.suggest_price(
            category_id,
            brand_id=brand_id,
            condition=condition,
            msrp_cents=msrp_cents,
            months_since_release=months_since_release,
            rounding_quantum=rounding_quantum,
        )

    def search_local(self, query: str, limit: int = 50) -> List[Listing]:
        if not query or not query.strip():
            return []
        return self.database.search_listings(query, limit)

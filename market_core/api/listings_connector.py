"""
Listings and price-suggestion endpoints
"""
from typing import Any, Dict, Optional

from market_core.api.base_connector import BaseConnector
from market_core.errors import ValidationError
from market_core.models import Listing, Page, PriceSuggestion


class ListingsConnector(BaseConnector):
    """/listings and /price-suggestions"""

    resource_name = "listings"

    async def search(
        self,
        q: Optional[str] = None,
        category_id: Optional[str] = None,
        brand_id: Optional[str] = None,
        seller_id: Optional[str] = None,
        min_price: Optional[int] = None,
        max_price: Optional[int] = None,
        near_lat: Optional[float] = None,
        near_lon: Optional[float] = None,
        radius_km: Optional[float] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Page[Listing]:
        """GET /listings with filters and pagination."""
        params: Dict[str, Any] = {
            "page": page,
            "page_size": page_size,
            "q": q or None,
            "category_id": category_id,
            "brand_id": brand_id,
            "seller_id": seller_id,
            "min_price": min_price,
            "max_price": max_price,
            "radius_km": radius_km,
        }
        if near_lat is not None and near_lon is not None:
            params["near_lat"] = near_lat
            params["near_lon"] = near_lon

        response = await self._make_request("/listings", params=params)
        data = response.data
        items = self.parse_list(data, Listing.from_json)
        if isinstance(data, dict):
            total = int(data.get("total", len(items)))
            return Page(
                items=items,
                total=total,
                page=int(data.get("page", page)),
                page_size=int(data.get("page_size", page_size)),
                has_next=bool(data.get("has_next", page * page_size < total)),
            )
        return Page(items=items, total=len(items), page=page, page_size=page_size)

    async def get(self, listing_id: str) -> Listing:
        response = await self._make_request(f"/listings/{listing_id}")
        return Listing.from_json(self.expect_object(response))

    async def create(self, payload: Dict[str, Any]) -> Listing:
        response = await self._make_request("/listings", method="POST", data=payload, use_cache=False)
        return Listing.from_json(self.expect_object(response))

    async def suggest_price(
        self,
        category_id: str,
        brand_id: Optional[str] = None,
        condition: Optional[str] = None,
        msrp_cents: Optional[int] = None,
        months_since_release: Optional[int] = None,
        rounding_quantum: Optional[int] = None,
    ) -> Optional[PriceSuggestion]:
        """
        GET /price-suggestions/suggest

        Returns None when the backend has too little data (404).
        """
        params = {
            "category_id": category_id,
            "brand_id": brand_id,
            "condition": condition,
            "msrp_cents": msrp_cents,
            "months_since_release": months_since_release,
            "rounding_quantum": rounding_quantum,
        }
        try:
            response = await self._make_request("/price-suggestions/suggest", params=params, allow_stale=True)
        except ValidationError as e:
            if e.status_code == 404:
                return None
            raise
        if not isinstance(response.data, dict):
            return None
        return PriceSuggestion.from_json(response.data)

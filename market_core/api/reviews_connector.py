"""
Review endpoints
"""
from typing import List, Optional

from market_core.api.base_connector import BaseConnector
from market_core.errors import ValidationError
from market_core.models import Review


class ReviewsConnector(BaseConnector):
    """/reviews"""

    resource_name = "reviews"

    async def for_user(self, user_id: str, limit: int = 20) -> List[Review]:
        response = await self._make_request(f"/reviews/users/{user_id}", params={"limit": limit})
        return self.parse_list(response.data, Review.from_json)

    async def for_order(self, order_id: str) -> Optional[Review]:
        """The review left on an order, or None (404) when there is none yet."""
        try:
            response = await self._make_request(f"/reviews/orders/{order_id}")
        except ValidationError as e:
            if e.status_code == 404:
                return None
            raise
        if not isinstance(response.data, dict):
            return None
        return Review.from_json(response.data)

    async def create(self, order_id: str, ratee_id: str, rating: int, comment: Optional[str] = None) -> Review:
        payload = {"order_id": order_id, "ratee_id": ratee_id, "rating": rating}
        if comment:
            payload["comment"] = comment
        response = await self._make_request("/reviews", method="POST", data=payload, use_cache=False)
        return Review.from_json(self.expect_object(response))

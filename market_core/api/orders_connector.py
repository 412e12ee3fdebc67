"""
Order endpoints
"""
from typing import Any, Dict, List, Optional

from market_core.api.base_connector import BaseConnector
from market_core.models import Order, OrderStatus


class OrdersConnector(BaseConnector):
    """/orders and the per-order transition endpoints"""

    resource_name = "orders"

    async def list(
        self,
        buyer_id: Optional[str] = None,
        seller_id: Optional[str] = None,
        status: Optional[OrderStatus] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> List[Order]:
        params = {
            "buyer_id": buyer_id,
            "seller_id": seller_id,
            "status": OrderStatus(status).value if status else None,
            "page": page,
            "page_size": page_size,
        }
        response = await self._make_request("/orders", params=params)
        return self.parse_list(response.data, Order.from_json)

    async def get(self, order_id: str) -> Order:
        response = await self._make_request(f"/orders/{order_id}")
        return Order.from_json(self.expect_object(response))

    async def create(self, listing_id: str, total_cents: int, currency: str = "COP") -> Order:
        response = await self._make_request(
            "/orders",
            method="POST",
            data={"listing_id": listing_id, "total_cents": total_cents, "currency": currency},
            use_cache=False,
        )
        return Order.from_json(self.expect_object(response))

    async def transition(self, order_id: str, action: str, data: Optional[Dict[str, Any]] = None) -> Order:
        """POST /orders/{id}/{action} for pay, ship, complete and cancel."""
        response = await self._make_request(
            f"/orders/{order_id}/{action}",
            method="POST",
            data=data or None,
            use_cache=False,
        )
        return Order.from_json(self.expect_object(response))

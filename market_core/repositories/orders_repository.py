# =============================================================================
# market_core/repositories/orders_repository.py
# Orders: Offline-First Reads and Remote-First Transitions
# =============================================================================

from __future__ import annotations
import asyncio
from typing import Callable, Dict, List, Optional

from market_core.api.orders_connector import OrdersConnector
from market_core.errors import ValidationError
from market_core.models import Order, OrderDetails, OrderStatus
from market_core.offline.strategies import ReadResult
from .base_repository import BaseRepository


class OrdersRepository(BaseRepository):
    """Orders where the current user is buyer and/or seller."""

    def __init__(self, connector: OrdersConnector, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.connector = connector

    # ===== READS =====

    async def _fetch_orders(
        self,
        user_id: str,
        role: Optional[str],
        status: Optional[OrderStatus],
    ) -> List[Order]:
        if role == "buyer":
            return await self.connector.list(buyer_id=user_id, status=status)
        if role == "seller":
            return await self.connector.list(seller_id=user_id, status=status)

        bought, sold = await asyncio.gather(
            self.connector.list(buyer_id=user_id, status=status),
            self.connector.list(seller_id=user_id, status=status),
        )
        merged: Dict[str, Order] = {order.id: order for order in bought}
        merged.update({order.id: order for order in sold})
        return sorted(merged.values(), key=lambda o: o.created_at, reverse=True)

    async def get_orders(
        self,
        user_id: str,
        role: Optional[str] = None,
        status: Optional[OrderStatus] = None,
    ) -> ReadResult[List[Order]]:
        """Connectivity-gated list of the user's orders."""
        return await self.gated.fetch(
            f"orders for {user_id}",
            lambda: self._fetch_orders(user_id, role, status),
            self.database.upsert_orders,
            lambda: self.database.orders_for_user(user_id, role, status),
        )

    async def watch_orders(
        self,
        user_id: str,
        role: Optional[str] = None,
        status: Optional[OrderStatus] = None,
        on_updated: Optional[Callable[[List[Order]], None]] = None,
        is_relevant: Optional[Callable[[], bool]] = None,
    ) -> ReadResult[List[Order]]:
        """Cached orders now, fresh ones via ``on_updated`` once fetched."""
        return await self.cache_first.read(
            f"orders:{user_id}:{role or 'all'}",
            lambda: self.database.orders_for_user(user_id, role, status),
            lambda: self._fetch_orders(user_id, role, status),
            self.database.upsert_orders,
            on_updated=on_updated,
            is_relevant=is_relevant,
        )

    async def get_order(self, order_id: str) -> ReadResult[Order]:
        return await self.gated.fetch(
            f"order {order_id}",
            lambda: self.connector.get(order_id),
            self.database.upsert_order,
            lambda: self.database.get_order(order_id),
        )

    def order_details(self, order_id: str) -> Optional[OrderDetails]:
        return self.database.order_with_details(order_id)

    def order_counts(self, user_id: str) -> Dict[OrderStatus, int]:
        return self.database.order_counts_by_status(user_id)

    # ===== WRITES =====

    async def create_order(self, listing_id: str, total_cents: int, currency: str = "COP") -> Order:
        with self.log_operation(f"Creating order for listing {listing_id}"):
            order = await self.connector.create(listing_id, total_cents, currency)
        self.write_through(self.database.upsert_order, order, f"order {order.id}")
        return order

    async def pay_order(self, order_id: str) -> Order:
        return await self._transition(order_id, "pay")

    async def ship_order(self, order_id: str, tracking_number: Optional[str] = None) -> Order:
        data = {"tracking_number": tracking_number} if tracking_number else None
        return await self._transition(order_id, "ship", data)

    async def complete_order(self, order_id: str) -> Order:
        return await self._transition(order_id, "complete")

    async def cancel_order(self, order_id: str, reason: Optional[str] = None) -> Order:
        data = {"reason": reason} if reason else None
        return await self._transition(order_id, "cancel", data)

    async def _transition(self, order_id: str, action: str, data: Optional[dict] = None) -> Order:
        cached = self.database.get_order(order_id)
        if cached is not None and cached.is_final:
            raise ValidationError(
                f"Order {order_id} is already {cached.status.value}",
                status_code=409,
                field_errors={"status": f"cannot {action} a {cached.status.value} order"},
            )

        with self.log_operation(f"Order {order_id}: {action}"):
            order = await self.connector.transition(order_id, action, data)
        self.write_through(self.database.upsert_order, order, f"order {order_id}")
        return order

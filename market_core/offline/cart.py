# =============================================================================
# market_core/offline/cart.py
# Local-Only Shopping Cart
# =============================================================================
"""
CartStore - shopping cart persisted in the local database.

The cart never talks to the backend: it survives restarts and logout, and
is turned into orders one listing at a time by the checkout screen.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
import logging

from market_core.models import Listing, format_timestamp, parse_timestamp, utcnow
from market_core.offline.event_bus import CartChanged, EventBus
from market_core.offline.local_database import LocalDatabase

logger = logging.getLogger(__name__)


@dataclass
class CartItem:
    listing_id: str
    title: str
    price_cents: int
    quantity: int = 1
    currency: str = "COP"
    image_url: Optional[str] = None
    seller_id: Optional[str] = None
    added_at: datetime = field(default_factory=utcnow)

    @property
    def subtotal_cents(self) -> int:
        return self.price_cents * self.quantity

    @classmethod
    def from_listing(cls, listing: Listing, quantity: int = 1) -> CartItem:
        return cls(
            listing_id=listing.id,
            title=listing.title,
            price_cents=listing.price_cents,
            quantity=quantity,
            currency=listing.currency,
            seller_id=listing.seller_id,
        )

    @classmethod
    def from_row(cls, row) -> CartItem:
        return cls(
            listing_id=row["listing_id"],
            title=row["title"],
            price_cents=row["price_cents"],
            quantity=row["quantity"],
            currency=row["currency"],
            image_url=row["image_url"],
            seller_id=row["seller_id"],
            added_at=parse_timestamp(row["added_at"]),
        )


class CartStore:
    """Cart items keyed by listing id; quantities below 1 remove the item."""

    def __init__(self, database: LocalDatabase, bus: Optional[EventBus] = None):
        self.database = database
        self.bus = bus

    def items(self) -> List[CartItem]:
        rows = self.database.query("SELECT * FROM cart_items ORDER BY added_at")
        return [CartItem.from_row(r) for r in rows]

    def get_item(self, listing_id: str) -> Optional[CartItem]:
        row = self.database.query_one("SELECT * FROM cart_items WHERE listing_id = ?", [listing_id])
        return CartItem.from_row(row) if row else None

    def add_item(self, item: CartItem) -> CartItem:
        """Add ``item``, or increase the quantity if the listing is already in the cart."""
        if item.quantity < 1:
            raise ValueError("Quantity must be at least 1")
        with self.database.transaction() as conn:
            conn.execute(
                """
                INSERT INTO cart_items
                    (listing_id, title, price_cents, currency, image_url, seller_id, quantity, added_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(listing_id) DO UPDATE SET
                    quantity = cart_items.quantity + excluded.quantity,
                    title = excluded.title,
                    price_cents = excluded.price_cents
                """,
                [
                    item.listing_id,
                    item.title,
                    item.price_cents,
                    item.currency,
                    item.image_url,
                    item.seller_id,
                    item.quantity,
                    format_timestamp(item.added_at),
                ],
            )
        self._publish()
        return self.get_item(item.listing_id)

    def remove_item(self, listing_id: str) -> bool:
        removed = self.database.execute("DELETE FROM cart_items WHERE listing_id = ?", [listing_id]) > 0
        if removed:
            self._publish()
        return removed

    def update_quantity(self, listing_id: str, quantity: int) -> Optional[CartItem]:
        if quantity <= 0:
            self.remove_item(listing_id)
            return None
        updated = self.database.execute(
            "UPDATE cart_items SET quantity = ? WHERE listing_id = ?",
            [quantity, listing_id],
        )
        if not updated:
            return None
        self._publish()
        return self.get_item(listing_id)

    def clear(self) -> None:
        self.database.execute("DELETE FROM cart_items")
        self._publish()

    def total_items(self) -> int:
        row = self.database.query_one("SELECT COALESCE(SUM(quantity), 0) AS n FROM cart_items")
        return row["n"]

    def total_price_cents(self) -> int:
        row = self.database.query_one("SELECT COALESCE(SUM(price_cents * quantity), 0) AS total FROM cart_items")
        return row["total"]

    def _publish(self) -> None:
        if self.bus is not None:
            self.bus.publish(CartChanged(item_count=self.total_items(), total_cents=self.total_price_cents()))

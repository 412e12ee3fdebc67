# =============================================================================
# market_core/models/entities.py
# Marketplace Entities and Their (De)serialization
# =============================================================================
"""
Typed records for the four cached backend entities plus the read models
built on top of them (joined rows, aggregates, price suggestions, pages).

Every entity converts explicitly between three shapes:
- backend JSON (snake_case, ``from_json`` / ``to_json``)
- local database rows (``from_row`` / ``to_row``)
- the dataclass itself
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generic, List, Mapping, Optional, TypeVar

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp (accepting a trailing 'Z') into an aware datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif value is None or value == "":
        return utcnow()
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="microseconds")


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _opt_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _opt_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def _opt_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


class OrderStatus(str, Enum):
    """Closed set of order states."""
    CREATED = "created"
    PAID = "paid"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_ORDER_STATUSES

    @property
    def is_final(self) -> bool:
        return self in FINAL_ORDER_STATUSES


ACTIVE_ORDER_STATUSES = frozenset({OrderStatus.CREATED, OrderStatus.PAID, OrderStatus.SHIPPED})
FINAL_ORDER_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


# =============================================================================
# CACHED ENTITIES
# =============================================================================

@dataclass
class Account:
    id: str
    name: str
    email: Optional[str] = None
    campus: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    last_synced_at: Optional[datetime] = None

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> Account:
        return cls(
            id=str(_pick(data, "id", "uuid")),
            name=str(data.get("name") or ""),
            email=_opt_str(data.get("email")),
            campus=_opt_str(data.get("campus")),
            created_at=parse_timestamp(data.get("created_at")),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "campus": self.campus,
            "created_at": format_timestamp(self.created_at),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Account:
        return cls(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            campus=row["campus"],
            created_at=parse_timestamp(row["created_at"]),
            last_synced_at=parse_timestamp(row["last_synced_at"]),
        )

    def to_row(self) -> Dict[str, Any]:
        return self.to_json()


@dataclass
class Listing:
    id: str
    seller_id: str
    title: str
    category_id: str
    price_cents: int
    description: Optional[str] = None
    brand_id: Optional[str] = None
    currency: str = "COP"
    condition: Optional[str] = None
    quantity: int = 1
    is_active: bool = True
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    price_suggestion_used: bool = False
    quick_view_enabled: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    last_synced_at: Optional[datetime] = None

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> Listing:
        return cls(
            id=str(_pick(data, "id", "uuid")),
            seller_id=str(_pick(data, "seller_id", "sellerId")),
            title=str(data["title"]),
            description=_opt_str(data.get("description")),
            category_id=str(_pick(data, "category_id", "categoryId", default="")),
            brand_id=_opt_str(_pick(data, "brand_id", "brandId")),
            price_cents=int(_pick(data, "price_cents", "priceCents", default=0)),
            currency=data.get("currency") or "COP",
            condition=_opt_str(data.get("condition")),
            quantity=int(data.get("quantity") or 1),
            is_active=bool(_pick(data, "is_active", "isActive", default=True)),
            latitude=_opt_float(data.get("latitude")),
            longitude=_opt_float(data.get("longitude")),
            price_suggestion_used=bool(_pick(data, "price_suggestion_used", default=False)),
            quick_view_enabled=bool(_pick(data, "quick_view_enabled", default=True)),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "title": self.title,
            "description": self.description,
            "category_id": self.category_id,
            "brand_id": self.brand_id,
            "price_cents": self.price_cents,
            "currency": self.currency,
            "condition": self.condition,
            "quantity": self.quantity,
            "is_active": self.is_active,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "price_suggestion_used": self.price_suggestion_used,
            "quick_view_enabled": self.quick_view_enabled,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Listing:
        return cls(
            id=row["id"],
            seller_id=row["seller_id"],
            title=row["title"],
            description=row["description"],
            category_id=row["category_id"],
            brand_id=row["brand_id"],
            price_cents=row["price_cents"],
            currency=row["currency"],
            condition=row["condition"],
            quantity=row["quantity"],
            is_active=bool(row["is_active"]),
            latitude=row["latitude"],
            longitude=row["longitude"],
            price_suggestion_used=bool(row["price_suggestion_used"]),
            quick_view_enabled=bool(row["quick_view_enabled"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
            last_synced_at=parse_timestamp(row["last_synced_at"]),
        )

    def to_row(self) -> Dict[str, Any]:
        row = self.to_json()
        row["is_active"] = int(self.is_active)
        row["price_suggestion_used"] = int(self.price_suggestion_used)
        row["quick_view_enabled"] = int(self.quick_view_enabled)
        return row


@dataclass
class Order:
    id: str
    buyer_id: str
    seller_id: str
    listing_id: str
    total_cents: int
    currency: str = "COP"
    status: OrderStatus = OrderStatus.CREATED
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    last_synced_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    @property
    def is_final(self) -> bool:
        return self.status.is_final

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> Order:
        return cls(
            id=str(_pick(data, "id", "uuid")),
            buyer_id=str(_pick(data, "buyer_id", "buyerId")),
            seller_id=str(_pick(data, "seller_id", "sellerId")),
            listing_id=str(_pick(data, "listing_id", "listingId")),
            total_cents=int(_pick(data, "total_cents", "totalCents", default=0)),
            currency=data.get("currency") or "COP",
            status=OrderStatus(data.get("status") or OrderStatus.CREATED.value),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "buyer_id": self.buyer_id,
            "seller_id": self.seller_id,
            "listing_id": self.listing_id,
            "total_cents": self.total_cents,
            "currency": self.currency,
            "status": self.status.value,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Order:
        return cls(
            id=row["id"],
            buyer_id=row["buyer_id"],
            seller_id=row["seller_id"],
            listing_id=row["listing_id"],
            total_cents=row["total_cents"],
            currency=row["currency"],
            status=OrderStatus(row["status"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
            last_synced_at=parse_timestamp(row["last_synced_at"]),
        )

    def to_row(self) -> Dict[str, Any]:
        return self.to_json()


@dataclass
class Review:
    id: str
    order_id: str
    rater_id: str
    ratee_id: str
    rating: int
    comment: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    last_synced_at: Optional[datetime] = None

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> Review:
        return cls(
            id=str(_pick(data, "id", "uuid")),
            order_id=str(_pick(data, "order_id", "orderId")),
            rater_id=str(_pick(data, "rater_id", "raterId")),
            ratee_id=str(_pick(data, "ratee_id", "rateeId")),
            rating=int(data["rating"]),
            comment=_opt_str(data.get("comment")),
            created_at=parse_timestamp(data.get("created_at")),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "rater_id": self.rater_id,
            "ratee_id": self.ratee_id,
            "rating": self.rating,
            "comment": self.comment,
            "created_at": format_timestamp(self.created_at),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Review:
        return cls(
            id=row["id"],
            order_id=row["order_id"],
            rater_id=row["rater_id"],
            ratee_id=row["ratee_id"],
            rating=row["rating"],
            comment=row["comment"],
            created_at=parse_timestamp(row["created_at"]),
            last_synced_at=parse_timestamp(row["last_synced_at"]),
        )

    def to_row(self) -> Dict[str, Any]:
        return self.to_json()


# =============================================================================
# JOINED READ MODELS
# =============================================================================

@dataclass
class ListingWithSeller:
    listing: Listing
    seller_name: str
    seller_email: Optional[str]


@dataclass
class OrderDetails:
    order: Order
    listing_title: str
    listing_price_cents: int
    buyer_name: str
    buyer_email: Optional[str]
    seller_name: str
    seller_email: Optional[str]


@dataclass
class ReviewDetails:
    review: Review
    rater_name: str
    ratee_name: str
    order_total_cents: int


# =============================================================================
# AGGREGATES
# =============================================================================

@dataclass
class RatingSummary:
    account_id: str
    average: Optional[float]
    count: int


@dataclass
class SellerSummary:
    seller_id: str
    total_listings: int = 0
    total_orders: int = 0
    completed_revenue_cents: int = 0
    avg_completed_order_cents: Optional[float] = None


@dataclass
class ProfileStats:
    """Everything a profile screen shows, computed from the local cache."""
    user_id: str
    rating: RatingSummary
    order_counts: Dict[OrderStatus, int]
    seller: SellerSummary

    @property
    def active_orders(self) -> int:
        return sum(n for status, n in self.order_counts.items() if status.is_active)


# =============================================================================
# REMOTE-ONLY PAYLOADS
# =============================================================================

@dataclass
class PriceSuggestion:
    """
    Suggested price for a listing draft.

    ``p25``/``p50``/``p75``/``n``/``source`` are optional market metadata the
    backend only sends when it has enough comparable listings.
    """
    suggested_price_cents: int
    algorithm: str
    id: Optional[str] = None
    listing_id: Optional[str] = None
    created_at: Optional[datetime] = None
    p25: Optional[int] = None
    p50: Optional[int] = None
    p75: Optional[int] = None
    n: Optional[int] = None
    source: Optional[str] = None

    @property
    def has_market_data(self) -> bool:
        return self.p25 is not None and self.p75 is not None

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> PriceSuggestion:
        return cls(
            suggested_price_cents=int(data["suggested_price_cents"]),
            algorithm=str(data.get("algorithm") or "unknown"),
            id=_opt_str(data.get("id")),
            listing_id=_opt_str(data.get("listing_id")),
            created_at=parse_timestamp(data["created_at"]) if data.get("created_at") else None,
            p25=_opt_int(data.get("p25")),
            p50=_opt_int(data.get("p50")),
            p75=_opt_int(data.get("p75")),
            n=_opt_int(data.get("n")),
            source=_opt_str(data.get("source")),
        )


@dataclass
class Page(Generic[T]):
    items: List[T]
    total: int
    page: int
    page_size: int
    has_next: bool = False

    @property
    def has_previous(self) -> bool:
        return self.page > 1


@dataclass
class ContactMatch:
    user_id: str
    name: str
    email: Optional[str] = None

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> ContactMatch:
        return cls(
            user_id=str(_pick(data, "user_id", "userId")),
            name=str(data.get("name") or ""),
            email=_opt_str(data.get("email")),
        )

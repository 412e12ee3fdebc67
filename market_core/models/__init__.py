# =============================================================================
# market_core/models/__init__.py
# Typed Records for Cached Entities and API Payloads
# =============================================================================

from .entities import (
    Account,
    Listing,
    Order,
    Review,
    OrderStatus,
    ACTIVE_ORDER_STATUSES,
    FINAL_ORDER_STATUSES,
    ListingWithSeller,
    OrderDetails,
    ReviewDetails,
    RatingSummary,
    SellerSummary,
    ProfileStats,
    PriceSuggestion,
    Page,
    ContactMatch,
    utcnow,
    parse_timestamp,
    format_timestamp,
)
from .telemetry import TelemetryEvent

__all__ = [
    "Account",
    "Listing",
    "Order",
    "Review",
    "OrderStatus",
    "ACTIVE_ORDER_STATUSES",
    "FINAL_ORDER_STATUSES",
    "ListingWithSeller",
    "OrderDetails",
    "ReviewDetails",
    "RatingSummary",
    "SellerSummary",
    "ProfileStats",
    "PriceSuggestion",
    "Page",
    "ContactMatch",
    "TelemetryEvent",
    "utcnow",
    "parse_timestamp",
    "format_timestamp",
]

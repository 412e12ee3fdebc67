# =============================================================================
# tests/unit/test_models.py
# Unit Tests for Entity (De)serialization
# =============================================================================

from datetime import timezone

from market_core.models import (
    ContactMatch,
    Listing,
    Order,
    OrderStatus,
    PriceSuggestion,
    parse_timestamp,
)


class TestEntities:

    def test_order_from_backend_json(self):
        order = Order.from_json({
            "id": "O1", "buyer_id": "U2", "seller_id": "U1", "listing_id": "L1",
            "total_cents": 1000, "status": "shipped", "created_at": "2024-03-01T12:00:00Z",
        })

        assert order.status == OrderStatus.SHIPPED
        assert order.is_active
        assert order.created_at.tzinfo == timezone.utc

    def test_final_statuses(self):
        assert OrderStatus.COMPLETED.is_final
        assert OrderStatus.CANCELLED.is_final
        assert not OrderStatus.PAID.is_final

    def test_listing_booleans_are_stored_as_integers(self):
        listing = Listing(id="L1", seller_id="U1", title="A", category_id="c", price_cents=1, is_active=False)
        assert listing.to_row()["is_active"] == 0

    def test_parse_timestamp_assumes_utc(self):
        assert parse_timestamp("2024-03-01T12:00:00").tzinfo == timezone.utc


class TestPriceSuggestion:

    def test_market_metadata_is_optional(self):
        bare = PriceSuggestion.from_json({"suggested_price_cents": 50000, "algorithm": "msrp_depreciation"})

        assert bare.p25 is None
        assert not bare.has_market_data

    def test_market_metadata(self):
        full = PriceSuggestion.from_json({
            "suggested_price_cents": 50000,
            "algorithm": "market_median",
            "p25": 40000, "p50": 50000, "p75": 60000, "n": 12, "source": "category",
        })

        assert full.has_market_data
        assert full.n == 12


def test_contact_match_accepts_camel_case():
    match = ContactMatch.from_json({"userId": "U7", "name": "Ana"})
    assert match.user_id == "U7"

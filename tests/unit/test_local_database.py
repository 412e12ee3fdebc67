# =============================================================================
# tests/unit/test_local_database.py
# Unit Tests for the Local SQLite Store
# =============================================================================

import logging

import pandas as pd
import pytest

from market_core.errors import StorageError
from market_core.models import Account, Listing, Order, OrderStatus, Review


class TestUpserts:
    """Replace-on-conflict semantics"""

    def test_second_upsert_replaces_row(self, database, seller):
        database.upsert_account(seller)
        database.upsert_listing(Listing(id="L1", seller_id="U1", title="A", category_id="c", price_cents=100))
        database.upsert_listing(Listing(id="L1", seller_id="U1", title="B", category_id="c", price_cents=100))

        rows = database.query("SELECT id, title FROM listings WHERE id = 'L1'")
        assert len(rows) == 1
        assert rows[0]["title"] == "B"

    def test_replace_does_not_merge_fields(self, database, seller):
        database.upsert_account(seller)
        database.upsert_listing(Listing(
            id="L1", seller_id="U1", title="A", category_id="c", price_cents=100, description="old text",
        ))
        database.upsert_listing(Listing(id="L1", seller_id="U1", title="A", category_id="c", price_cents=100))

        assert database.get_listing("L1").description is None

    def test_upsert_stamps_last_synced_at(self, database, seller):
        database.upsert_account(seller)
        cached = database.get_account("U1")
        assert cached.last_synced_at is not None

    def test_replacing_parent_keeps_children(self, populated_database, seller):
        populated_database.upsert_account(Account(id="U1", name="Renamed", email=seller.email))

        assert populated_database.get_account("U1").name == "Renamed"
        assert populated_database.get_listing("L1") is not None
        assert populated_database.get_order("O1") is not None

    def test_missing_parents_become_placeholders(self, database):
        database.upsert_order(Order(id="O9", buyer_id="B9", seller_id="S9", listing_id="L9", total_cents=10))

        assert database.get_order("O9") is not None
        assert database.get_account("B9") is not None
        # Placeholder listings never show up as real listings
        assert database.get_listing("L9") is None

    def test_foreign_keys_are_enforced(self, database):
        listing = Listing(id="L1", seller_id="nobody", title="A", category_id="c", price_cents=1)
        with pytest.raises(StorageError):
            database.upsert_listing(listing, create_missing_parents=False)

    def test_rating_outside_range_is_rejected(self, populated_database):
        bad = Review(id="R2", order_id="O1", rater_id="U2", ratee_id="U1", rating=6)
        with pytest.raises(StorageError):
            populated_database.upsert_review(bad)


class TestReviewUniqueness:

    def test_second_review_for_order_replaces_first(self, populated_database):
        populated_database.upsert_review(Review(id="R2", order_id="O1", rater_id="U2", ratee_id="U1", rating=2))

        rows = populated_database.query("SELECT id, rating FROM reviews WHERE order_id = 'O1'")
        assert len(rows) == 1
        assert rows[0]["id"] == "R2"
        assert rows[0]["rating"] == 2

    def test_bulk_upsert_skips_reviews_for_unknown_orders(self, populated_database):
        written = populated_database.upsert_reviews([
            Review(id="R3", order_id="missing", rater_id="U2", ratee_id="U1", rating=4),
        ])
        assert written == 0
        assert populated_database.get_review("R3") is None

    def test_bulk_upsert_warns_with_skipped_count(self, populated_database, caplog):
        with caplog.at_level(logging.WARNING, logger="market_core.offline.local_database"):
            populated_database.upsert_reviews([
                Review(id="R3", order_id="missing", rater_id="U2", ratee_id="U1", rating=4),
                Review(id="R4", order_id="gone", rater_id="U2", ratee_id="U1", rating=2),
            ])
        assert "Skipped 2 review(s)" in caplog.text
        assert "R3" in caplog.text and "R4" in caplog.text


class TestCascadeDelete:

    def test_deleting_account_removes_dependent_rows(self, populated_database):
        assert populated_database.delete_account("U1") is True

        assert populated_database.listings_by_seller("U1") == []
        assert populated_database.get_order("O1") is None
        assert populated_database.get_review("R1") is None
        # The buyer account itself survives
        assert populated_database.get_account("U2") is not None

    def test_deleting_order_removes_its_review(self, populated_database):
        populated_database.delete_order("O1")
        assert populated_database.review_for_order("O1") is None

    def test_deleting_review_keeps_order(self, populated_database):
        assert populated_database.delete_review("R1") is True
        assert populated_database.delete_review("R1") is False
        assert populated_database.get_order("O1") is not None


class TestLookups:

    def test_orders_for_user_by_role(self, populated_database):
        assert [o.id for o in populated_database.orders_by_buyer("U2")] == ["O1"]
        assert [o.id for o in populated_database.orders_by_seller("U1")] == ["O1"]
        assert populated_database.orders_by_buyer("U1") == []
        assert [o.id for o in populated_database.orders_for_user("U1")] == ["O1"]

    def test_orders_by_status(self, populated_database):
        assert len(populated_database.orders_by_status(OrderStatus.CREATED)) == 1
        assert populated_database.orders_by_status(OrderStatus.PAID) == []

    def test_search_listings_matches_title_case_insensitively(self, populated_database):
        assert [l.id for l in populated_database.search_listings("calculus")] == ["L1"]
        assert populated_database.search_listings("bicycle") == []

    def test_active_listings_filters_by_category(self, populated_database):
        assert len(populated_database.active_listings(category_id="books")) == 1
        assert populated_database.active_listings(category_id="bikes") == []

    def test_get_account_by_email(self, populated_database):
        assert populated_database.get_account_by_email("bruno@uni.edu").id == "U2"


class TestJoinedReads:

    def test_order_with_details(self, populated_database):
        details = populated_database.order_with_details("O1")

        assert details.listing_title == "Calculus textbook"
        assert details.buyer_name == "Bruno Buyer"
        assert details.seller_email == "sofia@uni.edu"

    def test_listing_with_seller(self, populated_database):
        joined = populated_database.listing_with_seller("L1")
        assert joined.seller_name == "Sofia Seller"

    def test_review_with_details(self, populated_database):
        details = populated_database.review_with_details("R1")
        assert details.rater_name == "Bruno Buyer"
        assert details.order_total_cents == 45000


class TestAggregates:

    def test_average_rating(self, populated_database):
        populated_database.upsert_order(Order(id="O2", buyer_id="U2", seller_id="U1", listing_id="L1", total_cents=1))
        populated_database.upsert_review(Review(id="R2", order_id="O2", rater_id="U2", ratee_id="U1", rating=3))

        summary = populated_database.average_rating("U1")
        assert summary.count == 2
        assert summary.average == pytest.approx(4.0)

    def test_average_rating_without_reviews(self, populated_database):
        summary = populated_database.average_rating("U2")
        assert summary.count == 0
        assert summary.average is None

    def test_order_counts_include_every_status(self, populated_database):
        counts = populated_database.order_counts_by_status("U1")

        assert set(counts) == set(OrderStatus)
        assert counts[OrderStatus.CREATED] == 1
        assert counts[OrderStatus.COMPLETED] == 0

    def test_seller_summary(self, populated_database):
        populated_database.upsert_order(Order(
            id="O2", buyer_id="U2", seller_id="U1", listing_id="L1", total_cents=30000,
            status=OrderStatus.COMPLETED,
        ))
        populated_database.upsert_order(Order(
            id="O3", buyer_id="U2", seller_id="U1", listing_id="L1", total_cents=10000,
            status=OrderStatus.COMPLETED,
        ))

        summary = populated_database.seller_summary("U1")
        assert summary.total_listings == 1
        assert summary.total_orders == 3
        assert summary.completed_revenue_cents == 40000
        assert summary.avg_completed_order_cents == pytest.approx(20000)

    def test_seller_summary_counts_orders_on_uncached_listings(self, database, seller):
        database.upsert_account(seller)
        database.upsert_order(Order(
            id="O9", buyer_id="U2", seller_id="U1", listing_id="L9", total_cents=50000,
            status=OrderStatus.COMPLETED,
        ))

        summary = database.seller_summary("U1")
        assert summary.total_listings == 0
        assert summary.total_orders == 1
        assert summary.completed_revenue_cents == 50000
        assert summary.avg_completed_order_cents == pytest.approx(50000)


class TestSettingsAndDiagnostics:

    def test_settings_round_trip(self, database):
        database.set_setting("current_user_id", "U1")
        assert database.get_setting("current_user_id") == "U1"

        database.delete_setting("current_user_id")
        assert database.get_setting("current_user_id", "none") == "none"

    def test_counts_cover_every_table(self, populated_database):
        counts = populated_database.counts()

        assert counts["accounts"] == 2
        assert counts["reviews"] == 1
        assert "telemetry_events" in counts
        assert "cart_items" in counts

    def test_clear_all_empties_domain_tables(self, populated_database):
        populated_database.set_setting("theme", "dark")
        populated_database.clear_all()

        counts = populated_database.counts()
        assert counts["accounts"] == counts["listings"] == counts["orders"] == counts["reviews"] == 0
        assert populated_database.get_setting("theme") == "dark"

    def test_to_dataframe(self, populated_database):
        df = populated_database.to_dataframe("orders", where="status = ?", params=["created"])

        assert isinstance(df, pd.DataFrame)
        assert list(df["id"]) == ["O1"]

    def test_to_dataframe_rejects_unknown_table(self, database):
        with pytest.raises(StorageError):
            database.to_dataframe("sqlite_master")

# =============================================================================
# market_core/offline/local_database.py
# Local SQLite Database Mirroring the Marketplace Backend
# =============================================================================
"""
LocalDatabase - SQLite storage that mirrors the backend's core entities.

Features:
- Automatic schema creation (accounts, listings, orders, reviews plus the
  HTTP response cache, telemetry queue and cart tables)
- Foreign keys with cascade deletes enforced by SQLite itself
- Replace-on-conflict upserts stamped with ``last_synced_at``
- Joined reads and aggregate queries for profile/order screens
- DataFrame export (pandas) for diagnostics
"""

from __future__ import annotations
import json
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence
import logging

import pandas as pd
from pandas.io.sql import DatabaseError as PandasDatabaseError

from market_core.errors import StorageError
from market_core.models import (
    Account,
    Listing,
    ListingWithSeller,
    Order,
    OrderDetails,
    OrderStatus,
    RatingSummary,
    Review,
    ReviewDetails,
    SellerSummary,
    format_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)


# Tables cleared on logout, children first
DOMAIN_TABLES = ("reviews", "orders", "listings", "accounts")


class LocalDatabase:
    """
    Local SQLite database for offline reads.

    Rows are only ever written from remote responses (write-through) or by
    the local-only cart; conflicting ids are fully replaced, never merged.
    """

    DEFAULT_DB_PATH = Path("local_data") / "marketplace.db"

    SCHEMA = {
        "accounts": """
            CREATE TABLE IF NOT EXISTS accounts (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT UNIQUE,
                campus TEXT,
                created_at TEXT NOT NULL,
                is_placeholder INTEGER NOT NULL DEFAULT 0,
                last_synced_at TEXT NOT NULL
            )
        """,
        "listings": """
            CREATE TABLE IF NOT EXISTS listings (
                id TEXT PRIMARY KEY,
                seller_id TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                category_id TEXT NOT NULL,
                brand_id TEXT,
                price_cents INTEGER NOT NULL,
                currency TEXT NOT NULL DEFAULT 'COP',
                condition TEXT,
                quantity INTEGER NOT NULL DEFAULT 1,
                is_active INTEGER NOT NULL DEFAULT 1,
                latitude REAL,
                longitude REAL,
                price_suggestion_used INTEGER NOT NULL DEFAULT 0,
                quick_view_enabled INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                is_placeholder INTEGER NOT NULL DEFAULT 0,
                last_synced_at TEXT NOT NULL,
                FOREIGN KEY (seller_id) REFERENCES accounts (id) ON DELETE CASCADE
            )
        """,
        "orders": """
            CREATE TABLE IF NOT EXISTS orders (
                id TEXT PRIMARY KEY,
                buyer_id TEXT NOT NULL,
                seller_id TEXT NOT NULL,
                listing_id TEXT NOT NULL,
                total_cents INTEGER NOT NULL,
                currency TEXT NOT NULL DEFAULT 'COP',
                status TEXT NOT NULL DEFAULT 'created',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                last_synced_at TEXT NOT NULL,
                FOREIGN KEY (buyer_id) REFERENCES accounts (id) ON DELETE CASCADE,
                FOREIGN KEY (seller_id) REFERENCES accounts (id) ON DELETE CASCADE,
                FOREIGN KEY (listing_id) REFERENCES listings (id) ON DELETE CASCADE
            )
        """,
        "reviews": """
            CREATE TABLE IF NOT EXISTS reviews (
                id TEXT PRIMARY KEY,
                order_id TEXT NOT NULL UNIQUE,
                rater_id TEXT NOT NULL,
                ratee_id TEXT NOT NULL,
                rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
                comment TEXT,
                created_at TEXT NOT NULL,
                last_synced_at TEXT NOT NULL,
                FOREIGN KEY (order_id) REFERENCES orders (id) ON DELETE CASCADE,
                FOREIGN KEY (rater_id) REFERENCES accounts (id) ON DELETE CASCADE,
                FOREIGN KEY (ratee_id) REFERENCES accounts (id) ON DELETE CASCADE
            )
        """,
        "http_cache": """
            CREATE TABLE IF NOT EXISTS http_cache (
                cache_key TEXT PRIMARY KEY,
                method TEXT NOT NULL,
                url TEXT NOT NULL,
                status_code INTEGER NOT NULL,
                body_json TEXT,
                headers_json TEXT,
                stored_at TEXT NOT NULL
            )
        """,
        "telemetry_events": """
            CREATE TABLE IF NOT EXISTS telemetry_events (
                local_id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type TEXT NOT NULL,
                session_id TEXT,
                user_id TEXT,
                listing_id TEXT,
                order_id TEXT,
                chat_id TEXT,
                step TEXT,
                properties_json TEXT NOT NULL DEFAULT '{}',
                occurred_at TEXT NOT NULL,
                enqueued_at TEXT NOT NULL,
                delivered INTEGER NOT NULL DEFAULT 0
            )
        """,
        "app_settings": """
            CREATE TABLE IF NOT EXISTS app_settings (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT NOT NULL
            )
        """,
        "cart_items": """
            CREATE TABLE IF NOT EXISTS cart_items (
                listing_id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                price_cents INTEGER NOT NULL,
                currency TEXT NOT NULL DEFAULT 'COP',
                image_url TEXT,
                seller_id TEXT,
                quantity INTEGER NOT NULL,
                added_at TEXT NOT NULL
            )
        """,
    }

    INDEXES = (
        "CREATE INDEX IF NOT EXISTS idx_listings_seller ON listings (seller_id)",
        "CREATE INDEX IF NOT EXISTS idx_listings_category ON listings (category_id)",
        "CREATE INDEX IF NOT EXISTS idx_listings_active ON listings (is_active)",
        "CREATE INDEX IF NOT EXISTS idx_orders_buyer ON orders (buyer_id)",
        "CREATE INDEX IF NOT EXISTS idx_orders_seller ON orders (seller_id)",
        "CREATE INDEX IF NOT EXISTS idx_orders_listing ON orders (listing_id)",
        "CREATE INDEX IF NOT EXISTS idx_orders_status ON orders (status)",
        "CREATE INDEX IF NOT EXISTS idx_reviews_rater ON reviews (rater_id)",
        "CREATE INDEX IF NOT EXISTS idx_reviews_ratee ON reviews (ratee_id)",
        "CREATE INDEX IF NOT EXISTS idx_telemetry_enqueued ON telemetry_events (enqueued_at)",
    )

    def __init__(self, db_path: Optional[Path] = None):
        """
        Initialize local database.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path) if db_path else self.DEFAULT_DB_PATH
        self._ensure_directory()
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._initialized = False

    def _ensure_directory(self) -> None:
        """Ensure database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if getattr(self._local, "connection", None) is None:
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            self._local.connection = conn
            with self._connections_lock:
                self._connections.append(conn)
        return self._local.connection

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions; sqlite errors become StorageError."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(f"Local database write failed: {e}") from e
        except Exception:
            conn.rollback()
            raise

    def initialize(self) -> None:
        """Initialize database schema."""
        if self._initialized:
            return

        with self.transaction() as conn:
            for table_name, schema in self.SCHEMA.items():
                conn.execute(schema)
                logger.debug(f"Created/verified table: {table_name}")
            for statement in self.INDEXES:
                conn.execute(statement)

        self._initialized = True
        logger.info(f"Local database initialized at: {self.db_path}")

    # =========================================================================
    # GENERIC HELPERS
    # =========================================================================

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[sqlite3.Row]:
        """Execute a raw SQL query."""
        try:
            return self._get_connection().execute(sql, params or []).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Local database read failed: {e}") from e

    def query_one(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[sqlite3.Row]:
        rows = self.query(sql, params)
        return rows[0] if rows else None

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        """Execute a raw SQL statement."""
        with self.transaction() as conn:
            return conn.execute(sql, params or []).rowcount

    @staticmethod
    def _upsert_row(conn: sqlite3.Connection, table: str, row: Dict[str, Any], key: str = "id") -> None:
        # ON CONFLICT ... DO UPDATE keeps the row in place; INSERT OR REPLACE
        # would delete it first and fire the cascade on its children.
        columns = list(row.keys())
        placeholders = ", ".join("?" for _ in columns)
        assignments = ", ".join(f"{c} = excluded.{c}" for c in columns if c != key)
        conn.execute(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) "
            f"ON CONFLICT({key}) DO UPDATE SET {assignments}",
            [row[c] for c in columns],
        )

    @staticmethod
    def _stamp(row: Dict[str, Any], synced_at: str) -> Dict[str, Any]:
        row = dict(row)
        row["last_synced_at"] = synced_at
        return row

    def _ensure_account(self, conn: sqlite3.Connection, account_id: str, synced_at: str) -> None:
        conn.execute(
            "INSERT OR IGNORE INTO accounts (id, name, email, campus, created_at, is_placeholder, last_synced_at) "
            "VALUES (?, '', NULL, NULL, ?, 1, ?)",
            [account_id, synced_at, synced_at],
        )

    def _ensure_listing(self, conn: sqlite3.Connection, listing_id: str, seller_id: str, synced_at: str) -> None:
        self._ensure_account(conn, seller_id, synced_at)
        conn.execute(
            "INSERT OR IGNORE INTO listings (id, seller_id, title, category_id, price_cents, "
            "created_at, updated_at, is_placeholder, last_synced_at) "
            "VALUES (?, ?, '', '', 0, ?, ?, 1, ?)",
            [listing_id, seller_id, synced_at, synced_at, synced_at],
        )

    # =========================================================================
    # UPSERTS
    # =========================================================================

    def upsert_account(self, account: Account) -> None:
        self.upsert_accounts([account])

    def upsert_accounts(self, accounts: Iterable[Account]) -> int:
        synced_at = format_timestamp(utcnow())
        count = 0
        with self.transaction() as conn:
            for account in accounts:
                row = self._stamp(account.to_row(), synced_at)
                row["is_placeholder"] = 0
                self._upsert_row(conn, "accounts", row)
                count += 1
        return count

    def upsert_listing(self, listing: Listing, create_missing_parents: bool = True) -> None:
        self.upsert_listings([listing], create_missing_parents)

    def upsert_listings(self, listings: Iterable[Listing], create_missing_parents: bool = True) -> int:
        """
        Insert or fully replace listings.

        Args:
            listings: Listings from a remote response
            create_missing_parents: Insert placeholder seller accounts for
                sellers that are not cached yet

        Returns:
            Number of rows written
        """
        synced_at = format_timestamp(utcnow())
        count = 0
        with self.transaction() as conn:
            for listing in listings:
                if create_missing_parents:
                    self._ensure_account(conn, listing.seller_id, synced_at)
                row = self._stamp(listing.to_row(), synced_at)
                row["is_placeholder"] = 0
                self._upsert_row(conn, "listings", row)
                count += 1
        return count

    def upsert_order(self, order: Order, create_missing_parents: bool = True) -> None:
        self.upsert_orders([order], create_missing_parents)

    def upsert_orders(self, orders: Iterable[Order], create_missing_parents: bool = True) -> int:
        synced_at = format_timestamp(utcnow())
        count = 0
        with self.transaction() as conn:
            for order in orders:
                if create_missing_parents:
                    self._ensure_account(conn, order.buyer_id, synced_at)
                    self._ensure_listing(conn, order.listing_id, order.seller_id, synced_at)
                self._upsert_row(conn, "orders", self._stamp(order.to_row(), synced_at))
                count += 1
        return count

    def upsert_review(self, review: Review, create_missing_parents: bool = True) -> None:
        """
        Insert or replace a review; any other review for the same order is
        replaced so an order never has more than one review.
        """
        synced_at = format_timestamp(utcnow())
        with self.transaction() as conn:
            self._write_review(conn, review, synced_at, create_missing_parents)

    def upsert_reviews(self, reviews: Iterable[Review], create_missing_parents: bool = True) -> int:
        """
        Bulk variant of ``upsert_review``.

        Reviews whose order is not cached locally are skipped (orders need a
        listing and buyer that a review payload does not carry).
        """
        synced_at = format_timestamp(utcnow())
        count = 0
        skipped: List[str] = []
        with self.transaction() as conn:
            for review in reviews:
                exists = conn.execute("SELECT 1 FROM orders WHERE id = ?", [review.order_id]).fetchone()
                if exists is None:
                    skipped.append(review.id)
                    continue
                self._write_review(conn, review, synced_at, create_missing_parents)
                count += 1
        if skipped:
            logger.warning(f"Skipped {len(skipped)} review(s) whose order is not cached: {', '.join(skipped)}")
        return count

    def _write_review(
        self,
        conn: sqlite3.Connection,
        review: Review,
        synced_at: str,
        create_missing_parents: bool,
    ) -> None:
        if create_missing_parents:
            self._ensure_account(conn, review.rater_id, synced_at)
            self._ensure_account(conn, review.ratee_id, synced_at)
        conn.execute(
            "DELETE FROM reviews WHERE order_id = ? AND id != ?",
            [review.order_id, review.id],
        )
        self._upsert_row(conn, "reviews", self._stamp(review.to_row(), synced_at))

    # =========================================================================
    # DELETES
    # =========================================================================

    def delete_account(self, account_id: str) -> bool:
        """Delete an account; listings, orders and reviews cascade."""
        return self.execute("DELETE FROM accounts WHERE id = ?", [account_id]) > 0

    def delete_listing(self, listing_id: str) -> bool:
        return self.execute("DELETE FROM listings WHERE id = ?", [listing_id]) > 0

    def delete_order(self, order_id: str) -> bool:
        return self.execute("DELETE FROM orders WHERE id = ?", [order_id]) > 0

    def delete_review(self, review_id: str) -> bool:
        return self.execute("DELETE FROM reviews WHERE id = ?", [review_id]) > 0

    # =========================================================================
    # KEYED LOOKUPS
    # =========================================================================

    def get_account(self, account_id: str) -> Optional[Account]:
        row = self.query_one("SELECT * FROM accounts WHERE id = ?", [account_id])
        return Account.from_row(row) if row else None

    def get_account_by_email(self, email: str) -> Optional[Account]:
        row = self.query_one("SELECT * FROM accounts WHERE email = ?", [email])
        return Account.from_row(row) if row else None

    def get_listing(self, listing_id: str) -> Optional[Listing]:
        row = self.query_one(
            "SELECT * FROM listings WHERE id = ? AND is_placeholder = 0",
            [listing_id],
        )
        return Listing.from_row(row) if row else None

    def listings_by_seller(self, seller_id: str) -> List[Listing]:
        rows = self.query(
            "SELECT * FROM listings WHERE seller_id = ? AND is_placeholder = 0 ORDER BY created_at DESC",
            [seller_id],
        )
        return [Listing.from_row(r) for r in rows]

    def active_listings(
        self,
        limit: int = 50,
        offset: int = 0,
        category_id: Optional[str] = None,
    ) -> List[Listing]:
        sql = "SELECT * FROM listings WHERE is_active = 1 AND is_placeholder = 0"
        params: List[Any] = []
        if category_id:
            sql += " AND category_id = ?"
            params.append(category_id)
        sql += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        return [Listing.from_row(r) for r in self.query(sql, params)]

    def search_listings(self, text: str, limit: int = 50, offset: int = 0) -> List[Listing]:
        """Case-insensitive title/description search over cached active listings."""
        pattern = f"%{text.strip()}%"
        rows = self.query(
            "SELECT * FROM listings WHERE is_active = 1 AND is_placeholder = 0 "
            "AND (title LIKE ? OR description LIKE ?) ORDER BY created_at DESC LIMIT ? OFFSET ?",
            [pattern, pattern, limit, offset],
        )
        return [Listing.from_row(r) for r in rows]

    def get_order(self, order_id: str) -> Optional[Order]:
        row = self.query_one("SELECT * FROM orders WHERE id = ?", [order_id])
        return Order.from_row(row) if row else None

    def orders_by_buyer(self, buyer_id: str) -> List[Order]:
        return self.orders_for_user(buyer_id, role="buyer")

    def orders_by_seller(self, seller_id: str) -> List[Order]:
        return self.orders_for_user(seller_id, role="seller")

    def orders_by_status(self, status: OrderStatus) -> List[Order]:
        rows = self.query(
            "SELECT * FROM orders WHERE status = ? ORDER BY created_at DESC",
            [OrderStatus(status).value],
        )
        return [Order.from_row(r) for r in rows]

    def orders_for_user(
        self,
        user_id: str,
        role: Optional[str] = None,
        status: Optional[OrderStatus] = None,
    ) -> List[Order]:
        """
        Orders where the user is the buyer, the seller, or either.

        Args:
            user_id: Account id
            role: "buyer", "seller" or None for both
            status: Optional status filter
        """
        if role == "buyer":
            sql, params = "SELECT * FROM orders WHERE buyer_id = ?", [user_id]
        elif role == "seller":
            sql, params = "SELECT * FROM orders WHERE seller_id = ?", [user_id]
        else:
            sql, params = "SELECT * FROM orders WHERE (buyer_id = ? OR seller_id = ?)", [user_id, user_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(OrderStatus(status).value)
        sql += " ORDER BY created_at DESC"
        return [Order.from_row(r) for r in self.query(sql, params)]

    def get_review(self, review_id: str) -> Optional[Review]:
        row = self.query_one("SELECT * FROM reviews WHERE id = ?", [review_id])
        return Review.from_row(row) if row else None

    def review_for_order(self, order_id: str) -> Optional[Review]:
        row = self.query_one("SELECT * FROM reviews WHERE order_id = ?", [order_id])
        return Review.from_row(row) if row else None

    def reviews_by_rater(self, rater_id: str) -> List[Review]:
        rows = self.query("SELECT * FROM reviews WHERE rater_id = ? ORDER BY created_at DESC", [rater_id])
        return [Review.from_row(r) for r in rows]

    def reviews_by_ratee(self, ratee_id: str, limit: Optional[int] = None) -> List[Review]:
        sql = "SELECT * FROM reviews WHERE ratee_id = ? ORDER BY created_at DESC"
        params: List[Any] = [ratee_id]
        if limit:
            sql += " LIMIT ?"
            params.append(limit)
        return [Review.from_row(r) for r in self.query(sql, params)]

    # =========================================================================
    # JOINED READS
    # =========================================================================

    def listing_with_seller(self, listing_id: str) -> Optional[ListingWithSeller]:
        row = self.query_one(
            """
            SELECT l.*, a.name AS seller_name, a.email AS seller_email
            FROM listings l
            INNER JOIN accounts a ON l.seller_id = a.id
            WHERE l.id = ? AND l.is_placeholder = 0
            """,
            [listing_id],
        )
        if row is None:
            return None
        return ListingWithSeller(
            listing=Listing.from_row(row),
            seller_name=row["seller_name"],
            seller_email=row["seller_email"],
        )

    def order_with_details(self, order_id: str) -> Optional[OrderDetails]:
        row = self.query_one(
            """
            SELECT o.*,
                   l.title AS listing_title,
                   l.price_cents AS listing_price_cents,
                   b.name AS buyer_name, b.email AS buyer_email,
                   s.name AS seller_name, s.email AS seller_email
            FROM orders o
            INNER JOIN listings l ON o.listing_id = l.id
            INNER JOIN accounts b ON o.buyer_id = b.id
            INNER JOIN accounts s ON o.seller_id = s.id
            WHERE o.id = ?
            """,
            [order_id],
        )
        if row is None:
            return None
        return OrderDetails(
            order=Order.from_row(row),
            listing_title=row["listing_title"],
            listing_price_cents=row["listing_price_cents"],
            buyer_name=row["buyer_name"],
            buyer_email=row["buyer_email"],
            seller_name=row["seller_name"],
            seller_email=row["seller_email"],
        )

    def review_with_details(self, review_id: str) -> Optional[ReviewDetails]:
        row = self.query_one(
            """
            SELECT r.*,
                   rater.name AS rater_name,
                   ratee.name AS ratee_name,
                   o.total_cents AS order_total_cents
            FROM reviews r
            INNER JOIN accounts rater ON r.rater_id = rater.id
            INNER JOIN accounts ratee ON r.ratee_id = ratee.id
            INNER JOIN orders o ON r.order_id = o.id
            WHERE r.id = ?
            """,
            [review_id],
        )
        if row is None:
            return None
        return ReviewDetails(
            review=Review.from_row(row),
            rater_name=row["rater_name"],
            ratee_name=row["ratee_name"],
            order_total_cents=row["order_total_cents"],
        )

    # =========================================================================
    # AGGREGATES
    # =========================================================================

    def average_rating(self, account_id: str) -> RatingSummary:
        row = self.query_one(
            "SELECT AVG(rating) AS avg_rating, COUNT(*) AS n FROM reviews WHERE ratee_id = ?",
            [account_id],
        )
        return RatingSummary(account_id=account_id, average=row["avg_rating"], count=row["n"])

    def order_counts_by_status(self, user_id: str) -> Dict[OrderStatus, int]:
        """Order counts per status for orders the user bought or sold; every status is present."""
        rows = self.query(
            """
            SELECT status, COUNT(*) AS n
            FROM orders
            WHERE buyer_id = ? OR seller_id = ?
            GROUP BY status
            """,
            [user_id, user_id],
        )
        counts = {status: 0 for status in OrderStatus}
        for row in rows:
            counts[OrderStatus(row["status"])] = row["n"]
        return counts

    def seller_summary(self, seller_id: str) -> SellerSummary:
        row = self.query_one(
            """
            SELECT COUNT(DISTINCT CASE WHEN l.is_placeholder = 0 THEN l.id END) AS total_listings,
                   COUNT(DISTINCT o.id) AS total_orders,
                   SUM(CASE WHEN o.status = 'completed' THEN o.total_cents ELSE 0 END) AS revenue,
                   AVG(CASE WHEN o.status = 'completed' THEN o.total_cents END) AS avg_order
            FROM accounts a
            LEFT JOIN listings l ON l.seller_id = a.id
            LEFT JOIN orders o ON o.listing_id = l.id
            WHERE a.id = ?
            """,
            [seller_id],
        )
        if row is None:
            return SellerSummary(seller_id=seller_id)
        return SellerSummary(
            seller_id=seller_id,
            total_listings=row["total_listings"] or 0,
            total_orders=row["total_orders"] or 0,
            completed_revenue_cents=row["revenue"] or 0,
            avg_completed_order_cents=row["avg_order"],
        )

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get an app setting."""
        row = self.query_one("SELECT value FROM app_settings WHERE key = ?", [key])
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            return row["value"]

    def set_setting(self, key: str, value: Any) -> None:
        """Set an app setting."""
        self.execute(
            """
            INSERT INTO app_settings (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            [key, json.dumps(value, default=str), format_timestamp(utcnow())],
        )

    def delete_setting(self, key: str) -> None:
        self.execute("DELETE FROM app_settings WHERE key = ?", [key])

    # =========================================================================
    # DIAGNOSTICS
    # =========================================================================

    def counts(self) -> Dict[str, int]:
        """Row count per table."""
        return {
            table: self.query_one(f"SELECT COUNT(*) AS n FROM {table}")["n"]
            for table in self.SCHEMA
        }

    def clear_all(self) -> None:
        """Remove every cached domain entity (logout cleanup)."""
        with self.transaction() as conn:
            for table in DOMAIN_TABLES:
                conn.execute(f"DELETE FROM {table}")
        logger.info("Cleared cached accounts, listings, orders and reviews")

    def to_dataframe(
        self,
        table: str,
        where: Optional[str] = None,
        params: Optional[List] = None,
    ) -> pd.DataFrame:
        """
        Load a table into a pandas DataFrame.

        Args:
            table: Table name (must be part of the schema)
            where: Optional WHERE clause
            params: Parameters for WHERE clause
        """
        if table not in self.SCHEMA:
            raise StorageError(f"Unknown table: {table}", table=table)
        query = f"SELECT * FROM {table}"
        if where:
            query += f" WHERE {where}"

        try:
            return pd.read_sql_query(query, self._get_connection(), params=params)
        except (sqlite3.Error, PandasDatabaseError) as e:
            raise StorageError(f"Export of {table} failed: {e}", table=table) from e

    def close(self) -> None:
        """Close every connection opened by this database."""
        with self._connections_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()
        logger.debug(f"Closed local database at {self.db_path}")

# =============================================================================
# market_core/repositories/reviews_repository.py
# Reviews: Offline-First Reads, Remote-First Creation
# =============================================================================

from __future__ import annotations
from typing import Callable, List, Optional

from market_core.api.reviews_connector import ReviewsConnector
from market_core.errors import ValidationError
from market_core.models import RatingSummary, Review
from market_core.offline.strategies import ReadResult
from .base_repository import BaseRepository


class ReviewsRepository(BaseRepository):

    def __init__(self, connector: ReviewsConnector, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.connector = connector

    async def get_user_reviews(self, user_id: str, limit: int = 20) -> ReadResult[List[Review]]:
        """Reviews received by ``user_id``."""
        return await self.gated.fetch(
            f"reviews for {user_id}",
            lambda: self.connector.for_user(user_id, limit),
            self.database.upsert_reviews,
            lambda: self.database.reviews_by_ratee(user_id, limit),
        )

    async def watch_user_reviews(
        self,
        user_id: str,
        limit: int = 20,
        on_updated: Optional[Callable[[List[Review]], None]] = None,
        is_relevant: Optional[Callable[[], bool]] = None,
    ) -> ReadResult[List[Review]]:
        return await self.cache_first.read(
            f"reviews:{user_id}",
            lambda: self.database.reviews_by_ratee(user_id, limit),
            lambda: self.connector.for_user(user_id, limit),
            self.database.upsert_reviews,
            on_updated=on_updated,
            is_relevant=is_relevant,
        )

    async def get_order_review(self, order_id: str) -> ReadResult[Optional[Review]]:
        def save(review: Optional[Review]) -> None:
            if review is not None:
                self.database.upsert_review(review)

        return await self.gated.fetch(
            f"review of order {order_id}",
            lambda: self.connector.for_order(order_id),
            save,
            lambda: self.database.review_for_order(order_id),
        )

    async def create_review(
        self,
        order_id: str,
        ratee_id: str,
        rating: int,
        comment: Optional[str] = None,
    ) -> Review:
        if not 1 <= rating <= 5:
            raise ValidationError(
                "Rating must be between 1 and 5",
                field_errors={"rating": f"{rating} is outside 1..5"},
            )

        with self.log_operation(f"Reviewing order {order_id}"):
            review = await self.connector.create(order_id, ratee_id, rating, comment)
        self.write_through(self.database.upsert_review, review, f"review {review.id}")
        return review

    def get_user_rating(self, user_id: str) -> RatingSummary:
        return self.database.average_rating(user_id)

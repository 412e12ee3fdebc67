# =============================================================================
# market_core/repositories/__init__.py
# Offline-First Domain Repositories
# =============================================================================

from .base_repository import BaseRepository
from .orders_repository import OrdersRepository
from .reviews_repository import ReviewsRepository
from .listings_repository import ListingsRepository
from .profile_repository import ProfileRepository
from .auth_repository import AuthRepository, CURRENT_USER_KEY

__all__ = [
    "BaseRepository",
    "OrdersRepository",
    "ReviewsRepository",
    "ListingsRepository",
    "ProfileRepository",
    "AuthRepository",
    "CURRENT_USER_KEY",
]

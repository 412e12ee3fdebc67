# =============================================================================
# market_core/errors/__init__.py
# Centralized Error Handling for the Marketplace Client Core
# =============================================================================

from .exceptions import (
    MarketCoreError,
    NetworkError,
    AuthError,
    ApiError,
    ValidationError,
    ServerError,
    CacheMissError,
    StorageError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    error_boundary,
    ErrorContext,
)

__all__ = [
    # Exceptions
    "MarketCoreError",
    "NetworkError",
    "AuthError",
    "ApiError",
    "ValidationError",
    "ServerError",
    "CacheMissError",
    "StorageError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "error_boundary",
    "ErrorContext",
]

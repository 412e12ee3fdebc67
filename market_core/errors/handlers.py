# =============================================================================
# market_core/errors/handlers.py
# Error Handling Utilities for the Marketplace Client Core
# =============================================================================

from __future__ import annotations
import asyncio
import functools
import inspect
import traceback
from typing import Optional, Callable, TypeVar, Any, Dict

from market_core.logging import get_logger
from .exceptions import (
    MarketCoreError,
    NetworkError,
    AuthError,
    ValidationError,
    CacheMissError,
)

logger = get_logger(__name__)

T = TypeVar("T")


USER_MESSAGES = {
    NetworkError: "No connection to the marketplace. Showing saved data where possible.",
    AuthError: "Your session has expired. Please sign in again.",
    CacheMissError: "No data available yet. Connect to the internet and try again.",
}


def handle_error(
    error: Exception,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Centralized error handling for the UI boundary.

    Args:
        error: The exception to handle
        log_error: Whether to log the error
        user_message: Custom message for the user (derived from the error if None)

    Returns:
        Dictionary describing the error for display: message, code,
        recoverable, requires_login and field_errors.
    """
    if isinstance(error, MarketCoreError):
        code = error.code
        details = error.details
        recoverable = error.recoverable
        if user_message is None:
            user_message = error.message
            for error_type, text in USER_MESSAGES.items():
                if isinstance(error, error_type):
                    user_message = text
                    break
    else:
        code = "UNKNOWN"
        details = {"traceback": traceback.format_exc()}
        recoverable = True
        user_message = user_message or str(error)

    if log_error:
        logger.error(f"[{code}] {error}", extra={"details": details})

    return {
        "message": user_message,
        "code": code,
        "recoverable": recoverable,
        "requires_login": isinstance(error, AuthError),
        "field_errors": getattr(error, "field_errors", {}) if isinstance(error, ValidationError) else {},
    }


class ErrorContext:
    """
    Context manager that logs an operation and optionally suppresses
    client-core errors raised inside it.

    Usage:
        with ErrorContext("Final telemetry flush", suppress=True):
            await buffer.flush()

        # On error, logs: "Error during: Final telemetry flush"
    """

    def __init__(self, operation: str, suppress: bool = False):
        self.operation = operation
        self.suppress = suppress
        self.error: Optional[BaseException] = None

    def __enter__(self) -> ErrorContext:
        logger.debug(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is None:
            logger.debug(f"Completed: {self.operation}")
            return False

        self.error = exc_val
        if isinstance(exc_val, MarketCoreError):
            logger.warning(f"Error during: {self.operation}: {exc_val}")
            return self.suppress

        logger.error(f"Error during: {self.operation}: {exc_val}", exc_info=(exc_type, exc_val, exc_tb))
        return False


def error_boundary(
    default_return: Any = None,
    log: bool = True,
):
    """
    Decorator that turns any exception into ``default_return``.

    Works for plain functions and coroutine functions. Only for work whose
    failure must never reach the caller (background refreshes, telemetry).

    Usage:
        @error_boundary(default_return=0)
        async def flush_quietly() -> int:
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., Optional[T]]:
        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                try:
                    return await func(*args, **kwargs)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    if log:
                        logger.error(f"Error in {func.__name__}: {e}", exc_info=True)
                    return default_return

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Optional[T]:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if log:
                    logger.error(f"Error in {func.__name__}: {e}", exc_info=True)
                return default_return

        return wrapper

    return decorator

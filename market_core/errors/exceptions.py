# =============================================================================
# market_core/errors/exceptions.py
# Custom Exception Hierarchy for the Marketplace Client Core
# =============================================================================

from typing import Optional, Dict, Any


class MarketCoreError(Exception):
    """
    Base exception for all client-core errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "NET_001")
        details: Additional context as a dictionary
        recoverable: Whether the caller can retry without re-authenticating
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "MC_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# TRANSPORT / SESSION EXCEPTIONS
# =============================================================================

class NetworkError(MarketCoreError):
    """Raised on connection failures and timeouts"""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        kind: str = "connection",
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if url:
            details["url"] = url
        details["kind"] = kind
        self.kind = kind

        super().__init__(
            message=message,
            code="NET_001",
            details=details,
            **kwargs,
        )

    @property
    def transient(self) -> bool:
        return True


class AuthError(MarketCoreError):
    """Raised when the session cannot be (re-)established; requires re-login"""

    def __init__(self, message: str, reason: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if reason:
            details["reason"] = reason
        kwargs.setdefault("recoverable", False)

        super().__init__(
            message=message,
            code="AUTH_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# HTTP STATUS EXCEPTIONS
# =============================================================================

class ApiError(MarketCoreError):
    """Raised when the backend answers with an error status"""

    def __init__(
        self,
        message: str,
        status_code: int,
        payload: Any = None,
        code: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["status_code"] = status_code
        self.status_code = status_code
        self.payload = payload

        super().__init__(
            message=message,
            code=code or "API_000",
            details=details,
            **kwargs,
        )


class ValidationError(ApiError):
    """Raised for 4xx responses (other than 401) and for client-side checks"""

    def __init__(
        self,
        message: str,
        status_code: int = 422,
        field_errors: Optional[Dict[str, str]] = None,
        **kwargs,
    ):
        self.field_errors = dict(field_errors or {})
        details = kwargs.pop("details", {})
        if self.field_errors:
            details["field_errors"] = self.field_errors

        super().__init__(
            message=message,
            status_code=status_code,
            code=f"API_{status_code}",
            details=details,
            **kwargs,
        )


class ServerError(ApiError):
    """Raised for 5xx responses"""

    def __init__(self, message: str, status_code: int = 500, **kwargs):
        super().__init__(
            message=message,
            status_code=status_code,
            code="API_500",
            **kwargs,
        )


# =============================================================================
# LOCAL DATA EXCEPTIONS
# =============================================================================

class CacheMissError(MarketCoreError):
    """Raised when neither the network nor the local cache yields data"""

    def __init__(self, message: str, resource: Optional[str] = None, offline: bool = False, **kwargs):
        details = kwargs.pop("details", {})
        if resource:
            details["resource"] = resource
        details["offline"] = offline
        self.offline = offline

        super().__init__(
            message=message,
            code="CACHE_001",
            details=details,
            **kwargs,
        )


class StorageError(MarketCoreError):
    """Raised when the local database fails"""

    def __init__(self, message: str, table: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if table:
            details["table"] = table

        super().__init__(
            message=message,
            code="STORE_001",
            details=details,
            **kwargs,
        )


class ConfigurationError(MarketCoreError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        kwargs.setdefault("recoverable", False)

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            **kwargs,
        )

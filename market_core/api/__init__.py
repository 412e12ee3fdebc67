"""
Marketplace API Module
Provides the request pipeline, token session and endpoint connectors
"""

from .transport import ApiRequest, ApiResponse, Transport, RequestsTransport
from .session import Session, TokenStore, MemoryTokenStore, FernetTokenStore, TokenSessionManager
from .response_cache import ResponseCache
from .pipeline import RequestPipeline, parse_error_payload

from .base_connector import BaseConnector
from .auth_connector import AuthConnector, hash_email
from .listings_connector import ListingsConnector
from .orders_connector import OrdersConnector
from .reviews_connector import ReviewsConnector
from .telemetry_connector import TelemetryConnector

__all__ = [
    # Transport
    "ApiRequest",
    "ApiResponse",
    "Transport",
    "RequestsTransport",

    # Session
    "Session",
    "TokenStore",
    "MemoryTokenStore",
    "FernetTokenStore",
    "TokenSessionManager",

    # Pipeline
    "ResponseCache",
    "RequestPipeline",
    "parse_error_payload",

    # Connectors
    "BaseConnector",
    "AuthConnector",
    "hash_email",
    "ListingsConnector",
    "OrdersConnector",
    "ReviewsConnector",
    "TelemetryConnector",
]

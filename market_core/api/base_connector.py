"""
Base API Connector Class for the Marketplace Backend
Provides the shared plumbing for endpoint connectors built on the pipeline
"""
from typing import Any, Callable, Dict, List, Optional, TypeVar

from market_core.api.pipeline import RequestPipeline
from market_core.api.transport import ApiResponse
from market_core.errors import ApiError, NetworkError

T = TypeVar("T")


class BaseConnector:
    """Base class for endpoint connectors; every call goes through the pipeline"""

    resource_name = "api"

    def __init__(self, pipeline: RequestPipeline):
        self.pipeline = pipeline

    async def _make_request(
        self,
        endpoint: str,
        method: str = "GET",
        params: Optional[Dict] = None,
        data: Optional[Any] = None,
        allow_stale: bool = False,
        **kwargs,
    ) -> ApiResponse:
        """
        Make an HTTP request through the pipeline

        Args:
            endpoint: API path, e.g. "/orders"
            method: HTTP method (GET, POST, etc.)
            params: Query parameters; None values are dropped
            data: JSON request body
            allow_stale: Accept a response the pipeline served from its cache
                after a failure. Otherwise that failure is raised, so callers
                with their own offline path see it.

        Returns:
            ApiResponse (raises a MarketCoreError subclass on failure)
        """
        response = await self.pipeline.request(method, endpoint, params=params, json=data, **kwargs)
        if response.from_cache and not allow_stale:
            raise response.stale_reason or NetworkError(f"{endpoint} unavailable", url=endpoint)
        return response

    @staticmethod
    def extract_items(data: Any) -> List[Dict[str, Any]]:
        """Accept either a bare JSON list or an ``{"items": [...]}`` envelope"""
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            items = data.get("items")
            if isinstance(items, list):
                return items
        return []

    def parse_list(self, data: Any, parser: Callable[[Dict[str, Any]], T]) -> List[T]:
        return [parser(item) for item in self.extract_items(data)]

    def expect_object(self, response: ApiResponse) -> Dict[str, Any]:
        if not isinstance(response.data, dict):
            raise ApiError(
                f"Unexpected {self.resource_name} response shape",
                status_code=response.status_code,
                payload=response.data,
            )
        return response.data

"""
HTTP transport for the request pipeline.

The pipeline only talks to a ``Transport``; the default implementation runs
blocking ``requests`` calls in a worker thread so the event loop is never
blocked. Tests substitute a scripted async transport.
"""
from __future__ import annotations
import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

from market_core.errors import NetworkError


DEFAULT_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}


@dataclass
class ApiRequest:
    """One outbound call as seen by the pipeline stages."""
    method: str
    path: str
    params: Optional[Dict[str, Any]] = None
    json: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    authenticate: bool = True
    use_cache: bool = True
    auth_retried: bool = False

    def __post_init__(self):
        self.method = self.method.upper()
        if not self.path.startswith("/"):
            self.path = "/" + self.path

    def has_header(self, name: str) -> bool:
        name = name.lower()
        return any(key.lower() == name for key in self.headers)


@dataclass
class ApiResponse:
    """Decoded response; ``data`` is parsed JSON when the body is JSON."""
    status_code: int
    data: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    from_cache: bool = False
    # Failure that caused the cached copy to be served
    stale_reason: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def build_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


class Transport(ABC):
    """Sends a single request; raises NetworkError on timeouts and connection failures."""

    @abstractmethod
    async def send(self, request: ApiRequest, base_url: str, timeout: float) -> ApiResponse:
        pass

    def close(self) -> None:
        """Release transport resources."""


class RequestsTransport(Transport):
    """``requests.Session`` based transport."""

    def __init__(self, session: Optional[requests.Session] = None, headers: Optional[Dict[str, str]] = None):
        self.session = session or requests.Session()
        self.session.headers.update(DEFAULT_HEADERS)
        if headers:
            self.session.headers.update(headers)

    async def send(self, request: ApiRequest, base_url: str, timeout: float) -> ApiResponse:
        return await asyncio.to_thread(self._send_blocking, request, build_url(base_url, request.path), timeout)

    def _send_blocking(self, request: ApiRequest, url: str, timeout: float) -> ApiResponse:
        try:
            response = self.session.request(
                method=request.method,
                url=url,
                params=request.params,
                json=request.json,
                headers=request.headers,
                timeout=timeout,
            )
        except requests.exceptions.Timeout as e:
            raise NetworkError(f"Request timed out after {timeout:.0f}s", url=url, kind="timeout") from e
        except requests.exceptions.ConnectionError as e:
            raise NetworkError(f"Could not connect: {e}", url=url, kind="connection") from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Request failed: {e}", url=url, kind="request") from e

        return ApiResponse(
            status_code=response.status_code,
            data=self._decode(response),
            headers=dict(response.headers),
        )

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def close(self) -> None:
        self.session.close()

"""
Request pipeline wrapping every backend call.

Stages, in order, for each call:
1. auth injection (``Authorization: Bearer <token>`` unless the caller set one)
2. dispatch through the transport
3. 401 recovery: one shared refresh, then a single replay
4. transient retry for timeouts/connection failures (200ms, 400ms, ...)
5. response cache write for successful GETs, cache hit when the call fails
6. optional request/response logging

Errors surface as NetworkError, AuthError, ValidationError or ServerError.
"""
from __future__ import annotations
import asyncio
from typing import Any, Dict, List, Mapping, Optional, Tuple
import logging

from market_core.api.response_cache import ResponseCache
from market_core.api.session import TokenSessionManager
from market_core.api.transport import ApiRequest, ApiResponse, RequestsTransport, Transport, build_url
from market_core.config import CoreConfig
from market_core.errors import (
    ApiError,
    AuthError,
    MarketCoreError,
    NetworkError,
    ServerError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# Endpoints whose 401 means "credentials rejected", never "token expired"
NO_REFRESH_PATHS = ("/auth/login", "/auth/register", "/auth/refresh")


def parse_error_payload(data: Any, status_code: int) -> Tuple[str, Dict[str, str]]:
    """
    Turn a backend error body into a readable message plus per-field errors.

    Understands ``{"detail": "..."}``, ``{"detail": [{"loc": [...], "msg": "..."}]}``
    and ``{"message": "..."}``.
    """
    if isinstance(data, Mapping):
        detail = data.get("detail")
        if isinstance(detail, str) and detail:
            return detail, {}
        if isinstance(detail, list) and detail:
            field_errors: Dict[str, str] = {}
            lines: List[str] = []
            for item in detail:
                if not isinstance(item, Mapping):
                    lines.append(str(item))
                    continue
                msg = str(item.get("msg") or item.get("message") or "invalid value")
                loc = item.get("loc") or []
                name = str(loc[-1]) if loc else "non_field"
                field_errors[name] = f"{field_errors[name]}; {msg}" if name in field_errors else msg
                lines.append(f"{name}: {msg}")
            return "Invalid data:\n" + "\n".join(lines), field_errors
        message = data.get("message")
        if isinstance(message, str) and message:
            return message, {}
    if isinstance(data, str) and data.strip():
        return data.strip(), {}
    return f"Request failed with status {status_code}", {}


class RequestPipeline:
    """
    Async client for the marketplace REST API.

    Usage:
        pipeline = RequestPipeline(config, session_manager, cache=ResponseCache(db))
        response = await pipeline.get("/orders", params={"buyer_id": "u-1"})
    """

    def __init__(
        self,
        config: CoreConfig,
        session_manager: TokenSessionManager,
        transport: Optional[Transport] = None,
        cache: Optional[ResponseCache] = None,
    ):
        self.config = config
        self.session_manager = session_manager
        self.transport = transport or RequestsTransport()
        self.cache = cache

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
        authenticate: bool = True,
        use_cache: bool = True,
    ) -> ApiResponse:
        """
        Send a request through every pipeline stage.

        Returns:
            The successful response, possibly served from the response cache
            (``from_cache=True``, ``stale_reason`` set) when the network failed.

        Raises:
            NetworkError, AuthError, ValidationError, ServerError
        """
        request = ApiRequest(
            method=method,
            path=path,
            params=_drop_none(params),
            json=json,
            headers=dict(headers or {}),
            authenticate=authenticate,
            use_cache=use_cache,
        )
        url = build_url(self.config.base_url, request.path)
        cache_key = None
        if self.cache is not None and request.use_cache and request.method == "GET":
            cache_key = self.cache.key_for(request.method, url, request.params)

        self._log_request(request)
        try:
            response = await self._send_with_recovery(request)
        except NetworkError as e:
            cached = self._cached_fallback(cache_key, request, e)
            if cached is not None:
                return cached
            raise

        self._log_response(request, response)

        if response.ok:
            if cache_key is not None:
                self.cache.store(cache_key, request.method, url, response)
            return response

        if response.status_code >= 500:
            cached = self._cached_fallback(cache_key, request, self._error_for(request, response))
            if cached is not None:
                return cached

        raise self._error_for(request, response)

    async def get(self, path: str, **kwargs) -> ApiResponse:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs) -> ApiResponse:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs) -> ApiResponse:
        return await self.request("PUT", path, **kwargs)

    async def patch(self, path: str, **kwargs) -> ApiResponse:
        return await self.request("PATCH", path, **kwargs)

    async def delete(self, path: str, **kwargs) -> ApiResponse:
        return await self.request("DELETE", path, **kwargs)

    async def refresh_tokens(self, refresh_token: str) -> Mapping[str, Any]:
        """Refresh handler for TokenSessionManager: ``POST /auth/refresh``."""
        response = await self.request(
            "POST",
            "/auth/refresh",
            json={"refresh_token": refresh_token},
            authenticate=False,
            use_cache=False,
        )
        if not isinstance(response.data, Mapping):
            raise AuthError("Unexpected refresh response", reason="malformed_response")
        return response.data

    def close(self) -> None:
        self.transport.close()

    # =========================================================================
    # STAGES
    # =========================================================================

    def _inject_auth(self, request: ApiRequest) -> Optional[str]:
        """Attach the bearer token; returns the token used, if any."""
        if not request.authenticate or request.has_header("Authorization"):
            return None
        token = self.session_manager.get_access_token()
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        return token

    async def _send_with_recovery(self, request: ApiRequest) -> ApiResponse:
        caller_auth = request.has_header("Authorization")
        sent_token = self._inject_auth(request)
        response = await self._dispatch_with_retry(request)

        if response.status_code != 401:
            return response

        if request.path.startswith(NO_REFRESH_PATHS):
            self.session_manager.clear(reason="unauthorized")
            return response
        if caller_auth or not request.authenticate or request.auth_retried:
            return response

        request.auth_retried = True
        current = self.session_manager.get_access_token()
        if current and sent_token and current != sent_token:
            # Another call already refreshed while this one was in flight
            token = current
        else:
            try:
                session = await self.session_manager.refresh()
            except AuthError as e:
                logger.warning(f"401 recovery failed for {request.method} {request.path}: {e.message}")
                return response
            token = session.access_token

        request.headers["Authorization"] = f"Bearer {token}"
        logger.debug(f"Replaying {request.method} {request.path} with refreshed token")
        return await self._dispatch_with_retry(request)

    async def _dispatch_with_retry(self, request: ApiRequest) -> ApiResponse:
        attempt = 0
        while True:
            try:
                return await self.transport.send(request, self.config.base_url, self.config.request_timeout)
            except NetworkError as e:
                if attempt >= self.config.retry_count:
                    raise
                delay = self.config.retry_backoff * (2 ** attempt)
                attempt += 1
                logger.info(
                    f"Retry {attempt}/{self.config.retry_count} for {request.method} {request.path} "
                    f"in {delay * 1000:.0f}ms ({e.kind})"
                )
                await asyncio.sleep(delay)

    def _cached_fallback(
        self, cache_key: Optional[str], request: ApiRequest, error: MarketCoreError
    ) -> Optional[ApiResponse]:
        if cache_key is None:
            return None
        cached = self.cache.lookup(cache_key)
        if cached is not None:
            logger.info(f"Serving cached {request.method} {request.path} after failure: {error.message}")
            cached.stale_reason = error
        return cached

    def _error_for(self, request: ApiRequest, response: ApiResponse) -> MarketCoreError:
        status = response.status_code
        message, field_errors = parse_error_payload(response.data, status)
        if status == 401:
            return AuthError(message, reason="unauthorized", details={"path": request.path})
        if 400 <= status < 500:
            return ValidationError(message, status_code=status, field_errors=field_errors, payload=response.data)
        if status >= 500:
            return ServerError(message, status_code=status, payload=response.data)
        return ApiError(message, status_code=status, payload=response.data)

    # =========================================================================
    # LOGGING
    # =========================================================================

    def _log_request(self, request: ApiRequest) -> None:
        if self.config.enable_http_logs:
            logger.debug(f"[REQ] {request.method} {request.path} params={request.params} body={request.json}")

    def _log_response(self, request: ApiRequest, response: ApiResponse) -> None:
        if self.config.enable_http_logs:
            logger.debug(f"[RES] {response.status_code} {request.method} {request.path} data={response.data}")


def _drop_none(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if params is None:
        return None
    return {key: value for key, value in params.items() if value is not None}

"""
Token session management.

Owns the access/refresh token pair, persists it in a protected (encrypted)
store and coordinates refreshes so that concurrent callers share a single
in-flight refresh call.
"""
from __future__ import annotations
import asyncio
import json
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Optional, Union
import logging

from cryptography.fernet import Fernet, InvalidToken

from market_core.errors import AuthError, MarketCoreError, StorageError
from market_core.models import format_timestamp, parse_timestamp, utcnow
from market_core.offline.event_bus import EventBus, SessionChanged

logger = logging.getLogger(__name__)

RefreshHandler = Callable[[str], Awaitable[Mapping[str, Any]]]


@dataclass(frozen=True)
class Session:
    """Bearer credentials issued by the backend."""
    access_token: str
    refresh_token: str
    access_expiry: Optional[datetime] = None

    @property
    def is_expired(self) -> bool:
        return self.access_expiry is not None and self.access_expiry <= utcnow()

    @classmethod
    def from_token_response(cls, data: Mapping[str, Any]) -> Session:
        """Build from ``{access_token, refresh_token[, expires_in]}``."""
        access = data.get("access_token")
        refresh = data.get("refresh_token")
        if not access or not refresh:
            raise AuthError("Token response is missing access_token or refresh_token", reason="malformed_response")
        expiry = None
        if data.get("expires_in") is not None:
            expiry = utcnow() + timedelta(seconds=float(data["expires_in"]))
        return cls(access_token=str(access), refresh_token=str(refresh), access_expiry=expiry)

    def to_json(self) -> dict:
        return {
            "access": self.access_token,
            "refresh": self.refresh_token,
            "access_expiry": format_timestamp(self.access_expiry),
        }

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> Session:
        expiry = data.get("access_expiry")
        return cls(
            access_token=data["access"],
            refresh_token=data["refresh"],
            access_expiry=parse_timestamp(expiry) if expiry else None,
        )


# =============================================================================
# PROTECTED STORES
# =============================================================================

class TokenStore(ABC):
    """Key-value store holding the ``{access, refresh}`` token strings."""

    @abstractmethod
    def load(self) -> Optional[Session]:
        pass

    @abstractmethod
    def save(self, session: Session) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class MemoryTokenStore(TokenStore):
    """Process-lifetime store, for sessions that must not touch disk."""

    def __init__(self, session: Optional[Session] = None):
        self._session = session

    def load(self) -> Optional[Session]:
        return self._session

    def save(self, session: Session) -> None:
        self._session = session

    def clear(self) -> None:
        self._session = None


class FernetTokenStore(TokenStore):
    """
    Encrypted token file.

    The Fernet key comes from ``key`` (e.g. MARKET_TOKEN_KEY) or from a key
    file next to the token file, created with 0600 permissions on first use.
    """

    def __init__(self, path: Path, key: Optional[Union[str, bytes]] = None, key_path: Optional[Path] = None):
        self.path = Path(path)
        self.key_path = Path(key_path) if key_path else self.path.with_suffix(".key")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fernet = Fernet(key if key else self._load_or_create_key())

    def _load_or_create_key(self) -> bytes:
        if self.key_path.exists():
            return self.key_path.read_bytes().strip()

        logger.warning(f"Generating new token encryption key at {self.key_path}")
        key = Fernet.generate_key()
        fd = os.open(self.key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(key)
        return key

    def load(self) -> Optional[Session]:
        if not self.path.exists():
            return None
        try:
            payload = self._fernet.decrypt(self.path.read_bytes())
            return Session.from_json(json.loads(payload))
        except (InvalidToken, ValueError, KeyError) as e:
            logger.warning(f"Discarding unreadable token file {self.path}: {e!r}")
            self.clear()
            return None

    def save(self, session: Session) -> None:
        token = self._fernet.encrypt(json.dumps(session.to_json()).encode("utf-8"))
        tmp_path = self.path.with_suffix(".tmp")
        try:
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(token)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError(f"Could not persist session tokens: {e}") from e

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


# =============================================================================
# SESSION MANAGER
# =============================================================================

class TokenSessionManager:
    """
    Single writer of the token pair.

    Only ``start_session`` (login) and ``refresh`` replace the tokens; at most
    one refresh runs at a time and late callers attach to the pending one.
    """

    def __init__(
        self,
        store: TokenStore,
        bus: Optional[EventBus] = None,
        refresh_handler: Optional[RefreshHandler] = None,
    ):
        self._store = store
        self._bus = bus
        self._refresh_handler = refresh_handler
        self._session: Optional[Session] = store.load()
        self._refresh_task: Optional[asyncio.Task] = None
        self.refresh_calls = 0

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None

    @property
    def refresh_in_progress(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    def attach_refresh_handler(self, handler: RefreshHandler) -> None:
        """Set the coroutine that exchanges a refresh token for a new token response."""
        self._refresh_handler = handler

    def get_access_token(self) -> Optional[str]:
        return self._session.access_token if self._session else None

    def get_refresh_token(self) -> Optional[str]:
        return self._session.refresh_token if self._session else None

    def start_session(self, session: Session) -> None:
        """Install tokens obtained from a successful login."""
        self._persist(session)
        self._session = session
        self._publish(True, "login")

    async def refresh(self) -> Session:
        """
        Obtain a new token pair, sharing an in-flight refresh if there is one.

        Raises:
            AuthError: refresh token missing, rejected, or the call failed;
                the session has been cleared.
        """
        # No await between the check and the assignment
        if self._refresh_task is None:
            task = asyncio.get_running_loop().create_task(self._perform_refresh())
            task.add_done_callback(self._on_refresh_done)
            self._refresh_task = task
        return await asyncio.shield(self._refresh_task)

    def _on_refresh_done(self, task: asyncio.Task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        if not task.cancelled():
            task.exception()

    async def _perform_refresh(self) -> Session:
        refresh_token = self.get_refresh_token()
        if not refresh_token:
            self.clear(reason="missing_refresh_token")
            raise AuthError("No refresh token available", reason="missing_refresh_token")
        if self._refresh_handler is None:
            raise AuthError("No refresh handler configured", reason="not_configured")

        self.refresh_calls += 1
        logger.info("Refreshing access token")
        try:
            payload = await self._refresh_handler(refresh_token)
            session = Session.from_token_response(payload)
        except AuthError:
            self.clear(reason="refresh_rejected")
            raise
        except MarketCoreError as e:
            self.clear(reason="refresh_failed")
            raise AuthError(f"Token refresh failed: {e.message}", reason="refresh_failed") from e

        try:
            self._persist(session)
        except StorageError as e:
            logger.error(f"Refreshed tokens kept in memory only: {e}")
        self._session = session
        self._publish(True, "refresh")
        return session

    def clear(self, reason: str = "logout") -> None:
        """Wipe both tokens from memory and the protected store; idempotent."""
        had_session = self._session is not None
        self._session = None
        self._store.clear()
        if had_session:
            logger.info(f"Session cleared ({reason})")
            self._publish(False, reason)

    def _persist(self, session: Session) -> None:
        self._store.save(session)

    def _publish(self, authenticated: bool, reason: str) -> None:
        if self._bus is not None:
            self._bus.publish(SessionChanged(authenticated=authenticated, reason=reason))

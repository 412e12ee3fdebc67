# =============================================================================
# market_core/repositories/auth_repository.py
# Login, Registration, Logout and Contact Matching
# =============================================================================

from __future__ import annotations
from typing import Iterable, List, Optional

from market_core.api.auth_connector import AuthConnector
from market_core.api.response_cache import ResponseCache
from market_core.api.session import Session, TokenSessionManager
from market_core.errors import CacheMissError
from market_core.models import Account, ContactMatch
from market_core.offline.strategies import ReadResult
from .base_repository import BaseRepository

CURRENT_USER_KEY = "current_user_id"


class AuthRepository(BaseRepository):
    """Session lifecycle on top of the token manager and the local cache."""

    def __init__(
        self,
        connector: AuthConnector,
        session_manager: TokenSessionManager,
        response_cache: Optional[ResponseCache],
        *args,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.connector = connector
        self.session_manager = session_manager
        self.response_cache = response_cache

    @property
    def current_user_id(self) -> Optional[str]:
        return self.database.get_setting(CURRENT_USER_KEY)

    @property
    def is_authenticated(self) -> bool:
        return self.session_manager.is_authenticated

    async def login(self, email: str, password: str) -> Account:
        """
        Exchange credentials for tokens and cache the signed-in account.

        Raises:
            AuthError: credentials rejected
            ValidationError: malformed request
            NetworkError: backend unreachable
        """
        with self.log_operation(f"Login for {email}"):
            tokens = await self.connector.login(email, password)
            self.session_manager.start_session(Session.from_token_response(tokens))
            account = await self.connector.me()

        self.write_through(self.database.upsert_account, account, f"account {account.id}")
        self.write_through(self._remember_user, account.id, "current user")
        return account

    def _remember_user(self, user_id: str) -> None:
        self.database.set_setting(CURRENT_USER_KEY, user_id)

    async def register(
        self,
        name: str,
        email: str,
        password: str,
        campus: Optional[str] = None,
    ) -> Account:
        """Create the account remotely; the caller logs in afterwards."""
        with self.log_operation(f"Registering {email}"):
            account = await self.connector.register(name, email, password, campus)
        self.write_through(self.database.upsert_account, account, f"account {account.id}")
        return account

    async def current_user(self) -> ReadResult[Account]:
        user_id = self.current_user_id
        if user_id is None and not self.is_authenticated:
            raise CacheMissError("No signed-in user", resource="current user")

        def load_cached() -> Optional[Account]:
            return self.database.get_account(user_id) if user_id else None

        return await self.gated.fetch(
            "current user",
            self.connector.me,
            self.database.upsert_account,
            load_cached,
        )

    async def match_contacts(self, emails: Iterable[str]) -> List[ContactMatch]:
        return await self.connector.match_contacts(emails)

    def logout(self) -> None:
        """Forget tokens and every cached domain row; the cart survives."""
        self.session_manager.clear(reason="logout")
        self.database.clear_all()
        if self.response_cache is not None:
            self.response_cache.clear()
        self.database.delete_setting(CURRENT_USER_KEY)
        self.logger.info("Logged out and cleared local data")

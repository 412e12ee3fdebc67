"""
Auth and contacts endpoints
"""
import hashlib
from typing import Any, Dict, Iterable, List, Optional

from market_core.api.base_connector import BaseConnector
from market_core.models import Account, ContactMatch


def hash_email(email: str) -> str:
    """SHA-256 of the trimmed, lower-cased address (what /contacts/match expects)."""
    return hashlib.sha256(email.strip().lower().encode("utf-8")).hexdigest()


class AuthConnector(BaseConnector):
    """/auth/* and /contacts/match"""

    resource_name = "auth"

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        """Returns the token response ``{access_token, refresh_token, ...}``."""
        response = await self._make_request(
            "/auth/login",
            method="POST",
            data={"email": email, "password": password},
            authenticate=False,
            use_cache=False,
        )
        return self.expect_object(response)

    async def register(
        self,
        name: str,
        email: str,
        password: str,
        campus: Optional[str] = None,
    ) -> Account:
        payload = {"name": name, "email": email, "password": password}
        if campus:
            payload["campus"] = campus
        response = await self._make_request(
            "/auth/register",
            method="POST",
            data=payload,
            authenticate=False,
            use_cache=False,
        )
        return Account.from_json(self.expect_object(response))

    async def me(self) -> Account:
        response = await self._make_request("/auth/me")
        return Account.from_json(self.expect_object(response))

    async def match_contacts(self, emails: Iterable[str]) -> List[ContactMatch]:
        hashes = sorted({hash_email(e) for e in emails if e and e.strip()})
        if not hashes:
            return []
        response = await self._make_request(
            "/contacts/match",
            method="POST",
            data={"email_hashes": hashes},
            use_cache=False,
        )
        data = response.data
        if isinstance(data, dict) and isinstance(data.get("matches"), list):
            data = data["matches"]
        return self.parse_list(data, ContactMatch.from_json)

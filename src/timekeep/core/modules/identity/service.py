from typing import Any
from urllib.parse import quote

import httpx
import structlog
from pymongo.asynchronous.database import AsyncDatabase

from timekeep.core.core import Service
from timekeep.errors import IdentityProviderError

logger = structlog.get_logger(__name__)


class IdentityService(Service):
    """Client for the identity provider's admin API.

    Only the two operations the password flow needs: verifying the current
    password and setting a new one. Shares the HTTP client of the token service.
    """

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self.http_client: httpx.AsyncClient | None = None

    async def on_start(self) -> None:
        if self.http_client is None:
            self.http_client = self.core.services.token.http_client

    async def verify_password(self, username: str, password: str) -> bool:
        """True when the identity provider accepts the credentials."""
        response = await self._post("/auth/verify", {"username": username, "password": password}, allowed=(400, 401))
        return response.is_success

    async def set_password(self, username: str, new_password: str) -> None:
        """Replace the user's password at the identity provider."""
        await self._post(f"/users/{quote(username, safe='')}/password", {"password": new_password, "permanent": True})
        logger.info("identity_password_updated", username=username)

    async def _post(self, path: str, payload: dict[str, Any], allowed: tuple[int, ...] = ()) -> httpx.Response:
        base_url = self.core.config.identity_admin_url
        if not base_url or self.http_client is None:
            raise IdentityProviderError("Identity provider admin API is not configured")

        headers = {"Accept": "application/json"}
        if self.core.config.identity_admin_token:
            headers["Authorization"] = f"Bearer {self.core.config.identity_admin_token}"

        try:
            response = await self.http_client.post(f"{base_url.rstrip('/')}{path}", json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error("identity_request_failed", path=path, error=str(e))
            raise IdentityProviderError from e

        if response.is_success or response.status_code in allowed:
            return response
        logger.error("identity_request_rejected", path=path, status_code=response.status_code)
        raise IdentityProviderError

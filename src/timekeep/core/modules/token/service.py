from typing import Any

import httpx
import structlog
from pymongo.asynchronous.database import AsyncDatabase

from timekeep.core.core import Service
from timekeep.core.modules.token.keys import JwksClient, SigningKeyCache
from timekeep.core.modules.token.models import TokenValidationResult
from timekeep.core.modules.token.validator import TokenValidator

logger = structlog.get_logger(__name__)


class TokenService(Service):
    """Owns the process-wide signing key cache and the token validator."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self.http_client: httpx.AsyncClient | None = None
        self._owns_http_client = False
        self._validator: TokenValidator | None = None

    async def on_start(self) -> None:
        config = self.core.config
        if self.http_client is None:
            self.http_client = httpx.AsyncClient(timeout=config.http_timeout_seconds)
            self._owns_http_client = True
        cache = SigningKeyCache(max_entries=config.jwks_cache_max_entries, ttl_seconds=config.jwks_cache_ttl_seconds)
        jwks_client = JwksClient(config.jwks_url, self.http_client, cache)
        self._validator = TokenValidator(config.identity_issuer, jwks_client, audience=config.identity_audience)
        logger.debug("token_service_started", issuer=config.identity_issuer, jwks_url=config.jwks_url)

    async def on_stop(self) -> None:
        if self.http_client is not None and self._owns_http_client:
            await self.http_client.aclose()
            self.http_client = None

    @property
    def validator(self) -> TokenValidator:
        if self._validator is None:
            raise RuntimeError("Token service not started")
        return self._validator

    async def validate(self, token: str) -> TokenValidationResult:
        return await self.validator.validate(token)

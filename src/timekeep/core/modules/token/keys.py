"""Signing key retrieval from the identity provider's published JWKS document."""

import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

import httpx
import structlog

logger = structlog.get_logger(__name__)


class KeyFetchError(Exception):
    """The JWKS document could not be fetched or parsed."""


class SigningKeyNotFound(Exception):
    """No published key matches the requested key id."""


class SigningKeyCache:
    """Bounded, time-limited cache of JWKs keyed by key id.

    Shared by all requests in the process. Population races are harmless:
    two concurrent misses store the same key twice.
    """

    def __init__(self, max_entries: int = 5, ttl_seconds: float = 600, clock: Callable[[], float] = time.monotonic) -> None:
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[dict[str, Any], float]] = OrderedDict()

    def get(self, kid: str) -> dict[str, Any] | None:
        entry = self._entries.get(kid)
        if entry is None:
            return None
        key, stored_at = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            self._entries.pop(kid, None)
            return None
        return key

    def put(self, kid: str, key: dict[str, Any]) -> None:
        self._entries.pop(kid, None)
        self._entries[kid] = (key, self._clock())
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, kid: object) -> bool:
        return isinstance(kid, str) and self.get(kid) is not None


class JwksClient:
    """Resolves key ids to public JWKs, fetching the JWKS document on a cache miss."""

    def __init__(self, jwks_url: str, http_client: httpx.AsyncClient, cache: SigningKeyCache) -> None:
        self.jwks_url = jwks_url
        self.http_client = http_client
        self.cache = cache

    async def get_signing_key(self, kid: str) -> dict[str, Any]:
        key = self.cache.get(kid)
        if key is not None:
            return key

        keys = await self.fetch_keys()
        for candidate in keys:
            candidate_kid = candidate.get("kid")
            if isinstance(candidate_kid, str):
                self.cache.put(candidate_kid, candidate)

        key = next((k for k in keys if k.get("kid") == kid), None)
        if key is None:
            raise SigningKeyNotFound(f"No signing key found for kid '{kid}'")
        return key

    async def fetch_keys(self) -> list[dict[str, Any]]:
        """Download the JWKS document. One request, no retries."""
        try:
            response = await self.http_client.get(self.jwks_url)
            response.raise_for_status()
            document = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise KeyFetchError(f"Failed to fetch signing keys: {e}") from e

        keys = document.get("keys") if isinstance(document, dict) else None
        if not isinstance(keys, list):
            raise KeyFetchError("Malformed JWKS document: missing 'keys'")

        logger.debug("jwks_fetched", url=self.jwks_url, key_count=len(keys))
        return [k for k in keys if isinstance(k, dict)]

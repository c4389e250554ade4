from typing import Any

import httpx
import structlog
from pymongo.asynchronous.database import AsyncDatabase

from timekeep.core.core import Service
from timekeep.core.modules.session.models import SessionLocation
from timekeep.utils import is_public_ip

logger = structlog.get_logger(__name__)


class GeoService(Service):
    """Approximate location of an IP address, best effort.

    Disabled when no geolocation URL is configured. The lookup endpoint
    follows the ip-api.com JSON shape: ``GET {url}/{ip}``.
    """

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self.http_client: httpx.AsyncClient | None = None

    async def on_start(self) -> None:
        if self.http_client is None:
            self.http_client = self.core.services.token.http_client

    async def lookup(self, ip_address: str) -> SessionLocation | None:
        url = self.core.config.geolocation_url
        if not url or self.http_client is None or not is_public_ip(ip_address):
            return None

        try:
            response = await self.http_client.get(f"{url.rstrip('/')}/{ip_address}")
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("geolocation_lookup_failed", ip_address=ip_address, error=str(e))
            return None

        if not isinstance(data, dict) or data.get("status", "success") != "success":
            return None
        city, country = data.get("city"), data.get("country")
        if not city or not country:
            return None
        return SessionLocation(city=city, country=country)

import ipaddress
import logging

import httpx

from config import GEOIP_CACHE_TTL, GEOIP_TIMEOUT, GEOIP_URL
from app.redis import get_cache, set_cache

logger = logging.getLogger(__name__)


def geoip_cache_key(ip: str) -> str:
    return f"geoip:{ip}"


class GeoIpResolver:
    """Best-effort IP to country lookup against an ip-api compatible endpoint.

    ``lookup`` never raises: unroutable addresses, timeouts, transport errors
    and malformed bodies all come back as ``None``. Countries are cached in
    Redis for ``cache_ttl`` seconds; failures are not cached so the next
    visit from the same address tries again.
    """

    def __init__(
        self,
        url_template: str = GEOIP_URL,
        timeout: float = GEOIP_TIMEOUT,
        transport=None,
        cache_ttl: int = GEOIP_CACHE_TTL,
    ):
        self.url_template = url_template
        self.timeout = timeout
        self.transport = transport
        self.cache_ttl = cache_ttl

    @staticmethod
    def is_public(ip: str | None) -> bool:
        if not ip:
            return False
        try:
            address = ipaddress.ip_address(ip)
        except ValueError:
            return False
        return address.is_global

    async def lookup(self, ip: str | None) -> str | None:
        if not self.is_public(ip):
            return None

        cached = await get_cache(geoip_cache_key(ip))
        if cached:
            return cached.get("country")

        country = await self._fetch(ip)
        if country is not None:
            await set_cache(geoip_cache_key(ip), {"country": country}, expire=self.cache_ttl)
        return country

    async def _fetch(self, ip: str) -> str | None:
        url = self.url_template.format(ip=ip)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(url)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(f"Geo-IP lookup failed for {ip}: {exc}")
            return None

        country = data.get("countryCode") if isinstance(data, dict) else None
        if not isinstance(country, str) or len(country) != 2:
            return None
        return country.upper()


geoip_resolver = GeoIpResolver()


def get_geoip_resolver() -> GeoIpResolver:
    return geoip_resolver

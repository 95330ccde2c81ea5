"""
app/services/geolocation.py — IP geolocation with an in-process TTL cache
=========================================================================

Uses ip-api.com (free, no key, 45 requests/minute). Results are cached per
IP for ``cache_ttl_hours``. The cache holds at most ``cache_max_entries``
addresses; every write drops expired entries, then the oldest ones.

Local, private and unparseable addresses never reach the network and
resolve to a fixed "Local" location.
"""

import ipaddress
import logging
import time
from collections import OrderedDict
from threading import Lock
from typing import Callable, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

LOCAL_LOCATION = {"country": "Unknown", "countryCode": "XX", "city": "Local"}

_FIELDS = "status,message,country,countryCode,region,regionName,city,zip,lat,lon,timezone,isp,org,as"
_LOCATION_KEYS = (
    "country", "countryCode", "region", "regionName", "city", "zip",
    "lat", "lon", "timezone", "isp", "org", "as",
)


def is_local_address(ip: Optional[str]) -> bool:
    """True for missing, loopback, private, link-local or unparseable addresses."""
    if not ip or ip == "unknown":
        return True
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return True
    return addr.is_private or addr.is_loopback or addr.is_link_local or addr.is_unspecified


def is_known_location(location: Optional[dict]) -> bool:
    return bool(location) and location.get("country") not in (None, "Unknown")


class GeoLocator:
    """Async ip-api.com client with TTL cache."""

    def __init__(
        self,
        base_url: str = "http://ip-api.com/json",
        timeout: float = 2.0,
        cache_ttl_hours: float = 24.0,
        enabled: bool = True,
        cache_max_entries: int = 1000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cache_ttl = cache_ttl_hours * 3600
        self.enabled = enabled
        self.cache_max_entries = cache_max_entries
        self._clock = clock
        self._cache: "OrderedDict[str, Tuple[dict, float]]" = OrderedDict()
        self._lock = Lock()

    @classmethod
    def from_config(cls, cfg: dict) -> "GeoLocator":
        return cls(
            base_url=cfg.get("base_url", "http://ip-api.com/json"),
            timeout=float(cfg.get("timeout_seconds", 2.0)),
            cache_ttl_hours=float(cfg.get("cache_ttl_hours", 24)),
            enabled=cfg.get("enabled", True),
            cache_max_entries=int(cfg.get("cache_max_entries", 1000)),
        )

    def _cached(self, ip: str) -> Optional[dict]:
        with self._lock:
            hit = self._cache.get(ip)
            if hit and self._clock() - hit[1] < self.cache_ttl:
                return hit[0]
            return None

    async def lookup(self, ip: Optional[str]) -> Optional[dict]:
        """
        Resolve *ip* to a GeoLocation dict (camelCase keys).

        Returns ``LOCAL_LOCATION`` for local addresses and ``None`` when the
        lookup fails or geolocation is disabled.
        """
        if is_local_address(ip):
            return dict(LOCAL_LOCATION)
        if not self.enabled:
            return None

        cached = self._cached(ip)
        if cached:
            return cached

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(
                    f"{self.base_url}/{ip}",
                    params={"fields": _FIELDS},
                    headers={"User-Agent": "Mozilla/5.0 Portfolio Analytics"},
                )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("GEO_LOOKUP_FAILED | %s | %s", ip, e)
            return None

        if data.get("status") == "fail":
            logger.error("GEO_LOOKUP_FAILED | %s | %s", ip, data.get("message"))
            return None

        location = {key: data.get(key) for key in _LOCATION_KEYS}
        self._remember(ip, location)
        return location

    def _remember(self, ip: str, location: dict) -> None:
        with self._lock:
            now = self._clock()
            expired = [key for key, (_, ts) in self._cache.items() if now - ts >= self.cache_ttl]
            for key in expired:
                del self._cache[key]

            self._cache.pop(ip, None)
            self._cache[ip] = (location, now)
            while len(self._cache) > self.cache_max_entries:
                oldest, _ = self._cache.popitem(last=False)
                logger.debug("GEO_CACHE_EVICT | %s", oldest)

    async def lookup_raw(self, ip: Optional[str]) -> dict:
        """Full ip-api.com payload (used for form submission metadata); ``{}`` on failure."""
        if is_local_address(ip) or not self.enabled:
            return {}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(f"{self.base_url}/{ip}")
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("GEO_LOOKUP_FAILED | %s | %s", ip, e)
            return {}

    def clear_cache(self) -> int:
        with self._lock:
            size = len(self._cache)
            self._cache.clear()
        return size

    def cache_stats(self) -> dict:
        with self._lock:
            return {
                "size": len(self._cache),
                "entries": [
                    {
                        "ip": ip,
                        "location": f"{loc.get('city')}, {loc.get('country')}",
                        "cachedAt": ts,
                    }
                    for ip, (loc, ts) in self._cache.items()
                ],
            }

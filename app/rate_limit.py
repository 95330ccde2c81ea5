"""
app/rate_limit.py — In-memory sliding-window rate limiter
=========================================================

Guards the tracking / fingerprint / profile endpoints. The slowapi limiter
for the remaining public write routes lives at the bottom of this module.

For each identifier (client host) the limiter keeps the timestamps of the
accepted requests. A check:

  1. drops timestamps older than ``interval`` seconds
  2. rejects (``RateLimitError``) when ``limit`` timestamps remain
  3. otherwise records *now*
  4. evicts the insertion-order-oldest identifier once more than
     ``unique_token_per_interval`` identifiers are tracked

Rejected requests are not recorded. State is per process and is lost on
restart; two limiters are configured per app (``fingerprint`` and
``analytics``), see config.tech.yaml → rate_limits.
"""

import logging
import time
from collections import OrderedDict
from threading import Lock
from typing import Callable, Dict, List

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)


class RateLimitError(Exception):
    """Raised when an identifier exceeded its request budget."""

    def __init__(self, identifier: str, limit: int, message: str = "Rate limit exceeded"):
        super().__init__(message)
        self.identifier = identifier
        self.limit = limit
        self.message = message


class RateLimiter:
    """Sliding-window limiter keyed by an arbitrary identifier string."""

    def __init__(
        self,
        interval: float,
        unique_token_per_interval: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval = interval
        self.unique_token_per_interval = unique_token_per_interval
        self._clock = clock
        self._windows: "OrderedDict[str, List[float]]" = OrderedDict()
        self._lock = Lock()

    def _recent(self, identifier: str, now: float) -> List[float]:
        return [t for t in self._windows.get(identifier, []) if now - t < self.interval]

    def check(self, identifier: str, limit: int) -> None:
        """Record one request for *identifier* or raise ``RateLimitError``."""
        with self._lock:
            now = self._clock()
            window = self._recent(identifier, now)

            if len(window) >= limit:
                raise RateLimitError(identifier, limit)

            window.append(now)
            # Re-assigning an existing key keeps its insertion position
            self._windows[identifier] = window

            if len(self._windows) > self.unique_token_per_interval:
                oldest, _ = self._windows.popitem(last=False)
                logger.debug("RATE_LIMIT_EVICT | %s", oldest)

    def get_remaining(self, identifier: str, limit: int) -> int:
        with self._lock:
            return max(0, limit - len(self._recent(identifier, self._clock())))

    def reset(self, identifier: str) -> None:
        with self._lock:
            self._windows.pop(identifier, None)

    def __len__(self) -> int:
        return len(self._windows)


def build_rate_limiters(rate_cfg: dict) -> Dict[str, RateLimiter]:
    """Create the named limiters from the ``rate_limits`` config block."""
    defaults = {
        "fingerprint": {"interval_seconds": 60, "unique_tokens": 500},
        "analytics":   {"interval_seconds": 60, "unique_tokens": 100},
    }
    limiters = {}
    for name, default in defaults.items():
        cfg = {**default, **(rate_cfg.get(name) or {})}
        limiters[name] = RateLimiter(
            interval=float(cfg["interval_seconds"]),
            unique_token_per_interval=int(cfg["unique_tokens"]),
        )
    return limiters


def client_identifier(request: Request) -> str:
    """Rate-limit key: the socket peer (already rewritten by ProxyHeadersMiddleware)."""
    return request.client.host if request.client else "anonymous"


def rate_limited(name: str, limit: int):
    """
    FastAPI dependency factory.

    Usage::

        @router.post("/pageview", dependencies=[Depends(rate_limited("fingerprint", 30))])
    """
    def _dependency(request: Request) -> None:
        limiter: RateLimiter = request.app.state.rate_limiters[name]
        identifier = client_identifier(request)
        try:
            limiter.check(identifier, limit)
        except RateLimitError:
            logger.warning("RATE_LIMITED | %s | %s %s | limit=%d",
                           identifier, request.method, request.url.path, limit)
            raise

    return _dependency


# ── Fixed-window limits (slowapi) ─────────────────────────────────────────────
# Contact, congratulation, form and analytics-ingest routes are limited per
# remote address with slowapi. Limit strings come from config.tech.yaml →
# default_limits and are resolved per request.

limiter = Limiter(key_func=get_remote_address)

_DEFAULT_LIMITS = {
    "contact": "5/minute",
    "congratulation": "30/minute",
    "forms": "30/minute",
    "analytics_ingest": "120/minute",
}
_configured_limits: Dict[str, str] = dict(_DEFAULT_LIMITS)


def configure_default_limits(cfg: dict) -> None:
    _configured_limits.clear()
    _configured_limits.update({**_DEFAULT_LIMITS, **(cfg or {})})


def default_limit(name: str) -> Callable[[], str]:
    """Limit provider for ``@limiter.limit(default_limit("contact"))``."""
    return lambda: _configured_limits[name]

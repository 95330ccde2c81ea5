"""
app/dependencies/access_control.py — Shared-secret access control
=================================================================

Three secrets guard the non-public parts of the API. All come from the
environment (``.env``) and are read per request:

  ANALYTICS_API_KEY        Authorization: Bearer <key>  on analytics read
                           endpoints and form administration
  ADMIN_CONGRATS_PASSWORD  ``password`` field of POST /api/congratulation
  REVALIDATE_SECRET        ``?secret=`` on GET /api/revalidate

An unset secret is a server misconfiguration (500); a missing or wrong
value is the caller's fault (401).

Usage
-----
::

    from app.dependencies.access_control import require_api_key

    @router.get("/summary", dependencies=[Depends(require_api_key)])
    async def summary(...):
        ...
"""

import hmac
import logging
from typing import Optional

from fastapi import HTTPException, Request

from config_loader import get_secret

logger = logging.getLogger(__name__)


def _secrets_match(supplied: Optional[str], expected: str) -> bool:
    return bool(supplied) and hmac.compare_digest(supplied.encode(), expected.encode())


# ── Token extraction ──────────────────────────────────────────────────────────

def _extract_bearer(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth[len("Bearer "):].strip() or None
    return None


# ── API key gate ──────────────────────────────────────────────────────────────

class _ApiKeyGate:
    """
    Callable FastAPI dependency comparing the bearer token against an
    environment secret.

    Error bodies keep the ``{"error": ...}`` shape the analytics dashboard
    already parses.
    """

    def __init__(self, env_name: str) -> None:
        self._env_name = env_name

    def __call__(self, request: Request) -> None:
        expected = get_secret(self._env_name)
        if not expected:
            logger.error("%s environment variable is not set", self._env_name)
            raise HTTPException(
                500, {"error": "Server configuration error: API key not configured"}
            )

        if not _secrets_match(_extract_bearer(request), expected):
            logger.warning("UNAUTHORIZED | %s %s", request.method, request.url.path)
            raise HTTPException(401, {"error": "Unauthorized: Invalid or missing API key"})


require_api_key = _ApiKeyGate("ANALYTICS_API_KEY")


# ── Body / query secrets ──────────────────────────────────────────────────────

def check_admin_password(password: Optional[str]) -> None:
    """Raise 500 if the admin password is unset, 401 if *password* differs."""
    expected = get_secret("ADMIN_CONGRATS_PASSWORD")
    if not expected:
        logger.error("ADMIN_CONGRATS_PASSWORD environment variable is not set")
        raise HTTPException(500, "Server configuration error")
    if not _secrets_match(password, expected):
        logger.warning("CONGRATS_BAD_PASSWORD")
        raise HTTPException(401, "Invalid password")


def check_revalidate_secret(secret: Optional[str]) -> None:
    expected = get_secret("REVALIDATE_SECRET")
    if not expected or not _secrets_match(secret, expected):
        raise HTTPException(401, {"message": "Invalid token"})

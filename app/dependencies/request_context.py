"""
app/dependencies/request_context.py — Per-request resources
===========================================================

``db``          scoped SQLite connection (path from app.state.db_path)
``client_ip``   visitor address for geolocation and fingerprint records
``network_info`` header-level identifiers stored with each fingerprint
"""

from fastapi import Request

from db.models import get_db


def db(request: Request):
    """Database connection dependency."""
    conn = get_db(request.app.state.db_path)
    try:
        yield conn
    finally:
        conn.close()


def client_ip(request: Request) -> str:
    """
    Priority: first ``X-Forwarded-For`` entry > ``X-Real-IP`` > socket peer.
    Returns ``"unknown"`` when nothing is available.
    """
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def network_info(request: Request) -> dict:
    return {
        "ip": client_ip(request),
        "userAgent": request.headers.get("user-agent") or "unknown",
        "acceptLanguage": request.headers.get("accept-language") or "",
        "acceptEncoding": request.headers.get("accept-encoding") or "",
    }

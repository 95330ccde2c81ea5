"""
app/routers/track.py — Visitor tracking ingestion
=================================================

Endpoints (sliding-window limiter "fingerprint", per client host):
  POST /api/track/pageview      → record one page view           (30/min)
  POST /api/track/interaction   → record one interaction         (50/min)
  POST /api/track/session       → start a session, geolocate IP  (20/min)
  PUT  /api/track/session       → end a session, update averages (20/min)

Every write lands in the visitor's profile; a profile is created on the
first write for an unknown userId.
"""

import logging
import secrets
import string
import time
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, HTTPException, Request

from app.dependencies.request_context import client_ip, db
from app.rate_limit import rate_limited
from app.schemas import InteractionRequest, PageViewRequest, SessionEndRequest, SessionStartRequest
from app.services import profile_manager
from app.services.geolocation import is_known_location
from db.models import now_iso

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/track", tags=["Tracking"])


def _pathname(url: str) -> str:
    """Path component of *url*; the raw value when it does not parse as a URL."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return url
    if not parsed.scheme or not parsed.netloc:
        return url
    return parsed.path or "/"


def _session_id() -> str:
    alphabet = string.ascii_lowercase + string.digits
    return f"ses_{int(time.time() * 1000)}_{''.join(secrets.choice(alphabet) for _ in range(13))}"


@router.post("/pageview", dependencies=[Depends(rate_limited("fingerprint", 30))])
async def track_pageview(body: PageViewRequest, conn=Depends(db)):
    if not body.user_id or not body.url:
        raise HTTPException(400, "userId and url are required")

    profile_manager.track_page_view(conn, body.user_id, {
        "url": body.url,
        "pathname": _pathname(body.url),
        "title": body.title or "Untitled",
        "referrer": body.referrer or "",
        "timestamp": now_iso(),
        "duration": body.duration,
        "scrollDepth": body.scroll_depth,
    })
    return {"success": True}


@router.post("/interaction", dependencies=[Depends(rate_limited("fingerprint", 50))])
async def track_interaction(body: InteractionRequest, conn=Depends(db)):
    if not body.user_id or not body.type or not body.page:
        raise HTTPException(400, "userId, type, and page are required")
    if body.type not in profile_manager.INTERACTION_TYPES:
        raise HTTPException(400, "Invalid interaction type")

    profile_manager.track_interaction(conn, body.user_id, {
        "type": body.type,
        "element": body.element,
        "elementId": body.element_id,
        "elementClass": body.element_class,
        "data": body.data,
        "page": body.page,
        "timestamp": now_iso(),
    })
    return {"success": True}


@router.post("/session", dependencies=[Depends(rate_limited("fingerprint", 20))])
async def start_session(body: SessionStartRequest, request: Request, conn=Depends(db)):
    if not body.user_id or not body.device:
        raise HTTPException(400, "userId and device are required")

    session_id = _session_id()
    ip = client_ip(request)
    location = await request.app.state.geolocator.lookup(ip)

    profile_manager.start_session(conn, body.user_id, {
        "sessionId": session_id,
        "startTime": now_iso(),
        "location": location,
        "device": body.device,
    })
    if is_known_location(location):
        profile_manager.add_location(conn, body.user_id, location)

    return {"success": True, "sessionId": session_id}


@router.put("/session", dependencies=[Depends(rate_limited("fingerprint", 20))])
async def end_session(body: SessionEndRequest, conn=Depends(db)):
    if not body.user_id or not body.session_id:
        raise HTTPException(400, "userId and sessionId are required")

    try:
        profile_manager.end_session(
            conn,
            body.user_id,
            body.session_id,
            body.duration or 0,
            body.page_view_count or 0,
            body.interaction_count or 0,
        )
    except profile_manager.SessionNotFoundError:
        raise HTTPException(404, "Session not found")
    return {"success": True}

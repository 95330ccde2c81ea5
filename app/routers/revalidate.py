"""
app/routers/revalidate.py — Cache revalidation hook
===================================================

GET /api/revalidate?secret=<REVALIDATE_SECRET> drops the in-process caches
(geolocation lookups, fingerprint transparency document) so the next
request sees fresh data.
"""

import logging
import time
from typing import Optional

from fastapi import APIRouter, Query, Request

from app.dependencies.access_control import check_revalidate_secret
from app.routers.fingerprint import load_fingerprint_info

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Revalidation"])


@router.get("/revalidate")
async def revalidate(request: Request, secret: Optional[str] = Query(None)):
    check_revalidate_secret(secret)

    dropped = request.app.state.geolocator.clear_cache()
    load_fingerprint_info.cache_clear()
    logger.info("REVALIDATED | geo cache entries dropped=%d", dropped)
    return {"revalidated": True, "now": int(time.time() * 1000)}

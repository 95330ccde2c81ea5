"""
app/routers/profile.py — Visitor profiles
=========================================

Endpoints (sliding-window limiter "analytics"):
  GET    /api/profile?userId=         → one profile                 (20/min)
  GET    /api/profile?page=&limit=    → paginated profile list      (20/min)
  POST   /api/profile                 → add a tag                   (10/min)
  DELETE /api/profile?userId=&tag=    → remove tag / whole profile  (10/min)
  GET    /api/profile/analytics       → aggregate visitor metrics   (10/min)
"""

import math
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.dependencies.request_context import db
from app.rate_limit import rate_limited
from app.schemas import TagRequest
from app.services import analytics, profile_manager
from db.models import now_iso

router = APIRouter(prefix="/api/profile", tags=["Profiles"])


@router.get("", dependencies=[Depends(rate_limited("analytics", 20))])
async def get_profiles(
    user_id: Optional[str] = Query(None, alias="userId"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    conn=Depends(db),
):
    if user_id:
        profile = profile_manager.get_profile(conn, user_id)
        if not profile:
            raise HTTPException(404, "Profile not found")
        return {"success": True, "profile": profile}

    profiles, total = profile_manager.list_profiles(conn, page, limit)
    return {
        "success": True,
        "profiles": profiles,
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": math.ceil(total / limit),
    }


@router.post("", dependencies=[Depends(rate_limited("analytics", 10))])
async def add_tag(body: TagRequest, conn=Depends(db)):
    if not body.user_id or not body.tag:
        raise HTTPException(400, "userId and tag are required")
    profile_manager.add_tag(conn, body.user_id, body.tag)
    return {"success": True}


@router.delete("", dependencies=[Depends(rate_limited("analytics", 10))])
async def delete(
    user_id: Optional[str] = Query(None, alias="userId"),
    tag: Optional[str] = Query(None),
    conn=Depends(db),
):
    if not user_id:
        raise HTTPException(400, "userId is required")

    if tag:
        profile_manager.remove_tag(conn, user_id, tag)
        return {"success": True, "message": "Tag removed"}

    profile_manager.delete_profile(conn, user_id)
    return {"success": True, "message": "Profile deleted"}


@router.get("/analytics", dependencies=[Depends(rate_limited("analytics", 10))])
async def profile_analytics(conn=Depends(db)):
    return {"success": True, "analytics": analytics.profile_analytics(conn), "timestamp": now_iso()}

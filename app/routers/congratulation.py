"""
app/routers/congratulation.py — Congratulation cards
====================================================

Endpoints:
  POST /api/congratulation        → create a card (admin password in body)
  GET  /api/congratulation/{id}   → fetch a card

A card is a short public page at ``<frontend_url>/congratulation/<id>``.
"""

import logging
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from app.dependencies.access_control import check_admin_password
from app.dependencies.request_context import db
from app.rate_limit import default_limit, limiter
from app.schemas import CongratulationRequest
from db.models import now_iso, short_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/congratulation", tags=["Congratulations"])

MAX_NAME_LENGTH = 100
MAX_MESSAGE_LENGTH = 500


def is_valid_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return bool(parsed.scheme) and bool(parsed.netloc or parsed.path)


def _entry_to_dict(row) -> dict:
    entry = {"id": row["id"], "name": row["name"], "createdAt": row["created_at"]}
    # Optional fields are omitted rather than null
    for key, col in (("message", "message"), ("postUrl", "post_url"), ("imageUrl", "image_url")):
        if row[col]:
            entry[key] = row[col]
    return entry


@router.post("")
@limiter.limit(default_limit("congratulation"))
async def create(request: Request, body: CongratulationRequest, conn=Depends(db)):
    check_admin_password(body.password)

    name = (body.name or "").strip()
    if not name:
        raise HTTPException(400, "Name is required")
    if len(body.name) > MAX_NAME_LENGTH:
        raise HTTPException(400, "Name must be less than 100 characters")
    if body.message and len(body.message) > MAX_MESSAGE_LENGTH:
        raise HTTPException(400, "Message must be less than 500 characters")
    if body.post_url and not is_valid_url(body.post_url):
        raise HTTPException(400, "Invalid LinkedIn post URL")

    entry_id = short_id(10)
    conn.execute(
        """
        INSERT INTO congratulations (id, name, message, post_url, image_url, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            entry_id,
            name,
            (body.message or "").strip() or None,
            (body.post_url or "").strip() or None,
            body.image_url or None,
            now_iso(),
        ),
    )
    conn.commit()
    logger.info("CONGRATS_CREATED | %s | %s", entry_id, name)

    frontend_url = request.app.state.frontend_url.rstrip("/")
    return JSONResponse(
        status_code=201,
        content={
            "success": True,
            "id": entry_id,
            "url": f"{frontend_url}/congratulation/{entry_id}",
            "message": "Congratulation page created successfully",
        },
    )


@router.get("/{entry_id}")
async def get(entry_id: str, conn=Depends(db)):
    row = conn.execute("SELECT * FROM congratulations WHERE id = ?", (entry_id,)).fetchone()
    if not row:
        raise HTTPException(404, "Congratulation not found")
    return {"success": True, "data": _entry_to_dict(row)}

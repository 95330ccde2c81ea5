"""
app/routers/fingerprint.py — Browser fingerprint identification
===============================================================

Endpoints:
  POST /api/fingerprint           → identify visitor from a fingerprint   (10/min)
  GET  /api/fingerprint?userId=   → user + 10 most recent fingerprints    (20/min)
  GET  /api/fingerprint/info      → transparency document (static YAML)
  GET  /api/fingerprint/stats     → totals, entropy, distributions        (10/min, analytics limiter)

Identification flow for POST:
  1. Known hash              → reuse its user, bump seenCount / lastSeen
  2. Unknown hash + existingUserId → adopt the id supplied by the client
  3. Otherwise               → identity resolution (fuzzy / recent IP / new)
  4. Upsert user, ensure profile, geolocate, store a known location
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from app.dependencies.request_context import db, network_info
from app.rate_limit import rate_limited
from app.schemas import FingerprintRequest
from app.services import analytics, profile_manager
from app.services.fingerprint_matcher import bot_score, detect_inconsistencies
from app.services.geolocation import is_known_location
from app.services.identity_resolver import resolve_identity
from db.models import now_iso, to_json

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/fingerprint", tags=["Fingerprinting"])

INFO_PATH = Path(__file__).parent.parent / "fingerprint_info.yaml"


@lru_cache(maxsize=1)
def load_fingerprint_info() -> dict:
    with open(INFO_PATH, encoding="utf-8") as f:
        return yaml.safe_load(f)


def _store_fingerprint(conn, fp_hash: str, fingerprint: dict, network: dict,
                       user_id: str, confidence: float) -> None:
    issues = detect_inconsistencies(fingerprint)
    score = bot_score(fingerprint)
    ts = now_iso()
    conn.execute(
        """
        INSERT INTO fingerprints
            (hash, user_id, data, ip, created_at, last_seen, seen_count,
             confidence, bot_score, suspicious, suspicious_reasons)
        VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?, ?, ?)
        """,
        (
            fp_hash, user_id, to_json({**fingerprint, "network": network}),
            network["ip"], ts, ts, confidence, score,
            1 if issues else 0, to_json(issues),
        ),
    )
    if issues:
        logger.warning("FINGERPRINT_SUSPICIOUS | %s | bot_score=%d | %s",
                       user_id, score, "; ".join(issues))


def _upsert_user(conn, user_id: str) -> None:
    ts = now_iso()
    conn.execute(
        """
        INSERT INTO users (user_id, created_at, last_seen) VALUES (?, ?, ?)
        ON CONFLICT(user_id) DO UPDATE SET last_seen = excluded.last_seen
        """,
        (user_id, ts, ts),
    )


@router.post("", dependencies=[Depends(rate_limited("fingerprint", 10))])
async def identify(body: FingerprintRequest, request: Request, conn=Depends(db)):
    if not body.fingerprint or not body.hash:
        raise HTTPException(400, "Invalid request payload")

    network = network_info(request)
    is_new_user = False

    existing = conn.execute(
        "SELECT id, user_id FROM fingerprints WHERE hash = ?", (body.hash,)
    ).fetchone()

    if existing:
        user_id = existing["user_id"]
        confidence, method = 0.95, "exact_fingerprint"
        conn.execute(
            "UPDATE fingerprints SET last_seen = ?, seen_count = seen_count + 1 WHERE id = ?",
            (now_iso(), existing["id"]),
        )
    else:
        if body.existing_user_id:
            user_id, confidence, method = body.existing_user_id, 1.0, "client_id"
        else:
            match = resolve_identity(conn, body.hash, body.fingerprint, network["ip"])
            user_id, confidence, method = match.user_id, match.confidence, match.method
            is_new_user = method == "new_user"
        _store_fingerprint(conn, body.hash, body.fingerprint, network, user_id, confidence)

    _upsert_user(conn, user_id)
    conn.commit()
    profile_manager.get_or_create_profile(conn, user_id)

    location = await request.app.state.geolocator.lookup(network["ip"])
    if is_known_location(location):
        profile_manager.add_location(conn, user_id, location)
    else:
        location = None

    logger.info("FINGERPRINT | %s | %s | new=%s", user_id, method, is_new_user)
    return {
        "success": True,
        "userId": user_id,
        "isNewUser": is_new_user,
        "location": location,
        "confidence": confidence,
        "method": method,
    }


@router.get("", dependencies=[Depends(rate_limited("fingerprint", 20))])
async def get_user(user_id: Optional[str] = Query(None, alias="userId"), conn=Depends(db)):
    if not user_id:
        raise HTTPException(400, "userId parameter required")

    user = conn.execute("SELECT * FROM users WHERE user_id = ?", (user_id,)).fetchone()
    if not user:
        raise HTTPException(404, "User not found")

    rows = conn.execute(
        "SELECT * FROM fingerprints WHERE user_id = ? ORDER BY last_seen DESC LIMIT 10",
        (user_id,),
    ).fetchall()
    return {
        "success": True,
        "userId": user["user_id"],
        "createdAt": user["created_at"],
        "lastSeen": user["last_seen"],
        "fingerprintCount": len(rows),
        "fingerprints": [
            {
                "id": str(r["id"]),
                "hash": r["hash"],
                "createdAt": r["created_at"],
                "lastSeen": r["last_seen"],
                "seenCount": r["seen_count"],
                "confidence": r["confidence"],
                "suspicious": bool(r["suspicious"]),
            }
            for r in rows
        ],
    }


@router.get("/info")
async def info():
    return {"success": True, "info": load_fingerprint_info(), "timestamp": now_iso()}


@router.get("/stats", dependencies=[Depends(rate_limited("analytics", 10))])
async def stats(conn=Depends(db)):
    return {"success": True, "stats": analytics.fingerprint_stats(conn), "timestamp": now_iso()}

"""
app/services/identity_resolver.py — Map a fingerprint to a visitor id
=====================================================================

Signals are tried from strongest to weakest:

  exact_fingerprint   same hash already stored             confidence 0.95
  fuzzy_fingerprint   weighted similarity ≥ 0.85 against
                      fingerprints from the last 30 days    similarity × 0.9
  ip_recent           same IP seen in the last 24 hours    confidence 0.6
  new_user            nothing matched                      confidence 1.0
"""

import logging
import secrets
import sqlite3
import string
import time
from dataclasses import dataclass
from typing import Optional

from app.services.fingerprint_matcher import find_best_match
from app.services.geolocation import is_local_address
from db.models import from_json, iso_ago

logger = logging.getLogger(__name__)

FUZZY_WINDOW_DAYS = 30
FUZZY_CANDIDATES = 500
FUZZY_THRESHOLD = 0.85
IP_WINDOW_HOURS = 24


@dataclass
class MatchResult:
    user_id: str
    confidence: float
    method: str


def generate_user_id() -> str:
    """``user_<epoch ms>_<7 random base36 chars>``"""
    alphabet = string.ascii_lowercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(7))
    return f"user_{int(time.time() * 1000)}_{suffix}"


def resolve_identity(
    conn: sqlite3.Connection,
    fingerprint_hash: str,
    fingerprint: dict,
    ip: Optional[str],
) -> MatchResult:
    row = conn.execute(
        "SELECT user_id FROM fingerprints WHERE hash = ?", (fingerprint_hash,)
    ).fetchone()
    if row:
        return MatchResult(row["user_id"], 0.95, "exact_fingerprint")

    candidates = [
        {"user_id": r["user_id"], "data": from_json(r["data"], {})}
        for r in conn.execute(
            "SELECT user_id, data FROM fingerprints WHERE created_at >= ? "
            "ORDER BY created_at DESC LIMIT ?",
            (iso_ago(days=FUZZY_WINDOW_DAYS), FUZZY_CANDIDATES),
        )
    ]
    fuzzy = find_best_match(fingerprint, candidates, FUZZY_THRESHOLD)
    if fuzzy:
        record, similarity = fuzzy
        logger.info("IDENTITY_FUZZY | %s | similarity=%.3f", record["user_id"], similarity)
        return MatchResult(record["user_id"], similarity * 0.9, "fuzzy_fingerprint")

    # Shared NAT / localhost addresses say nothing about identity
    if ip and not is_local_address(ip):
        row = conn.execute(
            "SELECT user_id FROM fingerprints WHERE ip = ? AND last_seen >= ? "
            "ORDER BY last_seen DESC LIMIT 1",
            (ip, iso_ago(hours=IP_WINDOW_HOURS)),
        ).fetchone()
        if row:
            return MatchResult(row["user_id"], 0.6, "ip_recent")

    return MatchResult(generate_user_id(), 1.0, "new_user")

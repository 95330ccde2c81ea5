"""
app/services/profile_manager.py — Visitor profile management
=============================================================

All reads and writes of ``user_profiles`` and its bounded histories go
through this module. Route handlers pass an open connection; every public
write commits before returning.

Histories kept per profile:
  locations     → last 10
  sessions      → last 30
  page views    → last 100
  interactions  → last 100

Profiles are serialized with camelCase keys (the browser tracker and the
admin dashboards consume them as-is).
"""

import logging
import sqlite3
from typing import Any, Dict, List, Optional, Tuple

from db.models import (
    MAX_INTERACTIONS,
    MAX_LOCATIONS,
    MAX_PAGE_VIEWS,
    MAX_SESSIONS,
    from_json,
    now_iso,
    prune_history,
    to_json,
)

logger = logging.getLogger(__name__)

INTERACTION_TYPES = ("click", "form_submit", "button_click", "link_click", "scroll", "custom")


class SessionNotFoundError(LookupError):
    pass


# ─────────────────────────────────────────────────────────────────────────────
# SERIALIZATION
# ─────────────────────────────────────────────────────────────────────────────

def _location_to_dict(row: sqlite3.Row) -> dict:
    return {
        "country": row["country"],
        "countryCode": row["country_code"],
        "region": row["region"],
        "regionName": row["region_name"],
        "city": row["city"],
        "zip": row["zip"],
        "lat": row["lat"],
        "lon": row["lon"],
        "timezone": row["timezone"],
        "isp": row["isp"],
        "org": row["org"],
        "as": row["as_name"],
    }


def _session_to_dict(row: sqlite3.Row) -> dict:
    return {
        "sessionId": row["session_id"],
        "startTime": row["start_time"],
        "endTime": row["end_time"],
        "duration": row["duration"],
        "pageViews": row["page_views"],
        "interactions": row["interactions"],
        "location": from_json(row["location"]),
        "device": {
            "type": row["device_type"],
            "browser": row["browser"],
            "os": row["os"],
            "screen": {"width": row["screen_width"], "height": row["screen_height"]},
        },
    }


def _page_view_to_dict(row: sqlite3.Row) -> dict:
    return {
        "url": row["url"],
        "pathname": row["pathname"],
        "title": row["title"],
        "referrer": row["referrer"],
        "timestamp": row["timestamp"],
        "duration": row["duration"],
        "scrollDepth": row["scroll_depth"],
    }


def _interaction_to_dict(row: sqlite3.Row) -> dict:
    return {
        "type": row["type"],
        "element": row["element"],
        "elementId": row["element_id"],
        "elementClass": row["element_class"],
        "data": from_json(row["data"]),
        "page": row["page"],
        "timestamp": row["timestamp"],
    }


def most_visited_pages(conn: sqlite3.Connection, user_id: str, top: int = 10) -> List[dict]:
    rows = conn.execute(
        """
        SELECT pathname, COUNT(*) AS count FROM profile_page_views
        WHERE user_id = ? GROUP BY pathname
        ORDER BY count DESC, MAX(id) DESC LIMIT ?
        """,
        (user_id, top),
    ).fetchall()
    return [{"page": r["pathname"], "count": r["count"]} for r in rows]


def device_history(conn: sqlite3.Connection, user_id: str) -> List[dict]:
    rows = conn.execute(
        """
        SELECT device_type, COUNT(*) AS count FROM profile_sessions
        WHERE user_id = ? GROUP BY device_type ORDER BY count DESC
        """,
        (user_id,),
    ).fetchall()
    return [{"type": r["device_type"] or "unknown", "count": r["count"]} for r in rows]


def _profile_to_dict(conn: sqlite3.Connection, row: sqlite3.Row) -> dict:
    uid = row["user_id"]

    def _history(table: str, order: str = "rowid") -> List[sqlite3.Row]:
        return conn.execute(
            f"SELECT * FROM {table} WHERE user_id = ? ORDER BY {order}", (uid,)
        ).fetchall()

    tags = [r["tag"] for r in conn.execute(
        "SELECT tag FROM profile_tags WHERE user_id = ? ORDER BY rowid", (uid,)
    )]

    return {
        "userId": uid,
        "createdAt": row["created_at"],
        "lastSeen": row["last_seen"],
        "totalVisits": row["total_visits"],
        "totalPageViews": row["total_page_views"],
        "totalInteractions": row["total_interactions"],
        "totalTimeSpent": row["total_time_spent"],
        "locations": [_location_to_dict(r) for r in _history("profile_locations")],
        "sessions": [_session_to_dict(r) for r in _history("profile_sessions")],
        "pageViews": [_page_view_to_dict(r) for r in _history("profile_page_views")],
        "interactions": [_interaction_to_dict(r) for r in _history("profile_interactions")],
        "mostVisitedPages": most_visited_pages(conn, uid),
        "deviceHistory": device_history(conn, uid),
        "averageSessionDuration": row["average_session_duration"],
        "averagePageViewsPerSession": row["average_page_views_per_session"],
        "returnVisitor": bool(row["return_visitor"]),
        "tags": tags,
        "notes": row["notes"],
    }


# ─────────────────────────────────────────────────────────────────────────────
# PROFILE LIFECYCLE
# ─────────────────────────────────────────────────────────────────────────────

def _ensure_profile(conn: sqlite3.Connection, user_id: str) -> bool:
    """Insert an empty profile if missing. Returns True when one was created."""
    ts = now_iso()
    cur = conn.execute(
        "INSERT OR IGNORE INTO user_profiles (user_id, created_at, last_seen) VALUES (?, ?, ?)",
        (user_id, ts, ts),
    )
    if cur.rowcount:
        logger.info("PROFILE_NEW | %s", user_id)
        return True
    return False


def get_or_create_profile(conn: sqlite3.Connection, user_id: str) -> dict:
    _ensure_profile(conn, user_id)
    conn.commit()
    return get_profile(conn, user_id)


def get_profile(conn: sqlite3.Connection, user_id: str) -> Optional[dict]:
    row = conn.execute("SELECT * FROM user_profiles WHERE user_id = ?", (user_id,)).fetchone()
    if not row:
        return None
    return _profile_to_dict(conn, row)


def list_profiles(conn: sqlite3.Connection, page: int = 1, limit: int = 50) -> Tuple[List[dict], int]:
    page = max(1, page)
    limit = max(1, limit)
    total = conn.execute("SELECT COUNT(*) FROM user_profiles").fetchone()[0]
    rows = conn.execute(
        "SELECT * FROM user_profiles ORDER BY last_seen DESC LIMIT ? OFFSET ?",
        (limit, (page - 1) * limit),
    ).fetchall()
    return [_profile_to_dict(conn, r) for r in rows], total


def delete_profile(conn: sqlite3.Connection, user_id: str) -> bool:
    """Remove a profile and every history row attached to it."""
    cur = conn.execute("DELETE FROM user_profiles WHERE user_id = ?", (user_id,))
    conn.commit()
    if cur.rowcount:
        logger.info("PROFILE_DELETED | %s", user_id)
    return bool(cur.rowcount)


def add_tag(conn: sqlite3.Connection, user_id: str, tag: str) -> None:
    _ensure_profile(conn, user_id)
    conn.execute("INSERT OR IGNORE INTO profile_tags (user_id, tag) VALUES (?, ?)", (user_id, tag))
    conn.commit()


def remove_tag(conn: sqlite3.Connection, user_id: str, tag: str) -> None:
    conn.execute("DELETE FROM profile_tags WHERE user_id = ? AND tag = ?", (user_id, tag))
    conn.commit()


# ─────────────────────────────────────────────────────────────────────────────
# TRACKING WRITES
# ─────────────────────────────────────────────────────────────────────────────

def _touch(conn: sqlite3.Connection, user_id: str, **increments: int) -> None:
    sets = ", ".join(f"{col} = {col} + ?" for col in increments)
    params: List[Any] = list(increments.values())
    sql = "UPDATE user_profiles SET last_seen = ?" + (f", {sets}" if sets else "") + " WHERE user_id = ?"
    conn.execute(sql, [now_iso(), *params, user_id])


def add_location(conn: sqlite3.Connection, user_id: str, location: Dict[str, Any]) -> None:
    _ensure_profile(conn, user_id)
    conn.execute(
        """
        INSERT INTO profile_locations
            (user_id, country, country_code, region, region_name, city, zip,
             lat, lon, timezone, isp, org, as_name, recorded_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            user_id,
            location.get("country"), location.get("countryCode"),
            location.get("region"), location.get("regionName"),
            location.get("city"), location.get("zip"),
            location.get("lat"), location.get("lon"),
            location.get("timezone"), location.get("isp"),
            location.get("org"), location.get("as"),
            now_iso(),
        ),
    )
    prune_history(conn, "profile_locations", user_id, MAX_LOCATIONS)
    _touch(conn, user_id)
    conn.commit()


def track_page_view(conn: sqlite3.Connection, user_id: str, page_view: Dict[str, Any]) -> None:
    _ensure_profile(conn, user_id)
    conn.execute(
        """
        INSERT INTO profile_page_views
            (user_id, url, pathname, title, referrer, timestamp, duration, scroll_depth)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            user_id,
            page_view["url"],
            page_view["pathname"],
            page_view.get("title"),
            page_view.get("referrer"),
            page_view.get("timestamp") or now_iso(),
            page_view.get("duration"),
            page_view.get("scrollDepth"),
        ),
    )
    prune_history(conn, "profile_page_views", user_id, MAX_PAGE_VIEWS)
    _touch(conn, user_id, total_page_views=1)
    conn.commit()
    logger.info("PAGEVIEW | %s | %s", user_id, page_view["pathname"])


def track_interaction(conn: sqlite3.Connection, user_id: str, interaction: Dict[str, Any]) -> None:
    _ensure_profile(conn, user_id)
    conn.execute(
        """
        INSERT INTO profile_interactions
            (user_id, type, element, element_id, element_class, data, page, timestamp)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            user_id,
            interaction["type"],
            interaction.get("element"),
            interaction.get("elementId"),
            interaction.get("elementClass"),
            to_json(interaction.get("data")),
            interaction["page"],
            interaction.get("timestamp") or now_iso(),
        ),
    )
    prune_history(conn, "profile_interactions", user_id, MAX_INTERACTIONS)
    _touch(conn, user_id, total_interactions=1)
    conn.commit()
    logger.info("INTERACTION | %s | %s | %s", user_id, interaction["type"], interaction["page"])


def start_session(conn: sqlite3.Connection, user_id: str, session: Dict[str, Any]) -> None:
    _ensure_profile(conn, user_id)
    device = session.get("device") or {}
    screen = device.get("screen") or {}
    conn.execute(
        """
        INSERT INTO profile_sessions
            (session_id, user_id, start_time, page_views, interactions, location,
             device_type, browser, os, screen_width, screen_height)
        VALUES (?, ?, ?, 0, 0, ?, ?, ?, ?, ?, ?)
        """,
        (
            session["sessionId"],
            user_id,
            session.get("startTime") or now_iso(),
            to_json(session.get("location")),
            device.get("type"),
            device.get("browser"),
            device.get("os"),
            screen.get("width"),
            screen.get("height"),
        ),
    )
    prune_history(conn, "profile_sessions", user_id, MAX_SESSIONS)
    _touch(conn, user_id, total_visits=1)
    # A started session means the visitor has been here before
    conn.execute("UPDATE user_profiles SET return_visitor = 1 WHERE user_id = ?", (user_id,))
    conn.commit()
    logger.info("SESSION_START | %s | %s | %s", user_id, session["sessionId"], device.get("type"))


def end_session(
    conn: sqlite3.Connection,
    user_id: str,
    session_id: str,
    duration: int,
    page_view_count: int,
    interaction_count: int,
) -> None:
    cur = conn.execute(
        """
        UPDATE profile_sessions
        SET end_time = ?, duration = ?, page_views = ?, interactions = ?
        WHERE session_id = ? AND user_id = ?
        """,
        (now_iso(), duration, page_view_count, interaction_count, session_id, user_id),
    )
    if not cur.rowcount:
        raise SessionNotFoundError(session_id)

    conn.execute(
        "UPDATE user_profiles SET total_time_spent = total_time_spent + ? WHERE user_id = ?",
        (duration, user_id),
    )
    _recalculate_averages(conn, user_id)
    conn.commit()
    logger.info("SESSION_END | %s | %s | duration=%ss", user_id, session_id, duration)


def _recalculate_averages(conn: sqlite3.Connection, user_id: str) -> None:
    avg_duration = conn.execute(
        "SELECT AVG(duration) FROM profile_sessions WHERE user_id = ? AND duration > 0",
        (user_id,),
    ).fetchone()[0] or 0
    session_count = conn.execute(
        "SELECT COUNT(*) FROM profile_sessions WHERE user_id = ?", (user_id,)
    ).fetchone()[0]
    total_page_views = conn.execute(
        "SELECT total_page_views FROM user_profiles WHERE user_id = ?", (user_id,)
    ).fetchone()[0]

    avg_pages = total_page_views / session_count if session_count else 0
    conn.execute(
        """
        UPDATE user_profiles
        SET average_session_duration = ?, average_page_views_per_session = ?
        WHERE user_id = ?
        """,
        (round(avg_duration), round(avg_pages, 1), user_id),
    )

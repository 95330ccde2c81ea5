"""
app/services/analytics.py — Content analytics and aggregate reports
====================================================================

Two data sources feed the reports:

  events / views / view_details   content analytics posted by the site
                                  (project and post clicks, views, shares)
  user_profiles + profile_*       visitor profiles built by the tracker

Every function takes an open connection and returns plain dicts with the
camelCase keys the dashboards expect.
"""

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from app.services import entropy
from db.models import from_json, iso_ago, now_iso, start_of_today_iso, to_json

logger = logging.getLogger(__name__)

VIEW_TYPES = ("project", "post")

REPORT_PERIODS = {
    "daily":   ("Last 24 Hours", {"hours": 24}),
    "weekly":  ("Last 7 Days", {"days": 7}),
    "monthly": ("Last 30 Days", {"days": 30}),
}


def _scalar(conn: sqlite3.Connection, sql: str, params: tuple = ()) -> Any:
    return conn.execute(sql, params).fetchone()[0]


def _location_label(location: Optional[dict], ip: Optional[str]) -> str:
    if location:
        return f"from {location.get('city')}, {location.get('country')} ({ip})"
    return f"from IP {ip}" if ip else ""


# ─────────────────────────────────────────────────────────────────────────────
# INGESTION
# ─────────────────────────────────────────────────────────────────────────────

def record_event(
    conn: sqlite3.Connection,
    event_type: str,
    item_id: str,
    item_title: str,
    metadata: Optional[dict] = None,
    ip_address: Optional[str] = None,
    location_data: Optional[dict] = None,
) -> int:
    cur = conn.execute(
        """
        INSERT INTO events (type, item_id, item_title, metadata, ip_address, location_data, timestamp)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (event_type, item_id, item_title, to_json(metadata or {}),
         ip_address, to_json(location_data), now_iso()),
    )
    conn.commit()
    logger.info("EVENT | %s | %s (%s) %s", event_type, item_title, item_id,
                _location_label(location_data, ip_address))
    return cur.lastrowid


def record_view(
    conn: sqlite3.Connection,
    view_type: str,
    item_id: str,
    item_title: str,
    ip_address: Optional[str] = None,
    location_data: Optional[dict] = None,
) -> int:
    """Log one view and bump the per-item counter. Returns the new count."""
    ts = now_iso()
    conn.execute(
        """
        INSERT INTO view_details (type, item_id, item_title, ip_address, location_data, timestamp)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (view_type, item_id, item_title, ip_address, to_json(location_data), ts),
    )
    conn.execute(
        """
        INSERT INTO views (type, item_id, item_title, count, last_viewed_at, created_at, updated_at)
        VALUES (?, ?, ?, 1, ?, ?, ?)
        ON CONFLICT(type, item_id) DO UPDATE SET
            count          = count + 1,
            item_title     = excluded.item_title,
            last_viewed_at = excluded.last_viewed_at,
            updated_at     = excluded.updated_at
        """,
        (view_type, item_id, item_title, ts, ts, ts),
    )
    conn.commit()
    count = _scalar(conn, "SELECT count FROM views WHERE type = ? AND item_id = ?", (view_type, item_id))
    logger.info("VIEW | %s | %s (%s) %s | total=%d", view_type, item_title, item_id,
                _location_label(location_data, ip_address), count)
    return count


# ─────────────────────────────────────────────────────────────────────────────
# PROFILE AGGREGATES
# ─────────────────────────────────────────────────────────────────────────────

def _profile_totals(conn: sqlite3.Connection, since: Optional[str] = None) -> dict:
    where, params = ("WHERE last_seen >= ?", (since,)) if since else ("", ())
    row = conn.execute(
        f"""
        SELECT COALESCE(SUM(total_page_views), 0)      AS page_views,
               COALESCE(SUM(total_interactions), 0)    AS interactions,
               COALESCE(SUM(total_visits), 0)          AS sessions,
               COALESCE(AVG(average_session_duration), 0) AS avg_duration,
               COALESCE(SUM(total_time_spent), 0)      AS time_spent
        FROM user_profiles {where}
        """,
        params,
    ).fetchone()
    return dict(row)


def _profile_filter(since: Optional[str]) -> tuple:
    if since:
        return "AND p.last_seen >= ?", (since,)
    return "", ()


def top_countries(conn: sqlite3.Connection, limit: int = 10, known_only: bool = True,
                  since: Optional[str] = None) -> List[dict]:
    extra, params = _profile_filter(since)
    known = "AND l.country IS NOT NULL AND l.country != 'Unknown'" if known_only else ""
    rows = conn.execute(
        f"""
        SELECT l.country, MIN(l.country_code) AS country_code, COUNT(*) AS count
        FROM profile_locations l JOIN user_profiles p ON p.user_id = l.user_id
        WHERE 1 = 1 {known} {extra}
        GROUP BY l.country ORDER BY count DESC LIMIT ?
        """,
        (*params, limit),
    ).fetchall()
    return [
        {"country": r["country"] or "Unknown", "countryCode": r["country_code"] or "", "count": r["count"]}
        for r in rows
    ]


def top_cities(conn: sqlite3.Connection, limit: int = 10, since: Optional[str] = None) -> List[dict]:
    extra, params = _profile_filter(since)
    rows = conn.execute(
        f"""
        SELECT l.city, l.country, MIN(l.country_code) AS country_code, COUNT(*) AS count
        FROM profile_locations l JOIN user_profiles p ON p.user_id = l.user_id
        WHERE l.city IS NOT NULL AND l.city != 'Local'
          AND l.country IS NOT NULL AND l.country != 'Unknown' {extra}
        GROUP BY l.city, l.country ORDER BY count DESC LIMIT ?
        """,
        (*params, limit),
    ).fetchall()
    return [
        {"city": r["city"], "country": r["country"], "countryCode": r["country_code"] or "", "count": r["count"]}
        for r in rows
    ]


def top_pages(conn: sqlite3.Connection, limit: int = 10) -> List[dict]:
    rows = conn.execute(
        """
        SELECT pathname, COUNT(*) AS views FROM profile_page_views
        GROUP BY pathname ORDER BY views DESC LIMIT ?
        """,
        (limit,),
    ).fetchall()
    return [{"page": r["pathname"] or "/", "views": r["views"]} for r in rows]


def device_breakdown(conn: sqlite3.Connection, since: Optional[str] = None) -> List[dict]:
    extra, params = _profile_filter(since)
    rows = conn.execute(
        f"""
        SELECT s.device_type, COUNT(*) AS count
        FROM profile_sessions s JOIN user_profiles p ON p.user_id = s.user_id
        WHERE 1 = 1 {extra}
        GROUP BY s.device_type ORDER BY count DESC
        """,
        params,
    ).fetchall()
    return [{"device": r["device_type"] or "Unknown", "count": r["count"]} for r in rows]


def profile_analytics(conn: sqlite3.Connection) -> dict:
    """Visitor overview for ``GET /api/profile/analytics``."""
    today = start_of_today_iso()
    totals = _profile_totals(conn)
    count = "SELECT COUNT(*) FROM user_profiles"
    return {
        "totalUsers": _scalar(conn, count),
        "activeToday": _scalar(conn, count + " WHERE last_seen >= ?", (today,)),
        "activeThisWeek": _scalar(conn, count + " WHERE last_seen >= ?", (iso_ago(days=7),)),
        "activeThisMonth": _scalar(conn, count + " WHERE last_seen >= ?", (iso_ago(days=30),)),
        "newUsersToday": _scalar(conn, count + " WHERE created_at >= ?", (today,)),
        "topCountries": [
            {"country": c["country"], "count": c["count"]}
            for c in top_countries(conn, known_only=False)
        ],
        "topPages": top_pages(conn),
        "topDevices": device_breakdown(conn),
        "avgSessionDuration": round(totals["avg_duration"]),
        "totalPageViews": totals["page_views"],
        "totalInteractions": totals["interactions"],
    }


# ─────────────────────────────────────────────────────────────────────────────
# CONTENT AGGREGATES
# ─────────────────────────────────────────────────────────────────────────────

def _top_items(conn: sqlite3.Connection, view_type: str, limit: int = 5) -> List[dict]:
    rows = conn.execute(
        "SELECT * FROM views WHERE type = ? ORDER BY count DESC LIMIT ?", (view_type, limit)
    ).fetchall()
    return [
        {"itemId": r["item_id"], "itemTitle": r["item_title"], "views": r["count"],
         "lastViewedAt": r["last_viewed_at"]}
        for r in rows
    ]


def _view_location_stats(conn: sqlite3.Connection, since: Optional[str] = None, limit: int = 10) -> List[dict]:
    where, params = ("WHERE timestamp >= ?", (since,)) if since else ("", ())
    stats: Dict[str, dict] = {}
    for row in conn.execute(f"SELECT location_data FROM view_details {where}", params):
        loc = from_json(row["location_data"])
        if not loc or not loc.get("country"):
            continue
        city = loc.get("city") or "Unknown"
        key = f"{city}, {loc['country']}"
        entry = stats.setdefault(key, {
            "country": loc["country"], "city": city,
            "count": 0, "countryCode": loc.get("countryCode") or "",
        })
        entry["count"] += 1
    return sorted(stats.values(), key=lambda e: e["count"], reverse=True)[:limit]


def _view_total(conn: sqlite3.Connection, view_type: str) -> int:
    return _scalar(conn, "SELECT COALESCE(SUM(count), 0) FROM views WHERE type = ?", (view_type,))


def _round1(value: float) -> float:
    return round(value * 10) / 10


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def summary(conn: sqlite3.Connection) -> dict:
    """Everything the admin dashboard shows on one page."""
    event_counts = {
        r["type"]: r["count"]
        for r in conn.execute("SELECT type, COUNT(*) AS count FROM events GROUP BY type")
    }
    unique_ips = {
        r[0] for r in conn.execute(
            "SELECT ip_address FROM view_details WHERE ip_address IS NOT NULL AND ip_address != '' "
            "UNION SELECT ip_address FROM events WHERE ip_address IS NOT NULL AND ip_address != ''"
        )
    }

    today = start_of_today_iso()
    week, month = iso_ago(days=7), iso_ago(days=30)
    count = "SELECT COUNT(*) FROM user_profiles"
    total_users = _scalar(conn, count)
    single_page = _scalar(conn, count + " WHERE total_page_views = 1")
    totals = _profile_totals(conn)
    sessions = totals["sessions"]

    return {
        "totalEvents": sum(event_counts.values()),
        "projectViews": _view_total(conn, "project"),
        "postViews": _view_total(conn, "post"),
        "projectClicks": event_counts.get("project_click", 0),
        "postClicks": event_counts.get("post_click", 0),
        "shareClicks": event_counts.get("share_click", 0),
        "uniqueVisitors": len(unique_ips),
        "topProjects": _top_items(conn, "project"),
        "topPosts": _top_items(conn, "post"),
        "topLocations": _view_location_stats(conn),
        "userProfiles": {
            "total": total_users,
            "active": {
                "today": _scalar(conn, count + " WHERE last_seen >= ?", (today,)),
                "thisWeek": _scalar(conn, count + " WHERE last_seen >= ?", (week,)),
                "thisMonth": _scalar(conn, count + " WHERE last_seen >= ?", (month,)),
            },
            "new": {
                "today": _scalar(conn, count + " WHERE created_at >= ?", (today,)),
                "thisWeek": _scalar(conn, count + " WHERE created_at >= ?", (week,)),
                "thisMonth": _scalar(conn, count + " WHERE created_at >= ?", (month,)),
            },
            "returning": _scalar(conn, count + " WHERE return_visitor = 1"),
            "bounceRate": _round1(single_page / total_users * 100) if total_users else 0,
        },
        "sessions": {
            "total": sessions,
            "avgDuration": round(totals["avg_duration"]),
            "totalTimeSpent": round(totals["time_spent"] / 3600),
        },
        "interactions": {
            "total": totals["interactions"],
            "avgPerSession": _round1(totals["interactions"] / sessions) if sessions else 0,
        },
        "pageViews": {
            "total": totals["page_views"],
            "avgPerSession": _round1(totals["page_views"] / sessions) if sessions else 0,
            "topPages": top_pages(conn),
        },
        "locations": {
            "topCountries": top_countries(conn),
            "topCities": top_cities(conn),
        },
        "devices": device_breakdown(conn),
        "generatedAt": now_iso(),
    }


def debug_info(conn: sqlite3.Connection) -> dict:
    """Raw location diagnostics, handy when every visitor shows up as Unknown."""
    sample = conn.execute("SELECT user_id FROM user_profiles LIMIT 1").fetchone()
    sample_locations = []
    if sample:
        sample_locations = [
            {"country": r["country"], "countryCode": r["country_code"], "city": r["city"]}
            for r in conn.execute(
                "SELECT country, country_code, city FROM profile_locations WHERE user_id = ? ORDER BY rowid",
                (sample["user_id"],),
            )
        ]
    all_countries = [
        {"_id": r["country"], "count": r["count"]}
        for r in conn.execute(
            "SELECT country, COUNT(*) AS count FROM profile_locations GROUP BY country ORDER BY count DESC"
        )
    ]
    real_countries = [
        {"_id": c["country"], "count": c["count"], "countryCode": c["countryCode"]}
        for c in top_countries(conn, limit=-1)
    ]
    return {
        "totalProfiles": _scalar(conn, "SELECT COUNT(*) FROM user_profiles"),
        "profilesWithLocations": _scalar(conn, "SELECT COUNT(DISTINCT user_id) FROM profile_locations"),
        "sampleProfileLocations": sample_locations,
        "allCountries": all_countries,
        "realCountries": real_countries or (
            "No real countries found (all are Unknown - this is normal in development)"
        ),
    }


def purge_unlocated_profiles(conn: sqlite3.Connection) -> int:
    """
    Delete profiles whose locations are all "Unknown", or that have none.

    Development traffic resolves to the local address and leaves such
    profiles behind. History rows go with them through ON DELETE CASCADE.
    """
    cur = conn.execute(
        """
        DELETE FROM user_profiles
        WHERE user_id NOT IN (
            SELECT user_id FROM profile_locations
            WHERE COALESCE(country, '') != 'Unknown'
        )
        """
    )
    conn.commit()
    logger.info("PROFILES_PURGED | %d without a known location", cur.rowcount)
    return cur.rowcount


def report_data(conn: sqlite3.Connection, report_type: str) -> dict:
    """Template context for the e-mailed analytics report."""
    period_label, delta = REPORT_PERIODS.get(report_type, REPORT_PERIODS["daily"])
    since = iso_ago(**delta)

    event_counts = {
        r["type"]: r["count"]
        for r in conn.execute(
            "SELECT type, COUNT(*) AS count FROM events WHERE timestamp >= ? GROUP BY type", (since,)
        )
    }
    unique_ips = _scalar(
        conn,
        "SELECT COUNT(DISTINCT ip_address) FROM view_details WHERE timestamp >= ? AND ip_address IS NOT NULL",
        (since,),
    )
    count = "SELECT COUNT(*) FROM user_profiles"
    totals = _profile_totals(conn, since)

    return {
        "period": period_label,
        "report_type": report_type,
        "total_events": sum(event_counts.values()),
        "project_views": event_counts.get("project_view", 0),
        "post_views": event_counts.get("post_view", 0),
        "project_clicks": event_counts.get("project_click", 0),
        "post_clicks": event_counts.get("post_click", 0),
        "share_clicks": event_counts.get("share_click", 0),
        "total_project_views": _view_total(conn, "project"),
        "total_post_views": _view_total(conn, "post"),
        "top_projects": _top_items(conn, "project"),
        "top_posts": _top_items(conn, "post"),
        "top_locations": _view_location_stats(conn, since),
        "unique_visitors": unique_ips,
        "generated_at": now_iso(),
        "user_profiles": {
            "total": _scalar(conn, count),
            "active_in_period": _scalar(conn, count + " WHERE last_seen >= ?", (since,)),
            "active_today": _scalar(conn, count + " WHERE last_seen >= ?", (start_of_today_iso(),)),
            "new_in_period": _scalar(conn, count + " WHERE created_at >= ?", (since,)),
            "total_sessions": totals["sessions"],
            "avg_session_duration": round(totals["avg_duration"]),
            "total_page_views": totals["page_views"],
            "total_interactions": totals["interactions"],
            "top_locations": top_cities(conn, limit=5, since=since),
            "devices": device_breakdown(conn, since),
        },
    }


# ─────────────────────────────────────────────────────────────────────────────
# FINGERPRINT STATISTICS
# ─────────────────────────────────────────────────────────────────────────────

def fingerprint_stats(conn: sqlite3.Connection) -> dict:
    agg = conn.execute(
        "SELECT AVG(confidence) AS avg_conf, AVG(seen_count) AS avg_seen FROM fingerprints"
    ).fetchone()
    hash_counts = {
        r["hash"]: r["count"]
        for r in conn.execute("SELECT hash, COUNT(*) AS count FROM fingerprints GROUP BY hash")
    }

    user_agents, timezones, languages = [], [], []
    for row in conn.execute("SELECT data FROM fingerprints LIMIT 1000"):
        data = from_json(row["data"], {})
        basic = _as_dict(data.get("basic") if isinstance(data, dict) else None)
        user_agents.append(str(basic.get("userAgent") or "unknown"))
        timezones.append(str(_as_dict(basic.get("timezone")).get("timezone") or "unknown"))
        languages.append(str(basic.get("language") or "unknown"))

    observed = entropy.observed_entropy(hash_counts)
    theoretical = entropy.theoretical_total_entropy()

    return {
        "totalFingerprints": _scalar(conn, "SELECT COUNT(*) FROM fingerprints"),
        "uniqueUsers": _scalar(conn, "SELECT COUNT(*) FROM users"),
        "avgConfidence": agg["avg_conf"] if agg["avg_conf"] is not None else 1.0,
        "avgRevisits": agg["avg_seen"] if agg["avg_seen"] is not None else 1.0,
        "suspiciousCount": _scalar(conn, "SELECT COUNT(*) FROM fingerprints WHERE suspicious = 1"),
        "lastHourCount": _scalar(conn, "SELECT COUNT(*) FROM fingerprints WHERE created_at >= ?",
                                 (iso_ago(hours=1),)),
        "last24HourCount": _scalar(conn, "SELECT COUNT(*) FROM fingerprints WHERE created_at >= ?",
                                   (iso_ago(hours=24),)),
        "entropy": {
            "observed": f"{observed:.2f}",
            "theoretical": f"{theoretical:.2f}",
            "uniqueness": entropy.format_entropy(observed),
            "theoreticalUniqueness": entropy.format_entropy(theoretical),
        },
        "attributeDistributions": {
            "userAgent": entropy.attribute_distribution("User-Agent", user_agents),
            "timezone": entropy.attribute_distribution("Timezone", timezones),
            "language": entropy.attribute_distribution("Language", languages),
        },
    }

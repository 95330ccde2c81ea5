"""
db/models.py — Document Store (SQLite)
======================================

Design principles:
  1. One table per record kind; records are flat, optional fields are NULL
  2. Free-form payloads (fingerprint data, interaction data, form fields,
     location snapshots) are stored as JSON text
  3. Per-profile histories are bounded (oldest rows pruned on insert)
  4. SQLite backing store - portable, zero infra

Record kinds:
  users              → visitor identities created by fingerprinting
  fingerprints       → one row per distinct fingerprint hash
  user_profiles      → per-visitor counters and averages
  profile_*          → bounded histories (locations, sessions, page views,
                       interactions) and tags
  events             → analytics events (clicks, shares, ...)
  views / view_details → per-item view counters and the raw view log
  congratulations    → congratulation cards
  forms / submissions → form definitions and their submissions
"""

import json
import secrets
import sqlite3
import string
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

DB_PATH = Path(__file__).parent / "portfolio.db"

# Bounded history sizes per profile
MAX_LOCATIONS    = 10
MAX_SESSIONS     = 30
MAX_PAGE_VIEWS   = 100
MAX_INTERACTIONS = 100


# --- SCHEMA DDL ---

SCHEMA = """
PRAGMA journal_mode=WAL;
PRAGMA foreign_keys=ON;

-- ── Fingerprinting ──────────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS users (
    user_id     TEXT PRIMARY KEY,
    created_at  TEXT NOT NULL,
    last_seen   TEXT NOT NULL,
    account_id  TEXT
);

CREATE TABLE IF NOT EXISTS fingerprints (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    hash                TEXT NOT NULL UNIQUE,
    user_id             TEXT NOT NULL,
    data                TEXT NOT NULL,          -- JSON: client fingerprint + network info
    ip                  TEXT,                   -- copy of data.network.ip for lookups
    created_at          TEXT NOT NULL,
    last_seen           TEXT NOT NULL,
    seen_count          INTEGER DEFAULT 1,
    confidence          REAL DEFAULT 1.0,
    bot_score           INTEGER DEFAULT 0,
    suspicious          INTEGER DEFAULT 0,
    suspicious_reasons  TEXT                    -- JSON list
);
CREATE INDEX IF NOT EXISTS idx_fp_user       ON fingerprints(user_id);
CREATE INDEX IF NOT EXISTS idx_fp_created    ON fingerprints(created_at);
CREATE INDEX IF NOT EXISTS idx_fp_ip_seen    ON fingerprints(ip, last_seen);

-- ── User profiles ───────────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS user_profiles (
    user_id                         TEXT PRIMARY KEY,
    created_at                      TEXT NOT NULL,
    last_seen                       TEXT NOT NULL,
    total_visits                    INTEGER DEFAULT 0,
    total_page_views                INTEGER DEFAULT 0,
    total_interactions              INTEGER DEFAULT 0,
    total_time_spent                INTEGER DEFAULT 0,   -- seconds
    average_session_duration        INTEGER DEFAULT 0,   -- seconds
    average_page_views_per_session  REAL DEFAULT 0,
    return_visitor                  INTEGER DEFAULT 0,
    notes                           TEXT
);
CREATE INDEX IF NOT EXISTS idx_profiles_last_seen ON user_profiles(last_seen);
CREATE INDEX IF NOT EXISTS idx_profiles_created   ON user_profiles(created_at);

CREATE TABLE IF NOT EXISTS profile_tags (
    user_id  TEXT NOT NULL REFERENCES user_profiles(user_id) ON DELETE CASCADE,
    tag      TEXT NOT NULL,
    UNIQUE(user_id, tag)
);

CREATE TABLE IF NOT EXISTS profile_locations (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id       TEXT NOT NULL REFERENCES user_profiles(user_id) ON DELETE CASCADE,
    country       TEXT,
    country_code  TEXT,
    region        TEXT,
    region_name   TEXT,
    city          TEXT,
    zip           TEXT,
    lat           REAL,
    lon           REAL,
    timezone      TEXT,
    isp           TEXT,
    org           TEXT,
    as_name       TEXT,
    recorded_at   TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_locations_user ON profile_locations(user_id);

CREATE TABLE IF NOT EXISTS profile_sessions (
    session_id     TEXT PRIMARY KEY,
    user_id        TEXT NOT NULL REFERENCES user_profiles(user_id) ON DELETE CASCADE,
    start_time     TEXT NOT NULL,
    end_time       TEXT,
    duration       INTEGER,                 -- seconds
    page_views     INTEGER DEFAULT 0,
    interactions   INTEGER DEFAULT 0,
    location       TEXT,                    -- JSON GeoLocation snapshot
    device_type    TEXT,                    -- mobile | tablet | desktop
    browser        TEXT,
    os             TEXT,
    screen_width   INTEGER,
    screen_height  INTEGER
);
CREATE INDEX IF NOT EXISTS idx_sessions_user ON profile_sessions(user_id, start_time);

CREATE TABLE IF NOT EXISTS profile_page_views (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id       TEXT NOT NULL REFERENCES user_profiles(user_id) ON DELETE CASCADE,
    url           TEXT NOT NULL,
    pathname      TEXT NOT NULL,
    title         TEXT,
    referrer      TEXT,
    timestamp     TEXT NOT NULL,
    duration      REAL,                     -- seconds on page
    scroll_depth  REAL                      -- max scroll percentage
);
CREATE INDEX IF NOT EXISTS idx_page_views_user ON profile_page_views(user_id);

CREATE TABLE IF NOT EXISTS profile_interactions (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id        TEXT NOT NULL REFERENCES user_profiles(user_id) ON DELETE CASCADE,
    type           TEXT NOT NULL,
    element        TEXT,
    element_id     TEXT,
    element_class  TEXT,
    data           TEXT,                    -- JSON
    page           TEXT NOT NULL,
    timestamp      TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_interactions_user ON profile_interactions(user_id);

-- ── Content analytics ───────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS events (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    type           TEXT NOT NULL,           -- project_click | post_click | share_click | ...
    item_id        TEXT NOT NULL,
    item_title     TEXT NOT NULL,
    metadata       TEXT,                    -- JSON
    ip_address     TEXT,
    location_data  TEXT,                    -- JSON
    timestamp      TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_events_type ON events(type);
CREATE INDEX IF NOT EXISTS idx_events_ts   ON events(timestamp);

CREATE TABLE IF NOT EXISTS views (
    type            TEXT NOT NULL,          -- project | post
    item_id         TEXT NOT NULL,
    item_title      TEXT,
    count           INTEGER DEFAULT 0,
    last_viewed_at  TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL,
    PRIMARY KEY (type, item_id)
);

CREATE TABLE IF NOT EXISTS view_details (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    type           TEXT NOT NULL,
    item_id        TEXT NOT NULL,
    item_title     TEXT,
    ip_address     TEXT,
    location_data  TEXT,                    -- JSON
    timestamp      TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_view_details_ts ON view_details(timestamp);

-- ── Congratulation cards ────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS congratulations (
    id          TEXT PRIMARY KEY,           -- 10-char URL-safe id
    name        TEXT NOT NULL,
    message     TEXT,
    post_url    TEXT,
    image_url   TEXT,                       -- data URL or remote URL
    created_at  TEXT NOT NULL
);

-- ── Forms ───────────────────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS forms (
    form_id      TEXT PRIMARY KEY,
    name         TEXT NOT NULL,
    description  TEXT,
    fields       TEXT NOT NULL,             -- JSON list of field definitions
    status       TEXT NOT NULL DEFAULT 'active',   -- active | inactive
    created_at   TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS submissions (
    submission_id  TEXT PRIMARY KEY,
    form_id        TEXT NOT NULL REFERENCES forms(form_id) ON DELETE CASCADE,
    data           TEXT NOT NULL,           -- JSON keyed by field id
    metadata       TEXT,                    -- JSON: client metadata, ip, ipInfo
    submitted_at   TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_submissions_form ON submissions(form_id, submitted_at);
"""


# --- DB CONNECTION ---

def get_db(path: Path = DB_PATH) -> sqlite3.Connection:
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_db(path: Path = DB_PATH):
    """Initialize database schema."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = get_db(path)
    conn.executescript(SCHEMA)
    conn.commit()
    conn.close()


# --- HELPERS ---

_ID_ALPHABET = string.ascii_letters + string.digits + "_-"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def iso_ago(**delta) -> str:
    """ISO timestamp for now minus ``timedelta(**delta)``."""
    return (datetime.now(timezone.utc) - timedelta(**delta)).isoformat()


def start_of_today_iso() -> str:
    now = datetime.now(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0).isoformat()


def short_id(size: int = 10) -> str:
    """URL-friendly random id (same alphabet as nanoid)."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(size))


def to_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False)


def from_json(value: Optional[str], default: Any = None) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default


def prune_history(conn: sqlite3.Connection, table: str, user_id: str, keep: int):
    """Delete all but the newest *keep* rows (by insertion order) of *table* for *user_id*."""
    conn.execute(
        f"""
        DELETE FROM {table}
        WHERE user_id = ? AND rowid NOT IN (
            SELECT rowid FROM {table} WHERE user_id = ?
            ORDER BY rowid DESC LIMIT ?
        )
        """,
        (user_id, user_id, keep),
    )

# Tracking ingestion tests
# Page views, interactions and the session lifecycle, checked through the
# stored profile.
# Dependent files: app/routers/track.py, app/services/profile_manager.py

from app.services import profile_manager
from db.models import MAX_INTERACTIONS, MAX_LOCATIONS, MAX_PAGE_VIEWS, MAX_SESSIONS, get_db, init_db

PUBLIC_IP = {"X-Forwarded-For": "93.184.216.34"}

DESKTOP = {"type": "desktop", "browser": "Firefox", "os": "Linux",
           "screen": {"width": 1920, "height": 1080}}


def _profile(app, user_id):
    conn = get_db(app.state.db_path)
    try:
        return profile_manager.get_profile(conn, user_id)
    finally:
        conn.close()


def _seeded(app, fill):
    """Run *fill(conn)* against the app database and return the resulting user_cap profile."""
    init_db(app.state.db_path)
    conn = get_db(app.state.db_path)
    try:
        fill(conn)
        return profile_manager.get_profile(conn, "user_cap")
    finally:
        conn.close()


def _start(client, user_id="user_1", headers=None):
    resp = client.post("/api/track/session", json={"userId": user_id, "device": DESKTOP},
                       headers=headers or {})
    assert resp.status_code == 200
    return resp.json()["sessionId"]


# --- Page views ---

def test_pageview_creates_profile(app, client):
    resp = client.post("/api/track/pageview", json={
        "userId": "user_1",
        "url": "https://site.example/projects/alpha?ref=x",
        "title": "Alpha",
        "scrollDepth": 80,
    })
    assert resp.status_code == 200
    assert resp.json() == {"success": True}

    profile = _profile(app, "user_1")
    assert profile["totalPageViews"] == 1
    view = profile["pageViews"][0]
    assert view["pathname"] == "/projects/alpha"
    assert view["title"] == "Alpha"
    assert view["scrollDepth"] == 80
    assert profile["mostVisitedPages"] == [{"page": "/projects/alpha", "count": 1}]


def test_pageview_defaults_title(app, client):
    client.post("/api/track/pageview", json={"userId": "user_1", "url": "https://site.example/"})
    view = _profile(app, "user_1")["pageViews"][0]
    assert view["title"] == "Untitled"
    assert view["referrer"] == ""
    assert view["pathname"] == "/"


def test_pageview_requires_user_and_url(client):
    resp = client.post("/api/track/pageview", json={"userId": "user_1"})
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "userId and url are required"}


def test_page_view_history_is_capped(app):
    init_db(app.state.db_path)
    conn = get_db(app.state.db_path)
    try:
        for i in range(MAX_PAGE_VIEWS + 5):
            profile_manager.track_page_view(conn, "user_cap", {
                "url": f"https://site.example/p/{i}", "pathname": f"/p/{i}",
            })
        profile = profile_manager.get_profile(conn, "user_cap")
    finally:
        conn.close()

    assert profile["totalPageViews"] == MAX_PAGE_VIEWS + 5
    assert len(profile["pageViews"]) == MAX_PAGE_VIEWS
    # Oldest entries are dropped first
    assert profile["pageViews"][0]["pathname"] == "/p/5"
    assert profile["pageViews"][-1]["pathname"] == f"/p/{MAX_PAGE_VIEWS + 4}"


# --- Interactions ---

def test_interaction_recorded(app, client):
    resp = client.post("/api/track/interaction", json={
        "userId": "user_1", "type": "button_click", "page": "/contact",
        "elementId": "send", "data": {"label": "Send"},
    })
    assert resp.status_code == 200

    profile = _profile(app, "user_1")
    assert profile["totalInteractions"] == 1
    interaction = profile["interactions"][0]
    assert interaction["type"] == "button_click"
    assert interaction["elementId"] == "send"
    assert interaction["data"] == {"label": "Send"}


def test_interaction_rejects_unknown_type(client):
    resp = client.post("/api/track/interaction", json={
        "userId": "user_1", "type": "hover", "page": "/",
    })
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid interaction type"


def test_interaction_requires_fields(client):
    resp = client.post("/api/track/interaction", json={"userId": "user_1", "type": "click"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "userId, type, and page are required"


def test_interaction_limit_is_fifty(client):
    body = {"userId": "user_1", "type": "scroll", "page": "/"}
    for _ in range(50):
        assert client.post("/api/track/interaction", json=body).status_code == 200
    assert client.post("/api/track/interaction", json=body).status_code == 429


# --- Sessions ---

def test_start_session_records_location(app, client):
    session_id = _start(client, headers=PUBLIC_IP)
    assert session_id.startswith("ses_")

    profile = _profile(app, "user_1")
    assert profile["totalVisits"] == 1
    assert profile["sessions"][0]["sessionId"] == session_id
    assert profile["sessions"][0]["device"]["type"] == "desktop"
    assert profile["sessions"][0]["location"]["city"] == "Berlin"
    assert profile["locations"][0]["countryCode"] == "DE"
    assert profile["deviceHistory"] == [{"type": "desktop", "count": 1}]
    assert app.state.geolocator.calls == ["93.184.216.34"]


def test_start_session_from_local_address_skips_location(app, client):
    _start(client)
    profile = _profile(app, "user_1")
    assert profile["sessions"][0]["location"]["city"] == "Local"
    assert profile["locations"] == []


def test_start_session_requires_device(client):
    resp = client.post("/api/track/session", json={"userId": "user_1"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "userId and device are required"


def test_end_session_updates_totals_and_averages(app, client):
    client.post("/api/track/pageview", json={"userId": "user_1", "url": "https://site.example/"})
    client.post("/api/track/pageview", json={"userId": "user_1", "url": "https://site.example/a"})
    first = _start(client)
    second = _start(client)

    for session_id, duration in ((first, 100), (second, 51)):
        resp = client.put("/api/track/session", json={
            "userId": "user_1", "sessionId": session_id,
            "duration": duration, "pageViewCount": 1, "interactionCount": 0,
        })
        assert resp.status_code == 200
        assert resp.json() == {"success": True}

    profile = _profile(app, "user_1")
    assert profile["totalTimeSpent"] == 151
    assert profile["averageSessionDuration"] == 76
    assert profile["averagePageViewsPerSession"] == 1.0
    ended = {s["sessionId"]: s for s in profile["sessions"]}
    assert ended[first]["duration"] == 100
    assert ended[first]["endTime"] is not None


def test_end_unknown_session_is_404(client):
    _start(client)
    resp = client.put("/api/track/session", json={"userId": "user_1", "sessionId": "ses_missing"})
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "Session not found"}


def test_end_session_requires_ids(client):
    resp = client.put("/api/track/session", json={"userId": "user_1"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "userId and sessionId are required"


def test_session_history_is_capped(app, client):
    def fill(conn):
        for i in range(MAX_SESSIONS + 3):
            profile_manager.start_session(conn, "user_cap", {
                "sessionId": f"ses_{i}", "device": {"type": "desktop"},
            })

    profile = _seeded(app, fill)
    assert profile["totalVisits"] == MAX_SESSIONS + 3
    assert len(profile["sessions"]) == MAX_SESSIONS
    assert profile["sessions"][0]["sessionId"] == "ses_3"

    # A pruned session can no longer be ended
    resp = client.put("/api/track/session", json={
        "userId": "user_cap", "sessionId": "ses_0", "duration": 10,
    })
    assert resp.status_code == 404
    assert resp.json()["error"] == "Session not found"

    resp = client.put("/api/track/session", json={
        "userId": "user_cap", "sessionId": f"ses_{MAX_SESSIONS + 2}", "duration": 10,
    })
    assert resp.status_code == 200


# --- Bounded histories ---

def test_location_history_is_capped(app):
    def fill(conn):
        for i in range(MAX_LOCATIONS + 2):
            profile_manager.add_location(conn, "user_cap", {
                "country": "Germany", "countryCode": "DE", "city": f"City {i}",
            })

    profile = _seeded(app, fill)
    assert len(profile["locations"]) == MAX_LOCATIONS
    assert profile["locations"][0]["city"] == "City 2"
    assert profile["locations"][-1]["city"] == f"City {MAX_LOCATIONS + 1}"


def test_interaction_history_is_capped(app):
    def fill(conn):
        for i in range(MAX_INTERACTIONS + 4):
            profile_manager.track_interaction(conn, "user_cap", {
                "type": "click", "page": f"/p/{i}",
            })

    profile = _seeded(app, fill)
    assert profile["totalInteractions"] == MAX_INTERACTIONS + 4
    assert len(profile["interactions"]) == MAX_INTERACTIONS
    assert profile["interactions"][0]["page"] == "/p/4"
    assert profile["interactions"][-1]["page"] == f"/p/{MAX_INTERACTIONS + 3}"

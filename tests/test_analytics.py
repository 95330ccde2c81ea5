# Content analytics tests
# Event/view ingestion, API-key gated reads and the e-mailed report.
# Dependent files: app/routers/analytics.py, app/services/analytics.py,
#                  app/services/mailer.py, app/dependencies/access_control.py

import pytest

from app.services.mailer import country_flag, render

BERLIN_DATA = {"country": "Germany", "countryCode": "DE", "city": "Berlin"}


def _view(client, item_id="alpha", view_type="project", **extra):
    return client.post("/api/analytics/views", json={
        "type": view_type, "itemId": item_id, "itemTitle": item_id.title(), **extra,
    })


# --- Ingestion ---

def test_track_event(client):
    resp = client.post("/api/analytics/track", json={
        "type": "project_click", "itemId": "alpha", "itemTitle": "Alpha",
        "metadata": {"source": "grid"}, "ipAddress": "93.184.216.34", "locationData": BERLIN_DATA,
    })
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["eventId"] == "1"
    assert data["message"] == "Event tracked successfully"


def test_track_event_requires_fields(client):
    resp = client.post("/api/analytics/track", json={"type": "project_click", "itemId": "alpha"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Missing required fields: type, itemId, itemTitle"}


def test_views_increment_counter(client):
    assert _view(client).json()["count"] == 1
    assert _view(client).json()["count"] == 2
    assert _view(client, item_id="beta").json()["count"] == 1


def test_views_reject_unknown_type(client):
    resp = _view(client, view_type="video")
    assert resp.status_code == 400
    assert resp.json() == {"error": 'Type must be "project" or "post"'}


# --- API key ---

def test_summary_without_configured_key_is_500(client, monkeypatch):
    monkeypatch.delenv("ANALYTICS_API_KEY", raising=False)
    resp = client.get("/api/analytics/summary")
    assert resp.status_code == 500
    assert resp.json() == {"error": "Server configuration error: API key not configured"}


@pytest.mark.parametrize("headers", [
    {},
    {"Authorization": "Bearer wrong-key"},
    {"Authorization": "test-analytics-key"},
])
def test_summary_rejects_bad_key(client, api_key, headers):
    resp = client.get("/api/analytics/summary", headers=headers)
    assert resp.status_code == 401
    assert resp.json() == {"error": "Unauthorized: Invalid or missing API key"}


# --- Reads ---

def test_summary(client, api_key):
    _view(client, ipAddress="93.184.216.34", locationData=BERLIN_DATA)
    _view(client, ipAddress="198.51.100.7", locationData=BERLIN_DATA)
    _view(client, item_id="hello-world", view_type="post")
    client.post("/api/analytics/track", json={"type": "share_click", "itemId": "alpha", "itemTitle": "Alpha"})
    client.post("/api/track/pageview", json={"userId": "user_1", "url": "https://site.example/"})

    resp = client.get("/api/analytics/summary", headers=api_key)
    assert resp.status_code == 200
    summary = resp.json()["summary"]
    assert summary["totalEvents"] == 1
    assert summary["shareClicks"] == 1
    assert summary["projectViews"] == 2
    assert summary["postViews"] == 1
    assert summary["uniqueVisitors"] == 2
    assert summary["topProjects"][0]["itemId"] == "alpha"
    assert summary["topProjects"][0]["views"] == 2
    assert summary["topLocations"][0] == {
        "country": "Germany", "city": "Berlin", "count": 2, "countryCode": "DE",
    }
    assert summary["userProfiles"]["total"] == 1
    # Single-page visitor
    assert summary["userProfiles"]["bounceRate"] == 100.0
    assert summary["pageViews"]["total"] == 1


def test_debug(client, api_key):
    client.post("/api/track/session", json={"userId": "user_1", "device": {"type": "desktop"}},
                headers={"X-Forwarded-For": "93.184.216.34"})

    debug = client.get("/api/analytics/debug", headers=api_key).json()["debug"]
    assert debug["totalProfiles"] == 1
    assert debug["profilesWithLocations"] == 1
    assert debug["sampleProfileLocations"] == [
        {"country": "Germany", "countryCode": "DE", "city": "Berlin"},
    ]
    assert debug["realCountries"][0]["_id"] == "Germany"


def test_debug_without_real_countries(client, api_key):
    debug = client.get("/api/analytics/debug", headers=api_key).json()["debug"]
    assert isinstance(debug["realCountries"], str)



def test_delete_debug_removes_profiles_without_known_location(client, api_key):
    client.post("/api/track/session", json={"userId": "user_berlin", "device": {"type": "desktop"}},
                headers={"X-Forwarded-For": "93.184.216.34"})
    client.post("/api/track/session", json={"userId": "user_local", "device": {"type": "desktop"}})
    client.post("/api/track/pageview", json={"userId": "user_other", "url": "https://site.example/"})

    resp = client.delete("/api/analytics/debug", headers=api_key)
    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "message": "Deleted 2 test profiles with only Unknown locations",
    }

    debug = client.get("/api/analytics/debug", headers=api_key).json()["debug"]
    assert debug["totalProfiles"] == 1
    assert client.get("/api/profile", params={"userId": "user_local"}).status_code == 404
    assert client.get("/api/profile", params={"userId": "user_berlin"}).status_code == 200


def test_delete_debug_requires_key(client, api_key):
    assert client.delete("/api/analytics/debug").status_code == 401

# --- Report ---

def test_send_report(app, client, api_key):
    _view(client, locationData=BERLIN_DATA)
    resp = client.post("/api/analytics/send-report", headers=api_key,
                       json={"toEmail": "owner@example.dev", "reportType": "weekly"})
    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "emailId": "msg_1",
        "message": "Analytics report sent successfully to owner@example.dev",
    }

    mail = app.state.mailer.sent[0]
    assert mail["to"] == ["owner@example.dev"]
    assert mail["subject"] == "📊 Portfolio Analytics Report - Weekly"
    assert "Last 7 Days" in mail["html"]
    assert "Alpha" in mail["html"]


def test_send_report_requires_recipient(client, api_key):
    resp = client.post("/api/analytics/send-report", headers=api_key, json={})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Missing required field: toEmail"}


def test_send_report_rejects_unknown_period(client, api_key):
    resp = client.post("/api/analytics/send-report", headers=api_key,
                       json={"toEmail": "owner@example.dev", "reportType": "yearly"})
    assert resp.status_code == 400


def test_send_report_delivery_failure(app, client, api_key):
    app.state.mailer.fail_for.add("owner@example.dev")
    resp = client.post("/api/analytics/send-report", headers=api_key,
                       json={"toEmail": "owner@example.dev"})
    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to send email report: delivery refused"}


# --- Templates ---

def test_country_flag():
    assert country_flag("de") == "🇩🇪"
    assert country_flag("") == ""
    assert country_flag("XYZ") == ""


def test_contact_template_escapes_visitor_input():
    html = render("contact_notification.html", name="<script>x</script>", email="a@b.c",
                  subject="Hi", message="line")
    assert "<script>x</script>" not in html
    assert "&lt;script&gt;" in html

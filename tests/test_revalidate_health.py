# Service-level endpoint tests: index, health, cache revalidation, error shapes
# Dependent files: app/main.py, app/routers/revalidate.py

from app.routers.fingerprint import load_fingerprint_info


def test_health(client):
    data = client.get("/health").json()
    assert data["status"] == "ok"
    assert data["version"]


def test_index_lists_api_routes(client):
    endpoints = client.get("/").json()["endpoints"]
    assert "POST /api/track/pageview" in endpoints
    assert "PUT /api/track/session" in endpoints
    assert "GET /api/congratulation/{entry_id}" in endpoints
    assert "GET /api/revalidate" in endpoints
    assert endpoints == sorted(endpoints)


def test_revalidate_requires_secret(client, monkeypatch):
    monkeypatch.setenv("REVALIDATE_SECRET", "flush")
    resp = client.get("/api/revalidate", params={"secret": "nope"})
    assert resp.status_code == 401
    assert resp.json() == {"message": "Invalid token"}

    monkeypatch.delenv("REVALIDATE_SECRET")
    assert client.get("/api/revalidate", params={"secret": "flush"}).status_code == 401


def test_revalidate_drops_caches(app, client, monkeypatch):
    monkeypatch.setenv("REVALIDATE_SECRET", "flush")
    load_fingerprint_info()
    assert load_fingerprint_info.cache_info().currsize == 1

    resp = client.get("/api/revalidate", params={"secret": "flush"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["revalidated"] is True
    assert isinstance(data["now"], int)
    assert load_fingerprint_info.cache_info().currsize == 0


def test_malformed_body_is_400(client):
    resp = client.post("/api/track/pageview", content=b"{not json", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["error"] == "Invalid request payload"


def test_unknown_route_is_404(client):
    resp = client.get("/api/nothing-here")
    assert resp.status_code == 404
    assert resp.json()["success"] is False

# Shared test fixtures
# Every test gets a fresh app over its own SQLite file; geolocation and
# e-mail delivery are replaced with in-memory fakes on app.state.
# Dependent files: app/main.py, app/services/geolocation.py, app/services/mailer.py

import pytest
from starlette.testclient import TestClient

from app.main import create_app
from app.rate_limit import limiter
from app.services.geolocation import LOCAL_LOCATION, GeoLocator, is_local_address
from app.services.mailer import Mailer, MailerError

BERLIN = {
    "country": "Germany", "countryCode": "DE", "region": "BE", "regionName": "Berlin",
    "city": "Berlin", "zip": "10115", "lat": 52.52, "lon": 13.405,
    "timezone": "Europe/Berlin", "isp": "Example ISP", "org": "Example Org", "as": "AS0 Example",
}


class FakeGeoLocator(GeoLocator):
    """Resolves every public IP to Berlin without touching the network."""

    def __init__(self, location=None):
        super().__init__(enabled=True)
        self.location = location or dict(BERLIN)
        self.calls = []

    async def lookup(self, ip):
        self.calls.append(ip)
        if is_local_address(ip):
            return dict(LOCAL_LOCATION)
        return dict(self.location)

    async def lookup_raw(self, ip):
        if is_local_address(ip):
            return {}
        return {"status": "success", "query": ip, **self.location}


class FakeMailer(Mailer):
    """Records outgoing mail; ``fail_for`` lists recipients whose delivery raises."""

    def __init__(self):
        super().__init__(
            contact_from="Contact <contact@example.dev>",
            confirmation_from="Owner <contact@example.dev>",
            report_from="Analytics <reports@example.dev>",
            owner_address="owner@example.dev",
            owner_name="Site Owner",
        )
        self.sent = []
        self.fail_for = set()

    async def send(self, sender, to, subject, html, reply_to=None):
        recipients = [to] if isinstance(to, str) else to
        if self.fail_for.intersection(recipients):
            raise MailerError("delivery refused")
        self.sent.append({
            "from": sender, "to": recipients, "subject": subject,
            "html": html, "reply_to": reply_to,
        })
        return f"msg_{len(self.sent)}"


def make_config(tmp_path, **overrides):
    config = {
        "frontend_url": "https://portfolio.example",
        "database": {"path": str(tmp_path / "test.db")},
        "logging": {"level": "WARNING"},
        "rate_limits": {
            "fingerprint": {"interval_seconds": 60, "unique_tokens": 500},
            "analytics": {"interval_seconds": 60, "unique_tokens": 100},
        },
        "default_limits": {
            "contact": "5/minute",
            "congratulation": "30/minute",
            "forms": "30/minute",
            "analytics_ingest": "120/minute",
        },
        "geolocation": {"enabled": False},
    }
    config.update(overrides)
    return config


@pytest.fixture(autouse=True)
def _reset_fixed_window_limits():
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def make_app(tmp_path):
    """Factory for apps built after the test adjusted the environment."""
    def _make(**overrides):
        application = create_app(make_config(tmp_path, **overrides))
        application.state.geolocator = FakeGeoLocator()
        application.state.mailer = FakeMailer()
        return application
    return _make


@pytest.fixture
def app(make_app, monkeypatch):
    monkeypatch.delenv("FRONTEND_URL", raising=False)
    return make_app()


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setenv("ANALYTICS_API_KEY", "test-analytics-key")
    return {"Authorization": "Bearer test-analytics-key"}


# Sliding-window rate limiter tests
# Unit tests drive the limiter with a fake clock; endpoint tests check the
# 429 mapping and that the limit applies before body validation.
# Dependent files: app/rate_limit.py, app/main.py

import pytest

from app.rate_limit import RateLimiter, RateLimitError, build_rate_limiters


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# --- RateLimiter ---

def test_allows_up_to_limit_then_rejects(clock):
    limiter = RateLimiter(interval=60, unique_token_per_interval=10, clock=clock)
    for _ in range(3):
        limiter.check("1.2.3.4", 3)
    with pytest.raises(RateLimitError):
        limiter.check("1.2.3.4", 3)


def test_window_slides(clock):
    limiter = RateLimiter(interval=60, unique_token_per_interval=10, clock=clock)
    limiter.check("a", 2)
    clock.advance(30)
    limiter.check("a", 2)
    with pytest.raises(RateLimitError):
        limiter.check("a", 2)

    # First request leaves the window, one slot frees up
    clock.advance(31)
    limiter.check("a", 2)
    with pytest.raises(RateLimitError):
        limiter.check("a", 2)


def test_rejected_requests_are_not_recorded(clock):
    limiter = RateLimiter(interval=60, unique_token_per_interval=10, clock=clock)
    limiter.check("a", 1)
    for _ in range(5):
        with pytest.raises(RateLimitError):
            limiter.check("a", 1)
    clock.advance(60)
    limiter.check("a", 1)


def test_identifiers_are_independent(clock):
    limiter = RateLimiter(interval=60, unique_token_per_interval=10, clock=clock)
    limiter.check("a", 1)
    limiter.check("b", 1)
    with pytest.raises(RateLimitError):
        limiter.check("a", 1)


def test_get_remaining(clock):
    limiter = RateLimiter(interval=60, unique_token_per_interval=10, clock=clock)
    assert limiter.get_remaining("a", 5) == 5
    limiter.check("a", 5)
    limiter.check("a", 5)
    assert limiter.get_remaining("a", 5) == 3
    clock.advance(61)
    assert limiter.get_remaining("a", 5) == 5


def test_reset_forgets_identifier(clock):
    limiter = RateLimiter(interval=60, unique_token_per_interval=10, clock=clock)
    limiter.check("a", 1)
    limiter.reset("a")
    limiter.check("a", 1)
    limiter.reset("never-seen")


def test_evicts_oldest_identifier_over_ceiling(clock):
    limiter = RateLimiter(interval=60, unique_token_per_interval=2, clock=clock)
    limiter.check("first", 1)
    limiter.check("second", 1)
    limiter.check("third", 1)

    assert len(limiter) == 2
    # "first" was evicted, so its budget is fresh again
    limiter.check("first", 1)
    with pytest.raises(RateLimitError):
        limiter.check("third", 1)


def test_repeat_requests_keep_insertion_position(clock):
    limiter = RateLimiter(interval=60, unique_token_per_interval=2, clock=clock)
    limiter.check("first", 5)
    limiter.check("second", 5)
    limiter.check("first", 5)
    limiter.check("third", 5)

    # "first" is still the insertion-order-oldest key and gets evicted
    assert limiter.get_remaining("first", 5) == 5
    assert limiter.get_remaining("second", 5) == 4


def test_build_rate_limiters_defaults_and_overrides():
    limiters = build_rate_limiters({"analytics": {"interval_seconds": 10}})
    assert set(limiters) == {"fingerprint", "analytics"}
    assert limiters["fingerprint"].interval == 60
    assert limiters["fingerprint"].unique_token_per_interval == 500
    assert limiters["analytics"].interval == 10
    assert limiters["analytics"].unique_token_per_interval == 100


# --- Endpoint behaviour ---

def test_pageview_limit_returns_429(client):
    body = {"userId": "user_1", "url": "https://site.example/about"}
    for _ in range(30):
        assert client.post("/api/track/pageview", json=body).status_code == 200

    resp = client.post("/api/track/pageview", json=body)
    assert resp.status_code == 429
    assert resp.json() == {"success": False, "error": "Rate limit exceeded"}


def test_limit_applies_before_validation(client):
    for _ in range(30):
        client.post("/api/track/pageview", json={})
    resp = client.post("/api/track/pageview", json={})
    assert resp.status_code == 429


import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from aurelia.core import config
from aurelia.services.rate_limiter import (
    ActionLimit,
    RateLimitDecision,
    RateLimiter,
    limiter,
    match_action,
    rate_limit_middleware,
    seconds_left_in_window,
)
from aurelia.services.redis_cache import redis_cache

NOW = 1_700_000_010.0
CONTACT = ActionLimit("contact_form", "POST", "/contact", limit=2, window_seconds=3600)


@pytest.mark.asyncio
async def test_allows_until_identity_limit(fake_redis):
    rl = RateLimiter(window_seconds=60, global_limit=100, per_identity_limit=2, fail_closed=True)

    first = await rl.check("member-1", now=NOW)
    second = await rl.check("member-1", now=NOW)
    third = await rl.check("member-1", now=NOW)

    assert (first.allowed, first.remaining) == (True, 1)
    assert (second.allowed, second.remaining) == (True, 0)
    assert not third.allowed
    assert third.retry_after == 30
    # Other identities have their own counter
    assert (await rl.check("member-2", now=NOW)).allowed


@pytest.mark.asyncio
async def test_blocks_on_global_limit(fake_redis):
    rl = RateLimiter(window_seconds=60, global_limit=2, per_identity_limit=10, fail_closed=True)

    assert (await rl.check("a", now=NOW)).allowed
    assert (await rl.check("b", now=NOW)).allowed
    assert not (await rl.check("c", now=NOW)).allowed


@pytest.mark.asyncio
async def test_new_window_resets_counter(fake_redis):
    rl = RateLimiter(window_seconds=60, global_limit=100, per_identity_limit=1)

    assert (await rl.check("member-1", now=NOW)).allowed
    assert not (await rl.check("member-1", now=NOW)).allowed
    assert (await rl.check("member-1", now=NOW + 60)).allowed


@pytest.mark.asyncio
async def test_action_budget_is_separate(fake_redis):
    rl = RateLimiter(window_seconds=60, global_limit=100, per_identity_limit=100)

    for _ in range(2):
        assert (await rl.check("203.0.113.9", CONTACT, now=NOW)).allowed
    blocked = await rl.check("203.0.113.9", CONTACT, now=NOW)

    assert not blocked.allowed
    assert blocked.limit == 2
    assert blocked.retry_after == seconds_left_in_window(3600, NOW)
    assert not [key for key in fake_redis.store if key.startswith("rate:global")]
    # The general budget is untouched
    assert (await rl.check("203.0.113.9", now=NOW)).remaining == 99


@pytest.mark.asyncio
async def test_fail_open_by_default_when_storage_down():
    assert not redis_cache.is_available
    rl = RateLimiter(window_seconds=60, global_limit=1, per_identity_limit=1)

    decision = await rl.check("member-1")

    assert decision.allowed
    assert decision.remaining == 1


@pytest.mark.asyncio
async def test_fail_closed_when_configured():
    rl = RateLimiter(window_seconds=60, global_limit=5, per_identity_limit=3, fail_closed=True)
    assert not (await rl.check("member-1")).allowed


def test_seconds_left_in_window():
    assert seconds_left_in_window(60, 1_700_000_000) == 40
    assert seconds_left_in_window(60, 1_699_999_980) == 60


def test_match_action():
    assert match_action("POST", "/contact").action == "contact_form"
    assert match_action("POST", "/contact/").action == "contact_form"
    assert match_action("GET", "/contact") is None
    assert match_action("POST", "/requests") is None


def _app_with_middleware(monkeypatch, allowed: bool) -> FastAPI:
    app = FastAPI()
    monkeypatch.setattr(config.settings, "ENABLE_RATE_LIMITING", True)
    seen: list = []

    async def decide(identity, action=None, now=None):
        seen.append(action.action if action else "api")
        return RateLimitDecision(allowed=allowed, limit=120, remaining=7 if allowed else 0, retry_after=5)

    monkeypatch.setattr(limiter, "check", decide)
    app.middleware("http")(rate_limit_middleware)
    app.state.seen = seen

    @app.get("/api/v1/ping")
    async def ping():
        return {"status": "ok"}

    @app.post("/api/v1/contact")
    async def contact():
        return {"status": "ok"}

    @app.post("/api/v1/webhooks/twilio/sms")
    async def twilio():
        return {"status": "ok"}

    @app.post("/api/v1/payments/stripe/webhook")
    async def stripe():
        return {"status": "ok"}

    return app


def test_middleware_returns_429_when_denied(monkeypatch):
    client = TestClient(_app_with_middleware(monkeypatch, allowed=False))

    resp = client.get("/api/v1/ping")

    assert resp.status_code == 429
    assert resp.headers.get("Retry-After") == "5"
    assert resp.headers.get("X-RateLimit-Remaining") == "0"
    assert resp.json()["code"] == "RATE_LIMIT_EXCEEDED"
    assert resp.json()["detail"].startswith("Rate limit exceeded")


def test_middleware_passes_with_headers_when_allowed(monkeypatch):
    client = TestClient(_app_with_middleware(monkeypatch, allowed=True))

    resp = client.get("/api/v1/ping")

    assert resp.json() == {"status": "ok"}
    assert resp.headers["X-RateLimit-Limit"] == "120"
    assert resp.headers["X-RateLimit-Remaining"] == "7"
    assert "Retry-After" not in resp.headers


def test_contact_form_uses_its_own_budget(monkeypatch):
    app = _app_with_middleware(monkeypatch, allowed=True)
    client = TestClient(app)

    client.post("/api/v1/contact")
    client.get("/api/v1/ping")

    assert app.state.seen == ["contact_form", "api"]


def test_provider_webhooks_never_throttled(monkeypatch):
    app = _app_with_middleware(monkeypatch, allowed=False)
    client = TestClient(app)

    assert client.post("/api/v1/webhooks/twilio/sms").status_code == 200
    assert client.post("/api/v1/payments/stripe/webhook").status_code == 200
    assert app.state.seen == []

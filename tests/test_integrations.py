import json

import httpx
import pytest

from aurelia.core.config import settings
from aurelia.services.crawler_service import crawler_service, normalize_url
from aurelia.services.currency_service import currency_service
from aurelia.services.persona import VOICE_SYSTEM_PROMPT
from aurelia.services.voice_service import voice_service
from aurelia.services.weather_service import weather_service

from conftest import auth_headers

INTEGRATIONS = "/api/v1/integrations"


class Upstream:
    """Routes requests by (method, path) to canned responses and records them."""

    def __init__(self):
        self.routes: dict[tuple[str, str], httpx.Response] = {}
        self.calls: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        response = self.routes.get((request.method, request.url.path))
        return response if response is not None else httpx.Response(404, json={"error": "Not found"})


@pytest.fixture
def upstream(monkeypatch):
    fake = Upstream()
    transport = httpx.MockTransport(fake)
    for service in (weather_service, currency_service, crawler_service, voice_service):
        monkeypatch.setattr(service, "transport", transport)
    return fake


class TestWeather:
    @pytest.mark.asyncio
    async def test_current_conditions(self, api, member, upstream, monkeypatch):
        monkeypatch.setattr(settings, "OPENWEATHER_API_KEY", "owm-key")
        upstream.routes[("GET", "/geo/1.0/direct")] = httpx.Response(
            200, json=[{"name": "Saint-Tropez", "country": "FR", "lat": 43.27, "lon": 6.64}]
        )
        upstream.routes[("GET", "/data/2.5/weather")] = httpx.Response(
            200,
            json={
                "weather": [{"description": "clear sky", "icon": "01d"}],
                "main": {"temp": 27.4, "feels_like": 28.1, "humidity": 52},
                "wind": {"speed": 3.2},
            },
        )

        resp = await api.get(f"{INTEGRATIONS}/weather?city=saint-tropez", headers=auth_headers(member))

        data = resp.json()
        assert data["city"] == "Saint-Tropez"
        assert data["temperature"] == 27.4
        assert data["description"] == "clear sky"
        assert upstream.calls[1].url.params["lat"] == "43.27"
        assert upstream.calls[1].url.params["appid"] == "owm-key"

    @pytest.mark.asyncio
    async def test_unknown_city(self, api, member, upstream, monkeypatch):
        monkeypatch.setattr(settings, "OPENWEATHER_API_KEY", "owm-key")
        upstream.routes[("GET", "/geo/1.0/direct")] = httpx.Response(200, json=[])

        resp = await api.get(f"{INTEGRATIONS}/weather?city=atlantis", headers=auth_headers(member))
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_not_configured(self, api, member):
        resp = await api.get(f"{INTEGRATIONS}/weather?city=paris", headers=auth_headers(member))
        assert resp.status_code == 503

    @pytest.mark.asyncio
    async def test_requires_login(self, api):
        resp = await api.get(f"{INTEGRATIONS}/weather?city=paris")
        assert resp.status_code == 401


class TestCurrency:
    @pytest.mark.asyncio
    async def test_convert(self, api, upstream):
        upstream.routes[("GET", "/latest")] = httpx.Response(
            200, json={"amount": 100.0, "base": "EUR", "date": "2026-10-16", "rates": {"USD": 108.5}}
        )

        resp = await api.get(f"{INTEGRATIONS}/currency?amount=100&from=eur&to=usd")

        assert resp.json() == {
            "amount": 100.0,
            "from": "EUR",
            "to": "USD",
            "rate": 1.085,
            "result": 108.5,
            "date": "2026-10-16",
        }

    @pytest.mark.asyncio
    async def test_same_currency_skips_lookup(self, upstream):
        result = await currency_service.convert(250, "chf", "CHF")

        assert result["result"] == 250
        assert upstream.calls == []

    @pytest.mark.asyncio
    async def test_unsupported_currency(self, api, upstream):
        resp = await api.get(f"{INTEGRATIONS}/currency?amount=10&from=EUR&to=XYZ")
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_non_positive_amount(self, api):
        resp = await api.get(f"{INTEGRATIONS}/currency?amount=0&from=EUR&to=USD")
        assert resp.status_code == 400


class TestCrawler:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("example.com", "https://example.com"),
            ("  http://example.com/page ", "http://example.com/page"),
            ("https://example.com", "https://example.com"),
        ],
    )
    def test_normalize_url(self, raw, expected):
        assert normalize_url(raw) == expected

    @pytest.mark.asyncio
    async def test_scrape_passes_through(self, api, admin, upstream, monkeypatch):
        monkeypatch.setattr(settings, "FIRECRAWL_API_KEY", "fc-key")
        upstream.routes[("POST", "/v1/scrape")] = httpx.Response(
            200, json={"success": True, "data": {"markdown": "# Villa Lumiere"}}
        )

        resp = await api.post(
            f"{INTEGRATIONS}/crawl/scrape", json={"url": "villalumiere.example"}, headers=auth_headers(admin)
        )

        assert resp.json()["data"]["markdown"] == "# Villa Lumiere"
        sent = upstream.calls[0]
        assert sent.headers["Authorization"] == "Bearer fc-key"
        assert json.loads(sent.content) == {"url": "https://villalumiere.example", "formats": ["markdown"]}

    @pytest.mark.asyncio
    async def test_upstream_error_message(self, api, admin, upstream, monkeypatch):
        monkeypatch.setattr(settings, "FIRECRAWL_API_KEY", "fc-key")
        upstream.routes[("POST", "/v1/search")] = httpx.Response(402, json={"error": "Insufficient credits"})

        resp = await api.post(f"{INTEGRATIONS}/crawl/search", json={"query": "Monaco"}, headers=auth_headers(admin))

        assert resp.status_code == 502
        assert resp.json()["detail"] == "Insufficient credits"

    @pytest.mark.asyncio
    async def test_crawl_status(self, api, admin, upstream, monkeypatch):
        monkeypatch.setattr(settings, "FIRECRAWL_API_KEY", "fc-key")
        upstream.routes[("GET", "/v1/crawl/job-9")] = httpx.Response(200, json={"status": "completed", "total": 12})

        resp = await api.post(f"{INTEGRATIONS}/crawl/status", json={"job_id": "job-9"}, headers=auth_headers(admin))

        assert resp.json() == {"status": "completed", "total": 12}

    @pytest.mark.asyncio
    async def test_staff_only(self, api, member, upstream, monkeypatch):
        monkeypatch.setattr(settings, "FIRECRAWL_API_KEY", "fc-key")

        resp = await api.post(f"{INTEGRATIONS}/crawl/map", json={"url": "example.com"}, headers=auth_headers(member))

        assert resp.status_code == 403
        assert upstream.calls == []

    @pytest.mark.asyncio
    async def test_not_configured(self, api, admin):
        resp = await api.post(f"{INTEGRATIONS}/crawl/crawl", json={"url": "example.com"}, headers=auth_headers(admin))
        assert resp.status_code == 503


class TestVoice:
    @pytest.mark.asyncio
    async def test_session(self, api, member, upstream, monkeypatch):
        monkeypatch.setattr(settings, "ELEVENLABS_API_KEY", "xi-key")
        upstream.routes[("POST", "/v1/convai/agents/create")] = httpx.Response(200, json={"agent_id": "agent_1"})
        upstream.routes[("GET", "/v1/convai/conversation/get-signed-url")] = httpx.Response(
            200, json={"signed_url": "wss://api.elevenlabs.io/v1/convai/conversation?token=abc"}
        )

        resp = await api.post(f"{INTEGRATIONS}/voice/token", headers=auth_headers(member))

        assert resp.json() == {
            "signed_url": "wss://api.elevenlabs.io/v1/convai/conversation?token=abc",
            "agent_id": "agent_1",
        }
        created = json.loads(upstream.calls[0].content)
        assert created["conversation_config"]["agent"]["prompt"]["prompt"] == VOICE_SYSTEM_PROMPT
        assert upstream.calls[0].headers["xi-api-key"] == "xi-key"

    @pytest.mark.asyncio
    async def test_agent_removed_when_signing_fails(self, api, member, upstream, monkeypatch):
        monkeypatch.setattr(settings, "ELEVENLABS_API_KEY", "xi-key")
        upstream.routes[("POST", "/v1/convai/agents/create")] = httpx.Response(200, json={"agent_id": "agent_2"})
        upstream.routes[("DELETE", "/v1/convai/agents/agent_2")] = httpx.Response(200, json={})

        resp = await api.post(f"{INTEGRATIONS}/voice/token", headers=auth_headers(member))

        assert resp.status_code == 502
        assert [(c.method, c.url.path) for c in upstream.calls][-1] == ("DELETE", "/v1/convai/agents/agent_2")

    @pytest.mark.asyncio
    async def test_not_configured(self, api, member):
        resp = await api.post(f"{INTEGRATIONS}/voice/token", headers=auth_headers(member))
        assert resp.status_code == 503

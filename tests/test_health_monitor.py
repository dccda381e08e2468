import httpx
import pytest
from sqlalchemy import select

from aurelia.core.config import settings
from aurelia.models import Incident, UptimeCheck
from aurelia.services.database import database
from aurelia.services.health_service import classify, health_service

from conftest import auth_headers

ENDPOINTS = {
    "Frontend": "https://aurelia.example",
    "API Health": "https://api.aurelia.example/health",
    "Booking": "https://booking.aurelia.example",
}


@pytest.fixture
def probes(monkeypatch):
    """Status code per host; None makes the connection fail."""
    codes: dict[str, int | None] = {"aurelia.example": 200, "api.aurelia.example": 200, "booking.aurelia.example": 200}

    def handler(request: httpx.Request) -> httpx.Response:
        code = codes[request.url.host]
        if code is None:
            raise httpx.ConnectError("Connection refused", request=request)
        return httpx.Response(code)

    monkeypatch.setattr(settings, "UPTIME_ENDPOINTS", ENDPOINTS)
    monkeypatch.setattr(health_service, "transport", httpx.MockTransport(handler))
    return codes


async def _incidents() -> list[Incident]:
    async with database.session() as session:
        return list((await session.execute(select(Incident).order_by(Incident.started_at))).scalars().all())


@pytest.mark.parametrize(
    "status_code, elapsed, expected",
    [
        (200, 120, "healthy"),
        (200, 3500, "degraded"),
        (404, 50, "degraded"),
        (503, 50, "down"),
        (None, 10000, "down"),
    ],
)
def test_classify(status_code, elapsed, expected):
    assert classify(status_code, elapsed) == expected


def test_default_targets(monkeypatch):
    monkeypatch.setattr(settings, "UPTIME_ENDPOINTS", {})
    monkeypatch.setattr(settings, "SITE_URL", "https://aurelia.example/")

    assert settings.uptime_targets() == {
        "Frontend": "https://aurelia.example",
        "API Health": "https://aurelia.example/health",
    }


@pytest.mark.asyncio
async def test_all_healthy(db, probes):
    summary = await health_service.run_checks()

    assert summary["total_endpoints"] == 3
    assert summary["healthy"] == 3
    assert summary["down"] == 0
    assert await _incidents() == []
    async with database.session() as session:
        stored = (await session.execute(select(UptimeCheck))).scalars().all()
    assert len(stored) == 3


@pytest.mark.asyncio
async def test_outage_opens_one_incident_and_resolves(db, probes):
    probes["api.aurelia.example"] = None
    probes["booking.aurelia.example"] = 502

    summary = await health_service.run_checks()
    assert summary["down"] == 2
    failed = {r["endpoint_name"]: r for r in summary["results"] if r["status"] == "down"}
    assert failed["Booking"]["error_message"] == "HTTP 502"
    assert "Connection refused" in failed["API Health"]["error_message"]

    (incident,) = await _incidents()
    assert incident.status == "investigating"
    assert incident.severity == "critical"
    assert sorted(incident.affected_services) == ["API Health", "Booking"]

    # Still down: no duplicate incident
    await health_service.run_checks()
    assert len(await _incidents()) == 1

    # One recovered: incident stays open until every affected service is healthy
    probes["booking.aurelia.example"] = 200
    await health_service.run_checks()
    assert (await _incidents())[0].status == "investigating"

    probes["api.aurelia.example"] = 200
    await health_service.run_checks()
    (resolved,) = await _incidents()
    assert resolved.status == "resolved"
    assert resolved.resolved_at is not None


@pytest.mark.asyncio
async def test_degraded_does_not_open_incident(db, probes):
    probes["booking.aurelia.example"] = 429

    summary = await health_service.run_checks()

    assert summary["degraded"] == 1
    assert await _incidents() == []


@pytest.mark.asyncio
async def test_single_outage_is_major(db, probes):
    probes["aurelia.example"] = 500

    await health_service.run_checks()

    (incident,) = await _incidents()
    assert incident.severity == "major"
    assert incident.title == "Service Outage: Frontend"


@pytest.mark.asyncio
async def test_admin_routes(api, admin, member, probes):
    probes["aurelia.example"] = 500

    run = await api.get("/api/v1/admin/health/uptime", headers=auth_headers(admin))
    assert run.json()["down"] == 1

    checks = await api.get("/api/v1/admin/health/checks?limit=2", headers=auth_headers(admin))
    assert len(checks.json()) == 2

    incidents = await api.get("/api/v1/admin/incidents", headers=auth_headers(admin))
    assert [i["affected_services"] for i in incidents.json()] == [["Frontend"]]

    forbidden = await api.get("/api/v1/admin/health/uptime", headers=auth_headers(member))
    assert forbidden.status_code == 403


@pytest.mark.asyncio
async def test_service_key_runs_checks(api, probes, monkeypatch):
    monkeypatch.setattr(settings, "SERVICE_API_KEY", "scheduler-key")

    resp = await api.get("/api/v1/admin/health/uptime", headers={"X-Service-Key": "scheduler-key"})

    assert resp.status_code == 200
    assert resp.json()["healthy"] == 3

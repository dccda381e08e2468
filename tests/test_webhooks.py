import json

import httpx
import pytest
from sqlalchemy import select

from aurelia.core.config import settings
from aurelia.models import CalendarEvent, ContactSubmission, Notification, PartnerCommission, ServiceRequest
from aurelia.services.database import database
from aurelia.services.webhook_service import webhook_service

from conftest import auth_headers

SECRET = "n8n-shared-secret"


@pytest.fixture
def outbound(monkeypatch):
    """Capture outbound deliveries; URLs containing 'broken' answer 500."""
    delivered: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        delivered.append(request)
        if "broken" in request.url.host:
            return httpx.Response(500)
        return httpx.Response(200, json={"ok": True})

    monkeypatch.setattr(webhook_service, "transport", httpx.MockTransport(handler))
    return delivered


@pytest.fixture
def secret(monkeypatch):
    monkeypatch.setattr(settings, "INBOUND_WEBHOOK_SECRET", SECRET)
    return {"X-Webhook-Secret": SECRET}


async def _register(api, admin, name: str, url: str, events: list[str] | None = None) -> dict:
    body = {"name": name, "url": url}
    if events is not None:
        body["events"] = events
    resp = await api.post("/api/v1/admin/webhooks", json=body, headers=auth_headers(admin))
    assert resp.status_code == 201
    return resp.json()


async def _contact(**fields) -> ContactSubmission:
    contact = ContactSubmission(name="Ada", email="ada@example.com", message="Villa in Mykonos", **fields)
    async with database.session() as session:
        session.add(contact)
        await session.commit()
        await session.refresh(contact)
    return contact


class TestDispatch:
    @pytest.mark.asyncio
    async def test_only_subscribed_endpoints_receive(self, api, admin, outbound):
        crm = await _register(api, admin, "CRM", "https://crm.example/hook")
        await _register(api, admin, "Everything", "https://all.example/hook", events=[])
        await _register(api, admin, "VIP desk", "https://vip.example/hook", events=["vip_detected"])

        delivered = await webhook_service.dispatch("contact_form", {"name": "Ada"})

        assert delivered == 2
        assert sorted(r.url.host for r in outbound) == ["all.example", "crm.example"]
        payload = json.loads(outbound[0].content)
        assert payload["event"] == "contact_form"
        assert payload["data"] == {"name": "Ada"}
        assert "timestamp" in payload

        listed = {e["id"]: e for e in (await api.get("/api/v1/admin/webhooks", headers=auth_headers(admin))).json()}
        assert listed[crm["id"]]["last_triggered_at"] is not None

    @pytest.mark.asyncio
    async def test_failures_are_counted_not_raised(self, api, admin, outbound):
        broken = await _register(api, admin, "Broken", "https://broken.example/hook", events=["test"])
        await _register(api, admin, "Working", "https://working.example/hook", events=["test"])

        resp = await api.post("/api/v1/admin/webhooks/test", headers=auth_headers(admin))

        assert resp.json() == {"event": "test", "delivered": 1}
        listed = {e["id"]: e for e in (await api.get("/api/v1/admin/webhooks", headers=auth_headers(admin))).json()}
        assert listed[broken["id"]]["last_triggered_at"] is None

    @pytest.mark.asyncio
    async def test_catch_all_url(self, db, outbound, monkeypatch):
        monkeypatch.setattr(settings, "N8N_WEBHOOK_URL", "https://n8n.example/webhook/aurelia")

        assert await webhook_service.dispatch("vip_detected", {"score": 95}) == 1
        assert outbound[0].url.host == "n8n.example"

    @pytest.mark.asyncio
    async def test_no_targets(self, db, outbound):
        assert await webhook_service.dispatch("contact_form", {}) == 0
        assert outbound == []


class TestRegistry:
    @pytest.mark.asyncio
    async def test_defaults_to_contact_form(self, api, admin):
        created = await _register(api, admin, "CRM", "https://crm.example/hook")

        assert created["events"] == ["contact_form"]
        assert created["is_active"] is True

    @pytest.mark.asyncio
    async def test_disabled_endpoint_is_skipped(self, api, admin, outbound):
        created = await _register(api, admin, "CRM", "https://crm.example/hook")

        resp = await api.patch(
            f"/api/v1/admin/webhooks/{created['id']}", json={"is_active": False}, headers=auth_headers(admin)
        )

        assert resp.json()["is_active"] is False
        assert await webhook_service.dispatch("contact_form", {}) == 0

    @pytest.mark.asyncio
    async def test_delete(self, api, admin):
        created = await _register(api, admin, "CRM", "https://crm.example/hook")
        url = f"/api/v1/admin/webhooks/{created['id']}"

        assert (await api.delete(url, headers=auth_headers(admin))).status_code == 200
        assert (await api.delete(url, headers=auth_headers(admin))).status_code == 404
        assert (await api.get("/api/v1/admin/webhooks", headers=auth_headers(admin))).json() == []

    @pytest.mark.asyncio
    async def test_changes_are_audited(self, api, admin):
        created = await _register(api, admin, "CRM", "https://crm.example/hook")
        await api.delete(f"/api/v1/admin/webhooks/{created['id']}", headers=auth_headers(admin))

        logs = (
            await api.get("/api/v1/admin/audit-logs?resource_type=webhook_endpoint", headers=auth_headers(admin))
        ).json()

        assert sorted(entry["action"] for entry in logs) == ["webhook_created", "webhook_deleted"]
        assert {entry["user_id"] for entry in logs} == {admin.id}

    @pytest.mark.asyncio
    async def test_unknown_endpoint_toggle(self, api, admin):
        resp = await api.patch("/api/v1/admin/webhooks/missing", json={"is_active": True}, headers=auth_headers(admin))
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_members_cannot_manage(self, api, member):
        resp = await api.post(
            "/api/v1/admin/webhooks", json={"name": "x", "url": "https://x.example"}, headers=auth_headers(member)
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_invalid_url(self, api, admin):
        resp = await api.post(
            "/api/v1/admin/webhooks", json={"name": "x", "url": "not a url"}, headers=auth_headers(admin)
        )
        assert resp.status_code == 422


class TestContactForm:
    @pytest.mark.asyncio
    async def test_submission_is_stored_and_relayed(self, api, admin, outbound):
        await _register(api, admin, "CRM", "https://crm.example/hook")

        resp = await api.post(
            "/api/v1/contact",
            json={"name": "  Ada  ", "email": "ada@example.com", "message": "Villa in Mykonos", "source": "footer"},
        )

        assert resp.status_code == 201
        assert resp.json()["success"] is True
        async with database.session() as session:
            contact = await session.get(ContactSubmission, resp.json()["id"])
        assert contact.name == "Ada"
        assert contact.status == "new"
        assert contact.lead_score is None
        relayed = json.loads(outbound[0].content)
        assert relayed["event"] == "contact_form"
        assert relayed["data"]["email"] == "ada@example.com"

    @pytest.mark.asyncio
    async def test_session_adds_lead_score(self, api, outbound):
        resp = await api.post(
            "/api/v1/contact",
            json={"name": "Ada", "email": "ada@example.com", "message": "Hello", "session_id": "sess-1"},
        )

        async with database.session() as session:
            contact = await session.get(ContactSubmission, resp.json()["id"])
        assert contact.lead_score == 5

    @pytest.mark.asyncio
    async def test_invalid_email(self, api):
        resp = await api.post("/api/v1/contact", json={"name": "Ada", "email": "nope", "message": "Hello"})
        assert resp.status_code == 422


class TestInbound:
    @pytest.mark.asyncio
    async def test_secret_not_configured(self, api):
        resp = await api.post("/api/v1/webhooks/inbound", json={"event": "add_note"})
        assert resp.status_code == 503

    @pytest.mark.asyncio
    async def test_wrong_secret(self, api, secret):
        resp = await api.post(
            "/api/v1/webhooks/inbound", json={"event": "add_note"}, headers={"X-Webhook-Secret": "guess"}
        )
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_non_ascii_secret(self, api, secret):
        resp = await api.post(
            "/api/v1/webhooks/inbound", json={"event": "add_note"}, headers={"X-Webhook-Secret": "sécret".encode()}
        )
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_crm_updates(self, api, secret):
        contact = await _contact()

        async def send(event: str, **data) -> dict:
            resp = await api.post(
                "/api/v1/webhooks/inbound",
                json={"event": event, "data": {"contact_id": contact.id, **data}},
                headers=secret,
            )
            return resp.json()

        assert await send("contact_status_update", status="contacted", notes="Left voicemail") == {
            "received": True,
            "updated": True,
        }
        await send("assign_contact", assigned_to="agent-7")
        await send("add_note", note="Prefers WhatsApp")

        async with database.session() as session:
            refreshed = await session.get(ContactSubmission, contact.id)
        assert refreshed.status == "contacted"
        assert refreshed.assigned_to == "agent-7"
        first, second = refreshed.notes.split("\n\n")
        assert first == "Left voicemail"
        assert second.endswith("] Prefers WhatsApp")

    @pytest.mark.asyncio
    async def test_unknown_contact_or_event_is_acknowledged(self, api, secret):
        contact = await _contact()

        missing = await api.post(
            "/api/v1/webhooks/inbound",
            json={"event": "assign_contact", "data": {"contact_id": "missing", "assigned_to": "x"}},
            headers=secret,
        )
        unknown = await api.post(
            "/api/v1/webhooks/inbound",
            json={"event": "archive", "data": {"contact_id": contact.id}},
            headers=secret,
        )

        assert missing.json() == {"received": True, "updated": False}
        assert unknown.json() == {"received": True, "updated": False}


class TestAutomation:
    @pytest.mark.asyncio
    async def test_unknown_event(self, api, secret):
        resp = await api.post("/api/v1/webhooks/n8n", json={"event": "client.birthday"}, headers=secret)

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Unknown event: client.birthday"

    @pytest.mark.asyncio
    async def test_client_welcome(self, api, member, secret):
        resp = await api.post(
            "/api/v1/webhooks/n8n",
            json={"event": "client.welcome", "data": {"user_id": member.id, "name": "Ada"}},
            headers=secret,
        )

        assert resp.json()["success"] is True
        async with database.session() as session:
            (note,) = (await session.execute(select(Notification))).scalars().all()
        assert note.user_id == member.id
        assert note.type == "welcome"
        assert note.description.startswith("Hello Ada")

    @pytest.mark.asyncio
    async def test_calendar_sync(self, api, member, secret):
        resp = await api.post(
            "/api/v1/webhooks/n8n",
            json={
                "event": "calendar.sync",
                "data": {"user_id": member.id, "event_title": "Monaco Grand Prix", "start_date": "2026-05-24T13:00:00Z"},
            },
            headers=secret,
        )
        incomplete = await api.post(
            "/api/v1/webhooks/n8n",
            json={"event": "calendar.sync", "data": {"user_id": member.id}},
            headers=secret,
        )

        assert resp.json()["success"] is True
        assert incomplete.json()["success"] is False
        async with database.session() as session:
            (event,) = (await session.execute(select(CalendarEvent))).scalars().all()
        assert event.title == "Monaco Grand Prix"
        assert event.start_date.year == 2026

    @pytest.mark.asyncio
    async def test_commission_calculated_once(self, api, member, secret):
        request = ServiceRequest(
            client_id=member.id,
            partner_id="partner-1",
            category="yacht_charter",
            title="Amalfi coast week",
            description="Crewed motor yacht",
            budget_max=90000,
            status="completed",
        )
        async with database.session() as session:
            session.add(request)
            await session.commit()
            await session.refresh(request)

        body = {"event": "commission.calculate", "data": {"service_request_id": request.id}}
        first = await api.post("/api/v1/webhooks/n8n", json=body, headers=secret)
        again = await api.post("/api/v1/webhooks/n8n", json=body, headers=secret)

        assert first.json() == {"success": True, "commission": {"amount": 13500, "rate": 15}}
        assert again.json()["success"] is True
        async with database.session() as session:
            commissions = (await session.execute(select(PartnerCommission))).scalars().all()
        assert len(commissions) == 1
        assert commissions[0].booking_amount == 90000

    @pytest.mark.asyncio
    async def test_commission_needs_partner(self, api, secret):
        resp = await api.post(
            "/api/v1/webhooks/n8n",
            json={"event": "commission.calculate", "data": {"service_request_id": "missing"}},
            headers=secret,
        )
        assert resp.json() == {"success": False, "error": "No partner assigned"}

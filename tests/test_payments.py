import json
import time
from urllib.parse import parse_qs

import httpx
import pytest
from sqlalchemy import select

from aurelia.core.config import settings
from aurelia.models import Notification, User
from aurelia.services.credits_service import credits_service
from aurelia.services.database import database
from aurelia.services.payments_service import payments_service
from aurelia.services.stripe_client import SignatureVerificationError, compute_signature, construct_event

from conftest import auth_headers, create_user

WEBHOOK = "/api/v1/payments/stripe/webhook"
SECRET = "whsec_test"


def _signed(event: dict, secret: str = SECRET, timestamp: int | None = None) -> tuple[bytes, str]:
    payload = json.dumps(event).encode()
    timestamp = int(time.time()) if timestamp is None else timestamp
    return payload, f"t={timestamp},v1={compute_signature(payload, timestamp, secret)}"


@pytest.fixture
def stripe_api(monkeypatch):
    """Configure Stripe and route its HTTP calls to a handler set by the test."""
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", SECRET)
    calls: list[httpx.Request] = []
    routes: dict[tuple[str, str], dict] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        body = routes.get((request.method, request.url.path))
        if body is None:
            return httpx.Response(404, json={"error": {"message": "No such resource"}})
        return httpx.Response(200, json=body)

    monkeypatch.setattr(payments_service.stripe, "transport", httpx.MockTransport(handler))
    return {"routes": routes, "calls": calls}


class TestSignature:
    def test_valid_signature(self):
        payload, header = _signed({"type": "ping"})
        assert construct_event(payload, header, SECRET)["type"] == "ping"

    def test_wrong_secret(self):
        payload, header = _signed({"type": "ping"}, secret="whsec_other")
        with pytest.raises(SignatureVerificationError):
            construct_event(payload, header, SECRET)

    def test_stale_timestamp(self):
        payload, header = _signed({"type": "ping"}, timestamp=int(time.time()) - 3600)
        with pytest.raises(SignatureVerificationError):
            construct_event(payload, header, SECRET, tolerance=300)

    @pytest.mark.parametrize("header", [None, "", "v1=abc", "t=notanumber,v1=abc"])
    def test_malformed_header(self, header):
        with pytest.raises(SignatureVerificationError):
            construct_event(b"{}", header, SECRET)


class TestWebhook:
    @pytest.mark.asyncio
    async def test_not_configured(self, api):
        payload, header = _signed({"type": "ping"})
        resp = await api.post(WEBHOOK, content=payload, headers={"Stripe-Signature": header})
        assert resp.status_code == 503

    @pytest.mark.asyncio
    async def test_bad_signature_rejected(self, api, stripe_api):
        payload, header = _signed({"type": "ping"}, secret="whsec_wrong")
        resp = await api.post(WEBHOOK, content=payload, headers={"Stripe-Signature": header})

        assert resp.status_code == 400
        assert resp.json()["detail"].startswith("Webhook Error")

    @pytest.mark.asyncio
    async def test_non_ascii_signature_rejected(self, api, stripe_api):
        payload, _ = _signed({"type": "ping"})
        header = f"t={int(time.time())},v1=ségnature".encode()
        resp = await api.post(WEBHOOK, content=payload, headers={"Stripe-Signature": header})

        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_credit_purchase_fulfilled_once(self, api, member, stripe_api):
        event = {
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": "cs_test_42",
                    "metadata": {"type": "credit_purchase", "user_id": member.id, "credits": "10"},
                }
            },
        }
        payload, header = _signed(event)

        first = await api.post(WEBHOOK, content=payload, headers={"Stripe-Signature": header})
        replay = await api.post(WEBHOOK, content=payload, headers={"Stripe-Signature": header})

        assert first.json() == {"received": True}
        assert replay.status_code == 200
        (entry,) = await credits_service.list_transactions(member.id)
        assert entry.amount == 10
        assert entry.transaction_type == "purchase"
        async with database.session() as session:
            notes = (await session.execute(select(Notification))).scalars().all()
        assert [n.title for n in notes] == ["Credits Added"]

    @pytest.mark.asyncio
    async def test_invalid_purchase_metadata(self, api, member, stripe_api):
        event = {
            "type": "checkout.session.completed",
            "data": {"object": {"id": "cs_1", "metadata": {"type": "credit_purchase", "credits": "ten"}}},
        }
        payload, header = _signed(event)

        resp = await api.post(WEBHOOK, content=payload, headers={"Stripe-Signature": header})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_invoice_paid_allocates_tier(self, api, member, stripe_api):
        stripe_api["routes"][("GET", "/v1/subscriptions/sub_1")] = {
            "id": "sub_1",
            "items": {"data": [{"price": {"product": "prod_TRGmOm7dLXCRJl"}}]},
        }
        event = {
            "type": "invoice.paid",
            "data": {
                "object": {
                    "id": "in_1",
                    "subscription": "sub_1",
                    "customer": "cus_9",
                    "customer_email": member.email,
                }
            },
        }
        payload, header = _signed(event)

        resp = await api.post(WEBHOOK, content=payload, headers={"Stripe-Signature": header})

        assert resp.status_code == 200
        async with database.session() as session:
            user = await session.get(User, member.id)
        assert user.membership_tier == "gold"
        assert user.stripe_customer_id == "cus_9"
        balance = await credits_service.get_balance(user)
        assert balance["balance"] == 15

    @pytest.mark.asyncio
    async def test_redelivered_invoice_allocates_once(self, api, member, stripe_api):
        stripe_api["routes"][("GET", "/v1/subscriptions/sub_1")] = {
            "id": "sub_1",
            "items": {"data": [{"price": {"product": "prod_TRGmOm7dLXCRJl"}}]},
        }
        event = {
            "type": "invoice.paid",
            "data": {"object": {"id": "in_1", "subscription": "sub_1", "customer_email": member.email}},
        }
        payload, header = _signed(event)

        for _ in range(2):
            resp = await api.post(WEBHOOK, content=payload, headers={"Stripe-Signature": header})
            assert resp.status_code == 200

        async with database.session() as session:
            user = await session.get(User, member.id)
        assert (await credits_service.get_balance(user))["balance"] == 15
        allocations = [
            t for t in await credits_service.list_transactions(member.id) if t.stripe_reference == "in_1"
        ]
        assert len(allocations) == 1

    @pytest.mark.asyncio
    async def test_subscription_deleted_keeps_balance(self, api, stripe_api):
        user = await create_user(email="leaving@example.com", membership_tier="silver")
        await credits_service.get_balance(user)
        stripe_api["routes"][("GET", "/v1/customers/cus_7")] = {"id": "cus_7", "email": user.email}
        payload, header = _signed({"type": "customer.subscription.deleted", "data": {"object": {"customer": "cus_7"}}})

        await api.post(WEBHOOK, content=payload, headers={"Stripe-Signature": header})

        async with database.session() as session:
            refreshed = await session.get(User, user.id)
        assert refreshed.membership_tier is None
        balance = await credits_service.get_balance(refreshed)
        assert balance["balance"] == 5

    @pytest.mark.asyncio
    async def test_stripe_failure_is_bad_gateway(self, api, member, stripe_api):
        event = {
            "type": "invoice.paid",
            "data": {"object": {"id": "in_2", "subscription": "sub_missing", "customer_email": member.email}},
        }
        payload, header = _signed(event)

        resp = await api.post(WEBHOOK, content=payload, headers={"Stripe-Signature": header})
        assert resp.status_code == 502


class TestSubscriptionStatus:
    @pytest.mark.asyncio
    async def test_active_subscription_syncs_tier(self, api, member, stripe_api):
        stripe_api["routes"][("GET", "/v1/customers")] = {"data": [{"id": "cus_1"}]}
        stripe_api["routes"][("GET", "/v1/subscriptions")] = {
            "data": [
                {
                    "current_period_end": 1_900_000_000,
                    "items": {"data": [{"price": {"product": "prod_TRGnPsMSMOaLOH"}}]},
                }
            ]
        }

        resp = await api.get("/api/v1/payments/subscription", headers=auth_headers(member))

        data = resp.json()
        assert data["subscribed"] is True
        assert data["tier"] == "platinum"
        assert data["subscription_end"].startswith("2030-")
        async with database.session() as session:
            assert (await session.get(User, member.id)).stripe_customer_id == "cus_1"

    @pytest.mark.asyncio
    async def test_paygo_when_credits_remain(self, api, member, stripe_api):
        stripe_api["routes"][("GET", "/v1/customers")] = {"data": []}
        await credits_service.add_credits(member.id, 3, "purchase")

        data = (await api.get("/api/v1/payments/subscription", headers=auth_headers(member))).json()

        assert data["tier"] == "paygo"
        assert data["is_paygo"] is True
        assert data["credit_balance"] == 3

    @pytest.mark.asyncio
    async def test_unsubscribed(self, api, member, stripe_api):
        stripe_api["routes"][("GET", "/v1/customers")] = {"data": []}

        data = (await api.get("/api/v1/payments/subscription", headers=auth_headers(member))).json()

        assert data["subscribed"] is False
        assert data["tier"] is None


class TestCheckout:
    @pytest.mark.asyncio
    async def test_creates_session_for_package(self, api, member, stripe_api):
        stripe_api["routes"][("POST", "/v1/checkout/sessions")] = {
            "id": "cs_new",
            "url": "https://checkout.stripe.com/c/cs_new",
        }

        resp = await api.post("/api/v1/payments/credits/checkout", json={"credits": 10}, headers=auth_headers(member))

        assert resp.json() == {"url": "https://checkout.stripe.com/c/cs_new", "session_id": "cs_new"}
        form = parse_qs(stripe_api["calls"][-1].content.decode())
        assert form["metadata[user_id]"] == [member.id]
        assert form["line_items[0][price_data][unit_amount]"] == ["95000"]
        assert form["customer_email"] == [member.email]

    @pytest.mark.asyncio
    async def test_unknown_package(self, api, member, stripe_api):
        resp = await api.post("/api/v1/payments/credits/checkout", json={"credits": 7}, headers=auth_headers(member))
        assert resp.status_code == 400

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from aurelia.models import Notification, ServiceRequest
from aurelia.services.credits_service import credits_service
from aurelia.services.database import database
from aurelia.services.webhook_service import webhook_service

from conftest import auth_headers, create_user

REQUESTS = "/api/v1/requests"

YACHT = {
    "category": "yacht_charter",
    "title": "Amalfi coast week",
    "description": "Crewed motor yacht for six guests",
    "budget_min": 50000,
    "budget_max": 90000,
}


@pytest.fixture
def dispatch(monkeypatch):
    mock = AsyncMock(return_value=0)
    monkeypatch.setattr(webhook_service, "dispatch", mock)
    return mock


@pytest.fixture
async def gold(db):
    return await create_user(email="gold@example.com", membership_tier="gold")


async def _balance(user) -> int:
    return (await credits_service.get_balance(user))["balance"]


@pytest.mark.asyncio
async def test_costs_are_public(api):
    resp = await api.get(f"{REQUESTS}/costs")

    assert resp.status_code == 200
    assert resp.json()["private_aviation"] == 5
    assert resp.json()["dining"] == 1


@pytest.mark.asyncio
async def test_create_charges_credits(api, gold, dispatch):
    resp = await api.post(REQUESTS, json=YACHT, headers=auth_headers(gold))

    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "pending"
    assert body["credits_charged"] == 5
    assert "internal_notes" not in body
    assert await _balance(gold) == 10

    (transaction,) = [t for t in await credits_service.list_transactions(gold.id) if t.transaction_type == "usage"]
    assert transaction.service_request_id == body["id"]

    async with database.session() as session:
        notes = (await session.execute(select(Notification))).scalars().all()
    assert [n.title for n in notes] == ["Request Received"]
    assert dispatch.await_args.args[0] == "service_request.created"


@pytest.mark.asyncio
async def test_insufficient_credits_rolls_back(api, member, dispatch):
    resp = await api.post(REQUESTS, json=YACHT, headers=auth_headers(member))

    assert resp.status_code == 402
    async with database.session() as session:
        assert (await session.execute(select(ServiceRequest))).scalars().all() == []
    dispatch.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_category_and_budget(api, gold):
    unknown = await api.post(REQUESTS, json={**YACHT, "category": "submarine"}, headers=auth_headers(gold))
    inverted = await api.post(
        REQUESTS, json={**YACHT, "budget_min": 10, "budget_max": 5}, headers=auth_headers(gold)
    )

    assert unknown.status_code == 400
    assert inverted.status_code == 400
    assert await _balance(gold) == 15


@pytest.mark.asyncio
async def test_members_only_see_their_own(api, gold, dispatch):
    other = await create_user(email="other@example.com", membership_tier="gold")
    created = (await api.post(REQUESTS, json=YACHT, headers=auth_headers(gold))).json()

    mine = await api.get(REQUESTS, headers=auth_headers(gold))
    theirs = await api.get(REQUESTS, headers=auth_headers(other))
    peek = await api.get(f"{REQUESTS}/{created['id']}", headers=auth_headers(other))

    assert [r["id"] for r in mine.json()] == [created["id"]]
    assert theirs.json() == []
    assert peek.status_code == 404


@pytest.mark.asyncio
async def test_lifecycle_to_completion(api, gold, admin, dispatch):
    created = (await api.post(REQUESTS, json=YACHT, headers=auth_headers(gold))).json()
    url = f"{REQUESTS}/{created['id']}/status"

    for step in ("accepted", "in_progress"):
        resp = await api.patch(url, json={"status": step}, headers=auth_headers(admin))
        assert resp.status_code == 200

    resp = await api.patch(
        url,
        json={"status": "completed", "partner_id": "partner-1", "internal_notes": "Paid deposit"},
        headers=auth_headers(admin),
    )
    assert resp.json()["status"] == "completed"
    assert resp.json()["internal_notes"] == "Paid deposit"
    assert dispatch.await_args.args[0] == "service_request.completed"

    # Terminal
    again = await api.patch(url, json={"status": "cancelled"}, headers=auth_headers(admin))
    assert again.status_code == 400

    everything = (await api.get(f"{REQUESTS}/all?status=completed", headers=auth_headers(admin))).json()
    assert [r["partner_id"] for r in everything] == ["partner-1"]


@pytest.mark.asyncio
async def test_invalid_transition(api, gold, admin, dispatch):
    created = (await api.post(REQUESTS, json=YACHT, headers=auth_headers(gold))).json()

    resp = await api.patch(
        f"{REQUESTS}/{created['id']}/status", json={"status": "completed"}, headers=auth_headers(admin)
    )

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Cannot change status from pending to completed"


@pytest.mark.asyncio
async def test_cancel_refunds(api, gold, admin, dispatch):
    created = (await api.post(REQUESTS, json=YACHT, headers=auth_headers(gold))).json()

    resp = await api.patch(
        f"{REQUESTS}/{created['id']}/status", json={"status": "cancelled"}, headers=auth_headers(admin)
    )

    assert resp.status_code == 200
    assert await _balance(gold) == 15
    refunds = [t for t in await credits_service.list_transactions(gold.id) if t.transaction_type == "refund"]
    assert refunds[0].amount == 5


@pytest.mark.asyncio
async def test_cancel_unlimited_member_refunds_nothing(api, admin, dispatch):
    platinum = await create_user(email="platinum@example.com", membership_tier="platinum")
    created = (await api.post(REQUESTS, json=YACHT, headers=auth_headers(platinum))).json()
    assert created["credits_charged"] == 0

    resp = await api.patch(
        f"{REQUESTS}/{created['id']}/status", json={"status": "cancelled"}, headers=auth_headers(admin)
    )

    assert resp.status_code == 200
    assert await _balance(platinum) == 999
    types = [t.transaction_type for t in await credits_service.list_transactions(platinum.id)]
    assert "refund" not in types


@pytest.mark.asyncio
async def test_status_update_is_admin_only(api, gold, dispatch):
    created = (await api.post(REQUESTS, json=YACHT, headers=auth_headers(gold))).json()

    resp = await api.patch(
        f"{REQUESTS}/{created['id']}/status", json={"status": "accepted"}, headers=auth_headers(gold)
    )

    assert resp.status_code == 403

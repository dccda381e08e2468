import pytest

from aurelia.services.notification_service import notification_service

from conftest import auth_headers, create_user

NOTIFICATIONS = "/api/v1/notifications"


@pytest.fixture
async def inbox(member):
    first = await notification_service.notify(member.id, "Request Received", "Your yacht request is in.")
    second = await notification_service.notify(
        member.id, "Credits Added", "10 credits added.", type="credits", action_url="/dashboard?tab=credits"
    )
    return [first, second]


@pytest.mark.asyncio
async def test_list_own_notifications(api, member, inbox):
    resp = await api.get(NOTIFICATIONS, headers=auth_headers(member))

    titles = [n["title"] for n in resp.json()]
    assert set(titles) == {"Request Received", "Credits Added"}
    assert len(titles) == 2


@pytest.mark.asyncio
async def test_mark_one_read(api, member, inbox):
    resp = await api.post(f"{NOTIFICATIONS}/{inbox[0].id}/read", headers=auth_headers(member))

    assert resp.status_code == 200
    unread = (await api.get(f"{NOTIFICATIONS}?unread_only=true", headers=auth_headers(member))).json()
    assert [n["id"] for n in unread] == [inbox[1].id]


@pytest.mark.asyncio
async def test_cannot_touch_someone_elses(api, inbox):
    stranger = await create_user(email="stranger@example.com")

    resp = await api.post(f"{NOTIFICATIONS}/{inbox[0].id}/read", headers=auth_headers(stranger))

    assert resp.status_code == 404
    assert (await api.get(NOTIFICATIONS, headers=auth_headers(stranger))).json() == []


@pytest.mark.asyncio
async def test_mark_all_read(api, member, inbox):
    resp = await api.post(f"{NOTIFICATIONS}/read-all", headers=auth_headers(member))

    assert resp.json() == {"marked": 2}
    again = await api.post(f"{NOTIFICATIONS}/read-all", headers=auth_headers(member))
    assert again.json() == {"marked": 0}


@pytest.mark.asyncio
async def test_requires_login(api):
    assert (await api.get(NOTIFICATIONS)).status_code == 401

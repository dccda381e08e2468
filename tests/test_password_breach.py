import hashlib

import httpx
import pytest

from aurelia.services.password_breach import PasswordBreachChecker, find_suffix_count, sha1_prefix_suffix


def test_prefix_suffix_split():
    digest = hashlib.sha1(b"password").hexdigest().upper()
    prefix, suffix = sha1_prefix_suffix("password")

    assert prefix == digest[:5]
    assert suffix == digest[5:]


def test_find_suffix_count_ignores_padding_and_case():
    body = "0018A45C4D1DEF81644B54AB7F969B88D65:0\r\nabcdef0123:12\r\nBROKEN:xx\r\n"

    assert find_suffix_count(body, "ABCDEF0123") == 12
    assert find_suffix_count(body, "0018A45C4D1DEF81644B54AB7F969B88D65") == 0
    assert find_suffix_count(body, "BROKEN") == 0
    assert find_suffix_count(body, "MISSING") == 0


@pytest.mark.asyncio
async def test_breached_password_found():
    prefix, suffix = sha1_prefix_suffix("hunter2")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["padding"] = request.headers.get("Add-Padding")
        return httpx.Response(200, text=f"00000000000000000000000000000000000:3\n{suffix}:4096\n")

    result = await PasswordBreachChecker(transport=httpx.MockTransport(handler)).check("hunter2")

    assert result.breached
    assert result.count == 4096
    assert result.checked
    # Only the prefix is sent
    assert seen["path"] == f"/range/{prefix}"
    assert suffix not in seen["path"]
    assert seen["padding"] == "true"


@pytest.mark.asyncio
async def test_clean_password():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="FFFFF:1\n"))
    result = await PasswordBreachChecker(transport=transport).check("a-long-unusual-passphrase")

    assert not result.breached
    assert result.count == 0


@pytest.mark.asyncio
async def test_upstream_failure_fails_open():
    transport = httpx.MockTransport(lambda request: httpx.Response(503))
    result = await PasswordBreachChecker(transport=transport).check("whatever")

    assert not result.breached
    assert not result.checked


@pytest.mark.asyncio
async def test_password_check_endpoint(client, monkeypatch):
    from aurelia.services.password_breach import BreachResult, breach_checker

    async def fake_check(password):
        return BreachResult(breached=password == "password1", count=10 if password == "password1" else 0)

    monkeypatch.setattr(breach_checker, "check", fake_check)

    resp = client.post("/api/v1/auth/password-check", json={"password": "password1"})

    assert resp.status_code == 200
    assert resp.json() == {"breached": True, "count": 10, "checked": True}

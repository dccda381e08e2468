from types import SimpleNamespace

import pytest
from sqlalchemy import select

from aurelia.core.config import settings
from aurelia.main import app
from aurelia.models import SMSMessage
from aurelia.services.concierge_service import get_openai_client
from aurelia.services.database import database
from aurelia.services.persona import MESSAGING_SYSTEM_PROMPT
from aurelia.services.sms_service import REPLY_AI_FAILED, REPLY_UNAVAILABLE, compute_signature, twiml_message

from conftest import create_user

SMS = "/api/v1/webhooks/twilio/sms"
PUBLIC_URL = "https://api.aurelia.example/api/v1/webhooks/twilio/sms"
SID = "AC0123456789"
TOKEN = "twilio-auth-token"


class RecordingCompletions:
    def __init__(self, reply: str | None = "Your car will be waiting.", fail: bool = False):
        self.reply = reply
        self.fail = fail
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.fail:
            raise RuntimeError("rate limited")
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.reply))])


@pytest.fixture
def twilio(monkeypatch):
    monkeypatch.setattr(settings, "TWILIO_ACCOUNT_SID", SID)
    monkeypatch.setattr(settings, "TWILIO_AUTH_TOKEN", TOKEN)
    monkeypatch.setattr(settings, "TWILIO_WEBHOOK_URL", PUBLIC_URL)


@pytest.fixture
def llm():
    completions = RecordingCompletions()
    app.dependency_overrides[get_openai_client] = lambda: SimpleNamespace(chat=SimpleNamespace(completions=completions))
    yield completions
    app.dependency_overrides.pop(get_openai_client, None)


def _signed(params: dict[str, str]) -> dict[str, str]:
    return {"X-Twilio-Signature": compute_signature(PUBLIC_URL, params, TOKEN)}


def _params(body: str, sender: str = "+447700900123") -> dict[str, str]:
    return {"AccountSid": SID, "From": sender, "Body": body, "MessageSid": "SM1"}


def test_twiml_escapes_markup():
    xml = twiml_message('Fish & chips <b>"now"</b>')

    assert xml.startswith('<?xml version="1.0" encoding="UTF-8"?>')
    assert "<Message>Fish &amp; chips &lt;b&gt;&quot;now&quot;&lt;/b&gt;</Message>" in xml


def test_signature_ignores_parameter_order():
    forward = {"Body": "Hi", "From": "+12349013030", "To": "+18005551212"}
    backward = dict(reversed(list(forward.items())))

    assert compute_signature(PUBLIC_URL, forward, TOKEN) == compute_signature(PUBLIC_URL, backward, TOKEN)
    assert compute_signature(PUBLIC_URL, forward, TOKEN) != compute_signature(PUBLIC_URL, {**forward, "Body": "Ho"}, TOKEN)


@pytest.mark.asyncio
async def test_not_configured(api):
    resp = await api.post(SMS, data=_params("Hello"))
    assert resp.status_code == 503


@pytest.mark.asyncio
async def test_wrong_account_or_signature(api, twilio):
    wrong_account = {**_params("Hello"), "AccountSid": "ACother"}
    resp = await api.post(SMS, data=wrong_account, headers=_signed(wrong_account))
    assert resp.status_code == 401

    resp = await api.post(SMS, data=_params("Hello"), headers={"X-Twilio-Signature": "forged"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_non_ascii_credentials_rejected(api, twilio):
    odd_account = {**_params("Hello"), "AccountSid": "AC12é"}
    resp = await api.post(SMS, data=odd_account, headers=_signed(odd_account))
    assert resp.status_code == 401

    resp = await api.post(SMS, data=_params("Hello"), headers={"X-Twilio-Signature": "signé".encode()})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_sms_reply_with_history(api, twilio, llm):
    member = await create_user(email="sms@example.com", phone="+447700900123")

    first = _params("Need a car from Nice airport")
    await api.post(SMS, data=first, headers=_signed(first))
    second = _params("Make it a Maybach")
    resp = await api.post(SMS, data=second, headers=_signed(second))

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/xml")
    assert "<Message>Your car will be waiting.</Message>" in resp.text

    prompt = llm.calls[-1]["messages"]
    assert prompt[0] == {"role": "system", "content": MESSAGING_SYSTEM_PROMPT}
    assert [m["role"] for m in prompt[1:]] == ["user", "assistant", "user"]
    assert llm.calls[-1]["max_tokens"] == 320

    async with database.session() as session:
        rows = (await session.execute(select(SMSMessage).order_by(SMSMessage.created_at))).scalars().all()
    assert [r.direction for r in rows] == ["inbound", "outbound", "inbound", "outbound"]
    assert rows[0].user_id == member.id


@pytest.mark.asyncio
async def test_whatsapp_channel(api, twilio, llm):
    params = _params("Bonjour", sender="whatsapp:+33612345678")

    await api.post(SMS, data=params, headers=_signed(params))

    assert llm.calls[0]["max_tokens"] == 1000
    async with database.session() as session:
        inbound = (await session.execute(select(SMSMessage))).scalars().first()
    assert inbound.channel == "whatsapp"
    assert inbound.phone_number == "+33612345678"


@pytest.mark.asyncio
async def test_polite_reply_without_llm(api, twilio):
    params = _params("Hello")
    resp = await api.post(SMS, data=params, headers=_signed(params))

    assert resp.status_code == 200
    assert twiml_message(REPLY_UNAVAILABLE) == resp.text


@pytest.mark.asyncio
async def test_polite_reply_on_llm_error(api, twilio, llm):
    llm.fail = True
    params = _params("Hello")

    resp = await api.post(SMS, data=params, headers=_signed(params))

    assert resp.text == twiml_message(REPLY_AI_FAILED)

"""
Inbound SMS / WhatsApp concierge (Twilio webhook).

Twilio posts form-encoded messages; we store them, ask the concierge persona
for a reply and answer with TwiML. Once the request is authenticated every
failure still produces a polite TwiML reply so the sender is never left
without an answer.
"""

import base64
import hashlib
import hmac
import logging
from xml.sax.saxutils import escape

from fastapi import HTTPException, status
from openai import AsyncOpenAI
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from aurelia.core.config import settings
from aurelia.models import SMSMessage, User
from aurelia.services.database import DatabaseUnavailableError, database
from aurelia.services.persona import MESSAGING_SYSTEM_PROMPT

logger = logging.getLogger("aurelia.sms")

HISTORY_LIMIT = 10
SMS_MAX_TOKENS = 320
WHATSAPP_MAX_TOKENS = 1000

REPLY_UNAVAILABLE = "I apologize, but I'm currently unavailable. Please try again later or call our concierge line."
REPLY_AI_FAILED = "I apologize for the inconvenience. Our team will follow up with you shortly."
REPLY_EMPTY = "Thank you for your message. Our concierge team will be in touch shortly."
REPLY_TECHNICAL = "We're experiencing technical difficulties. Please try again later."


def twiml_message(message: str) -> str:
    body = escape(message, {'"': "&quot;", "'": "&apos;"})
    return f'<?xml version="1.0" encoding="UTF-8"?>\n<Response>\n  <Message>{body}</Message>\n</Response>'


def compute_signature(url: str, params: dict[str, str], auth_token: str) -> str:
    """Twilio request signature: HMAC-SHA1 over the URL plus sorted name/value pairs, base64."""
    data = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode(), data.encode(), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


class SMSService:
    def verify_request(self, params: dict[str, str], signature: str | None, url: str) -> None:
        """
        Raises:
            HTTPException: 503 when Twilio is not configured, 401 when the
                account or signature does not match.
        """
        if not settings.TWILIO_ACCOUNT_SID:
            logger.error("TWILIO_ACCOUNT_SID is not configured")
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="SMS not configured")

        if not hmac.compare_digest(params.get("AccountSid", "").encode(), settings.TWILIO_ACCOUNT_SID.encode()):
            logger.warning("Rejected Twilio webhook with unexpected AccountSid")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

        if settings.TWILIO_AUTH_TOKEN:
            expected = compute_signature(settings.TWILIO_WEBHOOK_URL or url, params, settings.TWILIO_AUTH_TOKEN)
            if not signature or not hmac.compare_digest(expected.encode(), signature.encode()):
                logger.warning("Rejected Twilio webhook with invalid signature")
                raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    async def handle_inbound(self, params: dict[str, str], client: AsyncOpenAI | None) -> str:
        """Store the message, generate a reply and return it as TwiML."""
        body = params.get("Body", "")
        sender = params.get("From", "")
        is_whatsapp = sender.startswith("whatsapp:")
        phone = sender.removeprefix("whatsapp:")
        channel = "whatsapp" if is_whatsapp else "sms"
        logger.info("Incoming %s from %s", channel, phone)

        try:
            history = await self._store_inbound(phone, channel, body, params.get("MessageSid"))
        except (SQLAlchemyError, DatabaseUnavailableError) as e:
            logger.error("Failed to store inbound %s: %s", channel, e)
            return twiml_message(REPLY_TECHNICAL)

        if client is None:
            logger.error("OPENAI_API_KEY not configured; cannot answer %s", channel)
            return twiml_message(REPLY_UNAVAILABLE)

        messages = [{"role": "system", "content": MESSAGING_SYSTEM_PROMPT}]
        for item in history:
            messages.append({"role": "user" if item.direction == "inbound" else "assistant", "content": item.message})
        messages.append({"role": "user", "content": body})

        try:
            response = await client.chat.completions.create(
                model=settings.OPENAI_MODEL,
                messages=messages,
                max_tokens=WHATSAPP_MAX_TOKENS if is_whatsapp else SMS_MAX_TOKENS,
                temperature=0.7,
            )
            reply = response.choices[0].message.content or REPLY_EMPTY
        except Exception as e:
            logger.error("OpenAI API Error for %s reply: %s", channel, e)
            return twiml_message(REPLY_AI_FAILED)

        try:
            async with database.session() as session:
                session.add(
                    SMSMessage(phone_number=phone, channel=channel, direction="outbound", message=reply, status="sent")
                )
                await session.commit()
        except (SQLAlchemyError, DatabaseUnavailableError) as e:
            logger.error("Failed to store outbound %s: %s", channel, e)

        return twiml_message(reply)

    async def _store_inbound(self, phone: str, channel: str, body: str, message_sid: str | None) -> list[SMSMessage]:
        """Persist the inbound message and return the earlier history, oldest first."""
        async with database.session() as session:
            result = await session.execute(
                select(SMSMessage)
                .where(SMSMessage.phone_number == phone)
                .order_by(SMSMessage.created_at.desc())
                .limit(HISTORY_LIMIT - 1)
            )
            history = list(reversed(result.scalars().all()))

            member = await session.execute(select(User.id).where(User.phone == phone))
            session.add(
                SMSMessage(
                    phone_number=phone,
                    user_id=member.scalars().first(),
                    channel=channel,
                    direction="inbound",
                    message=body,
                    twilio_sid=message_sid,
                )
            )
            await session.commit()
        return history


# Global instance
sms_service = SMSService()

"""
Inbound webhooks: Twilio SMS/WhatsApp, n8n automation events and CRM
contact updates.

Stripe has its own receiver under ``/payments/stripe/webhook``.
"""

import hmac
import logging
from typing import Any
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import Response
from openai import AsyncOpenAI

from aurelia.core.config import settings
from aurelia.schemas.webhooks import WebhookEventRequest
from aurelia.services.concierge_service import get_openai_client
from aurelia.services.sms_service import sms_service
from aurelia.services.webhook_service import webhook_service

logger = logging.getLogger("aurelia.webhooks")

router = APIRouter()


async def require_webhook_secret(x_webhook_secret: str | None = Header(None, alias="X-Webhook-Secret")) -> None:
    """
    Dependency for automation callers.

    Raises:
        HTTPException: 503 if no secret is configured, 401 if it does not match.
    """
    if not settings.INBOUND_WEBHOOK_SECRET:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhook secret not configured",
        )
    expected = settings.INBOUND_WEBHOOK_SECRET.encode()
    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret.encode(), expected):
        logger.warning("Rejected inbound webhook with invalid secret")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")


@router.post("/twilio/sms")
async def twilio_sms(
    request: Request,
    client: AsyncOpenAI | None = Depends(get_openai_client),
    x_twilio_signature: str | None = Header(None, alias="X-Twilio-Signature"),
) -> Response:
    """
    Twilio inbound SMS / WhatsApp.

    Twilio posts form-encoded parameters and expects TwiML back.
    """
    body = (await request.body()).decode("utf-8")
    params = dict(parse_qsl(body, keep_blank_values=True))
    sms_service.verify_request(params, x_twilio_signature, str(request.url))
    twiml = await sms_service.handle_inbound(params, client)
    return Response(content=twiml, media_type="text/xml")


@router.post("/n8n", dependencies=[Depends(require_webhook_secret)])
async def n8n_event(request: WebhookEventRequest) -> dict[str, Any]:
    """
    Automation workflow events from n8n.

    **Events:** service_request.created, service_request.updated,
    service_request.completed, partner.notify, partner.assigned,
    client.welcome, client.reminder, calendar.sync, commission.calculate.
    """
    result = await webhook_service.handle_automation_event(request.event, request.data)
    if not result.get("success") and result.get("error", "").startswith("Unknown event"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result["error"])
    return result


@router.post("/inbound", dependencies=[Depends(require_webhook_secret)])
async def inbound_event(request: WebhookEventRequest) -> dict[str, Any]:
    """CRM updates to contact submissions: contact_status_update, assign_contact, add_note."""
    updated = await webhook_service.handle_inbound(request.event, request.data)
    return {"received": True, "updated": updated}

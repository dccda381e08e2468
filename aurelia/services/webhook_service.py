"""
Automation webhooks.

Outbound: ``dispatch`` posts ``{event, data, timestamp}`` to every active
registered endpoint that subscribes to the event, plus the catch-all
``N8N_WEBHOOK_URL``. Delivery failures are logged and never propagate.

Inbound: CRM updates to contact submissions (``handle_inbound``) and
automation workflow events from n8n (``handle_automation_event``).
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import httpx
from fastapi import HTTPException, status
from sqlalchemy import select

from aurelia.core.config import settings
from aurelia.models import (
    CalendarEvent,
    ContactSubmission,
    PartnerCommission,
    PartnerProspect,
    ServiceRequest,
    WebhookEndpoint,
)
from aurelia.services.audit_service import audit_service
from aurelia.services.database import database
from aurelia.services.notification_service import notification_service

logger = logging.getLogger("aurelia.webhooks")

AutomationHandler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


def _parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


class WebhookService:
    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self.transport = transport
        self._automation_handlers: dict[str, AutomationHandler] = {
            "service_request.created": self._on_request_created,
            "service_request.updated": self._on_request_updated,
            "service_request.completed": self._on_request_completed,
            "partner.notify": self._on_partner_notify,
            "partner.assigned": self._on_partner_assigned,
            "client.welcome": self._on_client_welcome,
            "client.reminder": self._on_client_reminder,
            "calendar.sync": self._on_calendar_sync,
            "commission.calculate": self._on_commission_calculate,
        }

    # =========================================================================
    # Outbound dispatch
    # =========================================================================

    async def dispatch(self, event: str, data: dict[str, Any]) -> int:
        """
        Deliver an event to subscribed endpoints.

        Returns:
            Number of endpoints that accepted the delivery (2xx).
        """
        targets: list[tuple[str | None, str, dict[str, str]]] = []
        if database.is_available:
            async with database.session() as session:
                result = await session.execute(select(WebhookEndpoint).where(WebhookEndpoint.is_active.is_(True)))
                for endpoint in result.scalars().all():
                    if endpoint.subscribes_to(event):
                        targets.append((endpoint.id, endpoint.url, dict(endpoint.headers or {})))
        if settings.N8N_WEBHOOK_URL:
            targets.append((None, settings.N8N_WEBHOOK_URL, {}))

        if not targets:
            logger.debug("No webhook targets for %s", event)
            return 0

        payload = {"event": event, "data": data, "timestamp": datetime.now(UTC).isoformat()}
        async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, transport=self.transport) as client:
            results = await asyncio.gather(*(self._deliver(client, url, headers, payload) for _, url, headers in targets))

        delivered_ids = [endpoint_id for (endpoint_id, _, _), ok in zip(targets, results) if ok and endpoint_id]
        if delivered_ids:
            async with database.session() as session:
                for endpoint_id in delivered_ids:
                    endpoint = await session.get(WebhookEndpoint, endpoint_id)
                    if endpoint:
                        endpoint.last_triggered_at = datetime.now(UTC)
                await session.commit()
        return sum(1 for ok in results if ok)

    async def _deliver(
        self, client: httpx.AsyncClient, url: str, headers: dict[str, str], payload: dict[str, Any]
    ) -> bool:
        try:
            response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error("Webhook delivery to %s failed: %s", url, e)
            return False
        if response.is_success:
            return True
        logger.error("Webhook %s returned %s for %s", url, response.status_code, payload["event"])
        return False

    # =========================================================================
    # Endpoint registry
    # =========================================================================

    async def list_endpoints(self) -> list[WebhookEndpoint]:
        async with database.session() as session:
            result = await session.execute(select(WebhookEndpoint).order_by(WebhookEndpoint.created_at.desc()))
            return list(result.scalars().all())

    async def add_endpoint(
        self,
        name: str,
        url: str,
        endpoint_type: str,
        events: list[str] | None = None,
        headers: dict[str, str] | None = None,
        actor_id: str | None = None,
    ) -> WebhookEndpoint:
        endpoint = WebhookEndpoint(
            name=name,
            url=url,
            endpoint_type=endpoint_type,
            events=events if events is not None else ["contact_form"],
            headers=headers or {},
            is_active=True,
        )
        async with database.session() as session:
            session.add(endpoint)
            await session.commit()
            await session.refresh(endpoint)
        logger.info("Webhook endpoint created: %s", name)
        await audit_service.record("webhook_created", "webhook_endpoint", endpoint.id, {"name": name}, actor_id)
        return endpoint

    async def delete_endpoint(self, endpoint_id: str, actor_id: str | None = None) -> None:
        async with database.session() as session:
            endpoint = await session.get(WebhookEndpoint, endpoint_id)
            if endpoint is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Webhook not found")
            await session.delete(endpoint)
            await session.commit()
        logger.info("Webhook endpoint deleted: %s", endpoint_id)
        await audit_service.record("webhook_deleted", "webhook_endpoint", endpoint_id, actor_id=actor_id)

    async def set_active(self, endpoint_id: str, is_active: bool) -> WebhookEndpoint:
        async with database.session() as session:
            endpoint = await session.get(WebhookEndpoint, endpoint_id)
            if endpoint is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Webhook not found")
            endpoint.is_active = is_active
            await session.commit()
            await session.refresh(endpoint)
        logger.info("Webhook %s active status: %s", endpoint_id, is_active)
        return endpoint

    # =========================================================================
    # Contact form
    # =========================================================================

    async def submit_contact(
        self,
        name: str,
        email: str,
        message: str,
        phone: str | None = None,
        source: str | None = None,
        lead_score: int | None = None,
    ) -> ContactSubmission:
        """Store a contact form lead and relay it as a ``contact_form`` event."""
        async with database.session() as session:
            contact = ContactSubmission(
                name=name.strip(),
                email=email,
                phone=phone,
                message=message.strip(),
                source=source,
                lead_score=lead_score,
            )
            session.add(contact)
            await session.commit()
            await session.refresh(contact)

        logger.info("Contact submission %s from %s", contact.id, email)
        await self.dispatch("contact_form", contact.to_dict())
        return contact

    # =========================================================================
    # Inbound CRM events
    # =========================================================================

    async def handle_inbound(self, event: str, data: dict[str, Any]) -> bool:
        """
        Apply a CRM event to a contact submission.

        Returns:
            True if a contact was updated. Unknown events and incomplete
            payloads are acknowledged without changes.
        """
        contact_id = data.get("contact_id")
        if not contact_id:
            logger.info("Inbound webhook %s without contact_id ignored", event)
            return False

        async with database.session() as session:
            contact = await session.get(ContactSubmission, contact_id)
            if contact is None:
                logger.warning("Inbound webhook %s for unknown contact %s", event, contact_id)
                return False

            if event == "contact_status_update" and data.get("status"):
                contact.status = data["status"]
                contact.notes = data.get("notes")
            elif event == "assign_contact" and data.get("assigned_to"):
                contact.assigned_to = data["assigned_to"]
            elif event == "add_note" and data.get("note"):
                entry = f"[{datetime.now(UTC).isoformat()}] {data['note']}"
                contact.notes = f"{contact.notes}\n\n{entry}" if contact.notes else entry
            else:
                logger.info("Unknown or incomplete inbound webhook event: %s", event)
                return False

            await session.commit()
        logger.info("Contact %s updated via %s", contact_id, event)
        return True

    # =========================================================================
    # Automation (n8n) events
    # =========================================================================

    async def handle_automation_event(self, event: str, data: dict[str, Any]) -> dict[str, Any]:
        handler = self._automation_handlers.get(event)
        if handler is None:
            logger.info("Unknown automation event: %s", event)
            return {"success": False, "error": f"Unknown event: {event}"}
        logger.info("Automation event received: %s", event)
        return await handler(data)

    async def _partner(self, partner_id: Any) -> PartnerProspect | None:
        if not partner_id:
            return None
        async with database.session() as session:
            return await session.get(PartnerProspect, str(partner_id))

    async def _on_request_created(self, data: dict[str, Any]) -> dict[str, Any]:
        await notification_service.notify(
            data["client_id"],
            "Request Received",
            f'Your {data.get("category")} request "{data.get("title")}" has been received and is being processed.',
            type="service_request",
            action_url="/dashboard?tab=requests",
        )
        await audit_service.record(
            "service_request_created",
            "service_request",
            data.get("request_id"),
            {"source": "n8n", "category": data.get("category"), "title": data.get("title")},
        )
        return {"success": True, "message": "Service request notification sent"}

    async def _on_request_updated(self, data: dict[str, Any]) -> dict[str, Any]:
        await notification_service.notify(
            data["client_id"],
            "Request Updated",
            f'Your request "{data.get("title")}" status has been updated to: {data.get("new_status")}',
            type="service_update",
            action_url="/dashboard?tab=requests",
        )
        return {"success": True, "message": "Status update notification sent"}

    async def _on_request_completed(self, data: dict[str, Any]) -> dict[str, Any]:
        await notification_service.notify(
            data["client_id"],
            "Service Completed",
            f'Your request "{data.get("title")}" has been successfully completed. '
            "We hope you enjoyed the experience!",
            type="service_complete",
            action_url="/dashboard?tab=requests",
        )
        if data.get("partner_id"):
            await audit_service.record(
                "service_completed_with_partner",
                "service_request",
                data.get("request_id"),
                {"partner_id": data["partner_id"], "triggered_by": "n8n"},
            )
        return {"success": True, "message": "Completion notifications sent"}

    async def _on_partner_notify(self, data: dict[str, Any]) -> dict[str, Any]:
        partner = await self._partner(data.get("partner_id"))
        if partner and partner.user_id:
            await notification_service.notify(
                partner.user_id,
                "New Opportunity",
                data.get("message") or "You have a new service opportunity. Please review.",
                type="partner_notification",
                action_url="/partner-portal",
            )
        return {"success": True, "message": "Partner notified"}

    async def _on_partner_assigned(self, data: dict[str, Any]) -> dict[str, Any]:
        partner = await self._partner(data.get("partner_id"))
        if partner and partner.user_id:
            await notification_service.notify(
                partner.user_id,
                "New Assignment",
                f'You have been assigned to: "{data.get("title")}"',
                type="assignment",
                action_url="/partner-portal",
            )
        company = partner.company_name if partner else "A partner"
        await notification_service.notify(
            data["client_id"],
            "Partner Assigned",
            f"{company} has been assigned to your request.",
            type="partner_assigned",
            action_url="/dashboard?tab=requests",
        )
        return {"success": True, "message": "Assignment notifications sent"}

    async def _on_client_welcome(self, data: dict[str, Any]) -> dict[str, Any]:
        await notification_service.notify(
            data["user_id"],
            "Welcome to Aurelia",
            f"Hello {data.get('name') or 'there'}, welcome to the world of bespoke luxury. Your concierge awaits.",
            type="welcome",
            action_url="/dashboard",
        )
        return {"success": True, "message": "Welcome notification sent"}

    async def _on_client_reminder(self, data: dict[str, Any]) -> dict[str, Any]:
        await notification_service.notify(
            data["user_id"],
            data.get("reminder_type") or "Reminder",
            data.get("message"),
            type="reminder",
            action_url="/dashboard",
        )
        return {"success": True, "message": "Reminder sent"}

    async def _on_calendar_sync(self, data: dict[str, Any]) -> dict[str, Any]:
        start_date = _parse_datetime(data.get("start_date"))
        if not data.get("user_id") or not data.get("event_title") or start_date is None:
            return {"success": False, "error": "user_id, event_title and start_date are required"}
        event = CalendarEvent(
            user_id=data["user_id"],
            title=data["event_title"],
            start_date=start_date,
            end_date=_parse_datetime(data.get("end_date")),
            service_request_id=data.get("service_request_id"),
            event_type="service",
        )
        async with database.session() as session:
            session.add(event)
            await session.commit()
        return {"success": True, "message": "Calendar event created"}

    async def _on_commission_calculate(self, data: dict[str, Any]) -> dict[str, Any]:
        request_id = data.get("service_request_id")
        async with database.session() as session:
            request = await session.get(ServiceRequest, str(request_id)) if request_id else None
            if request is None or not request.partner_id:
                return {"success": False, "error": "No partner assigned"}

            booking_amount = request.budget_max or request.budget_min or settings.DEFAULT_BOOKING_AMOUNT
            rate = settings.PARTNER_COMMISSION_RATE
            amount = booking_amount * rate // 100

            existing = await session.execute(
                select(PartnerCommission).where(PartnerCommission.service_request_id == request.id)
            )
            if existing.scalar_one_or_none() is None:
                session.add(
                    PartnerCommission(
                        partner_id=request.partner_id,
                        client_id=request.client_id,
                        service_request_id=request.id,
                        service_title=request.title,
                        booking_amount=booking_amount,
                        commission_rate=rate,
                        commission_amount=amount,
                    )
                )
                await session.commit()
        return {"success": True, "commission": {"amount": amount, "rate": rate}}


# Global instance
webhook_service = WebhookService()

"""
Service requests.

A member request is charged in credits for its category when it is created.
Staff move it through pending -> accepted -> in_progress -> completed (any
open request can be cancelled, which refunds the charge).
"""

import logging
from datetime import datetime
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import select

from aurelia.core.config import settings
from aurelia.core.security import UserContext
from aurelia.models import REQUEST_STATUSES, REQUEST_TRANSITIONS, ServiceRequest, User
from aurelia.services.audit_service import audit_service
from aurelia.services.credits_service import credits_service
from aurelia.services.database import database
from aurelia.services.email_service import email_service
from aurelia.services.notification_service import notification_service
from aurelia.services.webhook_service import webhook_service

logger = logging.getLogger("aurelia.requests")


class ServiceRequestService:
    @staticmethod
    def credit_cost(category: str) -> int:
        """
        Raises:
            HTTPException: 400 for an unknown category.
        """
        cost = settings.SERVICE_CREDIT_COSTS.get(category)
        if cost is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown service category: {category}")
        return cost

    async def create(
        self,
        user: User,
        category: str,
        title: str,
        description: str,
        preferred_date: datetime | None = None,
        budget_min: int | None = None,
        budget_max: int | None = None,
        requirements: dict[str, Any] | None = None,
    ) -> ServiceRequest:
        """
        Create a request and charge its credits in one transaction.

        Raises:
            HTTPException: 400 for an unknown category or budget range,
                402 if the member lacks credits.
        """
        cost = self.credit_cost(category)
        if budget_min is not None and budget_max is not None and budget_min > budget_max:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="budget_min exceeds budget_max")

        request = ServiceRequest(
            client_id=user.id,
            category=category,
            title=title,
            description=description,
            preferred_date=preferred_date,
            budget_min=budget_min,
            budget_max=budget_max,
            requirements=requirements or {},
            credits_charged=cost,
        )
        async with database.session() as session:
            session.add(request)
            await session.flush()

            charge = await credits_service.use_credits(
                user, cost, f"Service request: {title}", service_request_id=request.id, session=session
            )
            if not charge.success:
                await session.rollback()
                raise HTTPException(
                    status_code=status.HTTP_402_PAYMENT_REQUIRED,
                    detail=f"Insufficient credits: {category} requires {cost}, balance is {charge.balance}",
                )
            if charge.is_unlimited:
                # Nothing left the balance, so a cancellation has nothing to refund
                request.credits_charged = 0

            await notification_service.notify(
                user.id,
                "Request Received",
                f'Your {category} request "{title}" has been received and is being processed.',
                type="service_request",
                action_url="/dashboard?tab=requests",
                session=session,
            )
            await session.commit()

        logger.info("Service request %s created by %s (%s credits)", request.id, user.id, cost)
        await audit_service.record(
            "service_request_created",
            "service_request",
            request.id,
            {"category": category, "title": title, "credits": cost},
            actor_id=user.id,
        )
        await webhook_service.dispatch(
            "service_request.created",
            {"request_id": request.id, "client_id": user.id, "category": category, "title": title},
        )
        return request

    async def list_for_user(self, user_id: str, status_filter: str | None = None) -> list[ServiceRequest]:
        query = (
            select(ServiceRequest)
            .where(ServiceRequest.client_id == user_id)
            .order_by(ServiceRequest.created_at.desc())
        )
        if status_filter:
            query = query.where(ServiceRequest.status == status_filter)
        async with database.session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list_all(self, status_filter: str | None = None, limit: int = 100) -> list[ServiceRequest]:
        query = select(ServiceRequest).order_by(ServiceRequest.created_at.desc()).limit(limit)
        if status_filter:
            query = query.where(ServiceRequest.status == status_filter)
        async with database.session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get(self, caller: UserContext, request_id: str) -> ServiceRequest:
        """
        Raises:
            HTTPException: 404 unless the caller owns the request or is an admin.
        """
        async with database.session() as session:
            request = await session.get(ServiceRequest, request_id)
        if request is None or (request.client_id != caller.user_id and not caller.is_admin):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Service request not found")
        return request

    async def update_status(
        self,
        admin_id: str | None,
        request_id: str,
        new_status: str,
        partner_id: str | None = None,
        internal_notes: str | None = None,
    ) -> ServiceRequest:
        """
        Move a request to a new status.

        Raises:
            HTTPException: 400 for an unknown status or a disallowed
                transition, 404 if the request does not exist.
        """
        if new_status not in REQUEST_STATUSES:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid status: {new_status}")

        async with database.session() as session:
            request = await session.get(ServiceRequest, request_id, with_for_update=True)
            if request is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Service request not found")

            previous = request.status
            if new_status not in REQUEST_TRANSITIONS[previous]:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Cannot change status from {previous} to {new_status}",
                )

            request.status = new_status
            if partner_id is not None:
                request.partner_id = partner_id
            if internal_notes is not None:
                request.internal_notes = internal_notes

            if new_status == "cancelled" and request.credits_charged:
                await credits_service.add_credits(
                    request.client_id,
                    request.credits_charged,
                    "refund",
                    f"Refund for cancelled request: {request.title}",
                    session=session,
                )

            if new_status == "completed":
                title, description = (
                    "Service Completed",
                    f'Your request "{request.title}" has been successfully completed. '
                    "We hope you enjoyed the experience!",
                )
            else:
                title, description = (
                    "Request Updated",
                    f'Your request "{request.title}" status has been updated to: {new_status.replace("_", " ")}',
                )
            await notification_service.notify(
                request.client_id,
                title,
                description,
                type="service_complete" if new_status == "completed" else "service_update",
                action_url="/dashboard?tab=requests",
                session=session,
            )
            client = await session.get(User, request.client_id)
            await session.commit()

        logger.info("Service request %s: %s -> %s", request_id, previous, new_status)
        if client is not None:
            await email_service.send_request_status_email(client.email, request.title, new_status)
        await audit_service.record(
            "service_request_status_changed",
            "service_request",
            request_id,
            {"from": previous, "to": new_status, "partner_id": request.partner_id},
            actor_id=admin_id,
        )
        event = "service_request.completed" if new_status == "completed" else "service_request.updated"
        await webhook_service.dispatch(
            event,
            {
                "request_id": request.id,
                "client_id": request.client_id,
                "partner_id": request.partner_id,
                "title": request.title,
                "new_status": new_status,
            },
        )
        return request


# Global instance
service_request_service = ServiceRequestService()

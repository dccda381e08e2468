"""
Partner onboarding.

Staff invite prospective partners by email; partners apply through the
public form (with or without an invite token); staff approve or reject.
Approved partners are linked to the member account with the same email so
automation events can notify them.
"""

import logging
import secrets
from datetime import UTC, datetime

from fastapi import HTTPException, status
from sqlalchemy import select

from aurelia.models import PartnerProspect, User
from aurelia.services.audit_service import audit_service
from aurelia.services.database import database
from aurelia.services.email_service import email_service
from aurelia.services.notification_service import notification_service

logger = logging.getLogger("aurelia.partners")

REVIEW_STATUSES = ("approved", "rejected")
HIGH_PRIORITY_MATCH_SCORE = 80


class PartnerService:
    async def invite(
        self,
        company_name: str,
        email: str,
        contact_name: str | None = None,
        category: str = "other",
        website: str | None = None,
        description: str | None = None,
        coverage_regions: list[str] | None = None,
        match_score: int | None = None,
        match_reason: str | None = None,
        subject: str | None = None,
        prospect_id: str | None = None,
        actor_id: str | None = None,
    ) -> PartnerProspect:
        """
        Invite a partner, reusing the prospect record when one exists.

        Raises:
            HTTPException: 400 without a company name or email,
                404 for an unknown ``prospect_id``.
        """
        if not company_name or not email:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Company name and email are required"
            )

        invite_token = secrets.token_urlsafe(24)
        async with database.session() as session:
            if prospect_id:
                prospect = await session.get(PartnerProspect, prospect_id)
                if prospect is None:
                    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Prospect not found")
            else:
                result = await session.execute(select(PartnerProspect).where(PartnerProspect.email == email))
                prospect = result.scalars().first()

            if prospect is None:
                prospect = PartnerProspect(
                    company_name=company_name,
                    email=email,
                    contact_name=contact_name,
                    category=category,
                    website=website,
                    description=description,
                    coverage_regions=coverage_regions or [],
                    source="invite",
                    priority="high" if (match_score or 0) >= HIGH_PRIORITY_MATCH_SCORE else "medium",
                    match_score=match_score,
                    notes=match_reason,
                )
                session.add(prospect)

            prospect.status = "invited"
            prospect.invite_token = invite_token
            prospect.last_contacted_at = datetime.now(UTC)
            await session.commit()
            await session.refresh(prospect)

        sent = await email_service.send_partner_invite(
            email,
            company_name,
            invite_token,
            contact_name=contact_name,
            category=category,
            match_reason=match_reason,
            subject=subject,
        )
        if not sent:
            logger.warning("Partner invite email to %s was not delivered", email)
        logger.info("Partner invite sent to %s (%s)", company_name, prospect.id)
        await audit_service.record(
            "partner_invited",
            "partner_prospect",
            prospect.id,
            {"company_name": company_name, "email": email, "email_sent": sent},
            actor_id=actor_id,
        )
        return prospect

    async def apply(
        self,
        company_name: str,
        email: str,
        category: str = "other",
        contact_name: str | None = None,
        phone: str | None = None,
        website: str | None = None,
        description: str | None = None,
        coverage_regions: list[str] | None = None,
        invite_token: str | None = None,
    ) -> PartnerProspect:
        """Record a partner application, attaching it to the invite when the token matches."""
        async with database.session() as session:
            prospect = None
            if invite_token:
                result = await session.execute(
                    select(PartnerProspect).where(PartnerProspect.invite_token == invite_token)
                )
                prospect = result.scalar_one_or_none()

            if prospect is None:
                prospect = PartnerProspect(company_name=company_name, source="application")
                session.add(prospect)

            prospect.company_name = company_name
            prospect.email = email
            prospect.category = category
            prospect.contact_name = contact_name or prospect.contact_name
            prospect.phone = phone or prospect.phone
            prospect.website = website or prospect.website
            prospect.description = description or prospect.description
            if coverage_regions:
                prospect.coverage_regions = coverage_regions
            prospect.status = "applied"
            await session.commit()
            await session.refresh(prospect)

        logger.info("Partner application from %s (%s)", company_name, prospect.id)
        await email_service.send_partner_application_notice(company_name, email, category)
        await audit_service.record(
            "partner_application_received",
            "partner_prospect",
            prospect.id,
            {"company_name": company_name, "invited": prospect.source == "invite"},
        )
        return prospect

    async def list_prospects(self, status_filter: str | None = None, limit: int = 200) -> list[PartnerProspect]:
        query = select(PartnerProspect).order_by(PartnerProspect.created_at.desc()).limit(limit)
        if status_filter:
            query = query.where(PartnerProspect.status == status_filter)
        async with database.session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def review(
        self,
        admin_id: str | None,
        prospect_id: str,
        new_status: str,
        notes: str | None = None,
    ) -> PartnerProspect:
        """
        Approve or reject a prospect.

        Raises:
            HTTPException: 400 for any other status, 404 if missing.
        """
        if new_status not in REVIEW_STATUSES:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid status: {new_status}")

        async with database.session() as session:
            prospect = await session.get(PartnerProspect, prospect_id)
            if prospect is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Prospect not found")

            prospect.status = new_status
            if notes is not None:
                prospect.notes = notes

            if new_status == "approved" and prospect.email and prospect.user_id is None:
                result = await session.execute(select(User).where(User.email == prospect.email))
                account = result.scalar_one_or_none()
                if account is not None:
                    prospect.user_id = account.id

            if new_status == "approved" and prospect.user_id:
                await notification_service.notify(
                    prospect.user_id,
                    "Partner Application Approved",
                    f"{prospect.company_name} is now part of the Aurelia partner network.",
                    type="partner_approved",
                    action_url="/partner-portal",
                    session=session,
                )
            await session.commit()
            await session.refresh(prospect)

        logger.info("Partner %s %s", prospect_id, new_status)
        await audit_service.record(
            f"partner_{new_status}",
            "partner_prospect",
            prospect_id,
            {"company_name": prospect.company_name, "notes": notes},
            actor_id=admin_id,
        )
        return prospect


# Global instance
partner_service = PartnerService()

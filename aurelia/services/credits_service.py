"""
Credits service.

Every balance change goes through here and writes a ``CreditTransaction``
with the resulting balance. Balances never go negative; unlimited members
(allocation of ``settings.UNLIMITED_CREDITS``) are never debited, but their
usage is still recorded.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from aurelia.core.config import settings
from aurelia.models import CreditTransaction, User, UserCredits
from aurelia.services.database import database
from aurelia.services.notification_service import notification_service
from aurelia.services.stripe_client import StripeClient, StripeError, stripe_client

logger = logging.getLogger("aurelia.credits")

CREDIT_TYPES = ("purchase", "bonus", "refund", "allocation")


@dataclass
class CreditResult:
    success: bool
    balance: int
    error: str | None = None
    is_unlimited: bool = False


def effective_tier(user: User) -> str | None:
    """Paid tier, or the trial tier while a trial is running."""
    if user.membership_tier:
        return user.membership_tier
    if user.is_on_trial:
        return settings.TRIAL_TIER
    return None


def credits_label(credits: int) -> str:
    return "unlimited" if credits >= settings.UNLIMITED_CREDITS else str(credits)


class CreditsService:
    # =========================================================================
    # Records
    # =========================================================================

    @staticmethod
    async def _get_record(session: AsyncSession, user_id: str, for_update: bool = False) -> UserCredits | None:
        query = select(UserCredits).where(UserCredits.user_id == user_id)
        if for_update:
            query = query.with_for_update()
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def _get_or_create_record(self, session: AsyncSession, user: User) -> UserCredits | None:
        """Load the member's record, creating it with the first allocation for subscribers."""
        record = await self._get_record(session, user.id, for_update=True)
        if record is not None:
            return record

        monthly = settings.credits_for_tier(effective_tier(user))
        if not monthly:
            return None

        record = UserCredits(
            user_id=user.id,
            balance=monthly,
            monthly_allocation=monthly,
            last_allocation_at=datetime.now(UTC),
        )
        session.add(record)
        session.add(
            CreditTransaction(
                user_id=user.id,
                amount=monthly,
                balance_after=monthly,
                transaction_type="allocation",
                description="Initial monthly credit allocation",
            )
        )
        await session.flush()
        logger.info("Created credits record for %s with %s credits", user.id, monthly)
        return record

    @staticmethod
    def _is_unlimited(user: User, record: UserCredits | None) -> bool:
        if settings.credits_for_tier(effective_tier(user)) >= settings.UNLIMITED_CREDITS:
            return True
        return record is not None and record.monthly_allocation >= settings.UNLIMITED_CREDITS

    # =========================================================================
    # Balance
    # =========================================================================

    async def get_balance(self, user: User) -> dict[str, Any]:
        tier = effective_tier(user)
        async with database.session() as session:
            record = await self._get_or_create_record(session, user)
            await session.commit()
            return {
                "balance": record.balance if record else 0,
                "monthly_allocation": settings.credits_for_tier(tier),
                "is_unlimited": self._is_unlimited(user, record),
                "tier": tier,
                "last_allocation_at": record.to_dict()["last_allocation_at"] if record else None,
            }

    async def use_credits(
        self,
        user: User,
        amount: int,
        description: str,
        service_request_id: str | None = None,
        session: AsyncSession | None = None,
    ) -> CreditResult:
        """
        Debit credits for a service.

        When ``session`` is given the debit joins the caller's transaction
        and is not committed here.
        """
        if amount <= 0:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Amount must be positive")
        if session is not None:
            return await self._debit(session, user, amount, description, service_request_id)
        async with database.session() as own_session:
            result = await self._debit(own_session, user, amount, description, service_request_id)
            if result.success:
                await own_session.commit()
            return result

    async def _debit(
        self,
        session: AsyncSession,
        user: User,
        amount: int,
        description: str,
        service_request_id: str | None,
    ) -> CreditResult:
        record = await self._get_or_create_record(session, user)
        balance = record.balance if record else 0

        if self._is_unlimited(user, record):
            session.add(
                CreditTransaction(
                    user_id=user.id,
                    amount=-amount,
                    balance_after=balance,
                    transaction_type="usage",
                    description=description,
                    service_request_id=service_request_id,
                )
            )
            return CreditResult(success=True, balance=balance, is_unlimited=True)

        if record is None or record.balance < amount:
            logger.info("Insufficient credits for %s: balance %s, needed %s", user.id, balance, amount)
            return CreditResult(success=False, balance=balance, error="Insufficient credits")

        record.balance -= amount
        session.add(
            CreditTransaction(
                user_id=user.id,
                amount=-amount,
                balance_after=record.balance,
                transaction_type="usage",
                description=description,
                service_request_id=service_request_id,
            )
        )
        return CreditResult(success=True, balance=record.balance)

    async def add_credits(
        self,
        user_id: str,
        amount: int,
        transaction_type: str = "bonus",
        description: str | None = None,
        stripe_reference: str | None = None,
        session: AsyncSession | None = None,
    ) -> CreditResult:
        """
        Raises:
            HTTPException: 400 for a non-positive amount or unknown type.
        """
        if amount <= 0:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Amount must be positive")
        if transaction_type not in CREDIT_TYPES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid transaction type: {transaction_type}"
            )
        if session is not None:
            return await self._credit(session, user_id, amount, transaction_type, description, stripe_reference)
        async with database.session() as own_session:
            result = await self._credit(own_session, user_id, amount, transaction_type, description, stripe_reference)
            await own_session.commit()
            return result

    async def _credit(
        self,
        session: AsyncSession,
        user_id: str,
        amount: int,
        transaction_type: str,
        description: str | None,
        stripe_reference: str | None,
        monthly_allocation: int | None = None,
    ) -> CreditResult:
        record = await self._get_record(session, user_id, for_update=True)
        if record is None:
            record = UserCredits(user_id=user_id, balance=0, monthly_allocation=0)
            session.add(record)
        record.balance += amount
        if monthly_allocation is not None:
            record.monthly_allocation = monthly_allocation
            record.last_allocation_at = datetime.now(UTC)
        session.add(
            CreditTransaction(
                user_id=user_id,
                amount=amount,
                balance_after=record.balance,
                transaction_type=transaction_type,
                description=description,
                stripe_reference=stripe_reference,
            )
        )
        return CreditResult(success=True, balance=record.balance)

    async def allocate_monthly(
        self,
        user_id: str,
        credits: int,
        description: str = "Monthly membership credit allocation",
        stripe_reference: str | None = None,
    ) -> CreditResult:
        """Add a paid period's allocation on top of the current balance."""
        async with database.session() as session:
            result = await self._credit(
                session, user_id, credits, "allocation", description, stripe_reference, monthly_allocation=credits
            )
            await session.commit()
        logger.info("Allocated %s credits to %s", credits, user_id)
        return result

    async def end_allocation(self, user_id: str) -> bool:
        """Stop monthly allocations after a subscription ends; the balance is kept."""
        async with database.session() as session:
            record = await self._get_record(session, user_id, for_update=True)
            if record is None:
                return False
            record.monthly_allocation = 0
            await session.commit()
        return True

    async def list_transactions(self, user_id: str, limit: int = 20) -> list[CreditTransaction]:
        async with database.session() as session:
            result = await session.execute(
                select(CreditTransaction)
                .where(CreditTransaction.user_id == user_id)
                .order_by(CreditTransaction.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    # =========================================================================
    # Monthly reset job
    # =========================================================================

    async def reset_monthly(self, stripe: StripeClient | None = None) -> dict[str, Any]:
        """
        Reset every subscriber's balance to their tier allocation.

        Members without a Stripe customer, an active subscription or a known
        product are skipped. One member failing does not stop the batch.
        """
        stripe = stripe or stripe_client
        async with database.session() as session:
            result = await session.execute(select(UserCredits.user_id))
            user_ids = list(result.scalars().all())

        if not user_ids:
            logger.info("Monthly reset: no members with credits")
            return {"success": True, "processed": 0, "skipped": 0, "errors": 0, "message": "No users to process"}

        processed = skipped = errors = 0
        for user_id in user_ids:
            try:
                if await self._reset_member(user_id, stripe):
                    processed += 1
                else:
                    skipped += 1
            except (StripeError, SQLAlchemyError) as e:
                logger.error("Monthly reset failed for %s: %s", user_id, e)
                errors += 1

        logger.info("Monthly reset completed: processed=%s skipped=%s errors=%s", processed, skipped, errors)
        return {
            "success": True,
            "processed": processed,
            "skipped": skipped,
            "errors": errors,
            "message": f"Reset credits for {processed} users",
        }

    async def _reset_member(self, user_id: str, stripe: StripeClient) -> bool:
        async with database.session() as session:
            user = await session.get(User, user_id)
        if user is None or not user.email:
            logger.info("Monthly reset: no account email for %s", user_id)
            return False

        customer_id = user.stripe_customer_id
        if not customer_id:
            customer = await stripe.find_customer(user.email)
            if customer is None:
                logger.info("Monthly reset: no Stripe customer for %s", user_id)
                return False
            customer_id = customer["id"]

        subscription = await stripe.active_subscription(customer_id)
        if subscription is None:
            logger.info("Monthly reset: no active subscription for %s", user_id)
            return False

        product_id = stripe.subscription_product(subscription)
        monthly = settings.credits_for_tier(settings.STRIPE_TIER_PRODUCTS.get(product_id or ""))
        if not monthly:
            logger.info("Monthly reset: unknown product %s for %s", product_id, user_id)
            return False

        async with database.session() as session:
            record = await self._get_record(session, user_id, for_update=True)
            if record is None:
                return False
            previous = record.balance
            record.balance = monthly
            record.monthly_allocation = monthly
            record.last_allocation_at = datetime.now(UTC)
            session.add(
                CreditTransaction(
                    user_id=user_id,
                    amount=monthly,
                    balance_after=monthly,
                    transaction_type="allocation",
                    description="Monthly credit allocation reset",
                )
            )
            await notification_service.notify(
                user_id,
                "Monthly Credits Refreshed",
                f"Your monthly allocation of {credits_label(monthly)} credits has been applied.",
                type="credit_allocation",
                action_url="/dashboard",
                session=session,
            )
            await session.commit()
        logger.info("Reset credits for %s: %s -> %s", user_id, previous, monthly)
        return True


# Global instance
credits_service = CreditsService()

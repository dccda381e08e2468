"""
Payments service.

Stripe webhook fulfilment (credit purchases, subscription allocations,
cancellations), the subscription status check and Checkout for credit
packages.
"""

import json
import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import select

from aurelia.core.config import settings
from aurelia.models import CreditTransaction, User
from aurelia.services.credits_service import credits_label, credits_service
from aurelia.services.database import database
from aurelia.services.notification_service import notification_service
from aurelia.services.stripe_client import (
    SignatureVerificationError,
    StripeClient,
    StripeError,
    construct_event,
    stripe_client,
)

logger = logging.getLogger("aurelia.payments")


def _unsubscribed() -> dict[str, Any]:
    return {"subscribed": False, "tier": None, "subscription_end": None, "is_trial": False, "is_paygo": False}


def _period_end(subscription: dict[str, Any]) -> str | None:
    timestamp = subscription.get("current_period_end")
    if timestamp is None:
        items = (subscription.get("items") or {}).get("data") or []
        timestamp = items[0].get("current_period_end") if items else None
    if timestamp is None:
        return None
    return datetime.fromtimestamp(int(timestamp), UTC).isoformat()


class PaymentsService:
    def __init__(self, stripe: StripeClient | None = None):
        self.stripe = stripe or stripe_client

    def _require_stripe(self) -> None:
        if not self.stripe.is_configured:
            logger.error("STRIPE_SECRET_KEY is not configured")
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Payments not configured")

    # =========================================================================
    # Webhook
    # =========================================================================

    async def handle_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """
        Verify and process one Stripe event.

        Raises:
            HTTPException: 400 on a bad signature or invalid metadata,
                502 when a follow-up Stripe call fails, 503 when Stripe is
                not configured.
        """
        self._require_stripe()

        if settings.STRIPE_WEBHOOK_SECRET:
            try:
                event = construct_event(payload, signature, settings.STRIPE_WEBHOOK_SECRET)
            except SignatureVerificationError as e:
                logger.warning("Stripe webhook signature verification failed: %s", e)
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Webhook Error: {e}")
        else:
            try:
                event = json.loads(payload)
            except ValueError:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")
            logger.warning("Stripe webhook parsed without signature verification")

        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}
        logger.info("Stripe event received: %s", event_type)

        try:
            if event_type == "checkout.session.completed":
                await self._on_checkout_completed(obj)
            elif event_type == "invoice.paid":
                await self._on_invoice_paid(obj)
            elif event_type == "customer.subscription.deleted":
                await self._on_subscription_deleted(obj)
            elif event_type == "payment_intent.payment_failed":
                error = (obj.get("last_payment_error") or {}).get("message")
                logger.warning("Payment failed: %s (%s)", obj.get("id"), error)
        except StripeError as e:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Stripe error: {e}")

        return {"received": True}

    @staticmethod
    async def _already_fulfilled(session, stripe_reference: str | None) -> bool:
        if not stripe_reference:
            return False
        existing = await session.execute(
            select(CreditTransaction.id).where(CreditTransaction.stripe_reference == stripe_reference)
        )
        return existing.first() is not None

    async def _on_checkout_completed(self, checkout: dict[str, Any]) -> None:
        metadata = checkout.get("metadata") or {}
        if metadata.get("type") != "credit_purchase":
            return

        user_id = metadata.get("user_id")
        try:
            credits = int(metadata.get("credits"))
        except (TypeError, ValueError):
            credits = 0
        if not user_id or credits <= 0:
            logger.error("Invalid credit purchase metadata: %s", metadata)
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid metadata")

        session_id = checkout.get("id")
        package_name = metadata.get("package_name") or f"{credits} credits"
        async with database.session() as session:
            if await self._already_fulfilled(session, session_id):
                logger.info("Checkout %s already fulfilled", session_id)
                return

            result = await credits_service.add_credits(
                user_id,
                credits,
                "purchase",
                f"Purchased {package_name} - {credits} credits",
                stripe_reference=session_id,
                session=session,
            )
            await notification_service.notify(
                user_id,
                "Credits Added",
                f"{credits} credits have been added to your account from your {package_name} purchase.",
                type="credit_purchase",
                action_url="/dashboard",
                session=session,
            )
            await session.commit()
        logger.info("Credit purchase fulfilled for %s: +%s (balance %s)", user_id, credits, result.balance)

    async def _on_invoice_paid(self, invoice: dict[str, Any]) -> None:
        subscription_id = invoice.get("subscription")
        email = invoice.get("customer_email")
        if not subscription_id or not email:
            return

        subscription = await self.stripe.retrieve_subscription(subscription_id)
        product_id = self.stripe.subscription_product(subscription)
        tier = settings.STRIPE_TIER_PRODUCTS.get(product_id or "")
        credits = settings.credits_for_tier(tier)
        if not credits:
            logger.info("Invoice %s for unknown product %s", invoice.get("id"), product_id)
            return

        async with database.session() as session:
            if await self._already_fulfilled(session, invoice.get("id")):
                logger.info("Invoice %s already allocated", invoice.get("id"))
                return
            result = await session.execute(select(User).where(User.email == email))
            user = result.scalar_one_or_none()
            if user is None:
                logger.warning("Invoice %s paid by unknown member %s", invoice.get("id"), email)
                return
            user.membership_tier = tier
            user.stripe_customer_id = invoice.get("customer") or user.stripe_customer_id
            user_id = user.id
            await session.commit()

        tier_name = tier.title() if tier else "Member"
        await credits_service.allocate_monthly(
            user_id,
            credits,
            f"Monthly {tier_name} membership credit allocation",
            stripe_reference=invoice.get("id"),
        )
        await notification_service.notify(
            user_id,
            "Monthly Credits Added",
            f"Your {credits_label(credits)} monthly {tier_name} credits have been added to your account.",
            type="credit_allocation",
            action_url="/dashboard",
        )

    async def _on_subscription_deleted(self, subscription: dict[str, Any]) -> None:
        customer_id = subscription.get("customer")
        if not customer_id:
            return
        customer = await self.stripe.retrieve_customer(customer_id)
        email = customer.get("email")
        if customer.get("deleted") or not email:
            return

        async with database.session() as session:
            result = await session.execute(select(User).where(User.email == email))
            user = result.scalar_one_or_none()
            if user is None:
                return
            user.membership_tier = None
            user_id = user.id
            await session.commit()

        await credits_service.end_allocation(user_id)
        await notification_service.notify(
            user_id,
            "Subscription Ended",
            "Your subscription has ended. You can still use your remaining credits or subscribe again anytime.",
            type="subscription_cancelled",
            action_url="/membership",
        )
        logger.info("Subscription cleanup complete for %s", user_id)

    # =========================================================================
    # Subscription status
    # =========================================================================

    async def check_subscription(self, user: User) -> dict[str, Any]:
        """
        Resolve the member's plan: active Stripe subscription, then trial,
        then pay-as-you-go credits.
        """
        self._require_stripe()
        try:
            customer_id = user.stripe_customer_id
            if not customer_id:
                customer = await self.stripe.find_customer(user.email)
                customer_id = customer["id"] if customer else None
            subscription = await self.stripe.active_subscription(customer_id) if customer_id else None
        except StripeError as e:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Stripe error: {e}")

        if subscription is not None:
            product_id = self.stripe.subscription_product(subscription)
            tier = settings.STRIPE_TIER_PRODUCTS.get(product_id or "", "member")
            await self._sync_member(user, tier, customer_id)
            return {
                "subscribed": True,
                "tier": tier,
                "product_id": product_id,
                "subscription_end": _period_end(subscription),
                "is_trial": False,
                "is_paygo": False,
            }

        if customer_id is None and user.is_on_trial:
            trial_ends_at = user.to_dict()["trial_ends_at"]
            return {
                "subscribed": True,
                "tier": settings.TRIAL_TIER,
                "subscription_end": trial_ends_at,
                "is_trial": True,
                "trial_ends_at": trial_ends_at,
                "is_paygo": False,
            }

        balance = await self._credit_balance(user.id)
        if balance > 0:
            return {
                "subscribed": True,
                "tier": "paygo",
                "subscription_end": None,
                "is_trial": False,
                "is_paygo": True,
                "credit_balance": balance,
            }
        return _unsubscribed()

    async def _credit_balance(self, user_id: str) -> int:
        async with database.session() as session:
            record = await credits_service._get_record(session, user_id)
            return record.balance if record else 0

    async def _sync_member(self, user: User, tier: str, customer_id: str | None) -> None:
        if user.membership_tier == tier and user.stripe_customer_id == customer_id:
            return
        async with database.session() as session:
            member = await session.get(User, user.id)
            if member is None:
                return
            member.membership_tier = tier
            member.stripe_customer_id = customer_id
            await session.commit()
        user.membership_tier = tier
        user.stripe_customer_id = customer_id

    # =========================================================================
    # Checkout
    # =========================================================================

    async def create_credit_checkout(self, user: User, credits: int) -> dict[str, Any]:
        """
        Start a Checkout session for one of the configured credit packages.

        Raises:
            HTTPException: 400 for an unknown package, 502 on Stripe failure.
        """
        self._require_stripe()
        price = settings.CREDIT_PACKAGES.get(credits)
        if price is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown credit package")

        package_name = f"{credits} Credit Package"
        params: dict[str, Any] = {
            "mode": "payment",
            "line_items[0][price_data][currency]": settings.CREDIT_CURRENCY,
            "line_items[0][price_data][product_data][name]": package_name,
            "line_items[0][price_data][unit_amount]": price,
            "line_items[0][quantity]": 1,
            "success_url": f"{settings.SITE_URL}/dashboard?credits=success",
            "cancel_url": f"{settings.SITE_URL}/dashboard?credits=cancelled",
            "metadata[type]": "credit_purchase",
            "metadata[user_id]": user.id,
            "metadata[credits]": credits,
            "metadata[package_name]": package_name,
        }
        if user.stripe_customer_id:
            params["customer"] = user.stripe_customer_id
        else:
            params["customer_email"] = user.email

        try:
            checkout = await self.stripe.create_checkout_session(params)
        except StripeError as e:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Stripe error: {e}")
        logger.info("Checkout %s created for %s (%s credits)", checkout.get("id"), user.id, credits)
        return {"url": checkout.get("url"), "session_id": checkout.get("id")}


# Global instance
payments_service = PaymentsService()

"""
Payments: subscription status, credit package checkout and the Stripe webhook.
"""

from fastapi import APIRouter, Depends, Header, Request

from aurelia.api.deps import get_current_member
from aurelia.models import User
from aurelia.schemas.credits import CheckoutResponse, CreditCheckoutRequest, SubscriptionStatus
from aurelia.services.payments_service import payments_service

router = APIRouter()


@router.get("/subscription", response_model=SubscriptionStatus)
async def check_subscription(user: User = Depends(get_current_member)) -> SubscriptionStatus:
    """
    Resolve the member's plan.

    An active Stripe subscription wins; otherwise a running trial; otherwise
    pay-as-you-go when credits remain.
    """
    return SubscriptionStatus(**await payments_service.check_subscription(user))


@router.post("/credits/checkout", response_model=CheckoutResponse)
async def create_credit_checkout(
    request: CreditCheckoutRequest,
    user: User = Depends(get_current_member),
) -> CheckoutResponse:
    """Start a Stripe Checkout session for a credit package."""
    return CheckoutResponse(**await payments_service.create_credit_checkout(user, request.credits))


@router.post("/stripe/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
) -> dict:
    """
    Stripe event receiver.

    The raw body is verified against ``Stripe-Signature`` when
    STRIPE_WEBHOOK_SECRET is configured.
    """
    payload = await request.body()
    return await payments_service.handle_webhook(payload, stripe_signature)

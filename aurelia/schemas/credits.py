"""
Pydantic schemas for credits, subscriptions and checkout.
"""

from typing import Literal

from pydantic import BaseModel, Field


class CreditBalanceResponse(BaseModel):
    balance: int
    monthly_allocation: int
    is_unlimited: bool
    tier: str | None = None
    last_allocation_at: str | None = None


class CreditCheckoutRequest(BaseModel):
    credits: int = Field(..., gt=0, description="Package size; must be one of the configured credit packages")


class CheckoutResponse(BaseModel):
    url: str
    session_id: str


class AddCreditsRequest(BaseModel):
    """Manual adjustment by staff."""

    user_id: str
    amount: int = Field(..., gt=0)
    transaction_type: Literal["purchase", "bonus", "refund", "allocation"] = "bonus"
    description: str | None = Field(None, max_length=500)


class SubscriptionStatus(BaseModel):
    """Membership state: a Stripe subscription, a trial, pay-as-you-go credits or nothing."""

    subscribed: bool
    tier: str | None = None
    product_id: str | None = None
    subscription_end: str | None = None
    is_trial: bool = False
    trial_ends_at: str | None = None
    is_paygo: bool = False
    credit_balance: int | None = None

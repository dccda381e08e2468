"""
SQLAlchemy model for member accounts.

Supports email + password (with email verification) and Google sign-in.
Membership tier and trial window live on the account so subscription checks
can answer without calling Stripe when the member is on a trial.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from aurelia.models.base import Base, as_utc, created_at_column, isoformat, updated_at_column, utcnow, uuid_pk


class User(Base):
    """
    Member account.

    Attributes:
        id: UUID primary key
        email: Unique email address (indexed)
        email_verified: Whether email has been verified
        password_hash: bcrypt hash (None for Google-only members)
        google_id: Google subject ID
        display_name: Member's display name
        phone: E.164 phone number, used to match inbound SMS
        membership_tier: silver, gold, platinum or None
        stripe_customer_id: Stripe customer, once one exists
        trial_ends_at: End of the complimentary trial, if any
        is_active: Whether account can log in
        is_admin: Whether member has admin privileges
    """

    __tablename__ = "users"

    id: Mapped[str] = uuid_pk()
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    password_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    google_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True, index=True)

    # Profile
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)

    # Membership
    membership_tier: Mapped[str | None] = mapped_column(String(32), nullable=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    trial_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = created_at_column()
    updated_at: Mapped[datetime] = updated_at_column()
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    @property
    def is_on_trial(self) -> bool:
        trial_ends_at = as_utc(self.trial_ends_at)
        return trial_ends_at is not None and trial_ends_at > utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Convert user to dictionary (excludes sensitive fields)."""
        return {
            "id": self.id,
            "email": self.email,
            "email_verified": self.email_verified,
            "google_linked": self.google_id is not None,
            "display_name": self.display_name,
            "phone": self.phone,
            "membership_tier": self.membership_tier,
            "trial_ends_at": isoformat(self.trial_ends_at),
            "created_at": isoformat(self.created_at),
            "last_login_at": isoformat(self.last_login_at),
            "is_active": self.is_active,
            "is_admin": self.is_admin,
        }

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, tier={self.membership_tier})>"

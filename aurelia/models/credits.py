"""Credit balances and the append-only credit ledger."""

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from aurelia.models.base import Base, created_at_column, isoformat, updated_at_column, uuid_pk


class UserCredits(Base):
    """
    One balance row per member.

    A ``monthly_allocation`` equal to ``settings.UNLIMITED_CREDITS`` marks an
    unlimited membership: usage is recorded but never deducted.
    """

    __tablename__ = "user_credits"

    id: Mapped[str] = uuid_pk()
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True
    )
    balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    monthly_allocation: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_allocation_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = created_at_column()
    updated_at: Mapped[datetime] = updated_at_column()

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "balance": self.balance,
            "monthly_allocation": self.monthly_allocation,
            "last_allocation_at": isoformat(self.last_allocation_at),
            "updated_at": isoformat(self.updated_at),
        }


class CreditTransaction(Base):
    """
    Ledger entry. ``amount`` is signed (negative for usage) and
    ``balance_after`` is the balance once the entry was applied.
    """

    __tablename__ = "credit_transactions"

    id: Mapped[str] = uuid_pk()
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(32), nullable=False)  # purchase, usage, allocation, ...
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    service_request_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    stripe_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = created_at_column()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "amount": self.amount,
            "balance_after": self.balance_after,
            "transaction_type": self.transaction_type,
            "description": self.description,
            "service_request_id": self.service_request_id,
            "created_at": isoformat(self.created_at),
        }

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from aurelia.models.base import JSONType, Base, created_at_column, isoformat, updated_at_column, uuid_pk


class PartnerProspect(Base):
    """
    A prospective service partner, either invited by staff or self-applied.

    Status flow: prospect -> invited -> applied -> approved / rejected.
    """

    __tablename__ = "partner_prospects"

    id: Mapped[str] = uuid_pk()
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)  # set once approved
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    website: Mapped[str | None] = mapped_column(String(512), nullable=True)
    category: Mapped[str] = mapped_column(String(64), default="other", nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    coverage_regions: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="prospect", nullable=False, index=True)
    priority: Mapped[str] = mapped_column(String(16), default="medium", nullable=False)
    source: Mapped[str] = mapped_column(String(32), default="invite", nullable=False)
    match_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    invite_token: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_contacted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = created_at_column()
    updated_at: Mapped[datetime] = updated_at_column()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "company_name": self.company_name,
            "contact_name": self.contact_name,
            "email": self.email,
            "phone": self.phone,
            "website": self.website,
            "category": self.category,
            "description": self.description,
            "coverage_regions": self.coverage_regions,
            "status": self.status,
            "priority": self.priority,
            "source": self.source,
            "match_score": self.match_score,
            "notes": self.notes,
            "last_contacted_at": isoformat(self.last_contacted_at),
            "created_at": isoformat(self.created_at),
        }


class PartnerCommission(Base):
    """Commission owed to a partner for a completed request (one per request)."""

    __tablename__ = "partner_commissions"

    id: Mapped[str] = uuid_pk()
    partner_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    client_id: Mapped[str] = mapped_column(String(36), nullable=False)
    service_request_id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    service_title: Mapped[str] = mapped_column(String(255), nullable=False)
    booking_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    commission_rate: Mapped[int] = mapped_column(Integer, nullable=False)  # percent
    commission_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="pending", nullable=False)
    created_at: Mapped[datetime] = created_at_column()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "partner_id": self.partner_id,
            "service_request_id": self.service_request_id,
            "booking_amount": self.booking_amount,
            "commission_rate": self.commission_rate,
            "commission_amount": self.commission_amount,
            "status": self.status,
            "created_at": isoformat(self.created_at),
        }

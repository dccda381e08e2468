from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from aurelia.models.base import JSONType, Base, created_at_column, isoformat, updated_at_column, uuid_pk

REQUEST_STATUSES = ("pending", "accepted", "in_progress", "completed", "cancelled")

# Allowed status moves; completed and cancelled are terminal
REQUEST_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "pending": ("accepted", "cancelled"),
    "accepted": ("in_progress", "cancelled"),
    "in_progress": ("completed", "cancelled"),
    "completed": (),
    "cancelled": (),
}


class ServiceRequest(Base):
    __tablename__ = "service_requests"

    id: Mapped[str] = uuid_pk()
    client_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    partner_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="pending", nullable=False, index=True)
    preferred_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    budget_min: Mapped[int | None] = mapped_column(Integer, nullable=True)
    budget_max: Mapped[int | None] = mapped_column(Integer, nullable=True)
    requirements: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    credits_charged: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    internal_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = created_at_column()
    updated_at: Mapped[datetime] = updated_at_column()

    def to_dict(self, include_internal: bool = False) -> dict[str, Any]:
        data = {
            "id": self.id,
            "client_id": self.client_id,
            "partner_id": self.partner_id,
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "preferred_date": isoformat(self.preferred_date),
            "budget_min": self.budget_min,
            "budget_max": self.budget_max,
            "requirements": self.requirements,
            "credits_charged": self.credits_charged,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
        if include_internal:
            data["internal_notes"] = self.internal_notes
        return data


class CalendarEvent(Base):
    """Member calendar entry, usually synced from a confirmed service request."""

    __tablename__ = "calendar_events"

    id: Mapped[str] = uuid_pk()
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    service_request_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    event_type: Mapped[str] = mapped_column(String(32), default="service", nullable=False)
    created_at: Mapped[datetime] = created_at_column()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "start_date": isoformat(self.start_date),
            "end_date": isoformat(self.end_date),
            "service_request_id": self.service_request_id,
            "event_type": self.event_type,
        }

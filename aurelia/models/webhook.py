"""Outbound automation endpoints and the contact leads that inbound webhooks update."""

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from aurelia.models.base import JSONType, Base, created_at_column, isoformat, updated_at_column, uuid_pk


class WebhookEndpoint(Base):
    """
    Registered outbound endpoint.

    ``events`` lists the event names the endpoint subscribes to; an empty
    list subscribes to everything.
    """

    __tablename__ = "webhook_endpoints"

    id: Mapped[str] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    endpoint_type: Mapped[str] = mapped_column(String(32), default="n8n", nullable=False)
    events: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    headers: Mapped[dict[str, str]] = mapped_column(JSONType, default=dict, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_triggered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = created_at_column()
    updated_at: Mapped[datetime] = updated_at_column()

    def subscribes_to(self, event: str) -> bool:
        return self.is_active and (not self.events or event in self.events)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "endpoint_type": self.endpoint_type,
            "events": self.events,
            "is_active": self.is_active,
            "last_triggered_at": isoformat(self.last_triggered_at),
            "created_at": isoformat(self.created_at),
        }


class ContactSubmission(Base):
    __tablename__ = "contact_submissions"

    id: Mapped[str] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(32), default="new", nullable=False)
    assigned_to: Mapped[str | None] = mapped_column(String(36), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    lead_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = created_at_column()
    updated_at: Mapped[datetime] = updated_at_column()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "message": self.message,
            "source": self.source,
            "status": self.status,
            "assigned_to": self.assigned_to,
            "notes": self.notes,
            "processed_at": isoformat(self.processed_at),
            "created_at": isoformat(self.created_at),
        }

"""Visitor lead scores and the VIP alerts raised from them."""

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from aurelia.models.base import JSONType, Base, created_at_column, isoformat, updated_at_column, utcnow, uuid_pk


class LeadScore(Base):
    """
    Running score for one visitor session.

    ``signals`` holds the merged behavioural signals; ``score`` and ``tier``
    are recomputed from them on every update.
    """

    __tablename__ = "lead_scores"

    id: Mapped[str] = uuid_pk()
    session_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tier: Mapped[str] = mapped_column(String(16), default="cold", nullable=False)
    signals: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    is_vip: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    vip_detected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    admin_notified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    concierge_engaged: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_activity_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_at: Mapped[datetime] = created_at_column()
    updated_at: Mapped[datetime] = updated_at_column()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "email": self.email,
            "score": self.score,
            "tier": self.tier,
            "signals": self.signals,
            "is_vip": self.is_vip,
            "vip_detected_at": isoformat(self.vip_detected_at),
            "admin_notified": self.admin_notified,
            "concierge_engaged": self.concierge_engaged,
            "last_activity_at": isoformat(self.last_activity_at),
        }


class VIPAlert(Base):
    """Admin-facing alert; status moves new -> contacted -> converted (or dismissed)."""

    __tablename__ = "vip_alerts"

    id: Mapped[str] = uuid_pk()
    lead_score_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("lead_scores.id", ondelete="SET NULL"), nullable=True
    )
    session_id: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    tier: Mapped[str] = mapped_column(String(16), nullable=False)
    alert_type: Mapped[str] = mapped_column(String(32), nullable=False)
    signals: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="new", nullable=False, index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = created_at_column()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "lead_score_id": self.lead_score_id,
            "session_id": self.session_id,
            "email": self.email,
            "score": self.score,
            "tier": self.tier,
            "alert_type": self.alert_type,
            "signals": self.signals,
            "status": self.status,
            "notes": self.notes,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": isoformat(self.reviewed_at),
            "created_at": isoformat(self.created_at),
        }

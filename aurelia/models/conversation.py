"""
SQLAlchemy models for concierge messaging.

A member has one concierge conversation; messages in it come from the member,
from the concierge (human staff or the AI companion) or from the system.
SMS and WhatsApp traffic is stored separately because it is keyed by phone
number and may arrive from people who are not members.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from aurelia.models.base import JSONType, Base, created_at_column, isoformat, utcnow, uuid_pk


class Conversation(Base):
    __tablename__ = "conversations"

    id: Mapped[str] = uuid_pk()
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    started_at: Mapped[datetime] = created_at_column()
    last_message_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata",  # Column name in DB
        JSONType,
        default=dict,
        nullable=False,
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "started_at": isoformat(self.started_at),
            "last_message_at": isoformat(self.last_message_at),
            "metadata": self.metadata_,
        }

    def __repr__(self) -> str:
        return f"<Conversation(id={self.id}, user={self.user_id})>"


class ConciergeMessage(Base):
    """
    Attributes:
        sender_role: member, concierge or system
        message_type: text, request or update
    """

    __tablename__ = "concierge_messages"

    id: Mapped[str] = uuid_pk()
    conversation_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sender_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    sender_role: Mapped[str] = mapped_column(String(16), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(String(16), default="text", nullable=False)
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, default=dict, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = created_at_column()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "sender_id": self.sender_id,
            "sender_role": self.sender_role,
            "content": self.content,
            "message_type": self.message_type,
            "metadata": self.metadata_,
            "is_read": self.is_read,
            "read_at": isoformat(self.read_at),
            "created_at": isoformat(self.created_at),
        }


class SMSMessage(Base):
    """One inbound or outbound SMS/WhatsApp message."""

    __tablename__ = "sms_conversations"

    id: Mapped[str] = uuid_pk()
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    direction: Mapped[str] = mapped_column(String(16), nullable=False)  # inbound, outbound
    channel: Mapped[str] = mapped_column(String(16), default="sms", nullable=False)  # sms, whatsapp
    message: Mapped[str] = mapped_column(Text, nullable=False)
    twilio_sid: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="received", nullable=False)
    created_at: Mapped[datetime] = created_at_column()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "phone_number": self.phone_number,
            "direction": self.direction,
            "channel": self.channel,
            "message": self.message,
            "status": self.status,
            "created_at": isoformat(self.created_at),
        }

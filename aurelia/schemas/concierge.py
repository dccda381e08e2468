"""
Pydantic schemas for the concierge chat.

Message content is capped at MAX_MESSAGE_LENGTH; metadata is checked
against MAX_METADATA_SIZE by the service.
"""

from typing import Any

from pydantic import BaseModel, Field

from aurelia.core.config import settings


class SendMessageRequest(BaseModel):
    content: str = Field(..., max_length=settings.MAX_MESSAGE_LENGTH)
    message_type: str = Field("text", max_length=16)
    metadata: dict[str, Any] | None = None
    conversation_id: str | None = Field(None, description="Required when staff post into a member's thread")


class ConciergeReplyRequest(BaseModel):
    """
    Ask Orla for a reply.

    If `stream=True` the response is NDJSON with ``content``, ``finish`` and
    ``error`` chunks.
    """

    content: str = Field(..., max_length=settings.MAX_MESSAGE_LENGTH)
    stream: bool = False


class ConciergeReplyResponse(BaseModel):
    message: dict[str, Any]
    reply: dict[str, Any]


class MarkReadResponse(BaseModel):
    marked: int


class UnreadCountResponse(BaseModel):
    unread: int

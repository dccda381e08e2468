"""
Concierge messaging service.

Each member has one conversation with the concierge desk. Staff reply as
``concierge``; the AI companion (Orla) can answer through an
OpenAI-compatible endpoint, either in one response or streamed as NDJSON.
"""

import json
import logging
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, status
from openai import AsyncOpenAI
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from aurelia.core.config import settings
from aurelia.core.security import UserContext
from aurelia.models import ConciergeMessage, Conversation
from aurelia.services.database import database
from aurelia.services.notification_service import notification_service
from aurelia.services.persona import CHAT_SYSTEM_PROMPT

logger = logging.getLogger("aurelia.concierge")

ROLE_FOR_LLM = {"member": "user", "concierge": "assistant"}
MESSAGE_TYPES = ("text", "request", "update")


def get_openai_client() -> AsyncOpenAI | None:
    """Dependency to get configured OpenAI client."""
    if not settings.OPENAI_API_KEY:
        return None
    return AsyncOpenAI(api_key=settings.OPENAI_API_KEY, base_url=settings.OPENAI_BASE_URL)


def _from_other_sender(user_id: str | None):
    return or_(ConciergeMessage.sender_id.is_(None), ConciergeMessage.sender_id != user_id)


class ConciergeService:
    # =========================================================================
    # Conversations & messages
    # =========================================================================

    async def get_or_create_conversation(self, user_id: str) -> Conversation:
        async with database.session() as session:
            conversation = await self._find_conversation(session, user_id)
            if conversation is None:
                conversation = Conversation(user_id=user_id)
                session.add(conversation)
                await session.commit()
                await session.refresh(conversation)
                logger.info("Conversation %s created for %s", conversation.id, user_id)
            return conversation

    @staticmethod
    async def _find_conversation(session: AsyncSession, user_id: str) -> Conversation | None:
        result = await session.execute(
            select(Conversation).where(Conversation.user_id == user_id).order_by(Conversation.started_at).limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _get_owned(session: AsyncSession, conversation_id: str, caller: UserContext) -> Conversation:
        conversation = await session.get(Conversation, conversation_id)
        if conversation is None or (conversation.user_id != caller.user_id and not caller.is_admin):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
        return conversation

    async def list_conversations(self, limit: int = 100) -> list[Conversation]:
        async with database.session() as session:
            result = await session.execute(
                select(Conversation).order_by(Conversation.last_message_at.desc()).limit(limit)
            )
            return list(result.scalars().all())

    async def list_messages(self, conversation_id: str, caller: UserContext, limit: int = 100) -> list[ConciergeMessage]:
        """Oldest first, owner or admin only."""
        async with database.session() as session:
            await self._get_owned(session, conversation_id, caller)
            result = await session.execute(
                select(ConciergeMessage)
                .where(ConciergeMessage.conversation_id == conversation_id)
                .order_by(ConciergeMessage.created_at.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    @staticmethod
    def _validate(content: str, message_type: str, metadata: dict[str, Any] | None) -> str:
        content = (content or "").strip()
        if not content:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message cannot be empty")
        if len(content) > settings.MAX_MESSAGE_LENGTH:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Message exceeds {settings.MAX_MESSAGE_LENGTH} characters",
            )
        if message_type not in MESSAGE_TYPES:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid message type: {message_type}")
        if metadata and len(json.dumps(metadata)) > settings.MAX_METADATA_SIZE:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Metadata too large")
        return content

    async def send_message(
        self,
        caller: UserContext,
        content: str,
        message_type: str = "text",
        metadata: dict[str, Any] | None = None,
        conversation_id: str | None = None,
    ) -> ConciergeMessage:
        """
        Post a message. Members post into their own conversation; admins
        post as the concierge into ``conversation_id``.

        Raises:
            HTTPException: 400 for empty/oversized content, 404 for a
                conversation the caller cannot access.
        """
        content = self._validate(content, message_type, metadata)

        if conversation_id is None:
            conversation = await self.get_or_create_conversation(caller.user_id)
            conversation_id = conversation.id

        async with database.session() as session:
            conversation = await self._get_owned(session, conversation_id, caller)
            from_member = conversation.user_id == caller.user_id
            message = ConciergeMessage(
                conversation_id=conversation_id,
                sender_id=caller.user_id,
                sender_role="member" if from_member else "concierge",
                content=content,
                message_type=message_type,
                metadata_=metadata or {},
            )
            session.add(message)
            conversation.last_message_at = datetime.now(UTC)
            if not from_member:
                await notification_service.notify(
                    conversation.user_id,
                    "New message from your concierge",
                    content[:140],
                    type="message",
                    action_url="/dashboard?tab=concierge",
                    session=session,
                )
            await session.commit()
            await session.refresh(message)
        return message

    async def mark_as_read(self, conversation_id: str, caller: UserContext) -> int:
        """Mark messages from anyone but the caller as read; returns the count."""
        async with database.session() as session:
            await self._get_owned(session, conversation_id, caller)
            result = await session.execute(
                update(ConciergeMessage)
                .where(
                    ConciergeMessage.conversation_id == conversation_id,
                    ConciergeMessage.is_read.is_(False),
                    _from_other_sender(caller.user_id),
                )
                .values(is_read=True, read_at=datetime.now(UTC))
            )
            await session.commit()
            return result.rowcount or 0

    async def unread_count(self, user_id: str) -> int:
        async with database.session() as session:
            result = await session.execute(
                select(func.count(ConciergeMessage.id))
                .join(Conversation, Conversation.id == ConciergeMessage.conversation_id)
                .where(
                    Conversation.user_id == user_id,
                    ConciergeMessage.is_read.is_(False),
                    _from_other_sender(user_id),
                )
            )
            return result.scalar_one()

    # =========================================================================
    # AI replies
    # =========================================================================

    async def prepare_reply(
        self, caller: UserContext, content: str
    ) -> tuple[ConciergeMessage, list[dict[str, Any]]]:
        """Store the member's message and build the prompt with recent history."""
        message = await self.send_message(caller, content)
        async with database.session() as session:
            result = await session.execute(
                select(ConciergeMessage)
                .where(ConciergeMessage.conversation_id == message.conversation_id)
                .order_by(ConciergeMessage.created_at.desc())
                .limit(settings.CONCIERGE_HISTORY_LIMIT)
            )
            history = list(reversed(result.scalars().all()))

        messages: list[dict[str, Any]] = [{"role": "system", "content": CHAT_SYSTEM_PROMPT}]
        for item in history:
            role = ROLE_FOR_LLM.get(item.sender_role)
            if role:
                messages.append({"role": role, "content": item.content})
        return message, messages

    async def _store_reply(self, conversation_id: str, content: str, model: str) -> ConciergeMessage:
        async with database.session() as session:
            reply = ConciergeMessage(
                conversation_id=conversation_id,
                sender_id=None,
                sender_role="concierge",
                content=content,
                message_type="text",
                metadata_={"generated": True, "model": model},
            )
            session.add(reply)
            conversation = await session.get(Conversation, conversation_id)
            if conversation is not None:
                conversation.last_message_at = datetime.now(UTC)
            await session.commit()
            await session.refresh(reply)
        return reply

    async def complete_reply(
        self, conversation_id: str, messages: list[dict[str, Any]], client: AsyncOpenAI
    ) -> ConciergeMessage:
        model = settings.OPENAI_MODEL
        try:
            response = await client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=0.7,
                stream=False,
            )
        except Exception as e:
            logger.error("OpenAI API Error: %s", e)
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Concierge is unavailable") from e

        content = response.choices[0].message.content or ""
        return await self._store_reply(conversation_id, content, model)

    async def reply(
        self, caller: UserContext, content: str, client: AsyncOpenAI
    ) -> tuple[ConciergeMessage, ConciergeMessage]:
        message, messages = await self.prepare_reply(caller, content)
        reply = await self.complete_reply(message.conversation_id, messages, client)
        return message, reply

    async def stream_reply(
        self, conversation_id: str, messages: list[dict[str, Any]], client: AsyncOpenAI
    ) -> AsyncGenerator[str, None]:
        """
        Stream the reply as NDJSON.

        Yields ``{"type": "content", ...}`` chunks, then one ``finish`` chunk
        with the stored message id, or an ``error`` chunk.
        """
        model = settings.OPENAI_MODEL
        try:
            stream = await client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=0.7,
                stream=True,
            )
        except Exception as e:
            logger.error("OpenAI API Error: %s", e)
            yield json.dumps({"type": "error", "content": "Concierge is unavailable"}) + "\n"
            return

        content_accum = ""
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    content_accum += delta.content
                    yield json.dumps({"type": "content", "content": delta.content}) + "\n"
        except Exception as e:
            logger.error("Stream iteration error: %s", e)
            yield json.dumps({"type": "error", "content": "Stream interrupted"}) + "\n"
            return

        reply = await self._store_reply(conversation_id, content_accum, model)
        yield json.dumps({"type": "finish", "content": "", "message_id": reply.id}) + "\n"


# Global instance
concierge_service = ConciergeService()

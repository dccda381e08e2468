"""
Concierge chat endpoints.

Members talk to staff and to Orla (the AI concierge) in a single thread.
Clients poll the message list; there is no push channel.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from openai import AsyncOpenAI

from aurelia.core.security import UserContext, require_admin_user, require_authenticated_user
from aurelia.schemas.concierge import (
    ConciergeReplyRequest,
    ConciergeReplyResponse,
    MarkReadResponse,
    SendMessageRequest,
    UnreadCountResponse,
)
from aurelia.services.concierge_service import concierge_service, get_openai_client

router = APIRouter()


@router.get("/conversation")
async def get_conversation(user_ctx: UserContext = Depends(require_authenticated_user)) -> dict:
    """The caller's conversation, created on first use."""
    conversation = await concierge_service.get_or_create_conversation(user_ctx.user_id)
    return conversation.to_dict()


@router.get("/conversations", dependencies=[Depends(require_admin_user)])
async def list_conversations(limit: int = Query(100, ge=1, le=500)) -> list[dict]:
    conversations = await concierge_service.list_conversations(limit=limit)
    return [conversation.to_dict() for conversation in conversations]


@router.get("/conversations/{conversation_id}/messages")
async def list_messages(
    conversation_id: str,
    limit: int = Query(100, ge=1, le=500),
    user_ctx: UserContext = Depends(require_authenticated_user),
) -> list[dict]:
    """Messages oldest first. Only the owner or an admin may read them."""
    messages = await concierge_service.list_messages(conversation_id, user_ctx, limit=limit)
    return [message.to_dict() for message in messages]


@router.post("/messages")
async def send_message(
    request: SendMessageRequest,
    user_ctx: UserContext = Depends(require_authenticated_user),
) -> dict:
    """
    Post a message.

    Members post into their own thread. Staff pass ``conversation_id`` and
    the member is notified.
    """
    message = await concierge_service.send_message(
        user_ctx,
        request.content,
        message_type=request.message_type,
        metadata=request.metadata,
        conversation_id=request.conversation_id,
    )
    return message.to_dict()


@router.post("/conversations/{conversation_id}/read", response_model=MarkReadResponse)
async def mark_as_read(
    conversation_id: str,
    user_ctx: UserContext = Depends(require_authenticated_user),
) -> MarkReadResponse:
    return MarkReadResponse(marked=await concierge_service.mark_as_read(conversation_id, user_ctx))


@router.get("/unread", response_model=UnreadCountResponse)
async def unread_count(user_ctx: UserContext = Depends(require_authenticated_user)) -> UnreadCountResponse:
    return UnreadCountResponse(unread=await concierge_service.unread_count(user_ctx.user_id))


@router.post("/reply")
async def concierge_reply(
    request: ConciergeReplyRequest,
    client: AsyncOpenAI | None = Depends(get_openai_client),
    user_ctx: UserContext = Depends(require_authenticated_user),
):
    """
    Ask Orla to answer.

    The member message is stored first, then the reply. If `stream=True`,
    returns NDJSON chunks:
    ```
    {"type": "content", "content": "Good evening"}
    {"type": "finish", "content": "", "message_id": "..."}
    ```
    """
    if not client:
        raise HTTPException(status_code=503, detail="OpenAI API Key not configured")

    if request.stream:
        message, messages = await concierge_service.prepare_reply(user_ctx, request.content)
        return StreamingResponse(
            concierge_service.stream_reply(message.conversation_id, messages, client),
            media_type="application/x-ndjson",
        )

    message, reply = await concierge_service.reply(user_ctx, request.content, client)
    return ConciergeReplyResponse(message=message.to_dict(), reply=reply.to_dict())

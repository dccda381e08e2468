"""
Member notification inbox.
"""

from fastapi import APIRouter, Depends, Query

from aurelia.core.security import UserContext, require_authenticated_user
from aurelia.services.notification_service import notification_service

router = APIRouter()


@router.get("")
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    user_ctx: UserContext = Depends(require_authenticated_user),
) -> list[dict]:
    notifications = await notification_service.list_for_user(user_ctx.user_id, unread_only=unread_only, limit=limit)
    return [notification.to_dict() for notification in notifications]


@router.post("/{notification_id}/read")
async def mark_read(notification_id: str, user_ctx: UserContext = Depends(require_authenticated_user)) -> dict:
    notification = await notification_service.mark_read(user_ctx.user_id, notification_id)
    return notification.to_dict()


@router.post("/read-all")
async def mark_all_read(user_ctx: UserContext = Depends(require_authenticated_user)) -> dict:
    return {"marked": await notification_service.mark_all_read(user_ctx.user_id)}

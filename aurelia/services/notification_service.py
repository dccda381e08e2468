import logging

from fastapi import HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from aurelia.models import Notification
from aurelia.services.database import database

logger = logging.getLogger("aurelia.notifications")


class NotificationService:
    """Member inbox."""

    @staticmethod
    def build(
        user_id: str,
        title: str,
        description: str | None = None,
        type: str = "system",
        action_url: str | None = None,
    ) -> Notification:
        return Notification(
            user_id=user_id,
            title=title,
            description=description,
            type=type,
            action_url=action_url,
        )

    async def notify(
        self,
        user_id: str,
        title: str,
        description: str | None = None,
        type: str = "system",
        action_url: str | None = None,
        session: AsyncSession | None = None,
    ) -> Notification:
        """
        Create a notification.

        When ``session`` is given the row is added to it and committed with
        the caller's transaction; otherwise it is committed on its own.
        """
        notification = self.build(user_id, title, description, type, action_url)
        if session is not None:
            session.add(notification)
            return notification
        async with database.session() as own_session:
            own_session.add(notification)
            await own_session.commit()
        return notification

    async def list_for_user(self, user_id: str, unread_only: bool = False, limit: int = 50) -> list[Notification]:
        query = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc())
            .limit(limit)
        )
        if unread_only:
            query = query.where(Notification.read.is_(False))
        async with database.session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def mark_read(self, user_id: str, notification_id: str) -> Notification:
        """
        Raises:
            HTTPException: 404 if the notification is not the user's.
        """
        async with database.session() as session:
            notification = await session.get(Notification, notification_id)
            if notification is None or notification.user_id != user_id:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
            notification.read = True
            await session.commit()
            return notification

    async def mark_all_read(self, user_id: str) -> int:
        async with database.session() as session:
            result = await session.execute(
                update(Notification)
                .where(Notification.user_id == user_id, Notification.read.is_(False))
                .values(read=True)
            )
            await session.commit()
            return result.rowcount or 0


# Global instance
notification_service = NotificationService()

import logging
from typing import Any

from sqlalchemy import select

from aurelia.models import AuditLog, LoginAttempt
from aurelia.services.database import database

logger = logging.getLogger("aurelia.audit")


class AuditService:
    """Append-only audit trail. Recording never raises; a lost entry is logged."""

    async def record(
        self,
        action: str,
        resource_type: str,
        resource_id: str | None = None,
        details: dict[str, Any] | None = None,
        actor_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditLog | None:
        if not database.is_available:
            logger.warning("Audit entry dropped (no database): %s %s/%s", action, resource_type, resource_id)
            return None
        entry = AuditLog(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details or {},
            user_id=actor_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        try:
            async with database.session() as session:
                session.add(entry)
                await session.commit()
            return entry
        except Exception as e:
            logger.error("Failed to write audit entry %s: %s", action, e)
            return None

    async def record_login_attempt(
        self,
        ip_address: str,
        email: str | None,
        success: bool,
        user_agent: str | None = None,
    ) -> None:
        if not database.is_available:
            return
        try:
            async with database.session() as session:
                session.add(
                    LoginAttempt(
                        ip_address=ip_address,
                        email=email.lower() if email else None,
                        success=success,
                        user_agent=user_agent,
                    )
                )
                await session.commit()
        except Exception as e:
            logger.error("Failed to record login attempt from %s: %s", ip_address, e)

    async def list(
        self,
        action: str | None = None,
        resource_type: str | None = None,
        limit: int = 100,
    ) -> list[AuditLog]:
        query = select(AuditLog).order_by(AuditLog.created_at.desc()).limit(limit)
        if action:
            query = query.where(AuditLog.action == action)
        if resource_type:
            query = query.where(AuditLog.resource_type == resource_type)
        async with database.session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())


# Global instance
audit_service = AuditService()

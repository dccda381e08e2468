"""
Lead tracking service.

Merges visitor signals, keeps the ``lead_scores`` row current and raises VIP
alerts. Signals are cached in Redis between page views; the database row is
the fallback when Redis is unavailable.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import func, select

from aurelia.core.config import settings
from aurelia.models import LeadScore, VIPAlert
from aurelia.services.audit_service import audit_service
from aurelia.services.database import database
from aurelia.services.email_service import email_service
from aurelia.services.lead_scoring import (
    LeadSignals,
    VIPDetection,
    apply_event,
    calculate_lead_score,
    detect_vip,
    merge_signals,
)
from aurelia.services.redis_cache import redis_cache
from aurelia.services.webhook_service import webhook_service

logger = logging.getLogger("aurelia.leads")

VIP_ALERT_STATUSES = ("new", "contacted", "converted", "dismissed")


class LeadService:
    SIGNALS_KEY = "lead:signals:{session_id}"
    SIGNALS_TTL = 30 * 24 * 3600

    async def _load_signals(self, session_id: str) -> LeadSignals:
        cached = await redis_cache.get_json(self.SIGNALS_KEY.format(session_id=session_id))
        if cached is not None:
            return LeadSignals.from_dict(cached)
        if database.is_available:
            async with database.session() as session:
                row = await self._get_by_session(session, session_id)
                if row is not None:
                    return LeadSignals.from_dict(row.signals)
        return LeadSignals()

    @staticmethod
    async def _get_by_session(session, session_id: str) -> LeadScore | None:
        result = await session.execute(select(LeadScore).where(LeadScore.session_id == session_id))
        return result.scalar_one_or_none()

    async def track(
        self,
        session_id: str,
        updates: dict[str, Any] | None = None,
        email: str | None = None,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        """Merge raw signal updates for a visitor and rescore."""
        signals = merge_signals(await self._load_signals(session_id), updates or {})
        return await self._score_and_store(session_id, signals, email, user_id)

    async def track_event(
        self,
        session_id: str,
        event_type: str,
        payload: dict[str, Any] | None = None,
        email: str | None = None,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Fold one browser event into the visitor's signals and rescore.

        Raises:
            HTTPException: 400 for an unknown event type.
        """
        signals = await self._load_signals(session_id)
        try:
            signals = apply_event(signals, event_type, payload, now=datetime.now(UTC).timestamp())
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        return await self._score_and_store(session_id, signals, email, user_id)

    async def _score_and_store(
        self,
        session_id: str,
        signals: LeadSignals,
        email: str | None,
        user_id: str | None,
    ) -> dict[str, Any]:
        score = calculate_lead_score(signals)
        detection = detect_vip(score)
        await redis_cache.set_json(self.SIGNALS_KEY.format(session_id=session_id), signals.to_dict(), self.SIGNALS_TTL)

        response = {
            "session_id": session_id,
            "score": score.total,
            "tier": score.tier,
            "breakdown": score.breakdown,
            "is_vip": detection.is_vip,
            "alert_type": detection.alert_type,
            "should_engage_concierge": detection.should_engage_concierge,
        }
        if not database.is_available:
            logger.debug("Lead %s scored %s without persistence", session_id, score.total)
            return response

        now = datetime.now(UTC)
        async with database.session() as session:
            row = await self._get_by_session(session, session_id)
            if row is None:
                row = LeadScore(session_id=session_id)
                session.add(row)
                previous_score = 0
            else:
                previous_score = row.score

            row.score = score.total
            row.tier = score.tier
            row.signals = signals.to_dict()
            row.email = email or row.email
            row.user_id = user_id or row.user_id
            row.last_activity_at = now

            first_detection = detection.is_vip and not row.is_vip
            if first_detection:
                row.is_vip = True
                row.vip_detected_at = now

            alert: VIPAlert | None = None
            if detection.should_notify_admin and not row.admin_notified:
                await session.flush()
                alert = VIPAlert(
                    lead_score_id=row.id,
                    session_id=session_id,
                    email=row.email,
                    score=score.total,
                    tier=score.tier,
                    alert_type=detection.alert_type,
                    signals=score.breakdown,
                )
                session.add(alert)
                row.admin_notified = True

            await session.commit()
            lead_email = row.email
            lead_id = row.id

        if first_detection:
            await audit_service.record(
                "vip_detected",
                "lead_score",
                lead_id,
                {
                    "score": score.total,
                    "tier": score.tier,
                    "alert_type": detection.alert_type,
                    "signals_summary": list(score.breakdown),
                },
            )
        if alert is not None:
            await self._notify_admin(session_id, lead_email, detection)
        if lead_email and score.total >= settings.LEAD_WEBHOOK_THRESHOLD > previous_score:
            await webhook_service.dispatch(
                "high_lead_score",
                {"email": lead_email, "score": score.total, "tier": score.tier, "session_id": session_id},
            )
        return response

    async def _notify_admin(self, session_id: str, email: str | None, detection: VIPDetection) -> None:
        score = detection.score
        logger.info("VIP alert %s for session %s (score %s)", detection.alert_type, session_id, score.total)
        await email_service.send_vip_alert(
            detection.alert_type or "", score.total, score.tier, score.breakdown, session_id, email
        )
        await webhook_service.dispatch(
            "vip_detected",
            {
                "session_id": session_id,
                "email": email,
                "score": score.total,
                "tier": score.tier,
                "alert_type": detection.alert_type,
                "breakdown": score.breakdown,
            },
        )

    async def mark_concierge_engaged(self, session_id: str) -> None:
        async with database.session() as session:
            row = await self._get_by_session(session, session_id)
            if row is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lead not found")
            row.concierge_engaged = True
            await session.commit()

    async def list_vip_alerts(self, status_filter: str | None = None, limit: int = 100) -> list[VIPAlert]:
        query = select(VIPAlert).order_by(VIPAlert.created_at.desc()).limit(limit)
        if status_filter:
            query = query.where(VIPAlert.status == status_filter)
        async with database.session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def update_vip_alert_status(
        self,
        alert_id: str,
        new_status: str,
        reviewer_id: str | None = None,
        notes: str | None = None,
    ) -> VIPAlert:
        """
        Raises:
            HTTPException: 400 for an unknown status, 404 if the alert is missing.
        """
        if new_status not in VIP_ALERT_STATUSES:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid status: {new_status}")
        async with database.session() as session:
            alert = await session.get(VIPAlert, alert_id)
            if alert is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="VIP alert not found")
            alert.status = new_status
            if notes is not None:
                alert.notes = notes
            alert.reviewed_by = reviewer_id
            alert.reviewed_at = datetime.now(UTC)
            await session.commit()
        await audit_service.record("vip_alert_updated", "vip_alert", alert_id, {"status": new_status}, reviewer_id)
        return alert

    async def vip_stats(self) -> dict[str, int]:
        async with database.session() as session:
            vip_row = (
                await session.execute(
                    select(func.count(LeadScore.id), func.avg(LeadScore.score)).where(LeadScore.is_vip.is_(True))
                )
            ).one()
            status_counts = dict(
                (await session.execute(select(VIPAlert.status, func.count(VIPAlert.id)).group_by(VIPAlert.status))).all()
            )
        total_vips, avg_score = vip_row
        return {
            "totalVIPs": total_vips or 0,
            "newAlerts": status_counts.get("new", 0),
            "converted": status_counts.get("converted", 0),
            "avgScore": round(avg_score) if avg_score is not None else 0,
        }


# Global instance
lead_service = LeadService()

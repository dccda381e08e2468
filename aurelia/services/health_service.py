"""
Uptime monitor.

Probes the configured endpoints in parallel, records one ``UptimeCheck`` per
endpoint and keeps ``Incident`` rows in step: an outage opens an incident for
services not already covered by an active one, and an incident whose services
are all healthy again is resolved.
"""

import asyncio
import logging
import time
from datetime import UTC, datetime
from typing import Any

import httpx
from sqlalchemy import select

from aurelia.core.config import settings
from aurelia.models import Incident, UptimeCheck
from aurelia.services.database import database

logger = logging.getLogger("aurelia.health")

ACTIVE_INCIDENT_STATUSES = ("investigating", "identified", "monitoring")

_BOOT_STARTED = time.perf_counter()
_cold_start = True


def classify(status_code: int | None, response_time_ms: int) -> str:
    """healthy, degraded (slow or 4xx) or down (5xx or no response)."""
    if status_code is None or status_code >= 500:
        return "down"
    if status_code >= 400 or response_time_ms > settings.UPTIME_DEGRADED_MS:
        return "degraded"
    return "healthy"


class HealthService:
    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self.transport = transport

    async def _probe(self, client: httpx.AsyncClient, name: str, url: str) -> UptimeCheck:
        started = time.perf_counter()
        try:
            response = await client.get(url, headers={"User-Agent": "Aurelia-Uptime-Monitor/1.0"})
        except httpx.HTTPError as e:
            elapsed = int((time.perf_counter() - started) * 1000)
            logger.warning("Uptime probe %s failed: %s", name, e)
            return UptimeCheck(
                endpoint_name=name,
                endpoint_url=url,
                status="down",
                response_time_ms=elapsed,
                error_message=str(e) or type(e).__name__,
            )

        elapsed = int((time.perf_counter() - started) * 1000)
        return UptimeCheck(
            endpoint_name=name,
            endpoint_url=url,
            status=classify(response.status_code, elapsed),
            response_time_ms=elapsed,
            status_code=response.status_code,
            error_message=None if response.is_success else f"HTTP {response.status_code}",
        )

    async def run_checks(self) -> dict[str, Any]:
        """
        Probe every endpoint and reconcile incidents.

        Returns:
            Summary with counts per status, average response time and
            cold-start timing.
        """
        global _cold_start
        is_cold_start = _cold_start
        _cold_start = False
        started = time.perf_counter()

        targets = settings.uptime_targets()
        async with httpx.AsyncClient(
            timeout=settings.UPTIME_TIMEOUT_SECONDS,
            transport=self.transport,
            follow_redirects=True,
        ) as client:
            checks = await asyncio.gather(*(self._probe(client, name, url) for name, url in targets.items()))

        if database.is_available:
            await self._store(checks)
        else:
            logger.warning("Database unavailable; uptime results not stored")

        response_times = [c.response_time_ms for c in checks if c.response_time_ms is not None]
        summary = {
            "total_endpoints": len(checks),
            "healthy": sum(1 for c in checks if c.status == "healthy"),
            "degraded": sum(1 for c in checks if c.status == "degraded"),
            "down": sum(1 for c in checks if c.status == "down"),
            "avg_response_time": round(sum(response_times) / len(response_times)) if response_times else 0,
            "checked_at": datetime.now(UTC).isoformat(),
            "is_cold_start": is_cold_start,
            "execution_time_ms": int((time.perf_counter() - started) * 1000),
            "boot_time_ms": int((started - _BOOT_STARTED) * 1000) if is_cold_start else None,
            "results": [c.to_dict() for c in checks],
        }
        logger.info(
            "Uptime check: %s healthy, %s degraded, %s down",
            summary["healthy"],
            summary["degraded"],
            summary["down"],
        )
        return summary

    async def _store(self, checks: list[UptimeCheck]) -> None:
        down = [c.endpoint_name for c in checks if c.status == "down"]
        healthy = {c.endpoint_name for c in checks if c.status == "healthy"}

        async with database.session() as session:
            session.add_all(checks)

            result = await session.execute(select(Incident).where(Incident.status.in_(ACTIVE_INCIDENT_STATUSES)))
            active = list(result.scalars().all())
            covered = {name for incident in active for name in incident.affected_services}

            new_down = [name for name in down if name not in covered]
            if new_down:
                session.add(
                    Incident(
                        title=f"Service Outage: {', '.join(new_down)}",
                        description=f"Automated detection: {len(new_down)} service(s) are currently unreachable.",
                        severity="critical" if len(new_down) >= 2 else "major",
                        status="investigating",
                        affected_services=new_down,
                    )
                )
                logger.warning("Opened incident for %s", ", ".join(new_down))

            now = datetime.now(UTC)
            for incident in active:
                if incident.affected_services and all(name in healthy for name in incident.affected_services):
                    incident.status = "resolved"
                    incident.resolved_at = now
                    logger.info("Auto-resolved incident %s", incident.id)

            await session.commit()

    async def list_incidents(self, include_resolved: bool = False, limit: int = 50) -> list[Incident]:
        async with database.session() as session:
            query = select(Incident).order_by(Incident.started_at.desc()).limit(limit)
            if not include_resolved:
                query = query.where(Incident.status.in_(ACTIVE_INCIDENT_STATUSES))
            result = await session.execute(query)
            return list(result.scalars().all())

    async def recent_checks(self, limit: int = 100) -> list[UptimeCheck]:
        async with database.session() as session:
            result = await session.execute(select(UptimeCheck).order_by(UptimeCheck.checked_at.desc()).limit(limit))
            return list(result.scalars().all())


# Global instance
health_service = HealthService()

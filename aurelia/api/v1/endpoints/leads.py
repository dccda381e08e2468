"""
Visitor lead scoring and VIP alert endpoints.

Tracking is public (called by the marketing site with an anonymous session
id); alert management is admin-only.
"""

from fastapi import APIRouter, Depends, Query

from aurelia.core.security import UserContext, get_optional_user, require_admin_user
from aurelia.schemas.auth import MessageResponse
from aurelia.schemas.leads import (
    ConciergeEngagedRequest,
    LeadEventRequest,
    LeadScoreResponse,
    LeadTrackRequest,
    VIPAlertUpdateRequest,
)
from aurelia.services.lead_service import lead_service

router = APIRouter()


@router.post("/track", response_model=LeadScoreResponse)
async def track_lead(
    request: LeadTrackRequest,
    user_ctx: UserContext = Depends(get_optional_user),
) -> LeadScoreResponse:
    """
    Merge browsing signals for a visitor session and rescore it.

    **Request Body:**
    ```json
    {
        "session_id": "visitor-123",
        "signals": {"pages_visited": ["/", "/pricing"], "time_on_site": 320},
        "email": "prospect@example.com"
    }
    ```
    """
    result = await lead_service.track(
        request.session_id,
        request.signals.model_dump(exclude_none=True),
        email=request.email,
        user_id=user_ctx.user_id if user_ctx.is_authenticated else None,
    )
    return LeadScoreResponse(**result)


@router.post("/events", response_model=LeadScoreResponse)
async def track_lead_event(
    request: LeadEventRequest,
    user_ctx: UserContext = Depends(get_optional_user),
) -> LeadScoreResponse:
    """Record one browsing event (page view, scroll, form interaction, ...) and rescore."""
    result = await lead_service.track_event(
        request.session_id,
        request.event_type,
        request.payload,
        email=request.email,
        user_id=user_ctx.user_id if user_ctx.is_authenticated else None,
    )
    return LeadScoreResponse(**result)


@router.post("/concierge-engaged", response_model=MessageResponse)
async def concierge_engaged(request: ConciergeEngagedRequest) -> MessageResponse:
    await lead_service.mark_concierge_engaged(request.session_id)
    return MessageResponse(message="Concierge engagement recorded")


# =============================================================================
# VIP alerts (admin)
# =============================================================================


@router.get("/vip-alerts", dependencies=[Depends(require_admin_user)])
async def list_vip_alerts(
    status: str | None = Query(None, description="Filter by alert status"),
    limit: int = Query(100, ge=1, le=500),
) -> list[dict]:
    alerts = await lead_service.list_vip_alerts(status_filter=status, limit=limit)
    return [alert.to_dict() for alert in alerts]


@router.patch("/vip-alerts/{alert_id}")
async def update_vip_alert(
    alert_id: str,
    request: VIPAlertUpdateRequest,
    admin: UserContext = Depends(require_admin_user),
) -> dict:
    alert = await lead_service.update_vip_alert_status(
        alert_id,
        request.status,
        reviewer_id=admin.user_id,
        notes=request.notes,
    )
    return alert.to_dict()


@router.get("/vip-stats", dependencies=[Depends(require_admin_user)])
async def vip_stats() -> dict[str, int]:
    """Totals for the admin VIP dashboard: totalVIPs, newAlerts, converted, avgScore."""
    return await lead_service.vip_stats()

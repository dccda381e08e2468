"""
Admin endpoints: audit log, outbound webhook registry, scheduled jobs
(monthly credit reset, uptime checks) and incidents.

Every route needs an admin JWT or the service key.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query, status

from aurelia.core.security import UserContext, require_admin_user
from aurelia.schemas.auth import MessageResponse
from aurelia.schemas.webhooks import WebhookEndpointCreate, WebhookToggleRequest
from aurelia.services.audit_service import audit_service
from aurelia.services.credits_service import credits_service
from aurelia.services.health_service import health_service
from aurelia.services.webhook_service import webhook_service

router = APIRouter(dependencies=[Depends(require_admin_user)])


# =============================================================================
# Audit log
# =============================================================================


@router.get("/audit-logs")
async def list_audit_logs(
    action: str | None = Query(None),
    resource_type: str | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
) -> list[dict]:
    entries = await audit_service.list(action=action, resource_type=resource_type, limit=limit)
    return [entry.to_dict() for entry in entries]


# =============================================================================
# Outbound webhooks
# =============================================================================


@router.get("/webhooks")
async def list_webhooks() -> list[dict]:
    return [endpoint.to_dict() for endpoint in await webhook_service.list_endpoints()]


@router.post("/webhooks", status_code=status.HTTP_201_CREATED)
async def add_webhook(request: WebhookEndpointCreate, admin: UserContext = Depends(require_admin_user)) -> dict:
    """
    Register an outbound endpoint.

    **Request Body:**
    ```json
    {
        "name": "CRM sync",
        "url": "https://n8n.example.com/webhook/contact",
        "events": ["contact_form", "vip_detected"]
    }
    ```
    """
    endpoint = await webhook_service.add_endpoint(
        name=request.name,
        url=str(request.url),
        endpoint_type=request.endpoint_type,
        events=request.events,
        headers=request.headers,
        actor_id=admin.user_id,
    )
    return endpoint.to_dict()


@router.patch("/webhooks/{endpoint_id}")
async def toggle_webhook(endpoint_id: str, request: WebhookToggleRequest) -> dict:
    endpoint = await webhook_service.set_active(endpoint_id, request.is_active)
    return endpoint.to_dict()


@router.delete("/webhooks/{endpoint_id}", response_model=MessageResponse)
async def delete_webhook(endpoint_id: str, admin: UserContext = Depends(require_admin_user)) -> MessageResponse:
    await webhook_service.delete_endpoint(endpoint_id, actor_id=admin.user_id)
    return MessageResponse(message="Webhook deleted")


@router.post("/webhooks/test")
async def test_webhooks(event: str = Query("test", max_length=64)) -> dict[str, Any]:
    """Send a test event to every endpoint subscribed to it."""
    delivered = await webhook_service.dispatch(event, {"message": "Test event from Aurelia"})
    return {"event": event, "delivered": delivered}


# =============================================================================
# Scheduled jobs
# =============================================================================


@router.post("/credits/reset-monthly")
async def reset_monthly_credits() -> dict[str, Any]:
    """
    Reset every subscriber's balance to their tier's monthly allocation.

    Meant for a monthly scheduler calling with ``X-Service-Key``.
    """
    return await credits_service.reset_monthly()


@router.get("/health/uptime")
async def run_uptime_check() -> dict[str, Any]:
    """Probe the monitored endpoints, store the results and open or resolve incidents."""
    return await health_service.run_checks()


@router.get("/health/checks")
async def recent_uptime_checks(limit: int = Query(100, ge=1, le=1000)) -> list[dict]:
    return [check.to_dict() for check in await health_service.recent_checks(limit=limit)]


@router.get("/incidents")
async def list_incidents(
    include_resolved: bool = Query(False),
    limit: int = Query(50, ge=1, le=500),
) -> list[dict]:
    incidents = await health_service.list_incidents(include_resolved=include_resolved, limit=limit)
    return [incident.to_dict() for incident in incidents]

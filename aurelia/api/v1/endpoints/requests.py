"""
Service requests: members create and follow requests, staff move them through
their lifecycle.
"""

from fastapi import APIRouter, Depends, Query, status

from aurelia.api.deps import get_current_member
from aurelia.core.config import settings
from aurelia.core.security import UserContext, require_admin_user, require_authenticated_user
from aurelia.models import User
from aurelia.schemas.requests import ServiceRequestCreate, ServiceRequestStatusUpdate
from aurelia.services.service_request_service import service_request_service

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_request(
    request: ServiceRequestCreate,
    user: User = Depends(get_current_member),
) -> dict:
    """
    Create a service request, charging the category's credit cost.

    Returns 402 when the balance is too low.
    """
    service_request = await service_request_service.create(
        user,
        category=request.category,
        title=request.title,
        description=request.description,
        preferred_date=request.preferred_date,
        budget_min=request.budget_min,
        budget_max=request.budget_max,
        requirements=request.requirements,
    )
    return service_request.to_dict()


@router.get("")
async def list_my_requests(
    status_filter: str | None = Query(None, alias="status"),
    user_ctx: UserContext = Depends(require_authenticated_user),
) -> list[dict]:
    requests = await service_request_service.list_for_user(user_ctx.user_id, status_filter=status_filter)
    return [item.to_dict() for item in requests]


@router.get("/costs")
async def credit_costs() -> dict[str, int]:
    """Credit cost per service category."""
    return dict(settings.SERVICE_CREDIT_COSTS)


@router.get("/all", dependencies=[Depends(require_admin_user)])
async def list_all_requests(
    status_filter: str | None = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
) -> list[dict]:
    requests = await service_request_service.list_all(status_filter=status_filter, limit=limit)
    return [item.to_dict(include_internal=True) for item in requests]


@router.get("/{request_id}")
async def get_request(request_id: str, user_ctx: UserContext = Depends(require_authenticated_user)) -> dict:
    service_request = await service_request_service.get(user_ctx, request_id)
    return service_request.to_dict(include_internal=user_ctx.is_admin)


@router.patch("/{request_id}/status")
async def update_request_status(
    request_id: str,
    request: ServiceRequestStatusUpdate,
    admin: UserContext = Depends(require_admin_user),
) -> dict:
    """
    Move a request to a new status (admin only).

    Invalid transitions return 400; cancelling refunds the charged credits.
    """
    service_request = await service_request_service.update_status(
        admin.user_id,
        request_id,
        request.status,
        partner_id=request.partner_id,
        internal_notes=request.internal_notes,
    )
    return service_request.to_dict(include_internal=True)

"""
Partner onboarding: public applications, admin invitations and review.
"""

from fastapi import APIRouter, Depends, Query, status

from aurelia.core.security import UserContext, require_admin_user
from aurelia.schemas.partners import PartnerApplicationRequest, PartnerInviteRequest, PartnerReviewRequest
from aurelia.services.partner_service import partner_service

router = APIRouter()


@router.post("/apply", status_code=status.HTTP_201_CREATED)
async def apply(request: PartnerApplicationRequest) -> dict:
    """
    Public partner application form.

    An ``invite_token`` from an invitation email links the application to
    the invited prospect.
    """
    prospect = await partner_service.apply(**request.model_dump())
    return {"success": True, "id": prospect.id, "status": prospect.status}


@router.post("/invite")
async def invite(request: PartnerInviteRequest, admin: UserContext = Depends(require_admin_user)) -> dict:
    """Email a partnership invitation to a prospect (admin only)."""
    prospect = await partner_service.invite(**request.model_dump(), actor_id=admin.user_id)
    return prospect.to_dict()


@router.get("/prospects", dependencies=[Depends(require_admin_user)])
async def list_prospects(
    status_filter: str | None = Query(None, alias="status"),
    limit: int = Query(200, ge=1, le=1000),
) -> list[dict]:
    prospects = await partner_service.list_prospects(status_filter=status_filter, limit=limit)
    return [prospect.to_dict() for prospect in prospects]


@router.post("/prospects/{prospect_id}/review")
async def review(
    prospect_id: str,
    request: PartnerReviewRequest,
    admin: UserContext = Depends(require_admin_user),
) -> dict:
    """Approve or reject an application (admin only)."""
    prospect = await partner_service.review(admin.user_id, prospect_id, request.status, notes=request.notes)
    return prospect.to_dict()

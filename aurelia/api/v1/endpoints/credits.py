"""
Member credits: balance, ledger and staff adjustments.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from aurelia.api.deps import get_current_member
from aurelia.core.security import UserContext, require_admin_user
from aurelia.models import User
from aurelia.schemas.credits import AddCreditsRequest, CreditBalanceResponse
from aurelia.services.audit_service import audit_service
from aurelia.services.auth_service import auth_service
from aurelia.services.credits_service import credits_service

router = APIRouter()


@router.get("/balance", response_model=CreditBalanceResponse)
async def get_balance(user: User = Depends(get_current_member)) -> CreditBalanceResponse:
    """
    Current credit balance.

    Subscribers and trial members get their record created on first read
    with the tier's monthly allocation.
    """
    return CreditBalanceResponse(**await credits_service.get_balance(user))


@router.get("/transactions")
async def list_transactions(
    limit: int = Query(20, ge=1, le=200),
    user: User = Depends(get_current_member),
) -> list[dict]:
    transactions = await credits_service.list_transactions(user.id, limit=limit)
    return [transaction.to_dict() for transaction in transactions]


@router.post("/adjust")
async def add_credits(
    request: AddCreditsRequest,
    admin: UserContext = Depends(require_admin_user),
) -> dict:
    """Credit a member's balance (admin only)."""
    if not await auth_service.get_user_by_id(request.user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    result = await credits_service.add_credits(
        request.user_id,
        request.amount,
        transaction_type=request.transaction_type,
        description=request.description or "Manual adjustment",
    )
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    await audit_service.record(
        "credits_adjusted",
        "user_credits",
        request.user_id,
        details={"amount": request.amount, "type": request.transaction_type},
        actor_id=admin.user_id,
    )
    return {"success": True, "balance": result.balance}

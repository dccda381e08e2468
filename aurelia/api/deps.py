"""Shared route dependencies."""

from fastapi import Depends, HTTPException, status

from aurelia.core.config import settings
from aurelia.core.security import UserContext, require_authenticated_user
from aurelia.models import User
from aurelia.services.auth_service import auth_service


def require_user_auth_enabled():
    """Dependency to check if user auth is enabled."""
    if not settings.ENABLE_USER_AUTH:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="User authentication is not enabled. Set ENABLE_USER_AUTH=true to enable.",
        )


async def get_current_member(user_ctx: UserContext = Depends(require_authenticated_user)) -> User:
    """
    Load the authenticated caller's account.

    Raises:
        HTTPException: 401 if not authenticated, 404 if the account is gone.
    """
    user = await auth_service.get_user_by_id(user_ctx.user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user

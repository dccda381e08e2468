"""
JWT token service for member authentication.

Access tokens carry the member's email, admin flag and membership tier so
route dependencies can authorize without a database round-trip. Refresh
tokens only carry the subject and a unique id.
"""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from aurelia.core.config import settings


class JWTService:
    """Creates and validates access and refresh tokens."""

    TOKEN_TYPE_ACCESS = "access"
    TOKEN_TYPE_REFRESH = "refresh"

    @staticmethod
    def is_available() -> bool:
        return settings.JWT_SECRET_KEY is not None

    @staticmethod
    def _encode(payload: dict[str, Any]) -> str:
        if not JWTService.is_available():
            raise RuntimeError("JWT is not configured. Set JWT_SECRET_KEY in environment.")
        return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    @staticmethod
    def create_access_token(
        user_id: str,
        email: str,
        is_admin: bool = False,
        membership_tier: str | None = None,
    ) -> str:
        """
        Create a short-lived access token.

        Raises:
            RuntimeError: If JWT is not configured.
        """
        now = datetime.now(UTC)
        return JWTService._encode(
            {
                "sub": user_id,
                "email": email,
                "is_admin": is_admin,
                "tier": membership_tier,
                "type": JWTService.TOKEN_TYPE_ACCESS,
                "exp": now + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
                "iat": now,
            }
        )

    @staticmethod
    def create_refresh_token(user_id: str) -> str:
        """Create a long-lived refresh token."""
        now = datetime.now(UTC)
        return JWTService._encode(
            {
                "sub": user_id,
                "jti": str(uuid.uuid4()),
                "type": JWTService.TOKEN_TYPE_REFRESH,
                "exp": now + timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS),
                "iat": now,
            }
        )

    @staticmethod
    def verify_token(token: str, expected_type: str | None = None) -> dict[str, Any] | None:
        """
        Decode a token.

        Returns:
            Decoded payload if valid (and of the expected type), None otherwise.
        """
        if not JWTService.is_available():
            return None
        try:
            payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        except JWTError:
            return None
        if expected_type and payload.get("type") != expected_type:
            return None
        return payload

    @staticmethod
    def verify_access_token(token: str) -> dict[str, Any] | None:
        return JWTService.verify_token(token, JWTService.TOKEN_TYPE_ACCESS)

    @staticmethod
    def verify_refresh_token(token: str) -> dict[str, Any] | None:
        return JWTService.verify_token(token, JWTService.TOKEN_TYPE_REFRESH)

    @staticmethod
    def get_token_expiry_seconds() -> int:
        """Get the access token expiry time in seconds."""
        return settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60


# Global instance
jwt_service = JWTService()

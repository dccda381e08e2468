"""
Authentication service for member account management.

Handles:
- Registration with email verification and breached-password rejection
- Login with email/password (per-email lockout)
- Google sign-in
- Password reset
- Token refresh and profile updates
"""

import logging
from datetime import UTC, datetime
from typing import Any

import bcrypt
from fastapi import HTTPException, status
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token as google_id_token
from sqlalchemy import select, update

from aurelia.core.config import settings
from aurelia.models import User
from aurelia.schemas.auth import TokenResponse
from aurelia.services.database import database
from aurelia.services.email_service import email_service
from aurelia.services.jwt_service import jwt_service
from aurelia.services.login_rate_limit import email_login_limiter
from aurelia.services.password_breach import breach_checker
from aurelia.services.redis_cache import redis_cache

logger = logging.getLogger("aurelia.auth")


class AuthService:
    """
    Member authentication and account management.

    Redis holds verification/reset codes and resend throttles; the database
    holds the accounts themselves.
    """

    VERIFY_CODE_KEY = "auth:verify:{email}"
    RESET_CODE_KEY = "auth:reset:{email}"
    RATE_LIMIT_KEY = "auth:rate:{email}:{action}"

    # =========================================================================
    # Password Hashing
    # =========================================================================

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash a password using bcrypt (cost factor 12)."""
        salt = bcrypt.gensalt(rounds=12)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        try:
            return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
        except ValueError:
            return False

    async def _reject_breached_password(self, password: str) -> None:
        if not settings.ENABLE_BREACH_CHECK:
            return
        result = await breach_checker.check(password)
        if result.breached:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=(
                    f"This password has appeared in {result.count:,} data breaches. "
                    "Please choose a different password."
                ),
            )

    # =========================================================================
    # Registration
    # =========================================================================

    async def register(
        self,
        email: str,
        password: str,
        display_name: str | None = None,
        phone: str | None = None,
    ) -> User:
        """
        Register a new member account and send the verification code.

        Raises:
            HTTPException: 400 if email already registered or password breached.
        """
        if await self.get_user_by_email(email):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email already registered",
            )

        await self._reject_breached_password(password)

        user = await self._create_user(
            email=email,
            password_hash=self.hash_password(password),
            display_name=display_name,
            phone=phone,
        )

        code = email_service.generate_verification_code()
        await self._store_code(self.VERIFY_CODE_KEY, email, code)
        await email_service.send_verification_email(email, code)
        return user

    async def verify_email(self, email: str, code: str) -> bool:
        """
        Raises:
            HTTPException: 400 if code invalid or expired.
            HTTPException: 404 if user not found.
        """
        if not await self._verify_code(self.VERIFY_CODE_KEY, email, code):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid or expired verification code",
            )

        user = await self.get_user_by_email(email)
        if not user:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

        await self._update_user(user.id, email_verified=True)
        await redis_cache.delete(self._code_key(self.VERIFY_CODE_KEY, email))
        return True

    async def resend_verification(self, email: str) -> bool:
        """
        Raises:
            HTTPException: 404 if user not found.
            HTTPException: 400 if already verified.
            HTTPException: 429 if rate limited.
        """
        user = await self.get_user_by_email(email)
        if not user:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        if user.email_verified:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already verified")

        if not await self._check_rate_limit(email, "verify"):
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f"Please wait {settings.VERIFICATION_RATE_LIMIT_SECONDS} seconds before requesting another code",
            )

        code = email_service.generate_verification_code()
        await self._store_code(self.VERIFY_CODE_KEY, email, code)
        await email_service.send_verification_email(email, code)
        return True

    # =========================================================================
    # Login
    # =========================================================================

    async def login(self, email: str, password: str) -> TokenResponse:
        """
        Login with email and password.

        The per-email limiter is consulted before the password is checked.

        Raises:
            HTTPException: 401 if credentials invalid.
            HTTPException: 403 if email not verified or account disabled.
            HTTPException: 429 if locked out.
        """
        lockout = await email_login_limiter.check(email)
        if lockout.is_limited:
            logger.warning("Login blocked for %s - locked out", email)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f"Too many login attempts. Please try again in {lockout.cooldown_minutes} minutes.",
                headers={"Retry-After": str(lockout.cooldown_seconds)},
            )

        user = await self.get_user_by_email(email)
        if not user or not user.password_hash or not self.verify_password(password, user.password_hash):
            # Count unknown emails too, so lockouts don't reveal which accounts exist
            result = await email_login_limiter.record_failure(email)
            logger.info("Login failed for %s", email)
            if result.is_limited:
                raise HTTPException(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    detail=(
                        "Account locked due to too many failed attempts. "
                        f"Please try again in {result.cooldown_minutes} minutes."
                    ),
                    headers={"Retry-After": str(result.cooldown_seconds)},
                )
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid email or password",
            )

        await email_login_limiter.record_success(email)

        if not user.email_verified:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Email not verified. Please check your inbox for the verification code.",
            )
        if not user.is_active:
            logger.warning("Login blocked for %s - account disabled", email)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled")

        await self._update_user(user.id, last_login_at=datetime.now(UTC))
        logger.info("Successful login for user %s", user.id)
        return self.create_token_response(user)

    async def refresh_token(self, refresh_token: str) -> TokenResponse:
        """
        Raises:
            HTTPException: 401 if refresh token invalid or user gone.
        """
        payload = jwt_service.verify_refresh_token(refresh_token)
        if not payload:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired refresh token",
            )

        user = await self.get_user_by_id(payload.get("sub"))
        if not user or not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="User not found or disabled",
            )
        return self.create_token_response(user)

    # =========================================================================
    # Google OAuth
    # =========================================================================

    def _verify_google_token(self, token: str) -> dict[str, Any]:
        return google_id_token.verify_oauth2_token(token, google_requests.Request(), settings.GOOGLE_CLIENT_ID)

    async def google_auth(self, token: str) -> TokenResponse:
        """
        Authenticate or register via Google sign-in.

        Raises:
            HTTPException: 400 if token invalid.
            HTTPException: 503 if Google OAuth not configured.
        """
        if not settings.GOOGLE_CLIENT_ID:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Google OAuth not configured",
            )

        try:
            idinfo = self._verify_google_token(token)
        except ValueError as e:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid Google token: {e}",
            ) from e

        google_id = idinfo["sub"]
        email = idinfo.get("email")
        if not email:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email not provided by Google")

        now = datetime.now(UTC)
        user = await self._get_user_by_google_id(google_id)
        if user:
            await self._update_user(user.id, last_login_at=now)
        else:
            user = await self.get_user_by_email(email)
            if user:
                # Link Google to the existing email account
                await self._update_user(user.id, google_id=google_id, email_verified=True, last_login_at=now)
            else:
                user = await self._create_user(
                    email=email,
                    google_id=google_id,
                    email_verified=idinfo.get("email_verified", False),
                    display_name=idinfo.get("name"),
                )

        if not user.is_active:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled")
        return self.create_token_response(user)

    # =========================================================================
    # Password Reset
    # =========================================================================

    async def request_password_reset(self, email: str) -> bool:
        """Always returns True so callers cannot probe which emails exist."""
        user = await self.get_user_by_email(email)
        if not user or not user.password_hash:
            return True
        if not await self._check_rate_limit(email, "reset"):
            return True

        code = email_service.generate_verification_code()
        await self._store_code(self.RESET_CODE_KEY, email, code)
        await email_service.send_password_reset_email(email, code)
        return True

    async def confirm_password_reset(self, email: str, code: str, new_password: str) -> bool:
        """
        Raises:
            HTTPException: 400 if code invalid/expired or password breached.
            HTTPException: 404 if user not found.
        """
        if not await self._verify_code(self.RESET_CODE_KEY, email, code):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired reset code")

        user = await self.get_user_by_email(email)
        if not user:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

        await self._reject_breached_password(new_password)
        await self._update_user(user.id, password_hash=self.hash_password(new_password))
        await redis_cache.delete(self._code_key(self.RESET_CODE_KEY, email))
        await email_login_limiter.clear(email)
        return True

    # =========================================================================
    # Profile
    # =========================================================================

    async def update_profile(self, user_id: str, **fields: Any) -> User:
        """
        Raises:
            HTTPException: 404 if user not found.
        """
        changes = {key: value for key, value in fields.items() if value is not None}
        if changes:
            await self._update_user(user_id, **changes)
        user = await self.get_user_by_id(user_id)
        if not user:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        return user

    # =========================================================================
    # User Lookup
    # =========================================================================

    async def get_user_by_id(self, user_id: str | None) -> User | None:
        if not user_id:
            return None
        async with database.session() as session:
            return await session.get(User, user_id)

    async def get_user_by_email(self, email: str) -> User | None:
        async with database.session() as session:
            result = await session.execute(select(User).where(User.email == email.lower()))
            return result.scalar_one_or_none()

    async def get_user_by_phone(self, phone: str) -> User | None:
        async with database.session() as session:
            result = await session.execute(select(User).where(User.phone == phone).limit(1))
            return result.scalar_one_or_none()

    # =========================================================================
    # Private Helpers
    # =========================================================================

    def create_token_response(self, user: User) -> TokenResponse:
        return TokenResponse(
            access_token=jwt_service.create_access_token(
                user.id,
                user.email,
                is_admin=user.is_admin,
                membership_tier=user.membership_tier,
            ),
            refresh_token=jwt_service.create_refresh_token(user.id),
            token_type="bearer",
            expires_in=jwt_service.get_token_expiry_seconds(),
        )

    async def _get_user_by_google_id(self, google_id: str) -> User | None:
        async with database.session() as session:
            result = await session.execute(select(User).where(User.google_id == google_id))
            return result.scalar_one_or_none()

    async def _create_user(
        self,
        email: str,
        password_hash: str | None = None,
        google_id: str | None = None,
        email_verified: bool = False,
        display_name: str | None = None,
        phone: str | None = None,
    ) -> User:
        user = User(
            email=email.lower(),
            password_hash=password_hash,
            google_id=google_id,
            email_verified=email_verified,
            display_name=display_name,
            phone=phone,
        )
        async with database.session() as session:
            session.add(user)
            await session.commit()
            await session.refresh(user)
        logger.info("Created new user: %s", user.id)
        return user

    async def _update_user(self, user_id: str, **kwargs: Any) -> None:
        async with database.session() as session:
            await session.execute(update(User).where(User.id == user_id).values(**kwargs))
            await session.commit()

    def _code_key(self, template: str, email: str) -> str:
        return template.format(email=email.lower())

    async def _store_code(self, template: str, email: str, code: str) -> None:
        stored = await redis_cache.set_json(
            self._code_key(template, email),
            {"code": code, "attempts": 0},
            settings.VERIFICATION_CODE_EXPIRE_MINUTES * 60,
        )
        if not stored:
            logger.warning("Could not store code for %s - Redis unavailable", email)

    async def _verify_code(self, template: str, email: str, code: str) -> bool:
        key = self._code_key(template, email)
        data = await redis_cache.get_json(key)
        if not data:
            return False

        attempts = data.get("attempts", 0)
        if attempts >= settings.VERIFICATION_MAX_ATTEMPTS:
            await redis_cache.delete(key)
            return False

        data["attempts"] = attempts + 1
        await redis_cache.set_json(key, data, settings.VERIFICATION_CODE_EXPIRE_MINUTES * 60)
        return data.get("code") == code

    async def _check_rate_limit(self, email: str, action: str) -> bool:
        """True if the action may proceed; allows when Redis is unavailable."""
        if not redis_cache.is_available:
            return True
        key = self.RATE_LIMIT_KEY.format(email=email.lower(), action=action)
        if await redis_cache.get_json(key):
            return False
        await redis_cache.set_json(key, 1, settings.VERIFICATION_RATE_LIMIT_SECONDS)
        return True


# Global instance
auth_service = AuthService()

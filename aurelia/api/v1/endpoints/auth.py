"""
Authentication API endpoints.

Provides member registration, login, email verification, Google sign-in,
password reset, the sign-in page's IP lockout check and the password
breach check.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from aurelia.api.deps import get_current_member, require_user_auth_enabled
from aurelia.core.security import get_client_ip
from aurelia.models import User
from aurelia.schemas.auth import (
    GoogleAuthRequest,
    LoginRateLimitRequest,
    LoginRateLimitResponse,
    LoginRequest,
    MessageResponse,
    PasswordCheckRequest,
    PasswordCheckResponse,
    PasswordResetConfirmRequest,
    PasswordResetRequest,
    ProfileUpdateRequest,
    RefreshTokenRequest,
    RegisterRequest,
    RegisterResponse,
    ResendVerificationRequest,
    TokenResponse,
    UserInfo,
    VerifyEmailRequest,
)
from aurelia.services.audit_service import audit_service
from aurelia.services.auth_service import auth_service
from aurelia.services.login_rate_limit import RateLimitStatus, ip_login_limiter
from aurelia.services.password_breach import breach_checker

router = APIRouter()


def _user_info(user: User) -> UserInfo:
    return UserInfo(**{key: value for key, value in user.to_dict().items() if key in UserInfo.model_fields})


# =============================================================================
# Registration
# =============================================================================


@router.post(
    "/register",
    response_model=RegisterResponse,
    dependencies=[Depends(require_user_auth_enabled)],
)
async def register(request: RegisterRequest) -> RegisterResponse:
    """
    Register a new member account.

    A 6-digit verification code is emailed to the address. The member must
    verify before logging in.

    **Password Requirements:**
    - Minimum 8 characters
    - At least one letter
    - At least one digit
    - Not found in known data breaches (when ENABLE_BREACH_CHECK is on)
    """
    user = await auth_service.register(
        email=request.email,
        password=request.password,
        display_name=request.display_name,
        phone=request.phone,
    )
    return RegisterResponse(user_id=user.id, email=user.email)


# =============================================================================
# Email Verification
# =============================================================================


@router.post(
    "/verify-email",
    response_model=MessageResponse,
    dependencies=[Depends(require_user_auth_enabled)],
)
async def verify_email(request: VerifyEmailRequest) -> MessageResponse:
    """
    Verify email address with a 6-digit code.

    Codes expire after 15 minutes and allow maximum 3 attempts.
    """
    await auth_service.verify_email(email=request.email, code=request.code)
    return MessageResponse(message="Email verified successfully")


@router.post(
    "/resend-verification",
    response_model=MessageResponse,
    dependencies=[Depends(require_user_auth_enabled)],
)
async def resend_verification(request: ResendVerificationRequest) -> MessageResponse:
    """Resend the verification email. Rate limited to 1 email per minute."""
    await auth_service.resend_verification(email=request.email)
    return MessageResponse(message="If the account exists, a new code has been sent")


# =============================================================================
# Login
# =============================================================================


@router.post(
    "/login",
    response_model=TokenResponse,
    dependencies=[Depends(require_user_auth_enabled)],
)
async def login(request: LoginRequest) -> TokenResponse:
    """
    Login with email and password.

    After 5 failed attempts within an hour the email is locked for 15
    minutes and the endpoint returns 429 with a ``Retry-After`` header.

    **Using the token:**
    ```
    Authorization: Bearer eyJ...
    ```
    """
    return await auth_service.login(email=request.email, password=request.password)


@router.post(
    "/refresh",
    response_model=TokenResponse,
    dependencies=[Depends(require_user_auth_enabled)],
)
async def refresh_token(request: RefreshTokenRequest) -> TokenResponse:
    """Exchange a refresh token for a new access token."""
    return await auth_service.refresh_token(refresh_token=request.refresh_token)


@router.post("/login-rate-limit", response_model=LoginRateLimitResponse, response_model_by_alias=True)
async def login_rate_limit(body: LoginRateLimitRequest, request: Request) -> LoginRateLimitResponse:
    """
    IP-based login lockout used by the sign-in page.

    **Actions:**
    - `check`: current status for the caller's IP
    - `record_failed`: count a failed attempt (requires `email`)
    - `record_success`: reset the counter after a successful sign-in
    - `clear`: reset the counter
    """
    ip = get_client_ip(request)
    user_agent = request.headers.get("user-agent")

    message = None
    if body.action == "check":
        result = await ip_login_limiter.check(ip)
        if result.is_limited:
            message = f"Too many login attempts. Please try again in {result.cooldown_minutes} minutes."
    elif body.action == "record_failed":
        if not body.email:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email is required")
        await audit_service.record_login_attempt(ip, body.email, success=False, user_agent=user_agent)
        result = await ip_login_limiter.record_failure(ip)
        if result.is_limited:
            message = (
                "Account locked due to too many failed attempts. "
                f"Please try again in {result.cooldown_minutes} minutes."
            )
        else:
            message = f"{result.attempts_remaining} attempts remaining"
    elif body.action == "record_success":
        await audit_service.record_login_attempt(ip, body.email, success=True, user_agent=user_agent)
        result = await ip_login_limiter.record_success(ip)
    elif body.action == "clear":
        await ip_login_limiter.clear(ip)
        result = RateLimitStatus(is_limited=False, attempts_remaining=ip_login_limiter.policy.max_attempts)
    else:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid action")

    return LoginRateLimitResponse(
        is_limited=result.is_limited,
        attempts_remaining=result.attempts_remaining,
        cooldown_seconds=result.cooldown_seconds,
        lockout_until=result.lockout_until.isoformat() if result.lockout_until else None,
        message=message,
    )


# =============================================================================
# Google OAuth
# =============================================================================


@router.post(
    "/google",
    response_model=TokenResponse,
    dependencies=[Depends(require_user_auth_enabled)],
)
async def google_auth(request: GoogleAuthRequest) -> TokenResponse:
    """
    Authenticate or register via Google sign-in.

    Accepts the ID token from client-side Google Sign-In. A new member is
    created on first sign-in; an existing account with the same email is
    linked.
    """
    return await auth_service.google_auth(request.id_token)


# =============================================================================
# Password Reset / breach check
# =============================================================================


@router.post(
    "/password-reset",
    response_model=MessageResponse,
    dependencies=[Depends(require_user_auth_enabled)],
)
async def request_password_reset(request: PasswordResetRequest) -> MessageResponse:
    """
    Request a password reset code.

    The response is the same whether or not the email exists.
    """
    await auth_service.request_password_reset(email=request.email)
    return MessageResponse(message="If the account exists, a reset code has been sent")


@router.post(
    "/password-reset/confirm",
    response_model=MessageResponse,
    dependencies=[Depends(require_user_auth_enabled)],
)
async def confirm_password_reset(request: PasswordResetConfirmRequest) -> MessageResponse:
    await auth_service.confirm_password_reset(
        email=request.email,
        code=request.code,
        new_password=request.new_password,
    )
    return MessageResponse(message="Password updated successfully")


@router.post("/password-check", response_model=PasswordCheckResponse)
async def password_check(request: PasswordCheckRequest) -> PasswordCheckResponse:
    """
    Check a password against known data breaches.

    Only a 5-character hash prefix leaves the server. When the breach
    database is unreachable the password is reported as not breached with
    `checked=false`.
    """
    result = await breach_checker.check(request.password)
    return PasswordCheckResponse(breached=result.breached, count=result.count, checked=result.checked)


# =============================================================================
# Current User
# =============================================================================


@router.get("/me", response_model=UserInfo, dependencies=[Depends(require_user_auth_enabled)])
async def get_current_user_info(user: User = Depends(get_current_member)) -> UserInfo:
    """
    Get information about the currently authenticated member.

    **Headers:**
    ```
    Authorization: Bearer eyJ...
    ```
    """
    return _user_info(user)


@router.patch("/me", response_model=UserInfo, dependencies=[Depends(require_user_auth_enabled)])
async def update_current_user(request: ProfileUpdateRequest, user: User = Depends(get_current_member)) -> UserInfo:
    updated = await auth_service.update_profile(user.id, display_name=request.display_name, phone=request.phone)
    return _user_info(updated)

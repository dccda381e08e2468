"""
Pydantic schemas for authentication API requests and responses.
"""

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


def _check_password_strength(v: str) -> str:
    if len(v) < 8:
        raise ValueError("Password must be at least 8 characters")
    if not any(c.isdigit() for c in v):
        raise ValueError("Password must contain at least one digit")
    if not any(c.isalpha() for c in v):
        raise ValueError("Password must contain at least one letter")
    return v


# =============================================================================
# Registration
# =============================================================================


class RegisterRequest(BaseModel):
    """Request to register a new member account with email and password."""

    email: EmailStr
    password: str = Field(..., min_length=8, description="Password (minimum 8 characters)")
    display_name: str | None = Field(None, max_length=255, description="Display name")
    phone: str | None = Field(None, max_length=32, description="Mobile number in E.164 format")

    @field_validator("password")
    @classmethod
    def validate_password_strength(cls, v: str) -> str:
        return _check_password_strength(v)


class RegisterResponse(BaseModel):
    user_id: str
    email: str
    message: str = "Verification email sent. Please check your inbox."


# =============================================================================
# Email Verification
# =============================================================================


class VerifyEmailRequest(BaseModel):
    email: EmailStr
    code: str = Field(..., min_length=6, max_length=6, description="6-digit verification code")


class ResendVerificationRequest(BaseModel):
    email: EmailStr


# =============================================================================
# Login
# =============================================================================


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    """Response containing authentication tokens."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Access token expiry in seconds")


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class GoogleAuthRequest(BaseModel):
    id_token: str = Field(..., description="Google ID token from client-side sign-in")


# =============================================================================
# Login rate limit (IP based, called by the sign-in page)
# =============================================================================


class LoginRateLimitRequest(BaseModel):
    action: str | None = Field(None, description="check, record_failed, record_success or clear")
    email: EmailStr | None = None


class LoginRateLimitResponse(BaseModel):
    """Rate-limit status; serialized in camelCase for the sign-in page."""

    model_config = ConfigDict(populate_by_name=True)

    is_limited: bool = Field(..., alias="isLimited")
    attempts_remaining: int = Field(..., alias="attemptsRemaining")
    cooldown_seconds: int = Field(0, alias="cooldownSeconds")
    lockout_until: str | None = Field(None, alias="lockoutUntil")
    message: str | None = None


# =============================================================================
# Password Reset / breach check
# =============================================================================


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetConfirmRequest(BaseModel):
    email: EmailStr
    code: str = Field(..., min_length=6, max_length=6, description="6-digit reset code")
    new_password: str = Field(..., min_length=8, description="New password (minimum 8 characters)")

    @field_validator("new_password")
    @classmethod
    def validate_password_strength(cls, v: str) -> str:
        return _check_password_strength(v)


class PasswordCheckRequest(BaseModel):
    password: str = Field(..., min_length=1, max_length=1024)


class PasswordCheckResponse(BaseModel):
    breached: bool
    count: int = 0
    checked: bool = Field(True, description="False when the breach database could not be reached")


# =============================================================================
# User Info
# =============================================================================


class UserInfo(BaseModel):
    """Current member information (returned by /auth/me)."""

    id: str
    email: str
    email_verified: bool
    google_linked: bool = Field(..., description="Whether Google sign-in is linked")
    display_name: str | None
    phone: str | None = None
    membership_tier: str | None = None
    trial_ends_at: str | None = None
    created_at: str | None
    is_admin: bool = False


class ProfileUpdateRequest(BaseModel):
    display_name: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=32)


class MessageResponse(BaseModel):
    """Generic message response."""

    success: bool = True
    message: str

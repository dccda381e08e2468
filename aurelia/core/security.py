"""
Security utilities for API authentication and user identity tracking.

Supported authentication methods:
1. JWT Bearer token (member and admin sessions)
2. Service API key (scheduled jobs and internal automation)
3. User identity via X-User-ID header (only when user auth is disabled)

Authentication priority:
1. JWT Bearer token (if present and valid)
2. Service key + X-User-ID (if service key matches)
3. X-User-ID only (if auth disabled)
"""

import hashlib
import hmac
from dataclasses import dataclass

from fastapi import Header, HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from aurelia.core.config import settings

service_key_header = APIKeyHeader(name="X-Service-Key", auto_error=False)
user_id_header = APIKeyHeader(name="X-User-ID", auto_error=False)


@dataclass
class UserContext:
    """
    Represents the current caller's identity and authentication state.

    Attributes:
        user_id: Unique identifier for the user
        auth_enabled: Whether any authentication is enabled
        is_authenticated: Whether the caller provided valid credentials
        auth_method: How the caller was authenticated (jwt, service_key, header, none)
        email: User's email (only set for JWT auth)
        is_admin: Whether user has admin privileges
    """

    user_id: str | None
    auth_enabled: bool
    is_authenticated: bool
    auth_method: str = "none"  # jwt, service_key, header, none
    email: str | None = None
    is_admin: bool = False

    @property
    def is_jwt_authenticated(self) -> bool:
        """Check if user is authenticated via JWT."""
        return self.auth_method == "jwt"

    @property
    def is_service(self) -> bool:
        return self.auth_method == "service_key"


def _hash_api_key(api_key: str) -> str:
    """Create a deterministic caller ID from a service key without storing the key."""
    return hashlib.sha256(api_key.encode()).hexdigest()[:32]


def _extract_bearer_token(authorization: str | None) -> str | None:
    """Extract Bearer token from Authorization header."""
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def _service_key_matches(candidate: str | None) -> bool:
    expected = settings.SERVICE_API_KEY
    if not expected or not candidate:
        return False
    return hmac.compare_digest(candidate.encode(), expected.encode())


def get_client_ip(request: Request) -> str:
    """
    Resolve the originating client IP.

    Checks the CDN header first, then the first hop of X-Forwarded-For,
    then X-Real-IP, and finally the socket peer address.
    """
    headers = request.headers
    cf_ip = headers.get("cf-connecting-ip")
    if cf_ip:
        return cf_ip.strip()
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


async def get_current_user(
    service_key: str | None = Security(service_key_header),
    user_id: str | None = Security(user_id_header),
    authorization: str | None = Header(None),
) -> UserContext:
    """
    Extract and validate the current caller's identity.

    Returns:
        UserContext with user identity and authentication state.

    Raises:
        HTTPException: 401/403 if authentication required but credentials invalid.
    """
    service_auth_enabled = settings.SERVICE_API_KEY is not None
    jwt_auth_enabled = settings.ENABLE_USER_AUTH and settings.JWT_SECRET_KEY is not None
    auth_enabled = service_auth_enabled or jwt_auth_enabled

    bearer_token = _extract_bearer_token(authorization)

    # PRIORITY 1: JWT Bearer token
    if jwt_auth_enabled and bearer_token:
        # Import here to avoid circular imports
        from aurelia.services.jwt_service import jwt_service

        payload = jwt_service.verify_access_token(bearer_token)
        if payload:
            return UserContext(
                user_id=payload.get("sub"),
                auth_enabled=True,
                is_authenticated=True,
                auth_method="jwt",
                email=payload.get("email"),
                is_admin=payload.get("is_admin", False),
            )
        if not _service_key_matches(service_key):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired access token",
                headers={"WWW-Authenticate": "Bearer"},
            )

    # PRIORITY 2: Service key
    if service_auth_enabled and service_key is not None:
        if _service_key_matches(service_key):
            return UserContext(
                user_id=user_id if user_id else _hash_api_key(service_key),
                auth_enabled=True,
                is_authenticated=True,
                auth_method="service_key",
                is_admin=True,
            )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Could not validate credentials",
        )

    # PRIORITY 3: No auth configured - trust X-User-ID (development only)
    if not auth_enabled:
        return UserContext(
            user_id=user_id,
            auth_enabled=False,
            is_authenticated=user_id is not None,
            auth_method="header" if user_id else "none",
        )

    return UserContext(user_id=None, auth_enabled=True, is_authenticated=False)


async def get_optional_user(
    user_ctx: UserContext = Security(get_current_user),
) -> UserContext:
    """Dependency for public endpoints that personalize output when a user is known."""
    return user_ctx


async def require_authenticated_user(
    user_ctx: UserContext = Security(get_current_user),
) -> UserContext:
    """
    Dependency that requires an authenticated user.

    Raises:
        HTTPException: 401 if not authenticated.
    """
    if not user_ctx.is_authenticated or not user_ctx.user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_ctx


async def require_admin_user(
    user_ctx: UserContext = Security(get_current_user),
) -> UserContext:
    """
    Dependency that requires an admin user.

    Raises:
        HTTPException: 401 if not authenticated.
        HTTPException: 403 if not admin.
    """
    if not user_ctx.is_authenticated:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    if not user_ctx.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user_ctx


async def require_service_key(
    service_key: str | None = Security(service_key_header),
) -> str:
    """
    Dependency for scheduled jobs.

    Raises:
        HTTPException: 503 if no service key is configured, 403 if it does not match.
    """
    if not settings.SERVICE_API_KEY:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service key not configured",
        )
    if not _service_key_matches(service_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Could not validate credentials",
        )
    return service_key

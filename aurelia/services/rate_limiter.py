"""
API rate limiting.

Fixed-window counters in Redis. Every API request spends from the general
"api" budget (per identity, plus one shared global counter). A few public
routes that send mail or create records, such as the contact form, have a
narrower budget of their own instead.

Identity is the authenticated user id when there is one, otherwise the
client IP. Responses carry ``X-RateLimit-Limit`` and ``X-RateLimit-Remaining``
for the budget that applied.
"""

import logging
import time
from dataclasses import dataclass

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from aurelia.core.config import settings
from aurelia.core.security import get_client_ip, get_current_user
from aurelia.services.redis_cache import redis_cache

logger = logging.getLogger("aurelia.rate_limit")


@dataclass(frozen=True)
class ActionLimit:
    """A narrower budget for one route, matched on method and path under the API prefix."""

    action: str
    method: str
    path: str
    limit: int
    window_seconds: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0

    def headers(self) -> dict[str, str]:
        headers = {"X-RateLimit-Limit": str(self.limit), "X-RateLimit-Remaining": str(self.remaining)}
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


def seconds_left_in_window(window_seconds: int, now: float) -> int:
    remaining = window_seconds - (int(now) % window_seconds)
    return remaining if remaining > 0 else window_seconds


class RateLimiter:
    """
    Redis-backed fixed-window limiter.

    Fails open when Redis is unavailable unless ``fail_closed`` is set.
    """

    def __init__(self, window_seconds: int, global_limit: int, per_identity_limit: int, fail_closed: bool = False):
        self.window_seconds = window_seconds
        self.global_limit = global_limit
        self.per_identity_limit = per_identity_limit
        self.fail_closed = fail_closed

    async def _increment(self, keys: list[str], ttl: int) -> list[int] | None:
        """Increment each key and return the new counts, or None if Redis failed."""
        pipe = redis_cache.client.pipeline()
        for key in keys:
            pipe.incr(key)
            pipe.expire(key, ttl)
        try:
            results = await pipe.execute()
        except Exception as e:
            logger.error("Rate limit check failed: %s", e)
            return None
        return [int(count) for count in results[::2]]

    def _unavailable(self, limit: int) -> RateLimitDecision:
        if self.fail_closed:
            return RateLimitDecision(allowed=False, limit=limit, remaining=0, retry_after=self.window_seconds)
        return RateLimitDecision(allowed=True, limit=limit, remaining=limit)

    async def check(
        self,
        identity: str,
        action: ActionLimit | None = None,
        now: float | None = None,
    ) -> RateLimitDecision:
        """
        Spend one request from ``identity``'s budget for ``action`` (the
        general API budget when None) and report what is left.
        """
        limit = action.limit if action else self.per_identity_limit
        window = action.window_seconds if action else self.window_seconds

        if not redis_cache.is_available or not redis_cache.client:
            logger.error("Rate limiting storage unavailable")
            return self._unavailable(limit)

        now = time.time() if now is None else now
        window_start = (int(now) // window) * window
        keys = [f"rate:{action.action if action else 'api'}:{identity}:{window_start}"]
        if action is None:
            keys.append(f"rate:global:{window_start}")

        counts = await self._increment(keys, window + 1)
        if counts is None:
            return self._unavailable(limit)

        allowed = counts[0] <= limit
        if action is None and counts[1] > self.global_limit:
            logger.warning("Global API rate limit reached (%s requests this window)", counts[1])
            allowed = False

        return RateLimitDecision(
            allowed=allowed,
            limit=limit,
            remaining=max(0, limit - counts[0]),
            retry_after=0 if allowed else seconds_left_in_window(window, now),
        )


limiter = RateLimiter(
    window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
    global_limit=settings.RATE_LIMIT_GLOBAL_PER_MINUTE,
    per_identity_limit=settings.RATE_LIMIT_PER_USER_PER_MINUTE,
    fail_closed=settings.RATE_LIMIT_FAIL_CLOSED,
)

ACTION_LIMITS: tuple[ActionLimit, ...] = (
    ActionLimit(
        "contact_form",
        "POST",
        "/contact",
        settings.RATE_LIMIT_CONTACT_FORM,
        settings.RATE_LIMIT_CONTACT_FORM_WINDOW_SECONDS,
    ),
)

# Inbound provider webhooks are retried by the provider; never throttle them
EXEMPT_PREFIXES = ("/webhooks/", "/payments/stripe/")


def match_action(method: str, route_path: str) -> ActionLimit | None:
    for action in ACTION_LIMITS:
        if action.method == method and route_path.rstrip("/") == action.path:
            return action
    return None


async def _identity(request: Request) -> str:
    try:
        user_ctx = await get_current_user(
            service_key=request.headers.get("X-Service-Key"),
            user_id=request.headers.get("X-User-ID"),
            authorization=request.headers.get("Authorization"),
        )
    except HTTPException:
        # Auth errors surface from the route itself; throttle by IP meanwhile
        return get_client_ip(request)
    return user_ctx.user_id or get_client_ip(request)


async def rate_limit_middleware(request: Request, call_next):
    """
    Apply the matching budget to API v1 routes. Streaming requests count
    once, when they start.
    """
    path = request.url.path
    if not settings.ENABLE_RATE_LIMITING or not path.startswith(settings.API_V1_STR):
        return await call_next(request)
    route_path = path[len(settings.API_V1_STR) :]
    if route_path.startswith(EXEMPT_PREFIXES):
        return await call_next(request)

    action = match_action(request.method, route_path)
    decision = await limiter.check(await _identity(request), action)
    if not decision.allowed:
        logger.info("Rate limited %s %s (%s)", request.method, path, action.action if action else "api")
        return JSONResponse(
            status_code=429,
            content={"detail": "Rate limit exceeded. Please retry later.", "code": "RATE_LIMIT_EXCEEDED"},
            headers=decision.headers(),
        )

    response = await call_next(request)
    response.headers.update(decision.headers())
    return response

"""
Login rate limiting and lockout.

A fixed-window counter per identity (an email address or a client IP). Once
``max_attempts`` failures land inside one window the identity is locked out
for ``lockout_seconds``. The arithmetic lives in two pure functions,
``evaluate`` and ``register_failure``, so it can be tested without Redis;
``LoginRateLimiter`` stores the state as JSON in Redis and fails open when
Redis is unavailable.
"""

import logging
import math
import time
from dataclasses import asdict, dataclass, replace
from datetime import UTC, datetime
from typing import Any

from aurelia.core.config import settings
from aurelia.services.redis_cache import redis_cache

logger = logging.getLogger("aurelia.login_rate_limit")


@dataclass(frozen=True)
class LoginRateLimitPolicy:
    max_attempts: int
    window_seconds: int
    lockout_seconds: int


@dataclass(frozen=True)
class LimiterState:
    """Stored per identity. Timestamps are epoch seconds."""

    attempts: int = 0
    window_start: float | None = None
    lockout_until: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "LimiterState":
        if not data:
            return cls()
        return cls(
            attempts=int(data.get("attempts", 0)),
            window_start=data.get("window_start"),
            lockout_until=data.get("lockout_until"),
        )


@dataclass(frozen=True)
class RateLimitStatus:
    is_limited: bool
    attempts_remaining: int
    cooldown_seconds: int = 0
    lockout_until: datetime | None = None

    @property
    def cooldown_minutes(self) -> int:
        return math.ceil(self.cooldown_seconds / 60)


def _lockout_active(state: LimiterState, now: float) -> bool:
    return state.lockout_until is not None and now < state.lockout_until


def _window_expired(policy: LoginRateLimitPolicy, state: LimiterState, now: float) -> bool:
    return state.window_start is None or now - state.window_start >= policy.window_seconds


def evaluate(policy: LoginRateLimitPolicy, state: LimiterState, now: float) -> RateLimitStatus:
    """Current status of an identity; does not mutate anything."""
    if _lockout_active(state, now):
        return RateLimitStatus(
            is_limited=True,
            attempts_remaining=0,
            cooldown_seconds=math.ceil(state.lockout_until - now),
            lockout_until=datetime.fromtimestamp(state.lockout_until, UTC),
        )

    # An expired lockout starts a fresh window, as in register_failure
    fresh = _window_expired(policy, state, now) or state.lockout_until is not None
    attempts = 0 if fresh else state.attempts
    return RateLimitStatus(
        is_limited=False,
        attempts_remaining=max(0, policy.max_attempts - attempts),
    )


def register_failure(policy: LoginRateLimitPolicy, state: LimiterState, now: float) -> LimiterState:
    """
    Count one failed attempt.

    An active lockout is left untouched (retrying while locked does not
    extend it). An expired window or lockout starts a fresh window.
    """
    if _lockout_active(state, now):
        return state

    if _window_expired(policy, state, now) or state.lockout_until is not None:
        state = LimiterState(attempts=0, window_start=now)

    attempts = state.attempts + 1
    lockout_until = now + policy.lockout_seconds if attempts >= policy.max_attempts else None
    return replace(state, attempts=attempts, lockout_until=lockout_until)


class LoginRateLimiter:
    """
    Redis-backed limiter for one scope ("email" or "ip").

    Keys: ``login:{scope}:{identity}`` with TTL window + lockout, so stale
    counters disappear on their own.
    """

    def __init__(self, scope: str, policy: LoginRateLimitPolicy):
        self.scope = scope
        self.policy = policy

    def _key(self, identity: str) -> str:
        return f"login:{self.scope}:{identity.strip().lower()}"

    @property
    def _ttl(self) -> int:
        return self.policy.window_seconds + self.policy.lockout_seconds

    async def _load(self, identity: str) -> LimiterState:
        return LimiterState.from_dict(await redis_cache.get_json(self._key(identity)))

    def _open_status(self) -> RateLimitStatus:
        return RateLimitStatus(is_limited=False, attempts_remaining=self.policy.max_attempts)

    async def check(self, identity: str, now: float | None = None) -> RateLimitStatus:
        if not redis_cache.is_available:
            return self._open_status()
        state = await self._load(identity)
        return evaluate(self.policy, state, now if now is not None else time.time())

    async def record_failure(self, identity: str, now: float | None = None) -> RateLimitStatus:
        if not redis_cache.is_available:
            logger.warning("Login limiter storage unavailable - %s attempts not counted", self.scope)
            return self._open_status()

        now = now if now is not None else time.time()
        state = register_failure(self.policy, await self._load(identity), now)
        await redis_cache.set_json(self._key(identity), state.to_dict(), self._ttl)

        result = evaluate(self.policy, state, now)
        if result.is_limited:
            logger.warning("Login lockout for %s %s (%ss)", self.scope, identity, result.cooldown_seconds)
        return result

    async def record_success(self, identity: str) -> RateLimitStatus:
        await self.clear(identity)
        return self._open_status()

    async def clear(self, identity: str) -> None:
        await redis_cache.delete(self._key(identity))


email_login_limiter = LoginRateLimiter(
    "email",
    LoginRateLimitPolicy(
        max_attempts=settings.LOGIN_RATE_LIMIT_ATTEMPTS,
        window_seconds=settings.LOGIN_RATE_LIMIT_WINDOW_SECONDS,
        lockout_seconds=settings.LOGIN_LOCKOUT_SECONDS,
    ),
)

ip_login_limiter = LoginRateLimiter(
    "ip",
    LoginRateLimitPolicy(
        max_attempts=settings.IP_LOGIN_RATE_LIMIT_ATTEMPTS,
        window_seconds=settings.IP_LOGIN_RATE_LIMIT_WINDOW_SECONDS,
        lockout_seconds=settings.IP_LOGIN_LOCKOUT_SECONDS,
    ),
)

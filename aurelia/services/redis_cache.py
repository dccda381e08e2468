"""
Redis cache service for short-lived state.

Holds login limiter windows, verification codes, and per-visitor lead
signals between page views. Everything stored here is disposable: when Redis
is not configured the callers degrade (limiters fail open, lead tracking
falls back to the database row).
"""

import json
import logging
from typing import Any

import redis.asyncio as aioredis

from aurelia.core.config import settings

logger = logging.getLogger("aurelia.redis")


class RedisCache:
    """
    Async Redis wrapper with JSON helpers.

    All methods return a neutral value (None/False/0) when Redis is
    unavailable or a command fails, so callers never need their own
    try/except around cache access.
    """

    def __init__(self):
        self.client: aioredis.Redis | None = None
        self._connected = False

    @property
    def is_available(self) -> bool:
        """Check if Redis is configured and connected."""
        return self._connected and self.client is not None

    async def connect(self) -> bool:
        """
        Establish connection to Redis.

        Returns:
            True if connection successful, False otherwise.
        """
        if not settings.REDIS_URL:
            logger.warning("REDIS_URL not configured - rate limiting and lead caching degraded")
            return False

        try:
            self.client = await aioredis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                max_connections=20,
            )
            await self.client.ping()
            self._connected = True
            logger.info("Connected to Redis at %s", settings.sanitize_url(settings.REDIS_URL))
            return True
        except Exception as e:
            logger.error("Failed to connect to Redis: %s", e)
            self.client = None
            self._connected = False
            return False

    async def close(self) -> None:
        """Close Redis connection."""
        if self.client:
            await self.client.aclose()
            self._connected = False
            logger.info("Redis connection closed")

    async def get_json(self, key: str) -> Any | None:
        if not self.is_available:
            return None
        try:
            data = await self.client.get(key)  # type: ignore[union-attr]
            return json.loads(data) if data else None
        except Exception as e:
            logger.error("Redis get error for %s: %s", key, e)
            return None

    async def set_json(self, key: str, value: Any, ttl: int) -> bool:
        """
        Store a JSON-serializable value with a TTL in seconds.

        Returns:
            True if stored, False otherwise.
        """
        if not self.is_available:
            return False
        try:
            await self.client.setex(key, ttl, json.dumps(value))  # type: ignore[union-attr]
            return True
        except Exception as e:
            logger.error("Redis set error for %s: %s", key, e)
            return False

    async def delete(self, key: str) -> bool:
        if not self.is_available:
            return False
        try:
            result = await self.client.delete(key)  # type: ignore[union-attr]
            return result > 0
        except Exception as e:
            logger.error("Redis delete error for %s: %s", key, e)
            return False

    async def ttl(self, key: str) -> int:
        """Remaining TTL in seconds (0 when the key is missing or Redis is down)."""
        if not self.is_available:
            return 0
        try:
            remaining = await self.client.ttl(key)  # type: ignore[union-attr]
            return max(int(remaining), 0)
        except Exception as e:
            logger.error("Redis TTL error for %s: %s", key, e)
            return 0


# Global instance
redis_cache = RedisCache()

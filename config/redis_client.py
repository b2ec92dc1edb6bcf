"""
config/redis_client.py
Async Redis connection plus the two things the API keeps there:
revoked admin tokens and per-IP request counters.
"""

from typing import Optional

import redis.asyncio as aioredis

from config.settings import settings


# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None

REVOKED_PREFIX = "jwt_revoked:"
RATE_PREFIX = "rate:"


async def init_redis() -> None:
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
    )
    await redis_client.ping()


async def close_redis() -> None:
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None


def get_redis() -> aioredis.Redis:
    """FastAPI dependency to get Redis client."""
    if not redis_client:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis_client


class TokenDenyList:
    """Revoked token ids, each kept only until the token would have expired anyway."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    async def revoke(self, jti: str, ttl_seconds: int) -> None:
        await self.client.setex(f"{REVOKED_PREFIX}{jti}", ttl_seconds, "1")

    async def is_revoked(self, jti: str) -> bool:
        return bool(await self.client.exists(f"{REVOKED_PREFIX}{jti}"))


class RateLimiter:
    """Fixed-window counter per key."""

    def __init__(self, client: aioredis.Redis, limit: int, window_seconds: int = 60):
        self.client = client
        self.limit = limit
        self.window_seconds = window_seconds

    async def hit(self, key: str) -> bool:
        """Count one request; False once the window's limit is exceeded."""
        pipe = self.client.pipeline()
        pipe.incr(f"{RATE_PREFIX}{key}")
        pipe.expire(f"{RATE_PREFIX}{key}", self.window_seconds, nx=True)
        count, _ = await pipe.execute()
        return count <= self.limit

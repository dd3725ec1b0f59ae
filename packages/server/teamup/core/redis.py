"""Redis connection management."""

from __future__ import annotations

import redis.asyncio as redis

from teamup.core.config import get_settings

_redis_pool: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    """Get or create the shared Redis client (fan-out, presence, revocation)."""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = redis.from_url(
            get_settings().redis_url,
            decode_responses=True,
        )
    return _redis_pool


async def redis_is_ready() -> bool:
    try:
        client = await get_redis()
        return bool(await client.ping())
    except (redis.RedisError, OSError):
        return False


async def close_redis() -> None:
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.aclose()
        _redis_pool = None

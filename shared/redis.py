"""Redis connection helper used for the scheduler tick lease."""

from __future__ import annotations

import redis.asyncio as redis

from shared.config import get_settings

_redis_client: redis.Redis | None = None


async def get_redis() -> redis.Redis | None:
    """Get or create the shared Redis client; ``None`` when no URL is configured."""
    global _redis_client
    if _redis_client is None:
        settings = get_settings()
        if not settings.redis_url:
            return None
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None

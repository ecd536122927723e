"""
Cache Service
=============

Thin async Redis wrapper for job-listing cache eviction.  Listings are
cached under keys matching ``settings.job_cache_pattern``; any transition
that changes what a listing shows evicts them by pattern.
"""

from __future__ import annotations

import logging

from redis.asyncio import Redis

from src.core.config import settings

logger = logging.getLogger(__name__)

_redis_client: Redis | None = None


async def get_redis() -> Redis:
    """Return a shared async Redis client, creating it lazily."""
    global _redis_client
    if _redis_client is None:
        _redis_client = Redis.from_url(settings.redis_url, decode_responses=True)
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


class RedisCache:
    """Pattern-based key eviction backed by Redis ``SCAN``."""

    def __init__(self, client: Redis | None = None) -> None:
        self._client = client

    async def _redis(self) -> Redis:
        if self._client is None:
            self._client = await get_redis()
        return self._client

    async def delete_pattern(self, pattern: str) -> int:
        redis = await self._redis()
        deleted = 0
        batch: list[str] = []
        async for key in redis.scan_iter(match=pattern, count=500):
            batch.append(key)
            if len(batch) >= 500:
                deleted += await redis.delete(*batch)
                batch = []
        if batch:
            deleted += await redis.delete(*batch)
        logger.debug("Evicted %d cache keys matching %s", deleted, pattern)
        return deleted

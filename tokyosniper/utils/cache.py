"""Best-effort Redis cache.

Every operation degrades to "no cache" when Redis is unreachable or returns
something unreadable; callers never see a cache exception.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import redis.asyncio as redis_asyncio
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

DEFAULT_REDIS_URL = "redis://redis:6379/0"
CACHE_ERRORS = (RedisError, OSError, ValueError, TypeError)

T = TypeVar("T")


class Cache:
    def __init__(self, client: redis_asyncio.Redis) -> None:
        self.client = client

    @classmethod
    def from_env(cls) -> "Cache":
        url = os.environ.get("REDIS_URL", DEFAULT_REDIS_URL)
        return cls(redis_asyncio.from_url(url, decode_responses=True))

    async def close(self) -> None:
        try:
            await self.client.aclose()
        except CACHE_ERRORS as exc:
            logger.warning("Cache close failed: %s", exc)

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self.client.get(key)
            if raw is None:
                return None
            return json.loads(raw)
        except CACHE_ERRORS as exc:
            logger.warning("Cache get %s failed: %s", key, exc)
            return None

    async def set(self, key: str, value: Any, *, ttl: int) -> bool:
        try:
            await self.client.set(key, json.dumps(value, default=str), ex=ttl)
        except CACHE_ERRORS as exc:
            logger.warning("Cache set %s failed: %s", key, exc)
            return False
        return True

    async def invalidate(self, *patterns: str) -> int:
        removed = 0
        try:
            for pattern in patterns:
                keys = [key async for key in self.client.scan_iter(match=pattern)]
                if keys:
                    removed += await self.client.delete(*keys)
        except CACHE_ERRORS as exc:
            logger.warning("Cache invalidation %s failed: %s", patterns, exc)
        return removed


async def cached(cache: Cache | None, key: str, ttl: int, fn: Callable[[], Awaitable[T]]) -> T | Any:
    """Read-through helper: return the cached value or compute and store it."""
    if cache is not None:
        hit = await cache.get(key)
        if hit is not None:
            return hit
    result = await fn()
    if cache is not None:
        await cache.set(key, result, ttl=ttl)
    return result

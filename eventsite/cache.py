"""Redis cache-aside store for user profiles and event listing pages.

A cache outage never fails a request: reads become misses and writes are dropped.
"""

import json
from typing import Any

from redis import asyncio as aioredis

from .config import settings
from .logger import logger

USER_BY_ID_PREFIX = "user:id"
EVENTS_PAGE_PREFIX = "events:page"
SCAN_BATCH = 100


def make_cache_key(prefix: str, *parts: Any) -> str:
    """make_cache_key("events:page", 2, 10) -> "events:page:2:10"."""
    return ":".join([prefix, *(str(part) for part in parts)])


class CacheManager:
    def __init__(self):
        self._redis: aioredis.Redis | None = None

    @property
    def connected(self) -> bool:
        return self._redis is not None

    async def connect(self):
        if self.connected:
            return
        client = aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
        )
        try:
            await client.ping()
        except Exception as e:
            logger.error(f"Redis unreachable at startup, caching disabled: {e}")
            return
        self._redis = client
        logger.info("Redis cache connected")

    async def disconnect(self):
        if not self.connected:
            return
        client, self._redis = self._redis, None
        await client.aclose()
        logger.info("Redis cache disconnected")

    async def get(self, key: str) -> Any | None:
        """Decoded JSON value, or None on a miss or any Redis error."""
        if not self.connected:
            return None
        try:
            raw = await self._redis.get(key)
        except Exception as e:
            logger.error(f"Cache read failed for {key}: {e}")
            return None
        logger.debug(f"Cache {'miss' if raw is None else 'hit'}: {key}")
        return None if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        if not self.connected:
            return False
        ttl = ttl or settings.CACHE_TTL
        try:
            await self._redis.setex(key, ttl, json.dumps(value, default=str))
        except Exception as e:
            logger.error(f"Cache write failed for {key}: {e}")
            return False
        return True

    async def delete(self, *keys: str) -> bool:
        if not self.connected or not keys:
            return False
        try:
            await self._redis.delete(*keys)
        except Exception as e:
            logger.error(f"Cache delete failed for {keys}: {e}")
            return False
        return True

    async def delete_pattern(self, pattern: str) -> int:
        """Delete keys matching ``pattern`` using SCAN; returns how many went before any error."""
        if not self.connected:
            return 0
        deleted = 0
        batch: list[str] = []
        try:
            async for key in self._redis.scan_iter(match=pattern, count=SCAN_BATCH):
                batch.append(key)
                if len(batch) == SCAN_BATCH:
                    await self._redis.delete(*batch)
                    deleted += len(batch)
                    batch = []
            if batch:
                await self._redis.delete(*batch)
                deleted += len(batch)
        except Exception as e:
            logger.error(f"Cache pattern delete failed for {pattern}: {e}")
        return deleted

    async def health_check(self) -> bool:
        if not self.connected:
            return False
        try:
            return bool(await self._redis.ping())
        except Exception:
            return False


cache_manager = CacheManager()


async def invalidate_user(user_id: int) -> None:
    if settings.CACHE_ENABLED:
        await cache_manager.delete(make_cache_key(USER_BY_ID_PREFIX, user_id))


async def invalidate_event_pages() -> None:
    """Drop every cached events page; any event write can shift page contents."""
    if settings.CACHE_ENABLED:
        await cache_manager.delete_pattern(f"{EVENTS_PAGE_PREFIX}:*")

import json
import logging

import redis.asyncio as redis

from blog.config import settings

logger = logging.getLogger(__name__)


class CacheManager:
    """
    Cache-aside store for the public post reads.

    Two key families are written by ``post_service``:

    - ``posts:list:<page>:<limit>:<filters>`` holds one page of
      ``GET /api/posts`` for a given category/tags/search combination
      (``PostFilters.cache_key``), kept for ``CACHE_TTL_LIST`` seconds.
    - ``posts:detail:<slug>`` holds the body of ``GET /api/posts/<slug>``,
      kept for ``CACHE_TTL_DETAIL`` seconds.

    Comments are never cached.  Every public method tolerates a missing or
    failing Redis: reads return None and writes are skipped, so requests
    fall through to the database.
    """

    def __init__(self) -> None:
        self._redis: redis.Redis | None = None
        self._hits: int = 0
        self._misses: int = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection pool.  Called once at application startup."""
        self._redis = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        try:
            await self._redis.ping()
            logger.info("Redis connected: %s", settings.REDIS_URL)
        except Exception as exc:  # pragma: no cover
            logger.warning("Redis ping failed, post cache disabled: %s", exc)
            await self._redis.aclose()
            self._redis = None

    async def disconnect(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    # ------------------------------------------------------------------
    # Core cache operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> dict | list | None:
        if not self._redis:
            self._misses += 1
            return None
        try:
            data = await self._redis.get(key)
        except Exception as exc:
            logger.debug("Cache GET error for key=%r: %s", key, exc)
            self._misses += 1
            return None
        if data is None:
            self._misses += 1
            return None
        self._hits += 1
        return json.loads(data)

    async def set(self, key: str, value: dict | list, ttl: int | None = None) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(key, json.dumps(value, default=str), ex=ttl)
        except Exception as exc:
            logger.debug("Cache SET error for key=%r: %s", key, exc)

    async def delete_pattern(self, pattern: str) -> None:
        """Delete all keys matching *pattern* using SCAN (avoids blocking KEYS)."""
        if not self._redis:
            return
        try:
            keys = [key async for key in self._redis.scan_iter(match=pattern)]
            if keys:
                await self._redis.delete(*keys)
                logger.debug("Cache invalidated %d key(s) matching %r", len(keys), pattern)
        except Exception as exc:
            logger.debug("Cache DELETE_PATTERN error for pattern=%r: %s", pattern, exc)

    # ------------------------------------------------------------------
    # Post invalidation
    # ------------------------------------------------------------------

    async def invalidate_post(self, slug: str | None = None) -> None:
        """
        Forget what a post write may have made stale.

        All ``posts:list:*`` pages go, whatever their filters: a create,
        edit or delete can add a post to, drop it from, or reorder any
        filtered page, and a page's key does not say which posts it holds.
        When *slug* is given its ``posts:detail:<slug>`` entry goes too.
        ``create_post`` passes no slug since the new post was never cached
        under its detail key.
        """
        await self.delete_pattern("posts:list:*")
        if slug is not None:
            await self.delete_pattern(f"posts:detail:{slug}")

    @property
    def stats(self) -> dict:
        total = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total * 100, 1) if total > 0 else 0.0,
        }


# Shared by every post read and write in the process.
cache = CacheManager()

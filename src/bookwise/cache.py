from __future__ import annotations
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from redis.asyncio import Redis, from_url

logger = logging.getLogger(__name__)

class CACHE_TTL:
    SHORT = 60
    MEDIUM = 300
    LONG = 900
    VERY_LONG = 3600
    DAY = 86400

class CACHE_KEYS:
    class BOOKS:
        ALL = "books:all"
        FEATURED = "books:featured"
        NEW = "books:new"
        @staticmethod
        def DETAIL(book_id: str) -> str:
            return f"books:detail:{book_id}"

    class USERS:
        ALL = "users:all"
        REQUESTS = "users:requests"
        @staticmethod
        def DETAIL(user_id: str) -> str:
            return f"users:detail:{user_id}"

    class ANALYTICS:
        DASHBOARD = "analytics:dashboard"
        TRENDS = "analytics:trends"
        TOP_BOOKS = "analytics:top-books"
        RECENT = "analytics:recent"

    class BORROW:
        RECORDS = "borrow:records"
        @staticmethod
        def USER_HISTORY(user_id: str) -> str:
            return f"borrow:user:{user_id}"

class Cache:
    """JSON values in Redis. Every failure is logged and reads as a miss,
    so a broken cache never fails a request. ``Cache(None)`` is a no-op."""

    def __init__(self, client: Optional[Redis]):
        self._redis = client

    @classmethod
    def from_url(cls, url: str | None) -> "Cache":
        if not url:
            logger.info("REDIS_URL not set; cache disabled")
            return cls(None)
        return cls(from_url(url, decode_responses=True))

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    async def aclose(self):
        if self._redis is not None:
            await self._redis.aclose()

    async def get(self, key: str) -> Any | None:
        if self._redis is None:
            return None
        try:
            raw = await self._redis.get(key)
            return json.loads(raw) if raw is not None else None
        except Exception as e:
            logger.error("cache get error for key %s: %s", key, e)
            return None

    async def set(self, key: str, value: Any, ttl: int = CACHE_TTL.MEDIUM) -> bool:
        if self._redis is None:
            return False
        try:
            await self._redis.set(key, json.dumps(value, default=str), ex=ttl)
            return True
        except Exception as e:
            logger.error("cache set error for key %s: %s", key, e)
            return False

    async def delete(self, *keys: str) -> bool:
        if self._redis is None or not keys:
            return False
        try:
            await self._redis.delete(*keys)
            return True
        except Exception as e:
            logger.error("cache delete error for keys %s: %s", keys, e)
            return False

    async def delete_pattern(self, pattern: str) -> int:
        if self._redis is None:
            return 0
        try:
            keys = [k async for k in self._redis.scan_iter(match=pattern)]
            if keys:
                await self._redis.delete(*keys)
            return len(keys)
        except Exception as e:
            logger.error("cache pattern delete error for %s: %s", pattern, e)
            return 0

    async def cache_or_fetch(self, key: str, fetch: Callable[[], Awaitable[Any]], ttl: int = CACHE_TTL.MEDIUM) -> Any:
        cached = await self.get(key)
        if cached is not None:
            logger.debug("cache hit: %s", key)
            return cached
        logger.debug("cache miss: %s", key)
        data = await fetch()
        await self.set(key, data, ttl)
        return data

    # Invalidation, one helper per entity. List caches carry filter suffixes,
    # hence the patterns.

    async def invalidate_book(self, book_id: str | None = None):
        if book_id:
            await self.delete(CACHE_KEYS.BOOKS.DETAIL(book_id))
        await self.delete_pattern(f"{CACHE_KEYS.BOOKS.ALL}*")
        await self.delete_pattern(f"{CACHE_KEYS.BOOKS.FEATURED}*")
        await self.delete_pattern(f"{CACHE_KEYS.BOOKS.NEW}*")
        await self.delete_pattern("analytics:*")

    async def invalidate_borrows(self, book_id: str | None = None, user_id: str | None = None):
        await self.invalidate_book(book_id)
        await self.delete_pattern(f"{CACHE_KEYS.BORROW.RECORDS}*")
        if user_id:
            await self.delete(CACHE_KEYS.BORROW.USER_HISTORY(user_id))
        else:
            await self.delete_pattern(CACHE_KEYS.BORROW.USER_HISTORY("*"))

    async def invalidate_user(self, user_id: str | None = None):
        if user_id:
            await self.delete(CACHE_KEYS.USERS.DETAIL(user_id), CACHE_KEYS.BORROW.USER_HISTORY(user_id))
        await self.delete_pattern("users:all*")
        await self.delete_pattern("users:requests*")
        await self.delete_pattern("analytics:*")

NULL_CACHE = Cache(None)

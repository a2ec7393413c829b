from __future__ import annotations
import logging
from typing import Dict, NamedTuple

from limits import parse, RateLimitItem
from limits.aio.strategies import MovingWindowRateLimiter
from limits.storage import storage_from_string

logger = logging.getLogger(__name__)

POLICIES: Dict[str, RateLimitItem] = {
    "api": parse("10 per 10 seconds"),
    "auth": parse("5 per minute"),
    "search": parse("20 per 10 seconds"),
    "borrow": parse("3 per minute"),
}

class RateLimitResult(NamedTuple):
    allowed: bool
    limit: int
    remaining: int
    reset_at: int

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }

class RateLimiter:
    """Sliding-window limits keyed by client identifier, one namespace per policy."""

    def __init__(self, storage_uri: str = "async+memory://", enabled: bool = True):
        self.enabled = enabled
        self._limiter = MovingWindowRateLimiter(storage_from_string(storage_uri))

    async def check(self, identifier: str, policy: str = "api") -> RateLimitResult:
        item = POLICIES[policy]
        if not self.enabled:
            return RateLimitResult(True, item.amount, item.amount, 0)
        allowed = await self._limiter.hit(item, "ratelimit", policy, identifier)
        stats = await self._limiter.get_window_stats(item, "ratelimit", policy, identifier)
        if not allowed:
            logger.info("rate limit exceeded: policy=%s client=%s", policy, identifier)
        return RateLimitResult(allowed, item.amount, max(int(stats.remaining), 0), int(stats.reset_time))

"""Fixed-window rate limiting on Redis.

Rules (requests per minute per user):
  - Trade endpoint:   TRADE_RATE_LIMIT   (default 30)
  - Payment endpoints: PAYMENT_RATE_LIMIT (default 10)

Key pattern: "ratelimit:{user_id}:{endpoint_group}". The first INCR in a
window sets the expiry; a 429 carries Retry-After with the seconds left.
"""

import logging
from collections.abc import Awaitable, Callable

from fastapi import Depends
from redis.asyncio import Redis

from src.pm_common.errors import RateLimitExceeded
from src.pm_common.redis_client import get_redis
from src.pm_gateway.auth.dependencies import get_current_user_id

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60


class RateLimiter:
    def __init__(self, redis: Redis, window_seconds: int = WINDOW_SECONDS) -> None:
        self._redis = redis
        self._window = window_seconds

    async def hit(self, user_id: str, group: str, limit: int) -> int:
        """Count one request; raise RateLimitExceeded past `limit`."""
        key = f"ratelimit:{user_id}:{group}"
        count = await self._redis.incr(key)
        if count == 1:
            await self._redis.expire(key, self._window)
        if count > limit:
            ttl = await self._redis.ttl(key)
            retry_after = ttl if ttl and ttl > 0 else self._window
            logger.warning("Rate limit hit user=%s group=%s count=%d", user_id, group, count)
            raise RateLimitExceeded(retry_after=retry_after)
        return count


def rate_limit(group: str, limit: int) -> Callable[..., Awaitable[str]]:
    """Build a dependency that enforces `limit` requests/minute and yields the user id."""

    async def _dependency(
        user_id: str = Depends(get_current_user_id),
        redis: Redis = Depends(get_redis),
    ) -> str:
        await RateLimiter(redis).hit(user_id, group, limit)
        return user_id

    return _dependency

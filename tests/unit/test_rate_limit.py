"""Unit tests for the fixed-window Redis rate limiter."""

import pytest

from src.pm_common.errors import RateLimitExceeded
from src.pm_gateway.middleware.rate_limit import RateLimiter


class CountingRedis:
    def __init__(self, ttl: int = 42) -> None:
        self.counts: dict[str, int] = {}
        self.expiries: dict[str, int] = {}
        self._ttl = ttl

    async def incr(self, key: str) -> int:
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    async def expire(self, key: str, seconds: int) -> bool:
        self.expiries[key] = seconds
        return True

    async def ttl(self, key: str) -> int:
        return self._ttl


class TestRateLimiter:
    async def test_allows_up_to_limit(self) -> None:
        redis = CountingRedis()
        limiter = RateLimiter(redis)
        for expected in range(1, 4):
            assert await limiter.hit("user-1", "payment", 3) == expected
        assert redis.expiries == {"ratelimit:user-1:payment": 60}

    async def test_rejects_past_limit_with_retry_after(self) -> None:
        limiter = RateLimiter(CountingRedis(ttl=42))
        for _ in range(3):
            await limiter.hit("user-1", "payment", 3)
        with pytest.raises(RateLimitExceeded) as exc_info:
            await limiter.hit("user-1", "payment", 3)
        assert exc_info.value.retry_after == 42

    async def test_missing_ttl_falls_back_to_window(self) -> None:
        limiter = RateLimiter(CountingRedis(ttl=-1), window_seconds=30)
        await limiter.hit("user-1", "trade", 1)
        with pytest.raises(RateLimitExceeded) as exc_info:
            await limiter.hit("user-1", "trade", 1)
        assert exc_info.value.retry_after == 30

    async def test_groups_and_users_are_separate(self) -> None:
        limiter = RateLimiter(CountingRedis())
        await limiter.hit("user-1", "trade", 1)
        assert await limiter.hit("user-1", "payment", 1) == 1
        assert await limiter.hit("user-2", "trade", 1) == 1

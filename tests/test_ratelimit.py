"""Tests for the LLM rate limiter."""

import asyncio

import pytest

from productlens.errors import RateLimitExceeded
from productlens.ratelimit import LLMRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestLLMRateLimiter:
    def test_init(self):
        limiter = LLMRateLimiter()
        assert limiter.limit == 10
        assert limiter.window == 60.0

    async def test_budget_is_enforced(self):
        """Calls beyond the budget are refused without waiting."""
        limiter = LLMRateLimiter(requests_per_window=2, clock=FakeClock())
        assert await limiter.try_acquire()
        assert await limiter.try_acquire()
        assert not await limiter.try_acquire()
        assert limiter.remaining() == 0

    async def test_window_slides(self):
        clock = FakeClock()
        limiter = LLMRateLimiter(requests_per_window=1, window=60.0, clock=clock)
        assert await limiter.try_acquire()
        clock.now += 30
        assert not await limiter.try_acquire()
        clock.now += 31
        assert await limiter.try_acquire()

    async def test_acquire_raises_when_exhausted(self):
        limiter = LLMRateLimiter(requests_per_window=1, clock=FakeClock())
        await limiter.acquire()
        with pytest.raises(RateLimitExceeded):
            await limiter.acquire()

    async def test_concurrent_callers_share_budget(self):
        limiter = LLMRateLimiter(requests_per_window=3, clock=FakeClock())
        results = await asyncio.gather(*(limiter.try_acquire() for _ in range(10)))
        assert sum(results) == 3

"""Tests for the sliding-window rate limiter."""

import pytest

from docrag.embedding.rate_limiter import SlidingWindowRateLimiter


class TestSlidingWindow:
    @pytest.mark.asyncio
    async def test_under_budget_does_not_wait(self, clock) -> None:
        limiter = SlidingWindowRateLimiter(3, clock=clock)
        for _ in range(3):
            await limiter.acquire()

        assert clock.sleeps == []
        assert limiter.in_window == 3

    @pytest.mark.asyncio
    async def test_full_window_waits_for_oldest(self, clock) -> None:
        limiter = SlidingWindowRateLimiter(3, clock=clock)
        await limiter.acquire()
        clock.advance(10)
        await limiter.acquire()
        await limiter.acquire()

        await limiter.acquire()

        assert clock.sleeps == [pytest.approx(50.0)]
        assert limiter.in_window == 3

    @pytest.mark.asyncio
    async def test_budget_holds_in_every_window(self, clock) -> None:
        limiter = SlidingWindowRateLimiter(3, clock=clock)
        stamps = []
        for _ in range(10):
            await limiter.acquire()
            stamps.append(clock.now())
            clock.advance(5)

        for t in stamps:
            in_window = [s for s in stamps if t - 60 < s <= t]
            assert len(in_window) <= 3

    @pytest.mark.asyncio
    async def test_old_requests_age_out(self, clock) -> None:
        limiter = SlidingWindowRateLimiter(2, clock=clock)
        await limiter.acquire()
        await limiter.acquire()
        clock.advance(61)

        assert limiter.in_window == 0
        await limiter.acquire()
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_reset(self, clock) -> None:
        limiter = SlidingWindowRateLimiter(1, clock=clock)
        await limiter.acquire()
        limiter.reset()

        await limiter.acquire()
        assert clock.sleeps == []

    def test_rejects_non_positive_limit(self) -> None:
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(0)

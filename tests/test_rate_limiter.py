"""Unit tests for the sliding-window rate limiter."""
import asyncio

import pytest

from polymirror.rate_limiter import SlidingWindowRateLimiter

from conftest import FakeClock, FakeSleep


@pytest.fixture
def limiter(clock, fake_sleep):
    return SlidingWindowRateLimiter(
        max_requests=5, window_seconds=60.0, clock=clock, sleep=fake_sleep
    )


class TestAdmission:
    """Admitting requests under the cap."""

    @pytest.mark.asyncio
    async def test_admits_up_to_cap_without_waiting(self, limiter, fake_sleep):
        for _ in range(5):
            await limiter.admit()

        assert fake_sleep.calls == []
        assert len(limiter._requests) == 5

    @pytest.mark.asyncio
    async def test_sixth_request_waits_for_window_to_slide(self, limiter, clock, fake_sleep):
        start = clock()
        for _ in range(5):
            await limiter.admit()

        await limiter.admit()

        assert fake_sleep.calls == [pytest.approx(60.1)]
        assert clock() >= start + 60.0
        assert len(limiter._requests) == 1

    @pytest.mark.asyncio
    async def test_wait_accounts_for_elapsed_time(self, limiter, clock, fake_sleep):
        for _ in range(5):
            await limiter.admit()
            clock.advance(10)

        await limiter.admit()

        # Oldest request is 50s old
        assert fake_sleep.calls == [pytest.approx(10.1)]

    @pytest.mark.asyncio
    async def test_never_more_than_cap_in_any_window(self, limiter, clock):
        admitted = []
        for _ in range(17):
            await limiter.admit()
            admitted.append(clock())
            clock.advance(3)

        for t in admitted:
            in_window = [a for a in admitted if t <= a < t + 60.0]
            assert len(in_window) <= 5

    @pytest.mark.asyncio
    async def test_callers_admitted_in_call_order(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(
            max_requests=1, window_seconds=1.0, clock=clock, sleep=FakeSleep(clock)
        )
        order = []

        async def caller(n):
            await limiter.admit()
            order.append(n)

        await asyncio.gather(*(caller(n) for n in range(5)))

        assert order == [0, 1, 2, 3, 4]


class TestValidation:
    """Constructor checks."""

    def test_rejects_zero_cap(self):
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(max_requests=0)

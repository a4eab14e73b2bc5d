from __future__ import annotations

import asyncio

import pytest

from conftest import FakeClock
from zip_insights.acs import NoOpRateLimiter, SlidingWindowRateLimiter


def _max_in_any_window(timestamps: list[float], window: float) -> int:
    worst = 0
    for t in timestamps:
        worst = max(worst, sum(1 for other in timestamps if t - window < other <= t))
    return worst


def test_admits_immediately_below_ceiling(clock):
    limiter = SlidingWindowRateLimiter(max_requests=3, clock=clock, sleep=clock.sleep)

    async def run():
        for _ in range(3):
            await limiter.admit()

    asyncio.run(run())

    assert clock.sleeps == []
    assert limiter.in_window() == 3


def test_waits_for_oldest_request_to_age_out():
    clock = FakeClock(start=0.0)
    limiter = SlidingWindowRateLimiter(max_requests=2, window_s=60, slack_s=0.1, clock=clock, sleep=clock.sleep)

    async def run():
        await limiter.admit()
        clock.advance(10)
        await limiter.admit()
        await limiter.admit()

    asyncio.run(run())

    # Third admission waits 60 - (10 - 0) + 0.1 seconds
    assert clock.sleeps == [pytest.approx(50.1)]
    assert limiter.timestamps == [10.0, pytest.approx(60.1)]


@pytest.mark.parametrize("extra", [1, 4, 11])
def test_ceiling_never_exceeded_sequentially(extra):
    clock = FakeClock(start=0.0)
    ceiling = 5
    limiter = SlidingWindowRateLimiter(max_requests=ceiling, clock=clock, sleep=clock.sleep)
    admitted: list[float] = []

    async def run():
        for _ in range(ceiling + extra):
            await limiter.admit()
            admitted.append(clock.now)
            clock.advance(1)

    asyncio.run(run())

    assert len(admitted) == ceiling + extra
    assert _max_in_any_window(admitted, 60.0) <= ceiling


def test_ceiling_never_exceeded_by_concurrent_callers():
    clock = FakeClock(start=0.0)
    ceiling = 3
    limiter = SlidingWindowRateLimiter(max_requests=ceiling, clock=clock, sleep=clock.sleep)
    admitted: list[float] = []

    async def worker():
        await limiter.admit()
        admitted.append(clock.now)

    async def run():
        await asyncio.gather(*(worker() for _ in range(ceiling + 7)))

    asyncio.run(run())

    assert len(admitted) == ceiling + 7
    assert _max_in_any_window(admitted, 60.0) <= ceiling


def test_try_admit_reports_wait_without_recording():
    clock = FakeClock(start=100.0)
    limiter = SlidingWindowRateLimiter(max_requests=1, window_s=60, slack_s=0.0, clock=clock)

    assert limiter.try_admit() is None
    clock.advance(15)
    assert limiter.try_admit() == pytest.approx(45.0)
    assert limiter.in_window() == 1


def test_invalid_configuration():
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(max_requests=0)
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(window_s=0)


def test_noop_limiter_never_waits():
    asyncio.run(NoOpRateLimiter().admit())

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeClock
from zip_insights.acs import RetryController, SlidingWindowRateLimiter
from zip_insights.acs.base import RateLimiter
from zip_insights.utils.errors import (
    CredentialError,
    ProviderRateLimitError,
    RequestValidationError,
    RetryExhaustedError,
    TransientNetworkError,
)


class CountingLimiter(RateLimiter):
    def __init__(self):
        self.admitted = 0

    async def admit(self) -> None:
        self.admitted += 1


class Flaky:
    """Fails `failures` times with `error`, then returns "ok"."""

    def __init__(self, failures: int, error: Exception | None = None):
        self.failures = failures
        self.error = error or TransientNetworkError("HTTP 503", status_code=503)
        self.calls: list[int] = []

    async def __call__(self, attempt: int) -> str:
        self.calls.append(attempt)
        if len(self.calls) <= self.failures:
            raise self.error
        return "ok"


def test_backoff_schedule():
    retry = RetryController(base_delay_s=1, max_delay_s=30)

    assert [retry.backoff_s(n) for n in range(1, 7)] == [0.0, 2.0, 4.0, 8.0, 16.0, 30.0]


def test_succeeds_on_last_attempt(clock):
    retry = RetryController(max_attempts=3, sleep=clock.sleep)
    op = Flaky(failures=2)

    assert asyncio.run(retry.run(op)) == "ok"
    assert op.calls == [1, 2, 3]
    assert clock.sleeps == [2.0, 4.0]


def test_first_attempt_success_does_not_sleep(clock):
    retry = RetryController(sleep=clock.sleep)
    op = Flaky(failures=0)

    assert asyncio.run(retry.run(op)) == "ok"
    assert op.calls == [1]
    assert clock.sleeps == []


def test_delay_is_capped(clock):
    retry = RetryController(max_attempts=5, base_delay_s=10, max_delay_s=25, sleep=clock.sleep)

    asyncio.run(retry.run(Flaky(failures=4)))

    assert clock.sleeps == [20.0, 25.0, 25.0, 25.0]


def test_exhaustion_carries_attempts_and_last_error(clock):
    retry = RetryController(max_attempts=3, sleep=clock.sleep)
    last = TransientNetworkError("connection reset")
    op = Flaky(failures=10, error=last)

    with pytest.raises(RetryExhaustedError) as info:
        asyncio.run(retry.run(op))

    assert info.value.attempts == 3
    assert info.value.last_error is last
    assert info.value.__cause__ is last
    assert op.calls == [1, 2, 3]


def test_per_call_attempt_override(clock):
    retry = RetryController(max_attempts=3, sleep=clock.sleep)
    op = Flaky(failures=10)

    with pytest.raises(RetryExhaustedError):
        asyncio.run(retry.run(op, max_attempts=1))

    assert op.calls == [1]


@pytest.mark.parametrize(
    "error",
    [
        CredentialError("HTTP 403", status_code=403),
        RequestValidationError("No variables specified"),
    ],
)
def test_non_retryable_errors_raise_immediately(clock, error):
    retry = RetryController(max_attempts=3, sleep=clock.sleep)
    op = Flaky(failures=10, error=error)

    with pytest.raises(type(error)):
        asyncio.run(retry.run(op))

    assert op.calls == [1]
    assert clock.sleeps == []


def test_every_attempt_is_admitted_by_limiter(clock):
    limiter = CountingLimiter()
    retry = RetryController(max_attempts=3, rate_limiter=limiter, sleep=clock.sleep)

    asyncio.run(retry.run(Flaky(failures=2)))

    assert limiter.admitted == 3


def test_retries_count_against_rate_limit():
    clock = FakeClock(start=0.0)
    limiter = SlidingWindowRateLimiter(max_requests=2, window_s=60, slack_s=0.0, clock=clock, sleep=clock.sleep)
    retry = RetryController(max_attempts=3, base_delay_s=1, rate_limiter=limiter, sleep=clock.sleep)

    asyncio.run(retry.run(Flaky(failures=2)))

    # Attempts at t=0 and t=2 fill the window; the third waits for t=0 to age out
    assert clock.sleeps == [2.0, 4.0, pytest.approx(54.0)]
    assert limiter.in_window() == 2


def test_provider_rate_limit_adds_cooldown(clock):
    retry = RetryController(max_attempts=3, rate_limit_cooldown_s=5, sleep=clock.sleep)
    op = Flaky(failures=1, error=ProviderRateLimitError("HTTP 429", status_code=429))

    assert asyncio.run(retry.run(op)) == "ok"
    assert clock.sleeps == [7.0]


@pytest.mark.parametrize("override", [0, -1])
def test_invalid_attempts(clock, override):
    with pytest.raises(ValueError):
        RetryController(max_attempts=override)

    op = Flaky(failures=0)
    with pytest.raises(ValueError, match="max_attempts"):
        asyncio.run(RetryController(sleep=clock.sleep).run(op, max_attempts=override))
    assert op.calls == []


def test_per_call_limiter_replaces_own(clock):
    own = CountingLimiter()
    per_call = CountingLimiter()
    retry = RetryController(max_attempts=3, rate_limiter=own, sleep=clock.sleep)

    asyncio.run(retry.run(Flaky(failures=1), rate_limiter=per_call))

    assert per_call.admitted == 2
    assert own.admitted == 0
    assert retry.rate_limiter is own

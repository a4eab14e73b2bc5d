"""
Bounded retries with exponential backoff.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from ..utils.errors import ProviderRateLimitError, RetryExhaustedError, is_retryable
from .base import RateLimiter

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryController:
    """
    Runs an async operation up to `max_attempts` times.

    Before attempt n (n > 1) it sleeps min(max_delay_s, base_delay_s * 2**(n-1)).
    When a rate limiter is given, every attempt, first or retry, waits for
    admission before the operation is called.

    Errors that retrying cannot fix (see utils.errors.is_retryable) are
    re-raised at once. A provider 429 adds `rate_limit_cooldown_s` on top of
    the next backoff.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_s: float = 1.0,
        max_delay_s: float = 30.0,
        rate_limiter: Optional[RateLimiter] = None,
        rate_limit_cooldown_s: float = 0.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay_s = float(base_delay_s)
        self.max_delay_s = float(max_delay_s)
        self.rate_limiter = rate_limiter
        self.rate_limit_cooldown_s = float(rate_limit_cooldown_s)
        self.sleep = sleep or asyncio.sleep

    def backoff_s(self, attempt: int) -> float:
        """Delay before `attempt` (1-based). Zero for the first attempt."""
        if attempt <= 1:
            return 0.0
        return min(self.max_delay_s, self.base_delay_s * (2 ** (attempt - 1)))

    async def run(
        self,
        operation: Callable[[int], Awaitable[T]],
        max_attempts: Optional[int] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> T:
        """
        Call `operation(attempt)` until it succeeds or attempts run out.

        Args:
            operation: Coroutine function receiving the 1-based attempt number
            max_attempts: Override for this call (>= 1)
            rate_limiter: Limiter for this call, in place of the controller's own

        Returns:
            The first successful result

        Raises:
            RetryExhaustedError: every attempt failed (chained to the last error)
            Any non-retryable error raised by `operation`
        """
        attempts = self.max_attempts if max_attempts is None else max_attempts
        if attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {attempts}")
        limiter = rate_limiter if rate_limiter is not None else self.rate_limiter
        extra_delay = 0.0

        for attempt in range(1, attempts + 1):
            delay = self.backoff_s(attempt) + extra_delay
            if delay > 0:
                await self.sleep(delay)
            extra_delay = 0.0

            if limiter is not None:
                await limiter.admit()

            try:
                return await operation(attempt)
            except Exception as e:
                if not is_retryable(e):
                    raise
                logger.warning(f"Attempt {attempt}/{attempts} failed: {e}")
                if attempt == attempts:
                    raise RetryExhaustedError(attempts, e) from e
                if isinstance(e, ProviderRateLimitError):
                    extra_delay = self.rate_limit_cooldown_s

        raise AssertionError("unreachable")

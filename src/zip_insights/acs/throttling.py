"""
Rate limiting implementations for controlling API request rates.

The Census API allows a fixed number of requests per minute per key, so
the main limiter counts admissions in a trailing window rather than
refilling tokens.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Optional

from .base import RateLimiter

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter(RateLimiter):
    """
    Sliding-window rate limiter.

    Keeps the timestamps of admitted requests from the last `window_s`
    seconds. A request is admitted only while fewer than `max_requests`
    timestamps remain in the window; otherwise the caller sleeps until the
    oldest one ages out (plus `slack_s`) and checks again.

    The check-and-record step has no await in it, so concurrent coroutines
    sharing one limiter can never overshoot the ceiling.
    """

    def __init__(
        self,
        max_requests: int = 50,
        window_s: float = 60.0,
        slack_s: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """
        Initialize the limiter.

        Args:
            max_requests: Ceiling on admissions per window
            window_s: Window length in seconds
            slack_s: Extra wait added after the oldest request ages out
            clock: Monotonic time source in seconds
            sleep: Coroutine used to wait (defaults to asyncio.sleep)
        """
        if max_requests <= 0:
            raise ValueError("max_requests must be > 0")
        if window_s <= 0:
            raise ValueError("window_s must be > 0")

        self.max_requests = max_requests
        self.window_s = float(window_s)
        self.slack_s = float(slack_s)
        self.clock = clock
        self.sleep = sleep or asyncio.sleep
        self._timestamps: deque[float] = deque()

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_s
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def try_admit(self) -> Optional[float]:
        """
        Admit immediately if there is room.

        Returns:
            None when admitted, otherwise the number of seconds to wait
            before trying again
        """
        now = self.clock()
        self._prune(now)
        if len(self._timestamps) < self.max_requests:
            self._timestamps.append(now)
            return None
        oldest = self._timestamps[0]
        return max(0.0, self.window_s - (now - oldest)) + self.slack_s

    async def admit(self) -> None:
        """Suspend until one more request fits in the window, then record it."""
        while True:
            wait = self.try_admit()
            if wait is None:
                return
            logger.info(f"Rate limit reached, waiting {wait:.1f}s")
            await self.sleep(wait)

    def in_window(self) -> int:
        """Number of admissions in the current window."""
        self._prune(self.clock())
        return len(self._timestamps)

    @property
    def timestamps(self) -> list[float]:
        return list(self._timestamps)

    def reset(self) -> None:
        self._timestamps.clear()


class NoOpRateLimiter(RateLimiter):
    """
    Rate limiter that does nothing (for testing/development).

    Useful when you want to disable rate limiting without changing code.
    """

    async def admit(self) -> None:
        """Do nothing."""
        pass

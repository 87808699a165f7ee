"""
Fixed-rate request pacing with drift compensation.

Each iteration issues one request without waiting for it to complete, then
sleeps for whatever is left of the interval. When issuing took longer than the
interval the overshoot is carried in ``behind`` and taken off the next sleep,
so the issue rate converges to the target even when submission is slow.
In-flight requests are not bounded.
"""

import asyncio
import logging
from typing import Awaitable, Callable

from common.metrics_utils import now_ms
from configuration import MS_PER_SECOND

logger = logging.getLogger(__name__)


class RatePacer:
    """Drives ``issue()`` once per interval until the end time has passed."""

    def __init__(
        self,
        interval_ms: float,
        clock: Callable[[], float] = now_ms,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        """
        Args:
            interval_ms: Target time between two issued requests
            clock: Millisecond wall clock
            sleep: Coroutine function sleeping for a number of seconds
        """
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")
        self.interval_ms = interval_ms
        self._clock = clock
        self._sleep = sleep
        self.behind = 0.0
        self.iterations = 0

    def next_sleep(self, elapsed_ms: float) -> float:
        """Sleep owed after an iteration whose issuing took ``elapsed_ms``.

        Returns the remaining time when positive and clears the drift, otherwise
        returns 0 and accumulates the overshoot.
        """
        remaining = self.interval_ms - elapsed_ms - self.behind
        if remaining > 0:
            self.behind = 0.0
            return remaining
        self.behind = -remaining
        return 0.0

    async def run(self, issue: Callable[[], None], end_ms: float) -> int:
        """Pace ``issue`` until the clock passes ``end_ms``. Returns the iteration count."""
        while True:
            before = self._clock()
            issue()
            after = self._clock()
            remaining = self.next_sleep(after - before)
            # Yield even when behind so in-flight requests can progress
            await self._sleep(remaining / MS_PER_SECOND)
            self.iterations += 1
            if self._clock() > end_ms:
                break

        if self.behind > 0:
            logger.debug(f"Pacing ended {self.behind:.1f}ms behind schedule after {self.iterations} iterations")
        return self.iterations

"""
Sliding-window rate limiter for embedding API calls.

acquire() never rejects: when the trailing window is full it sleeps until
the oldest request ages out, then checks again.
"""
from __future__ import annotations

from collections import deque
from typing import Optional

from loguru import logger

from docrag.utils.clock import Clock, SystemClock


class SlidingWindowRateLimiter:
    """At most max_requests_per_minute acquisitions in any window_seconds span."""

    def __init__(
        self,
        max_requests_per_minute: int = 60,
        window_seconds: float = 60.0,
        clock: Optional[Clock] = None,
    ) -> None:
        if max_requests_per_minute <= 0:
            raise ValueError("max_requests_per_minute must be positive")
        self.max_requests = max_requests_per_minute
        self.window_seconds = window_seconds
        self.clock: Clock = clock or SystemClock()
        self._timestamps: deque[float] = deque()
        self.total_waited: float = 0.0

    @classmethod
    def from_config(cls, config, clock: Optional[Clock] = None) -> "SlidingWindowRateLimiter":
        return cls(config.max_requests_per_minute, config.window_seconds, clock=clock)

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    async def acquire(self) -> None:
        while True:
            now = self.clock.now()
            self._prune(now)
            if len(self._timestamps) < self.max_requests:
                self._timestamps.append(now)
                return

            wait = self._timestamps[0] + self.window_seconds - now
            logger.debug(f"[RateLimiter] Window full ({self.max_requests}), waiting {wait:.2f}s")
            self.total_waited += max(wait, 0.0)
            await self.clock.sleep(wait)

    @property
    def in_window(self) -> int:
        self._prune(self.clock.now())
        return len(self._timestamps)

    def reset(self) -> None:
        self._timestamps.clear()

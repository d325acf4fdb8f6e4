"""Time source used by the rate limiter and the maintenance scheduler.

Everything that waits goes through a Clock so tests can swap in a manual
clock and advance virtual time instead of sleeping.
"""
from __future__ import annotations

import asyncio
import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> float:
        """Seconds on a monotonic scale."""
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Real time: time.monotonic() + asyncio.sleep()."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))

"""
Periodic maintenance
---------------------
Runs housekeeping jobs (cache eviction, anything else registered) on fixed
intervals measured on an injectable Clock.

run_pending() executes whatever is due right now and is what tests drive
after advancing a manual clock; start()/stop() run the same loop as a
background asyncio task in a live process.
"""
from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Callable, Optional

from loguru import logger

from docrag.utils.clock import Clock, SystemClock


@dataclass
class ScheduledTask:
    name: str
    fn: Callable[[], Any]
    interval: float
    next_run: float
    runs: int = 0
    failures: int = 0


class MaintenanceScheduler:
    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.clock: Clock = clock or SystemClock()
        self.tasks: dict[str, ScheduledTask] = {}
        self._runner: Optional[asyncio.Task] = None

    def add_task(self, name: str, fn: Callable[[], Any], interval_seconds: float) -> None:
        """Register fn (sync or async) to run every interval_seconds, first after one interval."""
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.tasks[name] = ScheduledTask(
            name, fn, interval_seconds, self.clock.now() + interval_seconds
        )

    def remove_task(self, name: str) -> bool:
        return self.tasks.pop(name, None) is not None

    async def run_pending(self) -> list[str]:
        """Run every task that is due.  Returns the names that ran."""
        now = self.clock.now()
        ran = []
        for task in list(self.tasks.values()):
            if task.next_run > now:
                continue
            try:
                result = task.fn()
                if inspect.isawaitable(result):
                    await result
                task.runs += 1
            except Exception as exc:
                task.failures += 1
                logger.warning(f"[Scheduler] Task {task.name} failed: {exc}")
            task.next_run = now + task.interval
            ran.append(task.name)
        if ran:
            logger.debug(f"[Scheduler] Ran {', '.join(ran)}")
        return ran

    def seconds_until_next(self) -> Optional[float]:
        if not self.tasks:
            return None
        return max(0.0, min(t.next_run for t in self.tasks.values()) - self.clock.now())

    async def run_forever(self) -> None:
        while True:
            await self.run_pending()
            wait = self.seconds_until_next()
            await self.clock.sleep(wait if wait is not None else 1.0)

    # --- Background task ------------------------------------------------------

    def start(self) -> asyncio.Task:
        if self._runner is None or self._runner.done():
            self._runner = asyncio.create_task(self.run_forever(), name="docrag-maintenance")
            logger.info(f"[Scheduler] Started with {len(self.tasks)} task(s)")
        return self._runner

    async def stop(self) -> None:
        if self._runner is None:
            return
        self._runner.cancel()
        try:
            await self._runner
        except asyncio.CancelledError:
            pass
        self._runner = None
        logger.info("[Scheduler] Stopped")

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

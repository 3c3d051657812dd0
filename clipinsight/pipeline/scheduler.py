"""Suspendable wait used for retry backoff.

The executor only ever awaits ``Scheduler.wait``; swapping the scheduler lets
tests run the retry loop without real elapsed time.
"""

import asyncio
from typing import List


class Scheduler:
    async def wait(self, delay_ms: int) -> None:
        raise NotImplementedError


class AsyncioScheduler(Scheduler):
    """Suspends only the awaiting task, so many runs can back off at once."""

    async def wait(self, delay_ms: int) -> None:
        await asyncio.sleep(max(delay_ms, 0) / 1000.0)


class RecordingScheduler(Scheduler):
    """Returns immediately and remembers every requested delay."""

    def __init__(self):
        self.delays: List[int] = []

    async def wait(self, delay_ms: int) -> None:
        self.delays.append(delay_ms)
        # still yield so concurrent runs interleave the way they would for real
        await asyncio.sleep(0)

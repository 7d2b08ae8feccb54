"""
Clocks and one-shot schedulers for deferred retries.

AsyncioScheduler runs callbacks on the running event loop. VirtualScheduler
keeps a virtual timeline so that tests advance time instead of sleeping.
"""

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Set

import structlog

Callback = Callable[[], Awaitable[Any]]


class AsyncioScheduler:
    """Schedules one-shot coroutine callbacks on the running event loop"""

    def __init__(self):
        self.logger = structlog.get_logger(self.__class__.__name__)
        self._pending: Set[asyncio.Task] = set()

    def schedule(self, delay: float, callback: Callback) -> asyncio.Task:
        task = asyncio.create_task(self._run_later(delay, callback))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def shutdown(self) -> None:
        """Cancel every timer that has not fired yet"""
        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _run_later(self, delay: float, callback: Callback) -> None:
        await asyncio.sleep(delay)
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception as error:
            self.logger.error(
                "Scheduled callback failed", error=str(error), exc_info=True
            )


class VirtualClock:
    """Manually advanced clock returning epoch seconds"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass(order=True)
class ScheduledCall:
    due: float
    sequence: int
    callback: Callback = field(compare=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True


class VirtualScheduler:
    """Deterministic scheduler driven by a VirtualClock"""

    def __init__(self, clock: VirtualClock):
        self.clock = clock
        self._calls: List[ScheduledCall] = []
        self._sequence = itertools.count()

    def schedule(self, delay: float, callback: Callback) -> ScheduledCall:
        call = ScheduledCall(
            due=self.clock() + delay, sequence=next(self._sequence), callback=callback
        )
        self._calls.append(call)
        return call

    @property
    def pending_count(self) -> int:
        return sum(1 for call in self._calls if not call.cancelled)

    async def advance(self, seconds: float) -> int:
        """
        Move virtual time forward, firing every callback that comes due.

        Returns:
            Number of callbacks fired
        """
        deadline = self.clock() + seconds
        fired = 0
        while True:
            call = self._pop_due(deadline)
            if call is None:
                break
            if call.due > self.clock():
                self.clock.now = call.due
            await call.callback()
            fired += 1
        self.clock.now = max(self.clock.now, deadline)
        return fired

    async def run_until_idle(self) -> int:
        fired = 0
        while self.pending_count:
            next_due = min(call.due for call in self._calls if not call.cancelled)
            fired += await self.advance(max(0.0, next_due - self.clock()))
        return fired

    async def shutdown(self) -> None:
        for call in self._calls:
            call.cancel()
        self._calls.clear()

    def _pop_due(self, deadline: float) -> Optional[ScheduledCall]:
        self._calls = [call for call in self._calls if not call.cancelled]
        due = [call for call in self._calls if call.due <= deadline]
        if not due:
            return None
        call = min(due)
        self._calls.remove(call)
        return call

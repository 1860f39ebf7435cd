"""Cancellable delayed callbacks.

:class:`AsyncioScheduler` runs timers on the active event loop.
:class:`ManualScheduler` is a fake clock: nothing fires until ``advance``
moves time forward.
"""
from __future__ import annotations

import asyncio
import heapq
import itertools
from dataclasses import dataclass, field
from typing import Callable, Protocol

from onboarding.domain import TimerHandle


class Scheduler(Protocol):
    """Contract for timer sources used by the sync worker."""

    def is_ready(self) -> bool: ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class AsyncioScheduler:
    def is_ready(self) -> bool:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return False
        return True

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(delay, callback)


@dataclass(order=True)
class _ManualTimer:
    due: float
    seq: int
    callback: Callable[[], None] = field(compare=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self._timers: list[_ManualTimer] = []
        self._seq = itertools.count()

    def is_ready(self) -> bool:
        return True

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = _ManualTimer(due=self.now + max(delay, 0.0), seq=next(self._seq), callback=callback)
        heapq.heappush(self._timers, timer)
        return timer

    @property
    def pending(self) -> int:
        return sum(1 for timer in self._timers if not timer.cancelled)

    def advance(self, seconds: float) -> int:
        """Move the clock forward and run every timer that falls due."""

        target = self.now + seconds
        fired = 0
        while self._timers and self._timers[0].due <= target:
            timer = heapq.heappop(self._timers)
            if timer.cancelled:
                continue
            self.now = timer.due
            timer.callback()
            fired += 1
        self.now = target
        return fired

"""
Timer scheduling for the session state machine.

The state machine only needs two primitives: "call back after N ms" and
"cancel a pending callback", plus a millisecond clock. Two implementations:

    ThreadingScheduler -> real time, one `threading.Timer` per callback
    ManualScheduler    -> virtual time, advanced explicitly (tests, simulator)
"""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable


class Timer(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def now_ms(self) -> int: ...

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> Timer: ...


class ThreadingScheduler:
    """Fires callbacks on `threading.Timer` threads."""

    def now_ms(self) -> int:
        return int(time.monotonic() * 1000)

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> Timer:
        timer = threading.Timer(max(0, delay_ms) / 1000, callback)
        timer.daemon = True
        timer.start()
        return timer


@dataclass(order=True)
class _ManualTimer:
    deadline: int
    seq: int
    callback: Callable[[], None] = field(compare=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Virtual clock. Nothing fires until `advance()` is called.

    Due timers fire in deadline order (ties in scheduling order) and the clock
    reads the timer's deadline while its callback runs.
    """

    def __init__(self, start_ms: int = 0) -> None:
        self._now = start_ms
        self._queue: list[_ManualTimer] = []
        self._seq = itertools.count()

    def now_ms(self) -> int:
        return self._now

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> Timer:
        timer = _ManualTimer(self._now + max(0, delay_ms), next(self._seq), callback)
        heapq.heappush(self._queue, timer)
        return timer

    @property
    def pending(self) -> int:
        """Number of timers still waiting to fire."""
        return sum(1 for t in self._queue if not t.cancelled)

    def next_deadline(self) -> int | None:
        while self._queue and self._queue[0].cancelled:
            heapq.heappop(self._queue)
        return self._queue[0].deadline if self._queue else None

    def advance(self, delay_ms: int) -> None:
        """Move the clock forward, firing every timer that falls due."""
        self.advance_to(self._now + delay_ms)

    def advance_to(self, target_ms: int) -> None:
        while (deadline := self.next_deadline()) is not None and deadline <= target_ms:
            timer = heapq.heappop(self._queue)
            self._now = max(self._now, timer.deadline)
            timer.callback()

        self._now = max(self._now, target_ms)

    def run_until_idle(self) -> None:
        """Fire timers until none are left."""
        while (deadline := self.next_deadline()) is not None:
            self.advance_to(deadline)

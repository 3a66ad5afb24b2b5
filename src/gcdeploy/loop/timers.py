"""Deadline timers executed on the loop thread."""

from __future__ import annotations

import heapq
import itertools
import time
from collections.abc import Callable
from dataclasses import dataclass, field

Clock = Callable[[], float]


@dataclass(order=True)
class TimerHandle:
    deadline: float
    sequence: int
    callback: Callable[[], None] = field(compare=False)
    label: str = field(default="", compare=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True


class Scheduler:
    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._heap: list[TimerHandle] = []
        self._sequence = itertools.count()

    def now(self) -> float:
        return self._clock()

    def call_later(self, delay: float, callback: Callable[[], None], *, label: str = "") -> TimerHandle:
        handle = TimerHandle(
            deadline=self._clock() + max(0.0, delay),
            sequence=next(self._sequence),
            callback=callback,
            label=label,
        )
        heapq.heappush(self._heap, handle)
        return handle

    def run_due(self) -> int:
        now = self._clock()
        ran = 0
        while self._heap and self._heap[0].deadline <= now:
            handle = heapq.heappop(self._heap)
            if handle.cancelled:
                continue
            handle.callback()
            ran += 1
        return ran

    def pending(self) -> int:
        return sum(1 for handle in self._heap if not handle.cancelled)

    def cancel_all(self) -> None:
        for handle in self._heap:
            handle.cancel()
        self._heap.clear()

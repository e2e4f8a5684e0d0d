"""
Schedulable timers used for delivery delays and inactivity expiry.

The dispatcher and the expiry supervisor never touch the event loop clock
directly; they go through a Scheduler so tests can swap in a virtual clock.
"""

import asyncio
import heapq
import itertools
from abc import ABC, abstractmethod
from typing import Any, Callable, Protocol


class Timer(Protocol):
    """Handle for a scheduled callback."""

    def cancel(self) -> None:
        ...

    def cancelled(self) -> bool:
        ...


class Scheduler(ABC):
    """Schedules callbacks to run after a delay in seconds."""

    @abstractmethod
    def call_later(
        self,
        delay: float,
        callback: Callable[..., Any],
        *args: Any,
    ) -> Timer:
        """
        Schedule callback(*args) to run after `delay` seconds.

        A zero delay still defers the call; it never runs synchronously.
        """
        ...


class LoopScheduler(Scheduler):
    """Scheduler backed by the running asyncio event loop."""

    def call_later(
        self,
        delay: float,
        callback: Callable[..., Any],
        *args: Any,
    ) -> Timer:
        loop = asyncio.get_running_loop()
        # Timers sharing a deadline have no FIFO guarantee; call_soon does
        if delay <= 0:
            return loop.call_soon(callback, *args)
        return loop.call_later(delay, callback, *args)


class ManualTimer:
    """Timer created by ManualScheduler."""

    def __init__(self, when: float, callback: Callable[..., Any], args: tuple):
        self.when = when
        self._callback = callback
        self._args = args
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled

    def _run(self) -> None:
        self._callback(*self._args)


class ManualScheduler(Scheduler):
    """
    Virtual-clock scheduler.

    Time only moves when `advance` is called, which fires every due timer
    in (deadline, scheduling order) order.
    """

    def __init__(self) -> None:
        self.now = 0.0
        self._heap: list[tuple[float, int, ManualTimer]] = []
        self._counter = itertools.count()

    def call_later(
        self,
        delay: float,
        callback: Callable[..., Any],
        *args: Any,
    ) -> Timer:
        timer = ManualTimer(self.now + max(0.0, delay), callback, args)
        heapq.heappush(self._heap, (timer.when, next(self._counter), timer))
        return timer

    def advance(self, seconds: float = 0.0) -> int:
        """
        Move the clock forward and fire due timers.

        Timers scheduled by fired callbacks are honored if they also fall
        within the new time.

        Returns:
            Number of callbacks fired.
        """
        target = self.now + seconds
        fired = 0
        while self._heap and self._heap[0][0] <= target:
            when, _, timer = heapq.heappop(self._heap)
            if timer.cancelled():
                continue
            self.now = when
            timer._run()
            fired += 1
        self.now = target
        return fired

    @property
    def scheduled(self) -> int:
        """Number of timers still waiting to fire."""
        return sum(1 for _, _, timer in self._heap if not timer.cancelled())

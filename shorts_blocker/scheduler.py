from __future__ import annotations

import asyncio
import heapq
import itertools
from typing import Any, Callable, List, Optional, Tuple


class TimerHandle:
    def __init__(self, cancel: Callable[[], None]) -> None:
        self._cancel = cancel
        self.cancelled = False

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        self._cancel()


class Scheduler:
    """Timer seam used for debounce windows, countdown ticks and mutation delivery."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        raise NotImplementedError

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        return self.call_later(0.0, callback, *args)

    def time(self) -> float:
        raise NotImplementedError


class AsyncioScheduler(Scheduler):
    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        handle = self.loop.call_later(max(float(delay), 0.0), callback, *args)
        return TimerHandle(handle.cancel)

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        handle = self.loop.call_soon(callback, *args)
        return TimerHandle(handle.cancel)

    def time(self) -> float:
        return self.loop.time()


class ManualScheduler(Scheduler):
    """Virtual clock. Nothing runs until ``advance`` or ``run_pending`` is called."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)
        self._seq = itertools.count()
        self._heap: List[Tuple[float, int, Callable[..., Any], tuple, TimerHandle]] = []

    def time(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        handle = TimerHandle(lambda: None)
        due = self._now + max(float(delay), 0.0)
        heapq.heappush(self._heap, (due, next(self._seq), callback, args, handle))
        return handle

    @property
    def pending_count(self) -> int:
        return sum(1 for entry in self._heap if not entry[4].cancelled)

    def run_pending(self) -> int:
        """Run everything due at the current time, including work it schedules for now."""
        return self._run_until(self._now)

    def advance(self, seconds: float) -> int:
        target = self._now + max(float(seconds), 0.0)
        ran = self._run_until(target)
        self._now = target
        return ran

    def _run_until(self, target: float) -> int:
        ran = 0
        while self._heap and self._heap[0][0] <= target:
            due, _seq, callback, args, handle = heapq.heappop(self._heap)
            if handle.cancelled:
                continue
            self._now = max(self._now, due)
            # Mark fired handles so a late cancel() is a harmless no-op.
            handle.cancelled = True
            callback(*args)
            ran += 1
        return ran


__all__ = ["TimerHandle", "Scheduler", "AsyncioScheduler", "ManualScheduler"]

from __future__ import annotations

import logging
from typing import Any, Callable, Generic, Iterable, List, Optional, TypeVar

from .host import CHILD_LIST, HostPage, MutationRecord, Observation
from .scheduler import Scheduler, TimerHandle

T = TypeVar("T")


class CoalescingQueue(Generic[T]):
    """Accumulate items and hand them to ``flush`` once per quiet window.

    Every ``push`` re-arms the timer. When it fires, the batch is detached
    from the queue before ``flush`` runs, so a batch is delivered at most once
    and anything pushed during the flush starts the next window.
    """

    def __init__(self, scheduler: Scheduler, delay_seconds: float, flush: Callable[[List[T]], Any]) -> None:
        self.scheduler = scheduler
        self.delay_seconds = max(float(delay_seconds), 0.0)
        self._flush = flush
        self._items: List[T] = []
        self._seen: set = set()
        self._timer: Optional[TimerHandle] = None
        self.flush_count = 0
        self.coalesced = 0

    @property
    def pending(self) -> List[T]:
        return list(self._items)

    def push(self, items: Iterable[T]) -> int:
        added = 0
        for item in items:
            key = id(item)
            if key in self._seen:
                self.coalesced += 1
                continue
            self._seen.add(key)
            self._items.append(item)
            added += 1
        if self._items:
            self._rearm()
        return added

    def _rearm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self.scheduler.call_later(self.delay_seconds, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self.flush_now()

    def flush_now(self) -> List[T]:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        batch, self._items, self._seen = self._items, [], set()
        if not batch:
            return batch
        self.flush_count += 1
        self._flush(batch)
        return batch

    def clear(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._items, self._seen = [], set()


class ChangeWatcher:
    """Feeds newly inserted subtree roots to the sweep, one debounced batch at a time."""

    def __init__(
        self,
        page: HostPage,
        scheduler: Scheduler,
        on_batch: Callable[[List[Any]], Any],
        logger: logging.Logger,
        debounce_ms: int = 100,
    ) -> None:
        self.page = page
        self.logger = logger.getChild("ChangeWatcher")
        self.queue: CoalescingQueue[Any] = CoalescingQueue(scheduler, debounce_ms / 1000.0, on_batch)
        self._observation: Optional[Observation] = None

    @property
    def running(self) -> bool:
        return self._observation is not None

    def start(self) -> None:
        if self._observation is not None:
            return
        self._observation = self.page.observe(self.page.content_root(), self._on_mutations)

    def stop(self) -> None:
        if self._observation is None:
            return
        self._observation.disconnect()
        self._observation = None
        self.queue.clear()

    def _on_mutations(self, records: List[MutationRecord], _observation: Observation) -> None:
        roots = []
        for record in records:
            if record.type != CHILD_LIST:
                continue
            for node in record.added_nodes:
                if self.page.tag_name(node):
                    roots.append(node)
        if roots:
            self.queue.push(roots)


__all__ = ["CoalescingQueue", "ChangeWatcher"]

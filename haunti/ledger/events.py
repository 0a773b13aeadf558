from __future__ import annotations

"""
In-process event bus.

The ledger publishes each committed transaction's events here, in commit
order, while it still holds its commit lock. Publishing never waits on a
subscriber: sync callbacks run inline and must be quick, async callbacks get
a bounded per-subscription queue drained by a task the Subscription owns. A
failing subscriber is logged and never affects the commit or the other
subscribers.

    sub = bus.subscribe(EventFilter(task_id=tid), on_event)
    ...
    await bus.drain()     # wait for queued async deliveries
    sub.cancel()
"""

import asyncio
import inspect
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, Optional, Union

from haunti.aitypes.events import Event, EventType

log = logging.getLogger(__name__)

Callback = Callable[[Event], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class EventFilter:
    """All set fields must match. An empty filter matches every event."""
    types: Optional[FrozenSet[EventType]] = None
    task_id: Optional[str] = None
    subject: Optional[str] = None

    @staticmethod
    def of(*, types: Optional[Iterable[Any]] = None, task_id: Optional[str] = None,
           subject: Optional[str] = None) -> "EventFilter":
        return EventFilter(
            types=frozenset(EventType(t) for t in types) if types else None,
            task_id=task_id,
            subject=subject,
        )

    def matches(self, ev: Event) -> bool:
        if self.types is not None and ev.etype not in self.types:
            return False
        if self.task_id is not None and ev.task_id != self.task_id:
            return False
        if self.subject is not None and ev.subject != self.subject:
            return False
        return True


class Subscription:
    """
    A registered callback. Sync callbacks run inline at publish time; async
    ones are queued and delivered in order by a task this subscription owns,
    so a slow consumer never holds up a commit.
    """

    def __init__(self, bus: "EventBus", sid: int, flt: EventFilter, callback: Callback, *,
                 maxsize: int = 0) -> None:
        self._bus = bus
        self.id = sid
        self.filter = flt
        self._callback = callback
        self.is_async = _is_async(callback)
        self._maxsize = maxsize
        self._queue: Optional[asyncio.Queue] = None
        self._pump_task: Optional[asyncio.Task] = None
        self.dropped = 0

    @property
    def active(self) -> bool:
        return self.id in self._bus._subs

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def cancel(self) -> None:
        self._bus._subs.pop(self.id, None)
        if self._pump_task is not None:
            self._pump_task.cancel()
            self._pump_task = None

    async def join(self) -> None:
        """Wait until every queued event has been handed to the callback."""
        if self._queue is not None and self._pump_task is not None:
            await self._queue.join()

    def _deliver(self, ev: Event) -> None:
        if not self.is_async:
            res = self._callback(ev)
            if inspect.isawaitable(res):
                asyncio.ensure_future(res).add_done_callback(self._log_failure)
            return
        if self._queue is None:
            self._queue = asyncio.Queue(self._maxsize)
            self._pump_task = asyncio.get_running_loop().create_task(self._pump())
        try:
            self._queue.put_nowait(ev)
        except asyncio.QueueFull:
            self.dropped += 1
            log.warning("event subscriber %s is behind; dropped %s", self.id, ev.etype.value)

    async def _pump(self) -> None:
        assert self._queue is not None
        while True:
            ev = await self._queue.get()
            try:
                await self._callback(ev)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("event subscriber %s failed on %s", self.id, ev.etype.value)
            finally:
                self._queue.task_done()

    def _log_failure(self, fut: "asyncio.Future[Any]") -> None:
        if not fut.cancelled() and fut.exception() is not None:
            log.error("event subscriber %s failed", self.id, exc_info=fut.exception())

    def __repr__(self) -> str:
        return f"Subscription(id={self.id}, active={self.active})"


class EventBus:
    def __init__(self, *, queue_size: int = 1_024) -> None:
        self._subs: Dict[int, Subscription] = {}
        self._ids = itertools.count(1)
        self._queue_size = queue_size

    def subscribe(self, flt: Optional[EventFilter], callback: Callback) -> Subscription:
        flt = flt or EventFilter()
        sub = Subscription(self, next(self._ids), flt, callback, maxsize=self._queue_size)
        self._subs[sub.id] = sub
        return sub

    def __len__(self) -> int:
        return len(self._subs)

    def publish(self, events: Iterable[Event]) -> None:
        """Hand events to matching subscribers without waiting on any of them."""
        for ev in events:
            # snapshot so callbacks may cancel/subscribe while we iterate
            for sub in list(self._subs.values()):
                if not sub.filter.matches(ev):
                    continue
                try:
                    sub._deliver(ev)
                except Exception:
                    log.exception("event subscriber %s failed on %s", sub.id, ev.etype.value)

    async def drain(self) -> None:
        """Wait until async subscribers have caught up with everything published so far."""
        for sub in list(self._subs.values()):
            await sub.join()


def _is_async(callback: Callback) -> bool:
    return inspect.iscoroutinefunction(callback) or inspect.iscoroutinefunction(
        getattr(callback, "__call__", None)
    )


__all__ = ["EventFilter", "EventBus", "Subscription", "Callback"]

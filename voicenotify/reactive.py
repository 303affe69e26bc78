"""Push-based observable helpers shared by the store and its projections.

Flows deliver values through plain callbacks guarded by thread locks, so the
same flow can feed subscribers on different threads and event loops. The
async helpers (:meth:`Flow.values`, :meth:`Flow.first`) hop values onto the
caller's loop with ``call_soon_threadsafe``.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    Generic,
    Optional,
    TypeVar,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

Callback = Callable[[Any], None]


def deliver(callback: Callback, value: Any) -> None:
    """Invoke a subscriber callback, reporting failures without propagating."""
    try:
        callback(value)
    except Exception:
        logger.exception("flow subscriber raised an exception")


class Subscription:
    """Handle returned by :meth:`Flow.subscribe`."""

    def __init__(self, on_dispose: Optional[Callable[[], None]] = None) -> None:
        self._on_dispose = on_dispose
        self._lock = threading.Lock()
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
            on_dispose, self._on_dispose = self._on_dispose, None
        if on_dispose is not None:
            on_dispose()


class Flow(Generic[T]):
    """A restartable stream of values delivered to callbacks."""

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        raise NotImplementedError

    def map(self, transform: Callable[[T], R]) -> "Flow[R]":
        return _MappedFlow(self, transform)

    def filter(self, predicate: Callable[[T], bool]) -> "Flow[T]":
        return _FilteredFlow(self, predicate)

    def filter_not_none(self) -> "Flow[Any]":
        return _FilteredFlow(self, lambda value: value is not None)

    def switch_latest(self, selector: Callable[[T], "Flow[R]"]) -> "Flow[R]":
        return SwitchLatest(self, selector)

    async def values(self) -> AsyncIterator[T]:
        """Iterate emissions on the running loop until the iterator is closed."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        def _push(value: T) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, value)

        subscription = self.subscribe(_push)
        try:
            while True:
                yield await queue.get()
        finally:
            subscription.dispose()

    async def first(self, timeout: Optional[float] = None) -> T:
        """Return the next emission, raising ``asyncio.TimeoutError`` on expiry."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()

        def _resolve(value: T) -> None:
            if not future.done():
                future.set_result(value)

        subscription = self.subscribe(lambda value: loop.call_soon_threadsafe(_resolve, value))
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        finally:
            subscription.dispose()


class _MappedFlow(Flow[R]):
    def __init__(self, upstream: Flow[Any], transform: Callable[[Any], R]) -> None:
        self._upstream = upstream
        self._transform = transform

    def subscribe(self, callback: Callable[[R], None]) -> Subscription:
        return self._upstream.subscribe(lambda value: callback(self._transform(value)))


class _FilteredFlow(Flow[T]):
    def __init__(self, upstream: Flow[T], predicate: Callable[[T], bool]) -> None:
        self._upstream = upstream
        self._predicate = predicate

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        def _forward(value: T) -> None:
            if self._predicate(value):
                callback(value)

        return self._upstream.subscribe(_forward)


class StateCell(Flow[T]):
    """Single-slot broadcast variable.

    New subscribers receive the current value immediately, then every value
    passed to :meth:`set`. Delivery happens under the cell's lock so each
    subscriber sees values in the order they were set.
    """

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._condition = threading.Condition(threading.RLock())
        self._listeners: Dict[int, Callable[[T], None]] = {}
        self._ids = itertools.count()

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        with self._condition:
            self._value = value
            self._condition.notify_all()
            for callback in list(self._listeners.values()):
                deliver(callback, value)

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        with self._condition:
            key = next(self._ids)
            self._listeners[key] = callback
            deliver(callback, self._value)
        return Subscription(lambda: self._remove(key))

    def _remove(self, key: int) -> None:
        with self._condition:
            self._listeners.pop(key, None)

    def wait(
        self,
        predicate: Callable[[T], bool] = lambda value: value is not None,
        timeout: Optional[float] = None,
    ) -> T:
        """Block until ``predicate(value)`` holds; raise ``TimeoutError`` on expiry."""
        with self._condition:
            if not self._condition.wait_for(lambda: predicate(self._value), timeout=timeout):
                raise TimeoutError(f"state not reached within {timeout}s")
            return self._value

    async def await_value(
        self,
        predicate: Callable[[T], bool] = lambda value: value is not None,
        timeout: Optional[float] = None,
    ) -> T:
        """Suspend until ``predicate(value)`` holds; raise ``asyncio.TimeoutError`` on expiry."""
        current = self._value
        if predicate(current):
            return current
        return await self.filter(predicate).first(timeout=timeout)


class _SwitchState(Generic[T, R]):
    """Per-subscriber bookkeeping for :class:`SwitchLatest`."""

    def __init__(self, selector: Callable[[T], Flow[R]], downstream: Callable[[R], None]) -> None:
        self._selector = selector
        self._downstream = downstream
        self._lock = threading.RLock()
        self._generation = 0
        self._inner: Optional[Subscription] = None
        self._closed = False

    def on_upstream(self, value: T) -> None:
        with self._lock:
            if self._closed:
                return
            self._generation += 1
            generation = self._generation
            previous, self._inner = self._inner, None
            if previous is not None:
                previous.dispose()
            inner_flow = self._selector(value)
            self._inner = inner_flow.subscribe(lambda item: self._on_inner(generation, item))

    def _on_inner(self, generation: int, item: R) -> None:
        with self._lock:
            # superseded inner flows may still be mid-delivery
            if self._closed or generation != self._generation:
                return
            self._downstream(item)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            inner, self._inner = self._inner, None
        if inner is not None:
            inner.dispose()


class SwitchLatest(Flow[R]):
    """Follow the flow selected from the latest upstream value.

    Whenever the upstream emits, the subscription to the previous inner flow
    is dropped and the subscriber is rebound to ``selector(value)``.
    """

    def __init__(self, upstream: Flow[T], selector: Callable[[T], Flow[R]]) -> None:
        self._upstream = upstream
        self._selector = selector

    def subscribe(self, callback: Callable[[R], None]) -> Subscription:
        state: _SwitchState[T, R] = _SwitchState(self._selector, callback)
        upstream = self._upstream.subscribe(state.on_upstream)

        def _dispose() -> None:
            upstream.dispose()
            state.close()

        return Subscription(_dispose)


__all__ = [
    "Flow",
    "StateCell",
    "Subscription",
    "SwitchLatest",
    "deliver",
]

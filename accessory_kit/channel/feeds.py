"""Subscriber feeds for received messages and connection state.

A feed fans each published item out to callbacks and to per-subscriber
queues. Every call to iterate() gets its own queue, so iterators are
independent and a new one can be started at any time. StateFeed also
remembers the current value and hands it to each new subscriber first.
"""
from __future__ import annotations

import logging
import queue
import threading
import weakref
from typing import Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


class FeedIterator(Generic[T]):
    """Iterator over one subscriber queue of a feed.

    The queue is unregistered when the iterator is exhausted, closed or
    garbage collected, whether or not it was ever advanced.
    """

    def __init__(self, q: queue.Queue, timeout: Optional[float],
                 unregister: Callable[[queue.Queue], None]):
        self._queue = q
        self._timeout = timeout
        self._finalizer = weakref.finalize(self, unregister, q)

    def __iter__(self) -> FeedIterator[T]:
        return self

    def __next__(self) -> T:
        if not self._finalizer.alive:
            raise StopIteration
        try:
            item = self._queue.get(timeout=self._timeout)
        except queue.Empty:
            item = _CLOSED
        if item is _CLOSED:
            self.close()
            raise StopIteration
        return item

    def close(self) -> None:
        """Stop receiving items. Safe to call multiple times."""
        self._finalizer()


class Feed(Generic[T]):
    """Unbounded broadcast of items to callbacks and iterators."""

    def __init__(self, name: str = "feed"):
        self._name = name
        self._callbacks: List[Callable[[T], None]] = []
        self._queues: List[queue.Queue] = []
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register a callback invoked for each published item.

        Callbacks run on the publishing thread and should not block.

        Returns:
            Unsubscribe function
        """
        with self._lock:
            self._callbacks.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unsubscribe

    def publish(self, item: T) -> None:
        if self._closed:
            return

        with self._lock:
            callbacks = list(self._callbacks)
            queues = list(self._queues)

        for q in queues:
            q.put(item)

        for callback in callbacks:
            try:
                callback(item)
            except Exception as e:
                logger.error(f"Error in {self._name} callback: {e}")

    def iterate(self, timeout: Optional[float] = None) -> FeedIterator[T]:
        """Return an iterator over items published from now on.

        The subscription is registered before this returns, so nothing
        published after the call is missed. Dropping the iterator ends
        the subscription.

        Args:
            timeout: End the iteration after this many idle seconds,
                None to run until the feed is closed
        """
        q: queue.Queue = queue.Queue()
        with self._lock:
            if self._closed:
                q.put(_CLOSED)
            else:
                self._seed(q)
                self._queues.append(q)
        return FeedIterator(q, timeout, self._unregister)

    @property
    def subscriber_count(self) -> int:
        """Number of live iterators."""
        with self._lock:
            return len(self._queues)

    def _seed(self, q: queue.Queue) -> None:
        pass

    def _unregister(self, q: queue.Queue) -> None:
        with self._lock:
            if q in self._queues:
                self._queues.remove(q)

    def close(self) -> None:
        """End every iterator and drop all subscribers."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            queues = list(self._queues)
            self._callbacks.clear()

        for q in queues:
            q.put(_CLOSED)


class StateFeed(Feed[T]):
    """Feed that replays its current value and skips repeats."""

    def __init__(self, initial: T, name: str = "state"):
        super().__init__(name)
        self._current = initial

    @property
    def current(self) -> T:
        return self._current

    def publish(self, item: T) -> bool:
        """Publish item if it differs from the current value.

        Returns:
            True if the value changed
        """
        with self._lock:
            if item == self._current:
                return False
            self._current = item
        super().publish(item)
        return True

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        unsubscribe = super().subscribe(callback)

        # Send current state
        try:
            callback(self._current)
        except Exception as e:
            logger.error(f"Error in {self._name} callback: {e}")

        return unsubscribe

    def _seed(self, q: queue.Queue) -> None:
        q.put(self._current)

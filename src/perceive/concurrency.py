"""Thread primitives shared by the orchestrator, pipeline and index."""

from __future__ import annotations

import queue
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Generic, TypeVar

_T = TypeVar("_T")


class RWLock:
    """Writer-preferring readers-writer lock.

    Many readers may hold the lock at once; a writer holds it alone. Once a
    writer is waiting, new readers queue behind it so writes are not starved
    by a steady stream of queries.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ChannelClosed(Exception):
    """Raised by ``Channel.get`` once the channel is closed and drained."""


_CLOSED = object()


class Channel(Generic[_T]):
    """Bounded FIFO between producer and consumer threads.

    ``put`` blocks while the channel is full, which is how the embedding
    worker applies backpressure to source enumeration.
    """

    def __init__(self, maxsize: int) -> None:
        if maxsize < 1:
            raise ValueError("Channel maxsize must be >= 1")
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()

    def put(self, value: _T, timeout: float | None = None) -> None:
        if self._closed.is_set():
            raise ChannelClosed("put on a closed channel")
        self._queue.put(value, timeout=timeout)

    def get(self, timeout: float | None = None) -> _T:
        """Next value; raises ``queue.Empty`` on timeout, ``ChannelClosed`` when done."""
        value = self._queue.get(timeout=timeout)
        if value is _CLOSED:
            # Leave the marker for any other consumer.
            self._queue.put(_CLOSED)
            raise ChannelClosed("channel closed")
        return value

    def close(self) -> None:
        """Stop accepting values; consumers finish what is queued, then stop."""
        if not self._closed.is_set():
            self._closed.set()
            self._queue.put(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def qsize(self) -> int:
        return self._queue.qsize()


class CancelToken:
    """Cooperative cancellation flag checked between units of work."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

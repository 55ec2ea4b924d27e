"""Bounded, closable channel between a producer thread and a consumer.

``queue.Queue`` has no notion of "closed"; readers need to distinguish
"nothing right now" from "the producer is done". ``Channel`` adds that on top
of a bounded deque guarded by a condition variable.
"""
from __future__ import annotations

import threading
import time
from collections import deque
from typing import Generic, TypeVar

from .cancel import CancelToken

T = TypeVar("T")


class Closed(Exception):
    """Raised by recv/try_recv once a closed channel is drained."""


class Empty(Exception):
    """Raised by try_recv (or a timed-out recv) when nothing is queued."""


class Channel(Generic[T]):
    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("channel capacity must be >= 1")
        self._capacity = capacity
        self._items: deque[T] = deque()
        self._closed = False
        self._cond = threading.Condition()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, item: T, token: CancelToken | None = None, poll: float = 0.05) -> bool:
        """Block until there is room, then enqueue item.

        Returns False (item dropped) if the channel is closed or token is
        cancelled while waiting.
        """
        with self._cond:
            while len(self._items) >= self._capacity and not self._closed:
                if token is not None and token.cancelled:
                    return False
                self._cond.wait(poll)
            if self._closed:
                return False
            self._items.append(item)
            self._cond.notify_all()
            return True

    def try_recv(self) -> T:
        with self._cond:
            if self._items:
                item = self._items.popleft()
                self._cond.notify_all()
                return item
            if self._closed:
                raise Closed
            raise Empty

    def recv(self, timeout: float | None = None) -> T:
        """Wait up to timeout for an item. Raises Empty on timeout, Closed when done."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while not self._items:
                if self._closed:
                    raise Closed
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise Empty
                self._cond.wait(remaining)
            item = self._items.popleft()
            self._cond.notify_all()
            return item

    def close(self) -> None:
        """No further sends; queued items remain readable."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def __len__(self) -> int:
        return len(self._items)

"""Cancellation tokens with parent propagation and optional deadlines.

A token is cancelled explicitly, when its deadline passes, or when any
ancestor is cancelled::

    session = CancelToken()
    reader_scope = session.child()              # toggling follow cancels only this
    inference = session.child(timeout=120.0)    # bounded, dies with the session
"""
from __future__ import annotations

import threading
import time


class CancelToken:
    def __init__(self, parent: CancelToken | None = None, timeout: float | None = None) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: list[CancelToken] = []
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._parent = parent
        if parent is not None:
            parent._adopt(self)

    def _adopt(self, child: CancelToken) -> None:
        with self._lock:
            adopted = not self._event.is_set()
            if adopted:
                self._children.append(child)
        if not adopted:
            child.cancel()

    def child(self, timeout: float | None = None) -> CancelToken:
        """Derive a token cancelled together with this one."""
        return CancelToken(parent=self, timeout=timeout)

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            children, self._children = self._children, []
        for child in children:
            child.cancel()
        if self._parent is not None:
            self._parent._forget(self)

    def _forget(self, child: CancelToken) -> None:
        with self._lock:
            try:
                self._children.remove(child)
            except ValueError:
                pass

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        expired = self._deadline is not None and time.monotonic() >= self._deadline
        if expired or (self._parent is not None and self._parent.cancelled):
            self.cancel()
            return True
        return False

    @property
    def remaining(self) -> float | None:
        """Seconds until the nearest deadline (own or inherited), or None."""
        remaining = None
        if self._deadline is not None:
            remaining = max(self._deadline - time.monotonic(), 0.0)
        inherited = self._parent.remaining if self._parent is not None else None
        if inherited is not None:
            remaining = inherited if remaining is None else min(remaining, inherited)
        return remaining

    def wait(self, timeout: float | None = None) -> bool:
        """Sleep up to timeout seconds; return True as soon as cancelled."""
        remaining = self.remaining
        if remaining is not None:
            timeout = remaining if timeout is None else min(timeout, remaining)
        self._event.wait(timeout)
        return self.cancelled

    def __repr__(self) -> str:
        return f"CancelToken(cancelled={self.cancelled})"

"""Fixed-capacity ring of parsed entries with FIFO eviction.

One writer (the pipeline's drain) and any number of readers (rendering,
export) share a Ring. Every operation holds a single lock for at most one
push or one full copy, so readers never see a half-applied push.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Iterable

from ..models import LogEntry


@dataclass(frozen=True)
class RingSnapshot:
    entries: list[LogEntry]
    total_ingested: int
    total_dropped: int

    def __len__(self) -> int:
        return len(self.entries)


class Ring:
    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"ring capacity must be >= 1, got {capacity}")
        self._lock = threading.Lock()
        self._buf: list[LogEntry | None] = [None] * capacity
        self._cap = capacity
        self._start = 0
        self._size = 0
        self._total = 0
        self._dropped = 0

    @property
    def capacity(self) -> int:
        return self._cap

    def __len__(self) -> int:
        return self._size

    def push(self, entry: LogEntry) -> None:
        with self._lock:
            if self._size < self._cap:
                self._buf[(self._start + self._size) % self._cap] = entry
                self._size += 1
            else:
                # overwrite oldest
                self._buf[self._start] = entry
                self._start = (self._start + 1) % self._cap
                self._dropped += 1
            self._total += 1

    def _ordered(self) -> list[LogEntry]:
        return [self._buf[(self._start + i) % self._cap] for i in range(self._size)]  # type: ignore[misc]

    def snapshot(self) -> RingSnapshot:
        """Point-in-time copy, oldest first, with the running counters."""
        with self._lock:
            return RingSnapshot(self._ordered(), self._total, self._dropped)

    def _load(self, entries: list[LogEntry], capacity: int) -> None:
        kept = entries[-capacity:] if entries else []
        self._buf = [*kept, *([None] * (capacity - len(kept)))]
        self._cap = capacity
        self._start = 0
        self._size = len(kept)

    def resize(self, capacity: int) -> None:
        """Change capacity keeping the newest entries. Counters are untouched."""
        if capacity < 1:
            raise ValueError(f"ring capacity must be >= 1, got {capacity}")
        with self._lock:
            self._load(self._ordered(), capacity)

    def replace(self, entries: Iterable[LogEntry]) -> None:
        """Swap in re-parsed entries (oldest first). Counters are untouched."""
        entries = list(entries)
        with self._lock:
            self._load(entries, self._cap)

    def clear(self) -> None:
        """Empty the ring without resetting counters."""
        with self._lock:
            self._buf = [None] * self._cap
            self._start = 0
            self._size = 0

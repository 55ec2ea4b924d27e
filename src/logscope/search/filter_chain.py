"""Composable filter chain for log entries.

Filters are callables that accept a LogEntry and return bool.
Chains short-circuit on the first failing predicate (AND semantics).
"""
from __future__ import annotations

from typing import Callable, Iterable, Iterator

from ..models import LogEntry

Predicate = Callable[[LogEntry], bool]


class FilterChain:
    """Apply multiple predicates in sequence (logical AND).

    Usage::

        chain = FilterChain()
        chain.add(LevelFilter({"ERROR"}).matches)
        chain.add(QuerySearch("timeout").matches)

        results = list(chain.apply(entries))
    """

    def __init__(self) -> None:
        self._predicates: list[Predicate] = []

    def add(self, predicate: Predicate) -> "FilterChain":
        """Append a predicate and return self for chaining."""
        self._predicates.append(predicate)
        return self

    def matches(self, entry: LogEntry) -> bool:
        """Return True if all predicates accept the entry."""
        return all(p(entry) for p in self._predicates)

    def apply(self, entries: Iterable[LogEntry]) -> Iterator[LogEntry]:
        """Yield entries that pass every predicate."""
        for entry in entries:
            if self.matches(entry):
                yield entry

    def __len__(self) -> int:
        return len(self._predicates)

    def __repr__(self) -> str:
        return f"FilterChain({len(self._predicates)} predicates)"

"""User filter criteria and their compiled, match-ready form.

Compilation is explicit: build ``Criteria``, call ``compile_criteria`` once,
then reuse the ``Evaluator`` for every entry until the criteria change. All
compile errors surface here; matching never raises.

Matching order (short-circuits on the first failure):
  1. level set   — entry level must be a member (when the set is non-empty)
  2. query       — substring (case-insensitive) or regex over raw / one field
  3. expression  — boolean expression over fields, fail-closed
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from ..models import LogEntry
from .expression import Expression
from .filter_chain import FilterChain
from .query import LevelFilter, QuerySearch


@dataclass(frozen=True)
class Criteria:
    query: str = ""
    use_regex: bool = False
    levels: frozenset[str] = field(default_factory=frozenset)
    expr: str = ""
    # When set, the query is tested against this field instead of the raw line.
    field: str = ""

    @property
    def empty(self) -> bool:
        return not (self.query or self.levels or self.expr.strip())


class Evaluator:
    """Compiled criteria. Holds no per-entry state."""

    def __init__(self, criteria: Criteria) -> None:
        self.criteria = criteria
        self._chain = FilterChain()
        if criteria.levels:
            self._chain.add(LevelFilter(criteria.levels).matches)
        if criteria.query:
            self._chain.add(QuerySearch(criteria.query, criteria.use_regex, criteria.field).matches)
        if criteria.expr.strip():
            self._chain.add(Expression(criteria.expr).matches)

    def match(self, entry: LogEntry) -> bool:
        return self._chain.matches(entry)

    def apply(self, entries: Iterable[LogEntry]) -> list[LogEntry]:
        return list(self._chain.apply(entries))

    def __repr__(self) -> str:
        return f"Evaluator({self.criteria!r})"


def compile_criteria(criteria: Criteria) -> Evaluator:
    """Compile criteria. Raises CriteriaError for a bad regex or expression."""
    return Evaluator(criteria)

"""Level and text-query predicates."""
from __future__ import annotations

import json
import re
from typing import Iterable

from ..errors import CriteriaError
from ..models import LogEntry


def field_text(entry: LogEntry, field: str) -> str:
    """The text a field-scoped query looks at: strings as-is, other values as JSON."""
    if field not in entry.fields:
        return ""
    value = entry.fields[field]
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), default=str)


class LevelFilter:
    """Accept entries whose canonical level is in the given set."""

    def __init__(self, levels: Iterable[str]) -> None:
        self._levels = frozenset(level.strip().upper() for level in levels if level.strip())

    def matches(self, entry: LogEntry) -> bool:
        return entry.level.upper() in self._levels


class QuerySearch:
    """Match raw text (or one field) by case-insensitive substring or regex.

    The regex is compiled once here; a bad pattern raises ``CriteriaError``.
    """

    def __init__(self, query: str, use_regex: bool = False, field: str = "") -> None:
        self._field = field
        self._needle = query.lower()
        self._regex: re.Pattern[str] | None = None
        if use_regex:
            try:
                self._regex = re.compile(query)
            except re.error as exc:
                raise CriteriaError(f"invalid regex {query!r}: {exc}") from exc

    def matches(self, entry: LogEntry) -> bool:
        text = field_text(entry, self._field) if self._field else entry.raw
        if self._regex is not None:
            return self._regex.search(text) is not None
        return self._needle in text.lower()

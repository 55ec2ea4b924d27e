"""Parser protocol plus the level and timestamp helpers every strategy shares."""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Protocol, runtime_checkable

from ..models import RFC3339, LogEntry, Schema

TIME_KEYS = ("ts", "time", "timestamp")
LEVEL_KEYS = ("level", "lvl", "severity")

_CANONICAL_LEVELS = {
    "TRACE": "TRACE",
    "DEBUG": "DEBUG",
    "INFO": "INFO",
    "WARN": "WARN",
    "WARNING": "WARN",
    "ERROR": "ERROR",
    "ERR": "ERROR",
    "FATAL": "FATAL",
    "CRITICAL": "FATAL",
}

# Go reference-time tokens → strptime directives. Longest tokens first.
_GO_TOKENS = [
    ("Z07:00", "%z"), ("-07:00", "%z"), ("-0700", "%z"), ("Z0700", "%z"),
    ("2006", "%Y"), ("January", "%B"), ("Jan", "%b"), ("Monday", "%A"), ("Mon", "%a"),
    ("MST", "%Z"), ("01", "%m"), ("02", "%d"), ("_2", "%d"), ("15", "%H"), ("03", "%I"),
    ("04", "%M"), ("05", "%S"), ("PM", "%p"), ("06", "%y"),
]
_GO_MAP = dict(_GO_TOKENS)
_GO_TOKEN_RE = re.compile("|".join(re.escape(tok) for tok, _ in _GO_TOKENS))
_GO_FRACTION_RE = re.compile(r"(?<=05)[.,](?:0+|9+)")
_GO_RFC3339 = {"2006-01-02T15:04:05Z07:00", "2006-01-02T15:04:05.999999999Z07:00"}
# Go writes up to nanoseconds; datetime holds (and 3.10 parses) at most microseconds.
_FRACTION_RE = re.compile(r"(?<=\d\d:\d\d:\d\d)([.,])(\d+)")


@runtime_checkable
class Parser(Protocol):
    """Converts one raw line into a LogEntry. Implementations never raise."""

    @property
    def name(self) -> str:
        """Strategy name: 'json', 'logfmt' or 'regex'."""
        ...

    @property
    def schema(self) -> Schema:
        ...

    def parse(self, line: str, source: str = "") -> LogEntry:
        ...


def resolve_layout(schema_layout: str, forced: str = "") -> str:
    """Pick the effective time layout: forced, then the schema's, then RFC3339."""
    return forced or schema_layout or RFC3339


def strptime_layout(layout: str) -> str:
    """Translate a Go reference-time layout to strptime; strptime layouts pass through."""
    if "%" in layout or "2006" not in layout:
        return layout
    if layout in _GO_RFC3339:
        return RFC3339
    out = _GO_FRACTION_RE.sub(".%f", layout)
    return _GO_TOKEN_RE.sub(lambda m: _GO_MAP[m.group(0)], out)


def _micro_fraction(m: re.Match[str]) -> str:
    return m.group(1) + m.group(2)[:6].ljust(6, "0")


def parse_timestamp(value: str, layout: str) -> datetime | None:
    """Parse value with layout. Returns None instead of raising."""
    value = value.strip()
    if not value:
        return None
    layout = strptime_layout(layout or RFC3339)
    try:
        if layout.upper() == RFC3339 or "%f" in layout:
            value = _FRACTION_RE.sub(_micro_fraction, value, count=1)
        if layout.upper() == RFC3339:
            if value[-1] in "Zz":
                value = value[:-1] + "+00:00"
            ts = datetime.fromisoformat(value)
        else:
            ts = datetime.strptime(value, layout)
    except ValueError:
        return None
    if ts.tzinfo is None and layout.upper() == RFC3339:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def normalize_level(raw: str, mapping: Mapping[str, str] | None = None) -> str:
    """Map a raw level onto the canonical set, consulting the schema table first."""
    level = raw.strip().upper()
    if not level:
        return ""
    for key, value in (mapping or {}).items():
        if key.strip().upper() == level:
            return value.strip().upper()
    return _CANONICAL_LEVELS.get(level, level)


def first_string(obj: Mapping[str, Any], keys: Iterable[str]) -> str:
    """Return the first string value found under keys, or ''."""
    for key in keys:
        value = obj.get(key)
        if isinstance(value, str):
            return value
    return ""


def fallback_entry(line: str, source: str, schema: Schema) -> LogEntry:
    """The entry every strategy degrades to: raw text kept as ``msg``."""
    return LogEntry(
        raw=line,
        fields={"msg": line},
        source=source,
        format_name=schema.format_name,
        partial=True,
    )

"""logfmt / key=value parser.

    time=2025-01-01T12:00:01Z level=warn msg="slow request" path=/v1/items
"""
from __future__ import annotations

from ..models import LogEntry, Schema
from .base import LEVEL_KEYS, TIME_KEYS, fallback_entry, first_string, normalize_level, parse_timestamp, resolve_layout


def split_logfmt(line: str) -> dict[str, str]:
    """Tokenize key=value pairs.

    Double quotes toggle quoting (``\\"`` inside quotes is a literal quote),
    unquoted whitespace ends a pair, and the first unquoted ``=`` separates
    key from value. A bare key is recorded with an empty value.
    """
    pairs: dict[str, str] = {}
    key: str | None = None
    buf: list[str] = []
    in_quote = False
    escaped = False

    def flush() -> None:
        nonlocal key
        text = "".join(buf)
        if key is not None:
            if key:
                pairs[key] = text
        elif text:
            pairs[text] = ""
        key = None
        buf.clear()

    for ch in line:
        if escaped:
            buf.append(ch)
            escaped = False
        elif in_quote and ch == "\\":
            escaped = True
        elif ch == '"':
            in_quote = not in_quote
        elif not in_quote and ch in " \t":
            flush()
        elif not in_quote and ch == "=" and key is None:
            key = "".join(buf)
            buf.clear()
        else:
            buf.append(ch)
    flush()
    return pairs


class LogfmtParser:
    """Parse logfmt-style key=value lines."""

    def __init__(self, schema: Schema, forced_layout: str = "") -> None:
        self._schema = schema
        self._layout = resolve_layout(schema.time_layout, forced_layout)

    @property
    def name(self) -> str:
        return "logfmt"

    @property
    def schema(self) -> Schema:
        return self._schema

    def parse(self, line: str, source: str = "") -> LogEntry:
        if "=" not in line:
            return fallback_entry(line, source, self._schema)
        pairs = split_logfmt(line)
        if not pairs:
            return fallback_entry(line, source, self._schema)

        ts_raw = first_string(pairs, TIME_KEYS)
        return LogEntry(
            raw=line,
            fields=dict(pairs),
            timestamp=parse_timestamp(ts_raw, self._layout) if ts_raw else None,
            level=normalize_level(first_string(pairs, LEVEL_KEYS), self._schema.level_mapping),
            source=source,
            format_name=self._schema.format_name,
        )

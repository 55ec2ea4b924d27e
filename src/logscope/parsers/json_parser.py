"""JSON-lines parser with support for wrapped payloads.

Container runtimes often wrap the application's own JSON in a string field::

    {"log": "{\\"level\\":\\"error\\",\\"msg\\":\\"boom\\"}\\n", "stream": "stderr"}

The inner object is decoded and merged so its keys become columns too.
"""
from __future__ import annotations

import json
from typing import Any

from ..models import LogEntry, Schema
from .base import LEVEL_KEYS, TIME_KEYS, fallback_entry, first_string, normalize_level, parse_timestamp, resolve_layout

# Checked in this order; the first one holding an embedded object wins.
_PAYLOAD_KEYS = ("log", "msg", "message")


def _embedded_object(outer: dict[str, Any]) -> dict[str, Any] | None:
    for key in _PAYLOAD_KEYS:
        value = outer.get(key)
        if not isinstance(value, str):
            continue
        text = value.strip()
        if not (text.startswith("{") and text.endswith("}")):
            continue
        try:
            inner = json.loads(text)
        except ValueError:
            continue
        if isinstance(inner, dict):
            return inner
    return None


class JsonParser:
    """Parse newline-delimited JSON (NDJSON) log lines."""

    def __init__(self, schema: Schema, forced_layout: str = "") -> None:
        self._schema = schema
        self._layout = resolve_layout(schema.time_layout, forced_layout)

    @property
    def name(self) -> str:
        return "json"

    @property
    def schema(self) -> Schema:
        return self._schema

    def parse(self, line: str, source: str = "") -> LogEntry:
        try:
            outer = json.loads(line)
        except ValueError:
            return fallback_entry(line, source, self._schema)
        if not isinstance(outer, dict):
            return fallback_entry(line, source, self._schema)

        inner = _embedded_object(outer)
        # Outer keys win on conflict; the wrapper field itself is kept.
        fields = {**inner, **outer} if inner else dict(outer)

        ts_raw = first_string(inner, TIME_KEYS) if inner else ""
        ts_raw = ts_raw or first_string(outer, TIME_KEYS)
        level_raw = first_string(inner, LEVEL_KEYS) if inner else ""
        level_raw = level_raw or first_string(outer, LEVEL_KEYS)

        return LogEntry(
            raw=line,
            fields=fields,
            timestamp=parse_timestamp(ts_raw, self._layout) if ts_raw else None,
            level=normalize_level(level_raw, self._schema.level_mapping),
            source=source,
            format_name=self._schema.format_name,
        )

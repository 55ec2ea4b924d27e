"""Regex parser driven by a schema-supplied pattern with named groups.

Every named group becomes a field. A few group names carry meaning:

* ``ts`` / ``time`` / ``timestamp`` — parsed with the schema's time layout
* ``level`` / ``lvl`` / ``severity`` — normalised through the level table
* ``status`` — coerced to int when numeric
* ``pri`` — RFC 5424 priority; supplies the level when no level group exists
"""
from __future__ import annotations

import logging
import re

from ..models import LogEntry, Schema
from .base import LEVEL_KEYS, TIME_KEYS, fallback_entry, normalize_level, parse_timestamp, resolve_layout

logger = logging.getLogger(__name__)

# (?<name>...) as written for Go/PCRE; lookbehinds (?<= and (?<! are left alone.
_PCRE_GROUP_RE = re.compile(r"\(\?<(?=[A-Za-z_])")

# syslog severity (priority % 8) → canonical level
_SEVERITY = {
    0: "FATAL", 1: "FATAL", 2: "FATAL", 3: "ERROR",
    4: "WARN", 5: "INFO", 6: "INFO", 7: "DEBUG",
}


def _is_number(value: str) -> bool:
    # str.isdigit() also accepts superscripts and other digits int() rejects
    return value.isascii() and value.isdigit()


def compile_pattern(pattern: str) -> re.Pattern[str] | None:
    """Compile a schema pattern, accepting PCRE-style named groups. None on error."""
    if not pattern:
        return None
    try:
        return re.compile(_PCRE_GROUP_RE.sub("(?P<", pattern))
    except re.error as exc:
        logger.warning("regex parser: pattern does not compile (%s); lines kept as msg", exc)
        return None


class RegexParser:
    """Parse lines with a named-group regex, degrading to ``{"msg": line}``."""

    def __init__(self, schema: Schema, forced_layout: str = "") -> None:
        self._schema = schema
        self._layout = resolve_layout(schema.time_layout, forced_layout)
        self._regex = compile_pattern(schema.regex_pattern)

    @property
    def name(self) -> str:
        return "regex"

    @property
    def schema(self) -> Schema:
        return self._schema

    @property
    def compiled(self) -> bool:
        return self._regex is not None

    def parse(self, line: str, source: str = "") -> LogEntry:
        if self._regex is None:
            return fallback_entry(line, source, self._schema)
        m = self._regex.search(line)
        if m is None:
            return fallback_entry(line, source, self._schema)

        fields: dict[str, object] = {}
        timestamp = None
        level = ""
        for name, value in m.groupdict(default="").items():
            fields[name] = value
            if name in TIME_KEYS and timestamp is None:
                timestamp = parse_timestamp(value, self._layout)
            elif name in LEVEL_KEYS and not level:
                level = normalize_level(value, self._schema.level_mapping)
            elif name == "status" and _is_number(value):
                fields[name] = int(value)

        if not level and _is_number(str(fields.get("pri", ""))):
            level = _SEVERITY[int(fields["pri"]) % 8]

        return LogEntry(
            raw=line,
            fields=fields,
            timestamp=timestamp,
            level=level,
            source=source,
            format_name=self._schema.format_name,
        )

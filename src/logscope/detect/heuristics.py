"""Offline format heuristics: guess a Schema from a small sample of lines.

Each non-blank line is tested against four independent recognisers (JSON
object, logfmt, Apache combined, RFC 5424 syslog). The decision falls through
in a fixed priority order:

  1. JSON    — strictly more hits than any other format, and at least half
  2. logfmt  — at least as many hits as Apache and syslog, and at least half
  3. Apache  — at least as many hits as syslog, and at least one
  4. syslog  — at least one hit
  5. unknown — catch-all ``^(?P<msg>.*)$``, confidence 0
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Sequence

from ..models import RFC3339, FieldDef, Schema

_LOGFMT_KV_RE = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*=")
_APACHE_COMBINED_RE = re.compile(
    r'^\S+ \S+ \S+ \[[^\]]+\] "[A-Z]+ [^\s]+ [^"]+" \d{3} \d+ "[^"]*" "[^"]*"'
)
_SYSLOG_RFC5424_RE = re.compile(r"^<\d+>1 \d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")

_LEVELS = {
    "trace": "TRACE", "debug": "DEBUG", "info": "INFO",
    "warn": "WARN", "warning": "WARN", "error": "ERROR", "fatal": "FATAL",
}


@dataclass(frozen=True)
class Guess:
    schema: Schema
    confidence: float


def _fields(*specs: tuple[str, str, str, str]) -> list[FieldDef]:
    return [FieldDef(name=n, type=t, description=d, path_or_group=p) for n, t, d, p in specs]


def json_schema() -> Schema:
    return Schema(
        format_name="json_lines",
        parse_strategy="json",
        time_layout=RFC3339,
        level_mapping=dict(_LEVELS),
        fields=_fields(
            ("ts", "string", "timestamp", ".ts"),
            ("time", "string", "timestamp", ".time"),
            ("level", "string", "level", ".level"),
            ("msg", "string", "message", ".msg"),
            ("message", "string", "message", ".message"),
        ),
        confidence=0.8,
    )


def logfmt_schema() -> Schema:
    return Schema(
        format_name="logfmt",
        parse_strategy="logfmt",
        time_layout=RFC3339,
        level_mapping=dict(_LEVELS),
        fields=_fields(
            ("time", "string", "time", "time"),
            ("level", "string", "level", "level"),
            ("msg", "string", "message", "msg"),
        ),
        confidence=0.6,
    )


def apache_schema() -> Schema:
    return Schema(
        format_name="apache_combined",
        parse_strategy="regex",
        regex_pattern=(
            r'^(?P<ip>\S+) \S+ \S+ \[(?P<ts>[^\]]+)\] "(?P<method>[A-Z]+) (?P<path>[^\s]+) [^"]+" '
            r'(?P<status>\d{3}) (?P<size>\d+) "(?P<ref>[^"]*)" "(?P<ua>[^"]*)"'
        ),
        time_layout="%d/%b/%Y:%H:%M:%S %z",
        fields=_fields(
            ("ts", "string", "timestamp", "ts"),
            ("status", "int", "status", "status"),
            ("method", "string", "method", "method"),
            ("path", "string", "path", "path"),
            ("ip", "string", "client ip", "ip"),
        ),
        confidence=0.6,
    )


def syslog_schema() -> Schema:
    return Schema(
        format_name="syslog_rfc5424",
        parse_strategy="regex",
        regex_pattern=(
            r"^<(?P<pri>\d+)>1 (?P<ts>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:?\d{2})) "
            r"(?P<host>\S+) (?P<app>\S+) \S+ \S+ - (?P<msg>.*)$"
        ),
        time_layout=RFC3339,
        fields=_fields(
            ("ts", "string", "timestamp", "ts"),
            ("app", "string", "app", "app"),
            ("msg", "string", "message", "msg"),
        ),
        confidence=0.6,
    )


def unknown_schema() -> Schema:
    return Schema(
        format_name="unknown",
        parse_strategy="regex",
        regex_pattern=r"^(?P<msg>.*)$",
        fields=_fields(("msg", "string", "message", "msg")),
        confidence=0.0,
    )


TEMPLATES: dict[str, Callable[[], Schema]] = {
    "json": json_schema,
    "logfmt": logfmt_schema,
    "apache": apache_schema,
    "syslog": syslog_schema,
    "unknown": unknown_schema,
}


def template(name: str) -> Schema:
    """Return a fresh copy of the canned schema for a format name."""
    try:
        return TEMPLATES[name]()
    except KeyError:
        raise ValueError(f"no schema template for format {name!r}") from None


# ── Recognisers ──────────────────────────────────────────────────────────────


def looks_like_json(line: str) -> bool:
    return line.startswith("{") and line.endswith("}")


def looks_like_logfmt(line: str) -> bool:
    return _LOGFMT_KV_RE.search(line) is not None


def looks_like_apache(line: str) -> bool:
    return _APACHE_COMBINED_RE.match(line) is not None


def looks_like_syslog(line: str) -> bool:
    return _SYSLOG_RFC5424_RE.match(line) is not None


def _with_confidence(schema: Schema, hits: int, lines: int) -> Guess:
    confidence = hits / lines if lines else 0.0
    return Guess(schema=schema.model_copy(update={"confidence": confidence}), confidence=confidence)


def classify(sample: Sequence[str]) -> Guess:
    """Guess the format of sample. Deterministic for a given sample."""
    lines = json_hits = logfmt_hits = apache_hits = syslog_hits = 0
    for raw in sample:
        line = raw.strip()
        if not line:
            continue
        lines += 1
        json_hits += looks_like_json(line)
        logfmt_hits += looks_like_logfmt(line)
        apache_hits += looks_like_apache(line)
        syslog_hits += looks_like_syslog(line)

    if lines == 0:
        return Guess(schema=unknown_schema(), confidence=0.0)

    def clears_half(hits: int) -> bool:
        return hits * 2 >= lines

    if json_hits > max(logfmt_hits, apache_hits, syslog_hits) and clears_half(json_hits):
        return _with_confidence(json_schema(), json_hits, lines)
    if logfmt_hits >= max(apache_hits, syslog_hits) and clears_half(logfmt_hits):
        return _with_confidence(logfmt_schema(), logfmt_hits, lines)
    if apache_hits >= syslog_hits and apache_hits > 0:
        return _with_confidence(apache_schema(), apache_hits, lines)
    if syslog_hits > 0:
        return _with_confidence(syslog_schema(), syslog_hits, lines)
    return Guess(schema=unknown_schema(), confidence=0.0)

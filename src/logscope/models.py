"""Core data model: lines, schemas and parsed log entries.

``Schema`` and ``FieldDef`` are pydantic models because they travel as JSON
(schema cache, inference replies) using camelCase wire names::

    {"formatName": "logfmt", "parseStrategy": "logfmt", "timeLayout": "RFC3339",
     "levelMapping": {"warn": "WARN"}, "fields": [{"name": "msg", ...}], ...}

``Line`` and ``LogEntry`` are frozen dataclasses: produced once, never mutated.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# JSON-compatible values: the closed set of types a parsed field may hold.
FieldValue = Union[str, int, float, bool, None, list[Any], dict[str, Any]]

RFC3339 = "RFC3339"

STRATEGIES = ("json", "logfmt", "regex")

# Columns shown first, in this order; everything else follows alphabetically.
PREFERRED_COLUMNS: tuple[str, ...] = (
    "ts", "time", "timestamp", "level", "lvl", "severity",
    "source", "component", "msg", "message",
)


@dataclass(frozen=True)
class Line:
    """One raw line as emitted by a source reader."""

    text: str
    source: str
    observed_at: datetime


class FieldDef(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    type: str = "string"
    description: str = ""
    path_or_group: str = Field(default="", alias="pathOrGroup")


class Schema(BaseModel):
    """Description of a log format and how to parse it."""

    model_config = ConfigDict(populate_by_name=True)

    format_name: str = Field(default="unknown", alias="formatName")
    probable_sources: list[str] = Field(default_factory=list, alias="probableSources")
    parse_strategy: str = Field(default="regex", alias="parseStrategy")
    time_layout: str = Field(default="", alias="timeLayout")
    level_mapping: dict[str, str] = Field(default_factory=dict, alias="levelMapping")
    regex_pattern: str = Field(default="", alias="regexPattern")
    fields: list[FieldDef] = Field(default_factory=list)
    confidence: float = 0.0
    sample_parsed_row: dict[str, Any] = Field(default_factory=dict, alias="sampleParsedRow")

    @field_validator("parse_strategy", mode="before")
    @classmethod
    def _normalize_strategy(cls, value: Any) -> str:
        strategy = str(value or "").strip().lower()
        if strategy == "kv":
            return "logfmt"
        return strategy if strategy in STRATEGIES else "regex"

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        try:
            conf = float(value)
        except (TypeError, ValueError):
            return 0.0
        return min(max(conf, 0.0), 1.0)

    @field_validator("level_mapping", "sample_parsed_row", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("fields", "probable_sources", mode="before")
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        return [] if value is None else value

    def column_order(self) -> list[str]:
        """Field names ordered for display: preferred columns first, then by name."""
        rank = {name: i for i, name in enumerate(PREFERRED_COLUMNS)}
        names = [f.name for f in self.fields]
        return sorted(names, key=lambda n: (rank.get(n, len(PREFERRED_COLUMNS) + 1), n))

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


@dataclass(frozen=True)
class LogEntry:
    """A parsed log line.

    ``partial`` marks entries where the parser could not apply the schema and
    fell back to ``{"msg": raw}``.
    """

    raw: str
    fields: dict[str, FieldValue] = field(default_factory=dict)
    timestamp: datetime | None = None
    level: str = ""
    source: str = ""
    format_name: str = ""
    partial: bool = False

    def get(self, key: str, default: Any = None) -> Any:
        return self.fields.get(key, default)

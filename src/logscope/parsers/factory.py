"""Pick the parser strategy for a schema — once, at schema-construction time."""
from __future__ import annotations

from ..models import Schema
from .base import Parser
from .json_parser import JsonParser
from .logfmt import LogfmtParser
from .regex_parser import RegexParser

_STRATEGIES: dict[str, type] = {
    "json": JsonParser,
    "logfmt": LogfmtParser,
    "regex": RegexParser,
}


def build_parser(schema: Schema, forced_layout: str = "") -> Parser:
    """Return the parser for ``schema.parse_strategy`` (regex when unrecognised)."""
    cls = _STRATEGIES.get(schema.parse_strategy, RegexParser)
    return cls(schema, forced_layout)

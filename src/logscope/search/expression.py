"""Boolean filter expressions over entry fields, evaluated with simpleeval.

    level == "ERROR" and status >= 500
    service == 'api' && !(path == "/health")

Names available to an expression are the entry's fields plus ``level`` and
``ts`` (RFC3339). ``&&``, ``||`` and ``!`` are accepted as spellings of
``and``, ``or`` and ``not``. Evaluation fails closed: unknown names, type
errors or a non-boolean result all mean "no match".
"""
from __future__ import annotations

import ast
import logging
import re
from datetime import datetime, timezone
from typing import Any

from simpleeval import InvalidExpression, SimpleEval

from ..errors import CriteriaError
from ..models import LogEntry

logger = logging.getLogger(__name__)

# String literals are matched first so operators inside quotes are left alone.
_TOKEN_RE = re.compile(r"""("(?:\\.|[^"\\])*"|'(?:\\.|[^'\\])*')|&&|\|\||!(?!=)""")
_SPELLINGS = {"&&": " and ", "||": " or ", "!": " not "}

_CONSTANTS = {"true": True, "false": False, "nil": None, "null": None}


def translate(source: str) -> str:
    """Rewrite C-style boolean operators into Python's."""
    return _TOKEN_RE.sub(lambda m: m.group(1) or _SPELLINGS[m.group(0)], source)


def format_rfc3339(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    text = ts.isoformat(timespec="seconds")
    return text[:-6] + "Z" if text.endswith("+00:00") else text


def entry_names(entry: LogEntry) -> dict[str, Any]:
    """Parameters an expression sees for one entry."""
    names: dict[str, Any] = dict(_CONSTANTS)
    names.update(entry.fields)
    names["level"] = entry.level
    if entry.timestamp is not None:
        names["ts"] = format_rfc3339(entry.timestamp)
    return names


class Expression:
    """A parsed expression; parse once, evaluate per entry."""

    def __init__(self, source: str) -> None:
        self.source = source
        self._python = translate(source).strip()
        try:
            self._node: ast.AST = SimpleEval().parse(self._python)
        except (SyntaxError, InvalidExpression) as exc:
            raise CriteriaError(f"invalid expression {source!r}: {exc}") from exc

    def matches(self, entry: LogEntry) -> bool:
        evaluator = SimpleEval(names=entry_names(entry))
        try:
            result = evaluator.eval(self._python, previously_parsed=self._node)
        except Exception as exc:  # fail closed: any evaluation error hides the entry
            logger.debug("expression %r rejected entry: %s", self.source, exc)
            return False
        return result is True

    def __repr__(self) -> str:
        return f"Expression({self.source!r})"

"""Contract for external schema inference (e.g. an LLM behind an HTTP API).

The pipeline only needs to hand an inferrer a capped sample of lines plus a
cancel token carrying the timeout, and get back a Schema or an
``InferenceError``. Inferrers that receive a JSON reply can use
``schema_from_response`` to decode it; the expected contract is::

    {"formatName": "...", "probableSources": [...], "parseStrategy": "json|logfmt|regex",
     "timeLayout": "...", "levelMapping": {...},
     "schema": {"fields": [{"name", "type", "description", "pathOrGroup"}]},
     "regexPattern": "...", "confidence": 0.9, "sampleParsedRow": {...}}
"""
from __future__ import annotations

import json
from typing import Any, Protocol, Sequence, runtime_checkable

from pydantic import ValidationError

from ..errors import InferenceError
from ..ingest.cancel import CancelToken
from ..models import Schema

_SNIPPET = 200


@runtime_checkable
class SchemaInferrer(Protocol):
    def infer(self, lines: Sequence[str], token: CancelToken) -> Schema:
        """Return a Schema for lines or raise InferenceError.

        Implementations must give up once ``token.cancelled`` turns true;
        ``token.remaining`` is the time budget left.
        """
        ...


def cap_sample(lines: Sequence[str], limit: int) -> list[str]:
    """The first ``limit`` non-blank lines."""
    return [line for line in lines if line.strip()][: max(limit, 0)]


def _decode_object(text: str) -> dict[str, Any]:
    try:
        obj = json.loads(text)
    except ValueError as exc:
        # Replies sometimes wrap the object in prose or code fences.
        start, end = text.find("{"), text.rfind("}")
        if start < 0 or end <= start:
            raise InferenceError(f"invalid JSON from inferrer: {exc}; content: {text[:_SNIPPET]}") from exc
        try:
            obj = json.loads(text[start : end + 1])
        except ValueError as exc2:
            raise InferenceError(f"invalid JSON from inferrer: {exc2}; content: {text[:_SNIPPET]}") from exc2
    if not isinstance(obj, dict):
        raise InferenceError(f"inferrer reply is not a JSON object: {text[:_SNIPPET]}")
    return obj


def schema_from_response(text: str) -> Schema:
    """Decode an inferrer reply into a Schema. Raises InferenceError."""
    obj = _decode_object(text)
    nested = obj.pop("schema", None)
    if isinstance(nested, dict) and "fields" not in obj:
        obj["fields"] = nested.get("fields") or []
    try:
        schema = Schema.model_validate(obj)
    except ValidationError as exc:
        raise InferenceError(f"inferrer reply does not describe a schema: {exc}") from exc
    if not schema.format_name.strip():
        raise InferenceError("inferrer reply has no formatName")
    return schema

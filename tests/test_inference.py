"""Tests for decoding external schema-inference replies."""
from __future__ import annotations

import json

import pytest

from logscope.detect.inference import SchemaInferrer, cap_sample, schema_from_response
from logscope.errors import InferenceError
from logscope.ingest.cancel import CancelToken
from logscope.models import Schema

REPLY = {
    "formatName": "nginx_access",
    "probableSources": ["nginx"],
    "parseStrategy": "regex",
    "timeLayout": "02/Jan/2006:15:04:05 -0700",
    "levelMapping": {"5xx": "ERROR"},
    "schema": {"fields": [{"name": "status", "type": "int", "description": "HTTP status", "pathOrGroup": "status"}]},
    "regexPattern": r"^(?<ip>\S+) .* (?<status>\d{3})$",
    "confidence": 0.92,
    "sampleParsedRow": {"status": 200},
}


class TestSchemaFromResponse:
    def test_plain_json(self) -> None:
        schema = schema_from_response(json.dumps(REPLY))
        assert schema.format_name == "nginx_access"
        assert schema.parse_strategy == "regex"
        assert [f.name for f in schema.fields] == ["status"]
        assert schema.fields[0].path_or_group == "status"
        assert schema.level_mapping == {"5xx": "ERROR"}
        assert schema.confidence == pytest.approx(0.92)

    def test_object_wrapped_in_prose(self) -> None:
        text = "Here is the schema:\n```json\n" + json.dumps(REPLY) + "\n```\nLet me know!"
        assert schema_from_response(text).format_name == "nginx_access"

    def test_top_level_fields_win_over_nested(self) -> None:
        reply = {**REPLY, "fields": [{"name": "top"}]}
        assert [f.name for f in schema_from_response(json.dumps(reply)).fields] == ["top"]

    @pytest.mark.parametrize("text", [
        "",
        "no json here",
        "{broken",
        "[1, 2]",
        '{"formatName": ""}',
        '{"formatName": "x", "fields": "nope"}',
    ])
    def test_malformed_replies(self, text: str) -> None:
        with pytest.raises(InferenceError):
            schema_from_response(text)


def test_cap_sample_skips_blank_lines() -> None:
    assert cap_sample(["a", "", "  ", "b", "c"], 2) == ["a", "b"]
    assert cap_sample(["a"], 0) == []


def test_inferrer_protocol() -> None:
    class Echo:
        def infer(self, lines, token: CancelToken) -> Schema:
            return Schema(format_name=lines[0])

    assert isinstance(Echo(), SchemaInferrer)

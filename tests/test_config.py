"""Tests for Settings, diagnostics logging and the data model."""
from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError

from logscope.config import MIN_BUFFER, Settings
from logscope.logs import MemoryLogHandler, configure_logging
from logscope.models import FieldDef, LogEntry, Schema


class TestSettings:
    def test_defaults(self, settings) -> None:
        s = Settings(_env_file=None)
        assert s.max_buffer == 200_000
        assert s.drain_max_lines == 500
        assert s.detect_max_sample == 200
        assert s.inference_timeout_sec == 120.0
        assert s.redetect_failure_streak == 0
        assert not s.online

    def test_buffer_floor(self, settings) -> None:
        assert settings(max_buffer=10).max_buffer == MIN_BUFFER

    def test_env_prefix(self, settings, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOGSCOPE_DRAIN_MAX_LINES", "42")
        monkeypatch.setenv("LOGSCOPE_FORCE_FORMAT", "LOGFMT")
        s = Settings(_env_file=None)
        assert s.drain_max_lines == 42
        assert s.force_format == "logfmt"

    def test_unknown_forced_format(self, settings) -> None:
        with pytest.raises(ValidationError):
            settings(force_format="xml")

    def test_online_needs_key_and_not_offline(self, settings, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        assert Settings(_env_file=None).online
        assert not Settings(_env_file=None, offline=True).online

    def test_block_size_bytes(self, settings) -> None:
        assert settings(block_size_mb=3).block_size_bytes == 3 * 1024 * 1024
        assert settings(block_size_mb=-1).block_size_bytes == 0


class TestLogging:
    def test_memory_handler_is_bounded(self) -> None:
        handler = MemoryLogHandler(capacity=3)
        log = logging.getLogger("logscope.test.memory")
        log.addHandler(handler)
        log.setLevel(logging.INFO)
        try:
            for i in range(5):
                log.info("line %d", i)
        finally:
            log.removeHandler(handler)
        lines = handler.lines()
        assert len(lines) == 3
        assert lines[-1].endswith("line 4")
        assert handler.dump().count("\n") == 2

    def test_configure_logging_replaces_handlers(self, settings) -> None:
        first = configure_logging(settings(log_level="debug"))
        second = configure_logging(settings(log_level="warning"))
        logger = logging.getLogger("logscope")
        try:
            assert first not in logger.handlers
            assert second in logger.handlers
            assert logger.level == logging.WARNING
            logging.getLogger("logscope.pipeline").warning("cache down")
            assert any("cache down" in line for line in second.lines())
        finally:
            logger.removeHandler(second)
            logger.propagate = True

    def test_stderr_handler_optional(self, settings) -> None:
        from rich.logging import RichHandler

        configure_logging(settings(log_stderr=True))
        logger = logging.getLogger("logscope")
        try:
            assert any(isinstance(h, RichHandler) for h in logger.handlers)
        finally:
            for h in list(logger.handlers):
                logger.removeHandler(h)
            logger.propagate = True


class TestModel:
    def test_schema_wire_names(self) -> None:
        schema = Schema(
            format_name="nginx", parse_strategy="regex", regex_pattern="x",
            fields=[FieldDef(name="status", path_or_group="status")],
        )
        payload = schema.to_json()
        assert '"formatName":"nginx"' in payload
        assert '"pathOrGroup":"status"' in payload
        assert Schema.model_validate_json(payload) == schema

    def test_strategy_normalisation(self) -> None:
        assert Schema(parse_strategy="KV").parse_strategy == "logfmt"
        assert Schema(parse_strategy="yaml").parse_strategy == "regex"
        assert Schema.model_validate({"parseStrategy": None}).parse_strategy == "regex"

    def test_confidence_clamped(self) -> None:
        assert Schema(confidence=3).confidence == 1.0
        assert Schema(confidence=-1).confidence == 0.0
        assert Schema.model_validate({"confidence": "high"}).confidence == 0.0

    def test_column_order(self) -> None:
        schema = Schema(fields=[FieldDef(name=n) for n in ("zeta", "msg", "alpha", "level", "ts")])
        assert schema.column_order() == ["ts", "level", "msg", "alpha", "zeta"]

    def test_log_entry_is_frozen(self) -> None:
        entry = LogEntry(raw="x", fields={"a": 1})
        with pytest.raises(AttributeError):
            entry.raw = "y"  # type: ignore[misc]
        assert entry.get("a") == 1
        assert entry.get("b", "-") == "-"

"""Shared pytest fixtures for logscope tests."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from logscope.config import Settings
from logscope.models import Line, LogEntry


@pytest.fixture()
def tmp_log_file(tmp_path: Path):
    """Return a factory that creates temporary log files."""

    def _make(lines: list[str], name: str = "test.log") -> Path:
        p = tmp_path / name
        p.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return p

    return _make


@pytest.fixture()
def settings(monkeypatch: pytest.MonkeyPatch):
    """Return a factory for isolated Settings (no env, no .env, fast windows)."""
    for var in ("OPENAI_API_KEY", "LOGSCOPE_OPENAI_API_KEY", "LOGSCOPE_FORCE_FORMAT"):
        monkeypatch.delenv(var, raising=False)

    def _make(**overrides) -> Settings:
        values = {
            "detect_window_seconds": 0.05,
            "poll_interval": 0.01,
            "demo_interval": 0.01,
            "tick_interval": 0.01,
            "no_cache": True,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture()
def make_line():
    def _make(text: str, source: str = "test") -> Line:
        return Line(text=text, source=source, observed_at=datetime.now(timezone.utc))

    return _make


@pytest.fixture()
def make_entry():
    def _make(raw: str = "", level: str = "", **fields) -> LogEntry:
        return LogEntry(raw=raw or json.dumps(fields), fields=fields, level=level)

    return _make


@pytest.fixture()
def json_log_lines() -> list[str]:
    return [
        json.dumps({"ts": "2025-08-01T10:00:00Z", "level": "info", "msg": "startup", "service": "api"}),
        json.dumps({"ts": "2025-08-01T10:00:01Z", "level": "error", "msg": "disk full", "service": "db"}),
        json.dumps({"ts": "2025-08-01T10:00:02Z", "level": "warn", "msg": "retry", "service": "api"}),
        json.dumps({"ts": "2025-08-01T10:00:03Z", "level": "info", "msg": "done", "service": "api"}),
    ]


@pytest.fixture()
def logfmt_lines() -> list[str]:
    return [
        'time=2025-08-01T10:00:00Z level=info msg="request done" path=/v1/items status=200',
        'time=2025-08-01T10:00:01Z level=error msg="upstream timeout" path=/v1/jobs status=504',
        'time=2025-08-01T10:00:02Z level=warn msg="slow request" path=/v1/items status=200',
    ]


@pytest.fixture()
def apache_log_lines() -> list[str]:
    return [
        '192.168.1.1 - - [01/Aug/2025:10:00:00 +0000] "GET /api/v1/health HTTP/1.1" 200 512 "-" "curl/8.0"',
        '10.0.0.1 - bob [01/Aug/2025:10:00:01 +0000] "POST /api/v1/jobs HTTP/1.1" 201 1024 "-" "httpx"',
        '192.168.1.2 - - [01/Aug/2025:10:00:02 +0000] "GET /missing HTTP/1.1" 404 128 "-" "curl/8.0"',
    ]


@pytest.fixture()
def syslog_lines() -> list[str]:
    return [
        "<34>1 2025-08-01T10:00:00Z webserver sshd - - - Accepted publickey for admin",
        "<11>1 2025-08-01T10:00:01Z webserver kernel - - - Out of memory: Kill process 5678",
        "<30>1 2025-08-01T10:00:02Z webserver cron - - - (root) CMD (/usr/bin/backup.sh)",
    ]

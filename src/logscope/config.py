"""Configuration via pydantic-settings — 12-factor app style."""
from __future__ import annotations

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Smallest ring capacity a session will run with.
MIN_BUFFER = 50_000

FORCED_FORMATS = ("", "json", "logfmt", "regex", "apache", "syslog")


class Settings(BaseSettings):
    """Logscope configuration — loaded from env vars / .env file."""

    model_config = SettingsConfigDict(
        env_prefix="LOGSCOPE_", env_file=".env", extra="ignore", populate_by_name=True
    )

    # Buffering
    max_buffer: int = Field(default=200_000, description=f"Ring buffer size in entries (min {MIN_BUFFER})")

    # Sources
    block_size_mb: int = Field(default=0, description="Static file reads: only the last N MiB (0 = whole file)")
    max_line_bytes: int = Field(default=1024 * 1024, description="Longest accepted line in bytes")
    poll_interval: float = Field(default=0.25, description="Follow-mode poll interval in seconds")
    demo_interval: float = Field(default=0.5, description="Seconds between demo lines")

    # Detection
    detect_window_seconds: float = Field(default=1.0, description="Minimum sampling time before detection")
    detect_max_sample: int = Field(default=200, description="Lines handed to the classifier")
    redetect_window: int = Field(default=50, description="Recent entries considered on re-detect")
    redetect_sample: int = Field(default=10, description="Prefix of the re-detect window that is classified")
    redetect_failure_streak: int = Field(default=0, description="Consecutive partial parses that trigger re-detect (0 = off)")
    force_format: str = Field(default="", description="Force format: json|logfmt|regex|apache|syslog")
    time_layout: str = Field(default="", description="Force a strptime layout for timestamps")

    # Steady state
    tick_interval: float = Field(default=0.2, description="Seconds between drain ticks")
    drain_max_lines: int = Field(default=500, description="Lines drained per tick")
    drain_max_errors: int = Field(default=20, description="Ingest errors drained per tick")

    # External inference + cache
    offline: bool = Field(default=False, description="Never call the external schema inferrer")
    no_cache: bool = Field(default=False, description="Skip schema cache reads and writes")
    openai_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("OPENAI_API_KEY", "LOGSCOPE_OPENAI_API_KEY"),
        description="API key enabling external schema inference",
    )
    inference_timeout_sec: float = Field(default=120.0, description="External inference timeout")
    inference_max_lines: int = Field(default=50, description="Lines sent to the external inferrer")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis URL for the schema cache")
    cache_ttl: int = Field(default=30 * 24 * 3600, description="Schema cache TTL in seconds")

    # Diagnostics
    log_level: str = Field(default="INFO", description="Diagnostic log level")
    log_stderr: bool = Field(default=False, description="Also write diagnostics to stderr")

    @field_validator("max_buffer")
    @classmethod
    def _floor_buffer(cls, value: int) -> int:
        return max(value, MIN_BUFFER)

    @field_validator("force_format")
    @classmethod
    def _check_format(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in FORCED_FORMATS:
            raise ValueError(f"unknown format {value!r}; expected one of {', '.join(FORCED_FORMATS[1:])}")
        return value

    @property
    def online(self) -> bool:
        """True when external schema inference may be used."""
        return not self.offline and bool(self.openai_api_key.strip())

    @property
    def block_size_bytes(self) -> int:
        return max(self.block_size_mb, 0) * 1024 * 1024

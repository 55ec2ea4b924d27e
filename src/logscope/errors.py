"""Exception hierarchy shared across logscope."""
from __future__ import annotations


class LogscopeError(Exception):
    """Base class for all logscope errors."""


# ── Input ────────────────────────────────────────────────────────────────────


class SourceError(LogscopeError):
    """A problem reading from a log source."""

    def __init__(self, message: str, source: str = "") -> None:
        super().__init__(message)
        self.source = source


class SourceOpenError(SourceError):
    """The source could not be opened at all. Ends the stream."""


class LineTooLongError(SourceError):
    """A single line exceeded the configured maximum length. Non-fatal."""

    def __init__(self, source: str, limit: int) -> None:
        super().__init__(
            f"line too long in {source}: exceeds {limit} bytes (raise LOGSCOPE_MAX_LINE_BYTES)",
            source,
        )
        self.limit = limit


class TailTargetRemovedError(SourceError):
    """A followed file disappeared and did not come back. Ends the stream."""


# ── Filtering ────────────────────────────────────────────────────────────────


class CriteriaError(LogscopeError):
    """A query regex or filter expression failed to compile."""


# ── Detection ────────────────────────────────────────────────────────────────


class DetectionError(LogscopeError):
    """Format detection could not run."""


class NoInputError(DetectionError):
    """The source closed before any line arrived."""


class NothingToDetectError(DetectionError):
    """Re-detection was requested while the buffer is empty."""


class InferenceError(LogscopeError):
    """External schema inference failed: timeout, transport or malformed reply."""

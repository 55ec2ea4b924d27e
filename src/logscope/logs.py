"""Diagnostic logging setup.

Modules log through ``logging.getLogger(__name__)``. ``configure_logging``
routes the ``logscope`` logger to a bounded in-memory buffer (for an in-app
diagnostics pane) and optionally to stderr through rich.
"""
from __future__ import annotations

import logging
import threading
from collections import deque

from rich.logging import RichHandler

from .config import Settings

MEMORY_LINES = 500
_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class MemoryLogHandler(logging.Handler):
    """Keep the last ``capacity`` formatted records."""

    def __init__(self, capacity: int = MEMORY_LINES) -> None:
        super().__init__()
        self._lines: deque[str] = deque(maxlen=capacity)
        self._guard = threading.Lock()
        self.setFormatter(logging.Formatter(_FORMAT))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            text = self.format(record)
        except Exception:
            self.handleError(record)
            return
        with self._guard:
            self._lines.append(text)

    def lines(self) -> list[str]:
        with self._guard:
            return list(self._lines)

    def dump(self) -> str:
        return "\n".join(self.lines())

    def clear(self) -> None:
        with self._guard:
            self._lines.clear()


def configure_logging(settings: Settings, logger_name: str = "logscope") -> MemoryLogHandler:
    """Attach logscope's handlers; returns the memory handler.

    Safe to call more than once: handlers from an earlier call are replaced.
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(settings.log_level.upper())
    for handler in list(logger.handlers):
        if isinstance(handler, (MemoryLogHandler, RichHandler)):
            logger.removeHandler(handler)

    memory = MemoryLogHandler()
    logger.addHandler(memory)
    if settings.log_stderr:
        logger.addHandler(RichHandler(show_path=False, rich_tracebacks=False))
    logger.propagate = False
    return memory

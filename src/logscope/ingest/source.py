"""Source readers: stdin, static file, followed file and demo generator.

``read()`` starts one producer thread and returns two bounded channels::

    token = CancelToken()
    streams = read(token, SourceOptions(kind=SourceKind.FILE, path="app.log", follow=True))
    line = streams.lines.recv(timeout=1.0)

Per-line problems (oversized lines) go to ``streams.errors`` and reading
continues. Failures that end the stream (open failure, tail target removed)
are reported once, then both channels close. Cancelling the token stops the
producer promptly and closes both channels.
"""
from __future__ import annotations

import enum
import itertools
import logging
import os
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import BinaryIO, Callable, Iterator

from ..errors import LineTooLongError, SourceError, SourceOpenError
from ..models import Line
from .cancel import CancelToken
from .channel import Channel
from .tailer import FileTailer, FileWatch, Follower, Watch

logger = logging.getLogger(__name__)

LINE_CAPACITY = 1024
ERROR_CAPACITY = 64
# Longest a follower sleeps without a change event; bounds the removal grace check.
IDLE_RECHECK = 1.0

DEMO_LINES = (
    '{"ts":"2025-01-01T12:00:00Z","level":"info","service":"api","msg":"server started","port":8080}',
    'time=2025-01-01T12:00:01Z level=warn user_id=42 msg="slow request" path=/v1/items lat_ms=512',
    '127.0.0.1 - - [01/Jan/2025:12:00:02 +0000] "GET /index.html HTTP/1.1" 200 1234 "-" "curl/8.0"',
    "<34>1 2025-01-01T12:00:03Z myhost app - - - User login ok",
)


class SourceKind(str, enum.Enum):
    STDIN = "stdin"
    FILE = "file"
    DEMO = "demo"


FollowerFactory = Callable[[str, "int | None", int], Follower]


def _default_follower(path: str, start_offset: int | None, max_line_bytes: int) -> Follower:
    return FileTailer(path, start_offset=start_offset, max_line_bytes=max_line_bytes)


WatchFactory = Callable[[str, float], Watch]


def _default_watch(path: str, interval: float) -> Watch:
    return FileWatch(path, interval=interval)


@dataclass
class SourceOptions:
    kind: SourceKind = SourceKind.DEMO
    path: str = ""
    follow: bool = False
    max_line_bytes: int = 1024 * 1024
    # Static reads only: read just the last N bytes (0 = whole file).
    block_size_bytes: int = 0
    # Where to start reading (static resume or follow restart). None = default.
    start_offset: int | None = None
    poll_interval: float = 0.25
    demo_interval: float = 0.5
    stdin: BinaryIO | None = None
    follower_factory: FollowerFactory = _default_follower
    watch_factory: WatchFactory = _default_watch

    @property
    def source_name(self) -> str:
        if self.kind is SourceKind.FILE:
            return self.path
        return self.kind.value


@dataclass
class SourceStreams:
    lines: Channel[Line]
    errors: Channel[SourceError]
    source: str
    # Byte offset reached in a file source; lets a follow restart resume here.
    offset: int | None = None
    thread: threading.Thread | None = field(default=None, repr=False)

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the producer to finish. True if it has."""
        if self.thread is None:
            return True
        self.thread.join(timeout)
        return not self.thread.is_alive()


def read(token: CancelToken, options: SourceOptions) -> SourceStreams:
    """Start reading options' source in a background thread."""
    streams = SourceStreams(
        lines=Channel(LINE_CAPACITY),
        errors=Channel(ERROR_CAPACITY),
        source=options.source_name,
    )
    thread = threading.Thread(
        target=_produce,
        args=(token, options, streams),
        name=f"logscope-source-{options.kind.value}",
        daemon=True,
    )
    streams.thread = thread
    thread.start()
    return streams


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _produce(token: CancelToken, options: SourceOptions, streams: SourceStreams) -> None:
    try:
        if options.kind is SourceKind.STDIN:
            stdin = options.stdin or sys.stdin.buffer
            _scan(token, stdin, "stdin", options.max_line_bytes, streams)
        elif options.kind is SourceKind.FILE and options.follow:
            _follow(token, options, streams)
        elif options.kind is SourceKind.FILE:
            _read_file(token, options, streams)
        elif options.kind is SourceKind.DEMO:
            _demo(token, options, streams)
        else:
            streams.errors.send(SourceOpenError(f"unknown source kind {options.kind!r}"), token)
    except SourceError as exc:
        streams.errors.send(exc, token)
    except OSError as exc:
        streams.errors.send(SourceError(f"{streams.source}: {exc}", streams.source), token)
    finally:
        logger.debug("source %s: producer finished (cancelled=%s)", streams.source, token.cancelled)
        streams.lines.close()
        streams.errors.close()


def iter_lines(fh: BinaryIO, max_line_bytes: int) -> Iterator[tuple[bytes | None, int, bool]]:
    """Yield (line_without_newline, bytes_consumed, terminated); line is None when oversized.

    An oversized line is consumed up to its newline so reading resumes cleanly
    on the next one.
    """
    while True:
        raw = fh.readline(max_line_bytes + 1)
        if not raw:
            return
        consumed = len(raw)
        if raw.endswith(b"\n"):
            yield raw[:-1].rstrip(b"\r"), consumed, True
            continue
        if len(raw) <= max_line_bytes:
            # Final line without a trailing newline.
            yield raw.rstrip(b"\r"), consumed, False
            continue
        while not raw.endswith(b"\n"):
            raw = fh.readline(max_line_bytes + 1)
            if not raw:
                break
            consumed += len(raw)
        yield None, consumed, raw.endswith(b"\n")


def _scan(
    token: CancelToken,
    fh: BinaryIO,
    source: str,
    max_line_bytes: int,
    streams: SourceStreams,
    position: int = 0,
) -> None:
    for raw, consumed, terminated in iter_lines(fh, max_line_bytes):
        if token.cancelled:
            return
        position += consumed
        if raw is None:
            sent = streams.errors.send(LineTooLongError(source, max_line_bytes), token)
        else:
            text = raw.decode("utf-8", errors="replace")
            sent = streams.lines.send(Line(text=text, source=source, observed_at=_now()), token)
        if not sent:
            return
        # An unterminated last line may still be growing; resume before it.
        if streams.offset is not None and terminated:
            streams.offset = position


def _read_file(token: CancelToken, options: SourceOptions, streams: SourceStreams) -> None:
    path = options.path
    try:
        fh = open(path, "rb")
    except OSError as exc:
        raise SourceOpenError(f"cannot open {path}: {exc}", path) from exc
    with fh:
        size = os.fstat(fh.fileno()).st_size
        start = 0
        drop_partial = False
        if options.start_offset is not None:
            start = min(max(options.start_offset, 0), size)
        elif 0 < options.block_size_bytes < size:
            start = size - options.block_size_bytes
            drop_partial = True
        fh.seek(start)
        if drop_partial:
            start += len(fh.readline())
        streams.offset = start
        logger.info("source %s: static read from byte %d of %d", path, start, size)
        _scan(token, fh, path, options.max_line_bytes, streams, position=start)


def _follow(token: CancelToken, options: SourceOptions, streams: SourceStreams) -> None:
    watch = options.watch_factory(options.path, options.poll_interval)
    follower = options.follower_factory(options.path, options.start_offset, options.max_line_bytes)
    follower.open()
    logger.info("source %s: following from byte %d", options.path, follower.offset)
    try:
        watch.start()
        while not token.cancelled:
            lines, errors = follower.poll()
            for err in errors:
                if not streams.errors.send(err, token):
                    return
            for text in lines:
                if not streams.lines.send(Line(text=text, source=options.path, observed_at=_now()), token):
                    return
            streams.offset = follower.offset
            if not lines:
                watch.wait(token, max(options.poll_interval, IDLE_RECHECK))
    finally:
        watch.stop()
        follower.close()


def _demo(token: CancelToken, options: SourceOptions, streams: SourceStreams) -> None:
    for text in itertools.cycle(DEMO_LINES):
        if token.wait(options.demo_interval):
            return
        if not streams.lines.send(Line(text=text, source="demo", observed_at=_now()), token):
            return

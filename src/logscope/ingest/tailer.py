"""Follow a growing file, tolerating truncation and rotation.

The reader talks to a ``Follower``; ``FileTailer`` is the real implementation
and tests substitute their own. ``FileTailer`` does not sleep: the caller
decides when to ``poll()`` again, normally when a ``FileWatch`` reports that
watchdog saw the file change.

Behaviour:
* the file must exist when ``open()`` is called (``SourceOpenError`` otherwise)
* a shrinking file (size < offset) is treated as truncation and re-read from 0
* an inode change is treated as rotation: the new file is read from 0
* a file that stays missing longer than ``reopen_grace`` raises
  ``TailTargetRemovedError``
* partial trailing lines are held until their newline arrives; a partial line
  that outgrows ``max_line_bytes`` is reported and skipped up to the next newline

Files are opened in binary mode so offsets are comparable with ``st_size``.
"""
from __future__ import annotations

import logging
import os
import threading
import time
from typing import IO, Any, Callable, Protocol, runtime_checkable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers.polling import PollingObserverVFS

from ..errors import LineTooLongError, SourceError, SourceOpenError, TailTargetRemovedError
from .cancel import CancelToken

logger = logging.getLogger(__name__)

# Granularity at which FileWatch.wait notices cancellation.
_WAKE_SLICE = 0.05


@runtime_checkable
class Follower(Protocol):
    def open(self) -> None: ...

    def poll(self) -> tuple[list[str], list[SourceError]]: ...

    @property
    def offset(self) -> int: ...

    def close(self) -> None: ...


def _decode(raw: bytes) -> str:
    return raw.rstrip(b"\r").decode("utf-8", errors="replace")


class FileTailer:
    def __init__(
        self,
        path: str,
        *,
        start_offset: int | None = None,
        max_line_bytes: int = 1024 * 1024,
        max_read_bytes: int = 1024 * 1024,
        reopen_grace: float = 5.0,
        opener: Callable[[str], IO[bytes]] | None = None,
        stat: Callable[[str], Any] = os.stat,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.path = path
        self._start_offset = start_offset
        self._max_line = max(int(max_line_bytes), 1)
        self._max_read = max(int(max_read_bytes), 4096)
        self._grace = reopen_grace
        self._opener = opener or (lambda p: open(p, "rb"))
        self._stat = stat
        self._clock = clock

        self._fh: IO[bytes] | None = None
        self._inode: int | None = None
        self._pos = 0
        self._buffer = b""
        self._discarding = False
        self._missing_since: float | None = None

    # ------------------------------------------------------------------

    def open(self) -> None:
        try:
            info = self._stat(self.path)
            self._fh = self._opener(self.path)
        except OSError as exc:
            raise SourceOpenError(f"cannot follow {self.path}: {exc}", self.path) from exc
        self._inode = getattr(info, "st_ino", None)
        size = int(info.st_size)
        if self._start_offset is None:
            self._pos = size
        else:
            # A resume point past EOF means the file was truncated meanwhile.
            self._pos = self._start_offset if 0 <= self._start_offset <= size else 0

    @property
    def offset(self) -> int:
        """Byte offset of the first line not yet returned."""
        return self._pos - len(self._buffer)

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    def _reset(self, reopen: bool) -> None:
        self._pos = 0
        self._buffer = b""
        self._discarding = False
        if reopen:
            self.close()
            self._fh = self._opener(self.path)

    def poll(self) -> tuple[list[str], list[SourceError]]:
        """Read whatever was appended since the last poll."""
        if self._fh is None:
            raise SourceError(f"{self.path}: poll() before open()", self.path)
        try:
            info = self._stat(self.path)
        except FileNotFoundError:
            now = self._clock()
            if self._missing_since is None:
                self._missing_since = now
            elif now - self._missing_since > self._grace:
                raise TailTargetRemovedError(f"{self.path} was removed", self.path) from None
            return [], []
        self._missing_since = None

        inode = getattr(info, "st_ino", None)
        if self._inode is not None and inode is not None and inode != self._inode:
            self._inode = inode
            self._reset(reopen=True)
        elif int(info.st_size) < self._pos:
            self._reset(reopen=False)

        self._fh.seek(self._pos)
        chunk = self._fh.read(self._max_read)
        if not chunk:
            return [], []
        self._pos += len(chunk)
        return self._split(chunk)

    def _split(self, chunk: bytes) -> tuple[list[str], list[SourceError]]:
        lines: list[str] = []
        errors: list[SourceError] = []
        data = self._buffer + chunk
        *complete, self._buffer = data.split(b"\n")
        for raw in complete:
            if self._discarding:
                self._discarding = False
                continue
            if len(raw.rstrip(b"\r")) > self._max_line:
                errors.append(LineTooLongError(self.path, self._max_line))
                continue
            lines.append(_decode(raw))
        if len(self._buffer) > self._max_line:
            if not self._discarding:
                errors.append(LineTooLongError(self.path, self._max_line))
            self._discarding = True
            self._buffer = b""
        return lines, errors


@runtime_checkable
class Watch(Protocol):
    def start(self) -> None: ...

    def wait(self, token: CancelToken, timeout: float) -> bool: ...

    def stop(self) -> None: ...


class _TargetHandler(FileSystemEventHandler):
    """Flag any event touching one file: append, truncate, create, move or delete."""

    def __init__(self, path: str, changed: threading.Event) -> None:
        super().__init__()
        self._path = path
        self._changed = changed

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        paths = {os.path.abspath(os.fsdecode(event.src_path))}
        dest = getattr(event, "dest_path", "")
        if dest:
            paths.add(os.path.abspath(os.fsdecode(dest)))
        if self._path in paths:
            self._changed.set()


class FileWatch:
    """Watch one file's directory with watchdog and wake the follow loop on change.

    ``PollingObserverVFS`` snapshots the directory every ``interval`` seconds
    through the given ``stat``/``listdir``, so rotation (a new inode under the
    same name) and removal are seen the same way appends are.
    """

    def __init__(
        self,
        path: str,
        *,
        interval: float = 0.25,
        stat: Callable[[str], Any] = os.stat,
        listdir: Callable[[str], Any] = os.listdir,
    ) -> None:
        self.path = os.path.abspath(path)
        self._changed = threading.Event()
        self._observer = PollingObserverVFS(stat, listdir, polling_interval=interval)
        self._observer.schedule(
            _TargetHandler(self.path, self._changed), os.path.dirname(self.path), recursive=False
        )
        self._started = False

    def start(self) -> None:
        self._observer.start()
        self._started = True
        logger.debug("watch: observing %s", self.path)

    def wait(self, token: CancelToken, timeout: float) -> bool:
        """Block until the file changes (True) or timeout/cancellation (False)."""
        deadline = time.monotonic() + timeout
        while not token.cancelled:
            left = deadline - time.monotonic()
            if left <= 0:
                return False
            if self._changed.wait(min(left, _WAKE_SLICE)):
                self._changed.clear()
                return True
        return False

    def stop(self) -> None:
        if not self._started:
            return
        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._started = False

"""Tests for channels, cancel tokens, the file tailer and source readers."""
from __future__ import annotations

import io
import stat
import threading
import time
from types import SimpleNamespace

import pytest

from logscope.errors import LineTooLongError, SourceError, SourceOpenError, TailTargetRemovedError
from logscope.ingest.cancel import CancelToken
from logscope.ingest.channel import Channel, Closed, Empty
from logscope.ingest.source import DEMO_LINES, SourceKind, SourceOptions, iter_lines, read
from logscope.ingest.tailer import FileTailer, FileWatch, Follower, Watch


def collect(channel: Channel, timeout: float = 3.0) -> list:
    """Receive until the channel closes."""
    items = []
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            items.append(channel.recv(timeout=0.05))
        except Empty:
            continue
        except Closed:
            return items
    raise AssertionError("channel never closed")


# ---------------------------------------------------------------------------
# Channel
# ---------------------------------------------------------------------------

class TestChannel:
    def test_fifo(self) -> None:
        ch: Channel[int] = Channel(4)
        for i in range(3):
            assert ch.send(i)
        assert [ch.try_recv() for _ in range(3)] == [0, 1, 2]

    def test_try_recv_empty(self) -> None:
        with pytest.raises(Empty):
            Channel(1).try_recv()

    def test_recv_timeout(self) -> None:
        with pytest.raises(Empty):
            Channel(1).recv(timeout=0.01)

    def test_close_drains_then_raises(self) -> None:
        ch: Channel[str] = Channel(2)
        ch.send("a")
        ch.close()
        assert ch.send("b") is False
        assert ch.recv(timeout=0.1) == "a"
        with pytest.raises(Closed):
            ch.recv(timeout=0.1)
        with pytest.raises(Closed):
            ch.try_recv()

    def test_full_channel_send_stops_on_cancel(self) -> None:
        ch: Channel[int] = Channel(1)
        ch.send(1)
        token = CancelToken()
        threading.Timer(0.05, token.cancel).start()
        assert ch.send(2, token) is False
        assert len(ch) == 1

    def test_full_channel_send_resumes_after_recv(self) -> None:
        ch: Channel[int] = Channel(1)
        ch.send(1)
        threading.Timer(0.05, ch.try_recv).start()
        assert ch.send(2) is True
        assert ch.try_recv() == 2

    def test_invalid_capacity(self) -> None:
        with pytest.raises(ValueError):
            Channel(0)


# ---------------------------------------------------------------------------
# CancelToken
# ---------------------------------------------------------------------------

class TestCancelToken:
    def test_parent_cancels_children(self) -> None:
        parent = CancelToken()
        a, b = parent.child(), parent.child()
        parent.cancel()
        assert a.cancelled and b.cancelled

    def test_child_does_not_cancel_parent(self) -> None:
        parent = CancelToken()
        child = parent.child()
        child.cancel()
        assert child.cancelled
        assert not parent.cancelled
        assert not parent.child().cancelled

    def test_child_of_cancelled_parent(self) -> None:
        parent = CancelToken()
        parent.cancel()
        assert parent.child().cancelled

    def test_deadline(self) -> None:
        token = CancelToken(timeout=0.02)
        assert not token.cancelled
        assert token.wait(1.0) is True
        assert token.cancelled

    def test_remaining_inherits_nearest_deadline(self) -> None:
        parent = CancelToken(timeout=0.5)
        child = parent.child(timeout=10.0)
        assert child.remaining is not None and child.remaining <= 0.5
        assert CancelToken().remaining is None

    def test_parent_deadline_reaches_child(self) -> None:
        parent = CancelToken(timeout=0.01)
        child = parent.child()
        time.sleep(0.03)
        assert child.cancelled

    def test_wait_returns_false_on_timeout(self) -> None:
        assert CancelToken().wait(0.01) is False


# ---------------------------------------------------------------------------
# FileTailer (fake filesystem + clock)
# ---------------------------------------------------------------------------

class FakeFS:
    def __init__(self, data: bytes = b"") -> None:
        self.data = data
        self.inode = 1
        self.exists = True
        self.opened = 0

    def stat(self, path: str) -> SimpleNamespace:
        if not self.exists:
            raise FileNotFoundError(path)
        return SimpleNamespace(st_size=len(self.data), st_ino=self.inode)

    def open(self, path: str) -> "FakeHandle":
        if not self.exists:
            raise FileNotFoundError(path)
        self.opened += 1
        return FakeHandle(self)

    def rotate(self, data: bytes) -> None:
        self.inode += 1
        self.data = data


class FakeHandle:
    def __init__(self, fs: FakeFS) -> None:
        self._fs = fs
        self._pos = 0
        self.closed = False

    def seek(self, pos: int) -> None:
        self._pos = pos

    def read(self, n: int) -> bytes:
        chunk = self._fs.data[self._pos : self._pos + n]
        self._pos += len(chunk)
        return chunk

    def close(self) -> None:
        self.closed = True


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _tailer(fs: FakeFS, clock: FakeClock | None = None, **kwargs) -> FileTailer:
    return FileTailer(
        "app.log", opener=fs.open, stat=fs.stat, clock=clock or FakeClock(), **kwargs
    )


class TestFileTailer:
    def test_starts_at_end(self) -> None:
        fs = FakeFS(b"old\n")
        tailer = _tailer(fs)
        tailer.open()
        assert tailer.poll() == ([], [])
        fs.data += b"new 1\nnew 2\n"
        assert tailer.poll() == (["new 1", "new 2"], [])
        assert tailer.offset == len(fs.data)

    def test_start_offset(self) -> None:
        fs = FakeFS(b"a\nb\nc\n")
        tailer = _tailer(fs, start_offset=2)
        tailer.open()
        assert tailer.poll()[0] == ["b", "c"]

    def test_start_offset_past_end_restarts(self) -> None:
        fs = FakeFS(b"a\n")
        tailer = _tailer(fs, start_offset=100)
        tailer.open()
        assert tailer.poll()[0] == ["a"]

    def test_partial_line_held(self) -> None:
        fs = FakeFS()
        tailer = _tailer(fs)
        tailer.open()
        fs.data += b"par"
        assert tailer.poll() == ([], [])
        assert tailer.offset == 0
        fs.data += b"tial\r\n"
        assert tailer.poll()[0] == ["partial"]
        assert tailer.offset == 9

    def test_truncation_rereads_from_start(self) -> None:
        fs = FakeFS(b"one\ntwo\n")
        tailer = _tailer(fs)
        tailer.open()
        fs.data = b"x\n"
        assert tailer.poll()[0] == ["x"]

    def test_rotation_reopens(self) -> None:
        fs = FakeFS(b"one\n")
        tailer = _tailer(fs)
        tailer.open()
        fs.rotate(b"fresh\n")
        assert tailer.poll()[0] == ["fresh"]
        assert fs.opened == 2

    def test_removed_after_grace(self) -> None:
        fs, clock = FakeFS(b"x\n"), FakeClock()
        tailer = _tailer(fs, clock, reopen_grace=5.0)
        tailer.open()
        fs.exists = False
        assert tailer.poll() == ([], [])
        clock.now = 3.0
        assert tailer.poll() == ([], [])
        clock.now = 6.0
        with pytest.raises(TailTargetRemovedError):
            tailer.poll()

    def test_reappearing_file_resets_grace(self) -> None:
        fs, clock = FakeFS(b"x\n"), FakeClock()
        tailer = _tailer(fs, clock, reopen_grace=5.0)
        tailer.open()
        fs.exists = False
        tailer.poll()
        fs.exists = True
        clock.now = 4.0
        tailer.poll()
        fs.exists = False
        clock.now = 8.0
        assert tailer.poll() == ([], [])

    def test_long_lines_reported_and_skipped(self) -> None:
        fs = FakeFS()
        tailer = _tailer(fs, max_line_bytes=5)
        tailer.open()
        fs.data += b"0123456789\nok\n"
        lines, errors = tailer.poll()
        assert lines == ["ok"]
        assert len(errors) == 1 and isinstance(errors[0], LineTooLongError)
        assert errors[0].limit == 5

    def test_growing_partial_line_discarded_once(self) -> None:
        fs = FakeFS()
        tailer = _tailer(fs, max_line_bytes=5)
        tailer.open()
        fs.data += b"abcdefgh"
        lines, errors = tailer.poll()
        assert lines == [] and len(errors) == 1
        fs.data += b"ijklmnop"
        assert tailer.poll() == ([], [])
        fs.data += b"qr\nok\n"
        assert tailer.poll() == (["ok"], [])

    def test_open_missing_file(self) -> None:
        fs = FakeFS()
        fs.exists = False
        with pytest.raises(SourceOpenError):
            _tailer(fs).open()

    def test_is_a_follower(self) -> None:
        assert isinstance(_tailer(FakeFS()), Follower)


# ---------------------------------------------------------------------------
# Source readers
# ---------------------------------------------------------------------------

def test_iter_lines_reports_termination() -> None:
    fh = io.BytesIO(b"a\r\nlong line\nb")
    assert list(iter_lines(fh, 4)) == [(b"a", 3, True), (None, 10, True), (b"b", 1, False)]


class TestStaticFile:
    def test_reads_every_line(self, tmp_log_file) -> None:
        path = tmp_log_file(["one", "two", "three"])
        streams = read(CancelToken(), SourceOptions(kind=SourceKind.FILE, path=str(path)))
        lines = collect(streams.lines)
        assert [l.text for l in lines] == ["one", "two", "three"]
        assert all(l.source == str(path) for l in lines)
        assert streams.offset == path.stat().st_size
        assert streams.join(1.0)

    def test_block_tail_drops_partial_first_line(self, tmp_log_file) -> None:
        path = tmp_log_file([f"line{i}" for i in range(10)])
        options = SourceOptions(kind=SourceKind.FILE, path=str(path), block_size_bytes=15)
        lines = collect(read(CancelToken(), options).lines)
        assert [l.text for l in lines] == ["line8", "line9"]

    def test_resume_from_offset(self, tmp_log_file) -> None:
        path = tmp_log_file(["a", "b", "c"])
        options = SourceOptions(kind=SourceKind.FILE, path=str(path), start_offset=2)
        assert [l.text for l in collect(read(CancelToken(), options).lines)] == ["b", "c"]

    def test_unterminated_last_line_not_counted_in_offset(self, tmp_path) -> None:
        path = tmp_path / "app.log"
        path.write_bytes(b"a\nb")
        streams = read(CancelToken(), SourceOptions(kind=SourceKind.FILE, path=str(path)))
        assert [l.text for l in collect(streams.lines)] == ["a", "b"]
        assert streams.offset == 2

    def test_oversized_line_reported(self, tmp_log_file) -> None:
        path = tmp_log_file(["ok", "waytoolong", "fine"])
        options = SourceOptions(kind=SourceKind.FILE, path=str(path), max_line_bytes=4)
        streams = read(CancelToken(), options)
        assert [l.text for l in collect(streams.lines)] == ["ok", "fine"]
        errors = collect(streams.errors)
        assert len(errors) == 1 and isinstance(errors[0], LineTooLongError)

    def test_open_failure_ends_stream(self, tmp_path) -> None:
        options = SourceOptions(kind=SourceKind.FILE, path=str(tmp_path / "missing.log"))
        streams = read(CancelToken(), options)
        assert collect(streams.lines) == []
        errors = collect(streams.errors)
        assert len(errors) == 1 and isinstance(errors[0], SourceOpenError)


def test_stdin_reader() -> None:
    options = SourceOptions(kind=SourceKind.STDIN, stdin=io.BytesIO(b"x\ny\n"))
    lines = collect(read(CancelToken(), options).lines)
    assert [(l.text, l.source) for l in lines] == [("x", "stdin"), ("y", "stdin")]


def test_demo_cycles_until_cancelled() -> None:
    token = CancelToken()
    streams = read(token, SourceOptions(kind=SourceKind.DEMO, demo_interval=0.001))
    got = [streams.lines.recv(timeout=1.0).text for _ in range(len(DEMO_LINES) + 1)]
    assert got[: len(DEMO_LINES)] == list(DEMO_LINES)
    assert got[-1] == DEMO_LINES[0]
    token.cancel()
    assert streams.join(1.0)
    assert streams.lines.closed and streams.errors.closed


def test_cancel_stops_blocked_producer(tmp_log_file) -> None:
    path = tmp_log_file([f"l{i}" for i in range(5000)])
    token = CancelToken()
    streams = read(token, SourceOptions(kind=SourceKind.FILE, path=str(path)))
    streams.lines.recv(timeout=1.0)
    token.cancel()
    assert streams.join(1.0)
    assert streams.lines.closed


class FakeFollower:
    def __init__(self, batches: list[tuple[list[str], list[SourceError]]], offset: int = 0) -> None:
        self._batches = list(batches)
        self._offset = offset
        self.opened = self.closed = False

    def open(self) -> None:
        self.opened = True

    def poll(self) -> tuple[list[str], list[SourceError]]:
        if not self._batches:
            return [], []
        lines, errors = self._batches.pop(0)
        self._offset += sum(len(l) + 1 for l in lines)
        return lines, errors

    @property
    def offset(self) -> int:
        return self._offset

    def close(self) -> None:
        self.closed = True


class FakeWatch:
    """Always reports a change, so the follow loop polls again right away."""

    def __init__(self) -> None:
        self.started = self.stopped = False
        self.waits = 0

    def start(self) -> None:
        self.started = True

    def wait(self, token: CancelToken, timeout: float) -> bool:
        self.waits += 1
        return not token.wait(0.001)

    def stop(self) -> None:
        self.stopped = True


def test_follow_uses_injected_follower() -> None:
    follower = FakeFollower([(["a", "b"], []), ([], [LineTooLongError("app.log", 10)]), (["c"], [])], offset=100)
    seen: dict = {}

    def factory(path: str, start_offset: int | None, max_line_bytes: int) -> FakeFollower:
        seen.update(path=path, start_offset=start_offset, max_line_bytes=max_line_bytes)
        return follower

    watch = FakeWatch()
    token = CancelToken()
    options = SourceOptions(
        kind=SourceKind.FILE, path="app.log", follow=True, start_offset=100,
        max_line_bytes=10, poll_interval=0.001, follower_factory=factory,
        watch_factory=lambda path, interval: watch,
    )
    streams = read(token, options)
    texts = [streams.lines.recv(timeout=1.0).text for _ in range(3)]
    assert texts == ["a", "b", "c"]
    assert isinstance(streams.errors.recv(timeout=1.0), LineTooLongError)
    token.cancel()
    assert streams.join(1.0)
    assert follower.opened and follower.closed
    assert watch.started and watch.stopped and watch.waits > 0
    assert seen == {"path": "app.log", "start_offset": 100, "max_line_bytes": 10}
    assert streams.offset == 106


def test_follow_open_failure_reported(tmp_path) -> None:
    options = SourceOptions(kind=SourceKind.FILE, path=str(tmp_path / "gone.log"), follow=True)
    streams = read(CancelToken(), options)
    assert collect(streams.lines) == []
    assert isinstance(collect(streams.errors)[0], SourceOpenError)


def test_follow_real_file_picks_up_appends(tmp_path) -> None:
    path = tmp_path / "app.log"
    path.write_bytes(b"old\n")
    token = CancelToken()
    options = SourceOptions(kind=SourceKind.FILE, path=str(path), follow=True, start_offset=4, poll_interval=0.02)
    streams = read(token, options)
    try:
        with path.open("ab") as fh:
            fh.write(b"new 1\nnew 2\n")
        texts = [streams.lines.recv(timeout=3.0).text for _ in range(2)]
        assert texts == ["new 1", "new 2"]
    finally:
        token.cancel()
    assert streams.join(2.0)
    assert streams.offset == len(b"old\nnew 1\nnew 2\n")


# ---------------------------------------------------------------------------
# FileWatch (watchdog polling observer)
# ---------------------------------------------------------------------------

class TestFileWatch:
    def test_append_wakes_waiter(self, tmp_path) -> None:
        path = tmp_path / "app.log"
        path.write_bytes(b"a\n")
        watch = FileWatch(str(path), interval=0.02)
        watch.start()
        try:
            token = CancelToken()
            assert watch.wait(token, 0.1) is False
            with path.open("ab") as fh:
                fh.write(b"b\n")
            assert watch.wait(token, 3.0) is True
        finally:
            watch.stop()

    def test_other_files_ignored(self, tmp_path) -> None:
        path = tmp_path / "app.log"
        path.write_bytes(b"a\n")
        watch = FileWatch(str(path), interval=0.02)
        watch.start()
        try:
            (tmp_path / "other.log").write_bytes(b"noise\n")
            assert watch.wait(CancelToken(), 0.3) is False
        finally:
            watch.stop()

    def test_removal_wakes_waiter(self, tmp_path) -> None:
        path = tmp_path / "app.log"
        path.write_bytes(b"a\n")
        watch = FileWatch(str(path), interval=0.02)
        watch.start()
        try:
            path.unlink()
            assert watch.wait(CancelToken(), 3.0) is True
        finally:
            watch.stop()

    def test_cancel_interrupts_wait(self, tmp_path) -> None:
        watch = FileWatch(str(tmp_path / "app.log"))
        token = CancelToken()
        threading.Timer(0.05, token.cancel).start()
        started = time.monotonic()
        assert watch.wait(token, 5.0) is False
        assert time.monotonic() - started < 1.0
        watch.stop()

    def test_injected_filesystem(self) -> None:
        vfs = FakeVFS()
        watch = FileWatch("/logs/app.log", interval=0.02, stat=vfs.stat, listdir=vfs.listdir)
        watch.start()
        try:
            token = CancelToken()
            assert watch.wait(token, 0.1) is False
            vfs.append("/logs/app.log", b"more\n")
            assert watch.wait(token, 3.0) is True
        finally:
            watch.stop()

    def test_is_a_watch(self, tmp_path) -> None:
        assert isinstance(FileWatch(str(tmp_path / "app.log")), Watch)


class FakeVFS:
    """A one-directory filesystem seen only through stat() and listdir()."""

    def __init__(self) -> None:
        self.files = {"/logs/app.log": b"a\n"}
        self.mtime = 1.0

    def stat(self, path: str) -> SimpleNamespace:
        if path == "/logs":
            return SimpleNamespace(
                st_mode=stat.S_IFDIR | 0o755, st_ino=1, st_dev=1, st_size=0, st_mtime=0.0, st_ctime=0.0
            )
        if path not in self.files:
            raise FileNotFoundError(path)
        return SimpleNamespace(
            st_mode=stat.S_IFREG | 0o644, st_ino=2, st_dev=1,
            st_size=len(self.files[path]), st_mtime=self.mtime, st_ctime=self.mtime,
        )

    def listdir(self, path: str) -> list[str]:
        return [name.rsplit("/", 1)[1] for name in self.files]

    def append(self, path: str, data: bytes) -> None:
        self.files[path] += data
        self.mtime += 1.0

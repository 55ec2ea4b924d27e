"""Ingestion session orchestrator: sample → detect → replay → drain.

Typical headless use::

    settings = Settings()
    pipeline = Pipeline(settings, source_options(settings, "app.log"))
    pipeline.start()
    result = pipeline.detect()        # blocks for the sampling window
    while running:
        report = pipeline.tick()      # non-blocking drain, call every tick_interval
        entries = pipeline.view()     # snapshot filtered by the current criteria
    pipeline.stop()

One producer thread (the source reader) feeds bounded channels; whoever calls
``tick()`` is the single consumer. The Schema/Parser pair only changes under
``self._lock``, which ``tick()`` also holds while pushing, so a re-parse never
interleaves with a drain. External inference runs on a worker thread and its
outcome is applied on a later tick.
"""
from __future__ import annotations

import dataclasses
import enum
import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Iterable, Sequence

from .buffer.ring import Ring, RingSnapshot
from .config import MIN_BUFFER, Settings
from .detect.cache import SchemaCache, open_cache, source_identity
from .detect.heuristics import Guess, classify, template
from .detect.inference import SchemaInferrer, cap_sample
from .errors import (
    DetectionError,
    InferenceError,
    NoInputError,
    NothingToDetectError,
    SourceError,
)
from .ingest.cancel import CancelToken
from .ingest.channel import Closed, Empty
from .ingest.source import SourceKind, SourceOptions, SourceStreams, read
from .models import FieldDef, Line, LogEntry, Schema
from .parsers.base import Parser
from .parsers.factory import build_parser
from .search.criteria import Criteria, Evaluator, compile_criteria

Reader = Callable[[CancelToken, SourceOptions], SourceStreams]

# Fields every fallback produces; discovering only these says nothing new.
_GENERIC_FIELDS = frozenset({"msg", "message"})
_SAMPLE_POLL = 0.05


class State(str, enum.Enum):
    IDLE = "idle"
    SAMPLING = "sampling"
    RUNNING = "running"
    ABORTED = "aborted"
    STOPPED = "stopped"


@dataclass(frozen=True)
class DetectionResult:
    schema: Schema
    guess: Guess
    cache_hit: bool = False
    replayed: int = 0
    inference_pending: bool = False


@dataclass
class TickReport:
    lines: int = 0
    partial: int = 0
    errors: list[SourceError] = field(default_factory=list)
    schema_changed: bool = False
    inference_error: str = ""
    source_closed: bool = False
    redetected: bool = False

    @property
    def idle(self) -> bool:
        return not (self.lines or self.errors or self.schema_changed or self.inference_error)


@dataclass(frozen=True)
class _InferenceOutcome:
    generation: int
    reason: str
    schema: Schema | None = None
    error: str = ""


def source_options(
    settings: Settings,
    path: str = "",
    *,
    follow: bool = False,
    stdin: BinaryIO | None = None,
) -> SourceOptions:
    """Reader options for a path: '' means demo, '-' means stdin."""
    if path == "-":
        kind = SourceKind.STDIN
    elif path:
        kind = SourceKind.FILE
    else:
        kind = SourceKind.DEMO
    return SourceOptions(
        kind=kind,
        path=path if kind is SourceKind.FILE else "",
        follow=follow and kind is SourceKind.FILE,
        max_line_bytes=settings.max_line_bytes,
        block_size_bytes=settings.block_size_bytes,
        poll_interval=settings.poll_interval,
        demo_interval=settings.demo_interval,
        stdin=stdin,
    )


def value_type(value: object) -> str:
    """Schema type name for a parsed field value."""
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "array"
    return "string"


def discover_fields(schema: Schema, entries: Iterable[LogEntry]) -> Schema:
    """Replace schema's field list with the fields entries actually produced.

    Only when something beyond msg/message was produced; otherwise a richer
    field list (e.g. from inference) would be clobbered by a bare fallback.
    Each field is typed from the first value it carried.
    """
    types: dict[str, str] = {}
    sample: dict | None = None
    for entry in entries:
        if sample is None:
            sample = dict(entry.fields)
        for name, value in entry.fields.items():
            if name.strip() and name not in types:
                types[name] = value_type(value)
    if not types.keys() - _GENERIC_FIELDS:
        return schema
    fields = [FieldDef(name=name, type=types[name], path_or_group=name) for name in sorted(types)]
    return schema.model_copy(update={"fields": fields, "sample_parsed_row": sample or {}})


def apply_forced_format(schema: Schema, forced: str) -> Schema:
    if forced in ("json", "logfmt"):
        return schema.model_copy(update={"parse_strategy": forced})
    if forced in ("apache", "syslog"):
        return template(forced)
    return schema


class Pipeline:
    """One ingestion session over a single source."""

    def __init__(
        self,
        settings: Settings,
        options: SourceOptions,
        *,
        ring: Ring | None = None,
        cache: SchemaCache | None = None,
        inferrer: SchemaInferrer | None = None,
        logger: logging.Logger | None = None,
        reader: Reader = read,
        token: CancelToken | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.options = options
        self.ring = ring if ring is not None else Ring(settings.max_buffer)
        self.cache = cache if cache is not None else open_cache(settings)
        self.inferrer = inferrer
        self.log = logger or logging.getLogger(__name__)
        self._reader = reader
        self._session = token or CancelToken()
        self._clock = clock

        self._lock = threading.RLock()
        self._state = State.IDLE
        self._schema = Schema()
        self._parser: Parser = build_parser(self._schema, settings.time_layout)
        self._evaluator: Evaluator = compile_criteria(Criteria())

        self._reader_token: CancelToken | None = None
        self._streams: SourceStreams | None = None
        self._early_errors: list[SourceError] = []
        self._partial_streak = 0

        self._executor: ThreadPoolExecutor | None = None
        self._outcomes: queue.Queue[_InferenceOutcome] = queue.Queue()
        self._generation = 0
        # Generation whose outcome tick() still waits for, its deadline and token.
        self._awaiting: int | None = None
        self._inference_deadline = 0.0
        self._inference_token: CancelToken | None = None

    # ── read side ───────────────────────────────────────────────────────────

    @property
    def state(self) -> State:
        return self._state

    @property
    def schema(self) -> Schema:
        with self._lock:
            return self._schema

    @property
    def source_id(self) -> str:
        if self.options.kind is SourceKind.FILE:
            return source_identity(self.options.path)
        return ""

    @property
    def inference_available(self) -> bool:
        return self.inferrer is not None and self.settings.online

    @property
    def inference_pending(self) -> bool:
        return self._awaiting is not None

    def snapshot(self) -> RingSnapshot:
        return self.ring.snapshot()

    def set_criteria(self, criteria: Criteria) -> Evaluator:
        """Compile and install criteria. On CriteriaError the old ones stay."""
        evaluator = compile_criteria(criteria)
        self._evaluator = evaluator
        return evaluator

    @property
    def criteria(self) -> Criteria:
        return self._evaluator.criteria

    def view(self) -> list[LogEntry]:
        """Current Ring contents filtered by the installed criteria."""
        return self._evaluator.apply(self.ring.snapshot().entries)

    # ── lifecycle ───────────────────────────────────────────────────────────

    def start(self) -> None:
        """Launch the source reader under a child of the session token."""
        if self._streams is not None:
            return
        self._launch(self.options)

    def _launch(self, options: SourceOptions) -> None:
        self.options = options
        self._reader_token = self._session.child()
        self._streams = self._reader(self._reader_token, options)
        self.log.info(
            "source: started %s (follow=%s, offset=%s)",
            self._streams.source, options.follow, options.start_offset,
        )

    def stop(self) -> None:
        """Cancel the reader and any inference, then release the worker pool."""
        self._session.cancel()
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        if self._streams is not None:
            self._streams.join(timeout=1.0)
        if self._state is not State.ABORTED:
            self._state = State.STOPPED
        self.log.info("pipeline: stopped")

    def __enter__(self) -> "Pipeline":
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop()

    # ── detection ───────────────────────────────────────────────────────────

    def _abort(self, exc: DetectionError) -> DetectionError:
        self._state = State.ABORTED
        if self._reader_token is not None:
            self._reader_token.cancel()
        self.log.error("detect: %s", exc)
        return exc

    def _collect_errors(self, streams: SourceStreams, sink: list[SourceError], limit: int | None = None) -> None:
        while limit is None or len(sink) < limit:
            try:
                err = streams.errors.try_recv()
            except (Empty, Closed):
                return
            self.log.warning("ingest: %s", err)
            sink.append(err)

    def _sample(self) -> list[Line]:
        """Gather the detection window: ≥1 line and the minimum time, or until close."""
        streams = self._streams
        assert streams is not None
        buffered: list[Line] = []
        deadline = self._clock() + self.settings.detect_window_seconds
        while True:
            if self._session.cancelled:
                raise self._abort(DetectionError("session cancelled while sampling"))
            now = self._clock()
            if buffered and now >= deadline:
                break
            self._collect_errors(streams, self._early_errors)
            wait = _SAMPLE_POLL if not buffered else min(_SAMPLE_POLL, max(deadline - now, 0.0))
            try:
                buffered.append(streams.lines.recv(timeout=wait))
            except Empty:
                continue
            except Closed:
                self._collect_errors(streams, self._early_errors)
                if buffered:
                    break
                detail = f": {self._early_errors[-1]}" if self._early_errors else ""
                raise self._abort(NoInputError(f"source {streams.source} closed before any line arrived{detail}"))
        return buffered

    def detect(self) -> DetectionResult:
        """Sample, classify, build the parser and replay every sampled line.

        Raises NoInputError when the source closes empty and DetectionError
        when the session is cancelled while sampling.
        """
        self.start()
        self._state = State.SAMPLING
        buffered = self._sample()

        sample = [line.text for line in buffered[: self.settings.detect_max_sample]]
        guess = classify(sample)
        schema = guess.schema
        self.log.info(
            "detect: heuristics format=%s strategy=%s conf=%.2f",
            schema.format_name, schema.parse_strategy, guess.confidence,
        )
        forced = self.settings.force_format
        if forced:
            schema = apply_forced_format(schema, forced)
            self.log.info("detect: forced format=%s -> strategy=%s", forced, schema.parse_strategy)

        cache_hit = False
        source_id = self.source_id
        if self.settings.no_cache:
            self.log.info("detect: schema cache disabled")
        elif source_id:
            cached = self.cache.load(source_id)
            if cached is not None:
                schema, cache_hit = cached, True
                self.log.info("detect: cache hit for %s -> format=%s", source_id, schema.format_name)

        with self._lock:
            parser = build_parser(schema, self.settings.time_layout)
            entries = [parser.parse(line.text, line.source) for line in buffered]
            for entry in entries:
                self.ring.push(entry)
            self._schema = discover_fields(schema, entries)
            self._parser = parser
            self._state = State.RUNNING
        self.log.info("detect: replayed %d buffered lines", len(entries))

        pending = False
        if self.inference_available and not cache_hit:
            pending = self._submit_inference(cap_sample(sample, self.settings.inference_max_lines), "detect")
        return DetectionResult(
            schema=self.schema, guess=guess, cache_hit=cache_hit,
            replayed=len(entries), inference_pending=pending,
        )

    def redetect(self) -> DetectionResult:
        """Re-classify from recent entries and re-parse the whole Ring.

        With inference available the re-parse waits for its outcome on a
        later tick. Raises NothingToDetectError when the Ring is empty.
        """
        entries = self.ring.snapshot().entries
        if not entries:
            self.log.warning("redetect: no data yet to detect")
            raise NothingToDetectError("no entries to re-detect from yet")
        recent = [e.raw for e in entries[-self.settings.redetect_window :]]
        prefix = recent[: self.settings.redetect_sample]
        guess = classify(prefix)
        self.log.info(
            "redetect: heuristics format=%s strategy=%s conf=%.2f (lines=%d)",
            guess.schema.format_name, guess.schema.parse_strategy, guess.confidence, len(recent),
        )
        if self.inference_available:
            pending = self._submit_inference(prefix, "redetect")
            return DetectionResult(schema=self.schema, guess=guess, inference_pending=pending)
        replayed = self.apply_schema(guess.schema, "redetect")
        return DetectionResult(schema=self.schema, guess=guess, replayed=replayed)

    def apply_schema(self, schema: Schema, reason: str) -> int:
        """Swap in schema and re-parse the Ring in order. Returns entries re-parsed."""
        with self._lock:
            parser = build_parser(schema, self.settings.time_layout)
            entries = [parser.parse(e.raw, e.source) for e in self.ring.snapshot().entries]
            self.ring.replace(entries)
            self._schema = discover_fields(schema, entries)
            self._parser = parser
            self._partial_streak = 0
        self.log.info(
            "%s: schema now format=%s strategy=%s (%d entries re-parsed)",
            reason, schema.format_name, schema.parse_strategy, len(entries),
        )
        return len(entries)

    # ── inference ───────────────────────────────────────────────────────────

    def _submit_inference(self, lines: Sequence[str], reason: str) -> bool:
        if not lines or self.inferrer is None:
            return False
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="logscope-infer")
        if self._inference_token is not None:
            self._inference_token.cancel()
        timeout = self.settings.inference_timeout_sec
        self._generation += 1
        self._awaiting = self._generation
        self._inference_deadline = self._clock() + timeout
        token = self._session.child(timeout=timeout)
        self._inference_token = token
        self.log.info("%s: external inference started on %d lines", reason, len(lines))
        self._executor.submit(self._infer, list(lines), token, self._generation, reason)
        return True

    def _infer(self, lines: list[str], token: CancelToken, generation: int, reason: str) -> None:
        assert self.inferrer is not None
        try:
            schema = self.inferrer.infer(lines, token)
            if token.cancelled and not self._session.cancelled:
                raise InferenceError(f"timed out after {self.settings.inference_timeout_sec:g}s")
            outcome = _InferenceOutcome(generation, reason, schema=schema)
        except InferenceError as exc:
            outcome = _InferenceOutcome(generation, reason, error=str(exc))
        except Exception as exc:
            self.log.exception("%s: inferrer raised unexpectedly", reason)
            outcome = _InferenceOutcome(generation, reason, error=f"{type(exc).__name__}: {exc}")
        finally:
            token.cancel()
        self._outcomes.put(outcome)

    def _expire_inference(self, report: TickReport) -> None:
        """Give up on an inference call that outlived its deadline.

        The inferrer may ignore its token; its late outcome no longer matches
        ``_awaiting`` and is dropped. The worker it still occupies is released
        so the next request gets a fresh one.
        """
        if self._awaiting is None or self._clock() < self._inference_deadline:
            return
        if self._inference_token is not None:
            self._inference_token.cancel()
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        self._awaiting = None
        report.inference_error = f"timed out after {self.settings.inference_timeout_sec:g}s"
        self.log.warning("inference: %s, keeping current schema", report.inference_error)

    def _apply_outcomes(self, report: TickReport) -> None:
        while True:
            try:
                outcome = self._outcomes.get_nowait()
            except queue.Empty:
                return
            if outcome.generation != self._awaiting:
                self.log.info("%s: dropping stale inference result", outcome.reason)
                continue
            self._awaiting = None
            if outcome.schema is None:
                self.log.warning("%s: inference failed, keeping current schema: %s", outcome.reason, outcome.error)
                report.inference_error = outcome.error
                continue
            self.apply_schema(outcome.schema, f"{outcome.reason} (inferred)")
            report.schema_changed = True
            source_id = self.source_id
            if source_id and not self.settings.no_cache:
                if self.cache.save(source_id, outcome.schema):
                    self.log.info("detect: schema cached for %s", source_id)
                else:
                    self.log.warning("detect: failed to cache schema for %s", source_id)

    # ── steady state ────────────────────────────────────────────────────────

    def _drain_lines(self, streams: SourceStreams, limit: int | None, report: TickReport) -> None:
        while limit is None or report.lines < limit:
            try:
                line = streams.lines.try_recv()
            except Empty:
                return
            except Closed:
                report.source_closed = True
                return
            entry = self._parser.parse(line.text, line.source)
            self.ring.push(entry)
            report.lines += 1
            if entry.partial:
                report.partial += 1
                self._partial_streak += 1
            else:
                self._partial_streak = 0

    def tick(self) -> TickReport:
        """Drain a bounded batch of lines and errors; apply finished inference."""
        report = TickReport()
        if self._state is not State.RUNNING or self._streams is None:
            return report
        if self._early_errors:
            report.errors.extend(self._early_errors)
            self._early_errors = []
        with self._lock:
            self._drain_lines(self._streams, self.settings.drain_max_lines, report)
        self._collect_errors(self._streams, report.errors, self.settings.drain_max_errors)
        self._apply_outcomes(report)
        self._expire_inference(report)

        streak = self.settings.redetect_failure_streak
        if streak > 0 and self._partial_streak >= streak:
            self.log.warning("redetect: %d consecutive lines failed to parse", self._partial_streak)
            self._partial_streak = 0
            self.redetect()
            report.redetected = True
            report.schema_changed = report.schema_changed or not self.inference_available
        return report

    def run(self, on_tick: Callable[[TickReport], None] | None = None, *, until_closed: bool = True) -> None:
        """Tick every ``tick_interval`` until stopped (or the source is exhausted)."""
        while not self._session.cancelled:
            report = self.tick()
            if on_tick is not None:
                on_tick(report)
            if until_closed and report.source_closed and not self.inference_pending:
                return
            self._session.wait(self.settings.tick_interval)

    # ── controls ────────────────────────────────────────────────────────────

    def set_follow(self, enabled: bool) -> None:
        """Restart the reader in (or out of) follow mode without losing lines.

        The new reader resumes from the byte offset the old one reached, or
        from end-of-file when none was recorded. Only file sources restart.
        """
        if enabled == self.options.follow:
            return
        if self.options.kind is not SourceKind.FILE:
            self.log.info("source: follow mode only applies to files")
            return
        old, old_token = self._streams, self._reader_token
        offset = None
        if old is not None and old_token is not None:
            old_token.cancel()
            old.join(timeout=1.0)
            report = TickReport()
            with self._lock:
                # Lines already queued are counted in the offset; keep them.
                self._drain_lines(old, None, report)
            # Reported on the next tick along with the new reader's errors.
            self._collect_errors(old, self._early_errors)
            offset = old.offset
        options = dataclasses.replace(self.options, follow=enabled, start_offset=offset)
        if not enabled and offset is None:
            self.log.warning("source: no resume offset recorded, re-reading %s", options.path)
        self._launch(options)

    def resize(self, capacity: int) -> int:
        """Resize the Ring, never below MIN_BUFFER. Returns the applied capacity."""
        capacity = max(capacity, MIN_BUFFER)
        self.ring.resize(capacity)
        self.log.info("buffer: resized to %d", capacity)
        return capacity

"""Logscope CLI — entry point.

Commands:
    logscope detect <file|->   Classify a log sample and print its schema
    logscope tail   [file]     Ingest a file (or the demo stream) and print entries
"""
from __future__ import annotations

import sys
from typing import Any, TextIO

import click
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import FORCED_FORMATS, Settings
from .detect.heuristics import classify
from .errors import CriteriaError, DetectionError
from .logs import configure_logging
from .models import LogEntry, Schema
from .pipeline import Pipeline, TickReport, apply_forced_format, source_options
from .search.criteria import Criteria, compile_criteria

console = Console()
err_console = Console(stderr=True)

_FORMAT_CHOICE = click.Choice([f for f in FORCED_FORMATS if f], case_sensitive=False)

# ── Helpers ─────────────────────────────────────────────────────────────────


def _level_colour(level: str) -> str:
    return {
        "FATAL": "bold red",
        "ERROR": "red",
        "WARN": "yellow",
        "DEBUG": "dim",
        "TRACE": "dim",
        "INFO": "green",
    }.get(level.upper(), "white")


def _entry_columns(entry: LogEntry) -> tuple[str, str, str]:
    """Return (timestamp, level, message) strings for any parsed entry."""
    ts = entry.timestamp.isoformat() if entry.timestamp else ""
    fields = entry.fields
    if "method" in fields and "path" in fields and "status" in fields:
        msg = f"{fields['method']} {fields['path']} → {fields['status']}"
    elif fields.get("app") and "msg" in fields:
        msg = f"[{fields['app']}] {fields['msg']}"
    else:
        msg = str(fields.get("msg") or fields.get("message") or entry.raw)
    return ts, entry.level or "-", msg


def _print_entry(entry: LogEntry) -> None:
    ts, level, msg = _entry_columns(entry)
    colour = _level_colour(level)
    console.print(f"[dim]{ts}[/dim] [{colour}]{level:8}[/{colour}] {escape(msg)}")


def _settings(**overrides: Any) -> Settings:
    try:
        return Settings(**{k: v for k, v in overrides.items() if v not in (None, "", False)})
    except ValidationError as exc:
        raise click.UsageError(str(exc)) from exc


def _print_schema(schema: Schema, title: str) -> None:
    tbl = Table(title=title, box=box.ROUNDED, show_header=False)
    tbl.add_column("key", style="bold")
    tbl.add_column("value", overflow="fold")
    tbl.add_row("format", schema.format_name)
    tbl.add_row("strategy", schema.parse_strategy)
    tbl.add_row("confidence", f"{schema.confidence:.0%}")
    tbl.add_row("time layout", schema.time_layout or "-")
    if schema.regex_pattern:
        tbl.add_row("pattern", escape(schema.regex_pattern))
    if schema.probable_sources:
        tbl.add_row("sources", ", ".join(schema.probable_sources))
    console.print(tbl)

    if schema.fields:
        fields = Table(box=box.SIMPLE, title="Fields")
        fields.add_column("name")
        fields.add_column("type")
        fields.add_column("description", overflow="fold")
        by_name = {f.name: f for f in schema.fields}
        for name in schema.column_order():
            fdef = by_name[name]
            fields.add_row(fdef.name, fdef.type, fdef.description)
        console.print(fields)


# ── CLI root ─────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version="0.1.0", prog_name="logscope")
def main() -> None:
    """logscope — detect, parse and filter log streams."""


# ── detect ───────────────────────────────────────────────────────────────────


@main.command()
@click.argument("file", type=click.File("r", encoding="utf-8", errors="replace"))
@click.option("--format", "-f", "fmt", default=None, type=_FORMAT_CHOICE, help="Force a format.")
@click.option("--json", "as_json", is_flag=True, help="Print the schema as JSON.")
def detect(file: TextIO, fmt: str | None, as_json: bool) -> None:
    """Classify a sample of FILE ('-' for stdin) and print the schema.

    \b
    Examples:
      logscope detect app.log
      logscope detect access.log --json
      kubectl logs api | logscope detect -
    """
    settings = _settings(force_format=fmt)
    sample: list[str] = []
    for line in file:
        if len(sample) >= settings.detect_max_sample:
            break
        sample.append(line.rstrip("\r\n"))

    guess = classify(sample)
    schema = guess.schema
    if settings.force_format:
        schema = apply_forced_format(schema, settings.force_format)

    if as_json:
        click.echo(schema.to_json())
        return
    _print_schema(schema, title=f"{file.name} ({len(sample)} lines sampled)")


# ── tail ─────────────────────────────────────────────────────────────────────


@main.command()
@click.argument("file", required=False, default="")
@click.option("--follow", "-F", is_flag=True, help="Keep reading as the file grows.")
@click.option("--format", "-f", "fmt", default=None, type=_FORMAT_CHOICE, help="Force a format.")
@click.option("--level", "-l", "levels", multiple=True, help="Only show these levels (repeatable).")
@click.option("--query", "-q", default="", help="Only show entries containing this text.")
@click.option("--regex", "use_regex", is_flag=True, help="Treat --query as a regular expression.")
@click.option("--field", default="", help="Match --query against this field instead of the raw line.")
@click.option("--expr", "-e", default="", help='Boolean filter, e.g. \'level == "ERROR" and status >= 500\'.')
@click.option("--offline", is_flag=True, help="Never call the external schema inferrer.")
@click.option("--no-cache", is_flag=True, help="Skip schema cache reads and writes.")
def tail(
    file: str,
    follow: bool,
    fmt: str | None,
    levels: tuple[str, ...],
    query: str,
    use_regex: bool,
    field: str,
    expr: str,
    offline: bool,
    no_cache: bool,
) -> None:
    """Ingest FILE ('-' for stdin, omitted for demo lines) and print matching entries.

    \b
    Examples:
      logscope tail app.log --level error --level warn
      logscope tail access.log --expr 'status >= 500'
      logscope tail /var/log/app.log --follow --query timeout
      logscope tail
    """
    settings = _settings(force_format=fmt, offline=offline, no_cache=no_cache)
    configure_logging(settings)

    criteria = Criteria(
        query=query,
        use_regex=use_regex,
        levels=frozenset(level.upper() for level in levels),
        expr=expr,
        field=field,
    )
    try:
        evaluator = compile_criteria(criteria)
    except CriteriaError as exc:
        raise click.BadParameter(str(exc)) from exc

    pipeline = Pipeline(settings, source_options(settings, file, follow=follow))
    name = file or "demo"
    err_console.print(f"[dim]Reading {name} (Ctrl+C to stop)[/dim]")

    seen = 0

    def emit_new(report: TickReport) -> None:
        nonlocal seen
        for err in report.errors:
            err_console.print(f"[yellow]{escape(str(err))}[/yellow]")
        if report.inference_error:
            err_console.print(f"[yellow]schema inference failed: {escape(report.inference_error)}[/yellow]")
        snap = pipeline.snapshot()
        fresh = min(snap.total_ingested - seen, len(snap.entries))
        seen = snap.total_ingested
        if fresh <= 0:
            return
        for entry in evaluator.apply(snap.entries[-fresh:]):
            _print_entry(entry)

    try:
        result = pipeline.detect()
        schema = result.schema
        err_console.print(
            f"[dim]Detected {schema.format_name} ({schema.parse_strategy}, "
            f"{result.guess.confidence:.0%}){' from cache' if result.cache_hit else ''}[/dim]"
        )
        emit_new(TickReport())
        pipeline.run(emit_new, until_closed=not follow)
    except DetectionError as exc:
        err_console.print(f"[red]{escape(str(exc))}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        err_console.print("\n[dim]Stopped.[/dim]")
    finally:
        pipeline.stop()


if __name__ == "__main__":
    main()

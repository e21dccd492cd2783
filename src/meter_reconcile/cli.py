"""CLI entry point for meter-reconcile."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table as RichTable

from meter_reconcile import __version__
from meter_reconcile.errors import InputShapeError, ReconcileError, SchemaDetectionError
from meter_reconcile.io import write_json
from meter_reconcile.models import RunManifest
from meter_reconcile.qc import write_qc_report
from meter_reconcile.report import (
    DIFF_FILENAME,
    DIFF_SHEET,
    MERGE_FILENAME,
    MERGE_SHEET,
    write_workbook,
)
from meter_reconcile.service import run_diff, run_merge
from meter_reconcile.trace import TraceEvent, Tracer
from meter_reconcile.utils import sha256_file, utcnow_iso

app = typer.Typer(
    name="mreconcile",
    help="meter-reconcile — Diff and merge loosely structured meter-reading spreadsheets.",
    add_completion=False,
    no_args_is_help=True,
)
console = Console()

PROFILE_KEYS = ("usage", "join")


def _noop(*_args: object, **_kwargs: object) -> None:
    return None


def _printer(quiet: bool) -> Callable[..., None]:
    return _noop if quiet else console.print


def _err(msg: str) -> None:
    console.print(f"[red]x[/red] {msg}")


# ── Helpers ──────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"meter-reconcile v{__version__}")
        raise typer.Exit()


def _setup_logging(verbose: bool) -> None:
    if not verbose:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _tracer(verbose: bool) -> Tracer | None:
    if not verbose:
        return None

    def _print_event(event: TraceEvent) -> None:
        console.print(f"  [dim]trace[/dim] {event.name} {event.data}")

    return _print_event


def _load_profile(profile: Path | None) -> dict[str, str]:
    """Return ``{usage|join: column}`` from a profile file of ``key=value`` lines."""
    if not profile:
        return {}
    if not profile.exists():
        raise ValueError(f"Profile not found: {profile} (expected lines like usage=Location)")
    if profile.is_dir():
        raise ValueError(f"Profile is a directory, not a file: {profile}")
    try:
        text = profile.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"Cannot read profile {profile}: {exc}") from exc

    settings: dict[str, str] = {}
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if "=" not in stripped:
            raise ValueError(f"Invalid profile line: {stripped!r}  (expected key=column)")
        key, value = (part.strip() for part in stripped.split("=", 1))
        if key.lower() not in PROFILE_KEYS:
            raise ValueError(f"Unknown profile key {key!r}; use one of: {', '.join(PROFILE_KEYS)}")
        if not value:
            raise ValueError(f"Profile key {key!r} needs a column name")
        settings[key.lower()] = value
    return settings


def _input_hashes(paths: list[Path]) -> list[str]:
    hashes: list[str] = []
    for path in paths:
        try:
            hashes.append(sha256_file(path))
        except OSError:
            hashes.append("")
    return hashes


def _write_manifest(
    out_dir: Path,
    mode: str,
    inputs: list[Path],
    created_at: str,
    *,
    output_path: Path | None = None,
    rows_out: int = 0,
    status: str = "success",
    error_code: int | None = None,
    error_message: str = "",
    date_range: str = "",
    details: dict[str, Any] | None = None,
) -> Path:
    manifest = RunManifest(
        version=__version__,
        mode=mode,
        inputs=[str(p.resolve()) for p in inputs],
        sha256=_input_hashes(inputs),
        output_path=str(output_path.resolve()) if output_path else "",
        created_at_utc=created_at,
        rows_out=rows_out,
        status=status,
        error_code=error_code,
        error_message=error_message,
        date_range=date_range,
        details=details or {},
    )
    return write_json(out_dir / "run_manifest.json", manifest.to_dict())


def _fail(
    out_dir: Path,
    mode: str,
    inputs: list[Path],
    created_at: str,
    exc: ReconcileError,
    *,
    error_code: int,
) -> NoReturn:
    """Write ``error.json`` and a failed manifest, report, and exit."""
    error_path = write_json(out_dir / "error.json", exc.to_payload())
    manifest_path = _write_manifest(
        out_dir,
        mode,
        inputs,
        created_at,
        status="failed",
        error_code=error_code,
        error_message=exc.message,
    )
    _err(exc.message)
    if isinstance(exc, SchemaDetectionError) and exc.detected_headers:
        console.print(f"  Detected headers: {', '.join(exc.detected_headers)}")
        if exc.suggestion:
            console.print(f"  Hint: {exc.suggestion}")
    console.print(f"  Error    -> {error_path}")
    console.print(f"  Manifest -> {manifest_path}")
    raise typer.Exit(code=error_code)


def _exit_code_for(exc: ReconcileError) -> int:
    return 2 if isinstance(exc, (InputShapeError, SchemaDetectionError)) else 1


# ── Callbacks ────────────────────────────────────────────────────


@app.callback()
def main(
    version: bool | None = typer.Option(
        None, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """meter-reconcile CLI."""


# ── diff command ─────────────────────────────────────────────────


@app.command()
def diff(
    file1: Path = typer.Option(
        ..., "--file1", "-a",
        help="First (baseline) readings file, CSV or XLSX.",
        exists=True, readable=True, dir_okay=False,
    ),
    file2: Path = typer.Option(
        ..., "--file2", "-b",
        help="Second readings file, CSV or XLSX.",
        exists=True, readable=True, dir_okay=False,
    ),
    out_dir: Path = typer.Option(
        Path("output"), "--out-dir", "-o",
        help="Output directory for the diff workbook, QC and manifest.",
    ),
    dayfirst: bool = typer.Option(
        True,
        "--dayfirst/--monthfirst",
        help="Date parsing mode for ambiguous values like 01/02/2024.",
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q",
        help="Suppress informational output; still writes all artifacts.",
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Log detection decisions.",
    ),
) -> None:
    """Sum readings per meter in both files and report file2 - file1."""
    _setup_logging(verbose)
    echo = _printer(quiet)
    created_at = utcnow_iso()
    inputs = [file1, file2]
    out_dir.mkdir(parents=True, exist_ok=True)

    if not quiet:
        console.print(Panel(
            f"[bold]meter-reconcile[/bold] v{__version__}  [dim]diff mode[/dim]\n"
            f"File 1: {file1}\nFile 2: {file2}\nOutput: {out_dir}",
            title="Diff", border_style="blue",
        ))
        console.print(f"  Parse mode: date={'DD/MM' if dayfirst else 'MM/DD'}")

    echo("[blue]>[/blue] Detecting columns and aggregating …")
    try:
        outcome = run_diff(file1, file2, dayfirst=dayfirst, trace=_tracer(verbose))
    except ReconcileError as exc:
        _fail(out_dir, "diff", inputs, created_at, exc, error_code=_exit_code_for(exc))

    for label, agg in (("file1", outcome.file1), ("file2", outcome.file2)):
        echo(f"  {label}: {agg.qc.rows_out}/{agg.qc.rows_in} rows, {len(agg.totals)} meters")
        if not quiet:
            for w in agg.qc.warnings:
                console.print(f"  [yellow]![/yellow] {label}: {w}")

    echo(f"[blue]>[/blue] Writing {DIFF_FILENAME} …")
    try:
        report_path = write_workbook(
            out_dir / DIFF_FILENAME, outcome.grid, DIFF_SHEET, header_row=outcome.header_row
        )
        qc_path = write_qc_report(out_dir, outcome.file1, outcome.file2)
        manifest_path = _write_manifest(
            out_dir,
            "diff",
            inputs,
            created_at,
            output_path=report_path,
            rows_out=len(outcome.result.rows),
            date_range=outcome.date_range_header,
        )
    except Exception as exc:
        message = f"Unexpected internal error: {exc}"
        _fail(out_dir, "diff", inputs, created_at, ReconcileError(message), error_code=1)
    echo(f"  Report   -> {report_path}")
    echo(f"  QC       -> {qc_path}")
    echo(f"  Manifest -> {manifest_path}")

    if not quiet:
        tbl = RichTable(title="Diff Summary", show_lines=True)
        tbl.add_column("Check", style="bold")
        tbl.add_column("Result")
        tbl.add_row("Meters", str(len(outcome.result.rows)))
        tbl.add_row("Date range", outcome.result.date_range or "N/A")
        console.print(tbl)
        console.print(Panel(
            f"[green]Done[/green] — {len(outcome.result.rows)} meters -> {report_path}",
            title="Diff Complete", border_style="green",
        ))


# ── merge command ────────────────────────────────────────────────


@app.command()
def merge(
    readings: Path = typer.Option(
        ..., "--readings", "-r",
        help="Readings file, CSV or XLSX.",
        exists=True, readable=True, dir_okay=False,
    ),
    mapping: Path = typer.Option(
        ..., "--mapping", "-m",
        help="Mapping file with meter ids and usage points/locations.",
        exists=True, readable=True, dir_okay=False,
    ),
    out_dir: Path = typer.Option(
        Path("output"), "--out-dir", "-o",
        help="Output directory for the merged workbook and manifest.",
    ),
    usage_key: str | None = typer.Option(
        None, "--usage-key",
        help="Usage-point column in the mapping file (skips detection).",
    ),
    join_key: str | None = typer.Option(
        None, "--join-key",
        help="Meter column to join on (skips detection in the mapping file).",
    ),
    profile: Path | None = typer.Option(
        None, "--profile",
        help="Profile file with usage=... / join=... lines.",
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q",
        help="Suppress informational output; still writes all artifacts.",
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Log detection decisions.",
    ),
) -> None:
    """Append each reading's usage point from the mapping file."""
    _setup_logging(verbose)
    echo = _printer(quiet)
    created_at = utcnow_iso()
    inputs = [readings, mapping]
    out_dir.mkdir(parents=True, exist_ok=True)

    try:
        settings = _load_profile(profile)
    except ValueError as exc:
        _fail(out_dir, "merge", inputs, created_at, InputShapeError(str(exc)), error_code=2)
    usage_key = usage_key or settings.get("usage")
    join_key = join_key or settings.get("join")

    if not quiet:
        console.print(Panel(
            f"[bold]meter-reconcile[/bold] v{__version__}  [dim]merge mode[/dim]\n"
            f"Readings: {readings}\nMapping:  {mapping}\nOutput:   {out_dir}",
            title="Merge", border_style="cyan",
        ))
        if profile:
            console.print(f"  Using profile: {profile}")

    echo("[blue]>[/blue] Resolving join and usage columns …")
    try:
        outcome = run_merge(
            readings, mapping, usage_key=usage_key, join_key=join_key, trace=_tracer(verbose)
        )
    except ReconcileError as exc:
        _fail(out_dir, "merge", inputs, created_at, exc, error_code=_exit_code_for(exc))

    echo(f"  Usage column: {outcome.usage_key}")
    echo(f"  Join columns: readings={outcome.readings_join_key} mapping={outcome.mapping_join_key}")

    echo(f"[blue]>[/blue] Writing {MERGE_FILENAME} …")
    try:
        report_path = write_workbook(out_dir / MERGE_FILENAME, outcome.grid, MERGE_SHEET)
        manifest_path = _write_manifest(
            out_dir,
            "merge",
            inputs,
            created_at,
            output_path=report_path,
            rows_out=len(outcome.result.rows),
            details=outcome.details(),
        )
    except Exception as exc:
        message = f"Unexpected internal error: {exc}"
        _fail(out_dir, "merge", inputs, created_at, ReconcileError(message), error_code=1)
    echo(f"  Report   -> {report_path}")
    echo(f"  Manifest -> {manifest_path}")

    if not quiet:
        result = outcome.result
        tbl = RichTable(title="Merge Summary", show_lines=True)
        tbl.add_column("Check", style="bold")
        tbl.add_column("Result")
        tbl.add_row("Rows", str(len(result.rows)))
        tbl.add_row("Found", f"[green]{result.found}[/green]")
        tbl.add_row("Not found", f"[yellow]{result.not_found}[/yellow]")
        tbl.add_row("Blank meter ids", str(result.blank_keys))
        tbl.add_row("Mapping entries", str(result.lookup_size))
        console.print(tbl)
        console.print(Panel(
            f"[green]Done[/green] — {len(result.rows)} rows -> {report_path}",
            title="Merge Complete", border_style="green",
        ))

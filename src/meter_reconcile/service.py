"""Request-scoped diff and merge operations.

Each call decodes its two inputs concurrently, then detects, coerces and
aggregates/joins sequentially. Nothing is shared between calls.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from meter_reconcile.errors import InputShapeError, ReconcileError
from meter_reconcile.io import Source, load_grid
from meter_reconcile.models import DiffResult, FileAggregate, MergeResult, RawGrid, Record
from meter_reconcile.pipeline import aggregate_file, build_lookup, diff_aggregates, merge_rows
from meter_reconcile.report import (
    DIFF_SHEET,
    MERGE_SHEET,
    build_diff_grid,
    build_merge_grid,
    diff_header_row,
    workbook_bytes,
)
from meter_reconcile.schema import (
    MAPPING_JOIN_TOKENS,
    READINGS_JOIN_TOKENS,
    detect_schema,
    match_header,
    resolve_join_key,
    resolve_usage_key,
    select_merge_header_row,
    table_from_header_row,
)
from meter_reconcile.trace import Tracer, emit
from meter_reconcile.utils import ascii_sanitize

logger = logging.getLogger(__name__)


@dataclass
class DiffOutcome:
    result: DiffResult
    file1: FileAggregate
    file2: FileAggregate
    grid: RawGrid

    @property
    def header_row(self) -> int:
        return diff_header_row(self.result)

    @property
    def date_range_header(self) -> str:
        """ASCII-only date range, safe for response metadata."""
        return ascii_sanitize(self.result.date_range_ascii)

    def to_bytes(self) -> bytes:
        return workbook_bytes(self.grid, DIFF_SHEET, header_row=self.header_row)


@dataclass
class MergeOutcome:
    result: MergeResult
    grid: RawGrid
    usage_key: str
    mapping_join_key: str
    readings_join_key: str
    header_rows: dict[str, int] = field(default_factory=dict)

    def to_bytes(self) -> bytes:
        return workbook_bytes(self.grid, MERGE_SHEET)

    def details(self) -> dict[str, object]:
        return {
            "usage_key": self.usage_key,
            "mapping_join_key": self.mapping_join_key,
            "readings_join_key": self.readings_join_key,
            "header_rows": dict(self.header_rows),
            **self.result.counts(),
        }


def _suffix_for(source: Source | None, suffix: str | None) -> str | None:
    if suffix or isinstance(source, bytes) or source is None:
        return suffix
    return Path(source).suffix


def load_pair(
    source1: Source,
    source2: Source,
    *,
    suffixes: tuple[str | None, str | None] = (None, None),
) -> tuple[RawGrid, RawGrid]:
    """Decode both inputs concurrently; unreadable input is an input-shape error."""
    with ThreadPoolExecutor(max_workers=2) as pool:
        first = pool.submit(load_grid, source1, suffix=_suffix_for(source1, suffixes[0]))
        second = pool.submit(load_grid, source2, suffix=_suffix_for(source2, suffixes[1]))
        try:
            return first.result(), second.result()
        except (FileNotFoundError, ValueError) as exc:
            raise InputShapeError(str(exc)) from exc


def _empty_upload(source: Source) -> bool:
    return isinstance(source, bytes) and not source


# ── Diff ─────────────────────────────────────────────────────────


def _run_diff(
    file1: Source,
    file2: Source,
    *,
    dayfirst: bool,
    date_format: str,
    suffixes: tuple[str | None, str | None],
    trace: Tracer | None,
) -> DiffOutcome:
    grid1, grid2 = load_pair(file1, file2, suffixes=suffixes)

    aggregates: list[FileAggregate] = []
    for label, grid in (("file1", grid1), ("file2", grid2)):
        emit(trace, "diff.file", file=label, rows=len(grid))
        table = detect_schema(grid, trace=trace)
        if table is None:
            logger.warning("%s: meter/value columns not found; treating as empty", label)
        aggregates.append(aggregate_file(table, dayfirst=dayfirst, trace=trace))

    agg1, agg2 = aggregates
    result = diff_aggregates(agg1, agg2, date_format=date_format)
    emit(trace, "diff.done", meters=len(result.rows), date_range=result.date_range)
    return DiffOutcome(result=result, file1=agg1, file2=agg2, grid=build_diff_grid(result))


def run_diff(
    file1: Source | None,
    file2: Source | None,
    *,
    dayfirst: bool = True,
    date_format: str = "%Y-%m-%d",
    suffixes: tuple[str | None, str | None] = (None, None),
    trace: Tracer | None = None,
) -> DiffOutcome:
    """Aggregate per-meter totals of two files and report ``file2 - file1``.

    A file whose columns cannot be detected contributes nothing; the output
    may legitimately be empty.
    """
    if file1 is None or file2 is None or _empty_upload(file1) or _empty_upload(file2):
        raise InputShapeError("Please upload file1 and file2.")
    try:
        return _run_diff(
            file1, file2,
            dayfirst=dayfirst, date_format=date_format, suffixes=suffixes, trace=trace,
        )
    except ReconcileError:
        raise
    except Exception as exc:
        logger.exception("diff failed")
        raise ReconcileError(f"Unexpected internal error: {exc}") from exc


# ── Merge ────────────────────────────────────────────────────────


def _merge_table(grid: RawGrid, trace: Tracer | None) -> tuple[int, list[str], list[Record]]:
    header_row = select_merge_header_row(grid, trace=trace)
    headers, rows = table_from_header_row(grid, header_row)
    return header_row, headers, rows


def _run_merge(
    readings_src: Source,
    mapping_src: Source,
    *,
    usage_key: str | None,
    join_key: str | None,
    suffixes: tuple[str | None, str | None],
    trace: Tracer | None,
) -> MergeOutcome:
    readings_grid, mapping_grid = load_pair(readings_src, mapping_src, suffixes=suffixes)

    readings_header, readings_headers, readings = _merge_table(readings_grid, trace)
    mapping_header, mapping_headers, mapping = _merge_table(mapping_grid, trace)
    if not readings:
        raise InputShapeError("Readings file is empty or could not be parsed.")
    if not mapping:
        raise InputShapeError("Mapping file is empty or could not be parsed.")

    sample_map = mapping[0]
    usage_col = resolve_usage_key(mapping_headers, sample_map, override=usage_key, trace=trace)
    map_join = resolve_join_key(
        mapping_headers,
        MAPPING_JOIN_TOKENS,
        override=join_key,
        sample_row=sample_map,
        label="mapping file",
        trace=trace,
    )
    readings_override = match_header(readings_headers, join_key) if join_key else None
    readings_join = resolve_join_key(
        readings_headers,
        READINGS_JOIN_TOKENS,
        override=readings_override,
        sample_row=readings[0],
        label="readings file",
        trace=trace,
    )

    lookup, skipped = build_lookup(mapping, map_join, usage_col)
    result = merge_rows(readings, readings_join, lookup, trace=trace)
    result.mapping_skipped = skipped
    return MergeOutcome(
        result=result,
        grid=build_merge_grid(result),
        usage_key=usage_col,
        mapping_join_key=map_join,
        readings_join_key=readings_join,
        header_rows={"readings": readings_header, "mapping": mapping_header},
    )


def run_merge(
    readings: Source | None,
    mapping: Source | None,
    *,
    usage_key: str | None = None,
    join_key: str | None = None,
    suffixes: tuple[str | None, str | None] = (None, None),
    trace: Tracer | None = None,
) -> MergeOutcome:
    """Attach each reading's usage point from the mapping file.

    *usage_key* and *join_key* bypass detection for this call only.
    """
    if readings is None or mapping is None or _empty_upload(readings) or _empty_upload(mapping):
        raise InputShapeError("Both files are required (file1 and file2).")
    try:
        return _run_merge(
            readings, mapping,
            usage_key=usage_key or None,
            join_key=join_key or None,
            suffixes=suffixes,
            trace=trace,
        )
    except ReconcileError:
        raise
    except Exception as exc:
        logger.exception("merge failed")
        raise ReconcileError(f"Unexpected internal error: {exc}") from exc

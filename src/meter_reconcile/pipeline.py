"""Aggregation (diff) and join (merge) engines — pure functions, no side effects."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date

from meter_reconcile import NOT_FOUND, USAGE_OUTPUT_FIELD
from meter_reconcile.coerce import cell_text, format_date, parse_date, parse_number
from meter_reconcile.models import (
    ColumnRole,
    DetectedTable,
    DiffResult,
    DiffRow,
    FileAggregate,
    MergeResult,
    QCReport,
    Record,
)
from meter_reconcile.schema import normalized_rows
from meter_reconcile.trace import Tracer, emit

MappingLookup = dict[str, str]


def join_key(value: object) -> str:
    """Case-insensitive, trimmed form used on both sides of a merge."""
    return cell_text(value).strip().lower()


# ── Diff ─────────────────────────────────────────────────────────


def aggregate_file(
    table: DetectedTable | None,
    *,
    dayfirst: bool = True,
    trace: Tracer | None = None,
) -> FileAggregate:
    """Fold one file's rows into per-meter totals.

    Rows without a meter id or with an unparseable value are skipped, not
    zero-filled. An undetectable table yields an empty aggregate.
    """
    if table is None:
        qc = QCReport(missing_columns=["meter", "value"])
        qc.warnings.append("Could not locate meter and value columns; file ignored")
        return FileAggregate(qc=qc)

    agg = FileAggregate(mapping=table.mapping)
    blank_meters = 0
    bad_values = 0
    for row in normalized_rows(table):
        meter = cell_text(row.get(ColumnRole.meter)).strip()
        if not meter:
            blank_meters += 1
            continue
        value = parse_number(row.get(ColumnRole.value))
        if value is None:
            bad_values += 1
            continue
        agg.totals[meter] = agg.totals.get(meter, 0.0) + value

        if ColumnRole.date in row:
            parsed = parse_date(row[ColumnRole.date], dayfirst=dayfirst)
            if parsed is not None:
                agg.dates.append(parsed)
        if ColumnRole.usage_point in row:
            label = cell_text(row[ColumnRole.usage_point]).strip()
            if label:
                agg.usage_points[meter] = label

    rows_in = len(table.rows)
    rows_out = rows_in - blank_meters - bad_values
    qc = QCReport(rows_in=rows_in, rows_out=rows_out, dropped_rows=rows_in - rows_out)
    if blank_meters:
        qc.warnings.append(f"Skipped {blank_meters} rows with an empty meter id")
    if bad_values:
        qc.warnings.append(f"Skipped {bad_values} rows with an unparseable value")
    agg.qc = qc
    emit(trace, "diff.aggregated", meters=len(agg.totals), rows_in=rows_in, rows_out=rows_out)
    return agg


def format_date_range(dates: Sequence[date], fmt: str = "%Y-%m-%d") -> str | None:
    """``min`` alone when every date is equal, otherwise ``"min to max"``."""
    if not dates:
        return None
    ordered = sorted(dates)
    first, last = format_date(ordered[0], fmt), format_date(ordered[-1], fmt)
    return first if first == last else f"{first} to {last}"


def combine_date_ranges(
    range1: str | None, range2: str | None, *, separator: str = " to "
) -> str | None:
    if range1 and range2:
        return f"{range1}{separator}{range2}"
    return range1 or range2


def diff_aggregates(
    file1: FileAggregate, file2: FileAggregate, *, date_format: str = "%Y-%m-%d"
) -> DiffResult:
    """Union both meter sets and report totals plus ``file2 - file1``."""
    rows = [
        DiffRow(
            meter_id=meter,
            usage_point=file2.usage_points.get(meter) or file1.usage_points.get(meter) or "",
            value_file1=file1.totals.get(meter, 0.0),
            value_file2=file2.totals.get(meter, 0.0),
        )
        for meter in sorted(set(file1.totals) | set(file2.totals))
    ]
    range1 = format_date_range(file1.dates, date_format)
    range2 = format_date_range(file2.dates, date_format)
    return DiffResult(
        rows=rows,
        date_range_file1=range1,
        date_range_file2=range2,
        date_range=combine_date_ranges(range1, range2),
        date_range_ascii=combine_date_ranges(range1, range2, separator=" -> "),
    )


# ── Merge ────────────────────────────────────────────────────────


def build_lookup(
    rows: Sequence[Record], key_column: str, usage_column: str
) -> tuple[MappingLookup, int]:
    """Return ``(lookup, skipped)``; the last row wins for a repeated key."""
    lookup: MappingLookup = {}
    skipped = 0
    for row in rows:
        key = join_key(row.get(key_column))
        usage = cell_text(row.get(usage_column)).strip()
        if not key or not usage:
            skipped += 1
            continue
        lookup[key] = usage
    return lookup, skipped


def merge_rows(
    readings: Sequence[Record],
    reading_key: str,
    lookup: MappingLookup,
    *,
    output_field: str = USAGE_OUTPUT_FIELD,
    trace: Tracer | None = None,
) -> MergeResult:
    """Append the looked-up usage label to every readings row, in order.

    Misses get ``NOT_FOUND``. Rows with a blank meter id are still emitted
    (as ``NOT_FOUND``) but counted separately from hits and misses.
    """
    result = MergeResult(lookup_size=len(lookup))
    for row in readings:
        key = join_key(row.get(reading_key))
        merged = dict(row)
        if not key:
            result.blank_keys += 1
            merged[output_field] = NOT_FOUND
        elif key in lookup:
            result.found += 1
            merged[output_field] = lookup[key]
        else:
            result.not_found += 1
            merged[output_field] = NOT_FOUND
        result.rows.append(merged)

    if result.rows:
        result.columns = list(result.rows[0].keys())
    emit(trace, "merge.joined", **result.counts())
    return result

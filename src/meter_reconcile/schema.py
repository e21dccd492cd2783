"""Schema detection — find the header row and the columns that matter.

Two strategies run in order for diff inputs: the container's keyed view
(first row is the header) and a positional scan of the first rows. Merge
inputs use their own header-row policy and token search.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from meter_reconcile.coerce import cell_text, is_missing
from meter_reconcile.errors import SchemaDetectionError
from meter_reconcile.headers import assign_roles, fold_header
from meter_reconcile.io import is_blank_row, is_placeholder_key, keyed_rows
from meter_reconcile.models import (
    ColumnRole,
    DetectedTable,
    NormalizedRow,
    RawGrid,
    Record,
    SchemaMapping,
)
from meter_reconcile.trace import Tracer, emit

MAX_SCAN_ROWS = 50
MAX_MERGE_HEADER_ROWS = 3

HEADER_KEYWORDS = ("meter", "date", "energy", "usage", "point", "asset")
GENERIC_HEADER_LABELS = frozenset({"device", "column", "field", "daily profile"})

USAGE_TOKENS = ("usagepointno", "usagepoint", "usage", "point", "location", "usageno")
MAPPING_JOIN_TOKENS = (
    "meterno", "masterno", "meternumber", "meterid", "meterserial",
    "serialnumber", "serialno", "serial", "id", "identifier", "meter",
)
READINGS_JOIN_TOKENS = ("meterno", "masterno", "meterid", "serial", "id", "identifier", "meter")
JOIN_FALLBACK_FRAGMENTS = ("no", "id", "number")

SYNTHETIC_KEYS: dict[ColumnRole, str] = {role: f"__{role.value}" for role in ColumnRole}


# ── Header-row location ─────────────────────────────────────────


@dataclass(frozen=True)
class HeaderLocation:
    row: int
    columns: dict[ColumnRole, int] = field(default_factory=dict)


def locate_header_row(grid: RawGrid, max_rows: int = MAX_SCAN_ROWS) -> HeaderLocation | None:
    """Return the first row (within *max_rows*) naming both meter and value."""
    for r_idx, row in enumerate(grid[:max_rows]):
        columns = assign_roles([None if is_missing(c) else c for c in row])
        if ColumnRole.meter in columns and ColumnRole.value in columns:
            return HeaderLocation(row=r_idx, columns=columns)
    return None


def _row_has_keyword(row: Sequence[Any]) -> bool:
    return any(kw in cell_text(cell).lower() for cell in row for kw in HEADER_KEYWORDS)


def _row_has_generic_label(row: Sequence[Any]) -> bool:
    return any(cell_text(cell).lower() in GENERIC_HEADER_LABELS for cell in row)


def select_merge_header_row(
    grid: RawGrid, max_rows: int = MAX_MERGE_HEADER_ROWS, *, trace: Tracer | None = None
) -> int:
    """Pick the header row of a merge input; defaults to row 0.

    A row qualifies with more than two non-empty cells, at least one domain
    keyword, and none of the generic placeholder labels exports put in banner
    rows.
    """
    for r_idx, row in enumerate(grid[:max_rows]):
        non_empty = sum(1 for cell in row if not is_missing(cell) and cell != "")
        if non_empty > 2 and _row_has_keyword(row) and not _row_has_generic_label(row):
            emit(trace, "merge.header_row", row=r_idx, reason="keywords")
            return r_idx
    emit(trace, "merge.header_row", row=0, reason="fallback")
    return 0


def table_from_header_row(grid: RawGrid, header_row: int) -> tuple[list[str], list[Record]]:
    """Records keyed by *header_row*; rows with every cell empty are dropped."""
    if header_row >= len(grid):
        return [], []
    keys, rows = keyed_rows(grid[header_row:])
    width = len(grid[header_row])
    keys = keys[:width]
    trimmed = [{k: row[k] for k in keys} for row in rows]
    return keys, [r for r in trimmed if not is_blank_row(list(r.values()))]


# ── Diff strategies ─────────────────────────────────────────────


def detect_from_keyed_rows(grid: RawGrid, *, trace: Tracer | None = None) -> DetectedTable | None:
    """Strategy A: classify the first row's keys, skipping placeholder keys."""
    headers, rows = keyed_rows(grid)
    if not rows:
        return None
    usable = [k for k in headers if not is_placeholder_key(k)]
    if not usable:
        return None
    roles = assign_roles(usable)
    if ColumnRole.meter not in roles or ColumnRole.value not in roles:
        return None

    def _key(role: ColumnRole) -> str | None:
        idx = roles.get(role)
        return usable[idx] if idx is not None else None

    mapping = SchemaMapping(
        meter=usable[roles[ColumnRole.meter]],
        value=usable[roles[ColumnRole.value]],
        date=_key(ColumnRole.date),
        usage_point=_key(ColumnRole.usage_point),
        strategy="keyed",
        header_row=0,
        columns={role.value: headers.index(usable[i]) for role, i in roles.items()},
    )
    emit(trace, "schema.detected", **mapping.to_dict())
    return DetectedTable(mapping=mapping, headers=headers, rows=rows)


def detect_by_scanning(grid: RawGrid, *, trace: Tracer | None = None) -> DetectedTable | None:
    """Strategy B: locate the header row, then read columns by position."""
    location = locate_header_row(grid)
    if location is None:
        return None

    columns = location.columns
    rows: list[Record] = []
    for raw in grid[location.row + 1:]:
        if is_blank_row(raw):
            continue
        rows.append({
            SYNTHETIC_KEYS[role]: (raw[idx] if idx < len(raw) else None)
            for role, idx in columns.items()
        })

    header_cells = grid[location.row]
    mapping = SchemaMapping(
        meter=SYNTHETIC_KEYS[ColumnRole.meter],
        value=SYNTHETIC_KEYS[ColumnRole.value],
        date=SYNTHETIC_KEYS[ColumnRole.date] if ColumnRole.date in columns else None,
        usage_point=(
            SYNTHETIC_KEYS[ColumnRole.usage_point]
            if ColumnRole.usage_point in columns
            else None
        ),
        strategy="scan",
        header_row=location.row,
        columns={role.value: idx for role, idx in columns.items()},
    )
    emit(trace, "schema.detected", **mapping.to_dict())
    return DetectedTable(
        mapping=mapping,
        headers=[cell_text(c) for c in header_cells],
        rows=rows,
    )


Strategy = Callable[..., DetectedTable | None]

DETECTION_STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("keyed", detect_from_keyed_rows),
    ("scan", detect_by_scanning),
)


def detect_schema(grid: RawGrid, *, trace: Tracer | None = None) -> DetectedTable | None:
    """Try each strategy in order; ``None`` when no meter+value pair is found."""
    for name, strategy in DETECTION_STRATEGIES:
        emit(trace, "schema.strategy", strategy=name)
        table = strategy(grid, trace=trace)
        if table is not None:
            return table
    emit(trace, "schema.undetected", rows=len(grid))
    return None


def normalized_rows(table: DetectedTable) -> list[NormalizedRow]:
    out: list[NormalizedRow] = []
    for row in table.rows:
        normalized: NormalizedRow = {}
        for role in ColumnRole:
            key = table.mapping.key_for(role)
            if key is not None:
                normalized[role] = row.get(key)
        out.append(normalized)
    return out


# ── Merge column resolution ─────────────────────────────────────


def find_key_by_tokens(
    headers: Sequence[str], tokens: Sequence[str], *, trace: Tracer | None = None
) -> str | None:
    """Exact folded match over every token first, then substring match."""
    folded = [(h, fold_header(h)) for h in headers]
    norm_tokens = [fold_header(t) for t in tokens]

    for token in norm_tokens:
        for orig, norm in folded:
            if norm == token:
                emit(trace, "merge.token_match", header=orig, token=token, kind="exact")
                return orig

    for token in norm_tokens:
        for orig, norm in folded:
            if token and token in norm:
                emit(trace, "merge.token_match", header=orig, token=token, kind="substring")
                return orig
    return None


def match_header(headers: Sequence[str], name: str) -> str | None:
    """Exact header *name*, or the header that folds to the same token."""
    if name in headers:
        return name
    wanted = fold_header(name)
    if not wanted:
        return None
    for header in headers:
        if fold_header(header) == wanted:
            return header
    return None


def _apply_override(
    override: str, headers: Sequence[str], sample_row: Record, label: str
) -> str:
    matched = match_header(headers, override)
    if matched is not None:
        return matched
    raise SchemaDetectionError(
        f"Column {override!r} not found in {label}.",
        detected_headers=list(headers),
        sample_row=sample_row,
    )


def resolve_usage_key(
    headers: Sequence[str],
    sample_row: Record,
    *,
    override: str | None = None,
    trace: Tracer | None = None,
) -> str:
    """Usage-point column of the mapping file; there is no safe default."""
    if override:
        key = _apply_override(override, headers, sample_row, "mapping file")
    else:
        found = find_key_by_tokens(headers, USAGE_TOKENS, trace=trace)
        if found is None:
            raise SchemaDetectionError(
                "Could not find Usage Point column in mapping file.",
                detected_headers=list(headers),
                sample_row=sample_row,
                suggestion=(
                    "The mapping file should contain a 'Usage Point No.' column or "
                    "similar. You can specify it manually with --usage-key."
                ),
            )
        key = found
    emit(trace, "merge.usage_key", key=key, override=bool(override))
    return key


def resolve_join_key(
    headers: Sequence[str],
    tokens: Sequence[str],
    *,
    override: str | None = None,
    sample_row: Record | None = None,
    label: str = "mapping file",
    trace: Tracer | None = None,
) -> str:
    """Join column: alias tokens, then any ``no``/``id``/``number`` header, then column 0."""
    if override:
        key = _apply_override(override, headers, sample_row or {}, label)
        emit(trace, "merge.join_key", key=key, file=label, via="override")
        return key

    via = "tokens"
    key = find_key_by_tokens(headers, tokens, trace=trace)
    if key is None:
        via = "fragment"
        key = next(
            (h for h in headers if any(f in fold_header(h) for f in JOIN_FALLBACK_FRAGMENTS)),
            None,
        )
    if key is None and headers:
        via = "first-column"
        key = headers[0]
    if key is None:
        raise SchemaDetectionError(
            f"Could not determine meter join column in {label}.",
            detected_headers=list(headers),
            sample_row=sample_row or {},
        )
    emit(trace, "merge.join_key", key=key, file=label, via=via)
    return key

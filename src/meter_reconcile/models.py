"""Data models shared across detection, coercion and the engines."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from numbers import Integral
from typing import Any

RawCell = Any
RawGrid = list[list[RawCell]]
Record = dict[str, Any]


class ColumnRole(str, Enum):
    """Semantic purpose of a detected column, in conflict-resolution priority."""

    meter = "meter"
    value = "value"
    date = "date"
    usage_point = "usage_point"


ROLE_PRIORITY: tuple[ColumnRole, ...] = (
    ColumnRole.meter,
    ColumnRole.value,
    ColumnRole.date,
    ColumnRole.usage_point,
)

NormalizedRow = dict[ColumnRole, Any]


def _to_non_negative_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, Integral):
        raise TypeError(f"{field_name} must be an integer")
    result = int(value)
    if result < 0:
        raise ValueError(f"{field_name} must be >= 0")
    return result


def _to_string_list(values: Sequence[Any] | None, field_name: str) -> list[str]:
    if values is None:
        return []
    if isinstance(values, str):
        raise TypeError(f"{field_name} must be a sequence of strings")
    normalized: list[str] = []
    for item in values:
        if not isinstance(item, str):
            raise TypeError(f"{field_name} items must be strings")
        normalized.append(item)
    return normalized


@dataclass(frozen=True)
class SchemaMapping:
    """Which key (named or synthetic positional) holds each role.

    Meter and value are mandatory; date and usage_point may be ``None``.
    ``columns`` holds the grid column index per role when the mapping came
    from a positional scan.
    """

    meter: str
    value: str
    date: str | None = None
    usage_point: str | None = None
    strategy: str = "keyed"
    header_row: int = 0
    columns: dict[str, int] = field(default_factory=dict)

    def key_for(self, role: ColumnRole) -> str | None:
        return getattr(self, role.value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "meter": self.meter,
            "value": self.value,
            "date": self.date,
            "usage_point": self.usage_point,
            "strategy": self.strategy,
            "header_row": self.header_row,
            "columns": dict(self.columns),
        }


@dataclass
class DetectedTable:
    """Keyed data rows plus the mapping that says how to read them."""

    mapping: SchemaMapping
    headers: list[str]
    rows: list[Record]


@dataclass
class QCReport:
    """Per-file quality-control counters.

    Contract invariant: ``dropped_rows == rows_in - rows_out``.
    """

    rows_in: int = 0
    rows_out: int = 0
    dropped_rows: int = 0
    missing_columns: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.rows_in = _to_non_negative_int(self.rows_in, "rows_in")
        self.rows_out = _to_non_negative_int(self.rows_out, "rows_out")
        self.dropped_rows = _to_non_negative_int(self.dropped_rows, "dropped_rows")
        self.missing_columns = _to_string_list(self.missing_columns, "missing_columns")
        self.warnings = _to_string_list(self.warnings, "warnings")
        if self.rows_out > self.rows_in:
            raise ValueError("rows_out must be <= rows_in")
        expected_dropped = self.rows_in - self.rows_out
        if self.dropped_rows != expected_dropped:
            raise ValueError("dropped_rows must equal rows_in - rows_out")

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows_in": self.rows_in,
            "rows_out": self.rows_out,
            "dropped_rows": self.dropped_rows,
            "missing_columns": list(self.missing_columns),
            "warnings": list(self.warnings),
        }


@dataclass
class FileAggregate:
    """Per-meter running totals for one diff input."""

    totals: dict[str, float] = field(default_factory=dict)
    usage_points: dict[str, str] = field(default_factory=dict)
    dates: list[date] = field(default_factory=list)
    qc: QCReport = field(default_factory=QCReport)
    mapping: SchemaMapping | None = None


@dataclass(frozen=True)
class DiffRow:
    meter_id: str
    usage_point: str
    value_file1: float
    value_file2: float

    @property
    def diff(self) -> float:
        return self.value_file2 - self.value_file1

    def as_list(self) -> list[Any]:
        return [self.meter_id, self.usage_point, self.value_file1, self.value_file2, self.diff]


@dataclass
class DiffResult:
    rows: list[DiffRow] = field(default_factory=list)
    date_range_file1: str | None = None
    date_range_file2: str | None = None
    date_range: str | None = None
    date_range_ascii: str | None = None


@dataclass
class MergeResult:
    """Readings rows with the usage label appended, in readings order."""

    rows: list[Record] = field(default_factory=list)
    columns: list[str] = field(default_factory=list)
    found: int = 0
    not_found: int = 0
    blank_keys: int = 0
    lookup_size: int = 0
    mapping_skipped: int = 0

    def counts(self) -> dict[str, int]:
        return {
            "rows": len(self.rows),
            "found": self.found,
            "not_found": self.not_found,
            "blank_keys": self.blank_keys,
            "lookup_size": self.lookup_size,
            "mapping_skipped": self.mapping_skipped,
        }


@dataclass
class RunManifest:
    """Audit-trail manifest for a single diff/merge run."""

    tool: str = "meter-reconcile"
    version: str = ""
    mode: str = ""
    inputs: list[str] = field(default_factory=list)
    sha256: list[str] = field(default_factory=list)
    output_path: str = ""
    created_at_utc: str = ""
    rows_out: int = 0
    status: str = "success"
    error_code: int | None = None
    error_message: str = ""
    date_range: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.rows_out = _to_non_negative_int(self.rows_out, "rows_out")
        self.inputs = _to_string_list(self.inputs, "inputs")
        self.sha256 = _to_string_list(self.sha256, "sha256")

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool": self.tool,
            "version": self.version,
            "mode": self.mode,
            "inputs": list(self.inputs),
            "sha256": list(self.sha256),
            "output_path": self.output_path,
            "created_at_utc": self.created_at_utc,
            "rows_out": self.rows_out,
            "status": self.status,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "date_range": self.date_range,
            "details": dict(self.details),
        }

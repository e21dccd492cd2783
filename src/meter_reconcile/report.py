"""Report builder — output grids and the xlsx files they are written to."""

from __future__ import annotations

import io
from datetime import date, datetime
from pathlib import Path
from typing import Any

import pandas as pd
from openpyxl import Workbook
from openpyxl.cell.cell import Cell
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from meter_reconcile import DIFF_HEADER
from meter_reconcile.models import DiffResult, MergeResult, RawGrid

# ── Style constants ──────────────────────────────────────────────

HEADER_FONT = Font(name="Calibri", bold=True, size=11, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="2F5496", end_color="2F5496", fill_type="solid")
HEADER_ALIGN = Alignment(horizontal="center", vertical="center", wrap_text=True)
LABEL_FONT = Font(name="Calibri", bold=True, size=11)

VALUE_FMT = '#,##0.###'
DATE_FMT = 'yyyy-mm-dd'

_COL_FORMATS: dict[str, str] = {
    "value_file1": VALUE_FMT,
    "value_file2": VALUE_FMT,
    "diff_file2_minus_file1": VALUE_FMT,
}

DIFF_SHEET = "Diff"
MERGE_SHEET = "merged"
DIFF_FILENAME = "meter_diff.xlsx"
MERGE_FILENAME = "meter_merge.xlsx"
DATE_RANGE_LABEL = "Date Range:"

_AUTO_WIDTH_SAMPLE_ROWS = 300
_EXCEL_FORMULA_PREFIXES = ("=", "+", "-", "@")


# ── Grids ────────────────────────────────────────────────────────


def build_diff_grid(result: DiffResult) -> RawGrid:
    """Optional date-range banner + spacer, header, one row per meter."""
    grid: RawGrid = []
    if result.date_range:
        grid.append([DATE_RANGE_LABEL, result.date_range])
        grid.append([])
    grid.append(list(DIFF_HEADER))
    grid.extend(row.as_list() for row in result.rows)
    return grid


def diff_header_row(result: DiffResult) -> int:
    return 2 if result.date_range else 0


def build_merge_grid(result: MergeResult) -> RawGrid:
    """Header from the first readings row's keys plus the appended field."""
    if not result.columns:
        return []
    grid: RawGrid = [list(result.columns)]
    for row in result.rows:
        grid.append([row.get(col) for col in result.columns])
    return grid


# ── Workbook helpers ─────────────────────────────────────────────


def _style_header(ws: Worksheet, row: int, ncols: int) -> None:
    for c in range(1, ncols + 1):
        cell = ws.cell(row=row, column=c)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = HEADER_ALIGN


def _auto_width(ws: Worksheet) -> None:
    max_row = min(ws.max_row, _AUTO_WIDTH_SAMPLE_ROWS + 1)
    for c_idx in range(1, ws.max_column + 1):
        letter = get_column_letter(c_idx)
        width = 0
        for row in ws.iter_rows(min_row=1, max_row=max_row, min_col=c_idx, max_col=c_idx):
            width = max(width, len(str(row[0].value or "")))
        ws.column_dimensions[letter].width = min(width + 4, 40)


def _excel_value(val: Any) -> Any:
    try:
        if pd.isna(val):
            return None
    except (TypeError, ValueError):
        return val

    if isinstance(val, pd.Timestamp):
        dt = val.to_pydatetime()
        return dt.replace(tzinfo=None) if dt.tzinfo else dt

    if isinstance(val, datetime) and val.tzinfo:
        return val.replace(tzinfo=None)

    return val


def _keep_as_text(cell: Cell, val: Any) -> None:
    """Store formula-like strings as literal text; the value is left unchanged."""
    if not isinstance(val, str):
        return
    stripped = val.lstrip()
    if stripped and stripped[0] in _EXCEL_FORMULA_PREFIXES:
        cell.data_type = "s"
        cell.quotePrefix = True


def grid_to_workbook(grid: RawGrid, sheet_name: str, *, header_row: int = 0) -> Workbook:
    """Lay *grid* out on a single sheet; *header_row* is 0-based."""
    wb = Workbook()
    ws = wb.active
    if ws is None:
        ws = wb.create_sheet(title=sheet_name)
    ws.title = sheet_name

    for r_idx, row in enumerate(grid, 1):
        for c_idx, val in enumerate(row, 1):
            cell = ws.cell(row=r_idx, column=c_idx, value=_excel_value(val))
            _keep_as_text(cell, val)
            if isinstance(cell.value, (datetime, date)):
                cell.number_format = DATE_FMT

    if header_row < len(grid) and grid[header_row]:
        header = [str(h) for h in grid[header_row]]
        excel_header_row = header_row + 1
        _style_header(ws, excel_header_row, len(header))
        for c_idx, name in enumerate(header, 1):
            fmt = _COL_FORMATS.get(name)
            if not fmt:
                continue
            for (cell,) in ws.iter_rows(
                min_row=excel_header_row + 1, max_row=ws.max_row, min_col=c_idx, max_col=c_idx
            ):
                cell.number_format = fmt
        ws.freeze_panes = ws.cell(row=excel_header_row + 1, column=1).coordinate
        if header_row > 0:
            ws.cell(row=1, column=1).font = LABEL_FONT

    _auto_width(ws)
    return wb


# ── Public API ───────────────────────────────────────────────────


def workbook_bytes(grid: RawGrid, sheet_name: str, *, header_row: int = 0) -> bytes:
    """Serialise *grid* as xlsx bytes."""
    buffer = io.BytesIO()
    grid_to_workbook(grid, sheet_name, header_row=header_row).save(buffer)
    return buffer.getvalue()


def write_workbook(
    path: Path, grid: RawGrid, sheet_name: str, *, header_row: int = 0
) -> Path:
    """Write *grid* to *path* through a temp file so no partial output is left."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    wb = grid_to_workbook(grid, sheet_name, header_row=header_row)
    tmp_path = path.with_name(f"{path.stem}.tmp{path.suffix}")
    wb.save(tmp_path)
    tmp_path.replace(path)
    return path

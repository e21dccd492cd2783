"""I/O helpers — decode spreadsheets into raw grids, write JSON artifacts."""

from __future__ import annotations

import io
import json
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Literal, cast

import pandas as pd

from meter_reconcile.coerce import cell_text, is_missing
from meter_reconcile.models import RawGrid, Record

EXCEL_SUFFIXES = (".xlsx", ".xlsm", ".xltx", ".xltm")
PLACEHOLDER_PREFIX = "__EMPTY"

Source = Path | str | bytes

# ── Loading ──────────────────────────────────────────────────────


def _frame_to_grid(df: pd.DataFrame) -> RawGrid:
    grid: RawGrid = []
    for row in df.itertuples(index=False, name=None):
        cells = [None if is_missing(v) else v for v in row]
        while cells and cells[-1] is None:
            cells.pop()
        grid.append(cells)
    return grid


def _read_csv(handle: Any, delimiter: str | None, label: str) -> pd.DataFrame:
    last_exc: Exception | None = None
    sep = delimiter if delimiter else None
    engine: Literal["c", "python"] = "c" if delimiter else "python"
    for encoding in ("utf-8-sig", "utf-8", "latin-1"):
        if hasattr(handle, "seek"):
            handle.seek(0)
        try:
            return pd.read_csv(
                handle,
                header=None,
                dtype="string",
                sep=sep,
                engine=engine,
                encoding=encoding,
                encoding_errors="strict",
                skip_blank_lines=False,
                na_filter=True,
                keep_default_na=False,
                na_values=[""],
            )
        except (UnicodeDecodeError, pd.errors.ParserError) as exc:
            last_exc = exc
        except pd.errors.EmptyDataError:
            return pd.DataFrame()
    raise ValueError(f"Could not read CSV {label} (decode or parse failed)") from last_exc


def _read_excel(handle: Any, engine: str) -> pd.DataFrame:
    read_excel = cast(Callable[..., pd.DataFrame], getattr(pd, "read_excel"))
    return read_excel(handle, sheet_name=0, header=None, dtype=object, engine=engine)


def load_grid(
    source: Source, *, suffix: str | None = None, delimiter: str | None = None
) -> RawGrid:
    """Decode the first sheet of *source* into a grid of raw cells.

    *source* may be a path or the raw file bytes; for bytes the format comes
    from *suffix* (default ``.xlsx``). Numbers stay numbers and date-formatted
    Excel cells arrive as datetimes. Empty cells are ``None``.

    Raises
    ------
    FileNotFoundError
        If a path *source* does not exist.
    ValueError
        If the extension is not supported, or CSV decoding/parsing fails.
    """
    if isinstance(source, bytes):
        handle: Any = io.BytesIO(source)
        label = "<upload>"
        kind = (suffix or ".xlsx").lower()
    else:
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Input file not found: {path}")
        handle = path
        label = str(path)
        kind = (suffix or path.suffix).lower()

    if kind == ".csv":
        return _frame_to_grid(_read_csv(handle, delimiter, label))

    if kind in EXCEL_SUFFIXES:
        return _frame_to_grid(_read_excel(handle, "openpyxl"))

    if kind == ".xls":
        try:
            return _frame_to_grid(_read_excel(handle, "xlrd"))
        except ImportError as exc:
            raise ValueError(
                "Unsupported .xls input unless 'xlrd' is installed. "
                "Either convert to .xlsx or add dependency: pip install xlrd"
            ) from exc

    raise ValueError(f"Unsupported file type: {kind!r}. Use .csv, .xlsx, or .xls")


# ── Keyed view ───────────────────────────────────────────────────


def is_blank_row(row: list[Any]) -> bool:
    return all(is_missing(v) or v == "" for v in row)


def header_keys(header_row: list[Any]) -> list[str]:
    """Turn a header row into unique record keys.

    Blank cells get placeholder keys (``__EMPTY``, ``__EMPTY_1`` ...) and
    repeated text gets a numeric suffix, the way spreadsheet readers do it.
    """
    keys: list[str] = []
    seen: dict[str, int] = {}
    for cell in header_row:
        text = cell_text(cell).strip()
        base = text if text else PLACEHOLDER_PREFIX
        key = base
        count = seen.get(base, 0)
        while key in seen:
            count += 1
            key = f"{base}_{count}"
        seen[base] = count
        seen.setdefault(key, 0)
        keys.append(key)
    return keys


def is_placeholder_key(key: str) -> bool:
    return key.startswith(PLACEHOLDER_PREFIX)


def keyed_rows(grid: RawGrid) -> tuple[list[str], list[Record]]:
    """First row as header, remaining non-blank rows as records."""
    if not grid:
        return [], []
    width = max(len(r) for r in grid)
    keys = header_keys(list(grid[0]) + [None] * (width - len(grid[0])))
    rows: list[Record] = []
    for raw in grid[1:]:
        if is_blank_row(raw):
            continue
        rows.append({k: (raw[i] if i < len(raw) else None) for i, k in enumerate(keys)})
    return keys, rows


# ── Writing ──────────────────────────────────────────────────────


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    item = getattr(obj, "item", None)
    if callable(item):
        converted = item()
        if isinstance(converted, (str, int, float, bool)) or converted is None:
            return converted
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def write_json(path: Path, data: Any) -> Path:
    """Write *data* as pretty-printed JSON to *path* (atomic + deterministic)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    payload = json.dumps(
        data,
        indent=2,
        sort_keys=True,
        ensure_ascii=False,
        default=_json_default,
    ) + "\n"
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(payload, encoding="utf-8")
    tmp_path.replace(path)
    return path

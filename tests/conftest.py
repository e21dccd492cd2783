from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import pytest
from openpyxl import Workbook


def write_xlsx(path: Path, rows: Sequence[Sequence[Any]]) -> Path:
    wb = Workbook()
    ws = wb.active
    assert ws is not None
    for r_idx, row in enumerate(rows, 1):
        for c_idx, value in enumerate(row, 1):
            if value is not None:
                ws.cell(row=r_idx, column=c_idx, value=value)
    wb.save(path)
    return path


@pytest.fixture
def xlsx_file(tmp_path: Path) -> Callable[..., Path]:
    """Factory: ``xlsx_file("name.xlsx", rows)`` writes a one-sheet workbook."""

    def _make(name: str, rows: Sequence[Sequence[Any]]) -> Path:
        return write_xlsx(tmp_path / name, rows)

    return _make

"""QC report persistence."""

from __future__ import annotations

from pathlib import Path

from meter_reconcile.io import write_json
from meter_reconcile.models import FileAggregate
from meter_reconcile.pipeline import format_date_range


def qc_payload(file1: FileAggregate, file2: FileAggregate) -> dict[str, object]:
    """Per-file QC counters plus what each file's detection resolved to."""
    payload: dict[str, object] = {}
    for label, agg in (("file1", file1), ("file2", file2)):
        entry: dict[str, object] = agg.qc.to_dict()
        entry["meters"] = len(agg.totals)
        entry["date_range"] = format_date_range(agg.dates)
        entry["schema"] = agg.mapping.to_dict() if agg.mapping else None
        payload[label] = entry
    return payload


def write_qc_report(out_dir: Path, file1: FileAggregate, file2: FileAggregate) -> Path:
    """Write ``qc_report.json`` into *out_dir* and return the path."""
    return write_json(out_dir / "qc_report.json", qc_payload(file1, file2))

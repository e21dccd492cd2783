"""meter-reconcile — Diff and merge loosely structured meter-reading spreadsheets."""

__version__ = "0.1.0"

DIFF_HEADER: list[str] = [
    "meter_id",
    "usage_point_no",
    "value_file1",
    "value_file2",
    "diff_file2_minus_file1",
]

USAGE_OUTPUT_FIELD = "Usage Point No."
"""Column appended to every merged readings row."""

NOT_FOUND = "NOT FOUND"
"""Literal written into ``USAGE_OUTPUT_FIELD`` when a meter has no mapping entry.

Part of the persisted output contract; downstream consumers match on it.
"""

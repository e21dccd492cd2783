"""Aggregation and join engine contracts."""

from __future__ import annotations

from datetime import date
from typing import Any

from meter_reconcile import NOT_FOUND, USAGE_OUTPUT_FIELD
from meter_reconcile.models import FileAggregate
from meter_reconcile.pipeline import (
    aggregate_file,
    build_lookup,
    combine_date_ranges,
    diff_aggregates,
    format_date_range,
    merge_rows,
)
from meter_reconcile.schema import detect_schema


def _aggregate(grid: list[list[Any]]) -> FileAggregate:
    return aggregate_file(detect_schema(grid))


def test_diff_end_to_end_sorted_with_zero_fill() -> None:
    file1 = _aggregate([["meter_id", "value"], ["M1", "10"]])
    file2 = _aggregate([["meter_id", "value"], ["M1", "15"], ["M2", "5"]])

    result = diff_aggregates(file1, file2)

    assert [row.as_list() for row in result.rows] == [
        ["M1", "", 10, 15, 5],
        ["M2", "", 0, 5, 5],
    ]
    assert result.date_range is None


def test_aggregate_sums_per_meter_and_skips_bad_rows() -> None:
    agg = _aggregate(
        [
            ["Meter No", "kWh"],
            ["M1", "1,5"],
            [" M1 ", 2],
            ["", 7],
            ["M2", "n/a"],
            ["m1", 1],
        ]
    )

    assert agg.totals == {"M1": 3.5, "m1": 1.0}
    assert agg.qc.rows_in == 5
    assert agg.qc.rows_out == 3
    assert agg.qc.dropped_rows == 2
    assert any("empty meter id" in w for w in agg.qc.warnings)
    assert any("unparseable value" in w for w in agg.qc.warnings)


def test_aggregate_tracks_usage_point_last_write_wins_and_dates() -> None:
    agg = _aggregate(
        [
            ["Meter", "Reading", "Date", "Location"],
            ["M1", 1, "15/03/2024", "Old Site"],
            ["M1", 2, 45352, "New Site"],
            ["M1", 3, "garbage", None],
            ["M2", "x", "01/01/2020", "Skipped"],
        ]
    )

    assert agg.usage_points == {"M1": "New Site"}
    assert sorted(agg.dates) == [date(2024, 3, 1), date(2024, 3, 15)]


def test_undetectable_file_aggregates_to_nothing() -> None:
    agg = aggregate_file(None)

    assert agg.totals == {}
    assert agg.qc.missing_columns == ["meter", "value"]
    assert agg.qc.rows_in == 0


def test_diff_prefers_file2_usage_point_then_file1() -> None:
    file1 = _aggregate([["Meter", "Value", "Site"], ["M1", 1, "A"], ["M2", 1, "B"]])
    file2 = _aggregate([["Meter", "Value", "Site"], ["M1", 2, "A2"], ["M2", 2, None]])

    rows = {r.meter_id: r for r in diff_aggregates(file1, file2).rows}

    assert rows["M1"].usage_point == "A2"
    assert rows["M2"].usage_point == "B"


def test_date_range_formatting() -> None:
    assert format_date_range([]) is None
    assert format_date_range([date(2024, 3, 1), date(2024, 3, 1)]) == "2024-03-01"
    assert (
        format_date_range([date(2024, 3, 15), date(2024, 3, 1)])
        == "2024-03-01 to 2024-03-15"
    )
    assert combine_date_ranges("a", "b") == "a to b"
    assert combine_date_ranges("a", "b", separator=" -> ") == "a -> b"
    assert combine_date_ranges(None, "b") == "b"
    assert combine_date_ranges(None, None) is None


def test_diff_reports_display_and_ascii_ranges() -> None:
    file1 = _aggregate(
        [["Meter", "Value", "Date"], ["M1", 1, "15/03/2024"], ["M1", 1, "01/03/2024"]]
    )
    file2 = _aggregate([["Meter", "Value", "Date"], ["M1", 1, "01/04/2024"]])

    result = diff_aggregates(file1, file2)

    assert result.date_range_file1 == "2024-03-01 to 2024-03-15"
    assert result.date_range_file2 == "2024-04-01"
    assert result.date_range == "2024-03-01 to 2024-03-15 to 2024-04-01"
    assert result.date_range_ascii == "2024-03-01 to 2024-03-15 -> 2024-04-01"


def test_diff_is_deterministic() -> None:
    grid1 = [["meter_id", "value"], ["B", "2"], ["A", "1"], ["B", "3"]]
    grid2 = [["meter_id", "value"], ["C", "1"], ["A", "4"]]

    first = diff_aggregates(_aggregate(grid1), _aggregate(grid2))
    second = diff_aggregates(_aggregate(grid1), _aggregate(grid2))

    assert [r.as_list() for r in first.rows] == [r.as_list() for r in second.rows]
    assert [r.meter_id for r in first.rows] == ["A", "B", "C"]


def test_build_lookup_is_case_insensitive_and_last_row_wins() -> None:
    rows = [
        {"Meter No": " A1 ", "Usage Point No.": "UP-1"},
        {"Meter No": "a1", "Usage Point No.": " UP-2 "},
        {"Meter No": "", "Usage Point No.": "UP-3"},
        {"Meter No": "B2", "Usage Point No.": None},
        {"Meter No": 1001.0, "Usage Point No.": "UP-4"},
    ]

    lookup, skipped = build_lookup(rows, "Meter No", "Usage Point No.")

    assert lookup == {"a1": "UP-2", "1001": "UP-4"}
    assert skipped == 2


def test_merge_rows_appends_label_and_keeps_order() -> None:
    readings = [
        {"Meter": "A1", "kwh": 3},
        {"Meter": "Z9", "kwh": 1},
        {"Meter": None, "kwh": 2},
        {"Meter": 1001, "kwh": 4},
    ]
    lookup = {"a1": "UP-9", "1001": "UP-4"}

    result = merge_rows(readings, "Meter", lookup)

    assert result.rows == [
        {"Meter": "A1", "kwh": 3, USAGE_OUTPUT_FIELD: "UP-9"},
        {"Meter": "Z9", "kwh": 1, USAGE_OUTPUT_FIELD: NOT_FOUND},
        {"Meter": None, "kwh": 2, USAGE_OUTPUT_FIELD: NOT_FOUND},
        {"Meter": 1001, "kwh": 4, USAGE_OUTPUT_FIELD: "UP-4"},
    ]
    assert result.columns == ["Meter", "kwh", USAGE_OUTPUT_FIELD]
    assert (result.found, result.not_found, result.blank_keys) == (2, 1, 1)
    assert readings[0] == {"Meter": "A1", "kwh": 3}


def test_merge_joins_lowercase_mapping_key() -> None:
    lookup, _ = build_lookup([{"Meter No": "a1", "Usage Point No.": "UP-9"}], "Meter No", "Usage Point No.")

    result = merge_rows([{"Meter": "A1", "kwh": 3}], "Meter", lookup)

    assert result.rows[0]["Usage Point No."] == "UP-9"

"""Header-row location, both detection strategies, merge column resolution."""

from __future__ import annotations

import pytest

from meter_reconcile.errors import SchemaDetectionError
from meter_reconcile.models import ColumnRole
from meter_reconcile.schema import (
    MAPPING_JOIN_TOKENS,
    READINGS_JOIN_TOKENS,
    USAGE_TOKENS,
    detect_by_scanning,
    detect_from_keyed_rows,
    detect_schema,
    find_key_by_tokens,
    locate_header_row,
    match_header,
    normalized_rows,
    resolve_join_key,
    resolve_usage_key,
    select_merge_header_row,
    table_from_header_row,
)
from meter_reconcile.trace import TraceRecorder

BANNER_GRID = [
    ["Daily Profile Export"],
    ["Generated 2024"],
    [None, "Meter Serial", "Active Energy Import (+A)", "Time"],
    [None, "M1", "1,5", 45000],
    [None, "M2", "2", 45001],
]


def test_keyed_strategy_maps_named_columns() -> None:
    grid = [
        ["Meter No", "kWh", "Date", "Location"],
        ["M1", "10", "15/03/2024", "Site A"],
    ]

    table = detect_schema(grid)

    assert table is not None
    mapping = table.mapping
    assert mapping.strategy == "keyed"
    assert (mapping.meter, mapping.value, mapping.date, mapping.usage_point) == (
        "Meter No", "kWh", "Date", "Location",
    )
    assert normalized_rows(table) == [
        {
            ColumnRole.meter: "M1",
            ColumnRole.value: "10",
            ColumnRole.date: "15/03/2024",
            ColumnRole.usage_point: "Site A",
        }
    ]


def test_keyed_strategy_ignores_placeholder_keys() -> None:
    grid = [[None, "Meter", "Reading"], ["x", "M1", 3]]

    table = detect_from_keyed_rows(grid)

    assert table is not None
    assert table.mapping.meter == "Meter"
    assert table.mapping.value == "Reading"
    assert table.mapping.columns == {"meter": 1, "value": 2}


def test_keyed_strategy_needs_meter_and_value() -> None:
    assert detect_from_keyed_rows([["Meter", "Customer"], ["M1", "Bob"]]) is None
    assert detect_from_keyed_rows([["Meter", "kWh"]]) is None


def test_scan_strategy_finds_header_below_banner_rows() -> None:
    recorder = TraceRecorder()

    table = detect_schema(BANNER_GRID, trace=recorder)

    assert table is not None
    assert table.mapping.strategy == "scan"
    assert table.mapping.header_row == 2
    assert table.mapping.columns == {"meter": 1, "value": 2, "date": 3}
    assert table.mapping.usage_point is None
    rows = normalized_rows(table)
    assert rows[0] == {ColumnRole.meter: "M1", ColumnRole.value: "1,5", ColumnRole.date: 45000}
    assert len(rows) == 2
    assert recorder.names()[:3] == ["schema.strategy", "schema.strategy", "schema.detected"]


def test_locate_header_row_requires_meter_and_value_in_same_row() -> None:
    assert locate_header_row([["Meter"], ["kWh"], ["M1", 3]]) is None


def test_locate_header_row_scan_limit() -> None:
    grid = [["filler"] for _ in range(60)] + [["Meter", "Value"], ["M1", 1]]

    assert locate_header_row(grid) is None
    location = locate_header_row(grid, max_rows=100)
    assert location is not None
    assert location.row == 60


def test_detection_is_idempotent() -> None:
    first = detect_schema(BANNER_GRID)
    second = detect_schema(BANNER_GRID)

    assert first is not None and second is not None
    assert first.mapping == second.mapping
    assert first.rows == second.rows


def test_undetectable_grid_returns_none() -> None:
    recorder = TraceRecorder()

    assert detect_schema([["a", "b"], ["1", "2"]], trace=recorder) is None
    assert detect_by_scanning([]) is None
    assert recorder.last("schema.undetected") is not None


def test_merge_header_row_skips_banner_with_generic_labels() -> None:
    grid = [
        ["Meter", "Date", "Column", "Energy"],
        ["Meter No", "Date", "Active Energy", "Usage Point"],
        ["A1", "2024-01-01", 3, "UP-1"],
    ]

    assert select_merge_header_row(grid) == 1


def test_merge_header_row_needs_more_than_two_cells_and_a_keyword() -> None:
    grid = [
        ["Device", "Daily Profile", "x"],
        ["Meter", "kWh"],
        ["Asset", "Meter No", "Usage Point No."],
    ]

    assert select_merge_header_row(grid) == 2


def test_merge_header_row_falls_back_to_first_row() -> None:
    recorder = TraceRecorder()

    assert select_merge_header_row([["a"], ["b"]], trace=recorder) == 0
    event = recorder.last("merge.header_row")
    assert event is not None and event.data["reason"] == "fallback"


def test_table_from_header_row_drops_empty_rows() -> None:
    grid = [
        ["Title"],
        ["Meter", "kwh"],
        ["A1", 3, "extra"],
        [None, None],
        ["B2", None],
    ]

    headers, rows = table_from_header_row(grid, 1)

    assert headers == ["Meter", "kwh"]
    assert rows == [{"Meter": "A1", "kwh": 3}, {"Meter": "B2", "kwh": None}]


def test_find_key_prefers_exact_over_substring() -> None:
    headers = ["Usage Type", "Usage Point No."]

    assert find_key_by_tokens(headers, USAGE_TOKENS) == "Usage Point No."
    assert find_key_by_tokens(["Site", "Usage Pt Location"], USAGE_TOKENS) == "Usage Pt Location"
    assert find_key_by_tokens(["Site"], USAGE_TOKENS) is None


def test_resolve_usage_key_failure_carries_diagnostics() -> None:
    sample = {"Meter": "A1", "Reading": 3}

    with pytest.raises(SchemaDetectionError) as info:
        resolve_usage_key(["Meter", "Reading"], sample)

    payload = info.value.to_payload()
    assert payload["error"] == "Could not find Usage Point column in mapping file."
    assert payload["detected_headers"] == ["Meter", "Reading"]
    assert payload["sample_row"] == sample
    assert "--usage-key" in payload["suggestion"]


def test_resolve_usage_key_override_matches_loosely() -> None:
    headers = ["Meter No", "Usage Point No."]

    assert resolve_usage_key(headers, {}, override="usage point no") == "Usage Point No."
    with pytest.raises(SchemaDetectionError, match="not found"):
        resolve_usage_key(headers, {}, override="Area")


def test_resolve_join_key_layers() -> None:
    assert resolve_join_key(["Asset", "Serial Number"], MAPPING_JOIN_TOKENS) == "Serial Number"
    assert resolve_join_key(["Name", "Account No"], READINGS_JOIN_TOKENS) == "Account No"
    assert resolve_join_key(["Alpha", "Beta"], READINGS_JOIN_TOKENS) == "Alpha"
    with pytest.raises(SchemaDetectionError):
        resolve_join_key([], READINGS_JOIN_TOKENS)


def test_match_header() -> None:
    assert match_header(["Meter No"], "Meter No") == "Meter No"
    assert match_header(["Meter No"], "meter-no") == "Meter No"
    assert match_header(["Meter No"], "...") is None

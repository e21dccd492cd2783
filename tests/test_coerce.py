"""Numeric and date coercion edge cases."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from meter_reconcile.coerce import cell_text, format_date, parse_date, parse_number


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("1234.56", 1234.56),
        ("12,5", 12.5),
        (" 1 234 kWh", 1234.0),
        ("-5", -5.0),
        (7, 7.0),
        (2.5, 2.5),
    ],
)
def test_parse_number_accepts_locale_variants(raw: object, expected: float) -> None:
    assert parse_number(raw) == pytest.approx(expected)


def test_parse_number_comma_with_period_strips_comma() -> None:
    # Comma is only a decimal separator when no period is present.
    assert parse_number("1.234,56") == pytest.approx(1.23456)
    assert parse_number("1,234.56") == pytest.approx(1234.56)


@pytest.mark.parametrize(
    "raw", ["abc", "", "   ", None, "1.2.3", "-", float("nan"), float("inf"), True]
)
def test_parse_number_rejects_unparseable(raw: object) -> None:
    assert parse_number(raw) is None


def test_parse_date_decodes_excel_serials_in_window() -> None:
    assert parse_date(45000) == date(2023, 3, 15)
    assert parse_date(45000.75) == date(2023, 3, 15)
    assert parse_date(25000) is None
    assert parse_date(50000) is None
    assert parse_date(100) is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("15/03/2024", date(2024, 3, 15)),
        ("15-03-2024", date(2024, 3, 15)),
        ("15.03.2024", date(2024, 3, 15)),
        ("2024.03.15", date(2024, 3, 15)),
        ("2024/03/15", date(2024, 3, 15)),
        ("2024-03-15", date(2024, 3, 15)),
        ("15/03/24", date(2024, 3, 15)),
        ("01/02/2024", date(2024, 2, 1)),
        ("15/03/2024 08:30", date(2024, 3, 15)),
        ("2024-03-15T08:30:00", date(2024, 3, 15)),
    ],
)
def test_parse_date_text_patterns(raw: str, expected: date) -> None:
    assert parse_date(raw) == expected


def test_parse_date_us_order_is_not_guessed() -> None:
    # DD/MM is tried first; month 15 is invalid, so nothing matches.
    assert parse_date("03/15/2024") is None
    assert parse_date("03.15.2024") is None
    assert parse_date("03-15-2024") is None
    assert parse_date("03/15/2024", dayfirst=False) == date(2024, 3, 15)
    assert parse_date("03.15.2024", dayfirst=False) == date(2024, 3, 15)
    assert parse_date("01/02/2024", dayfirst=False) == date(2024, 1, 2)


@pytest.mark.parametrize("raw", ["31/02/2024", "00/01/2024", "", "15/3", "not a date", None, False])
def test_parse_date_rejects_invalid(raw: object) -> None:
    assert parse_date(raw) is None


def test_parse_date_accepts_native_dates() -> None:
    assert parse_date(datetime(2024, 5, 1, 10, 0)) == date(2024, 5, 1)
    assert parse_date(date(2024, 5, 2)) == date(2024, 5, 2)


def test_cell_text_renders_integral_floats_without_suffix() -> None:
    assert cell_text(12345.0) == "12345"
    assert cell_text(1.5) == "1.5"
    assert cell_text(None) == ""
    assert cell_text(float("nan")) == ""
    assert cell_text(" M1 ") == " M1 "


def test_format_date_default_is_iso() -> None:
    assert format_date(date(2024, 3, 1)) == "2024-03-01"
    assert format_date(date(2024, 3, 1), "%d/%m/%Y") == "01/03/2024"

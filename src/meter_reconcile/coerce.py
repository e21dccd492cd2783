"""Cell-level coercion — numbers and dates from whatever the workbook held."""

from __future__ import annotations

import math
import re
import warnings
from datetime import date, datetime
from numbers import Real
from typing import Any, cast

import pandas as pd
from openpyxl.utils.datetime import from_excel

# Exclusive bounds: roughly 1968-06 .. 2036-11 in the 1900 date system.
SERIAL_DATE_MIN = 25000
SERIAL_DATE_MAX = 50000

_WHITESPACE_RE = re.compile(r"\s+")
_NON_NUMERIC_RE = re.compile(r"[^0-9.\-]")

_DMY_RE = re.compile(r"^(\d{1,2})[./-](\d{1,2})[./-](\d{4})(?:[ T].*)?$")
_YMD_RE = re.compile(r"^(\d{4})[./-](\d{1,2})[./-](\d{1,2})(?:[ T].*)?$")
_DMY_SHORT_RE = re.compile(r"^(\d{1,2})[./-](\d{1,2})[./-](\d{2})(?:[ T].*)?$")
# Day/month triples are only ever read through the explicit patterns.
_AMBIGUOUS_TRIPLE_RE = re.compile(r"^\d{1,2}[./-]\d{1,2}[./-]\d{2,4}(?:[ T]|$)")
_YEAR_FIRST_RE = re.compile(r"^\d{4}\D")


def is_missing(value: Any) -> bool:
    if value is None:
        return True
    try:
        return bool(pd.isna(cast(Any, value)))
    except (TypeError, ValueError):
        return False


def cell_text(value: Any) -> str:
    """Render a cell as text; integral floats lose their ``.0``."""
    if is_missing(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# ── Numbers ──────────────────────────────────────────────────────


def parse_number(value: Any) -> float | None:
    """Parse a reading value; ``None`` means unparseable, never zero.

    A comma with no period is a decimal comma (``"12,5"``). Everything outside
    ``[0-9.-]`` is then discarded, so ``"1.234,56"`` reads as ``1.23456``.
    """
    if is_missing(value) or isinstance(value, bool):
        return None
    if isinstance(value, Real):
        result = float(value)
        return result if math.isfinite(result) else None

    token = _WHITESPACE_RE.sub("", str(value))
    if not token:
        return None
    if "," in token and "." not in token:
        token = token.replace(",", ".")
    token = _NON_NUMERIC_RE.sub("", token)
    if not token:
        return None
    try:
        result = float(token)
    except ValueError:
        return None
    return result if math.isfinite(result) else None


# ── Dates ────────────────────────────────────────────────────────


def _build_date(year: int, month: int, day: int) -> date | None:
    if not (1 <= day <= 31 and 1 <= month <= 12):
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def serial_to_date(serial: float) -> date | None:
    """Decode an Excel serial when it falls in the plausible window."""
    if not (SERIAL_DATE_MIN < serial < SERIAL_DATE_MAX):
        return None
    converted = from_excel(serial)
    if isinstance(converted, datetime):
        return converted.date()
    return None


def _generic_parse(text: str, *, dayfirst: bool) -> date | None:
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        try:
            parsed = pd.to_datetime(text, errors="coerce", dayfirst=dayfirst)
        except (ValueError, TypeError, OverflowError):
            return None
    if is_missing(parsed):
        return None
    return cast(pd.Timestamp, parsed).date()


def _parse_date_text(text: str, *, dayfirst: bool) -> date | None:
    if len(text) > 6 and not _AMBIGUOUS_TRIPLE_RE.match(text):
        parsed = _generic_parse(
            text, dayfirst=dayfirst and not _YEAR_FIRST_RE.match(text)
        )
        if parsed is not None:
            return parsed

    match = _DMY_RE.match(text)
    if match:
        first, second, year = (int(g) for g in match.groups())
        day, month = (first, second) if dayfirst else (second, first)
        built = _build_date(year, month, day)
        if built is not None:
            return built

    match = _YMD_RE.match(text)
    if match:
        year, month, day = (int(g) for g in match.groups())
        built = _build_date(year, month, day)
        if built is not None:
            return built

    match = _DMY_SHORT_RE.match(text)
    if match:
        first, second, short_year = (int(g) for g in match.groups())
        day, month = (first, second) if dayfirst else (second, first)
        return _build_date(2000 + short_year, month, day)

    return None


def parse_date(value: Any, *, dayfirst: bool = True) -> date | None:
    """Parse a date cell: native dates, Excel serials, or text.

    Text is tried with generic parsing first, then DD/MM/YYYY, YYYY/MM/DD and
    DD/MM/YY (``2000 + YY``). With ``dayfirst=False`` the day/month patterns
    read MM/DD instead. ``"03/15/2024"`` is therefore ``None`` by default.
    """
    if is_missing(value) or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, Real):
        number = float(value)
        if not math.isfinite(number):
            return None
        return serial_to_date(number)

    text = str(value).strip()
    if not text:
        return None
    return _parse_date_text(text, dayfirst=dayfirst)


def format_date(value: date, fmt: str = "%Y-%m-%d") -> str:
    return value.strftime(fmt)

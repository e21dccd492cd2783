"""Header normalisation and column-role classification.

Alias tables are the primary source of truth; the substring heuristics that
follow them are deliberately broad (any header containing ``meter`` is a meter
column, ``parameter`` included).
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Callable, Sequence
from typing import Any

from meter_reconcile.models import ROLE_PRIORITY, ColumnRole

# ── Normalisation ────────────────────────────────────────────────

_NON_ASCII_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def normalize_key(raw: Any) -> str:
    """Loose form: trimmed and case-folded, separators kept."""
    if raw is None:
        return ""
    return str(raw).strip().casefold()


def squish(raw: Any) -> str:
    """Strict form: lowercase ASCII alphanumerics only."""
    return _NON_ASCII_ALNUM_RE.sub("", normalize_key(raw))


def fold_header(raw: Any) -> str:
    """Unicode-aware squish.

    Latin diacritics are stripped (``Compteur Numéro`` -> ``compteurnumero``)
    while letters of scripts without them, such as Arabic, survive.
    """
    if raw is None:
        return ""
    decomposed = unicodedata.normalize("NFKD", str(raw).casefold())
    return "".join(
        ch for ch in decomposed if not unicodedata.combining(ch) and ch.isalnum()
    )


# ── Policy tables ────────────────────────────────────────────────

ROLE_ALIASES: dict[ColumnRole, frozenset[str]] = {
    ColumnRole.meter: frozenset({
        "meter_id", "meter", "meter id", "meter no", "meter no.", "meterno",
        "meter number", "meter number.", "meternumber",
    }),
    ColumnRole.value: frozenset({
        "value", "reading", "amount", "kwh",
        "active energy import (+a)", "active energy import (a)", "active energy import",
    }),
    ColumnRole.date: frozenset({
        "date", "day", "time", "timestamp", "reading date", "datetime", "date time",
        "التاريخ", "تاريخ", "اليوم", "يوم", "الوقت", "التاريخ والوقت",
    }),
    ColumnRole.usage_point: frozenset({
        "usage point", "usage point no", "usage point no.", "usage_point",
        "usage point number", "location", "site", "address",
        "الموقع", "العنوان", "نقطة الاستخدام",
    }),
}

ROLE_SQUISHED_ALIASES: dict[ColumnRole, frozenset[str]] = {
    ColumnRole.meter: frozenset({"meterid", "meter", "meterno", "meternumber"}),
    ColumnRole.value: frozenset({
        "value", "reading", "amount", "kwh", "activeenergyimporta", "activeenergyimport",
    }),
    ColumnRole.date: frozenset({"date", "day", "time", "timestamp", "readingdate", "datetime"}),
    ColumnRole.usage_point: frozenset({
        "usagepoint", "usagepointno", "usagepointnumber", "location", "site", "address",
    }),
}

_ACTIVE_ENERGY_RE = re.compile(r"active\s*energy\s*import", re.IGNORECASE)

Rule = Callable[[str, str, str], bool]
"""``(raw, loose, squished) -> bool``."""


def _alias_rule(role: ColumnRole) -> Rule:
    aliases = ROLE_ALIASES[role]
    return lambda _raw, loose, _sq: loose in aliases


def _squished_alias_rule(role: ColumnRole) -> Rule:
    aliases = ROLE_SQUISHED_ALIASES[role]
    return lambda _raw, _loose, sq: sq in aliases


def _contains_rule(*needles: str) -> Rule:
    return lambda _raw, _loose, sq: any(n in sq for n in needles)


ROLE_RULES: dict[ColumnRole, tuple[Rule, ...]] = {
    ColumnRole.meter: (
        _alias_rule(ColumnRole.meter),
        _squished_alias_rule(ColumnRole.meter),
        _contains_rule("meter"),
    ),
    ColumnRole.value: (
        _alias_rule(ColumnRole.value),
        _squished_alias_rule(ColumnRole.value),
        lambda raw, _loose, _sq: bool(_ACTIVE_ENERGY_RE.search(raw)),
        lambda _raw, _loose, sq: sq == "kwh",
        _contains_rule("value"),
    ),
    ColumnRole.date: (
        _alias_rule(ColumnRole.date),
        _squished_alias_rule(ColumnRole.date),
        _contains_rule("date", "time"),
    ),
    ColumnRole.usage_point: (
        _alias_rule(ColumnRole.usage_point),
        _squished_alias_rule(ColumnRole.usage_point),
        _contains_rule("usage", "location"),
    ),
}


# ── Classification ───────────────────────────────────────────────


def classify_role(text: Any, role: ColumnRole) -> bool:
    """Return True if *text* plausibly names a column holding *role*."""
    if text is None:
        return False
    raw = str(text)
    loose = normalize_key(raw)
    if not loose:
        return False
    sq = squish(raw)
    return any(rule(raw, loose, sq) for rule in ROLE_RULES[role])


def looks_like_meter(text: Any) -> bool:
    return classify_role(text, ColumnRole.meter)


def looks_like_value(text: Any) -> bool:
    return classify_role(text, ColumnRole.value)


def looks_like_date(text: Any) -> bool:
    return classify_role(text, ColumnRole.date)


def looks_like_usage_point(text: Any) -> bool:
    return classify_role(text, ColumnRole.usage_point)


def matching_roles(text: Any) -> list[ColumnRole]:
    """All roles *text* matches, in priority order."""
    return [role for role in ROLE_PRIORITY if classify_role(text, role)]


def assign_roles(headers: Sequence[Any]) -> dict[ColumnRole, int]:
    """Map each role to the first column claiming it, scanning left to right.

    A column takes the highest-priority role it matches that is still free,
    so it never holds two roles.
    """
    assigned: dict[ColumnRole, int] = {}
    for idx, header in enumerate(headers):
        if header is None:
            continue
        for role in matching_roles(header):
            if role not in assigned:
                assigned[role] = idx
                break
        if len(assigned) == len(ROLE_PRIORITY):
            break
    return assigned

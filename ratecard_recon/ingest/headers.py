from __future__ import annotations

import logging
import re

"""Header canonicalization for uploaded CSV files.

Sellers export rate cards from spreadsheets with friendly column titles
("Marketplace", "Commission %", "Valid From", "T+ Days"). Each header is
reduced to a canonical token (lower-case, ``+`` spelled ``plus``, symbols
and separators removed) and looked up in ``HEADER_ALIASES``; matching
columns are renamed to the template field they describe. Unknown columns
pass through untouched and are reported once per process at DEBUG.
"""

__all__ = [
    "TEMPLATE_COLUMNS",
    "HEADER_ALIASES",
    "canonical_column_name",
    "normalize_headers",
]

logger = logging.getLogger(__name__)

TEMPLATE_COLUMNS = (
    "platform_id",
    "category_id",
    "commission_type",
    "commission_percent",
    "slabs_json",
    "fees_json",
    "gst_percent",
    "tcs_percent",
    "settlement_basis",
    "t_plus_days",
    "weekly_weekday",
    "bi_weekly_weekday",
    "bi_weekly_which",
    "monthly_day",
    "grace_days",
    "effective_from",
    "effective_to",
    "global_min_price",
    "global_max_price",
    "notes",
)

_ALIAS_ENTRIES: tuple[tuple[str, str], ...] = (
    ("marketplace", "platform_id"),
    ("platform", "platform_id"),
    ("platform id", "platform_id"),
    ("category", "category_id"),
    ("category id", "category_id"),
    ("type", "commission_type"),
    ("commission type", "commission_type"),
    ("commission", "commission_percent"),
    ("commission %", "commission_percent"),
    ("commission percent", "commission_percent"),
    ("valid from", "effective_from"),
    ("date from", "effective_from"),
    ("effective from", "effective_from"),
    ("valid to", "effective_to"),
    ("date to", "effective_to"),
    ("effective to", "effective_to"),
    ("gst %", "gst_percent"),
    ("gst percent", "gst_percent"),
    ("tcs %", "tcs_percent"),
    ("tcs percent", "tcs_percent"),
    ("settlement basis", "settlement_basis"),
    ("t+ days", "t_plus_days"),
    ("t plus days", "t_plus_days"),
    ("t days", "t_plus_days"),
    ("weekly weekday", "weekly_weekday"),
    ("bi weekly weekday", "bi_weekly_weekday"),
    ("bi-weekly weekday", "bi_weekly_weekday"),
    ("bi weekly which", "bi_weekly_which"),
    ("monthly day", "monthly_day"),
    ("grace days", "grace_days"),
    ("global min price", "global_min_price"),
    ("global max price", "global_max_price"),
    ("notes", "notes"),
    ("slabs", "slabs_json"),
    ("slabs json", "slabs_json"),
    ("fees", "fees_json"),
    ("fees json", "fees_json"),
)

_STRIP_SYMBOLS = re.compile(r"[₹%()]")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def canonical_column_name(name: str) -> str:
    """``"T+ Days"`` -> ``"tplusdays"``, ``"Commission %"`` -> ``"commission"``."""
    text = name.lower().replace("+", " plus ")
    text = _STRIP_SYMBOLS.sub("", text)
    return _NON_ALNUM.sub("", text)


HEADER_ALIASES: dict[str, str] = {
    canonical_column_name(alias): field for alias, field in _ALIAS_ENTRIES
}
# template names map to themselves (``platform_id`` canonicalizes to ``platformid``)
HEADER_ALIASES.update({canonical_column_name(c): c for c in TEMPLATE_COLUMNS})

_reported_unmapped: set[str] = set()


def normalize_headers(record: dict[str, str]) -> dict[str, str]:
    """Rename known columns to template fields.

    When two source columns map to the same field the first non-empty one
    wins, so a blank duplicate column never hides a filled one.
    """
    out: dict[str, str] = {}
    for key, value in record.items():
        field = HEADER_ALIASES.get(canonical_column_name(key))
        if field is None:
            if key not in _reported_unmapped:
                _reported_unmapped.add(key)
                logger.debug("unmapped csv column: %s", key)
            out.setdefault(key, value)
            continue
        current = out.get(field)
        if current is None or (not str(current).strip() and str(value).strip()):
            out[field] = value
    return out

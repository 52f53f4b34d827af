from __future__ import annotations

from collections.abc import Iterable
from datetime import date

from ..models.config_models import LabelConfig
from ..models.rate_card import Fee, NormalizedRateCard

"""Human-friendly rendering of cards, ranges and issue lists."""

__all__ = [
    "format_number",
    "format_display_date",
    "format_date_range",
    "format_label",
    "describe_fees",
    "commission_description",
    "humanize_issues",
]

_DEFAULT_LABELS = LabelConfig()


def format_number(value: float | None) -> str:
    """12.0 -> "12", 2.5 -> "2.5"."""
    if value is None:
        return "0"
    rounded = round(value, 6)
    if rounded == int(rounded):
        return str(int(rounded))
    return str(rounded)


def format_display_date(value: date | None) -> str | None:
    if value is None:
        return None
    return value.strftime("%d %b %Y")


def format_date_range(start: date | None, end: date | None) -> str:
    """``01 Aug 2025 → open``"""
    left = format_display_date(start) or "-"
    right = format_display_date(end) or "open"
    return f"{left} → {right}"


def format_label(platform_id: str | None, category_id: str | None, labels: LabelConfig | None = None) -> str:
    labels = labels or _DEFAULT_LABELS
    platform = labels.platforms.get(platform_id, platform_id.capitalize()) if platform_id else "Unknown"
    category = labels.categories.get(category_id, category_id.capitalize()) if category_id else "Unknown"
    return f"{platform} • {category}"


def describe_fees(fees: Iterable[Fee]) -> str:
    parts = []
    for fee in fees:
        suffix = "%" if fee.fee_type == "percent" else ""
        parts.append(f"{fee.fee_code} {format_number(fee.fee_value)}{suffix}")
    return ", ".join(parts)


def commission_description(card: NormalizedRateCard) -> str:
    """One-line summary used in similar-row tooltips.

    ``Flat 12% commission; Fees: shipping 3%`` or
    ``Tiered commission (2 slabs); 0-500: 5%, 500-open: 7%``.
    """
    fees_text = describe_fees(card.fees)
    fee_summary = f"; Fees: {fees_text}" if fees_text else ""
    if card.is_tiered:
        count = len(card.slabs)
        snippets = [
            f"{format_number(s.min_price)}-{'open' if s.max_price is None else format_number(s.max_price)}: "
            f"{format_number(s.commission_percent)}%"
            for s in card.slabs[:3]
        ]
        extra = ", …" if count > 3 else ""
        slab_summary = f"; {', '.join(snippets)}{extra}" if snippets else ""
        return f"Tiered commission ({count} slab{'' if count == 1 else 's'}){slab_summary}{fee_summary}"
    return f"Flat {format_number(card.commission_percent)}% commission{fee_summary}"


def humanize_issues(issues: Iterable[str]) -> str:
    """Sentence-case each issue and join with ``; ``."""
    cleaned = []
    for raw in issues:
        text = raw.lstrip(" -").strip()
        if not text:
            continue
        text = text[0].upper() + text[1:]
        cleaned.append(text.rstrip("."))
    return "; ".join(cleaned)

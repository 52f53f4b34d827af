from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

from ..models.config_models import LabelConfig
from ..models.rate_card import Fee, NormalizedRateCard, Slab
from .labels import format_date_range, format_display_date, format_label

"""Conflict detection between a candidate rate card and a reference pool.

A candidate only conflicts with references for the same (platform,
category) whose effective ranges intersect (open ends are unbounded).
The first intersecting reference in pool order decides the outcome:

    exact   - identical range, commission and fees
    similar - anything else that overlaps

Archived references never block. ``analyze_conflicts`` checks the active
references first; an archived overlap is only reported (``archived_match``)
when no active reference overlaps.
"""

__all__ = [
    "EPSILON",
    "OverlapResult",
    "ConflictAnalysis",
    "ranges_overlap",
    "classify_pair",
    "detect_overlap",
    "analyze_conflicts",
    "build_similar_summary",
    "build_suggestions",
    "card_meta",
]

EPSILON = 1e-6


@dataclass(frozen=True)
class OverlapResult:
    type: str  # exact | similar
    existing: NormalizedRateCard
    reason: str


@dataclass(frozen=True)
class ConflictAnalysis:
    overlap: OverlapResult | None = None
    archived_match: OverlapResult | None = None

    @property
    def blocking_type(self) -> str | None:
        return self.overlap.type if self.overlap else None


def ranges_overlap(a: NormalizedRateCard, b: NormalizedRateCard) -> bool:
    if a.effective_from is None or b.effective_from is None:
        return False
    a_before_b_end = b.effective_to is None or a.effective_from <= b.effective_to
    b_before_a_end = a.effective_to is None or b.effective_from <= a.effective_to
    return a_before_b_end and b_before_a_end


def _close(x: float | None, y: float | None) -> bool:
    if x is None or y is None:
        return x is None and y is None
    return abs(x - y) < EPSILON


def _slabs_equal(a: tuple[Slab, ...], b: tuple[Slab, ...]) -> bool:
    if len(a) != len(b):
        return False
    return all(
        _close(s.min_price, o.min_price)
        and _close(s.max_price, o.max_price)
        and _close(s.commission_percent, o.commission_percent)
        for s, o in zip(a, b)
    )


def _fees_equal(a: Iterable[Fee], b: Iterable[Fee]) -> bool:
    left = sorted(a, key=lambda f: (f.fee_code, f.fee_type))
    right = sorted(b, key=lambda f: (f.fee_code, f.fee_type))
    if len(left) != len(right):
        return False
    return all(
        f.fee_code == o.fee_code and f.fee_type == o.fee_type and _close(f.fee_value, o.fee_value)
        for f, o in zip(left, right)
    )


def _same_commission(a: NormalizedRateCard, b: NormalizedRateCard) -> bool:
    if a.commission_type != b.commission_type:
        return False
    if a.is_tiered:
        return _slabs_equal(a.slabs, b.slabs)
    return abs((a.commission_percent or 0.0) - (b.commission_percent or 0.0)) < EPSILON


def _same_range(a: NormalizedRateCard, b: NormalizedRateCard) -> bool:
    return a.effective_from == b.effective_from and a.effective_to == b.effective_to


def classify_pair(a: NormalizedRateCard, b: NormalizedRateCard) -> str | None:
    """``exact`` / ``similar`` / None. Symmetric in its arguments."""
    if a.key != b.key or not ranges_overlap(a, b):
        return None
    if _same_range(a, b) and _same_commission(a, b) and _fees_equal(a.fees, b.fees):
        return "exact"
    return "similar"


def _iso(d: date | None) -> str:
    return d.isoformat() if d else "open"


def _overlap_reason(existing: NormalizedRateCard, overlap_type: str) -> str:
    label = "exact duplicate" if overlap_type == "exact" else "overlap"
    return (
        f"{label} with {existing.platform_id}/{existing.category_id} "
        f"({_iso(existing.effective_from)} → {_iso(existing.effective_to)}) "
        f"[id={existing.id or 'existing'}]"
    )


def detect_overlap(card: NormalizedRateCard, pool: Iterable[NormalizedRateCard]) -> OverlapResult | None:
    """First reference in ``pool`` that overlaps ``card`` (a card never conflicts with its own id)."""
    for other in pool:
        if card.id is not None and card.id == other.id:
            continue
        overlap_type = classify_pair(card, other)
        if overlap_type is None:
            continue
        return OverlapResult(type=overlap_type, existing=other, reason=_overlap_reason(other, overlap_type))
    return None


def analyze_conflicts(card: NormalizedRateCard, references: Iterable[NormalizedRateCard]) -> ConflictAnalysis:
    references = list(references)
    overlap = detect_overlap(card, (r for r in references if not r.archived))
    if overlap is not None:
        return ConflictAnalysis(overlap=overlap)
    archived = detect_overlap(card, (r for r in references if r.archived))
    return ConflictAnalysis(archived_match=archived)


def build_similar_summary(card: NormalizedRateCard, existing: NormalizedRateCard) -> str:
    differences = []
    if not _same_commission(card, existing):
        differences.append("different commission")
    if not _fees_equal(card.fees, existing.fees):
        differences.append("different fees")
    if not differences:
        return "Date overlap"
    return f"Date overlap with {' and '.join(differences)}"


def build_suggestions(card: NormalizedRateCard, existing: NormalizedRateCard) -> list[dict[str, Any]]:
    if (
        existing.effective_to is not None
        and card.effective_from is not None
        and card.effective_from <= existing.effective_to
    ):
        new_from = existing.effective_to + timedelta(days=1)
        return [
            {
                "type": "shift_from",
                "new_from": new_from.isoformat(),
                "reason": f"Shift start date to {format_display_date(new_from)} to avoid overlap.",
            }
        ]
    return [{"type": "skip", "reason": "Skip this row or adjust dates to resolve overlap."}]


def card_meta(card: NormalizedRateCard, labels: LabelConfig | None = None) -> dict[str, Any]:
    """``{id, label, date_range}`` block shown next to a conflicting row."""
    return {
        "id": card.id or "",
        "label": format_label(card.platform_id, card.category_id, labels),
        "date_range": format_date_range(card.effective_from, card.effective_to),
    }

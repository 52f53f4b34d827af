from __future__ import annotations

from collections import Counter

from ratecard_recon.ingest.normalizer import FIELD_COERCIONS
from ratecard_recon.models.rate_card import COMMISSION_TYPES, NormalizedRateCard

"""Structural validation of a normalized rate card.

Every issue is collected; only the slab ordering loop stops at its first
violation since later slabs cannot be judged once the order is broken.
"""

__all__ = ["validate_card"]


def validate_card(card: NormalizedRateCard) -> list[str]:
    issues: list[str] = []

    for name, coercion in FIELD_COERCIONS.items():
        if coercion.required and not getattr(card, name):
            issues.append(f"{name} is required")

    if card.commission_type and card.commission_type not in COMMISSION_TYPES:
        issues.append("commission_type must be 'flat' or 'tiered'")

    if card.commission_type == "flat" and card.commission_percent is None:
        issues.append("commission_percent is required for flat commission.")

    if (
        card.effective_from is not None
        and card.effective_to is not None
        and card.effective_to < card.effective_from
    ):
        issues.append("effective_to must not be before effective_from.")

    if (
        card.global_min_price is not None
        and card.global_max_price is not None
        and card.global_min_price > card.global_max_price
    ):
        issues.append("global_min_price must not exceed global_max_price.")

    counts = Counter(f.fee_code for f in card.fees)
    for code, n in counts.items():
        if n > 1:
            issues.append(f'Duplicate fee code "{code}" not allowed.')

    if card.commission_type == "tiered":
        if not card.slabs:
            issues.append("Tiered commission requires at least one slab.")
        else:
            slabs = card.slabs
            for i, current in enumerate(slabs):
                if current.max_price is not None and current.max_price <= current.min_price:
                    issues.append(
                        f"Slab {i + 1}: max_price must be greater than min_price or null for open-ended."
                    )
                if i < len(slabs) - 1:
                    upper = float("inf") if current.max_price is None else current.max_price
                    if upper > slabs[i + 1].min_price:
                        issues.append(f"Slabs overlap between rows {i + 1} and {i + 2}.")
                        break

    return issues

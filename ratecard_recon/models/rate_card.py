from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from typing import Any

"""Rate card domain model.

A rate card is a dated commission/fee schedule for one (platform, category)
pair. Cards are immutable: staging a card under a batch-local token,
promoting it to a persisted id, or editing it always produces a new
instance (``with_id``), and updates replace slabs and fees wholesale.
"""

__all__ = [
    "COMMISSION_TYPES",
    "FEE_TYPES",
    "Slab",
    "Fee",
    "NormalizedRateCard",
]

COMMISSION_TYPES = ("flat", "tiered")
FEE_TYPES = ("percent", "amount")


@dataclass(frozen=True)
class Slab:
    """Price-range specific commission within a tiered card.

    ``max_price`` of None means open-ended.
    """
    min_price: float
    max_price: float | None
    commission_percent: float

    def contains(self, price: float) -> bool:
        if price < self.min_price:
            return False
        return self.max_price is None or price < self.max_price

    def to_dict(self) -> dict[str, Any]:
        return {
            "min_price": self.min_price,
            "max_price": self.max_price,
            "commission_percent": self.commission_percent,
        }


@dataclass(frozen=True)
class Fee:
    fee_code: str
    fee_type: str  # percent | amount
    fee_value: float

    def to_dict(self) -> dict[str, Any]:
        return {"fee_code": self.fee_code, "fee_type": self.fee_type, "fee_value": self.fee_value}


@dataclass(frozen=True)
class NormalizedRateCard:
    """Canonical rate card shape shared by parsing, conflict detection and persistence.

    ``platform_id`` / ``category_id`` are trimmed and lower-cased.
    ``commission_type`` keeps whatever lower-cased value was supplied so the
    validator can reject unknown types; the card is only meaningful when it is
    ``flat`` (``commission_percent`` set, no slabs) or ``tiered`` (slabs set,
    ``commission_percent`` None). Slabs are sorted by ``min_price`` and fees by
    ``(fee_code, fee_type)``.
    """
    id: str | None
    platform_id: str
    category_id: str
    commission_type: str
    commission_percent: float | None = None
    slabs: tuple[Slab, ...] = ()
    fees: tuple[Fee, ...] = ()
    effective_from: date | None = None
    effective_to: date | None = None  # None = open-ended
    gst_percent: float | None = None
    tcs_percent: float | None = None
    settlement_basis: str | None = None
    t_plus_days: float | None = None
    weekly_weekday: float | None = None
    bi_weekly_weekday: float | None = None
    bi_weekly_which: str | None = None
    monthly_day: str | None = None
    grace_days: float | None = None
    global_min_price: float | None = None
    global_max_price: float | None = None
    notes: str | None = None
    archived: bool = False

    @property
    def is_tiered(self) -> bool:
        return self.commission_type == "tiered"

    @property
    def key(self) -> tuple[str, str]:
        return (self.platform_id, self.category_id)

    def with_id(self, new_id: str | None) -> NormalizedRateCard:
        return replace(self, id=new_id)

    def covers_date(self, day: date) -> bool:
        if self.effective_from is None or day < self.effective_from:
            return False
        return self.effective_to is None or day <= self.effective_to

    def covers_price(self, price: float) -> bool:
        if self.global_min_price is not None and price < self.global_min_price:
            return False
        if self.global_max_price is not None and price > self.global_max_price:
            return False
        return True

    def commission_rate_for(self, price: float) -> float:
        """Commission percent applicable to ``price`` (0 when no slab applies)."""
        if not self.is_tiered:
            return self.commission_percent or 0.0
        for slab in self.slabs:
            if slab.contains(price):
                return slab.commission_percent
        return 0.0

    def status_on(self, today: date) -> str:
        """active / upcoming / expired relative to ``today``."""
        if self.effective_from is not None and self.effective_from > today:
            return "upcoming"
        if self.effective_to is not None and self.effective_to < today:
            return "expired"
        return "active"

    def to_payload(self) -> dict[str, Any]:
        """Structured payload (API shape, ISO dates) that normalizes back to this card."""
        return {
            "id": self.id,
            "platform_id": self.platform_id,
            "category_id": self.category_id,
            "commission_type": self.commission_type,
            "commission_percent": self.commission_percent,
            "slabs": [s.to_dict() for s in self.slabs],
            "fees": [f.to_dict() for f in self.fees],
            "effective_from": self.effective_from.isoformat() if self.effective_from else None,
            "effective_to": self.effective_to.isoformat() if self.effective_to else None,
            "gst_percent": self.gst_percent,
            "tcs_percent": self.tcs_percent,
            "settlement_basis": self.settlement_basis,
            "t_plus_days": self.t_plus_days,
            "weekly_weekday": self.weekly_weekday,
            "bi_weekly_weekday": self.bi_weekly_weekday,
            "bi_weekly_which": self.bi_weekly_which,
            "monthly_day": self.monthly_day,
            "grace_days": self.grace_days,
            "global_min_price": self.global_min_price,
            "global_max_price": self.global_max_price,
            "notes": self.notes,
            "archived": self.archived,
        }

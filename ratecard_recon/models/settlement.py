from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any

"""Settlement prediction models.

Amounts are kept unrounded; ``to_dict`` is the only place values are
rounded to 2 decimal places.
"""

__all__ = [
    "SettlementRequest",
    "SettlementBreakdown",
    "SettlementPrediction",
]


def _money(value: float) -> float:
    return round(value + 0.0, 2)


@dataclass(frozen=True)
class SettlementRequest:
    mrp: float
    order_id: str
    marketplace: str
    category: str
    order_date: date
    actual_settlement_amount: float


@dataclass(frozen=True)
class SettlementBreakdown:
    commission: float = 0.0
    shipping_fee: float = 0.0
    rto_fee: float = 0.0
    packaging_fee: float = 0.0
    fixed_fee: float = 0.0
    gst: float = 0.0
    commission_rate: float = 0.0
    gst_rate: float = 0.0

    @property
    def fees_before_gst(self) -> float:
        return self.commission + self.shipping_fee + self.rto_fee + self.packaging_fee + self.fixed_fee

    @property
    def total_deductions(self) -> float:
        return self.fees_before_gst + self.gst

    def to_dict(self) -> dict[str, float]:
        return {
            "commission": _money(self.commission),
            "shipping_fee": _money(self.shipping_fee),
            "rto_fee": _money(self.rto_fee),
            "packaging_fee": _money(self.packaging_fee),
            "fixed_fee": _money(self.fixed_fee),
            "gst": _money(self.gst),
            "total_deductions": _money(self.total_deductions),
            "commission_rate": self.commission_rate,
            "gst_rate": self.gst_rate,
        }


@dataclass(frozen=True)
class SettlementPrediction:
    request: SettlementRequest
    breakdown: SettlementBreakdown
    expected_payout: float
    delta: float
    mismatch_flag: bool
    rate_card_id: str | None
    created_at: str  # ISO-8601 UTC

    @property
    def rate_card_found(self) -> bool:
        return self.rate_card_id is not None

    @property
    def reco_status(self) -> str:
        return "mismatch" if self.mismatch_flag else "matched"

    def to_dict(self) -> dict[str, Any]:
        req = self.request
        return {
            "order_id": req.order_id,
            "marketplace": req.marketplace,
            "category": req.category,
            "date": req.order_date.isoformat(),
            "mrp": req.mrp,
            "actual_settlement_amount": req.actual_settlement_amount,
            "expected_payout": _money(self.expected_payout),
            "delta": _money(self.delta),
            "mismatch_flag": self.mismatch_flag,
            "reco_status": self.reco_status,
            "calculation_breakdown": self.breakdown.to_dict(),
            "rate_card_found": self.rate_card_found,
            "rate_card_id": self.rate_card_id,
            "created_at": self.created_at,
        }

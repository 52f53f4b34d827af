from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, date, datetime
from typing import Any

from ..db.repository import RateCardRepository
from ..ingest.normalizer import CoercionError, parse_date, parse_number
from ..models.config_models import SettlementConfig
from ..models.rate_card import NormalizedRateCard
from ..models.settlement import (
    SettlementBreakdown,
    SettlementPrediction,
    SettlementRequest,
)

"""Settlement prediction: expected payout for an order vs. what was paid.

Card resolution: platform/category match (case-insensitive), effective
range contains the order date, optional price band contains ``mrp``,
archived cards ignored. When several cards qualify the one with the latest
``effective_from`` wins; ties keep catalog order.

    commission = rate% x mrp            (tiered: slab containing mrp)
    fee        = value (amount) | value% x mrp (percent), per fee code
    gst        = gst% x (commission + shipping + rto + packaging + fixed)
    expected   = mrp - (commission + fees + gst)
    delta      = expected - actual
    mismatch   = |delta| > tolerance
"""

__all__ = [
    "DomainInputError",
    "SETTLEMENT_FEE_CODES",
    "build_request",
    "resolve_rate_card",
    "compute_settlement",
    "predict_settlement",
]

logger = logging.getLogger(__name__)

SETTLEMENT_FEE_CODES = {
    "shipping": "shipping_fee",
    "rto": "rto_fee",
    "packaging": "packaging_fee",
    "fixed": "fixed_fee",
}

_REQUIRED_FIELDS = ("mrp", "order_id", "marketplace", "category", "date", "actual_settlement_amount")


class DomainInputError(ValueError):
    pass


def build_request(payload: Mapping[str, Any]) -> SettlementRequest:
    """Validate a raw prediction request.

    Raises:
        DomainInputError: missing field, unparsable value, ``mrp <= 0`` or
            ``actual_settlement_amount < 0``.
    """
    missing = [f for f in _REQUIRED_FIELDS if payload.get(f) in (None, "")]
    if missing:
        raise DomainInputError(f"Missing required fields: {', '.join(missing)}")
    try:
        mrp = parse_number(payload["mrp"])
        actual = parse_number(payload["actual_settlement_amount"])
        order_date = parse_date(payload["date"])
    except CoercionError as e:
        raise DomainInputError(str(e)) from e
    if mrp is None or mrp <= 0:
        raise DomainInputError("MRP must be positive")
    if actual is None or actual < 0:
        raise DomainInputError("Actual settlement amount must be non-negative")
    return SettlementRequest(
        mrp=mrp,
        order_id=str(payload["order_id"]).strip(),
        marketplace=str(payload["marketplace"]).strip(),
        category=str(payload["category"]).strip(),
        order_date=order_date,
        actual_settlement_amount=actual,
    )


def resolve_rate_card(
    cards: Iterable[NormalizedRateCard],
    marketplace: str,
    category: str,
    on: date,
    mrp: float,
) -> NormalizedRateCard | None:
    platform_id = marketplace.strip().lower()
    category_id = category.strip().lower()
    best: NormalizedRateCard | None = None
    for card in cards:
        if card.archived or (card.platform_id.lower(), card.category_id.lower()) != (platform_id, category_id):
            continue
        if not card.covers_date(on) or not card.covers_price(mrp):
            continue
        if best is None or card.effective_from > best.effective_from:
            best = card
    return best


def _fee_amount(card: NormalizedRateCard, fee_code: str, mrp: float) -> float:
    fee = next((f for f in card.fees if f.fee_code.lower() == fee_code), None)
    if fee is None:
        return 0.0
    if fee.fee_type == "percent":
        return fee.fee_value / 100 * mrp
    return fee.fee_value


def compute_settlement(
    request: SettlementRequest,
    card: NormalizedRateCard | None,
    tolerance: float = SettlementConfig().mismatch_tolerance,
    now: datetime | None = None,
) -> SettlementPrediction:
    mrp = request.mrp
    if card is None:
        breakdown = SettlementBreakdown()
    else:
        rate = card.commission_rate_for(mrp)
        gst_rate = card.gst_percent or 0.0
        fees = {field: _fee_amount(card, code, mrp) for code, field in SETTLEMENT_FEE_CODES.items()}
        commission = rate / 100 * mrp
        pre_gst = commission + sum(fees.values())
        breakdown = SettlementBreakdown(
            commission=commission,
            gst=pre_gst * gst_rate / 100,
            commission_rate=rate,
            gst_rate=gst_rate,
            **fees,
        )
    expected = mrp - breakdown.total_deductions
    delta = expected - request.actual_settlement_amount
    return SettlementPrediction(
        request=request,
        breakdown=breakdown,
        expected_payout=expected,
        delta=delta,
        mismatch_flag=abs(delta) > tolerance,
        rate_card_id=card.id if card is not None else None,
        created_at=(now or datetime.now(UTC)).isoformat(),
    )


async def predict_settlement(
    payload: Mapping[str, Any] | SettlementRequest,
    repository: RateCardRepository,
    config: SettlementConfig | None = None,
) -> SettlementPrediction:
    """Resolve the card, compute the prediction and append it to the settlement log."""
    config = config or SettlementConfig()
    request = payload if isinstance(payload, SettlementRequest) else build_request(payload)
    cards = await repository.list_cards()
    card = resolve_rate_card(cards, request.marketplace, request.category, request.order_date, request.mrp)
    prediction = compute_settlement(request, card, tolerance=config.mismatch_tolerance)
    await repository.append_settlement(prediction)
    logger.info(
        "settlement order=%s card=%s expected=%.2f delta=%.2f status=%s",
        request.order_id,
        prediction.rate_card_id or "-",
        prediction.expected_payout,
        prediction.delta,
        prediction.reco_status,
    )
    return prediction

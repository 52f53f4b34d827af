from __future__ import annotations

import asyncio
from datetime import date

import pytest
from conftest import make_card, make_tiered_card

from ratecard_recon.db.repository import InMemoryRateCardRepository
from ratecard_recon.models.config_models import SettlementConfig
from ratecard_recon.models.rate_card import Fee
from ratecard_recon.models.settlement import SettlementRequest
from ratecard_recon.services.settlement import (
    DomainInputError,
    build_request,
    compute_settlement,
    predict_settlement,
    resolve_rate_card,
)


def _request(mrp: float = 1000.0, actual: float = 830.0, **overrides) -> SettlementRequest:
    base = dict(
        mrp=mrp,
        order_id="ORD-1",
        marketplace="amazon",
        category="apparel",
        order_date=date(2025, 9, 15),
        actual_settlement_amount=actual,
    )
    base.update(overrides)
    return SettlementRequest(**base)


def _reference_card():
    return make_card(id="c1", commission_percent=10.0, fees=(Fee("shipping", "amount", 30.0),), gst_percent=18.0)


def test_flat_card_mismatch():
    prediction = compute_settlement(_request(actual=830.0), _reference_card())
    b = prediction.breakdown
    assert b.commission == pytest.approx(100.0)
    assert b.shipping_fee == pytest.approx(30.0)
    assert b.gst == pytest.approx(23.4)
    assert prediction.expected_payout == pytest.approx(846.6)
    assert prediction.delta == pytest.approx(16.6)
    assert prediction.mismatch_flag is True
    assert prediction.reco_status == "mismatch"
    assert prediction.rate_card_id == "c1"


def test_flat_card_within_tolerance():
    prediction = compute_settlement(_request(actual=840.0), _reference_card())
    assert prediction.delta == pytest.approx(6.6)
    assert prediction.mismatch_flag is False
    assert prediction.reco_status == "matched"


def test_to_dict_rounds_money():
    data = compute_settlement(_request(actual=840.0), _reference_card()).to_dict()
    assert data["expected_payout"] == 846.6
    assert data["delta"] == 6.6
    assert data["calculation_breakdown"]["total_deductions"] == 153.4
    assert data["calculation_breakdown"]["gst_rate"] == 18.0
    assert data["date"] == "2025-09-15"
    assert data["rate_card_found"] is True


def test_tiered_rate_follows_slab():
    card = make_tiered_card(id="t1", gst_percent=0.0, fees=())
    low = compute_settlement(_request(mrp=499.0, category="electronics", marketplace="flipkart"), card)
    high = compute_settlement(_request(mrp=600.0, category="electronics", marketplace="flipkart"), card)
    assert low.breakdown.commission_rate == 5.0
    assert high.breakdown.commission_rate == 7.0
    assert high.breakdown.commission == pytest.approx(42.0)


def test_percent_fees_scale_with_mrp():
    card = make_card(commission_percent=0.0, gst_percent=0.0, fees=(Fee("shipping", "percent", 2.0), Fee("fixed", "amount", 5.0)))
    prediction = compute_settlement(_request(mrp=1000.0), card)
    assert prediction.breakdown.shipping_fee == pytest.approx(20.0)
    assert prediction.breakdown.fixed_fee == pytest.approx(5.0)


def test_no_card_means_no_deductions():
    prediction = compute_settlement(_request(mrp=500.0, actual=500.0), None)
    assert prediction.expected_payout == 500.0
    assert prediction.delta == 0.0
    assert prediction.rate_card_found is False


def test_tolerance_is_configurable():
    prediction = compute_settlement(_request(actual=840.0), _reference_card(), tolerance=5.0)
    assert prediction.mismatch_flag is True


def test_build_request_missing_fields():
    with pytest.raises(DomainInputError) as exc:
        build_request({"mrp": 100, "marketplace": "amazon", "category": "apparel", "actual_settlement_amount": 1})
    assert str(exc.value) == "Missing required fields: order_id, date"


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"mrp": 0}, "MRP must be positive"),
        ({"mrp": "-5"}, "MRP must be positive"),
        ({"actual_settlement_amount": -1}, "Actual settlement amount must be non-negative"),
        ({"date": "someday"}, "invalid date"),
        ({"mrp": "abc"}, "expected a number"),
    ],
)
def test_build_request_rejects(overrides, message):
    payload = {
        "mrp": "1,000",
        "order_id": "ORD-1",
        "marketplace": "Amazon",
        "category": "Apparel",
        "date": "15/09/2025",
        "actual_settlement_amount": "830",
    }
    payload.update(overrides)
    with pytest.raises(DomainInputError) as exc:
        build_request(payload)
    assert message in str(exc.value)


def test_build_request_coerces_values():
    request = build_request(
        {
            "mrp": "₹1,000",
            "order_id": " ORD-1 ",
            "marketplace": "Amazon",
            "category": "Apparel",
            "date": "15/09/2025",
            "actual_settlement_amount": 0,
        }
    )
    assert request.mrp == 1000.0
    assert request.order_id == "ORD-1"
    assert request.order_date == date(2025, 9, 15)
    assert request.actual_settlement_amount == 0.0


def test_resolve_prefers_latest_start_and_skips_archived():
    older = make_card(id="older", effective_from=date(2025, 1, 1))
    newer = make_card(id="newer", effective_from=date(2025, 9, 1))
    archived = make_card(id="archived", effective_from=date(2025, 9, 10), archived=True)
    future = make_card(id="future", effective_from=date(2026, 1, 1))
    cards = [older, newer, archived, future]
    assert resolve_rate_card(cards, "Amazon", " APPAREL ", date(2025, 9, 15), 1000.0).id == "newer"
    assert resolve_rate_card(cards, "amazon", "apparel", date(2025, 8, 15), 1000.0).id == "older"


def test_resolve_tie_keeps_first():
    a = make_card(id="a")
    b = make_card(id="b", commission_percent=20.0)
    assert resolve_rate_card([a, b], "amazon", "apparel", date(2025, 9, 1), 100.0).id == "a"


def test_resolve_respects_price_band():
    card = make_card(id="band", global_min_price=100.0, global_max_price=500.0)
    assert resolve_rate_card([card], "amazon", "apparel", date(2025, 9, 1), 1000.0) is None
    assert resolve_rate_card([card], "amazon", "apparel", date(2025, 9, 1), 500.0).id == "band"


def test_predict_settlement_logs_prediction():
    repository = InMemoryRateCardRepository([_reference_card()])
    payload = {
        "mrp": 1000,
        "order_id": "ORD-1",
        "marketplace": "amazon",
        "category": "apparel",
        "date": "2025-09-15",
        "actual_settlement_amount": 830,
    }
    prediction = asyncio.run(predict_settlement(payload, repository, SettlementConfig(mismatch_tolerance=10)))
    assert prediction.rate_card_id == "c1"
    assert prediction.mismatch_flag is True
    logged = asyncio.run(repository.list_settlements())
    assert logged == [prediction]


def test_marketplace_and_fee_codes_match_case_insensitively():
    card = make_card(
        id="mixed",
        platform_id="Amazon",
        category_id="Apparel",
        commission_percent=10.0,
        fees=(Fee("Shipping", "amount", 30.0),),
    )
    resolved = resolve_rate_card([card], "amazon", "APPAREL", date(2025, 9, 15), 1000.0)
    assert resolved is card
    prediction = compute_settlement(_request(actual=830.0), resolved)
    assert prediction.breakdown.shipping_fee == pytest.approx(30.0)
    assert prediction.expected_payout == pytest.approx(846.6)

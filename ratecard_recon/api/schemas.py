from __future__ import annotations

from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

"""Request / response bodies for the HTTP API.

Numeric and date fields of the rate-card payload accept strings as well as
numbers; coercion (currency symbols, DD/MM/YYYY, ...) is left to the
normalizer so that the API and CSV uploads share one set of rules and one
set of error messages.
"""

Number = Optional[float | str]


class SlabPayload(BaseModel):
    min_price: Number = None
    max_price: Number = None
    commission_percent: Number = None


class FeePayload(BaseModel):
    fee_code: str
    fee_type: str = "percent"
    fee_value: Number = None


class RateCardPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    platform_id: str = ""
    category_id: str = ""
    commission_type: str = ""
    commission_percent: Number = None
    slabs: list[SlabPayload] = Field(default_factory=list)
    fees: list[FeePayload] = Field(default_factory=list)
    effective_from: Optional[date | str] = None
    effective_to: Optional[date | str] = None
    gst_percent: Number = None
    tcs_percent: Number = None
    settlement_basis: Optional[str] = None
    t_plus_days: Number = None
    weekly_weekday: Number = None
    bi_weekly_weekday: Number = None
    bi_weekly_which: Optional[str] = None
    monthly_day: Optional[str] = None
    grace_days: Number = None
    global_min_price: Number = None
    global_max_price: Number = None
    notes: Optional[str] = None


class ImportRequest(BaseModel):
    analysis_id: str = Field(..., min_length=1)
    row_ids: list[str] = Field(default_factory=list)
    include_similar: bool = False


class ArchiveRequest(BaseModel):
    archived: bool = True


class PredictRequest(BaseModel):
    """All optional so that a missing field is reported as a 400 domain error."""
    mrp: Number = None
    order_id: Optional[str] = None
    marketplace: Optional[str] = None
    category: Optional[str] = None
    date: Optional[str] = None
    actual_settlement_amount: Number = None


class ParseSummaryOut(BaseModel):
    total: int
    valid: int
    similar: int
    duplicate: int
    error: int


class ParseResponse(BaseModel):
    analysis_id: str
    file_name: str
    uploaded_at: str
    summary: ParseSummaryOut
    rows: list[dict[str, Any]]


class ImportSummaryOut(BaseModel):
    inserted: int
    skipped: int


class ImportRowOut(BaseModel):
    row_id: str
    row: int
    status: str
    id: Optional[str] = None
    reason: Optional[str] = None
    message: Optional[str] = None


class ImportResponse(BaseModel):
    analysis_id: str
    summary: ImportSummaryOut
    results: list[ImportRowOut]


class BreakdownOut(BaseModel):
    commission: float
    shipping_fee: float
    rto_fee: float
    packaging_fee: float
    fixed_fee: float
    gst: float
    total_deductions: float
    commission_rate: float
    gst_rate: float


class PredictResponse(BaseModel):
    order_id: str
    marketplace: str
    category: str
    date: str
    mrp: float
    actual_settlement_amount: float
    expected_payout: float
    delta: float
    mismatch_flag: bool
    reco_status: str
    calculation_breakdown: BreakdownOut
    rate_card_found: bool
    rate_card_id: Optional[str] = None
    created_at: str

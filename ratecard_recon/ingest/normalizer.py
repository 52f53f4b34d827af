from __future__ import annotations

import json
import math
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Any

from ratecard_recon.ingest.headers import normalize_headers
from ratecard_recon.models.config_models import DefaultsConfig
from ratecard_recon.models.rate_card import FEE_TYPES, Fee, NormalizedRateCard, Slab

"""Row normalizer: raw CSV records / API payloads -> NormalizedRateCard.

Coercion is table driven. ``FIELD_COERCIONS`` maps every scalar card field
to a ``FieldCoercion(parser, required)``; a parser returns the coerced value
(None for blank input) or raises ``CoercionError``. A failed coercion is
recorded as an issue and the field is left empty, the row is never aborted.
``required`` is consumed by the validator.

``slabs`` / ``fees`` arrive as JSON text (``slabs_json`` / ``fees_json``
columns) or as already-decoded lists (API payloads) and are parsed
independently of each other.

Ids and fee codes are trimmed but keep their case; keyword fields
(``commission_type``, ``settlement_basis``, ``fee_type``) are lower-cased.
"""

__all__ = [
    "CoercionError",
    "FieldCoercion",
    "FIELD_COERCIONS",
    "NormalizationResult",
    "parse_number",
    "parse_date",
    "normalize_row",
    "normalize_payload",
    "with_write_defaults",
]


class CoercionError(ValueError):
    pass


_NUMBER_NOISE = re.compile(r"[%₹$€£,\s]")
_NUMBER_SHAPE = re.compile(r"^[-+]?(?:\d+(?:\.\d*)?|\.\d+)$")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_SLASH_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_EXCEL_EPOCH = date(1899, 12, 30)
_EXCEL_MAX_SERIAL = 2958465  # 9999-12-31


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def parse_number(value: Any) -> float | None:
    """Parse-or-null number.

    Currency / percent symbols, thousands separators and whitespace are
    stripped first (``"₹1,200"`` -> 1200.0, ``"12 %"`` -> 12.0).
    """
    if _is_blank(value):
        return None
    if isinstance(value, bool):
        raise CoercionError(f"expected a number, got {value!r}")
    if isinstance(value, (int, float)):
        if math.isinf(value):
            raise CoercionError(f"expected a finite number, got {value!r}")
        return float(value)
    cleaned = _NUMBER_NOISE.sub("", str(value))
    if not _NUMBER_SHAPE.match(cleaned):
        raise CoercionError(f"expected a number, got {str(value).strip()!r}")
    return float(cleaned)


def parse_date(value: Any) -> date | None:
    """Lenient date parser.

    Accepts ``YYYY-MM-DD``, ``DD/MM/YYYY`` (then ``MM/DD/YYYY`` when the
    first reading is impossible), Excel serial day numbers and ISO
    datetimes (date part kept).
    """
    if _is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value).strip()

    if _ISO_DATE.match(raw):
        try:
            return date.fromisoformat(raw)
        except ValueError as e:
            raise CoercionError(f"invalid date {raw!r}") from e

    m = _SLASH_DATE.match(raw)
    if m:
        a, b, year = (int(g) for g in m.groups())
        for day, month in ((a, b), (b, a)):
            try:
                return date(year, month, day)
            except ValueError:
                continue
        raise CoercionError(f"invalid date {raw!r}")

    if _NUMBER_SHAPE.match(raw):
        serial = float(raw)
        if 0 < serial <= _EXCEL_MAX_SERIAL:
            return _EXCEL_EPOCH + timedelta(days=int(serial))
        raise CoercionError(f"invalid date {raw!r}")

    try:
        return datetime.fromisoformat(raw).date()
    except ValueError as e:
        raise CoercionError(f"invalid date {raw!r} (use YYYY-MM-DD or DD/MM/YYYY)") from e


def _text(value: Any) -> str | None:
    if _is_blank(value):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _lower_text(value: Any) -> str | None:
    text = _text(value)
    return text.lower() if text is not None else None


def _ident(value: Any) -> str:
    return _text(value) or ""


def _keyword(value: Any) -> str:
    return _lower_text(value) or ""


@dataclass(frozen=True)
class FieldCoercion:
    parser: Callable[[Any], Any]
    required: bool = False


FIELD_COERCIONS: dict[str, FieldCoercion] = {
    "platform_id": FieldCoercion(_ident, required=True),
    "category_id": FieldCoercion(_ident, required=True),
    "commission_type": FieldCoercion(_keyword, required=True),
    "commission_percent": FieldCoercion(parse_number),
    "gst_percent": FieldCoercion(parse_number),
    "tcs_percent": FieldCoercion(parse_number),
    "settlement_basis": FieldCoercion(_lower_text, required=True),
    "t_plus_days": FieldCoercion(parse_number),
    "weekly_weekday": FieldCoercion(parse_number),
    "bi_weekly_weekday": FieldCoercion(parse_number),
    "bi_weekly_which": FieldCoercion(_text),
    "monthly_day": FieldCoercion(_text),
    "grace_days": FieldCoercion(parse_number),
    "effective_from": FieldCoercion(parse_date, required=True),
    "effective_to": FieldCoercion(parse_date),
    "global_min_price": FieldCoercion(parse_number),
    "global_max_price": FieldCoercion(parse_number),
    "notes": FieldCoercion(_text),
}


@dataclass(frozen=True)
class NormalizationResult:
    card: NormalizedRateCard
    issues: tuple[str, ...] = ()
    invalid_fields: tuple[str, ...] = ()  # columns whose value could not be coerced

    @property
    def ok(self) -> bool:
        return not self.issues


def _json_array(raw: Any, label: str, issues: list[str]) -> list[Any]:
    if _is_blank(raw):
        return []
    if isinstance(raw, (list, tuple)):
        return list(raw)
    if isinstance(raw, Mapping):
        return [raw]
    try:
        parsed = json.loads(str(raw))
    except json.JSONDecodeError:
        issues.append(f"{label} must be a JSON array")
        return []
    if not isinstance(parsed, list):
        issues.append(f"{label} must be a JSON array")
        return []
    return parsed


def _pick(item: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        if k in item:
            return item[k]
    return None


def _coerce_slabs(items: list[Any], issues: list[str]) -> tuple[Slab, ...]:
    slabs: list[Slab] = []
    for idx, item in enumerate(items, start=1):
        if not isinstance(item, Mapping):
            issues.append(f"slabs[{idx}] must be an object")
            continue
        try:
            min_price = parse_number(_pick(item, "min_price", "minPrice", "min price"))
            max_price = parse_number(_pick(item, "max_price", "maxPrice", "max price"))
            pct = parse_number(_pick(item, "commission_percent", "commissionPercent", "commission %"))
        except CoercionError as e:
            issues.append(f"slabs[{idx}]: {e}")
            continue
        if pct is None:
            issues.append(f"slabs[{idx}]: commission_percent is required")
            continue
        slabs.append(Slab(min_price=min_price or 0.0, max_price=max_price, commission_percent=pct))
    slabs.sort(key=lambda s: (s.min_price, math.inf if s.max_price is None else s.max_price))
    return tuple(slabs)


def _coerce_fees(items: list[Any], issues: list[str]) -> tuple[Fee, ...]:
    fees: list[Fee] = []
    for idx, item in enumerate(items, start=1):
        if not isinstance(item, Mapping):
            issues.append(f"fees[{idx}] must be an object")
            continue
        code = _text(item.get("fee_code"))
        if not code:
            issues.append(f"fees[{idx}]: fee_code is required")
            continue
        fee_type = _lower_text(item.get("fee_type")) or "percent"
        if fee_type not in FEE_TYPES:
            issues.append(f"fees[{idx}]: fee_type must be 'percent' or 'amount'")
            continue
        try:
            value = parse_number(item.get("fee_value"))
        except CoercionError as e:
            issues.append(f"fees[{idx}]: {e}")
            continue
        fees.append(Fee(fee_code=code, fee_type=fee_type, fee_value=value or 0.0))
    fees.sort(key=lambda f: (f.fee_code, f.fee_type))
    return tuple(fees)


def _normalize(source: Mapping[str, Any], card_id: str | None, archived: bool) -> NormalizationResult:
    issues: list[str] = []
    invalid: list[str] = []
    values: dict[str, Any] = {}
    for name, coercion in FIELD_COERCIONS.items():
        try:
            values[name] = coercion.parser(source.get(name))
        except CoercionError as e:
            issues.append(f"{name}: {e}")
            invalid.append(name)
            values[name] = "" if coercion.parser in (_ident, _keyword) else None

    slab_items = _json_array(_pick(source, "slabs", "slabs_json"), "slabs", issues)
    fee_items = _json_array(_pick(source, "fees", "fees_json"), "fees", issues)
    slabs = _coerce_slabs(slab_items, issues)
    fees = _coerce_fees(fee_items, issues)

    commission_type = values["commission_type"]
    if commission_type == "flat":
        slabs = ()
    elif commission_type == "tiered":
        values["commission_percent"] = None

    card = NormalizedRateCard(
        id=card_id,
        slabs=slabs,
        fees=fees,
        archived=archived,
        **values,
    )
    return NormalizationResult(card=card, issues=tuple(issues), invalid_fields=tuple(invalid))


def normalize_row(record: Mapping[str, Any]) -> NormalizationResult:
    """Normalize one tokenized CSV record (friendly headers accepted)."""
    return _normalize(normalize_headers(dict(record)), card_id=None, archived=False)


def normalize_payload(payload: Mapping[str, Any] | NormalizedRateCard) -> NormalizationResult:
    """Normalize a structured payload. Idempotent: ``normalize_payload(card)`` returns an equal card."""
    if isinstance(payload, NormalizedRateCard):
        payload = payload.to_payload()
    card_id = _text(payload.get("id"))
    return _normalize(payload, card_id=card_id, archived=bool(payload.get("archived", False)))


def with_write_defaults(card: NormalizedRateCard, defaults: DefaultsConfig) -> NormalizedRateCard:
    """Fill GST / TCS / grace days when a card leaves them blank."""
    return replace(
        card,
        gst_percent=defaults.gst_percent if card.gst_percent is None else card.gst_percent,
        tcs_percent=defaults.tcs_percent if card.tcs_percent is None else card.tcs_percent,
        grace_days=defaults.grace_days if card.grace_days is None else card.grace_days,
    )

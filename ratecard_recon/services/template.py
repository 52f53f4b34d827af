from __future__ import annotations

import io
import json

import pandas as pd

from ..ingest.headers import TEMPLATE_COLUMNS

"""Downloadable CSV template: the canonical header plus two example rows."""

__all__ = ["TEMPLATE_FILE_NAME", "build_template_csv"]

TEMPLATE_FILE_NAME = "rate-card-template.csv"

_EXAMPLE_ROWS = [
    {
        "platform_id": "amazon",
        "category_id": "apparel",
        "commission_type": "flat",
        "commission_percent": "12",
        "slabs_json": json.dumps([]),
        "fees_json": json.dumps(
            [
                {"fee_code": "shipping", "fee_type": "percent", "fee_value": 3},
                {"fee_code": "rto", "fee_type": "percent", "fee_value": 1},
            ]
        ),
        "gst_percent": "18",
        "tcs_percent": "1",
        "settlement_basis": "t_plus",
        "t_plus_days": "7",
        "grace_days": "2",
        "effective_from": "2025-08-01",
        "global_min_price": "0",
        "notes": "Example flat commission",
    },
    {
        "platform_id": "flipkart",
        "category_id": "electronics",
        "commission_type": "tiered",
        "slabs_json": json.dumps(
            [
                {"min_price": 0, "max_price": 500, "commission_percent": 5},
                {"min_price": 500, "max_price": None, "commission_percent": 7},
            ]
        ),
        "fees_json": json.dumps(
            [
                {"fee_code": "shipping", "fee_type": "amount", "fee_value": 30},
                {"fee_code": "tech", "fee_type": "percent", "fee_value": 1},
            ]
        ),
        "gst_percent": "18",
        "tcs_percent": "1",
        "settlement_basis": "weekly",
        "weekly_weekday": "5",
        "grace_days": "1",
        "effective_from": "2025-09-01",
        "effective_to": "2025-12-31",
        "notes": "Tiered example",
    },
]


def build_template_csv() -> str:
    """CSV text (``\\n`` line endings, JSON cells quoted) that parses back cleanly."""
    df = pd.DataFrame(_EXAMPLE_ROWS, columns=list(TEMPLATE_COLUMNS)).fillna("")
    buf = io.StringIO()
    df.to_csv(buf, index=False, lineterminator="\n")
    return buf.getvalue()

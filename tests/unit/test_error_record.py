from __future__ import annotations

import json

from ratecard_recon.models.error_record import ErrorRecord


def test_error_record_row_minus_one_support():
    """File-level failures carry row=-1 and an empty row id."""
    rec = ErrorRecord.create(
        file="rates.csv",
        row=-1,
        error_type="ROW_FAILURE",
        message="Uploaded file is empty",
    )
    assert rec.row == -1
    assert rec.row_id == ""

    data = json.loads(rec.to_json_line())
    assert data["row"] == -1
    assert data["file"] == "rates.csv"
    assert data["error_type"] == "ROW_FAILURE"
    assert "timestamp" in data and data["timestamp"].endswith("Z")
    assert set(data.keys()) == {"timestamp", "file", "row", "row_id", "error_type", "message"}


def test_error_record_row_scoped():
    rec = ErrorRecord.create("rates.csv", 42, "DUPLICATE", "Exact duplicate", row_id="abc:42")
    data = json.loads(rec.to_json_line())
    assert data["row"] == 42
    assert data["row_id"] == "abc:42"


def test_error_record_keeps_non_ascii():
    rec = ErrorRecord.create("दर.csv", 2, "COERCION_ERROR", "expected a number, got '₹ abc'")
    line = rec.to_json_line()
    assert "₹" in line
    assert json.loads(line)["file"] == "दर.csv"

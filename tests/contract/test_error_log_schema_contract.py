from __future__ import annotations

import asyncio
import json
import pathlib

import jsonschema
import pytest
from conftest import make_csv, row

from ratecard_recon.logging.error_log import ErrorLogBuffer
from ratecard_recon.models.error_record import ErrorRecord
from ratecard_recon.services.workflow import parse_upload

"""Row-issue log JSON schema contract (contracts/error_log_schema.json)."""

SCHEMA_PATH = pathlib.Path(__file__).resolve().parents[2] / "contracts" / "error_log_schema.json"


@pytest.fixture(scope="module")
def schema() -> dict:
    return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))


def test_created_record_matches_schema(schema):
    record = ErrorRecord.create("rates.csv", 3, "VALIDATION_ERROR", "commission_percent is required", row_id="a:3")
    jsonschema.validate(json.loads(record.to_json_line()), schema)


def test_schema_accepts_row_minus_one(schema):
    record = ErrorRecord.create("rates.csv", -1, "ROW_FAILURE", "empty file")
    jsonschema.validate(json.loads(record.to_json_line()), schema)


def test_schema_rejects_row_below_minus_one(schema):
    data = json.loads(ErrorRecord.create("rates.csv", -2, "ROW_FAILURE", "x").to_json_line())
    with pytest.raises(jsonschema.exceptions.ValidationError):
        jsonschema.validate(data, schema)


def test_schema_rejects_extra_key(schema):
    data = json.loads(ErrorRecord.create("rates.csv", 2, "DUPLICATE", "x").to_json_line())
    data["sheet"] = "not allowed"
    with pytest.raises(jsonschema.exceptions.ValidationError):
        jsonschema.validate(data, schema)


def test_parse_phase_records_match_schema(schema, temp_workdir, repository, store):
    data = make_csv([row(), row(), row(commission_percent=""), row(fees_json="[broken")])
    buffer = ErrorLogBuffer(temp_workdir / "logs")
    asyncio.run(parse_upload(data, "rates.csv", repository=repository, store=store, error_log=buffer))
    path = buffer.flush()
    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 3
    records = [json.loads(line) for line in lines]
    for record in records:
        jsonschema.validate(record, schema)
    assert [r["error_type"] for r in records] == ["DUPLICATE", "VALIDATION_ERROR", "COERCION_ERROR"]
    assert [r["row"] for r in records] == [3, 4, 5]

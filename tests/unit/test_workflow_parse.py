from __future__ import annotations

import asyncio
import json
from datetime import date

import pytest
from conftest import make_card, make_csv, row

from ratecard_recon.db.repository import InMemoryRateCardRepository
from ratecard_recon.ingest.tokenizer import ParseError
from ratecard_recon.logging.error_log import ErrorLogBuffer
from ratecard_recon.models.config_models import AppConfig
from ratecard_recon.models.upload import RowStatus
from ratecard_recon.services.workflow import parse_upload, revalidate_row


class RecordingProgress:
    def __init__(self) -> None:
        self.statuses: list[str] = []
        self.total: int | None = None

    def set_total(self, total_rows: int) -> None:
        self.total = total_rows

    def advance(self, status: str) -> None:
        self.statuses.append(status)


def _existing_beauty():
    return make_card(id="beauty-1", category_id="beauty", commission_percent=10.0)


def _mixed_upload() -> bytes:
    return make_csv(
        [
            row(),  # line 2: valid
            row(category_id="beauty", commission_percent="10"),  # line 3: duplicate of catalog card
            row(category_id="beauty", commission_percent="15", effective_from="2025-09-01"),  # line 4: similar
            row(commission_percent="abc"),  # line 5: error
            row(),  # line 6: duplicate of line 2
        ]
    )


def _parse(data: bytes, repository, store, **kwargs):
    return asyncio.run(parse_upload(data, "rates.csv", repository=repository, store=store, **kwargs))


def test_parse_classifies_every_row(store):
    repository = InMemoryRateCardRepository([_existing_beauty()])
    result = _parse(_mixed_upload(), repository, store)

    assert result.summary.to_dict() == {"total": 5, "valid": 1, "similar": 1, "duplicate": 2, "error": 1}
    statuses = [r.status for r in result.rows]
    assert statuses == [
        RowStatus.VALID,
        RowStatus.DUPLICATE,
        RowStatus.SIMILAR,
        RowStatus.ERROR,
        RowStatus.DUPLICATE,
    ]
    assert [r.row for r in result.rows] == [2, 3, 4, 5, 6]
    assert result.rows[0].row_id == f"{result.analysis_id}:2"
    assert result.rows[0].message == "Ready to import."


def test_payload_only_for_importable_rows(store):
    repository = InMemoryRateCardRepository([_existing_beauty()])
    rows = _parse(_mixed_upload(), repository, store).rows
    assert rows[0].payload["commission_percent"] == 12.0
    assert rows[2].payload is not None
    assert rows[1].payload is None
    assert rows[3].payload is None
    assert rows[4].payload is None


def test_duplicate_and_similar_details(store):
    repository = InMemoryRateCardRepository([_existing_beauty()])
    result = _parse(_mixed_upload(), repository, store)
    duplicate, similar, error, sibling = result.rows[1], result.rows[2], result.rows[3], result.rows[4]

    assert duplicate.message == "Exact duplicate of Amazon • Beauty (01 Aug 2025 → open). Remove or edit this row."
    assert duplicate.existing["id"] == "beauty-1"
    assert duplicate.tooltip == "Same date range, commission and fees."

    assert similar.message == "Overlaps existing Amazon • Beauty (01 Aug 2025 → open). Adjust dates or confirm import."
    assert similar.tooltip.startswith("Date overlap with different commission.\n")
    assert "Your row: Flat 15% commission; Fees: shipping 3% (01 Sep 2025 → open)." in similar.tooltip
    assert similar.suggestions[0]["type"] == "skip"

    assert error.message.startswith("Commission_percent: expected a number")
    assert error.tooltip == "Check column(s): commission_percent"

    # later rows are checked against earlier importable rows of the same upload
    assert sibling.existing["id"] == f"{result.analysis_id}:2"


def test_similar_to_closed_card_suggests_new_start(store):
    existing = make_card(id="aug", effective_to=date(2025, 8, 31))
    repository = InMemoryRateCardRepository([existing])
    data = make_csv([row(commission_percent="14", effective_from="2025-08-15")])
    parsed = _parse(data, repository, store).rows[0]
    assert parsed.status is RowStatus.SIMILAR
    assert parsed.suggestions == (
        {"type": "shift_from", "new_from": "2025-09-01", "reason": "Shift start date to 01 Sep 2025 to avoid overlap."},
    )


def test_validation_error_row(store, repository):
    slabs = json.dumps(
        [
            {"min_price": 0, "max_price": 500, "commission_percent": 5},
            {"min_price": 400, "max_price": None, "commission_percent": 7},
        ]
    )
    data = make_csv([row(commission_type="tiered", commission_percent="", slabs_json=slabs)])
    parsed = _parse(data, repository, store).rows[0]
    assert parsed.status is RowStatus.ERROR
    assert parsed.message == "Slabs overlap between rows 1 and 2"
    assert parsed.tooltip is None


def test_archived_match_is_reported_but_not_blocking(store):
    repository = InMemoryRateCardRepository([make_card(id="old", archived=True)])
    parsed = _parse(make_csv([row()]), repository, store).rows[0]
    assert parsed.status is RowStatus.VALID
    assert parsed.archived_match == {
        "id": "old",
        "label": "Amazon • Apparel",
        "date_range": "01 Aug 2025 → open",
        "type": "exact",
    }
    assert parsed.tooltip.endswith("Archived cards don't affect reconciliation.")


def test_friendly_headers_upload(store, repository):
    data = (
        "Marketplace,Category,Type,Commission %,Valid From,Settlement Basis\n"
        "Amazon,Apparel,Flat,12%,01/08/2025,T_Plus\n"
    ).encode("utf-8")
    parsed = _parse(data, repository, store).rows[0]
    assert parsed.status is RowStatus.VALID
    assert parsed.effective_from == "2025-08-01"
    assert parsed.platform_id == "Amazon"


def test_ids_differing_only_in_case_do_not_conflict(store, repository):
    data = make_csv([row(platform_id="Amazon", category_id="Apparel"), row()])
    rows = _parse(data, repository, store).rows
    assert [r.status for r in rows] == [RowStatus.VALID, RowStatus.VALID]
    assert [r.payload["platform_id"] for r in rows] == ["Amazon", "amazon"]
    assert rows[0].payload["category_id"] == "Apparel"


def test_session_is_stored(store, repository):
    result = _parse(make_csv([row()]), repository, store)
    session = asyncio.run(store.get(result.analysis_id))
    assert session.file_name == "rates.csv"
    assert session.rows == result.rows


def test_error_log_receives_unimportable_rows(store, tmp_path):
    repository = InMemoryRateCardRepository([_existing_beauty()])
    buffer = ErrorLogBuffer(tmp_path)
    _parse(_mixed_upload(), repository, store, error_log=buffer)
    records = buffer.records
    assert [(r.row, r.error_type) for r in records] == [(3, "DUPLICATE"), (5, "COERCION_ERROR"), (6, "DUPLICATE")]
    assert all(r.file == "rates.csv" for r in records)
    assert records[0].row_id.endswith(":3")


def test_configured_error_log_dir_is_flushed(store, repository, tmp_path):
    config = AppConfig(error_log_dir=str(tmp_path / "logs"))
    _parse(make_csv([row(commission_percent="abc")]), repository, store, config=config)
    files = list((tmp_path / "logs").glob("errors-*.log"))
    assert len(files) == 1
    assert json.loads(files[0].read_text(encoding="utf-8").strip())["error_type"] == "COERCION_ERROR"


def test_structural_failure_raises_and_logs(store, repository, tmp_path):
    buffer = ErrorLogBuffer(tmp_path)
    with pytest.raises(ParseError):
        _parse(b"", repository, store, error_log=buffer)
    assert [(r.row, r.error_type) for r in buffer.records] == [(-1, "ROW_FAILURE")]
    assert len(store) == 0


def test_progress_advances_per_row(store):
    repository = InMemoryRateCardRepository([_existing_beauty()])
    progress = RecordingProgress()
    _parse(_mixed_upload(), repository, store, progress=progress)
    assert progress.total == 5
    assert progress.statuses == ["valid", "duplicate", "similar", "error", "duplicate"]


def test_revalidate_row_similar(repository):
    asyncio.run(repository.insert_card(make_card()))
    payload = make_card(commission_percent=15.0).to_payload()
    out = asyncio.run(revalidate_row(payload, repository=repository))
    assert out["status"] == "similar"
    assert out["overlap"]["type"] == "similar"
    assert out["errors"] == []
    assert out["suggestions"][0]["type"] == "skip"
    assert out["normalized"]["commission_percent"] == 15.0


def test_revalidate_row_ignores_its_own_card(repository):
    stored = asyncio.run(repository.insert_card(make_card()))
    payload = stored.to_payload()
    payload["commission_percent"] = "13"
    out = asyncio.run(revalidate_row(payload, repository=repository))
    assert out["status"] == "valid"
    assert "overlap" not in out


def test_revalidate_row_reports_errors(repository):
    payload = make_card(commission_percent=None).to_payload()
    out = asyncio.run(revalidate_row(payload, repository=repository))
    assert out["status"] == "error"
    assert out["errors"] == ["commission_percent is required for flat commission."]
    assert out["message"] == "Commission_percent is required for flat commission"

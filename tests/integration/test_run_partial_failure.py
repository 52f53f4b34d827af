from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest
from conftest import make_csv, row

import ratecard_recon.cli.__main__ as cli
from ratecard_recon.db.repository import InMemoryRateCardRepository, RepositoryError

"""CLI runs where some rows fail: exit code 2, error log written, batch continues."""


class FlakyRepository(InMemoryRateCardRepository):
    """Fails the write of every card in the given category."""

    def __init__(self, failing_category: str):
        super().__init__()
        self.failing_category = failing_category

    async def insert_card(self, card):
        if card.category_id == self.failing_category:
            raise RepositoryError("deadlock detected")
        return await super().insert_card(card)


@pytest.fixture()
def flaky(write_config, clean_logging, monkeypatch) -> FlakyRepository:
    repo = FlakyRepository("shoes")

    async def open_repo(cfg, logger):
        return repo, "live"

    monkeypatch.setattr(cli, "_open_repository", open_repo)
    return repo


def _log_records(workdir: Path) -> list[dict]:
    logs = sorted((workdir / "logs").glob("errors-*.log"))
    assert len(logs) == 1
    return [json.loads(line) for line in logs[0].read_text(encoding="utf-8").splitlines()]


def test_row_errors_and_write_failures(flaky, temp_workdir, capsys):
    path = temp_workdir / "data" / "rates.csv"
    path.write_bytes(
        make_csv(
            [
                row(),
                row(category_id="shoes"),
                row(category_id="bags", effective_from="31/31/2025"),
                row(category_id="watches", fees_json='[{"fee_code":"rto","fee_type":"amount","fee_value":1},'
                    '{"fee_code":"rto","fee_type":"percent","fee_value":2}]'),
            ]
        )
    )
    code = cli.main(["import", str(path)])
    out = capsys.readouterr().out
    assert code == 2
    assert "row 3: skipped (write-failed) deadlock detected" in out
    assert "row 4: error" in out
    assert "row 5: error" in out
    assert "SUMMARY phase=import" in out and "selected=2 inserted=1 skipped=1" in out

    records = _log_records(temp_workdir)
    assert [(r["row"], r["error_type"]) for r in records] == [
        (4, "COERCION_ERROR"),
        (5, "VALIDATION_ERROR"),
        (3, "WRITE_FAILED"),
    ]
    assert all(r["file"] == "rates.csv" for r in records)

    cards = asyncio.run(flaky.list_cards())
    assert [c.category_id for c in cards] == ["apparel"]


def test_include_similar_imports_overlaps(flaky, temp_workdir, capsys):
    path = temp_workdir / "data" / "rates.csv"
    path.write_bytes(make_csv([row(), row(effective_from="2025-09-01", commission_percent="14")]))
    code = cli.main(["import", str(path), "--include-similar"])
    out = capsys.readouterr().out
    assert code == 0
    assert out.count("imported id=") == 2
    assert len(asyncio.run(flaky.list_cards())) == 2

# Shared pytest fixtures
from __future__ import annotations

import csv
import io
import json
import tempfile
from datetime import date
from pathlib import Path

import pytest

from ratecard_recon.db.repository import InMemoryRateCardRepository
from ratecard_recon.ingest.headers import TEMPLATE_COLUMNS
from ratecard_recon.logging.init import reset_logging
from ratecard_recon.models.rate_card import Fee, NormalizedRateCard, Slab
from ratecard_recon.services.sessions import UploadSessionStore


class FakeClock:
    """Monotonic clock stand-in that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


def make_card(**overrides) -> NormalizedRateCard:
    base = dict(
        id=None,
        platform_id="amazon",
        category_id="apparel",
        commission_type="flat",
        commission_percent=12.0,
        fees=(Fee("shipping", "percent", 3.0),),
        effective_from=date(2025, 8, 1),
        effective_to=None,
        gst_percent=18.0,
        settlement_basis="t_plus",
    )
    base.update(overrides)
    return NormalizedRateCard(**base)


def make_tiered_card(**overrides) -> NormalizedRateCard:
    base = dict(
        platform_id="flipkart",
        category_id="electronics",
        commission_type="tiered",
        commission_percent=None,
        slabs=(Slab(0.0, 500.0, 5.0), Slab(500.0, None, 7.0)),
        fees=(Fee("shipping", "amount", 30.0),),
        effective_from=date(2025, 9, 1),
        effective_to=date(2025, 12, 31),
        settlement_basis="weekly",
    )
    base.update(overrides)
    return make_card(**base)


def row(**overrides) -> dict[str, str]:
    """One CSV record in template columns (flat amazon/apparel 12%)."""
    base = {
        "platform_id": "amazon",
        "category_id": "apparel",
        "commission_type": "flat",
        "commission_percent": "12",
        "slabs_json": "",
        "fees_json": json.dumps([{"fee_code": "shipping", "fee_type": "percent", "fee_value": 3}]),
        "gst_percent": "18",
        "settlement_basis": "t_plus",
        "t_plus_days": "7",
        "effective_from": "2025-08-01",
        "effective_to": "",
    }
    base.update(overrides)
    return base


def make_csv(rows: list[dict[str, str]], columns: tuple[str, ...] | list[str] = TEMPLATE_COLUMNS) -> bytes:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=list(columns), lineterminator="\n", extrasaction="ignore")
    writer.writeheader()
    for r in rows:
        writer.writerow(r)
    return buf.getvalue().encode("utf-8")


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """sessions:
  ttl_seconds: 600
  capacity: 5
  sweep_interval_seconds: 30
settlement:
  mismatch_tolerance: 5
defaults:
  gst_percent: 18
  tcs_percent: 1
  grace_days: 0
labels:
  platforms:
    meesho: Meesho
error_log_dir: ./logs
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "ratecards.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(clock: FakeClock) -> UploadSessionStore:
    return UploadSessionStore(ttl_seconds=1800, capacity=25, clock=clock)


@pytest.fixture()
def repository() -> InMemoryRateCardRepository:
    return InMemoryRateCardRepository()


@pytest.fixture()
def clean_logging(monkeypatch):
    monkeypatch.delenv("RATECARD_CONFIG", raising=False)
    reset_logging()
    yield
    reset_logging()

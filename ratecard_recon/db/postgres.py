from __future__ import annotations

import asyncio
import logging
import os
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import asdict
from datetime import date, datetime
from decimal import Decimal
from typing import Any, TypeVar

import psycopg2
from psycopg2.extras import Json

from ratecard_recon.db.batch_insert import BatchInsertError, BatchMetrics, batch_insert
from ratecard_recon.db.repository import RepositoryError
from ratecard_recon.models.config_models import DatabaseConfig
from ratecard_recon.models.rate_card import Fee, NormalizedRateCard, Slab
from ratecard_recon.models.settlement import (
    SettlementBreakdown,
    SettlementPrediction,
    SettlementRequest,
)

"""PostgreSQL implementation of ``RateCardRepository`` (psycopg2).

psycopg2 is synchronous, so every repository call runs on a worker thread
via ``asyncio.to_thread`` with its own short-lived connection. Writes run
inside an explicit ``BEGIN`` / ``COMMIT`` on an autocommit connection; any
failure issues ``ROLLBACK`` and surfaces as ``RepositoryError``. A card and
its slabs and fees are therefore written atomically, while separate cards
are independent.

DSN resolution (``resolve_dsn``), highest priority first:
    1. ``DATABASE_URL`` / ``PGDSN`` environment variables
    2. ``database.dsn`` from the config file
    3. ``PGHOST`` / ``PGPORT`` / ``PGUSER`` / ``PGPASSWORD`` / ``PGDATABASE``,
       each falling back to the matching ``database`` config key
"""

__all__ = [
    "SCHEMA_SQL",
    "resolve_dsn",
    "PostgresRateCardRepository",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")

CARDS_TABLE = "rate_cards_v2"
SLABS_TABLE = "rate_card_slabs"
FEES_TABLE = "rate_card_fees"
SETTLEMENTS_TABLE = "settlements"

CARD_COLUMNS = (
    "id",
    "platform_id",
    "category_id",
    "commission_type",
    "commission_percent",
    "effective_from",
    "effective_to",
    "gst_percent",
    "tcs_percent",
    "settlement_basis",
    "t_plus_days",
    "weekly_weekday",
    "bi_weekly_weekday",
    "bi_weekly_which",
    "monthly_day",
    "grace_days",
    "global_min_price",
    "global_max_price",
    "notes",
    "archived",
)
SLAB_COLUMNS = ("rate_card_id", "position", "min_price", "max_price", "commission_percent")
FEE_COLUMNS = ("rate_card_id", "fee_code", "fee_type", "fee_value")
SETTLEMENT_COLUMNS = (
    "order_id",
    "marketplace",
    "category",
    "order_date",
    "mrp",
    "actual_settlement_amount",
    "expected_payout",
    "delta",
    "mismatch_flag",
    "reco_status",
    "rate_card_id",
    "breakdown",
    "created_at",
)

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS {CARDS_TABLE} (
    seq BIGSERIAL,
    id TEXT PRIMARY KEY,
    platform_id TEXT NOT NULL,
    category_id TEXT NOT NULL,
    commission_type TEXT NOT NULL,
    commission_percent NUMERIC,
    effective_from DATE NOT NULL,
    effective_to DATE,
    gst_percent NUMERIC,
    tcs_percent NUMERIC,
    settlement_basis TEXT,
    t_plus_days NUMERIC,
    weekly_weekday NUMERIC,
    bi_weekly_weekday NUMERIC,
    bi_weekly_which TEXT,
    monthly_day TEXT,
    grace_days NUMERIC,
    global_min_price NUMERIC,
    global_max_price NUMERIC,
    notes TEXT,
    archived BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE TABLE IF NOT EXISTS {SLABS_TABLE} (
    rate_card_id TEXT NOT NULL REFERENCES {CARDS_TABLE}(id) ON DELETE CASCADE,
    position INTEGER NOT NULL,
    min_price NUMERIC NOT NULL,
    max_price NUMERIC,
    commission_percent NUMERIC NOT NULL
);
CREATE TABLE IF NOT EXISTS {FEES_TABLE} (
    rate_card_id TEXT NOT NULL REFERENCES {CARDS_TABLE}(id) ON DELETE CASCADE,
    fee_code TEXT NOT NULL,
    fee_type TEXT NOT NULL,
    fee_value NUMERIC NOT NULL
);
CREATE TABLE IF NOT EXISTS {SETTLEMENTS_TABLE} (
    seq BIGSERIAL PRIMARY KEY,
    order_id TEXT,
    marketplace TEXT NOT NULL,
    category TEXT NOT NULL,
    order_date DATE NOT NULL,
    mrp NUMERIC NOT NULL,
    actual_settlement_amount NUMERIC NOT NULL,
    expected_payout NUMERIC NOT NULL,
    delta NUMERIC NOT NULL,
    mismatch_flag BOOLEAN NOT NULL,
    reco_status TEXT NOT NULL,
    rate_card_id TEXT,
    breakdown JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL
);
"""


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


def _num(value: Decimal | float | None) -> float | None:
    # NUMERIC columns come back as Decimal
    return None if value is None else float(value)


def _card_values(card: NormalizedRateCard, card_id: str) -> tuple[Any, ...]:
    return (
        card_id,
        card.platform_id,
        card.category_id,
        card.commission_type,
        card.commission_percent,
        card.effective_from,
        card.effective_to,
        card.gst_percent,
        card.tcs_percent,
        card.settlement_basis,
        card.t_plus_days,
        card.weekly_weekday,
        card.bi_weekly_weekday,
        card.bi_weekly_which,
        card.monthly_day,
        card.grace_days,
        card.global_min_price,
        card.global_max_price,
        card.notes,
        card.archived,
    )


def _row_to_card(row: tuple[Any, ...], slabs: list[Slab], fees: list[Fee]) -> NormalizedRateCard:
    rec = dict(zip(CARD_COLUMNS, row))
    return NormalizedRateCard(
        id=rec["id"],
        platform_id=(rec["platform_id"] or "").strip(),
        category_id=(rec["category_id"] or "").strip(),
        commission_type=rec["commission_type"],
        commission_percent=_num(rec["commission_percent"]),
        slabs=tuple(sorted(slabs, key=lambda s: s.min_price)),
        fees=tuple(sorted(fees, key=lambda f: (f.fee_code, f.fee_type))),
        effective_from=rec["effective_from"],
        effective_to=rec["effective_to"],
        gst_percent=_num(rec["gst_percent"]),
        tcs_percent=_num(rec["tcs_percent"]),
        settlement_basis=rec["settlement_basis"],
        t_plus_days=_num(rec["t_plus_days"]),
        weekly_weekday=_num(rec["weekly_weekday"]),
        bi_weekly_weekday=_num(rec["bi_weekly_weekday"]),
        bi_weekly_which=rec["bi_weekly_which"],
        monthly_day=rec["monthly_day"],
        grace_days=_num(rec["grace_days"]),
        global_min_price=_num(rec["global_min_price"]),
        global_max_price=_num(rec["global_max_price"]),
        notes=rec["notes"],
        archived=bool(rec["archived"]),
    )


def _row_to_settlement(row: tuple[Any, ...]) -> SettlementPrediction:
    rec = dict(zip(SETTLEMENT_COLUMNS, row))
    created = rec["created_at"]
    breakdown = rec["breakdown"] or {}
    return SettlementPrediction(
        request=SettlementRequest(
            mrp=_num(rec["mrp"]),
            order_id=rec["order_id"] or "",
            marketplace=rec["marketplace"],
            category=rec["category"],
            order_date=rec["order_date"],
            actual_settlement_amount=_num(rec["actual_settlement_amount"]),
        ),
        breakdown=SettlementBreakdown(**{k: float(v) for k, v in breakdown.items()}),
        expected_payout=_num(rec["expected_payout"]),
        delta=_num(rec["delta"]),
        mismatch_flag=bool(rec["mismatch_flag"]),
        rate_card_id=rec["rate_card_id"],
        created_at=created.isoformat() if isinstance(created, (datetime, date)) else str(created),
    )


def _log_batch(metrics: BatchMetrics) -> None:
    logger.debug("batch insert %s rows=%d elapsed_sec=%.4f", metrics.table, metrics.batch_size, metrics.elapsed_seconds)


class PostgresRateCardRepository:
    def __init__(self, dsn: str, connect: Callable[[str], Any] | None = None):
        self.dsn = dsn
        self._connect = connect or psycopg2.connect

    @contextmanager
    def _cursor(self) -> Iterator[Any]:
        try:
            conn = self._connect(self.dsn)
        except psycopg2.Error as e:
            raise RepositoryError(f"database connection failed: {e}") from e
        conn.autocommit = True
        cur = conn.cursor()
        try:
            yield cur
        finally:
            cur.close()
            conn.close()

    def _read(self, work: Callable[[Any], T]) -> T:
        with self._cursor() as cur:
            try:
                return work(cur)
            except psycopg2.Error as e:
                raise RepositoryError(str(e)) from e

    def _write(self, work: Callable[[Any], T]) -> T:
        with self._cursor() as cur:
            cur.execute("BEGIN")
            try:
                result = work(cur)
            except (psycopg2.Error, BatchInsertError) as e:
                try:
                    cur.execute("ROLLBACK")
                except psycopg2.Error as rb:
                    logger.error("rollback failed: %s", rb)
                raise RepositoryError(str(e)) from e
            try:
                cur.execute("COMMIT")
            except psycopg2.Error as e:
                raise RepositoryError(f"commit failed: {e}") from e
            return result

    def _ensure_schema(self) -> None:
        self._write(lambda cur: cur.execute(SCHEMA_SQL))

    async def ensure_schema(self) -> None:
        await asyncio.to_thread(self._ensure_schema)

    @staticmethod
    def _fetch_cards(cur: Any, card_id: str | None = None) -> list[NormalizedRateCard]:
        cols = ",".join(CARD_COLUMNS)
        if card_id is None:
            cur.execute(f"SELECT {cols} FROM {CARDS_TABLE} ORDER BY seq")
        else:
            cur.execute(f"SELECT {cols} FROM {CARDS_TABLE} WHERE id = %s", (card_id,))
        base = cur.fetchall()
        if not base:
            return []
        ids = [r[0] for r in base]

        slab_map: dict[str, list[Slab]] = {}
        cur.execute(
            f"SELECT rate_card_id, min_price, max_price, commission_percent FROM {SLABS_TABLE} "
            "WHERE rate_card_id = ANY(%s) ORDER BY rate_card_id, position",
            (ids,),
        )
        for rid, min_price, max_price, pct in cur.fetchall():
            slab_map.setdefault(rid, []).append(
                Slab(min_price=_num(min_price) or 0.0, max_price=_num(max_price), commission_percent=_num(pct) or 0.0)
            )

        fee_map: dict[str, list[Fee]] = {}
        cur.execute(
            f"SELECT rate_card_id, fee_code, fee_type, fee_value FROM {FEES_TABLE} WHERE rate_card_id = ANY(%s)",
            (ids,),
        )
        for rid, code, fee_type, value in cur.fetchall():
            fee_map.setdefault(rid, []).append(
                Fee(fee_code=code, fee_type="amount" if fee_type == "amount" else "percent", fee_value=_num(value) or 0.0)
            )

        return [_row_to_card(r, slab_map.get(r[0], []), fee_map.get(r[0], [])) for r in base]

    async def list_cards(self) -> list[NormalizedRateCard]:
        return await asyncio.to_thread(self._read, self._fetch_cards)

    async def get_card(self, card_id: str) -> NormalizedRateCard | None:
        cards = await asyncio.to_thread(self._read, lambda cur: self._fetch_cards(cur, card_id))
        return cards[0] if cards else None

    @staticmethod
    def _write_children(cur: Any, card: NormalizedRateCard, card_id: str) -> None:
        batch_insert(
            cur,
            SLABS_TABLE,
            SLAB_COLUMNS,
            [(card_id, pos, s.min_price, s.max_price, s.commission_percent) for pos, s in enumerate(card.slabs)],
            metrics_callback=_log_batch,
        )
        batch_insert(
            cur,
            FEES_TABLE,
            FEE_COLUMNS,
            [(card_id, f.fee_code, f.fee_type, f.fee_value) for f in card.fees],
            metrics_callback=_log_batch,
        )

    def _insert(self, card: NormalizedRateCard) -> NormalizedRateCard:
        card_id = uuid.uuid4().hex
        placeholders = ",".join(["%s"] * len(CARD_COLUMNS))

        def work(cur: Any) -> NormalizedRateCard:
            cur.execute(
                f"INSERT INTO {CARDS_TABLE} ({','.join(CARD_COLUMNS)}) VALUES ({placeholders})",
                _card_values(card, card_id),
            )
            self._write_children(cur, card, card_id)
            return card.with_id(card_id)

        return self._write(work)

    async def insert_card(self, card: NormalizedRateCard) -> NormalizedRateCard:
        stored = await asyncio.to_thread(self._insert, card)
        logger.debug("rate card %s inserted (%s/%s)", stored.id, stored.platform_id, stored.category_id)
        return stored

    def _update(self, card: NormalizedRateCard) -> NormalizedRateCard | None:
        assignments = ",".join(f"{c} = %s" for c in CARD_COLUMNS[1:])

        def work(cur: Any) -> NormalizedRateCard | None:
            cur.execute(
                f"UPDATE {CARDS_TABLE} SET {assignments} WHERE id = %s",
                _card_values(card, card.id)[1:] + (card.id,),
            )
            if cur.rowcount == 0:
                return None
            cur.execute(f"DELETE FROM {SLABS_TABLE} WHERE rate_card_id = %s", (card.id,))
            cur.execute(f"DELETE FROM {FEES_TABLE} WHERE rate_card_id = %s", (card.id,))
            self._write_children(cur, card, card.id)
            return card

        return self._write(work)

    async def update_card(self, card: NormalizedRateCard) -> NormalizedRateCard | None:
        if not card.id:
            return None
        return await asyncio.to_thread(self._update, card)

    def _delete(self, card_id: str) -> bool:
        def work(cur: Any) -> bool:
            cur.execute(f"DELETE FROM {SLABS_TABLE} WHERE rate_card_id = %s", (card_id,))
            cur.execute(f"DELETE FROM {FEES_TABLE} WHERE rate_card_id = %s", (card_id,))
            cur.execute(f"DELETE FROM {CARDS_TABLE} WHERE id = %s", (card_id,))
            return cur.rowcount > 0

        return self._write(work)

    async def delete_card(self, card_id: str) -> bool:
        return await asyncio.to_thread(self._delete, card_id)

    async def set_archived(self, card_id: str, archived: bool) -> NormalizedRateCard | None:
        def work(cur: Any) -> bool:
            cur.execute(f"UPDATE {CARDS_TABLE} SET archived = %s WHERE id = %s", (archived, card_id))
            return cur.rowcount > 0

        found = await asyncio.to_thread(self._write, work)
        if not found:
            return None
        return await self.get_card(card_id)

    def _append_settlement(self, record: SettlementPrediction) -> None:
        req = record.request
        values = (
            req.order_id,
            req.marketplace,
            req.category,
            req.order_date,
            req.mrp,
            req.actual_settlement_amount,
            record.expected_payout,
            record.delta,
            record.mismatch_flag,
            record.reco_status,
            record.rate_card_id,
            Json(asdict(record.breakdown)),
            record.created_at,
        )
        placeholders = ",".join(["%s"] * len(SETTLEMENT_COLUMNS))
        self._write(
            lambda cur: cur.execute(
                f"INSERT INTO {SETTLEMENTS_TABLE} ({','.join(SETTLEMENT_COLUMNS)}) VALUES ({placeholders})",
                values,
            )
        )

    async def append_settlement(self, record: SettlementPrediction) -> None:
        await asyncio.to_thread(self._append_settlement, record)

    def _fetch_settlements(self, cur: Any) -> list[SettlementPrediction]:
        cur.execute(f"SELECT {','.join(SETTLEMENT_COLUMNS)} FROM {SETTLEMENTS_TABLE} ORDER BY seq")
        return [_row_to_settlement(r) for r in cur.fetchall()]

    async def list_settlements(self) -> list[SettlementPrediction]:
        return await asyncio.to_thread(self._read, self._fetch_settlements)

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from psycopg2.extras import execute_values

"""Batched INSERT helper built on ``psycopg2.extras.execute_values``.

Used for the child rows of a rate card (slabs, fees). Table and column
names are trusted constants from ``ratecard_recon.db.postgres``; values
always travel as parameters.
"""

__all__ = [
    "BatchInsertError",
    "BatchMetrics",
    "InsertResult",
    "batch_insert",
]


class BatchInsertError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    table: str
    batch_size: int
    elapsed_seconds: float


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int
    returned_values: list[tuple[Any, ...]] | None = None


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    returning: Sequence[str] | None = None,
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> InsertResult:
    """INSERT ``rows`` into ``table`` in pages of ``page_size``.

    ``returning`` names the columns to fetch back (``RETURNING a, b``); the
    rows of every page are collected. An empty ``rows`` iterable issues no
    statement and skips the callback.

    Raises:
        BatchInsertError: the driver rejected the statement.
    """
    rows_list = [tuple(r) for r in rows]
    if not rows_list:
        return InsertResult(inserted_rows=0, returned_values=[] if returning else None)

    cols_sql = ",".join(f'"{c}"' for c in columns)
    sql = f"INSERT INTO {table} ({cols_sql}) VALUES %s"
    if returning:
        sql += " RETURNING " + ",".join(f'"{c}"' for c in returning)

    start = time.perf_counter()
    try:
        fetched = execute_values(cursor, sql, rows_list, page_size=page_size, fetch=bool(returning))
    except Exception as e:
        raise BatchInsertError(f"{table}: {e}") from e
    finally:
        if metrics_callback is not None:
            metrics_callback(
                BatchMetrics(
                    table=table,
                    batch_size=len(rows_list),
                    elapsed_seconds=time.perf_counter() - start,
                )
            )

    returned = list(fetched or []) if returning else None
    return InsertResult(inserted_rows=len(rows_list), returned_values=returned)

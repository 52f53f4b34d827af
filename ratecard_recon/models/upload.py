from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

"""Upload batch models for the two-phase (parse -> confirm) import.

State transitions of an upload row:

    parse:   (raw csv row) -> valid | similar | duplicate | error
    confirm: valid | similar -> imported | skipped
             duplicate | error -> skipped (not-eligible)
"""

__all__ = [
    "RowStatus",
    "SkipReason",
    "ParsedRow",
    "ParseSummary",
    "ParseResult",
    "UploadSession",
    "ImportRowResult",
    "ImportReport",
]


class RowStatus(Enum):
    VALID = "valid"
    SIMILAR = "similar"
    DUPLICATE = "duplicate"
    ERROR = "error"


class SkipReason(Enum):
    """Why a selected row was not imported during confirm."""
    NOT_ELIGIBLE = "not-eligible"
    REQUIRES_CONFIRMATION = "requires-confirmation"
    STALE_CONFLICT = "stale-conflict"
    MISSING_PAYLOAD = "missing-payload"
    ALREADY_IMPORTED = "already-imported"
    WRITE_FAILED = "write-failed"


@dataclass(frozen=True)
class ParsedRow:
    """Outcome of the parse phase for one source row.

    ``payload`` is only present for valid / similar rows; ``existing`` and
    ``suggestions`` only for similar / duplicate rows.
    """
    row_id: str
    row: int  # source line number, header = 1
    status: RowStatus
    message: str
    tooltip: str | None = None
    existing: dict[str, Any] | None = None
    suggestions: tuple[dict[str, Any], ...] | None = None
    archived_match: dict[str, Any] | None = None
    platform_id: str | None = None
    category_id: str | None = None
    commission_type: str | None = None
    effective_from: str | None = None
    effective_to: str | None = None
    payload: dict[str, Any] | None = None

    @property
    def importable(self) -> bool:
        return self.status in (RowStatus.VALID, RowStatus.SIMILAR)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "row_id": self.row_id,
            "row": self.row,
            "status": self.status.value,
            "message": self.message,
            "platform_id": self.platform_id,
            "category_id": self.category_id,
            "commission_type": self.commission_type,
            "effective_from": self.effective_from,
            "effective_to": self.effective_to,
        }
        if self.tooltip is not None:
            data["tooltip"] = self.tooltip
        if self.existing is not None:
            data["existing"] = self.existing
        if self.suggestions is not None:
            data["suggestions"] = list(self.suggestions)
        if self.archived_match is not None:
            data["archived_match"] = self.archived_match
        if self.payload is not None:
            data["payload"] = self.payload
        return data


@dataclass(frozen=True)
class ParseSummary:
    total: int = 0
    valid: int = 0
    similar: int = 0
    duplicate: int = 0
    error: int = 0

    @staticmethod
    def from_rows(rows: list[ParsedRow] | tuple[ParsedRow, ...]) -> ParseSummary:
        counts = {status: 0 for status in RowStatus}
        for r in rows:
            counts[r.status] += 1
        return ParseSummary(
            total=len(rows),
            valid=counts[RowStatus.VALID],
            similar=counts[RowStatus.SIMILAR],
            duplicate=counts[RowStatus.DUPLICATE],
            error=counts[RowStatus.ERROR],
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "valid": self.valid,
            "similar": self.similar,
            "duplicate": self.duplicate,
            "error": self.error,
        }


@dataclass(frozen=True)
class ParseResult:
    analysis_id: str
    file_name: str
    uploaded_at: str
    summary: ParseSummary
    rows: tuple[ParsedRow, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysis_id": self.analysis_id,
            "file_name": self.file_name,
            "uploaded_at": self.uploaded_at,
            "summary": self.summary.to_dict(),
            "rows": [r.to_dict() for r in self.rows],
        }


@dataclass(eq=False)
class UploadSession:
    """Parsed batch awaiting confirmation.

    ``rows`` is written once by the parse phase. ``committed`` is only
    touched by confirm calls while holding ``lock``.
    """
    id: str
    file_name: str
    uploaded_at: str
    created_at: float  # time.monotonic()
    rows: tuple[ParsedRow, ...]
    committed: dict[str, str] = field(default_factory=dict)  # row_id -> persisted id
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def find_row(self, row_id: str) -> ParsedRow | None:
        for r in self.rows:
            if r.row_id == row_id:
                return r
        return None


@dataclass(frozen=True)
class ImportRowResult:
    row_id: str
    row: int
    status: str  # imported | skipped
    id: str | None = None
    reason: SkipReason | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"row_id": self.row_id, "row": self.row, "status": self.status}
        if self.id is not None:
            data["id"] = self.id
        if self.reason is not None:
            data["reason"] = self.reason.value
        if self.message is not None:
            data["message"] = self.message
        return data


@dataclass(frozen=True)
class ImportReport:
    analysis_id: str
    results: tuple[ImportRowResult, ...]

    @property
    def inserted(self) -> int:
        return sum(1 for r in self.results if r.status == "imported")

    @property
    def skipped(self) -> int:
        return len(self.results) - self.inserted

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysis_id": self.analysis_id,
            "summary": {"inserted": self.inserted, "skipped": self.skipped},
            "results": [r.to_dict() for r in self.results],
        }

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..db.repository import RateCardRepository, RepositoryError
from ..ingest.normalizer import NormalizationResult, normalize_payload, normalize_row, with_write_defaults
from ..ingest.tokenizer import ParseError, tokenize_csv
from ..ingest.validator import validate_card
from ..logging.error_log import ErrorLogBuffer
from ..logging.init import log_summary
from ..models.config_models import AppConfig, LabelConfig
from ..models.error_record import ErrorRecord
from ..models.rate_card import NormalizedRateCard
from ..models.upload import (
    ImportReport,
    ImportRowResult,
    ParsedRow,
    ParseResult,
    ParseSummary,
    RowStatus,
    SkipReason,
    UploadSession,
)
from .conflicts import (
    ConflictAnalysis,
    analyze_conflicts,
    build_similar_summary,
    build_suggestions,
    card_meta,
)
from .labels import commission_description, format_date_range, humanize_issues
from .progress import RowProgressTracker
from .sessions import UploadSessionStore
from .summary import render_import_summary, render_parse_summary

"""Two-phase upload workflow: parse (dry run) then confirm (selective commit).

parse_upload
    tokenize -> per row: normalize -> validate -> detect conflicts against
    the catalog plus the rows already accepted from this batch -> store the
    outcome as an UploadSession.

confirm_import
    for each selected row: re-normalize the stored payload and re-check it
    against the catalog as it is *now*; write it only when it is still
    eligible. Rows commit independently; a failed write does not stop the
    batch.

revalidate_row
    single edited payload against the live catalog (similar allowed).
"""

__all__ = [
    "RowAnalysis",
    "analyze_card",
    "parse_upload",
    "confirm_import",
    "revalidate_row",
]

logger = logging.getLogger(__name__)

READY_MESSAGE = "Ready to import."


@dataclass(frozen=True)
class RowAnalysis:
    """Classification of one normalized card against a reference pool."""
    status: RowStatus
    message: str
    card: NormalizedRateCard
    issues: tuple[str, ...] = ()
    error_type: str | None = None
    tooltip: str | None = None
    conflicts: ConflictAnalysis | None = None
    existing: dict[str, Any] | None = None
    suggestions: tuple[dict[str, Any], ...] | None = None
    archived_match: dict[str, Any] | None = None


def analyze_card(
    result: NormalizationResult,
    references: Iterable[NormalizedRateCard],
    labels: LabelConfig | None = None,
) -> RowAnalysis:
    card = result.card
    validation = validate_card(card)
    issues = tuple(result.issues) + tuple(validation)
    if issues:
        tooltip = None
        if result.invalid_fields:
            tooltip = f"Check column(s): {', '.join(result.invalid_fields)}"
        return RowAnalysis(
            status=RowStatus.ERROR,
            message=humanize_issues(issues),
            card=card,
            issues=issues,
            error_type="COERCION_ERROR" if result.issues else "VALIDATION_ERROR",
            tooltip=tooltip,
        )

    conflicts = analyze_conflicts(card, references)
    overlap = conflicts.overlap
    if overlap is None:
        archived_meta = None
        tooltip = None
        if conflicts.archived_match is not None:
            archived = conflicts.archived_match
            archived_meta = {
                **card_meta(archived.existing, labels),
                "type": "exact" if archived.type == "exact" else "overlap",
            }
            tooltip = (
                f"Archived match ({archived_meta['type']}): {archived_meta['label']} "
                f"({archived_meta['date_range']}). Archived cards don't affect reconciliation."
            )
        return RowAnalysis(
            status=RowStatus.VALID,
            message=READY_MESSAGE,
            card=card,
            tooltip=tooltip,
            conflicts=conflicts,
            archived_match=archived_meta,
        )

    existing = overlap.existing
    meta = card_meta(existing, labels)
    if overlap.type == "exact":
        return RowAnalysis(
            status=RowStatus.DUPLICATE,
            message=f"Exact duplicate of {meta['label']} ({meta['date_range']}). Remove or edit this row.",
            card=card,
            error_type="DUPLICATE",
            tooltip="Same date range, commission and fees.",
            conflicts=conflicts,
            existing=meta,
        )
    tooltip = (
        f"{build_similar_summary(card, existing)}.\n"
        f"Your row: {commission_description(card)} ({format_date_range(card.effective_from, card.effective_to)}).\n"
        f"Existing: {commission_description(existing)} ({meta['date_range']})."
    )
    return RowAnalysis(
        status=RowStatus.SIMILAR,
        message=f"Overlaps existing {meta['label']} ({meta['date_range']}). Adjust dates or confirm import.",
        card=card,
        tooltip=tooltip,
        conflicts=conflicts,
        existing=meta,
        suggestions=tuple(build_suggestions(card, existing)),
    )


def _iso(value: Any) -> str | None:
    return value.isoformat() if value is not None else None


def _parsed_row(analysis: RowAnalysis, row_id: str, line: int) -> ParsedRow:
    card = analysis.card
    importable = analysis.status in (RowStatus.VALID, RowStatus.SIMILAR)
    return ParsedRow(
        row_id=row_id,
        row=line,
        status=analysis.status,
        message=analysis.message,
        tooltip=analysis.tooltip,
        existing=analysis.existing,
        suggestions=analysis.suggestions,
        archived_match=analysis.archived_match,
        platform_id=card.platform_id or None,
        category_id=card.category_id or None,
        commission_type=card.commission_type or None,
        effective_from=_iso(card.effective_from),
        effective_to=_iso(card.effective_to),
        payload=card.to_payload() if importable else None,
    )


def _error_log_for(config: AppConfig, error_log: ErrorLogBuffer | None) -> tuple[ErrorLogBuffer | None, bool]:
    """Return (buffer, owned). An owned buffer is flushed by the workflow itself."""
    if error_log is not None:
        return error_log, False
    if config.error_log_dir:
        return ErrorLogBuffer(Path(config.error_log_dir)), True
    return None, False


async def parse_upload(
    data: bytes | str,
    file_name: str,
    *,
    repository: RateCardRepository,
    store: UploadSessionStore,
    config: AppConfig | None = None,
    error_log: ErrorLogBuffer | None = None,
    progress: RowProgressTracker | None = None,
) -> ParseResult:
    """Analyze an upload and stage it for confirmation.

    Raises:
        ParseError: the file is structurally unusable (empty, no header).
    """
    config = config or AppConfig()
    buffer, owned = _error_log_for(config, error_log)
    start = time.perf_counter()

    try:
        records = tokenize_csv(data)
    except ParseError as e:
        logger.error("parse: %s: %s", file_name, e)
        if buffer is not None:
            buffer.append(ErrorRecord.create(file_name, -1, "ROW_FAILURE", str(e)))
            if owned:
                buffer.flush()
        raise
    if progress is not None:
        progress.set_total(len(records))

    analysis_id = uuid.uuid4().hex
    pool: list[NormalizedRateCard] = list(await repository.list_cards())
    rows: list[ParsedRow] = []
    for idx, record in enumerate(records):
        line = idx + 2
        row_id = f"{analysis_id}:{line}"
        analysis = analyze_card(normalize_row(record), pool, config.labels)
        row = _parsed_row(analysis, row_id, line)
        rows.append(row)
        if row.importable:
            # later rows of the batch are checked against this one
            pool.append(analysis.card.with_id(row_id))
        elif buffer is not None:
            buffer.append(
                ErrorRecord.create(file_name, line, analysis.error_type or "ROW_FAILURE", row.message, row_id=row_id)
            )
        if analysis.status is RowStatus.ERROR:
            logger.debug("row %d: %s", line, row.message)
        if progress is not None:
            progress.advance(row.status.value)

    summary = ParseSummary.from_rows(rows)
    session = UploadSession(
        id=analysis_id,
        file_name=file_name,
        uploaded_at=datetime.now(UTC).isoformat(),
        created_at=store.now(),
        rows=tuple(rows),
    )
    await store.put(session)

    if owned and buffer is not None:
        buffer.flush()
    log_summary(render_parse_summary(file_name, summary, time.perf_counter() - start))
    return ParseResult(
        analysis_id=analysis_id,
        file_name=file_name,
        uploaded_at=session.uploaded_at,
        summary=summary,
        rows=session.rows,
    )


def _line_of(row_id: str) -> int:
    tail = row_id.rsplit(":", 1)[-1]
    return int(tail) if tail.isdigit() else -1


def _skip(row_id: str, line: int, reason: SkipReason, message: str, card_id: str | None = None) -> ImportRowResult:
    return ImportRowResult(row_id=row_id, row=line, status="skipped", id=card_id, reason=reason, message=message)


async def confirm_import(
    analysis_id: str,
    row_ids: Iterable[str],
    include_similar: bool = False,
    *,
    repository: RateCardRepository,
    store: UploadSessionStore,
    config: AppConfig | None = None,
    error_log: ErrorLogBuffer | None = None,
    progress: RowProgressTracker | None = None,
) -> ImportReport:
    """Commit the selected rows of a parsed upload.

    Raises:
        SessionError: unknown or expired ``analysis_id``.
    """
    config = config or AppConfig()
    buffer, owned = _error_log_for(config, error_log)
    start = time.perf_counter()
    session = await store.get(analysis_id)
    selected = list(dict.fromkeys(row_ids))

    results: list[ImportRowResult] = []
    async with session.lock:
        references: list[NormalizedRateCard] = list(await repository.list_cards())
        for row_id in selected:
            result = await _commit_row(session, row_id, include_similar, references, repository, config, buffer)
            results.append(result)
            if progress is not None:
                progress.advance(result.status)

    if owned and buffer is not None:
        buffer.flush()
    report = ImportReport(analysis_id=analysis_id, results=tuple(results))
    log_summary(render_import_summary(report, time.perf_counter() - start))
    return report


async def _commit_row(
    session: UploadSession,
    row_id: str,
    include_similar: bool,
    references: list[NormalizedRateCard],
    repository: RateCardRepository,
    config: AppConfig,
    buffer: ErrorLogBuffer | None,
) -> ImportRowResult:
    row = session.find_row(row_id)
    if row is None:
        return _skip(row_id, _line_of(row_id), SkipReason.NOT_ELIGIBLE, "Row not found in this upload.")
    if not row.importable:
        return _skip(
            row_id,
            row.row,
            SkipReason.NOT_ELIGIBLE,
            f"Row is {row.status.value}; only valid or similar rows can be imported.",
        )
    if row.status is RowStatus.SIMILAR and not include_similar:
        return _skip(
            row_id,
            row.row,
            SkipReason.REQUIRES_CONFIRMATION,
            "Row overlaps an existing rate card; include similar rows to import it.",
        )
    if row_id in session.committed:
        return _skip(
            row_id,
            row.row,
            SkipReason.ALREADY_IMPORTED,
            "Row was already imported from this upload.",
            card_id=session.committed[row_id],
        )
    if row.payload is None:
        return _skip(row_id, row.row, SkipReason.MISSING_PAYLOAD, "Row has no stored payload; re-upload the file.")

    normalized = normalize_payload(row.payload)
    issues = list(normalized.issues) + validate_card(normalized.card)
    if issues:
        return _skip(row_id, row.row, SkipReason.NOT_ELIGIBLE, humanize_issues(issues))
    card = normalized.card

    overlap = analyze_conflicts(card, references).overlap
    if overlap is not None:
        if overlap.type == "exact":
            return _skip(
                row_id, row.row, SkipReason.STALE_CONFLICT, f"Catalog changed since upload: {overlap.reason}."
            )
        if not include_similar:
            return _skip(
                row_id,
                row.row,
                SkipReason.REQUIRES_CONFIRMATION,
                f"Catalog changed since upload: {overlap.reason}. Include similar rows to import it.",
            )

    try:
        stored = await repository.insert_card(with_write_defaults(card, config.defaults))
    except RepositoryError as e:
        logger.error("import: row %d write failed: %s", row.row, e)
        if buffer is not None:
            buffer.append(ErrorRecord.create(session.file_name, row.row, "WRITE_FAILED", str(e), row_id=row_id))
        return _skip(row_id, row.row, SkipReason.WRITE_FAILED, str(e))

    references.append(stored)
    session.committed[row_id] = stored.id
    return ImportRowResult(row_id=row_id, row=row.row, status="imported", id=stored.id)


async def revalidate_row(
    payload: Mapping[str, Any],
    *,
    repository: RateCardRepository,
    config: AppConfig | None = None,
) -> dict[str, Any]:
    """Re-analyze one edited row against the live catalog."""
    config = config or AppConfig()
    normalized = normalize_payload(payload)
    analysis = analyze_card(normalized, await repository.list_cards(), config.labels)
    out: dict[str, Any] = {
        "status": analysis.status.value,
        "message": analysis.message,
        "errors": list(analysis.issues),
        "normalized": analysis.card.to_payload(),
    }
    if analysis.tooltip is not None:
        out["tooltip"] = analysis.tooltip
    if analysis.archived_match is not None:
        out["archived_match"] = analysis.archived_match
    if analysis.existing is not None:
        out["existing"] = analysis.existing
    if analysis.suggestions is not None:
        out["suggestions"] = list(analysis.suggestions)
    overlap = analysis.conflicts.overlap if analysis.conflicts else None
    if overlap is not None:
        out["overlap"] = {"type": overlap.type, "reason": overlap.reason}
    return out

from __future__ import annotations

from ..models.upload import ImportReport, ParseSummary

"""SUMMARY line rendering for the parse and import phases.

Formats (single line, key=value pairs, stable order):

    SUMMARY phase=parse file={name} rows={total} valid={n} similar={n} duplicate={n} error={n} elapsed_sec={s}
    SUMMARY phase=import analysis={id} selected={n} inserted={n} skipped={n} elapsed_sec={s}

``log_summary`` adds the ``SUMMARY`` label itself, so the ``render_*``
helpers return the content after it.
"""

__all__ = [
    "format_elapsed",
    "render_parse_summary",
    "render_import_summary",
]


def format_elapsed(seconds: float) -> str:
    """Integers without decimals, small values without scientific notation."""
    if seconds == 0:
        return "0"
    if seconds == int(seconds):
        return str(int(seconds))
    if seconds < 0.01:
        return f"{seconds:.6f}".rstrip("0").rstrip(".")
    return f"{seconds:.3f}".rstrip("0").rstrip(".")


def render_parse_summary(file_name: str, summary: ParseSummary, elapsed_seconds: float) -> str:
    safe_name = (file_name or "-").replace(" ", "_")
    return (
        f"phase=parse file={safe_name} "
        f"rows={summary.total} "
        f"valid={summary.valid} "
        f"similar={summary.similar} "
        f"duplicate={summary.duplicate} "
        f"error={summary.error} "
        f"elapsed_sec={format_elapsed(elapsed_seconds)}"
    )


def render_import_summary(report: ImportReport, elapsed_seconds: float) -> str:
    return (
        f"phase=import analysis={report.analysis_id} "
        f"selected={len(report.results)} "
        f"inserted={report.inserted} "
        f"skipped={report.skipped} "
        f"elapsed_sec={format_elapsed(elapsed_seconds)}"
    )

from __future__ import annotations

import io
import logging

import pandas as pd

"""CSV tokenizer for rate-card uploads.

Two passes:

1. Strict: pandas' C parser (RFC-4180 quoting, ``""`` escapes). Every cell is
   read as text, nothing is converted to NaN.
2. Lenient fallback, used when the strict pass fails or when a ``[``/``{``
   appears outside CSV quotes: a character scanner that also tracks
   ``[``/``{`` nesting outside quotes so that a JSON value pasted unquoted
   into a cell (``slabs_json`` / ``fees_json``) is not split at its commas
   or line breaks. Field and row boundaries only count at depth 0.

Either way the first line is the header and the result is a list of
``{header: cell}`` dicts in file order with all-empty rows dropped.
"""

__all__ = [
    "ParseError",
    "tokenize_csv",
    "decode_upload",
]

logger = logging.getLogger(__name__)

BOM = "\ufeff"
_OPENERS = "[{"
_CLOSERS = "]}"


class ParseError(Exception):
    """Raised when the upload is structurally unusable (empty, no header)."""


def decode_upload(data: bytes | str) -> str:
    """Decode upload bytes as UTF-8 (BOM tolerated, invalid bytes replaced)."""
    if isinstance(data, str):
        return data[1:] if data.startswith(BOM) else data
    return data.decode("utf-8-sig", errors="replace")


def _strict_rows(text: str) -> list[list[str]]:
    # header=None: the column count is fixed by the first line, so any row
    # with more cells than the header is a tokenizing error, not silent loss.
    df = pd.read_csv(
        io.StringIO(text),
        header=None,
        dtype=str,
        keep_default_na=False,
        na_filter=False,
        skip_blank_lines=True,
        engine="c",
    )
    df = df.fillna("")
    return [[str(v) for v in raw] for raw in df.itertuples(index=False, name=None)]


def _has_unquoted_json(text: str) -> bool:
    """True when a ``[`` or ``{`` appears outside CSV quotes.

    pandas accepts such rows whenever they are short enough to fit the header,
    splitting the JSON at its commas.
    """
    in_quotes = False
    field_start = True
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if in_quotes:
            if ch == '"':
                if i + 1 < n and text[i + 1] == '"':
                    i += 2
                    continue
                in_quotes = False
        elif ch in _OPENERS:
            return True
        elif ch == '"' and field_start:
            in_quotes = True
        field_start = ch in ",\n"
        i += 1
    return False


def _lenient_rows(text: str) -> list[list[str]]:
    rows: list[list[str]] = []
    row: list[str] = []
    cell: list[str] = []
    in_quotes = False  # inside a CSV quoted field
    in_json_string = False  # inside a "..." string of an unquoted JSON value
    escaped = False
    depth = 0

    i = 0
    n = len(text)
    while i < n:
        ch = text[i]

        if in_quotes:
            if ch == '"':
                if i + 1 < n and text[i + 1] == '"':
                    cell.append('"')
                    i += 2
                    continue
                in_quotes = False
            else:
                cell.append(ch)
            i += 1
            continue

        if depth > 0:
            cell.append(ch)
            if in_json_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_json_string = False
            elif ch == '"':
                in_json_string = True
            elif ch in _OPENERS:
                depth += 1
            elif ch in _CLOSERS:
                depth -= 1
            i += 1
            continue

        if ch == '"' and not cell:
            in_quotes = True
        elif ch in _OPENERS:
            depth += 1
            cell.append(ch)
        elif ch == ",":
            row.append("".join(cell))
            cell = []
        elif ch == "\n":
            row.append("".join(cell))
            rows.append(row)
            row = []
            cell = []
        elif ch == "\r":
            pass
        else:
            # stray closers at depth 0 are kept as text
            cell.append(ch)
        i += 1

    if cell or row:
        row.append("".join(cell))
        rows.append(row)
    return rows


def _is_blank(cells: list[str]) -> bool:
    return all(not c.strip() for c in cells)


def tokenize_csv(data: bytes | str) -> list[dict[str, str]]:
    """Split an upload into ``{header: cell}`` records.

    Raises:
        ParseError: empty upload or missing header row.
    """
    text = decode_upload(data)
    if not text.strip():
        raise ParseError("Uploaded file is empty")

    if _has_unquoted_json(text):
        logger.debug("csv: unquoted JSON value found; using structure-aware fallback")
        raw_rows = _lenient_rows(text)
    else:
        try:
            raw_rows = _strict_rows(text)
            logger.debug("csv: strict parser accepted %d line(s)", len(raw_rows))
        except (pd.errors.ParserError, pd.errors.EmptyDataError, ValueError) as e:
            logger.debug("csv: strict parser failed (%s); using structure-aware fallback", e)
            raw_rows = _lenient_rows(text)

    raw_rows = [r for r in raw_rows if not _is_blank(r)]
    if not raw_rows:
        raise ParseError("CSV has no header row")

    header_cells = [c.strip() for c in raw_rows[0]]
    if header_cells:
        header_cells[0] = header_cells[0].lstrip(BOM).strip()
    if _is_blank(header_cells):
        raise ParseError("CSV has no header row")
    headers = [h or f"column_{idx}" for idx, h in enumerate(header_cells)]

    records: list[dict[str, str]] = []
    for cells in raw_rows[1:]:
        record = {h: (cells[idx] if idx < len(cells) else "") for idx, h in enumerate(headers)}
        records.append(record)
    return records

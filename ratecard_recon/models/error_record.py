from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the row-issue log.

One record is written for every upload row that could not be staged
(error / duplicate) and for every row whose write failed during import.
``row=-1`` marks file-level failures where no row can be blamed.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: Uploaded file name
        row: Source line number (1-based, header is line 1). -1 when unknown
        row_id: Session scoped row id, empty for file-level records
        error_type: Classification in UPPER_SNAKE_CASE
        message: Human readable description
    """
    timestamp: str
    file: str
    row: int
    row_id: str
    error_type: str
    message: str

    @staticmethod
    def create(file: str, row: int, error_type: str, message: str, row_id: str = "") -> ErrorRecord:
        """Create a new ErrorRecord stamped with the current UTC time."""
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            row=row,
            row_id=row_id,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        """Serialize to a single JSON line with exactly the dataclass keys."""
        return json.dumps(asdict(self), ensure_ascii=False)

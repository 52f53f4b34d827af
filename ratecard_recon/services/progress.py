from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Row progress display with tqdm (TTY only).

Used by the CLI while rows are analyzed and committed. In non-TTY
environments (CI, pipes) no bar is created so logs stay free of control
sequences.
"""

__all__ = [
    "RowProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class RowProgressTracker:
    """Progress bar over the rows of one upload.

    The workflow calls ``set_total`` once the upload is split into rows and
    ``advance(status)`` once per row; per-status counts are kept whether or
    not a bar is shown.
    """

    def __init__(self, total_rows: int | None = None, *, description: str = "Analyzing rows") -> None:
        self.total_rows = total_rows
        self.description = description
        self.counts: dict[str, int] = {}
        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total_rows,
                desc=description,
                unit="row",
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def set_total(self, total_rows: int) -> None:
        """Size the bar once the row count is known."""
        self.total_rows = total_rows
        if self.pbar is not None:
            self.pbar.total = total_rows
            self.pbar.refresh()

    def advance(self, status: str) -> None:
        self.counts[status] = self.counts.get(status, 0) + 1
        if self.pbar is not None:
            self.pbar.update(1)
            self.pbar.set_postfix(**self.counts)

    def close(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> RowProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable, Optional, Sequence

from . import config
from .logging_utils import _scraper_event
from .models import COLUMNS, Record

DELIMITER = "|"


def output_path_for(run_date: str, directory: Optional[Path] = None) -> Path:
    return (directory or config.KV_STORE_DIR) / f"{config.FILE_PREFIX}_{run_date}.csv"


class DelimitedFileSink:
    """Pipe-delimited, fully quoted output file.

    The file is truncated and the header written by :meth:`open`; batches are
    appended afterwards. Multi-line fields (image links) stay inside their
    quotes, so one record may span several physical lines.
    """

    def __init__(self, path: Path, columns: Sequence[str] = COLUMNS) -> None:
        self.path = path
        self.columns = tuple(columns)
        self.rows_written = 0

    def _writer(self, handle):
        return csv.writer(handle, delimiter=DELIMITER, quoting=csv.QUOTE_ALL, lineterminator="\n")

    def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8", newline="") as handle:
            self._writer(handle).writerow(self.columns)
        self.rows_written = 0

    def append(self, records: Iterable[Record]) -> int:
        rows = [record.as_row() for record in records]
        if not rows:
            return 0
        if not self.path.exists():
            self.open()
        with self.path.open("a", encoding="utf-8", newline="") as handle:
            self._writer(handle).writerows(rows)
        self.rows_written += len(rows)
        _scraper_event("sink", phase="file_append", path=str(self.path), rows=len(rows), total=self.rows_written)
        return len(rows)


__all__ = ["DelimitedFileSink", "output_path_for", "DELIMITER"]

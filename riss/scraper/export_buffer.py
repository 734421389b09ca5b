from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol

from . import config
from .logging_utils import _scraper_event
from .models import Record
from .utils import log_line


class DatasetWriter(Protocol):
    def push(self, items: Iterable[Mapping[str, Any]]) -> int: ...


class RecordFileWriter(Protocol):
    def append(self, records: Iterable[Record]) -> int: ...


@dataclass
class FlushResult:
    records: int
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


class ExportBuffer:
    """Collect records and write them to both sinks in fixed-size batches.

    ``append`` flushes automatically once ``batch_size`` records are held; the
    caller flushes the remainder at end of run. Each flush attempts both sinks
    with the same records in the same order and clears the buffer afterwards,
    whatever either sink reported.
    """

    def __init__(
        self,
        dataset: DatasetWriter,
        file_sink: RecordFileWriter,
        *,
        batch_size: int | None = None,
    ) -> None:
        self.dataset = dataset
        self.file_sink = file_sink
        self.batch_size = max(1, batch_size or config.EXPORT_BATCH_SIZE)
        self._records: list[Record] = []
        self.flushes: list[FlushResult] = []

    def __len__(self) -> int:
        return len(self._records)

    def append(self, record: Record) -> FlushResult | None:
        self._records.append(record)
        if len(self._records) >= self.batch_size:
            return self.flush()
        return None

    def flush(self) -> FlushResult | None:
        if not self._records:
            return None

        batch = list(self._records)
        self._records.clear()
        result = FlushResult(records=len(batch))

        try:
            self.dataset.push([record.as_item() for record in batch])
        except Exception as exc:  # noqa: BLE001
            result.errors["dataset"] = str(exc)
            log_line(f"[EXPORT] Dataset push failed for {len(batch)} records: {exc}")

        try:
            self.file_sink.append(batch)
        except Exception as exc:  # noqa: BLE001
            result.errors["file"] = str(exc)
            log_line(f"[EXPORT] File append failed for {len(batch)} records: {exc}")

        _scraper_event("export", phase="flush", records=len(batch), errors=result.errors or None)
        self.flushes.append(result)
        return result


__all__ = ["ExportBuffer", "FlushResult", "DatasetWriter", "RecordFileWriter"]

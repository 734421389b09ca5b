from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Iterable, Optional

# Output column order shared by the delimited file and the dataset items.
COLUMNS: tuple[str, ...] = (
    "Document Number",
    "Book",
    "Page",
    "Recording Date",
    "Book Type",
    "Document Type",
    "Amount",
    "Grantor",
    "Grantee",
    "Reference",
    "Remarks",
    "Parcel Number",
    "Legal",
    "Property Address",
    "Property",
    "Image Links",
)

VALUE_SEPARATOR = "; "
REMARKS_SEPARATOR = ";"
LINK_SEPARATOR = "\n"


def _clean(parts: Iterable[Optional[str]]) -> list[str]:
    return [p.strip() for p in parts if p and p.strip()]


def join_values(parts: Iterable[Optional[str]]) -> str:
    """Flatten a multi-valued detail field."""

    return VALUE_SEPARATOR.join(_clean(parts))


def join_remarks(parts: Iterable[Optional[str]]) -> str:
    return REMARKS_SEPARATOR.join(_clean(parts))


def join_links(parts: Iterable[Optional[str]]) -> str:
    return LINK_SEPARATOR.join(_clean(parts))


@dataclass(frozen=True)
class Record:
    """One output row. Field order matches :data:`COLUMNS`."""

    document_number: str = ""
    book: str = ""
    page: str = ""
    recording_date: str = ""
    book_type: str = ""
    document_type: str = ""
    amount: str = ""
    grantor: str = ""
    grantee: str = ""
    reference: str = ""
    remarks: str = ""
    parcel_number: str = ""
    legal: str = ""
    property_address: str = ""
    property: str = ""
    image_links: str = ""

    def as_row(self) -> list[str]:
        return [getattr(self, f.name) for f in fields(self)]

    def as_item(self) -> dict[str, str]:
        return dict(zip(COLUMNS, self.as_row()))

    def as_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class ResultGrid:
    """Column mapping and row count of the loaded results table."""

    table_selector: str
    headers: tuple[str, ...]
    row_count: int
    file_number_index: Optional[int] = None
    file_date_index: Optional[int] = None
    image_index: Optional[int] = None

    @property
    def has_image_column(self) -> bool:
        return self.image_index is not None


@dataclass
class DocumentImageSet:
    """Ordered page captures for one document (or one folder of it)."""

    name: str
    pages: list[bytes] = field(default_factory=list)
    folder_index: Optional[int] = None

    def add(self, page: Optional[bytes]) -> None:
        if page:
            self.pages.append(page)

    def __len__(self) -> int:
        return len(self.pages)

    def artifact_key(self, run_date: str) -> str:
        return f"Images/{run_date}/{self.name}/{self.name}.tif"


@dataclass
class RunOutcome:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    total_rows: int = 0
    fatal_reason: Optional[str] = None
    status_message: str = ""

    def record_success(self) -> None:
        self.attempted += 1
        self.succeeded += 1

    def record_failure(self) -> None:
        self.attempted += 1
        self.failed += 1

    @property
    def is_fatal(self) -> bool:
        return self.fatal_reason is not None

    def finish(self) -> str:
        if self.attempted == 0 and self.total_rows == 0:
            self.status_message = "Finished: No records found for the given criteria."
        else:
            self.status_message = (
                f"Finished! Total {self.attempted} requests: "
                f"{self.succeeded} succeeded, {self.failed} failed."
            )
        return self.status_message

    def abort(self, reason: str, *, attempts: Optional[int] = None) -> str:
        self.fatal_reason = reason
        if attempts is None:
            self.status_message = f"Error: {reason}"
        else:
            self.status_message = f"Fatal Error during search after {attempts} attempts: {reason}"
        return self.status_message

    def interrupt(self, reason: str) -> str:
        """End a run that stopped after the search succeeded, keeping its counts."""

        self.fatal_reason = reason
        self.status_message = (
            f"Stopped after {self.attempted} of {self.total_rows} requests: "
            f"{self.succeeded} succeeded, {self.failed} failed. Reason: {reason}"
        )
        return self.status_message

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


__all__ = [
    "COLUMNS",
    "DocumentImageSet",
    "Record",
    "ResultGrid",
    "RunOutcome",
    "join_links",
    "join_remarks",
    "join_values",
]

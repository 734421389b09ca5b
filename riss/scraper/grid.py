from __future__ import annotations

from typing import Optional, Sequence

from playwright.sync_api import Page

from .logging_utils import _scraper_event
from .models import ResultGrid

HEADER_SCRIPT = """
(selector) => {
    const table = document.querySelector(selector);
    if (!table) return null;
    const headers = Array.from(table.querySelectorAll('thead th, thead td'))
        .map(th => (th.innerText || th.textContent || '').trim().toUpperCase());
    return { headers, rows: table.querySelectorAll('tbody tr').length };
}
"""


def _normalise(headers: Sequence[str]) -> list[str]:
    return [" ".join((h or "").split()).upper() for h in headers]


def _file_number_index(headers: Sequence[str]) -> Optional[int]:
    for i, header in enumerate(headers):
        if header == "FILE NUMBER":
            return i
    for i, header in enumerate(headers):
        if "FILE" in header and "NUMBER" in header:
            return i
    return None


def _file_date_index(headers: Sequence[str]) -> Optional[int]:
    for i, header in enumerate(headers):
        if header == "FILE DATE":
            return i
    for i, header in enumerate(headers):
        if "FILE" in header and "DATE" in header:
            return i
    return None


def _image_index(headers: Sequence[str]) -> Optional[int]:
    for i, header in enumerate(headers):
        if header.startswith("IMAGE"):
            return i
    for i, header in enumerate(headers):
        if "IMAGE" in header or ("VIEW" in header and "PREVIEW" not in header):
            return i
    return None


def resolve_result_grid(headers: Sequence[str], row_count: int, table_selector: str) -> ResultGrid:
    """Map the header row onto the columns the row extractor reads.

    Each column is matched exactly first, then by substring.
    """

    normalised = _normalise(headers)
    return ResultGrid(
        table_selector=table_selector,
        headers=tuple(normalised),
        row_count=max(0, int(row_count)),
        file_number_index=_file_number_index(normalised),
        file_date_index=_file_date_index(normalised),
        image_index=_image_index(normalised),
    )


def read_result_grid(page: Page, table_selector: str) -> ResultGrid:
    """Read headers and row count from the loaded results table."""

    raw = page.evaluate(HEADER_SCRIPT, table_selector) or {}
    grid = resolve_result_grid(raw.get("headers") or [], raw.get("rows") or 0, table_selector)
    _scraper_event(
        "search",
        phase="grid",
        table=table_selector,
        rows=grid.row_count,
        headers=list(grid.headers),
        file_number_index=grid.file_number_index,
        file_date_index=grid.file_date_index,
        image_index=grid.image_index,
    )
    return grid


__all__ = ["read_result_grid", "resolve_result_grid"]

"""Turn one results-grid row into a :class:`Record`.

Order per row: direct cell values, then page images (when the export mode
asks for them and the grid has an image column), then the detail page.
Failures inside one folder of a multi-folder viewer are logged and skipped;
anything else raises :class:`RowExtractionError` and the row is dropped.
A same-tab detail page is always left again; when the grid does not come
back, :class:`GridUnavailableError` stops the run.
"""
from __future__ import annotations

import re
from dataclasses import replace
from typing import Any, Callable, Iterable, Optional

from playwright.sync_api import Error as PWError, Locator, Page, TimeoutError as PWTimeout

from . import config
from .apify_storage import KeyValueStore, SinkError
from .criteria import SearchCriteria, SearchMode
from .detail_page import DetailFields, DetailPageParser
from .error_codes import ErrorCode
from .image_processor import create_multipage_tiff
from .logging_utils import _scraper_event
from .models import DocumentImageSet, Record, ResultGrid, join_links
from .session import PortalSession, wait_seconds
from .utils import log_line, sanitize_artifact_name
from .viewer import DocumentViewer, ViewerError

DETAIL_TARGET_SELECTOR = "form input[type=submit], form button, form a, a"
DETAIL_READY_SELECTOR = "span.informationTitle"
DETAIL_URL_MARKER = "docinfo"
TITLE_PATTERN = re.compile(r"Instrument Number\s+([\w\-]+)|[\w\-]*?(\d{5,})$")

# Errors a single folder capture may raise without failing the row.
FOLDER_ERRORS = (PWError, ViewerError, SinkError, ValueError, OSError)


class RowExtractionError(Exception):
    def __init__(self, message: str, *, error_code: str = ErrorCode.INTERNAL) -> None:
        super().__init__(message)
        self.error_code = error_code


class GridUnavailableError(RowExtractionError):
    """The primary page could not be brought back to the results grid."""

    def __init__(self, message: str, *, error_code: str = ErrorCode.NAVIGATION_TIMEOUT) -> None:
        super().__init__(message, error_code=error_code)


def artifact_base_from_title(title: str) -> str:
    match = TITLE_PATTERN.search(title or "")
    if not match:
        return ""
    return (match.group(1) or match.group(2) or "").strip()


class RowExtractor:
    """Extract rows from the loaded results grid of one portal session."""

    def __init__(
        self,
        session: PortalSession,
        criteria: SearchCriteria,
        grid: ResultGrid,
        *,
        store: KeyValueStore,
        run_date: str,
        compose: Callable[[Iterable[bytes]], bytes] = create_multipage_tiff,
        parser_factory: Callable[[str], DetailPageParser] = DetailPageParser,
    ) -> None:
        self.session = session
        self.criteria = criteria
        self.grid = grid
        self.store = store
        self.run_date = run_date
        self.compose = compose
        self.parser_factory = parser_factory
        self.folder_failures: list[dict[str, Any]] = []

    @property
    def page(self) -> Page:
        return self.session.page

    @property
    def images_enabled(self) -> bool:
        return self.criteria.export_mode.exports_images and self.grid.has_image_column

    def _cells(self, index: int) -> Locator:
        return self.page.locator(f"{self.grid.table_selector} tbody tr").nth(index).locator("td")

    @staticmethod
    def _cell_text(cells: Locator, column: Optional[int], cell_count: int) -> str:
        if column is None or column < 0 or column >= cell_count:
            return ""
        return (cells.nth(column).inner_text() or "").strip()

    def read_cells(self, cells: Locator, cell_count: int) -> Record:
        """Values available straight from the grid row."""

        record = Record(recording_date=self._cell_text(cells, self.grid.file_date_index, cell_count))
        mode = self.criteria.mode
        if mode is SearchMode.BY_BOOK_PAGE and cell_count >= 4:
            doc_type = self._cell_text(cells, 1, cell_count)
            book = self._cell_text(cells, 2, cell_count)
            page = self._cell_text(cells, 3, cell_count)
            record = replace(
                record,
                document_type=doc_type,
                book_type=doc_type,
                book=book,
                page=page,
                document_number=f"{book}-{page}".rstrip("-"),
            )
        elif mode is SearchMode.BY_PRE1980 and cell_count >= 4:
            doc_type = self._cell_text(cells, 1, cell_count)
            record = replace(
                record,
                document_type=doc_type,
                book_type=doc_type,
                document_number=self._cell_text(cells, 2, cell_count),
            )
        return record

    def artifact_name(self, record: Record, title: str, file_number_text: str, row_number: int) -> str:
        mode = self.criteria.mode
        if mode is SearchMode.BY_BOOK_PAGE and record.book:
            name = sanitize_artifact_name(f"{record.book}_{record.page}".rstrip("_"))
        elif mode is SearchMode.BY_PRE1980 and record.document_number:
            name = sanitize_artifact_name(record.document_number)
        else:
            name = sanitize_artifact_name(artifact_base_from_title(title) or file_number_text)
        return name or f"row{row_number}"

    def save_images(self, images: DocumentImageSet) -> Optional[str]:
        """Compose and store one image set; return its link under export mode All."""

        if not len(images):
            log_line(f"[IMAGES] {images.name}: no pages captured; nothing saved.")
            return None
        data = self.compose(images.pages)
        key = images.artifact_key(self.run_date)
        try:
            self.store.save(key, data)
        except SinkError as exc:
            raise SinkError(f"Image save failed for {key}: {exc}", error_code=ErrorCode.IMAGE_SAVE_FAILED) from exc
        log_line(f"[IMAGES] Saved multi-page TIF ({len(images)} pages): {key}")
        if self.criteria.export_mode.exports_links:
            return self.store.url_for(key)
        return None

    def _capture_folders(self, viewer: DocumentViewer, folder_frame: Any, row_number: int) -> list[str]:
        links: list[str] = []
        count = viewer.folder_count(folder_frame)
        log_line(f"[IMAGES] Row {row_number}: {count} folder(s) in selection list.")
        for folder in range(count):
            name = f"row{row_number}_sel{folder + 1}"
            try:
                if not viewer.open_folder(folder_frame, folder):
                    continue
                frame = viewer.find_viewer_frame()
                if frame is None:
                    raise ViewerError(f"Viewer frame not found for {name}")
                link = self.save_images(viewer.capture_document(frame, name, folder_index=folder + 1))
                if link:
                    links.append(link)
            except FOLDER_ERRORS as exc:
                code = getattr(exc, "error_code", ErrorCode.IMAGE_SAVE_FAILED)
                self.folder_failures.append({"row": row_number, "folder": folder + 1, "error_code": code, "reason": str(exc)})
                _scraper_event("error", phase="images", row=row_number, folder=folder + 1, error_code=code, error=str(exc))
                log_line(f"[IMAGES] Row {row_number} folder {folder + 1} skipped: {exc}")
        return links

    def capture_images(self, cells: Locator, record: Record, file_number_text: str, row_number: int) -> list[str]:
        """Open the row's viewer popup and save every document it shows."""

        link = cells.nth(self.grid.image_index).locator("a").first
        if link.count() == 0:
            return []

        self.session.grant_viewer_permissions()
        self.page.bring_to_front()
        wait_seconds(self.page, 0.3)
        with self.session.context.expect_page(timeout=config.PLAYWRIGHT_POPUP_TIMEOUT_SECONDS * 1000) as popup:
            link.click()
        image_page = popup.value

        try:
            image_page.bring_to_front()
            image_page.set_default_timeout(config.PLAYWRIGHT_VIEWER_PAGE_TIMEOUT_SECONDS * 1000)
            image_page.wait_for_load_state("domcontentloaded")
            wait_seconds(image_page, config.POPUP_SETTLE_SECONDS)
            image_page.wait_for_load_state("networkidle")
            wait_seconds(image_page, config.POPUP_IDLE_SETTLE_SECONDS)

            viewer = DocumentViewer(image_page)
            folder_frame = viewer.folder_list_frame()
            if folder_frame is not None:
                return self._capture_folders(viewer, folder_frame, row_number)

            name = self.artifact_name(record, image_page.title(), file_number_text, row_number)
            link_url = self.save_images(viewer.capture_direct(name))
            return [link_url] if link_url else []
        finally:
            try:
                image_page.close()
            except PWError as exc:
                log_line(f"[IMAGES] Could not close viewer page: {exc}")
            self.page.bring_to_front()
            wait_seconds(self.page, 0.5)

    def return_to_grid(self) -> None:
        """Leave a same-tab detail page and wait for the results table again.

        Runs whether or not the detail read succeeded. Raises
        :class:`GridUnavailableError` when the table does not come back, since
        no later row can be read from a page that is not the grid.
        """

        if DETAIL_URL_MARKER not in (self.page.url or "").lower():
            return
        try:
            self.page.go_back(wait_until="networkidle")
            self.page.wait_for_selector(
                self.grid.table_selector,
                timeout=config.PLAYWRIGHT_TABLE_RETURN_TIMEOUT_SECONDS * 1000,
            )
        except PWError as exc:
            _scraper_event("error", phase="return_to_grid", error_code=ErrorCode.NAVIGATION_TIMEOUT, error=str(exc))
            raise GridUnavailableError(f"Results grid could not be restored: {exc}") from exc
        wait_seconds(self.page, 0.5)

    def _parse(self, html: str) -> DetailFields:
        return self.parser_factory(html).parse()

    def read_detail(self, cells: Locator, cell_count: int) -> Optional[DetailFields]:
        """Open the row's detail page and parse it; ``None`` when there is no link."""

        column = self.grid.file_number_index
        if column is None or column >= cell_count:
            return None
        target = cells.nth(column).locator(DETAIL_TARGET_SELECTOR).first
        if target.count() == 0:
            return None

        fields_timeout = config.PLAYWRIGHT_DETAIL_FIELDS_TIMEOUT_SECONDS * 1000
        if self.criteria.mode.submits_form:
            try:
                with self.page.expect_navigation(
                    url=lambda url: DETAIL_URL_MARKER in url.lower(),
                    timeout=config.PLAYWRIGHT_DETAIL_NAV_TIMEOUT_SECONDS * 1000,
                ):
                    target.click()
                self.page.wait_for_selector(DETAIL_READY_SELECTOR, timeout=fields_timeout)
                return self._parse(self.page.content())
            finally:
                self.return_to_grid()

        with self.session.context.expect_page(timeout=config.PLAYWRIGHT_DETAIL_NAV_TIMEOUT_SECONDS * 1000) as opened:
            target.click(modifiers=["Control"])
        detail_page = opened.value
        try:
            detail_page.wait_for_selector(DETAIL_READY_SELECTOR, timeout=fields_timeout)
            return self._parse(detail_page.content())
        finally:
            detail_page.close()

    @staticmethod
    def merge_detail(record: Record, detail: Optional[DetailFields]) -> Record:
        if detail is None:
            return record
        updates = {name: value for name, value in vars(detail).items() if value}
        return replace(record, **updates)

    def extract(self, index: int) -> Optional[Record]:
        """Build the record for row ``index`` (0-based).

        Returns ``None`` for rows without cells (spacer rows); raises
        :class:`RowExtractionError` when the row cannot be completed.
        """

        row_number = index + 1
        self.folder_failures = []
        try:
            cells = self._cells(index)
            cell_count = cells.count()
            if cell_count == 0:
                return None

            record = self.read_cells(cells, cell_count)
            file_number_text = self._cell_text(cells, self.grid.file_number_index, cell_count)

            links: list[str] = []
            if self.images_enabled and (self.grid.image_index or 0) < cell_count:
                links = self.capture_images(cells, record, file_number_text, row_number)

            record = self.merge_detail(record, self.read_detail(cells, cell_count))
        except PWTimeout as exc:
            raise RowExtractionError(f"Row {row_number} timed out: {exc}", error_code=ErrorCode.NAVIGATION_TIMEOUT) from exc
        except (ViewerError, SinkError) as exc:
            raise RowExtractionError(f"Row {row_number}: {exc}", error_code=exc.error_code) from exc
        except PWError as exc:
            raise RowExtractionError(f"Row {row_number}: {exc}", error_code=ErrorCode.DETAIL_UNAVAILABLE) from exc

        if links:
            record = replace(record, image_links=join_links(links))
        return record


__all__ = [
    "RowExtractor",
    "RowExtractionError",
    "GridUnavailableError",
    "artifact_base_from_title",
    "DETAIL_TARGET_SELECTOR",
    "DETAIL_URL_MARKER",
]

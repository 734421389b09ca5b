"""Document viewer pagination.

The image link on a results row opens a popup that holds either the viewer
itself or a "folder" list (``#primaryHitlist_grid``) whose rows each open a
viewer. A viewer frame shows one page at a time in ``img.document-image`` and
advances with ``#next-page .button-item`` until that button reports
``aria-disabled="true"``.
"""
from __future__ import annotations

import base64
import binascii
from typing import Callable, Optional

from playwright.sync_api import Error as PWError, Frame, Page

from . import config
from .error_codes import ErrorCode
from .logging_utils import _scraper_event
from .models import DocumentImageSet
from .retry_policy import poll_until
from .session import wait_seconds
from .utils import log_line

FOLDER_LIST_SELECTOR = "#DocumentSelectList, #primaryHitlist_grid"
FOLDER_ROWS_SELECTOR = "#primaryHitlist_grid tbody tr"
VIEWER_MARKER_SELECTOR = "#htmlViewer, img.document-image"
DOCUMENT_IMAGE_SELECTOR = "img.document-image"
NEXT_PAGE_SELECTOR = "#next-page .button-item"

IMAGE_READY_SCRIPT = """
() => {
    const img = document.querySelector('img.document-image');
    return !!(img && img.complete && img.naturalWidth > 0);
}
"""

CANVAS_CAPTURE_SCRIPT = """
() => {
    const img = document.querySelector('img.document-image');
    if (!img?.src || img.naturalWidth === 0) return null;
    const canvas = document.createElement('canvas');
    canvas.width = img.naturalWidth;
    canvas.height = img.naturalHeight;
    const ctx = canvas.getContext('2d');
    if (!ctx) return null;
    ctx.drawImage(img, 0, 0);
    const dataUrl = canvas.toDataURL('image/png');
    return dataUrl ? dataUrl.split(',')[1] : null;
}
"""


class ViewerError(Exception):
    def __init__(self, message: str, *, error_code: str = ErrorCode.VIEWER_NOT_FOUND) -> None:
        super().__init__(message)
        self.error_code = error_code


def _frame_has(frame: Frame, selector: str) -> bool:
    try:
        return bool(frame.evaluate("(sel) => !!document.querySelector(sel)", selector))
    except PWError:
        return False


class DocumentViewer:
    """Drive one viewer popup page."""

    def __init__(self, page: Page, *, sleep: Optional[Callable[[float], None]] = None) -> None:
        self.page = page
        self._sleep = sleep or (lambda seconds: wait_seconds(page, seconds))

    def folder_list_frame(self) -> Optional[Frame]:
        for frame in self.page.frames:
            if _frame_has(frame, FOLDER_LIST_SELECTOR):
                return frame
        return None

    def _viewer_frame_once(self) -> Optional[Frame]:
        for frame in self.page.frames:
            if _frame_has(frame, VIEWER_MARKER_SELECTOR):
                return frame
        return None

    def find_viewer_frame(self) -> Optional[Frame]:
        return poll_until(
            self._viewer_frame_once,
            attempts=config.VIEWER_FRAME_ATTEMPTS,
            interval_seconds=config.VIEWER_FRAME_INTERVAL_SECONDS,
            sleep=self._sleep,
            label="viewer_frame",
        )

    def _image_ready(self, frame: Frame) -> bool:
        return bool(frame.evaluate(IMAGE_READY_SCRIPT))

    def wait_image_ready(self, frame: Frame, *, attempts: int, interval_seconds: float) -> bool:
        ready = poll_until(
            lambda: self._image_ready(frame),
            attempts=attempts,
            interval_seconds=interval_seconds,
            sleep=self._sleep,
            label="image_ready",
        )
        return bool(ready)

    def capture_page(self, frame: Frame) -> Optional[bytes]:
        """Return the current page as PNG bytes via an in-frame canvas."""

        encoded = frame.evaluate(CANVAS_CAPTURE_SCRIPT)
        if not encoded:
            return None
        try:
            return base64.b64decode(encoded)
        except (binascii.Error, ValueError):
            log_line("[VIEWER] Canvas capture returned invalid base64; skipping page.")
            return None

    def _next_disabled(self, frame: Frame) -> bool:
        disabled = frame.locator(NEXT_PAGE_SELECTOR).first.get_attribute("aria-disabled")
        return (disabled or "").strip().lower() == "true"

    def capture_document(self, frame: Frame, name: str, *, folder_index: Optional[int] = None) -> DocumentImageSet:
        """Capture every page of the open document in viewer order."""

        frame.wait_for_selector(
            DOCUMENT_IMAGE_SELECTOR,
            state="visible",
            timeout=config.PLAYWRIGHT_VIEWER_IMAGE_TIMEOUT_SECONDS * 1000,
        )
        self.wait_image_ready(
            frame,
            attempts=config.IMAGE_READY_ATTEMPTS,
            interval_seconds=config.IMAGE_READY_INTERVAL_SECONDS,
        )
        self._sleep(2.0)

        images = DocumentImageSet(name=name, folder_index=folder_index)
        images.add(self.capture_page(frame))

        advances = 0
        while not self._next_disabled(frame):
            if advances >= config.VIEWER_MAX_PAGES:
                log_line(f"[VIEWER] {name}: stopped after {advances} page advances.")
                break
            frame.locator(NEXT_PAGE_SELECTOR).first.click()
            advances += 1
            self._sleep(config.NEXT_PAGE_SETTLE_SECONDS)
            self.wait_image_ready(
                frame,
                attempts=config.NEXT_IMAGE_READY_ATTEMPTS,
                interval_seconds=config.NEXT_IMAGE_READY_INTERVAL_SECONDS,
            )
            images.add(self.capture_page(frame))

        _scraper_event("viewer", phase="capture", name=name, pages=len(images), folder=folder_index)
        return images

    def folder_count(self, frame: Frame) -> int:
        return frame.locator(FOLDER_ROWS_SELECTOR).count()

    def open_folder(self, frame: Frame, index: int) -> bool:
        """Open the folder at ``index``; ``False`` when the row has no cell."""

        cell = frame.locator(FOLDER_ROWS_SELECTOR).nth(index).locator("td").first
        if cell.count() == 0:
            return False
        try:
            cell.dblclick()
        except PWError as exc:
            log_line(f"[VIEWER] Folder {index + 1} double-click failed ({exc}); trying two clicks.")
            cell.click()
            self._sleep(0.2)
            cell.click()
        return True

    def capture_direct(self, name: str) -> DocumentImageSet:
        """Capture the document shown directly in the popup."""

        frame = self.find_viewer_frame() or self.page.main_frame
        return self.capture_document(frame, name)


__all__ = [
    "DocumentViewer",
    "ViewerError",
    "CANVAS_CAPTURE_SCRIPT",
    "IMAGE_READY_SCRIPT",
]

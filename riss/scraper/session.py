"""Playwright browser and portal session helpers.

A :class:`PortalSession` owns one browser context and its primary page. The
search orchestrator creates a fresh one per attempt and hands it to the row
extractor; whoever holds it last is responsible for ``close()``.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from playwright.sync_api import (
    Browser,
    BrowserContext,
    Dialog,
    Error as PWError,
    Page,
    Playwright,
)

from . import config
from .logging_utils import _scraper_event
from .utils import log_line

CLIPBOARD_PERMISSIONS = ["clipboard-read", "clipboard-write"]
VIEWER_PERMISSIONS = ["clipboard-read", "clipboard-write", "storage-access"]


def wait_seconds(page: Optional[Page], seconds: float) -> None:
    """Wait safely for ``seconds`` only if *page* remains open."""

    if page is None:
        return

    if seconds is None or seconds <= 0:
        return

    if not page.is_closed():
        page.wait_for_timeout(int(seconds * 1000))


def is_target_closed_error(exc: Exception) -> bool:
    """Return ``True`` if *exc* indicates the Playwright target is gone."""

    message = str(exc)
    return any(
        marker in message
        for marker in (
            "Target closed",
            "Target crashed",
            "has been closed",
            "Execution context was destroyed",
        )
    )


def launch_browser(pw: Playwright, *, headless: Optional[bool] = None) -> Browser:
    """Launch Chromium with the hardened argument list."""

    effective_headless = config.HEADLESS if headless is None else headless
    log_line(f"[RUN] Launching Chromium (headless={effective_headless})...")
    return pw.chromium.launch(
        headless=effective_headless,
        timeout=config.PLAYWRIGHT_DEFAULT_TIMEOUT_SECONDS * 1000,
        args=list(config.BROWSER_ARGS),
    )


def _accept_dialog(dialog: Dialog) -> None:
    try:
        dialog.accept()
    except PWError as exc:
        _scraper_event("state", phase="dialog", kind="accept_failed", error=str(exc))


def attach_dialog_handler(page: Page) -> None:
    """Auto-accept alerts and confirms so they never block a wait."""

    page.on("dialog", _accept_dialog)


@dataclass
class PortalSession:
    context: BrowserContext
    page: Page
    viewer_permissions_granted: bool = False

    def grant_viewer_permissions(self) -> None:
        """Grant clipboard and storage access to the document viewer origin once."""

        if self.viewer_permissions_granted:
            return
        try:
            self.context.grant_permissions(VIEWER_PERMISSIONS, origin=config.VIEWER_ORIGIN)
        except PWError as exc:
            log_line(f"[VIEWER] Could not grant viewer permissions: {exc}")
        self.viewer_permissions_granted = True

    def close(self) -> None:
        try:
            self.context.close()
        except PWError as exc:
            if not is_target_closed_error(exc):
                log_line(f"[RUN] Error closing browser context: {exc}")


def open_portal_session(browser: Browser) -> PortalSession:
    """Create a fresh context and primary page configured for the portal."""

    context = browser.new_context(
        viewport=dict(config.VIEWPORT),
        ignore_https_errors=True,
        permissions=list(CLIPBOARD_PERMISSIONS),
    )
    context.set_default_timeout(config.PLAYWRIGHT_DEFAULT_TIMEOUT_SECONDS * 1000)
    context.set_default_navigation_timeout(config.PLAYWRIGHT_NAV_TIMEOUT_SECONDS * 1000)
    context.on("page", attach_dialog_handler)

    page = context.new_page()
    if page is None:
        raise RuntimeError("Failed to create Playwright page")
    attach_dialog_handler(page)
    page.set_default_timeout(config.PLAYWRIGHT_DEFAULT_TIMEOUT_SECONDS * 1000)
    return PortalSession(context=context, page=page)


__all__ = [
    "PortalSession",
    "attach_dialog_handler",
    "is_target_closed_error",
    "launch_browser",
    "open_portal_session",
    "wait_seconds",
]

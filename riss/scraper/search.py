"""Drive a portal session from the landing page to a loaded results grid.

One :meth:`SearchOrchestrator.run` call is one search attempt. Inside it a
rejected captcha restarts the whole sequence once with a fresh session; a
second rejection, or the portal's "Record Count Exceeds" message, raises
:class:`SearchFatalError`. Anything else escapes as-is and the caller decides
whether to try again.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional

from playwright.sync_api import Browser, Page

from . import config
from .captcha_capture import capture_captcha_image
from .captcha_client import CaptchaError, TwoCaptchaClient
from .criteria import CriteriaError, SearchCriteria
from .error_codes import ErrorCode
from .form_fillers import FormFiller, filler_for
from .grid import read_result_grid
from .logging_utils import _scraper_event
from .models import ResultGrid
from .session import PortalSession, open_portal_session, wait_seconds
from .utils import log_line, redact_url

DISCLAIMER_LABEL = "I AGREE TO THE LEGAL DISCLAIMER"
GUEST_BUTTON_TEXT = "Proceed to RISS as GUEST"
SEARCH_AREA_SELECTOR = "text=Search Public Records"
BAD_CAPTCHA_SELECTOR = "#badCaptcha"
RESULT_LIMIT_TEXT = "Record Count Exceeds"


class SearchError(Exception):
    def __init__(self, message: str, *, error_code: str = ErrorCode.INTERNAL) -> None:
        super().__init__(message)
        self.error_code = error_code


class SearchFatalError(SearchError):
    """The search can never succeed with these criteria; do not retry."""


@dataclass
class SearchResult:
    session: PortalSession
    grid: ResultGrid
    captcha_retries: int = 0


class SearchOrchestrator:
    def __init__(
        self,
        browser: Browser,
        criteria: SearchCriteria,
        *,
        filler: Optional[FormFiller] = None,
        open_session: Callable[[Browser], PortalSession] = open_portal_session,
        capture: Callable[[Page], Optional[bytes]] = capture_captcha_image,
        solver_factory: Callable[[str], TwoCaptchaClient] = TwoCaptchaClient,
        today: Optional[date] = None,
    ) -> None:
        self.browser = browser
        self.criteria = criteria
        self.filler = filler or filler_for(criteria.mode, today=today)
        self.open_session = open_session
        self.capture = capture
        self.solver_factory = solver_factory

    def run(self) -> SearchResult:
        for captcha_try in range(2):
            session = self.open_session(self.browser)
            try:
                grid = self.load_results(session.page)
            except BaseException:
                session.close()
                raise
            if grid is not None:
                return SearchResult(session=session, grid=grid, captcha_retries=captcha_try)

            session.close()
            if captcha_try == 0:
                log_line("[CAPTCHA] Reloading and retrying search one more time...")
                _scraper_event("search", phase="captcha_rejected", retry=True)

        _scraper_event("search", phase="captcha_rejected", retry=False)
        raise SearchFatalError(
            "Captcha was incorrect even after retrying once.",
            error_code=ErrorCode.CAPTCHA_REJECTED,
        )

    def open_landing(self, page: Page) -> None:
        """Accept the disclaimer, continue as guest and enter the search area."""

        field_timeout = config.PLAYWRIGHT_FORM_FIELD_TIMEOUT_SECONDS * 1000
        log_line(f"[SEARCH] Opening {config.PORTAL_URL}")
        page.goto(
            config.PORTAL_URL,
            wait_until="domcontentloaded",
            timeout=config.PLAYWRIGHT_LANDING_TIMEOUT_SECONDS * 1000,
        )

        disclaimer = page.get_by_label(DISCLAIMER_LABEL).or_(page.locator("input[type='checkbox']")).first
        disclaimer.wait_for(state="visible", timeout=field_timeout)
        disclaimer.check()
        wait_seconds(page, config.LANDING_STEP_SETTLE_SECONDS)

        guest = (
            page.get_by_role("button", name=GUEST_BUTTON_TEXT, exact=True)
            .or_(page.locator(f"button:has-text('{GUEST_BUTTON_TEXT}')"))
            .or_(page.locator(f"input[value='{GUEST_BUTTON_TEXT}']"))
            .first
        )
        guest.wait_for(state="visible", timeout=field_timeout)
        guest.click()
        wait_seconds(page, 2.0)

        search_area = page.locator(SEARCH_AREA_SELECTOR).first
        if search_area.count() > 0:
            search_area.click()
            wait_seconds(page, 3.0)

    def solve_captcha(self, page: Page) -> str:
        api_key = config.resolve_captcha_api_key(self.criteria.captcha_api_key)
        if not api_key:
            raise CriteriaError("Captcha required. Provide twoCaptchaApiKey.")
        image = self.capture(page)
        if not image:
            raise CaptchaError("Captcha image not found on the search form")
        solution = self.solver_factory(api_key).solve(image)
        if not solution.strip():
            raise CaptchaError("Captcha required but could not be solved.")
        return solution

    def captcha_rejected(self, page: Page) -> bool:
        marker = page.locator(BAD_CAPTCHA_SELECTOR).first
        return marker.count() > 0 and marker.is_visible()

    def check_result_limit(self, page: Page) -> None:
        message = page.get_by_text(RESULT_LIMIT_TEXT).first
        if message.count() == 0:
            return
        text = (message.inner_text() or "").strip() or RESULT_LIMIT_TEXT
        log_line(f"[RESULT] {text}")
        raise SearchFatalError(text, error_code=ErrorCode.RESULT_LIMIT_EXCEEDED)

    def load_results(self, page: Page) -> Optional[ResultGrid]:
        """Run one full pass; ``None`` means the portal rejected the captcha."""

        mode = self.criteria.mode
        self.open_landing(page)
        self.filler.select_tab(page)
        wait_seconds(page, 1.5)
        self.filler.wait_for_form(page)

        solution = self.solve_captcha(page) if mode.requires_captcha else None

        self.filler.fill(page, self.criteria)
        if solution:
            self.filler.fill_captcha(page, solution)
        self.filler.submit(page)
        page.wait_for_load_state("networkidle")
        log_line(f"[SEARCH] Page URL after submit: {redact_url(page.url)}")

        if mode.requires_captcha and self.captcha_rejected(page):
            log_line("[CAPTCHA] Incorrect captcha detected after submit.")
            return None

        self.check_result_limit(page)

        timeout = (
            config.PLAYWRIGHT_TABLE_TIMEOUT_FORM_SECONDS
            if mode.submits_form
            else config.PLAYWRIGHT_TABLE_TIMEOUT_DIRECT_SECONDS
        )
        page.wait_for_selector(self.filler.table_selector, timeout=timeout * 1000)
        return read_result_grid(page, self.filler.table_selector)


__all__ = ["SearchError", "SearchFatalError", "SearchOrchestrator", "SearchResult"]

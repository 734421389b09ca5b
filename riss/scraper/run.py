"""Run the scrape: search with retries, extract every row, export in batches."""
from __future__ import annotations

import argparse
import gc
import time
from datetime import date
from pathlib import Path
from typing import Any, Callable, List, Optional

from playwright.sync_api import Browser, sync_playwright

from . import config
from .apify_storage import DatasetSink, KeyValueStore, load_input, set_status_message
from .config_validation import validate_runtime_config
from .criteria import CriteriaError, SearchCriteria, parse_criteria
from .error_codes import ErrorCode
from .export_buffer import ExportBuffer
from .file_sink import DelimitedFileSink, output_path_for
from .logging_utils import _scraper_event
from .models import ResultGrid, RunOutcome
from .retry_policy import NON_RETRYABLE_ERROR_CODES, decide_retry
from .row_extractor import GridUnavailableError, RowExtractor
from .search import SearchOrchestrator, SearchResult
from .session import PortalSession, launch_browser
from .telemetry import RunTelemetry
from .utils import ensure_dirs, log_line, setup_run_logger


class PipelineDriver:
    """Top-level sequencing for one run against an already launched browser."""

    def __init__(
        self,
        browser: Browser,
        criteria: SearchCriteria,
        *,
        store: Optional[KeyValueStore] = None,
        dataset: Optional[DatasetSink] = None,
        file_sink: Optional[DelimitedFileSink] = None,
        telemetry: Optional[RunTelemetry] = None,
        orchestrator_factory: Callable[..., SearchOrchestrator] = SearchOrchestrator,
        extractor_factory: Callable[..., RowExtractor] = RowExtractor,
        status: Callable[..., None] = set_status_message,
        sleep: Callable[[float], None] = time.sleep,
        today: Optional[date] = None,
    ) -> None:
        self.browser = browser
        self.criteria = criteria
        self.run_date = criteria.date_for_filename(today)
        self.store = store or KeyValueStore()
        self.dataset = dataset or DatasetSink()
        self.file_sink = file_sink or DelimitedFileSink(output_path_for(self.run_date))
        self.telemetry = telemetry or RunTelemetry(criteria.mode.value)
        self.orchestrator_factory = orchestrator_factory
        self.extractor_factory = extractor_factory
        self.status = status
        self.sleep = sleep
        self.today = today
        self.outcome = RunOutcome()

    def search(self) -> Optional[SearchResult]:
        """Run the search up to ``SEARCH_MAX_ATTEMPTS`` times.

        Returns ``None`` after recording a fatal reason on the outcome.
        """

        max_attempts = config.SEARCH_MAX_ATTEMPTS
        for attempt in range(1, max_attempts + 1):
            self.status(f"Search attempt {attempt} of {max_attempts}...")
            try:
                return self.orchestrator_factory(self.browser, self.criteria, today=self.today).run()
            except Exception as exc:  # noqa: BLE001
                code = getattr(exc, "error_code", None) or ErrorCode.INTERNAL
                log_line(f"[SEARCH] [Attempt {attempt}] Search failed: {exc}")
                _scraper_event("error", phase="search", attempt=attempt, error_code=code, error=str(exc))
                if decide_retry(attempt, max_attempts, exc, error_code=code):
                    self.sleep(config.SEARCH_RETRY_DELAY_SECONDS)
                    continue
                if code in NON_RETRYABLE_ERROR_CODES:
                    self.outcome.abort(str(exc))
                else:
                    self.outcome.abort(str(exc), attempts=attempt)
                return None
        return None

    def _record_failure(self, row_number: int, exc: BaseException) -> None:
        code = getattr(exc, "error_code", None) or ErrorCode.INTERNAL
        self.outcome.record_failure()
        self.telemetry.add("failed", str(exc), {"row": row_number, "error_code": code})
        log_line(f"[ROW] Row {row_number} failed: {exc}")

    def process_rows(self, session: PortalSession, grid: ResultGrid) -> None:
        total = grid.row_count
        self.status(f"Processing {total} records...")
        log_line(
            f"[RUN] ExportMode={self.criteria.export_mode.value}, imageColIndex={grid.image_index}, "
            f"shouldDownloadImages={self.criteria.export_mode.exports_images and grid.has_image_column}"
        )

        self.file_sink.open()
        buffer = ExportBuffer(self.dataset, self.file_sink)
        extractor = self.extractor_factory(
            session,
            self.criteria,
            grid,
            store=self.store,
            run_date=self.run_date,
        )
        every = max(1, config.RESOURCE_RELEASE_EVERY)
        try:
            for index in range(total):
                row_number = index + 1
                if index % every == 0:
                    gc.collect()
                    self.status(f"Processing row {row_number} of {total}...")
                try:
                    record = extractor.extract(index)
                except GridUnavailableError as exc:
                    self._record_failure(row_number, exc)
                    raise
                except Exception as exc:  # noqa: BLE001
                    self._record_failure(row_number, exc)
                    continue
                finally:
                    for failure in extractor.folder_failures:
                        self.telemetry.add("image_failed", failure["reason"], dict(failure))

                if record is None:
                    log_line(f"[ROW] Row {row_number} has no cells; skipped.")
                    continue
                self.outcome.record_success()
                self.telemetry.add("succeeded", "", {"row": row_number})
                buffer.append(record)
        finally:
            buffer.flush()

    def run(self) -> RunOutcome:
        self.status(f"Starting scrape for {self.criteria.mode.value}...")
        _scraper_event("run", phase="start", **self.criteria.summary())

        result = self.search()
        if result is None:
            self.status(self.outcome.status_message, terminal=True)
            self.telemetry.finalize({"outcome": self.outcome.as_dict()})
            return self.outcome

        message: Optional[str] = None
        try:
            grid = result.grid
            self.outcome.total_rows = grid.row_count
            log_line(f"[RUN] Grid loaded. Found {grid.row_count} rows.")
            if grid.row_count > 0:
                self.process_rows(result.session, grid)
        except Exception as exc:  # noqa: BLE001
            code = getattr(exc, "error_code", None) or ErrorCode.INTERNAL
            log_line(f"[RUN] Row processing stopped: {exc}")
            _scraper_event("error", phase="rows", error_code=code, error=str(exc))
            message = self.outcome.interrupt(str(exc))
        finally:
            result.session.close()

        self.status(message or self.outcome.finish(), terminal=True)
        self.telemetry.finalize({"outcome": self.outcome.as_dict()})
        return self.outcome


def run_scrape(criteria: SearchCriteria, *, headless: Optional[bool] = None) -> RunOutcome:
    """Launch Chromium and run :class:`PipelineDriver` to completion."""

    ensure_dirs()
    with sync_playwright() as pw:
        browser = launch_browser(pw, headless=headless)
        try:
            return PipelineDriver(browser, criteria).run()
        finally:
            browser.close()


def _apply_overrides(payload: dict[str, Any], args: argparse.Namespace) -> dict[str, Any]:
    overrides = {
        "searchMode": args.mode,
        "exportMode": args.export_mode,
        "startDate": args.start_date,
        "endDate": args.end_date,
    }
    merged = dict(payload)
    for key, value in overrides.items():
        if value is None:
            continue
        for existing in [k for k in merged if k.lower() == key.lower()]:
            del merged[existing]
        merged[key] = value
    return merged


def _cli_entrypoint(argv: Optional[List[str]] = None) -> int:  # pragma: no cover
    parser = argparse.ArgumentParser(description="Scrape Montgomery County OH land records (RISS)")
    parser.add_argument("--input", type=Path, default=None, help="Path to an input JSON file")
    parser.add_argument("--mode", default=None, help="Search mode, e.g. ByDate or ByName")
    parser.add_argument("--export-mode", default=None, choices=["ExportDataOnly", "ExportImageOnly", "All"])
    parser.add_argument("--start-date", default=None, help="yyyy-MM-dd")
    parser.add_argument("--end-date", default=None, help="yyyy-MM-dd")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    args = parser.parse_args(argv)

    ensure_dirs()
    setup_run_logger()

    try:
        payload = _apply_overrides(dict(load_input(args.input)), args)
        criteria = parse_criteria(payload)
        validate_runtime_config("cli", criteria=criteria)
    except CriteriaError as exc:
        set_status_message(f"Validation Error: {exc}", terminal=True)
        return 2

    log_line(f"[RUN] Criteria: {criteria.summary()}")
    outcome = run_scrape(criteria, headless=False if args.headed else None)
    return 1 if outcome.is_fatal else 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(_cli_entrypoint())

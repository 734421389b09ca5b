from pathlib import Path
from typing import Optional

import pytest

from riss.scraper import config, row_extractor, run
from riss.scraper.criteria import SearchCriteria, SearchMode
from riss.scraper.error_codes import ErrorCode
from riss.scraper.models import Record, ResultGrid
from riss.scraper.row_extractor import DETAIL_READY_SELECTOR, DETAIL_TARGET_SELECTOR, RowExtractionError
from riss.scraper.run import PipelineDriver
from riss.scraper.search import SearchError, SearchFatalError, SearchResult
from riss.scraper.session import PortalSession
from riss.scraper.telemetry import RunTelemetry
from tests.fakes import FakeContext, FakeNode, FakePage

CRITERIA = SearchCriteria(mode=SearchMode.BY_NAME, last_name="SMITH", start_date="2024-03-01")


class _Dataset:
    def __init__(self) -> None:
        self.batches: list[list[dict]] = []

    def push(self, items):  # noqa: ANN001, ANN201
        self.batches.append(list(items))
        return len(self.batches[-1])


class _File:
    def __init__(self) -> None:
        self.opened = 0
        self.batches: list[list[Record]] = []

    def open(self) -> None:
        self.opened += 1

    def append(self, records):  # noqa: ANN001, ANN201
        self.batches.append(list(records))
        return len(self.batches[-1])


class _Extractor:
    """Returns one record per row; rows listed in ``failures`` raise."""

    def __init__(self, session, criteria, grid, *, store, run_date, failures=(), blanks=()) -> None:  # noqa: ANN001
        self.run_date = run_date
        self.failures = set(failures)
        self.blanks = set(blanks)
        self.folder_failures: list[dict] = []
        self.seen: list[int] = []

    def extract(self, index: int) -> Optional[Record]:
        self.seen.append(index)
        self.folder_failures = []
        if index in self.failures:
            raise RowExtractionError(f"Row {index + 1} timed out", error_code=ErrorCode.NAVIGATION_TIMEOUT)
        if index in self.blanks:
            return None
        if index == 0:
            self.folder_failures = [{"row": 1, "folder": 2, "error_code": "viewer_not_found", "reason": "no frame"}]
        return Record(document_number=f"DOC{index + 1}")


class _Orchestrators:
    """Factory returning scripted search outcomes, one per attempt."""

    def __init__(self, outcomes: list) -> None:  # noqa: ANN001
        self.outcomes = list(outcomes)
        self.calls = 0

    def __call__(self, browser, criteria, *, today=None):  # noqa: ANN001, ANN204
        self.calls += 1
        outcome = self.outcomes.pop(0)
        factory = self

        class _Orchestrator:
            def run(self) -> SearchResult:
                if isinstance(outcome, BaseException):
                    raise outcome
                return outcome

        factory.last = _Orchestrator()
        return factory.last


def _result(rows: int) -> SearchResult:
    session = PortalSession(context=FakeContext(), page=FakePage())
    grid = ResultGrid(table_selector="table.table-select", headers=("FILE NUMBER",), row_count=rows, file_number_index=0)
    return SearchResult(session=session, grid=grid)


def _driver(tmp_path: Path, orchestrators: _Orchestrators, **extractor_kwargs) -> tuple[PipelineDriver, dict]:  # noqa: ANN003
    state: dict = {"statuses": [], "sleeps": [], "extractors": []}

    def _status(message: str, *, terminal: bool = False) -> None:
        state["statuses"].append((message, terminal))

    def _extractor_factory(*args, **kwargs):  # noqa: ANN002, ANN003, ANN202
        extractor = _Extractor(*args, **kwargs, **extractor_kwargs)
        state["extractors"].append(extractor)
        return extractor

    state["dataset"] = _Dataset()
    state["file"] = _File()
    driver = PipelineDriver(
        None,
        CRITERIA,
        store=object(),
        dataset=state["dataset"],
        file_sink=state["file"],
        telemetry=RunTelemetry(CRITERIA.mode.value, runs_dir=tmp_path / "runs"),
        orchestrator_factory=orchestrators,
        extractor_factory=_extractor_factory,
        status=_status,
        sleep=state["sleeps"].append,
    )
    return driver, state


@pytest.fixture(autouse=True)
def _quiet(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(run, "log_line", lambda _msg: None)
    monkeypatch.setattr(config, "SEARCH_MAX_ATTEMPTS", 3)
    monkeypatch.setattr(config, "SEARCH_RETRY_DELAY_SECONDS", 5)
    monkeypatch.setattr(config, "EXPORT_BATCH_SIZE", 10)
    monkeypatch.setattr(config, "RESOURCE_RELEASE_EVERY", 10)


def test_twelve_rows_export_in_two_batches(tmp_path: Path) -> None:
    result = _result(12)
    driver, state = _driver(tmp_path, _Orchestrators([result]))

    outcome = driver.run()

    assert (outcome.attempted, outcome.succeeded, outcome.failed) == (12, 12, 0)
    assert outcome.status_message == "Finished! Total 12 requests: 12 succeeded, 0 failed."
    assert [len(b) for b in state["dataset"].batches] == [10, 2]
    assert [len(b) for b in state["file"].batches] == [10, 2]
    assert state["file"].opened == 1
    assert state["statuses"][-1] == (outcome.status_message, True)
    assert ("Processing 12 records...", False) in state["statuses"]
    assert ("Processing row 11 of 12...", False) in state["statuses"]
    assert result.session.context.closed
    assert state["extractors"][0].run_date == "03-01-2024"


def test_zero_rows_touches_no_sink(tmp_path: Path) -> None:
    driver, state = _driver(tmp_path, _Orchestrators([_result(0)]))

    outcome = driver.run()

    assert outcome.status_message == "Finished: No records found for the given criteria."
    assert state["dataset"].batches == []
    assert state["file"].opened == 0
    assert state["extractors"] == []


def test_failed_row_does_not_stop_the_run(tmp_path: Path) -> None:
    driver, state = _driver(tmp_path, _Orchestrators([_result(5)]), failures=(2,), blanks=(4,))

    outcome = driver.run()

    assert (outcome.attempted, outcome.succeeded, outcome.failed) == (4, 3, 1)
    assert state["extractors"][0].seen == [0, 1, 2, 3, 4]
    assert [r.document_number for r in state["file"].batches[0]] == ["DOC1", "DOC2", "DOC4"]
    summary = driver.telemetry.summary
    assert summary["count_failed"] == 1
    assert summary["count_succeeded"] == 3
    assert summary["count_image_failed"] == 1
    assert not outcome.is_fatal


def test_retryable_search_failures_use_all_attempts(tmp_path: Path) -> None:
    error = SearchError("Timeout waiting for results table", error_code=ErrorCode.NAVIGATION_TIMEOUT)
    orchestrators = _Orchestrators([error, error, error])
    driver, state = _driver(tmp_path, orchestrators)

    outcome = driver.run()

    assert orchestrators.calls == 3
    assert state["sleeps"] == [5, 5]
    assert outcome.is_fatal
    assert outcome.status_message == (
        "Fatal Error during search after 3 attempts: Timeout waiting for results table"
    )
    assert state["statuses"][-1] == (outcome.status_message, True)
    assert [m for m, _ in state["statuses"] if m.startswith("Search attempt")] == [
        "Search attempt 1 of 3...",
        "Search attempt 2 of 3...",
        "Search attempt 3 of 3...",
    ]
    assert state["dataset"].batches == []


def test_search_recovers_on_second_attempt(tmp_path: Path) -> None:
    orchestrators = _Orchestrators([RuntimeError("portal hiccup"), _result(1)])
    driver, state = _driver(tmp_path, orchestrators)

    outcome = driver.run()

    assert orchestrators.calls == 2
    assert state["sleeps"] == [5]
    assert outcome.succeeded == 1 and not outcome.is_fatal


@pytest.mark.parametrize(
    "error",
    [
        SearchFatalError("Record Count Exceeds 1000", error_code=ErrorCode.RESULT_LIMIT_EXCEEDED),
        SearchFatalError("Captcha was incorrect even after retrying once.", error_code=ErrorCode.CAPTCHA_REJECTED),
    ],
)
def test_fatal_search_errors_abort_immediately(tmp_path: Path, error: SearchFatalError) -> None:
    orchestrators = _Orchestrators([error, _result(3)])
    driver, state = _driver(tmp_path, orchestrators)

    outcome = driver.run()

    assert orchestrators.calls == 1
    assert state["sleeps"] == []
    assert outcome.status_message == f"Error: {error}"
    assert outcome.attempted == 0


def test_telemetry_written_at_end(tmp_path: Path) -> None:
    driver, _ = _driver(tmp_path, _Orchestrators([_result(2)]))

    driver.run()

    files = list((tmp_path / "runs").glob("run_*.json"))
    assert len(files) == 1
    assert '"succeeded": 2' in files[0].read_text(encoding="utf-8")


DETAIL_HTML = (
    '<div class="input-group"><span class="informationTitle">INSTRUMENT</span>'
    '<div class="informationData">2024-00{n}</div></div>'
)


def _portal_rows(page: FakePage, slow_rows: set[int]) -> list[FakeNode]:
    def _click(index: int):  # noqa: ANN202
        def _on_click(_kwargs) -> None:  # noqa: ANN001
            page._content = DETAIL_HTML.format(n=index + 1)
            if index in slow_rows:
                page.missing_selectors.add(DETAIL_READY_SELECTOR)
            else:
                page.missing_selectors.discard(DETAIL_READY_SELECTOR)

        return _on_click

    rows = []
    for index in range(3):
        target = FakeNode(on_click=_click(index))
        rows.append(FakeNode(children={"td": [FakeNode(text=f"F{index + 1}", children={DETAIL_TARGET_SELECTOR: [target]})]}))
    return rows


def _real_driver(tmp_path: Path, page: FakePage, rows: int = 3) -> tuple[PipelineDriver, dict]:
    state: dict = {"statuses": [], "dataset": _Dataset(), "file": _File()}
    session = PortalSession(context=FakeContext(), page=page)
    grid = ResultGrid(table_selector="table.table-select", headers=("FILE NUMBER",), row_count=rows, file_number_index=0)

    def _status(message: str, *, terminal: bool = False) -> None:
        state["statuses"].append((message, terminal))

    driver = PipelineDriver(
        None,
        CRITERIA,
        store=object(),
        dataset=state["dataset"],
        file_sink=state["file"],
        telemetry=RunTelemetry(CRITERIA.mode.value, runs_dir=tmp_path / "runs"),
        orchestrator_factory=_Orchestrators([SearchResult(session=session, grid=grid)]),
        status=_status,
        sleep=lambda _s: None,
    )
    return driver, state


def test_detail_failure_after_navigation_keeps_later_rows(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(row_extractor, "log_line", lambda _msg: None)
    page = FakePage(navigates_to="https://riss.mcrecorder.org/docinfo.cfm?id=1")
    page.selectors["table.table-select tbody tr"] = _portal_rows(page, slow_rows={0})
    driver, state = _real_driver(tmp_path, page)

    outcome = driver.run()

    assert (outcome.attempted, outcome.succeeded, outcome.failed) == (3, 2, 1)
    assert outcome.status_message == "Finished! Total 3 requests: 2 succeeded, 1 failed."
    assert page.calls.count("go_back") == 3
    assert [r.document_number for r in state["file"].batches[0]] == ["2024-002", "2024-003"]


def test_lost_grid_stops_the_run_with_counts(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(row_extractor, "log_line", lambda _msg: None)
    page = FakePage(navigates_to="https://riss.mcrecorder.org/docinfo.cfm?id=1")
    page.selectors["table.table-select tbody tr"] = _portal_rows(page, slow_rows={0})
    page.missing_selectors.add("table.table-select")
    driver, state = _real_driver(tmp_path, page)

    outcome = driver.run()

    assert (outcome.attempted, outcome.failed) == (1, 1)
    assert outcome.is_fatal
    assert outcome.status_message.startswith("Stopped after 1 of 3 requests: 0 succeeded, 1 failed.")
    assert "Results grid could not be restored" in outcome.status_message
    assert state["statuses"][-1] == (outcome.status_message, True)
    assert list((tmp_path / "runs").glob("run_*.json"))


def test_file_sink_failure_still_reports_terminal_status(tmp_path: Path) -> None:
    driver, state = _driver(tmp_path, _Orchestrators([_result(2)]))

    def _broken_open() -> None:
        raise OSError("disk full")

    state["file"].open = _broken_open

    outcome = driver.run()

    assert outcome.is_fatal
    assert outcome.status_message == "Stopped after 0 of 2 requests: 0 succeeded, 0 failed. Reason: disk full"
    assert state["statuses"][-1] == (outcome.status_message, True)
    assert state["extractors"] == []
    files = list((tmp_path / "runs").glob("run_*.json"))
    assert len(files) == 1
    assert '"fatal_reason": "disk full"' in files[0].read_text(encoding="utf-8")

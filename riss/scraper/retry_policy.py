from __future__ import annotations

import time
from typing import Callable, Optional, TypeVar

from .error_codes import ErrorCode
from .logging_utils import _scraper_event

T = TypeVar("T")

RETRYABLE_ERROR_CODES = {
    ErrorCode.NETWORK,
    ErrorCode.HTTP_5XX,
    ErrorCode.RATE_LIMIT,
    ErrorCode.NAVIGATION_TIMEOUT,
    ErrorCode.CAPTCHA_UNSOLVED,
}

NON_RETRYABLE_ERROR_CODES = {
    ErrorCode.HTTP_401,
    ErrorCode.HTTP_403,
    ErrorCode.HTTP_404,
    ErrorCode.HTTP_4XX,
    # Second rejection after the in-session retry; the run is over.
    ErrorCode.CAPTCHA_REJECTED,
    # The query is too broad; repeating it cannot help.
    ErrorCode.RESULT_LIMIT_EXCEEDED,
    ErrorCode.CONFIG_INVALID,
}


def compute_backoff_seconds(attempt_index: int) -> float:
    """Return a capped exponential backoff for the given attempt (1-based)."""

    return float(min(2 ** max(0, attempt_index - 1), 30))


def decide_retry(
    attempt_index: int,
    max_attempts: int,
    error: BaseException | None = None,
    *,
    error_code: Optional[str] = None,
    http_status: Optional[int] = None,
) -> bool:
    """Decide whether a failed attempt should be retried."""

    if attempt_index >= max_attempts:
        _scraper_event(
            "state",
            phase="retry_decision",
            kind="capped",
            attempt=attempt_index,
            max_attempts=max_attempts,
            error_code=error_code,
            http_status=http_status,
            will_retry=False,
        )
        return False

    code = (error_code or "").strip()
    if code in NON_RETRYABLE_ERROR_CODES:
        _scraper_event(
            "state",
            phase="retry_decision",
            kind="non_retryable",
            error_code=code,
            attempt=attempt_index,
            max_attempts=max_attempts,
            http_status=http_status,
            will_retry=False,
        )
        return False

    if code in RETRYABLE_ERROR_CODES:
        _scraper_event(
            "state",
            phase="retry_decision",
            kind="retryable",
            error_code=code,
            attempt=attempt_index,
            max_attempts=max_attempts,
            http_status=http_status,
            will_retry=True,
        )
        return True

    if http_status is not None and http_status >= 500:
        _scraper_event(
            "state",
            phase="retry_decision",
            kind="retryable",
            error_code=code or None,
            attempt=attempt_index,
            max_attempts=max_attempts,
            http_status=http_status,
            will_retry=True,
        )
        return True

    # Search-phase failures without a code (selector waits, portal hiccups)
    # get the remaining attempts; the session is rebuilt each time.
    _scraper_event(
        "state",
        phase="retry_decision",
        kind="unknown" if code else "missing_error_code",
        error_code=code or None,
        attempt=attempt_index,
        max_attempts=max_attempts,
        http_status=http_status,
        will_retry=True,
        error_repr=repr(error) if error is not None else None,
    )
    return True


def poll_until(
    probe: Callable[[], Optional[T]],
    *,
    attempts: int,
    interval_seconds: float,
    sleep: Callable[[float], None] = time.sleep,
    delay_first: bool = False,
    label: str = "poll",
) -> Optional[T]:
    """Call ``probe`` until it returns a truthy value or attempts run out.

    ``probe`` exceptions count as a miss for that attempt. Returns the first
    truthy value, or ``None`` when every attempt came back empty.
    """

    for attempt in range(1, max(1, attempts) + 1):
        if delay_first or attempt > 1:
            sleep(interval_seconds)
        try:
            value = probe()
        except Exception as exc:  # noqa: BLE001
            _scraper_event(
                "state",
                phase="poll",
                label=label,
                attempt=attempt,
                error=str(exc),
            )
            value = None
        if value:
            return value

    _scraper_event(
        "state",
        phase="poll",
        label=label,
        kind="exhausted",
        attempts=attempts,
        interval_seconds=interval_seconds,
    )
    return None


__all__ = [
    "decide_retry",
    "compute_backoff_seconds",
    "poll_until",
    "NON_RETRYABLE_ERROR_CODES",
    "RETRYABLE_ERROR_CODES",
]

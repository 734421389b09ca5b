from __future__ import annotations

from typing import Literal, Optional

from . import config
from .criteria import CriteriaError, SearchCriteria
from .logging_utils import _scraper_event
from .utils import log_line

Entrypoint = Literal["cli", "platform", "tests"]


def _raise_config_error(
    message: str, *, entrypoint: Entrypoint, error: str, mode: str | None
) -> None:
    _scraper_event(
        "error",
        phase="config",
        context="runtime_validation",
        error=error,
        entrypoint=entrypoint,
        mode=mode,
    )
    mode_fragment = f", mode={mode}" if mode else ""
    log_line(f"[CONFIG] {message} (entrypoint={entrypoint}{mode_fragment})")
    raise CriteriaError(message)


def _clamp_minimum(field_name: str, *, minimum: int, entrypoint: Entrypoint, mode: str | None) -> None:
    value = getattr(config, field_name)
    if value >= minimum:
        return
    _scraper_event(
        "state",
        phase="config",
        context="runtime_validation",
        kind="config_adjustment",
        field=field_name,
        value=value,
        adjusted=minimum,
        entrypoint=entrypoint,
        mode=mode,
    )
    log_line(f"[CONFIG] {field_name} < {minimum}; clamping to {minimum}.")
    setattr(config, field_name, minimum)


def validate_runtime_config(
    entrypoint: Entrypoint, *, criteria: Optional[SearchCriteria] = None
) -> None:
    """Validate runtime configuration for the given entrypoint.

    Raises :class:`CriteriaError` (a ``ValueError``) when a blocking
    misconfiguration is detected. Non-fatal adjustments such as clamping the
    batch size are logged but do not raise.
    """

    mode = criteria.mode.value if criteria is not None else None

    _clamp_minimum("EXPORT_BATCH_SIZE", minimum=1, entrypoint=entrypoint, mode=mode)
    _clamp_minimum("SEARCH_MAX_ATTEMPTS", minimum=1, entrypoint=entrypoint, mode=mode)

    if config.SEARCH_RETRY_DELAY_SECONDS < 0:
        _raise_config_error(
            "RISS_SEARCH_RETRY_DELAY_SECONDS must be non-negative.",
            entrypoint=entrypoint,
            error="search_retry_delay_invalid",
            mode=mode,
        )

    timeout_fields = [
        ("PLAYWRIGHT_DEFAULT_TIMEOUT_SECONDS", config.PLAYWRIGHT_DEFAULT_TIMEOUT_SECONDS),
        ("PLAYWRIGHT_NAV_TIMEOUT_SECONDS", config.PLAYWRIGHT_NAV_TIMEOUT_SECONDS),
        ("PLAYWRIGHT_FORM_FIELD_TIMEOUT_SECONDS", config.PLAYWRIGHT_FORM_FIELD_TIMEOUT_SECONDS),
        ("PLAYWRIGHT_TABLE_TIMEOUT_FORM_SECONDS", config.PLAYWRIGHT_TABLE_TIMEOUT_FORM_SECONDS),
        ("PLAYWRIGHT_TABLE_TIMEOUT_DIRECT_SECONDS", config.PLAYWRIGHT_TABLE_TIMEOUT_DIRECT_SECONDS),
        ("CAPTCHA_MAX_WAIT_SECONDS", config.CAPTCHA_MAX_WAIT_SECONDS),
        ("CAPTCHA_POLL_INTERVAL_SECONDS", config.CAPTCHA_POLL_INTERVAL_SECONDS),
    ]

    for field_name, value in timeout_fields:
        if value <= 0:
            _raise_config_error(
                f"{field_name} must be greater than zero.",
                entrypoint=entrypoint,
                error="invalid_timeout",
                mode=mode,
            )

    if criteria is not None and criteria.mode.requires_captcha:
        if not config.resolve_captcha_api_key(criteria.captcha_api_key):
            _raise_config_error(
                "ByDate and ByInstrument modes require captcha. Provide 'twoCaptchaApiKey' "
                "in input or set TWO_CAPTCHA_API_KEY env var.",
                entrypoint=entrypoint,
                error="captcha_key_missing",
                mode=mode,
            )


__all__ = ["validate_runtime_config", "Entrypoint"]

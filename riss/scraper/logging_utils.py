from __future__ import annotations

from typing import Any

from .utils import log_line


def _scraper_event(label: str = "", *, phase: str | None = None, **fields: Any) -> None:
    """Log one ``[SCRAPER][LABEL] key=value`` line for the run log.

    ``label`` names the component (``captcha``, ``export``, ``error`` ...);
    ``phase`` names the step within it and is added to the fields. A call with
    only ``phase`` uses it as the label. Field values are ``repr``'d and sorted
    by key so lines from different rows line up when grepped.
    """

    try:
        tag = (label or phase or "").upper()
        if label and phase:
            fields.setdefault("phase", phase)
        payload = ", ".join(f"{key}={value!r}" for key, value in sorted(fields.items()))
        log_line(f"[SCRAPER][{tag}] {payload}")
    except Exception:  # noqa: BLE001
        # Event logging must not fail a row.
        return


__all__ = ["_scraper_event"]

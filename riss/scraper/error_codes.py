from __future__ import annotations

"""Centralised error code taxonomy for scraper failures.

These codes are attached to raised exceptions, included in structured logs and
persisted in the run telemetry so that a failed row or an aborted search can be
explained after the fact. Keep them stable for reporting.
"""


class ErrorCode:
    NETWORK = "network_error"
    HTTP_4XX = "http_4xx"
    HTTP_401 = "http_401_unauthorised"
    HTTP_403 = "http_403_forbidden"
    HTTP_404 = "http_404_not_found"
    HTTP_5XX = "http_5xx"
    RATE_LIMIT = "rate_limit"
    NAVIGATION_TIMEOUT = "navigation_timeout"
    SITE_STRUCTURE = "site_structure_changed"
    CAPTCHA_UNSOLVED = "captcha_unsolved"
    CAPTCHA_REJECTED = "captcha_rejected"
    RESULT_LIMIT_EXCEEDED = "result_limit_exceeded"
    CONFIG_INVALID = "config_invalid"
    VIEWER_NOT_FOUND = "viewer_not_found"
    IMAGE_SAVE_FAILED = "image_save_failed"
    DETAIL_UNAVAILABLE = "detail_unavailable"
    SINK_FAILED = "sink_failed"
    INTERNAL = "internal_error"


def classify_http_status(status: int | None) -> str:
    """Map an HTTP status onto the taxonomy."""

    if status is None:
        return ErrorCode.INTERNAL
    if status == 401:
        return ErrorCode.HTTP_401
    if status == 403:
        return ErrorCode.HTTP_403
    if status == 404:
        return ErrorCode.HTTP_404
    if status == 429:
        return ErrorCode.RATE_LIMIT
    if 400 <= status < 500:
        return ErrorCode.HTTP_4XX
    if status >= 500:
        return ErrorCode.HTTP_5XX
    return ErrorCode.INTERNAL


__all__ = ["ErrorCode", "classify_http_status"]

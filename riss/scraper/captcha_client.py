from __future__ import annotations

import base64
from typing import Any, Callable

from twocaptcha import ApiException, NetworkException, TimeoutException, TwoCaptcha, ValidationException

from . import config
from .error_codes import ErrorCode
from .logging_utils import _scraper_event
from .utils import log_line


class CaptchaError(Exception):
    def __init__(self, message: str, *, error_code: str = ErrorCode.CAPTCHA_UNSOLVED) -> None:
        super().__init__(message)
        self.error_code = error_code


class TwoCaptchaClient:
    """Image captcha solving through the ``twocaptcha`` SDK.

    The SDK submits the image and polls for the answer itself; this wrapper
    only maps its exceptions onto :class:`CaptchaError` codes.
    """

    def __init__(
        self,
        api_key: str,
        *,
        server: str = config.CAPTCHA_SERVER,
        poll_interval_seconds: float = config.CAPTCHA_POLL_INTERVAL_SECONDS,
        max_wait_seconds: float = config.CAPTCHA_MAX_WAIT_SECONDS,
        solver_factory: Callable[..., Any] = TwoCaptcha,
    ) -> None:
        if not api_key:
            raise ValueError("2Captcha API key is required")
        self.max_wait_seconds = max_wait_seconds
        self.solver = solver_factory(
            api_key,
            server=server,
            defaultTimeout=int(max_wait_seconds),
            pollingInterval=max(1, int(poll_interval_seconds)),
        )

    def solve(self, image: bytes) -> str:
        """Return the solver's answer for ``image`` (PNG bytes)."""

        if not image:
            raise CaptchaError("No captcha image to solve")
        body = base64.b64encode(image).decode("ascii")
        _scraper_event("captcha", phase="submit", bytes=len(image))
        try:
            result = self.solver.normal(body)
        except TimeoutException as exc:
            _scraper_event("captcha", phase="timeout", waited=self.max_wait_seconds)
            raise CaptchaError(f"2Captcha did not solve within {self.max_wait_seconds:.0f}s") from exc
        except NetworkException as exc:
            log_line(f"[CAPTCHA] 2Captcha network error: {exc}")
            raise CaptchaError(f"2Captcha network error: {exc}", error_code=ErrorCode.NETWORK) from exc
        except (ApiException, ValidationException) as exc:
            raise CaptchaError(f"2Captcha error: {exc}") from exc

        answer = str((result or {}).get("code") or "").strip()
        if not answer:
            raise CaptchaError("2Captcha returned an empty answer")
        _scraper_event("captcha", phase="solved", request_id=result.get("captchaId"), length=len(answer))
        return answer


__all__ = ["CaptchaError", "TwoCaptchaClient"]

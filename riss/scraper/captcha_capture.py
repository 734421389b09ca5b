"""Locate and screenshot the verification image on the search form."""
from __future__ import annotations

from typing import Any, Optional, Sequence

from playwright.sync_api import Error as PWError, Frame, Page

from .logging_utils import _scraper_event
from .utils import log_line

EXPLICIT_SELECTORS: tuple[str, ...] = (
    "img[src*='captcha' i]",
    "img[src*='Captcha']",
    "img[src*='CAPTCHA']",
    "img[id*='captcha' i]",
    "img[id*='Captcha']",
    "img[alt*='captcha' i]",
    "img[alt*='Captcha']",
    "#captchaImage",
    "#CaptchaImage",
    "#imgCaptcha",
    ".captcha img",
    "[id*='captcha' i] img",
    "[class*='captcha' i] img",
    "canvas[id*='captcha' i]",
    "canvas[class*='captcha' i]",
    "img[src*='Verify' i]",
    "img[src*='Security' i]",
    "img[src*='GetCaptcha']",
    "img[src*='ValidateImage']",
    "img[src*='ValidateCode']",
)

GENERIC_SELECTORS: tuple[str, ...] = (
    "[id*='captcha' i]",
    "[class*='captcha' i]",
    "[id*='Captcha']",
)

FRAME_SELECTORS: tuple[str, ...] = (
    "img[src*='captcha']",
    "img[id*='captcha']",
    ".captcha img",
    "canvas",
)

# Returns the bounding box of the most plausible captcha image, or null.
CAPTCHA_RECT_SCRIPT = """
() => {
    const plausible = (img) => {
        if (!img.offsetParent || img.width < 50) return false;
        const w = img.naturalWidth || img.width;
        const h = img.naturalHeight || img.height;
        return w >= 80 && w <= 350 && h >= 30 && h <= 120;
    };
    const named = (img) => {
        const src = (img.src || '').toLowerCase();
        const id = (img.id || '').toLowerCase();
        return ['captcha', 'verify', 'validate', 'security'].some(k => src.includes(k)) || id.includes('captcha');
    };
    const imgs = Array.from(document.querySelectorAll('img'));
    let target = imgs.find(img => plausible(img) && named(img));
    if (!target) {
        const input = document.querySelector("input[name*='captcha' i], input[id*='captcha' i]");
        if (input) {
            let node = input.previousElementSibling;
            while (node && !target) {
                if (node.tagName === 'IMG' && plausible(node)) target = node;
                node = node.previousElementSibling;
            }
            if (!target && input.parentElement) {
                target = Array.from(input.parentElement.querySelectorAll('img')).find(plausible);
            }
        }
    }
    if (!target) return null;
    const r = target.getBoundingClientRect();
    return { x: r.x, y: r.y, width: r.width, height: r.height };
}
"""


def _screenshot_first_visible(scope: Page | Frame, selectors: Sequence[str]) -> Optional[bytes]:
    for selector in selectors:
        locator = scope.locator(selector).first
        try:
            if locator.count() == 0 or not locator.is_visible():
                continue
            data = locator.screenshot()
        except PWError:
            continue
        if data:
            _scraper_event("captcha", phase="capture", selector=selector, bytes=len(data))
            return data
    return None


def _capture_from_frames(page: Page) -> Optional[bytes]:
    for frame in page.frames:
        if frame == page.main_frame:
            continue
        url = frame.url or ""
        if not url or url == "about:blank":
            continue
        data = _screenshot_first_visible(frame, FRAME_SELECTORS)
        if data:
            return data
    return None


def _capture_by_heuristic(page: Page) -> Optional[bytes]:
    rect: Any = page.evaluate(CAPTCHA_RECT_SCRIPT)
    if not isinstance(rect, dict) or not rect.get("width") or not rect.get("height"):
        return None
    clip = {key: float(rect[key]) for key in ("x", "y", "width", "height")}
    _scraper_event("captcha", phase="capture", selector="heuristic", clip=clip)
    return page.screenshot(clip=clip)


def capture_captcha_image(page: Page) -> Optional[bytes]:
    """Return PNG bytes of the verification image, or ``None`` if none is found.

    Tried in order: explicit captcha selectors, generic captcha containers,
    embedded frames, then a size-and-name heuristic over every ``img``.
    """

    for step in (
        lambda: _screenshot_first_visible(page, EXPLICIT_SELECTORS),
        lambda: _screenshot_first_visible(page, GENERIC_SELECTORS),
        lambda: _capture_from_frames(page),
        lambda: _capture_by_heuristic(page),
    ):
        data = step()
        if data:
            return data

    log_line("[CAPTCHA] Could not locate a captcha image on the page.")
    return None


__all__ = ["capture_captcha_image", "EXPLICIT_SELECTORS", "GENERIC_SELECTORS"]

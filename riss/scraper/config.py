"""Configuration constants for the RISS land-records scraper."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DATA_DIR: Path = Path(os.getenv("RISS_STORAGE_DIR", "apify_storage"))
DATASET_DIR: Path = DATA_DIR / "dataset"
DATASET_FILE: Path = DATASET_DIR / "default.ndjson"
KV_STORE_DIR: Path = DATA_DIR / "key_value_store"
LOG_DIR: Path = DATA_DIR / "logs"
LOG_FILE: Path = LOG_DIR / "latest.log"
RUNS_DIR: Path = DATA_DIR / "runs"
INPUT_FILE: Path = DATA_DIR / "input.json"

PORTAL_URL: str = os.getenv("RISS_PORTAL_URL", "https://riss.mcrecorder.org").rstrip("/")
VIEWER_ORIGIN: str = os.getenv("RISS_VIEWER_ORIGIN", "https://onbase.mcohio.org")
FILE_PREFIX: str = "OH_Montgomery"

EXPORT_BATCH_SIZE: int = int(os.getenv("RISS_EXPORT_BATCH_SIZE", "10"))
SEARCH_MAX_ATTEMPTS: int = int(os.getenv("RISS_SEARCH_MAX_ATTEMPTS", "3"))
SEARCH_RETRY_DELAY_SECONDS: float = float(os.getenv("RISS_SEARCH_RETRY_DELAY_SECONDS", "5"))
RESOURCE_RELEASE_EVERY: int = int(os.getenv("RISS_RESOURCE_RELEASE_EVERY", "10"))
HEADLESS: bool = os.getenv("RISS_HEADLESS", "1").strip().lower() not in {"0", "false"}


def _parse_timeout_seconds(env_var: str, default: int, *, minimum: int = 1) -> int:
    """Parse a timeout value in seconds from the environment with bounds."""

    try:
        value = int(os.getenv(env_var, str(default)))
    except ValueError:
        return default
    return max(minimum, value)


# Playwright timeouts (seconds)
PLAYWRIGHT_DEFAULT_TIMEOUT_SECONDS: int = _parse_timeout_seconds("RISS_DEFAULT_TIMEOUT_SECONDS", 60)
PLAYWRIGHT_NAV_TIMEOUT_SECONDS: int = _parse_timeout_seconds("RISS_NAV_TIMEOUT_SECONDS", 90)
# The landing page is slow on cold starts.
PLAYWRIGHT_LANDING_TIMEOUT_SECONDS: int = _parse_timeout_seconds("RISS_LANDING_TIMEOUT_SECONDS", 120)
PLAYWRIGHT_FORM_FIELD_TIMEOUT_SECONDS: int = _parse_timeout_seconds("RISS_FORM_FIELD_TIMEOUT_SECONDS", 15)
# Results table waits: form-post modes render server side and take longer.
PLAYWRIGHT_TABLE_TIMEOUT_FORM_SECONDS: int = _parse_timeout_seconds("RISS_TABLE_TIMEOUT_FORM_SECONDS", 45)
PLAYWRIGHT_TABLE_TIMEOUT_DIRECT_SECONDS: int = _parse_timeout_seconds("RISS_TABLE_TIMEOUT_DIRECT_SECONDS", 20)
PLAYWRIGHT_TABLE_RETURN_TIMEOUT_SECONDS: int = _parse_timeout_seconds("RISS_TABLE_RETURN_TIMEOUT_SECONDS", 15)
PLAYWRIGHT_POPUP_TIMEOUT_SECONDS: int = _parse_timeout_seconds("RISS_POPUP_TIMEOUT_SECONDS", 30)
PLAYWRIGHT_VIEWER_PAGE_TIMEOUT_SECONDS: int = _parse_timeout_seconds("RISS_VIEWER_PAGE_TIMEOUT_SECONDS", 35)
PLAYWRIGHT_VIEWER_IMAGE_TIMEOUT_SECONDS: int = _parse_timeout_seconds("RISS_VIEWER_IMAGE_TIMEOUT_SECONDS", 25)
PLAYWRIGHT_DETAIL_NAV_TIMEOUT_SECONDS: int = _parse_timeout_seconds("RISS_DETAIL_NAV_TIMEOUT_SECONDS", 30)
PLAYWRIGHT_DETAIL_FIELDS_TIMEOUT_SECONDS: int = _parse_timeout_seconds("RISS_DETAIL_FIELDS_TIMEOUT_SECONDS", 15)
PLAYWRIGHT_CLICK_TIMEOUT_MS: int = int(os.getenv("PLAYWRIGHT_CLICK_TIMEOUT_MS", "15000"))

# Viewer polling
VIEWER_FRAME_ATTEMPTS: int = int(os.getenv("RISS_VIEWER_FRAME_ATTEMPTS", "20"))
VIEWER_FRAME_INTERVAL_SECONDS: float = float(os.getenv("RISS_VIEWER_FRAME_INTERVAL_SECONDS", "1.0"))
IMAGE_READY_ATTEMPTS: int = int(os.getenv("RISS_IMAGE_READY_ATTEMPTS", "25"))
IMAGE_READY_INTERVAL_SECONDS: float = float(os.getenv("RISS_IMAGE_READY_INTERVAL_SECONDS", "0.5"))
NEXT_IMAGE_READY_ATTEMPTS: int = int(os.getenv("RISS_NEXT_IMAGE_READY_ATTEMPTS", "15"))
NEXT_IMAGE_READY_INTERVAL_SECONDS: float = float(os.getenv("RISS_NEXT_IMAGE_READY_INTERVAL_SECONDS", "0.4"))
NEXT_PAGE_SETTLE_SECONDS: float = float(os.getenv("RISS_NEXT_PAGE_SETTLE_SECONDS", "2.0"))
# Hard stop for the next-page loop in case the disabled marker never appears.
VIEWER_MAX_PAGES: int = int(os.getenv("RISS_VIEWER_MAX_PAGES", "500"))

# Short settle sleeps (seconds)
POPUP_SETTLE_SECONDS: float = float(os.getenv("RISS_POPUP_SETTLE_SECONDS", "2.0"))
POPUP_IDLE_SETTLE_SECONDS: float = float(os.getenv("RISS_POPUP_IDLE_SETTLE_SECONDS", "6.0"))
LANDING_STEP_SETTLE_SECONDS: float = float(os.getenv("RISS_LANDING_STEP_SETTLE_SECONDS", "1.0"))

# 2Captcha
CAPTCHA_SERVER: str = os.getenv("RISS_CAPTCHA_SERVER", "2captcha.com")
CAPTCHA_POLL_INTERVAL_SECONDS: float = float(os.getenv("RISS_CAPTCHA_POLL_INTERVAL_SECONDS", "5"))
CAPTCHA_MAX_WAIT_SECONDS: float = float(os.getenv("RISS_CAPTCHA_MAX_WAIT_SECONDS", "60"))

APIFY_DEFAULT_API_BASE: str = "https://api.apify.com"
APIFY_HTTP_TIMEOUT_SECONDS: int = _parse_timeout_seconds("RISS_APIFY_HTTP_TIMEOUT_SECONDS", 60)
APIFY_MAX_RETRIES: int = int(os.getenv("RISS_APIFY_MAX_RETRIES", "3"))

BROWSER_ARGS: list[str] = [
    "--disable-popup-blocking",
    "--disable-gpu",
    "--disable-dev-shm-usage",
    "--disable-extensions",
    "--disable-background-networking",
    "--disable-default-apps",
    "--disable-sync",
    "--no-first-run",
    "--disable-software-rasterizer",
    "--disable-features=VizDisplayCompositor",
    "--disk-cache-size=0",
    "--media-cache-size=0",
    "--mute-audio",
]

VIEWPORT: dict[str, int] = {"width": 1024, "height": 768}

COMMON_HEADERS: dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "application/json, */*;q=0.8",
}


@dataclass(frozen=True)
class ApifySettings:
    token: Optional[str]
    dataset_id: Optional[str]
    kv_store_id: Optional[str]
    run_id: Optional[str]
    api_base: str

    @property
    def dataset_remote(self) -> bool:
        return bool(self.token and self.dataset_id)

    @property
    def kv_remote(self) -> bool:
        return bool(self.token and self.kv_store_id)


def _env(name: str) -> Optional[str]:
    value = os.environ.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def get_apify_settings() -> ApifySettings:
    """Read the platform settings from the live environment."""

    return ApifySettings(
        token=_env("APIFY_TOKEN"),
        dataset_id=_env("APIFY_DEFAULT_DATASET_ID"),
        kv_store_id=_env("APIFY_DEFAULT_KEY_VALUE_STORE_ID") or _env("ACTOR_DEFAULT_KEY_VALUE_STORE_ID"),
        run_id=_env("ACTOR_RUN_ID") or _env("APIFY_ACTOR_RUN_ID"),
        api_base=(_env("APIFY_API_PUBLIC_BASE_URL") or APIFY_DEFAULT_API_BASE).rstrip("/"),
    )


def get_input_key() -> str:
    return _env("ACTOR_INPUT_KEY") or _env("APIFY_INPUT_KEY") or "INPUT"


def resolve_captcha_api_key(explicit: Optional[str] = None) -> Optional[str]:
    """Return the solver credential from input, falling back to the environment."""

    if explicit and explicit.strip():
        return explicit.strip()
    return _env("TWO_CAPTCHA_API_KEY")

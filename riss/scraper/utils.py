from __future__ import annotations

import logging
import re
import sys
import urllib.parse
from datetime import datetime, timezone
from pathlib import Path

from . import config

LOGGER = logging.getLogger("riss")
_LOGGER_INITIALISED = False

_ARTIFACT_UNSAFE = re.compile(r"[^\w\-]")
_KEY_UNSAFE = re.compile(r"[^a-zA-Z0-9_.\-]")


def _configure_logger(log_path: Path) -> None:
    """Configure the shared application logger to write to ``log_path``."""

    global _LOGGER_INITIALISED

    log_path.parent.mkdir(parents=True, exist_ok=True)

    for handler in list(LOGGER.handlers):
        LOGGER.removeHandler(handler)
        try:
            handler.close()
        except Exception:  # noqa: BLE001
            continue

    formatter = logging.Formatter(
        fmt="[%(asctime)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)

    LOGGER.setLevel(logging.INFO)
    LOGGER.addHandler(stream_handler)
    LOGGER.addHandler(file_handler)
    LOGGER.propagate = False

    _LOGGER_INITIALISED = True


def _ensure_logger() -> None:
    """Initialise the logger lazily using the default log file."""

    if _LOGGER_INITIALISED:
        return

    _configure_logger(config.LOG_FILE)


def setup_run_logger() -> Path:
    """Rotate to a fresh timestamped log file for the current run."""

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    log_path = config.LOG_DIR / f"scrape_{timestamp}.log"
    _configure_logger(log_path)
    LOGGER.info("Logging to %s", log_path)
    return log_path


def ensure_dirs() -> None:
    """Ensure that the local storage layout exists."""

    config.DATA_DIR.mkdir(parents=True, exist_ok=True)
    config.DATASET_DIR.mkdir(parents=True, exist_ok=True)
    config.KV_STORE_DIR.mkdir(parents=True, exist_ok=True)
    config.LOG_DIR.mkdir(parents=True, exist_ok=True)
    config.RUNS_DIR.mkdir(parents=True, exist_ok=True)


def log_line(message: str) -> None:
    """Write a timestamped log line to stdout and the active log file."""

    _ensure_logger()
    LOGGER.info(message)


def redact_url(url: str) -> str:
    """Drop the query string so tokens and keys never reach the log."""

    try:
        parsed = urllib.parse.urlparse(url)
        return urllib.parse.urlunparse(parsed._replace(query=""))
    except Exception:
        return url


def sanitize_artifact_name(name: str | None) -> str:
    """Return an artifact base name made of word characters and dashes."""

    if not name:
        return ""
    return _ARTIFACT_UNSAFE.sub("_", name.strip())


def sanitize_store_key(key: str | None) -> str:
    """Flatten a hierarchical key into a key-value store record key."""

    if not key:
        return "unnamed"
    flattened = key.replace("/", "__").replace("\\", "__")
    flattened = _KEY_UNSAFE.sub("_", flattened)
    flattened = flattened.strip("._-")
    return flattened or "unnamed"


__all__ = [
    "LOGGER",
    "ensure_dirs",
    "log_line",
    "redact_url",
    "sanitize_artifact_name",
    "sanitize_store_key",
    "setup_run_logger",
]

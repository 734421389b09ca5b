"""Dataset, key-value store, run status and input access.

On the platform (``APIFY_TOKEN`` plus a storage id in the environment) every
call goes through the REST API. Locally the same calls land under
``config.DATA_DIR``: dataset items as NDJSON, records as files.
"""
from __future__ import annotations

import json
import os
import time
import urllib.parse
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

import requests

from . import config
from .criteria import CriteriaError
from .error_codes import ErrorCode, classify_http_status
from .logging_utils import _scraper_event
from .retry_policy import compute_backoff_seconds, decide_retry
from .utils import log_line, redact_url, sanitize_store_key

CONTENT_TYPES: Mapping[str, str] = {
    ".png": "image/png",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".svg": "image/svg+xml",
    ".pdf": "application/pdf",
    ".csv": "text/csv",
    ".json": "application/json",
}

LOCAL_INPUT_CANDIDATES: tuple[Path, ...] = (
    Path("storage") / "key_value_stores" / "default" / "INPUT.json",
    Path("input.json"),
)


class SinkError(Exception):
    def __init__(self, message: str, *, error_code: str = ErrorCode.SINK_FAILED, http_status: int | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.http_status = http_status


def content_type_for(key: str) -> str:
    return CONTENT_TYPES.get(Path(key).suffix.lower(), "application/octet-stream")


def _auth_headers(settings: config.ApifySettings, content_type: Optional[str] = None) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {settings.token}"}
    if content_type:
        headers["Content-Type"] = content_type
    return headers


def _raise_for_response(response: Any, action: str, url: str) -> None:
    status = getattr(response, "status_code", None)
    if status is None or int(status) < 400:
        return
    body = (getattr(response, "text", "") or "")[:500]
    log_line(f"[APIFY] {action} failed. Status: {status} url={redact_url(url)} body={body}")
    raise SinkError(
        f"{action} failed with HTTP {status}",
        error_code=classify_http_status(int(status)),
        http_status=int(status),
    )


def _send_with_retries(method: str, url: str, *, action: str, **kwargs: Any) -> Any:
    """Send an idempotent request, retrying network and 5xx failures."""

    sender = getattr(requests, method)
    max_attempts = max(1, config.APIFY_MAX_RETRIES)
    for attempt in range(1, max_attempts + 1):
        try:
            response = sender(url, timeout=config.APIFY_HTTP_TIMEOUT_SECONDS, **kwargs)
            _raise_for_response(response, action, url)
            return response
        except requests.RequestException as exc:
            error = SinkError(f"{action} failed: {exc}", error_code=ErrorCode.NETWORK)
        except SinkError as exc:
            error = exc
        if not decide_retry(attempt, max_attempts, error, error_code=error.error_code, http_status=error.http_status):
            raise error
        time.sleep(compute_backoff_seconds(attempt))
    raise SinkError(f"{action} failed")  # pragma: no cover - loop always returns or raises


class DatasetSink:
    """Push batches of items to the run's default dataset."""

    def __init__(self, settings: Optional[config.ApifySettings] = None, *, local_path: Optional[Path] = None) -> None:
        self.settings = settings or config.get_apify_settings()
        self.local_path = local_path or config.DATASET_FILE

    def push(self, items: Iterable[Mapping[str, Any]]) -> int:
        batch = [dict(item) for item in items]
        if not batch:
            return 0

        if self.settings.dataset_remote:
            url = f"{self.settings.api_base}/v2/datasets/{self.settings.dataset_id}/items"
            try:
                response = requests.post(
                    url,
                    data=json.dumps(batch, ensure_ascii=False).encode("utf-8"),
                    headers=_auth_headers(self.settings, "application/json; charset=utf-8"),
                    timeout=config.APIFY_HTTP_TIMEOUT_SECONDS,
                )
            except requests.RequestException as exc:
                raise SinkError(f"Dataset push failed: {exc}", error_code=ErrorCode.NETWORK) from exc
            _raise_for_response(response, "Dataset push", url)
        else:
            self.local_path.parent.mkdir(parents=True, exist_ok=True)
            with self.local_path.open("a", encoding="utf-8") as handle:
                for item in batch:
                    handle.write(json.dumps(item, ensure_ascii=False) + "\n")

        _scraper_event("sink", phase="dataset_push", items=len(batch), remote=self.settings.dataset_remote)
        return len(batch)


class KeyValueStore:
    """Save records to the default key-value store and build their links."""

    def __init__(self, settings: Optional[config.ApifySettings] = None, *, local_dir: Optional[Path] = None) -> None:
        self.settings = settings or config.get_apify_settings()
        self.local_dir = local_dir or config.KV_STORE_DIR

    def _record_url(self, key: str) -> str:
        quoted = urllib.parse.quote(sanitize_store_key(key), safe="")
        return f"{self.settings.api_base}/v2/key-value-stores/{self.settings.kv_store_id}/records/{quoted}"

    def local_path_for(self, key: str) -> Path:
        return self.local_dir.joinpath(*[part for part in key.replace("\\", "/").split("/") if part])

    def save(self, key: str, data: bytes, *, content_type: Optional[str] = None) -> None:
        ctype = content_type or content_type_for(key)
        if self.settings.kv_remote:
            url = self._record_url(key)
            log_line(
                f"[APIFY] Uploading to Key-Value Store: key={sanitize_store_key(key)}, "
                f"size={len(data)} bytes, contentType={ctype}"
            )
            _send_with_retries(
                "put",
                url,
                action="Key-value store upload",
                data=data,
                headers=_auth_headers(self.settings, ctype),
            )
        else:
            path = self.local_path_for(key)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        _scraper_event("sink", phase="kv_save", key=key, bytes=len(data), remote=self.settings.kv_remote)

    def url_for(self, key: str) -> str:
        """Public link for ``key``; the local relative path when off-platform."""

        if self.settings.kv_store_id:
            return f"{self._record_url(key)}?disableRedirect=true"
        return self.local_path_for(key).as_posix()

    def get_json(self, key: str) -> Optional[Any]:
        """Fetch a JSON record through the API; ``None`` when unavailable."""

        if not self.settings.kv_remote:
            log_line(
                "[APIFY] Skipping KV fetch: "
                f"storeId={'[set]' if self.settings.kv_store_id else '(not set)'}, "
                f"token={'[set]' if self.settings.token else '(not set)'}"
            )
            return None
        url = self._record_url(key)
        try:
            response = _send_with_retries("get", url, action="Key-value store fetch", headers=_auth_headers(self.settings))
        except SinkError as exc:
            log_line(f"[APIFY] KV Store fetch error: {exc}")
            return None
        try:
            return response.json()
        except ValueError as exc:
            log_line(f"[APIFY] KV Store record {key} is not JSON: {exc}")
            return None


def set_status_message(message: str, *, terminal: bool = False, settings: Optional[config.ApifySettings] = None) -> None:
    """Log the run status and mirror it to the platform run when available."""

    log_line(f"[STATUS] {message}")
    settings = settings or config.get_apify_settings()
    if not (settings.token and settings.run_id):
        return
    url = f"{settings.api_base}/v2/actor-runs/{settings.run_id}"
    try:
        response = requests.put(
            url,
            json={"statusMessage": message, "isStatusMessageTerminal": terminal},
            headers=_auth_headers(settings),
            timeout=config.APIFY_HTTP_TIMEOUT_SECONDS,
        )
        _raise_for_response(response, "Status message update", url)
    except (requests.RequestException, SinkError) as exc:
        log_line(f"[APIFY] Could not set status message: {exc}")


def _parse_input_text(text: str, source: str) -> Mapping[str, Any]:
    preview = text[:500]
    log_line(f"[APIFY] Input JSON from {source} (first 500 chars): {preview}")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CriteriaError(f"Failed to load input: invalid JSON in {source} ({exc.msg}).") from exc
    if not isinstance(payload, dict):
        raise CriteriaError(f"Failed to load input: {source} must hold a JSON object.")
    return payload


def load_input(
    explicit_path: Optional[Path] = None,
    *,
    store: Optional[KeyValueStore] = None,
) -> Mapping[str, Any]:
    """Find the run input, trying each source in turn.

    Order: an explicit path, ``APIFY_INPUT_VALUE``, the local storage input
    file, the platform's local store layout, ``./input.json``, then the
    key-value store record named by ``ACTOR_INPUT_KEY``. An empty mapping is
    returned when nothing is found so defaults apply.
    """

    if explicit_path is not None:
        return _parse_input_text(Path(explicit_path).read_text(encoding="utf-8"), str(explicit_path))

    inline = os.environ.get("APIFY_INPUT_VALUE", "").strip()
    if inline:
        return _parse_input_text(inline, "APIFY_INPUT_VALUE")

    for candidate in (config.INPUT_FILE, *LOCAL_INPUT_CANDIDATES):
        if candidate.is_file():
            return _parse_input_text(candidate.read_text(encoding="utf-8"), str(candidate))

    key = config.get_input_key()
    log_line(f"[APIFY] Fetching input from KV store (key={key})...")
    payload = (store or KeyValueStore()).get_json(key)
    if isinstance(payload, dict):
        log_line("[APIFY] Fetched input from Apify Key-Value Store API.")
        return payload

    log_line("[APIFY] No input JSON found; using defaults.")
    return {}


__all__ = [
    "DatasetSink",
    "KeyValueStore",
    "SinkError",
    "content_type_for",
    "load_input",
    "set_status_message",
]

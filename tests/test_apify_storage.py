import json
from pathlib import Path

import pytest
import requests

from riss.scraper import apify_storage, config
from riss.scraper.apify_storage import (
    DatasetSink,
    KeyValueStore,
    SinkError,
    content_type_for,
    load_input,
    set_status_message,
)
from riss.scraper.criteria import CriteriaError
from riss.scraper.error_codes import ErrorCode

LOCAL = config.ApifySettings(token=None, dataset_id=None, kv_store_id=None, run_id=None, api_base="https://api.apify.com")
REMOTE = config.ApifySettings(
    token="tok", dataset_id="ds1", kv_store_id="kv1", run_id="run1", api_base="https://api.apify.com"
)


class _FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, text: str = "") -> None:  # noqa: ANN001
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):  # noqa: ANN201
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


@pytest.fixture(autouse=True)
def _quiet(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(apify_storage, "log_line", lambda _msg: None)
    monkeypatch.setattr(apify_storage.time, "sleep", lambda _s: None)


def test_content_type_for() -> None:
    assert content_type_for("Images/a/b.tif") == "image/tiff"
    assert content_type_for("OUT.CSV") == "text/csv"
    assert content_type_for("blob") == "application/octet-stream"


def test_dataset_local_appends_ndjson(tmp_path: Path) -> None:
    sink = DatasetSink(LOCAL, local_path=tmp_path / "dataset" / "items.ndjson")

    assert sink.push([{"Document Number": "1"}, {"Document Number": "2"}]) == 2
    assert sink.push([]) == 0
    sink.push([{"Document Number": "3"}])

    lines = (tmp_path / "dataset" / "items.ndjson").read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["Document Number"] for line in lines] == ["1", "2", "3"]


def test_dataset_remote_posts_json_batch(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict = {}

    def _post(url, data=None, headers=None, timeout=None):  # noqa: ANN001
        captured.update(url=url, data=data, headers=headers)
        return _FakeResponse(201)

    monkeypatch.setattr(apify_storage.requests, "post", _post)

    DatasetSink(REMOTE).push([{"Grantor": "SMITH"}])

    assert captured["url"] == "https://api.apify.com/v2/datasets/ds1/items"
    assert json.loads(captured["data"].decode("utf-8")) == [{"Grantor": "SMITH"}]
    assert captured["headers"]["Authorization"] == "Bearer tok"


def test_dataset_remote_error_is_classified(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(apify_storage.requests, "post", lambda *_a, **_k: _FakeResponse(403, text="forbidden"))

    with pytest.raises(SinkError) as excinfo:
        DatasetSink(REMOTE).push([{"a": "b"}])

    assert excinfo.value.error_code == ErrorCode.HTTP_403
    assert excinfo.value.http_status == 403


def test_kv_local_save_and_link(tmp_path: Path) -> None:
    store = KeyValueStore(LOCAL, local_dir=tmp_path)
    key = "Images/03-01-2024/2024-1_1/2024-1_1.tif"

    store.save(key, b"tiff")

    assert (tmp_path / "Images" / "03-01-2024" / "2024-1_1" / "2024-1_1.tif").read_bytes() == b"tiff"
    assert store.url_for(key).endswith("Images/03-01-2024/2024-1_1/2024-1_1.tif")
    assert store.get_json("INPUT") is None


def test_kv_remote_put_retries_server_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    responses = iter([_FakeResponse(502), _FakeResponse(200)])
    calls: list[dict] = []

    def _put(url, data=None, headers=None, timeout=None):  # noqa: ANN001
        calls.append({"url": url, "headers": headers, "data": data})
        return next(responses)

    monkeypatch.setattr(apify_storage.requests, "put", _put)
    store = KeyValueStore(REMOTE)

    store.save("Images/d/x.tif", b"abc")

    assert len(calls) == 2
    assert calls[0]["url"] == "https://api.apify.com/v2/key-value-stores/kv1/records/Images__d__x.tif"
    assert calls[0]["headers"]["Content-Type"] == "image/tiff"
    assert store.url_for("Images/d/x.tif").endswith("/records/Images__d__x.tif?disableRedirect=true")


def test_kv_remote_put_does_not_retry_auth_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = {"n": 0}

    def _put(*_a, **_k):  # noqa: ANN002, ANN003
        calls["n"] += 1
        return _FakeResponse(401)

    monkeypatch.setattr(apify_storage.requests, "put", _put)

    with pytest.raises(SinkError) as excinfo:
        KeyValueStore(REMOTE).save("k.png", b"x")

    assert calls["n"] == 1
    assert excinfo.value.error_code == ErrorCode.HTTP_401


def test_kv_get_json_remote(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(apify_storage.requests, "get", lambda *_a, **_k: _FakeResponse(200, {"searchMode": "ByName"}))

    assert KeyValueStore(REMOTE).get_json("INPUT") == {"searchMode": "ByName"}


def test_status_message_local_only_logs(monkeypatch: pytest.MonkeyPatch) -> None:
    messages: list[str] = []
    monkeypatch.setattr(apify_storage, "log_line", lambda msg: messages.append(str(msg)))

    def _put(*_a, **_k):  # noqa: ANN002, ANN003
        raise AssertionError("no request expected")

    monkeypatch.setattr(apify_storage.requests, "put", _put)

    set_status_message("Processing 3 records...", settings=LOCAL)

    assert messages == ["[STATUS] Processing 3 records..."]


def test_status_message_remote_failure_is_logged(monkeypatch: pytest.MonkeyPatch) -> None:
    sent: list[dict] = []

    def _put(url, json=None, headers=None, timeout=None):  # noqa: ANN001
        sent.append({"url": url, "json": json})
        raise requests.ConnectionError("down")

    monkeypatch.setattr(apify_storage.requests, "put", _put)

    set_status_message("Finished!", terminal=True, settings=REMOTE)

    assert sent[0]["url"] == "https://api.apify.com/v2/actor-runs/run1"
    assert sent[0]["json"] == {"statusMessage": "Finished!", "isStatusMessageTerminal": True}


def test_load_input_prefers_explicit_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APIFY_INPUT_VALUE", '{"searchMode": "ByDate"}')
    path = tmp_path / "input.json"
    path.write_text('{"searchMode": "ByName"}', encoding="utf-8")

    assert load_input(path) == {"searchMode": "ByName"}


def test_load_input_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APIFY_INPUT_VALUE", '{"searchMode": "ByFiche"}')

    assert load_input() == {"searchMode": "ByFiche"}


def test_load_input_from_local_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("APIFY_INPUT_VALUE", raising=False)
    input_file = tmp_path / "input.json"
    input_file.write_text('{"searchMode": "ByType"}', encoding="utf-8")
    monkeypatch.setattr(config, "INPUT_FILE", input_file)

    assert load_input() == {"searchMode": "ByType"}


def test_load_input_falls_back_to_store_then_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("APIFY_INPUT_VALUE", raising=False)
    monkeypatch.setattr(config, "INPUT_FILE", tmp_path / "missing.json")
    monkeypatch.setattr(apify_storage, "LOCAL_INPUT_CANDIDATES", ())

    class _Store:
        def __init__(self, payload) -> None:  # noqa: ANN001
            self.payload = payload
            self.keys: list[str] = []

        def get_json(self, key: str):  # noqa: ANN201
            self.keys.append(key)
            return self.payload

    store = _Store({"searchMode": "ByPre1980"})
    assert load_input(store=store) == {"searchMode": "ByPre1980"}
    assert store.keys == ["INPUT"]
    assert load_input(store=_Store(None)) == {}


def test_load_input_rejects_bad_json(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APIFY_INPUT_VALUE", "{not json")

    with pytest.raises(CriteriaError):
        load_input()

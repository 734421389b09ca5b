import json
from pathlib import Path

from riss.scraper.telemetry import RunTelemetry


def test_finalize_writes_summary_and_entries(tmp_path: Path) -> None:
    telemetry = RunTelemetry("ByName", runs_dir=tmp_path)
    telemetry.add("succeeded", "", {"row": 1})
    telemetry.add("failed", "Row 2 timed out", {"row": 2, "error_code": "navigation_timeout"})
    telemetry.add("succeeded", "", {"row": 3})

    path = Path(telemetry.finalize({"outcome": {"succeeded": 2}}))

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert path.parent == tmp_path
    assert payload["mode"] == "ByName"
    assert payload["summary"] == {"count_succeeded": 2, "count_failed": 1}
    assert payload["entries"][1]["error_code"] == "navigation_timeout"
    assert payload["outcome"] == {"succeeded": 2}

from riss.scraper.utils import redact_url, sanitize_artifact_name, sanitize_store_key


def test_redact_url_drops_query() -> None:
    assert redact_url("https://riss.mcrecorder.org/results.cfm?key=abc") == "https://riss.mcrecorder.org/results.cfm"


def test_sanitize_artifact_name() -> None:
    assert sanitize_artifact_name(" 2024 00012 (1) ") == "2024_00012__1_"
    assert sanitize_artifact_name(None) == ""


def test_sanitize_store_key_flattens_paths() -> None:
    assert sanitize_store_key("Images/03-01-2024/doc/doc.tif") == "Images__03-01-2024__doc__doc.tif"
    assert sanitize_store_key("///") == "unnamed"
    assert sanitize_store_key(None) == "unnamed"

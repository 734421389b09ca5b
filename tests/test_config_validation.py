from riss.scraper import config
from riss.scraper.config_validation import validate_runtime_config
from riss.scraper.criteria import CriteriaError, parse_criteria
import pytest


def test_invalid_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "PLAYWRIGHT_NAV_TIMEOUT_SECONDS", 0)
    with pytest.raises(ValueError):
        validate_runtime_config("cli")


def test_negative_retry_delay(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "SEARCH_RETRY_DELAY_SECONDS", -1)
    with pytest.raises(CriteriaError):
        validate_runtime_config("cli")


def test_batch_and_attempt_knobs_clamped(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "EXPORT_BATCH_SIZE", 0)
    monkeypatch.setattr(config, "SEARCH_MAX_ATTEMPTS", -2)

    validate_runtime_config("tests")

    assert config.EXPORT_BATCH_SIZE == 1
    assert config.SEARCH_MAX_ATTEMPTS == 1


def test_captcha_modes_need_a_solver_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TWO_CAPTCHA_API_KEY", raising=False)
    criteria = parse_criteria({"searchMode": "ByDate", "startDate": "2024-01-01", "endDate": "2024-01-31"})

    with pytest.raises(CriteriaError) as excinfo:
        validate_runtime_config("cli", criteria=criteria)

    assert "twoCaptchaApiKey" in str(excinfo.value)


def test_captcha_key_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TWO_CAPTCHA_API_KEY", "env-key")
    criteria = parse_criteria({"searchMode": "ByInstrument", "instrumentYear": "2024", "instrumentNumber": "12"})

    validate_runtime_config("platform", criteria=criteria)


def test_modes_without_captcha_skip_key_check(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TWO_CAPTCHA_API_KEY", raising=False)
    criteria = parse_criteria({"searchMode": "ByName", "lastName": "SMITH"})

    validate_runtime_config("cli", criteria=criteria)

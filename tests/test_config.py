import pytest
from pydantic import ValidationError

import config
from config import (
    AnalysisConfig,
    ApplicationConfig,
    get_application_config,
    load_config_from_env,
    load_config_from_file,
    save_config_to_file,
)


def test_defaults():
    app_config = ApplicationConfig()
    assert app_config.analysis.dominator_selection == "first"
    assert not app_config.analysis.mark_unresolved_as_orphaned
    assert app_config.collector.max_concurrent_requests == 50
    assert app_config.database.database_path.endswith("rbac_auditor.db")


def test_load_from_env(monkeypatch):
    monkeypatch.setenv("DB_PATH", "/tmp/other.db")
    monkeypatch.setenv("MAX_CONCURRENT_REQUESTS", "8")
    monkeypatch.setenv("DOMINATOR_SELECTION", "broadest")
    monkeypatch.setenv("MARK_UNRESOLVED_AS_ORPHANED", "true")
    monkeypatch.setenv("PORT", "9000")

    app_config = load_config_from_env()

    assert app_config.database.database_path == "/tmp/other.db"
    assert app_config.collector.max_concurrent_requests == 8
    assert app_config.analysis.dominator_selection == "broadest"
    assert app_config.analysis.mark_unresolved_as_orphaned
    assert app_config.port == 9000


def test_invalid_dominator_selection_rejected():
    with pytest.raises(ValidationError):
        AnalysisConfig(dominator_selection="narrowest")


def test_file_round_trip(tmp_path):
    path = tmp_path / "conf" / "rbac.json"
    original = ApplicationConfig(log_level="DEBUG", analysis=AnalysisConfig(matrix_top_roles=3))

    assert save_config_to_file(original, str(path))
    assert load_config_from_file(str(path)) == original


def test_missing_or_broken_file(tmp_path):
    assert load_config_from_file(str(tmp_path / "absent.json")) is None
    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    assert load_config_from_file(str(broken)) is None


def test_file_takes_precedence_over_env(tmp_path, monkeypatch):
    path = tmp_path / "rbac.json"
    save_config_to_file(ApplicationConfig(port=1234), str(path))
    monkeypatch.setenv("CONFIG_FILE", str(path))
    monkeypatch.setenv("PORT", "9000")

    assert get_application_config().port == 1234


def test_reload_config(monkeypatch, tmp_path):
    monkeypatch.setenv("CONFIG_FILE", str(tmp_path / "none.json"))
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    reloaded = config.reload_config()
    assert reloaded.log_level == "WARNING"
    assert config.get_config() is reloaded
    monkeypatch.delenv("LOG_LEVEL")
    config.reload_config()

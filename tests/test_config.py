from __future__ import annotations

import os

import pytest

from core.config import BASE_DIR, StoreSettings, load_settings
from data.repository_factory import get_repository
from data.sheets_repository import SheetsRepository


def _write_config(tmp_path, body: str) -> str:
    path = tmp_path / "sheets_config.yaml"
    path.write_text(body, encoding="utf-8")
    return str(path)


def test_defaults_without_env_or_file(tmp_path) -> None:
    settings = load_settings(env={}, config_file=str(tmp_path / "missing.yaml"))

    assert settings.spreadsheet_id is None
    assert settings.data_backend == "sheets"
    assert settings.max_attempts == 3
    assert settings.backoff_base == 0.5
    assert settings.cache_ttl == 0.0
    assert settings.log_level == "INFO"


def test_yaml_values_are_loaded(tmp_path) -> None:
    path = _write_config(tmp_path, (
        "sheets:\n"
        "  spreadsheet_id: from-file\n"
        "  max_attempts: 5\n"
        "  cache_ttl: 30\n"
        "  backup_dir: snapshots\n"
        "  log_level: debug\n"
    ))

    settings = load_settings(env={}, config_file=path)

    assert settings.spreadsheet_id == "from-file"
    assert settings.max_attempts == 5
    assert settings.cache_ttl == 30.0
    assert settings.backup_dir == os.path.join(BASE_DIR, "snapshots")
    assert settings.log_level == "DEBUG"


def test_environment_overrides_file(tmp_path) -> None:
    path = _write_config(tmp_path, "sheets:\n  spreadsheet_id: from-file\n  max_attempts: 5\n")
    env = {"SPREADSHEET_ID": "from-env", "SHEETS_MAX_ATTEMPTS": "2", "SHEETS_BACKOFF_JITTER": "0"}

    settings = load_settings(env=env, config_file=path)

    assert settings.spreadsheet_id == "from-env"
    assert settings.max_attempts == 2
    assert settings.backoff_jitter == 0.0


def test_config_file_can_come_from_environment(tmp_path) -> None:
    path = _write_config(tmp_path, "sheets:\n  data_backend: sheets\n  spreadsheet_id: abc\n")

    assert load_settings(env={"SHEETS_CONFIG_FILE": path}).spreadsheet_id == "abc"


def test_service_account_json_from_environment(tmp_path) -> None:
    env = {"GOOGLE_SERVICE_ACCOUNT": '{"type": "service_account", "project_id": "demo"}'}

    settings = load_settings(env=env, config_file=str(tmp_path / "missing.yaml"))

    assert settings.service_account_info["project_id"] == "demo"


def test_invalid_values_are_reported(tmp_path) -> None:
    missing = str(tmp_path / "missing.yaml")

    with pytest.raises(ValueError, match="SHEETS_MAX_ATTEMPTS"):
        load_settings(env={"SHEETS_MAX_ATTEMPTS": "three"}, config_file=missing)
    with pytest.raises(ValueError, match="GOOGLE_SERVICE_ACCOUNT"):
        load_settings(env={"GOOGLE_SERVICE_ACCOUNT": "{not json"}, config_file=missing)


def test_factory_builds_sheets_repository(client) -> None:
    repo = get_repository(StoreSettings(cache_ttl=15), client=client)

    assert isinstance(repo, SheetsRepository)
    assert repo.client is client
    assert repo.cache_ttl == 15


def test_factory_rejects_unknown_backend(client) -> None:
    with pytest.raises(ValueError, match="DATA_BACKEND"):
        get_repository(StoreSettings(data_backend="postgres"), client=client)


def test_factory_requires_spreadsheet_id() -> None:
    with pytest.raises(ValueError, match="SPREADSHEET_ID"):
        get_repository(StoreSettings(spreadsheet_id=None))

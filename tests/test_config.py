"""Tests for configuration module."""

import json
import os

import pytest
from pydantic import ValidationError

from schema_explorer.config import Config, StorageSettings


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keeps a developer's .env or exported variables out of these tests."""
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("SCHEMA_EXPLORER_"):
            monkeypatch.delenv(name)


def test_config_from_env(monkeypatch):
    """Test loading configuration from environment variables."""
    monkeypatch.setenv("SCHEMA_EXPLORER_LOGGING__LEVEL", "DEBUG")
    monkeypatch.setenv("SCHEMA_EXPLORER_STORAGE__TYPE", "memory")
    monkeypatch.setenv("SCHEMA_EXPLORER_STORAGE__MAX_SCHEMAS", "50")
    monkeypatch.setenv("SCHEMA_EXPLORER_HTTP_CLIENT__SSL_VERIFY", "false")
    monkeypatch.setenv("SCHEMA_EXPLORER_EXPLORER__AUTO_SAVE", "false")
    monkeypatch.setenv("SCHEMA_EXPLORER_EXPLORER__DEFAULT_TIMEOUT_SECONDS", "12.5")

    config = Config()

    assert config.logging.level == "DEBUG"
    assert config.storage.type == "memory"
    assert config.storage.max_schemas == 50
    assert config.http_client.ssl_verify is False
    assert config.explorer.auto_save is False
    assert config.explorer.default_timeout_seconds == 12.5


def test_config_defaults():
    """Test default configuration values."""
    config = Config()

    assert config.logging.level == "INFO"
    assert config.logging.format == "json"
    assert config.logging.file is None

    assert config.http_client.request_timeout_seconds == 30.0
    assert config.http_client.connect_timeout_seconds == 10.0
    assert config.http_client.ssl_verify is True
    assert config.http_client.max_redirects == 5

    assert config.storage.type == "file"
    assert str(config.storage.base_directory) == "schemas"
    assert config.storage.enable_backups is True
    assert config.storage.max_backups == 5
    assert config.storage.max_schemas == 1000
    assert config.storage.max_age_seconds == 86400.0

    assert config.explorer.auto_save is True
    assert config.explorer.default_timeout_seconds == 30.0
    assert config.explorer.follow_redirects is True
    assert config.explorer.connector_overrides == {}


def test_config_from_file(tmp_path):
    """Test loading configuration from a JSON file."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps({
        "logging": {"level": "WARNING", "format": "console"},
        "storage": {"type": "file", "base_directory": str(tmp_path / "store"), "max_backups": 1},
        "explorer": {"connector_overrides": {"rest": {"custom_paths": ["/spec.json"]}}},
    }))

    config = Config.from_file(config_file)

    assert config.logging.level == "WARNING"
    assert config.logging.format == "console"
    assert config.storage.base_directory == tmp_path / "store"
    assert config.storage.max_backups == 1
    assert config.explorer.connector_overrides["rest"]["custom_paths"] == ["/spec.json"]
    # Sections missing from the file keep their defaults
    assert config.http_client.request_timeout_seconds == 30.0


def test_config_from_file_ignores_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("SCHEMA_EXPLORER_STORAGE__TYPE", "memory")
    (tmp_path / ".env").write_text("SCHEMA_EXPLORER_LOGGING__LEVEL=DEBUG\n")
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps({"explorer": {"auto_save": False}}))

    config = Config.from_file(config_file)

    assert config.storage.type == "file"
    assert config.logging.level == "INFO"
    assert config.explorer.auto_save is False
    # Environment loading is back in effect afterwards
    assert Config().storage.type == "memory"
    assert Config().logging.level == "DEBUG"


@pytest.mark.parametrize(
    "overrides",
    [
        {"type": "redis"},
        {"max_schemas": 0},
        {"max_backups": -1},
        {"max_age_seconds": 0},
    ],
)
def test_storage_settings_validation(overrides):
    with pytest.raises(ValidationError):
        StorageSettings(**overrides)


def test_storage_settings_allow_disabling_age_eviction():
    assert StorageSettings(max_age_seconds=None).max_age_seconds is None

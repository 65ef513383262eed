"""Tests for settings and runtime config loading."""

import json

import pytest

from drivefetch.config import AuthConfig, RuntimeConfig, Settings
from drivefetch.config.settings import _env_truthy


@pytest.mark.parametrize(
    "value, expected",
    [("1", True), ("Yes", True), (" on ", True), ("0", False), ("off", False), ("maybe", False), (None, False)],
)
def test_env_truthy(value, expected):
    assert _env_truthy(value) is expected


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("PORT", "9001")
    monkeypatch.setenv("DOWNLOAD_ROOT", "/srv/drive")
    monkeypatch.setenv("FLUSH_INTERVAL", "1.5")
    monkeypatch.setenv("GDOWN_COMMAND", "/opt/venv/bin/gdown --quiet")
    cfg = Settings.from_env()
    assert cfg.port == 9001
    assert cfg.download_root == "/srv/drive"
    assert cfg.flush_interval == 1.5
    assert cfg.tool_command == ["/opt/venv/bin/gdown", "--quiet"]


def test_settings_defaults(monkeypatch):
    for name in ("DOWNLOAD_ROOT", "GDOWN_COMMAND", "TASKS_DB"):
        monkeypatch.delenv(name, raising=False)
    cfg = Settings.from_env()
    assert cfg.download_root == "./downloads"
    assert cfg.tasks_db == "tasks.db"
    assert cfg.tool_command[1:] == ["-m", "gdown"]


def test_auth_config_from_env(monkeypatch):
    monkeypatch.setenv("API_KEY_AUTH_ENABLED", "true")
    monkeypatch.setenv("API_MASTER_KEY", "secret")
    monkeypatch.delenv("API_KEY_HEADER_NAME", raising=False)
    cfg = AuthConfig.from_env()
    assert cfg.enabled
    assert cfg.master_key == "secret"
    assert cfg.header_name == "X-API-Key"


class TestRuntimeConfig:
    def test_missing_file_gives_defaults(self, temp_dir):
        assert RuntimeConfig.load(str(temp_dir / "none.json")).max_concurrent == 1

    def test_save_and_load(self, temp_dir):
        path = str(temp_dir / "config.json")
        RuntimeConfig(max_concurrent=5).save(path)
        assert RuntimeConfig.load(path).max_concurrent == 5

    @pytest.mark.parametrize("content", ["not json", json.dumps({"max_concurrent": 42})])
    def test_bad_file_gives_defaults(self, temp_dir, content, caplog):
        path = temp_dir / "config.json"
        path.write_text(content)
        assert RuntimeConfig.load(str(path)).max_concurrent == 1
        assert "Error loading runtime config" in caplog.text

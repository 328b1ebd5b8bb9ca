"""Tests for configuration loading and overrides."""

import json

import pytest

from recipe_replay import config
from recipe_replay.config import AppSettings, RunnerSettings, StoreSettings, load_config_file, save_config_file


class TestConfigFile:
    def test_missing_or_empty_file(self, tmp_path):
        assert load_config_file(tmp_path / "missing.json") == {}
        empty = tmp_path / "empty.json"
        empty.write_text("  ", encoding="utf-8")
        assert load_config_file(empty) == {}

    def test_invalid_json_ignored(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json", encoding="utf-8")
        assert load_config_file(path) == {}

    def test_save_and_load(self, tmp_path):
        path = save_config_file({"runner": {"http_timeout": 7}}, tmp_path / "nested" / "config.json")
        assert json.loads(path.read_text(encoding="utf-8")) == {"runner": {"http_timeout": 7}}
        assert load_config_file(path) == {"runner": {"http_timeout": 7}}


class TestSettings:
    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for key in ("RECIPE_REPLAY_RUNNER_HTTP_TIMEOUT", "RECIPE_REPLAY_STORE_RECIPES_DIR", "RECIPE_REPLAY_STORE_SECRETS_DIR"):
            monkeypatch.delenv(key, raising=False)

    def test_defaults(self):
        runner = RunnerSettings()
        assert runner.http_timeout == 5.0
        assert runner.selector_timeout_ms == 1200
        assert runner.download_max_attempts == 1000

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("RECIPE_REPLAY_RUNNER_HTTP_TIMEOUT", "9")
        assert RunnerSettings().http_timeout == 9.0

    def test_file_values_fill_gaps_but_env_wins(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"runner": {"http_timeout": 7, "settle_timeout_ms": 100}}), encoding="utf-8")
        monkeypatch.setattr(config, "CONFIG_FILE", path)

        loaded = config._load_settings()
        assert loaded.runner.http_timeout == 7
        assert loaded.runner.settle_timeout_ms == 100

        monkeypatch.setenv("RECIPE_REPLAY_RUNNER_HTTP_TIMEOUT", "9")
        loaded = config._load_settings()
        assert loaded.runner.http_timeout == 9
        assert loaded.runner.settle_timeout_ms == 100

    def test_directory_overrides(self, tmp_path):
        app = AppSettings(store=StoreSettings(recipes_dir=str(tmp_path / "r"), secrets_dir=str(tmp_path / "s")))
        assert app.get_recipes_dir() == tmp_path / "r"
        assert app.get_secrets_dir() == tmp_path / "s"

    def test_default_directories_under_config_dir(self):
        app = AppSettings(store=StoreSettings())
        assert app.get_recipes_dir() == config.get_config_dir() / "recipes"
        assert app.get_secrets_dir() == config.get_config_dir() / "secrets"

    def test_save_round_trip(self, tmp_path):
        app = AppSettings(runner=RunnerSettings(http_timeout=3.5))
        path = app.save(tmp_path / "config.json")
        assert load_config_file(path)["runner"]["http_timeout"] == 3.5

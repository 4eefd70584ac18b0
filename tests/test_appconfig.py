"""Tests for plancal.appconfig: DB-backed settings with a JSON file override."""

import json

import pytest

import plancal.appconfig as pcfg
from plancal.appconfig import DEFAULT_CONFIG, AppConfig, get_db_path_from_env, load_config, save_config
from plancal.user_context import set_user_identity


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    monkeypatch.setattr(pcfg, "_FILE_PATHS", [])
    AppConfig.delete().execute()


class TestLoadConfig:
    def test_seeds_defaults(self):
        config = load_config()
        assert config == DEFAULT_CONFIG
        assert AppConfig.select().count() == len(DEFAULT_CONFIG)

    def test_file_overrides_db(self, monkeypatch, tmp_path):
        save_config({"home_timezone": "UTC", "request_timeout": 30})
        path = tmp_path / "plancal_config.json"
        path.write_text(json.dumps({"home_timezone": "Asia/Tbilisi"}))
        monkeypatch.setattr(pcfg, "_FILE_PATHS", [path])

        config = load_config()

        assert config["home_timezone"] == "Asia/Tbilisi"
        assert config["request_timeout"] == 30
        row = AppConfig.get(AppConfig.key == "home_timezone")
        assert json.loads(row.value) == "Asia/Tbilisi"

    def test_unreadable_file_ignored(self, monkeypatch, tmp_path):
        path = tmp_path / "plancal_config.json"
        path.write_text("{oops")
        monkeypatch.setattr(pcfg, "_FILE_PATHS", [path])
        assert load_config()["api_base_url"] == DEFAULT_CONFIG["api_base_url"]

    def test_missing_keys_filled_from_defaults(self):
        save_config({"debug": True})
        config = load_config()
        assert config["debug"] is True
        assert config["http_cache_ttl"] == DEFAULT_CONFIG["http_cache_ttl"]

    def test_scoped_by_user(self):
        save_config({"home_timezone": "Europe/Berlin"})
        set_user_identity("ann@example.com")
        assert load_config()["home_timezone"] == DEFAULT_CONFIG["home_timezone"]
        save_config({"home_timezone": "Asia/Tokyo"})
        assert load_config()["home_timezone"] == "Asia/Tokyo"
        set_user_identity(None)
        assert load_config()["home_timezone"] == "Europe/Berlin"


class TestSaveConfig:
    def test_upsert(self):
        save_config({"debug": False})
        save_config({"debug": True})
        rows = list(AppConfig.select().where(AppConfig.key == "debug"))
        assert len(rows) == 1
        assert json.loads(rows[0].value) is True


def test_db_path_from_env(monkeypatch):
    monkeypatch.delenv("PLANCAL_DB", raising=False)
    assert get_db_path_from_env() == "plancal.sqlite3"
    monkeypatch.setenv("PLANCAL_DB", "/tmp/other.sqlite3")
    assert get_db_path_from_env() == "/tmp/other.sqlite3"

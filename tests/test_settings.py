"""Tests for settings loading."""

import pytest

from config.settings import Settings, load_settings


class TestSettings:
    """Test defaults and override precedence."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        settings = Settings()

        assert settings.anon_daily_limit == 10
        assert settings.user_daily_limit == 20
        assert settings.ip_daily_limit_anon == 30
        assert settings.ip_daily_limit_user == 60
        assert settings.context_max_chars == 2000
        assert settings.context_max_turns == 6
        assert settings.counter_backend == "sqlite"
        assert settings.openai_api_key is None

    def test_api_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")
        settings = Settings(llm_provider="anthropic")

        assert settings.get_llm_api_key() == "sk-ant"

    def test_yaml_then_env_then_overrides(self, tmp_path, monkeypatch):
        config = tmp_path / "enhancer.yaml"
        config.write_text("anon_daily_limit: 5\nuser_daily_limit: 7\ndb_path: from-yaml.db\n")
        monkeypatch.setenv("ENHANCER_USER_DAILY_LIMIT", "8")

        settings = load_settings(str(config), db_path="override.db")

        assert settings.anon_daily_limit == 5
        assert settings.user_daily_limit == 8
        assert settings.db_path == "override.db"

    def test_missing_config_file(self, tmp_path):
        settings = load_settings(str(tmp_path / "absent.yaml"))
        assert settings.anon_daily_limit == 10

    def test_none_overrides_ignored(self):
        settings = load_settings(None, db_path=None)
        assert settings.db_path == "data/enhancer.db"

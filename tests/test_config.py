"""Tests for `deepbuffer.config`."""

from __future__ import annotations

from deepbuffer import config
from deepbuffer.config import Settings, get_settings


def test_defaults():
    settings = Settings.from_env({})
    assert settings.env_name == "dev"
    assert settings.openai_model == "gpt-4o-mini"
    assert settings.openai_api_key is None
    assert settings.scheduler_enabled is True
    assert settings.scheduler_timezone is None
    assert settings.cloud_logging is False
    assert settings.port == 8080
    assert settings.flask_env == "development"


def test_serverless_disables_scheduler_unless_forced():
    assert Settings.from_env({"SERVERLESS": "1"}).scheduler_enabled is False
    assert Settings.from_env({"SERVERLESS": "1", "SCHEDULER_ENABLED": "true"}).scheduler_enabled is True
    assert Settings.from_env({"SCHEDULER_ENABLED": "false"}).scheduler_enabled is False


def test_cloud_logging_follows_project():
    assert Settings.from_env({"GOOGLE_CLOUD_PROJECT": "proj"}).cloud_logging is True
    assert Settings.from_env({"GOOGLE_CLOUD_PROJECT": "proj", "CLOUD_LOGGING": "0"}).cloud_logging is False


def test_env_secret_wins_over_secret_manager(monkeypatch):
    lookups = []
    monkeypatch.setattr(config, "get_secret_value", lambda *a: lookups.append(a) or "from-sm")

    settings = Settings.from_env({
        "OPENAI_API_KEY": "sk-env",
        "GOOGLE_CLOUD_PROJECT": "proj",
        "OPENAI_SECRET_ID": "openai-key",
    })

    assert settings.openai_api_key == "sk-env"
    assert lookups == []


def test_secret_manager_used_when_env_missing(monkeypatch):
    monkeypatch.setattr(config, "get_secret_value", lambda project, secret: f"{project}/{secret}")

    settings = Settings.from_env({
        "GOOGLE_CLOUD_PROJECT": "proj",
        "OPENAI_SECRET_ID": "openai-key",
        "DB_PASSWORD_SECRET_ID": "db-pass",
    })

    assert settings.openai_api_key == "proj/openai-key"
    assert settings.db_password == "proj/db-pass"


def test_get_settings_is_cached(monkeypatch):
    monkeypatch.setenv("CRON_SECRET", "first")
    assert get_settings().cron_secret == "first"
    monkeypatch.setenv("CRON_SECRET", "second")
    assert get_settings().cron_secret == "first"
    get_settings.cache_clear()
    assert get_settings().cron_secret == "second"


def test_http_secrets(monkeypatch):
    monkeypatch.setattr(config, "get_secret_value", lambda project, secret: f"{project}/{secret}")

    settings = Settings.from_env({
        "API_SECRET": "api-env",
        "GOOGLE_CLOUD_PROJECT": "proj",
        "SLACK_SIGNING_SECRET_ID": "slack-signing",
    })

    assert settings.api_secret == "api-env"
    assert settings.slack_signing_secret == "proj/slack-signing"
    assert Settings.from_env({}).slack_signing_secret is None

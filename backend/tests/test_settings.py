import pytest

from signal_engine import settings as settings_module
from signal_engine.errors import ConfigurationError
from signal_engine.settings import (
    AppSettings,
    DiscourseSettings,
    PlatformSettings,
    config_cache,
    get_adapter_config,
    get_app_config,
    secret_id_for,
)


def _no_secret_store(secret_id):
    raise AssertionError(f"secret store must not be called outside production ({secret_id})")


def test_app_config_from_environment(monkeypatch):
    monkeypatch.setattr(settings_module, "fetch_secret", _no_secret_store)
    monkeypatch.setenv("DATABASE_URL", "postgresql://db/signals")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")

    config = get_app_config()
    assert config.database_url == "postgresql://db/signals"
    assert config.async_database_url == "postgresql+asyncpg://db/signals"
    assert config.log_level == "DEBUG"
    assert config.environment == "test"
    assert config.llm_timeout_sec == 60.0


def test_app_config_is_cached(monkeypatch):
    first = get_app_config()
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    assert get_app_config() is first


def test_missing_fields_fail_closed_with_every_field_listed(monkeypatch):
    monkeypatch.setattr(settings_module, "fetch_secret", _no_secret_store)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ConfigurationError) as exc_info:
        get_app_config()
    message = str(exc_info.value)
    assert "DATABASE_URL" in message
    assert "OPENAI_API_KEY" in message


def test_environment_beats_secret_store_in_production(monkeypatch):
    fetched = []

    def fake_fetch(secret_id):
        fetched.append(secret_id)
        return {"DATABASE_URL": "postgresql://secret/db", "OPENAI_API_KEY": "sk-secret", "LOG_LEVEL": "ERROR"}

    monkeypatch.setattr(settings_module, "fetch_secret", fake_fetch)
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.delenv("SERVICE_NAME", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.setenv("DATABASE_URL", "postgresql://env/db")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    config = get_app_config()
    assert config.database_url == "postgresql://env/db"
    assert config.openai_api_key == "sk-secret"
    assert config.log_level == "ERROR"
    assert fetched == ["signal-engine/production/app"]


def test_failed_secret_fetch_falls_back_to_environment(monkeypatch):
    def failing_fetch(secret_id):
        raise ConfigurationError("access denied")

    monkeypatch.setattr(settings_module, "fetch_secret", failing_fetch)
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.setenv("DATABASE_URL", "postgresql://env/db")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")

    config = get_app_config()
    assert config.openai_api_key == "sk-env"


def test_adapter_config_missing_url(monkeypatch):
    monkeypatch.delenv("DISCOURSE_URL", raising=False)
    with pytest.raises(ConfigurationError) as exc_info:
        get_adapter_config("discourse", DiscourseSettings)
    assert "DISCOURSE_URL" in str(exc_info.value)


def test_adapter_config_defaults(monkeypatch):
    monkeypatch.setenv("DISCOURSE_URL", "https://forum.example.com/")
    config = get_adapter_config("Discourse", DiscourseSettings)
    assert config.base_url == "https://forum.example.com"
    assert config.signal_strength_name == "discourse_forum"
    assert config.discourse_request_timeout_sec == 15.0
    assert get_adapter_config("discourse", DiscourseSettings) is config


def test_platform_settings_must_name_their_signal():
    class ForumWithoutSignal(PlatformSettings):
        forum_url: str = "https://forum.example.com"

    with pytest.raises(TypeError):
        ForumWithoutSignal()


def test_reset_refuses_outside_tests(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "development")
    with pytest.raises(ConfigurationError):
        config_cache.reset_for_tests()


def test_secret_id_layout(monkeypatch):
    monkeypatch.setenv("SERVICE_NAME", "scores")
    assert secret_id_for("discourse", "production") == "scores/production/discourse"


@pytest.mark.parametrize("url, expected", [
    ("postgres://h/db", "postgresql+asyncpg://h/db"),
    ("postgresql+asyncpg://h/db", "postgresql+asyncpg://h/db"),
    ("sqlite+aiosqlite://", "sqlite+aiosqlite://"),
])
def test_async_database_url(url, expected):
    assert AppSettings(database_url=url, openai_api_key="k").async_database_url == expected

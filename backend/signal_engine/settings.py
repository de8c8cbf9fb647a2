"""
Layered configuration for the engine and its platform adapters.

Precedence (highest wins): init kwargs > environment > .env > secret store > defaults.
The secret store (AWS Secrets Manager) is only consulted when ENVIRONMENT=production;
outside production every required field must come from the environment.

Resolved configs live in `config_cache` for the lifetime of the process.
"""
from __future__ import annotations

import abc
import json
import logging
import os
from typing import TYPE_CHECKING, Any, ClassVar, Literal

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import Field, ValidationError as PydanticValidationError
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from .errors import ConfigurationError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from .schemas import AdapterRuntimeConfig

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "signal-engine"
PRODUCTION = "production"


def current_environment() -> str:
    return os.getenv("ENVIRONMENT", "development").strip().lower()


def secret_id_for(component: str, environment: str | None = None) -> str:
    service = os.getenv("SERVICE_NAME", DEFAULT_SERVICE_NAME)
    return f"{service}/{environment or current_environment()}/{component}"


def fetch_secret(secret_id: str) -> dict[str, Any]:
    """Fetch a JSON secret blob from AWS Secrets Manager."""
    client = boto3.client("secretsmanager", region_name=os.getenv("AWS_REGION") or None)
    try:
        data = client.get_secret_value(SecretId=secret_id)
    except (BotoCoreError, ClientError) as exc:
        raise ConfigurationError(f"Failed to fetch secret {secret_id}: {exc}") from exc

    secret_string = data.get("SecretString")
    if not secret_string:
        raise ConfigurationError(f"Secret string is empty for secret: {secret_id}")
    try:
        blob = json.loads(secret_string)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Secret {secret_id} is not valid JSON: {exc}") from exc
    if not isinstance(blob, dict):
        raise ConfigurationError(f"Secret {secret_id} must be a JSON object")
    return blob


class SecretStoreSettingsSource(PydanticBaseSettingsSource):
    """Settings source backed by the secret store, keyed like the environment.

    Every field is optional here: anything the blob lacks can still come from
    the environment, and a failed fetch only logs a warning.
    """

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        # Values are produced in bulk by __call__.
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        if current_environment() != PRODUCTION:
            return {}
        secret_id = secret_id_for(self.settings_cls.secret_component)
        try:
            blob = config_cache.secret(secret_id)
        except ConfigurationError as exc:
            logger.warning(f"[config] Could not fetch {secret_id}, falling back to environment variables: {exc}")
            return {}
        fields = self.settings_cls.model_fields
        return {key.lower(): value for key, value in blob.items() if key.lower() in fields}


class LayeredSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
    )

    secret_component: ClassVar[str] = "app"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return init_settings, env_settings, dotenv_settings, SecretStoreSettingsSource(settings_cls)


class AppSettings(LayeredSettings):
    secret_component: ClassVar[str] = "app"

    environment: Literal["development", "production", "test"] = "development"
    log_level: str = "INFO"
    database_url: str
    openai_api_key: str
    redis_url: str = "redis://redis:6379/0"
    service_name: str = DEFAULT_SERVICE_NAME
    aws_region: str | None = None
    llm_timeout_sec: float = Field(default=60.0, gt=0)
    llm_max_tokens: int = Field(default=4096, gt=0)
    celery_enabled: bool = True
    scheduler_enabled: bool = True
    scheduler_cron_hour: int = Field(default=2, ge=0, le=23)

    @property
    def async_database_url(self) -> str:
        if self.database_url.startswith("postgresql+") or self.database_url.startswith("sqlite+"):
            return self.database_url
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if self.database_url.startswith("postgres://"):
            return self.database_url.replace("postgres://", "postgresql+asyncpg://", 1)
        return self.database_url


class PlatformSettings(LayeredSettings):
    """Static configuration of one platform adapter."""

    @property
    @abc.abstractmethod
    def signal_strength_name(self) -> str:
        """Name of the signal strength this platform scores."""


class DiscourseSettings(PlatformSettings):
    secret_component: ClassVar[str] = "discourse"

    discourse_url: str
    discourse_api_key: str | None = None
    discourse_api_username: str | None = None
    discourse_signal_strength_name: str = "discourse_forum"
    discourse_request_timeout_sec: float = Field(default=15.0, gt=0)

    @property
    def signal_strength_name(self) -> str:
        return self.discourse_signal_strength_name

    @property
    def base_url(self) -> str:
        return self.discourse_url.rstrip("/")


def _format_validation_error(exc: PydanticValidationError) -> str:
    return ", ".join(
        f"{'.'.join(str(part) for part in err['loc']).upper()} - {err['msg']}" for err in exc.errors()
    )


class ConfigCache:
    """Process-wide configuration cache.

    Each entry is populated on first use and kept for the life of the process.
    Only tests may clear it, via `reset_for_tests`.
    """

    def __init__(self) -> None:
        self.app_config: AppSettings | None = None
        self.adapter_configs: dict[str, PlatformSettings] = {}
        self.secrets: dict[str, dict[str, Any]] = {}

    def secret(self, secret_id: str) -> dict[str, Any]:
        if secret_id not in self.secrets:
            self.secrets[secret_id] = fetch_secret(secret_id)
        return self.secrets[secret_id]

    def get_app_config(self) -> AppSettings:
        if self.app_config is None:
            try:
                self.app_config = AppSettings()
            except PydanticValidationError as exc:
                raise ConfigurationError(
                    f"Invalid application configuration: {_format_validation_error(exc)}"
                ) from exc
        return self.app_config

    def get_adapter_config(self, platform: str, settings_cls: type[PlatformSettings]) -> PlatformSettings:
        key = platform.lower()
        cached = self.adapter_configs.get(key)
        if cached is not None:
            return cached
        try:
            config = settings_cls()
        except PydanticValidationError as exc:
            raise ConfigurationError(
                f"Invalid {platform} adapter configuration: {_format_validation_error(exc)}"
            ) from exc
        self.adapter_configs[key] = config
        return config

    def reset_for_tests(self) -> None:
        if current_environment() != "test":
            raise ConfigurationError(
                "ConfigCache.reset_for_tests() was called outside of a test environment"
            )
        self.app_config = None
        self.adapter_configs.clear()
        self.secrets.clear()


config_cache = ConfigCache()


def get_app_config() -> AppSettings:
    return config_cache.get_app_config()


def get_adapter_config(platform: str, settings_cls: type[PlatformSettings]) -> PlatformSettings:
    return config_cache.get_adapter_config(platform, settings_cls)


async def get_adapter_runtime_config(
    session: "AsyncSession",
    platform_config: PlatformSettings,
    signal_strength_id: int,
    project_id: str,
) -> "AdapterRuntimeConfig":
    """Compose static adapter config with the AI config stored for (signal, project).

    A missing AI config is a configuration error, not a retryable one.
    """
    from .schemas import AdapterRuntimeConfig
    from .services import score_store

    ai_config = await score_store.get_ai_config(session, signal_strength_id, project_id)
    if ai_config is None:
        raise ConfigurationError(
            f"Failed to fetch required AI configuration for signal strength {signal_strength_id} "
            f"and project {project_id}"
        )
    return AdapterRuntimeConfig(platform=platform_config, ai_config=ai_config)

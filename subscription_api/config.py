from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _config_file() -> Optional[Path]:
    configured = os.getenv("CONFIG_FILE")
    if configured:
        return Path(configured)
    default = Path("config.json")
    return default if default.is_file() else None


class Settings(BaseSettings):
    """Application settings loaded from environment variables with validation."""

    model_config = SettingsConfigDict(
        env_file=(str(Path(__file__).resolve().parents[1] / ".env"), ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        populate_by_name=True,
    )

    port: int = Field(default=7070, gt=0, lt=65536, alias="PORT")
    jwt_secret: SecretStr = Field(default=SecretStr(""), alias="JWT_SECRET")
    admin_group_name: str = Field(default="admin", alias="ADMIN_GROUP_NAME")

    stripe_key: SecretStr = Field(default=SecretStr(""), alias="STRIPE_KEY")
    stripe_api_base: str = Field(default="https://api.stripe.com", alias="STRIPE_API_BASE")
    stripe_timeout: float = Field(default=30.0, gt=0, alias="STRIPE_TIMEOUT")

    db_url: str = Field(default="sqlite:///subscriptions.db", alias="DATABASE_URL")
    db_driver: str = Field(default="", alias="DB_DRIVER")
    db_namespace: str = Field(default="", alias="DB_NAMESPACE")
    db_automigrate: bool = Field(default=True, alias="DB_AUTOMIGRATE")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: Optional[str] = Field(default=None, alias="LOG_FILE")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        sources = [init_settings, env_settings, dotenv_settings]
        config_file = _config_file()
        if config_file is not None:
            sources.append(JsonConfigSettingsSource(settings_cls, json_file=config_file))
        return tuple(sources)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")
        return normalized

    @field_validator("db_namespace")
    @classmethod
    def validate_db_namespace(cls, value: str) -> str:
        normalized = value.strip()
        if normalized and not normalized.replace("_", "").isalnum():
            raise ValueError("DB_NAMESPACE may only contain letters, digits and underscores.")
        return normalized

    @model_validator(mode="after")
    def derive_db_driver(self) -> "Settings":
        """Fill in the driver from the connection URL scheme when not configured."""
        if not self.db_driver and self.db_url:
            try:
                self.db_driver = make_url(self.db_url).drivername
            except ArgumentError as exc:
                raise ValueError(f"DATABASE_URL could not be parsed: {exc}") from exc
        return self

    @property
    def database_url(self) -> URL:
        url = make_url(self.db_url)
        if self.db_driver and self.db_driver != url.drivername:
            url = url.set(drivername=self.db_driver)
        return url


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()

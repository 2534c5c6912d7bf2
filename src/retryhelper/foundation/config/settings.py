"""Environment-based configuration using pydantic-settings.

Provides type-safe, validated defaults for retry loops and logging from
environment variables. Supports .env files and nested configuration.

Example:
    >>> from retryhelper.foundation.config import get_settings
    >>> settings = get_settings()
    >>> settings.retry.max_attempts
    3
    >>> settings.logging.level
    'INFO'

    # Or with environment variables:
    # RETRYHELPER_RETRY_MAX_ATTEMPTS=5
    # RETRYHELPER_LOG_LEVEL=DEBUG
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import (
    Field,
    NonNegativeFloat,
    PositiveFloat,
    PositiveInt,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RETRYHELPER_LOG_",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["json", "text", "none"] = "text"
    include_timestamps: bool = True

    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, v: str) -> str:
        """Accept lowercase level names."""
        return v.upper() if isinstance(v, str) else v

    @field_validator("format", mode="before")
    @classmethod
    def _normalize_format(cls, v: str) -> str:
        return v.lower() if isinstance(v, str) else v


class RetrySettings(BaseSettings):
    """Default retry configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RETRYHELPER_RETRY_",
        extra="ignore",
    )

    max_attempts: PositiveInt | None = Field(default=3, description="Attempt limit (None = unlimited)")
    maximum_timeout: PositiveFloat | None = Field(default=None, description="Total time budget in seconds")
    backoff: Literal["linear", "exponential", "constant"] = "linear"
    base_delay: NonNegativeFloat = Field(default=0.1, description="Base delay in seconds (linear, constant)")
    exponential_base: float = Field(default=2.0, ge=1.0, description="Base for exponential backoff")
    exponent: PositiveFloat | None = Field(default=None, description="Fixed exponent (None = grow per attempt)")
    max_delay: PositiveFloat | None = Field(default=30.0, description="Maximum delay in seconds")
    min_jitter: NonNegativeFloat = 0.0
    max_jitter: NonNegativeFloat = 0.0

    @model_validator(mode="after")
    def _check_jitter(self) -> RetrySettings:
        if self.max_jitter and self.max_jitter <= self.min_jitter:
            raise ValueError(f"max_jitter ({self.max_jitter}) must exceed min_jitter ({self.min_jitter})")
        return self

    @computed_field
    @property
    def jitter_enabled(self) -> bool:
        """Whether jitter bounds are configured."""
        return self.max_jitter > self.min_jitter


class RetryHelperSettings(BaseSettings):
    """Root settings for retryhelper.

    Loads configuration from environment variables with RETRYHELPER_ prefix.

    Example environment variables:
        RETRYHELPER_RETRY_MAX_ATTEMPTS=5
        RETRYHELPER_RETRY_BACKOFF=exponential
        RETRYHELPER_RETRY_EXPONENTIAL_BASE=2
        RETRYHELPER_RETRY_MIN_JITTER=0.1
        RETRYHELPER_RETRY_MAX_JITTER=0.25
        RETRYHELPER_LOG_FORMAT=json
    """

    model_config = SettingsConfigDict(
        env_prefix="RETRYHELPER_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        validate_default=True,
    )

    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)


# Singleton pattern for settings
@lru_cache(maxsize=1)
def get_settings() -> RetryHelperSettings:
    """Get the global settings instance (cached)."""
    return RetryHelperSettings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing).

    After calling this, the next get_settings() call will
    reload configuration from environment.
    """
    get_settings.cache_clear()

#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

This module provides type-safe, environment-based configuration for the
Canvas client layer. All configuration is centralized here so that the rate
limiter, cache, token manager and client read the same values.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- Easy testing with override mechanisms

Every component also accepts explicit constructor arguments, so settings are
only the defaults; tests and multi-tenant callers build their own instances.
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hapi_canvas.core.config import constants


class CanvasSettings(BaseSettings):
    """
    Canvas instance and request configuration.
    """

    CANVAS_INSTANCE_URL: str = Field(
        default="https://canvas.instructure.com", description="Canvas instance URL"
    )
    CANVAS_API_PATH: str = Field(default="/api/v1", description="Canvas API base path")
    CANVAS_CLIENT_ID: str = Field(default="", description="OAuth client id")
    CANVAS_CLIENT_SECRET: str | None = Field(default=None, description="OAuth client secret")
    CANVAS_REQUEST_TIMEOUT: float = Field(default=10.0, description="Request timeout in seconds")
    CANVAS_DEFAULT_PAGE_SIZE: int = Field(default=constants.DEFAULT_PAGE_SIZE)
    CANVAS_MAX_PAGE_SIZE: int = Field(default=constants.MAX_PAGE_SIZE)
    CANVAS_MAX_PAGES: int = Field(default=constants.MAX_PAGES, description="Pagination safety ceiling")

    @field_validator("CANVAS_INSTANCE_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @property
    def api_base_url(self) -> str:
        return f"{self.CANVAS_INSTANCE_URL}{self.CANVAS_API_PATH}"

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class RateLimitSettings(BaseSettings):
    """
    Outbound rate limiting configuration.

    Architectural Decision: token bucket with lazy refill
    - Canvas grants a fixed hourly quota per access token
    - Bursts are allowed up to the bucket capacity
    """

    RATE_LIMIT_PER_HOUR: int = Field(default=constants.RATE_LIMIT_PER_HOUR, ge=1)
    RATE_LIMIT_WINDOW_SECONDS: float = Field(default=constants.RATE_LIMIT_WINDOW_SECONDS, gt=0)
    RATE_LIMIT_MAX_RETRIES: int = Field(default=constants.MAX_RETRIES, ge=0)

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class CircuitBreakerSettings(BaseSettings):
    """
    Circuit breaker configuration for fault tolerance.
    """

    CB_FAILURE_THRESHOLD: int = Field(default=constants.CB_FAILURE_THRESHOLD, ge=1)
    CB_RECOVERY_TIMEOUT: float = Field(default=constants.CB_RECOVERY_TIMEOUT, gt=0)

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class CacheSettings(BaseSettings):
    """
    Response cache configuration.

    Per-resource lifetimes live in constants.RESOURCE_TTLS; this is the
    fallback for keys that match none of them.
    """

    CACHE_DEFAULT_TTL: float = Field(default=constants.CACHE_DEFAULT_TTL, gt=0)
    CACHE_MAX_ENTRIES: int = Field(default=constants.CACHE_MAX_ENTRIES, ge=1)
    CACHE_PERSISTENT_ENABLED: bool = Field(default=False, description="Enable Redis second tier")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class RedisSettings(BaseSettings):
    """
    Redis configuration for the optional persistent cache / credential store.
    """

    REDIS_HOST: str = Field(default="localhost", description="Redis server host")
    REDIS_PORT: int = Field(default=6379, description="Redis server port")
    REDIS_DB: int = Field(default=0, description="Redis database number")
    REDIS_PASSWORD: str | None = Field(default=None, description="Redis password (if required)")
    REDIS_SOCKET_TIMEOUT: int = Field(default=5, description="Socket timeout in seconds")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    Architectural Decision: structlog for production-grade logging
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration sections.

    Usage:
        from hapi_canvas.core.config import get_settings

        settings = get_settings()
        capacity = settings.rate_limit.RATE_LIMIT_PER_HOUR
        base_url = settings.canvas.api_base_url
    """

    # Canvas
    CANVAS_INSTANCE_URL: str = Field(default="https://canvas.instructure.com")
    CANVAS_API_PATH: str = Field(default="/api/v1")
    CANVAS_CLIENT_ID: str = Field(default="")
    CANVAS_CLIENT_SECRET: str | None = Field(default=None)
    CANVAS_REQUEST_TIMEOUT: float = Field(default=10.0)
    CANVAS_DEFAULT_PAGE_SIZE: int = Field(default=constants.DEFAULT_PAGE_SIZE)
    CANVAS_MAX_PAGE_SIZE: int = Field(default=constants.MAX_PAGE_SIZE)
    CANVAS_MAX_PAGES: int = Field(default=constants.MAX_PAGES)

    # Rate limiting
    RATE_LIMIT_PER_HOUR: int = Field(default=constants.RATE_LIMIT_PER_HOUR)
    RATE_LIMIT_WINDOW_SECONDS: float = Field(default=constants.RATE_LIMIT_WINDOW_SECONDS)
    RATE_LIMIT_MAX_RETRIES: int = Field(default=constants.MAX_RETRIES)

    # Circuit breaker
    CB_FAILURE_THRESHOLD: int = Field(default=constants.CB_FAILURE_THRESHOLD)
    CB_RECOVERY_TIMEOUT: float = Field(default=constants.CB_RECOVERY_TIMEOUT)

    # Cache
    CACHE_DEFAULT_TTL: float = Field(default=constants.CACHE_DEFAULT_TTL)
    CACHE_MAX_ENTRIES: int = Field(default=constants.CACHE_MAX_ENTRIES)
    CACHE_PERSISTENT_ENABLED: bool = Field(default=False)

    # Redis
    REDIS_HOST: str = Field(default="localhost")
    REDIS_PORT: int = Field(default=6379)
    REDIS_DB: int = Field(default=0)
    REDIS_PASSWORD: str | None = Field(default=None)
    REDIS_SOCKET_TIMEOUT: int = Field(default=5)

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @property
    def canvas(self) -> CanvasSettings:
        """Get Canvas settings."""
        return CanvasSettings(
            CANVAS_INSTANCE_URL=self.CANVAS_INSTANCE_URL,
            CANVAS_API_PATH=self.CANVAS_API_PATH,
            CANVAS_CLIENT_ID=self.CANVAS_CLIENT_ID,
            CANVAS_CLIENT_SECRET=self.CANVAS_CLIENT_SECRET,
            CANVAS_REQUEST_TIMEOUT=self.CANVAS_REQUEST_TIMEOUT,
            CANVAS_DEFAULT_PAGE_SIZE=self.CANVAS_DEFAULT_PAGE_SIZE,
            CANVAS_MAX_PAGE_SIZE=self.CANVAS_MAX_PAGE_SIZE,
            CANVAS_MAX_PAGES=self.CANVAS_MAX_PAGES,
        )

    @property
    def rate_limit(self) -> RateLimitSettings:
        """Get rate limit settings."""
        return RateLimitSettings(
            RATE_LIMIT_PER_HOUR=self.RATE_LIMIT_PER_HOUR,
            RATE_LIMIT_WINDOW_SECONDS=self.RATE_LIMIT_WINDOW_SECONDS,
            RATE_LIMIT_MAX_RETRIES=self.RATE_LIMIT_MAX_RETRIES,
        )

    @property
    def circuit_breaker(self) -> CircuitBreakerSettings:
        """Get circuit breaker settings."""
        return CircuitBreakerSettings(
            CB_FAILURE_THRESHOLD=self.CB_FAILURE_THRESHOLD,
            CB_RECOVERY_TIMEOUT=self.CB_RECOVERY_TIMEOUT,
        )

    @property
    def cache(self) -> CacheSettings:
        """Get cache settings."""
        return CacheSettings(
            CACHE_DEFAULT_TTL=self.CACHE_DEFAULT_TTL,
            CACHE_MAX_ENTRIES=self.CACHE_MAX_ENTRIES,
            CACHE_PERSISTENT_ENABLED=self.CACHE_PERSISTENT_ENABLED,
        )

    @property
    def redis(self) -> RedisSettings:
        """Get Redis settings."""
        return RedisSettings(
            REDIS_HOST=self.REDIS_HOST,
            REDIS_PORT=self.REDIS_PORT,
            REDIS_DB=self.REDIS_DB,
            REDIS_PASSWORD=self.REDIS_PASSWORD,
            REDIS_SOCKET_TIMEOUT=self.REDIS_SOCKET_TIMEOUT,
        )

    @property
    def logging(self) -> LoggingSettings:
        """Get logging settings."""
        return LoggingSettings(LOG_LEVEL=self.LOG_LEVEL, LOG_FORMAT=self.LOG_FORMAT)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


# Global settings instance (lazy singleton)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the global settings instance.

    Returns:
        Settings: Global settings instance
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings (useful for testing).

    Returns:
        Settings: New settings instance
    """
    global _settings
    _settings = Settings()
    return _settings

#!/usr/bin/env python3
"""
BookHive core settings (pydantic-settings)

Everything an operator may tune comes from the environment or ``.env``.
Fixed policy values (TTL classes, limit classes, queue names) live in
constants.py and are not env-tunable.

Note: REDIS_URL is optional. When it is absent the cache, rate limiter and
job queue all run in degraded (fail-open) mode instead of failing startup.
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RedisSettings(BaseSettings):
    """
    Redis connection configuration.

    STAGE-0.1: Redis connection configuration

    A single connection string carries host, credentials and transport:
    ``rediss://`` switches TLS on.
    """

    REDIS_URL: str | None = Field(default=None, description="Redis connection URL")
    REDIS_MAX_CONNECTIONS: int = Field(default=50, description="Maximum pooled connections")
    REDIS_CONNECT_TIMEOUT: float = Field(default=10.0, description="Connect timeout in seconds")
    REDIS_COMMAND_TIMEOUT: float = Field(default=5.0, description="Command (socket) timeout in seconds")
    REDIS_HEALTH_CHECK_INTERVAL: int = Field(default=30, description="Health check interval in seconds")
    REDIS_MAX_RETRIES: int = Field(default=5, description="Connection attempts before giving up")
    REDIS_RETRY_BASE_DELAY_MS: int = Field(default=1000, description="Base delay for connect backoff")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class CacheSettings(BaseSettings):
    """
    Cache behaviour switches.

    STAGE-2: Cache configuration

    TTLs are deliberately NOT configurable here; see constants.CacheTTL.
    """

    ENABLE_CACHING: bool = Field(default=True, description="Master switch for the look-aside cache")
    CACHE_WARM_ON_STARTUP: bool = Field(default=False, description="Warm cache during app startup")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class RateLimitSettings(BaseSettings):
    """
    Rate limiting configuration.

    STAGE-3: Rate limiting switches
    """

    RATE_LIMIT_ENABLED: bool = Field(default=True, description="Enable fixed-window rate limiting")
    RATE_LIMIT_TRUST_USER_HEADER: bool = Field(
        default=True, description="Accept X-User-ID as identifier when no user is on request.state"
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class WorkerSettings(BaseSettings):
    """
    Background worker configuration.

    STAGE-W: Worker pool sizing and shutdown
    """

    WORKER_ENABLED: bool = Field(default=True, description="Run the worker pool inside the API process")
    WORKER_CONCURRENCY: int = Field(default=5, description="Simultaneous jobs per queue")
    WORKER_POLL_INTERVAL_MS: int = Field(default=1000, description="Idle poll interval")
    WORKER_ERROR_BACKOFF_SECONDS: float = Field(default=5.0, description="Sleep after consumer loop errors")
    WORKER_SHUTDOWN_TIMEOUT_SECONDS: float = Field(default=30.0, description="Graceful shutdown timeout")
    WORKER_LOCK_DURATION_MS: int = Field(default=30000, description="Lease on a claimed job, renewed while it runs")
    WORKER_STALLED_INTERVAL_MS: int = Field(default=30000, description="How often consumers sweep for stalled jobs")

    @field_validator("WORKER_CONCURRENCY")
    @classmethod
    def validate_concurrency(cls, v):
        """Concurrency must allow at least one job."""
        if v < 1:
            raise ValueError("WORKER_CONCURRENCY must be >= 1")
        return v

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class EmailSettings(BaseSettings):
    """
    SMTP configuration for the email queue.

    STAGE-E: Email transport
    """

    EMAIL_HOST: str = Field(default="localhost", description="SMTP host")
    EMAIL_PORT: int = Field(default=587, description="SMTP port")
    EMAIL_USER: str | None = Field(default=None, description="SMTP username")
    EMAIL_PASS: str | None = Field(default=None, description="SMTP password")
    EMAIL_FROM: str = Field(default="BookHive <no-reply@bookhive.app>", description="Sender address")
    EMAIL_USE_TLS: bool = Field(default=True, description="Issue STARTTLS after connecting")
    CLIENT_URL: str = Field(default="http://localhost:5173", description="Frontend base URL for links")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class MediaSettings(BaseSettings):
    """
    File locations used by image and cleanup jobs.

    STAGE-M: Media storage
    """

    TEMP_UPLOAD_DIR: str = Field(default="./uploads/temp", description="Scratch directory for uploads")
    MEDIA_ROOT: str = Field(default="./uploads/media", description="Published media directory")
    MEDIA_BASE_URL: str = Field(default="http://localhost:8000/media", description="Public URL of MEDIA_ROOT")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    STAGE-L

    Read by setup_logging() in both the API and the worker process.
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


class ApplicationSettings(BaseSettings):
    """
    HTTP surface: app identity, bind address, router prefix and CORS.
    """

    ENVIRONMENT: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Application environment"
    )
    APP_NAME: str = Field(default="BookHive Core", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")
    API_HOST: str = Field(default="0.0.0.0", description="API host")
    API_PORT: int = Field(default=8000, description="API port")
    API_BASE_PATH: str = Field(default="/api", description="Prefix for all routers")
    CORS_ORIGINS: list[str] = Field(default=["*"], description="Allowed CORS origins")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class Settings(BaseSettings):
    """
    Flat settings read once from the environment; each section is a
    property built from these fields.

    Usage:
        from bookhive.core.config.settings import get_settings

        settings = get_settings()
        url = settings.redis.REDIS_URL
        concurrency = settings.worker.WORKER_CONCURRENCY
    """

    # Redis settings
    REDIS_URL: str | None = Field(default=None, description="Redis connection URL")
    REDIS_MAX_CONNECTIONS: int = Field(default=50, description="Maximum pooled connections")
    REDIS_CONNECT_TIMEOUT: float = Field(default=10.0, description="Connect timeout in seconds")
    REDIS_COMMAND_TIMEOUT: float = Field(default=5.0, description="Command (socket) timeout in seconds")
    REDIS_HEALTH_CHECK_INTERVAL: int = Field(default=30, description="Health check interval in seconds")
    REDIS_MAX_RETRIES: int = Field(default=5, description="Connection attempts before giving up")
    REDIS_RETRY_BASE_DELAY_MS: int = Field(default=1000, description="Base delay for connect backoff")

    # Cache settings
    ENABLE_CACHING: bool = Field(default=True, description="Master switch for the look-aside cache")
    CACHE_WARM_ON_STARTUP: bool = Field(default=False, description="Warm cache during app startup")

    # Rate limiting settings
    RATE_LIMIT_ENABLED: bool = Field(default=True, description="Enable fixed-window rate limiting")
    RATE_LIMIT_TRUST_USER_HEADER: bool = Field(
        default=True, description="Accept X-User-ID as identifier when no user is on request.state"
    )

    # Worker settings
    WORKER_ENABLED: bool = Field(default=True, description="Run the worker pool inside the API process")
    WORKER_CONCURRENCY: int = Field(default=5, description="Simultaneous jobs per queue")
    WORKER_POLL_INTERVAL_MS: int = Field(default=1000, description="Idle poll interval")
    WORKER_ERROR_BACKOFF_SECONDS: float = Field(default=5.0, description="Sleep after consumer loop errors")
    WORKER_SHUTDOWN_TIMEOUT_SECONDS: float = Field(default=30.0, description="Graceful shutdown timeout")
    WORKER_LOCK_DURATION_MS: int = Field(default=30000, description="Lease on a claimed job, renewed while it runs")
    WORKER_STALLED_INTERVAL_MS: int = Field(default=30000, description="How often consumers sweep for stalled jobs")

    # Email settings
    EMAIL_HOST: str = Field(default="localhost", description="SMTP host")
    EMAIL_PORT: int = Field(default=587, description="SMTP port")
    EMAIL_USER: str | None = Field(default=None, description="SMTP username")
    EMAIL_PASS: str | None = Field(default=None, description="SMTP password")
    EMAIL_FROM: str = Field(default="BookHive <no-reply@bookhive.app>", description="Sender address")
    EMAIL_USE_TLS: bool = Field(default=True, description="Issue STARTTLS after connecting")
    CLIENT_URL: str = Field(default="http://localhost:5173", description="Frontend base URL for links")

    # Media settings
    TEMP_UPLOAD_DIR: str = Field(default="./uploads/temp", description="Scratch directory for uploads")
    MEDIA_ROOT: str = Field(default="./uploads/media", description="Published media directory")
    MEDIA_BASE_URL: str = Field(default="http://localhost:8000/media", description="Public URL of MEDIA_ROOT")

    # Logging settings
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    # Application settings
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Application environment"
    )
    APP_NAME: str = Field(default="BookHive Core", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")
    API_HOST: str = Field(default="0.0.0.0", description="API host")
    API_PORT: int = Field(default=8000, description="API port")
    API_BASE_PATH: str = Field(default="/api", description="Prefix for all routers")
    CORS_ORIGINS: list[str] = Field(default=["*"], description="Allowed CORS origins")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @field_validator("REDIS_URL")
    @classmethod
    def blank_url_is_none(cls, v):
        """Treat an empty REDIS_URL the same as an unset one."""
        if v is not None and not v.strip():
            return None
        return v

    # Nested configuration objects
    @property
    def redis(self) -> 'RedisSettings':
        """Get Redis settings."""
        return RedisSettings(
            REDIS_URL=self.REDIS_URL,
            REDIS_MAX_CONNECTIONS=self.REDIS_MAX_CONNECTIONS,
            REDIS_CONNECT_TIMEOUT=self.REDIS_CONNECT_TIMEOUT,
            REDIS_COMMAND_TIMEOUT=self.REDIS_COMMAND_TIMEOUT,
            REDIS_HEALTH_CHECK_INTERVAL=self.REDIS_HEALTH_CHECK_INTERVAL,
            REDIS_MAX_RETRIES=self.REDIS_MAX_RETRIES,
            REDIS_RETRY_BASE_DELAY_MS=self.REDIS_RETRY_BASE_DELAY_MS,
        )

    @property
    def cache(self) -> 'CacheSettings':
        """Get cache settings."""
        return CacheSettings(
            ENABLE_CACHING=self.ENABLE_CACHING,
            CACHE_WARM_ON_STARTUP=self.CACHE_WARM_ON_STARTUP,
        )

    @property
    def rate_limit(self) -> 'RateLimitSettings':
        """Get rate limit settings."""
        return RateLimitSettings(
            RATE_LIMIT_ENABLED=self.RATE_LIMIT_ENABLED,
            RATE_LIMIT_TRUST_USER_HEADER=self.RATE_LIMIT_TRUST_USER_HEADER,
        )

    @property
    def worker(self) -> 'WorkerSettings':
        """Get worker settings."""
        return WorkerSettings(
            WORKER_ENABLED=self.WORKER_ENABLED,
            WORKER_CONCURRENCY=self.WORKER_CONCURRENCY,
            WORKER_POLL_INTERVAL_MS=self.WORKER_POLL_INTERVAL_MS,
            WORKER_ERROR_BACKOFF_SECONDS=self.WORKER_ERROR_BACKOFF_SECONDS,
            WORKER_SHUTDOWN_TIMEOUT_SECONDS=self.WORKER_SHUTDOWN_TIMEOUT_SECONDS,
            WORKER_LOCK_DURATION_MS=self.WORKER_LOCK_DURATION_MS,
            WORKER_STALLED_INTERVAL_MS=self.WORKER_STALLED_INTERVAL_MS,
        )

    @property
    def email(self) -> 'EmailSettings':
        """Get email settings."""
        return EmailSettings(
            EMAIL_HOST=self.EMAIL_HOST,
            EMAIL_PORT=self.EMAIL_PORT,
            EMAIL_USER=self.EMAIL_USER,
            EMAIL_PASS=self.EMAIL_PASS,
            EMAIL_FROM=self.EMAIL_FROM,
            EMAIL_USE_TLS=self.EMAIL_USE_TLS,
            CLIENT_URL=self.CLIENT_URL,
        )

    @property
    def media(self) -> 'MediaSettings':
        """Get media settings."""
        return MediaSettings(
            TEMP_UPLOAD_DIR=self.TEMP_UPLOAD_DIR,
            MEDIA_ROOT=self.MEDIA_ROOT,
            MEDIA_BASE_URL=self.MEDIA_BASE_URL,
        )

    @property
    def logging(self) -> 'LoggingSettings':
        """Get logging settings."""
        return LoggingSettings(
            LOG_LEVEL=self.LOG_LEVEL,
            LOG_FORMAT=self.LOG_FORMAT,
        )

    @property
    def app(self) -> 'ApplicationSettings':
        """Get application settings."""
        return ApplicationSettings(
            ENVIRONMENT=self.ENVIRONMENT,
            APP_NAME=self.APP_NAME,
            APP_VERSION=self.APP_VERSION,
            API_HOST=self.API_HOST,
            API_PORT=self.API_PORT,
            API_BASE_PATH=self.API_BASE_PATH,
            CORS_ORIGINS=self.CORS_ORIGINS,
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Process-wide Settings, built on first use.

    STAGE-0.3
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """
    Rebuild the process-wide Settings from the current environment.
    """
    global _settings
    _settings = Settings()
    return _settings

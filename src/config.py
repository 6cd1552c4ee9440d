"""Application configuration using pydantic-settings.

All configuration is loaded from environment variables with sensible defaults.
Secrets should NEVER be logged or exposed in error messages.
"""

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables.

    The queue mode is decided once at startup from ``queue_enabled`` and the
    reachability of ``redis_url``; it never changes for the process lifetime.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Redis / durable queue
    redis_url: str = Field(
        default="redis://localhost:6379",
        description="Redis connection URL for ARQ background jobs",
    )
    redis_password: SecretStr | None = Field(default=None)
    redis_conn_timeout: int = Field(default=1, ge=1, le=60)
    redis_conn_retries: int = Field(default=3, ge=0, le=10)
    queue_enabled: bool = Field(
        default=False,
        validation_alias=AliasChoices("queue_enabled", "redis_enabled"),
        description="Use the durable queue; falls back to direct mode if Redis is unreachable",
    )
    queue_name: str = Field(default="workflow-runtime:queue")
    worker_concurrency: int = Field(default=5, ge=1, le=1000)
    job_attempts: int = Field(default=3, ge=1, le=20)
    job_backoff_delay: float = Field(
        default=1.0,
        ge=0.0,
        le=600.0,
        description="Base delay in seconds for exponential job retry backoff",
    )
    keep_completed: int = Field(
        default=86400,
        ge=0,
        description="Seconds to retain completed job results",
    )
    keep_failed: int = Field(
        default=604800,
        ge=0,
        description="Seconds to retain failed job results",
    )

    # Execution
    execution_timeout: float = Field(
        default=300,
        gt=0,
        le=86400,
        description="Default maximum workflow execution time in seconds",
    )
    execution_strict_graph: bool = Field(
        default=True,
        description="Fail executions whose graph has cyclic or unreachable nodes",
    )
    node_retry_delay: float = Field(default=0.0, ge=0.0, le=60.0)

    # Scheduler
    scheduler_default_timezone: str = Field(default="UTC")

    # Server Configuration
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000, ge=1, le=65535)
    debug: bool = Field(default=False)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO"
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed origins",
    )

    @field_validator("cors_origins")
    @classmethod
    def validate_cors_origins(cls, v: str) -> str:
        """Validate CORS origins format."""
        origins = [o.strip() for o in v.split(",") if o.strip()]
        if not origins:
            raise ValueError("At least one CORS origin must be specified")
        return v

    @field_validator("scheduler_default_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject timezone names unknown to the tz database."""
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def get_masked_redis_url(self) -> str:
        """Get the Redis URL with any inline password masked for logging."""
        scheme, sep, rest = self.redis_url.partition("://")
        if not sep or "@" not in rest:
            return self.redis_url
        _, host = rest.rsplit("@", 1)
        return f"{scheme}://***@{host}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Settings are loaded once and cached for the application lifetime.
    Use dependency injection in FastAPI routes to access settings.
    """
    return Settings()


# Export commonly used settings accessors
settings = get_settings()

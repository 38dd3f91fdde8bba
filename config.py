# config.py

"""Application configuration utilities.

Values are loaded from environment variables, optionally backed by a ``.env``
file. :func:`get_settings` builds the settings once and caches the result.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment the process runs in."""

    DEV = "dev"
    TEST = "test"
    PROD = "prod"


class Settings(BaseSettings):
    """Application settings read from the environment."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    env: Environment = Environment.DEV

    database_url: str | None = None
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "bistro"
    db_password: str = ""
    db_name: str = "bistro"
    db_sslmode: str = "disable"
    db_max_open_conns: int = 25
    db_max_idle_conns: int = 5
    db_conn_max_lifetime: int = 1800
    db_conn_max_idle_time: int = 300
    db_slow_query_ms: int = 200
    db_query_sample_rate: float = 0.01

    jwt_secret: str = "change-me"
    jwt_issuer: str = "bistro-core"
    jwt_audience: str = "restaurant-platform"
    access_token_ttl: int = 900
    refresh_token_ttl: int = 86400

    password_time_cost: int = 3
    password_memory_cost: int = 65536

    server_host: str = "0.0.0.0"  # nosec B104: bind for container use
    server_port: int = 8000
    cors_origins: str = "*"
    shutdown_timeout: int = 30
    log_level: str = "INFO"

    @property
    def sqlalchemy_url(self) -> str:
        """Return the async SQLAlchemy URL for the configured database."""

        if self.database_url:
            return self.database_url
        password = f":{self.db_password}" if self.db_password else ""
        return (
            f"postgresql+asyncpg://{self.db_user}{password}@{self.db_host}:"
            f"{self.db_port}/{self.db_name}?ssl={self.db_sslmode}"
        )

    @property
    def allowed_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


def validate_settings(settings: Settings) -> None:
    """Refuse to boot production with an unsafe signing secret."""

    if settings.env == Environment.PROD and len(settings.jwt_secret) < 32:
        raise RuntimeError("JWT_SECRET must be at least 32 characters in prod")
    if settings.db_max_idle_conns > settings.db_max_open_conns:
        raise RuntimeError("DB_MAX_IDLE_CONNS cannot exceed DB_MAX_OPEN_CONNS")


# Cached singleton so every caller sees the same values
@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""

    return Settings()

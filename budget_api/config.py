"""
Configuration for the budget API.

Everything comes from environment variables (or a local ``.env`` file).
Database coordinates, the token signing secret and the listen port are
required; ``validate_settings`` is called before serving so a missing value
stops the process at startup instead of failing a request later.
"""

from functools import cached_property, lru_cache
from urllib.parse import quote_plus

from pydantic import Field, ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


class DatabaseSettings(BaseSettings):
    """Relational store connection and pool configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = Field(..., min_length=1)
    port: int = Field(..., ge=1, le=65535)
    user: str = Field(..., min_length=1)
    password: str = Field(default="")
    name: str = Field(..., min_length=1)

    # Pool: 10 idle connections, 100 in total, recycled every hour
    pool_size: int = Field(default=10, ge=1)
    max_overflow: int = Field(default=90, ge=0)
    pool_recycle: int = Field(default=3600, ge=1)
    echo: bool = False

    @property
    def url(self) -> str:
        return (
            f"mysql+pymysql://{quote_plus(self.user)}:{quote_plus(self.password)}"
            f"@{self.host}:{self.port}/{self.name}?charset=utf8mb4"
        )


class JWTSettings(BaseSettings):
    """Session token signing configuration."""

    model_config = SettingsConfigDict(
        env_prefix="JWT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    secret: str = Field(..., min_length=1)
    algorithm: str = "HS256"
    issuer: str = "moniplan-api"
    expire_hours: int = Field(default=24, ge=1)


class AppSettings(BaseSettings):
    """HTTP runtime settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    port: int = Field(..., ge=1, le=65535)
    environment: str = Field(default="development", alias="APP_ENV")
    log_level: str = "INFO"
    log_json: bool | None = None

    keep_alive_timeout: int = Field(default=120, ge=1)
    shutdown_grace_period: int = Field(default=5, ge=0)

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def json_logs(self) -> bool:
        if self.log_json is None:
            return not self.is_development
        return self.log_json


class Settings:
    """
    Root settings container.

    Each group is loaded on first access, so code that only needs the
    signing secret does not require the database variables to be set.
    """

    @cached_property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @cached_property
    def jwt(self) -> JWTSettings:
        return JWTSettings()

    @cached_property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call ``get_settings.cache_clear()`` to reload.
    """
    return Settings()


def validate_settings(settings: Settings | None = None) -> Settings:
    """Load every settings group, raising ConfigurationError if any is incomplete."""
    settings = settings or get_settings()
    problems = []
    for group in ("database", "jwt", "app"):
        try:
            getattr(settings, group)
        except PydanticValidationError as exc:
            fields = ", ".join(
                ".".join(str(part) for part in err["loc"]) for err in exc.errors()
            )
            problems.append(f"{group}: {fields}")
    if problems:
        raise ConfigurationError(
            "Configuration is incomplete. Please check your environment or .env file "
            f"({'; '.join(problems)})"
        )
    return settings

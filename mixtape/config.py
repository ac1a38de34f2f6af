from __future__ import annotations

import os
import sys
from typing import Any, List

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from mixtape.logging import get_logger

logger = get_logger(__name__)

# Access tokens live 7 days, refresh tokens 30 days
DEFAULT_ACCESS_TOKEN_TTL_MINUTES = 7 * 24 * 60
DEFAULT_REFRESH_TOKEN_TTL_MINUTES = 30 * 24 * 60


class ConfigurationError(RuntimeError):
    """Raised when settings cannot support serving requests."""


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings, each bound to an environment variable."""

    # Token signing
    jwt_secret: str | None = env_field(None, "JWT_SECRET")
    jwt_issuer: str = env_field("mixtape", "JWT_ISSUER")
    jwt_audience: str = env_field("mixtape-clients", "JWT_AUDIENCE")
    jwt_leeway_seconds: int = env_field(
        0,
        "JWT_LEEWAY_SECONDS",
        ge=0,
        description="Clock skew tolerated when checking token expiry",
    )
    access_token_ttl_minutes: int = env_field(
        DEFAULT_ACCESS_TOKEN_TTL_MINUTES, "ACCESS_TOKEN_TTL_MINUTES", gt=0
    )
    refresh_token_ttl_minutes: int = env_field(
        DEFAULT_REFRESH_TOKEN_TTL_MINUTES, "REFRESH_TOKEN_TTL_MINUTES", gt=0
    )

    # Password hashing cost (argon2id); defaults keep one hash in the tens of ms
    password_hash_time_cost: int = env_field(3, "PASSWORD_HASH_TIME_COST", ge=1)
    password_hash_memory_cost: int = env_field(
        64 * 1024, "PASSWORD_HASH_MEMORY_COST", ge=8, description="KiB"
    )
    password_hash_parallelism: int = env_field(4, "PASSWORD_HASH_PARALLELISM", ge=1)

    username_synthesis_attempts: int = env_field(
        5,
        "USERNAME_SYNTHESIS_ATTEMPTS",
        ge=1,
        description="Random suffixes tried when provisioning a federated account",
    )

    # Google OAuth
    google_client_id: str | None = env_field(None, "GOOGLE_CLIENT_ID")
    google_client_secret: str | None = env_field(None, "GOOGLE_CLIENT_SECRET")
    google_callback_url: str = env_field(
        "http://localhost:3000/api/auth/google/callback", "GOOGLE_CALLBACK_URL"
    )
    frontend_url: str = env_field("http://localhost:5173", "FRONTEND_URL")

    # Storage
    database_url: str = env_field("postgresql://localhost:5432/mixtape", "DATABASE_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    memory_state_dir: str | None = env_field(
        None,
        "MEMORY_STATE_DIR",
        description="Directory for the memory store snapshot; unset keeps state in-process only",
    )

    cors_allow_origins: List[str] = env_field([], "CORS_ALLOW_ORIGINS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("jwt_secret")
    @classmethod
    def _blank_secret_is_missing(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value

    @field_validator("google_client_id", "google_client_secret", "memory_state_dir")
    @classmethod
    def _blank_is_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()

    @field_validator("frontend_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @model_validator(mode="after")
    def _refresh_outlives_access(self) -> "Settings":
        if self.refresh_token_ttl_minutes <= self.access_token_ttl_minutes:
            raise ValueError(
                "REFRESH_TOKEN_TTL_MINUTES must be longer than ACCESS_TOKEN_TTL_MINUTES"
            )
        return self

    @property
    def google_oauth_configured(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)

    def validate_for_startup(self) -> None:
        """Raise ConfigurationError when the process must not serve requests."""
        if not self.jwt_secret:
            raise ConfigurationError("JWT_SECRET environment variable is not set")


def require_startup_settings(settings: Settings) -> Settings:
    """Validate settings before the app serves anything; exit the process if invalid."""
    try:
        settings.validate_for_startup()
    except ConfigurationError as exc:
        logger.critical("startup_config_invalid", error=str(exc))
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)
    if not settings.google_oauth_configured:
        logger.warning(
            "google_oauth_not_configured",
            message="Google authentication will not be available",
        )
    return settings


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None

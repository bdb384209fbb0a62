from __future__ import annotations

import os
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from sessionauth.logging import get_logger

logger = get_logger(__name__)


class Environment(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TEST = "test"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the auth service."""

    env: Environment = env_field(Environment.DEVELOPMENT, "NODE_ENV")

    database_url: str = env_field(
        "postgresql://localhost:5432/sessionauth", "DATABASE_URL"
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Use in-process stores and allow runtime resets between tests.",
    )

    # Sessions
    session_secret: str = env_field("change-me-session-secret", "SESSION_SECRET")
    session_cookie_name: str = env_field("connect.sid", "SESSION_COOKIE_NAME")
    session_max_age_seconds: int = env_field(60 * 60 * 24, "SESSION_MAX_AGE_SECONDS")
    session_renewal_threshold_seconds: int = env_field(
        15 * 60,
        "SESSION_RENEWAL_THRESHOLD_SECONDS",
        description="Idle time after which a request refreshes the session TTL",
    )

    # Email verification
    verify_token_ttl_seconds: int = env_field(3600, "VERIFY_TOKEN_TTL_SECONDS")
    registration_token_ttl_seconds: int = env_field(
        2 * 3600, "REGISTRATION_TOKEN_TTL_SECONDS"
    )
    resend_limit: int = env_field(3, "RESEND_LIMIT")
    resend_window_seconds: int = env_field(3600, "RESEND_WINDOW_SECONDS")

    # Outbound email
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASS")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    smtp_from: str | None = env_field(None, "SMTP_FROM")
    app_base_url: str = env_field("http://localhost:7000", "APP_DOMAIN")

    # Google OAuth
    google_client_id: str | None = env_field(None, "GOOGLE_CLIENT_ID")
    google_client_secret: str | None = env_field(None, "GOOGLE_CLIENT_SECRET")

    cors_allow_origins: list[str] = env_field([], "CORS_ORIGIN")

    model_config = ConfigDict(extra="ignore")

    @property
    def is_production(self) -> bool:
        return self.env == Environment.PRODUCTION

    @property
    def google_redirect_uri(self) -> str:
        return self.app_base_url.rstrip("/") + "/auth/google/redirect"

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

    @field_validator("env")
    @classmethod
    def _validate_env(cls, value: Environment) -> Environment:
        return Environment(value)

    @field_validator("session_secret")
    @classmethod
    def _validate_session_secret(cls, value: str) -> str:
        if not value or len(value) < 5:
            raise ValueError("SESSION_SECRET must be at least 5 characters long")
        return value

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
        if _settings_cache.session_secret == "change-me-session-secret":
            logger.warning("session_secret_default_in_use", env=_settings_cache.env.value)
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None

from __future__ import annotations

import os
import secrets
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from littleagent.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the agent API, read from the environment and ``.env``."""

    database_url: str = env_field(
        "postgresql://localhost:5432/littleagent", "DATABASE_URL"
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Allow generated secrets and runtime resets for test runs.",
    )
    jwt_secret: str | None = env_field(None, "JWT_SECRET")
    jwt_issuer: str = env_field("littleagent", "JWT_ISSUER")
    jwt_audience: str = env_field("littleagent-clients", "JWT_AUDIENCE")
    access_token_ttl_minutes: int = env_field(60, "ACCESS_TOKEN_TTL_MINUTES")
    encryption_key: str | None = env_field(
        None,
        "ENCRYPTION_KEY",
        description="Key material for encrypting workspace model API keys at rest.",
    )
    model_name: str = env_field("gpt-4o-mini", "MODEL_NAME")
    model_base_url: str | None = env_field(None, "MODEL_BASE_URL")
    agent_max_tool_rounds: int = env_field(
        8,
        "AGENT_MAX_TOOL_ROUNDS",
        ge=1,
        le=10,
        description="Tool rounds allowed per turn before the turn is aborted.",
    )
    agent_max_output_tokens: int = env_field(4096, "AGENT_MAX_OUTPUT_TOKENS", ge=1)
    agent_temperature: float = env_field(0.4, "AGENT_TEMPERATURE", ge=0.0, le=2.0)
    website_fetch_timeout: float = env_field(
        8.0,
        "WEBSITE_FETCH_TIMEOUT",
        gt=0,
        description="Seconds allowed for the best-effort brand website fetch.",
    )
    website_fetch_max_chars: int = env_field(3000, "WEBSITE_FETCH_MAX_CHARS", ge=0)
    conversation_list_limit: int = env_field(50, "CONVERSATION_LIST_LIMIT", ge=1)
    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")

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

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @model_validator(mode="after")
    def _ensure_secrets(self) -> "Settings":
        # Generated secrets do not survive a restart, so only tests may rely on them
        for name in ("jwt_secret", "encryption_key"):
            if getattr(self, name):
                continue
            if not self.test_mode:
                raise ValueError(f"{name.upper()} must be set outside TEST_MODE")
            setattr(self, name, secrets.token_urlsafe(48))
            logger.warning("generated_ephemeral_secret", setting=name)
        return self


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

from __future__ import annotations

import os
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from promptgraph.logging import get_logger

logger = get_logger(__name__)


class ModelBackend(str, Enum):
    """Text-generation backends the LLM service can build."""

    OPENAI = "openai"
    STUB = "stub"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the workflow engine and its collaborators."""

    model_backend: ModelBackend = env_field(ModelBackend.OPENAI, "MODEL_BACKEND")
    model_name: str = env_field("gpt-4o", "MODEL_NAME")
    model_temperature: float = env_field(
        0.7,
        "MODEL_TEMPERATURE",
        description="Sampling temperature passed to the text-generation backend",
    )
    openai_api_key: str | None = env_field(None, "OPENAI_API_KEY")
    openai_base_url: str | None = env_field(None, "OPENAI_BASE_URL")
    llm_timeout_seconds: float = env_field(
        60.0,
        "LLM_TIMEOUT_SECONDS",
        description="Per-call timeout; expiry is reported as a transient generation error",
    )
    workflow_max_steps: int = env_field(
        100,
        "WORKFLOW_MAX_STEPS",
        description="Maximum node executions per workflow invocation",
    )
    quality_threshold: int = env_field(6, "QUALITY_THRESHOLD")
    quality_medium_threshold: int | None = env_field(4, "QUALITY_MEDIUM_THRESHOLD")
    quality_max_retries: int = env_field(
        3,
        "QUALITY_MAX_RETRIES",
        description="Improvement passes the quality gate allows before giving up",
    )

    cors_allow_origins: list[str] = env_field(
        ["*"],
        "CORS_ALLOW_ORIGINS",
        description="Comma-separated origins allowed to call the context service",
    )

    model_config = ConfigDict(extra="ignore", protected_namespaces=())

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        from_file: list[str] = []
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
                from_file.append(env_name)
        if from_file:
            logger.debug("settings_env_file_values", keys=from_file)
        return cls(**merged)

    @field_validator("model_backend", mode="before")
    @classmethod
    def _validate_backend(cls, value: Any) -> ModelBackend:
        if isinstance(value, str):
            value = value.strip().lower()
        return ModelBackend(value)

    @field_validator("model_temperature")
    @classmethod
    def _validate_temperature(cls, value: float) -> float:
        if not 0.0 <= value <= 2.0:
            raise ValueError("model_temperature must be between 0 and 2")
        return value

    @field_validator("llm_timeout_seconds")
    @classmethod
    def _validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("llm_timeout_seconds must be positive")
        return value

    @field_validator("workflow_max_steps")
    @classmethod
    def _validate_max_steps(cls, value: int) -> int:
        if value < 1:
            raise ValueError("workflow_max_steps must be at least 1")
        return value

    @field_validator("quality_max_retries")
    @classmethod
    def _validate_max_retries(cls, value: int) -> int:
        if value < 0:
            raise ValueError("quality_max_retries must not be negative")
        return value

    @field_validator("quality_medium_threshold", mode="before")
    @classmethod
    def _empty_medium_threshold(cls, value: Any) -> Any:
        # QUALITY_MEDIUM_THRESHOLD= disables the medium band
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @model_validator(mode="after")
    def _check_thresholds(self) -> "Settings":
        medium = self.quality_medium_threshold
        if medium is not None and medium > self.quality_threshold:
            raise ValueError(
                "quality_medium_threshold must not exceed quality_threshold"
            )
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

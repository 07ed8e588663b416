"""Hydra Router — Application Configuration."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hydra_router.domain.enums import SelectionPolicy


class Environment(str, enum.Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Centralised, validated configuration loaded from environment / .env file.

    Every field reads from ``HYDRA_<FIELD>``.  Provider API keys are *not*
    settings; the credential pool scans them from the environment directly.
    """

    model_config = SettingsConfigDict(
        env_prefix="HYDRA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    app_name: str = "hydra-router"
    app_env: Environment = Environment.DEVELOPMENT
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    # ── Routing ──────────────────────────────────────────────
    default_model: str = "gemini-2.0-flash-exp"
    max_attempts: int = 4
    history_limit: int = 16
    selection_policy: SelectionPolicy = SelectionPolicy.ROUND_ROBIN
    credentials_env_file: str | None = ".env"

    # Health monitor penalties
    failure_threshold: int = 3
    kill_switch_seconds: float = 86_400.0
    rate_limit_cooldown_seconds: float = 60.0
    transient_cooldown_seconds: float = 60.0
    emergency_revive_seconds: float = 5.0

    # ── Generation ───────────────────────────────────────────
    provider_timeout_seconds: float = 60.0
    temperature: float = 0.7
    thinking_budget: int = 4096
    system_instruction: str | None = None

    # ── Provider endpoints ───────────────────────────────────
    provider_base_urls: dict[str, str] = Field(default_factory=dict)
    openrouter_referer: str = "http://localhost:3000"
    openrouter_title: str = "Hydra Router"

    # ── Derived helpers ──────────────────────────────────────
    @property
    def is_production(self) -> bool:
        return self.app_env == Environment.PRODUCTION

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper()

    @field_validator("history_limit")
    @classmethod
    def _holds_an_exchange(cls, v: int) -> int:
        if v < 2:
            raise ValueError("must be at least 2 (one user turn and one answer)")
        return v

    @field_validator("max_attempts", "failure_threshold")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator(
        "kill_switch_seconds",
        "rate_limit_cooldown_seconds",
        "transient_cooldown_seconds",
        "emergency_revive_seconds",
        "thinking_budget",
    )
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @field_validator("provider_base_urls")
    @classmethod
    def _upper_provider_names(cls, v: dict[str, str]) -> dict[str, str]:
        return {k.upper(): url.rstrip("/") for k, url in v.items()}

    @model_validator(mode="after")
    def _check_timeouts(self) -> Settings:
        if self.provider_timeout_seconds <= 0:
            raise ValueError("provider_timeout_seconds must be positive")
        if not 0.0 <= self.temperature <= 2.0:
            raise ValueError("temperature must be between 0 and 2")
        return self


def get_settings(**overrides: Any) -> Settings:
    """Factory that allows test-time overrides."""
    return Settings(**overrides)

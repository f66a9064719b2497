"""
tenancy_sdk.tier0_core.config
──────────────────────────────
Typed configuration with env layering. Reads from .env → environment
variables. All fields are typed via Pydantic. Invalid values raise at
startup, not at runtime.

Minimal stack: pydantic-settings + python-dotenv
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TenancyConfig(BaseSettings):
    """
    Typed tenancy configuration.
    All env vars are prefixed with TENANCY_ unless overridden.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ── Application ───────────────────────────────────────────────────────────
    app_name: str = Field(default="tenancy", alias="APP_NAME")
    environment: str = Field(default="development", alias="TENANCY_ENV")

    # ── Document store ────────────────────────────────────────────────────────
    store_backend: str = Field(default="memory", alias="TENANCY_STORE_BACKEND")
    database_url: str = Field(
        default="sqlite+aiosqlite:///./tenancy.db",
        alias="DATABASE_URL",
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    # ── Identity ──────────────────────────────────────────────────────────────
    identity_provider: str = Field(default="mock", alias="TENANCY_IDENTITY_PROVIDER")

    # ── Logging ───────────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="TENANCY_LOG_LEVEL")
    log_format: str = Field(default="json", alias="TENANCY_LOG_FORMAT")

    # ── Error reporting ───────────────────────────────────────────────────────
    error_backend: str = Field(default="none", alias="TENANCY_ERROR_BACKEND")

    # ── Audit ─────────────────────────────────────────────────────────────────
    audit_backend: str = Field(default="log", alias="TENANCY_AUDIT_BACKEND")

    # ── Quotas ────────────────────────────────────────────────────────────────
    # Percentages of the plan maximum at which each UI treatment starts.
    quota_warning_pct: float = Field(default=80.0, alias="TENANCY_QUOTA_WARNING_PCT")
    quota_critical_pct: float = Field(default=95.0, alias="TENANCY_QUOTA_CRITICAL_PCT")
    quota_exhausted_pct: float = Field(default=100.0, alias="TENANCY_QUOTA_EXHAUSTED_PCT")

    # ── Team ──────────────────────────────────────────────────────────────────
    invitation_ttl_days: int = Field(default=7, alias="TENANCY_INVITATION_TTL_DAYS")

    # ── Work orders ───────────────────────────────────────────────────────────
    work_order_prefix: str = Field(default="WO", alias="TENANCY_WORK_ORDER_PREFIX")

    @field_validator("environment")
    @classmethod
    def validate_env(cls, v: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if v.lower() not in allowed:
            raise ValueError(f"environment must be one of {allowed}, got {v!r}")
        return v.lower()

    @field_validator("store_backend")
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        if v.lower() not in {"memory", "sql"}:
            raise ValueError(f"store_backend must be 'memory' or 'sql', got {v!r}")
        return v.lower()

    @model_validator(mode="after")
    def validate_thresholds(self) -> "TenancyConfig":
        if not (0 < self.quota_warning_pct < self.quota_critical_pct < self.quota_exhausted_pct):
            raise ValueError(
                "quota thresholds must satisfy 0 < warning < critical < exhausted"
            )
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_test(self) -> bool:
        return self.environment == "test"


@lru_cache(maxsize=1)
def get_config() -> TenancyConfig:
    """
    Return the singleton tenancy config. Cached after first call.
    Call _reset_config() in tests to pick up new env vars.
    """
    return TenancyConfig()


def _reset_config() -> None:
    """For tests: clear the config cache."""
    get_config.cache_clear()


__all__ = ["TenancyConfig", "get_config"]

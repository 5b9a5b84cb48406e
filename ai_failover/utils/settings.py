"""Application settings and configuration.

This module centralizes process-level settings. It loads configuration from
environment variables (and a local ``.env`` file) and provides defaults.
Resilience thresholds live in the persisted config document handled by
``ai_failover.core.config``; the ``FAILOVER_*`` overrides for that document
are declared here so every environment variable has one home.
"""

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings as PydanticBaseSettings
from pydantic_settings import SettingsConfigDict

logger = logging.getLogger(__name__)

ENV_PREFIX = "FAILOVER_"

_env_path = Path.cwd() / ".env"
if _env_path.exists():
    load_dotenv(dotenv_path=_env_path)
    logger.info(f"Loaded environment variables from {_env_path}")


class Settings(PydanticBaseSettings):
    """Process settings loaded from environment variables with sensible defaults."""

    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Persisted resilience configuration
    config_path: Path = Field(default=Path(".failover-config.json"), alias="FAILOVER_CONFIG_PATH")

    # Status API
    host: str = Field(default="127.0.0.1", alias="FAILOVER_API_HOST")
    port: int = Field(default=8085, alias="FAILOVER_API_PORT")

    # Bounded in-memory history
    fallback_history_size: int = Field(default=1000, alias="FAILOVER_HISTORY_SIZE")
    event_queue_size: int = Field(default=256, alias="FAILOVER_EVENT_QUEUE_SIZE")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to a dictionary for serialization."""
        return {k: str(v) if isinstance(v, Path) else v for k, v in self.model_dump().items()}


class EnvironmentOverrides(PydanticBaseSettings):
    """``FAILOVER_*`` variables that override the persisted resilience config.

    Every field is optional; only variables that are actually set are applied.
    List values are comma separated.
    """

    primary_provider: str | None = Field(default=None, alias="FAILOVER_PRIMARY_PROVIDER")
    fallback_providers: str | None = Field(default=None, alias="FAILOVER_FALLBACK_PROVIDERS")
    auto_fallback_enabled: bool | None = Field(default=None, alias="FAILOVER_AUTO_FALLBACK")

    health_check_interval_ms: int | None = Field(default=None, alias="FAILOVER_HEALTH_CHECK_INTERVAL_MS")
    health_check_timeout_ms: int | None = Field(default=None, alias="FAILOVER_HEALTH_CHECK_TIMEOUT_MS")

    failure_threshold: int | None = Field(default=None, alias="FAILOVER_FAILURE_THRESHOLD")
    reset_timeout_ms: int | None = Field(default=None, alias="FAILOVER_RESET_TIMEOUT_MS")
    half_open_max_calls: int | None = Field(default=None, alias="FAILOVER_HALF_OPEN_MAX_CALLS")

    max_retries: int | None = Field(default=None, alias="FAILOVER_MAX_RETRIES")
    base_delay_ms: int | None = Field(default=None, alias="FAILOVER_BASE_DELAY_MS")
    max_delay_ms: int | None = Field(default=None, alias="FAILOVER_MAX_DELAY_MS")
    backoff_multiplier: float | None = Field(default=None, alias="FAILOVER_BACKOFF_MULTIPLIER")
    retryable_errors: str | None = Field(default=None, alias="FAILOVER_RETRYABLE_ERRORS")

    max_response_time_ms: int | None = Field(default=None, alias="FAILOVER_MAX_RESPONSE_TIME_MS")
    min_success_rate: float | None = Field(default=None, alias="FAILOVER_MIN_SUCCESS_RATE")
    max_error_rate: float | None = Field(default=None, alias="FAILOVER_MAX_ERROR_RATE")

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore", populate_by_name=True)

    @classmethod
    def from_environ(cls, environ: Mapping[str, str]) -> "EnvironmentOverrides":
        """Read overrides from an explicit mapping instead of the process environment."""
        values = {
            key.upper(): value
            for key, value in environ.items()
            if key.upper().startswith(ENV_PREFIX) and value != ""
        }
        return cls.model_validate(values)

    def as_config_patch(self) -> dict[str, Any]:
        """Return the set overrides shaped like a ``ResilienceConfig`` document."""
        patch: dict[str, Any] = {}

        def put(section: str | None, key: str, value: Any) -> None:
            if value is None:
                return
            if section is None:
                patch[key] = value
            else:
                patch.setdefault(section, {})[key] = value

        put(None, "primary_provider", self.primary_provider)
        if self.fallback_providers is not None:
            put(None, "fallback_providers", _split_list(self.fallback_providers))
        put(None, "auto_fallback_enabled", self.auto_fallback_enabled)

        put("health_check", "interval_ms", self.health_check_interval_ms)
        put("health_check", "timeout_ms", self.health_check_timeout_ms)

        put("circuit_breaker", "failure_threshold", self.failure_threshold)
        put("circuit_breaker", "reset_timeout_ms", self.reset_timeout_ms)
        put("circuit_breaker", "half_open_max_calls", self.half_open_max_calls)

        put("retry", "max_retries", self.max_retries)
        put("retry", "base_delay_ms", self.base_delay_ms)
        put("retry", "max_delay_ms", self.max_delay_ms)
        put("retry", "backoff_multiplier", self.backoff_multiplier)
        if self.retryable_errors is not None:
            put("retry", "retryable_errors", _split_list(self.retryable_errors))

        put("performance", "max_response_time_ms", self.max_response_time_ms)
        put("performance", "min_success_rate", self.min_success_rate)
        put("performance", "max_error_rate", self.max_error_rate)
        return patch


def _split_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


# Create a singleton instance
settings = Settings()

"""Loading, validation, persistence and tuning of the resilience config.

Merge precedence is environment overrides > persisted file > built-in
defaults. Validation fails closed for the primary provider and degrades
gracefully for fallbacks. Writes are atomic: the document is written to a
temporary file in the target directory, fsynced and renamed into place.
"""

import contextlib
import json
import logging
import math
import os
import tempfile
import threading
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ai_failover.core.config.models import ResilienceConfig, merge_documents
from ai_failover.core.providers.registry import BUILTIN_DESCRIPTORS, ProviderDescriptor
from ai_failover.core.resilience.models import ProviderMetricsSummary
from ai_failover.utils.exceptions import ConfigurationError, ErrorCode
from ai_failover.utils.settings import ENV_PREFIX, EnvironmentOverrides, settings

logger = logging.getLogger(__name__)

# Optimization bounds
MIN_RESPONSE_TIME_MS = 1000
MAX_RESPONSE_TIME_MS = 120000
MIN_SAMPLES_FOR_LATENCY = 3


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class ValidationIssue:
    """A single finding from ``ConfigurationManager.validate``."""

    severity: IssueSeverity
    field: str
    message: str
    provider_id: str | None = None

    @property
    def is_error(self) -> bool:
        return self.severity is IssueSeverity.ERROR

    def __str__(self) -> str:
        return f"[{self.severity.value}] {self.field}: {self.message}"


class ConfigurationManager:
    """Owns the current ``ResilienceConfig`` for the process.

    ``current`` is safe to read from any task; ``reload`` and ``save`` swap
    the whole object under an exclusive lock, so a reader never observes a
    half-updated configuration.
    """

    def __init__(
        self,
        config_path: Path | str | None = None,
        environ: Mapping[str, str] | None = None,
        catalogue: Iterable[ProviderDescriptor] = BUILTIN_DESCRIPTORS,
    ):
        self.config_path = Path(config_path) if config_path is not None else Path(settings.config_path)
        self._environ = environ if environ is not None else os.environ
        self._catalogue = {descriptor.id: descriptor for descriptor in catalogue}
        self._lock = threading.Lock()
        self._config: ResilienceConfig | None = None

    @property
    def current(self) -> ResilienceConfig:
        """The active config, loading it on first access."""
        if self._config is None:
            return self.reload()
        return self._config

    def load(self) -> ResilienceConfig:
        """Build the config from defaults, the persisted file and the environment.

        Raises:
            ConfigurationError: If the file is unreadable or values are invalid
        """
        document = ResilienceConfig().to_document()

        if self.config_path.exists():
            document = merge_documents(document, self._read_file())
            logger.info("Loaded resilience configuration from %s", self.config_path)

        try:
            overrides = EnvironmentOverrides.from_environ(self._environ)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid {ENV_PREFIX}* environment override: {e.errors()[0]['msg']}",
                details={"errors": _error_locations(e)},
            ) from e

        patch = overrides.as_config_patch()
        if patch:
            logger.debug("Applying environment overrides: %s", sorted(patch))
            document = merge_documents(document, patch)

        try:
            return ResilienceConfig.model_validate(document)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid resilience configuration: {e.errors()[0]['msg']}",
                details={"errors": _error_locations(e)},
            ) from e

    def reload(self) -> ResilienceConfig:
        """Load and atomically replace the current config."""
        return self.activate(self.load())

    def activate(self, config: ResilienceConfig) -> ResilienceConfig:
        """Make ``config`` current without persisting it."""
        with self._lock:
            self._config = config
        return config

    def save(self, config: ResilienceConfig | None = None) -> Path:
        """Persist ``config`` (default: the current one) atomically.

        Raises:
            OSError: If the file cannot be written
        """
        config = config or self.current
        path = self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        with self._lock:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(config.to_document(), f, indent=2)
                    f.write("\n")
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(tmp_name)
                logger.error("Failed to save configuration to %s", path)
                raise
            self._config = config

        logger.info("Saved resilience configuration to %s", path)
        return path

    def validate(self, config: ResilienceConfig | None = None) -> list[ValidationIssue]:
        """Check ``config`` against the catalogue and the environment."""
        config = config or self.current
        issues: list[ValidationIssue] = []

        def error(field: str, message: str, provider_id: str | None = None) -> None:
            issues.append(ValidationIssue(IssueSeverity.ERROR, field, message, provider_id))

        def warning(field: str, message: str, provider_id: str | None = None) -> None:
            issues.append(ValidationIssue(IssueSeverity.WARNING, field, message, provider_id))

        primary = config.primary_provider
        if primary not in self._catalogue:
            error("primary_provider", f"Primary provider '{primary}' is not supported", primary)
        else:
            missing = self.missing_credentials(primary, config)
            if missing:
                error(
                    "primary_provider",
                    f"Primary provider '{primary}' is missing credentials: {', '.join(missing)}",
                    primary,
                )

        usable_fallbacks = 0
        for provider_id in config.fallback_providers:
            if provider_id == primary:
                warning("fallback_providers", f"Primary provider '{primary}' is also listed as a fallback", primary)
                continue
            if provider_id not in self._catalogue:
                warning("fallback_providers", f"Fallback provider '{provider_id}' is not supported", provider_id)
                continue
            missing = self.missing_credentials(provider_id, config)
            if missing:
                warning(
                    "fallback_providers",
                    f"Fallback provider '{provider_id}' is missing credentials ({', '.join(missing)}) "
                    "and will be skipped",
                    provider_id,
                )
            else:
                usable_fallbacks += 1

        if config.auto_fallback_enabled and usable_fallbacks == 0:
            warning("fallback_providers", "No usable fallback providers; a primary outage will fail every request")
        if not config.auto_fallback_enabled:
            warning("auto_fallback_enabled", "Automatic fallback is disabled; only the primary provider is used")

        retry = config.retry
        if retry.max_delay_ms < retry.base_delay_ms:
            error("retry.max_delay_ms", "max_delay_ms must be >= base_delay_ms")
        if retry.jitter_min >= retry.jitter_max:
            error("retry.jitter_min", "jitter_min must be lower than jitter_max")

        perf = config.performance
        if perf.max_response_time_ms < MIN_RESPONSE_TIME_MS:
            warning("performance.max_response_time_ms", "Maximum response time is very low; expect frequent fallbacks")
        if perf.min_success_rate > 0.99:
            warning("performance.min_success_rate", "Minimum success rate is very high; expect frequent fallbacks")

        weights = config.selection
        if weights.priority_weight + weights.health_weight + weights.recency_weight <= 0:
            error("selection", "At least one selection weight must be positive")

        if config.health_check.timeout_ms >= config.health_check.interval_ms:
            warning("health_check.timeout_ms", "Probe timeout is not shorter than the probe interval")

        return issues

    def ensure_valid(self, config: ResilienceConfig | None = None) -> list[ValidationIssue]:
        """Validate and fail closed.

        Returns:
            The warnings, when there are no errors

        Raises:
            ConfigurationError: If any error-level issue was found
        """
        issues = self.validate(config)
        errors = [issue for issue in issues if issue.is_error]
        if errors:
            code = ErrorCode.CONFIG_INVALID
            if any("missing credentials" in issue.message for issue in errors):
                code = ErrorCode.CONFIG_MISSING_CREDENTIALS
            elif any("not supported" in issue.message for issue in errors):
                code = ErrorCode.CONFIG_UNKNOWN_PROVIDER
            raise ConfigurationError(
                f"Configuration is invalid: {errors[0].message}",
                error_code=code,
                issues=errors,
            )
        for issue in issues:
            logger.warning("Configuration warning: %s", issue)
        return issues

    def missing_credentials(self, provider_id: str, config: ResilienceConfig | None = None) -> list[str]:
        config = config or self.current
        descriptor = self._catalogue.get(provider_id)
        if descriptor is None:
            return []
        names = config.credentials.get(provider_id, list(descriptor.required_credentials))
        return [name for name in names if not self._environ.get(name)]

    def optimize(
        self,
        metrics: Sequence[ProviderMetricsSummary],
        config: ResilienceConfig | None = None,
    ) -> ResilienceConfig:
        """Propose thresholds adjusted to observed performance.

        Advisory only: the returned config is neither applied nor saved.
        """
        config = config or self.current
        document = config.to_document()
        observed = {m.provider_id: m for m in metrics if m.samples > 0}

        if not observed:
            logger.info("No observed metrics; configuration left unchanged")
            return ResilienceConfig.model_validate(document)

        # Response time budget follows the slowest well-sampled provider
        sampled = [m for m in observed.values() if m.samples >= MIN_SAMPLES_FOR_LATENCY]
        if sampled:
            worst_p95 = max(m.p95_latency_ms for m in sampled)
            budget = int(math.ceil(worst_p95 * 1.5))
            document["performance"]["max_response_time_ms"] = min(
                MAX_RESPONSE_TIME_MS, max(MIN_RESPONSE_TIME_MS, budget)
            )

        # Healthiest fallbacks first; unobserved ones keep their relative order at the end
        current_order = list(config.fallback_providers)
        seen = [p for p in current_order if p in observed]
        unseen = [p for p in current_order if p not in observed]
        seen.sort(key=lambda p: (-round(observed[p].health_score, 6), current_order.index(p)))
        document["fallback_providers"] = seen + unseen

        total_failures = sum(round(m.samples * m.error_rate) for m in observed.values())
        rate_limited = sum(m.rate_limited for m in observed.values())
        if total_failures and rate_limited / total_failures > 0.25:
            retry = document["retry"]
            retry["base_delay_ms"] = min(retry["max_delay_ms"], max(1, retry["base_delay_ms"]) * 2)

        if any(m.error_rate > 2 * config.performance.max_error_rate for m in observed.values()):
            breaker = document["circuit_breaker"]
            breaker["failure_threshold"] = max(2, breaker["failure_threshold"] - 1)

        best_success = max(m.success_rate for m in observed.values())
        if best_success < config.performance.min_success_rate:
            document["performance"]["min_success_rate"] = round(max(0.5, best_success - 0.05), 4)

        return ResilienceConfig.model_validate(document)

    @staticmethod
    def describe_changes(old: ResilienceConfig, new: ResilienceConfig) -> list[str]:
        """Human-readable ``field: old -> new`` lines."""
        before = _flatten(old.to_document())
        after = _flatten(new.to_document())
        return [
            f"{key}: {before.get(key)!r} -> {after.get(key)!r}"
            for key in sorted(set(before) | set(after))
            if before.get(key) != after.get(key)
        ]

    def generate_env_template(self, config: ResilienceConfig | None = None) -> str:
        """Render a ``.env`` template for the configured providers."""
        config = config or self.current
        lines = [
            "# AI provider failover - environment configuration",
            "",
            "# Provider selection",
            f"{ENV_PREFIX}PRIMARY_PROVIDER={config.primary_provider}",
            f"{ENV_PREFIX}FALLBACK_PROVIDERS={','.join(config.fallback_providers)}",
            f"{ENV_PREFIX}AUTO_FALLBACK={str(config.auto_fallback_enabled).lower()}",
            "",
            "# Health monitoring",
            f"{ENV_PREFIX}HEALTH_CHECK_INTERVAL_MS={config.health_check.interval_ms}",
            f"{ENV_PREFIX}HEALTH_CHECK_TIMEOUT_MS={config.health_check.timeout_ms}",
            f"{ENV_PREFIX}MAX_RESPONSE_TIME_MS={config.performance.max_response_time_ms}",
            f"{ENV_PREFIX}MIN_SUCCESS_RATE={config.performance.min_success_rate}",
            f"{ENV_PREFIX}MAX_ERROR_RATE={config.performance.max_error_rate}",
            "",
            "# Circuit breaker",
            f"{ENV_PREFIX}FAILURE_THRESHOLD={config.circuit_breaker.failure_threshold}",
            f"{ENV_PREFIX}RESET_TIMEOUT_MS={config.circuit_breaker.reset_timeout_ms}",
            f"{ENV_PREFIX}HALF_OPEN_MAX_CALLS={config.circuit_breaker.half_open_max_calls}",
            "",
            "# Retry",
            f"{ENV_PREFIX}MAX_RETRIES={config.retry.max_retries}",
            f"{ENV_PREFIX}BASE_DELAY_MS={config.retry.base_delay_ms}",
            f"{ENV_PREFIX}MAX_DELAY_MS={config.retry.max_delay_ms}",
            f"{ENV_PREFIX}BACKOFF_MULTIPLIER={config.retry.backoff_multiplier}",
        ]
        for provider_id in config.provider_order():
            descriptor = self._catalogue.get(provider_id)
            if descriptor is None:
                continue
            names = config.credentials.get(provider_id, list(descriptor.required_credentials))
            lines.append("")
            lines.append(f"# {descriptor.display_name} ({descriptor.category.value})")
            if not names:
                lines.append("# no credentials required")
            lines.extend(f"{name}=" for name in names)
        return "\n".join(lines) + "\n"

    def _read_file(self) -> dict[str, Any]:
        try:
            with open(self.config_path, encoding="utf-8") as f:
                document = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Configuration file {self.config_path} is not valid JSON: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file {self.config_path}: {e}") from e

        if not isinstance(document, dict):
            raise ConfigurationError(f"Configuration file {self.config_path} must contain a JSON object")
        return document


def _flatten(document: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    flat: dict[str, Any] = {}
    for key, value in document.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict) and value:
            flat.update(_flatten(value, f"{name}."))
        else:
            flat[name] = value
    return flat


def _error_locations(error: ValidationError) -> list[str]:
    return [".".join(str(part) for part in item["loc"]) + f": {item['msg']}" for item in error.errors()]

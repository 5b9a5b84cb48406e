"""Tests for loading, validating, saving and tuning the resilience config."""

import json

import pytest

from ai_failover.core.config.manager import ConfigurationManager, IssueSeverity
from ai_failover.core.config.models import ResilienceConfig
from ai_failover.core.resilience.models import ProviderMetricsSummary
from ai_failover.tests.helpers import CREDENTIALS, make_config
from ai_failover.utils.exceptions import ConfigurationError, ErrorCode


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "failover.json"


@pytest.fixture
def manager(config_path):
    return ConfigurationManager(config_path=config_path, environ=dict(CREDENTIALS))


def summary(provider_id, **overrides):
    values = {
        "provider_id": provider_id,
        "samples": 5,
        "success_rate": 1.0,
        "error_rate": 0.0,
        "average_latency_ms": 400.0,
        "p95_latency_ms": 500.0,
        "timeouts": 0,
        "rate_limited": 0,
        "health_score": 0.9,
    }
    values.update(overrides)
    return ProviderMetricsSummary(**values)


class TestLoad:
    def test_defaults_without_file(self, manager):
        config = manager.load()

        assert config == ResilienceConfig()
        assert config.primary_provider == "google-ai"

    def test_save_then_load_returns_same_config(self, config_path, manager):
        config = make_config(retry={"max_retries": 5, "base_delay_ms": 1000, "max_delay_ms": 30000})

        manager.save(config)
        loaded = ConfigurationManager(config_path=config_path, environ=dict(CREDENTIALS)).load()

        assert loaded == config

    def test_partial_file_is_merged_with_defaults(self, config_path, manager):
        config_path.write_text(json.dumps({"retry": {"max_retries": 7}}))

        config = manager.load()

        assert config.retry.max_retries == 7
        assert config.retry.base_delay_ms == 1000
        assert config.circuit_breaker.failure_threshold == 5

    def test_environment_beats_file(self, config_path):
        config_path.write_text(json.dumps({"retry": {"max_retries": 5}, "primary_provider": "ollama"}))
        environ = {
            **CREDENTIALS,
            "FAILOVER_MAX_RETRIES": "1",
            "FAILOVER_FALLBACK_PROVIDERS": "ollama, github-ai",
            "FAILOVER_AUTO_FALLBACK": "false",
        }

        config = ConfigurationManager(config_path=config_path, environ=environ).load()

        assert config.retry.max_retries == 1
        assert config.primary_provider == "ollama"
        assert config.fallback_providers == ["ollama", "github-ai"]
        assert config.auto_fallback_enabled is False

    def test_empty_environment_values_are_ignored(self, config_path):
        environ = {"FAILOVER_MAX_RETRIES": ""}

        config = ConfigurationManager(config_path=config_path, environ=environ).load()

        assert config.retry.max_retries == 3

    def test_invalid_environment_value(self, config_path):
        manager = ConfigurationManager(config_path=config_path, environ={"FAILOVER_MAX_RETRIES": "lots"})

        with pytest.raises(ConfigurationError, match="FAILOVER_"):
            manager.load()

    def test_malformed_json(self, config_path, manager):
        config_path.write_text("{not json")

        with pytest.raises(ConfigurationError, match="not valid JSON"):
            manager.load()

    def test_non_object_document(self, config_path, manager):
        config_path.write_text("[1, 2, 3]")

        with pytest.raises(ConfigurationError, match="JSON object"):
            manager.load()

    def test_out_of_range_values(self, config_path, manager):
        config_path.write_text(json.dumps({"retry": {"max_retries": -1}}))

        with pytest.raises(ConfigurationError) as exc_info:
            manager.load()

        assert any("retry.max_retries" in item for item in exc_info.value.details["errors"])

    def test_unknown_keys_are_rejected(self, config_path, manager):
        config_path.write_text(json.dumps({"retyr": {}}))

        with pytest.raises(ConfigurationError):
            manager.load()

    def test_reload_replaces_current(self, config_path, manager):
        assert manager.current.retry.max_retries == 3

        config_path.write_text(json.dumps({"retry": {"max_retries": 9}}))

        assert manager.current.retry.max_retries == 3
        assert manager.reload().retry.max_retries == 9
        assert manager.current.retry.max_retries == 9


class TestSave:
    def test_save_is_atomic_and_leaves_no_temp_files(self, tmp_path, config_path, manager):
        manager.save(make_config())
        manager.save(make_config(retry={"max_retries": 4}))

        assert [p.name for p in tmp_path.iterdir()] == ["failover.json"]
        assert json.loads(config_path.read_text())["retry"]["max_retries"] == 4

    def test_save_creates_parent_directories(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "failover.json"

        ConfigurationManager(config_path=path, environ={}).save(make_config())

        assert path.exists()

    def test_failed_write_keeps_previous_file(self, config_path, manager, monkeypatch):
        manager.save(make_config(retry={"max_retries": 4}))

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("ai_failover.core.config.manager.os.replace", broken_replace)
        with pytest.raises(OSError):
            manager.save(make_config(retry={"max_retries": 8}))

        assert json.loads(config_path.read_text())["retry"]["max_retries"] == 4
        assert [p.name for p in config_path.parent.iterdir()] == ["failover.json"]

    def test_save_updates_current(self, manager):
        config = make_config(retry={"max_retries": 6})

        manager.save(config)

        assert manager.current is config


class TestValidate:
    def test_valid_config_has_no_errors(self, manager):
        issues = manager.validate(make_config())

        assert not [issue for issue in issues if issue.is_error]

    def test_unknown_primary_fails_closed(self, manager):
        config = make_config(primary_provider="skynet")

        with pytest.raises(ConfigurationError) as exc_info:
            manager.ensure_valid(config)

        assert exc_info.value.error_code == ErrorCode.CONFIG_UNKNOWN_PROVIDER
        assert exc_info.value.issues[0].field == "primary_provider"

    def test_primary_without_credentials_fails_closed(self, config_path):
        manager = ConfigurationManager(config_path=config_path, environ={"GITHUB_TOKEN": "x"})

        with pytest.raises(ConfigurationError) as exc_info:
            manager.ensure_valid(make_config())

        assert exc_info.value.error_code == ErrorCode.CONFIG_MISSING_CREDENTIALS
        assert "GOOGLE_AI_API_KEY" in exc_info.value.message

    def test_fallback_without_credentials_is_a_warning(self, config_path):
        manager = ConfigurationManager(config_path=config_path, environ={"GOOGLE_AI_API_KEY": "x"})

        warnings = manager.ensure_valid(make_config())

        flagged = [issue for issue in warnings if issue.provider_id == "github-ai"]
        assert flagged and flagged[0].severity == IssueSeverity.WARNING

    def test_unknown_fallback_is_a_warning(self, manager):
        issues = manager.validate(make_config(fallback_providers=["github-ai", "skynet"]))

        assert [i.severity for i in issues if i.provider_id == "skynet"] == [IssueSeverity.WARNING]

    def test_no_usable_fallbacks_warns(self, config_path):
        manager = ConfigurationManager(config_path=config_path, environ={"GOOGLE_AI_API_KEY": "x"})

        issues = manager.validate(make_config(fallback_providers=["github-ai"]))

        assert any("No usable fallback" in issue.message for issue in issues)

    def test_delay_bounds(self, manager):
        issues = manager.validate(make_config(retry={"base_delay_ms": 500, "max_delay_ms": 100}))

        assert any(i.is_error and i.field == "retry.max_delay_ms" for i in issues)

    def test_all_zero_weights(self, manager):
        config = make_config(selection={"priority_weight": 0, "health_weight": 0, "recency_weight": 0})

        assert any(i.is_error and i.field == "selection" for i in manager.validate(config))

    def test_credential_names_can_be_overridden(self, config_path):
        manager = ConfigurationManager(config_path=config_path, environ={"MY_GEMINI_KEY": "x"})
        config = make_config(credentials={"google-ai": ["MY_GEMINI_KEY"]})

        assert manager.missing_credentials("google-ai", config) == []
        assert manager.missing_credentials("github-ai", config) == ["GITHUB_TOKEN"]


class TestOptimize:
    def test_tunes_thresholds_from_observations(self, manager):
        config = make_config()
        metrics = [
            summary("google-ai", p95_latency_ms=900.0, health_score=0.95),
            summary(
                "github-ai",
                success_rate=0.6,
                error_rate=0.4,
                p95_latency_ms=2000.0,
                rate_limited=2,
                health_score=0.6,
            ),
            summary("ollama", health_score=0.9),
        ]

        proposed = manager.optimize(metrics, config)

        assert proposed.performance.max_response_time_ms == 3000
        assert proposed.fallback_providers == ["ollama", "github-ai"]
        assert proposed.retry.base_delay_ms == 20
        assert proposed.circuit_breaker.failure_threshold == 4
        assert proposed.performance.min_success_rate == config.performance.min_success_rate

    def test_optimize_is_advisory(self, config_path, manager):
        config = make_config()
        manager.save(config)

        manager.optimize([summary("ollama", health_score=0.1)], config)

        assert manager.load() == config

    def test_no_metrics_leaves_config_unchanged(self, manager):
        config = make_config()

        assert manager.optimize([], config) == config

    def test_latency_budget_is_bounded(self, manager):
        fast = manager.optimize([summary("google-ai", p95_latency_ms=10.0)], make_config())
        slow = manager.optimize([summary("google-ai", p95_latency_ms=500000.0)], make_config())

        assert fast.performance.max_response_time_ms == 1000
        assert slow.performance.max_response_time_ms == 120000

    def test_low_success_everywhere_relaxes_threshold(self, manager):
        metrics = [summary("google-ai", success_rate=0.8, error_rate=0.2)]

        proposed = manager.optimize(metrics, make_config())

        assert proposed.performance.min_success_rate == 0.75

    def test_describe_changes(self):
        old = make_config()
        new = make_config(retry={"max_retries": 4}, fallback_providers=["ollama"])

        changes = ConfigurationManager.describe_changes(old, new)

        assert "retry.max_retries: 2 -> 4" in changes
        assert "fallback_providers: ['github-ai', 'ollama'] -> ['ollama']" in changes
        assert ConfigurationManager.describe_changes(old, old) == []


class TestEnvTemplate:
    def test_template_lists_credentials_per_provider(self, manager):
        template = manager.generate_env_template(make_config())

        assert "FAILOVER_PRIMARY_PROVIDER=google-ai" in template
        assert "FAILOVER_FALLBACK_PROVIDERS=github-ai,ollama" in template
        assert "GOOGLE_AI_API_KEY=\n" in template
        assert "GITHUB_TOKEN=\n" in template
        assert "# no credentials required" in template

    def test_template_never_contains_secret_values(self, manager):
        template = manager.generate_env_template(make_config())

        assert "test-google-key" not in template

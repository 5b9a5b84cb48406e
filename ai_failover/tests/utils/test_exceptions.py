"""Tests for the error taxonomy."""

from ai_failover.utils.exceptions import (
    AuthenticationExhaustedError,
    CircuitOpenError,
    ConfigurationError,
    DeadlineExceededError,
    ErrorCode,
    ExhaustedFallbackError,
    FailoverError,
    ProviderFailure,
    ProviderUnavailableError,
    RateLimitError,
)

FAILURES = [
    ProviderFailure("google-ai", "authentication", "401 Unauthorized", 1),
    ProviderFailure("github-ai", "server_error", "HTTP 503", 3),
]


def test_to_dict_is_json_ready():
    error = ConfigurationError("bad config", issues=["[error] retry: broken"])

    assert error.to_dict() == {
        "error_code": "CONFIG_INVALID",
        "message": "bad config",
        "details": {"issues": ["[error] retry: broken"]},
    }


def test_provider_errors_carry_provider_id():
    error = RateLimitError(provider_id="github-ai", retry_after=2.0)

    assert error.error_code == ErrorCode.PROVIDER_RATE_LIMITED
    assert error.details == {"retry_after": 2.0, "provider_id": "github-ai"}


def test_circuit_open_is_an_unavailable_error():
    error = CircuitOpenError("open", provider_id="ollama")

    assert isinstance(error, ProviderUnavailableError)
    assert error.error_code == ErrorCode.PROVIDER_CIRCUIT_OPEN


def test_exhausted_message_lists_attempts():
    error = ExhaustedFallbackError(task_name="summarize", failures=FAILURES, primary_provider="google-ai")

    assert "google-ai (authentication)" in error.message
    assert "github-ai (server_error)" in error.message
    assert error.attempted_providers == ["google-ai", "github-ai"]
    assert error.primary_authentication_failed
    assert error.details["failures"][1]["attempts"] == 3


def test_primary_auth_flag_only_for_primary():
    error = ExhaustedFallbackError(failures=FAILURES, primary_provider="github-ai")

    assert not error.primary_authentication_failed


def test_terminal_errors_share_a_base():
    auth = AuthenticationExhaustedError(task_name="t", failures=FAILURES[:1], primary_provider="google-ai")
    deadline = DeadlineExceededError(task_name="t", deadline_seconds=2.5)

    assert isinstance(auth, ExhaustedFallbackError)
    assert isinstance(deadline, ExhaustedFallbackError)
    assert isinstance(auth, FailoverError)
    assert auth.error_code == ErrorCode.FALLBACK_AUTHENTICATION_EXHAUSTED
    assert "AuthenticationError" in str(auth)
    assert deadline.error_code == ErrorCode.DEADLINE_EXCEEDED
    assert "2.5s" in deadline.message


def test_to_dict_redacts_credentials():
    error = ConfigurationError(
        "rejected api_key=sk-abcdefghijklmnopqrstuvwx",
        details={"api_key": "plain-secret", "endpoint": "https://x.test/v1?key=AIzaSecretValue"},
    )

    data = error.to_dict()

    assert "sk-abcdefghijklmnopqrstuvwx" not in data["message"]
    assert data["details"]["api_key"] == "***REDACTED***"
    assert "AIzaSecretValue" not in data["details"]["endpoint"]
    assert error.details["api_key"] == "plain-secret"

"""Retry policy: error classification, retry decisions and backoff.

``RetryPolicyEngine`` is the single authority on whether a failed call is
retried on the same provider and how long to wait first. ``PolicyRetry`` and
``PolicyWait`` adapt it to tenacity so callers can drive the loop with
``tenacity.AsyncRetrying`` without duplicating the rules.

Attempt numbers are zero-based: attempt 0 is the first call to a provider,
so ``max_retries`` retries allow ``max_retries + 1`` calls in total.
"""

import asyncio
import logging
import random
from collections.abc import Iterable

import httpx
from tenacity import RetryCallState
from tenacity.retry import retry_base
from tenacity.wait import wait_base

from ai_failover.core.config.models import RetrySettings
from ai_failover.core.resilience.models import ErrorClassification, ErrorType
from ai_failover.utils.exceptions import (
    AuthenticationError,
    CircuitOpenError,
    InvalidRequestError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitError,
    TransientNetworkError,
)

logger = logging.getLogger(__name__)

_AUTH_PATTERNS = ("401", "403", "unauthorized", "forbidden", "invalid api key", "authentication")
_INVALID_STATUS = {400, 404, 405, 409, 413, 422}


def _parse_retry_after(response: httpx.Response | None) -> float | None:
    if response is None:
        return None
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        # HTTP-date form is not worth honouring here
        return None


def _classify_status(status: int, response: httpx.Response | None) -> ErrorClassification:
    if status in (401, 403):
        return ErrorClassification(ErrorType.AUTHENTICATION, retryable=False)
    if status == 429:
        return ErrorClassification(ErrorType.RATE_LIMIT, retryable=True, retry_after=_parse_retry_after(response))
    if status == 408:
        return ErrorClassification(ErrorType.TIMEOUT, retryable=True)
    if status >= 500:
        return ErrorClassification(ErrorType.SERVER_ERROR, retryable=True, retry_after=_parse_retry_after(response))
    if status in _INVALID_STATUS or 400 <= status < 500:
        return ErrorClassification(ErrorType.INVALID_REQUEST, retryable=False)
    return ErrorClassification(ErrorType.UNKNOWN, retryable=False)


class RetryPolicyEngine:
    """Explicit retry contract for provider calls.

    Args:
        settings: Retry section of the resilience config
        rng: Random source for jitter; inject a seeded ``random.Random`` in tests
    """

    def __init__(self, settings: RetrySettings | None = None, rng: random.Random | None = None):
        self.settings = settings or RetrySettings()
        self._rng = rng or random.Random()
        self._patterns = self._compile_patterns(self.settings.retryable_errors)

    def with_settings(self, settings: RetrySettings) -> "RetryPolicyEngine":
        """A new engine for ``settings`` sharing this engine's random source."""
        return RetryPolicyEngine(settings, rng=self._rng)

    @staticmethod
    def _compile_patterns(patterns: Iterable[str]) -> list[str]:
        return [pattern.lower() for pattern in patterns if pattern]

    def classify(self, error: BaseException) -> ErrorClassification:
        """Map an exception to an error type and retryability."""
        if isinstance(error, CircuitOpenError):
            return ErrorClassification(ErrorType.CIRCUIT_OPEN, retryable=False)
        if isinstance(error, AuthenticationError):
            return ErrorClassification(ErrorType.AUTHENTICATION, retryable=False)
        if isinstance(error, InvalidRequestError):
            return ErrorClassification(ErrorType.INVALID_REQUEST, retryable=False)
        if isinstance(error, RateLimitError):
            return ErrorClassification(ErrorType.RATE_LIMIT, retryable=True, retry_after=error.retry_after)
        if isinstance(error, (ProviderTimeoutError, asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
            return ErrorClassification(ErrorType.TIMEOUT, retryable=True)
        if isinstance(error, (TransientNetworkError, httpx.TransportError, ConnectionError)):
            return ErrorClassification(ErrorType.NETWORK, retryable=True)
        if isinstance(error, ProviderUnavailableError):
            return ErrorClassification(ErrorType.UNAVAILABLE, retryable=True)
        if isinstance(error, httpx.HTTPStatusError):
            return _classify_status(error.response.status_code, error.response)

        return self._classify_message(str(error))

    def _classify_message(self, message: str) -> ErrorClassification:
        text = message.lower()
        if any(pattern in text for pattern in _AUTH_PATTERNS):
            return ErrorClassification(ErrorType.AUTHENTICATION, retryable=False)

        for pattern in self._patterns:
            if pattern in text:
                if "429" in text or "rate limit" in text:
                    error_type = ErrorType.RATE_LIMIT
                elif "timeout" in text or "timed out" in text or "etimedout" in text:
                    error_type = ErrorType.TIMEOUT
                elif "econn" in text:
                    error_type = ErrorType.NETWORK
                else:
                    error_type = ErrorType.SERVER_ERROR
                return ErrorClassification(error_type, retryable=True)

        return ErrorClassification(ErrorType.UNKNOWN, retryable=False)

    def should_retry(self, error: BaseException, attempt_number: int, elapsed: float = 0.0) -> bool:
        """Whether to retry the same provider after ``attempt_number`` failed.

        Args:
            error: The exception raised by the failed attempt
            attempt_number: Zero-based index of the failed attempt
            elapsed: Seconds spent on this provider so far

        Returns:
            False once the retry budget is spent, for non-retryable errors,
            and when ``max_elapsed_ms`` is configured and exceeded
        """
        if attempt_number >= self.settings.max_retries:
            return False
        if not self.classify(error).retryable:
            return False
        max_elapsed_ms = self.settings.max_elapsed_ms
        if max_elapsed_ms is not None and elapsed * 1000.0 >= max_elapsed_ms:
            return False
        return True

    def base_delay_for(self, attempt_number: int) -> float:
        """Un-jittered backoff in seconds, capped at ``max_delay_ms``."""
        max_delay = self.settings.max_delay_ms / 1000.0
        try:
            delay = (self.settings.base_delay_ms / 1000.0) * self.settings.backoff_multiplier ** max(0, attempt_number)
        except OverflowError:
            return max_delay
        return min(max_delay, delay)

    def next_delay(self, attempt_number: int, error: BaseException | None = None) -> float:
        """Jittered backoff in seconds before retrying after ``attempt_number``."""
        jitter = self._rng.uniform(self.settings.jitter_min, self.settings.jitter_max)
        if jitter >= self.settings.jitter_max:
            jitter = self.settings.jitter_min
        delay = self.base_delay_for(attempt_number) * jitter

        if error is not None:
            retry_after = self.classify(error).retry_after
            if retry_after:
                delay = max(delay, min(retry_after, self.settings.max_delay_ms / 1000.0))
        return delay


class PolicyRetry(retry_base):
    """tenacity retry strategy backed by a ``RetryPolicyEngine``."""

    def __init__(self, engine: RetryPolicyEngine):
        self.engine = engine

    def __call__(self, retry_state: RetryCallState) -> bool:
        if retry_state.outcome is None or not retry_state.outcome.failed:
            return False
        error = retry_state.outcome.exception()
        elapsed = retry_state.seconds_since_start or 0.0
        return self.engine.should_retry(error, retry_state.attempt_number - 1, elapsed)


class PolicyWait(wait_base):
    """tenacity wait strategy backed by a ``RetryPolicyEngine``."""

    def __init__(self, engine: RetryPolicyEngine):
        self.engine = engine

    def __call__(self, retry_state: RetryCallState) -> float:
        error = None
        if retry_state.outcome is not None and retry_state.outcome.failed:
            error = retry_state.outcome.exception()
        return self.engine.next_delay(retry_state.attempt_number - 1, error)

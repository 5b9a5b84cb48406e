"""Tests for error classification, retry decisions and backoff."""

import asyncio
import random

import httpx
import pytest
from tenacity import AsyncRetrying

from ai_failover.core.config.models import RetrySettings
from ai_failover.core.resilience.models import ErrorType
from ai_failover.core.resilience.retry import PolicyRetry, PolicyWait, RetryPolicyEngine
from ai_failover.tests.helpers import status_error
from ai_failover.utils.exceptions import (
    AuthenticationError,
    CircuitOpenError,
    InvalidRequestError,
    RateLimitError,
    TransientNetworkError,
)


@pytest.fixture
def engine() -> RetryPolicyEngine:
    return RetryPolicyEngine(RetrySettings(max_retries=3, base_delay_ms=1000, max_delay_ms=30000), rng=random.Random(1))


class TestClassification:
    @pytest.mark.parametrize(
        ("error", "error_type", "retryable"),
        [
            (status_error(401), ErrorType.AUTHENTICATION, False),
            (status_error(403), ErrorType.AUTHENTICATION, False),
            (status_error(400), ErrorType.INVALID_REQUEST, False),
            (status_error(404), ErrorType.INVALID_REQUEST, False),
            (status_error(422), ErrorType.INVALID_REQUEST, False),
            (status_error(429), ErrorType.RATE_LIMIT, True),
            (status_error(500), ErrorType.SERVER_ERROR, True),
            (status_error(503), ErrorType.SERVER_ERROR, True),
            (httpx.ConnectError("connection refused"), ErrorType.NETWORK, True),
            (httpx.ReadTimeout("read timed out"), ErrorType.TIMEOUT, True),
            (asyncio.TimeoutError(), ErrorType.TIMEOUT, True),
            (ConnectionResetError("reset by peer"), ErrorType.NETWORK, True),
            (AuthenticationError("bad key"), ErrorType.AUTHENTICATION, False),
            (InvalidRequestError("bad payload"), ErrorType.INVALID_REQUEST, False),
            (TransientNetworkError("dns"), ErrorType.NETWORK, True),
            (CircuitOpenError("open"), ErrorType.CIRCUIT_OPEN, False),
            (RuntimeError("something odd"), ErrorType.UNKNOWN, False),
        ],
    )
    def test_classify(self, engine, error, error_type, retryable):
        classification = engine.classify(error)

        assert classification.error_type == error_type
        assert classification.retryable is retryable

    def test_retry_after_header_is_read(self, engine):
        classification = engine.classify(status_error(429, {"Retry-After": "7"}))

        assert classification.retry_after == 7.0

    def test_rate_limit_error_carries_retry_after(self, engine):
        assert engine.classify(RateLimitError(retry_after=3.5)).retry_after == 3.5

    def test_configured_patterns_make_messages_retryable(self):
        engine = RetryPolicyEngine(RetrySettings(retryable_errors=["overloaded"]))

        classification = engine.classify(RuntimeError("model is overloaded, try later"))

        assert classification.retryable
        assert classification.error_type == ErrorType.SERVER_ERROR

    def test_auth_messages_win_over_patterns(self, engine):
        classification = engine.classify(RuntimeError("401 Unauthorized: timeout"))

        assert classification.error_type == ErrorType.AUTHENTICATION
        assert not classification.retryable


class TestShouldRetry:
    @pytest.mark.parametrize("max_retries", [0, 1, 3, 7])
    @pytest.mark.parametrize(
        "error",
        [status_error(503), httpx.ConnectError("down"), asyncio.TimeoutError(), status_error(429)],
    )
    def test_false_exactly_when_budget_spent(self, max_retries, error):
        engine = RetryPolicyEngine(RetrySettings(max_retries=max_retries))

        for attempt in range(max_retries + 3):
            assert engine.should_retry(error, attempt) is (attempt < max_retries)

    def test_non_retryable_errors_never_retry(self, engine):
        assert not engine.should_retry(status_error(401), 0)
        assert not engine.should_retry(CircuitOpenError(), 0)

    def test_elapsed_budget(self):
        engine = RetryPolicyEngine(RetrySettings(max_retries=10, max_elapsed_ms=2000))

        assert engine.should_retry(status_error(503), 1, elapsed=1.5)
        assert not engine.should_retry(status_error(503), 1, elapsed=2.0)


class TestBackoff:
    def test_base_delay_formula(self, engine):
        assert engine.base_delay_for(0) == 1.0
        assert engine.base_delay_for(1) == 2.0
        assert engine.base_delay_for(3) == 8.0
        assert engine.base_delay_for(10) == 30.0

    def test_base_delay_is_monotonic_and_capped(self):
        engine = RetryPolicyEngine(
            RetrySettings(base_delay_ms=250, max_delay_ms=20000, backoff_multiplier=1.7)
        )
        delays = [engine.base_delay_for(n) for n in range(60)]

        assert all(a <= b for a, b in zip(delays, delays[1:]))
        assert all(d <= 20.0 for d in delays)

    def test_huge_attempt_numbers_do_not_overflow(self, engine):
        assert engine.base_delay_for(100000) == 30.0

    def test_jitter_bounds(self, engine):
        for attempt in range(6):
            base = engine.base_delay_for(attempt)
            for _ in range(50):
                delay = engine.next_delay(attempt)
                assert 0.5 * base <= delay < 1.5 * base

    def test_retry_after_raises_delay(self):
        engine = RetryPolicyEngine(RetrySettings(base_delay_ms=100, max_delay_ms=5000), rng=random.Random(3))

        delay = engine.next_delay(0, RateLimitError(retry_after=4.0))

        assert delay == 4.0

    def test_retry_after_is_capped(self):
        engine = RetryPolicyEngine(RetrySettings(base_delay_ms=100, max_delay_ms=5000), rng=random.Random(3))

        assert engine.next_delay(0, RateLimitError(retry_after=600.0)) == 5.0

    def test_seeded_rng_is_deterministic(self):
        settings = RetrySettings()
        first = RetryPolicyEngine(settings, rng=random.Random(42))
        second = RetryPolicyEngine(settings, rng=random.Random(42))

        assert [first.next_delay(n) for n in range(5)] == [second.next_delay(n) for n in range(5)]


@pytest.mark.asyncio
class TestTenacityAdapters:
    async def test_policy_drives_async_retrying(self):
        engine = RetryPolicyEngine(RetrySettings(max_retries=2, base_delay_ms=10), rng=random.Random(0))
        sleeps = []
        calls = 0

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        with pytest.raises(httpx.ConnectError):
            async for attempt in AsyncRetrying(
                retry=PolicyRetry(engine), wait=PolicyWait(engine), sleep=fake_sleep, reraise=True
            ):
                with attempt:
                    calls += 1
                    raise httpx.ConnectError("down")

        assert calls == 3
        assert len(sleeps) == 2
        assert 0.005 <= sleeps[0] < 0.015
        assert 0.01 <= sleeps[1] < 0.03

    async def test_non_retryable_stops_immediately(self):
        engine = RetryPolicyEngine(RetrySettings(max_retries=5))
        calls = 0

        async def fake_sleep(seconds):
            raise AssertionError("should not sleep")

        with pytest.raises(httpx.HTTPStatusError):
            async for attempt in AsyncRetrying(
                retry=PolicyRetry(engine), wait=PolicyWait(engine), sleep=fake_sleep, reraise=True
            ):
                with attempt:
                    calls += 1
                    raise status_error(401)

        assert calls == 1

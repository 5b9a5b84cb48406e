"""Scripted adapters, clocks and config builders used across the tests."""

from collections.abc import Iterable
from typing import Any

import httpx

from ai_failover.core.config.models import ResilienceConfig
from ai_failover.core.providers.base import BaseProvider
from ai_failover.core.providers.registry import builtin_descriptor

CREDENTIALS = {
    "GOOGLE_AI_API_KEY": "test-google-key",
    "GITHUB_TOKEN": "test-github-token",
    "AZURE_OPENAI_ENDPOINT": "https://example.openai.azure.com",
    "AZURE_OPENAI_API_KEY": "test-azure-key",
    "AZURE_OPENAI_DEPLOYMENT_NAME": "gpt-4o",
    "OPENAI_API_KEY": "test-openai-key",
}


class ScriptedProvider(BaseProvider):
    """Adapter whose invoke results follow a script.

    Each script entry is either an exception instance (raised) or a value
    (returned). The last entry repeats once the script runs out.
    """

    def __init__(self, provider_id: str, script: Iterable[Any] = ("ok",), healthy: Any = True):
        super().__init__(builtin_descriptor(provider_id))
        self.script = list(script)
        self.healthy = healthy
        self.calls = 0
        self.health_checks = 0
        self.closed = False

    async def invoke(self, request: dict[str, Any]) -> Any:
        index = min(self.calls, len(self.script) - 1)
        self.calls += 1
        outcome = self.script[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def health_check(self) -> bool:
        self.health_checks += 1
        if isinstance(self.healthy, BaseException):
            raise self.healthy
        return self.healthy

    async def close(self) -> None:
        self.closed = True


class RecordingSleep:
    """Injectable sleep that records requested delays without waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class ManualClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_config(**overrides: Any) -> ResilienceConfig:
    """Config with three providers and fast retries."""
    document: dict[str, Any] = {
        "primary_provider": "google-ai",
        "fallback_providers": ["github-ai", "ollama"],
        "retry": {"max_retries": 2, "base_delay_ms": 10, "max_delay_ms": 100},
    }
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(document.get(key), dict):
            document[key] = {**document[key], **value}
        else:
            document[key] = value
    return ResilienceConfig.model_validate(document)


def status_error(status: int, headers: dict | None = None) -> httpx.HTTPStatusError:
    """The error ``raise_for_status`` produces for ``status``."""
    request = httpx.Request("POST", "https://provider.test/chat/completions")
    response = httpx.Response(status, headers=headers or {}, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)

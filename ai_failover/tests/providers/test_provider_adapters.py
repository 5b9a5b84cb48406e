"""Tests for the HTTP provider adapters using httpx.MockTransport."""

import json
from dataclasses import replace

import httpx
import pytest

from ai_failover.core.providers import create_adapter
from ai_failover.core.providers.google import GoogleAIProvider
from ai_failover.core.providers.ollama import OllamaProvider
from ai_failover.core.providers.openai import OpenAIProvider
from ai_failover.core.providers.registry import builtin_descriptor
from ai_failover.tests.helpers import CREDENTIALS

MESSAGES = [
    {"role": "system", "content": "Be brief."},
    {"role": "user", "content": "Hello"},
]


class Recorder:
    """MockTransport handler that records requests and replies from a table."""

    def __init__(self, responses):
        self.responses = responses
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.responses.get(request.url.path, (404, {"error": "not found"}))
        return httpx.Response(status, json=body)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


def mock_client(handler, base_url):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=base_url)


@pytest.mark.asyncio
class TestOpenAIProvider:
    async def test_github_models_request(self):
        recorder = Recorder({"/inference/chat/completions": (200, {"choices": [{"message": {"content": "hi"}}]})})
        descriptor = builtin_descriptor("github-ai")
        provider = OpenAIProvider(
            descriptor, environ=CREDENTIALS, client=mock_client(recorder, "https://models.github.ai/inference")
        )

        result = await provider.invoke({"messages": MESSAGES})

        assert result["choices"][0]["message"]["content"] == "hi"
        body = json.loads(recorder.last.content)
        assert body["model"] == "openai/gpt-4.1-mini"
        assert body["max_tokens"] == 1024
        assert recorder.last.headers["Authorization"] == "Bearer test-github-token"

    async def test_azure_layout(self):
        recorder = Recorder({"/openai/deployments/gpt-4o/chat/completions": (200, {"choices": []})})
        provider = OpenAIProvider(
            builtin_descriptor("azure-openai"),
            environ=CREDENTIALS,
            client=mock_client(recorder, CREDENTIALS["AZURE_OPENAI_ENDPOINT"]),
        )

        assert await provider.health_check() is True

        request = recorder.last
        assert request.url.params["api-version"] == "2024-02-15-preview"
        assert request.headers["api-key"] == "test-azure-key"
        assert "Authorization" not in request.headers
        assert "model" not in json.loads(request.content)

    async def test_http_errors_propagate(self):
        recorder = Recorder({"/v1/chat/completions": (401, {"error": "invalid api key"})})
        provider = OpenAIProvider(
            builtin_descriptor("openai"), environ=CREDENTIALS, client=mock_client(recorder, "https://api.openai.com/v1")
        )

        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await provider.invoke({"messages": MESSAGES})

        assert exc_info.value.response.status_code == 401

    async def test_health_check_lists_models(self):
        recorder = Recorder({"/v1/models": (200, {"data": []})})
        provider = OpenAIProvider(
            builtin_descriptor("openai"), environ=CREDENTIALS, client=mock_client(recorder, "https://api.openai.com/v1")
        )

        assert await provider.health_check() is True
        assert recorder.last.method == "GET"

    async def test_base_url_from_environment(self):
        provider = OpenAIProvider(
            builtin_descriptor("openai"),
            environ={"OPENAI_API_KEY": "k", "OPENAI_BASE_URL": "http://proxy.local/v1/", "OPENAI_MODEL": "gpt-x"},
        )

        assert provider.base_url == "http://proxy.local/v1"
        assert provider.model == "gpt-x"
        await provider.close()


@pytest.mark.asyncio
class TestGoogleAIProvider:
    async def test_messages_are_converted(self):
        path = "/v1beta/models/gemini-1.5-flash:generateContent"
        recorder = Recorder({path: (200, {"candidates": []})})
        provider = GoogleAIProvider(
            builtin_descriptor("google-ai"),
            environ=CREDENTIALS,
            client=mock_client(recorder, "https://generativelanguage.googleapis.com/v1beta"),
        )

        await provider.invoke({"messages": MESSAGES + [{"role": "assistant", "content": "Hi!"}], "max_tokens": 64})

        body = json.loads(recorder.last.content)
        assert body["systemInstruction"] == {"parts": [{"text": "Be brief."}]}
        assert [c["role"] for c in body["contents"]] == ["user", "model"]
        assert body["generationConfig"] == {"maxOutputTokens": 64}
        assert recorder.last.headers["x-goog-api-key"] == "test-google-key"
        assert "key=" not in str(recorder.last.url)

    async def test_health_check(self):
        recorder = Recorder({"/v1beta/models/gemini-1.5-flash": (200, {"name": "models/gemini-1.5-flash"})})
        provider = GoogleAIProvider(
            builtin_descriptor("google-ai"),
            environ=CREDENTIALS,
            client=mock_client(recorder, "https://generativelanguage.googleapis.com/v1beta"),
        )

        assert await provider.health_check() is True


@pytest.mark.asyncio
class TestOllamaProvider:
    async def test_chat_request(self):
        recorder = Recorder({"/api/chat": (200, {"message": {"content": "hello"}})})
        provider = OllamaProvider(
            builtin_descriptor("ollama"), environ={}, client=mock_client(recorder, "http://localhost:11434")
        )

        result = await provider.invoke({"messages": MESSAGES, "max_tokens": 10})

        assert result["message"]["content"] == "hello"
        body = json.loads(recorder.last.content)
        assert body["model"] == "llama3.1"
        assert body["stream"] is False
        assert "max_tokens" not in body

    @pytest.mark.parametrize("pulled, expected", [(["llama3.1:latest"], True), (["mistral:7b"], False)])
    async def test_health_check_requires_model(self, pulled, expected):
        recorder = Recorder({"/api/tags": (200, {"models": [{"name": name} for name in pulled]})})
        provider = OllamaProvider(
            builtin_descriptor("ollama"), environ={}, client=mock_client(recorder, "http://localhost:11434")
        )

        assert await provider.health_check() is expected

    async def test_legacy_api_suffix_is_stripped(self):
        provider = OllamaProvider(builtin_descriptor("ollama"), environ={"OLLAMA_ENDPOINT": "http://gpu-box:11434/api/"})

        assert provider.base_url == "http://gpu-box:11434"
        await provider.close()


@pytest.mark.asyncio
class TestCreateAdapter:
    @pytest.mark.parametrize(
        "provider_id, cls",
        [("google-ai", GoogleAIProvider), ("github-ai", OpenAIProvider), ("ollama", OllamaProvider)],
    )
    async def test_builtin_kinds(self, provider_id, cls):
        adapter = create_adapter(builtin_descriptor(provider_id), environ=CREDENTIALS)

        assert isinstance(adapter, cls)
        assert adapter.provider_id == provider_id
        await adapter.close()

    async def test_unknown_kind(self):
        descriptor = replace(builtin_descriptor("ollama"), adapter="carrier-pigeon")

        with pytest.raises(ValueError, match="carrier-pigeon"):
            create_adapter(descriptor)

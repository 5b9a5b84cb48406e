"""Google AI Studio (Gemini) provider."""

import logging
import os
from collections.abc import Mapping
from typing import Any

import httpx

from ai_failover.core.providers import register_provider
from ai_failover.core.providers.base import BaseProvider
from ai_failover.core.providers.registry import ProviderDescriptor

logger = logging.getLogger(__name__)


@register_provider("google")
class GoogleAIProvider(BaseProvider):
    """Adapter for the Generative Language API.

    Accepts OpenAI-style ``messages`` and converts them to ``contents``;
    system messages become ``systemInstruction``.
    """

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        environ: Mapping[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(descriptor)
        env = environ if environ is not None else os.environ
        options = descriptor.options

        self.base_url = (
            env.get(options.get("base_url_env", ""), "") or options.get("default_base_url", "")
        ).rstrip("/")
        self.api_key = env.get(options.get("api_key_env", ""), "")
        self.model = env.get(options.get("model_env", ""), "") or options.get("default_model", "")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=descriptor.timeout_seconds)

    async def invoke(self, request: dict[str, Any]) -> dict[str, Any]:
        resp = await self._client.post(
            f"/models/{self.model}:generateContent",
            json=self._build_payload(request),
            headers={"x-goog-api-key": self.api_key},
        )
        resp.raise_for_status()
        return resp.json()

    async def health_check(self) -> bool:
        resp = await self._client.get(f"/models/{self.model}", headers={"x-goog-api-key": self.api_key})
        resp.raise_for_status()
        return True

    async def close(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _build_payload(request: dict[str, Any]) -> dict[str, Any]:
        contents = []
        system_parts = []
        for message in request.get("messages", []):
            if message.get("role") == "system":
                system_parts.append({"text": message.get("content", "")})
                continue
            role = "model" if message.get("role") == "assistant" else "user"
            contents.append({"role": role, "parts": [{"text": message.get("content", "")}]})

        payload: dict[str, Any] = {"contents": contents}
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}
        generation = {}
        if "max_tokens" in request:
            generation["maxOutputTokens"] = request["max_tokens"]
        if "temperature" in request:
            generation["temperature"] = request["temperature"]
        if generation:
            payload["generationConfig"] = generation
        return payload

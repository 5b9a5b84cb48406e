"""Local Ollama provider."""

import logging
import os
from collections.abc import Mapping
from typing import Any

import httpx

from ai_failover.core.providers import register_provider
from ai_failover.core.providers.base import BaseProvider
from ai_failover.core.providers.registry import ProviderDescriptor

logger = logging.getLogger(__name__)


@register_provider("ollama")
class OllamaProvider(BaseProvider):
    """Adapter for a local Ollama server (``/api/chat``, ``/api/tags``)."""

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        environ: Mapping[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(descriptor)
        env = environ if environ is not None else os.environ
        options = descriptor.options

        base_url = env.get(options.get("base_url_env", ""), "") or options.get("default_base_url", "")
        # Older configs point at ".../api"; the paths below add it themselves
        self.base_url = base_url.rstrip("/").removesuffix("/api")
        self.model = env.get(options.get("model_env", ""), "") or options.get("default_model", "")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=descriptor.timeout_seconds)

    async def invoke(self, request: dict[str, Any]) -> dict[str, Any]:
        payload = {"model": self.model, "stream": False, **request}
        payload.pop("max_tokens", None)
        resp = await self._client.post("/api/chat", json=payload)
        resp.raise_for_status()
        return resp.json()

    async def health_check(self) -> bool:
        resp = await self._client.get("/api/tags")
        resp.raise_for_status()
        models = [m.get("name", "") for m in resp.json().get("models", [])]
        if self.model and not any(name.split(":")[0] == self.model.split(":")[0] for name in models):
            logger.warning("Ollama is up but model %s is not pulled", self.model)
            return False
        return True

    async def close(self) -> None:
        await self._client.aclose()

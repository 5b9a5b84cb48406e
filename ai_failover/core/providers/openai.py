"""OpenAI-compatible chat provider.

Covers OpenAI itself, GitHub Models and Azure OpenAI deployments, which all
speak the ``/chat/completions`` protocol with small differences in URL layout
and auth header.
"""

import logging
import os
from collections.abc import Mapping
from typing import Any

import httpx

from ai_failover.core.providers import register_provider
from ai_failover.core.providers.base import BaseProvider
from ai_failover.core.providers.registry import ProviderDescriptor

logger = logging.getLogger(__name__)


@register_provider("openai")
class OpenAIProvider(BaseProvider):
    """OpenAI-compatible chat provider.

    This provider works with any API that implements the OpenAI chat completion
    interface. When the descriptor names a ``deployment_env`` the Azure URL
    layout (``/openai/deployments/<name>/...?api-version=``) is used.
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
        self.auth_header = options.get("auth_header", "Authorization")
        self.deployment = env.get(options.get("deployment_env", ""), "")
        self.api_version = (
            env.get(options.get("api_version_env", ""), "") or options.get("default_api_version", "")
        )

        # Single client instance per provider
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=descriptor.timeout_seconds,
        )

        logger.debug(
            "Initialized OpenAI-compatible provider %s with base_url=%s, model=%s",
            descriptor.id,
            self.base_url,
            self.model or self.deployment,
        )

    async def invoke(self, request: dict[str, Any]) -> dict[str, Any]:
        """Generate a chat completion.

        Args:
            request: Chat completion payload

        Returns:
            Chat completion response
        """
        payload = dict(request)
        if not self.deployment:
            payload.setdefault("model", self.model)
        payload.setdefault("max_tokens", 1024)

        resp = await self._client.post(
            self._path("/chat/completions"),
            json=payload,
            headers=self._build_headers(),
            params=self._params(),
        )
        resp.raise_for_status()
        return resp.json()

    async def health_check(self) -> bool:
        """Check that the endpoint answers and accepts our credentials."""
        if self.deployment:
            # Azure has no cheap model listing per deployment; a 1-token completion is the probe
            await self.invoke({"messages": [{"role": "user", "content": "ping"}], "max_tokens": 1})
            return True

        resp = await self._client.get(self._path("/models"), headers=self._build_headers())
        resp.raise_for_status()
        return True

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    def _path(self, suffix: str) -> str:
        if self.deployment:
            return f"/openai/deployments/{self.deployment}{suffix}"
        return suffix

    def _params(self) -> dict[str, str]:
        if self.deployment and self.api_version:
            return {"api-version": self.api_version}
        return {}

    def _build_headers(self) -> dict[str, str]:
        """Build HTTP headers for the API request."""
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.api_key:
            if self.auth_header.lower() == "authorization":
                headers["Authorization"] = f"Bearer {self.api_key}"
            else:
                headers[self.auth_header] = self.api_key
        return headers

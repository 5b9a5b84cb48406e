"""Provider catalogue and runtime registry.

``BUILTIN_DESCRIPTORS`` is the static catalogue of providers this package
knows how to talk to. ``ProviderRegistry`` holds the subset selected by the
resilience config (primary first, then fallbacks), with per-provider
credential and timeout overrides applied, and lazily builds adapters.
"""

import logging
import os
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ai_failover.core.config.models import ResilienceConfig
    from ai_failover.core.providers.base import BaseProvider

logger = logging.getLogger(__name__)


class ProviderCategory(str, Enum):
    """Broad provider classes."""
    CLOUD = "cloud"
    LOCAL = "local"
    ENTERPRISE = "enterprise"
    FREE = "free"


@dataclass(frozen=True)
class ProviderDescriptor:
    """Immutable description of a provider.

    ``priority`` is 1 for the most preferred provider. ``adapter`` names the
    registered adapter kind; ``options`` carries adapter settings such as
    which environment variables hold the endpoint and model.
    """
    id: str
    display_name: str
    category: ProviderCategory
    priority: int
    adapter: str
    required_credentials: tuple[str, ...] = ()
    timeout_seconds: float = 60.0
    token_limit: int = 128000
    rate_limit_rpm: int | None = None
    options: Mapping[str, Any] = field(default_factory=dict, hash=False)


BUILTIN_DESCRIPTORS: tuple[ProviderDescriptor, ...] = (
    ProviderDescriptor(
        id="google-ai",
        display_name="Google AI Studio",
        category=ProviderCategory.FREE,
        priority=1,
        adapter="google",
        required_credentials=("GOOGLE_AI_API_KEY",),
        timeout_seconds=60.0,
        token_limit=1048576,
        rate_limit_rpm=15,
        options={
            "api_key_env": "GOOGLE_AI_API_KEY",
            "model_env": "GOOGLE_AI_MODEL",
            "default_model": "gemini-1.5-flash",
            "base_url_env": "GOOGLE_AI_ENDPOINT",
            "default_base_url": "https://generativelanguage.googleapis.com/v1beta",
        },
    ),
    ProviderDescriptor(
        id="github-ai",
        display_name="GitHub Models",
        category=ProviderCategory.FREE,
        priority=2,
        adapter="openai",
        required_credentials=("GITHUB_TOKEN",),
        timeout_seconds=60.0,
        token_limit=128000,
        rate_limit_rpm=15,
        options={
            "api_key_env": "GITHUB_TOKEN",
            "model_env": "GITHUB_MODEL",
            "default_model": "openai/gpt-4.1-mini",
            "base_url_env": "GITHUB_ENDPOINT",
            "default_base_url": "https://models.github.ai/inference",
        },
    ),
    ProviderDescriptor(
        id="azure-openai",
        display_name="Azure OpenAI",
        category=ProviderCategory.ENTERPRISE,
        priority=3,
        adapter="openai",
        required_credentials=(
            "AZURE_OPENAI_ENDPOINT",
            "AZURE_OPENAI_API_KEY",
            "AZURE_OPENAI_DEPLOYMENT_NAME",
        ),
        timeout_seconds=90.0,
        token_limit=128000,
        options={
            "api_key_env": "AZURE_OPENAI_API_KEY",
            "auth_header": "api-key",
            "base_url_env": "AZURE_OPENAI_ENDPOINT",
            "deployment_env": "AZURE_OPENAI_DEPLOYMENT_NAME",
            "api_version_env": "AZURE_OPENAI_API_VERSION",
            "default_api_version": "2024-02-15-preview",
        },
    ),
    ProviderDescriptor(
        id="openai",
        display_name="OpenAI",
        category=ProviderCategory.CLOUD,
        priority=4,
        adapter="openai",
        required_credentials=("OPENAI_API_KEY",),
        timeout_seconds=60.0,
        token_limit=128000,
        options={
            "api_key_env": "OPENAI_API_KEY",
            "model_env": "OPENAI_MODEL",
            "default_model": "gpt-4o-mini",
            "base_url_env": "OPENAI_BASE_URL",
            "default_base_url": "https://api.openai.com/v1",
        },
    ),
    ProviderDescriptor(
        id="ollama",
        display_name="Ollama (local)",
        category=ProviderCategory.LOCAL,
        priority=5,
        adapter="ollama",
        timeout_seconds=120.0,
        token_limit=131072,
        options={
            "model_env": "OLLAMA_MODEL",
            "default_model": "llama3.1",
            "base_url_env": "OLLAMA_ENDPOINT",
            "default_base_url": "http://localhost:11434",
        },
    ),
)


def builtin_descriptor(provider_id: str) -> ProviderDescriptor | None:
    for descriptor in BUILTIN_DESCRIPTORS:
        if descriptor.id == provider_id:
            return descriptor
    return None


class ProviderRegistry:
    """Providers available to one runtime, keyed by provider id.

    Registration order is the configured priority order (primary first).
    Adapters are created on first use and cached; tests inject ready-made
    adapters through ``register(..., adapter=...)``.
    """

    def __init__(
        self,
        descriptors: Iterable[ProviderDescriptor] = (),
        environ: Mapping[str, str] | None = None,
        adapter_factory: Callable[..., "BaseProvider"] | None = None,
    ):
        self._environ = environ if environ is not None else os.environ
        self._adapter_factory = adapter_factory
        self._descriptors: dict[str, ProviderDescriptor] = {}
        self._adapters: dict[str, "BaseProvider"] = {}
        for descriptor in descriptors:
            self.register(descriptor)

    @classmethod
    def from_config(
        cls,
        config: "ResilienceConfig",
        environ: Mapping[str, str] | None = None,
        catalogue: Iterable[ProviderDescriptor] = BUILTIN_DESCRIPTORS,
        adapters: Mapping[str, "BaseProvider"] | None = None,
    ) -> "ProviderRegistry":
        """Build the registry for the providers named in ``config``.

        Unknown provider ids are skipped here; ``ConfigurationManager.validate``
        reports them.
        """
        known = {descriptor.id: descriptor for descriptor in catalogue}
        registry = cls(environ=environ)

        for position, provider_id in enumerate(config.provider_order(), start=1):
            descriptor = known.get(provider_id)
            if descriptor is None:
                logger.warning("Skipping unknown provider '%s'", provider_id)
                continue

            # Configured order is the priority
            overrides: dict[str, Any] = {"priority": position}
            if provider_id in config.credentials:
                overrides["required_credentials"] = tuple(config.credentials[provider_id])
            if provider_id in config.provider_timeouts_ms:
                overrides["timeout_seconds"] = config.provider_timeouts_ms[provider_id] / 1000.0
            descriptor = replace(descriptor, **overrides)

            registry.register(descriptor, adapter=(adapters or {}).get(provider_id))

        return registry

    def register(self, descriptor: ProviderDescriptor, adapter: "BaseProvider | None" = None) -> None:
        self._descriptors[descriptor.id] = descriptor
        if adapter is not None:
            self._adapters[descriptor.id] = adapter

    def get(self, provider_id: str) -> ProviderDescriptor:
        try:
            return self._descriptors[provider_id]
        except KeyError:
            raise KeyError(f"Provider '{provider_id}' is not registered") from None

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)

    def ids(self) -> list[str]:
        return list(self._descriptors)

    def descriptors(self) -> list[ProviderDescriptor]:
        return list(self._descriptors.values())

    def missing_credentials(self, provider_id: str) -> list[str]:
        """Return the required credential names that are unset or empty."""
        descriptor = self.get(provider_id)
        return [name for name in descriptor.required_credentials if not self._environ.get(name)]

    def is_configured(self, provider_id: str) -> bool:
        """True when an adapter was injected or every credential is present."""
        if provider_id in self._adapters:
            return True
        return provider_id in self._descriptors and not self.missing_credentials(provider_id)

    def adapter(self, provider_id: str) -> "BaseProvider":
        """Return (creating on first use) the adapter for ``provider_id``."""
        if provider_id not in self._adapters:
            factory = self._adapter_factory
            if factory is None:
                from ai_failover.core.providers import create_adapter
                factory = create_adapter
            self._adapters[provider_id] = factory(self.get(provider_id), environ=self._environ)
        return self._adapters[provider_id]

    async def close(self) -> None:
        """Close every adapter that was created."""
        for provider_id, adapter in list(self._adapters.items()):
            try:
                await adapter.close()
            except Exception as e:
                logger.warning("Failed to close adapter for %s: %s", provider_id, e)

"""Base class for provider adapters."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ai_failover.core.providers.registry import ProviderDescriptor


class BaseProvider(ABC):
    """Base class for provider adapters.

    An adapter is the single capability the failover layer needs from a
    backend: invoke a request, answer a cheap health probe, release resources.
    Adapters raise their transport's native errors; classification happens
    in the retry policy.
    """

    def __init__(self, descriptor: "ProviderDescriptor") -> None:
        self.descriptor = descriptor

    @property
    def provider_id(self) -> str:
        return self.descriptor.id

    @abstractmethod
    async def invoke(self, request: dict[str, Any]) -> Any:
        """Send a request to the provider.

        Args:
            request: Provider-neutral request payload (``messages`` etc.)

        Returns:
            Provider response
        """

    @abstractmethod
    async def health_check(self) -> bool:
        """Lightweight probe. Return False or raise when unhealthy."""

    async def close(self) -> None:
        """Close any resources used by the provider."""

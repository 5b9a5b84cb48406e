"""Provider adapters and the provider catalogue.

Adapter classes register themselves under an adapter kind; descriptors in
the catalogue name the kind they need. All built-in adapters are imported
below, so the registry is complete as soon as this package is imported.
"""

from collections.abc import Mapping
from typing import Any

from .base import BaseProvider
from .registry import (
    BUILTIN_DESCRIPTORS,
    ProviderCategory,
    ProviderDescriptor,
    ProviderRegistry,
)

__all__ = [
    "BUILTIN_DESCRIPTORS",
    "BaseProvider",
    "ProviderCategory",
    "ProviderDescriptor",
    "ProviderRegistry",
    "create_adapter",
    "register_provider",
]

_PROVIDERS: dict[str, type[BaseProvider]] = {}


def register_provider(name: str):
    """Register an adapter class under an adapter kind."""
    def decorator(cls: type[BaseProvider]) -> type[BaseProvider]:
        _PROVIDERS[name] = cls
        return cls
    return decorator


def create_adapter(
    descriptor: ProviderDescriptor,
    environ: Mapping[str, str] | None = None,
    **kwargs: Any,
) -> BaseProvider:
    """Build the adapter for a descriptor.

    Args:
        descriptor: Provider descriptor naming the adapter kind
        environ: Environment used to resolve credentials and endpoints
        **kwargs: Additional adapter-specific arguments

    Returns:
        An adapter instance
    """
    if descriptor.adapter not in _PROVIDERS:
        raise ValueError(f"Unknown adapter kind: {descriptor.adapter}")

    return _PROVIDERS[descriptor.adapter](descriptor, environ=environ, **kwargs)


# Built-in adapters register themselves on import
from . import google, ollama, openai  # noqa: E402,F401

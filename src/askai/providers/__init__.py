"""Provider implementations and the backend dispatch table."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

from askai.errors import InternalError

from .base import Provider, ProviderCapabilities
from .gemini import GeminiProvider
from .models import EmbeddingResponse, ProviderRequest, ProviderResponse
from .ollama import OllamaClient, OllamaProvider

if TYPE_CHECKING:
    from askai.config import BackendConfig, BackendKind


def _direct(backend: BackendConfig) -> Provider:
    return GeminiProvider(api_key=backend.api_key)


def _gateway(backend: BackendConfig) -> Provider:
    return GeminiProvider(project=backend.project, location=backend.location)


def _local(backend: BackendConfig) -> Provider:
    if backend.handle is not None:
        return OllamaProvider(backend.handle)
    return OllamaProvider.from_host(backend.host or OllamaClient().host)


#: One factory per backend kind; each call gets a fresh provider.
PROVIDER_FACTORIES: dict[BackendKind, Callable[[BackendConfig], Provider]] = {
    "direct": _direct,
    "gateway": _gateway,
    "local": _local,
}


def get_provider(backend: BackendConfig) -> Provider:
    """Create the provider for a resolved backend."""
    factory = PROVIDER_FACTORIES.get(backend.kind)
    if factory is None:
        raise InternalError(f"No provider registered for backend {backend.kind!r}")
    return factory(backend)


__all__ = [
    "PROVIDER_FACTORIES",
    "EmbeddingResponse",
    "GeminiProvider",
    "OllamaClient",
    "OllamaProvider",
    "Provider",
    "ProviderCapabilities",
    "ProviderRequest",
    "ProviderResponse",
    "get_provider",
]

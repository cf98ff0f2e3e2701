"""Provider protocol: minimal interface for model backends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from askai.providers.models import (
        EmbeddingResponse,
        ProviderRequest,
        ProviderResponse,
    )


@dataclass(frozen=True)
class ProviderCapabilities:
    """Feature flags exposed by providers."""

    remote_files: bool
    json_schema: bool = False
    reasoning: bool = False
    #: Whether usage is billed (cost computed from the price table).
    billed: bool = True


@runtime_checkable
class Provider(Protocol):
    """Minimal provider protocol: generate and embed."""

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        """Generate content from the model."""
        ...

    async def embed(self, text: str, *, model: str) -> EmbeddingResponse:
        """Embed *text* into a fixed-length vector."""
        ...

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Feature capabilities for strict option validation."""
        ...

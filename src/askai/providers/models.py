"""Domain models for the provider transport layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from askai.parts import ContentPart
    from askai.request import Request


@dataclass(frozen=True)
class ProviderRequest:
    """A unified request payload for a provider generation call."""

    model: str
    prompt: str
    parts: tuple[ContentPart, ...] = ()
    system_instruction: str | None = None
    return_json: bool = False
    response_schema: dict[str, Any] | None = None
    thinking_budget: int | None = None
    include_thoughts: bool = False
    context_window: int | None = None
    temperature: float | None = None

    @classmethod
    def from_request(cls, request: Request) -> ProviderRequest:
        """Project a resolved Request onto the provider payload."""
        gen = request.generation
        return cls(
            model=request.backend.model,
            prompt=request.prompt,
            parts=request.parts,
            system_instruction=gen.system_instruction,
            return_json=gen.return_json,
            response_schema=gen.response_schema,
            thinking_budget=gen.thinking_budget,
            include_thoughts=gen.include_thoughts,
            context_window=gen.context_window,
            temperature=gen.temperature,
        )


@dataclass
class ProviderResponse:
    """A standardized response from a provider generation call.

    ``usage`` uses provider-agnostic keys: ``input_tokens``, ``output_tokens``,
    ``total_tokens`` and optionally ``reasoning_tokens``.
    """

    text: str = ""
    usage: dict[str, int] = field(default_factory=dict)
    reasoning: str | None = None
    finish_reason: str | None = None


@dataclass
class EmbeddingResponse:
    """A standardized response from a provider embedding call."""

    vector: list[float] = field(default_factory=list)
    usage: dict[str, int] = field(default_factory=dict)

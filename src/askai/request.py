"""Request normalization: one immutable Request per call."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from askai.errors import ConfigurationError

if TYPE_CHECKING:
    from askai.config import BackendConfig
    from askai.options import Options
    from askai.parts import ContentPart


@dataclass(frozen=True)
class GenerationOptions:
    """Generation settings that reach the backend."""

    return_json: bool = False
    parse_json: bool = False
    thinking_budget: int | None = None
    include_thoughts: bool = False
    context_window: int | None = None
    temperature: float | None = None
    system_instruction: str | None = None
    response_schema: dict[str, Any] | None = None

    @classmethod
    def from_options(cls, options: Options) -> GenerationOptions:
        """Extract generation settings from the caller's option bag."""
        return cls(
            return_json=bool(options.return_json),
            parse_json=bool(options.parse_json),
            thinking_budget=options.thinking_budget,
            include_thoughts=bool(options.include_thoughts),
            context_window=options.context_window,
            temperature=options.temperature,
            system_instruction=options.system_instruction,
            response_schema=options.response_schema_json(),
        )


@dataclass(frozen=True)
class Request:
    """Normalized request ready for fingerprinting and dispatch."""

    prompt: str
    parts: tuple[ContentPart, ...]
    backend: BackendConfig
    generation: GenerationOptions


def validate_prompt(prompt: Any, *, label: str = "prompt") -> str:
    """Return *prompt* when it is a non-empty string.

    Raises:
        ConfigurationError: If the prompt is not a string or is blank.
    """
    if not isinstance(prompt, str) or not prompt.strip():
        raise ConfigurationError(
            f"{label} is empty or whitespace-only",
            hint=f"The {label} must be a non-empty string.",
        )
    return prompt


def build_request(
    prompt: str,
    parts: tuple[ContentPart, ...],
    backend: BackendConfig,
    options: Options,
) -> Request:
    """Assemble the immutable Request from resolved inputs."""
    return Request(
        prompt=validate_prompt(prompt),
        parts=tuple(parts),
        backend=backend,
        generation=GenerationOptions.from_options(options),
    )

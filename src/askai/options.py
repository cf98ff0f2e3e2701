"""Per-call options for `ask_ai()` and `get_embedding()`."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, fields
import os
from typing import Any

from pydantic import BaseModel

from askai.errors import ConfigurationError

ResponseSchemaInput = type[BaseModel] | dict[str, Any]
MediaInput = str | os.PathLike[str] | Sequence[str | os.PathLike[str]]
Validator = Callable[[Any], Any]

#: Resolution order of the multi-modal options. Participates in fingerprinting.
CONTENT_OPTIONS: tuple[str, ...] = (
    "html",
    "screenshot",
    "image",
    "video",
    "audio",
    "pdf",
    "text",
)


@dataclass(frozen=True)
class Options:
    """Immutable option bag for a single call.

    Every field is optional. Backend fields left as *None* fall back to the
    process environment at call time (see `askai.config.resolve_backend`).

    Multi-modal fields accept a single path/URL or a list of them; both shapes
    are normalized to tuples on construction.

    Example:
        opts = Options(return_json=True, image=["chart.png", "gs://bucket/b.png"])
    """

    # Backend selection
    model: str | None = None
    embedding_model: str | None = None
    api_key: str | None = None
    project: str | None = None
    location: str | None = None
    #: ``True`` selects the local runtime; a live ``OllamaClient`` is used as-is.
    local: Any = None
    #: Base URL of the local runtime. Defaults to ``OLLAMA_HOST``.
    host: str | None = None

    # Caching
    cache: bool | None = None
    cache_dir: str | os.PathLike[str] | None = None

    # Output shaping
    return_json: bool = False
    #: Defaults to *return_json*.
    parse_json: bool | None = None
    #: Pydantic ``BaseModel`` subclass or JSON Schema dict. Implies *return_json*.
    response_schema: ResponseSchemaInput | None = None
    thinking_budget: int | None = None
    include_thoughts: bool = False
    context_window: int | None = None
    temperature: float | None = None
    system_instruction: str | None = None

    # Post-processing
    clean: Callable[[Any], Any] | None = None
    test: Validator | Sequence[Validator] | None = None

    # Diagnostics only; never part of the fingerprint.
    verbose: bool = False

    # Multi-modal evidence
    html: MediaInput | None = None
    screenshot: MediaInput | None = None
    image: MediaInput | None = None
    video: MediaInput | None = None
    audio: MediaInput | None = None
    pdf: MediaInput | None = None
    text: MediaInput | None = None

    def __post_init__(self) -> None:
        """Normalize list-or-single shapes and validate early for clear errors."""
        for name in CONTENT_OPTIONS:
            object.__setattr__(self, name, _as_locations(name, getattr(self, name)))

        if self.response_schema is not None:
            if not (
                isinstance(self.response_schema, dict)
                or (
                    isinstance(self.response_schema, type)
                    and issubclass(self.response_schema, BaseModel)
                )
            ):
                raise ConfigurationError(
                    "response_schema must be a Pydantic model class or JSON schema dict",
                    hint="Pass a BaseModel subclass or a dict following JSON Schema.",
                )
            object.__setattr__(self, "return_json", True)

        if self.parse_json is None:
            object.__setattr__(self, "parse_json", bool(self.return_json))

        if self.thinking_budget is not None and (
            isinstance(self.thinking_budget, bool)
            or not isinstance(self.thinking_budget, int)
            or self.thinking_budget < -1
        ):
            raise ConfigurationError(
                "thinking_budget must be an integer >= -1",
                hint="Use 0 to disable thinking, -1 for a dynamic budget.",
            )

        if self.context_window is not None and (
            isinstance(self.context_window, bool)
            or not isinstance(self.context_window, int)
            or self.context_window <= 0
        ):
            raise ConfigurationError(
                "context_window must be a positive integer",
                hint="Pass context_window=8192, for example.",
            )

        if self.system_instruction is not None and not isinstance(
            self.system_instruction, str
        ):
            raise ConfigurationError(
                "system_instruction must be a string",
                hint="Pass system_instruction='You are a concise assistant.'",
            )

        if self.local is not None and not isinstance(self.local, bool):
            if not callable(getattr(self.local, "chat", None)):
                raise ConfigurationError(
                    f"local must be a bool or a live OllamaClient, got {type(self.local).__name__}",
                    hint="Pass local=True or local=OllamaClient(host=...).",
                )

        if self.clean is not None and not callable(self.clean):
            raise ConfigurationError(
                "clean must be callable",
                hint="Pass clean=lambda value: ...",
            )

        object.__setattr__(self, "test", _as_validators(self.test))

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> Options:
        """Build Options from a plain option bag, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ConfigurationError(
                f"Unknown option(s): {', '.join(unknown)}",
                hint=f"Supported options: {', '.join(sorted(known))}",
            )
        return cls(**dict(mapping))

    @property
    def validators(self) -> tuple[Validator, ...]:
        """Return the normalized validator chain."""
        return self.test  # type: ignore[return-value]

    def locations(self, name: str) -> tuple[str, ...]:
        """Return the normalized locations for a multi-modal option."""
        return getattr(self, name)  # type: ignore[no-any-return]

    def response_schema_json(self) -> dict[str, Any] | None:
        """Return JSON Schema for provider APIs."""
        schema = self.response_schema
        if schema is None:
            return None
        if isinstance(schema, dict):
            return schema
        return schema.model_json_schema()

    def response_schema_model(self) -> type[BaseModel] | None:
        """Return Pydantic schema class when one was provided."""
        schema = self.response_schema
        if isinstance(schema, type) and issubclass(schema, BaseModel):
            return schema
        return None


def coerce_options(options: Options | Mapping[str, Any] | None) -> Options:
    """Accept an Options instance, a plain mapping, or None."""
    if options is None:
        return Options()
    if isinstance(options, Options):
        return options
    if isinstance(options, Mapping):
        return Options.from_mapping(options)
    raise ConfigurationError(
        f"options must be Options or a mapping, got {type(options).__name__}",
        hint="Pass Options(return_json=True) or {'return_json': True}.",
    )


def _as_locations(name: str, value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    items = (
        (value,)
        if isinstance(value, (str, os.PathLike))
        else tuple(value)
        if isinstance(value, Sequence)
        else None
    )
    if items is None:
        raise ConfigurationError(
            f"{name} must be a path/URL or a list of them, got {type(value).__name__}",
        )
    out: list[str] = []
    for item in items:
        if not isinstance(item, (str, os.PathLike)):
            raise ConfigurationError(
                f"{name} entries must be paths or URLs, got {type(item).__name__}",
            )
        loc = os.fspath(item)
        if not loc.strip():
            raise ConfigurationError(f"{name} contains an empty path or URL")
        out.append(loc)
    return tuple(out)


def _as_validators(value: Any) -> tuple[Validator, ...]:
    if value is None:
        return ()
    items = (value,) if callable(value) else value
    if not isinstance(items, Sequence) or not all(callable(v) for v in items):
        raise ConfigurationError(
            "test must be a callable or a list of callables",
            hint="Pass test=[lambda value: ..., ...].",
        )
    return tuple(items)

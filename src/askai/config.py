"""Configuration: environment snapshot and backend resolution.

Resolution is a pure function of an immutable `Options` and an immutable
`Environment` snapshot taken at call time. Nothing is cached between calls.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import os
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv

from askai.errors import ConfigurationError
from askai.options import Options

load_dotenv()

BackendKind = Literal["direct", "gateway", "local"]
Purpose = Literal["generate", "embed"]

# Environment variable names
ENV_MODEL = "ASKAI_MODEL"
ENV_EMBEDDING_MODEL = "ASKAI_EMBEDDING_MODEL"
ENV_API_KEYS = ("GEMINI_API_KEY", "GOOGLE_API_KEY")
ENV_PROJECT = "GOOGLE_CLOUD_PROJECT"
ENV_LOCATION = "GOOGLE_CLOUD_LOCATION"
ENV_USE_LOCAL = "ASKAI_USE_LOCAL"
ENV_LOCAL_HOST = "OLLAMA_HOST"
ENV_CACHE = "ASKAI_CACHE"
ENV_CACHE_DIR = "ASKAI_CACHE_DIR"

DEFAULT_MODELS: dict[tuple[BackendKind, Purpose], str] = {
    ("direct", "generate"): "gemini-2.5-flash",
    ("gateway", "generate"): "gemini-2.5-flash",
    ("local", "generate"): "gemma3",
    ("direct", "embed"): "gemini-embedding-001",
    ("gateway", "embed"): "gemini-embedding-001",
    ("local", "embed"): "nomic-embed-text",
}
DEFAULT_LOCAL_HOST = "http://localhost:11434"
DEFAULT_CACHE_DIR = Path("~/.cache/askai")

_TRUTHY = frozenset({"1", "true", "yes", "on"})


def _env_flag(value: str | None) -> bool:
    return value is not None and value.strip().lower() in _TRUTHY


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class Environment:
    """Immutable snapshot of the process-wide defaults askai reads."""

    model: str | None = None
    embedding_model: str | None = None
    api_key: str | None = None
    project: str | None = None
    location: str | None = None
    use_local: bool = False
    local_host: str | None = None
    cache: bool = False
    cache_dir: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Environment:
        """Snapshot the relevant variables from *environ* (``os.environ`` by default)."""
        env = os.environ if environ is None else environ
        api_key = next(
            (k for k in (_clean(env.get(name)) for name in ENV_API_KEYS) if k),
            None,
        )
        return cls(
            model=_clean(env.get(ENV_MODEL)),
            embedding_model=_clean(env.get(ENV_EMBEDDING_MODEL)),
            api_key=api_key,
            project=_clean(env.get(ENV_PROJECT)),
            location=_clean(env.get(ENV_LOCATION)),
            use_local=_env_flag(env.get(ENV_USE_LOCAL)),
            local_host=_clean(env.get(ENV_LOCAL_HOST)),
            cache=_env_flag(env.get(ENV_CACHE)),
            cache_dir=_clean(env.get(ENV_CACHE_DIR)),
        )

    def __str__(self) -> str:
        """Return a redacted representation."""
        return (
            f"Environment(model={self.model!r}, project={self.project!r}, "
            f"location={self.location!r}, use_local={self.use_local}, "
            f"api_key={'[REDACTED]' if self.api_key else None})"
        )

    __repr__ = __str__


@dataclass(frozen=True)
class BackendConfig:
    """Fully resolved backend for one call."""

    kind: BackendKind
    model: str
    api_key: str | None = None
    project: str | None = None
    location: str | None = None
    #: Base URL of the local runtime.
    host: str | None = None
    #: Live local-runtime connection supplied by the caller.
    handle: Any = None

    @property
    def is_cloud(self) -> bool:
        """Whether calls are billed by a cloud provider."""
        return self.kind != "local"

    @property
    def supports_remote_files(self) -> bool:
        """Whether ``gs://`` references can be passed through unresolved."""
        return self.kind != "local"

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"BackendConfig(kind={self.kind!r}, model={self.model!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"project={self.project!r}, location={self.location!r}, "
            f"host={self.host!r}, handle={type(self.handle).__name__ if self.handle else None})"
        )

    __repr__ = __str__


def resolve_backend(
    options: Options,
    env: Environment,
    *,
    purpose: Purpose = "generate",
) -> BackendConfig:
    """Resolve the backend for one call. Explicit options always win.

    Priority:
        1. an explicit local request (``True`` or a live handle), else the
           ``ASKAI_USE_LOCAL`` toggle unless ``local=False`` was passed;
        2. a gateway when project and location both resolve;
        3. the direct API with an API key.

    Raises:
        ConfigurationError: When the selected backend lacks credentials or the
            options combine incompatibly. Never performs I/O.
    """
    use_local = env.use_local if options.local is None else options.local is not False
    if use_local:
        handle = None if isinstance(options.local, bool) else options.local
        return BackendConfig(
            kind="local",
            model=_resolve_model(options, env, "local", purpose),
            host=options.host or env.local_host or DEFAULT_LOCAL_HOST,
            handle=handle,
        )

    explicit_gateway = options.project is not None or options.location is not None
    if explicit_gateway:
        project = options.project or env.project
        location = options.location or env.location
        if not (project and location):
            missing = ENV_LOCATION if project else ENV_PROJECT
            raise ConfigurationError(
                "Gateway access requires both project and location",
                hint=f"Pass both project= and location=, or set {missing}.",
            )
        return BackendConfig(
            kind="gateway",
            model=_resolve_model(options, env, "gateway", purpose),
            project=project,
            location=location,
        )

    if options.api_key is None and env.project and env.location:
        return BackendConfig(
            kind="gateway",
            model=_resolve_model(options, env, "gateway", purpose),
            project=env.project,
            location=env.location,
        )

    api_key = options.api_key or env.api_key
    if not api_key:
        raise ConfigurationError(
            "API key required for the Gemini API",
            hint=(
                f"Set {ENV_API_KEYS[0]}, pass api_key=..., set {ENV_PROJECT} and "
                f"{ENV_LOCATION} for Vertex AI, or pass local=True."
            ),
        )
    return BackendConfig(
        kind="direct",
        model=_resolve_model(options, env, "direct", purpose),
        api_key=api_key,
    )


def resolve_cache_settings(options: Options, env: Environment) -> tuple[bool, Path]:
    """Return whether caching is enabled and the cache root directory."""
    enabled = env.cache if options.cache is None else bool(options.cache)
    raw = options.cache_dir or env.cache_dir
    root = Path(raw) if raw is not None else DEFAULT_CACHE_DIR
    return enabled, root.expanduser()


def _resolve_model(
    options: Options, env: Environment, kind: BackendKind, purpose: Purpose
) -> str:
    if purpose == "embed":
        explicit = options.embedding_model or env.embedding_model
    else:
        explicit = options.model or env.model
    return explicit or DEFAULT_MODELS[(kind, purpose)]

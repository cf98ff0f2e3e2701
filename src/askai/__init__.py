"""askai: one call surface for Gemini, Vertex AI, and local Ollama models.

Public API:
    - ask_ai(): Ask a question, get the post-processed answer
    - ask_ai_detailed(): Same call, returning an AskResult with usage and cost
    - get_embedding(): Embed text as a vector
    - Options: Per-call option bag
    - Metrics: Caller-owned usage accumulator
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from askai.cache import CacheEntry, CacheStore, DiskCache
from askai.embedding import execute_embedding
from askai.errors import (
    AskAIError,
    BackendError,
    CacheError,
    ConfigurationError,
    DataError,
    InternalError,
    RateLimitError,
    ResolutionError,
    ValidationError,
)
from askai.execute import execute_ask
from askai.fetchers import BrowserFetcher, FileReader, LocalFileReader, WebFetcher
from askai.metrics import Metrics
from askai.options import Options
from askai.providers import OllamaClient
from askai.result import AskResult
from askai.retry import RetryPolicy, retry_async

if TYPE_CHECKING:
    from collections.abc import Mapping

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("askai")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("askai").addHandler(logging.NullHandler())


async def ask_ai(
    prompt: str,
    options: Options | Mapping[str, Any] | None = None,
    *,
    metrics: Metrics | None = None,
    store: CacheStore | None = None,
    reader: FileReader | None = None,
    fetcher: WebFetcher | None = None,
) -> Any:
    """Ask a model and return the post-processed answer.

    Args:
        prompt: The question or instruction.
        options: ``Options`` or a plain mapping of the same fields.
        metrics: Optional accumulator updated once per call.
        store: Cache store to use instead of the default on-disk cache.
        reader: File reader used for media options.
        fetcher: Web fetcher used for ``html`` and ``screenshot``.

    Returns:
        The response text, or the parsed JSON value, after ``clean`` and
        every ``test`` validator ran.

    Example:
        answer = await ask_ai("2+2?", {"model": "gemini-2.5-flash"})
        items = await ask_ai("List two letters as JSON", {"return_json": True})
    """
    result = await ask_ai_detailed(
        prompt,
        options,
        metrics=metrics,
        store=store,
        reader=reader,
        fetcher=fetcher,
    )
    return result.value


async def ask_ai_detailed(
    prompt: str,
    options: Options | Mapping[str, Any] | None = None,
    *,
    metrics: Metrics | None = None,
    store: CacheStore | None = None,
    reader: FileReader | None = None,
    fetcher: WebFetcher | None = None,
) -> AskResult:
    """Like `ask_ai`, but return the full `AskResult` (text, usage, cost, cache status)."""
    return await execute_ask(
        prompt,
        options,
        metrics=metrics,
        store=store,
        reader=reader,
        fetcher=fetcher,
    )


async def get_embedding(
    text: str,
    options: Options | Mapping[str, Any] | None = None,
    *,
    metrics: Metrics | None = None,
    store: CacheStore | None = None,
) -> list[float]:
    """Embed *text* with the selected backend's embedding model.

    The vector is returned exactly as the backend produced it.

    Example:
        vector = await get_embedding("hello", {"local": True})
    """
    return await execute_embedding(text, options, metrics=metrics, store=store)


__all__ = [
    "AskAIError",
    "AskResult",
    "BackendError",
    "BrowserFetcher",
    "CacheEntry",
    "CacheError",
    "CacheStore",
    "ConfigurationError",
    "DataError",
    "DiskCache",
    "FileReader",
    "InternalError",
    "LocalFileReader",
    "Metrics",
    "OllamaClient",
    "Options",
    "RateLimitError",
    "ResolutionError",
    "RetryPolicy",
    "ValidationError",
    "WebFetcher",
    "__version__",
    "ask_ai",
    "ask_ai_detailed",
    "get_embedding",
    "retry_async",
]

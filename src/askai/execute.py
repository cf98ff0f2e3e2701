"""Orchestration of a single ask: resolve, fingerprint, dispatch, post-process."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

from askai.cache import DiskCache, compute_cache_key
from askai.config import Environment, resolve_backend, resolve_cache_settings
from askai.errors import AskAIError, CacheError, ConfigurationError
from askai.fetchers import BrowserFetcher, LocalFileReader
from askai.options import coerce_options
from askai.parts import FileRefPart
from askai.pricing import compute_cost
from askai.providers import get_provider
from askai.providers._errors import wrap_provider_error
from askai.providers.models import ProviderRequest, ProviderResponse
from askai.request import build_request, validate_prompt
from askai.resolve import check_backend_compatibility, resolve_content
from askai.result import AskResult, process_response

if TYPE_CHECKING:
    from collections.abc import Mapping

    from askai.cache import CacheStore
    from askai.config import BackendConfig
    from askai.fetchers import FileReader, WebFetcher
    from askai.metrics import Metrics
    from askai.options import Options
    from askai.providers.base import Provider
    from askai.request import Request

logger = logging.getLogger(__name__)


async def execute_ask(
    prompt: str,
    options: Options | Mapping[str, Any] | None = None,
    *,
    metrics: Metrics | None = None,
    store: CacheStore | None = None,
    reader: FileReader | None = None,
    fetcher: WebFetcher | None = None,
    env: Environment | None = None,
) -> AskResult:
    """Run one request end to end.

    Order: options -> backend -> content -> fingerprint -> cache lookup ->
    dispatch -> parse/clean/test -> cache store -> result. Configuration
    problems surface before any I/O; resolution problems before any cache
    lookup or dispatch.
    """
    start = time.perf_counter()
    opts = coerce_options(options)
    validate_prompt(prompt)
    env = env if env is not None else Environment.from_env()
    backend = resolve_backend(opts, env, purpose="generate")
    check_backend_compatibility(opts, backend)
    store = select_cache_store(opts, env, store)

    parts = await resolve_content(
        opts,
        backend,
        reader=reader if reader is not None else LocalFileReader(),
        fetcher=fetcher if fetcher is not None else BrowserFetcher(),
    )
    request = build_request(prompt, parts, backend, opts)
    cache_key = compute_cache_key(request) if store is not None else None

    if store is not None and cache_key is not None:
        entry = await asyncio.to_thread(store.get, cache_key)
        if entry is not None:
            response = _response_from_payload(entry.payload)
            if response is not None:
                value = _post_process(response.text, opts)
                if metrics is not None:
                    metrics.record_cached()
                _log_summary(
                    opts,
                    backend,
                    cache_state="hit",
                    usage={},
                    cost=0.0,
                    duration_s=time.perf_counter() - start,
                )
                return AskResult(
                    value=value,
                    text=response.text,
                    thoughts=response.reasoning,
                    cached=True,
                    cache_key=cache_key,
                    backend=backend.kind,
                    model=backend.model,
                )
            logger.warning("Ignoring cache entry %s with unexpected payload", cache_key[:12])

    response, cost = await _dispatch(request)
    value = _post_process(response.text, opts)

    if store is not None and cache_key is not None:
        try:
            await asyncio.to_thread(store.set, cache_key, _payload_from_response(response))
        except CacheError as e:
            logger.warning("Response not cached: %s", e)

    if metrics is not None:
        metrics.record_usage(response.usage, cost=cost)

    _log_summary(
        opts,
        backend,
        cache_state="miss" if store is not None else "off",
        usage=response.usage,
        cost=cost,
        duration_s=time.perf_counter() - start,
    )
    return AskResult(
        value=value,
        text=response.text,
        thoughts=response.reasoning,
        usage=dict(response.usage),
        cost=cost,
        cached=False,
        cache_key=cache_key,
        backend=backend.kind,
        model=backend.model,
    )


def select_cache_store(
    options: Options, env: Environment, store: CacheStore | None
) -> CacheStore | None:
    """Return the store to use, or None when caching is off for this call."""
    if options.cache is False:
        return None
    if store is not None:
        return store
    enabled, root = resolve_cache_settings(options, env)
    return DiskCache(root) if enabled else None


def _post_process(text: str, options: Options) -> Any:
    return process_response(
        text,
        parse_json=bool(options.parse_json),
        clean=options.clean,
        validators=options.validators,
        schema_model=options.response_schema_model(),
    )


def _check_capabilities(provider: Provider, request: Request) -> None:
    caps = provider.capabilities
    if not caps.remote_files and any(isinstance(p, FileRefPart) for p in request.parts):
        raise ConfigurationError(
            "Provider cannot dereference remote file references",
            hint="Use local paths, or choose a cloud backend.",
        )
    if request.generation.response_schema is not None and not caps.json_schema:
        raise ConfigurationError(
            "Provider does not support response schemas",
            hint="Remove response_schema or choose a provider with schema support.",
        )
    if request.generation.include_thoughts and not caps.reasoning:
        raise ConfigurationError(
            "Provider does not support reasoning output",
            hint="Remove include_thoughts or choose a provider with reasoning support.",
        )


async def _dispatch(request: Request) -> tuple[ProviderResponse, float]:
    """Issue exactly one generate call. No retries here."""
    backend = request.backend
    provider = get_provider(backend)
    try:
        _check_capabilities(provider, request)
        try:
            response = await provider.generate(ProviderRequest.from_request(request))
        except asyncio.CancelledError:
            raise
        except AskAIError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=backend.kind,
                phase="generate",
                allow_network_errors=True,
                message=f"{backend.kind} generate failed",
            ) from e
    finally:
        await close_provider(provider)

    cost = compute_cost(backend, response.usage) if provider.capabilities.billed else 0.0
    return response, cost


async def close_provider(provider: Provider) -> None:
    """Release provider resources; cleanup never masks the primary outcome."""
    aclose = getattr(provider, "aclose", None)
    if not callable(aclose):
        return
    try:
        await aclose()
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.warning("Provider cleanup failed: %s", exc)


def _payload_from_response(response: ProviderResponse) -> dict[str, Any]:
    return {
        "text": response.text,
        "reasoning": response.reasoning,
        "finish_reason": response.finish_reason,
    }


def _response_from_payload(payload: Any) -> ProviderResponse | None:
    if not isinstance(payload, dict) or not isinstance(payload.get("text"), str):
        return None
    reasoning = payload.get("reasoning")
    finish_reason = payload.get("finish_reason")
    return ProviderResponse(
        text=payload["text"],
        reasoning=reasoning if isinstance(reasoning, str) else None,
        finish_reason=finish_reason if isinstance(finish_reason, str) else None,
    )


def _log_summary(
    options: Options,
    backend: BackendConfig,
    *,
    cache_state: str,
    usage: Mapping[str, int],
    cost: float,
    duration_s: float,
) -> None:
    logger.log(
        logging.INFO if options.verbose else logging.DEBUG,
        "ask backend=%s model=%s cache=%s input_tokens=%d output_tokens=%d cost=%.6f duration=%.2fs",
        backend.kind,
        backend.model,
        cache_state,
        usage.get("input_tokens", 0),
        usage.get("output_tokens", 0),
        cost,
        duration_s,
    )

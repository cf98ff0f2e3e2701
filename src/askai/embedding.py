"""Embedding variant: same backend selection and cache, raw vector out."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from askai.cache import compute_embedding_key
from askai.config import Environment, resolve_backend
from askai.errors import AskAIError, CacheError
from askai.execute import close_provider, select_cache_store
from askai.options import coerce_options
from askai.pricing import compute_cost
from askai.providers import get_provider
from askai.providers._errors import wrap_provider_error
from askai.request import validate_prompt

if TYPE_CHECKING:
    from collections.abc import Mapping

    from askai.cache import CacheStore
    from askai.config import BackendConfig
    from askai.metrics import Metrics
    from askai.options import Options
    from askai.providers.models import EmbeddingResponse

logger = logging.getLogger(__name__)


async def execute_embedding(
    text: str,
    options: Options | Mapping[str, Any] | None = None,
    *,
    metrics: Metrics | None = None,
    store: CacheStore | None = None,
    env: Environment | None = None,
) -> list[float]:
    """Embed *text*, serving repeats from the cache when it is enabled."""
    opts = coerce_options(options)
    validate_prompt(text, label="text")
    env = env if env is not None else Environment.from_env()
    backend = resolve_backend(opts, env, purpose="embed")
    store = select_cache_store(opts, env, store)
    cache_key = compute_embedding_key(text, backend) if store is not None else None

    if store is not None and cache_key is not None:
        entry = await asyncio.to_thread(store.get, cache_key)
        vector = _vector_from_payload(entry.payload) if entry is not None else None
        if vector is not None:
            if metrics is not None:
                metrics.record_cached()
            logger.log(
                logging.INFO if opts.verbose else logging.DEBUG,
                "embed backend=%s model=%s cache=hit dims=%d",
                backend.kind,
                backend.model,
                len(vector),
            )
            return vector

    response = await _dispatch_embedding(text, backend)
    cost = compute_cost(backend, response.usage)

    if store is not None and cache_key is not None:
        try:
            await asyncio.to_thread(store.set, cache_key, {"vector": response.vector})
        except CacheError as e:
            logger.warning("Embedding not cached: %s", e)

    if metrics is not None:
        metrics.record(
            input_tokens=int(response.usage.get("input_tokens", 0)),
            output_tokens=0,
            cost=cost,
        )

    logger.log(
        logging.INFO if opts.verbose else logging.DEBUG,
        "embed backend=%s model=%s cache=%s dims=%d input_tokens=%d cost=%.6f",
        backend.kind,
        backend.model,
        "miss" if store is not None else "off",
        len(response.vector),
        response.usage.get("input_tokens", 0),
        cost,
    )
    return response.vector


async def _dispatch_embedding(text: str, backend: BackendConfig) -> EmbeddingResponse:
    provider = get_provider(backend)
    try:
        return await provider.embed(text, model=backend.model)
    except asyncio.CancelledError:
        raise
    except AskAIError:
        raise
    except Exception as e:
        raise wrap_provider_error(
            e,
            provider=backend.kind,
            phase="embed",
            allow_network_errors=True,
            message=f"{backend.kind} embed failed",
        ) from e
    finally:
        await close_provider(provider)


def _vector_from_payload(payload: Any) -> list[float] | None:
    if not isinstance(payload, dict):
        return None
    vector = payload.get("vector")
    if not isinstance(vector, list) or not all(
        isinstance(v, (int, float)) for v in vector
    ):
        return None
    return [float(v) for v in vector]

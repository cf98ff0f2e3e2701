"""Per-model price table for cloud backends."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

    from askai.config import BackendConfig

logger = logging.getLogger(__name__)

#: USD per million tokens as (input, output). Reasoning tokens bill as output.
#: Matched by longest model-name prefix; list price for prompts <= 200k tokens.
PRICES_PER_MILLION: dict[str, tuple[float, float]] = {
    "gemini-2.5-pro": (1.25, 10.00),
    "gemini-2.5-flash": (0.30, 2.50),
    "gemini-2.5-flash-lite": (0.10, 0.40),
    "gemini-2.0-flash": (0.10, 0.40),
    "gemini-2.0-flash-lite": (0.075, 0.30),
    "gemini-1.5-pro": (1.25, 5.00),
    "gemini-1.5-flash": (0.075, 0.30),
    "gemini-embedding-001": (0.15, 0.0),
    "text-embedding-004": (0.0, 0.0),
}


def lookup_price(model: str) -> tuple[float, float] | None:
    """Return (input, output) USD per million tokens, or None when unknown."""
    # Vertex resource names look like publishers/google/models/<model>.
    name = model.rsplit("/", 1)[-1].lower()
    best: str | None = None
    for prefix in PRICES_PER_MILLION:
        if name.startswith(prefix) and (best is None or len(prefix) > len(best)):
            best = prefix
    return PRICES_PER_MILLION[best] if best is not None else None


def compute_cost(backend: BackendConfig, usage: Mapping[str, int]) -> float:
    """Compute the USD cost of one call. Local models are always free."""
    if not backend.is_cloud:
        return 0.0
    price = lookup_price(backend.model)
    if price is None:
        logger.warning("No price known for model %s; recording cost 0", backend.model)
        return 0.0
    input_price, output_price = price
    input_tokens = usage.get("input_tokens", 0)
    output_tokens = usage.get("output_tokens", 0) + usage.get("reasoning_tokens", 0)
    return (input_tokens * input_price + output_tokens * output_price) / 1_000_000

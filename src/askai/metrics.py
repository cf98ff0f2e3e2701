"""Caller-owned usage accumulator."""

from __future__ import annotations

from dataclasses import dataclass, field
import threading
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass
class Metrics:
    """Running totals across calls.

    Pass the same instance to many calls. Each completed call updates it
    exactly once, and all counters of one update are applied under a lock so
    concurrent calls never lose increments.

    Cache hits never touch the token, cost, or request counters; they only
    increment ``cached_requests``.

    Example:
        metrics = Metrics()
        await ask_ai("2+2?", metrics=metrics)
        print(metrics.total_cost, metrics.total_requests)
    """

    total_cost: float = 0.0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_reasoning_tokens: int = 0
    total_requests: int = 0
    cached_requests: int = 0
    _lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False
    )

    def record(
        self,
        *,
        input_tokens: int,
        output_tokens: int,
        cost: float,
        reasoning_tokens: int = 0,
    ) -> None:
        """Add one dispatched call's usage."""
        with self._lock:
            self.total_input_tokens += input_tokens
            self.total_output_tokens += output_tokens
            self.total_reasoning_tokens += reasoning_tokens
            self.total_cost += cost
            self.total_requests += 1

    def record_usage(self, usage: Mapping[str, int], *, cost: float) -> None:
        """Add one dispatched call from a provider usage mapping.

        Each token total is the plain sum of the matching key across calls,
        so it always agrees with the ``usage`` reported on each result.
        Reasoning tokens are kept apart from output tokens; *cost* already
        bills them at the output rate.
        """
        self.record(
            input_tokens=int(usage.get("input_tokens", 0)),
            output_tokens=int(usage.get("output_tokens", 0)),
            reasoning_tokens=int(usage.get("reasoning_tokens", 0)),
            cost=cost,
        )

    def record_cached(self) -> None:
        """Count a call served from the cache."""
        with self._lock:
            self.cached_requests += 1

    def snapshot(self) -> dict[str, Any]:
        """Return a consistent copy of all counters."""
        with self._lock:
            return {
                "total_cost": self.total_cost,
                "total_input_tokens": self.total_input_tokens,
                "total_output_tokens": self.total_output_tokens,
                "total_reasoning_tokens": self.total_reasoning_tokens,
                "total_requests": self.total_requests,
                "cached_requests": self.cached_requests,
            }

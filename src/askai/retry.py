"""Opt-in async retry for callers that want it around ``ask_ai``.

askai itself dispatches each call once. Wrap a call yourself when transient
backend failures should be retried::

    policy = RetryPolicy(max_attempts=3)
    answer = await retry_async(lambda: ask_ai("2+2?"), policy=policy)

Only failures that could succeed on a second try are retried: throttling,
5xx responses, and dropped connections. Configuration, resolution, parse,
and validation errors fail immediately.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
import time
from typing import TYPE_CHECKING, TypeVar

import httpx

from askai._http import RETRYABLE_STATUS_CODES
from askai.errors import AskAIError, BackendError, _walk_exception_chain

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try, and how long to wait in between.

    Delays grow by ``backoff_multiplier`` from ``initial_delay_s`` up to
    ``max_delay_s``. With ``jitter`` on, each delay is drawn uniformly from
    ``[0, delay]``. A server-provided retry-after always wins when longer.
    ``max_elapsed_s`` caps the total time spent including sleeps.
    """

    max_attempts: int = 2
    initial_delay_s: float = 0.5
    backoff_multiplier: float = 2.0
    max_delay_s: float = 5.0
    jitter: bool = True
    max_elapsed_s: float | None = 15.0

    def __post_init__(self) -> None:
        checks = (
            (self.max_attempts >= 1, "max_attempts must be >= 1"),
            (self.initial_delay_s >= 0, "initial_delay_s must be >= 0"),
            (self.backoff_multiplier > 0, "backoff_multiplier must be > 0"),
            (self.max_delay_s >= 0, "max_delay_s must be >= 0"),
            (
                self.max_elapsed_s is None or self.max_elapsed_s >= 0,
                "max_elapsed_s must be >= 0 or None",
            ),
        )
        for ok, message in checks:
            if not ok:
                raise ValueError(f"RetryPolicy.{message}")

    def delay_before(self, retry_number: int, *, retry_after_s: float | None = None) -> float:
        """Seconds to sleep before retry *retry_number* (1 for the first retry)."""
        delay = min(
            self.max_delay_s,
            self.initial_delay_s * self.backoff_multiplier ** (retry_number - 1),
        )
        if self.jitter and delay > 0:
            delay = random.uniform(0, delay)  # noqa: S311
        if retry_after_s is not None:
            delay = max(delay, retry_after_s)
        return max(delay, 0.0)


def should_retry(exc: BaseException) -> bool:
    """Return True when *exc* is worth another attempt.

    BackendError is retried when flagged retryable or when it carries a
    throttling or server-side status. Every other askai error is
    deterministic. Outside the askai hierarchy only timeouts and httpx
    transport failures qualify. Cancellation never does.
    """
    if isinstance(exc, asyncio.CancelledError):
        return False
    if isinstance(exc, BackendError):
        return exc.retryable or exc.status_code in RETRYABLE_STATUS_CODES
    if isinstance(exc, AskAIError):
        return False
    return any(
        isinstance(err, (TimeoutError, httpx.TimeoutException, httpx.RequestError))
        for err in _walk_exception_chain(exc)
    )


async def retry_async(
    factory: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy | None = None,
    should_retry: Callable[[BaseException], bool] = should_retry,
) -> T:
    """Await ``factory()`` until it succeeds or the policy is exhausted.

    *factory* must build a fresh awaitable on every call. The last error
    is re-raised unchanged when no attempts or time remain.
    """
    policy = policy or RetryPolicy()
    deadline = None if policy.max_elapsed_s is None else time.monotonic() + policy.max_elapsed_s

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await factory()
        except Exception as exc:
            if attempt == policy.max_attempts or not should_retry(exc):
                raise
            retry_after_s = exc.retry_after_s if isinstance(exc, BackendError) else None
            delay = policy.delay_before(attempt, retry_after_s=retry_after_s)
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise
                delay = min(delay, remaining)

            logger.debug(
                "retry attempt=%d/%d error=%s sleep=%.2fs",
                attempt,
                policy.max_attempts,
                type(exc).__name__,
                delay,
            )
            if delay > 0:
                await asyncio.sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover

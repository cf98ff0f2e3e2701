"""Exception hierarchy for askai."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator


class AskAIError(Exception):
    """Base exception for all askai errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(AskAIError):
    """Options, credentials, or backend selection are invalid.

    Always raised before any network or file I/O.
    """


class ResolutionError(AskAIError):
    """A file, URL, or page could not be turned into a content part."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        location: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.location = location


class InternalError(AskAIError):
    """An askai internal error (bug) or invariant violation."""


class BackendError(AskAIError):
    """The model backend failed (network, quota, malformed response).

    Providers attach retry metadata so callers layering retries on top of
    askai can decide without substring matching.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase


class RateLimitError(BackendError):
    """Rate limit or quota exceeded (HTTP 429)."""


class DataError(AskAIError):
    """Model output could not be parsed as requested."""

    def __init__(
        self, message: str, *, raw_text: str, hint: str | None = None
    ) -> None:
        super().__init__(message, hint=hint)
        self.raw_text = raw_text


class ValidationError(AskAIError):
    """A caller-supplied test rejected the cleaned response."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        diagnostic: Any = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.diagnostic = diagnostic


class CacheError(AskAIError):
    """The response cache could not be read or written."""


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)

"""Translate SDK and transport failures into askai's BackendError.

Both the google-genai SDK and raw httpx calls surface status codes and
throttling delays in different places. Everything here reads them off the
exception chain so the dispatcher and ``askai.retry`` see one shape.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

import httpx

from askai._http import RETRYABLE_STATUS_CODES
from askai.errors import BackendError, RateLimitError, _walk_exception_chain

# Provider labels used by the concrete providers, plus the backend kinds
# the dispatcher passes when it wraps an unexpected exception itself.
_GATEWAY_LABELS = frozenset({"vertex", "gateway"})
_DIRECT_LABELS = frozenset({"gemini", "direct"})

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)s\s*$")


def _as_status(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool) and 100 <= value <= 599:
        return value
    return None


def extract_status_code(exc: BaseException) -> int | None:
    """Return the first HTTP status found on *exc* or its causes."""
    for err in _walk_exception_chain(exc):
        for attr in ("status_code", "code", "status"):
            status = _as_status(getattr(err, attr, None))
            if status is not None:
                return status
        status = _as_status(getattr(getattr(err, "response", None), "status_code", None))
        if status is not None:
            return status
    return None


def _delay_from_headers(err: BaseException) -> float | None:
    headers: Any = getattr(getattr(err, "response", None), "headers", None)
    if headers is None or not hasattr(headers, "get"):
        return None
    raw = headers.get("Retry-After")
    if not isinstance(raw, str):
        return None
    try:
        seconds = float(raw.strip())
    except ValueError:
        # HTTP-date form is not worth parsing for throttling hints.
        return None
    return seconds if seconds >= 0 else None


def _delay_from_details(err: BaseException) -> float | None:
    """Read a google.rpc.RetryInfo delay from the SDK's parsed error body.

    The google-genai ``APIError.details`` payload looks like::

        {"error": {"details": [{"@type": "...RetryInfo", "retryDelay": "8s"}]}}
    """
    body: Any = getattr(err, "details", None)
    error: Any = body.get("error") if isinstance(body, dict) else None
    entries: Any = error.get("details") if isinstance(error, dict) else None
    if not isinstance(entries, list):
        return None
    for entry in entries:
        if not isinstance(entry, dict) or "RetryInfo" not in str(entry.get("@type", "")):
            continue
        match = _DURATION_RE.match(str(entry.get("retryDelay", "")))
        if match:
            return float(match.group(1))
    return None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Return the server-requested delay in seconds, if any layer carries one."""
    for err in _walk_exception_chain(exc):
        value = getattr(err, "retry_after", None)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0:
            return float(value)
        delay = _delay_from_headers(err)
        if delay is None:
            delay = _delay_from_details(err)
        if delay is not None:
            return delay
    return None


def _is_network_failure(exc: BaseException) -> bool:
    return any(
        isinstance(err, (httpx.TimeoutException, httpx.RequestError, TimeoutError))
        for err in _walk_exception_chain(exc)
    )


def _hint_for(provider: str, status_code: int | None, cause: str) -> str | None:
    """Suggest the setting to check for credential and model failures."""
    lowered = cause.lower()
    auth_failure = status_code in {401, 403} or (
        status_code == 400 and ("api key" in lowered or "api_key" in lowered)
    )
    if auth_failure and provider in _GATEWAY_LABELS:
        return (
            "Check GOOGLE_CLOUD_PROJECT/GOOGLE_CLOUD_LOCATION and run "
            "`gcloud auth application-default login`."
        )
    if auth_failure and provider in _DIRECT_LABELS:
        return "Check GEMINI_API_KEY (or GOOGLE_API_KEY) or pass api_key=..."
    if status_code == 404 and provider in _DIRECT_LABELS | _GATEWAY_LABELS:
        return "Check the model name; set it with model=... or ASKAI_MODEL."
    return None


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    allow_network_errors: bool,
    message: str | None = None,
    hint: str | None = None,
) -> BackendError:
    """Return a BackendError describing *exc*, with retry metadata attached.

    An exception that is already a BackendError is returned as-is after
    filling in any missing provider, phase, or hint. Cancellation is never
    wrapped.
    """
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    if isinstance(exc, BackendError):
        exc.provider = exc.provider or provider
        exc.phase = exc.phase or phase
        if exc.hint is None:
            exc.hint = hint
        return exc

    status_code = extract_status_code(exc)
    retry_after_s = extract_retry_after_s(exc)
    if status_code is not None:
        retryable = status_code in RETRYABLE_STATUS_CODES or retry_after_s is not None
    else:
        retryable = retry_after_s is not None or (
            allow_network_errors and _is_network_failure(exc)
        )

    cause = str(exc)
    summary = message or f"{provider} {phase} failed"
    if status_code is not None:
        summary = f"{summary} (status={status_code})"
    error_type = RateLimitError if status_code == 429 else BackendError
    return error_type(
        f"{summary}: {cause}" if cause else summary,
        hint=hint or _hint_for(provider, status_code, cause),
        retryable=retryable,
        status_code=status_code,
        retry_after_s=retry_after_s,
        provider=provider,
        phase=phase,
    )

"""Content resolver: expand multi-modal options into ordered content parts.

Parts are produced in the fixed order of `askai.options.CONTENT_OPTIONS`
(``html``, ``screenshot``, ``image``, ``video``, ``audio``, ``pdf``, ``text``)
and, within one option, in list order. The order participates in the cache
fingerprint, so it never depends on fetch completion order.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from typing import TYPE_CHECKING

from askai._http import CLOUD_STORAGE_PREFIX
from askai.errors import AskAIError, ConfigurationError, ResolutionError
from askai.options import CONTENT_OPTIONS
from askai.parts import FileRefPart, InlinePart, TextPart

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from askai.config import BackendConfig
    from askai.fetchers import FileReader, WebFetcher
    from askai.options import Options
    from askai.parts import ContentPart

logger = logging.getLogger(__name__)

# Fallback MIME type and the family a detected type must belong to.
_MEDIA_TYPES: dict[str, tuple[str, str]] = {
    "image": ("image/png", "image/"),
    "video": ("video/mp4", "video/"),
    "audio": ("audio/mpeg", "audio/"),
}
_FIXED_MIME = {"pdf": "application/pdf", "text": "text/plain"}
_LOCAL_TEXT_AND_IMAGES_ONLY = frozenset({"video", "audio", "pdf"})


def is_remote_reference(location: str) -> bool:
    """Whether *location* is a cloud-storage reference the backend dereferences."""
    return location.lower().startswith(CLOUD_STORAGE_PREFIX)


def check_backend_compatibility(options: Options, backend: BackendConfig) -> None:
    """Reject option/backend combinations before any I/O happens.

    Raises:
        ConfigurationError: If a remote reference or an unsupported media kind
            is combined with a backend that cannot accept it.
    """
    if backend.supports_remote_files:
        return
    for name in CONTENT_OPTIONS:
        for location in options.locations(name):
            if is_remote_reference(location):
                raise ConfigurationError(
                    f"{name}={location!r} is a remote reference, which the local runtime cannot read",
                    hint="Download the object first, or use a cloud backend.",
                )
        if name in _LOCAL_TEXT_AND_IMAGES_ONLY and options.locations(name):
            raise ConfigurationError(
                f"The local runtime does not accept {name} input",
                hint="Local models take text and images only; use a cloud backend.",
            )


async def resolve_content(
    options: Options,
    backend: BackendConfig,
    *,
    reader: FileReader,
    fetcher: WebFetcher,
) -> tuple[ContentPart, ...]:
    """Resolve every populated multi-modal option into a content part.

    Resolutions run concurrently and are reassembled in the documented order.

    Raises:
        ConfigurationError: See `check_backend_compatibility`.
        ResolutionError: If any path, URL, or page cannot be read. The whole
            call is aborted.
    """
    check_backend_compatibility(options, backend)

    jobs: list[Awaitable[ContentPart]] = []
    for name in CONTENT_OPTIONS:
        for location in options.locations(name):
            if name == "html":
                jobs.append(_resolve_html(location, fetcher))
            elif name == "screenshot":
                jobs.append(_resolve_screenshot(location, fetcher))
            elif is_remote_reference(location):
                jobs.append(_as_awaitable(_remote_part(name, location)))
            else:
                jobs.append(_resolve_file(name, location, reader))

    if not jobs:
        return ()

    results = await asyncio.gather(*jobs, return_exceptions=True)
    parts: list[ContentPart] = []
    for item in results:
        if isinstance(item, asyncio.CancelledError):
            raise item
        if isinstance(item, BaseException):
            # Deterministic: report the earliest failing option, not the first to fail.
            raise item
        parts.append(item)

    logger.debug("Resolved %d content part(s)", len(parts))
    return tuple(parts)


async def _as_awaitable(part: ContentPart) -> ContentPart:
    return part


async def _resolve_html(url: str, fetcher: WebFetcher) -> ContentPart:
    try:
        html = await fetcher.fetch_html(url)
    except (asyncio.CancelledError, AskAIError):
        raise
    except Exception as e:
        raise ResolutionError(
            f"Could not fetch HTML from {url}: {type(e).__name__}: {e}",
            location=url,
        ) from e
    return TextPart(text=html, label=url)


async def _resolve_screenshot(url: str, fetcher: WebFetcher) -> ContentPart:
    try:
        image = await fetcher.screenshot(url)
    except (asyncio.CancelledError, AskAIError):
        raise
    except Exception as e:
        raise ResolutionError(
            f"Could not capture screenshot of {url}: {type(e).__name__}: {e}",
            location=url,
        ) from e
    return InlinePart(mime_type="image/png", data=image, label=url)


async def _resolve_file(name: str, location: str, reader: FileReader) -> ContentPart:
    try:
        data, detected = await reader.read(location)
    except (asyncio.CancelledError, AskAIError):
        raise
    except Exception as e:
        raise ResolutionError(
            f"Could not read {name} from {location}: {type(e).__name__}: {e}",
            location=location,
        ) from e
    return InlinePart(
        mime_type=_mime_for(name, location, detected), data=data, label=location
    )


def _remote_part(name: str, location: str) -> ContentPart:
    return FileRefPart(uri=location, mime_type=_mime_for(name, location, None))


def _mime_for(name: str, location: str, detected: str | None) -> str:
    fixed = _FIXED_MIME.get(name)
    if fixed is not None:
        return fixed
    fallback, family = _MEDIA_TYPES[name]
    for candidate in (detected, mimetypes.guess_type(location)[0]):
        if candidate and candidate.startswith(family):
            return candidate
    return fallback

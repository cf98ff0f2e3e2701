"""External collaborators that fetch bytes for the content resolver.

askai only depends on the two protocols below; the default implementations
read local files and HTTP(S) URLs with httpx and render screenshots with
Playwright (installed via the ``web`` extra).
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import urlparse

import httpx

from askai._http import USER_AGENT
from askai.errors import ResolutionError

logger = logging.getLogger(__name__)

_HTTP_SCHEMES = frozenset({"http", "https"})


@runtime_checkable
class FileReader(Protocol):
    """Reads raw bytes of a local path or URL."""

    async def read(self, location: str) -> tuple[bytes, str | None]:
        """Return the content and its MIME type when known."""
        ...


@runtime_checkable
class WebFetcher(Protocol):
    """Fetches web pages as markup or as rendered screenshots."""

    async def fetch_html(self, url: str) -> str:
        """Return the page markup."""
        ...

    async def screenshot(self, url: str) -> bytes:
        """Return a PNG screenshot of the rendered page."""
        ...


def is_http_url(location: str) -> bool:
    """Whether *location* is an ``http://`` or ``https://`` URL."""
    return urlparse(location).scheme.lower() in _HTTP_SCHEMES


def _scheme(location: str) -> str:
    scheme = urlparse(location).scheme.lower()
    # Windows drive letters parse as one-letter schemes.
    return "" if len(scheme) <= 1 else scheme


class LocalFileReader:
    """Read local files from disk and HTTP(S) URLs over the network."""

    def __init__(self, *, timeout: float = 60.0) -> None:
        """Create a reader with an HTTP timeout in seconds."""
        self.timeout = timeout

    async def read(self, location: str) -> tuple[bytes, str | None]:
        """Read *location* and return its bytes and best-known MIME type."""
        scheme = _scheme(location)
        if scheme in _HTTP_SCHEMES:
            return await self._read_url(location)
        if scheme and scheme != "file":
            raise ResolutionError(
                f"Unsupported scheme {scheme!r} in {location}",
                hint="Use a local path, an http(s) URL, or a gs:// reference.",
                location=location,
            )

        path = Path(urlparse(location).path if scheme == "file" else location)
        path = path.expanduser()
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as e:
            raise ResolutionError(
                f"File not found: {path}", location=location
            ) from e
        except OSError as e:
            raise ResolutionError(
                f"Could not read {path}: {e}", location=location
            ) from e
        return data, mimetypes.guess_type(str(path))[0]

    async def _read_url(self, url: str) -> tuple[bytes, str | None]:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ResolutionError(
                f"Fetching {url} failed with status {e.response.status_code}",
                location=url,
            ) from e
        except httpx.HTTPError as e:
            raise ResolutionError(
                f"Could not reach {url}: {type(e).__name__}: {e}",
                hint="Check the URL and your network connection.",
                location=url,
            ) from e

        content_type = response.headers.get("content-type", "")
        mime_type = content_type.split(";", 1)[0].strip() or None
        return response.content, mime_type or mimetypes.guess_type(url)[0]


class BrowserFetcher:
    """Fetch page markup with httpx and screenshots with headless Chromium."""

    def __init__(
        self,
        *,
        timeout: float = 60.0,
        viewport: tuple[int, int] = (1280, 800),
        full_page: bool = True,
    ) -> None:
        """Create a fetcher.

        Args:
            timeout: Network timeout in seconds for both markup and rendering.
            viewport: Browser viewport as (width, height) for screenshots.
            full_page: Capture the full scrollable page instead of the viewport.
        """
        self.timeout = timeout
        self.viewport = viewport
        self.full_page = full_page

    async def fetch_html(self, url: str) -> str:
        """Return the markup served at *url*."""
        if not is_http_url(url):
            raise ResolutionError(
                f"html expects an http(s) URL, got {url}", location=url
            )
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ResolutionError(
                f"Fetching {url} failed with status {e.response.status_code}",
                location=url,
            ) from e
        except httpx.HTTPError as e:
            raise ResolutionError(
                f"Could not reach {url}: {type(e).__name__}: {e}",
                hint="Check the URL and your network connection.",
                location=url,
            ) from e
        return response.text

    async def screenshot(self, url: str) -> bytes:
        """Render *url* in headless Chromium and return a PNG."""
        if not is_http_url(url):
            raise ResolutionError(
                f"screenshot expects an http(s) URL, got {url}", location=url
            )
        try:
            from playwright.async_api import async_playwright
        except ImportError as e:
            raise ResolutionError(
                "playwright package not installed",
                hint="pip install 'askai[web]' && playwright install chromium",
                location=url,
            ) from e

        width, height = self.viewport
        try:
            async with async_playwright() as pw:
                browser = await pw.chromium.launch(headless=True)
                try:
                    page = await browser.new_page(
                        viewport={"width": width, "height": height}
                    )
                    await page.goto(
                        url, wait_until="networkidle", timeout=self.timeout * 1000
                    )
                    image: bytes = await page.screenshot(
                        full_page=self.full_page, type="png"
                    )
                finally:
                    await browser.close()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise ResolutionError(
                f"Screenshot of {url} failed: {type(e).__name__}: {e}",
                location=url,
            ) from e
        logger.debug("Captured screenshot url=%s bytes=%d", url, len(image))
        return image

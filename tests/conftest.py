"""Shared fixtures for the askai suite.

Every test runs with GEMINI_*/GOOGLE_*/ASKAI_*/OLLAMA_* cleared and .env
loading disabled, so backend selection only sees what a test sets. Tests
that need a backend install ``fake_provider`` instead of touching the network.
"""

from __future__ import annotations

from contextlib import suppress
from dataclasses import dataclass, field
import logging
import os
from typing import Any

import pytest

from askai.errors import ResolutionError
from askai.providers import PROVIDER_FACTORIES
from askai.providers.base import ProviderCapabilities
from askai.providers.models import (
    EmbeddingResponse,
    ProviderRequest,
    ProviderResponse,
)

# =============================================================================
# Test Doubles
# =============================================================================


@dataclass
class FakeProvider:
    """Provider test double for orchestration behavior verification.

    Captures calls and returns configurable responses. Use to test the ask
    flow without making real API calls.
    """

    text: str = "ok"
    usage: dict[str, int] = field(
        default_factory=lambda: {"input_tokens": 10, "output_tokens": 5, "total_tokens": 15}
    )
    reasoning: str | None = None
    vector: list[float] = field(default_factory=lambda: [0.1, 0.2])
    generate_calls: int = 0
    embed_calls: int = 0
    close_calls: int = 0
    last_request: ProviderRequest | None = None
    last_embed: tuple[str, str] | None = None
    _capabilities: ProviderCapabilities = field(
        default_factory=lambda: ProviderCapabilities(
            remote_files=True,
            json_schema=True,
            reasoning=True,
        )
    )

    @property
    def capabilities(self) -> ProviderCapabilities:
        return self._capabilities

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        self.generate_calls += 1
        self.last_request = request
        return ProviderResponse(
            text=self.text,
            usage=dict(self.usage),
            reasoning=self.reasoning if request.include_thoughts else None,
            finish_reason="STOP",
        )

    async def embed(self, text: str, *, model: str) -> EmbeddingResponse:
        self.embed_calls += 1
        self.last_embed = (text, model)
        return EmbeddingResponse(vector=list(self.vector), usage={"input_tokens": 3})

    async def aclose(self) -> None:
        self.close_calls += 1


@dataclass
class FakeReader:
    """FileReader double serving bytes from a dict; records every read."""

    files: dict[str, tuple[bytes, str | None]] = field(default_factory=dict)
    reads: list[str] = field(default_factory=list)

    async def read(self, location: str) -> tuple[bytes, str | None]:
        self.reads.append(location)
        if location not in self.files:
            raise FileNotFoundError(location)
        return self.files[location]


@dataclass
class FakeFetcher:
    """WebFetcher double serving canned markup and screenshots."""

    pages: dict[str, str] = field(default_factory=dict)
    screenshot_bytes: bytes = b"\x89PNG fake"
    calls: list[tuple[str, str]] = field(default_factory=list)

    async def fetch_html(self, url: str) -> str:
        self.calls.append(("html", url))
        if url not in self.pages:
            raise ResolutionError(f"no page for {url}", location=url)
        return self.pages[url]

    async def screenshot(self, url: str) -> bytes:
        self.calls.append(("screenshot", url))
        return self.screenshot_bytes


@pytest.fixture
def fake_provider(monkeypatch: pytest.MonkeyPatch) -> FakeProvider:
    """Route every backend kind to one FakeProvider (not autouse)."""
    provider = FakeProvider()
    for kind in ("direct", "gateway", "local"):
        monkeypatch.setitem(PROVIDER_FACTORIES, kind, lambda _backend: provider)
    return provider


@pytest.fixture
def api_key_env(monkeypatch: pytest.MonkeyPatch) -> str:
    """Make the direct backend resolvable with a dummy key."""
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    return "test-key"


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_provider_env(request, monkeypatch):
    """Ensure a clean backend environment for each test.

    Clears GEMINI_*, GOOGLE_*, ASKAI_* and OLLAMA_* env vars to prevent test
    pollution. Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith(("GEMINI_", "GOOGLE_", "ASKAI_", "OLLAMA_")):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)


# =============================================================================
# API Test Configuration
# =============================================================================

# Cheapest current Flash tier keeps live runs inexpensive.
_GEMINI_TEST_MODEL = "gemini-2.5-flash-lite"


@pytest.fixture
def gemini_api_key():
    """Return GEMINI_API_KEY or skip the test if unavailable."""
    key = os.getenv("GEMINI_API_KEY")
    if not key:
        pytest.skip("GEMINI_API_KEY not set")
    return key


@pytest.fixture
def gemini_test_model():
    """Return the model to use for Gemini API tests."""
    return _GEMINI_TEST_MODEL

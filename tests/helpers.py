"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off provider subclasses as coverage expands.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import time
from typing import Any

from askai.cache import CacheEntry
from askai.providers.models import ProviderRequest, ProviderResponse
from tests.conftest import FakeProvider


@dataclass
class ScriptedProvider(FakeProvider):
    """FakeProvider that returns a scripted sequence of results/exceptions."""

    script: list[dict[str, Any] | ProviderResponse | BaseException] = field(
        default_factory=list
    )

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        self.generate_calls += 1
        self.last_request = request
        if not self.script:
            return ProviderResponse(text="ok", usage={"input_tokens": 1})
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, ProviderResponse):
            return item
        return ProviderResponse(**item)


@dataclass
class SlowProvider(FakeProvider):
    """FakeProvider that yields to the loop before answering."""

    delay_s: float = 0.01

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        await asyncio.sleep(self.delay_s)
        return await super().generate(request)


@dataclass
class MemoryStore:
    """In-memory CacheStore that counts reads and writes."""

    entries: dict[str, CacheEntry] = field(default_factory=dict)
    gets: int = 0
    sets: int = 0

    def get(self, key: str) -> CacheEntry | None:
        self.gets += 1
        return self.entries.get(key)

    def set(self, key: str, payload: Any) -> CacheEntry:
        self.sets += 1
        entry = CacheEntry(key=key, payload=payload, created_at=0.0)
        self.entries[key] = entry
        return entry


@dataclass
class BlockingStore(MemoryStore):
    """MemoryStore whose reads and writes block the calling thread."""

    delay_s: float = 0.2

    def get(self, key: str) -> CacheEntry | None:
        time.sleep(self.delay_s)
        return super().get(key)

    def set(self, key: str, payload: Any) -> CacheEntry:
        time.sleep(self.delay_s)
        return super().set(key, payload)

"""Response cache: deterministic fingerprints and a durable disk store.

The store keeps the raw provider output. On a hit the response pipeline is
re-run, so caller-supplied ``clean``/``test`` callables never need to be part
of the key.
"""

from __future__ import annotations

from contextlib import suppress
from dataclasses import dataclass
import hashlib
import json
import logging
from pathlib import Path
import re
import time
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
import unicodedata
import uuid

from askai.errors import CacheError

if TYPE_CHECKING:
    import os

    from askai.config import BackendConfig
    from askai.request import Request

logger = logging.getLogger(__name__)

#: Bump when the fingerprint document or payload shape changes.
CACHE_FORMAT_VERSION = 1

_KEY_RE = re.compile(r"^[0-9a-f]{32,128}$")


def normalize_text(text: str) -> str:
    """Normalize text for fingerprinting (NFC, surrounding whitespace stripped)."""
    return unicodedata.normalize("NFC", text).strip()


def _digest(document: dict[str, Any]) -> str:
    canonical = json.dumps(
        document,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def compute_cache_key(request: Request) -> str:
    """Compute the fingerprint of a fully resolved request.

    Key = sha256(prompt + ordered part digests + backend kind + model +
    output-shaping generation options). Credentials and logging flags never
    participate. ``context_window`` only counts for the local backend, the one
    runtime that honors it.
    """
    gen = request.generation
    return _digest(
        {
            "v": CACHE_FORMAT_VERSION,
            "op": "generate",
            "prompt": normalize_text(request.prompt),
            "parts": [part.digest() for part in request.parts],
            "backend": request.backend.kind,
            "model": request.backend.model,
            "options": {
                "return_json": gen.return_json,
                "thinking_budget": gen.thinking_budget,
                "include_thoughts": gen.include_thoughts,
                "context_window": (
                    gen.context_window if request.backend.kind == "local" else None
                ),
                "temperature": gen.temperature,
                "system_instruction": gen.system_instruction,
                "response_schema": gen.response_schema,
            },
        }
    )


def compute_embedding_key(text: str, backend: BackendConfig) -> str:
    """Compute the fingerprint of an embedding request."""
    return _digest(
        {
            "v": CACHE_FORMAT_VERSION,
            "op": "embed",
            "text": normalize_text(text),
            "backend": backend.kind,
            "model": backend.model,
        }
    )


@dataclass(frozen=True)
class CacheEntry:
    """A stored result. Never mutated once written."""

    key: str
    payload: Any
    created_at: float


@runtime_checkable
class CacheStore(Protocol):
    """Durable key -> entry mapping.

    askai calls ``get`` and ``set`` from a worker thread, so blocking I/O is
    fine, but implementations must tolerate concurrent calls.
    """

    def get(self, key: str) -> CacheEntry | None:
        """Return the entry for *key*, or None on a miss."""
        ...

    def set(self, key: str, payload: Any) -> CacheEntry:
        """Persist *payload* under *key* and return the written entry."""
        ...


class DiskCache:
    """JSON-file cache rooted at a directory, sharded by key prefix.

    Writes go to a unique temp file that is renamed into place, so concurrent
    writers of the same key never corrupt an entry (last writer wins) and an
    interrupted write is never visible.
    """

    def __init__(self, root: str | os.PathLike[str]) -> None:
        """Create a cache rooted at *root* (created lazily on first write)."""
        self.root = Path(root).expanduser()

    def path_for(self, key: str) -> Path:
        """Return the file path holding *key*."""
        if not _KEY_RE.match(key):
            raise CacheError(f"Invalid cache key: {key!r}")
        return self.root / key[:2] / f"{key}.json"

    def get(self, key: str) -> CacheEntry | None:
        """Read an entry; missing or unreadable entries are misses."""
        path = self.path_for(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Cache read failed for %s: %s", path, e)
            return None

        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring corrupt cache entry %s", path)
            return None
        if (
            not isinstance(data, dict)
            or data.get("key") != key
            or data.get("version") != CACHE_FORMAT_VERSION
            or "payload" not in data
        ):
            logger.warning("Ignoring cache entry with unexpected shape: %s", path)
            return None

        created = data.get("created_at")
        return CacheEntry(
            key=key,
            payload=data["payload"],
            created_at=float(created) if isinstance(created, (int, float)) else 0.0,
        )

    def set(self, key: str, payload: Any) -> CacheEntry:
        """Persist an entry atomically via temp file rename."""
        path = self.path_for(key)
        entry = CacheEntry(key=key, payload=payload, created_at=time.time())
        document = {
            "version": CACHE_FORMAT_VERSION,
            "key": key,
            "created_at": entry.created_at,
            "payload": payload,
        }
        try:
            serialized = json.dumps(document, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise CacheError(
                f"Cache payload for {key[:12]} is not JSON-serializable: {e}"
            ) from e

        tmp = path.with_name(f".{key}.{uuid.uuid4().hex}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(serialized, encoding="utf-8")
            tmp.replace(path)
        except OSError as e:
            with suppress(OSError):
                tmp.unlink(missing_ok=True)
            raise CacheError(
                f"Cache write failed for {path}: {e}",
                hint="Check permissions on the cache directory or set ASKAI_CACHE_DIR.",
            ) from e
        except BaseException:
            with suppress(OSError):
                tmp.unlink(missing_ok=True)
            raise
        return entry

    def __contains__(self, key: object) -> bool:
        """Whether a readable entry exists for *key*."""
        return isinstance(key, str) and self.get(key) is not None

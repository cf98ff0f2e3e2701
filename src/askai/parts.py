"""Content parts: the normalized units of multi-modal input."""

from __future__ import annotations

from dataclasses import dataclass
import hashlib


@dataclass(frozen=True, slots=True)
class TextPart:
    """Plain text attached to a request (fetched HTML, for example)."""

    text: str
    label: str | None = None

    def digest(self) -> str:
        """Compute SHA256 of the text for cache identity."""
        h = hashlib.sha256(b"text\x00")
        h.update(self.text.encode("utf-8"))
        return h.hexdigest()


@dataclass(frozen=True, slots=True)
class InlinePart:
    """Bytes sent inline with their MIME type."""

    mime_type: str
    data: bytes
    label: str | None = None

    @property
    def size_bytes(self) -> int:
        """Payload size in bytes."""
        return len(self.data)

    def digest(self) -> str:
        """Compute SHA256 over MIME type and content for cache identity."""
        h = hashlib.sha256(b"inline\x00")
        h.update(self.mime_type.encode("utf-8"))
        h.update(b"\x00")
        h.update(self.data)
        return h.hexdigest()


@dataclass(frozen=True, slots=True)
class FileRefPart:
    """Provider-native reference (``gs://`` URI) dereferenced by the backend."""

    uri: str
    mime_type: str

    def digest(self) -> str:
        """Compute SHA256 over the reference identifier for cache identity."""
        h = hashlib.sha256(b"ref\x00")
        h.update(f"{self.mime_type}\x00{self.uri}".encode())
        return h.hexdigest()


ContentPart = TextPart | InlinePart | FileRefPart

"""Ollama provider: locally hosted models over the Ollama HTTP API."""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any

import httpx

from askai.config import DEFAULT_LOCAL_HOST
from askai.errors import BackendError, ConfigurationError
from askai.parts import FileRefPart, InlinePart, TextPart
from askai.providers._errors import wrap_provider_error
from askai.providers.base import ProviderCapabilities
from askai.providers.models import (
    EmbeddingResponse,
    ProviderRequest,
    ProviderResponse,
)

logger = logging.getLogger(__name__)

__all__ = ["OllamaClient", "OllamaProvider"]


class OllamaClient:
    """
    Thin async client for a local Ollama server.

    Pass a live instance as ``Options(local=client)`` to reuse one connection
    across calls; askai never closes a client it did not create.

    Example:
        >>> client = OllamaClient()
        >>> data = await client.chat({"model": "gemma3", "messages": [...]})
    """

    def __init__(
        self,
        host: str = DEFAULT_LOCAL_HOST,
        timeout: float = 300.0,
    ) -> None:
        """
        Initialize Ollama client.

        Args:
            host: Ollama server URL
            timeout: Request timeout in seconds
        """
        self.host = host.rstrip("/")
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.host,
                timeout=self.timeout,
            )
        return self._client

    async def chat(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST a non-streaming chat request and return the decoded body."""
        client = await self._get_client()
        response = await client.post("/api/chat", json={**payload, "stream": False})
        response.raise_for_status()
        data: dict[str, Any] = response.json()
        return data

    async def embed(self, model: str, text: str) -> dict[str, Any]:
        """POST an embedding request and return the decoded body."""
        client = await self._get_client()
        response = await client.post("/api/embed", json={"model": model, "input": text})
        response.raise_for_status()
        data: dict[str, Any] = response.json()
        return data

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None


class OllamaProvider:
    """Local runtime provider.

    Text parts are folded into the user message and images are sent base64
    encoded. Any non-zero thinking budget switches reasoning on; the budget
    itself is not sized.
    """

    def __init__(self, client: OllamaClient, *, owns_client: bool = False) -> None:
        """Wrap *client*; close it on ``aclose()`` only when *owns_client*."""
        self.client = client
        self.owns_client = owns_client

    @classmethod
    def from_host(cls, host: str) -> OllamaProvider:
        """Create a provider that owns a fresh connection to *host*."""
        return cls(OllamaClient(host=host), owns_client=True)

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            remote_files=False,
            json_schema=True,
            reasoning=True,
            billed=False,
        )

    def _build_payload(self, request: ProviderRequest) -> dict[str, Any]:
        texts: list[str] = []
        images: list[str] = []
        for part in request.parts:
            if isinstance(part, TextPart):
                texts.append(f"{part.label}:\n{part.text}" if part.label else part.text)
            elif isinstance(part, InlinePart) and part.mime_type.startswith("image/"):
                images.append(base64.b64encode(part.data).decode("ascii"))
            elif isinstance(part, InlinePart) and part.mime_type.startswith("text/"):
                texts.append(part.data.decode("utf-8", errors="replace"))
            elif isinstance(part, FileRefPart):
                raise ConfigurationError(
                    f"The local runtime cannot dereference {part.uri}",
                    hint="Download the object first, or use a cloud backend.",
                )
            else:
                raise ConfigurationError(
                    f"The local runtime does not accept {part.mime_type} input",
                    hint="Local models take text and images only; use a cloud backend.",
                )

        message: dict[str, Any] = {
            "role": "user",
            "content": "\n\n".join([*texts, request.prompt]),
        }
        if images:
            message["images"] = images

        messages: list[dict[str, Any]] = []
        if request.system_instruction is not None:
            messages.append({"role": "system", "content": request.system_instruction})
        messages.append(message)

        payload: dict[str, Any] = {"model": request.model, "messages": messages}
        if request.response_schema is not None:
            payload["format"] = request.response_schema
        elif request.return_json:
            payload["format"] = "json"
        if request.thinking_budget is not None:
            payload["think"] = request.thinking_budget != 0
        elif request.include_thoughts:
            payload["think"] = True

        model_options: dict[str, Any] = {}
        if request.context_window is not None:
            model_options["num_ctx"] = request.context_window
        if request.temperature is not None:
            model_options["temperature"] = request.temperature
        if model_options:
            payload["options"] = model_options
        return payload

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        """Generate a chat completion from the local model."""
        payload = self._build_payload(request)
        try:
            data = await self.client.chat(payload)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider="ollama",
                phase="generate",
                allow_network_errors=True,
                message="Ollama generate failed",
                hint=_connection_hint(e, self.client),
            ) from e

        message = data.get("message")
        if not isinstance(message, dict):
            raise BackendError(
                "Ollama response is missing 'message'",
                provider="ollama",
                phase="generate",
            )

        input_tokens = int(data.get("prompt_eval_count") or 0)
        output_tokens = int(data.get("eval_count") or 0)
        thinking = message.get("thinking")
        return ProviderResponse(
            text=str(message.get("content") or ""),
            usage={
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "total_tokens": input_tokens + output_tokens,
            },
            reasoning=thinking
            if request.include_thoughts and isinstance(thinking, str) and thinking
            else None,
            finish_reason=data.get("done_reason"),
        )

    async def embed(self, text: str, *, model: str) -> EmbeddingResponse:
        """Embed *text* with a local embedding model."""
        try:
            data = await self.client.embed(model, text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider="ollama",
                phase="embed",
                allow_network_errors=True,
                message="Ollama embed failed",
                hint=_connection_hint(e, self.client),
            ) from e

        embeddings = data.get("embeddings")
        if not isinstance(embeddings, list) or not embeddings:
            raise BackendError(
                "Ollama returned no embeddings",
                provider="ollama",
                phase="embed",
            )
        tokens = int(data.get("prompt_eval_count") or 0)
        return EmbeddingResponse(
            vector=[float(v) for v in embeddings[0]],
            usage={"input_tokens": tokens, "total_tokens": tokens},
        )

    async def aclose(self) -> None:
        """Close the connection when this provider created it."""
        if self.owns_client:
            await self.client.close()


def _connection_hint(exc: BaseException, client: OllamaClient) -> str | None:
    if isinstance(exc, httpx.ConnectError):
        host = getattr(client, "host", DEFAULT_LOCAL_HOST)
        return f"Is Ollama running at {host}? Start it with `ollama serve` or set OLLAMA_HOST."
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 404:
        return "Pull the model first with `ollama pull <model>`."
    return None

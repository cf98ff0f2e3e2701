"""Gemini provider: Developer API (API key) and Vertex AI gateway."""

from __future__ import annotations

import asyncio
import io
import logging
import time
from typing import Any

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

#: Inline request payloads above this size go through the Files API.
INLINE_LIMIT_BYTES = 20 * 1024 * 1024


class GeminiProvider:
    """Google Gemini provider.

    Pass ``api_key`` for the Developer API, or ``project`` and ``location``
    for Vertex AI with application default credentials.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        project: str | None = None,
        location: str | None = None,
    ) -> None:
        """Create a provider for exactly one authentication mode."""
        if api_key is None and not (project and location):
            raise ConfigurationError(
                "GeminiProvider needs an api_key or a project and location",
            )
        self.api_key = api_key
        self.project = project
        self.location = location
        self._client: Any = None

    @property
    def vertex(self) -> bool:
        """Whether calls go through the Vertex AI gateway."""
        return self.api_key is None

    @property
    def _name(self) -> str:
        return "vertex" if self.vertex else "gemini"

    def _get_client(self) -> Any:
        """Lazy-initialize the google-genai client."""
        if self._client is None:
            try:
                from google import genai
            except ImportError as e:
                raise ConfigurationError(
                    "google-genai package not installed",
                    hint="pip install google-genai",
                ) from e

            if self.vertex:
                self._client = genai.Client(
                    vertexai=True, project=self.project, location=self.location
                )
            else:
                self._client = genai.Client(api_key=self.api_key)
        return self._client

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            remote_files=True,
            json_schema=True,
            reasoning=True,
            billed=True,
        )

    async def _convert_parts(self, request: ProviderRequest) -> list[Any]:
        """Convert content parts plus the prompt into google-genai SDK types."""
        from google.genai import types

        converted: list[Any] = []
        for part in request.parts:
            if isinstance(part, TextPart):
                text = f"{part.label}:\n{part.text}" if part.label else part.text
                converted.append(types.Part.from_text(text=text))
            elif isinstance(part, FileRefPart):
                converted.append(
                    types.Part.from_uri(file_uri=part.uri, mime_type=part.mime_type)
                )
            elif isinstance(part, InlinePart):
                if part.size_bytes > INLINE_LIMIT_BYTES and not self.vertex:
                    uri = await self.upload_bytes(part.data, part.mime_type)
                    converted.append(
                        types.Part.from_uri(file_uri=uri, mime_type=part.mime_type)
                    )
                else:
                    if part.size_bytes > INLINE_LIMIT_BYTES:
                        logger.warning(
                            "Sending %d bytes inline to Vertex AI (%s); the request may be rejected",
                            part.size_bytes,
                            part.label or part.mime_type,
                        )
                    converted.append(
                        types.Part.from_bytes(data=part.data, mime_type=part.mime_type)
                    )
            else:
                raise BackendError(
                    f"Unsupported content part: {type(part).__name__}",
                    provider=self._name,
                    phase="generate",
                )
        converted.append(types.Part.from_text(text=request.prompt))
        return converted

    def _build_config(self, request: ProviderRequest) -> Any:
        from google.genai import types

        config_kwargs: dict[str, Any] = {}
        if request.system_instruction is not None:
            config_kwargs["system_instruction"] = request.system_instruction
        if request.temperature is not None:
            config_kwargs["temperature"] = request.temperature
        if request.return_json:
            config_kwargs["response_mime_type"] = "application/json"
        if request.response_schema is not None:
            config_kwargs["response_json_schema"] = request.response_schema
        if request.thinking_budget is not None or request.include_thoughts:
            thinking: dict[str, Any] = {"include_thoughts": request.include_thoughts}
            if request.thinking_budget is not None:
                thinking["thinking_budget"] = request.thinking_budget
            config_kwargs["thinking_config"] = types.ThinkingConfig(**thinking)
        if request.context_window is not None:
            logger.debug(
                "Ignoring context_window=%d; it only applies to the local runtime",
                request.context_window,
            )
        return types.GenerateContentConfig(**config_kwargs)

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        """Generate content from the Gemini model."""
        client = self._get_client()

        try:
            contents = await self._convert_parts(request)
            response = await client.aio.models.generate_content(
                model=request.model,
                contents=contents,
                config=self._build_config(request),
            )

            if not response:
                raise BackendError(
                    "Gemini returned an empty response.",
                    provider=self._name,
                    phase="generate",
                )

            return self._parse_response(response, include_thoughts=request.include_thoughts)
        except asyncio.CancelledError:
            raise
        except (BackendError, ConfigurationError):
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=self._name,
                phase="generate",
                allow_network_errors=True,
                message="Gemini generate failed",
            ) from e

    async def embed(self, text: str, *, model: str) -> EmbeddingResponse:
        """Embed *text* with a Gemini embedding model."""
        client = self._get_client()

        try:
            response = await client.aio.models.embed_content(model=model, contents=text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=self._name,
                phase="embed",
                allow_network_errors=True,
                message="Gemini embed failed",
            ) from e

        embeddings = getattr(response, "embeddings", None) or []
        values = getattr(embeddings[0], "values", None) if embeddings else None
        if not values:
            raise BackendError(
                "Gemini returned no embedding values",
                provider=self._name,
                phase="embed",
            )

        usage: dict[str, int] = {}
        # Only Vertex AI reports token statistics for embeddings.
        stats = getattr(embeddings[0], "statistics", None)
        token_count = getattr(stats, "token_count", None)
        if isinstance(token_count, (int, float)):
            usage = {"input_tokens": int(token_count), "total_tokens": int(token_count)}
        return EmbeddingResponse(vector=[float(v) for v in values], usage=usage)

    async def upload_bytes(
        self,
        data: bytes,
        mime_type: str,
        *,
        timeout_s: float = 300.0,
        poll_interval_s: float = 2.0,
    ) -> str:
        """Upload an oversized inline payload through the Files API.

        Video and large PDFs are processed server-side before they can be
        referenced, so this polls until the file is ACTIVE and returns its uri.
        """
        client = self._get_client()
        deadline = time.monotonic() + timeout_s

        try:
            file_obj = await client.aio.files.upload(
                file=io.BytesIO(data), config={"mime_type": mime_type}
            )
            while (state := _file_state(file_obj)) != "ACTIVE":
                if state == "FAILED":
                    raise BackendError(
                        f"Gemini could not process the uploaded file: {_file_error(file_obj)}",
                        provider=self._name,
                        phase="upload",
                    )
                if time.monotonic() >= deadline:
                    raise BackendError(
                        f"Uploaded file still {state} after {timeout_s:.0f}s",
                        provider=self._name,
                        phase="upload",
                        retryable=True,
                    )
                await asyncio.sleep(poll_interval_s)
                file_obj = await client.aio.files.get(name=file_obj.name)
        except (asyncio.CancelledError, BackendError):
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=self._name,
                phase="upload",
                allow_network_errors=False,
                message="Gemini upload failed",
            ) from e

        uri = getattr(file_obj, "uri", None)
        if not isinstance(uri, str) or not uri:
            raise BackendError(
                "Gemini upload did not return a file uri",
                provider=self._name,
                phase="upload",
            )
        logger.debug("uploaded bytes=%d mime=%s uri=%s", len(data), mime_type, uri)
        return uri

    def _parse_response(
        self, response: Any, *, include_thoughts: bool = False
    ) -> ProviderResponse:
        """Parse a Gemini response into the provider-agnostic shape."""
        answer_parts: list[str] = []
        reasoning_parts: list[str] = []
        finish_reason: str | None = None

        candidates = getattr(response, "candidates", None) or []
        if candidates:
            candidate = candidates[0]
            raw_reason = getattr(candidate, "finish_reason", None)
            if raw_reason is not None:
                finish_reason = str(getattr(raw_reason, "name", raw_reason))
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", None) or []:
                text = getattr(part, "text", None)
                if not isinstance(text, str):
                    continue
                if getattr(part, "thought", False):
                    reasoning_parts.append(text)
                else:
                    answer_parts.append(text)

        text = "".join(answer_parts)
        if not answer_parts:
            fallback = getattr(response, "text", None)
            text = fallback if isinstance(fallback, str) else ""

        usage: dict[str, int] = {}
        um = getattr(response, "usage_metadata", None)
        if um is not None:
            # Gemini SDK attrs -> provider-agnostic keys
            usage = {
                "input_tokens": getattr(um, "prompt_token_count", None) or 0,
                "output_tokens": getattr(um, "candidates_token_count", None) or 0,
                "total_tokens": getattr(um, "total_token_count", None) or 0,
            }
            thoughts_toks = getattr(um, "thoughts_token_count", None)
            if thoughts_toks is not None:
                usage["reasoning_tokens"] = thoughts_toks

        reasoning = None
        if include_thoughts and reasoning_parts:
            reasoning = "\n\n".join(reasoning_parts).strip()

        return ProviderResponse(
            text=text,
            usage=usage,
            reasoning=reasoning,
            finish_reason=finish_reason,
        )

    async def aclose(self) -> None:
        """Release the SDK's async transport."""
        client, self._client = self._client, None
        if client is None:
            return
        aclose = getattr(getattr(client, "aio", None), "aclose", None)
        if callable(aclose):
            await aclose()


def _file_state(file_obj: Any) -> str:
    """Return the file's processing state as a plain string such as ``ACTIVE``."""
    state = getattr(file_obj, "state", None)
    if isinstance(state, str):
        return state or "STATE_UNSPECIFIED"
    return str(getattr(state, "name", None) or "STATE_UNSPECIFIED")


def _file_error(file_obj: Any) -> str:
    error = getattr(file_obj, "error", None)
    message = error if isinstance(error, str) else getattr(error, "message", None)
    return message or "unknown error"

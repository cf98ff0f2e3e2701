"""Provider tests: Gemini request/response mapping and the Ollama HTTP client."""

from __future__ import annotations

import base64
import json
import logging
from types import SimpleNamespace
from typing import Any

import httpx
import pytest

from askai.config import BackendConfig
from askai.errors import BackendError, ConfigurationError, RateLimitError
from askai.parts import FileRefPart, InlinePart, TextPart
from askai.providers import (
    PROVIDER_FACTORIES,
    GeminiProvider,
    OllamaClient,
    OllamaProvider,
    get_provider,
)
from askai.providers._errors import extract_retry_after_s, wrap_provider_error
from askai.providers.models import ProviderRequest

pytestmark = pytest.mark.unit


# =============================================================================
# Dispatch table
# =============================================================================


def test_factories_cover_every_backend_kind() -> None:
    assert set(PROVIDER_FACTORIES) == {"direct", "gateway", "local"}


def test_get_provider_builds_matching_provider() -> None:
    direct = get_provider(BackendConfig(kind="direct", model="m", api_key="k"))
    gateway = get_provider(
        BackendConfig(kind="gateway", model="m", project="p", location="l")
    )
    local = get_provider(BackendConfig(kind="local", model="m", host="http://h:1"))

    assert isinstance(direct, GeminiProvider) and not direct.vertex
    assert isinstance(gateway, GeminiProvider) and gateway.vertex
    assert isinstance(local, OllamaProvider)
    assert local.owns_client
    assert local.client.host == "http://h:1"


def test_local_handle_is_reused_and_not_owned() -> None:
    client = OllamaClient()
    provider = get_provider(BackendConfig(kind="local", model="m", handle=client))
    assert isinstance(provider, OllamaProvider)
    assert provider.client is client
    assert not provider.owns_client


def test_gemini_provider_requires_credentials() -> None:
    with pytest.raises(ConfigurationError):
        GeminiProvider()


# =============================================================================
# Gemini
# =============================================================================


def _gemini_response(
    parts: list[Any], *, usage: Any = None, finish: str = "STOP"
) -> SimpleNamespace:
    return SimpleNamespace(
        candidates=[
            SimpleNamespace(
                content=SimpleNamespace(parts=parts),
                finish_reason=SimpleNamespace(name=finish),
            )
        ],
        usage_metadata=usage,
        text=None,
    )


def test_gemini_parse_splits_thoughts_from_answer() -> None:
    response = _gemini_response(
        [
            SimpleNamespace(text="Let me add.", thought=True),
            SimpleNamespace(text="4", thought=False),
        ],
        usage=SimpleNamespace(
            prompt_token_count=12,
            candidates_token_count=1,
            total_token_count=40,
            thoughts_token_count=27,
        ),
    )

    parsed = GeminiProvider(api_key="k")._parse_response(response, include_thoughts=True)

    assert parsed.text == "4"
    assert parsed.reasoning == "Let me add."
    assert parsed.finish_reason == "STOP"
    assert parsed.usage == {
        "input_tokens": 12,
        "output_tokens": 1,
        "total_tokens": 40,
        "reasoning_tokens": 27,
    }


def test_gemini_parse_hides_thoughts_unless_requested() -> None:
    response = _gemini_response(
        [SimpleNamespace(text="hmm", thought=True), SimpleNamespace(text="4")]
    )
    parsed = GeminiProvider(api_key="k")._parse_response(response)
    assert parsed.text == "4"
    assert parsed.reasoning is None
    assert parsed.usage == {}


def test_gemini_parse_falls_back_to_response_text() -> None:
    response = SimpleNamespace(candidates=[], usage_metadata=None, text="fallback")
    assert GeminiProvider(api_key="k")._parse_response(response).text == "fallback"


def test_gemini_config_maps_generation_options() -> None:
    request = ProviderRequest(
        model="gemini-2.5-flash",
        prompt="Q",
        system_instruction="Be terse.",
        return_json=True,
        response_schema={"type": "array"},
        thinking_budget=0,
        temperature=0.1,
    )

    config = GeminiProvider(api_key="k")._build_config(request)

    assert config.system_instruction == "Be terse."
    assert config.response_mime_type == "application/json"
    assert config.response_json_schema == {"type": "array"}
    assert config.temperature == 0.1
    assert config.thinking_config.thinking_budget == 0
    assert config.thinking_config.include_thoughts is False


@pytest.mark.asyncio
async def test_gemini_converts_parts_before_prompt() -> None:
    request = ProviderRequest(
        model="m",
        prompt="Describe",
        parts=(
            TextPart(text="<p>x</p>", label="https://example.com"),
            InlinePart(mime_type="image/png", data=b"png"),
            FileRefPart(uri="gs://b/v.mp4", mime_type="video/mp4"),
        ),
    )

    converted = await GeminiProvider(api_key="k")._convert_parts(request)

    assert converted[0].text == "https://example.com:\n<p>x</p>"
    assert converted[1].inline_data.mime_type == "image/png"
    assert converted[1].inline_data.data == b"png"
    assert converted[2].file_data.file_uri == "gs://b/v.mp4"
    assert converted[3].text == "Describe"


class _FakeModels:
    def __init__(self, response: Any = None, error: BaseException | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def generate_content(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response

    async def embed_content(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


def _with_fake_client(provider: GeminiProvider, models: _FakeModels) -> GeminiProvider:
    provider._client = SimpleNamespace(aio=SimpleNamespace(models=models))
    return provider


@pytest.mark.asyncio
async def test_gemini_generate_uses_sdk_client() -> None:
    models = _FakeModels(response=_gemini_response([SimpleNamespace(text="4")]))
    provider = _with_fake_client(GeminiProvider(api_key="k"), models)

    response = await provider.generate(ProviderRequest(model="gemini-2.5-flash", prompt="2+2?"))

    assert response.text == "4"
    assert models.calls[0]["model"] == "gemini-2.5-flash"


@pytest.mark.asyncio
async def test_gemini_rate_limit_maps_to_rate_limit_error() -> None:
    class QuotaError(Exception):
        code = 429

    models = _FakeModels(error=QuotaError("RESOURCE_EXHAUSTED"))
    provider = _with_fake_client(GeminiProvider(api_key="k"), models)

    with pytest.raises(RateLimitError) as exc:
        await provider.generate(ProviderRequest(model="m", prompt="Q"))

    assert exc.value.status_code == 429
    assert exc.value.retryable is True
    assert exc.value.provider == "gemini"


@pytest.mark.asyncio
async def test_gemini_logs_ignored_context_window(caplog: pytest.LogCaptureFixture) -> None:
    models = _FakeModels(response=_gemini_response([SimpleNamespace(text="4")]))
    provider = _with_fake_client(GeminiProvider(api_key="k"), models)

    with caplog.at_level(logging.DEBUG, logger="askai.providers.gemini"):
        await provider.generate(ProviderRequest(model="m", prompt="Q", context_window=8192))

    assert "context_window=8192" in caplog.text


@pytest.mark.asyncio
async def test_gemini_auth_error_hint_names_key() -> None:
    class AuthError(Exception):
        code = 403

    models = _FakeModels(error=AuthError("permission denied"))
    provider = _with_fake_client(GeminiProvider(api_key="k"), models)

    with pytest.raises(BackendError) as exc:
        await provider.generate(ProviderRequest(model="m", prompt="Q"))

    assert exc.value.retryable is False
    assert exc.value.hint is not None
    assert "GEMINI_API_KEY" in exc.value.hint


@pytest.mark.asyncio
async def test_gemini_embed_reads_values_and_vertex_statistics() -> None:
    models = _FakeModels(
        response=SimpleNamespace(
            embeddings=[
                SimpleNamespace(
                    values=[0.1, 0.2], statistics=SimpleNamespace(token_count=4)
                )
            ]
        )
    )
    provider = _with_fake_client(GeminiProvider(project="p", location="l"), models)

    response = await provider.embed("hello", model="gemini-embedding-001")

    assert response.vector == [0.1, 0.2]
    assert response.usage["input_tokens"] == 4


@pytest.mark.asyncio
async def test_gemini_embed_without_values_is_backend_error() -> None:
    models = _FakeModels(response=SimpleNamespace(embeddings=[]))
    provider = _with_fake_client(GeminiProvider(api_key="k"), models)

    with pytest.raises(BackendError):
        await provider.embed("hello", model="gemini-embedding-001")


# =============================================================================
# Ollama
# =============================================================================


def _ollama(handler: Any) -> OllamaProvider:
    client = OllamaClient(host="http://ollama.test")
    client._client = httpx.AsyncClient(
        base_url=client.host, transport=httpx.MockTransport(handler)
    )
    return OllamaProvider(client, owns_client=True)


@pytest.mark.asyncio
async def test_ollama_generate_payload_and_usage() -> None:
    seen: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "message": {"role": "assistant", "content": "4", "thinking": "add"},
                "prompt_eval_count": 7,
                "eval_count": 2,
                "done_reason": "stop",
            },
        )

    provider = _ollama(handler)
    request = ProviderRequest(
        model="gemma3",
        prompt="2+2?",
        parts=(
            TextPart(text="context", label="notes"),
            InlinePart(mime_type="image/png", data=b"img"),
            InlinePart(mime_type="text/plain", data=b"plain text"),
        ),
        system_instruction="Be terse.",
        return_json=True,
        thinking_budget=-1,
        include_thoughts=True,
        context_window=8192,
        temperature=0.0,
    )

    response = await provider.generate(request)
    await provider.aclose()

    body = seen["body"]
    assert seen["path"] == "/api/chat"
    assert body["stream"] is False
    assert body["messages"][0] == {"role": "system", "content": "Be terse."}
    user = body["messages"][1]
    assert user["content"] == "notes:\ncontext\n\nplain text\n\n2+2?"
    assert user["images"] == [base64.b64encode(b"img").decode("ascii")]
    assert body["format"] == "json"
    assert body["think"] is True
    assert body["options"] == {"num_ctx": 8192, "temperature": 0.0}
    assert response.text == "4"
    assert response.reasoning == "add"
    assert response.finish_reason == "stop"
    assert response.usage == {"input_tokens": 7, "output_tokens": 2, "total_tokens": 9}


@pytest.mark.asyncio
async def test_ollama_schema_becomes_format() -> None:
    seen: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"message": {"content": "[]"}})

    schema = {"type": "array", "items": {"type": "string"}}
    await _ollama(handler).generate(
        ProviderRequest(model="gemma3", prompt="Q", return_json=True, response_schema=schema)
    )

    assert seen["body"]["format"] == schema
    assert "think" not in seen["body"]


@pytest.mark.asyncio
async def test_ollama_rejects_remote_references() -> None:
    provider = _ollama(lambda request: httpx.Response(500))
    with pytest.raises(ConfigurationError):
        await provider.generate(
            ProviderRequest(
                model="gemma3",
                prompt="Q",
                parts=(FileRefPart(uri="gs://b/x.png", mime_type="image/png"),),
            )
        )


@pytest.mark.asyncio
async def test_ollama_missing_model_hint() -> None:
    provider = _ollama(lambda request: httpx.Response(404, json={"error": "model not found"}))

    with pytest.raises(BackendError) as exc:
        await provider.generate(ProviderRequest(model="nope", prompt="Q"))

    assert exc.value.status_code == 404
    assert exc.value.hint is not None
    assert "ollama pull" in exc.value.hint


@pytest.mark.asyncio
async def test_ollama_connection_error_is_retryable_with_hint() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(BackendError) as exc:
        await _ollama(handler).generate(ProviderRequest(model="gemma3", prompt="Q"))

    assert exc.value.retryable is True
    assert exc.value.hint is not None
    assert "ollama serve" in exc.value.hint


@pytest.mark.asyncio
async def test_ollama_embed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/embed"
        assert json.loads(request.content) == {"model": "nomic-embed-text", "input": "hello"}
        return httpx.Response(200, json={"embeddings": [[0.1, 0.2]], "prompt_eval_count": 1})

    response = await _ollama(handler).embed("hello", model="nomic-embed-text")

    assert response.vector == [0.1, 0.2]
    assert response.usage["input_tokens"] == 1


@pytest.mark.asyncio
async def test_ollama_aclose_leaves_borrowed_client_open() -> None:
    client = OllamaClient()
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    provider = OllamaProvider(client)

    await provider.aclose()

    assert client._client is not None
    await client.close()


class _FakeFiles:
    def __init__(self, states: list[str]) -> None:
        self.states = states
        self.gets = 0

    def _file(self) -> Any:
        state = self.states[min(self.gets, len(self.states) - 1)]
        return SimpleNamespace(
            name="files/abc",
            uri="https://files.example/abc",
            state=SimpleNamespace(name=state),
            error=SimpleNamespace(message="bad codec"),
        )

    async def upload(self, **kwargs: Any) -> Any:
        return self._file()

    async def get(self, *, name: str) -> Any:
        self.gets += 1
        return self._file()


@pytest.mark.asyncio
async def test_upload_polls_until_active() -> None:
    files = _FakeFiles(["PROCESSING", "PROCESSING", "ACTIVE"])
    provider = GeminiProvider(api_key="k")
    provider._client = SimpleNamespace(aio=SimpleNamespace(files=files))

    uri = await provider.upload_bytes(b"\x00" * 8, "video/mp4", poll_interval_s=0.0)

    assert uri == "https://files.example/abc"
    assert files.gets == 2


@pytest.mark.asyncio
async def test_upload_processing_failure_is_backend_error() -> None:
    provider = GeminiProvider(api_key="k")
    provider._client = SimpleNamespace(aio=SimpleNamespace(files=_FakeFiles(["FAILED"])))

    with pytest.raises(BackendError, match="bad codec") as exc:
        await provider.upload_bytes(b"x", "video/mp4", poll_interval_s=0.0)

    assert exc.value.phase == "upload"


# =============================================================================
# Error mapping
# =============================================================================


def test_retry_after_header_is_extracted() -> None:
    request = httpx.Request("POST", "http://x")
    response = httpx.Response(429, headers={"Retry-After": "3"}, request=request)
    exc = httpx.HTTPStatusError("slow down", request=request, response=response)

    assert extract_retry_after_s(exc) == 3.0
    err = wrap_provider_error(exc, provider="ollama", phase="generate", allow_network_errors=True)
    assert isinstance(err, RateLimitError)
    assert err.retry_after_s == 3.0


def test_retry_info_details_are_extracted() -> None:
    class SdkError(Exception):
        code = 429
        details = {
            "error": {
                "details": [
                    {"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": "8s"}
                ]
            }
        }

    assert extract_retry_after_s(SdkError("quota")) == 8.0


def test_already_wrapped_error_gains_context() -> None:
    original = BackendError("boom")
    wrapped = wrap_provider_error(
        original, provider="gemini", phase="embed", allow_network_errors=False
    )
    assert wrapped is original
    assert wrapped.provider == "gemini"
    assert wrapped.phase == "embed"


def test_vertex_auth_hint_mentions_adc() -> None:
    class AuthError(Exception):
        code = 401

    err = wrap_provider_error(
        AuthError("unauthenticated"), provider="vertex", phase="generate", allow_network_errors=True
    )
    assert err.hint is not None
    assert "gcloud auth application-default login" in err.hint


def test_unregistered_backend_kind_is_internal_error(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    from askai.errors import InternalError

    monkeypatch.delitem(PROVIDER_FACTORIES, "local")

    with pytest.raises(InternalError):
        get_provider(BackendConfig(kind="local", model="m"))

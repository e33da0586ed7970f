"""Tests for provider adapters against mocked HTTP endpoints and SDK clients."""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any

import httpx
import openai
import pytest
from conftest import make_config

from bookmark_curator.errors import ErrorCode, ProviderError
from bookmark_curator.models import OpenRouterMetadata
from bookmark_curator.providers import (
    AnthropicModel,
    GeminiModel,
    GenerationOptions,
    OllamaModel,
    OpenAICompatibleModel,
    OpenRouterModel,
    sdk_base_url,
)
from bookmark_curator.transport import RetryPolicy

FAST = RetryPolicy(retries=0, backoff_seconds=0.0, timeout=5.0)


def _mock_client(handler: Any) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class DummyCompletions:
    def __init__(self, outcomes: list[object]) -> None:
        self._outcomes = list(outcomes)
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        message = SimpleNamespace(content=outcome)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class DummyClient:
    """Mimics the ``client.chat.completions.create`` surface of the OpenAI SDK."""

    def __init__(self, outcomes: list[object]) -> None:
        self.completions = DummyCompletions(outcomes)
        self.chat = SimpleNamespace(completions=self.completions)


def _status_error(cls: type[openai.APIStatusError], status: int, message: str) -> Exception:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    return cls(message, response=httpx.Response(status, request=request), body=None)


@pytest.mark.asyncio
async def test_anthropic_request_and_text() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200, json={"content": [{"type": "text", "text": " Hello "}]}, request=request,
        )

    config = make_config("claude", provider="anthropic")
    async with _mock_client(handler) as client:
        model = AnthropicModel(config, http_client=client, policy=FAST)
        result = await model.generate_content("hi", GenerationOptions(max_tokens=12))
    if result.text != "Hello":
        msg = f"Unexpected text: {result.text!r}"
        raise AssertionError(msg)
    request = seen[0]
    body = json.loads(request.content)
    if request.headers["x-api-key"] != "k" or "anthropic-version" not in request.headers:
        raise AssertionError("Anthropic auth headers missing")
    if body["max_tokens"] != 12 or body["messages"][0]["content"] != "hi":
        msg = f"Unexpected payload: {body}"
        raise AssertionError(msg)


@pytest.mark.asyncio
async def test_gemini_endpoint_and_text() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        payload = {"candidates": [{"content": {"parts": [{"text": "Part A "}, {"text": "B"}]}}]}
        return httpx.Response(200, json=payload, request=request)

    config = make_config("gem", provider="gemini")
    async with _mock_client(handler) as client:
        result = await GeminiModel(config, http_client=client, policy=FAST).generate_content("q")
    if result.text != "Part A B":
        msg = f"Unexpected text: {result.text!r}"
        raise AssertionError(msg)
    if not seen[0].url.path.endswith("/gem-model:generateContent"):
        msg = f"Unexpected Gemini URL: {seen[0].url}"
        raise AssertionError(msg)
    if seen[0].headers["x-goog-api-key"] != "k":
        raise AssertionError("Gemini API key header missing")


@pytest.mark.asyncio
async def test_ollama_and_missing_text() -> None:
    replies = [{"response": "local answer"}, {"response": ""}]

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=replies.pop(0), request=request)

    config = make_config("local", provider="ollama", api_key=None)
    async with _mock_client(handler) as client:
        model = OllamaModel(config, http_client=client, policy=FAST)
        first = await model.generate_content("q")
        with pytest.raises(ProviderError) as excinfo:
            await model.generate_content("q")
    if first.text != "local answer":
        raise AssertionError("Ollama text comes from the response field")
    if excinfo.value.code is not ErrorCode.PARSE_ERROR:
        raise AssertionError("Empty output is a PARSE_ERROR")


@pytest.mark.asyncio
async def test_missing_api_key_fails_before_io(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={}, request=request)

    config = make_config("nokey", provider="anthropic", api_key=None)
    async with _mock_client(handler) as client:
        with pytest.raises(ProviderError) as excinfo:
            await AnthropicModel(config, http_client=client, policy=FAST).generate_content("q")
    if excinfo.value.code is not ErrorCode.AUTH_ERROR or calls:
        raise AssertionError("Missing key must be AUTH_ERROR without any request")


@pytest.mark.asyncio
async def test_api_key_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "from-env")
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers["x-api-key"])
        return httpx.Response(200, json={"content": [{"text": "ok"}]}, request=request)

    config = make_config("envkey", provider="anthropic", api_key=None)
    async with _mock_client(handler) as client:
        await AnthropicModel(config, http_client=client, policy=FAST).generate_content("q")
    if seen != ["from-env"]:
        raise AssertionError("Environment key should be used when the config has none")


@pytest.mark.asyncio
async def test_http_auth_failure_classified() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"error": "forbidden"}, request=request)

    config = make_config("claude", provider="anthropic")
    async with _mock_client(handler) as client:
        with pytest.raises(ProviderError) as excinfo:
            await AnthropicModel(config, http_client=client, policy=FAST).generate_content("q")
    if excinfo.value.code is not ErrorCode.AUTH_ERROR or excinfo.value.status != 403:
        msg = f"403 should be AUTH_ERROR: {excinfo.value}"
        raise AssertionError(msg)


@pytest.mark.asyncio
async def test_openai_temperature_fallback() -> None:
    rejection = _status_error(
        openai.BadRequestError, 400, "Unsupported value: 'temperature' does not support 0.7",
    )
    dummy = DummyClient([rejection, "  first  ", "second"])
    model = OpenAICompatibleModel(make_config("gpt"))
    model.set_client(dummy)

    first = await model.generate_content("q")
    second = await model.generate_content("q")
    if (first.text, second.text) != ("first", "second"):
        raise AssertionError("Calls should succeed once temperature is dropped")
    with_temperature = ["temperature" in call for call in dummy.completions.calls]
    if with_temperature != [True, False, False]:
        msg = f"Temperature should be omitted after the first rejection: {with_temperature}"
        raise AssertionError(msg)


@pytest.mark.asyncio
async def test_openai_errors_mapped() -> None:
    model = OpenAICompatibleModel(make_config("gpt"))
    model.set_client(
        DummyClient(
            [
                _status_error(openai.RateLimitError, 429, "slow down"),
                _status_error(openai.BadRequestError, 400, "bad prompt"),
                "",
            ],
        ),
    )
    codes = []
    for _ in range(3):
        with pytest.raises(ProviderError) as excinfo:
            await model.generate_content("q")
        codes.append(excinfo.value.code)
    expected = [ErrorCode.RATE_LIMIT, ErrorCode.PROVIDER_ERROR, ErrorCode.PARSE_ERROR]
    if codes != expected:
        msg = f"Unexpected error mapping: {codes}"
        raise AssertionError(msg)


@pytest.mark.asyncio
async def test_openrouter_sends_attribution_headers() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        payload = {
            "id": "cmpl-1",
            "object": "chat.completion",
            "created": 0,
            "model": "router-model",
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": "OK"},
                    "finish_reason": "stop",
                },
            ],
        }
        return httpx.Response(200, json=payload, request=request)

    config = make_config(
        "router",
        provider="openrouter",
        metadata=OpenRouterMetadata(referer="https://me.example", title="Mine"),
    )
    async with _mock_client(handler) as client:
        model = OpenRouterModel(config, http_client=client, policy=FAST)
        result = await model.generate_content("q")
        await model.aclose()
        if client.is_closed:
            raise AssertionError("Closing the adapter must leave a shared HTTP client open")
    if result.text != "OK":
        raise AssertionError("OpenRouter reply text not extracted")
    request = seen[0]
    if request.headers["HTTP-Referer"] != "https://me.example" or request.headers["X-Title"] != "Mine":
        raise AssertionError("Attribution headers missing")
    if request.url.path != "/api/v1/chat/completions":
        msg = f"Unexpected OpenRouter path: {request.url.path}"
        raise AssertionError(msg)


def test_sdk_base_url() -> None:
    if sdk_base_url("https://api.x.ai/v1/chat/completions/") != "https://api.x.ai/v1":
        raise AssertionError("Chat completions suffix should be stripped")
    if sdk_base_url("http://localhost:8000/v1") != "http://localhost:8000/v1":
        raise AssertionError("Plain base URLs pass through")

"""Provider adapters exposing one ``generate_content`` capability per LLM API."""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
import openai
from openai import AsyncAzureOpenAI, AsyncOpenAI

from .config import (
    API_KEY_ENV_VARS,
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    PREDEFINED_BASE_URLS,
    PROVIDER_DEFINITIONS,
)
from .errors import ErrorCode, ProviderError, classify_status
from .models import AnthropicMetadata, AzureMetadata, OpenRouterMetadata
from .transport import RetryPolicy, post_json, run_cancellable

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import AsyncIterator

    from .models import AiConfig
    from .transport import CancellationToken

LOGGER = logging.getLogger(__name__)

_CHAT_COMPLETIONS_SUFFIX = "/chat/completions"
_BAD_REQUEST = 400


@dataclass(slots=True, frozen=True)
class GenerationResult:
    """Text produced by a provider plus its raw decoded response."""

    text: str
    raw: Any = None


@dataclass(slots=True)
class GenerationOptions:
    """Per-call generation settings."""

    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    cancel_token: CancellationToken | None = None


class GenerativeModel(ABC):
    """Uniform text-generation capability over one configured endpoint."""

    def __init__(
        self,
        config: AiConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        policy: RetryPolicy | None = None,
    ) -> None:
        self._config = config
        self._http_client = http_client
        self._policy = policy or RetryPolicy()

    @property
    def id(self) -> str:
        return self._config.id

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def provider(self) -> str:
        return self._config.provider

    async def generate_content(
        self, prompt: str, options: GenerationOptions | None = None,
    ) -> GenerationResult:
        """Send ``prompt`` to the provider and return the generated text."""
        options = options or GenerationOptions()
        LOGGER.debug(
            "Sending %d-char prompt to %s (%s, model %s)",
            len(prompt),
            self.name,
            self.provider,
            self._config.model_id,
        )
        return await self._generate(prompt, options)

    @abstractmethod
    async def _generate(self, prompt: str, options: GenerationOptions) -> GenerationResult:
        """Provider-specific request/response mapping."""

    async def aclose(self) -> None:
        """Release connections held by the adapter; the HTTP adapters hold none between calls."""

    def _resolve_api_key(self) -> str | None:
        if self._config.api_key:
            return self._config.api_key
        env_var = API_KEY_ENV_VARS.get(self.provider)
        return os.getenv(env_var) if env_var else None

    def _require_api_key(self) -> str:
        api_key = self._resolve_api_key()
        if not api_key:
            display = PROVIDER_DEFINITIONS[self.provider]["name"]
            msg = f"{display} API key is required"
            raise ProviderError(ErrorCode.AUTH_ERROR, msg, self.provider)
        return api_key

    def _endpoint(self) -> str:
        url = self._config.base_url or PREDEFINED_BASE_URLS.get(self.provider, "")
        if not url:
            msg = f"Base URL is required for {self.provider} provider"
            raise ProviderError(ErrorCode.ENDPOINT_NOT_FOUND, msg, self.provider)
        return url

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self._policy.timeout) as client:
            yield client

    def _missing_text(self, data: object) -> ProviderError:
        display = PROVIDER_DEFINITIONS[self.provider]["name"]
        msg = f"Invalid response format from {display}"
        return ProviderError(ErrorCode.PARSE_ERROR, msg, self.provider, raw=data)


class OpenAICompatibleModel(GenerativeModel):
    """Chat-completions adapter shared by openai, azure, grok and custom endpoints.

    Some newer models reject explicit temperature values other than their fixed
    default with a 400 ``unsupported_value`` error. The adapter starts optimistic
    and drops the temperature for the rest of its lifetime after the first such
    rejection.
    """

    def __init__(
        self,
        config: AiConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        policy: RetryPolicy | None = None,
    ) -> None:
        super().__init__(config, http_client=http_client, policy=policy)
        self._sdk_client: Any = None
        self._owns_client = False
        self._supports_temperature: bool = True

    def set_client(self, client: object) -> None:
        """Inject an OpenAI-like client (testing hook)."""
        self._sdk_client = client
        self._owns_client = False

    async def aclose(self) -> None:
        """Close the SDK client if this adapter built it over its own connection pool."""
        if self._sdk_client is None or not self._owns_client:
            return
        client, self._sdk_client, self._owns_client = self._sdk_client, None, False
        await client.close()

    def _default_headers(self) -> dict[str, str]:
        return self._config.extra_headers()

    def _build_client(self) -> AsyncOpenAI:
        api_key = self._require_api_key()
        base_url = sdk_base_url(self._endpoint())
        headers = self._default_headers() or None
        if self.provider == "azure":
            metadata = self._config.metadata
            azure = metadata if isinstance(metadata, AzureMetadata) else AzureMetadata()
            if azure.deployment and "/deployments/" not in base_url:
                return AsyncAzureOpenAI(
                    api_key=api_key,
                    api_version=azure.api_version,
                    azure_endpoint=base_url,
                    azure_deployment=azure.deployment,
                    max_retries=self._policy.retries,
                    timeout=self._policy.timeout,
                    default_headers=headers,
                    http_client=self._http_client,
                )
            return AsyncAzureOpenAI(
                api_key=api_key,
                api_version=azure.api_version,
                base_url=base_url,
                max_retries=self._policy.retries,
                timeout=self._policy.timeout,
                default_headers=headers,
                http_client=self._http_client,
            )
        return AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            max_retries=self._policy.retries,
            timeout=self._policy.timeout,
            default_headers=headers,
            http_client=self._http_client,
        )

    def _get_client(self) -> Any:
        if self._sdk_client is None:
            self._sdk_client = self._build_client()
            # A shared http_client belongs to the caller and is never closed here.
            self._owns_client = self._http_client is None
        return self._sdk_client

    async def _generate(self, prompt: str, options: GenerationOptions) -> GenerationResult:
        client = self._get_client()
        try:
            completion = await self._create_completion(client, prompt, options)
        except openai.BadRequestError as exc:
            if not (self._supports_temperature and _rejects_temperature(exc)):
                raise self._convert(exc) from exc
            LOGGER.warning(
                "Model '%s' rejects custom temperature; omitting it from now on",
                self._config.model_id,
            )
            self._supports_temperature = False
            try:
                completion = await self._create_completion(client, prompt, options)
            except openai.OpenAIError as retry_exc:
                raise self._convert(retry_exc) from retry_exc
        except openai.OpenAIError as exc:
            raise self._convert(exc) from exc

        choices = getattr(completion, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not content or not content.strip():
            raise self._missing_text(completion)
        return GenerationResult(text=content.strip(), raw=completion)

    async def _create_completion(
        self, client: Any, prompt: str, options: GenerationOptions,
    ) -> Any:
        kwargs: dict[str, Any] = {
            "model": self._config.model_id,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": options.max_tokens,
        }
        if self._supports_temperature:
            kwargs["temperature"] = options.temperature
        return await run_cancellable(
            client.chat.completions.create(**kwargs), options.cancel_token,
        )

    def _convert(self, exc: Exception) -> ProviderError:
        if isinstance(exc, openai.APIStatusError):
            return ProviderError(
                classify_status(exc.status_code),
                exc.message,
                self.provider,
                exc.status_code,
                raw=exc.body,
            )
        if isinstance(exc, openai.APIConnectionError):
            return ProviderError(ErrorCode.NETWORK_ERROR, str(exc), self.provider)
        return ProviderError(ErrorCode.PROVIDER_ERROR, str(exc), self.provider)


class OpenRouterModel(OpenAICompatibleModel):
    """OpenAI-compatible adapter that adds OpenRouter attribution headers."""

    def _default_headers(self) -> dict[str, str]:
        metadata = self._config.metadata
        routing = metadata if isinstance(metadata, OpenRouterMetadata) else OpenRouterMetadata()
        headers = {"HTTP-Referer": routing.referer, "X-Title": routing.title}
        headers.update(self._config.extra_headers())
        return headers


class AnthropicModel(GenerativeModel):
    """Adapter for the Anthropic messages API."""

    async def _generate(self, prompt: str, options: GenerationOptions) -> GenerationResult:
        api_key = self._require_api_key()
        metadata = self._config.metadata
        anthropic = metadata if isinstance(metadata, AnthropicMetadata) else AnthropicMetadata()
        headers = {
            "x-api-key": api_key,
            "anthropic-version": anthropic.api_version,
            **self._config.extra_headers(),
        }
        payload = {
            "model": self._config.model_id,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        async with self._client() as client:
            data = await post_json(
                client,
                self._endpoint(),
                payload,
                provider=self.provider,
                headers=headers,
                policy=self._policy,
                cancel_token=options.cancel_token,
            )
        blocks = data.get("content")
        text = ""
        if isinstance(blocks, list):
            text = "".join(
                str(block.get("text", ""))
                for block in blocks
                if isinstance(block, dict) and block.get("type", "text") == "text"
            ).strip()
        if not text:
            raise self._missing_text(data)
        return GenerationResult(text=text, raw=data)


class GeminiModel(GenerativeModel):
    """Adapter for the Gemini ``generateContent`` REST endpoint."""

    async def _generate(self, prompt: str, options: GenerationOptions) -> GenerationResult:
        api_key = self._require_api_key()
        url = f"{self._endpoint().rstrip('/')}/{self._config.model_id}:generateContent"
        headers = {"x-goog-api-key": api_key, **self._config.extra_headers()}
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": options.temperature,
                "maxOutputTokens": options.max_tokens,
            },
        }
        async with self._client() as client:
            data = await post_json(
                client,
                url,
                payload,
                provider=self.provider,
                headers=headers,
                policy=self._policy,
                cancel_token=options.cancel_token,
            )
        text = _gemini_text(data)
        if not text:
            raise self._missing_text(data)
        return GenerationResult(text=text, raw=data)


class OllamaModel(GenerativeModel):
    """Adapter for a local Ollama ``/api/generate`` endpoint."""

    async def _generate(self, prompt: str, options: GenerationOptions) -> GenerationResult:
        payload = {
            "model": self._config.model_id,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": options.temperature,
                "num_predict": options.max_tokens,
            },
        }
        headers = self._config.extra_headers() or None
        async with self._client() as client:
            data = await post_json(
                client,
                self._endpoint(),
                payload,
                provider=self.provider,
                headers=headers,
                policy=self._policy,
                cancel_token=options.cancel_token,
            )
        text = str(data.get("response") or "").strip()
        if not text:
            raise self._missing_text(data)
        return GenerationResult(text=text, raw=data)


def sdk_base_url(endpoint: str) -> str:
    """Turn a configured chat-completions URL into an SDK base URL."""
    url = endpoint.rstrip("/")
    if url.endswith(_CHAT_COMPLETIONS_SUFFIX):
        url = url[: -len(_CHAT_COMPLETIONS_SUFFIX)]
    return url


def _rejects_temperature(exc: openai.APIStatusError) -> bool:
    message = str(exc).lower()
    return exc.status_code == _BAD_REQUEST and "temperature" in message and "unsupported" in message


def _gemini_text(data: dict[str, Any]) -> str:
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return ""
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ""
    return "".join(
        str(part.get("text", "")) for part in parts if isinstance(part, dict)
    ).strip()

"""Provider clients: one HTTP call per request, no retries of their own."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests

from .errors import ProviderError, ProviderNotConfiguredError
from .models import ModelProfile, SamplingParams

logger = logging.getLogger(__name__)

IMAGE_MIME_TYPE = "image/png"


@dataclass(frozen=True)
class ProviderRequest:
    profile: ModelProfile
    user_prompt: str
    system_prompt: str = ""
    images: tuple[str, ...] = ()
    max_output_tokens: int = 4096
    sampling: SamplingParams | None = None

    @property
    def timeout_sec(self) -> int:
        return self.profile.timeout_sec

    @property
    def effective_sampling(self) -> SamplingParams:
        return self.sampling or self.profile.sampling


@dataclass(frozen=True)
class ProviderResponse:
    text: str
    model: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    finish_reason: str | None = None


class ChatClient(Protocol):
    """Anything that can turn a ProviderRequest into a ProviderResponse."""

    provider: str

    def send(self, request: ProviderRequest) -> ProviderResponse:
        ...


def _coerce_text(value: Any) -> str:
    """Normalize provider-specific message content shapes into text."""

    if value is None:
        return ""

    if isinstance(value, str):
        return value

    if isinstance(value, list):
        chunks: list[str] = []
        for item in value:
            if isinstance(item, str):
                chunks.append(item)
                continue
            if isinstance(item, dict):
                text = item.get("text") or item.get("content")
                if isinstance(text, str):
                    chunks.append(text)
        return "\n".join(chunks)

    return str(value)


def _as_int(value: Any) -> int | None:
    return value if isinstance(value, int) else None


def _raise_for_error(response: requests.Response, provider: str) -> None:
    if response.status_code < 400:
        return

    try:
        err = response.json().get("error", {})
    except (ValueError, AttributeError):
        err = {}
    if not isinstance(err, dict):
        err = {"message": str(err)}

    code = str(err.get("code") or err.get("type") or err.get("status") or "")
    message = str(err.get("message") or response.text[:300])
    raise ProviderError(message, provider=provider, status=response.status_code, code=code)


@dataclass
class OpenAICompatChatClient:
    """Client for OpenAI-compatible chat completion APIs."""

    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    provider: str = "openai"
    extra_body: dict[str, Any] = field(default_factory=dict)

    def send(self, request: ProviderRequest) -> ProviderResponse:
        content: list[dict[str, Any]] = [{"type": "text", "text": request.user_prompt}]
        for data in request.images:
            content.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{IMAGE_MIME_TYPE};base64,{data}"},
                }
            )

        messages: list[dict[str, Any]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": content})

        sampling = request.effective_sampling
        payload: dict[str, Any] = {
            "model": request.profile.name,
            "messages": messages,
            "temperature": sampling.temperature,
            "max_tokens": request.max_output_tokens,
        }
        if sampling.top_p is not None:
            payload["top_p"] = sampling.top_p
        payload.update(self.extra_body)

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        response = requests.post(
            f"{self.base_url.rstrip('/')}/chat/completions",
            json=payload,
            headers=headers,
            timeout=request.timeout_sec,
        )
        _raise_for_error(response, self.provider)

        data = response.json()
        choices = data.get("choices") or []
        if not choices:
            raise ProviderError("Model response missing choices", provider=self.provider)

        choice = choices[0]
        message = choice.get("message") or {}
        finish_reason = choice.get("finish_reason")
        text = _coerce_text(message.get("content")).strip()
        if not text:
            # Some hosted backends put long text into `reasoning` when `content` is empty.
            text = _coerce_text(message.get("reasoning")).strip()
        if not text:
            if finish_reason == "length":
                raise ProviderError(
                    "Output hit max_tokens before any content was produced",
                    provider=self.provider,
                    code="max_tokens",
                )
            raise ProviderError("Model response had empty content", provider=self.provider)

        usage = data.get("usage") or {}
        return ProviderResponse(
            text=text,
            model=request.profile.name,
            prompt_tokens=_as_int(usage.get("prompt_tokens")),
            completion_tokens=_as_int(usage.get("completion_tokens")),
            finish_reason=finish_reason,
        )


@dataclass
class GeminiChatClient:
    """Client for the Gemini generateContent endpoint."""

    api_key: str
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    provider: str = "gemini"

    def send(self, request: ProviderRequest) -> ProviderResponse:
        parts: list[dict[str, Any]] = []
        if request.system_prompt:
            parts.append({"text": request.system_prompt})
        parts.append({"text": request.user_prompt})
        for data in request.images:
            parts.append({"inlineData": {"mimeType": IMAGE_MIME_TYPE, "data": data}})

        sampling = request.effective_sampling
        generation_config: dict[str, Any] = {
            "temperature": sampling.temperature,
            "maxOutputTokens": request.max_output_tokens,
        }
        if sampling.top_k is not None:
            generation_config["topK"] = sampling.top_k
        if sampling.top_p is not None:
            generation_config["topP"] = sampling.top_p

        response = requests.post(
            f"{self.base_url.rstrip('/')}/models/{request.profile.name}:generateContent",
            params={"key": self.api_key},
            json={
                "contents": [{"role": "user", "parts": parts}],
                "generationConfig": generation_config,
            },
            timeout=request.timeout_sec,
        )
        _raise_for_error(response, self.provider)

        data = response.json()
        candidates = data.get("candidates") or []
        if not candidates:
            raise ProviderError("Empty response from Gemini API", provider=self.provider)

        candidate = candidates[0]
        finish_reason = candidate.get("finishReason")
        content = candidate.get("content") or {}
        text = _coerce_text(content.get("parts")).strip()
        if not text:
            if finish_reason == "MAX_TOKENS":
                raise ProviderError(
                    "Gemini hit MAX_TOKENS and returned no parts",
                    provider=self.provider,
                    code="max_tokens",
                )
            raise ProviderError(
                "Invalid response structure from Gemini API - no text",
                provider=self.provider,
            )

        usage = data.get("usageMetadata") or {}
        return ProviderResponse(
            text=text,
            model=request.profile.name,
            prompt_tokens=_as_int(usage.get("promptTokenCount")),
            completion_tokens=_as_int(usage.get("candidatesTokenCount")),
            finish_reason=finish_reason,
        )


@dataclass
class AnthropicChatClient:
    """Client for the Anthropic messages API."""

    api_key: str
    base_url: str = "https://api.anthropic.com/v1"
    api_version: str = "2023-06-01"
    provider: str = "anthropic"

    def send(self, request: ProviderRequest) -> ProviderResponse:
        content: list[dict[str, Any]] = [{"type": "text", "text": request.user_prompt}]
        for data in request.images:
            content.append(
                {
                    "type": "image",
                    "source": {"type": "base64", "media_type": IMAGE_MIME_TYPE, "data": data},
                }
            )

        sampling = request.effective_sampling
        payload: dict[str, Any] = {
            "model": request.profile.name,
            "max_tokens": request.max_output_tokens,
            "messages": [{"role": "user", "content": content}],
            "temperature": sampling.temperature,
        }
        if request.system_prompt:
            payload["system"] = request.system_prompt
        if sampling.top_k is not None:
            payload["top_k"] = sampling.top_k

        response = requests.post(
            f"{self.base_url.rstrip('/')}/messages",
            json=payload,
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": self.api_version,
                "Content-Type": "application/json",
            },
            timeout=request.timeout_sec,
        )
        _raise_for_error(response, self.provider)

        data = response.json()
        stop_reason = data.get("stop_reason")
        text = _coerce_text(data.get("content")).strip()
        if not text:
            if stop_reason == "max_tokens":
                raise ProviderError(
                    "Output hit max_tokens before any content was produced",
                    provider=self.provider,
                    code="max_tokens",
                )
            raise ProviderError("Model response had empty content", provider=self.provider)

        usage = data.get("usage") or {}
        return ProviderResponse(
            text=text,
            model=request.profile.name,
            prompt_tokens=_as_int(usage.get("input_tokens")),
            completion_tokens=_as_int(usage.get("output_tokens")),
            finish_reason=stop_reason,
        )


class ProviderRouter:
    """Dispatches each request to the client registered for its provider."""

    def __init__(self, clients: dict[str, ChatClient] | None = None) -> None:
        self._clients: dict[str, ChatClient] = dict(clients or {})

    @property
    def providers(self) -> set[str]:
        return set(self._clients)

    def register(self, client: ChatClient) -> None:
        self._clients[client.provider] = client

    def send(self, request: ProviderRequest) -> ProviderResponse:
        provider = request.profile.provider
        client = self._clients.get(provider)
        if client is None:
            raise ProviderNotConfiguredError(
                f"No API client configured for provider {provider!r}"
            )
        return client.send(request)


def build_router(
    api_keys: dict[str, str],
    base_urls: dict[str, str] | None = None,
) -> ProviderRouter:
    """Construct a fresh client per provider that has a key."""

    base_urls = base_urls or {}
    router = ProviderRouter()

    if api_keys.get("openai"):
        kwargs: dict[str, Any] = {"api_key": api_keys["openai"]}
        if base_urls.get("openai"):
            kwargs["base_url"] = base_urls["openai"]
        router.register(OpenAICompatChatClient(**kwargs))
    if api_keys.get("gemini"):
        kwargs = {"api_key": api_keys["gemini"]}
        if base_urls.get("gemini"):
            kwargs["base_url"] = base_urls["gemini"]
        router.register(GeminiChatClient(**kwargs))
    if api_keys.get("anthropic"):
        kwargs = {"api_key": api_keys["anthropic"]}
        if base_urls.get("anthropic"):
            kwargs["base_url"] = base_urls["anthropic"]
        router.register(AnthropicChatClient(**kwargs))

    logger.debug("Configured provider clients: %s", sorted(router.providers))
    return router

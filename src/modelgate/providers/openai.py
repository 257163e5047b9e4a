"""OpenAI provider adapter using the chat completions API."""

import base64
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

import httpx

from modelgate.errors import ConfigurationError, ParseError
from modelgate.providers._common import (
    build_result,
    coerce_text,
    iter_sse_events,
    normalize_base_url,
    request_json,
    usage_int,
)
from modelgate.providers.base import (
    CAPABILITIES,
    ChatMessage,
    ChatOptions,
    ChatResult,
    ChatStream,
    CostEstimate,
    EmbeddingResult,
    HealthStatus,
    PriceRate,
    ProviderDescriptor,
    estimate_cost,
    messages_text,
)

logger = logging.getLogger(__name__)

CHAT_REASONING_EFFORT = "high"
STREAM_REASONING_EFFORT = "medium"

OPENAI_PRICING: dict[str, PriceRate] = {
    "gpt-4o": PriceRate(2.50, 10.0),
    "gpt-4o-mini": PriceRate(0.15, 0.60),
    "o3": PriceRate(1.10, 4.40),
    "o3-mini": PriceRate(1.10, 4.40),
}


def to_openai_messages(messages: list[ChatMessage]) -> list[dict[str, object]]:
    converted: list[dict[str, object]] = []
    for msg in messages:
        if not msg.attachments:
            converted.append({"role": msg.role, "content": msg.content})
            continue
        parts: list[dict[str, object]] = []
        if msg.content:
            parts.append({"type": "text", "text": msg.content})
        for attachment in msg.attachments:
            encoded = base64.b64encode(attachment.data).decode("ascii")
            parts.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{attachment.mime_type};base64,{encoded}"},
                }
            )
        converted.append({"role": msg.role, "content": parts})
    return converted


def _reasoning_tokens(usage: object) -> int:
    if not isinstance(usage, dict):
        return 0
    return usage_int(usage.get("completion_tokens_details"), "reasoning_tokens") or 0


def parse_message_text(payload: dict[str, Any]) -> str:
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        raise ParseError("openai response missing choices", provider="openai")
    first = choices[0]
    if not isinstance(first, dict):
        raise ParseError("openai response choice malformed", provider="openai")
    message = first.get("message")
    if not isinstance(message, dict):
        raise ParseError("openai response message missing", provider="openai")
    return coerce_text(message.get("content"))


def parse_delta_text(event: dict[str, Any]) -> str:
    choices = event.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0]
    if not isinstance(first, dict):
        raise ParseError("openai stream choice malformed", provider="openai")
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return ""
    return coerce_text(delta.get("content"))


class OpenAIProvider:
    name = "openai"
    online = True

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gpt-4o",
        thinking_model: str = "o3",
        embed_model: str = "text-embedding-3-small",
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: int = 60,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.thinking_model = thinking_model
        self.embed_model = embed_model
        self.base_url = normalize_base_url(base_url)
        self.timeout_seconds = max(5, int(timeout_seconds))
        self.initialized = False
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _require_key(self) -> None:
        if not self.api_key.strip():
            raise ConfigurationError("OPENAI_API_KEY is not configured")

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout_seconds,
                transport=self._transport,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        return self._client

    def _model_for(self, options: ChatOptions) -> str:
        return self.thinking_model if options.thinking_mode else self.model

    def _rate(self, model: str) -> PriceRate:
        return self.get_capabilities().price_for(model)

    def _body(
        self, messages: list[ChatMessage], options: ChatOptions, *, stream: bool
    ) -> dict[str, object]:
        body: dict[str, object] = {
            "model": self._model_for(options),
            "messages": to_openai_messages(messages),
            "max_completion_tokens": options.max_tokens,
        }
        if options.thinking_mode:
            # Reasoning models reject sampling parameters.
            body["reasoning_effort"] = options.reasoning_effort or (
                STREAM_REASONING_EFFORT if stream else CHAT_REASONING_EFFORT
            )
        else:
            body["temperature"] = options.temperature
            if options.top_p is not None:
                body["top_p"] = options.top_p
        if stream:
            body["stream"] = True
            body["stream_options"] = {"include_usage": True}
        return body

    async def initialize(self) -> None:
        if self.initialized:
            return
        self._require_key()
        self._http()
        self.initialized = True
        logger.info("OpenAI provider initialized model=%s", self.model)

    async def check_health(self) -> HealthStatus:
        if self.api_key.strip():
            return HealthStatus(available=True, message="OpenAI API key configured")
        return HealthStatus(available=False, message="OPENAI_API_KEY is not configured")

    async def chat(
        self, messages: list[ChatMessage], options: ChatOptions | None = None
    ) -> ChatResult:
        options = options or ChatOptions()
        self._require_key()
        payload = await request_json(
            self._http(),
            "POST",
            f"{self.base_url}/chat/completions",
            self.name,
            json=self._body(messages, options, stream=False),
        )
        model = self._model_for(options)
        usage = payload.get("usage")
        return build_result(
            provider=self.name,
            model=model,
            rate=self._rate(model),
            prompt_text=messages_text(messages),
            content=parse_message_text(payload),
            thinking_mode=options.thinking_mode,
            input_tokens=usage_int(usage, "prompt_tokens"),
            output_tokens=usage_int(usage, "completion_tokens"),
            reasoning_tokens=_reasoning_tokens(usage),
        )

    async def stream_chat(
        self, messages: list[ChatMessage], options: ChatOptions | None = None
    ) -> ChatStream:
        options = options or ChatOptions()
        self._require_key()
        model = self._model_for(options)
        body = self._body(messages, options, stream=True)
        usage: dict[str, Any] = {}

        async def deltas() -> AsyncIterator[str]:
            events = iter_sse_events(
                self._http(), f"{self.base_url}/chat/completions", self.name, json=body
            )
            async with aclosing(events):
                async for event in events:
                    if isinstance(event.get("usage"), dict):
                        usage.update(event["usage"])
                    text = parse_delta_text(event)
                    if text:
                        yield text

        def finalize(content: str) -> ChatResult:
            return build_result(
                provider=self.name,
                model=model,
                rate=self._rate(model),
                prompt_text=messages_text(messages),
                content=content,
                thinking_mode=options.thinking_mode,
                input_tokens=usage_int(usage, "prompt_tokens"),
                output_tokens=usage_int(usage, "completion_tokens"),
                reasoning_tokens=_reasoning_tokens(usage),
            )

        return ChatStream(deltas(), finalize, provider=self.name)

    async def generate_content(
        self, prompt: str, options: ChatOptions | None = None
    ) -> ChatResult:
        return await self.chat([ChatMessage(role="user", content=prompt)], options)

    async def embed(self, text: str) -> EmbeddingResult:
        self._require_key()
        payload = await request_json(
            self._http(),
            "POST",
            f"{self.base_url}/embeddings",
            self.name,
            json={"model": self.embed_model, "input": text},
        )
        data = payload.get("data")
        first = data[0] if isinstance(data, list) and data else None
        values = first.get("embedding") if isinstance(first, dict) else None
        if not isinstance(values, list):
            raise ParseError("openai embedding response missing data", provider=self.name)
        return EmbeddingResult(
            vector=[float(v) for v in values], model=self.embed_model, provider=self.name
        )

    def estimate_cost(self, text: str, options: ChatOptions | None = None) -> CostEstimate:
        options = options or ChatOptions()
        return estimate_cost(text, self._rate(self._model_for(options)))

    def get_capabilities(self) -> ProviderDescriptor:
        return ProviderDescriptor(
            name=self.name,
            online=self.online,
            capabilities=CAPABILITIES,
            max_tokens=16_384,
            context_window=128_000,
            default_model=self.model,
            thinking_model=self.thinking_model,
            embedding_model=self.embed_model,
            models=tuple(dict.fromkeys([self.model, self.thinking_model, *OPENAI_PRICING])),
            pricing=tuple(OPENAI_PRICING.items()),
        )

    async def cleanup(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self.initialized = False

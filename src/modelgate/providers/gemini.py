"""Gemini provider adapter using the Generative Language REST API."""

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
    with_thinking_prompt,
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

GEMINI_PRICING: dict[str, PriceRate] = {
    "gemini-2.0-flash": PriceRate(0.10, 0.40),
    "gemini-2.5-flash": PriceRate(0.30, 2.50),
    "gemini-2.5-pro": PriceRate(1.25, 10.0),
}


def to_contents(messages: list[ChatMessage]) -> list[dict[str, object]]:
    contents: list[dict[str, object]] = []
    for msg in messages:
        gemini_role = "model" if msg.role == "assistant" else "user"
        parts: list[dict[str, object]] = []
        if msg.content:
            parts.append({"text": msg.content})
        for attachment in msg.attachments:
            parts.append(
                {
                    "inline_data": {
                        "mime_type": attachment.mime_type,
                        "data": base64.b64encode(attachment.data).decode("ascii"),
                    }
                }
            )
        if not parts:
            parts.append({"text": ""})
        contents.append({"role": gemini_role, "parts": parts})
    return contents


def build_request_body(messages: list[ChatMessage], options: ChatOptions) -> dict[str, object]:
    system_parts: list[str] = []
    non_system: list[ChatMessage] = []
    for item in messages:
        if item.role == "system":
            if item.content.strip():
                system_parts.append(item.content)
            continue
        non_system.append(item)
    generation_config: dict[str, object] = {
        "temperature": options.temperature,
        "maxOutputTokens": options.max_tokens,
    }
    if options.top_p is not None:
        generation_config["topP"] = options.top_p
    if options.top_k is not None:
        generation_config["topK"] = options.top_k
    body: dict[str, object] = {
        "contents": to_contents(non_system),
        "generationConfig": generation_config,
    }
    if system_parts:
        body["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}
    return body


def parse_candidate_text(payload: dict[str, Any], *, strict: bool = True) -> str:
    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        if strict:
            raise ParseError("gemini response missing candidates", provider="gemini")
        return ""
    first = candidates[0]
    if not isinstance(first, dict):
        raise ParseError("gemini response candidate malformed", provider="gemini")
    content = first.get("content")
    if not isinstance(content, dict):
        if strict:
            raise ParseError("gemini response content missing", provider="gemini")
        return ""
    parts = content.get("parts", [])
    if not isinstance(parts, list):
        return ""
    # Native thought parts are excluded; thinking text arrives inline as markers.
    visible = [part for part in parts if isinstance(part, dict) and not part.get("thought")]
    return coerce_text(visible)


class GeminiProvider:
    name = "gemini"
    online = True

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gemini-2.0-flash",
        thinking_model: str = "gemini-2.5-pro",
        embed_model: str = "text-embedding-004",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
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
            raise ConfigurationError("GEMINI_API_KEY is not configured")

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout_seconds,
                transport=self._transport,
                headers={"x-goog-api-key": self.api_key},
            )
        return self._client

    def _model_for(self, options: ChatOptions) -> str:
        return self.thinking_model if options.thinking_mode else self.model

    def _rate(self, model: str) -> PriceRate:
        return self.get_capabilities().price_for(model)

    async def initialize(self) -> None:
        if self.initialized:
            return
        self._require_key()
        self._http()
        self.initialized = True
        logger.info("Gemini provider initialized model=%s", self.model)

    async def check_health(self) -> HealthStatus:
        # Key presence only; a live probe would spend quota.
        if self.api_key.strip():
            return HealthStatus(available=True, message="Gemini API key configured")
        return HealthStatus(available=False, message="GEMINI_API_KEY is not configured")

    def _prepare(
        self, messages: list[ChatMessage], options: ChatOptions
    ) -> tuple[str, list[ChatMessage]]:
        self._require_key()
        model = self._model_for(options)
        if options.thinking_mode:
            messages = with_thinking_prompt(messages)
        return model, messages

    async def chat(
        self, messages: list[ChatMessage], options: ChatOptions | None = None
    ) -> ChatResult:
        options = options or ChatOptions()
        model, prepared = self._prepare(messages, options)
        payload = await request_json(
            self._http(),
            "POST",
            f"{self.base_url}/models/{model}:generateContent",
            self.name,
            json=build_request_body(prepared, options),
        )
        content = parse_candidate_text(payload)
        usage = payload.get("usageMetadata")
        output_tokens = usage_int(usage, "candidatesTokenCount")
        thoughts = usage_int(usage, "thoughtsTokenCount") or 0
        return build_result(
            provider=self.name,
            model=model,
            rate=self._rate(model),
            prompt_text=messages_text(prepared),
            content=content,
            thinking_mode=options.thinking_mode,
            input_tokens=usage_int(usage, "promptTokenCount"),
            output_tokens=None if output_tokens is None else output_tokens + thoughts,
            reasoning_tokens=thoughts,
        )

    async def stream_chat(
        self, messages: list[ChatMessage], options: ChatOptions | None = None
    ) -> ChatStream:
        options = options or ChatOptions()
        model, prepared = self._prepare(messages, options)
        usage: dict[str, Any] = {}
        url = f"{self.base_url}/models/{model}:streamGenerateContent"

        async def deltas() -> AsyncIterator[str]:
            events = iter_sse_events(
                self._http(),
                url,
                self.name,
                params={"alt": "sse"},
                json=build_request_body(prepared, options),
            )
            async with aclosing(events):
                async for event in events:
                    metadata = event.get("usageMetadata")
                    if isinstance(metadata, dict):
                        usage.update(metadata)
                    text = parse_candidate_text(event, strict=False)
                    if text:
                        yield text

        def finalize(content: str) -> ChatResult:
            output_tokens = usage_int(usage, "candidatesTokenCount")
            thoughts = usage_int(usage, "thoughtsTokenCount") or 0
            return build_result(
                provider=self.name,
                model=model,
                rate=self._rate(model),
                prompt_text=messages_text(prepared),
                content=content,
                thinking_mode=options.thinking_mode,
                input_tokens=usage_int(usage, "promptTokenCount"),
                output_tokens=None if output_tokens is None else output_tokens + thoughts,
                reasoning_tokens=thoughts,
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
            f"{self.base_url}/models/{self.embed_model}:embedContent",
            self.name,
            json={
                "model": f"models/{self.embed_model}",
                "content": {"parts": [{"text": text}]},
            },
        )
        embedding = payload.get("embedding")
        values = embedding.get("values") if isinstance(embedding, dict) else None
        if not isinstance(values, list):
            raise ParseError("gemini embedding response missing values", provider=self.name)
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
            max_tokens=8192,
            context_window=1_048_576,
            default_model=self.model,
            thinking_model=self.thinking_model,
            embedding_model=self.embed_model,
            models=tuple(dict.fromkeys([self.model, self.thinking_model, *GEMINI_PRICING])),
            pricing=tuple(GEMINI_PRICING.items()),
        )

    async def cleanup(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self.initialized = False

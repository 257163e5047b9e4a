"""Ollama provider adapter for a locally hosted model server."""

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

import httpx

from modelgate.errors import ParseError, UpstreamError
from modelgate.providers._common import (
    build_result,
    iter_stream_lines,
    normalize_base_url,
    parse_json_line,
    request_json,
    usage_int,
    with_thinking_prompt,
)
from modelgate.providers.base import (
    FREE,
    ChatMessage,
    ChatOptions,
    ChatResult,
    ChatStream,
    CostEstimate,
    EmbeddingResult,
    HealthStatus,
    ProviderDescriptor,
    estimate_cost,
    messages_text,
)

logger = logging.getLogger(__name__)

OLLAMA_CAPABILITIES = frozenset({"chat", "embeddings", "streaming", "content_generation"})
SUPPORTED_MODELS = ("llama2", "mistral", "codellama", "neural-chat", "starling-lm")


def model_matches(installed: str, wanted: str) -> bool:
    """``llama2`` matches ``llama2`` and tagged variants such as ``llama2:latest``."""
    return installed == wanted or installed.startswith(f"{wanted}:")


def to_ollama_messages(messages: list[ChatMessage]) -> list[dict[str, str]]:
    return [{"role": msg.role, "content": msg.content} for msg in messages]


class OllamaProvider:
    name = "ollama"
    online = False

    def __init__(
        self,
        *,
        base_url: str = "http://localhost:11434",
        model: str = "llama2",
        embed_model: str = "mxbai-embed-large",
        timeout_seconds: int = 60,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = normalize_base_url(base_url)
        self.model = model
        self.embed_model = embed_model
        self.timeout_seconds = max(10, int(timeout_seconds))
        self.initialized = False
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            )
        return self._client

    @staticmethod
    def _options(options: ChatOptions) -> dict[str, object]:
        return {
            "temperature": options.temperature,
            "num_predict": options.max_tokens,
            "top_p": options.top_p if options.top_p is not None else 0.9,
            "top_k": options.top_k if options.top_k is not None else 40,
        }

    def _prepare(self, messages: list[ChatMessage], options: ChatOptions) -> list[ChatMessage]:
        if options.thinking_mode:
            return with_thinking_prompt(messages)
        return messages

    def _result(
        self, prepared: list[ChatMessage], content: str, options: ChatOptions, stats: object
    ) -> ChatResult:
        return build_result(
            provider=self.name,
            model=self.model,
            rate=FREE,
            prompt_text=messages_text(prepared),
            content=content,
            thinking_mode=options.thinking_mode,
            input_tokens=usage_int(stats, "prompt_eval_count"),
            output_tokens=usage_int(stats, "eval_count"),
        )

    async def list_models(self) -> list[str]:
        payload = await request_json(self._http(), "GET", f"{self.base_url}/api/tags", self.name)
        models = payload.get("models", [])
        if not isinstance(models, list):
            raise ParseError("ollama tags response malformed", provider=self.name)
        names: list[str] = []
        for item in models:
            if isinstance(item, dict) and isinstance(item.get("name"), str):
                names.append(item["name"])
        return names

    async def pull_model(self, name: str) -> dict[str, object]:
        payload = await request_json(
            self._http(),
            "POST",
            f"{self.base_url}/api/pull",
            self.name,
            json={"name": name, "stream": False},
            timeout=None,
        )
        logger.info("Ollama model pulled model=%s status=%s", name, payload.get("status"))
        return {"success": True, "model": name, "status": payload.get("status", "")}

    async def initialize(self) -> None:
        if self.initialized:
            return
        status = await self.check_health()
        if not status.available:
            raise UpstreamError(status.message, provider=self.name)
        self.initialized = True
        logger.info("Ollama provider initialized model=%s", self.model)

    async def check_health(self) -> HealthStatus:
        try:
            installed = await self.list_models()
        except Exception as exc:
            return HealthStatus(
                available=False,
                message=f"Ollama server is not reachable at {self.base_url}: {exc}",
            )
        if not installed:
            return HealthStatus(
                available=False,
                message=f"Ollama is running but no models are installed. "
                f"Run: ollama pull {self.model}",
            )
        if not any(model_matches(name, self.model) for name in installed):
            return HealthStatus(
                available=False,
                message=f"Model '{self.model}' not found. "
                f"Available models: {', '.join(installed)}",
                suggested=installed[0],
                installed_models=installed,
            )
        return HealthStatus(
            available=True, message="Ollama is ready", installed_models=installed
        )

    async def chat(
        self, messages: list[ChatMessage], options: ChatOptions | None = None
    ) -> ChatResult:
        options = options or ChatOptions()
        prepared = self._prepare(messages, options)
        payload = await request_json(
            self._http(),
            "POST",
            f"{self.base_url}/api/chat",
            self.name,
            json={
                "model": self.model,
                "messages": to_ollama_messages(prepared),
                "stream": False,
                "options": self._options(options),
            },
        )
        message = payload.get("message")
        if not isinstance(message, dict) or not isinstance(message.get("content"), str):
            raise ParseError("ollama chat response missing message", provider=self.name)
        return self._result(prepared, message["content"], options, payload)

    async def stream_chat(
        self, messages: list[ChatMessage], options: ChatOptions | None = None
    ) -> ChatStream:
        options = options or ChatOptions()
        prepared = self._prepare(messages, options)
        body = {
            "model": self.model,
            "messages": to_ollama_messages(prepared),
            "stream": True,
            "options": self._options(options),
        }
        stats: dict[str, Any] = {}

        async def deltas() -> AsyncIterator[str]:
            lines = iter_stream_lines(
                self._http(), f"{self.base_url}/api/chat", self.name, json=body
            )
            async with aclosing(lines):
                async for line in lines:
                    event = parse_json_line(line, self.name)
                    error = event.get("error")
                    if isinstance(error, str):
                        raise UpstreamError(f"ollama stream error: {error}", provider=self.name)
                    message = event.get("message")
                    text = message.get("content") if isinstance(message, dict) else None
                    if isinstance(text, str) and text:
                        yield text
                    if event.get("done"):
                        stats.update(event)
                        return

        def finalize(content: str) -> ChatResult:
            return self._result(prepared, content, options, stats)

        return ChatStream(deltas(), finalize, provider=self.name)

    async def generate_content(
        self, prompt: str, options: ChatOptions | None = None
    ) -> ChatResult:
        options = options or ChatOptions()
        prepared = self._prepare([ChatMessage(role="user", content=prompt)], options)
        payload = await request_json(
            self._http(),
            "POST",
            f"{self.base_url}/api/generate",
            self.name,
            json={
                "model": self.model,
                "prompt": prepared[0].content,
                "stream": False,
                "options": self._options(options),
            },
        )
        text = payload.get("response")
        if not isinstance(text, str):
            raise ParseError("ollama generate response missing text", provider=self.name)
        return self._result(prepared, text, options, payload)

    async def embed(self, text: str) -> EmbeddingResult:
        payload = await request_json(
            self._http(),
            "POST",
            f"{self.base_url}/api/embeddings",
            self.name,
            json={"model": self.embed_model, "prompt": text},
        )
        values = payload.get("embedding")
        if not isinstance(values, list):
            raise ParseError("ollama embedding response missing vector", provider=self.name)
        return EmbeddingResult(
            vector=[float(v) for v in values], model=self.embed_model, provider=self.name
        )

    def estimate_cost(self, text: str, options: ChatOptions | None = None) -> CostEstimate:
        return estimate_cost(text, FREE)

    def get_capabilities(self) -> ProviderDescriptor:
        return ProviderDescriptor(
            name=self.name,
            online=self.online,
            capabilities=OLLAMA_CAPABILITIES,
            max_tokens=4096,
            context_window=4096,
            default_model=self.model,
            embedding_model=self.embed_model,
            models=tuple(dict.fromkeys([self.model, *SUPPORTED_MODELS])),
            pricing=((self.model, FREE),),
        )

    async def cleanup(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self.initialized = False

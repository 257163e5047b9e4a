"""Provider contracts."""

from __future__ import annotations

import math
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Protocol

CAPABILITIES = frozenset(
    {"chat", "embeddings", "streaming", "vision", "reasoning", "content_generation"}
)

CHARS_PER_TOKEN = 4
OUTPUT_TO_INPUT_RATIO = 1.5


@dataclass(slots=True, frozen=True)
class PriceRate:
    """USD per one million tokens."""

    input_per_million: float = 0.0
    output_per_million: float = 0.0

    def cost(self, input_tokens: int, output_tokens: int) -> float:
        return (
            max(0, input_tokens) * self.input_per_million
            + max(0, output_tokens) * self.output_per_million
        ) / 1_000_000


FREE = PriceRate()


@dataclass(slots=True, frozen=True)
class ProviderDescriptor:
    name: str
    online: bool
    capabilities: frozenset[str]
    max_tokens: int
    context_window: int
    default_model: str
    thinking_model: str = ""
    embedding_model: str = ""
    models: tuple[str, ...] = ()
    pricing: tuple[tuple[str, PriceRate], ...] = ()

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities

    def price_for(self, model: str) -> PriceRate:
        table = dict(self.pricing)
        return table.get(model) or table.get(self.default_model) or FREE

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "online": self.online,
            "capabilities": sorted(self.capabilities),
            "max_tokens": self.max_tokens,
            "context_window": self.context_window,
            "default_model": self.default_model,
            "thinking_model": self.thinking_model,
            "embedding_model": self.embedding_model,
            "models": list(self.models),
            "pricing": {
                model: {
                    "input_per_million": rate.input_per_million,
                    "output_per_million": rate.output_per_million,
                }
                for model, rate in self.pricing
            },
        }


@dataclass(slots=True, frozen=True)
class Attachment:
    mime_type: str
    data: bytes


@dataclass(slots=True)
class ChatMessage:
    role: str
    content: str
    attachments: tuple[Attachment, ...] = ()

    def __post_init__(self) -> None:
        if self.role not in {"system", "user", "assistant"}:
            raise ValueError(f"unsupported message role: {self.role}")


@dataclass(slots=True)
class ChatOptions:
    temperature: float = 0.7
    max_tokens: int = 2000
    top_p: float | None = None
    top_k: int | None = None
    thinking_mode: bool = False
    reasoning_effort: str | None = None


@dataclass(slots=True)
class ChatResult:
    content: str
    tokens: int
    cost: float
    provider: str
    model: str
    reasoning_tokens: int = 0
    thinking: str = ""
    answer: str = ""

    def to_dict(self) -> dict[str, object]:
        return {
            "content": self.content,
            "tokens": self.tokens,
            "cost": self.cost,
            "provider": self.provider,
            "model": self.model,
            "reasoning_tokens": self.reasoning_tokens,
            "thinking": self.thinking,
            "answer": self.answer,
        }


@dataclass(slots=True)
class HealthStatus:
    available: bool
    message: str = ""
    suggested: str | None = None
    installed_models: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "available": self.available,
            "message": self.message,
            "suggested": self.suggested,
            "installed_models": list(self.installed_models),
        }


@dataclass(slots=True)
class CostEstimate:
    estimated_tokens: int = 0
    estimated_cost: float = 0.0
    rate: PriceRate = FREE

    def to_dict(self) -> dict[str, object]:
        return {
            "estimated_tokens": self.estimated_tokens,
            "estimated_cost": self.estimated_cost,
            "input_per_million": self.rate.input_per_million,
            "output_per_million": self.rate.output_per_million,
        }


@dataclass(slots=True)
class EmbeddingResult:
    vector: list[float]
    model: str
    provider: str = ""

    @property
    def dimensions(self) -> int:
        return len(self.vector)


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_cost(text: str, rate: PriceRate) -> CostEstimate:
    input_tokens = estimate_tokens(text)
    output_tokens = math.ceil(input_tokens * OUTPUT_TO_INPUT_RATIO)
    return CostEstimate(
        estimated_tokens=input_tokens + output_tokens,
        estimated_cost=rate.cost(input_tokens, output_tokens),
        rate=rate,
    )


def messages_text(messages: list[ChatMessage]) -> str:
    return "\n".join(message.content for message in messages)


class ChatStream:
    """Async iterator over text deltas from one streaming completion.

    ``result`` is populated once the deltas are exhausted. Closing early
    with ``aclose()`` after at least one delta yields a result describing
    the partial output received so far.
    """

    def __init__(
        self,
        deltas: AsyncIterator[str],
        finalize: Callable[[str], ChatResult],
        *,
        provider: str,
    ) -> None:
        self.provider = provider
        self._deltas = deltas
        self._finalize = finalize
        self._parts: list[str] = []
        self.result: ChatResult | None = None
        self.closed = False

    @property
    def emitted(self) -> int:
        return len(self._parts)

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def __aiter__(self) -> ChatStream:
        return self

    async def __anext__(self) -> str:
        if self.closed or self.result is not None:
            raise StopAsyncIteration
        try:
            delta = await self._deltas.__anext__()
        except StopAsyncIteration:
            self.result = self._finalize(self.text)
            raise
        self._parts.append(delta)
        return delta

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        close = getattr(self._deltas, "aclose", None)
        if close is not None:
            await close()
        if self.result is None and self._parts:
            self.result = self._finalize(self.text)


class ModelProvider(Protocol):
    name: str
    online: bool
    initialized: bool

    async def initialize(self) -> None: ...

    async def check_health(self) -> HealthStatus: ...

    async def chat(
        self, messages: list[ChatMessage], options: ChatOptions | None = None
    ) -> ChatResult: ...

    async def stream_chat(
        self, messages: list[ChatMessage], options: ChatOptions | None = None
    ) -> ChatStream: ...

    async def generate_content(
        self, prompt: str, options: ChatOptions | None = None
    ) -> ChatResult: ...

    async def embed(self, text: str) -> EmbeddingResult: ...

    def estimate_cost(self, text: str, options: ChatOptions | None = None) -> CostEstimate: ...

    def get_capabilities(self) -> ProviderDescriptor: ...

    async def cleanup(self) -> None: ...

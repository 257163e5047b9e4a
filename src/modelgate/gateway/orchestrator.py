"""Provider registry, health-checked switching and bounded failover."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from modelgate.config import Settings
from modelgate.errors import (
    DuplicateProviderError,
    GatewayError,
    NoProviderAvailableError,
    RateLimitExceededError,
    UnavailableError,
    UnknownProviderError,
    UpstreamError,
)
from modelgate.providers.base import (
    ChatMessage,
    ChatOptions,
    ChatResult,
    ChatStream,
    CostEstimate,
    EmbeddingResult,
    HealthStatus,
    ModelProvider,
    ProviderDescriptor,
    estimate_tokens,
    messages_text,
)
from modelgate.providers.factory import (
    FALLBACK_PRIORITY,
    build_default_providers,
    resolve_default_provider_name,
)
from modelgate.streaming.decoder import Segments, StreamDecoder
from modelgate.usage.ledger import (
    CostSavings,
    TotalStats,
    UsageLedger,
    UsageRecord,
    UsageTotals,
)
from modelgate.usage.store import SQLiteUsageStore, UsageStore

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], Awaitable[None] | None]


class GatewayState(str, Enum):
    UNCONFIGURED = "unconfigured"
    READY = "ready"
    ACTIVE = "active"
    DEGRADED = "degraded"


@dataclass(slots=True)
class SwitchResult:
    provider: str
    mode: str
    capabilities: ProviderDescriptor
    fallback: bool = False
    original_provider: str | None = None
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "provider": self.provider,
            "mode": self.mode,
            "capabilities": self.capabilities.to_dict(),
            "fallback": self.fallback,
            "original_provider": self.original_provider,
            "message": self.message,
        }


class GatewayStream:
    """A streamed completion bound to the provider that serves it.

    Iterating yields text deltas. A backend failure before the first delta
    triggers one fallback hop; later failures propagate. When iteration
    ends, or ``aclose()`` is called, the (possibly partial) result is
    metered against the serving provider.
    """

    def __init__(
        self,
        gateway: Gateway,
        provider: str,
        stream: ChatStream,
        messages: list[ChatMessage],
        options: ChatOptions,
    ) -> None:
        self.provider = provider
        self.decoder = StreamDecoder()
        self.result: ChatResult | None = None
        self._gateway = gateway
        self._stream = stream
        self._messages = messages
        self._options = options
        self._retried = False

    @property
    def segments(self) -> Segments:
        return self.decoder.segments

    def __aiter__(self) -> GatewayStream:
        return self

    async def __anext__(self) -> str:
        while True:
            try:
                delta = await self._stream.__anext__()
            except StopAsyncIteration:
                self._finish()
                raise
            except UpstreamError as exc:
                if self._stream.emitted or self._retried:
                    raise
                self._retried = True
                self.provider, adapter = await self._gateway._recover(self.provider, exc)
                self._stream = await adapter.stream_chat(self._messages, self._options)
                continue
            self.decoder.feed(delta)
            return delta

    async def aclose(self) -> None:
        if self.result is not None:
            return
        await self._stream.aclose()
        self._finish()

    def _finish(self) -> None:
        if self.result is not None or self._stream.result is None:
            return
        self.decoder.finish()
        self.result = self._stream.result
        self._gateway._record(self.provider, self.result)


class Gateway:
    def __init__(
        self,
        ledger: UsageLedger,
        *,
        settings: Settings | None = None,
        fallback_priority: dict[str, tuple[str, ...]] | None = None,
        fallback_enabled: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.ledger = ledger
        self.settings = settings
        self.fallback_enabled = fallback_enabled
        self.state = GatewayState.UNCONFIGURED
        self._fallback_priority = dict(
            FALLBACK_PRIORITY if fallback_priority is None else fallback_priority
        )
        self._transport = transport
        self._providers: dict[str, ModelProvider] = {}
        self._descriptors: dict[str, ProviderDescriptor] = {}
        self._session: dict[str, UsageTotals] = {}
        self._active: str | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        store: UsageStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> Gateway:
        ledger = UsageLedger(
            per_request_limit=settings.per_request_token_limit,
            daily_limit=settings.daily_token_limit,
            store=store if store is not None else SQLiteUsageStore(settings.usage_namespace),
            reference_rate_per_1k=settings.savings_reference_rate_per_1k,
        )
        return cls(
            ledger,
            settings=settings,
            fallback_enabled=bool(int(settings.fallback_enabled)),
            transport=transport,
        )

    # registry

    def register(self, name: str, adapter: ModelProvider) -> None:
        if name in self._providers:
            raise DuplicateProviderError(name)
        self._providers[name] = adapter
        self._descriptors[name] = adapter.get_capabilities()
        self._session[name] = UsageTotals()
        if self.state == GatewayState.UNCONFIGURED:
            self.state = GatewayState.READY
        logger.info("Provider registered name=%s online=%s", name, adapter.online)

    def _adapter(self, name: str) -> ModelProvider:
        adapter = self._providers.get(name)
        if adapter is None:
            raise UnknownProviderError(name)
        return adapter

    @property
    def active_provider_name(self) -> str | None:
        return self._active

    @property
    def is_online_mode(self) -> bool:
        if self._active is None:
            return False
        return self._descriptors[self._active].online

    def current_model(self, thinking_mode: bool = False) -> str | None:
        if self._active is None:
            return None
        descriptor = self._descriptors[self._active]
        if thinking_mode and descriptor.thinking_model:
            return descriptor.thinking_model
        return descriptor.default_model

    def get_capabilities(self) -> ProviderDescriptor | None:
        if self._active is None:
            return None
        return self._descriptors[self._active]

    def list_providers(self) -> list[dict[str, Any]]:
        return [
            {
                "name": name,
                "active": name == self._active,
                "online": descriptor.online,
                "capabilities": sorted(descriptor.capabilities),
                "model": descriptor.default_model,
            }
            for name, descriptor in self._descriptors.items()
        ]

    def set_fallback_enabled(self, enabled: bool) -> None:
        self.fallback_enabled = enabled

    # lifecycle

    def register_defaults(self) -> None:
        """Register the configured adapters when nothing has been registered yet."""
        if self._providers or self.settings is None:
            return
        for adapter in build_default_providers(self.settings, transport=self._transport):
            self.register(adapter.name, adapter)

    async def initialize(self, default: str | None = None) -> SwitchResult:
        self.register_defaults()
        if not self._providers:
            raise NoProviderAvailableError("no providers registered")
        if self.settings is not None:
            self.ledger.cleanup(self.settings.usage_retention_days)
        if default is None:
            if self.settings is not None:
                default = resolve_default_provider_name(self.settings)
            else:
                default = next(iter(self._providers))
        if default not in self._providers:
            default = next(iter(self._providers))
        return await self.switch_provider(default)

    async def cleanup(self) -> None:
        for name, adapter in self._providers.items():
            try:
                await adapter.cleanup()
            except Exception:
                logger.exception("Provider cleanup failed name=%s", name)

    # health + switching

    async def _health(self, name: str) -> HealthStatus:
        try:
            return await self._providers[name].check_health()
        except Exception as exc:
            logger.warning("Health check raised name=%s: %s", name, exc)
            return HealthStatus(available=False, message=str(exc))

    async def check_provider_health(self, name: str) -> HealthStatus:
        self._adapter(name)
        return await self._health(name)

    async def check_all_health(self) -> dict[str, HealthStatus]:
        names = list(self._providers)
        statuses = await asyncio.gather(*(self._health(name) for name in names))
        return dict(zip(names, statuses, strict=True))

    async def _try_activate(self, name: str) -> bool:
        status = await self._health(name)
        if not status.available:
            logger.info("Provider unavailable name=%s reason=%s", name, status.message)
            return False
        adapter = self._providers[name]
        if not adapter.initialized:
            try:
                await adapter.initialize()
            except GatewayError as exc:
                logger.warning("Provider initialize failed name=%s: %s", name, exc)
                return False
        previous = self._active
        self._active = name
        self.state = GatewayState.ACTIVE
        if previous != name:
            logger.info("Active provider switched from=%s to=%s", previous, name)
        return True

    def _fallback_candidates(self, origin: str, exclude: set[str]) -> list[str]:
        ordered: list[str] = []
        for name in (*self._fallback_priority.get(origin, ()), *self._providers):
            if name in self._providers and name not in exclude and name not in ordered:
                ordered.append(name)
        return ordered

    async def _fallback_pass(self, origin: str) -> tuple[str | None, list[str]]:
        tried = [origin]
        for candidate in self._fallback_candidates(origin, {origin}):
            tried.append(candidate)
            if await self._try_activate(candidate):
                return candidate, tried
        return None, tried

    def _switch_result(
        self, name: str, *, original: str | None = None, message: str = ""
    ) -> SwitchResult:
        descriptor = self._descriptors[name]
        return SwitchResult(
            provider=name,
            mode="online" if descriptor.online else "offline",
            capabilities=descriptor,
            fallback=original is not None,
            original_provider=original,
            message=message,
        )

    async def switch_provider(self, name: str) -> SwitchResult:
        self._adapter(name)
        async with self._lock:
            if await self._try_activate(name):
                return self._switch_result(name)
            if not self.fallback_enabled:
                status = await self._health(name)
                raise UnavailableError(
                    status.message or f"provider '{name}' is unavailable", provider=name
                )
            chosen, tried = await self._fallback_pass(name)
            if chosen is None:
                raise NoProviderAvailableError(
                    f"no healthy provider found (tried: {', '.join(tried)})", tried=tried
                )
            logger.warning("Switch fell back requested=%s active=%s", name, chosen)
            return self._switch_result(
                chosen, original=name, message=f"'{name}' unavailable, switched to '{chosen}'"
            )

    async def _recover(self, failed: str, exc: UpstreamError) -> tuple[str, ModelProvider]:
        """Run one fallback pass after ``failed`` raised ``exc``."""
        logger.warning("Provider call failed name=%s: %s", failed, exc)
        if not self.fallback_enabled:
            raise exc
        async with self._lock:
            chosen, tried = await self._fallback_pass(failed)
            if chosen is None:
                self.state = GatewayState.DEGRADED
                raise NoProviderAvailableError(
                    f"'{failed}' failed and no alternate is healthy (tried: {', '.join(tried)})",
                    tried=tried,
                ) from exc
        logger.info("Retrying on fallback provider name=%s", chosen)
        return chosen, self._providers[chosen]

    # calls

    def _snapshot(self) -> tuple[str, ModelProvider]:
        name = self._active
        if name is None:
            raise NoProviderAvailableError("no active provider; call initialize() first")
        return name, self._providers[name]

    async def _preflight(self, text: str) -> tuple[str, ModelProvider]:
        name, adapter = self._snapshot()
        check = self.ledger.check_limit(estimate_tokens(text))
        if check.allowed:
            return name, adapter
        if check.would_exceed_per_request:
            raise RateLimitExceededError(
                f"request exceeds the per-request limit of {self.ledger.per_request_limit} tokens",
                check=check,
            )
        if not self._descriptors[name].online:
            return name, adapter
        async with self._lock:
            for candidate, descriptor in self._descriptors.items():
                if descriptor.online:
                    continue
                if await self._try_activate(candidate):
                    logger.warning(
                        "Daily token limit reached; switched to offline provider=%s", candidate
                    )
                    return candidate, self._providers[candidate]
        raise RateLimitExceededError(
            f"daily token limit of {self.ledger.daily_limit} reached", check=check
        )

    def _record(self, name: str, result: ChatResult) -> None:
        self.ledger.track_request(name, result.tokens, result.cost, result.model)
        self._session.setdefault(name, UsageTotals()).add(
            max(0, result.tokens), max(0.0, result.cost)
        )
        if self.state == GatewayState.DEGRADED:
            self.state = GatewayState.ACTIVE

    async def chat(
        self, messages: list[ChatMessage], options: ChatOptions | None = None
    ) -> ChatResult:
        options = options or ChatOptions()
        name, adapter = await self._preflight(messages_text(messages))
        try:
            result = await adapter.chat(messages, options)
        except UpstreamError as exc:
            name, adapter = await self._recover(name, exc)
            result = await adapter.chat(messages, options)
        self._record(name, result)
        return result

    async def generate_content(self, prompt: str, options: ChatOptions | None = None) -> ChatResult:
        options = options or ChatOptions()
        name, adapter = await self._preflight(prompt)
        try:
            result = await adapter.generate_content(prompt, options)
        except UpstreamError as exc:
            name, adapter = await self._recover(name, exc)
            result = await adapter.generate_content(prompt, options)
        self._record(name, result)
        return result

    async def embed(self, text: str) -> EmbeddingResult:
        name, adapter = self._snapshot()
        try:
            return await adapter.embed(text)
        except UpstreamError as exc:
            name, adapter = await self._recover(name, exc)
            return await adapter.embed(text)

    async def open_stream(
        self, messages: list[ChatMessage], options: ChatOptions | None = None
    ) -> GatewayStream:
        options = options or ChatOptions()
        name, adapter = await self._preflight(messages_text(messages))
        stream = await adapter.stream_chat(messages, options)
        return GatewayStream(self, name, stream, messages, options)

    async def stream_chat(
        self,
        messages: list[ChatMessage],
        on_chunk: ChunkCallback | None = None,
        options: ChatOptions | None = None,
    ) -> ChatResult:
        stream = await self.open_stream(messages, options)
        try:
            async for delta in stream:
                if on_chunk is None:
                    continue
                outcome = on_chunk(delta)
                if inspect.isawaitable(outcome):
                    await outcome
        finally:
            await stream.aclose()
        if stream.result is None:
            raise NoProviderAvailableError("stream ended without a result")
        return stream.result

    def estimate_cost(self, text: str, options: ChatOptions | None = None) -> CostEstimate:
        if self._active is None:
            return CostEstimate()
        return self._providers[self._active].estimate_cost(text, options)

    # usage

    def get_usage_stats(self) -> dict[str, Any]:
        total = UsageTotals()
        for usage in self._session.values():
            total.merge(usage)
        return {
            "total": total.to_dict(),
            "providers": {name: usage.to_dict() for name, usage in self._session.items()},
        }

    def reset_usage_stats(self) -> None:
        for name in self._session:
            self._session[name] = UsageTotals()

    def get_daily_stats(self) -> UsageRecord:
        return self.ledger.get_daily_stats()

    def get_total_stats(self) -> TotalStats:
        return self.ledger.get_total_stats()

    def get_historical_stats(self, days: int = 7) -> list[UsageRecord]:
        return self.ledger.get_historical_stats(days)

    def get_cost_savings(self) -> CostSavings:
        return self.ledger.get_cost_savings()

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from modelgate.errors import (
    DuplicateProviderError,
    NoProviderAvailableError,
    RateLimitExceededError,
    UnavailableError,
    UnknownProviderError,
    UpstreamError,
)
from modelgate.gateway.orchestrator import Gateway, GatewayState
from modelgate.providers.base import (
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
)
from modelgate.usage.ledger import UsageLedger
from modelgate.usage.store import MemoryUsageStore


class _FakeProvider:
    def __init__(
        self,
        name: str,
        *,
        online: bool = True,
        healthy: bool = True,
        fail_times: int = 0,
        reply: str = "ok",
        chunks: tuple[str, ...] = ("o", "k"),
        stream_fail_after: int | None = None,
    ) -> None:
        self.name = name
        self.online = online
        self.healthy = healthy
        self.fail_times = fail_times
        self.reply = reply
        self.chunks = chunks
        self.stream_fail_after = stream_fail_after
        self.initialized = False
        self.cleaned = False
        self.calls = 0

    def _maybe_fail(self) -> None:
        if self.fail_times > 0:
            self.fail_times -= 1
            raise UpstreamError(f"{self.name} failed", provider=self.name, status_code=503)

    def _result(self, content: str) -> ChatResult:
        return ChatResult(
            content=content,
            tokens=12,
            cost=0.001 if self.online else 0.0,
            provider=self.name,
            model=f"{self.name}-model",
        )

    async def initialize(self) -> None:
        self.initialized = True

    async def check_health(self) -> HealthStatus:
        return HealthStatus(available=self.healthy, message="ok" if self.healthy else "down")

    async def chat(
        self, messages: list[ChatMessage], options: ChatOptions | None = None
    ) -> ChatResult:
        self.calls += 1
        self._maybe_fail()
        return self._result(self.reply)

    async def stream_chat(
        self, messages: list[ChatMessage], options: ChatOptions | None = None
    ) -> ChatStream:
        self.calls += 1
        chunks = self.chunks
        fail_after = self.stream_fail_after
        name = self.name

        async def deltas() -> AsyncIterator[str]:
            for index, chunk in enumerate(chunks):
                if fail_after is not None and index == fail_after:
                    raise UpstreamError(f"{name} stream broke", provider=name)
                yield chunk

        def finalize(content: str) -> ChatResult:
            return ChatResult(
                content=content,
                tokens=len(content),
                cost=0.0,
                provider=name,
                model=f"{name}-model",
            )

        return ChatStream(deltas(), finalize, provider=name)

    async def generate_content(
        self, prompt: str, options: ChatOptions | None = None
    ) -> ChatResult:
        return await self.chat([ChatMessage(role="user", content=prompt)], options)

    async def embed(self, text: str) -> EmbeddingResult:
        self.calls += 1
        self._maybe_fail()
        return EmbeddingResult(vector=[0.0, 1.0], model="embed", provider=self.name)

    def estimate_cost(self, text: str, options: ChatOptions | None = None) -> CostEstimate:
        return estimate_cost(text, PriceRate(1.0, 2.0))

    def get_capabilities(self) -> ProviderDescriptor:
        return ProviderDescriptor(
            name=self.name,
            online=self.online,
            capabilities=frozenset({"chat", "streaming"}),
            max_tokens=1000,
            context_window=4000,
            default_model=f"{self.name}-model",
            thinking_model=f"{self.name}-thinker" if self.online else "",
        )

    async def cleanup(self) -> None:
        self.cleaned = True


def _gateway(
    *providers: _FakeProvider,
    per_request: int = 8000,
    daily: int = 100_000,
    fallback: bool = True,
) -> Gateway:
    ledger = UsageLedger(
        per_request_limit=per_request, daily_limit=daily, store=MemoryUsageStore()
    )
    gateway = Gateway(ledger, fallback_enabled=fallback)
    for provider in providers:
        gateway.register(provider.name, provider)
    return gateway


def _user(text: str = "hello") -> list[ChatMessage]:
    return [ChatMessage(role="user", content=text)]


def test_register_rejects_duplicates_and_sets_ready() -> None:
    gateway = _gateway()
    assert gateway.state == GatewayState.UNCONFIGURED
    gateway.register("gemini", _FakeProvider("gemini"))
    assert gateway.state == GatewayState.READY
    with pytest.raises(DuplicateProviderError):
        gateway.register("gemini", _FakeProvider("gemini"))


@pytest.mark.asyncio
async def test_unknown_provider_errors() -> None:
    gateway = _gateway(_FakeProvider("gemini"))
    with pytest.raises(UnknownProviderError):
        await gateway.switch_provider("claude")
    with pytest.raises(UnknownProviderError):
        await gateway.check_provider_health("claude")


@pytest.mark.asyncio
async def test_switch_to_healthy_provider() -> None:
    gemini = _FakeProvider("gemini")
    gateway = _gateway(gemini, _FakeProvider("ollama", online=False))
    result = await gateway.switch_provider("gemini")
    assert result.provider == "gemini"
    assert result.mode == "online"
    assert result.fallback is False
    assert gateway.active_provider_name == "gemini"
    assert gateway.is_online_mode is True
    assert gateway.state == GatewayState.ACTIVE
    assert gemini.initialized is True


@pytest.mark.asyncio
async def test_switch_falls_back_to_offline_provider() -> None:
    gateway = _gateway(
        _FakeProvider("gemini", healthy=False), _FakeProvider("ollama", online=False)
    )
    result = await gateway.switch_provider("gemini")
    assert result.fallback is True
    assert result.original_provider == "gemini"
    assert result.provider == "ollama"
    assert result.mode == "offline"
    assert gateway.active_provider_name == "ollama"
    assert gateway.is_online_mode is False
    assert result.to_dict()["success"] is True


@pytest.mark.asyncio
async def test_fallback_follows_priority_order() -> None:
    gateway = _gateway(
        _FakeProvider("ollama", online=False),
        _FakeProvider("gemini", healthy=False),
        _FakeProvider("openai"),
    )
    result = await gateway.switch_provider("gemini")
    assert result.provider == "openai"


@pytest.mark.asyncio
async def test_switch_with_nothing_healthy_keeps_active_provider() -> None:
    gemini = _FakeProvider("gemini")
    openai = _FakeProvider("openai")
    ollama = _FakeProvider("ollama", online=False)
    gateway = _gateway(gemini, openai, ollama)
    await gateway.switch_provider("gemini")

    for provider in (gemini, openai, ollama):
        provider.healthy = False
    with pytest.raises(NoProviderAvailableError) as exc_info:
        await gateway.switch_provider("openai")

    assert exc_info.value.tried == ["openai", "gemini", "ollama"]
    assert gateway.active_provider_name == "gemini"


@pytest.mark.asyncio
async def test_switch_without_fallback_raises_unavailable() -> None:
    gateway = _gateway(
        _FakeProvider("gemini", healthy=False),
        _FakeProvider("ollama", online=False),
        fallback=False,
    )
    with pytest.raises(UnavailableError) as exc_info:
        await gateway.switch_provider("gemini")
    assert exc_info.value.provider == "gemini"
    assert gateway.active_provider_name is None


@pytest.mark.asyncio
async def test_chat_requires_active_provider() -> None:
    gateway = _gateway(_FakeProvider("gemini"))
    with pytest.raises(NoProviderAvailableError):
        await gateway.chat(_user())


@pytest.mark.asyncio
async def test_chat_records_usage_against_serving_provider() -> None:
    gateway = _gateway(_FakeProvider("gemini"))
    await gateway.switch_provider("gemini")
    result = await gateway.chat(_user())

    assert result.provider == "gemini"
    daily = gateway.get_daily_stats()
    assert daily.total.tokens == 12
    assert daily.providers["gemini"].models["gemini-model"].requests == 1
    assert gateway.get_usage_stats()["providers"]["gemini"]["tokens"] == 12


@pytest.mark.asyncio
async def test_chat_failure_falls_back_once_and_attributes_usage() -> None:
    gemini = _FakeProvider("gemini", fail_times=1)
    openai = _FakeProvider("openai", reply="from openai")
    gateway = _gateway(gemini, openai)
    await gateway.switch_provider("gemini")

    result = await gateway.chat(_user())

    assert result.content == "from openai"
    assert result.provider == "openai"
    assert gateway.active_provider_name == "openai"
    providers = gateway.get_daily_stats().providers
    assert "gemini" not in providers
    assert providers["openai"].requests == 1


@pytest.mark.asyncio
async def test_second_failure_propagates_without_metering() -> None:
    gateway = _gateway(
        _FakeProvider("gemini", fail_times=1), _FakeProvider("openai", fail_times=1)
    )
    await gateway.switch_provider("gemini")

    with pytest.raises(UpstreamError, match="openai failed"):
        await gateway.chat(_user())
    assert gateway.get_daily_stats().total.requests == 0


@pytest.mark.asyncio
async def test_failure_with_no_alternate_degrades_then_recovers() -> None:
    gemini = _FakeProvider("gemini", fail_times=1)
    ollama = _FakeProvider("ollama", online=False)
    gateway = _gateway(gemini, ollama)
    await gateway.switch_provider("gemini")
    ollama.healthy = False

    with pytest.raises(NoProviderAvailableError) as exc_info:
        await gateway.chat(_user())
    assert isinstance(exc_info.value.__cause__, UpstreamError)
    assert gateway.state == GatewayState.DEGRADED
    assert gateway.active_provider_name == "gemini"

    await gateway.chat(_user())
    assert gateway.state == GatewayState.ACTIVE


@pytest.mark.asyncio
async def test_chat_failure_without_fallback_reraises() -> None:
    gateway = _gateway(
        _FakeProvider("gemini", fail_times=1), _FakeProvider("openai"), fallback=False
    )
    await gateway.switch_provider("gemini")
    with pytest.raises(UpstreamError, match="gemini failed"):
        await gateway.chat(_user())
    assert gateway.active_provider_name == "gemini"


@pytest.mark.asyncio
async def test_per_request_limit_blocks_before_calling_provider() -> None:
    gemini = _FakeProvider("gemini")
    gateway = _gateway(gemini, per_request=10)
    await gateway.switch_provider("gemini")

    with pytest.raises(RateLimitExceededError) as exc_info:
        await gateway.chat(_user("x" * 100))
    assert exc_info.value.check is not None
    assert exc_info.value.check.would_exceed_per_request is True
    assert gemini.calls == 0


@pytest.mark.asyncio
async def test_daily_limit_moves_to_offline_provider() -> None:
    gateway = _gateway(
        _FakeProvider("gemini"), _FakeProvider("ollama", online=False), daily=100
    )
    await gateway.switch_provider("gemini")
    gateway.ledger.track_request("gemini", 95, 0.0)

    result = await gateway.chat(_user("x" * 40))

    assert result.provider == "ollama"
    assert gateway.active_provider_name == "ollama"
    assert gateway.is_online_mode is False


@pytest.mark.asyncio
async def test_daily_limit_without_offline_provider_is_denied() -> None:
    gateway = _gateway(_FakeProvider("gemini"), daily=100)
    await gateway.switch_provider("gemini")
    gateway.ledger.track_request("gemini", 95, 0.0)

    with pytest.raises(RateLimitExceededError) as exc_info:
        await gateway.chat(_user("x" * 40))
    assert exc_info.value.check.would_exceed_daily is True


@pytest.mark.asyncio
async def test_offline_provider_ignores_daily_limit() -> None:
    gateway = _gateway(_FakeProvider("ollama", online=False), daily=100)
    await gateway.switch_provider("ollama")
    gateway.ledger.track_request("ollama", 500, 0.0)

    result = await gateway.chat(_user("x" * 40))
    assert result.provider == "ollama"


@pytest.mark.asyncio
async def test_stream_retries_on_alternate_before_first_delta() -> None:
    gemini = _FakeProvider("gemini", stream_fail_after=0)
    openai = _FakeProvider("openai", chunks=("Hel", "lo"))
    gateway = _gateway(gemini, openai)
    await gateway.switch_provider("gemini")
    seen: list[str] = []

    result = await gateway.stream_chat(_user(), seen.append)

    assert seen == ["Hel", "lo"]
    assert result.content == "Hello"
    assert result.provider == "openai"
    assert gateway.get_daily_stats().providers["openai"].tokens == 5
    assert "gemini" not in gateway.get_daily_stats().providers


@pytest.mark.asyncio
async def test_stream_failure_after_first_delta_propagates() -> None:
    gateway = _gateway(
        _FakeProvider("gemini", chunks=("a", "b"), stream_fail_after=1), _FakeProvider("openai")
    )
    await gateway.switch_provider("gemini")
    seen: list[str] = []

    with pytest.raises(UpstreamError, match="gemini stream broke"):
        await gateway.stream_chat(_user(), seen.append)

    assert seen == ["a"]
    assert gateway.active_provider_name == "gemini"
    assert gateway.get_daily_stats().providers["gemini"].tokens == 1


@pytest.mark.asyncio
async def test_stream_accepts_async_callback_and_decodes_segments() -> None:
    gateway = _gateway(
        _FakeProvider("gemini", chunks=("**Thinking:** a ", "**Answer:** b"))
    )
    await gateway.switch_provider("gemini")
    received: list[str] = []

    async def on_chunk(delta: str) -> None:
        received.append(delta)

    stream = await gateway.open_stream(_user(), ChatOptions(thinking_mode=True))
    async for delta in stream:
        await on_chunk(delta)
    assert received == ["**Thinking:** a ", "**Answer:** b"]
    assert stream.segments.thinking == "a"
    assert stream.segments.answer == "b"
    assert stream.result is not None


@pytest.mark.asyncio
async def test_closing_stream_early_meters_partial_output() -> None:
    gateway = _gateway(_FakeProvider("gemini", chunks=("one ", "two ", "three")))
    await gateway.switch_provider("gemini")

    stream = await gateway.open_stream(_user())
    first = await stream.__anext__()
    await stream.aclose()

    assert first == "one "
    assert stream.result is not None
    assert stream.result.content == "one "
    assert gateway.get_daily_stats().total.tokens == 4
    await stream.aclose()
    assert gateway.get_daily_stats().total.requests == 1


@pytest.mark.asyncio
async def test_embed_falls_back_and_is_not_metered() -> None:
    gateway = _gateway(_FakeProvider("gemini", fail_times=1), _FakeProvider("openai"))
    await gateway.switch_provider("gemini")
    result = await gateway.embed("vector me")
    assert result.provider == "openai"
    assert gateway.get_daily_stats().total.requests == 0


@pytest.mark.asyncio
async def test_generate_content_is_metered() -> None:
    gateway = _gateway(_FakeProvider("gemini", reply="poem"))
    await gateway.switch_provider("gemini")
    result = await gateway.generate_content("write a poem")
    assert result.content == "poem"
    assert gateway.get_daily_stats().total.requests == 1


@pytest.mark.asyncio
async def test_initialize_without_settings_uses_requested_or_first() -> None:
    gateway = _gateway(_FakeProvider("ollama", online=False), _FakeProvider("gemini"))
    result = await gateway.initialize()
    assert result.provider == "ollama"
    result = await gateway.initialize(default="gemini")
    assert result.provider == "gemini"

    with pytest.raises(NoProviderAvailableError):
        await _gateway().initialize()


@pytest.mark.asyncio
async def test_introspection_and_session_usage() -> None:
    gateway = _gateway(_FakeProvider("gemini"), _FakeProvider("ollama", online=False))
    assert gateway.get_capabilities() is None
    assert gateway.current_model() is None
    assert gateway.estimate_cost("abc") == CostEstimate()

    await gateway.switch_provider("gemini")
    assert gateway.current_model() == "gemini-model"
    assert gateway.current_model(thinking_mode=True) == "gemini-thinker"
    assert gateway.get_capabilities().supports("streaming")
    assert gateway.estimate_cost("x" * 40).estimated_tokens == 25
    assert [row["name"] for row in gateway.list_providers()] == ["gemini", "ollama"]
    assert gateway.list_providers()[0]["active"] is True

    await gateway.chat(_user())
    assert gateway.get_usage_stats()["total"]["requests"] == 1
    gateway.reset_usage_stats()
    assert gateway.get_usage_stats()["total"]["requests"] == 0
    assert gateway.get_total_stats().total.requests == 1


@pytest.mark.asyncio
async def test_check_all_health_and_cleanup() -> None:
    gemini = _FakeProvider("gemini")
    ollama = _FakeProvider("ollama", online=False, healthy=False)
    gateway = _gateway(gemini, ollama)

    statuses = await gateway.check_all_health()
    assert statuses["gemini"].available is True
    assert statuses["ollama"].available is False

    await gateway.cleanup()
    assert gemini.cleaned is True
    assert ollama.cleaned is True

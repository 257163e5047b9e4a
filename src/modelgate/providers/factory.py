"""Provider construction helpers."""

import httpx

from modelgate.config import Settings
from modelgate.providers.base import ModelProvider
from modelgate.providers.gemini import GeminiProvider
from modelgate.providers.ollama import OllamaProvider
from modelgate.providers.openai import OpenAIProvider

PROVIDER_NAMES = ("gemini", "openai", "ollama")

FALLBACK_PRIORITY: dict[str, tuple[str, ...]] = {
    "gemini": ("openai", "ollama"),
    "openai": ("gemini", "ollama"),
    "ollama": ("gemini", "openai"),
}


def resolve_default_provider_name(settings: Settings) -> str:
    value = settings.default_provider.strip().lower()
    if value in PROVIDER_NAMES:
        return value
    return "gemini"


def build_provider(
    name: str,
    settings: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ModelProvider:
    if name == "gemini":
        return GeminiProvider(
            settings.gemini_api_key,
            model=settings.gemini_model,
            thinking_model=settings.gemini_thinking_model,
            embed_model=settings.gemini_embed_model,
            base_url=settings.gemini_base_url,
            timeout_seconds=settings.provider_timeout_seconds,
            transport=transport,
        )
    if name == "openai":
        return OpenAIProvider(
            settings.openai_api_key,
            model=settings.openai_model,
            thinking_model=settings.openai_thinking_model,
            embed_model=settings.openai_embed_model,
            base_url=settings.openai_base_url,
            timeout_seconds=settings.provider_timeout_seconds,
            transport=transport,
        )
    if name == "ollama":
        return OllamaProvider(
            base_url=settings.ollama_base_url,
            model=settings.ollama_model,
            embed_model=settings.ollama_embed_model,
            timeout_seconds=settings.ollama_timeout_seconds,
            transport=transport,
        )
    raise ValueError(f"unknown provider: {name}")


def build_default_providers(
    settings: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[ModelProvider]:
    return [build_provider(name, settings, transport=transport) for name in PROVIDER_NAMES]

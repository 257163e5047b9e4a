"""Application configuration contract."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field(alias="APP_ENV", default="dev")
    app_db: str = Field(alias="APP_DB", default="/tmp/modelgate.db")
    log_level: str = Field(alias="LOG_LEVEL", default="INFO")

    default_provider: str = Field(alias="DEFAULT_AI_PROVIDER", default="gemini")
    fallback_enabled: int = Field(alias="AI_FALLBACK_ENABLED", default=1)
    provider_timeout_seconds: int = Field(alias="PROVIDER_TIMEOUT_SECONDS", default=60)

    gemini_api_key: str = Field(alias="GEMINI_API_KEY", default="")
    gemini_model: str = Field(alias="GEMINI_MODEL", default="gemini-2.0-flash")
    gemini_thinking_model: str = Field(alias="GEMINI_THINKING_MODEL", default="gemini-2.5-pro")
    gemini_embed_model: str = Field(alias="GEMINI_EMBED_MODEL", default="text-embedding-004")
    gemini_base_url: str = Field(
        alias="GEMINI_BASE_URL",
        default="https://generativelanguage.googleapis.com/v1beta",
    )

    openai_api_key: str = Field(alias="OPENAI_API_KEY", default="")
    openai_model: str = Field(alias="OPENAI_MODEL", default="gpt-4o")
    openai_thinking_model: str = Field(alias="OPENAI_THINKING_MODEL", default="o3")
    openai_embed_model: str = Field(alias="OPENAI_EMBED_MODEL", default="text-embedding-3-small")
    openai_base_url: str = Field(alias="OPENAI_BASE_URL", default="https://api.openai.com/v1")

    ollama_base_url: str = Field(alias="OLLAMA_BASE_URL", default="http://localhost:11434")
    ollama_model: str = Field(alias="OLLAMA_MODEL", default="llama2")
    ollama_embed_model: str = Field(alias="OLLAMA_EMBED_MODEL", default="mxbai-embed-large")
    ollama_timeout_seconds: int = Field(alias="OLLAMA_TIMEOUT_SECONDS", default=60)

    per_request_token_limit: int = Field(alias="PER_REQUEST_TOKEN_LIMIT", default=8000)
    daily_token_limit: int = Field(alias="DAILY_TOKEN_LIMIT", default=100000)
    usage_namespace: str = Field(alias="USAGE_NAMESPACE", default="modelgate")
    usage_retention_days: int = Field(alias="USAGE_RETENTION_DAYS", default=30)
    # gemini-2.0-flash blended list price, used for offline savings reports
    savings_reference_rate_per_1k: float = Field(
        alias="SAVINGS_REFERENCE_RATE_PER_1K", default=0.00025
    )

    web_cors_origins: str = Field(alias="WEB_CORS_ORIGINS", default="http://localhost:5173")

    # Security: bind host defaults to loopback
    bind_host: str = Field(alias="BIND_HOST", default="127.0.0.1")
    bind_port: int = Field(alias="BIND_PORT", default=8000)


def validate_settings_for_env(settings: Settings) -> None:
    import logging as _logging
    import warnings

    _logger = _logging.getLogger(__name__)

    if settings.app_env == "prod" and settings.bind_host == "0.0.0.0":
        msg = (
            "SECURITY WARNING: BIND_HOST=0.0.0.0 in production. "
            "This exposes the API to all network interfaces. "
            "Set BIND_HOST=127.0.0.1 and use a reverse proxy."
        )
        _logger.warning(msg)
        warnings.warn(msg, stacklevel=2)

    invalid: list[str] = []
    if settings.per_request_token_limit <= 0:
        invalid.append("PER_REQUEST_TOKEN_LIMIT must be > 0")
    if settings.daily_token_limit <= 0:
        invalid.append("DAILY_TOKEN_LIMIT must be > 0")
    if settings.usage_retention_days <= 0:
        invalid.append("USAGE_RETENTION_DAYS must be > 0")
    if not settings.usage_namespace.strip():
        invalid.append("USAGE_NAMESPACE must not be empty")
    if invalid:
        raise ValueError("invalid settings: " + "; ".join(invalid))

    if settings.app_env != "prod":
        return

    missing: list[str] = []
    required_non_empty = {
        "APP_DB": settings.app_db,
        "DEFAULT_AI_PROVIDER": settings.default_provider,
        "OLLAMA_BASE_URL": settings.ollama_base_url,
    }
    for key, value in required_non_empty.items():
        if not str(value).strip():
            missing.append(key)
    if not settings.gemini_api_key.strip() and not settings.openai_api_key.strip():
        missing.append("GEMINI_API_KEY or OPENAI_API_KEY")
    if missing:
        raise ValueError(f"invalid production configuration: {', '.join(missing)}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()

"""Gateway exception hierarchy.

All gateway-specific exceptions inherit from GatewayError,
enabling structured error handling and cleaner catch clauses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modelgate.usage.ledger import LimitCheck


class GatewayError(Exception):
    """Base exception for all gateway errors."""

    def __init__(self, message: str = "", *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class ConfigurationError(GatewayError):
    """Missing or invalid provider credentials/configuration."""


class UnknownProviderError(GatewayError):
    """Switch target or lookup name is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"provider '{name}' is not registered")
        self.name = name


class DuplicateProviderError(GatewayError):
    """A provider with the same name is already registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"provider '{name}' is already registered")
        self.name = name


class UnavailableError(GatewayError):
    """A provider failed its health check."""

    def __init__(self, message: str = "", *, provider: str = "") -> None:
        super().__init__(message, retryable=True)
        self.provider = provider


class NoProviderAvailableError(GatewayError):
    """The fallback pass found no healthy provider."""

    def __init__(self, message: str = "", *, tried: list[str] | None = None) -> None:
        super().__init__(message or "no AI provider is available")
        self.tried = list(tried or [])


class UpstreamError(GatewayError):
    """Backend HTTP/API failure."""

    def __init__(
        self,
        message: str = "",
        *,
        provider: str = "",
        status_code: int | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message, retryable=retryable)
        self.provider = provider
        self.status_code = status_code


class ParseError(UpstreamError):
    """Malformed payload received from a backend."""

    def __init__(self, message: str = "", *, provider: str = "") -> None:
        super().__init__(message, provider=provider, retryable=False)


class RateLimitExceededError(GatewayError):
    """Pre-flight budget check denied the request."""

    def __init__(self, message: str = "", *, check: LimitCheck | None = None) -> None:
        super().__init__(message or "token budget exceeded")
        self.check = check


@dataclass(slots=True, frozen=True)
class ErrorInfo:
    kind: str
    user_message: str
    blocking: bool = False
    can_retry: bool = True
    suggest_switch: bool = False


def describe_error(exc: BaseException, provider: str | None = None) -> ErrorInfo:
    """Map an exception to a short, user-facing description."""
    label = provider or "the AI provider"
    if isinstance(exc, NoProviderAvailableError):
        return ErrorInfo(
            kind="no_provider",
            user_message="No AI provider is available right now. Please try again later.",
            blocking=True,
            can_retry=False,
        )
    if isinstance(exc, RateLimitExceededError):
        check = exc.check
        if check is not None and check.would_exceed_per_request:
            message = "This request is too large. Try a shorter message."
        else:
            message = "Daily AI usage limit reached. Switch to the offline model or try tomorrow."
        return ErrorInfo(kind="rate_limit", user_message=message, can_retry=False,
                         suggest_switch=True)
    if isinstance(exc, ConfigurationError):
        return ErrorInfo(
            kind="configuration",
            user_message=f"{label} is not configured. Check the API key settings.",
            can_retry=False,
            suggest_switch=True,
        )
    if isinstance(exc, UnknownProviderError):
        return ErrorInfo(kind="unknown_provider", user_message=str(exc), can_retry=False)
    if isinstance(exc, UnavailableError):
        return ErrorInfo(
            kind="unavailable",
            user_message=f"{label} is currently unavailable.",
            suggest_switch=True,
        )
    if isinstance(exc, ParseError):
        return ErrorInfo(
            kind="parse",
            user_message=f"{label} returned an unexpected response. Please retry.",
        )
    if isinstance(exc, UpstreamError):
        if exc.status_code == 429:
            message = f"{label} is rate limiting requests. Wait a moment or switch provider."
        elif exc.status_code in {401, 403}:
            message = f"{label} rejected the credentials."
        else:
            message = f"{label} request failed. Please retry."
        return ErrorInfo(kind="upstream", user_message=message, suggest_switch=True)
    return ErrorInfo(kind="internal", user_message="Something went wrong. Please retry.")

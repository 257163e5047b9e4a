"""Chat assistant on top of the gateway; failures become result values."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from modelgate.chat.prompts import (
    CHAT_SYSTEM,
    Candidate,
    UserContext,
    fill_template,
    render_context,
)
from modelgate.errors import describe_error
from modelgate.gateway.orchestrator import ChunkCallback, Gateway
from modelgate.providers.base import ChatMessage, ChatOptions

logger = logging.getLogger(__name__)

CHAT_OPTIONS = ChatOptions(temperature=0.7, max_tokens=1500)

_INTENT_PATTERNS = {
    "find_tutor": re.compile(r"find|search|looking for|need.*tutor|recommend", re.IGNORECASE),
    "booking": re.compile(r"book|schedule|appointment|session", re.IGNORECASE),
    "credits": re.compile(r"credit|payment|cost|price|how much", re.IGNORECASE),
    "help": re.compile(r"help|how to|how do i|what is|explain", re.IGNORECASE),
    "review": re.compile(r"review|rating|feedback", re.IGNORECASE),
}

_MAJOR_SUGGESTIONS = {
    "information technology": [
        "Who can help with web development?",
        "Find me a programming tutor",
    ],
    "business analytics": ["Find me a data analytics tutor"],
}


@dataclass(slots=True)
class ChatReply:
    success: bool
    message: str = ""
    tokens: int = 0
    cost: float = 0.0
    provider: str | None = None
    model: str | None = None
    thinking: str = ""
    error: str | None = None
    error_kind: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "tokens": self.tokens,
            "cost": self.cost,
            "provider": self.provider,
            "model": self.model,
            "thinking": self.thinking,
            "error": self.error,
            "error_kind": self.error_kind,
        }


class ChatService:
    def __init__(self, gateway: Gateway) -> None:
        self.gateway = gateway

    def build_system_prompt(
        self, user: UserContext | None, candidates: list[Candidate] | None
    ) -> str:
        return fill_template(CHAT_SYSTEM, context=render_context(user, candidates))

    def build_messages(
        self,
        text: str,
        user: UserContext | None,
        candidates: list[Candidate] | None,
        history: list[ChatMessage] | None = None,
    ) -> list[ChatMessage]:
        return [
            ChatMessage(role="system", content=self.build_system_prompt(user, candidates)),
            *(history or []),
            ChatMessage(role="user", content=text),
        ]

    def _failure(self, exc: Exception) -> ChatReply:
        info = describe_error(exc, self.gateway.active_provider_name)
        logger.warning("Chat request failed kind=%s: %s", info.kind, exc)
        return ChatReply(success=False, error=info.user_message, error_kind=info.kind)

    async def send_message(
        self,
        text: str,
        user: UserContext | None = None,
        candidates: list[Candidate] | None = None,
        history: list[ChatMessage] | None = None,
        options: ChatOptions | None = None,
    ) -> ChatReply:
        try:
            messages = self.build_messages(text, user, candidates, history)
            result = await self.gateway.chat(messages, options or CHAT_OPTIONS)
        except Exception as exc:
            return self._failure(exc)
        return ChatReply(
            success=True,
            message=result.answer or result.content,
            tokens=result.tokens,
            cost=result.cost,
            provider=result.provider,
            model=result.model,
            thinking=result.thinking,
        )

    async def stream_message(
        self,
        text: str,
        user: UserContext | None = None,
        candidates: list[Candidate] | None = None,
        history: list[ChatMessage] | None = None,
        on_chunk: ChunkCallback | None = None,
        options: ChatOptions | None = None,
    ) -> ChatReply:
        try:
            messages = self.build_messages(text, user, candidates, history)
            result = await self.gateway.stream_chat(messages, on_chunk, options or CHAT_OPTIONS)
        except Exception as exc:
            return self._failure(exc)
        return ChatReply(
            success=True,
            message=result.answer or result.content,
            tokens=result.tokens,
            cost=result.cost,
            provider=result.provider,
            model=result.model,
            thinking=result.thinking,
        )

    def suggested_questions(self, user: UserContext | None = None) -> list[str]:
        suggestions = [
            "What subjects can I get help with?",
            "How do I book a tutoring session?",
            "How does the credit system work?",
            "Can you recommend a tutor for me?",
            "What are the most popular subjects?",
        ]
        major = (user.major if user else "").strip().lower()
        return [*_MAJOR_SUGGESTIONS.get(major, []), *suggestions]

    def analyze_intent(self, text: str) -> dict[str, bool]:
        return {name: bool(pattern.search(text)) for name, pattern in _INTENT_PATTERNS.items()}

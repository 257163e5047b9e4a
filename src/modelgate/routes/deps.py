"""Request-scoped accessors for the process-wide gateway."""

from fastapi import Request

from modelgate.chat.content import ContentService
from modelgate.chat.service import ChatService
from modelgate.gateway.orchestrator import Gateway


def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway


def get_chat_service(request: Request) -> ChatService:
    return ChatService(request.app.state.gateway)


def get_content_service(request: Request) -> ContentService:
    return ContentService(request.app.state.gateway)

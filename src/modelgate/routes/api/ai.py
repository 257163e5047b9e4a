"""Completion, embedding and provider-management routes."""

import base64
import binascii
import json
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from modelgate.errors import describe_error
from modelgate.gateway.orchestrator import Gateway, GatewayStream
from modelgate.providers.base import Attachment, ChatMessage, ChatOptions
from modelgate.routes.deps import get_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["api-ai"])


class ImageBody(BaseModel):
    mime_type: str = "image/png"
    data: str = Field(description="base64-encoded image bytes")


class MessageBody(BaseModel):
    role: str = Field(pattern="^(system|user|assistant)$")
    content: str = ""
    images: list[ImageBody] = Field(default_factory=list)


class OptionsBody(BaseModel):
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2000, ge=1)
    top_p: float | None = None
    top_k: int | None = None
    thinking_mode: bool = False
    reasoning_effort: str | None = None


class ChatBody(BaseModel):
    messages: list[MessageBody] = Field(min_length=1)
    options: OptionsBody = Field(default_factory=OptionsBody)


class GenerateBody(BaseModel):
    prompt: str = Field(min_length=1)
    options: OptionsBody = Field(default_factory=OptionsBody)


class TextBody(BaseModel):
    text: str = Field(min_length=1)
    thinking_mode: bool = False


def to_options(body: OptionsBody) -> ChatOptions:
    return ChatOptions(
        temperature=body.temperature,
        max_tokens=body.max_tokens,
        top_p=body.top_p,
        top_k=body.top_k,
        thinking_mode=body.thinking_mode,
        reasoning_effort=body.reasoning_effort,
    )


def to_messages(items: list[MessageBody]) -> list[ChatMessage]:
    messages: list[ChatMessage] = []
    for item in items:
        attachments: list[Attachment] = []
        for image in item.images:
            try:
                data = base64.b64decode(image.data, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise HTTPException(status_code=400, detail="invalid base64 image data") from exc
            attachments.append(Attachment(mime_type=image.mime_type, data=data))
        messages.append(
            ChatMessage(role=item.role, content=item.content, attachments=tuple(attachments))
        )
    return messages


def sse(payload: dict[str, object]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


async def stream_events(stream: GatewayStream, thinking_mode: bool) -> AsyncIterator[str]:
    """Render a gateway stream as server-sent events; closing it cancels upstream."""
    try:
        async for delta in stream:
            event: dict[str, object] = {"chunk": delta}
            if thinking_mode:
                event["thinking"] = stream.segments.thinking
                event["answer"] = stream.segments.answer
            yield sse(event)
        result = stream.result
        if result is None:
            return
        yield sse(
            {
                "done": True,
                "full_content": result.content,
                "provider": stream.provider,
                "model": result.model,
                "is_thinking": thinking_mode,
                "thinking": result.thinking,
                "answer": result.answer,
                "tokens": result.tokens,
                "cost": result.cost,
            }
        )
    except Exception as exc:
        info = describe_error(exc, stream.provider)
        logger.warning("Stream failed provider=%s kind=%s: %s", stream.provider, info.kind, exc)
        yield sse({"error": info.kind, "message": info.user_message})
    finally:
        await stream.aclose()


@router.post("/chat")
async def chat(
    body: ChatBody,
    gateway: Gateway = Depends(get_gateway),  # noqa: B008
) -> dict[str, object]:
    result = await gateway.chat(to_messages(body.messages), to_options(body.options))
    return result.to_dict()


@router.post("/chat/stream")
async def chat_stream(
    body: ChatBody,
    gateway: Gateway = Depends(get_gateway),  # noqa: B008
) -> StreamingResponse:
    options = to_options(body.options)
    stream = await gateway.open_stream(to_messages(body.messages), options)
    return StreamingResponse(
        stream_events(stream, options.thinking_mode),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/generate")
async def generate(
    body: GenerateBody,
    gateway: Gateway = Depends(get_gateway),  # noqa: B008
) -> dict[str, object]:
    result = await gateway.generate_content(body.prompt, to_options(body.options))
    return result.to_dict()


@router.post("/embed")
async def embed(
    body: TextBody,
    gateway: Gateway = Depends(get_gateway),  # noqa: B008
) -> dict[str, object]:
    result = await gateway.embed(body.text)
    return {
        "embedding": result.vector,
        "dimensions": result.dimensions,
        "model": result.model,
        "provider": result.provider,
    }


@router.post("/estimate")
def estimate(
    body: TextBody,
    gateway: Gateway = Depends(get_gateway),  # noqa: B008
) -> dict[str, object]:
    result = gateway.estimate_cost(body.text, ChatOptions(thinking_mode=body.thinking_mode))
    return {"provider": gateway.active_provider_name, **result.to_dict()}


@router.get("/providers")
def list_providers(gateway: Gateway = Depends(get_gateway)) -> dict[str, object]:  # noqa: B008
    return {
        "items": gateway.list_providers(),
        "active": gateway.active_provider_name,
        "online": gateway.is_online_mode,
        "state": gateway.state.value,
    }


@router.post("/providers/{name}/switch")
async def switch_provider(
    name: str,
    gateway: Gateway = Depends(get_gateway),  # noqa: B008
) -> dict[str, object]:
    result = await gateway.switch_provider(name)
    return result.to_dict()


@router.get("/providers/{name}/health")
async def provider_health(
    name: str,
    gateway: Gateway = Depends(get_gateway),  # noqa: B008
) -> dict[str, object]:
    status = await gateway.check_provider_health(name)
    return {"provider": name, **status.to_dict()}


@router.get("/capabilities")
def capabilities(gateway: Gateway = Depends(get_gateway)) -> dict[str, object]:  # noqa: B008
    descriptor = gateway.get_capabilities()
    if descriptor is None:
        raise HTTPException(status_code=503, detail="no active provider")
    return {
        **descriptor.to_dict(),
        "current_model": gateway.current_model(),
        "thinking_model": gateway.current_model(thinking_mode=True),
    }

"""Shared helpers for provider adapters (HTTP error mapping + thinking prompt)."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

import httpx

from modelgate.errors import ParseError, UpstreamError
from modelgate.providers.base import ChatMessage, ChatResult, PriceRate, estimate_tokens
from modelgate.streaming.decoder import split_segments

THINKING_PROMPT = """You are in Deep Thinking Mode. You MUST follow this EXACT format:

First, write "**Thinking:**" and then show your detailed reasoning process \
(analyze step by step, consider different approaches, explain your thought process).

Then, write "**Answer:**" and provide your final comprehensive answer.

CRITICAL: You must include BOTH sections. Do not skip the "**Answer:**" section.

Example format:
**Thinking:**
Let me break this down... [your reasoning here]

**Answer:**
Based on my analysis above... [your final answer here]

Now, answer this question following the format above:
{question}"""

_RETRYABLE_STATUS = {408, 409, 429, 500, 502, 503, 504}


def with_thinking_prompt(messages: list[ChatMessage]) -> list[ChatMessage]:
    """Wrap the last user turn in the Thinking/Answer format instruction."""
    wrapped = list(messages)
    for index in range(len(wrapped) - 1, -1, -1):
        message = wrapped[index]
        if message.role != "user":
            continue
        wrapped[index] = ChatMessage(
            role="user",
            content=THINKING_PROMPT.format(question=message.content),
            attachments=message.attachments,
        )
        break
    return wrapped


def normalize_base_url(base_url: str) -> str:
    return base_url.rstrip("/")


def coerce_text(value: object) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        chunks: list[str] = []
        for item in value:
            if isinstance(item, str):
                chunks.append(item)
            elif isinstance(item, dict):
                text = item.get("text")
                if isinstance(text, str):
                    chunks.append(text)
        return "".join(chunks)
    return ""


def _error_detail(body: str) -> str:
    try:
        payload = json.loads(body)
    except ValueError:
        return body.strip()[:300]
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return body.strip()[:300]


def raise_for_status(response: httpx.Response, provider: str, body: str | None = None) -> None:
    if response.status_code < 400:
        return
    detail = _error_detail(body if body is not None else response.text)
    raise UpstreamError(
        f"{provider} returned HTTP {response.status_code}: {detail}",
        provider=provider,
        status_code=response.status_code,
        retryable=response.status_code in _RETRYABLE_STATUS,
    )


def decode_object(response: httpx.Response, provider: str) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise ParseError(f"{provider} response is not JSON", provider=provider) from exc
    if not isinstance(payload, dict):
        raise ParseError(f"{provider} response is not an object", provider=provider)
    return payload


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    provider: str,
    **kwargs: Any,
) -> dict[str, Any]:
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.HTTPError as exc:
        raise UpstreamError(
            f"{provider} request failed: {type(exc).__name__}: {exc}", provider=provider
        ) from exc
    raise_for_status(response, provider)
    return decode_object(response, provider)


async def iter_stream_lines(
    client: httpx.AsyncClient,
    url: str,
    provider: str,
    **kwargs: Any,
) -> AsyncIterator[str]:
    """POST ``url`` and yield non-empty response lines as they arrive."""
    try:
        async with client.stream("POST", url, **kwargs) as response:
            if response.status_code >= 400:
                body = (await response.aread()).decode("utf-8", errors="replace")
                raise_for_status(response, provider, body)
            async for line in response.aiter_lines():
                if line.strip():
                    yield line
    except httpx.HTTPError as exc:
        raise UpstreamError(
            f"{provider} stream failed: {type(exc).__name__}: {exc}", provider=provider
        ) from exc


def parse_json_line(line: str, provider: str) -> dict[str, Any]:
    try:
        payload = json.loads(line)
    except json.JSONDecodeError as exc:
        raise ParseError(f"{provider} sent malformed stream data", provider=provider) from exc
    if not isinstance(payload, dict):
        raise ParseError(f"{provider} stream event is not an object", provider=provider)
    return payload


async def iter_sse_events(
    client: httpx.AsyncClient,
    url: str,
    provider: str,
    **kwargs: Any,
) -> AsyncIterator[dict[str, Any]]:
    """Yield decoded ``data:`` payloads from a server-sent-events response."""
    async with aclosing(iter_stream_lines(client, url, provider, **kwargs)) as lines:
        async for line in lines:
            if not line.startswith("data:"):
                continue
            data = line[len("data:"):].strip()
            if data == "[DONE]":
                return
            yield parse_json_line(data, provider)


def build_result(
    *,
    provider: str,
    model: str,
    rate: PriceRate,
    prompt_text: str,
    content: str,
    thinking_mode: bool,
    input_tokens: int | None = None,
    output_tokens: int | None = None,
    reasoning_tokens: int = 0,
) -> ChatResult:
    """Price a completed response, estimating token counts the backend omitted."""
    if input_tokens is None:
        input_tokens = estimate_tokens(prompt_text)
    if output_tokens is None:
        output_tokens = estimate_tokens(content)
    input_tokens = max(0, input_tokens)
    output_tokens = max(0, output_tokens)
    result = ChatResult(
        content=content,
        tokens=input_tokens + output_tokens,
        cost=rate.cost(input_tokens, output_tokens),
        provider=provider,
        model=model,
        reasoning_tokens=max(0, reasoning_tokens),
    )
    if thinking_mode:
        segments = split_segments(content, final=True)
        result.thinking = segments.thinking
        result.answer = segments.answer
    return result


def usage_int(usage: object, key: str) -> int | None:
    if not isinstance(usage, dict):
        return None
    value = usage.get(key)
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return int(value)

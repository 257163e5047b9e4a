import json
import os
from pathlib import Path

import httpx
import pytest

from modelgate.config import get_settings
from modelgate.db.migrations.runner import run_migrations


@pytest.fixture(autouse=True)
def test_env(tmp_path: Path):
    db = tmp_path / "test.db"
    os.environ["APP_ENV"] = "dev"
    os.environ["APP_DB"] = str(db)
    os.environ["GEMINI_API_KEY"] = "gemini-test-key"
    os.environ["OPENAI_API_KEY"] = "openai-test-key"
    os.environ["OLLAMA_BASE_URL"] = "http://ollama.test"
    os.environ["OLLAMA_MODEL"] = "llama2"
    os.environ["DEFAULT_AI_PROVIDER"] = "gemini"
    os.environ["AI_FALLBACK_ENABLED"] = "1"
    os.environ["PER_REQUEST_TOKEN_LIMIT"] = "8000"
    os.environ["DAILY_TOKEN_LIMIT"] = "100000"
    os.environ["WEB_CORS_ORIGINS"] = "http://localhost:5173"
    get_settings.cache_clear()
    run_migrations()
    yield
    get_settings.cache_clear()


def _sse(events: list[dict[str, object]]) -> str:
    lines = [f"data: {json.dumps(event)}" for event in events]
    return "\n\n".join([*lines, "data: [DONE]", ""])


class FakeBackends:
    """Canned Gemini, OpenAI and Ollama HTTP backends behind one MockTransport."""

    def __init__(self) -> None:
        self.gemini_status = 200
        self.openai_status = 200
        self.ollama_up = True
        self.ollama_models = ["llama2:latest"]
        self.reply = "Hello from the model"
        self.requests: list[httpx.Request] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def hosts(self) -> list[str]:
        return [request.url.host for request in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host == "generativelanguage.googleapis.com":
            return self._gemini(request)
        if host == "api.openai.com":
            return self._openai(request)
        if host == "ollama.test":
            return self._ollama(request)
        return httpx.Response(404)

    def _gemini(self, request: httpx.Request) -> httpx.Response:
        if self.gemini_status != 200:
            return httpx.Response(self.gemini_status, json={"error": {"message": "gemini down"}})
        path = request.url.path
        if path.endswith(":embedContent"):
            return httpx.Response(200, json={"embedding": {"values": [0.1, 0.2, 0.3]}})
        if path.endswith(":streamGenerateContent"):
            half = len(self.reply) // 2
            return httpx.Response(
                200,
                text=_sse(
                    [
                        {"candidates": [{"content": {"parts": [{"text": self.reply[:half]}]}}]},
                        {
                            "candidates": [{"content": {"parts": [{"text": self.reply[half:]}]}}],
                            "usageMetadata": {"promptTokenCount": 10, "candidatesTokenCount": 5},
                        },
                    ]
                ),
            )
        return httpx.Response(
            200,
            json={
                "candidates": [{"content": {"parts": [{"text": self.reply}]}}],
                "usageMetadata": {"promptTokenCount": 10, "candidatesTokenCount": 5},
            },
        )

    def _openai(self, request: httpx.Request) -> httpx.Response:
        if self.openai_status != 200:
            return httpx.Response(self.openai_status, json={"error": {"message": "openai down"}})
        if request.url.path.endswith("/embeddings"):
            return httpx.Response(200, json={"data": [{"embedding": [0.5, 0.5]}]})
        body = json.loads(request.content.decode("utf-8"))
        if body.get("stream"):
            return httpx.Response(
                200,
                text=_sse(
                    [
                        {"choices": [{"delta": {"content": self.reply}}]},
                        {"choices": [], "usage": {"prompt_tokens": 10, "completion_tokens": 5}},
                    ]
                ),
            )
        return httpx.Response(
            200,
            json={
                "choices": [{"message": {"role": "assistant", "content": self.reply}}],
                "usage": {"prompt_tokens": 10, "completion_tokens": 5},
            },
        )

    def _ollama(self, request: httpx.Request) -> httpx.Response:
        if not self.ollama_up:
            raise httpx.ConnectError("connection refused", request=request)
        path = request.url.path
        if path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": n} for n in self.ollama_models]})
        if path == "/api/embeddings":
            return httpx.Response(200, json={"embedding": [1.0, 2.0]})
        if path == "/api/generate":
            return httpx.Response(
                200, json={"response": self.reply, "prompt_eval_count": 4, "eval_count": 6}
            )
        body = json.loads(request.content.decode("utf-8"))
        if body.get("stream"):
            lines = [
                json.dumps({"message": {"content": self.reply}, "done": False}),
                json.dumps({"done": True, "prompt_eval_count": 4, "eval_count": 6}),
            ]
            return httpx.Response(200, text="\n".join(lines) + "\n")
        return httpx.Response(
            200,
            json={
                "message": {"role": "assistant", "content": self.reply},
                "prompt_eval_count": 4,
                "eval_count": 6,
            },
        )


@pytest.fixture
def backends() -> FakeBackends:
    return FakeBackends()

from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from openai import DEFAULT_TIMEOUT

from codereviewer.config import OllamaProviderConfig
from codereviewer.config import OpenAIProviderConfig
from codereviewer.llm.client import ModelBackendError
from codereviewer.llm.client import OllamaBackend
from codereviewer.llm.client import OpenAIBackend
from codereviewer.llm.client import build_model_backend


def _chat_completion(content: str | None) -> dict[str, object]:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 0,
        "model": "m",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
    }


def test_openai_backend_sends_json_mode_and_returns_text() -> None:
    seen: list[dict[str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/chat/completions"
        seen.append(json.loads(request.content))
        return httpx.Response(200, json=_chat_completion('{"comments": []}'))

    async def run() -> str:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            backend = OpenAIBackend(api_key="k", model="m", http_client=http_client, base_url="https://llm.example.com")
            return await backend.generate("system", "user")

    assert asyncio.run(run()) == '{"comments": []}'
    body = seen[0]
    assert body["response_format"] == {"type": "json_object"}
    assert body["temperature"] == 0.3
    assert body["messages"] == [{"role": "system", "content": "system"}, {"role": "user", "content": "user"}]


def test_openai_backend_none_content_is_empty_text() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_chat_completion(None))

    async def run() -> str:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            backend = OpenAIBackend(api_key="k", model="m", http_client=http_client, base_url="https://llm.example.com")
            return await backend.generate("s", "u")

    assert asyncio.run(run()) == ""


def test_openai_backend_api_error_is_not_retried() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(500, json={"error": {"message": "boom"}})

    async def run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            backend = OpenAIBackend(api_key="k", model="m", http_client=http_client, base_url="https://llm.example.com")
            await backend.generate("s", "u")

    with pytest.raises(ModelBackendError):
        asyncio.run(run())
    assert len(calls) == 1


def test_openai_backend_uses_sdk_default_timeout() -> None:
    http_client = httpx.AsyncClient(timeout=httpx.Timeout(30.0))
    backend = OpenAIBackend(api_key="k", model="m", http_client=http_client)
    assert backend._client.timeout == DEFAULT_TIMEOUT
    assert backend._client.timeout != httpx.Timeout(30.0)


def test_openai_backend_requires_api_key() -> None:
    with pytest.raises(ValueError):
        OpenAIBackend(api_key="", model="m", http_client=httpx.AsyncClient())


def test_ollama_backend_builds_single_prompt() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"response": '{"comments": []}', "done": True})

    async def run() -> str:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            backend = OllamaBackend(base_url="http://ollama:11434/", model="codellama:13b", http_client=http_client)
            return await backend.generate("SYSTEM", "USER")

    assert asyncio.run(run()) == '{"comments": []}'
    request = seen[0]
    assert str(request.url) == "http://ollama:11434/api/generate"
    body = json.loads(request.content)
    assert body["prompt"] == "SYSTEM\n\nUSER\n\nRemember to respond with valid JSON only."
    assert body["stream"] is False
    assert body["options"] == {"temperature": 0.3, "num_predict": 2000}
    assert request.extensions["timeout"]["read"] == 120.0


@pytest.mark.parametrize(
    "error",
    [httpx.ReadTimeout("slow"), httpx.ConnectError("refused")],
)
def test_ollama_backend_transport_errors_surface(error: httpx.HTTPError) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise error

    async def run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            backend = OllamaBackend(base_url="http://ollama:11434", model="m", http_client=http_client)
            await backend.generate("s", "u")

    with pytest.raises(ModelBackendError):
        asyncio.run(run())


def test_ollama_backend_http_error_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="model not found")

    async def run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            backend = OllamaBackend(base_url="http://ollama:11434", model="m", http_client=http_client)
            await backend.generate("s", "u")

    with pytest.raises(ModelBackendError, match="404"):
        asyncio.run(run())


def test_build_model_backend_dispatches_on_provider() -> None:
    http_client = httpx.AsyncClient()
    assert isinstance(build_model_backend(OllamaProviderConfig(), http_client), OllamaBackend)
    assert isinstance(build_model_backend(OpenAIProviderConfig(api_key="k"), http_client), OpenAIBackend)

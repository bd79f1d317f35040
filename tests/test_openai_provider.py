"""OpenAI adapter tests with a mocked HTTP transport."""

from __future__ import annotations

import json
from typing import List

import httpx
import pytest

from energy_assistant.errors import ProviderError
from energy_assistant.providers.base import ChatMessage, ChatOptions
from energy_assistant.providers.openai_provider import OpenAIProvider

BASE_URL = "https://openai.test/v1"


def _provider(handler, requests: List[httpx.Request] | None = None) -> OpenAIProvider:
    def _record(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return handler(request)

    provider = OpenAIProvider("sk-test-1234567890", base_url=BASE_URL)
    provider.inject_http_client_for_testing(
        httpx.AsyncClient(
            base_url=BASE_URL,
            headers={"Authorization": "Bearer sk-test-1234567890"},
            transport=httpx.MockTransport(_record),
        )
    )
    return provider


def test_requires_api_key():
    with pytest.raises(ValueError):
        OpenAIProvider("")


@pytest.mark.asyncio
async def test_curated_models():
    provider = _provider(lambda req: httpx.Response(200, json={"data": []}))
    models = await provider.get_available_models()
    assert [m.id for m in models] == ["gpt-3.5-turbo", "gpt-4", "gpt-4-turbo"]
    assert "complex-reasoning" in models[1].capabilities


@pytest.mark.asyncio
async def test_unhealthy_status_still_lists_models():
    provider = _provider(lambda req: httpx.Response(401, json={"error": "bad key"}))
    status = await provider.get_status()
    assert status.status == "unhealthy"
    assert status.error == "API key invalid or service unreachable"
    assert len(status.models) == 3


@pytest.mark.asyncio
async def test_chat_payload_and_usage():
    seen: List[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "choices": [{"message": {"role": "assistant", "content": "Hi!"}}],
                "usage": {"prompt_tokens": 20, "completion_tokens": 2},
            },
        )

    provider = _provider(_handler, seen)
    resp = await provider.chat(
        [ChatMessage("system", "be brief"), ChatMessage("user", "hello")],
        ChatOptions(model="gpt-4"),
    )
    assert resp.content == "Hi!"
    assert resp.model == "gpt-4"
    assert resp.tokens.input == 20 and resp.tokens.output == 2

    request = seen[0]
    assert request.url.path == "/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer sk-test-1234567890"
    body = json.loads(request.content)
    assert body["temperature"] == 0.7
    assert body["max_tokens"] == 500
    assert body["stream"] is False


@pytest.mark.asyncio
async def test_chat_empty_content_raises():
    provider = _provider(
        lambda req: httpx.Response(200, json={"choices": [{"message": {}}]})
    )
    with pytest.raises(ProviderError) as exc_info:
        await provider.chat([ChatMessage("user", "hi")], ChatOptions(model="gpt-4"))
    assert str(exc_info.value).startswith("OpenAI chat failed:")
    assert exc_info.value.provider == "openai"


@pytest.mark.asyncio
async def test_chat_http_error_raises_provider_error():
    provider = _provider(lambda req: httpx.Response(429, json={"error": "slow"}))
    with pytest.raises(ProviderError):
        await provider.chat([ChatMessage("user", "hi")], ChatOptions(model="gpt-4"))

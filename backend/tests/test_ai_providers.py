from __future__ import annotations

import json

import httpx
import pytest

from chatgate.config import Settings
from chatgate.domain_errors import GenerationError
from chatgate.services.ai_providers import (
    ChatTurn,
    GeminiProvider,
    OpenAICompatibleProvider,
    ProviderChain,
    build_provider_chain,
)

HISTORY = [
    ChatTurn(role="user", content="Hi"),
    ChatTurn(role="assistant", content="Hello!"),
    ChatTurn(role="user", content="How are you?"),
]


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_gemini_maps_roles_and_reads_candidate_text() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"candidates": [{"content": {"parts": [{"text": "Fine, thanks"}]}}]},
        )

    async with _client(handler) as client:
        provider = GeminiProvider(
            api_key="g-key",
            model="gemini-pro",
            api_base="https://gemini.test/v1beta",
            client=client,
        )
        reply = await provider.generate(HISTORY)

    assert reply == "Fine, thanks"
    request = seen[0]
    assert request.url.path == "/v1beta/models/gemini-pro:generateContent"
    assert request.headers["x-goog-api-key"] == "g-key"
    assert "key" not in request.url.params
    roles = [c["role"] for c in json.loads(request.content)["contents"]]
    assert roles == ["user", "model", "user"]


@pytest.mark.asyncio
async def test_openai_compatible_sends_bearer_and_reads_choice() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"choices": [{"message": {"content": "Sure"}}]})

    async with _client(handler) as client:
        provider = OpenAICompatibleProvider(
            api_key="o-key",
            model="gpt-test",
            base_url="https://openai.test/v1/",
            client=client,
        )
        reply = await provider.generate(HISTORY)

    assert reply == "Sure"
    assert seen[0].url == httpx.URL("https://openai.test/v1/chat/completions")
    assert seen[0].headers["authorization"] == "Bearer o-key"
    assert json.loads(seen[0].content)["messages"][1] == {"role": "assistant", "content": "Hello!"}


@pytest.mark.asyncio
async def test_chain_falls_back_to_next_provider_on_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "gemini.test":
            return httpx.Response(500, json={"error": "boom"})
        return httpx.Response(200, json={"choices": [{"message": {"content": "from fallback"}}]})

    async with _client(handler) as client:
        chain = ProviderChain([
            GeminiProvider(api_key="g", model="m", api_base="https://gemini.test", client=client),
            OpenAICompatibleProvider(api_key="o", model="m", base_url="https://openai.test", client=client),
        ])
        assert await chain.generate(HISTORY) == "from fallback"


@pytest.mark.asyncio
async def test_chain_raises_after_last_provider_fails() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "gemini.test":
            return httpx.Response(200, json={"candidates": []})
        raise httpx.ConnectTimeout("timed out", request=request)

    async with _client(handler) as client:
        chain = ProviderChain([
            GeminiProvider(api_key="g", model="m", api_base="https://gemini.test", client=client),
            OpenAICompatibleProvider(api_key="o", model="m", base_url="https://openai.test", client=client),
        ])
        with pytest.raises(GenerationError):
            await chain.generate(HISTORY)


@pytest.mark.asyncio
async def test_empty_chain_raises_generation_error() -> None:
    with pytest.raises(GenerationError):
        await ProviderChain([]).generate(HISTORY)


def test_build_chain_follows_order_and_skips_unconfigured() -> None:
    both = Settings(
        JWT_SECRET_KEY="x",
        GOOGLE_AI_KEY="g",
        OPENAI_API_KEY="o",
        AI_PROVIDER_ORDER="openai, gemini",
    )
    only_gemini = Settings(
        JWT_SECRET_KEY="x",
        GOOGLE_AI_KEY="g",
        OPENAI_API_KEY=None,
        AI_PROVIDER_ORDER="openai,gemini",
    )

    assert [p.name for p in build_provider_chain(both).providers] == ["openai", "gemini"]
    assert [p.name for p in build_provider_chain(only_gemini).providers] == ["gemini"]

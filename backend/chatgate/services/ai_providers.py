"""AI reply generation over third-party HTTP APIs."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

import httpx

from ..config import Settings
from ..domain_errors import GenerationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatTurn:
    role: str  # "user" | "assistant"
    content: str


class AIProvider(ABC):
    """Defines AI provider behavior."""

    name: str = "provider"

    def __init__(self, *, timeout: float = 30.0, client: httpx.AsyncClient | None = None):
        self.timeout = timeout
        self._client = client

    @abstractmethod
    async def generate(self, history: Sequence[ChatTurn]) -> str:
        """Generate the next assistant turn for the conversation."""
        raise NotImplementedError

    async def _post_json(self, url: str, *, json: dict, headers: dict | None = None) -> dict:
        if self._client is not None:
            response = await self._client.post(url, json=json, headers=headers)
            response.raise_for_status()
            return response.json()
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(url, json=json, headers=headers)
            response.raise_for_status()
            return response.json()


class GeminiProvider(AIProvider):
    """Google Generative Language API (generateContent)."""

    name = "gemini"

    def __init__(self, *, api_key: str, model: str, api_base: str, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.model = model
        self.api_base = api_base.rstrip("/")

    async def generate(self, history: Sequence[ChatTurn]) -> str:
        data = await self._post_json(
            f"{self.api_base}/models/{self.model}:generateContent",
            headers={"x-goog-api-key": self.api_key},
            json={
                "contents": [
                    {
                        "role": "model" if turn.role == "assistant" else "user",
                        "parts": [{"text": turn.content}],
                    }
                    for turn in history
                ]
            },
        )
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            raise ValueError("Gemini response has no candidate text")


class OpenAICompatibleProvider(AIProvider):
    """Any /chat/completions endpoint speaking the OpenAI wire format."""

    name = "openai"

    def __init__(self, *, api_key: str, model: str, base_url: str, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")

    async def generate(self, history: Sequence[ChatTurn]) -> str:
        data = await self._post_json(
            f"{self.base_url}/chat/completions",
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "model": self.model,
                "messages": [{"role": turn.role, "content": turn.content} for turn in history],
            },
        )
        try:
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise ValueError("Completion response has no message content")


class ProviderChain:
    """Tries providers in order; GenerationError after the last one fails."""

    def __init__(self, providers: Sequence[AIProvider]):
        self.providers = list(providers)

    async def generate(self, history: Sequence[ChatTurn]) -> str:
        if not self.providers:
            raise GenerationError("No AI provider configured")

        for provider in self.providers:
            try:
                reply = await provider.generate(history)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"AI provider {provider.name} failed: {e}")
                continue
            if reply and reply.strip():
                return reply
            logger.warning(f"AI provider {provider.name} returned an empty reply")

        raise GenerationError("All AI providers failed")


def build_provider_chain(settings: Settings, client: httpx.AsyncClient | None = None) -> ProviderChain:
    """Build the fallback chain from AI_PROVIDER_ORDER, skipping unconfigured providers."""
    providers: list[AIProvider] = []
    for name in settings.ai_provider_order:
        if name == "gemini" and settings.GOOGLE_AI_KEY:
            providers.append(
                GeminiProvider(
                    api_key=settings.GOOGLE_AI_KEY,
                    model=settings.GEMINI_MODEL,
                    api_base=settings.GEMINI_API_BASE,
                    timeout=settings.AI_REQUEST_TIMEOUT_SECONDS,
                    client=client,
                )
            )
        elif name == "openai" and settings.OPENAI_API_KEY:
            providers.append(
                OpenAICompatibleProvider(
                    api_key=settings.OPENAI_API_KEY,
                    model=settings.OPENAI_MODEL,
                    base_url=settings.OPENAI_BASE_URL,
                    timeout=settings.AI_REQUEST_TIMEOUT_SECONDS,
                    client=client,
                )
            )
        elif name not in {"gemini", "openai"}:
            logger.warning(f"Unknown AI provider in AI_PROVIDER_ORDER: {name}")
    return ProviderChain(providers)

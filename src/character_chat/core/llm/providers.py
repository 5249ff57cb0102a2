"""
LLM provider implementations for Character Chat.

Each adapter accepts a role-tagged message list and returns one normalized
completion. Vendors that carry persona instructions in a dedicated field
(Anthropic, Gemini) get the system message there instead of inline.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import httpx
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from ..exceptions import ProviderError
from ..protocols import ROLE_ASSISTANT, ROLE_SYSTEM

logger = logging.getLogger(__name__)


class LLMProvider(Enum):
    """Supported LLM providers."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    OLLAMA = "ollama"


@dataclass
class ChatMessage:
    """One role-tagged turn sent to a provider."""

    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ProviderResponse:
    """Normalized completion."""

    content: str
    tokens_used: int
    model: str


def estimate_tokens(text: str) -> int:
    """Rough token estimate for providers that do not report usage."""
    return math.ceil(len(text) / 4)


def split_system(messages: List[ChatMessage]) -> Tuple[str, List[ChatMessage]]:
    """Separate system messages from the turn history."""
    system_parts = [m.content for m in messages if m.role == ROLE_SYSTEM]
    turns = [m for m in messages if m.role != ROLE_SYSTEM]
    return "\n\n".join(system_parts), turns


class ProviderAdapter(ABC):
    """Abstract interface for LLM providers."""

    name: str = ""

    def __init__(self, temperature: float = 0.6, max_tokens: int = 2000):
        self.temperature = temperature
        self.max_tokens = max_tokens

    @abstractmethod
    async def invoke(
        self, messages: List[ChatMessage], model: str, **kwargs: Any
    ) -> ProviderResponse:
        """Generate one completion for the given turns."""
        pass

    async def close(self) -> None:
        """Release network clients."""
        return None

    def get_capabilities(self) -> Dict[str, Any]:
        """Get provider capabilities."""
        return {
            "provider": self.name,
            "supports_system_field": False,
            "requires_internet": True,
        }


class OpenAIProvider(ProviderAdapter):
    """OpenAI chat completions; the system message stays inline."""

    name = LLMProvider.OPENAI.value

    def __init__(
        self,
        api_key: Optional[str],
        temperature: float = 0.6,
        max_tokens: int = 2000,
        client: Optional[Any] = None,
    ):
        super().__init__(temperature, max_tokens)
        self.api_key = api_key
        self.client = client

    def _get_client(self) -> Any:
        """Get OpenAI client"""
        if self.client is None:
            if not self.api_key:
                raise ProviderError(self.name, "OPENAI_API_KEY is not configured")
            self.client = AsyncOpenAI(api_key=self.api_key)
        return self.client

    async def invoke(
        self, messages: List[ChatMessage], model: str, **kwargs: Any
    ) -> ProviderResponse:
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=model,
                messages=[m.to_dict() for m in messages],
                temperature=kwargs.get("temperature", self.temperature),
                max_tokens=kwargs.get("max_tokens", self.max_tokens),
            )
        except Exception as e:
            raise ProviderError(self.name, str(e)) from e

        if not response.choices:
            raise ProviderError(self.name, "response contained no choices")
        content = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        tokens = getattr(usage, "total_tokens", None) or estimate_tokens(content)
        return ProviderResponse(content=content, tokens_used=int(tokens), model=model)

    async def close(self) -> None:
        if self.client is not None and hasattr(self.client, "close"):
            await self.client.close()


class AnthropicProvider(ProviderAdapter):
    """Anthropic messages API; the system message goes to `system=`."""

    name = LLMProvider.ANTHROPIC.value

    def __init__(
        self,
        api_key: Optional[str],
        temperature: float = 0.6,
        max_tokens: int = 2000,
        client: Optional[Any] = None,
    ):
        super().__init__(temperature, max_tokens)
        self.api_key = api_key
        self.client = client

    def _get_client(self) -> Any:
        """Get Anthropic client"""
        if self.client is None:
            if not self.api_key:
                raise ProviderError(self.name, "ANTHROPIC_API_KEY is not configured")
            self.client = AsyncAnthropic(api_key=self.api_key)
        return self.client

    async def invoke(
        self, messages: List[ChatMessage], model: str, **kwargs: Any
    ) -> ProviderResponse:
        client = self._get_client()
        system, turns = split_system(messages)
        request: Dict[str, Any] = {
            "model": model,
            "max_tokens": kwargs.get("max_tokens", self.max_tokens),
            "temperature": kwargs.get("temperature", self.temperature),
            "messages": [m.to_dict() for m in turns],
        }
        if system:
            request["system"] = system

        try:
            response = await client.messages.create(**request)
        except Exception as e:
            raise ProviderError(self.name, str(e)) from e

        content = "".join(
            getattr(block, "text", "")
            for block in response.content
            if getattr(block, "type", "text") == "text"
        )
        usage = getattr(response, "usage", None)
        if usage is not None:
            tokens = int(usage.input_tokens) + int(usage.output_tokens)
        else:
            tokens = estimate_tokens(content)
        return ProviderResponse(content=content, tokens_used=tokens, model=model)

    def get_capabilities(self) -> Dict[str, Any]:
        capabilities = super().get_capabilities()
        capabilities["supports_system_field"] = True
        return capabilities

    async def close(self) -> None:
        if self.client is not None and hasattr(self.client, "close"):
            await self.client.close()


class GeminiProvider(ProviderAdapter):
    """Google Gemini over the REST generateContent endpoint."""

    name = LLMProvider.GEMINI.value

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        temperature: float = 0.6,
        max_tokens: int = 2000,
        thinking_budget: int = 256,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(temperature, max_tokens)
        self.api_key = api_key
        self.base_url = base_url
        self.thinking_budget = thinking_budget
        self.client = client

    def _get_client(self) -> httpx.AsyncClient:
        """Get async HTTP client"""
        if self.client is None:
            self.client = httpx.AsyncClient(base_url=self.base_url)
        return self.client

    @staticmethod
    def is_thinking_model(model: str) -> bool:
        """2.5 and 3.x models require a thinking configuration."""
        return "2.5" in model or "3-" in model

    def build_request(self, messages: List[ChatMessage], model: str, **kwargs: Any) -> Dict[str, Any]:
        """Translate turns into a generateContent body."""
        system, turns = split_system(messages)
        generation_config: Dict[str, Any] = {
            "temperature": kwargs.get("temperature", self.temperature),
            "maxOutputTokens": kwargs.get("max_tokens", self.max_tokens),
        }
        if self.is_thinking_model(model):
            generation_config["thinkingConfig"] = {"thinkingBudget": self.thinking_budget}

        body: Dict[str, Any] = {
            "contents": [
                {
                    "role": "model" if m.role == ROLE_ASSISTANT else "user",
                    "parts": [{"text": m.content}],
                }
                for m in turns
            ],
            "generationConfig": generation_config,
        }
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}
        return body

    async def invoke(
        self, messages: List[ChatMessage], model: str, **kwargs: Any
    ) -> ProviderResponse:
        if not self.api_key:
            raise ProviderError(self.name, "GOOGLE_GEMINI_API_KEY is not configured")

        client = self._get_client()
        try:
            response = await client.post(
                f"/models/{model}:generateContent",
                params={"key": self.api_key},
                json=self.build_request(messages, model, **kwargs),
            )
        except httpx.HTTPError as e:
            raise ProviderError(self.name, str(e)) from e

        if response.status_code >= 400:
            try:
                detail = response.json().get("error", {}).get("message")
            except ValueError:
                detail = None
            raise ProviderError(self.name, f"Gemini API error: {detail or response.status_code}")

        data = response.json()
        candidates = data.get("candidates") or []
        if not candidates:
            raise ProviderError(self.name, "Gemini API returned no candidates")

        parts = (candidates[0].get("content") or {}).get("parts") or []
        # Thinking models return their reasoning as parts flagged `thought`
        content = "".join(p.get("text", "") for p in parts if not p.get("thought"))
        usage = data.get("usageMetadata") or {}
        tokens = usage.get("totalTokenCount") or estimate_tokens(content)
        return ProviderResponse(content=content, tokens_used=int(tokens), model=model)

    def get_capabilities(self) -> Dict[str, Any]:
        capabilities = super().get_capabilities()
        capabilities["supports_system_field"] = True
        return capabilities

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()


class OllamaProvider(ProviderAdapter):
    """Ollama chat endpoint for local models; the system message stays inline."""

    name = LLMProvider.OLLAMA.value

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        temperature: float = 0.6,
        max_tokens: int = 2000,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(temperature, max_tokens)
        self.base_url = base_url
        self.client = client

    def _get_client(self) -> httpx.AsyncClient:
        """Get async HTTP client"""
        if self.client is None:
            self.client = httpx.AsyncClient(base_url=self.base_url)
        return self.client

    async def invoke(
        self, messages: List[ChatMessage], model: str, **kwargs: Any
    ) -> ProviderResponse:
        client = self._get_client()
        try:
            response = await client.post(
                "/api/chat",
                json={
                    "model": model,
                    "messages": [m.to_dict() for m in messages],
                    "stream": False,
                    "options": {
                        "temperature": kwargs.get("temperature", self.temperature),
                        "num_predict": kwargs.get("max_tokens", self.max_tokens),
                    },
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ProviderError(self.name, str(e)) from e

        data = response.json()
        content = str((data.get("message") or {}).get("content", ""))
        tokens = int(data.get("prompt_eval_count", 0)) + int(data.get("eval_count", 0))
        return ProviderResponse(
            content=content, tokens_used=tokens or estimate_tokens(content), model=model
        )

    def get_capabilities(self) -> Dict[str, Any]:
        capabilities = super().get_capabilities()
        capabilities["requires_internet"] = False
        return capabilities

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()

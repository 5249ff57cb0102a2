"""
Model routing for Character Chat.

Maps logical model ids to a provider, a concrete backend model name and a
point cost, and dispatches calls to the matching provider adapter.
"""

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..config import LLMConfig
from ..exceptions import ProviderError, ValidationError
from ..logging import get_logger
from ...observability.chat_metrics import ChatMetrics, get_chat_metrics
from .providers import (
    AnthropicProvider,
    ChatMessage,
    GeminiProvider,
    LLMProvider,
    OllamaProvider,
    OpenAIProvider,
    ProviderAdapter,
    ProviderResponse,
)

logger = get_logger(__name__)

GEMINI_FALLBACK_MODEL = "gemini-2.0-flash"
OLLAMA_PREFIX = "ollama:"


@dataclass(frozen=True)
class ModelRoute:
    """Where a logical model id is served and what it costs."""

    provider: str
    backend_model: str
    cost_per_1k_tokens: int


DEFAULT_ROUTES: Dict[str, ModelRoute] = {
    # OpenAI
    "gpt-3.5-turbo": ModelRoute("openai", "gpt-3.5-turbo", 2),
    "gpt-4": ModelRoute("openai", "gpt-4", 30),
    "gpt-4o": ModelRoute("openai", "gpt-4o", 20),
    "gpt-4o-mini": ModelRoute("openai", "gpt-4o-mini", 1),
    # Anthropic
    "claude-3-haiku-20240307": ModelRoute("anthropic", "claude-3-haiku-20240307", 2),
    "claude-3-5-sonnet-20241022": ModelRoute("anthropic", "claude-3-5-sonnet-20241022", 15),
    "claude-sonnet": ModelRoute("anthropic", "claude-3-5-sonnet-20241022", 15),
    "opus": ModelRoute("anthropic", "claude-3-opus-20240229", 75),
    # Google Gemini; preview models map to their -preview backend names
    "gemini-3-flash": ModelRoute("gemini", "gemini-3-flash-preview", 2),
    "gemini-3-pro": ModelRoute("gemini", "gemini-3-pro-preview", 10),
    "gemini-2.5-pro": ModelRoute("gemini", "gemini-2.5-pro", 8),
    "gemini-2.5-flash": ModelRoute("gemini", "gemini-2.5-flash", 2),
    "gemini-2.5-flash-lite": ModelRoute("gemini", "gemini-2.5-flash-lite", 1),
    "gemini-2.0-flash": ModelRoute("gemini", GEMINI_FALLBACK_MODEL, 2),
}


class ModelRegistry:
    """Routing table from logical model id to `ModelRoute`."""

    def __init__(self, routes: Optional[Dict[str, ModelRoute]] = None):
        self._routes: Dict[str, ModelRoute] = dict(routes or DEFAULT_ROUTES)

    def register(self, model_id: str, route: ModelRoute) -> None:
        """Add or replace a route."""
        self._routes[model_id] = route

    def model_ids(self) -> List[str]:
        return sorted(self._routes)

    def is_known(self, model_id: str) -> bool:
        try:
            self.resolve(model_id)
        except ValidationError:
            return False
        return True

    def resolve(self, model_id: str) -> ModelRoute:
        """Resolve a logical id; unknown ids raise `ValidationError`."""
        if model_id in self._routes:
            return self._routes[model_id]

        if model_id.startswith("gemini"):
            # Not yet generally available names fall back to a stable model
            fallback = self._routes[GEMINI_FALLBACK_MODEL]
            logger.warning(
                "Unknown Gemini model, using fallback",
                model=model_id,
                fallback=fallback.backend_model,
            )
            return fallback

        if model_id.startswith(OLLAMA_PREFIX) and len(model_id) > len(OLLAMA_PREFIX):
            return ModelRoute(LLMProvider.OLLAMA.value, model_id[len(OLLAMA_PREFIX):], 0)

        raise ValidationError("model", model_id, "unknown model id")

    def estimate_cost(self, model_id: str, tokens: int) -> int:
        """Points for `tokens` tokens, rounded up."""
        route = self.resolve(model_id)
        return math.ceil(tokens * route.cost_per_1k_tokens / 1000)


class ProviderRouter:
    """Dispatches a call to the adapter serving the model's provider."""

    def __init__(
        self,
        registry: ModelRegistry,
        adapters: Dict[str, ProviderAdapter],
        timeout_s: Optional[float] = 60.0,
        metrics: Optional[ChatMetrics] = None,
    ):
        self.registry = registry
        self.adapters = adapters
        self.timeout_s = timeout_s
        self.metrics = metrics or get_chat_metrics()

    def get_adapter(self, provider: str) -> ProviderAdapter:
        adapter = self.adapters.get(provider)
        if adapter is None:
            raise ProviderError(provider, "provider is not configured")
        return adapter

    async def invoke(
        self, messages: List[ChatMessage], model_id: str, **kwargs: Any
    ) -> ProviderResponse:
        """Invoke the routed provider once; every failure becomes `ProviderError`."""
        route = self.registry.resolve(model_id)
        adapter = self.get_adapter(route.provider)

        start_time = time.time()
        try:
            response = await asyncio.wait_for(
                adapter.invoke(messages, route.backend_model, **kwargs),
                timeout=self.timeout_s,
            )
        except ProviderError:
            self.metrics.record_provider_error(route.provider, model_id)
            raise
        except asyncio.TimeoutError as e:
            self.metrics.record_provider_error(route.provider, model_id)
            raise ProviderError(
                route.provider, f"request timed out after {self.timeout_s}s"
            ) from e
        except Exception as e:
            self.metrics.record_provider_error(route.provider, model_id)
            raise ProviderError(route.provider, str(e)) from e

        duration = time.time() - start_time
        self.metrics.record_provider_call(route.provider, model_id, duration)
        self.metrics.record_tokens(model_id, response.tokens_used)
        logger.log_processing_step(
            "provider_invoke",
            "provider_router",
            duration_ms=duration * 1000,
            provider=route.provider,
            model=route.backend_model,
            tokens=response.tokens_used,
        )
        return response

    async def close(self) -> None:
        """Close every adapter's network client."""
        for adapter in self.adapters.values():
            await adapter.close()


def create_adapters(config: LLMConfig) -> Dict[str, ProviderAdapter]:
    """Instantiate one adapter per provider from configuration."""
    common = {"temperature": config.temperature, "max_tokens": config.max_tokens}
    return {
        LLMProvider.OPENAI.value: OpenAIProvider(config.openai_api_key, **common),
        LLMProvider.ANTHROPIC.value: AnthropicProvider(config.anthropic_api_key, **common),
        LLMProvider.GEMINI.value: GeminiProvider(
            config.gemini_api_key,
            base_url=config.gemini_base_url,
            thinking_budget=config.gemini_thinking_budget,
            **common,
        ),
        LLMProvider.OLLAMA.value: OllamaProvider(config.ollama_base_url, **common),
    }


def create_provider_router(
    config: LLMConfig, metrics: Optional[ChatMetrics] = None
) -> ProviderRouter:
    """Build a router over the default routes and configured adapters."""
    router = ProviderRouter(
        ModelRegistry(),
        create_adapters(config),
        timeout_s=config.timeout_s,
        metrics=metrics,
    )
    logger.info(
        "Created provider router",
        providers=sorted(router.adapters),
        timeout_s=config.timeout_s,
    )
    return router

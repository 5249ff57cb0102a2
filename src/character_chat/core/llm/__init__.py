"""
LLM providers, model routing and prompt building for Character Chat.
"""

from .prompt_builder import LLMPromptBuilder, build_system_prompt
from .providers import (
    AnthropicProvider,
    ChatMessage,
    GeminiProvider,
    OllamaProvider,
    OpenAIProvider,
    ProviderAdapter,
    ProviderResponse,
)
from .registry import (
    ModelRegistry,
    ModelRoute,
    ProviderRouter,
    create_provider_router,
)

__all__ = [
    "ProviderAdapter",
    "ProviderResponse",
    "ChatMessage",
    "OpenAIProvider",
    "AnthropicProvider",
    "GeminiProvider",
    "OllamaProvider",
    "ModelRegistry",
    "ModelRoute",
    "ProviderRouter",
    "create_provider_router",
    "LLMPromptBuilder",
    "build_system_prompt",
]

"""
Configuration management for Character Chat.

Provides a clean public API for all configuration components.
"""

from .main import Config, Environment
from .runtime import (
    APIConfig,
    BillingConfig,
    ChatConfig,
    LLMConfig,
    MemoryConfig,
    PathsConfig,
    StreamingConfig,
)

__all__ = [
    "Config",
    "Environment",
    "APIConfig",
    "BillingConfig",
    "ChatConfig",
    "LLMConfig",
    "MemoryConfig",
    "PathsConfig",
    "StreamingConfig",
]

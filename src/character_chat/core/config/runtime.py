"""
Runtime configuration sections for Character Chat.

Contains the LLM, memory, chat, streaming, billing, path and API sections.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


def _env_key(*names: str) -> Optional[str]:
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return None


@dataclass
class LLMConfig:
    """Provider credentials and generation defaults."""

    default_model: str = "gemini-2.5-flash"
    temperature: float = 0.6
    max_tokens: int = 2000
    timeout_s: float = 60.0
    gemini_thinking_budget: int = 256

    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    ollama_base_url: str = "http://localhost:11434"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"

    def __post_init__(self) -> None:
        """Load API keys from environment variables."""
        if not self.openai_api_key:
            self.openai_api_key = _env_key("OPENAI_API_KEY")
        if not self.anthropic_api_key:
            self.anthropic_api_key = _env_key("ANTHROPIC_API_KEY")
        if not self.gemini_api_key:
            self.gemini_api_key = _env_key("GOOGLE_GEMINI_API_KEY", "GOOGLE_API_KEY")


@dataclass
class MemoryConfig:
    """Long-term semantic memory configuration."""

    enabled: bool = True
    dedup_threshold: float = 0.95
    retrieval_threshold: float = 0.7
    search_limit: int = 5
    default_importance: int = 5

    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536

    extraction_model: str = "gpt-4o-mini"
    extraction_temperature: float = 0.1

    # Summaries are written every N messages in a room
    summarization_enabled: bool = True
    summarize_every_n_messages: int = 20
    max_messages_per_summary: int = 20
    summary_model: str = "gpt-4o-mini"
    summary_temperature: float = 0.3


@dataclass
class ChatConfig:
    """Message ledger configuration."""

    max_message_length: int = 2000
    max_guidance_length: int = 500
    max_recent_messages: int = 10
    default_token_budget: int = 3000
    chars_per_token: int = 3
    estimated_tokens: int = 150
    last_message_preview_chars: int = 100
    default_user_name: str = "User"
    fallback_message: str = (
        "Sorry, a reply could not be generated right now. Please try again in a moment."
    )


@dataclass
class StreamingConfig:
    """Frame replay configuration for the streaming endpoint."""

    chunk_size: int = 24
    frame_delay_ms: int = 0


@dataclass
class BillingConfig:
    """Points collaborator configuration."""

    enabled: bool = False
    initial_balance: int = 0


@dataclass
class PathsConfig:
    """Filesystem paths for storage and character personas."""

    database_path: Path = field(default_factory=lambda: Path.cwd() / "data/chat.db")
    characters_dir: Path = field(
        default_factory=lambda: Path.cwd() / "configs/characters"
    )


@dataclass
class APIConfig:
    """HTTP server and client configuration."""

    host: str = "127.0.0.1"
    port: int = 8000
    base_url: str = "http://127.0.0.1:8000"
    client_timeout_s: float = 120.0
    log_level: str = "INFO"
    json_logs: bool = True

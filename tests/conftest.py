"""
Pytest configuration and fixtures for Character Chat.

Only external services are faked: LLM providers, the embedding endpoint and
the fact extraction call. Storage is a real SQLite file per test.
"""

import hashlib
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import pytest
from prometheus_client import CollectorRegistry

from character_chat.algorithms.conversational_ai.embeddings import EmbeddingGenerator
from character_chat.algorithms.conversational_ai.memory import (
    ConversationSummarizer,
    FactExtractor,
    MemoryStore,
)
from character_chat.characters import CharacterCatalog
from character_chat.core.config import Config, Environment
from character_chat.core.exceptions import EmbeddingError
from character_chat.core.llm.providers import ChatMessage, ProviderAdapter, ProviderResponse
from character_chat.core.llm.registry import ModelRegistry, ProviderRouter
from character_chat.core.persistence import SQLiteChatRepository
from character_chat.core.protocols import CharacterPersona, ExampleDialogue
from character_chat.observability import ChatMetrics
from character_chat.services.billing import BillingService, UnlimitedBilling
from character_chat.services.container import ChatServices, build_services
from character_chat.services.message_ledger import MessageLedger

EMBEDDING_DIMENSIONS = 64


class FakeProvider(ProviderAdapter):
    """Scripted provider: queued replies are used in order, exceptions are raised."""

    def __init__(self, name: str, default_reply: str = "Hello there.", tokens_used: int = 100):
        super().__init__()
        self.name = name
        self.default_reply = default_reply
        self.tokens_used = tokens_used
        self.replies: List[Union[str, BaseException]] = []
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def queue(self, *replies: Union[str, BaseException]) -> None:
        self.replies.extend(replies)

    async def invoke(
        self, messages: List[ChatMessage], model: str, **kwargs: Any
    ) -> ProviderResponse:
        self.calls.append({"messages": list(messages), "model": model, "kwargs": kwargs})
        reply = self.replies.pop(0) if self.replies else self.default_reply
        if isinstance(reply, BaseException):
            raise reply
        return ProviderResponse(content=reply, tokens_used=self.tokens_used, model=model)

    async def close(self) -> None:
        self.closed = True


class FakeEmbedder(EmbeddingGenerator):
    """Deterministic embeddings: explicit vectors first, else a hash-seeded one."""

    dimensions = EMBEDDING_DIMENSIONS

    def __init__(self, vectors: Optional[Dict[str, Sequence[float]]] = None):
        self.vectors: Dict[str, Sequence[float]] = dict(vectors or {})
        self.fail = False
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise EmbeddingError("embedding service unavailable")
        if text in self.vectors:
            return [float(v) for v in self.vectors[text]]
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
        rng = np.random.default_rng(seed)
        return rng.normal(size=EMBEDDING_DIMENSIONS).astype(float).tolist()


class FakeFactExtractor(FactExtractor):
    """Returns a fixed fact list for every exchange."""

    def __init__(self, facts: Optional[List[str]] = None):
        super().__init__(api_key=None)
        self.facts: List[str] = list(facts or [])
        self.calls: List[tuple] = []

    async def extract_important_facts(self, user_message: str, ai_response: str) -> List[str]:
        self.calls.append((user_message, ai_response))
        return list(self.facts)


def unit_vector(index: int, dimensions: int = EMBEDDING_DIMENSIONS) -> List[float]:
    vector = [0.0] * dimensions
    vector[index] = 1.0
    return vector


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    return tmp_path


@pytest.fixture
def test_config(temp_dir: Path) -> Config:
    cfg = Config(environment=Environment.TESTING, runtime_config_path=None)
    cfg.paths.database_path = temp_dir / "data" / "chat.db"
    cfg.paths.characters_dir = temp_dir / "characters"
    cfg.llm.openai_api_key = None
    cfg.llm.anthropic_api_key = None
    cfg.llm.gemini_api_key = None
    cfg.llm.timeout_s = 5.0
    cfg.api.json_logs = False
    return cfg


@pytest.fixture
def metrics() -> ChatMetrics:
    return ChatMetrics(registry=CollectorRegistry())


@pytest.fixture
def repository(test_config: Config) -> SQLiteChatRepository:
    return SQLiteChatRepository(test_config.paths.database_path)


@pytest.fixture
def eru() -> CharacterPersona:
    return CharacterPersona(
        character_id="eru",
        name="Eru",
        appearance="Silver hair, a long travelling cloak.",
        personality="Curious and warm.",
        speech_style="Soft, polite speech that ends sentences with a gentle question.",
        tone="Playful",
        system_prompt="Call {{user}} a fellow traveller.",
        example_dialogues=[ExampleDialogue(user="Hi", assistant="*waves* Hello, traveller?")],
        enable_memory=True,
        recommended_model="gemini-2.5-flash",
    )


@pytest.fixture
def hale() -> CharacterPersona:
    return CharacterPersona(
        character_id="captain-hale",
        name="Captain Hale",
        personality="Gruff but fair.",
        speech_style="Short, clipped sentences.",
        enable_memory=False,
    )


@pytest.fixture
def catalog(eru: CharacterPersona, hale: CharacterPersona) -> CharacterCatalog:
    catalog = CharacterCatalog()
    catalog.register(eru)
    catalog.register(hale)
    return catalog


@pytest.fixture
def providers() -> Dict[str, FakeProvider]:
    return {name: FakeProvider(name) for name in ("openai", "anthropic", "gemini", "ollama")}


@pytest.fixture
def router(providers: Dict[str, FakeProvider], metrics: ChatMetrics) -> ProviderRouter:
    return ProviderRouter(ModelRegistry(), dict(providers), timeout_s=5.0, metrics=metrics)


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def fact_extractor() -> FakeFactExtractor:
    return FakeFactExtractor()


@pytest.fixture
def memory_store(
    repository: SQLiteChatRepository,
    embedder: FakeEmbedder,
    fact_extractor: FakeFactExtractor,
    test_config: Config,
    metrics: ChatMetrics,
) -> MemoryStore:
    return MemoryStore(
        repository,
        embedder,
        config=test_config.memory,
        fact_extractor=fact_extractor,
        metrics=metrics,
    )


@pytest.fixture
def summarizer(
    repository: SQLiteChatRepository,
    memory_store: MemoryStore,
    router: ProviderRouter,
    test_config: Config,
) -> ConversationSummarizer:
    return ConversationSummarizer(repository, memory_store, router, config=test_config.memory)


@pytest.fixture
def billing() -> BillingService:
    return UnlimitedBilling()


@pytest.fixture
def ledger(
    repository: SQLiteChatRepository,
    catalog: CharacterCatalog,
    router: ProviderRouter,
    test_config: Config,
    memory_store: MemoryStore,
    summarizer: ConversationSummarizer,
    billing: BillingService,
    metrics: ChatMetrics,
) -> MessageLedger:
    return MessageLedger(
        repository,
        catalog,
        router,
        config=test_config,
        memory_store=memory_store,
        summarizer=summarizer,
        billing=billing,
        metrics=metrics,
    )


@pytest.fixture
def services(
    test_config: Config,
    repository: SQLiteChatRepository,
    catalog: CharacterCatalog,
    router: ProviderRouter,
    embedder: FakeEmbedder,
    fact_extractor: FakeFactExtractor,
    billing: BillingService,
    metrics: ChatMetrics,
) -> ChatServices:
    return build_services(
        test_config,
        repository=repository,
        catalog=catalog,
        router=router,
        embedder=embedder,
        fact_extractor=fact_extractor,
        billing=billing,
        metrics=metrics,
    )

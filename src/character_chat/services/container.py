"""
Service wiring for Character Chat.

Builds the repository, catalog, provider router, memory subsystem and
ledger from a `Config`, for the web app and the CLI.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..algorithms.conversational_ai.embeddings import (
    EmbeddingGenerator,
    OpenAIEmbeddingGenerator,
)
from ..algorithms.conversational_ai.memory import (
    ConversationSummarizer,
    FactExtractor,
    MemoryStore,
)
from ..characters import CharacterCatalog
from ..core.config import Config
from ..core.llm.registry import ProviderRouter, create_provider_router
from ..core.persistence import ChatRepository, SQLiteChatRepository
from ..observability.chat_metrics import ChatMetrics, get_chat_metrics
from .billing import BillingService, create_billing
from .message_ledger import MessageLedger

logger = logging.getLogger(__name__)


@dataclass
class ChatServices:
    """Everything a front end needs to serve chat requests."""

    config: Config
    repository: ChatRepository
    catalog: CharacterCatalog
    router: ProviderRouter
    memory_store: MemoryStore
    billing: BillingService
    ledger: MessageLedger

    async def shutdown(self) -> None:
        """Let detached memory work finish, then close provider clients."""
        await self.ledger.drain_background_tasks()
        await self.router.close()


def build_services(
    config: Config,
    repository: Optional[ChatRepository] = None,
    catalog: Optional[CharacterCatalog] = None,
    router: Optional[ProviderRouter] = None,
    embedder: Optional[EmbeddingGenerator] = None,
    fact_extractor: Optional[FactExtractor] = None,
    billing: Optional[BillingService] = None,
    metrics: Optional[ChatMetrics] = None,
) -> ChatServices:
    """Create the service graph; any collaborator can be injected."""
    metrics = metrics or get_chat_metrics()
    repository = repository or SQLiteChatRepository(config.paths.database_path)
    catalog = catalog or CharacterCatalog(config.paths.characters_dir)
    router = router or create_provider_router(config.llm, metrics=metrics)
    billing = billing or create_billing(config.billing)

    embedder = embedder or OpenAIEmbeddingGenerator(
        config.llm.openai_api_key,
        model=config.memory.embedding_model,
        dimensions=config.memory.embedding_dimensions,
    )
    fact_extractor = fact_extractor or FactExtractor(
        config.llm.openai_api_key,
        model=config.memory.extraction_model,
        temperature=config.memory.extraction_temperature,
    )
    memory_store = MemoryStore(
        repository,
        embedder,
        config=config.memory,
        fact_extractor=fact_extractor,
        metrics=metrics,
    )
    summarizer = ConversationSummarizer(repository, memory_store, router, config=config.memory)

    ledger = MessageLedger(
        repository,
        catalog,
        router,
        config=config,
        memory_store=memory_store,
        summarizer=summarizer,
        billing=billing,
        metrics=metrics,
    )
    logger.info(
        f"Chat services ready: {len(catalog)} characters, database {config.paths.database_path}"
    )
    return ChatServices(
        config=config,
        repository=repository,
        catalog=catalog,
        router=router,
        memory_store=memory_store,
        billing=billing,
        ledger=ledger,
    )

"""
Long-term semantic memory per room.

Saves deduplicated facts with their embeddings and retrieves the ones most
similar to a query. Every failure in this module is logged and contained:
memory enriches a reply but never blocks or fails one.
"""

import asyncio
from typing import List, Optional

from ....core.config import MemoryConfig
from ....core.logging import get_logger
from ....core.persistence import ChatRepository
from ....core.protocols import MEMORY_TYPE_FACT, MemorySearchResult
from ....observability.chat_metrics import ChatMetrics, get_chat_metrics
from ..embeddings import EmbeddingGenerator
from .fact_extractor import FactExtractor

logger = get_logger(__name__)


class MemoryStore:
    """Saves, deduplicates and retrieves room memories."""

    def __init__(
        self,
        repository: ChatRepository,
        embedder: EmbeddingGenerator,
        config: Optional[MemoryConfig] = None,
        fact_extractor: Optional[FactExtractor] = None,
        metrics: Optional[ChatMetrics] = None,
    ):
        self.repository = repository
        self.embedder = embedder
        self.config = config or MemoryConfig()
        self.fact_extractor = fact_extractor
        self.metrics = metrics or get_chat_metrics()

    async def save_memory(
        self,
        room_id: int,
        content: str,
        importance: Optional[int] = None,
        memory_type: str = MEMORY_TYPE_FACT,
        message_range_start: Optional[int] = None,
        message_range_end: Optional[int] = None,
    ) -> bool:
        """Embed and store a memory unless a near-duplicate already exists.

        Returns True when a row was inserted. Duplicates and failures return
        False; nothing is raised to the caller.
        """
        content = content.strip()
        if not content:
            return False
        if importance is None:
            importance = self.config.default_importance

        try:
            embedding = await self.embedder.embed(content)
        except Exception as e:
            logger.error("Failed to embed memory", room_id=room_id, error=str(e))
            self.metrics.record_memory_failure("embed")
            return False

        try:
            duplicates = await asyncio.to_thread(
                self.repository.match_room_memories,
                room_id, embedding, self.config.dedup_threshold, 1
            )
        except Exception as e:
            # A failed duplicate check must not lose the fact
            logger.error("Duplicate check failed", room_id=room_id, error=str(e))
            self.metrics.record_memory_failure("dedup")
            duplicates = []

        if duplicates:
            logger.info(
                "Duplicate memory skipped",
                room_id=room_id,
                similarity=round(duplicates[0].similarity, 4),
                content=content,
            )
            self.metrics.record_memory_deduplicated()
            return False

        try:
            await asyncio.to_thread(
                self.repository.insert_memory,
                room_id,
                content,
                embedding,
                importance=importance,
                memory_type=memory_type,
                message_range_start=message_range_start,
                message_range_end=message_range_end,
            )
        except Exception as e:
            logger.error("Failed to save memory", room_id=room_id, error=str(e))
            self.metrics.record_memory_failure("insert")
            return False

        self.metrics.record_memory_saved(memory_type)
        logger.debug("Memory saved", room_id=room_id, memory_type=memory_type)
        return True

    async def search_memories(
        self, room_id: int, query: str, limit: Optional[int] = None
    ) -> List[MemorySearchResult]:
        """Return up to `limit` memories of this room above the retrieval threshold."""
        if limit is None:
            limit = self.config.search_limit

        try:
            embedding = await self.embedder.embed(query)
            results = await asyncio.to_thread(
                self.repository.match_room_memories,
                room_id, embedding, self.config.retrieval_threshold, limit
            )
        except Exception as e:
            logger.error("Failed to search memories", room_id=room_id, error=str(e))
            self.metrics.record_memory_failure("search")
            return []

        results = [r for r in results if r.room_id == room_id]
        results.sort(key=lambda r: r.similarity, reverse=True)
        return results[:limit]

    async def remember_exchange(
        self, room_id: int, user_message: str, ai_response: str
    ) -> int:
        """Extract durable facts from one exchange and save each of them.

        Returns the number of memories inserted.
        """
        if self.fact_extractor is None:
            return 0

        facts = await self.fact_extractor.extract_important_facts(
            user_message, ai_response
        )
        saved = 0
        for fact in facts:
            if await self.save_memory(room_id, fact):
                saved += 1

        if facts:
            logger.info(
                "Facts extracted from exchange",
                room_id=room_id,
                extracted=len(facts),
                saved=saved,
            )
        return saved

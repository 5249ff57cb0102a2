"""
Tests for semantic room memory: deduplication, retrieval and failure containment.
"""

import threading
from types import SimpleNamespace
from typing import Any, Dict

import pytest

from character_chat.algorithms.conversational_ai.embeddings import (
    OpenAIEmbeddingGenerator,
    cosine_similarity,
)
from character_chat.algorithms.conversational_ai.memory import FactExtractor, MemoryStore
from character_chat.core.exceptions import ConfigurationError, EmbeddingError
from character_chat.core.persistence import SQLiteChatRepository

from conftest import FakeEmbedder, FakeFactExtractor, unit_vector


class TestSaveMemory:
    """Write path with the near-duplicate check."""

    @pytest.mark.asyncio
    async def test_duplicate_is_suppressed(
        self, repository: SQLiteChatRepository, memory_store: MemoryStore
    ) -> None:
        """Test the same fact saved twice is stored once."""
        room = repository.create_room("alice", "eru")

        assert await memory_store.save_memory(room.room_id, "User likes cats") is True
        assert await memory_store.save_memory(room.room_id, "User likes cats") is False

        assert len(repository.list_memories(room.room_id)) == 1

    @pytest.mark.asyncio
    async def test_korean_fact_with_equivalent_embeddings(
        self, repository: SQLiteChatRepository, memory_store: MemoryStore, embedder: FakeEmbedder
    ) -> None:
        """Test two saves in room 2 with near-identical embeddings keep one row."""
        repository.create_room("someone", "eru")
        room = repository.create_room("alice", "eru")
        assert room.room_id == 2
        embedder.vectors["사용자는 고양이를 좋아한다"] = unit_vector(0)
        embedder.vectors["사용자는 고양이를 좋아한다!"] = [0.999, 0.01] + [0.0] * 62

        await memory_store.save_memory(2, "사용자는 고양이를 좋아한다")
        await memory_store.save_memory(2, "사용자는 고양이를 좋아한다!")

        assert len(repository.list_memories(2)) == 1

    @pytest.mark.asyncio
    async def test_dissimilar_facts_are_both_kept(
        self, repository: SQLiteChatRepository, memory_store: MemoryStore, embedder: FakeEmbedder
    ) -> None:
        """Test similarity below 0.95 inserts a new row."""
        room = repository.create_room("alice", "eru")
        embedder.vectors["User likes cats"] = unit_vector(0)
        embedder.vectors["User owns a cat"] = [0.9, 0.43] + [0.0] * 62

        await memory_store.save_memory(room.room_id, "User likes cats")
        await memory_store.save_memory(room.room_id, "User owns a cat")

        assert len(repository.list_memories(room.room_id)) == 2

    @pytest.mark.asyncio
    async def test_dedup_is_per_room(
        self, repository: SQLiteChatRepository, memory_store: MemoryStore
    ) -> None:
        """Test the same fact may exist once in each room."""
        first = repository.create_room("alice", "eru")
        second = repository.create_room("alice", "captain-hale")

        await memory_store.save_memory(first.room_id, "User likes cats")
        await memory_store.save_memory(second.room_id, "User likes cats")

        assert len(repository.list_memories(first.room_id)) == 1
        assert len(repository.list_memories(second.room_id)) == 1

    @pytest.mark.asyncio
    async def test_embedding_failure_is_contained(
        self, repository: SQLiteChatRepository, memory_store: MemoryStore, embedder: FakeEmbedder
    ) -> None:
        """Test an embedding error returns False and stores nothing."""
        room = repository.create_room("alice", "eru")
        embedder.fail = True

        assert await memory_store.save_memory(room.room_id, "User likes cats") is False
        assert repository.list_memories(room.room_id) == []

    @pytest.mark.asyncio
    async def test_duplicate_check_failure_still_inserts(
        self,
        repository: SQLiteChatRepository,
        memory_store: MemoryStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test a failed duplicate check does not lose the fact."""
        room = repository.create_room("alice", "eru")

        def broken_match(*args: Any, **kwargs: Any) -> None:
            raise RuntimeError("vector index offline")

        monkeypatch.setattr(repository, "match_room_memories", broken_match)

        assert await memory_store.save_memory(room.room_id, "User likes cats") is True
        assert len(repository.list_memories(room.room_id)) == 1

    @pytest.mark.asyncio
    async def test_blank_content_is_ignored(
        self, repository: SQLiteChatRepository, memory_store: MemoryStore, embedder: FakeEmbedder
    ) -> None:
        """Test whitespace-only content is not embedded."""
        room = repository.create_room("alice", "eru")
        assert await memory_store.save_memory(room.room_id, "   ") is False
        assert embedder.calls == []


class TestSearchMemories:
    """Read path above the retrieval threshold."""

    @pytest.mark.asyncio
    async def test_ranked_and_thresholded(
        self, repository: SQLiteChatRepository, memory_store: MemoryStore, embedder: FakeEmbedder
    ) -> None:
        """Test results are above 0.7 and ordered by similarity."""
        room = repository.create_room("alice", "eru")
        repository.insert_memory(room.room_id, "likes cats", unit_vector(0))
        repository.insert_memory(room.room_id, "has a cat named Momo", [0.8, 0.6] + [0.0] * 62)
        repository.insert_memory(room.room_id, "works nights", [0.6, 0.8] + [0.0] * 62)
        embedder.vectors["cats?"] = unit_vector(0)

        results = await memory_store.search_memories(room.room_id, "cats?")

        assert [r.content for r in results] == ["likes cats", "has a cat named Momo"]
        assert results[0].similarity >= results[1].similarity >= 0.7

    @pytest.mark.asyncio
    async def test_never_returns_other_rooms(
        self, repository: SQLiteChatRepository, memory_store: MemoryStore, embedder: FakeEmbedder
    ) -> None:
        """Test room 1 search only sees room 1 memories."""
        room_one = repository.create_room("alice", "eru")
        room_two = repository.create_room("bob", "eru")
        repository.insert_memory(room_one.room_id, "alice likes cats", unit_vector(0))
        repository.insert_memory(room_two.room_id, "bob likes cats", unit_vector(0))
        embedder.vectors["cats"] = unit_vector(0)

        results = await memory_store.search_memories(room_one.room_id, "cats")

        assert room_one.room_id == 1
        assert [r.room_id for r in results] == [1]

    @pytest.mark.asyncio
    async def test_limit(
        self, repository: SQLiteChatRepository, memory_store: MemoryStore, embedder: FakeEmbedder
    ) -> None:
        """Test at most `limit` results are returned."""
        room = repository.create_room("alice", "eru")
        for i in range(4):
            repository.insert_memory(room.room_id, f"fact {i}", unit_vector(0))
        embedder.vectors["q"] = unit_vector(0)

        assert len(await memory_store.search_memories(room.room_id, "q", limit=2)) == 2

    @pytest.mark.asyncio
    async def test_failure_returns_empty(
        self, repository: SQLiteChatRepository, memory_store: MemoryStore, embedder: FakeEmbedder
    ) -> None:
        """Test search never raises to its caller."""
        room = repository.create_room("alice", "eru")
        repository.insert_memory(room.room_id, "likes cats", unit_vector(0))
        embedder.fail = True

        assert await memory_store.search_memories(room.room_id, "cats") == []

    @pytest.mark.asyncio
    async def test_lookup_leaves_event_loop(
        self,
        repository: SQLiteChatRepository,
        memory_store: MemoryStore,
        embedder: FakeEmbedder,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test the similarity lookup runs on a worker thread."""
        room = repository.create_room("alice", "eru")
        repository.insert_memory(room.room_id, "likes cats", unit_vector(0))
        embedder.vectors["cats"] = unit_vector(0)
        loop_thread = threading.get_ident()
        threads = []
        match = repository.match_room_memories

        def recording_match(*args: Any, **kwargs: Any) -> Any:
            threads.append(threading.get_ident())
            return match(*args, **kwargs)

        monkeypatch.setattr(repository, "match_room_memories", recording_match)

        results = await memory_store.search_memories(room.room_id, "cats")

        assert [r.content for r in results] == ["likes cats"]
        assert threads and loop_thread not in threads


class TestRememberExchange:
    """Fact extraction handed to save_memory."""

    @pytest.mark.asyncio
    async def test_saves_each_extracted_fact(
        self,
        repository: SQLiteChatRepository,
        memory_store: MemoryStore,
        fact_extractor: FakeFactExtractor,
    ) -> None:
        """Test every new fact is stored and duplicates are not counted."""
        room = repository.create_room("alice", "eru")
        fact_extractor.facts = ["User's name is Mina", "User likes cats", "User likes cats"]

        saved = await memory_store.remember_exchange(room.room_id, "I'm Mina, I love cats", "Nice!")

        assert saved == 2
        assert len(repository.list_memories(room.room_id)) == 2

    @pytest.mark.asyncio
    async def test_without_extractor(self, repository: SQLiteChatRepository, embedder: FakeEmbedder) -> None:
        """Test nothing happens when no extractor is configured."""
        store = MemoryStore(repository, embedder)
        assert await store.remember_exchange(1, "hi", "hello") == 0


class TestFactExtractor:
    """Structured-output fact extraction."""

    @staticmethod
    def _client(content: Any = None, error: Exception = None) -> Any:
        seen: Dict[str, Any] = {}

        async def create(**kwargs: Any) -> Any:
            seen.update(kwargs)
            if error:
                raise error
            return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])

        client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
        client.seen = seen
        return client

    @pytest.mark.asyncio
    async def test_parses_facts(self) -> None:
        """Test facts are parsed, trimmed and non-strings dropped."""
        client = self._client('{"facts": [" User likes cats ", 3, "", "User is a nurse"]}')
        extractor = FactExtractor(None, client=client)

        facts = await extractor.extract_important_facts("I love cats", "Me too!")

        assert facts == ["User likes cats", "User is a nurse"]
        assert client.seen["response_format"] == {"type": "json_object"}
        assert client.seen["temperature"] == 0.1
        assert "I love cats" in client.seen["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        """Test malformed output yields no facts."""
        extractor = FactExtractor(None, client=self._client("not json"))
        assert await extractor.extract_important_facts("a", "b") == []

    @pytest.mark.asyncio
    async def test_api_error(self) -> None:
        """Test API failures yield no facts."""
        extractor = FactExtractor(None, client=self._client(error=RuntimeError("down")))
        assert await extractor.extract_important_facts("a", "b") == []

    @pytest.mark.asyncio
    async def test_without_credentials(self) -> None:
        """Test extraction is skipped without an API key."""
        assert await FactExtractor(None).extract_important_facts("a", "b") == []


class TestEmbeddings:
    """OpenAI embedding generator and similarity helper."""

    @pytest.mark.asyncio
    async def test_embed(self) -> None:
        """Test newlines are flattened and the vector returned."""
        seen: Dict[str, Any] = {}

        async def create(**kwargs: Any) -> Any:
            seen.update(kwargs)
            return SimpleNamespace(data=[SimpleNamespace(embedding=[0.1, 0.2])])

        client = SimpleNamespace(embeddings=SimpleNamespace(create=create))
        generator = OpenAIEmbeddingGenerator(None, dimensions=2, client=client)

        assert await generator.embed("line one\nline two") == [0.1, 0.2]
        assert seen["input"] == "line one line two"
        assert seen["dimensions"] == 2

    @pytest.mark.asyncio
    async def test_errors(self) -> None:
        """Test missing key and API failure map to typed errors."""
        with pytest.raises(ConfigurationError):
            await OpenAIEmbeddingGenerator(None).embed("x")

        async def create(**kwargs: Any) -> Any:
            raise RuntimeError("rate limited")

        client = SimpleNamespace(embeddings=SimpleNamespace(create=create))
        with pytest.raises(EmbeddingError):
            await OpenAIEmbeddingGenerator(None, client=client).embed("x")

    def test_cosine_similarity(self) -> None:
        """Test identical, orthogonal and zero vectors."""
        assert cosine_similarity([1, 0], [2, 0]) == pytest.approx(1.0)
        assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
        assert cosine_similarity([0, 0], [1, 0]) == 0.0

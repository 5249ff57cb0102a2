"""
Tests for periodic conversation summaries.
"""

import pytest

from character_chat.algorithms.conversational_ai.memory import ConversationSummarizer
from character_chat.algorithms.conversational_ai.memory.conversation_summarizer import (
    summary_importance,
)
from character_chat.core.config import Config
from character_chat.core.exceptions import ProviderError
from character_chat.core.persistence import SQLiteChatRepository
from character_chat.core.protocols import MEMORY_TYPE_SUMMARY, ROLE_ASSISTANT, ROLE_USER

from conftest import FakeEmbedder


def _fill(repository: SQLiteChatRepository, room_id: int, count: int, start_seq: int = 1) -> None:
    for i in range(count):
        role = ROLE_USER if i % 2 == 0 else ROLE_ASSISTANT
        repository.insert_message(room_id, "alice", role, f"line {start_seq + i}", start_seq + i)


class TestSummaryImportance:
    """Importance grows with batch size."""

    def test_importance_scale(self) -> None:
        """Test base 5, +1 per 4 messages, capped at 10."""
        assert summary_importance(0) == 5
        assert summary_importance(8) == 7
        assert summary_importance(40) == 10


class TestConversationSummarizer:
    """Threshold checks and stored summary memories."""

    @pytest.fixture(autouse=True)
    def small_threshold(self, test_config: Config) -> None:
        test_config.memory.summarize_every_n_messages = 4
        test_config.memory.max_messages_per_summary = 4

    def test_below_threshold(
        self, repository: SQLiteChatRepository, summarizer: ConversationSummarizer
    ) -> None:
        """Test no summary is due before N messages."""
        room = repository.create_room("alice", "eru")
        _fill(repository, room.room_id, 3)
        assert summarizer.should_summarize(room.room_id) is False

    @pytest.mark.asyncio
    async def test_summary_stored_with_range(
        self,
        repository: SQLiteChatRepository,
        summarizer: ConversationSummarizer,
        providers: dict,
    ) -> None:
        """Test a summary memory covers the summarized message ids."""
        room = repository.create_room("alice", "eru")
        _fill(repository, room.room_id, 4)
        providers["openai"].queue("Mina and Eru talked about cats.")

        text = await summarizer.maybe_summarize(room.room_id, "Eru")

        assert text == "Mina and Eru talked about cats."
        messages = repository.list_messages(room.room_id)
        summaries = repository.list_memories(room.room_id, memory_type=MEMORY_TYPE_SUMMARY)
        assert len(summaries) == 1
        assert summaries[0].message_range_start == messages[0].message_id
        assert summaries[0].message_range_end == messages[-1].message_id
        assert summaries[0].importance == 6
        prompt = providers["openai"].calls[0]["messages"][0].content
        assert "User: line 1" in prompt
        assert "Eru: line 2" in prompt

    @pytest.mark.asyncio
    async def test_next_batch_starts_after_last_summary(
        self,
        repository: SQLiteChatRepository,
        summarizer: ConversationSummarizer,
        providers: dict,
    ) -> None:
        """Test only unsummarized messages count toward the next summary."""
        room = repository.create_room("alice", "eru")
        _fill(repository, room.room_id, 4)
        providers["openai"].queue("First batch.", "Second batch.")
        await summarizer.maybe_summarize(room.room_id, "Eru")

        assert await summarizer.maybe_summarize(room.room_id, "Eru") is None

        _fill(repository, room.room_id, 4, start_seq=5)
        assert await summarizer.maybe_summarize(room.room_id, "Eru") == "Second batch."
        latest = repository.list_memories(room.room_id, memory_type=MEMORY_TYPE_SUMMARY)[0]
        assert latest.message_range_end == repository.list_messages(room.room_id)[-1].message_id

    @pytest.mark.asyncio
    async def test_provider_failure_is_contained(
        self,
        repository: SQLiteChatRepository,
        summarizer: ConversationSummarizer,
        providers: dict,
    ) -> None:
        """Test a failed summary call stores nothing and raises nothing."""
        room = repository.create_room("alice", "eru")
        _fill(repository, room.room_id, 4)
        providers["openai"].queue(ProviderError("openai", "down"))

        assert await summarizer.maybe_summarize(room.room_id, "Eru") is None
        assert repository.list_memories(room.room_id) == []

    @pytest.mark.asyncio
    async def test_disabled(
        self,
        repository: SQLiteChatRepository,
        summarizer: ConversationSummarizer,
        test_config: Config,
    ) -> None:
        """Test summarization can be switched off."""
        test_config.memory.summarization_enabled = False
        room = repository.create_room("alice", "eru")
        _fill(repository, room.room_id, 4)
        assert await summarizer.maybe_summarize(room.room_id, "Eru") is None


    @pytest.mark.asyncio
    async def test_unstored_summary_is_not_requested_again(
        self,
        repository: SQLiteChatRepository,
        summarizer: ConversationSummarizer,
        providers: dict,
        embedder: FakeEmbedder,
    ) -> None:
        """Test a batch whose summary could not be stored is not re-sent."""
        room = repository.create_room("alice", "eru")
        _fill(repository, room.room_id, 4)
        embedder.fail = True

        for _ in range(5):
            assert await summarizer.maybe_summarize(room.room_id, "Eru") is None

        assert len(providers["openai"].calls) == 1
        assert repository.list_memories(room.room_id) == []
        last_id = repository.list_messages(room.room_id)[-1].message_id
        assert repository.get_summary_checkpoint(room.room_id) == last_id
        assert summarizer.should_summarize(room.room_id) is False

    @pytest.mark.asyncio
    async def test_duplicate_summary_still_advances(
        self,
        repository: SQLiteChatRepository,
        summarizer: ConversationSummarizer,
        providers: dict,
    ) -> None:
        """Test a summary rejected as a near-duplicate does not block the next batch."""
        room = repository.create_room("alice", "eru")
        _fill(repository, room.room_id, 4)
        providers["openai"].queue("They chatted.", "They chatted.", "They planned a trip.")
        await summarizer.maybe_summarize(room.room_id, "Eru")

        _fill(repository, room.room_id, 4, start_seq=5)
        assert await summarizer.maybe_summarize(room.room_id, "Eru") is None
        assert await summarizer.maybe_summarize(room.room_id, "Eru") is None
        assert len(providers["openai"].calls) == 2

        _fill(repository, room.room_id, 4, start_seq=9)
        assert await summarizer.maybe_summarize(room.room_id, "Eru") == "They planned a trip."
        prompt = providers["openai"].calls[2]["messages"][0].content
        assert "line 9" in prompt
        assert "line 5" not in prompt

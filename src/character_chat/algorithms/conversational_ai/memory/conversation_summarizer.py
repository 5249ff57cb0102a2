"""
LLM-based conversation summarization.

Every N messages in a room the next batch of unsummarized messages is
compressed into a short summary, stored as a `summary` memory so it takes
part in retrieval like any extracted fact.
"""

from typing import TYPE_CHECKING, List, Optional

from ....core.config import MemoryConfig
from ....core.exceptions import PersistenceError
from ....core.llm.providers import ChatMessage
from ....core.logging import ProcessingTimer, get_logger
from ....core.persistence import ChatRepository
from ....core.protocols import MEMORY_TYPE_SUMMARY, ROLE_USER, Message
from .memory_store import MemoryStore

if TYPE_CHECKING:
    from ....core.llm.registry import ProviderRouter

logger = get_logger(__name__)

SUMMARY_PROMPT = """You are a conversation summarizer. Your task is to create a concise summary of the following conversation between a user and an AI character named "{character_name}".

Focus on:
- Main topics discussed
- Important facts or information shared
- Key emotional moments or developments
- Character personality insights
- Any decisions or commitments made

Keep the summary concise (3-5 sentences) and factual.

Conversation:
{conversation}

Summary:"""


def summary_importance(message_count: int) -> int:
    """More messages make a more important summary, capped at 10."""
    return min(10, 5 + message_count // 4)


class ConversationSummarizer:
    """Creates periodic room summaries through the provider router."""

    def __init__(
        self,
        repository: ChatRepository,
        memory_store: MemoryStore,
        router: "ProviderRouter",
        config: Optional[MemoryConfig] = None,
    ):
        """Initialize with storage, memory store, router and thresholds."""
        self.repository = repository
        self.memory_store = memory_store
        self.router = router
        self.config = config or MemoryConfig()

    def _last_summarized_message_id(self, room_id: int) -> Optional[int]:
        """Later of the attempt checkpoint and the newest stored summary range."""
        ends = [self.repository.get_summary_checkpoint(room_id)]
        summaries = self.repository.list_memories(room_id, memory_type=MEMORY_TYPE_SUMMARY)
        ends.extend(s.message_range_end for s in summaries)
        known = [end for end in ends if end is not None]
        return max(known) if known else None

    def should_summarize(self, room_id: int) -> bool:
        """Check whether enough unsummarized messages have accumulated."""
        threshold = self.config.summarize_every_n_messages
        if self.repository.count_messages(room_id) < threshold:
            return False

        last_end = self._last_summarized_message_id(room_id)
        if last_end is None:
            return True
        return self.repository.count_messages(room_id, since_message_id=last_end + 1) >= threshold

    def _messages_to_summarize(self, room_id: int) -> List[Message]:
        last_end = self._last_summarized_message_id(room_id)
        start_id = last_end + 1 if last_end is not None else 0
        pending = [
            m for m in self.repository.list_messages(room_id) if m.message_id >= start_id
        ]
        return pending[: self.config.max_messages_per_summary]

    @staticmethod
    def _format_conversation(messages: List[Message], character_name: str) -> str:
        lines = []
        for message in messages:
            speaker = "User" if message.role == ROLE_USER else character_name
            lines.append(f"{speaker}: {message.content}")
        return "\n".join(lines)

    async def create_summary(self, room_id: int, character_name: str) -> Optional[str]:
        """Summarize the next batch of messages and store it as a memory.

        Errors are logged; the summary text is returned when one was stored.
        """
        messages = self._messages_to_summarize(room_id)
        if not messages:
            return None

        prompt = SUMMARY_PROMPT.format(
            character_name=character_name,
            conversation=self._format_conversation(messages, character_name),
        )

        timer = ProcessingTimer(logger, "summary_generation", "summarizer", room_id=room_id)
        try:
            with timer:
                response = await self.router.invoke(
                    [ChatMessage(role=ROLE_USER, content=prompt)],
                    self.config.summary_model,
                    temperature=self.config.summary_temperature,
                )
        except Exception as e:
            logger.error("Error creating conversation summary", room_id=room_id, error=str(e))
            return None

        # Each answered batch is sent to the provider at most once
        try:
            self.repository.set_summary_checkpoint(room_id, messages[-1].message_id)
        except PersistenceError as e:
            logger.error("Failed to record summary checkpoint", room_id=room_id, error=str(e))

        summary_text = response.content.strip()
        if not summary_text:
            return None

        saved = await self.memory_store.save_memory(
            room_id,
            summary_text,
            importance=summary_importance(len(messages)),
            memory_type=MEMORY_TYPE_SUMMARY,
            message_range_start=messages[0].message_id,
            message_range_end=messages[-1].message_id,
        )
        logger.info(
            "Created conversation summary",
            room_id=room_id,
            message_count=len(messages),
            stored=saved,
            duration_ms=timer.duration_ms,
        )
        return summary_text if saved else None

    async def maybe_summarize(self, room_id: int, character_name: str) -> Optional[str]:
        """Create a summary when the room has crossed the threshold."""
        if not self.config.summarization_enabled:
            return None
        try:
            needed = self.should_summarize(room_id)
        except Exception as e:
            logger.error("Summary check failed", room_id=room_id, error=str(e))
            return None
        if not needed:
            return None
        return await self.create_summary(room_id, character_name)

"""
Storage contract for rooms, messages and room memories.

The ledger, branch manager and memory store only talk to this interface;
`SQLiteChatRepository` is the bundled implementation.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from ..protocols import ChatRoom, Memory, MemorySearchResult, Message


class ChatRepository(ABC):
    """Abstract persistence collaborator."""

    # Rooms

    @abstractmethod
    def create_room(self, user_id: str, character_id: str, title: str = "") -> ChatRoom:
        """Create a room for a user/character pair."""

    @abstractmethod
    def get_room(self, room_id: int) -> Optional[ChatRoom]:
        """Fetch a room by id."""

    @abstractmethod
    def find_room(self, user_id: str, character_id: str) -> Optional[ChatRoom]:
        """Fetch the room for a user/character pair, if any."""

    @abstractmethod
    def list_rooms(self, user_id: str) -> List[ChatRoom]:
        """List a user's rooms, most recently active first."""

    @abstractmethod
    def update_room(self, room: ChatRoom) -> None:
        """Persist room aggregates and the active branch."""

    @abstractmethod
    def get_summary_checkpoint(self, room_id: int) -> Optional[int]:
        """Id of the last message a summary attempt covered, if any."""

    @abstractmethod
    def set_summary_checkpoint(self, room_id: int, message_id: int) -> None:
        """Record that messages up to `message_id` have been summarized."""

    # Messages

    @abstractmethod
    def insert_message(
        self,
        room_id: int,
        user_id: str,
        role: str,
        content: str,
        sequence_number: int,
        parent_message_id: Optional[int] = None,
        branch_name: str = "main",
        tokens_used: int = 0,
        cost: int = 0,
    ) -> Message:
        """Insert a message and return it with its id."""

    @abstractmethod
    def get_message(self, message_id: int) -> Optional[Message]:
        """Fetch a message by id, deleted or not."""

    @abstractmethod
    def list_messages(
        self,
        room_id: int,
        include_deleted: bool = False,
        active_only: bool = False,
    ) -> List[Message]:
        """List a room's messages ordered by sequence number."""

    @abstractmethod
    def max_sequence_number(self, room_id: int) -> int:
        """Highest sequence number in a room, 0 for an empty room."""

    @abstractmethod
    def count_messages(self, room_id: int, since_message_id: int = 0) -> int:
        """Count all stored messages in a room with id >= since_message_id."""

    @abstractmethod
    def set_message_deleted(self, message_id: int, is_deleted: bool) -> None:
        """Toggle the soft-delete flag."""

    @abstractmethod
    def set_active_messages(self, room_id: int, message_ids: Iterable[int]) -> None:
        """Mark exactly the given messages of a room as the active branch."""

    @abstractmethod
    def soft_delete_branch(self, room_id: int, branch_name: str) -> int:
        """Soft-delete every message of a branch; returns the number affected."""

    # Memories

    @abstractmethod
    def insert_memory(
        self,
        room_id: int,
        content: str,
        embedding: List[float],
        importance: int = 5,
        memory_type: str = "fact",
        message_range_start: Optional[int] = None,
        message_range_end: Optional[int] = None,
    ) -> Memory:
        """Append a memory row."""

    @abstractmethod
    def list_memories(self, room_id: int, memory_type: Optional[str] = None) -> List[Memory]:
        """List a room's memories, newest first."""

    @abstractmethod
    def match_room_memories(
        self,
        room_id: int,
        query_embedding: List[float],
        similarity_threshold: float,
        max_results: int,
    ) -> List[MemorySearchResult]:
        """Rank a room's memories by cosine similarity to the query."""

"""
Data model for Character Chat.

Defines the records shared by the ledger, the memory store, the HTTP layer
and the streaming client.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_SYSTEM = "system"

MAIN_BRANCH = "main"

MEMORY_TYPE_FACT = "fact"
MEMORY_TYPE_SUMMARY = "summary"

MODEL_STATUS_STABLE = "stable"
MODEL_STATUS_UNSTABLE = "unstable"
MODEL_STATUS_DOWN = "down"


def utc_now() -> str:
    """Current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Message:
    """A persisted chat message. Never hard-deleted."""

    message_id: int
    room_id: int
    user_id: str
    role: str
    content: str
    sequence_number: int
    parent_message_id: Optional[int] = None
    branch_name: str = MAIN_BRANCH
    is_active_branch: bool = True
    is_deleted: bool = False
    tokens_used: int = 0
    cost: int = 0
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ChatRoom:
    """A persistent one user / one character conversation."""

    room_id: int
    user_id: str
    character_id: str
    title: str = ""
    last_message: Optional[str] = None
    last_message_at: Optional[str] = None
    message_count: int = 0
    active_branch: str = MAIN_BRANCH
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Memory:
    """A durable fact (or summary) about the user, scoped to one room."""

    memory_id: int
    room_id: int
    content: str
    embedding: List[float]
    importance: int = 5
    memory_type: str = MEMORY_TYPE_FACT
    message_range_start: Optional[int] = None
    message_range_end: Optional[int] = None
    created_at: str = field(default_factory=utc_now)


@dataclass
class MemorySearchResult:
    """A memory ranked by similarity to a query."""

    memory_id: int
    room_id: int
    content: str
    importance: int
    similarity: float
    memory_type: str = MEMORY_TYPE_FACT

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ExampleDialogue:
    """One few-shot user/character exchange."""

    user: str
    assistant: str


@dataclass
class CharacterPersona:
    """Read-only character definition consumed by the prompt builder."""

    character_id: str
    name: str
    appearance: str = ""
    description: str = ""
    personality: str = ""
    role: str = ""
    world_setting: str = ""
    relationship: str = ""
    speech_style: str = ""
    tone: str = ""
    system_prompt: str = ""
    example_dialogues: List[ExampleDialogue] = field(default_factory=list)
    enable_memory: bool = True
    recommended_model: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CharacterPersona":
        """Build a persona from a mapping (YAML or JSON)."""
        dialogues = [
            d if isinstance(d, ExampleDialogue) else ExampleDialogue(
                user=str(d.get("user", "")), assistant=str(d.get("assistant", ""))
            )
            for d in data.get("example_dialogues") or []
        ]
        return cls(
            character_id=str(data["character_id"]),
            name=str(data["name"]),
            appearance=data.get("appearance") or "",
            description=data.get("description") or "",
            personality=data.get("personality") or "",
            role=data.get("role") or "",
            world_setting=data.get("world_setting") or "",
            relationship=data.get("relationship") or "",
            speech_style=data.get("speech_style") or "",
            tone=data.get("tone") or "",
            system_prompt=data.get("system_prompt") or "",
            example_dialogues=dialogues,
            enable_memory=bool(data.get("enable_memory", True)),
            recommended_model=data.get("recommended_model"),
        )


@dataclass
class StreamingSession:
    """Client-side state for one room. Reset on revalidation."""

    room_id: Optional[int] = None
    message_list: List[Dict[str, Any]] = field(default_factory=list)
    is_streaming: bool = False
    streaming_buffer: str = ""
    model_status: str = MODEL_STATUS_STABLE
    suggested_actions: List[str] = field(default_factory=list)

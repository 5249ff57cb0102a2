"""
Branch management over the flag-based message ledger.

A branch is the set of messages sharing a `branch_name`; the visible
conversation is the set flagged `is_active_branch`. Rollback and branch
switches only toggle flags and never remove rows.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..core.exceptions import NotFoundError, ValidationError
from ..core.persistence import ChatRepository
from ..core.protocols import MAIN_BRANCH, ChatRoom, Message

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "branch-"


@dataclass
class BranchInfo:
    """Summary of one branch in a room."""

    branch_name: str
    message_count: int
    last_message_id: int
    created_at: str
    is_active: bool

    def to_dict(self) -> Dict[str, object]:
        return {
            "branch_name": self.branch_name,
            "message_count": self.message_count,
            "last_message_id": self.last_message_id,
            "created_at": self.created_at,
            "is_active": self.is_active,
        }


@dataclass
class MessageNode:
    """A message and its continuations."""

    message: Message
    children: List["MessageNode"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "message_id": self.message.message_id,
            "role": self.message.role,
            "content": self.message.content,
            "sequence_number": self.message.sequence_number,
            "parent_message_id": self.message.parent_message_id,
            "branch_name": self.message.branch_name,
            "is_active_branch": self.message.is_active_branch,
            "children": [child.to_dict() for child in self.children],
        }


class BranchManager:
    """Creates, switches and deletes branches for a room."""

    def __init__(self, repository: ChatRepository):
        self.repository = repository

    def _room(self, room_id: int) -> ChatRoom:
        room = self.repository.get_room(room_id)
        if room is None:
            raise NotFoundError("room", room_id)
        return room

    def get_active_branch_messages(self, room_id: int) -> List[Message]:
        """Visible conversation: active, not deleted, in sequence order."""
        return self.repository.list_messages(room_id, active_only=True)

    def get_room_branches(self, room_id: int) -> List[BranchInfo]:
        """Branches that still hold at least one non-deleted message."""
        room = self._room(room_id)
        grouped: Dict[str, List[Message]] = {}
        for message in self.repository.list_messages(room_id):
            grouped.setdefault(message.branch_name or MAIN_BRANCH, []).append(message)

        branches = [
            BranchInfo(
                branch_name=name,
                message_count=len(messages),
                last_message_id=max(m.message_id for m in messages),
                created_at=min(m.created_at for m in messages),
                is_active=name == room.active_branch,
            )
            for name, messages in grouped.items()
        ]
        branches.sort(key=lambda b: (b.branch_name != MAIN_BRANCH, b.created_at))
        return branches

    def message_path(self, message_id: int) -> List[int]:
        """Ids from the root to `message_id`, following parent pointers.

        A soft-deleted ancestor is replaced by the live message occupying the
        same slot (same parent and sequence number), which is how a
        regenerated reply takes over its predecessor's position.
        """
        path: List[int] = []
        seen = set()
        current: Optional[int] = message_id
        while current is not None and current not in seen:
            seen.add(current)
            message = self.repository.get_message(current)
            if message is None:
                break
            if message.is_deleted:
                message = self._live_replacement(message) or message
            path.append(message.message_id)
            current = message.parent_message_id
        path.reverse()
        return path

    def _live_replacement(self, message: Message) -> Optional[Message]:
        for candidate in self.repository.list_messages(message.room_id):
            if (
                candidate.sequence_number == message.sequence_number
                and candidate.parent_message_id == message.parent_message_id
                and candidate.role == message.role
            ):
                return candidate
        return None

    def _activate_path(self, room: ChatRoom, tip_id: Optional[int], branch_name: str) -> None:
        path = self.message_path(tip_id) if tip_id is not None else []
        self.repository.set_active_messages(room.room_id, path)
        room.active_branch = branch_name
        self.repository.update_room(room)

    def next_branch_name(self, room_id: int) -> str:
        """First `branch-N` not used by any message, deleted or not."""
        used = {
            m.branch_name
            for m in self.repository.list_messages(room_id, include_deleted=True)
        }
        room = self.repository.get_room(room_id)
        if room is not None:
            used.add(room.active_branch)
        n = 1
        while f"{BRANCH_PREFIX}{n}" in used:
            n += 1
        return f"{BRANCH_PREFIX}{n}"

    def create_branch_from_message(self, room_id: int, message_id: int) -> str:
        """Make `message_id` the tip of a new active branch; returns its name."""
        room = self._room(room_id)
        message = self.repository.get_message(message_id)
        if message is None or message.room_id != room_id or message.is_deleted:
            raise NotFoundError("message", message_id)

        branch_name = self.next_branch_name(room_id)
        self._activate_path(room, message_id, branch_name)
        logger.info(f"Created {branch_name} in room {room_id} at message {message_id}")
        return branch_name

    def switch_branch(self, room_id: int, branch_name: str) -> List[Message]:
        """Activate the ancestor path of the branch's latest message."""
        room = self._room(room_id)
        members = [
            m for m in self.repository.list_messages(room_id) if m.branch_name == branch_name
        ]
        if not members:
            if branch_name == MAIN_BRANCH:
                self._activate_path(room, None, branch_name)
                return []
            raise NotFoundError("branch", branch_name)

        tip = max(members, key=lambda m: (m.sequence_number, m.message_id))
        self._activate_path(room, tip.message_id, branch_name)
        logger.info(f"Switched room {room_id} to {branch_name}")
        return self.get_active_branch_messages(room_id)

    def delete_branch(self, room_id: int, branch_name: str) -> int:
        """Soft-delete a branch's messages; `main` and the active branch are protected."""
        room = self._room(room_id)
        if branch_name == MAIN_BRANCH:
            raise ValidationError("branch_name", branch_name, "the main branch cannot be deleted")
        if branch_name == room.active_branch:
            raise ValidationError(
                "branch_name", branch_name, "switch away from the active branch first"
            )

        count = self.repository.soft_delete_branch(room_id, branch_name)
        if count == 0:
            raise NotFoundError("branch", branch_name)
        logger.info(f"Deleted {branch_name} in room {room_id} ({count} messages)")
        return count

    def get_message_tree(self, room_id: int) -> List[MessageNode]:
        """Non-deleted messages arranged by parent pointer."""
        messages = self.repository.list_messages(room_id)
        nodes = {m.message_id: MessageNode(m) for m in messages}
        roots: List[MessageNode] = []
        for message in messages:
            node = nodes[message.message_id]
            parent = nodes.get(message.parent_message_id) if message.parent_message_id else None
            if parent is None:
                roots.append(node)
            else:
                parent.children.append(node)
        return roots

    def get_message_siblings(self, message_id: int) -> List[MessageNode]:
        """Alternatives that share a parent with the message, the message included."""
        message = self.repository.get_message(message_id)
        if message is None or message.is_deleted:
            raise NotFoundError("message", message_id)
        return [
            MessageNode(m)
            for m in self.repository.list_messages(message.room_id)
            if m.parent_message_id == message.parent_message_id
        ]

"""
Tests for the ledger's collaborators: billing, context selection, the
persona catalog and branch management.
"""

from pathlib import Path
from typing import List

import pytest

from character_chat.characters import CharacterCatalog
from character_chat.core.config import BillingConfig, ChatConfig
from character_chat.core.exceptions import (
    ConfigurationError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from character_chat.core.persistence import SQLiteChatRepository
from character_chat.core.protocols import MAIN_BRANCH, ROLE_ASSISTANT, ROLE_USER, Message
from character_chat.services.billing import (
    InMemoryPointsBilling,
    UnlimitedBilling,
    create_billing,
)
from character_chat.services.branch_manager import BranchManager
from character_chat.services.context_builder import ContextBuilder


def _message(i: int, role: str, content: str) -> Message:
    return Message(
        message_id=i, room_id=1, user_id="alice", role=role, content=content, sequence_number=i
    )


class TestBilling:
    """Balance checks, debits and refunds."""

    def test_in_memory_points(self) -> None:
        """Test debit and refund move the balance."""
        billing = InMemoryPointsBilling(initial_balance=50)
        assert billing.debit("alice", 20) == 30
        assert billing.refund("alice", 5) == 35
        assert billing.get_balance("bob") == 50

    def test_insufficient_balance(self) -> None:
        """Test a short balance raises with both amounts."""
        billing = InMemoryPointsBilling(balances={"alice": 2})
        with pytest.raises(InsufficientBalanceError) as exc_info:
            billing.check_balance("alice", 3)
        assert exc_info.value.current_balance == 2
        assert exc_info.value.required == 3
        with pytest.raises(InsufficientBalanceError):
            billing.debit("alice", 3)
        assert billing.get_balance("alice") == 2

    def test_negative_debit_rejected(self) -> None:
        """Test a negative amount is a validation error."""
        with pytest.raises(ValidationError):
            InMemoryPointsBilling(initial_balance=10).debit("alice", -1)

    def test_create_billing(self) -> None:
        """Test configuration picks the implementation."""
        assert isinstance(create_billing(BillingConfig()), UnlimitedBilling)
        billing = create_billing(BillingConfig(enabled=True, initial_balance=7))
        assert billing.get_balance("alice") == 7


class TestContextBuilder:
    """Recent-history selection under a token budget."""

    def test_reduces_two_at_a_time(self) -> None:
        """Test the window shrinks by two messages until it fits."""
        builder = ContextBuilder(
            ChatConfig(max_recent_messages=10, default_token_budget=100, chars_per_token=1)
        )
        history = [
            _message(i, ROLE_USER if i % 2 else ROLE_ASSISTANT, "x" * 30) for i in range(1, 13)
        ]

        recent = builder.select_recent(history, "unlisted-model")

        assert [m.message_id for m in recent] == [11, 12]

    def test_small_history_is_kept(self) -> None:
        """Test everything is kept when it fits."""
        history = [_message(1, ROLE_USER, "Hi"), _message(2, ROLE_ASSISTANT, "Hello")]
        assert ContextBuilder().select_recent(history, "gpt-4") == history

    def test_build_appends_user_turn_and_guidance(self) -> None:
        """Test system first, history, then the user turn with OOC guidance."""
        history = [_message(1, ROLE_USER, "Hi"), _message(2, ROLE_ASSISTANT, "Hello")]

        messages = ContextBuilder().build(
            "SYSTEM", history, "Tell me a story", "gpt-4o", guidance="make it shorter"
        )

        assert [m.role for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[0].content == "SYSTEM"
        assert messages[-1].content == "Tell me a story\n\n(OOC: make it shorter)"

    def test_blank_guidance_is_ignored(self) -> None:
        """Test whitespace guidance leaves the user turn unchanged."""
        messages = ContextBuilder().build("SYSTEM", [], "Hi", "gpt-4o", guidance="  ")
        assert messages[-1].content == "Hi"


class TestCharacterCatalog:
    """YAML persona loading."""

    def test_load_directory(self, temp_dir: Path) -> None:
        """Test personas load from YAML with the file stem as default id."""
        (temp_dir / "eru.yaml").write_text(
            "name: Eru\n"
            "speech_style: Soft\n"
            "example_dialogues:\n"
            "  - user: Hi\n"
            "    assistant: Hello?\n",
            encoding="utf-8",
        )
        (temp_dir / "notes.txt").write_text("ignored", encoding="utf-8")

        catalog = CharacterCatalog(temp_dir)

        assert len(catalog) == 1
        persona = catalog.get("eru")
        assert persona.name == "Eru"
        assert persona.example_dialogues[0].assistant == "Hello?"
        assert persona.enable_memory is True

    def test_missing_name(self, temp_dir: Path) -> None:
        """Test a persona without a name is a configuration error."""
        (temp_dir / "nameless.yaml").write_text("personality: shy\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            CharacterCatalog(temp_dir)

    def test_unknown_character(self, catalog: CharacterCatalog) -> None:
        """Test lookups of unknown ids raise NotFoundError."""
        with pytest.raises(NotFoundError):
            catalog.get("nobody")
        assert [p.character_id for p in catalog.list()] == ["captain-hale", "eru"]

    def test_missing_directory(self, temp_dir: Path) -> None:
        """Test a missing directory yields an empty catalog."""
        assert len(CharacterCatalog(temp_dir / "absent")) == 0


class TestBranchManager:
    """Flag-based branches over persisted messages."""

    @pytest.fixture
    def conversation(self, repository: SQLiteChatRepository) -> List[Message]:
        room = repository.create_room("alice", "eru")
        u1 = repository.insert_message(room.room_id, "alice", ROLE_USER, "Hi", 1)
        a1 = repository.insert_message(
            room.room_id, "alice", ROLE_ASSISTANT, "Hello?", 2, parent_message_id=u1.message_id
        )
        u2 = repository.insert_message(
            room.room_id, "alice", ROLE_USER, "Story?", 3, parent_message_id=a1.message_id
        )
        a2 = repository.insert_message(
            room.room_id, "alice", ROLE_ASSISTANT, "Once...", 4, parent_message_id=u2.message_id
        )
        return [u1, a1, u2, a2]

    def test_branch_from_message(
        self, repository: SQLiteChatRepository, conversation: List[Message]
    ) -> None:
        """Test rollback activates the ancestor path and keeps every row."""
        manager = BranchManager(repository)
        u1, a1, _, _ = conversation

        branch = manager.create_branch_from_message(1, a1.message_id)

        assert branch == "branch-1"
        visible = manager.get_active_branch_messages(1)
        assert [m.message_id for m in visible] == [u1.message_id, a1.message_id]
        assert repository.count_messages(1) == 4
        assert repository.get_room(1).active_branch == "branch-1"
        assert manager.next_branch_name(1) == "branch-2"

    def test_switch_back_to_main(
        self, repository: SQLiteChatRepository, conversation: List[Message]
    ) -> None:
        """Test switching restores the full main path."""
        manager = BranchManager(repository)
        manager.create_branch_from_message(1, conversation[1].message_id)

        messages = manager.switch_branch(1, MAIN_BRANCH)

        assert [m.message_id for m in messages] == [m.message_id for m in conversation]
        assert repository.get_room(1).active_branch == MAIN_BRANCH

    def test_list_branches(self, repository: SQLiteChatRepository, conversation: List[Message]) -> None:
        """Test branches are listed main first with the active one flagged."""
        manager = BranchManager(repository)
        branch = manager.create_branch_from_message(1, conversation[1].message_id)
        repository.insert_message(
            1, "alice", ROLE_USER, "Different question", 3,
            parent_message_id=conversation[1].message_id, branch_name=branch,
        )

        branches = manager.get_room_branches(1)

        assert [b.branch_name for b in branches] == [MAIN_BRANCH, "branch-1"]
        assert [b.is_active for b in branches] == [False, True]
        assert branches[0].message_count == 4

    def test_delete_branch_rules(
        self, repository: SQLiteChatRepository, conversation: List[Message]
    ) -> None:
        """Test main and the active branch are protected; others are soft-deleted."""
        manager = BranchManager(repository)
        branch = manager.create_branch_from_message(1, conversation[1].message_id)
        repository.insert_message(1, "alice", ROLE_USER, "Other", 3, branch_name=branch)

        with pytest.raises(ValidationError):
            manager.delete_branch(1, MAIN_BRANCH)
        with pytest.raises(ValidationError):
            manager.delete_branch(1, branch)

        manager.switch_branch(1, MAIN_BRANCH)
        assert manager.delete_branch(1, branch) == 1
        with pytest.raises(NotFoundError):
            manager.delete_branch(1, branch)
        assert repository.count_messages(1) == 5

    def test_path_follows_regenerated_reply(
        self, repository: SQLiteChatRepository, conversation: List[Message]
    ) -> None:
        """Test a soft-deleted ancestor is replaced by the reply in its slot."""
        u1, a1, u2, _ = conversation
        repository.set_message_deleted(a1.message_id, True)
        replacement = repository.insert_message(
            1, "alice", ROLE_ASSISTANT, "Hi again?", 2, parent_message_id=u1.message_id
        )

        path = BranchManager(repository).message_path(u2.message_id)

        assert path == [u1.message_id, replacement.message_id, u2.message_id]

    def test_unknown_branch(self, repository: SQLiteChatRepository, conversation: List[Message]) -> None:
        """Test switching to a branch with no messages is NotFound."""
        with pytest.raises(NotFoundError):
            BranchManager(repository).switch_branch(1, "branch-9")

    def test_message_tree(self, repository: SQLiteChatRepository, conversation: List[Message]) -> None:
        """Test messages nest under their parents."""
        roots = BranchManager(repository).get_message_tree(1)
        assert len(roots) == 1
        assert roots[0].children[0].message.content == "Hello?"
        assert roots[0].to_dict()["children"][0]["children"][0]["content"] == "Story?"

    def test_message_siblings(
        self, repository: SQLiteChatRepository, conversation: List[Message]
    ) -> None:
        """Test siblings share the parent, include the message and skip deleted rows."""
        manager = BranchManager(repository)
        _, a1, u2, _ = conversation
        branch = manager.create_branch_from_message(1, a1.message_id)
        fork = repository.insert_message(
            1, "alice", ROLE_USER, "Different question", 3,
            parent_message_id=a1.message_id, branch_name=branch,
        )
        gone = repository.insert_message(
            1, "alice", ROLE_USER, "Withdrawn", 3, parent_message_id=a1.message_id
        )
        repository.set_message_deleted(gone.message_id, True)

        siblings = manager.get_message_siblings(u2.message_id)

        assert [node.message.message_id for node in siblings] == [u2.message_id, fork.message_id]
        assert all(node.children == [] for node in siblings)
        assert [n.message.message_id for n in manager.get_message_siblings(a1.message_id)] == [
            a1.message_id
        ]

    def test_siblings_of_unknown_message(
        self, repository: SQLiteChatRepository, conversation: List[Message]
    ) -> None:
        """Test a missing message is NotFound."""
        with pytest.raises(NotFoundError):
            BranchManager(repository).get_message_siblings(99)

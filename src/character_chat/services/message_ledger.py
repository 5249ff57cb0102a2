"""
Message ledger: send, regenerate and rollback against persisted messages.

Each room moves through Idle -> Sending|Regenerating ->
StreamingResponse|Failed -> Idle. One asyncio.Lock per room serializes
sequence-number assignment within this process. Provider failures are
recovered into a fallback result; insufficient balance restores the
pre-call state and propagates; storage failures propagate.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..algorithms.conversational_ai.memory import ConversationSummarizer, MemoryStore
from ..algorithms.conversational_ai.text_normalizer import TextNormalizer
from ..characters import CharacterCatalog
from ..core.config import Config
from ..core.exceptions import (
    InsufficientBalanceError,
    NotFoundError,
    PersistenceError,
    ProviderError,
    UnauthorizedError,
    ValidationError,
)
from ..core.llm.prompt_builder import LLMPromptBuilder
from ..core.llm.registry import ProviderRouter
from ..core.logging import get_logger
from ..core.persistence import ChatRepository
from ..core.protocols import (
    MODEL_STATUS_STABLE,
    MODEL_STATUS_UNSTABLE,
    ROLE_ASSISTANT,
    ROLE_USER,
    CharacterPersona,
    ChatRoom,
    Memory,
    MemorySearchResult,
    Message,
    utc_now,
)
from ..observability.chat_metrics import ChatMetrics, get_chat_metrics
from .billing import BillingService, UnlimitedBilling
from .branch_manager import BranchInfo, BranchManager, MessageNode
from .context_builder import ContextBuilder

logger = get_logger(__name__)

SuggestedActionsProvider = Callable[[CharacterPersona, str], List[str]]


class RoomState(Enum):
    """Ledger state of a room."""

    IDLE = "idle"
    SENDING = "sending"
    REGENERATING = "regenerating"
    STREAMING_RESPONSE = "streaming_response"
    FAILED = "failed"


class RoomStateRegistry:
    """Per-room lock and state, owned by one ledger."""

    def __init__(self) -> None:
        self._locks: Dict[int, asyncio.Lock] = {}
        self._states: Dict[int, RoomState] = {}

    def lock_for(self, room_id: int) -> asyncio.Lock:
        lock = self._locks.get(room_id)
        if lock is None:
            lock = self._locks[room_id] = asyncio.Lock()
        return lock

    def state(self, room_id: int) -> RoomState:
        return self._states.get(room_id, RoomState.IDLE)

    def set_state(self, room_id: int, state: RoomState) -> None:
        previous = self.state(room_id)
        self._states[room_id] = state
        logger.debug(
            "Room state transition",
            room_id=room_id,
            from_state=previous.value,
            to_state=state.value,
        )


@dataclass
class ExchangeResult:
    """Outcome of a send or regenerate."""

    room_id: int
    content: str
    user_message: Optional[Message] = None
    assistant_message: Optional[Message] = None
    tokens_used: int = 0
    cost: int = 0
    fallback: bool = False
    model_status: str = MODEL_STATUS_STABLE
    suggested_actions: List[str] = field(default_factory=list)
    replaced_message_id: Optional[int] = None
    previous_content: Optional[str] = None
    error: Optional[str] = None

    def done_frame(self) -> Dict[str, Any]:
        """Terminal success frame for the streaming endpoint."""
        message = self.assistant_message
        return {
            "done": True,
            "tokens": self.tokens_used,
            "cost": self.cost,
            "suggested_actions": list(self.suggested_actions),
            "message_id": message.message_id if message else None,
            "sequence_number": message.sequence_number if message else None,
            "room_id": self.room_id,
            "user_message_id": self.user_message.message_id if self.user_message else None,
            "replaced_message_id": self.replaced_message_id,
        }


def no_suggested_actions(persona: CharacterPersona, reply: str) -> List[str]:
    return []


class MessageLedger:
    """Orchestrates exchanges between users, personas and providers."""

    def __init__(
        self,
        repository: ChatRepository,
        catalog: CharacterCatalog,
        router: ProviderRouter,
        config: Optional[Config] = None,
        memory_store: Optional[MemoryStore] = None,
        summarizer: Optional[ConversationSummarizer] = None,
        billing: Optional[BillingService] = None,
        prompt_builder: Optional[LLMPromptBuilder] = None,
        context_builder: Optional[ContextBuilder] = None,
        suggested_actions: Optional[SuggestedActionsProvider] = None,
        metrics: Optional[ChatMetrics] = None,
    ):
        self.repository = repository
        self.catalog = catalog
        self.router = router
        self.config = config or Config(runtime_config_path=None)
        self.memory_store = memory_store
        self.summarizer = summarizer
        self.billing = billing or UnlimitedBilling()
        self.prompt_builder = prompt_builder or LLMPromptBuilder(
            self.config.chat.default_user_name
        )
        self.context_builder = context_builder or ContextBuilder(self.config.chat)
        self.suggested_actions = suggested_actions or no_suggested_actions
        self.metrics = metrics or get_chat_metrics()
        self.branches = BranchManager(repository)
        self.rooms = RoomStateRegistry()
        self._room_creation_lock = asyncio.Lock()
        self._background_tasks: Set["asyncio.Task[None]"] = set()

    # Validation and lookup

    def _validate_content(self, content: str) -> str:
        if content is None or not content.strip():
            raise ValidationError("message", content, "message must not be empty")
        if len(content) > self.config.chat.max_message_length:
            raise ValidationError(
                "message",
                f"{len(content)} chars",
                f"message exceeds {self.config.chat.max_message_length} characters",
            )
        return content.strip()

    def _validate_guidance(self, guidance: Optional[str]) -> Optional[str]:
        if guidance is None or not guidance.strip():
            return None
        if len(guidance) > self.config.chat.max_guidance_length:
            raise ValidationError(
                "guidance",
                f"{len(guidance)} chars",
                f"guidance exceeds {self.config.chat.max_guidance_length} characters",
            )
        return guidance.strip()

    def _owned_room(self, user_id: str, room_id: int) -> ChatRoom:
        room = self.repository.get_room(room_id)
        if room is None:
            raise NotFoundError("room", room_id)
        if room.user_id != user_id:
            raise UnauthorizedError(f"room {room_id} does not belong to this user")
        return room

    async def _resolve_room(
        self, user_id: str, room_id: Optional[int], character_id: Optional[str]
    ) -> ChatRoom:
        if room_id is not None:
            return self._owned_room(user_id, room_id)
        if not character_id:
            raise ValidationError("room_id", None, "room_id or character_id is required")

        persona = self.catalog.get(character_id)
        async with self._room_creation_lock:
            room = self.repository.find_room(user_id, character_id)
            if room is None:
                room = self.repository.create_room(user_id, character_id, title=persona.name)
                logger.log_chat_event("room_created", room.room_id, character_id=character_id)
        return room

    def _owned_message(self, user_id: str, message_id: int) -> Message:
        message = self.repository.get_message(message_id)
        if message is None or message.is_deleted:
            raise NotFoundError("message", message_id)
        self._owned_room(user_id, message.room_id)
        return message

    def _user_name(self, user_name: Optional[str]) -> str:
        return user_name or self.config.chat.default_user_name

    def _memory_enabled(self, persona: CharacterPersona) -> bool:
        return (
            self.memory_store is not None
            and self.config.memory.enabled
            and persona.enable_memory
        )

    async def _recall(
        self, persona: CharacterPersona, room_id: int, query: str
    ) -> List[MemorySearchResult]:
        if not self._memory_enabled(persona) or self.memory_store is None:
            return []
        return await self.memory_store.search_memories(room_id, query)

    def _fallback(
        self, room_id: int, error: ProviderError, operation: str, **kwargs: Any
    ) -> ExchangeResult:
        self.rooms.set_state(room_id, RoomState.FAILED)
        self.metrics.record_exchange(operation, "fallback")
        logger.warning(
            "Provider failed, returning fallback",
            room_id=room_id,
            provider=error.provider,
            error=error.provider_message,
        )
        return ExchangeResult(
            room_id=room_id,
            content=self.config.chat.fallback_message,
            fallback=True,
            model_status=MODEL_STATUS_UNSTABLE,
            error=error.message,
            **kwargs,
        )

    async def _generate(
        self,
        persona: CharacterPersona,
        history: List[Message],
        user_content: str,
        model: str,
        memories: List[MemorySearchResult],
        user_name: str,
        guidance: Optional[str] = None,
    ) -> Tuple[str, int]:
        system_prompt = self.prompt_builder.build_system_prompt(persona, memories, user_name)
        route = self.router.registry.resolve(model)
        messages = self.context_builder.build(
            system_prompt, history, user_content, route.backend_model, guidance=guidance
        )
        response = await self.router.invoke(messages, model)
        reply = TextNormalizer(user_name, persona.name).clean_llm_response(response.content)
        if not reply:
            raise ProviderError(route.provider, "provider returned an empty reply")
        return reply, response.tokens_used

    # Operations

    async def send(
        self,
        user_id: str,
        content: str,
        model: str,
        room_id: Optional[int] = None,
        character_id: Optional[str] = None,
        user_name: Optional[str] = None,
    ) -> ExchangeResult:
        """Persist a user message, generate the reply and persist it at the next slot."""
        content = self._validate_content(content)
        registry = self.router.registry
        registry.resolve(model)

        room = await self._resolve_room(user_id, room_id, character_id)
        persona = self.catalog.get(room.character_id)
        name = self._user_name(user_name)

        async with self.rooms.lock_for(room.room_id):
            self.rooms.set_state(room.room_id, RoomState.SENDING)
            try:
                return await self._send_locked(user_id, room, persona, content, model, name)
            finally:
                self.rooms.set_state(room.room_id, RoomState.IDLE)

    async def _send_locked(
        self,
        user_id: str,
        room: ChatRoom,
        persona: CharacterPersona,
        content: str,
        model: str,
        user_name: str,
    ) -> ExchangeResult:
        registry = self.router.registry
        try:
            self.billing.check_balance(
                user_id, registry.estimate_cost(model, self.config.chat.estimated_tokens)
            )
        except InsufficientBalanceError:
            self.metrics.record_exchange("send", "insufficient_balance")
            raise

        history = await asyncio.to_thread(
            self.repository.list_messages, room.room_id, active_only=True
        )
        parent_id = history[-1].message_id if history else None
        next_seq = await asyncio.to_thread(self.repository.max_sequence_number, room.room_id) + 1

        user_message = await asyncio.to_thread(
            self.repository.insert_message,
            room.room_id,
            user_id,
            ROLE_USER,
            content,
            next_seq,
            parent_message_id=parent_id,
            branch_name=room.active_branch,
        )

        memories = await self._recall(persona, room.room_id, content)

        try:
            reply, tokens = await self._generate(
                persona, history, content, model, memories, user_name
            )
        except ProviderError as e:
            await asyncio.to_thread(
                self.repository.set_message_deleted, user_message.message_id, True
            )
            return self._fallback(room.room_id, e, "send")

        cost = registry.estimate_cost(model, tokens)
        try:
            self.billing.debit(user_id, cost, reason=f"chat:{model}")
        except InsufficientBalanceError:
            await asyncio.to_thread(
                self.repository.set_message_deleted, user_message.message_id, True
            )
            self.metrics.record_exchange("send", "insufficient_balance")
            raise

        try:
            assistant_message = await asyncio.to_thread(
                self.repository.insert_message,
                room.room_id,
                user_id,
                ROLE_ASSISTANT,
                reply,
                next_seq + 1,
                parent_message_id=user_message.message_id,
                branch_name=room.active_branch,
                tokens_used=tokens,
                cost=cost,
            )
        except PersistenceError:
            self.billing.refund(user_id, cost, reason="persist_failed")
            raise

        room.last_message = reply[: self.config.chat.last_message_preview_chars]
        room.last_message_at = utc_now()
        room.message_count += 2
        await asyncio.to_thread(self.repository.update_room, room)

        self.rooms.set_state(room.room_id, RoomState.STREAMING_RESPONSE)
        self.metrics.record_exchange("send", "success")
        logger.log_chat_event(
            "send",
            room.room_id,
            model=model,
            tokens=tokens,
            cost=cost,
            sequence_number=assistant_message.sequence_number,
        )

        self._spawn_memory_task(room.room_id, persona, content, reply)
        return ExchangeResult(
            room_id=room.room_id,
            content=reply,
            user_message=user_message,
            assistant_message=assistant_message,
            tokens_used=tokens,
            cost=cost,
            suggested_actions=self.suggested_actions(persona, reply),
        )

    async def regenerate(
        self,
        user_id: str,
        message_id: int,
        model: str,
        guidance: Optional[str] = None,
        user_name: Optional[str] = None,
    ) -> Optional[ExchangeResult]:
        """Replace an assistant reply in its slot. Returns None when there is
        no preceding user message to answer."""
        guidance = self._validate_guidance(guidance)
        registry = self.router.registry
        registry.resolve(model)

        target = self._owned_message(user_id, message_id)
        if target.role != ROLE_ASSISTANT:
            raise ValidationError("message_id", message_id, "only assistant messages can be regenerated")
        room = self._owned_room(user_id, target.room_id)
        persona = self.catalog.get(room.character_id)
        name = self._user_name(user_name)

        async with self.rooms.lock_for(room.room_id):
            self.rooms.set_state(room.room_id, RoomState.REGENERATING)
            try:
                return await self._regenerate_locked(
                    user_id, room, persona, message_id, model, guidance, name
                )
            finally:
                self.rooms.set_state(room.room_id, RoomState.IDLE)

    async def _regenerate_locked(
        self,
        user_id: str,
        room: ChatRoom,
        persona: CharacterPersona,
        message_id: int,
        model: str,
        guidance: Optional[str],
        user_name: str,
    ) -> Optional[ExchangeResult]:
        registry = self.router.registry
        active = await asyncio.to_thread(
            self.repository.list_messages, room.room_id, active_only=True
        )
        index = next((i for i, m in enumerate(active) if m.message_id == message_id), None)
        if index is None:
            raise NotFoundError("message", message_id)
        target = active[index]

        user_index = next(
            (i for i in range(index - 1, -1, -1) if active[i].role == ROLE_USER), None
        )
        if user_index is None:
            logger.info("Regenerate skipped: no preceding user message", room_id=room.room_id)
            self.metrics.record_exchange("regenerate", "noop")
            return None
        user_message = active[user_index]

        try:
            self.billing.check_balance(
                user_id, registry.estimate_cost(model, self.config.chat.estimated_tokens)
            )
        except InsufficientBalanceError:
            self.metrics.record_exchange("regenerate", "insufficient_balance")
            raise

        await asyncio.to_thread(self.repository.set_message_deleted, target.message_id, True)
        memories = await self._recall(persona, room.room_id, user_message.content)

        try:
            reply, tokens = await self._generate(
                persona,
                active[:user_index],
                user_message.content,
                model,
                memories,
                user_name,
                guidance=guidance,
            )
        except ProviderError as e:
            await asyncio.to_thread(self.repository.set_message_deleted, target.message_id, False)
            return self._fallback(
                room.room_id,
                e,
                "regenerate",
                user_message=user_message,
                replaced_message_id=target.message_id,
                previous_content=target.content,
            )

        cost = registry.estimate_cost(model, tokens)
        try:
            self.billing.debit(user_id, cost, reason=f"regenerate:{model}")
        except InsufficientBalanceError:
            await asyncio.to_thread(self.repository.set_message_deleted, target.message_id, False)
            self.metrics.record_exchange("regenerate", "insufficient_balance")
            raise

        try:
            replacement = await asyncio.to_thread(
                self.repository.insert_message,
                room.room_id,
                user_id,
                ROLE_ASSISTANT,
                reply,
                target.sequence_number,
                parent_message_id=user_message.message_id,
                branch_name=target.branch_name,
                tokens_used=tokens,
                cost=cost,
            )
        except PersistenceError:
            self.billing.refund(user_id, cost, reason="persist_failed")
            raise

        room.message_count += 1
        if index == len(active) - 1:
            room.last_message = reply[: self.config.chat.last_message_preview_chars]
            room.last_message_at = utc_now()
        await asyncio.to_thread(self.repository.update_room, room)

        self.rooms.set_state(room.room_id, RoomState.STREAMING_RESPONSE)
        self.metrics.record_exchange("regenerate", "success")
        logger.log_chat_event(
            "regenerate",
            room.room_id,
            model=model,
            replaced_message_id=target.message_id,
            sequence_number=replacement.sequence_number,
        )

        self._spawn_memory_task(room.room_id, persona, user_message.content, reply)
        return ExchangeResult(
            room_id=room.room_id,
            content=reply,
            user_message=user_message,
            assistant_message=replacement,
            tokens_used=tokens,
            cost=cost,
            suggested_actions=self.suggested_actions(persona, reply),
            replaced_message_id=target.message_id,
            previous_content=target.content,
        )

    async def rollback(self, user_id: str, message_id: int) -> str:
        """Continue from an earlier message on a new branch; nothing is deleted."""
        message = self._owned_message(user_id, message_id)
        async with self.rooms.lock_for(message.room_id):
            branch_name = self.branches.create_branch_from_message(message.room_id, message_id)
        self.metrics.record_exchange("rollback", "success")
        logger.log_chat_event(
            "rollback", message.room_id, message_id=message_id, branch_name=branch_name
        )
        return branch_name

    # Reads and branch operations with ownership checks

    def get_room_messages(self, user_id: str, room_id: int) -> List[Message]:
        self._owned_room(user_id, room_id)
        return self.branches.get_active_branch_messages(room_id)

    def list_rooms(self, user_id: str) -> List[ChatRoom]:
        return self.repository.list_rooms(user_id)

    def list_branches(self, user_id: str, room_id: int) -> List[BranchInfo]:
        self._owned_room(user_id, room_id)
        return self.branches.get_room_branches(room_id)

    def list_message_siblings(
        self, user_id: str, room_id: int, message_id: int
    ) -> List[MessageNode]:
        message = self._owned_message(user_id, message_id)
        if message.room_id != room_id:
            raise NotFoundError("message", message_id)
        return self.branches.get_message_siblings(message_id)

    async def switch_branch(self, user_id: str, room_id: int, branch_name: str) -> List[Message]:
        self._owned_room(user_id, room_id)
        async with self.rooms.lock_for(room_id):
            return self.branches.switch_branch(room_id, branch_name)

    async def delete_branch(self, user_id: str, room_id: int, branch_name: str) -> int:
        self._owned_room(user_id, room_id)
        async with self.rooms.lock_for(room_id):
            return self.branches.delete_branch(room_id, branch_name)

    async def search_room_memories(
        self, user_id: str, room_id: int, query: str
    ) -> List[MemorySearchResult]:
        self._owned_room(user_id, room_id)
        if self.memory_store is None:
            return []
        return await self.memory_store.search_memories(room_id, query)

    def list_room_memories(self, user_id: str, room_id: int) -> List[Memory]:
        self._owned_room(user_id, room_id)
        return self.repository.list_memories(room_id)

    # Detached memory work

    def _spawn_memory_task(
        self, room_id: int, persona: CharacterPersona, user_message: str, reply: str
    ) -> None:
        if not self._memory_enabled(persona):
            return
        task = asyncio.create_task(
            self._remember(room_id, persona.name, user_message, reply),
            name=f"remember-room-{room_id}",
        )
        self._background_tasks.add(task)
        self.metrics.background_tasks.inc()
        task.add_done_callback(self._on_memory_task_done)

    async def _remember(
        self, room_id: int, character_name: str, user_message: str, reply: str
    ) -> None:
        if self.memory_store is not None:
            await self.memory_store.remember_exchange(room_id, user_message, reply)
        if self.summarizer is not None:
            await self.summarizer.maybe_summarize(room_id, character_name)

    def _on_memory_task_done(self, task: "asyncio.Task[None]") -> None:
        self._background_tasks.discard(task)
        self.metrics.background_tasks.dec()
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Background memory task failed",
                task=task.get_name(),
                error=str(error),
                error_type=type(error).__name__,
            )

    @property
    def pending_background_tasks(self) -> int:
        return len(self._background_tasks)

    async def drain_background_tasks(self) -> None:
        """Wait for detached memory work (shutdown and tests)."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

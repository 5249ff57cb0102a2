"""
Chat API endpoints.

Send and regenerate run the full exchange first, then replay the reply as
server-sent frames: `{content}` chunks, a terminal `{done, ...}` frame, or a
terminal `{error, code}` frame when the provider failed.
"""

import asyncio
import json
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ..core.exceptions import ValidationError
from ..core.logging import get_logger, set_request_context
from ..services.container import ChatServices
from ..services.message_ledger import ExchangeResult

logger = get_logger(__name__)

chat_router = APIRouter(prefix="/api/v1/chat", tags=["chat"])


class SendMessageRequest(BaseModel):
    """Send or regenerate request."""

    room_id: Optional[int] = Field(None, description="Existing room")
    character_id: Optional[str] = Field(None, description="Character for a new room")
    message: str = Field("", description="User message text")
    model: Optional[str] = Field(None, description="Logical model id")
    regenerate: bool = Field(False, description="Regenerate instead of send")
    replace_message_id: Optional[int] = Field(None, description="Assistant message to regenerate")
    guidance: Optional[str] = Field(None, description="Out-of-character note for regeneration")
    user_name: Optional[str] = Field(None, description="Display name used in the prompt")


class RollbackRequest(BaseModel):
    """Rollback request."""

    message_id: int = Field(..., description="Message that becomes the new tip")


class SwitchBranchRequest(BaseModel):
    """Branch switch request."""

    room_id: int
    branch_name: str = Field(..., min_length=1)


def get_services(request: Request) -> ChatServices:
    """Get the service container attached to the app."""
    return request.app.state.services  # type: ignore


async def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Identify the caller; authentication itself happens upstream."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="X-User-Id header required"
        )
    return x_user_id.strip()


def sse_frame(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def chunk_text(text: str, size: int) -> List[str]:
    size = max(1, size)
    return [text[i : i + size] for i in range(0, len(text), size)]


async def replay_frames(
    result: Optional[ExchangeResult],
    chunk_size: int,
    frame_delay_ms: int,
    noop_message_id: Optional[int] = None,
) -> AsyncIterator[str]:
    """Replay a finished exchange as incremental frames."""
    if result is None:
        yield sse_frame(
            {
                "done": True,
                "noop": True,
                "tokens": 0,
                "cost": 0,
                "suggested_actions": [],
                "message_id": noop_message_id,
            }
        )
        return

    if result.fallback:
        yield sse_frame(
            {
                "error": result.error or "provider error",
                "code": "PROVIDER_ERROR",
                "fallback": result.content,
                "model_status": result.model_status,
            }
        )
        return

    for chunk in chunk_text(result.content, chunk_size):
        yield sse_frame({"content": chunk})
        if frame_delay_ms > 0:
            await asyncio.sleep(frame_delay_ms / 1000)
    yield sse_frame(result.done_frame())


@chat_router.post("/message")
async def send_message(
    body: SendMessageRequest,
    user_id: str = Depends(get_user_id),
    services: ChatServices = Depends(get_services),
) -> StreamingResponse:
    """Send a message (or regenerate a reply) and stream the result."""
    config = services.config
    model = body.model or config.llm.default_model
    set_request_context(room_id=body.room_id, character_id=body.character_id)

    if body.regenerate:
        if body.replace_message_id is None:
            raise ValidationError(
                "replace_message_id", None, "required when regenerate is true"
            )
        result = await services.ledger.regenerate(
            user_id,
            body.replace_message_id,
            model,
            guidance=body.guidance,
            user_name=body.user_name,
        )
    else:
        result = await services.ledger.send(
            user_id,
            body.message,
            model,
            room_id=body.room_id,
            character_id=body.character_id,
            user_name=body.user_name,
        )

    return StreamingResponse(
        replay_frames(
            result,
            config.streaming.chunk_size,
            config.streaming.frame_delay_ms,
            noop_message_id=body.replace_message_id,
        ),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@chat_router.post("/rollback")
async def rollback(
    body: RollbackRequest,
    user_id: str = Depends(get_user_id),
    services: ChatServices = Depends(get_services),
) -> Dict[str, Any]:
    """Continue the conversation from an earlier message on a new branch."""
    ledger = services.ledger
    branch_name = await ledger.rollback(user_id, body.message_id)
    message = services.repository.get_message(body.message_id)
    room_id = message.room_id if message else None
    messages = ledger.get_room_messages(user_id, room_id) if room_id is not None else []
    return {
        "branch_name": branch_name,
        "room_id": room_id,
        "messages": [m.to_dict() for m in messages],
    }


@chat_router.get("/branches")
async def list_branches(
    room_id: int = Query(...),
    tree: bool = Query(False),
    message_id: Optional[int] = Query(None),
    user_id: str = Depends(get_user_id),
    services: ChatServices = Depends(get_services),
) -> Dict[str, Any]:
    """List branches of a room, optionally with the full message tree.

    With `message_id`, the alternatives sharing that message's parent are
    returned as `siblings`.
    """
    ledger = services.ledger
    branches = ledger.list_branches(user_id, room_id)
    response: Dict[str, Any] = {
        "room_id": room_id,
        "branches": [b.to_dict() for b in branches],
    }
    if tree:
        response["tree"] = [node.to_dict() for node in ledger.branches.get_message_tree(room_id)]
    if message_id is not None:
        siblings = ledger.list_message_siblings(user_id, room_id, message_id)
        response["siblings"] = [node.to_dict() for node in siblings]
    return response


@chat_router.put("/branches")
async def switch_branch(
    body: SwitchBranchRequest,
    user_id: str = Depends(get_user_id),
    services: ChatServices = Depends(get_services),
) -> Dict[str, Any]:
    """Make another branch the visible conversation."""
    messages = await services.ledger.switch_branch(user_id, body.room_id, body.branch_name)
    return {
        "room_id": body.room_id,
        "branch_name": body.branch_name,
        "messages": [m.to_dict() for m in messages],
    }


@chat_router.delete("/branches")
async def delete_branch(
    room_id: int = Query(...),
    branch_name: str = Query(..., min_length=1),
    user_id: str = Depends(get_user_id),
    services: ChatServices = Depends(get_services),
) -> Dict[str, Any]:
    """Soft-delete an inactive branch."""
    deleted = await services.ledger.delete_branch(user_id, room_id, branch_name)
    return {"room_id": room_id, "branch_name": branch_name, "deleted_messages": deleted}


@chat_router.get("/rooms")
async def list_rooms(
    user_id: str = Depends(get_user_id),
    services: ChatServices = Depends(get_services),
) -> Dict[str, Any]:
    """List the caller's rooms."""
    return {"rooms": [room.to_dict() for room in services.ledger.list_rooms(user_id)]}


@chat_router.get("/rooms/{room_id}/messages")
async def get_room_messages(
    room_id: int,
    user_id: str = Depends(get_user_id),
    services: ChatServices = Depends(get_services),
) -> Dict[str, Any]:
    """Messages of the active branch, in sequence order."""
    messages = services.ledger.get_room_messages(user_id, room_id)
    return {"room_id": room_id, "messages": [m.to_dict() for m in messages]}


@chat_router.get("/rooms/{room_id}/memories")
async def get_room_memories(
    room_id: int,
    query: Optional[str] = Query(None),
    user_id: str = Depends(get_user_id),
    services: ChatServices = Depends(get_services),
) -> Dict[str, Any]:
    """Search a room's memories, or list them all when no query is given."""
    ledger = services.ledger
    if query:
        results = await ledger.search_room_memories(user_id, room_id, query)
        return {"room_id": room_id, "query": query, "memories": [r.to_dict() for r in results]}

    memories = ledger.list_room_memories(user_id, room_id)
    return {
        "room_id": room_id,
        "memories": [
            {
                "memory_id": m.memory_id,
                "content": m.content,
                "importance": m.importance,
                "memory_type": m.memory_type,
                "created_at": m.created_at,
            }
            for m in memories
        ],
    }


@chat_router.get("/models")
async def list_models(services: ChatServices = Depends(get_services)) -> Dict[str, Any]:
    """Logical model ids with their point cost per 1k tokens."""
    registry = services.router.registry
    return {
        "default_model": services.config.llm.default_model,
        "models": [
            {
                "model": model_id,
                "provider": registry.resolve(model_id).provider,
                "cost_per_1k_tokens": registry.resolve(model_id).cost_per_1k_tokens,
            }
            for model_id in registry.model_ids()
        ],
    }

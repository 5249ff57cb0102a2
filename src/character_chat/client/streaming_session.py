"""
Client-side streaming session for the chat endpoint.

Keeps the visible message list for one room, applies optimistic updates
while a send or regeneration is in flight, reads the `data: {json}` frames
from the server and rolls the optimistic state back when the exchange
fails.
"""

import asyncio
import itertools
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from ..core.exceptions import INSUFFICIENT_POINTS
from ..core.logging import get_logger
from ..core.protocols import (
    MODEL_STATUS_STABLE,
    MODEL_STATUS_UNSTABLE,
    ROLE_ASSISTANT,
    ROLE_USER,
    StreamingSession,
)

logger = get_logger(__name__)

MESSAGE_PATH = "/api/v1/chat/message"

DeltaCallback = Callable[[str], None]
ErrorCallback = Callable[[str, Optional[str]], None]
BalanceCallback = Callable[[], None]
RegenerationRecordCallback = Callable[[int, str, str], None]


@dataclass
class RegenerationContext:
    """The assistant message being regenerated and its content before."""

    message_id: int
    previous_content: str


class StreamingSessionClient:
    """
    Drives send and regenerate for one room against the chat API.

    At most one operation is in flight: a call made while the session is
    streaming returns False without touching state.
    """

    def __init__(
        self,
        base_url: str,
        user_id: str,
        room_id: Optional[int] = None,
        character_id: Optional[str] = None,
        model: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
        on_delta: Optional[DeltaCallback] = None,
        on_insufficient_balance: Optional[BalanceCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_regeneration_record: Optional[RegenerationRecordCallback] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id
        self.character_id = character_id
        self.model = model
        self.session = StreamingSession(room_id=room_id)
        self.regeneration: Optional[RegenerationContext] = None

        self.on_delta = on_delta
        self.on_insufficient_balance = on_insufficient_balance
        self.on_error = on_error
        self.on_regeneration_record = on_regeneration_record

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._lock = asyncio.Lock()
        self._temp_ids = itertools.count(-1, -1)

    @property
    def room_id(self) -> Optional[int]:
        return self.session.room_id

    @property
    def messages(self) -> List[Dict[str, Any]]:
        return self.session.message_list

    def _busy(self) -> bool:
        return self.session.is_streaming or self._lock.locked()

    def _index_of(self, message_id: int) -> Optional[int]:
        for index, message in enumerate(self.session.message_list):
            if message.get("message_id") == message_id:
                return index
        return None

    async def send_message(self, text: str) -> bool:
        """Send a user message; True when a reply was materialized."""
        if self._busy():
            logger.debug("Send ignored, session is streaming", room_id=self.room_id)
            return False

        async with self._lock:
            self.session.is_streaming = True
            self.session.streaming_buffer = ""
            temp_id = next(self._temp_ids)
            self.session.message_list.append(
                {"message_id": temp_id, "role": ROLE_USER, "content": text, "pending": True}
            )
            body = {
                "room_id": self.session.room_id,
                "character_id": self.character_id,
                "message": text,
                "model": self.model,
            }
            try:
                frame, status_code = await self._stream(body)
                if frame.get("done"):
                    self._materialize_send(temp_id, frame)
                    return True

                self._remove(temp_id)
                self._fail(frame, status_code)
                return False
            finally:
                self.session.is_streaming = False
                self.session.streaming_buffer = ""

    async def regenerate_message(self, message_id: int, guidance: Optional[str] = None) -> bool:
        """Regenerate an assistant message; True when it was replaced."""
        if self._busy():
            logger.debug("Regenerate ignored, session is streaming", room_id=self.room_id)
            return False

        index = self._index_of(message_id)
        if index is None:
            logger.warning("Regenerate target not in session", message_id=message_id)
            return False

        async with self._lock:
            original = self.session.message_list[index]
            self.regeneration = RegenerationContext(
                message_id=message_id, previous_content=original.get("content", "")
            )
            self.session.is_streaming = True
            self.session.streaming_buffer = ""
            temp_id = next(self._temp_ids)
            self.session.message_list[index] = {
                "message_id": temp_id,
                "role": ROLE_ASSISTANT,
                "content": "",
                "pending": True,
            }
            body = {
                "room_id": self.session.room_id,
                "message": "",
                "model": self.model,
                "regenerate": True,
                "replace_message_id": message_id,
                "guidance": guidance,
            }
            try:
                frame, status_code = await self._stream(body)
                if frame.get("done") and not frame.get("noop"):
                    new_content = self.session.streaming_buffer
                    self._replace(temp_id, self._assistant_from(frame, new_content))
                    self._apply_done(frame)
                    if self.on_regeneration_record:
                        self.on_regeneration_record(
                            message_id, self.regeneration.previous_content, new_content
                        )
                    return True

                self._replace(temp_id, original)
                if frame.get("done"):
                    return False
                self._fail(frame, status_code)
                return False
            finally:
                self.regeneration = None
                self.session.is_streaming = False
                self.session.streaming_buffer = ""

    def revalidate(self, messages: List[Dict[str, Any]]) -> None:
        """Reset the session from an authoritative message list."""
        self.session.message_list = list(messages)
        self.session.streaming_buffer = ""
        self.session.suggested_actions = []
        self.session.is_streaming = False
        self.regeneration = None

    async def close(self) -> None:
        """Close the HTTP client when this session created it."""
        if self._owns_client:
            await self._client.aclose()

    async def _stream(self, body: Dict[str, Any]) -> Tuple[Dict[str, Any], int]:
        """POST the request and consume frames until a terminal one."""
        headers = {"X-User-Id": self.user_id, "Accept": "text/event-stream"}
        payload = {k: v for k, v in body.items() if v is not None}
        try:
            async with self._client.stream(
                "POST", f"{self.base_url}{MESSAGE_PATH}", json=payload, headers=headers
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    return self._error_payload(response), response.status_code

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    try:
                        frame = json.loads(line[len("data:") :].strip())
                    except json.JSONDecodeError:
                        logger.warning("Skipping malformed frame", line=line[:100])
                        continue

                    if "content" in frame:
                        self.session.streaming_buffer += frame["content"]
                        if self.on_delta:
                            self.on_delta(frame["content"])
                    elif frame.get("done") or "error" in frame:
                        return frame, response.status_code

                return (
                    {"error": "Stream ended without a terminal frame", "code": "STREAM_INTERRUPTED"},
                    response.status_code,
                )
        except httpx.HTTPError as e:
            logger.error("Chat request failed", error=str(e), error_type=type(e).__name__)
            return {"error": str(e), "code": "NETWORK_ERROR"}, 0

    @staticmethod
    def _error_payload(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {"error": response.text or f"HTTP {response.status_code}"}
        if not isinstance(data, dict):
            return {"error": str(data)}
        return {
            "error": data.get("error") or data.get("detail") or f"HTTP {response.status_code}",
            "code": data.get("code"),
        }

    def _fail(self, frame: Dict[str, Any], status_code: int) -> None:
        code = frame.get("code")
        if code == INSUFFICIENT_POINTS or status_code == 402:
            logger.info("Insufficient balance", room_id=self.room_id)
            if self.on_insufficient_balance:
                self.on_insufficient_balance()
            return

        self.session.model_status = MODEL_STATUS_UNSTABLE
        message = frame.get("fallback") or frame.get("error") or "Unknown error"
        logger.warning("Exchange failed", room_id=self.room_id, code=code, status_code=status_code)
        if self.on_error:
            self.on_error(message, code)

    def _apply_done(self, frame: Dict[str, Any]) -> None:
        if frame.get("room_id") is not None:
            self.session.room_id = frame["room_id"]
        self.session.suggested_actions = list(frame.get("suggested_actions") or [])
        self.session.model_status = MODEL_STATUS_STABLE

    @staticmethod
    def _assistant_from(frame: Dict[str, Any], content: str) -> Dict[str, Any]:
        return {
            "message_id": frame.get("message_id"),
            "role": ROLE_ASSISTANT,
            "content": content,
            "sequence_number": frame.get("sequence_number"),
            "tokens_used": frame.get("tokens", 0),
            "cost": frame.get("cost", 0),
        }

    def _materialize_send(self, temp_id: int, frame: Dict[str, Any]) -> None:
        index = self._index_of(temp_id)
        if index is not None:
            user_message = dict(self.session.message_list[index])
            user_message.pop("pending", None)
            if frame.get("user_message_id") is not None:
                user_message["message_id"] = frame["user_message_id"]
            if frame.get("sequence_number") is not None:
                user_message["sequence_number"] = frame["sequence_number"] - 1
            self.session.message_list[index] = user_message

        self.session.message_list.append(
            self._assistant_from(frame, self.session.streaming_buffer)
        )
        self._apply_done(frame)

    def _remove(self, message_id: int) -> None:
        index = self._index_of(message_id)
        if index is not None:
            del self.session.message_list[index]

    def _replace(self, message_id: int, message: Dict[str, Any]) -> None:
        index = self._index_of(message_id)
        if index is not None:
            self.session.message_list[index] = message


class SessionRegistry:
    """One `StreamingSessionClient` per room, sharing an HTTP client."""

    def __init__(
        self,
        base_url: str,
        user_id: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
    ):
        self.base_url = base_url
        self.user_id = user_id
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._sessions: Dict[Tuple[str, Any], StreamingSessionClient] = {}

    def session_for(
        self,
        room_id: Optional[int] = None,
        character_id: Optional[str] = None,
        **kwargs: Any,
    ) -> StreamingSessionClient:
        """Get or create the session for a room (or a character's new room)."""
        key: Tuple[str, Any] = ("room", room_id) if room_id is not None else ("character", character_id)
        if key not in self._sessions:
            self._sessions[key] = StreamingSessionClient(
                self.base_url,
                self.user_id,
                room_id=room_id,
                character_id=character_id,
                http_client=self._client,
                **kwargs,
            )
        return self._sessions[key]

    def __len__(self) -> int:
        return len(self._sessions)

    async def close(self) -> None:
        """Drop all sessions and close the shared client if owned."""
        self._sessions.clear()
        if self._owns_client:
            await self._client.aclose()

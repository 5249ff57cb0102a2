"""
SQLite-based storage for rooms, messages and room memories.

Embeddings are stored as float32 blobs; similarity search loads a room's
vectors and ranks them with numpy.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional, Union

import numpy as np

from ..exceptions import PersistenceError
from ..protocols import (
    MAIN_BRANCH,
    ChatRoom,
    Memory,
    MemorySearchResult,
    Message,
    utc_now,
)
from .repository import ChatRepository

logger = logging.getLogger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS chat_rooms (
        room_id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        character_id TEXT NOT NULL,
        title TEXT NOT NULL DEFAULT '',
        last_message TEXT,
        last_message_at TEXT,
        message_count INTEGER NOT NULL DEFAULT 0,
        active_branch TEXT NOT NULL DEFAULT 'main',
        summarized_through INTEGER,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        message_id INTEGER PRIMARY KEY AUTOINCREMENT,
        room_id INTEGER NOT NULL,
        user_id TEXT NOT NULL,
        role TEXT NOT NULL,
        content TEXT NOT NULL,
        sequence_number INTEGER NOT NULL,
        parent_message_id INTEGER,
        branch_name TEXT NOT NULL DEFAULT 'main',
        is_active_branch INTEGER NOT NULL DEFAULT 1,
        is_deleted INTEGER NOT NULL DEFAULT 0,
        tokens_used INTEGER NOT NULL DEFAULT 0,
        cost INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (room_id) REFERENCES chat_rooms (room_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS room_memories (
        memory_id INTEGER PRIMARY KEY AUTOINCREMENT,
        room_id INTEGER NOT NULL,
        content TEXT NOT NULL,
        embedding BLOB NOT NULL,
        importance INTEGER NOT NULL DEFAULT 5,
        memory_type TEXT NOT NULL DEFAULT 'fact',
        message_range_start INTEGER,
        message_range_end INTEGER,
        created_at TEXT NOT NULL,
        FOREIGN KEY (room_id) REFERENCES chat_rooms (room_id)
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_rooms_user_character
    ON chat_rooms (user_id, character_id)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_messages_room_sequence
    ON messages (room_id, sequence_number)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_memories_room
    ON room_memories (room_id, memory_type)
    """,
)


def _row_to_room(row: sqlite3.Row) -> ChatRoom:
    return ChatRoom(
        room_id=row["room_id"],
        user_id=row["user_id"],
        character_id=row["character_id"],
        title=row["title"],
        last_message=row["last_message"],
        last_message_at=row["last_message_at"],
        message_count=row["message_count"],
        active_branch=row["active_branch"],
        created_at=row["created_at"],
    )


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        message_id=row["message_id"],
        room_id=row["room_id"],
        user_id=row["user_id"],
        role=row["role"],
        content=row["content"],
        sequence_number=row["sequence_number"],
        parent_message_id=row["parent_message_id"],
        branch_name=row["branch_name"],
        is_active_branch=bool(row["is_active_branch"]),
        is_deleted=bool(row["is_deleted"]),
        tokens_used=row["tokens_used"],
        cost=row["cost"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _decode_embedding(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32)


def _row_to_memory(row: sqlite3.Row) -> Memory:
    return Memory(
        memory_id=row["memory_id"],
        room_id=row["room_id"],
        content=row["content"],
        embedding=_decode_embedding(row["embedding"]).tolist(),
        importance=row["importance"],
        memory_type=row["memory_type"],
        message_range_start=row["message_range_start"],
        message_range_end=row["message_range_end"],
        created_at=row["created_at"],
    )


class SQLiteChatRepository(ChatRepository):
    """SQLite implementation of the persistence collaborator."""

    def __init__(self, db_path: Union[str, Path]):
        """Initialize with database path, creating the schema if needed."""
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    @contextmanager
    def _connect(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success and map sqlite errors."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"SQLite error during {operation}: {e}")
            raise PersistenceError(operation, str(e)) from e
        finally:
            conn.close()

    def _init_database(self) -> None:
        """Initialize database schema."""
        with self._connect("init_schema") as conn:
            for statement in SCHEMA:
                conn.execute(statement)
            columns = {row["name"] for row in conn.execute("PRAGMA table_info(chat_rooms)")}
            if "summarized_through" not in columns:
                conn.execute("ALTER TABLE chat_rooms ADD COLUMN summarized_through INTEGER")

    # Rooms

    def create_room(self, user_id: str, character_id: str, title: str = "") -> ChatRoom:
        created_at = utc_now()
        with self._connect("create_room") as conn:
            cursor = conn.execute(
                """
                INSERT INTO chat_rooms (user_id, character_id, title, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (user_id, character_id, title, created_at),
            )
            room_id = int(cursor.lastrowid)
        logger.debug(f"Created room {room_id} for user {user_id} and {character_id}")
        return ChatRoom(
            room_id=room_id,
            user_id=user_id,
            character_id=character_id,
            title=title,
            created_at=created_at,
        )

    def get_room(self, room_id: int) -> Optional[ChatRoom]:
        with self._connect("get_room") as conn:
            row = conn.execute(
                "SELECT * FROM chat_rooms WHERE room_id = ?", (room_id,)
            ).fetchone()
        return _row_to_room(row) if row else None

    def find_room(self, user_id: str, character_id: str) -> Optional[ChatRoom]:
        with self._connect("find_room") as conn:
            row = conn.execute(
                "SELECT * FROM chat_rooms WHERE user_id = ? AND character_id = ?",
                (user_id, character_id),
            ).fetchone()
        return _row_to_room(row) if row else None

    def list_rooms(self, user_id: str) -> List[ChatRoom]:
        with self._connect("list_rooms") as conn:
            rows = conn.execute(
                """
                SELECT * FROM chat_rooms WHERE user_id = ?
                ORDER BY COALESCE(last_message_at, created_at) DESC
                """,
                (user_id,),
            ).fetchall()
        return [_row_to_room(row) for row in rows]

    def update_room(self, room: ChatRoom) -> None:
        with self._connect("update_room") as conn:
            conn.execute(
                """
                UPDATE chat_rooms
                SET title = ?, last_message = ?, last_message_at = ?,
                    message_count = ?, active_branch = ?
                WHERE room_id = ?
                """,
                (
                    room.title,
                    room.last_message,
                    room.last_message_at,
                    room.message_count,
                    room.active_branch,
                    room.room_id,
                ),
            )

    def get_summary_checkpoint(self, room_id: int) -> Optional[int]:
        with self._connect("get_summary_checkpoint") as conn:
            row = conn.execute(
                "SELECT summarized_through FROM chat_rooms WHERE room_id = ?", (room_id,)
            ).fetchone()
        return row["summarized_through"] if row else None

    def set_summary_checkpoint(self, room_id: int, message_id: int) -> None:
        with self._connect("set_summary_checkpoint") as conn:
            conn.execute(
                "UPDATE chat_rooms SET summarized_through = ? WHERE room_id = ?",
                (message_id, room_id),
            )

    # Messages

    def insert_message(
        self,
        room_id: int,
        user_id: str,
        role: str,
        content: str,
        sequence_number: int,
        parent_message_id: Optional[int] = None,
        branch_name: str = MAIN_BRANCH,
        tokens_used: int = 0,
        cost: int = 0,
    ) -> Message:
        now = utc_now()
        with self._connect("insert_message") as conn:
            cursor = conn.execute(
                """
                INSERT INTO messages
                (room_id, user_id, role, content, sequence_number,
                 parent_message_id, branch_name, is_active_branch, is_deleted,
                 tokens_used, cost, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, 1, 0, ?, ?, ?, ?)
                """,
                (
                    room_id,
                    user_id,
                    role,
                    content,
                    sequence_number,
                    parent_message_id,
                    branch_name,
                    tokens_used,
                    cost,
                    now,
                    now,
                ),
            )
            message_id = int(cursor.lastrowid)
        return Message(
            message_id=message_id,
            room_id=room_id,
            user_id=user_id,
            role=role,
            content=content,
            sequence_number=sequence_number,
            parent_message_id=parent_message_id,
            branch_name=branch_name,
            tokens_used=tokens_used,
            cost=cost,
            created_at=now,
            updated_at=now,
        )

    def get_message(self, message_id: int) -> Optional[Message]:
        with self._connect("get_message") as conn:
            row = conn.execute(
                "SELECT * FROM messages WHERE message_id = ?", (message_id,)
            ).fetchone()
        return _row_to_message(row) if row else None

    def list_messages(
        self,
        room_id: int,
        include_deleted: bool = False,
        active_only: bool = False,
    ) -> List[Message]:
        query = "SELECT * FROM messages WHERE room_id = ?"
        params: List[Any] = [room_id]
        if not include_deleted:
            query += " AND is_deleted = 0"
        if active_only:
            query += " AND is_active_branch = 1"
        query += " ORDER BY sequence_number ASC, message_id ASC"

        with self._connect("list_messages") as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_message(row) for row in rows]

    def max_sequence_number(self, room_id: int) -> int:
        with self._connect("max_sequence_number") as conn:
            row = conn.execute(
                "SELECT MAX(sequence_number) AS max_seq FROM messages WHERE room_id = ?",
                (room_id,),
            ).fetchone()
        return int(row["max_seq"] or 0)

    def count_messages(self, room_id: int, since_message_id: int = 0) -> int:
        with self._connect("count_messages") as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS total FROM messages
                WHERE room_id = ? AND message_id >= ?
                """,
                (room_id, since_message_id),
            ).fetchone()
        return int(row["total"])

    def set_message_deleted(self, message_id: int, is_deleted: bool) -> None:
        with self._connect("set_message_deleted") as conn:
            conn.execute(
                """
                UPDATE messages SET is_deleted = ?, updated_at = ?
                WHERE message_id = ?
                """,
                (1 if is_deleted else 0, utc_now(), message_id),
            )

    def set_active_messages(self, room_id: int, message_ids: Iterable[int]) -> None:
        ids = list(message_ids)
        now = utc_now()
        with self._connect("set_active_messages") as conn:
            conn.execute(
                """
                UPDATE messages SET is_active_branch = 0, updated_at = ?
                WHERE room_id = ? AND is_active_branch = 1
                """,
                (now, room_id),
            )
            if ids:
                conn.executemany(
                    """
                    UPDATE messages SET is_active_branch = 1, updated_at = ?
                    WHERE room_id = ? AND message_id = ?
                    """,
                    [(now, room_id, message_id) for message_id in ids],
                )

    def soft_delete_branch(self, room_id: int, branch_name: str) -> int:
        with self._connect("soft_delete_branch") as conn:
            cursor = conn.execute(
                """
                UPDATE messages SET is_deleted = 1, is_active_branch = 0, updated_at = ?
                WHERE room_id = ? AND branch_name = ? AND is_deleted = 0
                """,
                (utc_now(), room_id, branch_name),
            )
            return int(cursor.rowcount)

    # Memories

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
        created_at = utc_now()
        blob = np.asarray(embedding, dtype=np.float32).tobytes()
        with self._connect("insert_memory") as conn:
            cursor = conn.execute(
                """
                INSERT INTO room_memories
                (room_id, content, embedding, importance, memory_type,
                 message_range_start, message_range_end, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    room_id,
                    content,
                    blob,
                    importance,
                    memory_type,
                    message_range_start,
                    message_range_end,
                    created_at,
                ),
            )
            memory_id = int(cursor.lastrowid)
        return Memory(
            memory_id=memory_id,
            room_id=room_id,
            content=content,
            embedding=list(embedding),
            importance=importance,
            memory_type=memory_type,
            message_range_start=message_range_start,
            message_range_end=message_range_end,
            created_at=created_at,
        )

    def list_memories(self, room_id: int, memory_type: Optional[str] = None) -> List[Memory]:
        query = "SELECT * FROM room_memories WHERE room_id = ?"
        params: List[Any] = [room_id]
        if memory_type:
            query += " AND memory_type = ?"
            params.append(memory_type)
        query += " ORDER BY memory_id DESC"

        with self._connect("list_memories") as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_memory(row) for row in rows]

    def match_room_memories(
        self,
        room_id: int,
        query_embedding: List[float],
        similarity_threshold: float,
        max_results: int,
    ) -> List[MemorySearchResult]:
        with self._connect("match_room_memories") as conn:
            rows = conn.execute(
                """
                SELECT memory_id, room_id, content, embedding, importance, memory_type
                FROM room_memories WHERE room_id = ?
                """,
                (room_id,),
            ).fetchall()

        if not rows or max_results <= 0:
            return []

        query = np.asarray(query_embedding, dtype=np.float32)
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            return []

        matrix = np.vstack([_decode_embedding(row["embedding"]) for row in rows])
        norms = np.linalg.norm(matrix, axis=1)
        norms[norms == 0] = np.inf
        similarities = matrix @ query / (norms * query_norm)

        ranked = sorted(
            (
                (float(similarities[i]), rows[i])
                for i in range(len(rows))
                if similarities[i] >= similarity_threshold
            ),
            key=lambda pair: pair[0],
            reverse=True,
        )
        return [
            MemorySearchResult(
                memory_id=row["memory_id"],
                room_id=row["room_id"],
                content=row["content"],
                importance=row["importance"],
                similarity=similarity,
                memory_type=row["memory_type"],
            )
            for similarity, row in ranked[:max_results]
        ]

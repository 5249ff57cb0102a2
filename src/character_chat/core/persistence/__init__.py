"""Persistence collaborator for rooms, messages and memories."""

from .repository import ChatRepository
from .sqlite_repository import SQLiteChatRepository

__all__ = ["ChatRepository", "SQLiteChatRepository"]

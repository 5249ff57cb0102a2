"""Client-side session management for the chat API."""

from .streaming_session import RegenerationContext, SessionRegistry, StreamingSessionClient

__all__ = ["RegenerationContext", "SessionRegistry", "StreamingSessionClient"]

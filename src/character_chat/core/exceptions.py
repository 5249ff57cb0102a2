"""
Exception hierarchy for Character Chat.

Provides structured error handling with specific error types for the chat
pipeline: request validation, ownership, billing, providers and storage.
"""

from typing import Any, Dict, Optional

INSUFFICIENT_POINTS = "INSUFFICIENT_POINTS"


class CharacterChatError(Exception):
    """Base exception for all Character Chat errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        component: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.component = component

    def __str__(self) -> str:
        """String representation of the error."""
        base_msg = f"[{self.component or 'CharacterChat'}] {self.message}"
        if self.error_code:
            base_msg = f"[{self.error_code}] {base_msg}"
        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "component": self.component,
            "details": self.details,
        }


class ConfigurationError(CharacterChatError):
    """Exception raised when configuration is invalid or missing."""

    pass


class ValidationError(CharacterChatError):
    """Exception raised when input validation fails."""

    def __init__(self, field: str, value: Any, reason: str, **kwargs: Any) -> None:
        super().__init__(
            f"Validation failed for field '{field}': {reason}",
            error_code="VALIDATION_ERROR",
            details={
                "field": field,
                "value": str(value),
                "reason": reason,
            },
            **kwargs,
        )


class UnauthorizedError(CharacterChatError):
    """Exception raised when the caller may not act on a resource."""

    def __init__(self, reason: str = "Unauthorized", **kwargs: Any) -> None:
        super().__init__(reason, error_code="UNAUTHORIZED", **kwargs)


class NotFoundError(CharacterChatError):
    """Exception raised when a room, message or character does not exist."""

    def __init__(self, resource: str, identifier: Any, **kwargs: Any) -> None:
        super().__init__(
            f"{resource} not found: {identifier}",
            error_code="NOT_FOUND",
            details={"resource": resource, "identifier": str(identifier)},
            **kwargs,
        )


class InsufficientBalanceError(CharacterChatError):
    """Exception raised when the user's point balance cannot cover a call."""

    def __init__(self, current_balance: int, required: int, **kwargs: Any) -> None:
        super().__init__(
            f"Insufficient points: balance {current_balance}, required {required}",
            error_code=INSUFFICIENT_POINTS,
            details={"current_balance": current_balance, "required": required},
            **kwargs,
        )
        self.current_balance = current_balance
        self.required = required


class ProviderError(CharacterChatError):
    """Exception raised when an LLM backend call does not succeed."""

    def __init__(self, provider: str, message: str, **kwargs: Any) -> None:
        super().__init__(
            f"{provider} error: {message}",
            error_code="PROVIDER_ERROR",
            details={"provider": provider},
            component=kwargs.pop("component", "provider_adapter"),
            **kwargs,
        )
        self.provider = provider
        self.provider_message = message


class EmbeddingError(CharacterChatError):
    """Exception raised when an embedding cannot be generated."""

    def __init__(self, reason: str, **kwargs: Any) -> None:
        super().__init__(
            f"Embedding failed: {reason}",
            error_code="EMBEDDING_ERROR",
            component=kwargs.pop("component", "embeddings"),
            **kwargs,
        )


class PersistenceError(CharacterChatError):
    """Exception raised when a storage read or write fails."""

    def __init__(self, operation: str, reason: str, **kwargs: Any) -> None:
        super().__init__(
            f"Storage operation '{operation}' failed: {reason}",
            error_code="PERSISTENCE_ERROR",
            details={"operation": operation, "reason": reason},
            component=kwargs.pop("component", "persistence"),
            **kwargs,
        )

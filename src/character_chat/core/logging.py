"""
Structured logging with request correlation.

Correlation fields (request id, user, room, character) are bound through
structlog's contextvars, so every log line emitted while a chat request is
being served carries them, including lines from providers and the memory
subsystem.
"""

import logging
import time
import uuid
from typing import Any, List, Optional

import structlog
from structlog.stdlib import LoggerFactory

CONTEXT_KEYS = ("request_id", "user_id", "room_id", "character_id")


class StructuredLogger:
    """Thin wrapper over a structlog logger with chat-specific helpers."""

    def __init__(self, name: str):
        self.name = name
        self.logger = structlog.get_logger(name)

    def debug(self, message: str, **kwargs: Any) -> None:
        self.logger.debug(message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self.logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self.logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self.logger.error(message, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log at error level with the active exception attached."""
        self.logger.exception(message, **kwargs)

    def log_processing_step(
        self,
        step: str,
        component: str,
        duration_ms: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        """Log a processing step, with its duration when known."""
        if duration_ms is not None:
            kwargs["duration_ms"] = round(duration_ms, 2)
        self.logger.info(f"Processing step: {step}", step=step, component=component, **kwargs)

    def log_api_request(
        self, method: str, path: str, status_code: int, duration_ms: float, **kwargs: Any
    ) -> None:
        """Log one served HTTP request."""
        level = logging.WARNING if status_code >= 500 else logging.INFO
        self.logger.log(
            level,
            f"API request: {method} {path}",
            method=method,
            path=path,
            status_code=status_code,
            duration_ms=round(duration_ms, 2),
            **kwargs,
        )

    def log_chat_event(self, event_type: str, room_id: int, **kwargs: Any) -> None:
        """Log ledger events (room creation, send, regenerate, rollback, fallback)."""
        self.logger.info(
            f"Chat event: {event_type}", event_type=event_type, room_id=room_id, **kwargs
        )


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name)


def set_request_context(
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    room_id: Optional[int] = None,
    character_id: Optional[str] = None,
) -> None:
    """Bind correlation fields for the rest of the current context.

    Only the given values are bound; fields bound earlier are kept.
    """
    values = {
        "request_id": request_id,
        "user_id": user_id,
        "room_id": room_id,
        "character_id": character_id,
    }
    structlog.contextvars.bind_contextvars(
        **{key: value for key, value in values.items() if value is not None}
    )


def get_request_context() -> dict:
    """Return the correlation fields currently bound."""
    bound = structlog.contextvars.get_contextvars()
    return {key: bound[key] for key in CONTEXT_KEYS if key in bound}


def clear_request_context() -> None:
    structlog.contextvars.unbind_contextvars(*CONTEXT_KEYS)


def generate_request_id() -> str:
    return str(uuid.uuid4())


def configure_logging(level: str = "INFO", json_format: bool = True) -> None:
    """Configure structlog over the stdlib logging handlers."""
    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(message)s",
        handlers=[logging.StreamHandler()],
    )


class ProcessingTimer:
    """Times a block and logs one `<step>_end` entry with its outcome.

    Usable around awaits; `duration_ms` is available after the block exits.
    """

    def __init__(self, logger: StructuredLogger, step: str, component: str, **kwargs: Any):
        self.logger = logger
        self.step = step
        self.component = component
        self.kwargs = kwargs
        self.start_time: Optional[float] = None
        self.duration_ms: Optional[float] = None

    def __enter__(self) -> "ProcessingTimer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self.start_time is None:
            return
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000
        outcome = {"status": "success"} if exc_type is None else {
            "status": "error",
            "error_type": exc_type.__name__,
        }
        self.logger.log_processing_step(
            f"{self.step}_end",
            self.component,
            duration_ms=self.duration_ms,
            **outcome,
            **self.kwargs,
        )

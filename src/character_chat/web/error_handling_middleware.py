"""
Error handling middleware for the chat API.

Maps the Character Chat exception hierarchy onto HTTP status codes and
turns unexpected failures into a 500 whose error id is the request id, so
the matching log lines can be found.
"""

import time
import uuid
from typing import Callable, Dict, Type

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ..core.exceptions import (
    CharacterChatError,
    ConfigurationError,
    InsufficientBalanceError,
    NotFoundError,
    PersistenceError,
    ProviderError,
    UnauthorizedError,
    ValidationError,
)
from ..core.logging import get_logger, get_request_context

logger = get_logger(__name__)

STATUS_CODES: Dict[Type[CharacterChatError], int] = {
    ValidationError: 400,
    UnauthorizedError: 403,
    NotFoundError: 404,
    InsufficientBalanceError: 402,
    ProviderError: 502,
    PersistenceError: 500,
    ConfigurationError: 500,
}


def status_for(error: CharacterChatError) -> int:
    for error_type, status_code in STATUS_CODES.items():
        if isinstance(error, error_type):
            return status_code
    return 500


def error_body(error: CharacterChatError) -> Dict[str, object]:
    """`{error, code}` body shared by JSON errors and stream error frames."""
    return {
        "error": error.message,
        "code": error.error_code,
        "details": error.details,
    }


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Middleware for global error handling."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Handle requests, mapping known errors to status codes."""
        try:
            response = await call_next(request)
            return response  # type: ignore
        except CharacterChatError as e:
            status_code = status_for(e)
            log = logger.error if status_code >= 500 else logger.warning
            log(
                "Request failed",
                status_code=status_code,
                error_code=e.error_code,
                error_message=e.message,
                path=request.url.path,
                method=request.method,
            )
            return JSONResponse(status_code=status_code, content=error_body(e))
        except Exception as e:
            error_id = get_request_context().get("request_id") or str(uuid.uuid4())
            logger.exception(
                "Unexpected error occurred",
                error_id=error_id,
                error_type=type(e).__name__,
                error_message=str(e),
                path=request.url.path,
                method=request.method,
            )
            return JSONResponse(
                status_code=500,
                content={
                    "error": "Internal server error",
                    "code": "INTERNAL_ERROR",
                    "error_id": error_id,
                    "timestamp": time.time(),
                },
            )

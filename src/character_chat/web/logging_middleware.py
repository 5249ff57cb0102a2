"""
Request correlation and access logging for the chat API.
"""

import time
from typing import Callable, FrozenSet

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ..core.logging import (
    clear_request_context,
    generate_request_id,
    get_logger,
    set_request_context,
)

REQUEST_ID_HEADER = "X-Request-ID"
QUIET_PATHS: FrozenSet[str] = frozenset({"/health", "/metrics"})


class LoggingMiddleware(BaseHTTPMiddleware):
    """Binds request id and caller for the request and logs one access line.

    Health and metrics endpoints are logged at debug level only. The request id is taken
    from the incoming header when the caller supplies one and always echoed
    back on the response.
    """

    def __init__(self, app: ASGIApp, quiet_paths: FrozenSet[str] = QUIET_PATHS):
        super().__init__(app)
        self.quiet_paths = quiet_paths
        self.logger = get_logger("api.access")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or generate_request_id()
        set_request_context(request_id=request_id, user_id=request.headers.get("x-user-id"))

        start = time.perf_counter()
        try:
            response: Response = await call_next(request)
            duration_ms = (time.perf_counter() - start) * 1000

            path = request.url.path
            if path in self.quiet_paths:
                self.logger.debug(
                    "Health check request", path=path, status_code=response.status_code
                )
            else:
                self.logger.log_api_request(
                    method=request.method,
                    path=path,
                    status_code=response.status_code,
                    duration_ms=duration_ms,
                )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            clear_request_context()

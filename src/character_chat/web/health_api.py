"""
Health and Prometheus metrics endpoints.
"""

import time
from typing import Any, Dict

from fastapi import APIRouter, Request, Response
from fastapi.responses import PlainTextResponse

from ..core.logging import get_logger
from ..observability import get_chat_metrics

logger = get_logger(__name__)

health_router = APIRouter(prefix="/health", tags=["health"])
metrics_router = APIRouter(prefix="/metrics", tags=["metrics"])

_started_at = time.time()


@health_router.get("")
async def health_check(request: Request) -> Dict[str, Any]:
    """Basic health check endpoint."""
    services = getattr(request.app.state, "services", None)
    response: Dict[str, Any] = {
        "status": "healthy",
        "timestamp": time.time(),
        "uptime_seconds": time.time() - _started_at,
    }
    if services is not None:
        response["characters"] = len(services.catalog)
        response["pending_memory_tasks"] = services.ledger.pending_background_tasks
    return response


@metrics_router.get("")
async def get_metrics(request: Request) -> Response:
    """Get Prometheus metrics in text format."""
    services = getattr(request.app.state, "services", None)
    metrics = services.ledger.metrics if services is not None else get_chat_metrics()
    try:
        return Response(content=metrics.export(), media_type=metrics.content_type)
    except Exception as e:
        logger.error("Failed to export metrics", error=str(e))
        return PlainTextResponse(
            content="# Error retrieving metrics\n", status_code=500, media_type="text/plain"
        )

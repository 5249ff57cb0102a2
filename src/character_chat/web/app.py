"""
FastAPI application factory for Character Chat.

Run with `uvicorn character_chat.web.app:app` or
`character-chat serve`.
"""

import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, cast

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..core.config import Config
from ..core.exceptions import CharacterChatError
from ..core.logging import configure_logging, get_logger
from ..services.container import ChatServices, build_services
from .chat_api import chat_router
from .error_handling_middleware import ErrorHandlingMiddleware, error_body, status_for
from .health_api import health_router, metrics_router
from .logging_middleware import LoggingMiddleware

logger = get_logger(__name__)

CONFIG_FILE_ENV = "CCH_CONFIG_FILE"


async def chat_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # Registered for CharacterChatError only
    error = cast(CharacterChatError, exc)
    status_code = status_for(error)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "Request failed",
        status_code=status_code,
        error_code=error.error_code,
        error_message=error.message,
        path=request.url.path,
    )
    return JSONResponse(status_code=status_code, content=error_body(error))


async def request_validation_handler(request: Request, exc: Exception) -> JSONResponse:
    errors = cast(RequestValidationError, exc).errors()
    return JSONResponse(
        status_code=400,
        content={
            "error": "Invalid request body",
            "code": "VALIDATION_ERROR",
            "details": {"errors": [str(e.get("msg")) for e in errors]},
        },
    )


def load_config() -> Config:
    """Config for the module-level app: the file named by CCH_CONFIG_FILE, else runtime.yaml."""
    config_file = os.getenv(CONFIG_FILE_ENV)
    if not config_file:
        return Config.from_env()
    config = Config.from_file(config_file)
    config.apply_env()
    return config


def create_app(
    config: Optional[Config] = None, services: Optional[ChatServices] = None
) -> FastAPI:
    """Build the API app; pass `services` to run against injected collaborators."""
    config = config or (services.config if services else Config.from_env())
    configure_logging(level=config.api.log_level, json_format=config.api.json_logs)
    services = services or build_services(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Character Chat API starting", environment=config.environment.value)
        yield
        await services.shutdown()
        logger.info("Character Chat API stopped")

    app = FastAPI(title="Character Chat API", version=__version__, lifespan=lifespan)
    app.state.services = services

    # Add middleware (order matters - last added is outermost)
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(CharacterChatError, chat_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(chat_router)
    app.include_router(health_router)
    app.include_router(metrics_router)
    return app


_app: Optional[FastAPI] = None


def __getattr__(name: str) -> FastAPI:
    # `character_chat.web.app:app` is built from the environment on first access
    global _app
    if name == "app":
        if _app is None:
            _app = create_app(load_config())
        return _app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

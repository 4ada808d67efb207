"""
FastAPI application entry point for filedrop.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from filedrop.config import Settings, get_settings
from filedrop.dependencies import Backends, build_backends
from filedrop.errors import FileDropError, StageError, ValidationError
from filedrop.routes import router

logger = logging.getLogger(__name__)


def _validation_message(exc: RequestValidationError) -> str:
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part != "body"]
        if loc:
            return f"Invalid value for {'.'.join(loc)}"
    return ValidationError.default_message


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(FileDropError)
    async def _filedrop_error(request: Request, exc: FileDropError):
        if isinstance(exc, StageError):
            logger.error(
                "%s %s failed with %s: %s",
                request.method,
                request.url.path,
                exc.kind.value,
                exc.details,
            )
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError):
        error = ValidationError(_validation_message(exc))
        return JSONResponse(status_code=error.status_code, content=error.to_payload())

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "kind": "InternalError"},
        )


def create_app(
    settings: Optional[Settings] = None, backends: Optional[Backends] = None
) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="filedrop", version="0.1.0")
    app.state.settings = settings
    app.state.backends = backends or build_backends(settings)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)
    app.include_router(router, prefix=settings.api_prefix)
    return app

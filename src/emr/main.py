from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.emr.api.v1.routes_ai import router as ai_router_v1
from src.emr.api.v1.routes_assignments import router as assignments_router_v1
from src.emr.api.v1.routes_auth import router as auth_router_v1
from src.emr.api.v1.routes_fax import router as fax_router_v1
from src.emr.api.v1.routes_forms import router as forms_router_v1
from src.emr.api.v1.routes_notes import router as notes_router_v1
from src.emr.api.v1.routes_patients import router as patients_router_v1
from src.emr.api.v1.routes_system import router as system_router_v1
from src.emr.api.v1.routes_templates import router as templates_router_v1
from src.emr.api.v1.routes_transcription import router as transcription_router_v1
from src.emr.config import settings
from src.emr.context import AppContext
from src.emr.errors import (
    AuthorizationError,
    ConflictError,
    EMRError,
    ExternalServiceError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from src.emr.logging_config import configure_logging

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (ValidationError, 422),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (StorageError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ExternalServiceError, status.HTTP_502_BAD_GATEWAY),
)


def status_for_error(exc: EMRError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def emr_error_handler(request: Request, exc: EMRError) -> JSONResponse:
    status_code = status_for_error(exc)
    content = {"detail": exc.message, "error": exc.code}
    if isinstance(exc, ValidationError) and exc.errors:
        content["errors"] = exc.errors
    if status_code >= 500:
        # Provider and database messages may carry internals; log them only.
        logger.error("%s on %s %s", exc.code, request.method, request.url.path, exc_info=exc)
        if isinstance(exc, ExternalServiceError):
            content["detail"] = "An external service failed"
        elif isinstance(exc, StorageError):
            content["detail"] = "Storage is unavailable"
        else:
            content["detail"] = "Internal server error"
    elif exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=status_code, content=content)


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """Build the API application.

    When ``context`` is given (tests), it is initialized immediately and left
    to the caller to dispose. Otherwise the lifespan creates one on startup
    and disposes it on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned: Optional[AppContext] = None
        if getattr(app.state, "context", None) is None:
            owned = AppContext(settings).initialize()
            app.state.context = owned
        try:
            yield
        finally:
            if owned is not None:
                owned.dispose()
                app.state.context = None

    app = FastAPI(title="EMR Forms & Notes API", lifespan=lifespan)
    app.state.context = context.initialize() if context is not None else None

    # CORS configuration: permissive by default for development. Tighten via
    # CORS_ALLOW_ORIGINS in production deployments.
    allow_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()] or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(EMRError, emr_error_handler)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict:
        """Basic liveness check for the API root."""
        return {"status": "ok"}

    # Versioned API routers
    for router in (
        system_router_v1,
        auth_router_v1,
        patients_router_v1,
        forms_router_v1,
        assignments_router_v1,
        notes_router_v1,
        templates_router_v1,
        transcription_router_v1,
        ai_router_v1,
        fax_router_v1,
    ):
        app.include_router(router, prefix="/api/v1")
    return app


configure_logging()
app = create_app()

"""FastAPI application entry point for the backup vault."""

from __future__ import annotations

import logging
import secrets
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from vault.api.health import router as health_router
from vault.api.password import router as password_router
from vault.api.upload import router as upload_router
from vault.config import Settings
from vault.database import create_engine, create_schema
from vault.exceptions import (
    ArtifactAlreadyReceived,
    ArtifactNotFound,
    ChecksumMismatch,
    InternalServerError,
    MissingChunk,
    UnknownArtifact,
)
from vault.logging_config import configure_logging
from vault.services.chunk_service import ChunkStore
from vault.services.crypto_service import load_or_create_keypair

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable

    from starlette.responses import Response

logger = logging.getLogger(__name__)

API_KEY_HEADER = "apikey"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime_security()
    configure_logging(settings.debug, settings.log_file)
    logger.info("Starting backup vault (debug=%s)", settings.debug)

    try:
        settings.ensure_directories()
    except OSError as exc:
        logger.critical("Failed to create storage directories: %s.", exc)
        raise

    try:
        engine, session_factory = create_engine(settings)
        app.state.engine = engine
        app.state.session_factory = session_factory
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check database path and permissions.", exc
        )
        raise

    try:
        await create_schema(engine)
    except Exception as exc:
        logger.critical("Failed to create database schema: %s.", exc)
        raise

    try:
        app.state.keypair = load_or_create_keypair(settings.keys_dir)
    except Exception as exc:
        logger.critical("Failed to load or create keypair in %s: %s.", settings.keys_dir, exc)
        raise

    app.state.chunk_store = ChunkStore(settings.full_dir)

    yield

    try:
        await engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("Backup vault stopped")


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="Backup Vault",
        description="Receives, stores and replays MongoDB oplog backups",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings

    @app.middleware("http")
    async def api_key_guard(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        provided = request.headers.get(API_KEY_HEADER)
        if provided is None or not secrets.compare_digest(
            provided.encode("utf-8"), settings.api_key.encode("utf-8")
        ):
            logger.warning(
                "Rejected %s %s from %s: invalid API key",
                request.method,
                request.url.path,
                request.client.host if request.client else "unknown",
            )
            return _error(401, "Invalid API key")
        return await call_next(request)

    app.include_router(health_router)
    app.include_router(password_router)
    app.include_router(upload_router)

    # Global exception handlers

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.exception_handler(UnknownArtifact)
    async def unknown_artifact_handler(request: Request, exc: UnknownArtifact) -> JSONResponse:
        logger.warning("UnknownArtifact in %s %s: %s", request.method, request.url.path, exc)
        return _error(400, str(exc))

    @app.exception_handler(ChecksumMismatch)
    async def checksum_mismatch_handler(request: Request, exc: ChecksumMismatch) -> JSONResponse:
        logger.warning(
            "ChecksumMismatch in %s %s: expected %s, got %s",
            request.method,
            request.url.path,
            exc.expected,
            exc.actual,
        )
        return _error(400, str(exc))

    @app.exception_handler(MissingChunk)
    async def missing_chunk_handler(request: Request, exc: MissingChunk) -> JSONResponse:
        logger.warning("MissingChunk in %s %s: %s", request.method, request.url.path, exc)
        return _error(400, str(exc))

    @app.exception_handler(ArtifactNotFound)
    async def artifact_not_found_handler(request: Request, exc: ArtifactNotFound) -> JSONResponse:
        logger.warning("ArtifactNotFound in %s %s: %s", request.method, request.url.path, exc)
        return _error(404, str(exc))

    @app.exception_handler(ArtifactAlreadyReceived)
    async def already_received_handler(
        request: Request, exc: ArtifactAlreadyReceived
    ) -> JSONResponse:
        logger.warning(
            "ArtifactAlreadyReceived in %s %s: %s", request.method, request.url.path, exc
        )
        return _error(409, str(exc))

    @app.exception_handler(InternalServerError)
    async def internal_server_error_handler(
        request: Request, exc: InternalServerError
    ) -> JSONResponse:
        logger.error(
            "InternalServerError in %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return _error(500, "Internal server error")

    @app.exception_handler(OSError)
    async def os_error_handler(request: Request, exc: OSError) -> JSONResponse:
        if isinstance(exc, (ConnectionError, TimeoutError)):
            raise exc
        logger.error("OSError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return _error(500, "Storage operation failed")

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.error("ValueError in %s %s: %s", request.method, request.url.path, exc)
        message = str(exc) or "Invalid value"
        return _error(422, message)

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        logger.error(
            "OperationalError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return _error(503, "Database temporarily unavailable")

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "vault.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )

"""FastAPI application."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from scriptorium import __version__
from scriptorium.api.routes import router
from scriptorium.config import Settings
from scriptorium.db.migrations import MigrationError
from scriptorium.repository.errors import (
    NetworkError,
    RepositoryError,
    SecurityPolicyError,
)
from scriptorium.repository.service import RepositoryService, ServiceNotInitialized

logger = logging.getLogger(__name__)

ALLOWED_ORIGINS = [
    "http://localhost:1420",
    "http://127.0.0.1:1420",
    "tauri://localhost",
    "https://tauri.localhost",
]
LOCAL_ORIGIN_REGEX = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"


def _error_body(exc: Exception, code: str) -> dict:
    return {"error": type(exc).__name__, "code": code, "detail": str(exc)}


def create_app(
    service: RepositoryService | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Create the API app around a repository service.

    The service is initialized on startup and shut down on exit.

    Args:
        service: Service to expose (built from settings if omitted)
        settings: Settings used when no service is given
    """
    service = service or RepositoryService(settings or Settings.load())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await service.init()
        yield
        await service.shutdown()

    app = FastAPI(
        title="Scriptorium",
        description="Scripture repository discovery, validation and import",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.service = service

    # Local host shells only: the API reads local paths and mutates the store
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_origin_regex=LOCAL_ORIGIN_REGEX,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "Origin", "X-Requested-With"],
    )

    @app.exception_handler(SecurityPolicyError)
    async def security_policy_handler(request: Request, exc: SecurityPolicyError):
        return JSONResponse(status_code=403, content=_error_body(exc, exc.code))

    @app.exception_handler(NetworkError)
    async def network_error_handler(request: Request, exc: NetworkError):
        return JSONResponse(status_code=502, content=_error_body(exc, exc.code))

    @app.exception_handler(RepositoryError)
    async def repository_error_handler(request: Request, exc: RepositoryError):
        return JSONResponse(status_code=400, content=_error_body(exc, exc.code))

    @app.exception_handler(ServiceNotInitialized)
    async def not_initialized_handler(request: Request, exc: ServiceNotInitialized):
        return JSONResponse(
            status_code=503, content=_error_body(exc, "SERVICE_NOT_INITIALIZED")
        )

    @app.exception_handler(MigrationError)
    async def migration_error_handler(request: Request, exc: MigrationError):
        logger.error(f"Schema migration failed: {exc}")
        return JSONResponse(status_code=500, content=_error_body(exc, "MIGRATION_ERROR"))

    app.include_router(router, prefix="/api/v1")

    @app.get("/")
    async def root():
        """Root endpoint with API info."""
        return {
            "name": "Scriptorium",
            "version": __version__,
            "docs": "/docs",
            "api": "/api/v1",
        }

    return app

"""
FastAPI application for Homie.

This is the HTTP API the inventory frontend talks to, plus the `/sync`
WebSocket the document-sync stream runs over.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from homie import __version__
from homie.api.deps import build_services
from homie.api.inventories import router as inventories_router
from homie.auth.gate import clear_session_cookie
from homie.auth.routes import router as auth_router
from homie.config import Settings, get_settings
from homie.core.errors import AuthenticationError, HomieError
from homie.integrations.sentry import init_sentry
from homie.sync.gateway import SyncGateway

logger = logging.getLogger(__name__)


# =============================================================================
# Lifespan
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize and cleanup app resources."""
    settings: Settings = app.state.settings

    if init_sentry(settings):
        logger.info("Sentry error tracking enabled")

    services = build_services(settings)
    await services.database.create_tables()
    app.state.services = services

    logger.info(f"Homie API starting in {settings.environment} mode ({services.auth.mode} auth)")

    yield

    await services.database.dispose()
    logger.info("Homie API shutting down")


# =============================================================================
# Error Handling
# =============================================================================


def _describe_validation_error(exc: RequestValidationError) -> tuple[str, list[str]]:
    """First error as a client message, plus every offending field location."""
    locations = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part != "body"]
        locations.append(".".join(loc) or "body")

    first = exc.errors()[0] if exc.errors() else {}
    message = first.get("msg", "Invalid request")
    if locations:
        message = f"{locations[0]}: {message}"
    return message, locations


def install_error_handlers(app: FastAPI) -> None:
    """Every error leaves as {"error": message}."""

    @app.exception_handler(HomieError)
    async def handle_homie_error(request: Request, exc: HomieError):
        response = JSONResponse({"error": exc.message}, status_code=exc.status_code)
        if isinstance(exc, AuthenticationError):
            clear_session_cookie(response, request.app.state.settings)
        return response

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        # Locations only: submitted values may be passwords
        message, locations = _describe_validation_error(exc)
        logger.warning(f"Invalid request to {request.url.path}: {', '.join(locations)}")
        return JSONResponse({"error": message}, status_code=400)

    @app.exception_handler(Exception)
    async def handle_internal_error(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse({"error": "Internal server error"}, status_code=500)


# =============================================================================
# App Setup
# =============================================================================


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title="Homie API",
        description="Shared, real-time synchronized inventories",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(SyncGateway)

    install_error_handlers(app)

    app.include_router(auth_router)
    app.include_router(inventories_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app

# src/laundry_sync/main.py
"""Main entry point for the Laundry Sync application."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from laundry_sync.api.v1 import appliances_router, system_router
from laundry_sync.core.logging_config import setup_logging
from laundry_sync.core.settings import settings
from laundry_sync.db.session import SessionLocal
from laundry_sync.scripts.seed import seed_default_appliances
from laundry_sync.services.errors import (
    ApplianceError,
    ApplianceNotFoundError,
    InvalidDurationError,
    StoreUnavailableError,
)
from laundry_sync.services.push import get_push_notifier
from laundry_sync.services.sweeper import ExpirationSweeper

logger = logging.getLogger(__name__)

_ERROR_STATUS: dict[type[ApplianceError], int] = {
    ApplianceNotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidDurationError: status.HTTP_400_BAD_REQUEST,
    StoreUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}

# Initialize FastAPI app
app = FastAPI(
    title="Laundry Sync API",
    description="Shared washer and dryer availability with live updates",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Compress JSON responses over 1 KB. The size threshold does not apply to
# streaming responses such as the SSE route.
app.add_middleware(GZipMiddleware, minimum_size=1000)

# Include API routers
app.include_router(appliances_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")


def _error_body(code: str, message: str) -> dict[str, object]:
    return {"success": False, "error": code, "message": message}


@app.exception_handler(ApplianceError)
async def appliance_error_handler(request: Request, exc: ApplianceError) -> JSONResponse:
    status_code = _ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content=_error_body(exc.code, str(exc)))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0]["msg"] if errors else "Invalid request"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body("INVALID_REQUEST", message),
    )


def _seed_defaults() -> None:
    try:
        with SessionLocal() as db:
            seed_default_appliances(db)
    except StoreUnavailableError as exc:
        logger.warning("Skipping appliance seeding, run migrations first: %s", exc)


@app.on_event("startup")
async def on_startup() -> None:
    setup_logging()
    logger.info("Starting %s %s", settings.app_name, settings.app_version)
    if settings.seed_default_appliances:
        _seed_defaults()
    if settings.sweeper_enabled:
        sweeper = ExpirationSweeper(get_push_notifier())
        await sweeper.start()
        app.state.sweeper = sweeper
    else:
        app.state.sweeper = None


@app.on_event("shutdown")
async def on_shutdown() -> None:
    sweeper: ExpirationSweeper | None = getattr(app.state, "sweeper", None)
    if sweeper:
        await sweeper.stop()
    get_push_notifier().close_all()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Shared washer and dryer availability with live updates",
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("laundry_sync.main:app", host="0.0.0.0", port=8000, reload=settings.debug)

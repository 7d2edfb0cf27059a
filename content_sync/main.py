"""FastAPI application factory and process entry points."""

import asyncio
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import routes
from .config import get_settings
from .errors import ContentSyncError, QuotaExceededError
from .logging import configure_logging, get_logger
from .service import SyncService
from .sync.ticker import run_tickers


def create_app(service: SyncService | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        service: Pre-built sync service; built from settings when omitted.

    Returns:
        Configured FastAPI application instance.
    """
    settings = service.settings if service is not None else get_settings()

    configure_logging(
        level=settings.logging.level,
        json_format=settings.logging.json_format,
        service_name=settings.service_name,
        service_version=settings.service_version,
    )
    if service is None:
        service = SyncService(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = get_logger(__name__)
        logger.info(
            "Starting application",
            service=settings.service_name,
            version=settings.service_version,
            environment=settings.environment,
        )
        await service.start()
        yield
        logger.info("Shutting down application")
        await service.stop()

    app = FastAPI(
        title="Content Sync",
        description="Creator content synchronization with provider quota accounting",
        version=settings.service_version,
        docs_url="/docs" if settings.api.debug else None,
        redoc_url="/redoc" if settings.api.debug else None,
        openapi_url="/openapi.json" if settings.api.debug else None,
        lifespan=lifespan,
    )
    app.state.service = service

    app.add_exception_handler(QuotaExceededError, quota_exception_handler)
    app.add_exception_handler(ContentSyncError, sync_exception_handler)

    app.include_router(routes.router)

    return app


async def quota_exception_handler(request: Request, exc: QuotaExceededError) -> JSONResponse:
    """Quota errors that escape a route map to 429."""
    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": 429,
                "message": str(exc),
                "provider": exc.provider,
                "remaining_quota": exc.remaining_quota,
            }
        },
    )


async def sync_exception_handler(request: Request, exc: ContentSyncError) -> JSONResponse:
    """Unhandled engine errors map to 500 with the error type."""
    logger = get_logger(__name__)
    logger.exception("Unhandled sync error", path=request.url.path, method=request.method)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": 500,
                "message": "Internal Server Error",
                "detail": f"{type(exc).__name__}: {exc}",
            }
        },
    )


def run() -> None:
    """Serve the API (with tickers) under uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "content_sync.main:create_app",
        factory=True,
        host=settings.api.host,
        port=settings.api.port,
        log_level=settings.logging.level.lower(),
    )


async def _run_headless() -> None:
    settings = get_settings()
    configure_logging(
        level=settings.logging.level,
        json_format=settings.logging.json_format,
        service_name=settings.service_name,
        service_version=settings.service_version,
    )
    service = SyncService(settings)
    await service.start(start_tickers=False)
    try:
        await run_tickers(*service.tickers)
    finally:
        await service.stop()


def run_worker() -> None:
    """Run the tickers without the HTTP surface until SIGINT / SIGTERM."""
    try:
        asyncio.run(_run_headless())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()

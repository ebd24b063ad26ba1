"""
FastAPI application entry point for the recording sync service.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from meeting_sync import __version__
from meeting_sync.api.models import RootResponse
from meeting_sync.api.routes import router as api_router
from meeting_sync.config import Settings, get_settings
from meeting_sync.scheduler import SyncScheduler
from meeting_sync.sync.models import utcnow
from meeting_sync.sync.orchestrator import TransferJob
from meeting_sync.sync.staging import cleanup_stale

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(settings: Optional[Settings] = None, job: Optional[TransferJob] = None) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings override (defaults to the cached settings)
        job: Prebuilt transfer job (built from settings if not provided)
    """
    settings = settings or get_settings()
    job = job or TransferJob(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler for startup/shutdown."""
        # Startup
        logger.info("Server starting...")
        logger.info(f"Ledger backend: {settings.ledger_backend}")

        try:
            job.ledger.init_schema()
        except Exception:
            logger.exception("Could not initialize ledger schema")

        cleanup_stale(settings.staging_dir, settings.staging_max_age_hours)

        scheduler = None
        if settings.sync_enabled:
            scheduler = SyncScheduler(
                job,
                interval_minutes=settings.sync_interval_minutes,
                run_on_startup=settings.sync_on_startup,
            )
            scheduler.start()
        else:
            logger.warning("Sync is disabled (SYNC_ENABLED=false)")
        app.state.scheduler = scheduler

        yield

        # Shutdown
        logger.info("Shutting down gracefully...")
        if scheduler is not None:
            await scheduler.stop()

    app = FastAPI(
        title="Meeting Recording Sync",
        description="Copies Zoom cloud recordings to Google Drive",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.job = job
    app.state.scheduler = None

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Mount API routes
    app.include_router(api_router, prefix="/api")

    @app.get("/", response_model=RootResponse)
    async def root():
        """Liveness check."""
        return RootResponse(
            status="running",
            message="Zoom to Drive sync service",
            timestamp=utcnow().isoformat(),
            environment=settings.environment,
        )

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.url.path}", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if settings.environment == "development" else None,
            },
        )

    return app


def main():
    """Run the application with uvicorn."""
    import uvicorn
    settings = get_settings()

    uvicorn.run(
        "meeting_sync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


configure_logging(get_settings().log_level)
app = create_app()


if __name__ == "__main__":
    main()

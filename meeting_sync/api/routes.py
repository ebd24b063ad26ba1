"""
API route handlers for the recording sync service.
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Query, Request

from meeting_sync import __version__
from meeting_sync.api.models import (
    ErrorResponse,
    HealthResponse,
    RunsResponse,
    RunSummaryInfo,
    SyncStatusResponse,
    SyncTriggerResponse,
)
from meeting_sync.sync.orchestrator import TransferJob

logger = logging.getLogger(__name__)

router = APIRouter()


def get_job(request: Request) -> TransferJob:
    return request.app.state.job


def verify_admin_key(request: Request, x_admin_key: Optional[str] = Header(None)) -> str:
    """Verify admin API key for protected endpoints."""
    settings = request.app.state.settings
    if not x_admin_key or x_admin_key != settings.admin_api_key:
        raise HTTPException(status_code=401, detail="Invalid or missing admin key")
    return x_admin_key


@router.get("/health", response_model=HealthResponse)
async def health_check(job: TransferJob = Depends(get_job)):
    """
    Health check endpoint.

    Reports "degraded" when the ledger cannot be read.
    """
    try:
        stats = job.ledger.get_stats()
        last_run = stats.get("last_run") or {}
        return HealthResponse(
            status="healthy",
            version=__version__,
            ledger_backend=stats.get("backend", "unknown"),
            last_run_status=last_run.get("status"),
        )

    except Exception as e:
        logger.warning(f"Health check warning: {e}")
        return HealthResponse(
            status="degraded",
            version=__version__,
            ledger_backend=job.settings.ledger_backend,
        )


@router.post(
    "/sync",
    status_code=202,
    response_model=SyncTriggerResponse,
    responses={401: {"model": ErrorResponse}},
)
async def trigger_sync(
    background_tasks: BackgroundTasks,
    job: TransferJob = Depends(get_job),
    _: str = Depends(verify_admin_key),
):
    """
    Start a sync run in the background.

    Requires admin API key in X-Admin-Key header. Overlapping runs are
    turned away by the run lease and recorded as skipped.
    """
    background_tasks.add_task(job.run)
    logger.info("Manual sync triggered")
    return SyncTriggerResponse(status="accepted", message="Sync started")


@router.get("/sync/status", response_model=SyncStatusResponse)
async def sync_status(request: Request, job: TransferJob = Depends(get_job)):
    """Ledger statistics, scheduler state and summary-write failures."""
    status = job.get_status()
    scheduler = getattr(request.app.state, "scheduler", None)

    return SyncStatusResponse(
        ledger=status["ledger"],
        scheduler=scheduler.get_status() if scheduler else None,
        summary_write_failures=status["summary_write_failures"],
        last_summary_error=status["last_summary_error"],
        last_summary=status["last_summary"],
    )


@router.get("/sync/runs", response_model=RunsResponse, responses={500: {"model": ErrorResponse}})
async def list_runs(
    limit: int = Query(10, ge=1, le=100),
    job: TransferJob = Depends(get_job),
):
    """Most recent run summaries, newest first."""
    try:
        runs = job.ledger.recent_runs(limit=limit)
    except Exception as e:
        logger.exception("Error listing runs")
        raise HTTPException(status_code=500, detail=str(e))

    return RunsResponse(
        runs=[RunSummaryInfo(**run.to_dict()) for run in runs],
        total=len(runs),
    )

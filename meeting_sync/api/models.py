"""
Pydantic models for API request/response schemas.
"""

from typing import Optional
from pydantic import BaseModel, Field


class RunSummaryInfo(BaseModel):
    """One run summary row."""
    run_id: Optional[int] = None
    started_at: str
    completed_at: str
    status: str = Field(..., description="success, partial, failed or skipped")
    new_files: int
    duplicates_skipped: int
    recordings_processed: int = 0
    failed_items: int = 0
    error_count: int = 0
    last_error: Optional[str] = None
    duration_seconds: float


class RootResponse(BaseModel):
    """Response for the root liveness endpoint."""
    status: str
    message: str
    timestamp: str
    environment: str


class HealthResponse(BaseModel):
    """Response for health check endpoint."""
    status: str
    version: str
    ledger_backend: str
    last_run_status: Optional[str] = None


class SyncTriggerResponse(BaseModel):
    """Response for the manual sync trigger."""
    status: str
    message: str


class SyncStatusResponse(BaseModel):
    """Ledger statistics and scheduler state."""
    ledger: dict
    scheduler: Optional[dict] = None
    summary_write_failures: int = 0
    last_summary_error: Optional[str] = None
    last_summary: Optional[RunSummaryInfo] = None


class RunsResponse(BaseModel):
    """Recent run summaries, newest first."""
    runs: list[RunSummaryInfo]
    total: int


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: Optional[str] = None

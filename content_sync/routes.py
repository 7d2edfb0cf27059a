"""Quota status, sync progress and force-sync API routes."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from .db.models import utcnow
from .errors import ConfigurationError, SourceNotFoundError
from .logging import get_logger
from .quota.policy import Provider
from .service import SyncService
from .sync.results import RunStatus

logger = get_logger(__name__)
router = APIRouter(prefix="/api/v1/sync", tags=["Sync"])


# --- Response Models ---


class QuotaSummaryResponse(BaseModel):
    provider: Provider
    daily_usage: int
    daily_limit: int
    usage_percentage: float
    remaining_quota: int
    warning_level: str
    error_count: int
    total_requests: int
    can_use: bool


class TrendPoint(BaseModel):
    day: date
    total_units: int
    total_requests: int
    error_count: int
    usage_percentage: float


class QuotaTrendResponse(BaseModel):
    provider: Provider
    days: list[TrendPoint]


class SyncProgressResponse(BaseModel):
    source_id: UUID
    phase: str
    percent_complete: float | None
    estimated_seconds_remaining: int | None
    synced_count: int
    failed_count: int
    total_count: int | None
    initial_sync_completed: bool
    last_synced_at: datetime | None
    last_error: str | None


class SyncRunResponse(BaseModel):
    source_id: UUID
    status: str
    items_processed: int
    phase: str | None
    has_more: bool
    stats_refresh: str | None = None
    message: str | None = None


class HealthStatus(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "degraded"] = Field(description="Overall health status")
    timestamp: datetime = Field(default_factory=utcnow, description="Current server timestamp (UTC)")
    version: str = Field(description="Service version")
    checks: dict[str, bool] = Field(default_factory=dict, description="Individual component checks")


def get_service(request: Request) -> SyncService:
    """Get the sync service from app state."""
    return request.app.state.service


# --- Routes ---


@router.get("/quota/{provider}", response_model=QuotaSummaryResponse)
async def get_quota_summary(
    provider: Provider,
    service: SyncService = Depends(get_service),
) -> QuotaSummaryResponse:
    """Today's quota usage for a provider."""
    summary = await service.ledger.quota_summary(provider)
    return QuotaSummaryResponse(
        provider=summary.provider,
        daily_usage=summary.daily_usage,
        daily_limit=summary.daily_limit,
        usage_percentage=round(summary.usage_percentage, 2),
        remaining_quota=summary.remaining_quota,
        warning_level=summary.warning_level.value,
        error_count=summary.error_count,
        total_requests=summary.total_requests,
        can_use=summary.can_use,
    )


@router.get("/quota/{provider}/trend", response_model=QuotaTrendResponse)
async def get_quota_trend(
    provider: Provider,
    service: SyncService = Depends(get_service),
) -> QuotaTrendResponse:
    """Per-day usage for the last seven days."""
    points = await service.ledger.weekly_trend(provider)
    return QuotaTrendResponse(
        provider=provider,
        days=[
            TrendPoint(
                day=p.day,
                total_units=p.total_units,
                total_requests=p.total_requests,
                error_count=p.error_count,
                usage_percentage=round(p.usage_percentage, 2),
            )
            for p in points
        ],
    )


@router.get("/sources/{source_id}/progress", response_model=SyncProgressResponse)
async def get_sync_progress(
    source_id: UUID,
    service: SyncService = Depends(get_service),
) -> SyncProgressResponse:
    """Sync phase, counters and initial sync progress for a source."""
    try:
        progress = await service.store.get_progress(source_id)
    except SourceNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return SyncProgressResponse(
        source_id=source_id,
        phase=progress.phase.value,
        percent_complete=round(progress.percent_complete, 2) if progress.percent_complete is not None else None,
        estimated_seconds_remaining=progress.estimated_seconds_remaining,
        synced_count=progress.synced_count,
        failed_count=progress.failed_count,
        total_count=progress.total_count,
        initial_sync_completed=progress.initial_sync_completed,
        last_synced_at=progress.last_synced_at,
        last_error=progress.last_error,
    )


@router.post("/sources/{source_id}/sync", response_model=SyncRunResponse)
async def force_sync(
    source_id: UUID,
    service: SyncService = Depends(get_service),
) -> SyncRunResponse:
    """Run one sync step for a source now.

    Returns 409 if a run for the source is already in progress and 429 if
    the provider's quota cannot cover the page.
    """
    try:
        result = await service.scheduler.force_sync(source_id)
    except SourceNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    if result.status == RunStatus.SKIPPED:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.message)
    if result.status == RunStatus.QUOTA_EXHAUSTED:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=result.message)

    logger.info(
        "Force sync finished",
        source_id=str(source_id),
        status=result.status.value,
        items_processed=result.items_processed,
    )
    return SyncRunResponse(
        source_id=result.source_id,
        status=result.status.value,
        items_processed=result.items_processed,
        phase=result.phase,
        has_more=result.has_more,
        stats_refresh=result.stats_refresh.status.value if result.stats_refresh else None,
        message=result.message,
    )


@router.get("/health", response_model=HealthStatus)
async def health_check(service: SyncService = Depends(get_service)) -> HealthStatus:
    """Liveness with a database check."""
    database_ok = await service.check_database()
    return HealthStatus(
        status="healthy" if database_ok else "degraded",
        version=service.settings.service_version,
        checks={
            "database": database_ok,
            "sync_ticker": service.sync_ticker.is_running,
        },
    )

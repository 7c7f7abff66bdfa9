"""Health API endpoints.

This module provides endpoints to:
- Get the current health snapshot and its history
- Trigger an immediate health check
- Read and replace the health thresholds
"""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from hostguard.errors import ConfigurationError
from hostguard.health.config import parse_health_config
from hostguard.health.models import HealthSnapshot, HealthStatus
from hostguard.setup import EngineServices, get_engine

# Response schemas


class CheckResultResponse(BaseModel):
    """Response model for one check result."""

    name: str
    status: str
    value: float | None
    threshold: dict[str, Any]
    timestamp: datetime
    message: str
    weight: float


class HealthSnapshotResponse(BaseModel):
    """Response model for a health snapshot."""

    overall: str
    score: float
    checks: list[CheckResultResponse]
    timestamp: datetime | None
    duration_ms: float
    unknown_checks: list[str]
    error: str | None = None


class HealthHistoryResponse(BaseModel):
    snapshots: list[HealthSnapshotResponse]
    count: int


class HealthSummaryResponse(BaseModel):
    """Response model for status distribution over a window."""

    window_seconds: float
    total_checks: int
    healthy_percent: float
    warning_percent: float
    critical_percent: float
    average_score: float | None
    current_status: str
    uptime_seconds: float


# Router
router = APIRouter(prefix="/api/health", tags=["health"])


def _require_engine() -> EngineServices:
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine


def _snapshot_response(snapshot: HealthSnapshot) -> HealthSnapshotResponse:
    return HealthSnapshotResponse.model_validate(snapshot.to_dict())


@router.get("", response_model=HealthSnapshotResponse)
async def get_current_health() -> HealthSnapshotResponse:
    """Get the most recent health snapshot.

    Before the first sampler tick completes, an unknown placeholder is
    returned rather than an error.

    Raises:
        HTTPException: 503 if the engine is not initialized
    """
    engine = _require_engine()
    snapshot = engine.health_monitor.current
    if snapshot is None:
        return HealthSnapshotResponse(
            overall=HealthStatus.UNKNOWN.value,
            score=0.0,
            checks=[],
            timestamp=None,
            duration_ms=0.0,
            unknown_checks=[check.name for check in engine.health_monitor.config.checks],
        )
    return _snapshot_response(snapshot)


@router.get("/history", response_model=HealthHistoryResponse)
async def get_health_history(
    limit: int | None = Query(default=None, ge=1, le=1000),
    window_seconds: float | None = Query(default=None, gt=0),
) -> HealthHistoryResponse:
    """Get snapshots in time order, optionally windowed and limited to the most recent."""
    engine = _require_engine()
    snapshots = engine.health_monitor.get_history(limit=limit, window_seconds=window_seconds)
    return HealthHistoryResponse(
        snapshots=[_snapshot_response(s) for s in snapshots],
        count=len(snapshots),
    )


@router.get("/summary", response_model=HealthSummaryResponse)
async def get_health_summary(
    window_seconds: float = Query(default=3600, gt=0),
) -> HealthSummaryResponse:
    engine = _require_engine()
    return HealthSummaryResponse(**engine.health_monitor.get_summary(window_seconds))


@router.post("/check", response_model=HealthSnapshotResponse)
async def perform_health_check() -> HealthSnapshotResponse:
    """Evaluate all checks now against the latest stored samples."""
    engine = _require_engine()
    return _snapshot_response(engine.health_monitor.perform_check())


@router.get("/config")
async def get_health_config() -> dict[str, Any]:
    engine = _require_engine()
    return engine.health_monitor.config.model_dump(mode="json")


@router.put("/config")
async def update_health_config(body: dict[str, Any]) -> dict[str, Any]:
    """Replace the health thresholds.

    The whole config is validated before it is swapped in; on failure the
    previous config stays active.

    Raises:
        HTTPException: 422 if the config is invalid
    """
    engine = _require_engine()
    try:
        config = parse_health_config(body)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    engine.health_monitor.update_config(config)
    return config.model_dump(mode="json")

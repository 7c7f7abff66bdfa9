"""Alert API endpoints."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from hostguard.alerts.models import Alert, AlertSeverity
from hostguard.setup import get_engine


class AlertResponse(BaseModel):
    """Response model for a single alert."""

    id: str
    severity: str
    category: str
    source_key: str
    message: str
    timestamp: datetime
    first_seen: datetime
    dedupe_key: str
    resolved: bool
    resolved_at: datetime | None
    occurrences: int
    details: dict[str, Any]


class AlertListResponse(BaseModel):
    """Response model for an alert query."""

    alerts: list[AlertResponse]
    count: int
    counts: dict[str, int]


router = APIRouter(prefix="/api/alerts", tags=["alerts"])


def _alert_response(alert: Alert) -> AlertResponse:
    return AlertResponse.model_validate(alert.to_dict())


@router.get("", response_model=AlertListResponse)
async def list_alerts(
    window_seconds: float | None = Query(default=None, gt=0),
    severity: AlertSeverity | None = Query(default=None),
    category: str | None = Query(default=None),
    resolved: bool | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
) -> AlertListResponse:
    """List alerts, most recent first.

    Args:
        window_seconds: Only alerts raised or refreshed within this window
        severity: Filter by severity (info, warning, critical)
        category: Filter by category (e.g., "health.threshold")
        resolved: Filter by resolution state
        limit: Maximum number of alerts returned (default 100, max 1000)

    Returns:
        Matching alerts plus retained alert counts
    """
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    alerts = engine.alert_manager.query(
        window_seconds,
        severity=severity,
        category=category,
        resolved=resolved,
        limit=limit,
    )
    return AlertListResponse(
        alerts=[_alert_response(a) for a in alerts],
        count=len(alerts),
        counts=engine.alert_manager.counts(),
    )


@router.get("/{alert_id}", response_model=AlertResponse)
async def get_alert(alert_id: str) -> AlertResponse:
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    alert = engine.alert_manager.get(alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return _alert_response(alert)


@router.post("/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(alert_id: str) -> AlertResponse:
    """Resolve an alert. Resolving an already resolved alert is a no-op.

    Raises:
        HTTPException: 404 if the alert does not exist
    """
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    alert = engine.alert_manager.resolve(alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return _alert_response(alert)

"""Data export endpoints.

Each route returns a JSON document meant for download and offline
analysis. Nothing here mutates engine state.
"""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, HTTPException, Query

from hostguard.setup import get_engine

router = APIRouter(prefix="/api/export", tags=["export"])


def _exported_at() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


@router.get("/health")
async def export_health(
    window_seconds: float | None = Query(default=None, gt=0),
) -> dict[str, Any]:
    """Export health snapshots, the active thresholds and the status summary."""
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    monitor = engine.health_monitor
    snapshots = monitor.get_history(window_seconds=window_seconds)
    return {
        "exported_at": _exported_at(),
        "config": monitor.config.model_dump(mode="json"),
        "summary": monitor.get_summary(
            window_seconds or engine.settings.health_history_max_age_seconds
        ),
        "snapshots": [s.to_dict() for s in snapshots],
    }


@router.get("/audit")
async def export_audit(audit_id: str | None = Query(default=None)) -> dict[str, Any]:
    """Export one audit report, the latest when no id is given.

    Raises:
        HTTPException: 404 if there is no matching report
    """
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    exported = engine.audit_engine.export_report(audit_id)
    if exported is None:
        raise HTTPException(status_code=404, detail="Audit not found")
    return exported


@router.get("/ratelimit")
async def export_ratelimit(
    window_seconds: float | None = Query(default=None, gt=0),
) -> dict[str, Any]:
    """Export rate limit policy and counters, with blocks and activity in the window."""
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    return {"exported_at": _exported_at(), **engine.rate_limiter.export_data(window_seconds)}


@router.get("/alerts")
async def export_alerts(
    window_seconds: float | None = Query(default=None, gt=0),
) -> dict[str, Any]:
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    alerts = engine.alert_manager.query(window_seconds)
    return {
        "exported_at": _exported_at(),
        "counts": engine.alert_manager.counts(),
        "alerts": [a.to_dict() for a in alerts],
    }

"""Security audit API endpoints."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from hostguard.audit.models import AuditOptions, AuditReport
from hostguard.setup import get_engine

# Request/Response schemas


class AuditRequest(BaseModel):
    """Request model for starting an audit."""

    categories: list[str] | None = Field(
        default=None, description="Categories to run; omit to run all"
    )
    wait: bool = Field(
        default=True, description="Wait for the report instead of running in the background"
    )


class AuditStartedResponse(BaseModel):
    audit_id: str
    status: str
    categories: list[str]


class AuditReportResponse(BaseModel):
    """Response model for an audit report."""

    id: str
    started_at: datetime
    completed_at: datetime | None
    status: str
    cancelled: bool
    options: dict[str, Any]
    categories: list[dict[str, Any]]
    summary: dict[str, int]
    overall_risk: str
    risk_category: str | None
    incomplete_categories: list[str]
    recommendations: list[dict[str, Any]]
    duration_ms: float


class AuditHistoryResponse(BaseModel):
    reports: list[AuditReportResponse]
    count: int


class CancelResponse(BaseModel):
    audit_id: str
    cancelled: bool


# Router
router = APIRouter(prefix="/api/audit", tags=["audit"])


def _report_response(report: AuditReport) -> AuditReportResponse:
    return AuditReportResponse.model_validate(report.to_dict())


@router.post("", response_model=AuditReportResponse | AuditStartedResponse)
async def perform_audit(
    request: AuditRequest | None = None,
) -> AuditReportResponse | AuditStartedResponse:
    """Run a security audit.

    With wait=false the audit runs in the background and its id is returned
    immediately; poll GET /api/audit/{audit_id} for the report.

    Raises:
        HTTPException: 422 if an unknown category is requested
    """
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    request = request or AuditRequest()
    options = AuditOptions(
        categories=tuple(request.categories) if request.categories is not None else None
    )

    try:
        if not request.wait:
            audit_id = engine.audit_engine.start_audit(options)
            return AuditStartedResponse(
                audit_id=audit_id,
                status="running",
                categories=list(options.categories or engine.audit_engine.categories),
            )
        report = await engine.audit_engine.perform_audit(options)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    return _report_response(report)


@router.get("/latest", response_model=AuditReportResponse)
async def get_latest_audit() -> AuditReportResponse:
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    report = engine.audit_engine.get_latest()
    if report is None:
        raise HTTPException(status_code=404, detail="No audit has been run")
    return _report_response(report)


@router.get("/history", response_model=AuditHistoryResponse)
async def get_audit_history(
    limit: int = Query(default=10, ge=1, le=100),
) -> AuditHistoryResponse:
    """Get completed audit reports, most recent first."""
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    reports = engine.audit_engine.get_history(limit=limit)
    return AuditHistoryResponse(reports=[_report_response(r) for r in reports], count=len(reports))


@router.get("/{audit_id}", response_model=AuditReportResponse)
async def get_audit(audit_id: str) -> AuditReportResponse:
    """Get a report by id. A running audit returns its in-progress report."""
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    report = engine.audit_engine.get_report(audit_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Audit not found")
    return _report_response(report)


@router.post("/{audit_id}/cancel", response_model=CancelResponse)
async def cancel_audit(audit_id: str) -> CancelResponse:
    """Cancel a running audit.

    Raises:
        HTTPException: 404 if the audit is unknown
    """
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    if engine.audit_engine.cancel_audit(audit_id):
        return CancelResponse(audit_id=audit_id, cancelled=True)
    if engine.audit_engine.get_report(audit_id) is None:
        raise HTTPException(status_code=404, detail="Audit not found")
    return CancelResponse(audit_id=audit_id, cancelled=False)

"""Security audit package."""

from hostguard.audit.engine import SecurityAuditEngine, build_recommendations
from hostguard.audit.models import (
    AuditOptions,
    AuditReport,
    AuditStatus,
    CategoryResult,
    CategoryStatus,
    Finding,
    FindingSeverity,
)
from hostguard.audit.scanners import CategoryScanner, ScanContext, default_scanners

__all__ = [
    "AuditOptions",
    "AuditReport",
    "AuditStatus",
    "CategoryResult",
    "CategoryScanner",
    "CategoryStatus",
    "Finding",
    "FindingSeverity",
    "ScanContext",
    "SecurityAuditEngine",
    "build_recommendations",
    "default_scanners",
]

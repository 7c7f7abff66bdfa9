"""Security audit models.

Summary counts and overall risk are always derived from the category
results. Nothing is stored twice.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any


class FindingSeverity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


SEVERITY_RANK: dict[FindingSeverity, int] = {
    FindingSeverity.LOW: 1,
    FindingSeverity.MEDIUM: 2,
    FindingSeverity.HIGH: 3,
    FindingSeverity.CRITICAL: 4,
}

# Reported when an audit has no findings
RISK_NONE = "none"


class CategoryStatus(str, Enum):
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"


class AuditStatus(str, Enum):
    RUNNING = "running"
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"


@dataclass(frozen=True)
class Finding:
    """One issue found by a category scanner."""

    category: str
    rule_id: str
    severity: FindingSeverity
    description: str
    location: str
    line: int | None = None
    recommendation: str | None = None

    @property
    def sort_key(self) -> tuple[str, str, int, str]:
        return (self.category, self.location, self.line or 0, self.rule_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "rule_id": self.rule_id,
            "severity": self.severity.value,
            "description": self.description,
            "location": self.location,
            "line": self.line,
            "recommendation": self.recommendation,
        }


@dataclass
class CategoryResult:
    """Outcome of one category scan. Incomplete results keep whatever was found."""

    name: str
    status: CategoryStatus
    findings: list[Finding] = field(default_factory=list)
    error: str | None = None
    duration_ms: float = 0.0

    @property
    def issue_counts(self) -> dict[str, int]:
        counts = {sev.value: 0 for sev in FindingSeverity}
        for finding in self.findings:
            counts[finding.severity.value] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "findings": [f.to_dict() for f in self.findings],
            "issue_counts": self.issue_counts,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class AuditOptions:
    """What an audit run covers.

    Attributes:
        categories: Category names to run; None runs every category
        source_root: Directory to scan; None uses the engine default
        scheduled: Whether the run was started by the scheduler
    """

    categories: tuple[str, ...] | None = None
    source_root: Path | None = None
    scheduled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "categories": list(self.categories) if self.categories is not None else None,
            "source_root": str(self.source_root) if self.source_root is not None else None,
            "scheduled": self.scheduled,
        }


@dataclass(frozen=True)
class Recommendation:
    priority: FindingSeverity
    category: str
    title: str
    description: str
    action: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "priority": self.priority.value,
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "action": self.action,
        }


@dataclass
class AuditReport:
    """Result of one audit run."""

    id: str
    started_at: datetime
    options: AuditOptions
    status: AuditStatus = AuditStatus.RUNNING
    categories: list[CategoryResult] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)
    completed_at: datetime | None = None
    duration_ms: float = 0.0
    cancelled: bool = False

    @property
    def summary(self) -> dict[str, int]:
        counts = {sev.value: 0 for sev in FindingSeverity}
        for category in self.categories:
            for key, value in category.issue_counts.items():
                counts[key] += value
        counts["total"] = sum(counts.values())
        return counts

    @property
    def overall_risk(self) -> str:
        """Highest finding severity, or "none" without findings."""
        top = self._top_severity()
        return top.value if top is not None else RISK_NONE

    @property
    def risk_category(self) -> str | None:
        """Category driving the overall risk.

        The category with the most findings at the top severity; ties go to
        the alphabetically first category name.
        """
        top = self._top_severity()
        if top is None:
            return None

        counts = [
            (sum(1 for f in c.findings if f.severity == top), c.name) for c in self.categories
        ]
        best = min(counts, key=lambda item: (-item[0], item[1]))
        return best[1]

    @property
    def incomplete_categories(self) -> list[str]:
        return [c.name for c in self.categories if c.status == CategoryStatus.INCOMPLETE]

    def _top_severity(self) -> FindingSeverity | None:
        top: FindingSeverity | None = None
        for category in self.categories:
            for finding in category.findings:
                if top is None or SEVERITY_RANK[finding.severity] > SEVERITY_RANK[top]:
                    top = finding.severity
        return top

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "status": self.status.value,
            "cancelled": self.cancelled,
            "options": self.options.to_dict(),
            "categories": [c.to_dict() for c in self.categories],
            "summary": self.summary,
            "overall_risk": self.overall_risk,
            "risk_category": self.risk_category,
            "incomplete_categories": self.incomplete_categories,
            "recommendations": [r.to_dict() for r in self.recommendations],
            "duration_ms": self.duration_ms,
        }


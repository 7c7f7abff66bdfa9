"""Health evaluation result models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class HealthStatus(str, Enum):
    """Status of a single check or of the whole system."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    UNKNOWN = "unknown"  # No usable data, non-fatal


# Worst-status ordering (higher = worse). UNKNOWN ranks below HEALTHY so it
# never drives the overall status.
STATUS_PRIORITY: dict[HealthStatus, int] = {
    HealthStatus.UNKNOWN: 0,
    HealthStatus.HEALTHY: 1,
    HealthStatus.WARNING: 2,
    HealthStatus.CRITICAL: 3,
}

STATUS_SCORE: dict[HealthStatus, float] = {
    HealthStatus.HEALTHY: 100.0,
    HealthStatus.WARNING: 70.0,
    HealthStatus.CRITICAL: 30.0,
    HealthStatus.UNKNOWN: 0.0,
}


class ThresholdDirection(str, Enum):
    HIGHER_IS_WORSE = "higher_is_worse"
    LOWER_IS_WORSE = "lower_is_worse"


@dataclass(frozen=True)
class CheckResult:
    """Result of evaluating one check against its threshold."""

    name: str
    status: HealthStatus
    value: float | None
    warning: float
    critical: float
    direction: ThresholdDirection
    timestamp: datetime
    message: str
    weight: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "value": self.value,
            "threshold": {
                "warning": self.warning,
                "critical": self.critical,
                "direction": self.direction.value,
            },
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
            "weight": self.weight,
        }


@dataclass(frozen=True)
class HealthSnapshot:
    """Immutable aggregated health verdict at one point in time.

    Attributes:
        overall: Worst known check status (never UNKNOWN)
        score: Weighted health score, 0..100
        checks: Per-check results
        timestamp: Tick timestamp the snapshot was computed from
        duration_ms: Evaluation time
        unknown_checks: Names of checks without usable data
        error: Set when evaluation failed and no prior snapshot was available
    """

    overall: HealthStatus
    score: float
    checks: tuple[CheckResult, ...]
    timestamp: datetime
    duration_ms: float = 0.0
    unknown_checks: tuple[str, ...] = field(default_factory=tuple)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall": self.overall.value,
            "score": self.score,
            "checks": [c.to_dict() for c in self.checks],
            "timestamp": self.timestamp.isoformat(),
            "duration_ms": self.duration_ms,
            "unknown_checks": list(self.unknown_checks),
            "error": self.error,
        }

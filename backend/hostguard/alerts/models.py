"""Alert models and factory helpers.

Usage:
    from hostguard.alerts.models import AlertSeverity, create_alert

    alert = create_alert(
        severity=AlertSeverity.WARNING,
        category="health.threshold",
        source_key="cpu",
        message="cpu at 75.0 (warning >= 70.0)",
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

# Messages are shown in a single UI row
MAX_MESSAGE_LENGTH = 255


class AlertSeverity(str, Enum):
    """Alert severity levels, ordered from least to most severe."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


SEVERITY_RANK: dict[AlertSeverity, int] = {
    AlertSeverity.INFO: 0,
    AlertSeverity.WARNING: 1,
    AlertSeverity.CRITICAL: 2,
}


class AlertCategory:
    """Well-known alert categories."""

    HEALTH_THRESHOLD = "health.threshold"
    HEALTH_RECOVERY = "health.recovery"
    HEALTH_EVALUATION = "health.evaluation"
    RATELIMIT_BLOCK = "ratelimit.block"
    RATELIMIT_DDOS = "ratelimit.ddos"
    RATELIMIT_FAULT = "ratelimit.fault"
    AUDIT_RISK = "audit.risk"


@dataclass
class Alert:
    """An alert owned by the AlertManager.

    Only the AlertManager mutates an Alert after creation: timestamp,
    details and occurrences refresh on dedupe, and resolved flips once.
    """

    id: str
    severity: AlertSeverity
    category: str
    source_key: str
    message: str
    timestamp: datetime
    first_seen: datetime
    details: dict[str, Any] = field(default_factory=dict)
    resolved: bool = False
    resolved_at: datetime | None = None
    occurrences: int = 1

    @property
    def dedupe_key(self) -> str:
        return compute_dedupe_key(self.category, self.source_key)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "severity": self.severity.value,
            "category": self.category,
            "source_key": self.source_key,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "first_seen": self.first_seen.isoformat(),
            "dedupe_key": self.dedupe_key,
            "resolved": self.resolved,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "occurrences": self.occurrences,
            "details": dict(self.details),
        }


def compute_dedupe_key(category: str, source_key: str) -> str:
    """Alerts with the same category and source collapse while unresolved."""
    return f"{category}:{source_key}"


def create_alert(
    severity: AlertSeverity,
    category: str,
    source_key: str,
    message: str,
    *,
    timestamp: datetime | None = None,
    details: dict[str, Any] | None = None,
    resolved: bool = False,
) -> Alert:
    """Create an Alert with a fresh id and a normalized UTC timestamp.

    Args:
        severity: How critical the alert is
        category: Alert category (see AlertCategory)
        source_key: What the alert is about (check name, client id, audit id)
        message: Human-readable summary, truncated to 255 chars
        timestamp: When the alert occurred (defaults to now)
        details: Additional structured data
        resolved: Create the alert already resolved (recovery notices)

    Returns:
        A new Alert instance
    """
    ts = _normalize_timestamp(timestamp)
    if len(message) > MAX_MESSAGE_LENGTH:
        message = message[: MAX_MESSAGE_LENGTH - 3] + "..."

    return Alert(
        id=str(uuid4()),
        severity=severity,
        category=category,
        source_key=source_key,
        message=message,
        timestamp=ts,
        first_seen=ts,
        details=dict(details) if details else {},
        resolved=resolved,
        resolved_at=ts if resolved else None,
    )


def _normalize_timestamp(timestamp: datetime | None) -> datetime:
    """Normalize to UTC. Naive datetimes are assumed to be UTC."""
    if timestamp is None:
        return datetime.now(tz=timezone.utc)

    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)

    return timestamp.astimezone(timezone.utc)

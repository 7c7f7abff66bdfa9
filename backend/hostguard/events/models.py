"""Push event models delivered to UI subscribers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class EventType(str, Enum):
    """Kinds of events pushed to subscribers."""

    HEALTH_STATUS_CHANGED = "health.status_changed"
    ALERT_RAISED = "alert.raised"
    ALERT_RESOLVED = "alert.resolved"
    CLIENT_BLOCKED = "client.blocked"
    CLIENT_UNBLOCKED = "client.unblocked"
    AUDIT_COMPLETED = "audit.completed"
    CONFIG_UPDATED = "config.updated"


@dataclass(frozen=True)
class EngineEvent:
    """Immutable event published on the EventBus.

    Attributes:
        event_type: What happened
        payload: JSON-serializable event details
        timestamp: Wall-clock time the event was created
    """

    event_type: EventType
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.event_type.value,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }

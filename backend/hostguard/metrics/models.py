"""Metric sample models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class SampleStatus(str, Enum):
    """Whether a probe produced a value."""

    OK = "ok"
    UNKNOWN = "unknown"  # Probe failed or timed out


class MetricSource:
    """Well-known metric sources."""

    SYSTEM_CPU = "system.cpu"
    SYSTEM_MEMORY = "system.memory"
    SYSTEM_DISK = "system.disk"
    SYSTEM_LOAD = "system.load"
    PROCESS_MEMORY = "process.memory"
    PROCESS_CPU = "process.cpu"
    EVENT_LOOP = "eventloop.lag"


@dataclass(frozen=True)
class MetricSample:
    """A single timestamped metric reading. Immutable once recorded."""

    source: str
    key: str
    value: float | None
    timestamp: datetime
    status: SampleStatus = SampleStatus.OK
    error: str | None = None

    @property
    def series_key(self) -> tuple[str, str]:
        return (self.source, self.key)

    @classmethod
    def unknown(cls, source: str, key: str, timestamp: datetime, error: str) -> MetricSample:
        """Sample recorded when a probe fails."""
        return cls(
            source=source,
            key=key,
            value=None,
            timestamp=timestamp,
            status=SampleStatus.UNKNOWN,
            error=error,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "key": self.key,
            "value": self.value,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.value,
            "error": self.error,
        }


@dataclass(frozen=True)
class MetricSummary:
    """Aggregate over the known-valued samples of a series window."""

    source: str
    key: str
    count: int
    unknown_count: int
    min: float | None
    max: float | None
    avg: float | None
    latest: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "key": self.key,
            "count": self.count,
            "unknown_count": self.unknown_count,
            "min": self.min,
            "max": self.max,
            "avg": self.avg,
            "latest": self.latest,
        }

"""Health check configuration.

HealthConfig is an immutable snapshot. Updates build and validate a new
snapshot and swap it in whole; an invalid update raises ConfigurationError
and the active config is left untouched.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from hostguard.errors import ConfigurationError
from hostguard.health.models import ThresholdDirection
from hostguard.metrics.models import MetricSource


class Threshold(BaseModel):
    """Warning and critical levels for one metric."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    warning: float
    critical: float
    direction: ThresholdDirection = ThresholdDirection.HIGHER_IS_WORSE

    @model_validator(mode="after")
    def validate_ordering(self) -> "Threshold":
        """Warning must be reached before critical in the worsening direction."""
        if self.direction == ThresholdDirection.HIGHER_IS_WORSE and self.warning >= self.critical:
            raise ValueError("warning must be below critical for higher_is_worse")
        if self.direction == ThresholdDirection.LOWER_IS_WORSE and self.warning <= self.critical:
            raise ValueError("warning must be above critical for lower_is_worse")
        return self


class CheckSpec(BaseModel):
    """A named check of one metric series against a threshold."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(..., min_length=1)
    source: str = Field(..., min_length=1)
    key: str = Field(..., min_length=1)
    threshold: Threshold
    weight: float = Field(default=1.0, ge=0)


class HealthConfig(BaseModel):
    """Immutable set of health checks."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    checks: tuple[CheckSpec, ...] = ()
    # Samples older than this are treated as unknown
    stale_after_seconds: float = Field(default=60.0, gt=0)

    @model_validator(mode="after")
    def validate_unique_names(self) -> "HealthConfig":
        names = [c.name for c in self.checks]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate check names: {', '.join(duplicates)}")
        return self

    def get_check(self, name: str) -> CheckSpec | None:
        for check in self.checks:
            if check.name == name:
                return check
        return None


def default_health_config() -> HealthConfig:
    """Checks for the default probes."""
    return HealthConfig(
        checks=(
            CheckSpec(
                name="cpu",
                source=MetricSource.SYSTEM_CPU,
                key="usage_percent",
                threshold=Threshold(warning=70, critical=85),
            ),
            CheckSpec(
                name="memory",
                source=MetricSource.SYSTEM_MEMORY,
                key="usage_percent",
                threshold=Threshold(warning=80, critical=90),
            ),
            CheckSpec(
                name="disk",
                source=MetricSource.SYSTEM_DISK,
                key="free_percent",
                threshold=Threshold(
                    warning=15, critical=5, direction=ThresholdDirection.LOWER_IS_WORSE
                ),
            ),
            CheckSpec(
                name="event_loop",
                source=MetricSource.EVENT_LOOP,
                key="lag_ms",
                threshold=Threshold(warning=100, critical=500),
            ),
            CheckSpec(
                name="process_memory",
                source=MetricSource.PROCESS_MEMORY,
                key="rss_mb",
                threshold=Threshold(warning=1024, critical=2048),
            ),
        )
    )


def parse_health_config(data: dict[str, Any]) -> HealthConfig:
    """Validate raw data into a HealthConfig.

    Raises:
        ConfigurationError: If the data is not a valid health config
    """
    try:
        return HealthConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid health config: {e}") from e

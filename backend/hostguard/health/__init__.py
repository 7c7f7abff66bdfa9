"""Health evaluation package."""

from hostguard.health.config import CheckSpec, HealthConfig, Threshold, default_health_config
from hostguard.health.models import CheckResult, HealthSnapshot, HealthStatus, ThresholdDirection
from hostguard.health.monitor import HealthMonitor

__all__ = [
    "CheckResult",
    "CheckSpec",
    "HealthConfig",
    "HealthMonitor",
    "HealthSnapshot",
    "HealthStatus",
    "Threshold",
    "ThresholdDirection",
    "default_health_config",
]

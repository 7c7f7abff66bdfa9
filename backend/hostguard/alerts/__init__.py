"""Alert package.

Provides the Alert model, the create_alert() factory and the AlertManager,
the single sink every detector raises alerts through.
"""

from hostguard.alerts.manager import AlertManager
from hostguard.alerts.models import (
    Alert,
    AlertCategory,
    AlertSeverity,
    compute_dedupe_key,
    create_alert,
)

__all__ = [
    "Alert",
    "AlertCategory",
    "AlertManager",
    "AlertSeverity",
    "compute_dedupe_key",
    "create_alert",
]

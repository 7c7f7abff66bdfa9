"""Health monitor: evaluates checks, keeps snapshot history, raises alerts.

Alerting is edge-triggered per check:
- worse alert severity (including healthy -> non-healthy): resolve the
  active alert, raise a new one
- better but still non-healthy: resolve the active alert only
- back to healthy: resolve the active alert and record a resolved
  informational recovery alert
- unchanged: nothing
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from hostguard.alerts.manager import AlertManager
from hostguard.alerts.models import AlertCategory, AlertSeverity, create_alert
from hostguard.errors import AlertManagerFault, EvaluationFailure
from hostguard.events.bus import EventBus
from hostguard.events.models import EngineEvent, EventType
from hostguard.health.config import HealthConfig
from hostguard.health.evaluator import compute_overall, compute_score, evaluate_check
from hostguard.health.models import CheckResult, HealthSnapshot, HealthStatus
from hostguard.metrics.store import MetricStore

logger = logging.getLogger(__name__)

# Alert severity per non-healthy check status
_STATUS_ALERT: dict[HealthStatus, AlertSeverity] = {
    HealthStatus.UNKNOWN: AlertSeverity.INFO,
    HealthStatus.WARNING: AlertSeverity.WARNING,
    HealthStatus.CRITICAL: AlertSeverity.CRITICAL,
}

# Alert rank per check status (higher = more severe)
_ALERT_RANK: dict[HealthStatus, int] = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.UNKNOWN: 1,
    HealthStatus.WARNING: 2,
    HealthStatus.CRITICAL: 3,
}

# Source key for evaluator failure alerts
_EVALUATOR_KEY = "evaluator"


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class HealthMonitor:
    """Evaluates configured checks against the latest metric samples.

    Runs after each completed Sampler tick and on demand via perform_check().
    Keeps a bounded rolling history of snapshots (last history_size entries
    or last history_max_age_seconds, whichever is smaller).
    """

    def __init__(
        self,
        store: MetricStore,
        alert_manager: AlertManager,
        config: HealthConfig,
        event_bus: EventBus | None = None,
        history_size: int = 100,
        history_max_age_seconds: float = 86400,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the HealthMonitor.

        Args:
            store: Metric store read via latest()
            alert_manager: Sink for check transition alerts
            config: Initial health check configuration
            event_bus: Optional bus for status change events
            history_size: Maximum snapshots retained
            history_max_age_seconds: Maximum snapshot age retained
            clock: Source of the current UTC time
        """
        self._store = store
        self._alerts = alert_manager
        self._config = config
        self._event_bus = event_bus
        self._history: deque[HealthSnapshot] = deque(maxlen=history_size)
        self._history_max_age = timedelta(seconds=history_max_age_seconds)
        self._clock = clock
        self._last_status: dict[str, HealthStatus] = {}
        self._started_at = clock()
        self._evaluation_failed = False

    @property
    def config(self) -> HealthConfig:
        return self._config

    @property
    def current(self) -> HealthSnapshot | None:
        """Most recent successfully evaluated snapshot, or None before the first check."""
        if not self._history:
            return None
        return self._history[-1]

    def update_config(self, config: HealthConfig) -> None:
        """Swap in a new validated config snapshot.

        Active alerts of checks no longer configured are resolved.
        """
        removed = {name for name in self._last_status if config.get_check(name) is None}
        self._config = config
        for name in removed:
            self._last_status.pop(name, None)
            self._alerts.resolve_by_key(AlertCategory.HEALTH_THRESHOLD, name)

        logger.info(f"Health config updated: {len(config.checks)} checks")
        self._publish(EventType.CONFIG_UPDATED, {"component": "health"})

    async def on_tick(self, tick_time: datetime) -> HealthSnapshot:
        """Sampler callback: evaluate using the completed tick's timestamp."""
        return self.perform_check(now=tick_time)

    def perform_check(self, now: datetime | None = None) -> HealthSnapshot:
        """Evaluate all checks and append the snapshot to history.

        On evaluation failure a critical alert is raised and the last known
        good snapshot is returned; nothing is appended to history. A snapshot
        older than the newest one in history (a tick finishing after an
        on-demand check) is returned without being recorded.

        Raises:
            AlertManagerFault: If the alert sink fails
        """
        now = now or self._clock()
        config = self._config
        previous = self.current

        try:
            snapshot = self._evaluate(config, now)
        except AlertManagerFault:
            raise
        except Exception as e:
            return self._handle_evaluation_failure(EvaluationFailure(str(e)), previous, now)

        if self._evaluation_failed:
            self._evaluation_failed = False
            self._alerts.resolve_by_key(AlertCategory.HEALTH_EVALUATION, _EVALUATOR_KEY)

        if previous is not None and snapshot.timestamp < previous.timestamp:
            logger.debug(
                f"Skipping out-of-order snapshot at {snapshot.timestamp.isoformat()}, "
                f"history is at {previous.timestamp.isoformat()}"
            )
            return snapshot

        self._append(snapshot)
        self._process_transitions(snapshot.checks)

        if previous is None or previous.overall != snapshot.overall:
            logger.info(
                f"Health status changed: "
                f"{previous.overall.value if previous else None} -> {snapshot.overall.value}"
            )
            self._publish(
                EventType.HEALTH_STATUS_CHANGED,
                {
                    "previous": previous.overall.value if previous else None,
                    "current": snapshot.overall.value,
                    "score": snapshot.score,
                },
            )

        return snapshot

    def get_history(
        self, limit: int | None = None, window_seconds: float | None = None
    ) -> list[HealthSnapshot]:
        """Snapshots in time order, optionally windowed and limited to the most recent."""
        snapshots = list(self._history)
        if window_seconds is not None:
            cutoff = self._clock() - timedelta(seconds=window_seconds)
            snapshots = [s for s in snapshots if s.timestamp >= cutoff]
        if limit is not None:
            snapshots = snapshots[-limit:] if limit > 0 else []
        return snapshots

    def get_summary(self, window_seconds: float = 3600) -> dict[str, Any]:
        """Share of snapshots per overall status over a window."""
        snapshots = self.get_history(window_seconds=window_seconds)
        total = len(snapshots)
        counts = {
            s.value: 0 for s in (HealthStatus.HEALTHY, HealthStatus.WARNING, HealthStatus.CRITICAL)
        }
        for snap in snapshots:
            counts[snap.overall.value] += 1

        current = self.current
        return {
            "window_seconds": window_seconds,
            "total_checks": total,
            "healthy_percent": round(counts["healthy"] / total * 100, 2) if total else 0.0,
            "warning_percent": round(counts["warning"] / total * 100, 2) if total else 0.0,
            "critical_percent": round(counts["critical"] / total * 100, 2) if total else 0.0,
            "average_score": round(sum(s.score for s in snapshots) / total, 2) if total else None,
            "current_status": current.overall.value if current else HealthStatus.UNKNOWN.value,
            "uptime_seconds": (self._clock() - self._started_at).total_seconds(),
        }

    def _evaluate(self, config: HealthConfig, now: datetime) -> HealthSnapshot:
        started = time.perf_counter()
        results = [
            evaluate_check(
                spec,
                self._store.latest(spec.source, spec.key),
                now,
                config.stale_after_seconds,
            )
            for spec in config.checks
        ]
        return HealthSnapshot(
            overall=compute_overall(results),
            score=compute_score(results),
            checks=tuple(results),
            timestamp=now,
            duration_ms=(time.perf_counter() - started) * 1000,
            unknown_checks=tuple(r.name for r in results if r.status == HealthStatus.UNKNOWN),
        )

    def _append(self, snapshot: HealthSnapshot) -> None:
        self._history.append(snapshot)
        cutoff = snapshot.timestamp - self._history_max_age
        while self._history and self._history[0].timestamp < cutoff:
            self._history.popleft()

    def _process_transitions(self, results: tuple[CheckResult, ...]) -> None:
        for result in results:
            previous = self._last_status.get(result.name, HealthStatus.HEALTHY)
            current = result.status
            self._last_status[result.name] = current

            if current == previous:
                continue

            self._alerts.resolve_by_key(AlertCategory.HEALTH_THRESHOLD, result.name)

            if current == HealthStatus.HEALTHY:
                self._alerts.raise_alert(
                    create_alert(
                        severity=AlertSeverity.INFO,
                        category=AlertCategory.HEALTH_RECOVERY,
                        source_key=result.name,
                        message=f"{result.name} recovered from {previous.value}",
                        timestamp=result.timestamp,
                        details=result.to_dict(),
                        resolved=True,
                    )
                )
            elif _ALERT_RANK[current] > _ALERT_RANK[previous]:
                self._alerts.raise_alert(
                    create_alert(
                        severity=_STATUS_ALERT[current],
                        category=AlertCategory.HEALTH_THRESHOLD,
                        source_key=result.name,
                        message=result.message,
                        timestamp=result.timestamp,
                        details=result.to_dict(),
                    )
                )

    def _handle_evaluation_failure(
        self,
        failure: EvaluationFailure,
        previous: HealthSnapshot | None,
        now: datetime,
    ) -> HealthSnapshot:
        logger.exception(f"Health evaluation failed: {failure}")
        self._evaluation_failed = True
        self._alerts.raise_alert(
            create_alert(
                severity=AlertSeverity.CRITICAL,
                category=AlertCategory.HEALTH_EVALUATION,
                source_key=_EVALUATOR_KEY,
                message=f"Health evaluation failed: {failure}",
                timestamp=now,
            )
        )
        if previous is not None:
            return previous

        return HealthSnapshot(
            overall=HealthStatus.CRITICAL,
            score=0.0,
            checks=(),
            timestamp=now,
            error=str(failure),
        )

    def _publish(self, event_type: EventType, payload: dict[str, Any]) -> None:
        if self._event_bus is None:
            return
        self._event_bus.publish(EngineEvent(event_type=event_type, payload=payload))

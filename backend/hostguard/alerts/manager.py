"""AlertManager: the single sink for health, rate-limit and audit alerts.

Usage:
    from hostguard.alerts.manager import AlertManager

    manager = AlertManager(max_entries=1000, max_age_seconds=86400)
    stored = manager.raise_alert(alert)
    manager.resolve(stored.id)
    recent = manager.query(window_seconds=3600, severity=AlertSeverity.CRITICAL)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from hostguard.alerts.models import Alert, AlertSeverity, compute_dedupe_key
from hostguard.errors import AlertManagerFault
from hostguard.events.bus import EventBus
from hostguard.events.models import EngineEvent, EventType

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class AlertManager:
    """Owns the alert history and is the only writer of Alert.resolved.

    Features:
    - Dedupe: an unresolved alert with the same category and source_key is
      refreshed (timestamp, severity, message, details, occurrences) instead
      of appending a duplicate
    - Alerts raised already resolved (recovery notices) are always appended
    - Bounded history: last max_entries or max_age_seconds; resolved alerts
      are evicted before unresolved ones
    - raise_alert/resolve are serialized by a single lock

    Any internal failure raises AlertManagerFault. Producers must not catch it.
    """

    def __init__(
        self,
        max_entries: int = 1000,
        max_age_seconds: float = 86400,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize AlertManager.

        Args:
            max_entries: Maximum number of retained alerts
            max_age_seconds: Resolved alerts older than this are evicted
            event_bus: Optional bus for alert.raised/alert.resolved events
            clock: Source of the current UTC time
        """
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")

        self._max_entries = max_entries
        self._max_age = timedelta(seconds=max_age_seconds)
        self._event_bus = event_bus
        self._clock = clock
        self._lock = threading.Lock()
        self._alerts: list[Alert] = []
        self._by_id: dict[str, Alert] = {}
        self._active: dict[str, Alert] = {}

    def raise_alert(self, alert: Alert) -> Alert:
        """Record an alert, deduplicating against unresolved alerts.

        Args:
            alert: Alert created via create_alert()

        Returns:
            The stored alert: either the refreshed existing one or the new one

        Raises:
            AlertManagerFault: If the alert store cannot be updated
        """
        try:
            with self._lock:
                stored, is_new = self._raise_locked(alert)
        except Exception as e:
            logger.critical(f"Alert manager fault while raising alert: {e}")
            raise AlertManagerFault(str(e)) from e

        if is_new:
            logger.info(
                f"Alert raised: [{stored.severity.value}] {stored.category} "
                f"{stored.source_key}: {stored.message}"
            )
            self._publish(EventType.ALERT_RAISED, stored)
        else:
            logger.debug(f"Alert deduplicated: {stored.dedupe_key} x{stored.occurrences}")
        return stored

    def resolve(self, alert_id: str) -> Alert | None:
        """Mark an alert resolved.

        Resolving an already-resolved alert is a no-op.

        Args:
            alert_id: Alert identifier

        Returns:
            The alert, or None if no alert has that id
        """
        try:
            with self._lock:
                alert = self._by_id.get(alert_id)
                if alert is None:
                    return None
                changed = self._resolve_locked(alert)
        except Exception as e:
            logger.critical(f"Alert manager fault while resolving alert: {e}")
            raise AlertManagerFault(str(e)) from e

        if changed:
            logger.info(f"Alert resolved: {alert.dedupe_key} ({alert.id})")
            self._publish(EventType.ALERT_RESOLVED, alert)
        return alert

    def resolve_by_key(self, category: str, source_key: str) -> Alert | None:
        """Resolve the unresolved alert for a category/source_key pair, if any."""
        with self._lock:
            alert = self._active.get(compute_dedupe_key(category, source_key))
        if alert is None:
            return None
        return self.resolve(alert.id)

    def get(self, alert_id: str) -> Alert | None:
        with self._lock:
            return self._by_id.get(alert_id)

    def get_active(self, category: str, source_key: str) -> Alert | None:
        """Return the unresolved alert for a dedupe key, or None."""
        with self._lock:
            return self._active.get(compute_dedupe_key(category, source_key))

    def query(
        self,
        window_seconds: float | None = None,
        *,
        severity: AlertSeverity | None = None,
        category: str | None = None,
        source_key: str | None = None,
        resolved: bool | None = None,
        limit: int | None = None,
    ) -> list[Alert]:
        """Query alerts, most recent first.

        Args:
            window_seconds: Only alerts with timestamp within this many seconds
            severity: Filter by severity
            category: Filter by category
            source_key: Filter by source key
            resolved: Filter by resolution state
            limit: Maximum number of alerts returned

        Returns:
            Matching alerts ordered by timestamp descending
        """
        with self._lock:
            alerts = list(self._alerts)

        if window_seconds is not None:
            cutoff = self._clock() - timedelta(seconds=window_seconds)
            alerts = [a for a in alerts if a.timestamp >= cutoff]
        if severity is not None:
            alerts = [a for a in alerts if a.severity == severity]
        if category is not None:
            alerts = [a for a in alerts if a.category == category]
        if source_key is not None:
            alerts = [a for a in alerts if a.source_key == source_key]
        if resolved is not None:
            alerts = [a for a in alerts if a.resolved == resolved]

        # Stable sort keeps later insertions first among equal timestamps
        alerts.reverse()
        alerts.sort(key=lambda a: a.timestamp, reverse=True)

        if limit is not None:
            alerts = alerts[:limit]
        return alerts

    def active(self) -> list[Alert]:
        """Unresolved alerts, most recent first."""
        return self.query(resolved=False)

    def counts(self) -> dict[str, int]:
        """Counts of retained alerts, with unresolved alerts broken down by severity."""
        with self._lock:
            alerts = list(self._alerts)

        result = {"total": len(alerts), "active": 0}
        for sev in AlertSeverity:
            result[sev.value] = 0
        for alert in alerts:
            if not alert.resolved:
                result["active"] += 1
                result[alert.severity.value] += 1
        return result

    def prune(self) -> int:
        """Apply retention. Returns the number of evicted alerts."""
        try:
            with self._lock:
                return self._evict_locked()
        except Exception as e:
            raise AlertManagerFault(str(e)) from e

    def _raise_locked(self, alert: Alert) -> tuple[Alert, bool]:
        if alert.id in self._by_id:
            raise ValueError(f"Duplicate alert id: {alert.id}")

        if not alert.resolved:
            existing = self._active.get(alert.dedupe_key)
            if existing is not None:
                existing.timestamp = alert.timestamp
                existing.severity = alert.severity
                existing.message = alert.message
                existing.details = dict(alert.details)
                existing.occurrences += 1
                return existing, False
            self._active[alert.dedupe_key] = alert

        self._alerts.append(alert)
        self._by_id[alert.id] = alert
        self._evict_locked()
        return alert, True

    def _resolve_locked(self, alert: Alert) -> bool:
        if alert.resolved:
            return False
        alert.resolved = True
        alert.resolved_at = self._clock()
        if self._active.get(alert.dedupe_key) is alert:
            del self._active[alert.dedupe_key]
        return True

    def _evict_locked(self) -> int:
        cutoff = self._clock() - self._max_age
        keep = [a for a in self._alerts if not (a.resolved and a.timestamp < cutoff)]
        evicted = [a for a in self._alerts if a.resolved and a.timestamp < cutoff]

        overflow = len(keep) - self._max_entries
        if overflow > 0:
            # Oldest resolved first, then oldest unresolved
            resolved = [a for a in keep if a.resolved]
            unresolved = [a for a in keep if not a.resolved]
            victims = (resolved + unresolved)[:overflow]
            victim_ids = {a.id for a in victims}
            keep = [a for a in keep if a.id not in victim_ids]
            evicted.extend(victims)

        for alert in evicted:
            self._by_id.pop(alert.id, None)
            if self._active.get(alert.dedupe_key) is alert:
                del self._active[alert.dedupe_key]

        self._alerts = keep
        return len(evicted)

    def _publish(self, event_type: EventType, alert: Alert) -> None:
        if self._event_bus is None:
            return
        self._event_bus.publish(EngineEvent(event_type=event_type, payload=alert.to_dict()))

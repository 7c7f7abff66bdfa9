"""Tests for HealthMonitor snapshots, history and edge-triggered alerts."""

from unittest.mock import MagicMock

import pytest
from hostguard.alerts.manager import AlertManager
from hostguard.alerts.models import AlertCategory, AlertSeverity
from hostguard.errors import AlertManagerFault
from hostguard.events.bus import EventBus
from hostguard.events.models import EventType
from hostguard.health.config import CheckSpec, HealthConfig, Threshold
from hostguard.health.models import HealthStatus
from hostguard.health.monitor import HealthMonitor
from hostguard.metrics.models import MetricSample
from hostguard.metrics.store import MetricStore


def cpu_config(**overrides) -> HealthConfig:
    return HealthConfig(
        checks=(
            CheckSpec(
                name="cpu",
                source="system.cpu",
                key="usage_percent",
                threshold=Threshold(warning=70, critical=90),
            ),
        ),
        **overrides,
    )


@pytest.fixture
def store(clock) -> MetricStore:
    return MetricStore(clock=clock)


@pytest.fixture
def alert_manager(clock) -> AlertManager:
    return AlertManager(clock=clock)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus(queue_size=100)


@pytest.fixture
def monitor(store, alert_manager, event_bus, clock) -> HealthMonitor:
    return HealthMonitor(store, alert_manager, cpu_config(), event_bus=event_bus, clock=clock)


def feed(store, monitor, clock, values, interval: float = 5.0):
    """Record one cpu sample per value and evaluate after each, like a sampler tick."""
    snapshots = []
    for value in values:
        clock.advance(interval)
        store.record(
            MetricSample(source="system.cpu", key="usage_percent", value=value, timestamp=clock.now)
        )
        snapshots.append(monitor.perform_check())
    return snapshots


def threshold_alerts(alert_manager):
    return alert_manager.query(category=AlertCategory.HEALTH_THRESHOLD)


class TestSnapshots:
    """Tests for snapshot production."""

    def test_no_snapshot_before_first_check(self, monitor):
        assert monitor.current is None
        assert monitor.get_history() == []

    def test_snapshot_uses_tick_timestamp(self, monitor, store, clock):
        snapshot = feed(store, monitor, clock, [50])[0]

        assert snapshot.timestamp == clock.now
        assert snapshot.overall == HealthStatus.HEALTHY
        assert snapshot.score == 100.0
        assert monitor.current is snapshot

    def test_missing_series_is_unknown_but_overall_healthy(self, monitor):
        snapshot = monitor.perform_check()

        assert snapshot.overall == HealthStatus.HEALTHY
        assert snapshot.unknown_checks == ("cpu",)
        assert snapshot.score == 0.0

    @pytest.mark.asyncio
    async def test_on_tick_evaluates_at_tick_time(self, monitor, store, clock):
        store.record(
            MetricSample(source="system.cpu", key="usage_percent", value=95, timestamp=clock.now)
        )

        snapshot = await monitor.on_tick(clock.now)

        assert snapshot.overall == HealthStatus.CRITICAL
        assert snapshot.timestamp == clock.now


class TestEdgeTriggeredAlerts:
    """Tests for alert transitions per check."""

    def test_escalation_scenario(self, monitor, store, alert_manager, clock):
        """Samples [60,75,95,80] give [healthy,warning,critical,warning] and two alerts."""
        snapshots = feed(store, monitor, clock, [60, 75, 95, 80])

        assert [s.checks[0].status for s in snapshots] == [
            HealthStatus.HEALTHY,
            HealthStatus.WARNING,
            HealthStatus.CRITICAL,
            HealthStatus.WARNING,
        ]
        alerts = threshold_alerts(alert_manager)
        assert len(alerts) == 2
        assert sorted(a.severity for a in alerts) == sorted(
            [AlertSeverity.WARNING, AlertSeverity.CRITICAL]
        )
        # Downgrade to warning resolves the critical alert without a new one
        assert all(a.resolved for a in alerts)

    def test_repeated_critical_raises_once(self, monitor, store, alert_manager, clock):
        """healthy -> critical -> critical -> healthy raises exactly two alerts."""
        feed(store, monitor, clock, [10, 95, 95, 10])

        alerts = alert_manager.query()
        assert len(alerts) == 2
        critical = [a for a in alerts if a.category == AlertCategory.HEALTH_THRESHOLD]
        recovery = [a for a in alerts if a.category == AlertCategory.HEALTH_RECOVERY]
        assert len(critical) == 1 and critical[0].resolved
        assert len(recovery) == 1 and recovery[0].resolved
        assert recovery[0].severity == AlertSeverity.INFO

    def test_active_alert_while_critical(self, monitor, store, alert_manager, clock):
        feed(store, monitor, clock, [95])

        active = alert_manager.get_active(AlertCategory.HEALTH_THRESHOLD, "cpu")
        assert active is not None
        assert active.severity == AlertSeverity.CRITICAL
        assert active.timestamp == clock.now

    def test_unknown_raises_info_alert(self, store, alert_manager, clock):
        monitor = HealthMonitor(store, alert_manager, cpu_config(), clock=clock)

        monitor.perform_check()

        active = alert_manager.get_active(AlertCategory.HEALTH_THRESHOLD, "cpu")
        assert active.severity == AlertSeverity.INFO

    def test_alert_manager_fault_propagates(self, store, clock):
        alerts = MagicMock()
        alerts.raise_alert.side_effect = AlertManagerFault("broken")
        monitor = HealthMonitor(store, alerts, cpu_config(), clock=clock)

        with pytest.raises(AlertManagerFault):
            feed(store, monitor, clock, [95])


class TestEvaluationFailure:
    """Tests for evaluator errors."""

    def test_failure_without_history_returns_critical(self, alert_manager, clock):
        broken_store = MagicMock()
        broken_store.latest.side_effect = RuntimeError("corrupt series")
        monitor = HealthMonitor(broken_store, alert_manager, cpu_config(), clock=clock)

        snapshot = monitor.perform_check()

        assert snapshot.overall == HealthStatus.CRITICAL
        assert "corrupt series" in snapshot.error
        assert monitor.get_history() == []
        alert = alert_manager.get_active(AlertCategory.HEALTH_EVALUATION, "evaluator")
        assert alert.severity == AlertSeverity.CRITICAL

    def test_failure_returns_last_good_snapshot(self, store, alert_manager, clock):
        monitor = HealthMonitor(store, alert_manager, cpu_config(), clock=clock)
        good = feed(store, monitor, clock, [50])[0]

        store.latest = MagicMock(side_effect=RuntimeError("boom"))
        assert monitor.perform_check() is good
        assert len(monitor.get_history()) == 1

        del store.latest
        feed(store, monitor, clock, [50])
        assert alert_manager.get_active(AlertCategory.HEALTH_EVALUATION, "evaluator") is None


class TestHistory:
    """Tests for snapshot history and summary."""

    def test_history_bounded_by_size(self, store, alert_manager, clock):
        monitor = HealthMonitor(store, alert_manager, cpu_config(), history_size=3, clock=clock)
        feed(store, monitor, clock, [10, 20, 30, 40, 50])

        history = monitor.get_history()
        assert [s.checks[0].value for s in history] == [30, 40, 50]

    def test_history_bounded_by_age(self, store, alert_manager, clock):
        monitor = HealthMonitor(
            store, alert_manager, cpu_config(), history_max_age_seconds=9, clock=clock
        )
        feed(store, monitor, clock, [10, 20, 30, 40])

        assert [s.checks[0].value for s in monitor.get_history()] == [30, 40]

    def test_history_limit_takes_most_recent(self, monitor, store, clock):
        feed(store, monitor, clock, [10, 20, 30])

        assert [s.checks[0].value for s in monitor.get_history(limit=2)] == [20, 30]

    @pytest.mark.asyncio
    async def test_tick_older_than_on_demand_check_not_recorded(self, monitor, store, clock):
        tick_time = clock.now
        store.record(
            MetricSample(source="system.cpu", key="usage_percent", value=95.0, timestamp=tick_time)
        )
        clock.advance(1)
        on_demand = monitor.perform_check()

        late = await monitor.on_tick(tick_time)

        assert late.timestamp == tick_time
        assert monitor.get_history() == [on_demand]
        assert monitor.current is on_demand

    def test_summary(self, monitor, store, clock):
        feed(store, monitor, clock, [10, 10, 75, 95])

        summary = monitor.get_summary(window_seconds=3600)

        assert summary["total_checks"] == 4
        assert summary["healthy_percent"] == 50.0
        assert summary["warning_percent"] == 25.0
        assert summary["critical_percent"] == 25.0
        assert summary["average_score"] == 75.0
        assert summary["current_status"] == "critical"
        assert summary["uptime_seconds"] == 20.0


class TestConfigUpdate:
    """Tests for swapping the health config."""

    def test_removed_check_alert_resolved(self, monitor, store, alert_manager, clock):
        feed(store, monitor, clock, [95])

        monitor.update_config(HealthConfig())

        assert alert_manager.get_active(AlertCategory.HEALTH_THRESHOLD, "cpu") is None
        assert monitor.config.checks == ()

    def test_status_change_and_config_events_published(self, monitor, store, event_bus, clock):
        feed(store, monitor, clock, [10, 10, 95])
        monitor.update_config(cpu_config(stale_after_seconds=30))

        types = []
        while event_bus.pending_count:
            types.append(event_bus._queue.get_nowait().event_type)

        assert types.count(EventType.HEALTH_STATUS_CHANGED) == 2
        assert EventType.CONFIG_UPDATED in types

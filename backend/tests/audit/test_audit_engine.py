"""Tests for SecurityAuditEngine."""

import asyncio
import time
from datetime import datetime, timezone

import pytest
from hostguard.alerts.manager import AlertManager
from hostguard.alerts.models import AlertCategory, AlertSeverity
from hostguard.audit.engine import SecurityAuditEngine, build_recommendations
from hostguard.audit.models import (
    AuditOptions,
    AuditReport,
    AuditStatus,
    CategoryResult,
    CategoryStatus,
    Finding,
    FindingSeverity,
)
from hostguard.audit.scanners import ScanContext
from hostguard.events.bus import EventBus
from hostguard.events.models import EventType


def make_finding(
    category: str, severity: FindingSeverity, location: str = "app.py", line: int = 1
) -> Finding:
    return Finding(
        category=category,
        rule_id=f"{severity.value}_rule",
        severity=severity,
        description="test finding",
        location=location,
        line=line,
    )


class StaticScanner:
    def __init__(self, name: str, findings=(), delay: float = 0.0) -> None:
        self.name = name
        self._findings = list(findings)
        self._delay = delay
        self.contexts: list[ScanContext] = []

    def scan(self, context: ScanContext) -> list[Finding]:
        self.contexts.append(context)
        if self._delay:
            time.sleep(self._delay)
        return list(self._findings)


class FailingScanner:
    def __init__(self, name: str) -> None:
        self.name = name

    def scan(self, context: ScanContext) -> list[Finding]:
        raise OSError("permission denied")


class BlockingScanner:
    """Blocks until the audit is cancelled or times out."""

    def __init__(self, name: str) -> None:
        self.name = name

    def scan(self, context: ScanContext) -> list[Finding]:
        context.cancel_event.wait(timeout=5)
        context.check_cancelled()
        return []


@pytest.fixture
def alert_manager() -> AlertManager:
    return AlertManager()


class TestPerformAudit:
    """Tests for running audits to completion."""

    @pytest.mark.asyncio
    async def test_clean_audit(self, tmp_path):
        engine = SecurityAuditEngine(scanners=[StaticScanner("secrets")], source_root=tmp_path)

        report = await engine.perform_audit()

        assert report.status == AuditStatus.COMPLETE
        assert report.overall_risk == "none"
        assert report.summary["total"] == 0
        assert report.completed_at is not None
        assert report.recommendations[0].category == "maintenance"

    @pytest.mark.asyncio
    async def test_categories_and_findings_in_deterministic_order(self, tmp_path):
        slow = StaticScanner(
            "secrets",
            [
                make_finding("secrets", FindingSeverity.HIGH, "b.py", 3),
                make_finding("secrets", FindingSeverity.LOW, "a.py", 9),
                make_finding("secrets", FindingSeverity.CRITICAL, "a.py", 2),
            ],
            delay=0.05,
        )
        fast = StaticScanner("cryptography")
        engine = SecurityAuditEngine(scanners=[slow, fast], source_root=tmp_path)

        report = await engine.perform_audit()

        assert [c.name for c in report.categories] == ["secrets", "cryptography"]
        assert [(f.location, f.line) for f in report.categories[0].findings] == [
            ("a.py", 2),
            ("a.py", 9),
            ("b.py", 3),
        ]

    @pytest.mark.asyncio
    async def test_failing_scanner_marks_only_its_category_incomplete(self, tmp_path):
        engine = SecurityAuditEngine(
            scanners=[
                FailingScanner("dependencies"),
                StaticScanner("secrets", [make_finding("secrets", FindingSeverity.MEDIUM)]),
            ],
            source_root=tmp_path,
        )

        report = await engine.perform_audit()

        assert report.status == AuditStatus.INCOMPLETE
        assert report.incomplete_categories == ["dependencies"]
        failed = report.categories[0]
        assert "OSError" in failed.error
        assert report.categories[1].status == CategoryStatus.COMPLETE
        assert report.summary["medium"] == 1
        assert any(r.title == "Re-run dependencies scan" for r in report.recommendations)

    @pytest.mark.asyncio
    async def test_timeout_marks_unfinished_categories(self, tmp_path):
        engine = SecurityAuditEngine(
            scanners=[BlockingScanner("dependencies"), StaticScanner("secrets")],
            source_root=tmp_path,
            timeout_seconds=0.1,
        )

        report = await engine.perform_audit()

        assert report.status == AuditStatus.INCOMPLETE
        assert not report.cancelled
        assert report.categories[0].error == "timeout"
        assert report.categories[1].status == CategoryStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_category_subset(self, tmp_path):
        secrets = StaticScanner("secrets")
        crypto = StaticScanner("cryptography")
        engine = SecurityAuditEngine(scanners=[secrets, crypto], source_root=tmp_path)

        report = await engine.perform_audit(AuditOptions(categories=("cryptography",)))

        assert [c.name for c in report.categories] == ["cryptography"]
        assert secrets.contexts == []

    @pytest.mark.asyncio
    async def test_unknown_category_rejected(self, tmp_path):
        engine = SecurityAuditEngine(scanners=[StaticScanner("secrets")], source_root=tmp_path)

        with pytest.raises(ValueError, match="Unknown audit categories: bogus"):
            await engine.perform_audit(AuditOptions(categories=("bogus",)))

        assert engine.running_audits == []

    @pytest.mark.asyncio
    async def test_context_carries_engine_configuration(self, tmp_path):
        scanner = StaticScanner("configuration")
        engine = SecurityAuditEngine(
            scanners=[scanner],
            source_root=tmp_path,
            rate_limit_config_provider=lambda: None,
            debug=True,
        )
        other_root = tmp_path / "other"

        await engine.perform_audit(AuditOptions(source_root=other_root))

        context = scanner.contexts[0]
        assert context.root == other_root
        assert context.debug is True
        assert context.rate_limit_config is None

    def test_duplicate_scanner_names_rejected(self):
        with pytest.raises(ValueError, match="Duplicate scanner names"):
            SecurityAuditEngine(scanners=[StaticScanner("secrets"), StaticScanner("secrets")])


class TestBackgroundAudits:
    """Tests for start, cancel and wait."""

    @pytest.mark.asyncio
    async def test_start_and_wait(self, tmp_path):
        engine = SecurityAuditEngine(scanners=[StaticScanner("secrets")], source_root=tmp_path)

        audit_id = engine.start_audit()
        assert engine.get_report(audit_id).status == AuditStatus.RUNNING
        report = await engine.wait_for_audit(audit_id)

        assert report.id == audit_id
        assert report.status == AuditStatus.COMPLETE
        assert engine.running_audits == []
        assert await engine.wait_for_audit(audit_id) is report

    @pytest.mark.asyncio
    async def test_cancel_running_audit(self, tmp_path):
        engine = SecurityAuditEngine(
            scanners=[BlockingScanner("dependencies"), StaticScanner("secrets")],
            source_root=tmp_path,
        )

        audit_id = engine.start_audit()
        await asyncio.sleep(0.05)
        assert engine.cancel_audit(audit_id) is True
        report = await asyncio.wait_for(engine.wait_for_audit(audit_id), timeout=2)

        assert report.cancelled
        assert report.status == AuditStatus.INCOMPLETE
        assert report.categories[0].status == CategoryStatus.INCOMPLETE
        assert report.categories[0].error == "cancelled"
        assert engine.get_latest() is report

    @pytest.mark.asyncio
    async def test_cancel_unknown_or_finished(self, tmp_path):
        engine = SecurityAuditEngine(scanners=[StaticScanner("secrets")], source_root=tmp_path)
        report = await engine.perform_audit()

        assert engine.cancel_audit(report.id) is False
        assert engine.cancel_audit("missing") is False


class TestRiskAlerts:
    """Tests for surfacing audit risk through the AlertManager."""

    @pytest.mark.asyncio
    async def test_critical_risk_raises_critical_alert(self, tmp_path, alert_manager):
        engine = SecurityAuditEngine(
            scanners=[
                StaticScanner("secrets", [make_finding("secrets", FindingSeverity.CRITICAL)]),
                StaticScanner(
                    "cryptography",
                    [make_finding("cryptography", FindingSeverity.HIGH)],
                ),
            ],
            source_root=tmp_path,
            alert_manager=alert_manager,
        )

        report = await engine.perform_audit()

        alert = alert_manager.get_active(AlertCategory.AUDIT_RISK, "security_audit")
        assert alert is not None
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.details["audit_id"] == report.id
        assert "driver: secrets" in alert.message

    @pytest.mark.asyncio
    async def test_high_risk_raises_warning(self, tmp_path, alert_manager):
        engine = SecurityAuditEngine(
            scanners=[StaticScanner("secrets", [make_finding("secrets", FindingSeverity.HIGH)])],
            source_root=tmp_path,
            alert_manager=alert_manager,
        )

        await engine.perform_audit()

        alert = alert_manager.get_active(AlertCategory.AUDIT_RISK, "security_audit")
        assert alert.severity == AlertSeverity.WARNING

    @pytest.mark.asyncio
    async def test_medium_risk_does_not_alert(self, tmp_path, alert_manager):
        engine = SecurityAuditEngine(
            scanners=[StaticScanner("secrets", [make_finding("secrets", FindingSeverity.MEDIUM)])],
            source_root=tmp_path,
            alert_manager=alert_manager,
        )

        await engine.perform_audit()

        assert alert_manager.active() == []

    @pytest.mark.asyncio
    async def test_clean_audit_resolves_previous_risk(self, tmp_path, alert_manager):
        scanner = StaticScanner("secrets", [make_finding("secrets", FindingSeverity.CRITICAL)])
        engine = SecurityAuditEngine(
            scanners=[scanner], source_root=tmp_path, alert_manager=alert_manager
        )
        await engine.perform_audit()

        scanner._findings = []
        await engine.perform_audit()

        assert alert_manager.get_active(AlertCategory.AUDIT_RISK, "security_audit") is None
        assert alert_manager.counts()["total"] == 1

    @pytest.mark.asyncio
    async def test_completion_event_published(self, tmp_path):
        bus = EventBus()
        engine = SecurityAuditEngine(
            scanners=[StaticScanner("secrets")], source_root=tmp_path, event_bus=bus
        )

        report = await engine.perform_audit()

        event = bus._queue.get_nowait()
        assert event.event_type == EventType.AUDIT_COMPLETED
        assert event.payload["audit_id"] == report.id
        assert event.payload["overall_risk"] == "none"


class TestHistory:
    """Tests for report history, pruning and export."""

    @pytest.mark.asyncio
    async def test_history_most_recent_first(self, tmp_path):
        engine = SecurityAuditEngine(scanners=[StaticScanner("secrets")], source_root=tmp_path)
        first = await engine.perform_audit()
        second = await engine.perform_audit()

        assert engine.get_history() == [second, first]
        assert engine.get_history(limit=1) == [second]
        assert engine.get_latest() is second
        assert engine.get_report(first.id) is first

    @pytest.mark.asyncio
    async def test_prune_history(self, tmp_path):
        engine = SecurityAuditEngine(scanners=[StaticScanner("secrets")], source_root=tmp_path)
        for _ in range(3):
            await engine.perform_audit()
        latest = engine.get_latest()

        assert engine.prune_history(keep_last=1) == 2
        assert engine.get_history() == [latest]
        assert engine.prune_history(keep_last=5) == 0

        with pytest.raises(ValueError):
            engine.prune_history(keep_last=-1)

    @pytest.mark.asyncio
    async def test_export(self, tmp_path):
        engine = SecurityAuditEngine(scanners=[StaticScanner("secrets")], source_root=tmp_path)
        assert engine.export_report() is None

        report = await engine.perform_audit()
        exported = engine.export_report()

        assert exported["report"]["id"] == report.id
        assert exported["report"]["overall_risk"] == "none"
        assert "exported_at" in exported
        assert engine.export_report("missing") is None


class TestBuildRecommendations:
    def test_sorted_by_priority(self):
        report = AuditReport(
            id="a1",
            started_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
            options=AuditOptions(),
            categories=[
                CategoryResult(
                    name="cryptography",
                    status=CategoryStatus.COMPLETE,
                    findings=[make_finding("cryptography", FindingSeverity.LOW)],
                ),
                CategoryResult(
                    name="secrets",
                    status=CategoryStatus.COMPLETE,
                    findings=[make_finding("secrets", FindingSeverity.CRITICAL)],
                ),
            ],
        )

        recommendations = build_recommendations(report)

        assert [r.category for r in recommendations] == ["secrets", "cryptography"]
        assert recommendations[0].priority == FindingSeverity.CRITICAL

"""SecurityAuditEngine - runs category scanners off the event loop.

Each category scanner runs in a worker thread so a slow scan never delays
metric sampling or request admission. An audit is time-boxed and
cancellable:

- a failing scanner marks only its category incomplete
- on timeout the unfinished categories are marked incomplete
- on cancel the report is recorded incomplete with cancelled=True

Completed reports are kept in history and high or critical risk is raised
through the AlertManager.

Usage:
    engine = SecurityAuditEngine(scanners=default_scanners(), source_root=Path("."))
    report = await engine.perform_audit(AuditOptions())

    audit_id = engine.start_audit(AuditOptions())
    engine.cancel_audit(audit_id)
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

from hostguard.alerts.manager import AlertManager
from hostguard.alerts.models import AlertCategory, AlertSeverity, create_alert
from hostguard.audit.models import (
    SEVERITY_RANK,
    AuditOptions,
    AuditReport,
    AuditStatus,
    CategoryResult,
    CategoryStatus,
    FindingSeverity,
    Recommendation,
)
from hostguard.audit.scanners import CategoryScanner, ScanCancelled, ScanContext
from hostguard.errors import AuditScanFailure
from hostguard.events.bus import EventBus
from hostguard.events.models import EngineEvent, EventType
from hostguard.health.config import HealthConfig
from hostguard.ratelimit.config import RateLimitConfig

logger = logging.getLogger(__name__)

# Source key of the single live audit risk alert
_AUDIT_ALERT_KEY = "security_audit"

_CATEGORY_ACTIONS: dict[str, str] = {
    "secrets": "Remove hardcoded secrets and rotate the exposed credentials",
    "input_handling": "Replace dynamic evaluation and unsafe deserialization",
    "cryptography": "Move to strong hashes and cryptographic randomness",
    "dependencies": "Upgrade or replace vulnerable packages and pin versions",
    "configuration": "Enable rate limiting and abuse detection, disable debug mode",
    "file_permissions": "Tighten file permissions",
}


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass
class _RunningAudit:
    report: AuditReport
    thread_cancel: threading.Event = field(default_factory=threading.Event)
    cancel_requested: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task[AuditReport] | None = None


def build_recommendations(report: AuditReport) -> list[Recommendation]:
    """Recommendations per category with findings, most severe first."""
    recommendations: list[Recommendation] = []
    for category in report.categories:
        if category.findings:
            top = max((f.severity for f in category.findings), key=lambda s: SEVERITY_RANK[s])
            recommendations.append(
                Recommendation(
                    priority=top,
                    category=category.name,
                    title=f"Address {category.name} findings",
                    description=f"{len(category.findings)} finding(s), highest severity {top.value}",
                    action=_CATEGORY_ACTIONS.get(category.name, "Review and fix the reported findings"),
                )
            )
        if category.status == CategoryStatus.INCOMPLETE:
            recommendations.append(
                Recommendation(
                    priority=FindingSeverity.MEDIUM,
                    category=category.name,
                    title=f"Re-run {category.name} scan",
                    description=f"Category did not complete: {category.error}",
                    action="Investigate the scan failure and run the audit again",
                )
            )

    if not recommendations:
        recommendations.append(
            Recommendation(
                priority=FindingSeverity.LOW,
                category="maintenance",
                title="Continue security best practices",
                description="No security issues detected",
                action="Keep running regular audits and keep dependencies updated",
            )
        )

    recommendations.sort(key=lambda r: (-SEVERITY_RANK[r.priority], r.category, r.title))
    return recommendations


class SecurityAuditEngine:
    """Runs audits, keeps report history and surfaces high risk as alerts."""

    def __init__(
        self,
        scanners: Sequence[CategoryScanner],
        source_root: Path = Path("."),
        alert_manager: AlertManager | None = None,
        event_bus: EventBus | None = None,
        timeout_seconds: float = 300.0,
        rate_limit_config_provider: Callable[[], RateLimitConfig | None] | None = None,
        health_config_provider: Callable[[], HealthConfig | None] | None = None,
        debug: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the engine.

        Args:
            scanners: Category scanners, run in this order
            source_root: Default directory to scan
            alert_manager: Sink for high/critical risk alerts
            event_bus: Optional bus for audit.completed events
            timeout_seconds: Overall time box per audit
            rate_limit_config_provider: Returns the active rate limit config
            health_config_provider: Returns the active health config
            debug: Whether the service runs in debug mode
            clock: Source of the current UTC time
        """
        names = [s.name for s in scanners]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate scanner names: {names}")

        self._scanners = list(scanners)
        self._source_root = source_root
        self._alerts = alert_manager
        self._event_bus = event_bus
        self._timeout = timeout_seconds
        self._rate_limit_config_provider = rate_limit_config_provider
        self._health_config_provider = health_config_provider
        self._debug = debug
        self._clock = clock
        self._history: list[AuditReport] = []
        self._running: dict[str, _RunningAudit] = {}

    @property
    def categories(self) -> list[str]:
        return [s.name for s in self._scanners]

    @property
    def running_audits(self) -> list[str]:
        return list(self._running)

    async def perform_audit(self, options: AuditOptions | None = None) -> AuditReport:
        """Run an audit to completion, timeout or cancellation.

        Raises:
            ValueError: If options name an unknown category
        """
        run = self._prepare(options or AuditOptions())
        return await self._execute(run)

    def start_audit(self, options: AuditOptions | None = None) -> str:
        """Start an audit in the background and return its id immediately.

        Raises:
            ValueError: If options name an unknown category
        """
        run = self._prepare(options or AuditOptions())
        run.task = asyncio.create_task(self._execute(run))
        return run.report.id

    def cancel_audit(self, audit_id: str) -> bool:
        """Request cancellation of a running audit.

        Returns:
            True if the audit was running
        """
        run = self._running.get(audit_id)
        if run is None:
            return False

        logger.info(f"Cancelling audit {audit_id}")
        run.report.cancelled = True
        run.thread_cancel.set()
        run.cancel_requested.set()
        return True

    async def wait_for_audit(self, audit_id: str) -> AuditReport | None:
        """Wait for a background audit and return its report."""
        run = self._running.get(audit_id)
        if run is not None and run.task is not None:
            return await run.task
        return self.get_report(audit_id)

    def get_report(self, audit_id: str) -> AuditReport | None:
        """A completed report by id, or the in-progress report of a running audit."""
        run = self._running.get(audit_id)
        if run is not None:
            return run.report
        for report in self._history:
            if report.id == audit_id:
                return report
        return None

    def get_latest(self) -> AuditReport | None:
        return self._history[-1] if self._history else None

    def get_history(self, limit: int | None = None) -> list[AuditReport]:
        """Completed reports, most recent first."""
        reports = list(reversed(self._history))
        return reports[:limit] if limit is not None else reports

    def prune_history(self, keep_last: int) -> int:
        """Drop all but the most recent keep_last reports. Returns number removed."""
        if keep_last < 0:
            raise ValueError("keep_last must be >= 0")
        removed = max(0, len(self._history) - keep_last)
        if removed:
            self._history = self._history[removed:]
            logger.info(f"Pruned {removed} audit reports")
        return removed

    def export_report(self, audit_id: str | None = None) -> dict[str, Any] | None:
        """Serialized report for download. Defaults to the latest report."""
        report = self.get_report(audit_id) if audit_id else self.get_latest()
        if report is None:
            return None
        return {"exported_at": self._clock().isoformat(), "report": report.to_dict()}

    def _prepare(self, options: AuditOptions) -> _RunningAudit:
        if options.categories is not None:
            unknown = sorted(set(options.categories) - set(self.categories))
            if unknown:
                raise ValueError(f"Unknown audit categories: {', '.join(unknown)}")

        report = AuditReport(id=str(uuid4()), started_at=self._clock(), options=options)
        run = _RunningAudit(report=report)
        self._running[report.id] = run
        return run

    async def _execute(self, run: _RunningAudit) -> AuditReport:
        report = run.report
        options = report.options
        scanners = [
            s for s in self._scanners if options.categories is None or s.name in options.categories
        ]
        context = ScanContext(
            root=options.source_root or self._source_root,
            cancel_event=run.thread_cancel,
            rate_limit_config=(
                self._rate_limit_config_provider() if self._rate_limit_config_provider else None
            ),
            health_config=self._health_config_provider() if self._health_config_provider else None,
            debug=self._debug,
        )

        logger.info(
            f"Security audit {report.id} started: {len(scanners)} categories "
            f"(scheduled={options.scheduled})"
        )
        started = time.perf_counter()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout

        tasks = {asyncio.create_task(self._run_category(s, context)): s.name for s in scanners}
        results: dict[str, CategoryResult] = {}
        cancel_waiter = asyncio.create_task(run.cancel_requested.wait())
        stop_reason = "timeout"

        try:
            pending = set(tasks)
            while pending:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                done, _ = await asyncio.wait(
                    pending | {cancel_waiter},
                    timeout=remaining,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                for task in done & pending:
                    results[tasks[task]] = task.result()
                pending -= done
                if cancel_waiter in done:
                    stop_reason = "cancelled"
                    break
        except asyncio.CancelledError:
            run.thread_cancel.set()
            for task in tasks:
                task.cancel()
            self._running.pop(report.id, None)
            raise
        finally:
            cancel_waiter.cancel()

        for task, name in tasks.items():
            if name in results:
                continue
            if task.done() and not task.cancelled():
                results[name] = task.result()
                continue
            run.thread_cancel.set()
            task.cancel()
            results[name] = CategoryResult(
                name=name, status=CategoryStatus.INCOMPLETE, error=stop_reason
            )

        report.categories = [results[s.name] for s in scanners]
        report.completed_at = self._clock()
        report.duration_ms = (time.perf_counter() - started) * 1000
        report.status = (
            AuditStatus.INCOMPLETE
            if report.cancelled or report.incomplete_categories
            else AuditStatus.COMPLETE
        )
        report.recommendations = build_recommendations(report)

        self._running.pop(report.id, None)
        self._history.append(report)
        logger.info(
            f"Security audit {report.id} finished: status={report.status.value} "
            f"risk={report.overall_risk} findings={report.summary['total']}"
        )

        self._surface_risk(report)
        self._publish(report)
        return report

    async def _run_category(self, scanner: CategoryScanner, context: ScanContext) -> CategoryResult:
        started = time.perf_counter()
        try:
            findings = await asyncio.to_thread(scanner.scan, context)
        except ScanCancelled:
            return CategoryResult(
                name=scanner.name,
                status=CategoryStatus.INCOMPLETE,
                error="cancelled",
                duration_ms=(time.perf_counter() - started) * 1000,
            )
        except Exception as e:
            failure = AuditScanFailure(scanner.name, f"{type(e).__name__}: {e}")
            logger.warning(str(failure))
            return CategoryResult(
                name=scanner.name,
                status=CategoryStatus.INCOMPLETE,
                error=failure.reason,
                duration_ms=(time.perf_counter() - started) * 1000,
            )

        return CategoryResult(
            name=scanner.name,
            status=CategoryStatus.COMPLETE,
            findings=sorted(findings, key=lambda f: f.sort_key),
            duration_ms=(time.perf_counter() - started) * 1000,
        )

    def _surface_risk(self, report: AuditReport) -> None:
        if self._alerts is None:
            return

        risk = report.overall_risk
        if risk in (FindingSeverity.CRITICAL.value, FindingSeverity.HIGH.value):
            summary = report.summary
            self._alerts.raise_alert(
                create_alert(
                    severity=(
                        AlertSeverity.CRITICAL
                        if risk == FindingSeverity.CRITICAL.value
                        else AlertSeverity.WARNING
                    ),
                    category=AlertCategory.AUDIT_RISK,
                    source_key=_AUDIT_ALERT_KEY,
                    message=(
                        f"Security audit risk {risk}: {summary['critical']} critical, "
                        f"{summary['high']} high findings (driver: {report.risk_category})"
                    ),
                    details={"audit_id": report.id, "summary": summary},
                )
            )
        elif report.status == AuditStatus.COMPLETE:
            self._alerts.resolve_by_key(AlertCategory.AUDIT_RISK, _AUDIT_ALERT_KEY)

    def _publish(self, report: AuditReport) -> None:
        if self._event_bus is None:
            return
        self._event_bus.publish(
            EngineEvent(
                event_type=EventType.AUDIT_COMPLETED,
                payload={
                    "audit_id": report.id,
                    "status": report.status.value,
                    "cancelled": report.cancelled,
                    "overall_risk": report.overall_risk,
                    "summary": report.summary,
                },
            )
        )

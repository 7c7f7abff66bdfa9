"""Tests for audit report models."""

from datetime import datetime, timezone

from hostguard.audit.models import (
    AuditOptions,
    AuditReport,
    CategoryResult,
    CategoryStatus,
    Finding,
    FindingSeverity,
)

STARTED = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def finding(category: str, severity: FindingSeverity) -> Finding:
    return Finding(
        category=category,
        rule_id="rule",
        severity=severity,
        description="desc",
        location="app.py",
    )


def make_report(*categories: CategoryResult) -> AuditReport:
    return AuditReport(
        id="audit-1", started_at=STARTED, options=AuditOptions(), categories=list(categories)
    )


def complete(name: str, *severities: FindingSeverity) -> CategoryResult:
    return CategoryResult(
        name=name,
        status=CategoryStatus.COMPLETE,
        findings=[finding(name, s) for s in severities],
    )


class TestSummary:
    def test_counts_derived_from_categories(self):
        report = make_report(
            complete("secrets", FindingSeverity.CRITICAL, FindingSeverity.LOW),
            complete("cryptography", FindingSeverity.LOW, FindingSeverity.MEDIUM),
        )

        assert report.summary == {"critical": 1, "high": 0, "medium": 1, "low": 2, "total": 4}

    def test_empty_report(self):
        report = make_report()

        assert report.summary["total"] == 0
        assert report.overall_risk == "none"
        assert report.risk_category is None


class TestOverallRisk:
    """Tests for overall risk and its driving category."""

    def test_highest_severity_wins(self):
        report = make_report(
            complete("secrets", FindingSeverity.MEDIUM),
            complete("dependencies", FindingSeverity.HIGH, FindingSeverity.LOW),
        )

        assert report.overall_risk == "high"
        assert report.risk_category == "dependencies"

    def test_most_top_severity_findings_drives_risk(self):
        report = make_report(
            complete("cryptography", FindingSeverity.HIGH),
            complete("secrets", FindingSeverity.HIGH, FindingSeverity.HIGH),
        )

        assert report.risk_category == "secrets"

    def test_tie_goes_to_alphabetically_first(self):
        report = make_report(
            complete("secrets", FindingSeverity.CRITICAL),
            complete("input_handling", FindingSeverity.CRITICAL),
        )

        assert report.risk_category == "input_handling"

    def test_incomplete_categories_listed(self):
        report = make_report(
            complete("secrets"),
            CategoryResult(
                name="dependencies",
                status=CategoryStatus.INCOMPLETE,
                findings=[finding("dependencies", FindingSeverity.LOW)],
                error="timeout",
            ),
        )

        assert report.incomplete_categories == ["dependencies"]
        # Partial findings still count
        assert report.overall_risk == "low"


def test_to_dict():
    report = make_report(complete("secrets", FindingSeverity.HIGH))

    data = report.to_dict()

    assert data["id"] == "audit-1"
    assert data["status"] == "running"
    assert data["completed_at"] is None
    assert data["overall_risk"] == "high"
    assert data["risk_category"] == "secrets"
    assert data["categories"][0]["issue_counts"]["high"] == 1
    assert data["categories"][0]["findings"][0]["severity"] == "high"
    assert data["options"] == {"categories": None, "source_root": None, "scheduled": False}

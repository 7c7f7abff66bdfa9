"""Pure health evaluation functions.

Status and score depend only on their inputs so the same check results
always yield the same verdict.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta

from hostguard.health.config import CheckSpec, Threshold
from hostguard.health.models import (
    STATUS_PRIORITY,
    STATUS_SCORE,
    CheckResult,
    HealthStatus,
    ThresholdDirection,
)
from hostguard.metrics.models import MetricSample, SampleStatus


def classify(value: float, threshold: Threshold) -> HealthStatus:
    """Classify a value against a threshold.

    For higher_is_worse, value >= critical is critical and value >= warning
    is warning. For lower_is_worse the comparisons are mirrored.
    """
    if threshold.direction == ThresholdDirection.HIGHER_IS_WORSE:
        if value >= threshold.critical:
            return HealthStatus.CRITICAL
        if value >= threshold.warning:
            return HealthStatus.WARNING
        return HealthStatus.HEALTHY

    if value <= threshold.critical:
        return HealthStatus.CRITICAL
    if value <= threshold.warning:
        return HealthStatus.WARNING
    return HealthStatus.HEALTHY


def evaluate_check(
    spec: CheckSpec,
    sample: MetricSample | None,
    now: datetime,
    stale_after_seconds: float | None = None,
) -> CheckResult:
    """Evaluate one check against the latest sample of its series.

    Args:
        spec: The check to evaluate
        sample: Latest sample for the check's series, or None when no data
        now: Evaluation time, used for the result timestamp and staleness
        stale_after_seconds: Samples older than this evaluate as unknown

    Returns:
        CheckResult for the check
    """
    threshold = spec.threshold

    def result(status: HealthStatus, value: float | None, message: str) -> CheckResult:
        return CheckResult(
            name=spec.name,
            status=status,
            value=value,
            warning=threshold.warning,
            critical=threshold.critical,
            direction=threshold.direction,
            timestamp=now,
            message=message,
            weight=spec.weight,
        )

    if sample is None:
        return result(HealthStatus.UNKNOWN, None, "No data")

    if sample.status == SampleStatus.UNKNOWN or sample.value is None:
        return result(HealthStatus.UNKNOWN, None, f"Probe failed: {sample.error or 'no value'}")

    if stale_after_seconds is not None and now - sample.timestamp > timedelta(
        seconds=stale_after_seconds
    ):
        return result(HealthStatus.UNKNOWN, sample.value, "Stale data")

    status = classify(sample.value, threshold)
    if status == HealthStatus.HEALTHY:
        message = f"{spec.name} at {sample.value:.1f}"
    else:
        limit = threshold.critical if status == HealthStatus.CRITICAL else threshold.warning
        op = ">=" if threshold.direction == ThresholdDirection.HIGHER_IS_WORSE else "<="
        message = f"{spec.name} at {sample.value:.1f} ({status.value} {op} {limit:g})"
    return result(status, sample.value, message)


def compute_overall(results: Sequence[CheckResult]) -> HealthStatus:
    """Worst known status across results.

    UNKNOWN never drives the overall status. With no known results the
    system is HEALTHY; unknown checks are reported separately.
    """
    overall = HealthStatus.HEALTHY
    for r in results:
        if STATUS_PRIORITY[r.status] > STATUS_PRIORITY[overall]:
            overall = r.status
    return overall


def compute_score(results: Sequence[CheckResult]) -> float:
    """Weighted average of per-check scores, 0..100.

    healthy=100, warning=70, critical=30, unknown=0. No checks scores 100.
    If every weight is zero the checks are weighted uniformly.
    """
    if not results:
        return 100.0

    total_weight = sum(r.weight for r in results)
    if total_weight <= 0:
        return round(sum(STATUS_SCORE[r.status] for r in results) / len(results), 2)

    weighted = sum(STATUS_SCORE[r.status] * r.weight for r in results)
    return round(weighted / total_weight, 2)

"""Metric sampling and storage package."""

from hostguard.metrics.models import MetricSample, MetricSource, MetricSummary, SampleStatus
from hostguard.metrics.probes import MetricProbe, default_probes
from hostguard.metrics.sampler import Sampler
from hostguard.metrics.store import MetricStore

__all__ = [
    "MetricProbe",
    "MetricSample",
    "MetricSource",
    "MetricStore",
    "MetricSummary",
    "SampleStatus",
    "Sampler",
    "default_probes",
]

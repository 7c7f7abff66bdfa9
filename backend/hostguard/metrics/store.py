"""In-memory metric store with bounded per-series history.

Each (source, key) series is a deque capped by count and pruned by age on
every append. A single lock makes append and read atomic with respect to
each other; readers always receive copies.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from hostguard.metrics.models import MetricSample, MetricSummary, SampleStatus

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class MetricStore:
    """Owns every metric series.

    Timestamps within a series are non-decreasing. A sample older
    than the series tail is rejected.
    """

    def __init__(
        self,
        retention_seconds: float = 86400,
        max_samples: int = 17280,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the store.

        Args:
            retention_seconds: Maximum sample age kept per series
            max_samples: Maximum number of samples kept per series
            clock: Source of the current UTC time
        """
        if max_samples <= 0:
            raise ValueError("max_samples must be positive")
        if retention_seconds <= 0:
            raise ValueError("retention_seconds must be positive")

        self._retention = timedelta(seconds=retention_seconds)
        self._max_samples = max_samples
        self._clock = clock
        self._series: dict[tuple[str, str], deque[MetricSample]] = {}
        self._lock = threading.Lock()

    def record(self, sample: MetricSample) -> None:
        """Append a sample to its series.

        Raises:
            ValueError: If the sample is older than the latest sample in its series
        """
        with self._lock:
            series = self._series.get(sample.series_key)
            if series is None:
                series = deque(maxlen=self._max_samples)
                self._series[sample.series_key] = series
            elif series and sample.timestamp < series[-1].timestamp:
                raise ValueError(
                    f"Out-of-order sample for {sample.source}.{sample.key}: "
                    f"{sample.timestamp.isoformat()} < {series[-1].timestamp.isoformat()}"
                )

            series.append(sample)
            self._evict_expired(series, self._clock() - self._retention)

    def query(self, source: str, key: str, window_seconds: float) -> list[MetricSample]:
        """Samples with timestamp >= now - window, in time order.

        Unknown series or an empty window yield an empty list.
        """
        cutoff = self._clock() - timedelta(seconds=window_seconds)
        with self._lock:
            series = self._series.get((source, key))
            if not series:
                return []
            return [s for s in series if s.timestamp >= cutoff]

    def latest(self, source: str, key: str) -> MetricSample | None:
        """Most recent sample, or None when the series has no data."""
        with self._lock:
            series = self._series.get((source, key))
            if not series:
                return None
            return series[-1]

    def summarize(self, source: str, key: str, window_seconds: float) -> MetricSummary:
        """Min/max/avg over the known-valued samples in the window."""
        samples = self.query(source, key, window_seconds)
        values = [s.value for s in samples if s.status == SampleStatus.OK and s.value is not None]
        unknown_count = len(samples) - len(values)

        if not values:
            return MetricSummary(
                source=source,
                key=key,
                count=0,
                unknown_count=unknown_count,
                min=None,
                max=None,
                avg=None,
                latest=None,
            )

        return MetricSummary(
            source=source,
            key=key,
            count=len(values),
            unknown_count=unknown_count,
            min=min(values),
            max=max(values),
            avg=sum(values) / len(values),
            latest=values[-1],
        )

    def series_keys(self) -> list[tuple[str, str]]:
        with self._lock:
            return sorted(self._series.keys())

    def prune(self) -> int:
        """Drop expired samples from every series. Returns number removed."""
        cutoff = self._clock() - self._retention
        removed = 0
        with self._lock:
            for series in self._series.values():
                removed += self._evict_expired(series, cutoff)
        if removed:
            logger.debug(f"Pruned {removed} expired metric samples")
        return removed

    @staticmethod
    def _evict_expired(series: deque[MetricSample], cutoff: datetime) -> int:
        removed = 0
        while series and series[0].timestamp < cutoff:
            series.popleft()
            removed += 1
        return removed

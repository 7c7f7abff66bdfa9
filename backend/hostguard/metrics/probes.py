"""Metric probes read by the Sampler.

Each probe reads one (source, key) value. Probes may raise; the Sampler
turns failures and timeouts into unknown samples. psutil calls run in a
worker thread so a stalled read can be timed out without blocking the loop.

Usage:
    probe = SystemCpuProbe()
    value = await probe.read()
"""

from __future__ import annotations

import asyncio
import time
from typing import Protocol, runtime_checkable

import psutil

from hostguard.metrics.models import MetricSource

_MB = 1024 * 1024


@runtime_checkable
class MetricProbe(Protocol):
    """Protocol for metric probes."""

    source: str
    key: str

    async def read(self) -> float:
        """Read the current value.

        Returns:
            The metric value

        Raises:
            Exception: Any failure reading the underlying source
        """
        ...


class SystemCpuProbe:
    """System-wide CPU utilisation since the previous call.

    The first reading after construction is primed so it does not report 0.
    """

    source = MetricSource.SYSTEM_CPU
    key = "usage_percent"

    def __init__(self) -> None:
        psutil.cpu_percent(interval=None)

    async def read(self) -> float:
        return float(await asyncio.to_thread(psutil.cpu_percent, interval=None))


class SystemMemoryProbe:
    source = MetricSource.SYSTEM_MEMORY
    key = "usage_percent"

    async def read(self) -> float:
        memory = await asyncio.to_thread(psutil.virtual_memory)
        return float(memory.percent)


class DiskFreeProbe:
    """Free space on a mount point, as a percentage. Lower is worse."""

    source = MetricSource.SYSTEM_DISK
    key = "free_percent"

    def __init__(self, path: str = "/") -> None:
        self._path = path

    async def read(self) -> float:
        usage = await asyncio.to_thread(psutil.disk_usage, self._path)
        return 100.0 - float(usage.percent)


class LoadAverageProbe:
    """1-minute load average normalised by CPU count, as a percentage."""

    source = MetricSource.SYSTEM_LOAD
    key = "load_percent"

    async def read(self) -> float:
        load_1m, _, _ = await asyncio.to_thread(psutil.getloadavg)
        cpus = psutil.cpu_count() or 1
        return float(load_1m) / cpus * 100.0


class ProcessMemoryProbe:
    """Resident set size of this process in MB."""

    source = MetricSource.PROCESS_MEMORY
    key = "rss_mb"

    def __init__(self) -> None:
        self._process = psutil.Process()

    async def read(self) -> float:
        memory = await asyncio.to_thread(self._process.memory_info)
        return memory.rss / _MB


class ProcessCpuProbe:
    source = MetricSource.PROCESS_CPU
    key = "usage_percent"

    def __init__(self) -> None:
        self._process = psutil.Process()
        self._process.cpu_percent(interval=None)

    async def read(self) -> float:
        return float(await asyncio.to_thread(self._process.cpu_percent, interval=None))


class EventLoopLagProbe:
    """Scheduling delay of the asyncio event loop in milliseconds.

    Sleeps for a short interval and reports how late the loop resumed.
    """

    source = MetricSource.EVENT_LOOP
    key = "lag_ms"

    def __init__(self, interval_seconds: float = 0.01) -> None:
        self._interval = interval_seconds

    async def read(self) -> float:
        start = time.perf_counter()
        await asyncio.sleep(self._interval)
        elapsed = time.perf_counter() - start
        return max(0.0, (elapsed - self._interval) * 1000)


def default_probes() -> list[MetricProbe]:
    """Probes the engine samples when none are configured."""
    return [
        SystemCpuProbe(),
        SystemMemoryProbe(),
        DiskFreeProbe(),
        LoadAverageProbe(),
        ProcessMemoryProbe(),
        ProcessCpuProbe(),
        EventLoopLagProbe(),
    ]

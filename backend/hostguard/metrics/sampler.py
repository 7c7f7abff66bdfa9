"""Periodic metric sampler.

The Sampler runs as one asyncio background task. Each tick reads every
probe concurrently under a per-probe timeout, records exactly one sample
per probe, then awaits the on_tick callback so health evaluation only ever
sees completed ticks.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timezone

from hostguard.errors import AlertManagerFault, ProbeFailure
from hostguard.metrics.models import MetricSample
from hostguard.metrics.probes import MetricProbe
from hostguard.metrics.store import MetricStore

logger = logging.getLogger(__name__)

TickCallback = Callable[[datetime], Awaitable[object]]
FaultCallback = Callable[[AlertManagerFault], object]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class Sampler:
    """Samples all probes on a fixed interval and records into the MetricStore.

    Attributes:
        tick_count: Number of completed ticks
        last_tick_at: Timestamp of the last completed tick
        is_running: Whether the background task is running
    """

    def __init__(
        self,
        store: MetricStore,
        probes: Sequence[MetricProbe],
        interval_seconds: float = 5.0,
        probe_timeout_seconds: float = 2.0,
        on_tick: TickCallback | None = None,
        clock: Callable[[], datetime] = _utcnow,
        on_fault: FaultCallback | None = None,
    ) -> None:
        """Initialize the Sampler.

        Args:
            store: Store receiving one sample per probe per tick
            probes: Probes read each tick
            interval_seconds: Delay between tick starts
            probe_timeout_seconds: Per-probe read timeout
            on_tick: Awaited after each completed tick with the tick timestamp
            clock: Source of the current UTC time
            on_fault: Called when an alert manager fault stops the loop. Without
                it the fault is raised out of the background task.
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        self._store = store
        self._probes = list(probes)
        self._interval = interval_seconds
        self._probe_timeout = probe_timeout_seconds
        self._on_tick = on_tick
        self._clock = clock
        self._on_fault = on_fault
        self._tick_lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._tick_count = 0
        self._last_tick_at: datetime | None = None

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def last_tick_at(self) -> datetime | None:
        return self._last_tick_at

    @property
    def is_running(self) -> bool:
        return self._running

    def set_on_tick(self, callback: TickCallback | None) -> None:
        self._on_tick = callback

    async def tick(self) -> list[MetricSample]:
        """Run one sampling cycle.

        Returns:
            The samples recorded in this tick, in probe order
        """
        async with self._tick_lock:
            timestamp = self._clock()
            results = await asyncio.gather(
                *[self._read_probe(probe) for probe in self._probes],
                return_exceptions=True,
            )

            samples: list[MetricSample] = []
            for probe, result in zip(self._probes, results):
                if isinstance(result, BaseException):
                    failure = (
                        result
                        if isinstance(result, ProbeFailure)
                        else ProbeFailure(probe.source, probe.key, str(result) or type(result).__name__)
                    )
                    logger.warning(str(failure))
                    sample = MetricSample.unknown(probe.source, probe.key, timestamp, failure.reason)
                else:
                    sample = MetricSample(
                        source=probe.source, key=probe.key, value=result, timestamp=timestamp
                    )

                try:
                    self._store.record(sample)
                except ValueError as e:
                    logger.warning(f"Sample rejected: {e}")
                    continue
                samples.append(sample)

            self._tick_count += 1
            self._last_tick_at = timestamp

            if self._on_tick is not None:
                await self._on_tick(timestamp)

            return samples

    async def start(self) -> None:
        """Start the background sampling task. Safe to call multiple times."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Sampler started: {len(self._probes)} probes every {self._interval}s")

    async def stop(self) -> None:
        """Stop the background sampling task. Safe to call multiple times."""
        if not self._running:
            return

        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except AlertManagerFault:
                # Already logged by the loop
                pass
            self._task = None

        logger.info("Sampler stopped")

    async def _read_probe(self, probe: MetricProbe) -> float:
        try:
            value = await asyncio.wait_for(probe.read(), timeout=self._probe_timeout)
        except TimeoutError as e:
            raise ProbeFailure(probe.source, probe.key, f"timeout after {self._probe_timeout}s") from e
        return float(value)

    async def _run_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while self._running:
            started = loop.time()
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except AlertManagerFault as e:
                logger.critical("Alert manager fault, sampler loop stopping")
                self._running = False
                if self._on_fault is None:
                    raise
                self._on_fault(e)
                return
            except Exception as e:
                logger.exception(f"Sampler tick failed: {e}")

            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, self._interval - elapsed))

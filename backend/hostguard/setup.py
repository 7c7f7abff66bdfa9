"""Engine setup and lifecycle.

Builds and wires every engine component, starts the background sampler
and the scheduled jobs, and exposes global accessors for the API layer.

Usage:
    from hostguard.setup import init_engine, shutdown_engine, get_engine

    # During startup:
    services = await init_engine(settings)

    # Later, anywhere in the app:
    engine = get_engine()
    if engine:
        snapshot = engine.health_monitor.current

    # During shutdown:
    await shutdown_engine()
"""

from __future__ import annotations

import logging
import os
import signal
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from apscheduler.events import EVENT_JOB_ERROR, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from hostguard.alerts.manager import AlertManager
from hostguard.audit.engine import SecurityAuditEngine
from hostguard.audit.models import AuditOptions
from hostguard.audit.scanners import CategoryScanner, default_scanners
from hostguard.config import Settings, settings as default_settings
from hostguard.config_loader import load_engine_config
from hostguard.errors import AlertManagerFault
from hostguard.events.bus import EventBus
from hostguard.health.monitor import HealthMonitor
from hostguard.metrics.probes import MetricProbe, default_probes
from hostguard.metrics.sampler import Sampler
from hostguard.metrics.store import MetricStore
from hostguard.ratelimit.limiter import RateLimiter

logger = logging.getLogger(__name__)

FaultHandler = Callable[[AlertManagerFault], None]


def terminate_process(fault: AlertManagerFault) -> None:
    """Fault handler that stops the server.

    SIGTERM lets uvicorn run the lifespan shutdown before the process exits.
    """
    logger.critical(f"Alert manager fault, terminating process: {fault}")
    os.kill(os.getpid(), signal.SIGTERM)


@dataclass
class EngineServices:
    """Container for all engine services.

    Attributes:
        settings: Settings the engine was built from
        event_bus: Push event channel
        alert_manager: Single alert sink
        metric_store: Metric series owner
        sampler: Periodic metric sampler
        health_monitor: Health evaluation and snapshot history
        rate_limiter: Admission control and abuse detection
        audit_engine: Security audits
        scheduler: Scheduled jobs, None until started
        fault_handler: Called on an alert manager fault in background work
    """

    settings: Settings
    event_bus: EventBus
    alert_manager: AlertManager
    metric_store: MetricStore
    sampler: Sampler
    health_monitor: HealthMonitor
    rate_limiter: RateLimiter
    audit_engine: SecurityAuditEngine
    scheduler: AsyncIOScheduler | None = None
    fault_handler: FaultHandler | None = None


# Global state for services
_services: EngineServices | None = None


def build_engine(
    settings: Settings,
    probes: Sequence[MetricProbe] | None = None,
    scanners: Sequence[CategoryScanner] | None = None,
    fault_handler: FaultHandler | None = None,
) -> EngineServices:
    """Create and wire every component without starting anything.

    Raises:
        ConfigurationError: If the engine config file is invalid
    """
    health_config, rate_limit_config = load_engine_config(settings.config_file)

    event_bus = EventBus(queue_size=settings.event_bus_queue_size)
    alert_manager = AlertManager(
        max_entries=settings.alert_max_entries,
        max_age_seconds=settings.alert_max_age_seconds,
        event_bus=event_bus,
    )
    metric_store = MetricStore(
        retention_seconds=settings.metric_retention_seconds,
        max_samples=settings.metric_max_samples,
    )
    health_monitor = HealthMonitor(
        store=metric_store,
        alert_manager=alert_manager,
        config=health_config,
        event_bus=event_bus,
        history_size=settings.health_history_size,
        history_max_age_seconds=settings.health_history_max_age_seconds,
    )
    sampler = Sampler(
        store=metric_store,
        probes=default_probes() if probes is None else probes,
        interval_seconds=settings.sample_interval_seconds,
        probe_timeout_seconds=settings.probe_timeout_seconds,
        on_tick=health_monitor.on_tick,
        on_fault=fault_handler,
    )
    rate_limiter = RateLimiter(
        config=rate_limit_config,
        alert_manager=alert_manager,
        event_bus=event_bus,
    )
    audit_engine = SecurityAuditEngine(
        scanners=default_scanners() if scanners is None else scanners,
        source_root=settings.audit_source_root,
        alert_manager=alert_manager,
        event_bus=event_bus,
        timeout_seconds=settings.audit_timeout_seconds,
        rate_limit_config_provider=lambda: rate_limiter.config,
        health_config_provider=lambda: health_monitor.config,
    )

    return EngineServices(
        settings=settings,
        event_bus=event_bus,
        alert_manager=alert_manager,
        metric_store=metric_store,
        sampler=sampler,
        health_monitor=health_monitor,
        rate_limiter=rate_limiter,
        audit_engine=audit_engine,
        fault_handler=fault_handler,
    )


async def _run_scheduled_audit(audit_engine: SecurityAuditEngine) -> None:
    """Scheduled job: daily security audit."""
    try:
        await audit_engine.perform_audit(AuditOptions(scheduled=True))
    except AlertManagerFault:
        raise
    except Exception as e:
        logger.exception(f"Scheduled security audit failed: {e}")


async def _run_maintenance(services: EngineServices) -> None:
    """Scheduled job: retention for metrics and alerts."""
    services.metric_store.prune()
    services.alert_manager.prune()


async def _run_ratelimit_sweep(rate_limiter: RateLimiter) -> None:
    """Scheduled job: expire blocks and stale rate limit state."""
    rate_limiter.sweep()


async def _run_stats_reset(rate_limiter: RateLimiter) -> None:
    """Scheduled job: reset daily rate limit statistics."""
    rate_limiter.reset_statistics()


def job_fault_listener(fault_handler: FaultHandler) -> Callable[[JobExecutionEvent], None]:
    """Scheduler listener forwarding alert manager faults raised by jobs."""

    def on_job_error(event: JobExecutionEvent) -> None:
        if isinstance(event.exception, AlertManagerFault):
            logger.critical(f"Scheduled job {event.job_id} hit an alert manager fault")
            fault_handler(event.exception)

    return on_job_error


def start_scheduler(services: EngineServices) -> AsyncIOScheduler:
    """Register and start scheduled jobs."""
    scheduler = AsyncIOScheduler()
    settings = services.settings

    # Rate limiter sweep: every 1 minute
    scheduler.add_job(
        _run_ratelimit_sweep,
        IntervalTrigger(minutes=1),
        args=[services.rate_limiter],
        id="ratelimit_sweep",
        name="Expire blocks and stale rate limit state",
    )

    # Metric and alert retention: every 5 minutes
    scheduler.add_job(
        _run_maintenance,
        IntervalTrigger(minutes=5),
        args=[services],
        id="retention",
        name="Prune expired metrics and alerts",
    )

    # Statistics reset: daily at midnight
    scheduler.add_job(
        _run_stats_reset,
        CronTrigger(hour=0, minute=0),
        args=[services.rate_limiter],
        id="ratelimit_stats_reset",
        name="Reset daily rate limit statistics",
    )

    # Security audit: daily
    scheduler.add_job(
        _run_scheduled_audit,
        CronTrigger(hour=settings.audit_schedule_hour, minute=0),
        args=[services.audit_engine],
        id="security_audit",
        name="Daily security audit",
    )

    if services.fault_handler is not None:
        scheduler.add_listener(job_fault_listener(services.fault_handler), EVENT_JOB_ERROR)

    scheduler.start()
    return scheduler


async def init_engine(
    settings: Settings | None = None,
    probes: Sequence[MetricProbe] | None = None,
    scanners: Sequence[CategoryScanner] | None = None,
    start_background: bool = True,
    fault_handler: FaultHandler | None = terminate_process,
) -> EngineServices:
    """Initialize all engine services.

    If called when services are already initialized, the old services are
    shut down and replaced.

    Args:
        settings: Engine settings. If None, uses the module settings.
        probes: Metric probes. If None, uses the default psutil probes.
        scanners: Audit scanners. If None, uses the default categories.
        start_background: Start the sampler and scheduler
        fault_handler: Called when an alert manager fault stops background
            work. Defaults to terminating the process.

    Returns:
        EngineServices containing all initialized services.
    """
    global _services

    if _services is not None:
        logger.info("Replacing existing engine services")
        await shutdown_engine()

    services = build_engine(
        settings or default_settings,
        probes=probes,
        scanners=scanners,
        fault_handler=fault_handler,
    )
    await services.event_bus.start()

    if start_background:
        await services.sampler.start()
        services.scheduler = start_scheduler(services)

    _services = services
    logger.info(
        f"Engine initialized: {len(services.health_monitor.config.checks)} health checks, "
        f"{len(services.audit_engine.categories)} audit categories"
    )
    return services


async def shutdown_engine() -> None:
    """Shutdown all engine services. Safe to call multiple times."""
    global _services

    if _services is None:
        logger.debug("No engine services to shutdown")
        return

    services = _services
    _services = None

    if services.scheduler is not None:
        services.scheduler.shutdown(wait=False)
        services.scheduler = None

    for audit_id in services.audit_engine.running_audits:
        services.audit_engine.cancel_audit(audit_id)

    await services.sampler.stop()
    await services.event_bus.stop()

    logger.info("Engine shutdown complete")


def report_fault(fault: AlertManagerFault) -> None:
    """Forward a fault raised while serving a request to the engine fault handler."""
    if _services is not None and _services.fault_handler is not None:
        _services.fault_handler(fault)


def get_engine() -> EngineServices | None:
    """Get the global EngineServices, or None if not yet initialized."""
    return _services


def get_rate_limiter() -> RateLimiter | None:
    """Get the global RateLimiter, or None if not yet initialized."""
    if _services is None:
        return None
    return _services.rate_limiter

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from hostguard import __version__
from hostguard.api.alerts import router as alerts_router
from hostguard.api.audit import router as audit_router
from hostguard.api.events import router as events_router
from hostguard.api.export import router as export_router
from hostguard.api.health import router as health_router
from hostguard.api.metrics import router as metrics_router
from hostguard.api.ratelimit import router as ratelimit_router
from hostguard.config import settings
from hostguard.errors import AlertManagerFault
from hostguard.events.websocket import event_ws_manager
from hostguard.ratelimit.middleware import RateLimitMiddleware
from hostguard.setup import get_rate_limiter, init_engine, report_fault, shutdown_engine

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Startup
    services = await init_engine(settings)
    services.event_bus.subscribe(event_ws_manager.broadcast)
    yield
    # Shutdown
    await shutdown_engine()


app = FastAPI(title="Hostguard", version=__version__, lifespan=lifespan)

if settings.ratelimit_middleware_enabled:
    app.add_middleware(
        RateLimitMiddleware,
        limiter_provider=get_rate_limiter,
        trusted_proxies=settings.trusted_proxies,
        on_fault=report_fault,
    )


@app.exception_handler(AlertManagerFault)
async def alert_manager_fault_handler(request: Request, exc: AlertManagerFault):
    """The alert sink is unusable: report the fault and fail the request."""
    report_fault(exc)
    return JSONResponse(status_code=500, content={"detail": "Alert manager fault"})


# Include routers
app.include_router(health_router)
app.include_router(metrics_router)
app.include_router(alerts_router)
app.include_router(ratelimit_router)
app.include_router(audit_router)
app.include_router(export_router)
app.include_router(events_router)


@app.get("/health")
async def health():
    return {"status": "healthy"}

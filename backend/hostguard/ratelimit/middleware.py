"""HTTP middleware applying RateLimiter.admit() to inbound API traffic."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Collection

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import HTTPConnection

from hostguard.errors import AlertManagerFault
from hostguard.ratelimit.limiter import RateLimiter

logger = logging.getLogger(__name__)

LimiterProvider = Callable[[], RateLimiter | None]


def get_client_id(request: HTTPConnection, trusted_proxies: Collection[str] = ()) -> str:
    """Client IP of an HTTP request or WebSocket connection.

    X-Forwarded-For and X-Real-IP are only honored when the socket peer is
    one of ``trusted_proxies``. Any other peer is identified by its own
    address, so a client cannot pick its identity through headers.
    """
    peer = request.client.host if request.client else None
    if peer is None or peer not in trusted_proxies:
        return peer or "unknown"

    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return peer


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Denies requests the RateLimiter rejects with 429 and Retry-After.

    Requests pass through untouched while the engine is not initialized.
    An alert manager fault during admission is passed to on_fault and
    answered with 500.
    """

    def __init__(
        self,
        app,
        limiter_provider: LimiterProvider,
        path_prefix: str = "/api",
        trusted_proxies: Collection[str] = (),
        on_fault: Callable[[AlertManagerFault], None] | None = None,
    ) -> None:
        super().__init__(app)
        self._limiter_provider = limiter_provider
        self._path_prefix = path_prefix
        self._trusted_proxies = frozenset(trusted_proxies)
        self._on_fault = on_fault

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        limiter = self._limiter_provider()
        if limiter is None or not path.startswith(self._path_prefix):
            return await call_next(request)

        client_id = get_client_id(request, self._trusted_proxies)
        try:
            decision = limiter.admit(client_id, path, request.headers.get("User-Agent", ""))
        except AlertManagerFault as e:
            logger.critical(f"Alert manager fault during admission: {e}")
            if self._on_fault is not None:
                self._on_fault(e)
            return JSONResponse(status_code=500, content={"detail": "Alert manager fault"})

        if not decision.allowed:
            logger.debug(f"Request denied: {client_id} {path} ({decision.reason.value})")
            headers = {}
            if decision.retry_after is not None:
                headers["Retry-After"] = str(max(1, math.ceil(decision.retry_after)))
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded", "reason": decision.reason.value},
                headers=headers,
            )

        response = await call_next(request)
        if decision.remaining is not None:
            response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response

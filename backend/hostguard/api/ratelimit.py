"""Rate limit API endpoints.

This module provides endpoints to:
- Inspect admission statistics, blocked and suspicious clients
- Manually block and unblock clients
- Read and replace the rate limit policy
"""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field, field_validator

from hostguard.errors import ConfigurationError
from hostguard.ratelimit.config import parse_rate_limit_config
from hostguard.setup import get_engine

# Request/Response schemas


class RateLimitStatsResponse(BaseModel):
    """Response model for admission statistics."""

    total_requests: int
    allowed_requests: int
    blocked_requests: int
    ddos_events: int
    auto_blocks: int
    blocked_client_count: int
    suspicious_client_count: int
    tracked_client_count: int
    allowlisted_count: int
    stats_since: datetime


class BlockedClientResponse(BaseModel):
    client_id: str
    reason: str
    blocked_at: datetime
    blocked_until: datetime | None
    manual: bool
    offense_count: int
    note: str | None


class SuspiciousActivityResponse(BaseModel):
    client_id: str
    first_seen: datetime
    last_seen: datetime
    request_count: int
    distinct_endpoints: int
    distinct_user_agents: int
    requests_per_minute: float
    score: float


class BlockRequest(BaseModel):
    """Request model for a manual block."""

    client_id: str = Field(..., min_length=1, description="Client identifier (usually the IP)")
    duration_seconds: float | None = Field(
        default=None, gt=0, description="Block length; omit to block until unblocked"
    )
    reason: str | None = None

    @field_validator("client_id")
    @classmethod
    def validate_not_whitespace_only(cls, v: str) -> str:
        """Validate that the string is not just whitespace."""
        if not v.strip():
            raise ValueError("Value cannot be only whitespace")
        return v


class UnblockRequest(BaseModel):
    client_id: str = Field(..., min_length=1)


class UnblockResponse(BaseModel):
    client_id: str
    was_blocked: bool


# Router
router = APIRouter(prefix="/api/ratelimit", tags=["ratelimit"])


@router.get("/stats", response_model=RateLimitStatsResponse)
async def get_stats() -> RateLimitStatsResponse:
    """Get admission counters since the last daily reset.

    Raises:
        HTTPException: 503 if the engine is not initialized
    """
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    stats = engine.rate_limiter.get_statistics()
    stats["stats_since"] = datetime.fromtimestamp(stats["stats_since"], tz=timezone.utc)
    return RateLimitStatsResponse(**stats)


@router.get("/config")
async def get_config() -> dict[str, Any]:
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    return engine.rate_limiter.config.model_dump(mode="json")


@router.put("/config")
async def update_config(body: dict[str, Any]) -> dict[str, Any]:
    """Replace the rate limit policy.

    Raises:
        HTTPException: 422 if the policy is invalid; the old policy stays active
    """
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    try:
        config = parse_rate_limit_config(body)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    engine.rate_limiter.update_config(config)
    return config.model_dump(mode="json")


@router.get("/blocked", response_model=list[BlockedClientResponse])
async def get_blocked_clients() -> list[BlockedClientResponse]:
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    return [
        BlockedClientResponse(**b.to_dict()) for b in engine.rate_limiter.get_blocked_clients()
    ]


@router.get("/suspicious", response_model=list[SuspiciousActivityResponse])
async def get_suspicious_clients(
    min_score: float = Query(default=0.0, ge=0, le=100),
) -> list[SuspiciousActivityResponse]:
    """Get tracked client activity, highest suspicion score first."""
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    return [
        SuspiciousActivityResponse(**a.to_dict())
        for a in engine.rate_limiter.get_suspicious_activity(min_score=min_score)
    ]


@router.post("/block", response_model=BlockedClientResponse)
async def block_client(request: BlockRequest) -> BlockedClientResponse:
    """Manually block a client.

    Manual blocks are never shortened or cleared by automatic logic.
    """
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    blocked = engine.rate_limiter.block(
        request.client_id,
        duration_seconds=request.duration_seconds,
        reason=request.reason,
    )
    return BlockedClientResponse(**blocked.to_dict())


@router.post("/unblock", response_model=UnblockResponse)
async def unblock_client(request: UnblockRequest) -> UnblockResponse:
    """Manually unblock a client and clear its suspicion state."""
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    was_blocked = engine.rate_limiter.unblock(request.client_id)
    return UnblockResponse(client_id=request.client_id, was_blocked=was_blocked)

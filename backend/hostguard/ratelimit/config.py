"""Rate limit and abuse detection policy.

RateLimitConfig is immutable. The limiter swaps the whole snapshot on
update; invalid data raises ConfigurationError and the active config stays.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from hostguard.errors import ConfigurationError

# Endpoint key for the per-client window across all endpoints
GLOBAL_ENDPOINT = "*"


class _FrozenModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class EndpointLimit(_FrozenModel):
    """Fixed window limit with an optional tighter burst window."""

    window_ms: int = Field(..., gt=0)
    max_requests: int = Field(..., gt=0)
    burst_window_ms: int | None = Field(default=None, gt=0)
    burst_limit: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def validate_burst(self) -> "EndpointLimit":
        if (self.burst_window_ms is None) != (self.burst_limit is None):
            raise ValueError("burst_window_ms and burst_limit must be set together")
        if self.burst_window_ms is not None:
            if self.burst_window_ms > self.window_ms:
                raise ValueError("burst_window_ms must not exceed window_ms")
            if self.burst_limit > self.max_requests:
                raise ValueError("burst_limit must not exceed max_requests")
        return self

    @property
    def has_burst(self) -> bool:
        return self.burst_window_ms is not None


class SuspicionPolicy(_FrozenModel):
    """Weights and references for the suspicion score.

    Each factor is normalised to 0..1 against its reference value, weighted,
    and scaled to 0..100.
    """

    enabled: bool = True
    observation_window_seconds: float = Field(default=300.0, gt=0)
    min_requests: int = Field(default=20, ge=1)
    score_threshold: float = Field(default=80.0, gt=0, le=100)
    velocity_weight: float = Field(default=0.5, ge=0)
    endpoint_weight: float = Field(default=0.3, ge=0)
    user_agent_weight: float = Field(default=0.2, ge=0)
    velocity_reference_rpm: float = Field(default=500.0, gt=0)
    endpoint_reference: int = Field(default=20, gt=0)
    user_agent_reference: int = Field(default=5, gt=0)
    # Requests per minute treated as an attack regardless of score
    attack_rpm: float = Field(default=1000.0, gt=0)

    @model_validator(mode="after")
    def validate_weights(self) -> "SuspicionPolicy":
        if self.velocity_weight + self.endpoint_weight + self.user_agent_weight <= 0:
            raise ValueError("at least one suspicion weight must be positive")
        return self


class PenaltyPolicy(_FrozenModel):
    """Auto-block durations for repeat offenders."""

    max_violations: int = Field(default=10, ge=1)
    block_duration_seconds: float = Field(default=3600.0, gt=0)
    escalation_factor: float = Field(default=2.0, ge=1)
    max_block_duration_seconds: float = Field(default=86400.0, gt=0)
    # Offense history is forgotten after this long without a new block
    offense_decay_seconds: float = Field(default=86400.0, gt=0)

    @model_validator(mode="after")
    def validate_durations(self) -> "PenaltyPolicy":
        if self.max_block_duration_seconds < self.block_duration_seconds:
            raise ValueError("max_block_duration_seconds must be >= block_duration_seconds")
        return self


class RateLimitConfig(_FrozenModel):
    """Complete rate limiting policy."""

    enabled: bool = True
    global_limit: EndpointLimit = EndpointLimit(
        window_ms=15 * 60 * 1000,
        max_requests=1000,
        burst_window_ms=60 * 1000,
        burst_limit=50,
    )
    endpoints: dict[str, EndpointLimit] = Field(default_factory=dict)
    suspicion: SuspicionPolicy = SuspicionPolicy()
    penalties: PenaltyPolicy = PenaltyPolicy()
    allowlist: tuple[str, ...] = ("127.0.0.1", "::1", "localhost")

    @model_validator(mode="after")
    def validate_endpoints(self) -> "RateLimitConfig":
        for name in self.endpoints:
            if not name or name == GLOBAL_ENDPOINT:
                raise ValueError(f"invalid endpoint key: {name!r}")
        return self

    def limit_for(self, endpoint: str) -> EndpointLimit:
        """Endpoint limit by exact key, then longest path prefix, then global."""
        limit = self.endpoints.get(endpoint)
        if limit is not None:
            return limit

        best: str | None = None
        for key in self.endpoints:
            if not endpoint.startswith(key.rstrip("/") + "/"):
                continue
            if best is None or len(key) > len(best):
                best = key
        return self.endpoints[best] if best is not None else self.global_limit


def default_rate_limit_config() -> RateLimitConfig:
    return RateLimitConfig(
        endpoints={
            "/api/health": EndpointLimit(
                window_ms=60_000, max_requests=60, burst_window_ms=10_000, burst_limit=10
            ),
            "/api/audit": EndpointLimit(
                window_ms=300_000, max_requests=10, burst_window_ms=30_000, burst_limit=3
            ),
            "websocket:connect": EndpointLimit(
                window_ms=60_000, max_requests=5, burst_window_ms=10_000, burst_limit=2
            ),
            "websocket:message": EndpointLimit(
                window_ms=60_000, max_requests=120, burst_window_ms=10_000, burst_limit=20
            ),
        }
    )


def parse_rate_limit_config(data: dict[str, Any]) -> RateLimitConfig:
    """Validate raw data into a RateLimitConfig.

    Raises:
        ConfigurationError: If the data is not a valid rate limit config
    """
    try:
        return RateLimitConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid rate limit config: {e}") from e

"""Rate limiting and abuse detection package."""

from hostguard.ratelimit.config import (
    EndpointLimit,
    PenaltyPolicy,
    RateLimitConfig,
    SuspicionPolicy,
    default_rate_limit_config,
)
from hostguard.ratelimit.detector import AbuseDetector
from hostguard.ratelimit.limiter import RateLimiter
from hostguard.ratelimit.models import (
    AdmitDecision,
    AllowReason,
    BlockedClient,
    BlockReason,
    DenyReason,
    SuspiciousActivity,
)

__all__ = [
    "AbuseDetector",
    "AdmitDecision",
    "AllowReason",
    "BlockReason",
    "BlockedClient",
    "DenyReason",
    "EndpointLimit",
    "PenaltyPolicy",
    "RateLimitConfig",
    "RateLimiter",
    "SuspicionPolicy",
    "SuspiciousActivity",
    "default_rate_limit_config",
]

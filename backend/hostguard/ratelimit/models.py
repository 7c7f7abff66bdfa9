"""Rate limiter state and decision models.

Timestamps are epoch seconds (the limiter's clock) and are rendered as ISO
strings by to_dict().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _iso(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class DenyReason(str, Enum):
    CLIENT_BLOCKED = "client_blocked"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    BURST_LIMIT_EXCEEDED = "burst_limit_exceeded"
    GLOBAL_LIMIT_EXCEEDED = "global_limit_exceeded"


class AllowReason(str, Enum):
    WITHIN_LIMITS = "within_limits"
    ALLOWLISTED = "allowlisted"
    DISABLED = "disabled"
    FAIL_OPEN = "fail_open"


class BlockReason(str, Enum):
    AUTO_SUSPICIOUS = "AUTO_SUSPICIOUS"
    AUTO_RATE_EXCEEDED = "AUTO_RATE_EXCEEDED"
    MANUAL = "MANUAL"


@dataclass(frozen=True)
class AdmitDecision:
    """Result of an admit() call.

    Attributes:
        allowed: Whether the request may proceed
        reason: Why it was allowed or denied
        retry_after: Seconds until the client may retry (denials only)
        remaining: Requests left in the tightest applicable window
    """

    allowed: bool
    reason: DenyReason | AllowReason
    retry_after: float | None = None
    remaining: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason.value,
            "retry_after": self.retry_after,
            "remaining": self.remaining,
        }


@dataclass
class RateWindow:
    """Fixed window and burst window counters for one (client, endpoint)."""

    window_start: float
    burst_start: float
    count: int = 0
    burst_count: int = 0


@dataclass
class SuspiciousActivity:
    """Rolling observation of one client's traffic pattern."""

    client_id: str
    first_seen: float
    last_seen: float
    request_count: int = 0
    endpoints: set[str] = field(default_factory=set)
    user_agents: set[str] = field(default_factory=set)
    score: float = 0.0
    requests_per_minute: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "client_id": self.client_id,
            "first_seen": _iso(self.first_seen),
            "last_seen": _iso(self.last_seen),
            "request_count": self.request_count,
            "distinct_endpoints": len(self.endpoints),
            "distinct_user_agents": len(self.user_agents),
            "requests_per_minute": round(self.requests_per_minute, 2),
            "score": round(self.score, 2),
        }


@dataclass
class BlockedClient:
    """An active block. blocked_until is None only for indefinite manual blocks."""

    client_id: str
    reason: BlockReason
    blocked_at: float
    blocked_until: float | None
    manual: bool = False
    offense_count: int = 1
    note: str | None = None

    def is_expired(self, now: float) -> bool:
        return self.blocked_until is not None and now >= self.blocked_until

    def to_dict(self) -> dict[str, Any]:
        return {
            "client_id": self.client_id,
            "reason": self.reason.value,
            "blocked_at": _iso(self.blocked_at),
            "blocked_until": _iso(self.blocked_until),
            "manual": self.manual,
            "offense_count": self.offense_count,
            "note": self.note,
        }

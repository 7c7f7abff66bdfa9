"""Suspicion scoring for client traffic patterns.

Every observation is an O(1) update: counters and bounded sets for the
current observation window, followed by a closed-form score. The detector
scores; the RateLimiter decides whether to block.
"""

from __future__ import annotations

from hostguard.ratelimit.config import SuspicionPolicy
from hostguard.ratelimit.models import SuspiciousActivity

# Velocity is measured over at least this many seconds
MIN_VELOCITY_WINDOW_SECONDS = 60.0

# Distinct endpoint/user-agent sets stop growing past this size
MAX_TRACKED_DISTINCT = 1000


def compute_score(activity: SuspiciousActivity, policy: SuspicionPolicy) -> float:
    """Weighted suspicion score, 0..100."""
    velocity = min(1.0, activity.requests_per_minute / policy.velocity_reference_rpm)
    breadth = min(1.0, len(activity.endpoints) / policy.endpoint_reference)
    churn = min(1.0, len(activity.user_agents) / policy.user_agent_reference)

    total_weight = policy.velocity_weight + policy.endpoint_weight + policy.user_agent_weight
    weighted = (
        velocity * policy.velocity_weight
        + breadth * policy.endpoint_weight
        + churn * policy.user_agent_weight
    )
    return weighted / total_weight * 100.0


class AbuseDetector:
    """Tracks per-client activity within a rolling observation window."""

    def __init__(self, policy: SuspicionPolicy) -> None:
        self._policy = policy
        self._activity: dict[str, SuspiciousActivity] = {}

    @property
    def policy(self) -> SuspicionPolicy:
        return self._policy

    def set_policy(self, policy: SuspicionPolicy) -> None:
        """Replace the policy and rescore tracked clients."""
        self._policy = policy
        for activity in self._activity.values():
            activity.score = compute_score(activity, policy)

    def observe(
        self, client_id: str, endpoint: str, user_agent: str, now: float
    ) -> SuspiciousActivity:
        """Record one request and return the client's updated activity."""
        activity = self._activity.get(client_id)
        if activity is None or now - activity.first_seen > self._policy.observation_window_seconds:
            activity = SuspiciousActivity(client_id=client_id, first_seen=now, last_seen=now)
            self._activity[client_id] = activity

        activity.request_count += 1
        activity.last_seen = now
        if len(activity.endpoints) < MAX_TRACKED_DISTINCT:
            activity.endpoints.add(endpoint)
        if user_agent and len(activity.user_agents) < MAX_TRACKED_DISTINCT:
            activity.user_agents.add(user_agent)

        elapsed = max(now - activity.first_seen, MIN_VELOCITY_WINDOW_SECONDS)
        activity.requests_per_minute = activity.request_count / elapsed * 60.0
        activity.score = compute_score(activity, self._policy)
        return activity

    def is_suspicious(self, activity: SuspiciousActivity) -> bool:
        return (
            self._policy.enabled
            and activity.request_count >= self._policy.min_requests
            and activity.score >= self._policy.score_threshold
        )

    def is_attack(self, activity: SuspiciousActivity) -> bool:
        return (
            self._policy.enabled
            and activity.request_count >= self._policy.min_requests
            and activity.requests_per_minute >= self._policy.attack_rpm
        )

    def get(self, client_id: str) -> SuspiciousActivity | None:
        return self._activity.get(client_id)

    def clear(self, client_id: str) -> None:
        self._activity.pop(client_id, None)

    def all(self) -> list[SuspiciousActivity]:
        return list(self._activity.values())

    def sweep(self, now: float) -> int:
        """Drop activity whose observation window has ended. Returns count removed."""
        window = self._policy.observation_window_seconds
        expired = [cid for cid, a in self._activity.items() if now - a.first_seen > window]
        for cid in expired:
            del self._activity[cid]
        return len(expired)

    def reset(self) -> None:
        self._activity.clear()

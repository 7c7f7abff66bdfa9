"""RateLimiter - per-client admission control with abuse detection.

admit() is synchronous, never awaits, and does O(1) amortized work:

1. Allowlisted clients (or a disabled limiter) are allowed.
2. Blocked clients are denied until blocked_until. An expired block is
   removed and the client's counters are reset once.
3. The (client, endpoint) fixed window and burst window are checked, then
   the client's global window. The stricter result wins and denied
   requests do not consume quota.
4. A denial counts as a violation; max_violations auto-blocks the client
   with AUTO_RATE_EXCEEDED.
5. The request is observed by the AbuseDetector. Crossing the suspicion
   threshold or the attack rate blocks the client with AUTO_SUSPICIOUS.
   Suspicion never denies the current request, only later ones.

Internal errors fail open: the request is allowed and a critical alert is
raised.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from threading import Lock
from typing import Any

from hostguard.alerts.manager import AlertManager
from hostguard.alerts.models import AlertCategory, AlertSeverity, create_alert
from hostguard.errors import AlertManagerFault, RateLimiterFault
from hostguard.events.bus import EventBus
from hostguard.events.models import EngineEvent, EventType
from hostguard.ratelimit.config import GLOBAL_ENDPOINT, EndpointLimit, RateLimitConfig
from hostguard.ratelimit.detector import AbuseDetector
from hostguard.ratelimit.models import (
    AdmitDecision,
    AllowReason,
    BlockedClient,
    BlockReason,
    DenyReason,
    RateWindow,
    SuspiciousActivity,
)

logger = logging.getLogger(__name__)

_FAULT_SOURCE_KEY = "admit"
# Resolved endpoint limits kept between sweeps
LIMIT_CACHE_SIZE = 1024


class RateLimiter:
    """Owns rate windows, suspicion state and blocks for every client.

    Thread-safe for concurrent access.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        alert_manager: AlertManager | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the RateLimiter.

        Args:
            config: Initial rate limit policy
            alert_manager: Sink for block, attack and fault alerts
            event_bus: Optional bus for client.blocked/client.unblocked events
            clock: Source of the current time in epoch seconds
        """
        self._config = config
        self._alerts = alert_manager
        self._event_bus = event_bus
        self._clock = clock
        self._lock = Lock()

        self._detector = AbuseDetector(config.suspicion)
        self._allowlist: set[str] = set(config.allowlist)
        self._limit_cache: dict[str, EndpointLimit] = {}
        self._windows: dict[str, dict[str, RateWindow]] = {}
        self._violations: dict[str, int] = {}
        self._blocked: dict[str, BlockedClient] = {}
        # client_id -> (offense count, last offense time)
        self._offenses: dict[str, tuple[int, float]] = {}

        self._stats_since = clock()
        self._total_requests = 0
        self._allowed_requests = 0
        self._denied_requests = 0
        self._ddos_events = 0
        self._auto_blocks = 0

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    def admit(self, client_id: str, endpoint: str, user_agent: str = "") -> AdmitDecision:
        """Decide whether a request may proceed.

        Args:
            client_id: Client identity (usually the remote IP)
            endpoint: Endpoint key (request path or logical channel)
            user_agent: Client user agent, used for suspicion scoring

        Returns:
            AdmitDecision for this request

        Raises:
            AlertManagerFault: If the alert sink fails
        """
        try:
            with self._lock:
                return self._admit_locked(client_id, endpoint, user_agent)
        except AlertManagerFault:
            raise
        except Exception as e:
            self._fail_open(RateLimiterFault(f"{type(e).__name__}: {e}"), client_id, endpoint)
            return AdmitDecision(allowed=True, reason=AllowReason.FAIL_OPEN)

    def block(
        self,
        client_id: str,
        duration_seconds: float | None = None,
        reason: str | None = None,
    ) -> BlockedClient:
        """Manually block a client.

        Manual blocks take precedence over automatic state and are never
        shortened or cleared by automatic logic.

        Args:
            client_id: Client to block
            duration_seconds: Block length; None blocks until manually unblocked
            reason: Operator note

        Returns:
            The BlockedClient record
        """
        if duration_seconds is not None and duration_seconds <= 0:
            raise ValueError("duration_seconds must be positive")

        with self._lock:
            now = self._clock()
            blocked = BlockedClient(
                client_id=client_id,
                reason=BlockReason.MANUAL,
                blocked_at=now,
                blocked_until=now + duration_seconds if duration_seconds is not None else None,
                manual=True,
                note=reason,
            )
            self._blocked[client_id] = blocked

        logger.warning(f"Client manually blocked: {client_id} ({reason or 'no reason'})")
        self._publish(EventType.CLIENT_BLOCKED, blocked.to_dict())
        return blocked

    def unblock(self, client_id: str) -> bool:
        """Manually unblock a client.

        Clears the block, violations, windows, offense history and the
        suspicion accumulator so the client is not immediately re-blocked.

        Returns:
            True if the client was blocked
        """
        with self._lock:
            was_blocked = self._blocked.pop(client_id, None) is not None
            self._reset_client(client_id)
            self._offenses.pop(client_id, None)

        if was_blocked:
            logger.info(f"Client manually unblocked: {client_id}")
            self._resolve_block_alert(client_id)
            self._publish(EventType.CLIENT_UNBLOCKED, {"client_id": client_id, "reason": "manual"})
        return was_blocked

    def is_blocked(self, client_id: str) -> bool:
        with self._lock:
            blocked = self._blocked.get(client_id)
            return blocked is not None and not blocked.is_expired(self._clock())

    def get_blocked_clients(self) -> list[BlockedClient]:
        """Active blocks, most recent first."""
        now = self._clock()
        with self._lock:
            active = [b for b in self._blocked.values() if not b.is_expired(now)]
        return sorted(active, key=lambda b: b.blocked_at, reverse=True)

    def get_suspicious_activity(self, min_score: float = 0.0) -> list[SuspiciousActivity]:
        """Tracked client activity with score >= min_score, highest score first."""
        with self._lock:
            activity = [a for a in self._detector.all() if a.score >= min_score]
        return sorted(activity, key=lambda a: (-a.score, a.client_id))

    def get_suspicion_score(self, client_id: str) -> float:
        with self._lock:
            activity = self._detector.get(client_id)
            return activity.score if activity else 0.0

    def get_statistics(self) -> dict[str, Any]:
        now = self._clock()
        with self._lock:
            threshold = self._config.suspicion.score_threshold
            return {
                "total_requests": self._total_requests,
                "allowed_requests": self._allowed_requests,
                "blocked_requests": self._denied_requests,
                "ddos_events": self._ddos_events,
                "auto_blocks": self._auto_blocks,
                "blocked_client_count": sum(
                    1 for b in self._blocked.values() if not b.is_expired(now)
                ),
                "suspicious_client_count": sum(
                    1 for a in self._detector.all() if a.score >= threshold / 2
                ),
                "tracked_client_count": len(self._windows),
                "allowlisted_count": len(self._allowlist),
                "stats_since": self._stats_since,
            }

    def reset_statistics(self) -> None:
        """Reset request counters. Block and window state is untouched."""
        with self._lock:
            self._stats_since = self._clock()
            self._total_requests = 0
            self._allowed_requests = 0
            self._denied_requests = 0
            self._ddos_events = 0
            self._auto_blocks = 0
        logger.info("Rate limiter statistics reset")

    def update_config(self, config: RateLimitConfig) -> None:
        """Swap in a new validated policy. Existing counters are kept."""
        with self._lock:
            self._config = config
            self._detector.set_policy(config.suspicion)
            self._allowlist = set(config.allowlist)
            self._limit_cache.clear()

        logger.info(
            f"Rate limit config updated: enabled={config.enabled}, "
            f"{len(config.endpoints)} endpoint limits"
        )
        self._publish(EventType.CONFIG_UPDATED, {"component": "ratelimit"})

    def add_to_allowlist(self, client_id: str) -> None:
        with self._lock:
            self._allowlist.add(client_id)

    def remove_from_allowlist(self, client_id: str) -> None:
        with self._lock:
            self._allowlist.discard(client_id)

    def get_allowlist(self) -> list[str]:
        with self._lock:
            return sorted(self._allowlist)

    def sweep(self) -> dict[str, int]:
        """Remove expired blocks, stale windows, stale suspicion and decayed offenses."""
        now = self._clock()
        expired_clients: list[str] = []

        with self._lock:
            for client_id, blocked in list(self._blocked.items()):
                if blocked.is_expired(now):
                    del self._blocked[client_id]
                    self._reset_client(client_id)
                    expired_clients.append(client_id)

            longest_ms = max(
                [self._config.global_limit.window_ms]
                + [limit.window_ms for limit in self._config.endpoints.values()]
            )
            stale_windows = 0
            for client_id, windows in list(self._windows.items()):
                for key, window in list(windows.items()):
                    if (now - window.window_start) * 1000 >= longest_ms:
                        del windows[key]
                        stale_windows += 1
                if not windows:
                    del self._windows[client_id]
                    self._violations.pop(client_id, None)

            stale_activity = self._detector.sweep(now)
            cached_limits = len(self._limit_cache)
            self._limit_cache.clear()

            decay = self._config.penalties.offense_decay_seconds
            decayed = [c for c, (_, last) in self._offenses.items() if now - last > decay]
            for client_id in decayed:
                del self._offenses[client_id]

        for client_id in expired_clients:
            self._resolve_block_alert(client_id)
            self._publish(EventType.CLIENT_UNBLOCKED, {"client_id": client_id, "reason": "expired"})

        result = {
            "expired_blocks": len(expired_clients),
            "stale_windows": stale_windows,
            "stale_activity": stale_activity,
            "decayed_offenses": len(decayed),
            "cached_limits": cached_limits,
        }
        if any(result.values()):
            logger.debug(f"Rate limiter sweep: {result}")
        return result

    def export_data(self, window_seconds: float | None = None) -> dict[str, Any]:
        """Policy, counters and client state for download.

        Args:
            window_seconds: Only include blocks placed and activity seen within
                this many seconds. Counters and config are always current.
        """
        blocked = self.get_blocked_clients()
        activity = self.get_suspicious_activity()
        if window_seconds is not None:
            cutoff = self._clock() - window_seconds
            blocked = [b for b in blocked if b.blocked_at >= cutoff]
            activity = [a for a in activity if a.last_seen >= cutoff]

        return {
            "window_seconds": window_seconds,
            "config": self.config.model_dump(mode="json"),
            "statistics": self.get_statistics(),
            "blocked_clients": [b.to_dict() for b in blocked],
            "suspicious_activity": [a.to_dict() for a in activity],
            "allowlist": self.get_allowlist(),
        }

    def _admit_locked(self, client_id: str, endpoint: str, user_agent: str) -> AdmitDecision:
        now = self._clock()
        self._total_requests += 1
        config = self._config

        if not config.enabled:
            self._allowed_requests += 1
            return AdmitDecision(allowed=True, reason=AllowReason.DISABLED)

        if client_id in self._allowlist:
            self._allowed_requests += 1
            return AdmitDecision(allowed=True, reason=AllowReason.ALLOWLISTED)

        blocked = self._blocked.get(client_id)
        if blocked is not None:
            if not blocked.is_expired(now):
                self._denied_requests += 1
                retry = blocked.blocked_until - now if blocked.blocked_until is not None else None
                return AdmitDecision(
                    allowed=False, reason=DenyReason.CLIENT_BLOCKED, retry_after=retry, remaining=0
                )
            self._expire_block(client_id)

        endpoint_limit = self._limit_for(endpoint)
        windows = self._windows.setdefault(client_id, {})
        endpoint_window = self._get_window(windows, endpoint, now)
        global_window = self._get_window(windows, GLOBAL_ENDPOINT, now)

        denial = self._check(endpoint_window, endpoint_limit, now, DenyReason.RATE_LIMIT_EXCEEDED)
        if denial is None:
            denial = self._check(
                global_window, config.global_limit, now, DenyReason.GLOBAL_LIMIT_EXCEEDED
            )

        if denial is not None:
            self._denied_requests += 1
            self._record_violation(client_id, now)
            self._observe(client_id, endpoint, user_agent, now)
            return denial

        for window in (endpoint_window, global_window):
            window.count += 1
            window.burst_count += 1

        self._allowed_requests += 1
        self._observe(client_id, endpoint, user_agent, now)
        return AdmitDecision(
            allowed=True,
            reason=AllowReason.WITHIN_LIMITS,
            remaining=min(
                self._remaining(endpoint_window, endpoint_limit),
                self._remaining(global_window, config.global_limit),
            ),
        )

    def _limit_for(self, endpoint: str) -> EndpointLimit:
        limit = self._limit_cache.get(endpoint)
        if limit is None:
            limit = self._config.limit_for(endpoint)
            if len(self._limit_cache) >= LIMIT_CACHE_SIZE:
                self._limit_cache.clear()
            self._limit_cache[endpoint] = limit
        return limit

    @staticmethod
    def _get_window(windows: dict[str, RateWindow], key: str, now: float) -> RateWindow:
        window = windows.get(key)
        if window is None:
            window = RateWindow(window_start=now, burst_start=now)
            windows[key] = window
        return window

    @staticmethod
    def _check(
        window: RateWindow,
        limit: EndpointLimit,
        now: float,
        reason: DenyReason,
    ) -> AdmitDecision | None:
        """Roll expired windows forward, then deny if either cap is reached."""
        window_s = limit.window_ms / 1000
        if now - window.window_start >= window_s:
            window.window_start = now
            window.count = 0

        burst_s = limit.burst_window_ms / 1000 if limit.has_burst else window_s
        if limit.has_burst and now - window.burst_start >= burst_s:
            window.burst_start = now
            window.burst_count = 0

        if window.count >= limit.max_requests:
            return AdmitDecision(
                allowed=False,
                reason=reason,
                retry_after=max(0.0, window.window_start + window_s - now),
                remaining=0,
            )

        if limit.has_burst and window.burst_count >= limit.burst_limit:
            return AdmitDecision(
                allowed=False,
                reason=(
                    DenyReason.BURST_LIMIT_EXCEEDED
                    if reason == DenyReason.RATE_LIMIT_EXCEEDED
                    else reason
                ),
                retry_after=max(0.0, window.burst_start + burst_s - now),
                remaining=0,
            )

        return None

    @staticmethod
    def _remaining(window: RateWindow, limit: EndpointLimit) -> int:
        remaining = limit.max_requests - window.count
        if limit.has_burst:
            remaining = min(remaining, limit.burst_limit - window.burst_count)
        return max(0, remaining)

    def _record_violation(self, client_id: str, now: float) -> None:
        violations = self._violations.get(client_id, 0) + 1
        self._violations[client_id] = violations
        if violations >= self._config.penalties.max_violations:
            self._auto_block(
                client_id, BlockReason.AUTO_RATE_EXCEEDED, now, f"{violations} violations"
            )

    def _observe(self, client_id: str, endpoint: str, user_agent: str, now: float) -> None:
        if client_id in self._blocked:
            return

        activity = self._detector.observe(client_id, endpoint, user_agent, now)

        if self._detector.is_attack(activity):
            self._ddos_events += 1
            self._raise_alert(
                AlertSeverity.CRITICAL,
                AlertCategory.RATELIMIT_DDOS,
                client_id,
                f"Attack-rate traffic from {client_id}: "
                f"{activity.requests_per_minute:.0f} requests/min",
                activity.to_dict(),
            )
            self._auto_block(client_id, BlockReason.AUTO_SUSPICIOUS, now, "attack rate")
        elif self._detector.is_suspicious(activity):
            self._auto_block(
                client_id, BlockReason.AUTO_SUSPICIOUS, now, f"suspicion score {activity.score:.1f}"
            )

    def _auto_block(self, client_id: str, reason: BlockReason, now: float, detail: str) -> None:
        existing = self._blocked.get(client_id)
        if existing is not None and existing.manual:
            return

        penalties = self._config.penalties
        count, last = self._offenses.get(client_id, (0, now))
        if now - last > penalties.offense_decay_seconds:
            count = 0
        count += 1
        self._offenses[client_id] = (count, now)

        duration = min(
            penalties.block_duration_seconds * penalties.escalation_factor ** (count - 1),
            penalties.max_block_duration_seconds,
        )
        blocked = BlockedClient(
            client_id=client_id,
            reason=reason,
            blocked_at=now,
            blocked_until=now + duration,
            offense_count=count,
            note=detail,
        )
        self._blocked[client_id] = blocked
        self._violations.pop(client_id, None)
        self._auto_blocks += 1

        logger.warning(
            f"Client auto-blocked: {client_id} reason={reason.value} ({detail}), "
            f"duration={duration:.0f}s offense={count}"
        )
        self._raise_alert(
            AlertSeverity.WARNING,
            AlertCategory.RATELIMIT_BLOCK,
            client_id,
            f"Client {client_id} blocked for {duration:.0f}s: {detail}",
            blocked.to_dict(),
        )
        self._publish(EventType.CLIENT_BLOCKED, blocked.to_dict())

    def _expire_block(self, client_id: str) -> None:
        del self._blocked[client_id]
        self._reset_client(client_id)
        logger.info(f"Block expired: {client_id}")
        self._resolve_block_alert(client_id)
        self._publish(EventType.CLIENT_UNBLOCKED, {"client_id": client_id, "reason": "expired"})

    def _reset_client(self, client_id: str) -> None:
        self._windows.pop(client_id, None)
        self._violations.pop(client_id, None)
        self._detector.clear(client_id)

    def _fail_open(self, fault: RateLimiterFault, client_id: str, endpoint: str) -> None:
        logger.exception(f"Rate limiter fault, failing open for {client_id} {endpoint}: {fault}")
        self._raise_alert(
            AlertSeverity.CRITICAL,
            AlertCategory.RATELIMIT_FAULT,
            _FAULT_SOURCE_KEY,
            f"Rate limiter internal error, requests admitted without limits: {fault}",
            {"client_id": client_id, "endpoint": endpoint},
        )

    def _raise_alert(
        self,
        severity: AlertSeverity,
        category: str,
        source_key: str,
        message: str,
        details: dict[str, Any],
    ) -> None:
        if self._alerts is None:
            return
        self._alerts.raise_alert(
            create_alert(
                severity=severity,
                category=category,
                source_key=source_key,
                message=message,
                details=details,
            )
        )

    def _resolve_block_alert(self, client_id: str) -> None:
        if self._alerts is None:
            return
        self._alerts.resolve_by_key(AlertCategory.RATELIMIT_BLOCK, client_id)
        self._alerts.resolve_by_key(AlertCategory.RATELIMIT_DDOS, client_id)

    def _publish(self, event_type: EventType, payload: dict[str, Any]) -> None:
        if self._event_bus is None:
            return
        self._event_bus.publish(EngineEvent(event_type=event_type, payload=payload))

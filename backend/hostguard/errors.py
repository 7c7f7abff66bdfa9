"""Error types raised across the monitoring engine.

Only AlertManagerFault is fatal: every other error is contained by the
component that produced it and surfaced as an alert, an unknown sample,
or an incomplete audit category.
"""


class HostguardError(Exception):
    """Base class for engine errors."""


class ProbeFailure(HostguardError):
    """A metric probe raised or timed out."""

    def __init__(self, source: str, key: str, reason: str) -> None:
        self.source = source
        self.key = key
        self.reason = reason
        super().__init__(f"Probe {source}.{key} failed: {reason}")


class EvaluationFailure(HostguardError):
    """Health evaluation could not produce a snapshot."""


class RateLimiterFault(HostguardError):
    """Internal rate limiter state error. Admission fails open."""


class AuditScanFailure(HostguardError):
    """An audit category scanner failed."""

    def __init__(self, category: str, reason: str) -> None:
        self.category = category
        self.reason = reason
        super().__init__(f"Audit category '{category}' failed: {reason}")


class ConfigurationError(HostguardError):
    """A configuration update or file failed validation."""


class AlertManagerFault(HostguardError):
    """The alert store is unusable. Propagates to the supervising loop."""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Sampling
    sample_interval_seconds: float = 5.0
    probe_timeout_seconds: float = 2.0

    # Metric retention (24h of 5s samples)
    metric_retention_seconds: int = 86400
    metric_max_samples: int = 17280

    # Health history
    health_history_size: int = 100
    health_history_max_age_seconds: int = 86400

    # Alerts
    alert_max_entries: int = 1000
    alert_max_age_seconds: int = 86400

    # Security audit
    audit_timeout_seconds: float = 300.0
    audit_schedule_hour: int = 2
    audit_source_root: Path = Path(".")

    # Event bus
    event_bus_queue_size: int = 1000

    # Engine config file (health checks and rate limit policy)
    config_file: Path | None = None

    # Inbound API rate limiting
    ratelimit_middleware_enabled: bool = True
    # Peers allowed to set X-Forwarded-For / X-Real-IP
    trusted_proxies: list[str] = []

    # App
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_prefix = "HOSTGUARD_"


settings = Settings()

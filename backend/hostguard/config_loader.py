"""YAML loading for the engine config file.

The engine file holds the health checks and the rate limit policy:

    health:
      stale_after_seconds: 60
      checks:
        - name: cpu
          source: system.cpu
          key: usage_percent
          threshold: {warning: 70, critical: 85}
    rate_limit:
      endpoints:
        /api/health: {window_ms: 60000, max_requests: 60}

Sections left out fall back to the built-in defaults.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TypeVar

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError

from hostguard.errors import ConfigurationError
from hostguard.health.config import HealthConfig, default_health_config
from hostguard.ratelimit.config import RateLimitConfig, default_rate_limit_config

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class YAMLLoadError(ConfigurationError):
    """Raised when a YAML file cannot be parsed or validated.

    Attributes:
        message: Human-readable error description
        path: Path to the file that failed to load
    """

    def __init__(self, message: str, path: Path) -> None:
        self.message = message
        self.path = path
        super().__init__(f"{message} ({path})")


class EngineFileConfig(BaseModel):
    """Top-level layout of the engine YAML file."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    health: HealthConfig | None = None
    rate_limit: RateLimitConfig | None = None


class YAMLLoader:
    """Load YAML files into Pydantic models with validation."""

    def load_file(self, path: Path, model_cls: type[T]) -> T:
        """Load a single YAML file into a Pydantic model.

        Raises:
            FileNotFoundError: If the file doesn't exist
            YAMLLoadError: If YAML parsing or model validation fails
        """
        if not path.exists():
            raise FileNotFoundError(f"YAML file not found: {path}")

        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
            if data is None:
                data = {}
            return model_cls.model_validate(data)

        except yaml.YAMLError as e:
            raise YAMLLoadError(f"YAML syntax error: {e}", path) from e
        except ValidationError as e:
            error_messages = []
            for error in e.errors():
                loc = ".".join(str(loc) for loc in error["loc"])
                error_messages.append(f"{loc}: {error['msg']}")
            raise YAMLLoadError(f"Validation failed: {'; '.join(error_messages)}", path) from e


def load_engine_config(path: Path | None) -> tuple[HealthConfig, RateLimitConfig]:
    """Health and rate limit configs from a YAML file, with defaults for missing sections.

    Raises:
        ConfigurationError: If the file is missing or invalid
    """
    if path is None:
        return default_health_config(), default_rate_limit_config()

    try:
        file_config = YAMLLoader().load_file(path, EngineFileConfig)
    except FileNotFoundError as e:
        raise ConfigurationError(str(e)) from e

    logger.info(f"Loaded engine config from {path}")
    return (
        file_config.health or default_health_config(),
        file_config.rate_limit or default_rate_limit_config(),
    )

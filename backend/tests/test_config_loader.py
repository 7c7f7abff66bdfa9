"""Tests for engine YAML config loading."""

from pathlib import Path

import pytest
from hostguard.config_loader import YAMLLoadError, YAMLLoader, load_engine_config
from hostguard.errors import ConfigurationError
from hostguard.health.config import HealthConfig
from hostguard.health.models import ThresholdDirection
from hostguard.ratelimit.config import default_rate_limit_config

ENGINE_YAML = """
health:
  stale_after_seconds: 30
  checks:
    - name: cpu
      source: system.cpu
      key: usage_percent
      threshold: {warning: 60, critical: 90}
    - name: disk
      source: system.disk
      key: free_percent
      threshold: {warning: 20, critical: 10, direction: lower_is_worse}
rate_limit:
  allowlist: []
  endpoints:
    /api/health: {window_ms: 60000, max_requests: 30}
"""


@pytest.fixture
def engine_file(tmp_path: Path) -> Path:
    path = tmp_path / "engine.yml"
    path.write_text(ENGINE_YAML)
    return path


class TestLoadEngineConfig:
    """Tests for load_engine_config()."""

    def test_defaults_without_file(self):
        health, rate_limit = load_engine_config(None)

        assert [c.name for c in health.checks] == [
            "cpu",
            "memory",
            "disk",
            "event_loop",
            "process_memory",
        ]
        assert rate_limit == default_rate_limit_config()

    def test_load_full_file(self, engine_file: Path):
        health, rate_limit = load_engine_config(engine_file)

        assert health.stale_after_seconds == 30
        assert health.get_check("disk").threshold.direction == ThresholdDirection.LOWER_IS_WORSE
        assert rate_limit.allowlist == ()
        assert rate_limit.endpoints["/api/health"].max_requests == 30

    def test_missing_section_uses_defaults(self, tmp_path: Path):
        path = tmp_path / "engine.yml"
        path.write_text("health:\n  checks: []\n")

        health, rate_limit = load_engine_config(path)

        assert health.checks == ()
        assert rate_limit == default_rate_limit_config()

    def test_empty_file_uses_defaults(self, tmp_path: Path):
        path = tmp_path / "engine.yml"
        path.write_text("")

        health, _ = load_engine_config(path)

        assert len(health.checks) == 5

    def test_missing_file_raises_configuration_error(self, tmp_path: Path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_engine_config(tmp_path / "missing.yml")

    def test_invalid_threshold_ordering(self, tmp_path: Path):
        path = tmp_path / "engine.yml"
        path.write_text(
            "health:\n"
            "  checks:\n"
            "    - {name: cpu, source: system.cpu, key: usage_percent,\n"
            "       threshold: {warning: 90, critical: 60}}\n"
        )

        with pytest.raises(YAMLLoadError, match="warning must be below critical"):
            load_engine_config(path)

    def test_unknown_section_rejected(self, tmp_path: Path):
        path = tmp_path / "engine.yml"
        path.write_text("alerts:\n  max_entries: 10\n")

        with pytest.raises(ConfigurationError):
            load_engine_config(path)


class TestYAMLLoader:
    def test_syntax_error(self, tmp_path: Path):
        path = tmp_path / "bad.yml"
        path.write_text("health: [unclosed\n")

        with pytest.raises(YAMLLoadError) as exc_info:
            YAMLLoader().load_file(path, HealthConfig)

        assert "YAML syntax error" in exc_info.value.message
        assert exc_info.value.path == path

    def test_validation_error_lists_locations(self, tmp_path: Path):
        path = tmp_path / "bad.yml"
        path.write_text("stale_after_seconds: -5\n")

        with pytest.raises(YAMLLoadError, match="stale_after_seconds"):
            YAMLLoader().load_file(path, HealthConfig)

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            YAMLLoader().load_file(tmp_path / "missing.yml", HealthConfig)

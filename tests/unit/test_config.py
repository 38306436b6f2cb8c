"""Tests for configuration loading and validation."""

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from agent_context.config.loader import ConfigLoader
from agent_context.config.models import (
    ContextSystemConfig,
    EnricherConfig,
    EnrichmentPriority,
    EnrichmentStage,
    PipelineConfig,
    TemporalEnricherOptions,
    TransformationStrategy,
)
from agent_context.config.settings import ContextSettings, load_settings
from agent_context.utils.exceptions import ConfigurationError


class TestConfigSchema:
    """Test configuration schema and Pydantic models."""

    def test_stage_enum_case_insensitive(self):
        """Test that EnrichmentStage handles case variations."""
        assert EnrichmentStage("core_enrichment") == EnrichmentStage.CORE_ENRICHMENT
        assert EnrichmentStage("CORE_ENRICHMENT") == EnrichmentStage.CORE_ENRICHMENT
        assert EnrichmentStage("Pre_Processing") == EnrichmentStage.PRE_PROCESSING

    def test_stage_order(self):
        """Test that stages are ordered as they run."""
        orders = [stage.order for stage in EnrichmentStage]
        assert orders == [0, 1, 2, 3]
        assert EnrichmentStage.FINALIZATION.order > EnrichmentStage.POST_PROCESSING.order

    def test_priority_accepts_names(self):
        """Test that priorities can be given by name."""
        assert EnrichmentPriority("high") == EnrichmentPriority.HIGH
        assert EnrichmentPriority(0) == EnrichmentPriority.CRITICAL
        assert EnrichmentPriority.CRITICAL < EnrichmentPriority.LOW

    def test_strategy_case_insensitive(self):
        """Test that TransformationStrategy handles case variations."""
        assert TransformationStrategy("MINIMAL") == TransformationStrategy.MINIMAL

    def test_enricher_config_defaults(self):
        """Test enricher policy defaults."""
        config = EnricherConfig()
        assert config.enabled is True
        assert config.stage == EnrichmentStage.CORE_ENRICHMENT
        assert config.priority == EnrichmentPriority.MEDIUM
        assert config.max_retries == 3
        assert config.depends_on == []
        assert config.required is False

    def test_enricher_config_rejects_bad_values(self):
        """Test that invalid enricher policies fail validation."""
        with pytest.raises(ValidationError):
            EnricherConfig(timeout_ms=0)
        with pytest.raises(ValidationError):
            EnricherConfig(max_retries=-1)
        with pytest.raises(ValidationError, match="Duplicate dependency"):
            EnricherConfig(depends_on=["memory", "memory"])
        with pytest.raises(ValidationError):
            EnricherConfig(unknown_field=True)

    def test_with_overrides_validates(self):
        """Test that overrides produce a validated copy."""
        base = EnricherConfig(timeout_ms=1000)
        updated = base.with_overrides({"timeout_ms": 250, "stage": "finalization"})

        assert updated.timeout_ms == 250
        assert updated.stage == EnrichmentStage.FINALIZATION
        assert base.timeout_ms == 1000
        assert base.with_overrides(None) is base
        with pytest.raises(ValidationError):
            base.with_overrides({"timeout_ms": -5})

    def test_temporal_clock_times_are_normalized(self):
        """Test HH:MM validation for business hours."""
        options = TemporalEnricherOptions(business_hours_start="8:05")
        assert options.business_hours_start == "08:05"
        with pytest.raises(ValidationError):
            TemporalEnricherOptions(business_hours_end="25:00")
        with pytest.raises(ValidationError):
            TemporalEnricherOptions(business_days=[0, 1])

    def test_business_days_sorted_and_unique(self):
        """Test that business days are de-duplicated."""
        options = TemporalEnricherOptions(business_days=[5, 1, 5, 3])
        assert options.business_days == [1, 3, 5]

    def test_overrides_must_target_enabled_enrichers(self):
        """Test that overrides for disabled enrichers are rejected."""
        with pytest.raises(ValidationError, match="not enabled"):
            ContextSystemConfig(
                pipeline=PipelineConfig(enricher_overrides={"social": {"timeout_ms": 100}}),
                bootstrap={"enabled_enrichers": ["temporal"]},
            )


class TestConfigLoader:
    """Test ConfigLoader functionality."""

    def test_load_valid_config(self, temp_config_file: Path):
        """Test loading a valid configuration file."""
        loader = ConfigLoader(temp_config_file)
        config = loader.load()

        assert config.pipeline.max_concurrency == 3
        assert config.pipeline.enricher_overrides == {"memory": {"timeout_ms": 1500}}
        assert config.temporal.business_hours_start == "08:30"
        assert config.bootstrap.enabled_enrichers == ["temporal", "memory", "emotional"]
        assert config.bootstrap.enable_timers is False

    def test_load_is_cached_until_reload(self, temp_config_file: Path):
        """Test that load returns the cached configuration."""
        loader = ConfigLoader(temp_config_file)
        first = loader.load()

        assert loader.load() is first
        assert loader.config is first
        assert loader.reload() is not first

    def test_default_path(self):
        """Test that the loader defaults to context.yml."""
        assert ConfigLoader().config_path == Path("context.yml")

    def test_missing_file(self, tmp_path: Path):
        """Test loading a non-existent file."""
        loader = ConfigLoader(tmp_path / "missing.yml")
        with pytest.raises(ConfigurationError, match="not found"):
            loader.load()

    def test_empty_file_uses_defaults(self, tmp_path: Path):
        """Test that an empty file yields the default configuration."""
        config_file = tmp_path / "empty.yml"
        config_file.write_text("")

        config = ConfigLoader(config_file).load()

        assert config == ContextSystemConfig()

    def test_invalid_yaml(self, tmp_path: Path):
        """Test loading a file with invalid YAML syntax."""
        config_file = tmp_path / "invalid.yml"
        config_file.write_text("pipeline: [unclosed")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            ConfigLoader(config_file).load()

    def test_non_mapping_root(self, tmp_path: Path):
        """Test that a list at the root is rejected."""
        config_file = tmp_path / "list.yml"
        config_file.write_text("- temporal\n- memory\n")

        with pytest.raises(ConfigurationError, match="mapping"):
            ConfigLoader(config_file).load()

    def test_validation_errors_are_formatted(self, tmp_path: Path):
        """Test that schema errors name the offending field."""
        config_file = tmp_path / "bad.yml"
        config_file.write_text("pipeline:\n  max_concurrency: 0\n")

        with pytest.raises(ConfigurationError) as exc_info:
            ConfigLoader(config_file).load()
        assert "pipeline -> max_concurrency" in str(exc_info.value)


class TestSettings:
    """Test environment settings."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch):
        """Test settings defaults without environment variables."""
        for name in (
            "AGENT_CONTEXT_LOG_LEVEL",
            "AGENT_CONTEXT_LOG_DIR",
            "AGENT_CONTEXT_CONFIG_PATH",
            "AGENT_CONTEXT_ENABLE_TIMERS",
        ):
            monkeypatch.delenv(name, raising=False)

        settings = ContextSettings()

        assert settings.log_level == "WARNING"
        assert settings.log_dir == "logs"
        assert settings.config_path is None
        assert settings.enable_timers is True

    def test_environment_variables(self, mock_env_vars):
        """Test that environment variables are read."""
        settings = ContextSettings()

        assert settings.log_level == "DEBUG"
        assert settings.log_dir == "test_logs"
        assert settings.enable_timers is False

    def test_invalid_log_level(self, monkeypatch: pytest.MonkeyPatch):
        """Test that unknown log levels are rejected."""
        monkeypatch.setenv("AGENT_CONTEXT_LOG_LEVEL", "LOUD")
        with pytest.raises(ValidationError):
            ContextSettings()

    def test_load_settings_from_env_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        """Test loading settings from an explicit .env file."""
        monkeypatch.delenv("AGENT_CONTEXT_CONFIG_PATH", raising=False)
        env_file = tmp_path / "custom.env"
        env_file.write_text("AGENT_CONTEXT_CONFIG_PATH=configs/context.yml\n")

        try:
            settings = load_settings(env_file)
        finally:
            os.environ.pop("AGENT_CONTEXT_CONFIG_PATH", None)

        assert settings.config_path == "configs/context.yml"

    def test_load_settings_missing_env_file(self, tmp_path: Path):
        """Test that a missing .env file is tolerated."""
        settings = load_settings(tmp_path / "absent.env")
        assert isinstance(settings, ContextSettings)

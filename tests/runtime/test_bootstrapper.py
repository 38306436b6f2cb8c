"""Tests for the context system bootstrapper."""

import asyncio
from pathlib import Path

import pytest

from agent_context.config.models import BootstrapOptions, ContextSystemConfig
from agent_context.config.settings import ContextSettings
from agent_context.runtime.bootstrapper import ContextBootstrapper
from agent_context.utils.exceptions import EnricherStateError
from agent_context.utils.logging import get_current_log_files


def make_config(enrichers=None, enable_timers=False) -> ContextSystemConfig:
    bootstrap = BootstrapOptions(enable_timers=enable_timers)
    if enrichers is not None:
        bootstrap = BootstrapOptions(enabled_enrichers=enrichers, enable_timers=enable_timers)
    return ContextSystemConfig(bootstrap=bootstrap)


class TestInitialization:
    """Test component startup."""

    @pytest.mark.asyncio
    async def test_initialize(self, memory_provider):
        """Test that every critical component comes up."""
        bootstrapper = ContextBootstrapper(make_config(), memory_provider=memory_provider)

        result = await bootstrapper.initialize()

        assert result.success
        assert result.components_initialized == ["registry", "pipeline", "runtime_adapter"]
        assert result.components_failed == []
        status = bootstrapper.get_status()
        assert status["initialized"] is True
        assert all(status["components"].values())
        stage, ids = bootstrapper.pipeline.get_execution_plan()[0]
        assert stage == "pre_processing"
        assert sorted(ids) == ["environment", "temporal"]
        assert sorted(bootstrapper.adapter.transformers) == ["cognition", "memory"]
        await bootstrapper.shutdown()

    @pytest.mark.asyncio
    async def test_initialize_twice(self):
        """Test that a second initialize is a no-op."""
        bootstrapper = ContextBootstrapper(make_config(["temporal"]))
        await bootstrapper.initialize()

        result = await bootstrapper.initialize()

        assert result.success
        assert result.message == "Context system already initialized"
        await bootstrapper.shutdown()

    @pytest.mark.asyncio
    async def test_registry_failure(self):
        """Test that a failed critical component fails initialization."""
        bootstrapper = ContextBootstrapper(make_config(["astrology"]))

        result = await bootstrapper.initialize()

        assert result.success is False
        assert result.components_failed == ["registry", "pipeline", "runtime_adapter"]
        assert "registry" in result.message
        assert bootstrapper.initialized is False
        assert any("astrology" in e for e in bootstrapper.errors)


class TestAgents:
    """Test agent tracking."""

    def test_register_before_initialize(self):
        """Test that agents need an initialized system."""
        bootstrapper = ContextBootstrapper(make_config(["temporal"]))

        with pytest.raises(EnricherStateError, match="not initialized"):
            bootstrapper.register_agent("a1")

    @pytest.mark.asyncio
    async def test_register_and_unregister(self):
        """Test that registered agents get a context."""
        bootstrapper = ContextBootstrapper(make_config(["temporal"]))
        await bootstrapper.initialize()

        context = bootstrapper.register_agent("a1", session_id="s1")

        assert context.session_id == "s1"
        assert bootstrapper.get_status()["statistics"]["active_contexts"] == 1
        assert bootstrapper.unregister_agent("a1") is True
        assert bootstrapper.unregister_agent("a1") is False
        assert bootstrapper.adapter.list_agents() == []
        await bootstrapper.shutdown()


class TestMonitoring:
    """Test health checks, metrics and timers."""

    @pytest.mark.asyncio
    async def test_health_check_healthy(self):
        """Test a system whose enrichers are all healthy."""
        bootstrapper = ContextBootstrapper(make_config(["temporal"]))
        await bootstrapper.initialize()

        assert await bootstrapper.perform_health_check() is True
        assert bootstrapper.last_health["enrichers"]["temporal"]["healthy"] is True
        await bootstrapper.shutdown()

    @pytest.mark.asyncio
    async def test_health_check_unhealthy(self):
        """Test that an enricher without its module marks the system unhealthy."""
        bootstrapper = ContextBootstrapper(make_config(["emotional"]))
        await bootstrapper.initialize()

        assert await bootstrapper.perform_health_check() is False
        assert bootstrapper.healthy is False
        await bootstrapper.shutdown()

    @pytest.mark.asyncio
    async def test_performance_snapshot(self):
        """Test the performance snapshot after one enrichment."""
        bootstrapper = ContextBootstrapper(make_config(["temporal"]))
        await bootstrapper.initialize()
        bootstrapper.register_agent("a1")
        await bootstrapper.adapter.enrich_context("a1", {"message": "hi"})

        snapshot = await bootstrapper.collect_performance_metrics()

        assert snapshot["total_agents"] == 1
        assert snapshot["adapter"]["active_contexts"] == 1
        assert snapshot["enrichers"]["temporal"].startswith("1 runs")
        assert "hit_rate" in snapshot["cache"]
        await bootstrapper.shutdown()

    @pytest.mark.asyncio
    async def test_timers_stop_on_shutdown(self):
        """Test that periodic checks run until shutdown."""
        bootstrapper = ContextBootstrapper(make_config(["temporal"], enable_timers=True))
        await bootstrapper.initialize()

        assert bootstrapper.get_status()["statistics"]["timers_running"] == 2
        assert bootstrapper.adapter.get_stats()["sweeper_running"] is True

        await bootstrapper.shutdown()

        status = bootstrapper.get_status()
        assert status["initialized"] is False
        assert status["statistics"]["timers_running"] == 0
        assert not any(status["components"].values())

    @pytest.mark.asyncio
    async def test_failing_tick_keeps_timer_alive(self):
        """Test that an error in one periodic check neither stops it nor breaks shutdown."""
        config = ContextSystemConfig(
            bootstrap=BootstrapOptions(
                enabled_enrichers=["temporal"],
                enable_timers=True,
                performance_check_interval_seconds=0.01,
            )
        )
        bootstrapper = ContextBootstrapper(config)
        ticks = []

        async def collect_performance_metrics():
            ticks.append(len(ticks))
            raise RuntimeError("stats unavailable")

        bootstrapper.collect_performance_metrics = collect_performance_metrics
        await bootstrapper.initialize()
        await asyncio.sleep(0.05)

        assert len(ticks) >= 2
        assert bootstrapper.get_status()["statistics"]["timers_running"] == 2

        await bootstrapper.shutdown()
        assert bootstrapper.get_status()["statistics"]["timers_running"] == 0


@pytest.mark.usefixtures("restore_root_logger")
class TestFromSettings:
    """Test construction from environment settings."""

    def test_loads_yaml_and_logging(self, temp_config_file: Path, tmp_path: Path):
        """Test that settings choose the config file, log dir and timers."""
        settings = ContextSettings(
            log_level="INFO",
            log_dir=str(tmp_path / "logs"),
            config_path=str(temp_config_file),
            enable_timers=False,
        )

        bootstrapper = ContextBootstrapper.from_settings(settings)

        config = bootstrapper.config
        assert config.pipeline.max_concurrency == 3
        assert config.temporal.business_hours_start == "08:30"
        assert config.bootstrap.enabled_enrichers == ["temporal", "memory", "emotional"]
        assert config.bootstrap.enable_timers is False
        assert get_current_log_files()["main"].parent == tmp_path / "logs"

    def test_defaults_without_config_file(self, tmp_path: Path):
        """Test that missing config path means default configuration."""
        settings = ContextSettings(log_dir=str(tmp_path / "logs"))

        bootstrapper = ContextBootstrapper.from_settings(settings)

        assert bootstrapper.config == ContextSystemConfig()

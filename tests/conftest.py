"""Pytest configuration and shared fixtures for Agent Context tests.

This module provides common test fixtures and configuration
that can be used across all test modules.
"""

import logging
from pathlib import Path
from typing import Generator

import pytest
from _pytest.config import Config
from rich.logging import RichHandler

from agent_context.config.models import PipelineConfig, RetryPolicy
from agent_context.enrichment.providers import InMemoryMemoryProvider
from agent_context.enrichment.registry import EnricherRegistry


@pytest.fixture
def temp_config_file(tmp_path: Path) -> Generator[Path, None, None]:
    """Create a temporary config file for testing."""
    config_file = tmp_path / "context.yml"
    config_content = """
pipeline:
  max_concurrency: 3
  default_timeout_ms: 2000
  enricher_overrides:
    memory:
      timeout_ms: 1500

temporal:
  timezone: UTC
  business_hours_start: "08:30"

bootstrap:
  enabled_enrichers:
    - temporal
    - memory
    - emotional
  enable_timers: false
"""
    config_file.write_text(config_content)
    yield config_file


@pytest.fixture
def mock_env_vars(monkeypatch: pytest.MonkeyPatch) -> None:
    """Mock environment variables for testing."""
    monkeypatch.setenv("AGENT_CONTEXT_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("AGENT_CONTEXT_LOG_DIR", "test_logs")
    monkeypatch.setenv("AGENT_CONTEXT_ENABLE_TIMERS", "false")


@pytest.fixture
def fast_pipeline_config() -> PipelineConfig:
    """Pipeline configuration without backoff delays."""
    return PipelineConfig(
        retry=RetryPolicy(base_delay_ms=0, max_delay_ms=0),
        default_timeout_ms=5000,
    )


@pytest.fixture
def registry() -> EnricherRegistry:
    """Empty enricher registry."""
    return EnricherRegistry()


@pytest.fixture
def memory_provider() -> InMemoryMemoryProvider:
    """Empty in-process memory provider."""
    return InMemoryMemoryProvider()


@pytest.fixture
def restore_root_logger() -> Generator[None, None, None]:
    """Remove handlers installed by setup_logging."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if isinstance(handler, (logging.FileHandler, RichHandler)):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.fixture(autouse=True)
def isolate_tests(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate tests by changing to a temporary directory."""
    monkeypatch.chdir(tmp_path)


def pytest_configure(config: Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )

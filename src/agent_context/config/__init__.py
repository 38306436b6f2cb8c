"""Configuration management for Agent Context.

This module handles loading, parsing, and validating configuration
from YAML files and environment variables.
"""

from .models import (
    BootstrapOptions,
    ContextSystemConfig,
    EmotionalEnricherOptions,
    EnricherConfig,
    EnrichmentPriority,
    EnrichmentStage,
    EnvironmentEnricherOptions,
    MemoryEnricherOptions,
    PipelineConfig,
    RetryPolicy,
    RuntimeAdapterOptions,
    SocialEnricherOptions,
    TemporalEnricherOptions,
    TransformationStrategy,
    TransformerOptions,
)
from .loader import ConfigLoader
from .settings import ContextSettings, load_settings

__all__ = [
    "BootstrapOptions",
    "ConfigLoader",
    "ContextSettings",
    "ContextSystemConfig",
    "EmotionalEnricherOptions",
    "EnricherConfig",
    "EnrichmentPriority",
    "EnrichmentStage",
    "EnvironmentEnricherOptions",
    "MemoryEnricherOptions",
    "PipelineConfig",
    "RetryPolicy",
    "RuntimeAdapterOptions",
    "SocialEnricherOptions",
    "TemporalEnricherOptions",
    "TransformationStrategy",
    "TransformerOptions",
    "load_settings",
]

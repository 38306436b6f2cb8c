"""Context enrichers."""

from agent_context.enrichers.base import BaseContextEnricher, EnricherLifecycle
from agent_context.enrichers.defaults import BUILTIN_ENRICHERS, build_default_registry
from agent_context.enrichers.emotional import EmotionalContextEnricher
from agent_context.enrichers.environment import EnvironmentContextEnricher
from agent_context.enrichers.memory import MemoryContextEnricher
from agent_context.enrichers.social import SocialContextEnricher
from agent_context.enrichers.temporal import TemporalContextEnricher

__all__ = [
    "BaseContextEnricher",
    "EnricherLifecycle",
    "BUILTIN_ENRICHERS",
    "build_default_registry",
    "EmotionalContextEnricher",
    "EnvironmentContextEnricher",
    "MemoryContextEnricher",
    "SocialContextEnricher",
    "TemporalContextEnricher",
]

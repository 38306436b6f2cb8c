"""Registration of the built-in enrichers."""

from typing import Optional

from agent_context.config.models import ContextSystemConfig
from agent_context.enrichers.emotional import (
    EmotionalContextEnricher,
    default_emotional_config,
)
from agent_context.enrichers.environment import (
    EnvironmentContextEnricher,
    default_environment_config,
)
from agent_context.enrichers.memory import MemoryContextEnricher, default_memory_config
from agent_context.enrichers.social import SocialContextEnricher, default_social_config
from agent_context.enrichers.temporal import (
    TemporalContextEnricher,
    default_temporal_config,
)
from agent_context.enrichment.providers import (
    AgentAccessor,
    EmotionModuleAccessor,
    MemoryProvider,
)
from agent_context.enrichment.registry import EnricherMetadata, EnricherRegistry
from agent_context.enrichment.scoring import ScoringStrategy
from agent_context.utils.exceptions import ConfigurationError
from agent_context.utils.logging import get_logger

logger = get_logger(__name__)

BUILTIN_ENRICHERS = ("temporal", "environment", "memory", "emotional", "social")


def build_default_registry(
    config: Optional[ContextSystemConfig] = None,
    memory_provider: Optional[MemoryProvider] = None,
    emotion_accessor: Optional[EmotionModuleAccessor] = None,
    agent_accessor: Optional[AgentAccessor] = None,
    scoring: Optional[ScoringStrategy] = None,
    registry: Optional[EnricherRegistry] = None,
) -> EnricherRegistry:
    """Register the enabled built-in enrichers.

    Args:
        config: System configuration; defaults apply when omitted
        memory_provider: Store used by the memory and social enrichers
        emotion_accessor: Returns the agent's emotion module
        agent_accessor: Returns the current agent snapshot
        scoring: Scoring strategy shared by the text-based enrichers
        registry: Registry to add to; a new one is created when omitted

    Returns:
        The populated registry

    Raises:
        ConfigurationError: If an enabled id is not a built-in enricher
    """
    config = config or ContextSystemConfig()
    registry = registry or EnricherRegistry()

    factories = {
        "temporal": (
            lambda cfg: TemporalContextEnricher(config=cfg, options=config.temporal),
            default_temporal_config(),
            "Time of day, calendar and session tracking",
        ),
        "environment": (
            lambda cfg: EnvironmentContextEnricher(
                agent_accessor=agent_accessor, config=cfg, options=config.environment
            ),
            default_environment_config(),
            "Process metrics and agent liveness",
        ),
        "memory": (
            lambda cfg: MemoryContextEnricher(
                memory_provider, config=cfg, options=config.memory, scoring=scoring
            ),
            default_memory_config(),
            "Relevant memories and memory insights",
        ),
        "emotional": (
            lambda cfg: EmotionalContextEnricher(
                emotion_accessor=emotion_accessor,
                config=cfg,
                options=config.emotional,
                scoring=scoring,
            ),
            default_emotional_config(),
            "Emotion state, trends and contextual emotions",
        ),
        "social": (
            lambda cfg: SocialContextEnricher(
                memory_provider, config=cfg, options=config.social, scoring=scoring
            ),
            default_social_config(),
            "Relationships and conversation dynamics",
        ),
    }

    for enricher_id in config.bootstrap.enabled_enrichers:
        if enricher_id not in factories:
            raise ConfigurationError(
                f"Unknown built-in enricher '{enricher_id}'",
                details={"available": ", ".join(BUILTIN_ENRICHERS)},
            )
        factory, default_config, description = factories[enricher_id]
        registry.register(
            enricher_id,
            factory,
            default_config=default_config,
            metadata=EnricherMetadata(
                name=enricher_id,
                description=description,
                tags=["builtin"],
            ),
        )

    logger.info(f"Registered {len(registry)} built-in enrichers")
    return registry

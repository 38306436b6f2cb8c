"""Social context enricher.

Extracts the social entities of an interaction (user, sender, recipient,
participants) and derives a relationship for each from the agent's
interaction memories, plus conversation context, social metrics and
insights. Derived relationships are cached per ``(agent, entity)``.
"""

import math
import time
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple

from agent_context.config.models import (
    EnricherConfig,
    EnrichmentPriority,
    EnrichmentStage,
    SocialEnricherOptions,
)
from agent_context.context.types import clamp
from agent_context.enrichers.base import BaseContextEnricher
from agent_context.enrichment.providers import MemoryProvider, MemoryRecord, SearchQuery
from agent_context.enrichment.scoring import ScoringStrategy, get_default_scoring_strategy
from agent_context.enrichment.types import EnrichmentRequest

SOCIAL_CONTEXT_KEY = "social_context"
SOCIAL_CONTEXT_FIELDS = (
    "user_id",
    "session_id",
    "participants",
    "sender",
    "recipient",
    "conversation_id",
)
INTERACTION_TYPES = ["interaction", "conversation", "social"]
FULL_FREQUENCY_INTERACTIONS = 10


def default_social_config() -> EnricherConfig:
    return EnricherConfig(
        priority=EnrichmentPriority.MEDIUM,
        stage=EnrichmentStage.CORE_ENRICHMENT,
        timeout_ms=2000,
        max_retries=2,
        cache_ttl_seconds=120,
    )


@dataclass
class SocialEntity:
    """Someone taking part in the interaction."""

    id: str
    type: str = "user"  # 'user', 'agent' or 'system'
    role: str = "participant"


@dataclass
class Relationship:
    """The agent's relationship with one entity."""

    entity_id: str
    entity_type: str
    relationship_type: str
    strength: float
    last_interaction: datetime
    interaction_count: int
    sentiment: float
    trust_score: float
    familiarity: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "entity_type": self.entity_type,
            "relationship_type": self.relationship_type,
            "strength": self.strength,
            "last_interaction": self.last_interaction.isoformat(),
            "interaction_count": self.interaction_count,
            "sentiment": self.sentiment,
            "trust_score": self.trust_score,
            "familiarity": self.familiarity,
        }


class SocialContextEnricher(BaseContextEnricher):
    """Adds relationships, conversation context and social dynamics."""

    def __init__(
        self,
        memory_provider: Optional[MemoryProvider],
        config: Optional[EnricherConfig] = None,
        options: Optional[SocialEnricherOptions] = None,
        scoring: Optional[ScoringStrategy] = None,
        enricher_id: str = "social",
        clock=time.time,
    ):
        """Initialize the social enricher.

        Args:
            memory_provider: Source of interaction memories
            config: Enricher policy
            options: Relationship limits, decay and cache lifetime
            scoring: Sentiment scoring strategy
            enricher_id: Registry id
            clock: Source of epoch seconds for the relationship cache
        """
        super().__init__(
            enricher_id=enricher_id,
            name="Social Context Enricher",
            config=config or default_social_config(),
        )
        self.memory_provider = memory_provider
        self.options = options or SocialEnricherOptions()
        self.scoring = scoring or get_default_scoring_strategy()
        self._clock = clock
        self._relationship_cache: Dict[str, Tuple[float, Relationship]] = {}

    def get_provided_keys(self) -> List[str]:
        return [SOCIAL_CONTEXT_KEY]

    def get_cache_inputs(self, context: Mapping[str, Any]) -> Dict[str, Any]:
        return {key: context.get(key) for key in SOCIAL_CONTEXT_FIELDS}

    def _do_can_enrich(self, context: Mapping[str, Any]) -> bool:
        return self.memory_provider is not None and any(
            context.get(key) for key in SOCIAL_CONTEXT_FIELDS
        )

    async def _do_enrich(self, request: EnrichmentRequest) -> Dict[str, Any]:
        agent_id = request.agent_id
        entities = extract_social_entities(request.context)

        relationships: List[Relationship] = []
        for entity in entities:
            relationship = await self._relationship(agent_id, entity)
            if relationship is not None:
                relationships.append(relationship)
        relationships.sort(key=lambda r: r.strength, reverse=True)
        relationships = relationships[: self.options.max_relationships]

        conversation = await self._conversation_context(agent_id, entities)
        metrics = social_metrics(relationships)

        return {
            SOCIAL_CONTEXT_KEY: {
                "entities": [asdict(e) for e in entities],
                "relationships": [r.to_dict() for r in relationships],
                "conversation_context": conversation,
                "social_metrics": metrics,
                "insights": _insights(relationships, conversation, metrics),
            }
        }

    async def _relationship(
        self, agent_id: str, entity: SocialEntity
    ) -> Optional[Relationship]:
        cache_key = f"{agent_id}:{entity.id}"
        now = self._clock()
        cached = self._relationship_cache.get(cache_key)
        if cached is not None:
            expires_at, relationship = cached
            if now < expires_at:
                return relationship
            del self._relationship_cache[cache_key]

        memories = await self._interaction_memories(agent_id, entity.id)
        relationship = self.build_relationship(entity, memories)
        if relationship is not None:
            self._relationship_cache[cache_key] = (
                now + self.options.relationship_cache_ttl_seconds,
                relationship,
            )
        return relationship

    async def _search(self, agent_id: str, query: SearchQuery) -> List[MemoryRecord]:
        """Search the provider; failures mean no data."""
        if self.memory_provider is None:
            return []
        try:
            result = await self.memory_provider.search(agent_id, query)
        except Exception as e:
            self.logger.warning(f"Interaction memory search failed for {agent_id}: {e}")
            return []
        return list(result.memories) if result.success else []

    async def _interaction_memories(self, agent_id: str, entity_id: str) -> List[MemoryRecord]:
        memories = await self._search(
            agent_id,
            SearchQuery(
                query="",
                limit=50,
                types=INTERACTION_TYPES,
                since=datetime.now() - timedelta(days=self.options.relationship_decay_days),
            ),
        )
        return [m for m in memories if _involves(m, entity_id)]

    def build_relationship(
        self,
        entity: SocialEntity,
        memories: List[MemoryRecord],
        now: Optional[datetime] = None,
    ) -> Optional[Relationship]:
        """Derive a relationship from interaction memories; None without any."""
        if not memories:
            return None

        now = now or datetime.now()
        ordered = sorted(memories, key=lambda m: m.timestamp, reverse=True)
        last = ordered[0].timestamp
        days_since = max(0.0, (now - last).total_seconds() / 86400)

        recency = max(0.0, 1 - days_since / self.options.relationship_decay_days)
        frequency = min(1.0, len(memories) / FULL_FREQUENCY_INTERACTIONS)
        sentiment = self._sentiment(memories)

        return Relationship(
            entity_id=entity.id,
            entity_type=entity.type,
            relationship_type=_relationship_type(entity, memories),
            strength=clamp(recency * 0.6 + frequency * 0.4),
            last_interaction=last,
            interaction_count=len(memories),
            sentiment=clamp(sentiment, -1.0, 1.0),
            trust_score=_trust_score(ordered, sentiment),
            familiarity=_familiarity(memories),
            metadata={
                "role": entity.role,
                "days_since_last_interaction": days_since,
                "oldest_interaction": ordered[-1].timestamp.isoformat(),
            },
        )

    def _sentiment(self, memories: List[MemoryRecord]) -> float:
        total = 0.0
        for memory in memories:
            explicit = memory.metadata.get("sentiment")
            if isinstance(explicit, (int, float)) and explicit:
                total += float(explicit)
            else:
                total += self.scoring.sentiment(memory.content or "")
        return total / len(memories)

    async def _conversation_context(
        self, agent_id: str, entities: List[SocialEntity]
    ) -> Dict[str, Any]:
        memories = await self._search(
            agent_id,
            SearchQuery(
                query="",
                limit=self.options.max_conversation_history,
                types=["conversation", "interaction"],
                since=datetime.now() - timedelta(hours=24),
            ),
        )
        topics: List[str] = []
        sentiments: List[float] = []
        for memory in memories:
            for topic in memory.metadata.get("topics") or []:
                if topic not in topics:
                    topics.append(topic)
            value = memory.metadata.get("sentiment")
            if isinstance(value, (int, float)) and value:
                sentiments.append(float(value))

        return {
            "participant_count": len(entities),
            "conversation_length": len(memories),
            "topic_analysis": {
                "primary_topics": topics[:5],
                "sentiment": sum(sentiments) / len(sentiments) if sentiments else 0.0,
            },
        }

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop expired relationship cache entries.

        Returns:
            Number of entries removed
        """
        now = self._clock() if now is None else now
        expired = [k for k, (expires_at, _) in self._relationship_cache.items() if now >= expires_at]
        for key in expired:
            del self._relationship_cache[key]
        return len(expired)

    @property
    def relationship_cache_size(self) -> int:
        return len(self._relationship_cache)

    def calculate_confidence(
        self, context: Mapping[str, Any], enriched: Mapping[str, Any]
    ) -> float:
        social = enriched.get(SOCIAL_CONTEXT_KEY)
        if not social:
            return 0.1
        relationships = social["relationships"]
        score = 0.3 + min(0.3, len(relationships) * 0.05)
        if social["conversation_context"]["conversation_length"] > 0:
            score += 0.2
        week_ago = datetime.now() - timedelta(days=7)
        if any(datetime.fromisoformat(r["last_interaction"]) > week_ago for r in relationships):
            score += 0.3
        return clamp(score, 0.1, 0.95)

    async def _do_health_check(self) -> Dict[str, Any]:
        if self.memory_provider is None:
            return {"healthy": False, "error": "Memory provider not available"}
        return {
            "healthy": bool(await self.memory_provider.health_check()),
            "relationship_cache_size": len(self._relationship_cache),
        }

    async def _do_dispose(self) -> None:
        self._relationship_cache.clear()


def extract_social_entities(context: Mapping[str, Any]) -> List[SocialEntity]:
    """Social entities named by a context, de-duplicated by ``(id, type)``."""
    entities: List[SocialEntity] = []
    if isinstance(context.get("user_id"), str) and context["user_id"]:
        entities.append(SocialEntity(context["user_id"], "user", "primary"))
    if isinstance(context.get("sender"), str) and context["sender"]:
        entities.append(SocialEntity(context["sender"], "user", "sender"))
    if isinstance(context.get("recipient"), str) and context["recipient"]:
        entities.append(SocialEntity(context["recipient"], "agent", "recipient"))

    participants = context.get("participants")
    if isinstance(participants, (list, tuple)):
        for participant in participants:
            if isinstance(participant, str):
                entities.append(SocialEntity(participant))
            elif isinstance(participant, Mapping):
                entities.append(
                    SocialEntity(
                        id=str(participant.get("id") or participant.get("user_id") or "unknown"),
                        type=participant.get("type") or "user",
                        role=participant.get("role") or "participant",
                    )
                )

    seen = set()
    unique = []
    for entity in entities:
        if (entity.id, entity.type) not in seen:
            seen.add((entity.id, entity.type))
            unique.append(entity)
    return unique


def social_metrics(relationships: List[Relationship]) -> Dict[str, Any]:
    """Average trust and familiarity, and the communication style they imply."""
    if not relationships:
        return {"trust_level": 0.0, "familiarity_level": 0.0, "communication_style": "formal"}

    trust = sum(r.trust_score for r in relationships) / len(relationships)
    familiarity = sum(r.familiarity for r in relationships) / len(relationships)
    if familiarity > 0.7:
        style = "casual"
    elif familiarity > 0.4:
        style = "friendly"
    else:
        style = "formal"
    return {"trust_level": trust, "familiarity_level": familiarity, "communication_style": style}


def _involves(memory: MemoryRecord, entity_id: str) -> bool:
    metadata = memory.metadata
    return (
        entity_id in (memory.content or "")
        or entity_id in (metadata.get("participants") or [])
        or metadata.get("user_id") == entity_id
        or metadata.get("sender_id") == entity_id
    )


def _trust_score(ordered: List[MemoryRecord], sentiment: float) -> float:
    """Neutral trust adjusted by sentiment, duration and interaction rate."""
    trust = 0.5 + sentiment * 0.3
    span_days = 0.0
    if len(ordered) > 1:
        span_days = (ordered[0].timestamp - ordered[-1].timestamp).total_seconds() / 86400
    if span_days > 7:
        trust += 0.2
    if span_days > 0 and len(ordered) / span_days > 1:
        trust += 0.1
    return clamp(trust)


def _familiarity(memories: List[MemoryRecord]) -> float:
    score = min(0.5, len(memories) * 0.05)
    score += min(0.3, len({m.type or "unknown" for m in memories}) * 0.1)
    average_length = sum(len(m.content or "") for m in memories) / len(memories)
    score += min(0.2, average_length / 500)
    return clamp(score)


def _relationship_type(entity: SocialEntity, memories: List[MemoryRecord]) -> str:
    if entity.type == "agent":
        return "colleague"
    if entity.type == "system":
        return "system"
    average_length = sum(len(m.content or "") for m in memories) / len(memories)
    count = len(memories)
    if count > 20 and average_length > 200:
        return "close_friend"
    if count > 10:
        return "friend"
    if count > 5:
        return "acquaintance"
    return "stranger"


def _trust_variance(relationships: List[Relationship]) -> float:
    """Standard deviation of trust scores."""
    if len(relationships) < 2:
        return 0.0
    mean = sum(r.trust_score for r in relationships) / len(relationships)
    return math.sqrt(
        sum((r.trust_score - mean) ** 2 for r in relationships) / len(relationships)
    )


def _insights(
    relationships: List[Relationship],
    conversation: Dict[str, Any],
    metrics: Dict[str, Any],
) -> Dict[str, Any]:
    participants = conversation["participant_count"]

    if relationships:
        types = Counter(r.relationship_type for r in relationships)
        analysis = {
            "has_relationships": True,
            "total_relationships": len(relationships),
            "strong_relationships": sum(1 for r in relationships if r.strength > 0.6),
            "trusted_entities": sum(1 for r in relationships if r.trust_score > 0.7),
            "familiar_entities": sum(1 for r in relationships if r.familiarity > 0.6),
            "dominant_relationship_type": types.most_common(1)[0][0],
            "avg_trust_score": metrics["trust_level"],
            "avg_familiarity_score": metrics["familiarity_level"],
        }
    else:
        analysis = {"has_relationships": False}

    recommendations = []
    if metrics["trust_level"] > 0.7:
        recommendations.append(
            {
                "type": "communication_style",
                "message": "High trust relationship allows for direct, honest communication",
                "priority": "medium",
            }
        )
    if metrics["familiarity_level"] < 0.3:
        recommendations.append(
            {
                "type": "communication_style",
                "message": "Low familiarity suggests formal, respectful communication",
                "priority": "high",
            }
        )
    if participants > 2:
        recommendations.append(
            {
                "type": "group_dynamics",
                "message": "Multiple participants require inclusive communication approach",
                "priority": "medium",
            }
        )

    complexity = min(0.4, participants * 0.1)
    complexity += min(0.3, len(relationships) * 0.05)
    complexity += min(0.3, _trust_variance(relationships))

    trust = metrics["trust_level"]
    familiarity = metrics["familiarity_level"]
    if participants > 2:
        approach = "group_facilitator"
    elif trust > 0.7 and familiarity > 0.6:
        approach = "personal_friend"
    elif trust > 0.5:
        approach = "trusted_advisor"
    elif familiarity > 0.5:
        approach = "friendly_acquaintance"
    else:
        approach = "professional_assistant"

    return {
        "relationship_analysis": analysis,
        "conversation_recommendations": recommendations,
        "social_dynamics": {
            "is_group_conversation": participants > 2,
            "communication_style": metrics["communication_style"],
            "social_complexity": clamp(complexity),
            "recommended_approach": approach,
        },
    }

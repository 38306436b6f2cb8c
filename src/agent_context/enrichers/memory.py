"""Memory context enricher.

Searches the agent's memory store for records related to the current
interaction and summarizes them: relevant memories, a recent/historical
split, theme and emotion histograms, and historical patterns.
"""

from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional

from agent_context.config.models import (
    EnricherConfig,
    EnrichmentPriority,
    EnrichmentStage,
    MemoryEnricherOptions,
)
from agent_context.context.types import clamp
from agent_context.enrichers.base import BaseContextEnricher
from agent_context.enrichment.providers import MemoryProvider, MemoryRecord, SearchQuery
from agent_context.enrichment.scoring import ScoringStrategy, get_default_scoring_strategy
from agent_context.enrichment.types import EnrichmentRequest

MEMORY_CONTEXT_KEY = "memory_context"
DEFAULT_QUERY = "recent interactions and experiences"


def default_memory_config() -> EnricherConfig:
    return EnricherConfig(
        priority=EnrichmentPriority.HIGH,
        stage=EnrichmentStage.CORE_ENRICHMENT,
        timeout_ms=3000,
        max_retries=2,
        cache_ttl_seconds=300,
    )


class MemoryContextEnricher(BaseContextEnricher):
    """Adds relevant memories and memory-derived insights."""

    def __init__(
        self,
        memory_provider: Optional[MemoryProvider],
        config: Optional[EnricherConfig] = None,
        options: Optional[MemoryEnricherOptions] = None,
        scoring: Optional[ScoringStrategy] = None,
        enricher_id: str = "memory",
    ):
        """Initialize the memory enricher.

        Args:
            memory_provider: Store to search; None yields empty results
            config: Enricher policy
            options: Search tuning
            scoring: Theme extraction strategy
            enricher_id: Registry id
        """
        super().__init__(
            enricher_id=enricher_id,
            name="Memory Context Enricher",
            config=config or default_memory_config(),
        )
        self.memory_provider = memory_provider
        self.options = options or MemoryEnricherOptions()
        self.scoring = scoring or get_default_scoring_strategy()

    def get_provided_keys(self) -> List[str]:
        return [MEMORY_CONTEXT_KEY]

    def get_cache_inputs(self, context: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "query": self.build_search_query(context),
            "memory_types": list(self.options.memory_types),
        }

    async def _do_enrich(self, request: EnrichmentRequest) -> Dict[str, Any]:
        agent_id = request.agent_id
        query = self.build_search_query(request.context)
        now = datetime.now()

        memories = await self._search(
            agent_id,
            SearchQuery(
                query=query,
                limit=self.options.max_memories,
                types=self.options.memory_types or None,
                since=now - timedelta(days=self.options.search_radius_days),
            ),
        )
        relevant = [
            m
            for m in memories
            if m.relevance_score is None
            or m.relevance_score >= self.options.relevance_threshold
        ]

        temporal_context = None
        if self.options.include_temporal_context:
            temporal_context = await self._temporal_context(agent_id, now)

        return {
            MEMORY_CONTEXT_KEY: {
                "relevant_memories": [_serialize(m) for m in relevant],
                "memory_count": len(relevant),
                "search_query": query,
                "search_score": self._search_score(relevant),
                "temporal_context": temporal_context,
                "insights": self._insights(relevant, now),
                "historical_patterns": self._historical_patterns(relevant),
            }
        }

    def build_search_query(self, context: Mapping[str, Any]) -> str:
        """Join the free text found in the context into a search query."""
        parts: List[str] = []
        for key in ("message", "topic"):
            value = context.get(key)
            if isinstance(value, str) and value.strip():
                parts.append(value.strip())
        keywords = context.get("keywords")
        if isinstance(keywords, (list, tuple)):
            parts.extend(str(k) for k in keywords if str(k).strip())
        return " ".join(parts) if parts else DEFAULT_QUERY

    async def _search(self, agent_id: str, query: SearchQuery) -> List[MemoryRecord]:
        """Search the provider; failures mean no data."""
        if self.memory_provider is None:
            return []
        try:
            result = await self.memory_provider.search(agent_id, query)
        except Exception as e:
            self.logger.warning(f"Memory search failed for {agent_id}: {e}")
            return []
        if not result.success:
            self.logger.warning(
                f"Memory search unsuccessful for {agent_id}: {result.error or 'unknown'}"
            )
            return []
        return list(result.memories)

    async def _temporal_context(self, agent_id: str, now: datetime) -> Dict[str, Any]:
        recent = await self._search(
            agent_id, SearchQuery(query="", limit=5, since=now - timedelta(hours=24))
        )
        historical = await self._search(
            agent_id, SearchQuery(query="", limit=5, until=now - timedelta(days=7))
        )
        return {
            "recent_memories": [_serialize(m) for m in recent],
            "historical_memories": [_serialize(m) for m in historical],
        }

    def _insights(self, memories: List[MemoryRecord], now: datetime) -> Dict[str, Any]:
        emotions: Counter = Counter(
            m.metadata["emotion"] for m in memories if m.metadata.get("emotion")
        )
        types: Counter = Counter(m.type for m in memories)

        temporal = {"recent": 0, "this_week": 0, "this_month": 0, "older": 0}
        for memory in memories:
            age_hours = (now - memory.timestamp).total_seconds() / 3600
            if age_hours < 24:
                temporal["recent"] += 1
            elif age_hours < 168:
                temporal["this_week"] += 1
            elif age_hours < 720:
                temporal["this_month"] += 1
            else:
                temporal["older"] += 1

        return {
            "pattern_count": len(memories),
            "common_themes": self.scoring.themes(
                (m.content for m in memories), limit=5, min_length=4
            ),
            "emotional_trends": dict(emotions),
            "memory_type_distribution": dict(types),
            "temporal_distribution": temporal,
        }

    def _historical_patterns(self, memories: List[MemoryRecord]) -> Dict[str, Any]:
        frequency: Counter = Counter(m.timestamp.date().isoformat() for m in memories)

        topic_evolution = []
        for memory in sorted(memories, key=lambda m: m.timestamp):
            topics = memory.metadata.get("topics")
            if topics:
                topic_evolution.append(
                    {"date": memory.timestamp.isoformat(), "topics": list(topics)}
                )

        learning = [
            m for m in memories if m.type == "learning" or m.metadata.get("is_learning")
        ]
        confidences = [
            float(m.metadata["confidence"])
            for m in learning
            if isinstance(m.metadata.get("confidence"), (int, float))
        ]
        skill_areas = sorted(
            {m.metadata["skill_area"] for m in learning if m.metadata.get("skill_area")}
        )

        return {
            "interaction_frequency": dict(frequency),
            "topic_evolution": topic_evolution,
            "learning_progression": {
                "learning_events": len(learning),
                "average_confidence": (
                    sum(confidences) / len(confidences) if confidences else 0.0
                ),
                "skill_areas": skill_areas,
            },
        }

    @staticmethod
    def _search_score(memories: List[MemoryRecord]) -> float:
        if not memories:
            return 0.0
        scores = [m.relevance_score for m in memories if m.relevance_score is not None]
        if not scores:
            return 0.5
        return clamp(sum(scores) / len(scores))

    def calculate_confidence(
        self, context: Mapping[str, Any], enriched: Mapping[str, Any]
    ) -> float:
        memory_context = enriched.get(MEMORY_CONTEXT_KEY) or {}
        count = memory_context.get("memory_count", 0)
        if not count:
            return 0.1
        volume = min(1.0, count / self.options.max_memories)
        score = memory_context.get("search_score", 0.0)
        return clamp(volume * 0.4 + score * 0.6, 0.1, 0.95)

    async def _do_health_check(self) -> Dict[str, Any]:
        if self.memory_provider is None:
            return {"healthy": True, "provider": "none"}
        return {"healthy": bool(await self.memory_provider.health_check())}


def _serialize(memory: MemoryRecord) -> Dict[str, Any]:
    return {
        "id": memory.id,
        "content": memory.content,
        "type": memory.type,
        "timestamp": memory.timestamp.isoformat(),
        "importance": memory.importance,
        "relevance_score": memory.relevance_score,
        "metadata": dict(memory.metadata),
    }

"""Emotional context enricher.

Reads current and historical emotion state from the agent's emotion
module and derives trends, volatility, contextual emotion relevance,
insights and recommendations.
"""

from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional

from agent_context.config.models import (
    EmotionalEnricherOptions,
    EnricherConfig,
    EnrichmentPriority,
    EnrichmentStage,
)
from agent_context.context.types import clamp
from agent_context.enrichers.base import BaseContextEnricher
from agent_context.enrichment.providers import (
    EmotionModule,
    EmotionModuleAccessor,
    EmotionState,
)
from agent_context.enrichment.scoring import ScoringStrategy, get_default_scoring_strategy
from agent_context.enrichment.types import EnrichmentRequest

EMOTIONAL_CONTEXT_KEY = "emotional_context"

HIGH_INTENSITY = 0.7
STABLE_VOLATILITY = 0.3
EMOTION_CHANGE_PENALTY = 0.5
RECENT_HISTORY = 5


def default_emotional_config() -> EnricherConfig:
    return EnricherConfig(
        priority=EnrichmentPriority.MEDIUM,
        stage=EnrichmentStage.CORE_ENRICHMENT,
        timeout_ms=1000,
        max_retries=2,
        cache_ttl_seconds=60,
    )


def extract_context_text(context: Mapping[str, Any]) -> str:
    """Free text of a context: message, topic, description and keywords."""
    parts: List[str] = []
    for key in ("message", "topic", "description"):
        value = context.get(key)
        if isinstance(value, str):
            parts.append(value)
    keywords = context.get("keywords")
    if isinstance(keywords, (list, tuple)):
        parts.extend(k for k in keywords if isinstance(k, str))
    return " ".join(parts)


class EmotionalContextEnricher(BaseContextEnricher):
    """Adds the agent's emotional state and how it relates to the interaction."""

    def __init__(
        self,
        emotion_accessor: Optional[EmotionModuleAccessor] = None,
        config: Optional[EnricherConfig] = None,
        options: Optional[EmotionalEnricherOptions] = None,
        scoring: Optional[ScoringStrategy] = None,
        enricher_id: str = "emotional",
    ):
        """Initialize the emotional enricher.

        Args:
            emotion_accessor: Returns the agent's emotion module, or None
            config: Enricher policy
            options: History depth, relevance threshold, volatility window
            scoring: Keyword scoring strategy
            enricher_id: Registry id
        """
        super().__init__(
            enricher_id=enricher_id,
            name="Emotional Context Enricher",
            config=config or default_emotional_config(),
        )
        self.emotion_accessor = emotion_accessor or (lambda: None)
        self.options = options or EmotionalEnricherOptions()
        self.scoring = scoring or get_default_scoring_strategy()

    def get_provided_keys(self) -> List[str]:
        return [EMOTIONAL_CONTEXT_KEY]

    def get_cache_inputs(self, context: Mapping[str, Any]) -> Dict[str, Any]:
        return {"text": extract_context_text(context)}

    async def _do_enrich(self, request: EnrichmentRequest) -> Dict[str, Any]:
        module = self.emotion_accessor()
        text = extract_context_text(request.context)

        if module is None:
            self.logger.warning(
                f"Emotion module not available for enrichment of {request.agent_id}"
            )
            return {EMOTIONAL_CONTEXT_KEY: self._unavailable(text)}

        current = module.get_current_state()
        history = self._history(module)
        trends = self.calculate_trends(history, current)
        contextual = self.contextual_emotions(text, current, history)

        return {
            EMOTIONAL_CONTEXT_KEY: {
                "available": True,
                "current_emotion": _serialize(current) if current else None,
                "emotional_history": [_serialize(e) for e in history],
                "emotional_trends": trends,
                "contextual_emotions": contextual,
                "insights": self._insights(current, history, trends, contextual),
                "recommendations": _recommendations(current, trends),
            }
        }

    def _unavailable(self, text: str) -> Dict[str, Any]:
        return {
            "available": False,
            "current_emotion": {
                "emotion": "neutral",
                "intensity": 0.0,
                "confidence": 0.0,
                "triggers": [],
                "timestamp": datetime.now().isoformat(),
            },
            "emotional_history": [],
            "emotional_trends": {
                "dominant_emotion": "neutral",
                "average_intensity": 0.0,
                "volatility": 0.0,
            },
            "contextual_emotions": self.contextual_emotions(text, None, []),
            "insights": {"available": False, "reason": "Emotion module not available"},
            "recommendations": [],
        }

    def _history(self, module: EmotionModule) -> List[EmotionState]:
        try:
            return list(module.get_history(self.options.history_depth))
        except Exception as e:
            self.logger.warning(f"Failed to get emotional history: {e}")
            return []

    def calculate_trends(
        self, history: List[EmotionState], current: Optional[EmotionState]
    ) -> Dict[str, Any]:
        """Dominant emotion, mean intensity and volatility."""
        if not history:
            return {
                "dominant_emotion": current.emotion if current else "neutral",
                "average_intensity": clamp(current.intensity) if current else 0.0,
                "volatility": 0.0,
            }

        entries = history + ([current] if current else [])
        counts = Counter(e.emotion for e in entries)
        return {
            "dominant_emotion": counts.most_common(1)[0][0],
            "average_intensity": clamp(sum(e.intensity for e in entries) / len(entries)),
            "volatility": self.calculate_volatility(history, current),
        }

    def calculate_volatility(
        self,
        history: List[EmotionState],
        current: Optional[EmotionState],
        now: Optional[datetime] = None,
    ) -> float:
        """Mean intensity change plus emotion-change penalty across the window, capped at 1."""
        if len(history) < 2:
            return 0.0

        now = now or datetime.now()
        window_start = now - timedelta(seconds=self.options.volatility_window_seconds)
        recent = [e for e in history if e.timestamp >= window_start]
        if current is not None:
            recent.append(current)
        if len(recent) < 2:
            return 0.0

        total = 0.0
        for prev, curr in zip(recent, recent[1:]):
            total += abs(curr.intensity - prev.intensity)
            if prev.emotion != curr.emotion:
                total += EMOTION_CHANGE_PENALTY
        return clamp(total / (len(recent) - 1))

    def contextual_emotions(
        self,
        text: str,
        current: Optional[EmotionState],
        history: List[EmotionState],
    ) -> Dict[str, float]:
        """Relevance of each emotion to the interaction text, boosted by state."""
        hits = self.scoring.emotion_hits(text)
        recent = history[-RECENT_HISTORY:]
        relevant: Dict[str, float] = {}

        for emotion, count in hits.items():
            score = count * 0.2
            if current is not None and current.emotion == emotion:
                score += clamp(current.intensity) * 0.3
            score += sum(1 for e in recent if e.emotion == emotion) / RECENT_HISTORY * 0.2
            # Round away float noise so 0.2 compares equal to a 0.2 threshold
            score = round(score, 10)
            if score >= self.options.emotion_relevance_threshold and score > 0:
                relevant[emotion] = min(1.0, score)
        return relevant

    def _insights(
        self,
        current: Optional[EmotionState],
        history: List[EmotionState],
        trends: Dict[str, Any],
        contextual: Dict[str, float],
    ) -> Dict[str, Any]:
        insights: Dict[str, Any] = {"available": True}

        if current is not None:
            insights["current_state"] = {
                "emotion": current.emotion,
                "intensity": current.intensity,
                "is_intense": current.intensity > HIGH_INTENSITY,
                "is_stable": trends["volatility"] < STABLE_VOLATILITY,
                "dominant_emotion": trends["dominant_emotion"],
            }

        if history:
            recent = history[-3:]
            changes = [
                {
                    "from": prev.emotion,
                    "to": curr.emotion,
                    "intensity_change": curr.intensity - prev.intensity,
                }
                for prev, curr in zip(recent, recent[1:])
            ]
            insights["patterns"] = {
                "recent_changes": changes,
                "trend": _trend(changes),
            }

        if contextual:
            top = max(contextual, key=lambda e: contextual[e])
            insights["contextual_relevance"] = {
                "most_relevant_emotion": top,
                "relevance_score": contextual[top],
                "relevant_emotions": sorted(contextual),
            }
        return insights

    def calculate_confidence(
        self, context: Mapping[str, Any], enriched: Mapping[str, Any]
    ) -> float:
        emotional = enriched.get(EMOTIONAL_CONTEXT_KEY) or {}
        if not emotional.get("available") or not emotional.get("current_emotion"):
            return 0.1
        current = emotional["current_emotion"]
        score = 0.5
        score += clamp(current.get("confidence", 0.0)) * 0.3
        score += min(0.2, len(emotional.get("emotional_history", [])) * 0.02)
        score += min(0.2, len(emotional.get("contextual_emotions", {})) * 0.05)
        return clamp(score, 0.1, 0.95)

    async def _do_health_check(self) -> Dict[str, Any]:
        module = self.emotion_accessor()
        if module is None:
            return {"healthy": False, "error": "Emotion module not available"}
        current = module.get_current_state()
        return {
            "healthy": current is not None and isinstance(current.emotion, str),
            "current_emotion": current.emotion if current else "unknown",
        }


def _trend(changes: List[Dict[str, Any]]) -> str:
    if not changes:
        return "stable"
    total = sum(c["intensity_change"] for c in changes)
    if total > 0.3:
        return "intensifying"
    if total < -0.3:
        return "calming"
    switched = sum(1 for c in changes if c["from"] != c["to"])
    if switched / len(changes) >= 0.6:
        return "fluctuating"
    return "stable"


def _recommendations(
    current: Optional[EmotionState], trends: Dict[str, Any]
) -> List[Dict[str, str]]:
    recommendations = []
    if trends["volatility"] > HIGH_INTENSITY:
        recommendations.append(
            {
                "type": "stability",
                "message": "High emotional volatility - keep responses calm and consistent",
                "priority": "high",
            }
        )
    if current is None:
        return recommendations
    if current.emotion == "sad" and current.intensity < 0.3:
        recommendations.append(
            {
                "type": "support",
                "message": "Mild sadness detected - offer gentle support",
                "priority": "medium",
            }
        )
    if current.intensity > HIGH_INTENSITY and current.emotion in ("happy", "confident", "proud"):
        recommendations.append(
            {
                "type": "engagement",
                "message": "Strong positive emotion - match the energy and engage",
                "priority": "medium",
            }
        )
    return recommendations


def _serialize(state: EmotionState) -> Dict[str, Any]:
    return {
        "emotion": state.emotion,
        "intensity": clamp(state.intensity),
        "confidence": clamp(state.confidence),
        "triggers": list(state.triggers),
        "trigger": state.trigger,
        "timestamp": state.timestamp.isoformat(),
    }

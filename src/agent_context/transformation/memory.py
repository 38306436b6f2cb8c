"""Memory context transformer.

Shapes a ``UnifiedContext`` into a record a memory store can persist and
index: the primary content with an extractive summary, facts, events,
emotions and decisions found in it, importance and persistence scores,
search tags, a hashed semantic vector and quality metrics.

The transformation is one-way: the record summarizes the context and
cannot rebuild it.
"""

import hashlib
import re
from collections import Counter
from typing import Any, Dict, List, Optional, Tuple

from agent_context.config.models import TransformationStrategy, TransformerOptions
from agent_context.context.types import UnifiedContext, clamp
from agent_context.enrichers.emotional import EMOTIONAL_CONTEXT_KEY
from agent_context.transformation.base import BaseContextTransformer
from agent_context.transformation.types import (
    TransformerCapabilities,
    ValidationIssue,
    ValidationSeverity,
)

MEMORY_TRANSFORMER_ID = "memory"

RECENT_MESSAGES = 5
SEMANTIC_VECTOR_SIZE = 64
MIN_SENTENCE_LENGTH = 10
MIN_WORD_LENGTH = 4

# Items kept per list by MINIMAL
MINIMAL_LIMITS = {
    "key_facts": 3,
    "events": 2,
    "search_tags": 10,
    "extracted_entities": 5,
    "key_phrases": 5,
}
MINIMAL_VECTOR_SIZE = 32

# (score field, threshold, max items) per list filtered by OPTIMIZED
OPTIMIZED_FILTERS = {
    "key_facts": ("confidence", 0.6, 5),
    "events": ("significance", 0.5, 3),
    "extracted_entities": ("confidence", 0.6, 10),
    "key_phrases": ("score", 0.1, 8),
}

# Only present in the FULL output
FULL_ONLY_FIELDS = ("storage_hints", "indexing_hints")

DERIVED_FIELDS = [
    "operation_type",
    "summary",
    "key_facts",
    "events",
    "emotions",
    "decisions",
    "memory_type",
    "importance",
    "persistence",
    "related_memories",
    "temporal_context",
    "search_tags",
    "semantic_vector",
    "privacy_level",
    "compression_level",
    "extracted_entities",
    "key_phrases",
    "coherence",
    "completeness",
    "reliability",
    "indexing_hints",
    "storage_hints",
]

FACTUAL_WORDS = {"is", "are", "was", "were", "has", "have", "can", "will"}
OPINION_WORDS = {"think", "believe", "feel", "maybe", "perhaps", "might"}
EVENT_WORDS = ("happened", "occurred", "went", "came", "started", "finished", "completed")
IMPORTANT_WORDS = ("important", "critical", "major", "significant", "breakthrough")
VIVID_WORDS = ("amazing", "terrible", "wonderful", "awful", "excited", "disappointed")
SENSITIVE_WORDS = ("password", "secret", "private", "confidential", "personal")
OPERATION_CUES = [
    ("store", ("remember", "save")),
    ("retrieve", ("recall", "find")),
    ("update", ("update", "change")),
    ("delete", ("forget", "delete")),
    ("search", ("search", "look for")),
]
VALENCE = {
    "happy": 0.7,
    "excited": 0.7,
    "proud": 0.7,
    "confident": 0.7,
    "sad": -0.7,
    "angry": -0.7,
    "anxious": -0.7,
    "confused": -0.7,
}

_SENTENCE_RE = re.compile(r"[.!?]+")
_WORD_RE = re.compile(r"[a-z0-9']+")
_YEAR_RE = re.compile(r"\b\d{4}\b")
_PERSON_RE = re.compile(r"\b[A-Z][a-z]+ [A-Z][a-z]+\b")


def _words(text: str) -> List[str]:
    return _WORD_RE.findall(text.lower())


def _sentences(text: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_RE.split(text) if len(s.strip()) > MIN_SENTENCE_LENGTH]


def is_factual(sentence: str) -> bool:
    """Declarative statement without opinion markers."""
    words = set(_words(sentence))
    return bool(words & FACTUAL_WORDS) and not words & OPINION_WORDS


def is_event(text: str) -> bool:
    lowered = text.lower()
    return any(word in lowered for word in EVENT_WORDS)


def event_significance(text: str) -> float:
    lowered = text.lower()
    significance = 0.5
    if any(word in lowered for word in IMPORTANT_WORDS):
        significance += 0.3
    if any(word in lowered for word in VIVID_WORDS):
        significance += 0.2
    return min(significance, 1.0)


def time_of_day(hour: int) -> str:
    if hour < 6:
        return "night"
    if hour < 12:
        return "morning"
    if hour < 18:
        return "afternoon"
    if hour < 22:
        return "evening"
    return "night"


class MemoryContextTransformer(BaseContextTransformer[Dict[str, Any]]):
    """Transforms unified contexts into storable memory records.

    Output is a deterministic function of the input context, so repeated
    transformations of one context version produce identical records.
    """

    def __init__(self, options: Optional[TransformerOptions] = None, **kwargs: Any):
        super().__init__(
            transformer_id=MEMORY_TRANSFORMER_ID,
            target="memory",
            reversible=False,
            options=options,
            **kwargs,
        )

    def _derived_fields(self) -> List[str]:
        return DERIVED_FIELDS

    # Extraction

    def _extract(self, context: UnifiedContext) -> Dict[str, Any]:
        content = self.primary_content(context)
        emotions = self.emotions(context)
        memory_type = self.memory_type(context)
        importance = self.importance(context, emotions)

        return {
            "agent_id": context.agent_id,
            "session_id": context.session_id,
            "context_id": context.context_id,
            "timestamp": context.timestamp.isoformat(),
            "primary_content": content,
            "operation_type": self.operation_type(context),
            "summary": self.summary(content),
            "key_facts": [
                {
                    "id": f"fact_{index}",
                    "statement": sentence,
                    "confidence": 0.7,
                    "verifiable": bool(_YEAR_RE.search(sentence)),
                }
                for index, sentence in enumerate(_sentences(content))
                if is_factual(sentence)
            ],
            "events": [
                {
                    "id": f"event_{index}",
                    "description": message.content,
                    "timestamp": message.timestamp.isoformat(),
                    "participants": [message.sender],
                    "significance": event_significance(message.content),
                }
                for index, message in enumerate(context.messages)
                if is_event(message.content)
            ],
            "emotions": emotions,
            "decisions": [
                {
                    "decision": decision.get("description", ""),
                    "alternatives": list(decision.get("options", [])),
                    "outcome": "pending",
                }
                for decision in (context.cognition or {}).get("decisions", [])
            ],
            "memory_type": memory_type,
            "importance": importance,
            "persistence": self.persistence(context, importance),
            "related_memories": [
                {
                    "memory_id": memory.get("id", ""),
                    "relation": "similar",
                    "strength": clamp(memory.get("relevance", 0.0)),
                }
                for memory in (context.memory or {}).get("relevant_memories", [])
            ],
            "temporal_context": {
                "absolute_time": context.timestamp.isoformat(),
                "time_of_day": time_of_day(context.timestamp.hour),
                "sequence_position": context.version,
            },
            "search_tags": self.search_tags(context, content, memory_type, emotions),
            "semantic_vector": self.semantic_vector(content),
            "privacy_level": self.privacy_level(content),
            "compression_level": self.compression_level(content),
            "extracted_entities": [
                {
                    "text": match.group(0),
                    "type": "person",
                    "confidence": 0.7,
                    "start": match.start(),
                    "end": match.end(),
                }
                for match in _PERSON_RE.finditer(content)
            ],
            "key_phrases": self.key_phrases(content),
            "coherence": self.coherence(context),
            "completeness": self.completeness(context, emotions),
            "reliability": self.reliability(context),
            "indexing_hints": [
                {"field": "agent_id", "index_type": "hash", "priority": 1.0},
                {"field": "timestamp", "index_type": "btree", "priority": 0.9},
                {"field": "search_tags", "index_type": "fulltext", "priority": 0.8},
                {"field": "semantic_vector", "index_type": "vector", "priority": 0.7},
            ],
            "storage_hints": self.storage_hints(content, emotions),
        }

    @staticmethod
    def primary_content(context: UnifiedContext) -> str:
        """Recent messages as ``sender: content`` lines, or the context content."""
        if context.messages:
            return "\n".join(
                f"{m.sender}: {m.content}" for m in context.messages[-RECENT_MESSAGES:]
            )
        return context.content

    @staticmethod
    def operation_type(context: UnifiedContext) -> str:
        if (context.memory or {}).get("memory_queries"):
            return "retrieve"
        if context.messages:
            lowered = context.messages[-1].content.lower()
            for operation, cues in OPERATION_CUES:
                if any(cue in lowered for cue in cues):
                    return operation
        return "store"

    @staticmethod
    def summary(content: str) -> str:
        """First and last sentence; short content is kept whole."""
        sentences = _sentences(content)
        if len(sentences) <= 2:
            return content
        return f"{sentences[0]}. {sentences[-1]}."

    @staticmethod
    def emotions(context: UnifiedContext) -> List[Dict[str, Any]]:
        """Current emotion from the emotional enrichment, when one was measured."""
        emotional = context.enrichments.get(EMOTIONAL_CONTEXT_KEY) or {}
        current = emotional.get("current_emotion")
        if not emotional.get("available") or not current:
            return []
        name = current.get("emotion", "neutral")
        return [
            {
                "emotion": name,
                "intensity": clamp(current.get("intensity", 0.0)),
                "valence": VALENCE.get(name, 0.0),
            }
        ]

    @staticmethod
    def memory_type(context: UnifiedContext) -> str:
        if any(is_event(m.content) for m in context.messages):
            return "episodic"
        if any(is_factual(m.content) for m in context.messages):
            return "semantic"
        return "working"

    @staticmethod
    def importance(context: UnifiedContext, emotions: List[Dict[str, Any]]) -> float:
        """Importance in [0, 1] from emotion intensity, complexity and engagement."""
        importance = 0.5
        if emotions:
            importance += sum(e["intensity"] for e in emotions) / len(emotions) * 0.3
        importance += context.state.complexity * 0.2
        importance += context.state.engagement * 0.3
        return min(importance, 1.0)

    @staticmethod
    def persistence(context: UnifiedContext, importance: float) -> str:
        if importance > 0.8:
            return "long_term"
        if importance > 0.6:
            return "short_term"
        if len(context.messages) > 5:
            return "session"
        return "temporary"

    @staticmethod
    def search_tags(
        context: UnifiedContext,
        content: str,
        memory_type: str,
        emotions: List[Dict[str, Any]],
    ) -> List[str]:
        tags = [
            f"agent:{context.agent_id}",
            f"session:{context.session_id or 'none'}",
            f"type:{memory_type}",
            f"year:{context.timestamp.year}",
            f"month:{context.timestamp.month}",
            f"day:{context.timestamp.day}",
        ]
        tags.extend(f"emotion:{e['emotion']}" for e in emotions)
        words = [w for w in _words(content) if len(w) >= MIN_WORD_LENGTH]
        tags.extend(f"content:{w}" for w in words[:10])
        return list(dict.fromkeys(tags))

    @staticmethod
    def semantic_vector(content: str) -> List[float]:
        """Sign vector from a content digest; a stand-in for an embedding."""
        digest = hashlib.sha256(content.encode("utf-8")).digest()
        bits = int.from_bytes(digest[: SEMANTIC_VECTOR_SIZE // 8], "big")
        return [1.0 if (bits >> i) & 1 else -1.0 for i in range(SEMANTIC_VECTOR_SIZE)]

    @staticmethod
    def privacy_level(content: str) -> str:
        lowered = content.lower()
        if any(word in lowered for word in SENSITIVE_WORDS):
            return "confidential"
        return "private"

    @staticmethod
    def compression_level(content: str) -> str:
        size = len(content)
        if size > 5000:
            return "aggressive"
        if size > 2000:
            return "moderate"
        if size > 500:
            return "light"
        return "none"

    @staticmethod
    def key_phrases(content: str) -> List[Dict[str, Any]]:
        """Repeated words scored by relative frequency, best first."""
        words = _words(content)
        counts = Counter(w for w in words if len(w) >= MIN_WORD_LENGTH)
        phrases = [
            {"phrase": word, "score": count / len(words), "frequency": count}
            for word, count in counts.items()
            if count > 1
        ]
        phrases.sort(key=lambda p: (-p["score"], p["phrase"]))
        return phrases[:10]

    @staticmethod
    def coherence(context: UnifiedContext) -> float:
        """Mean word overlap (Jaccard) of consecutive messages."""
        if len(context.messages) < 2:
            return 1.0
        total = 0.0
        for previous, current in zip(context.messages, context.messages[1:]):
            a, b = set(_words(previous.content)), set(_words(current.content))
            total += len(a & b) / len(a | b) if a | b else 1.0
        return total / (len(context.messages) - 1)

    @staticmethod
    def completeness(context: UnifiedContext, emotions: List[Dict[str, Any]]) -> float:
        completeness = 0.5
        if context.messages:
            completeness += 0.2
        if emotions:
            completeness += 0.1
        if (context.cognition or {}).get("thoughts"):
            completeness += 0.1
        if context.environment.platform:
            completeness += 0.1
        return min(completeness, 1.0)

    @staticmethod
    def reliability(context: UnifiedContext) -> float:
        """State confidence discounted by how the content was obtained."""
        if context.messages:
            factor = 0.9
        elif (context.cognition or {}).get("reasoning_chain"):
            factor = 0.7
        else:
            factor = 0.8
        return context.state.confidence * factor

    @staticmethod
    def storage_hints(content: str, emotions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        hints = []
        if len(content) > 1000:
            hints.append({"hint": "Large content, consider compression", "impact": "space"})
        if emotions:
            hints.append(
                {"hint": "Emotional content, index for sentiment retrieval", "impact": "retrieval"}
            )
        return hints

    # Strategies

    def _apply_strategy(
        self, view: Dict[str, Any], strategy: TransformationStrategy
    ) -> Tuple[Dict[str, Any], Dict[str, int]]:
        if strategy == TransformationStrategy.FULL:
            return dict(view), {}

        output = {k: v for k, v in view.items() if k not in FULL_ONLY_FIELDS}

        if strategy == TransformationStrategy.MINIMAL:
            for name, limit in MINIMAL_LIMITS.items():
                output[name] = view[name][:limit]
            output["semantic_vector"] = view["semantic_vector"][:MINIMAL_VECTOR_SIZE]

        elif strategy == TransformationStrategy.OPTIMIZED:
            for name, (score_field, threshold, limit) in OPTIMIZED_FILTERS.items():
                output[name] = [item for item in view[name] if item[score_field] > threshold][
                    :limit
                ]
            output["compression_level"] = "moderate"

        dropped = {}
        for name in set(MINIMAL_LIMITS) | set(OPTIMIZED_FILTERS):
            removed = len(view[name]) - len(output[name])
            if removed:
                dropped[name] = removed
        return output, dropped

    # Validation

    def _validate_fields(self, transformed: Dict[str, Any]) -> List[ValidationIssue]:
        issues = []
        if not transformed.get("agent_id"):
            issues.append(
                ValidationIssue(
                    "agent_id", "Agent ID is required", ValidationSeverity.CRITICAL, "MISSING_AGENT_ID"
                )
            )
        if not transformed.get("primary_content"):
            issues.append(
                ValidationIssue(
                    "primary_content",
                    "Primary content is required",
                    ValidationSeverity.HIGH,
                    "MISSING_CONTENT",
                )
            )
        importance = transformed.get("importance")
        if not isinstance(importance, (int, float)) or not 0.0 <= importance <= 1.0:
            issues.append(
                ValidationIssue(
                    "importance",
                    "importance must be between 0 and 1",
                    ValidationSeverity.MEDIUM,
                    "INVALID_IMPORTANCE",
                )
            )
        if not transformed.get("semantic_vector"):
            issues.append(
                ValidationIssue(
                    "semantic_vector",
                    "Semantic vector recommended for retrieval",
                    ValidationSeverity.LOW,
                    "MISSING_VECTORS",
                )
            )
        return issues

    def get_capabilities(self) -> TransformerCapabilities:
        capabilities = super().get_capabilities()
        capabilities.details["lossy_strategies"] = [
            TransformationStrategy.MINIMAL.value,
            TransformationStrategy.OPTIMIZED.value,
        ]
        capabilities.details["dependencies"] = ["memory-provider"]
        return capabilities


def create_memory_transformer(
    options: Optional[TransformerOptions] = None,
) -> MemoryContextTransformer:
    """Build a memory transformer with the given defaults."""
    return MemoryContextTransformer(options=options)

"""Context data types for the Agent Context enrichment system.

``UnifiedContext`` is the accumulation target of a pipeline run. Enrichers
never write it: the pipeline merges their namespaced slices into
``enrichments`` in plan order once a run finishes. Module namespaces such as
``cognition`` and ``memory`` are populated by callers and read by
transformers.
"""

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, TypedDict


class DecisionData(TypedDict, total=False):
    """A decision the agent is working on."""

    id: str
    description: str
    options: List[str]


class GoalData(TypedDict, total=False):
    """A goal tracked by the agent."""

    id: str
    description: str
    priority: float
    deadline: Optional[datetime]


class PlanStepData(TypedDict, total=False):
    """One step of a plan."""

    id: str
    description: str
    dependencies: List[str]
    status: str


class PlanData(TypedDict, total=False):
    """A plan toward a goal."""

    id: str
    goal: str
    steps: List[PlanStepData]
    status: str


class ConstraintData(TypedDict, total=False):
    """A constraint on the agent's behaviour."""

    id: str
    type: str
    description: str
    severity: float


class CognitionData(TypedDict, total=False):
    """Cognition namespace of a unified context."""

    thoughts: List[str]
    reasoning_chain: List[str]
    decisions: List[DecisionData]
    goals: List[GoalData]
    plans: List[PlanData]
    constraints: List[ConstraintData]


class MemoryReferenceData(TypedDict, total=False):
    """Pointer to a memory relevant to the current interaction."""

    id: str
    type: str
    relevance: float
    last_accessed: datetime


class MemoryData(TypedDict, total=False):
    """Memory namespace of a unified context."""

    relevant_memories: List[MemoryReferenceData]
    memory_queries: List[str]


@dataclass
class ContextMessage:
    """A message exchanged during the interaction."""

    content: str
    sender: str = "user"
    recipient: Optional[str] = None
    message_type: str = "user"  # 'user', 'agent', 'system' or 'tool'
    timestamp: datetime = field(default_factory=datetime.now)
    message_id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass
class ContextState:
    """Conversation state scores, each in [0, 1]."""

    confidence: float = 0.5
    complexity: float = 0.0
    engagement: float = 0.5
    phase: str = "active"

    def __post_init__(self):
        """Clamp scores into range."""
        self.confidence = clamp(self.confidence)
        self.complexity = clamp(self.complexity)
        self.engagement = clamp(self.engagement)


@dataclass
class ContextEnvironment:
    """Where the agent is running and what it can do."""

    platform: Optional[str] = None
    capabilities: List[str] = field(default_factory=list)


@dataclass
class UnifiedContext:
    """Namespaced data bag assembled for one agent interaction."""

    agent_id: str
    session_id: Optional[str] = None
    context_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=datetime.now)
    last_modified: datetime = field(default_factory=datetime.now)
    version: int = 1
    content: str = ""
    messages: List[ContextMessage] = field(default_factory=list)
    state: ContextState = field(default_factory=ContextState)
    environment: ContextEnvironment = field(default_factory=ContextEnvironment)
    metadata: Dict[str, Any] = field(default_factory=dict)
    enrichments: Dict[str, Any] = field(default_factory=dict)
    cognition: Optional[CognitionData] = None
    memory: Optional[MemoryData] = None

    def merge_enrichment(self, enriched: Dict[str, Any]) -> List[str]:
        """Write an enricher's slice into the context.

        Top-level keys are replaced wholesale; keys not present in
        ``enriched`` are left untouched. Values are copied, so the context
        shares no nested data with the result it came from.

        Args:
            enriched: Namespaced keys produced by one enricher.

        Returns:
            Keys that overwrote a value written earlier.
        """
        overwritten = [key for key in enriched if key in self.enrichments]
        self.enrichments.update(copy.deepcopy(enriched))
        if enriched:
            self.touch()
        return overwritten

    def discard_enrichments(self, keys: Iterable[str]) -> List[str]:
        """Remove enrichment slices; returns the keys that were present."""
        removed = [key for key in dict.fromkeys(keys) if key in self.enrichments]
        for key in removed:
            del self.enrichments[key]
        if removed:
            self.touch()
        return removed

    def touch(self) -> None:
        """Bump the version after a mutation."""
        self.version += 1
        self.last_modified = datetime.now()

    def to_bag(self) -> Dict[str, Any]:
        """Flatten the context into the plain keyed bag enrichers consume."""
        bag: Dict[str, Any] = dict(self.metadata)
        bag.update(
            {
                "agent_id": self.agent_id,
                "context_id": self.context_id,
            }
        )
        if self.session_id:
            bag["session_id"] = self.session_id
        if self.content:
            bag["message"] = self.content
        elif self.messages:
            bag["message"] = self.messages[-1].content
        bag.update(self.enrichments)
        return bag

    def copy(self) -> "UnifiedContext":
        """Deep copy so callers can mutate without touching a cached context."""
        return copy.deepcopy(self)


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp a score into ``[low, high]``; NaN becomes ``low``."""
    if value != value:  # NaN
        return low
    return max(low, min(high, float(value)))

"""Narrow interfaces to the collaborators enrichers depend on.

Memory storage, the emotion module and the agent registry live outside
this package. Enrichers only see the protocols below; an in-process
memory provider is included for wiring and tests.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from agent_context.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class MemoryRecord:
    """A stored memory as returned by a memory provider."""

    id: str
    content: str
    type: str = "interaction"
    timestamp: datetime = field(default_factory=datetime.now)
    importance: float = 0.5
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def relevance_score(self) -> Optional[float]:
        """Provider-assigned relevance, if any."""
        score = self.metadata.get("relevance_score")
        return float(score) if isinstance(score, (int, float)) else None


@dataclass
class SearchQuery:
    """Memory search parameters."""

    query: str
    limit: int = 10
    types: Optional[List[str]] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None


@dataclass
class MemorySearchResult:
    """Outcome of a memory search."""

    success: bool
    memories: List[MemoryRecord] = field(default_factory=list)
    error: Optional[str] = None


@runtime_checkable
class MemoryProvider(Protocol):
    """Store that can be searched for an agent's memories."""

    async def search(self, agent_id: str, query: SearchQuery) -> MemorySearchResult:
        ...

    async def health_check(self) -> bool:
        ...


@dataclass
class EmotionState:
    """An emotion reading from the emotion module."""

    emotion: str
    intensity: float
    timestamp: datetime = field(default_factory=datetime.now)
    confidence: float = 0.0
    triggers: List[str] = field(default_factory=list)
    trigger: Optional[str] = None


@runtime_checkable
class EmotionModule(Protocol):
    """Source of current and historical emotion state."""

    def get_current_state(self) -> Optional[EmotionState]:
        ...

    def get_history(self, limit: int) -> List[EmotionState]:
        ...


@dataclass
class AgentSnapshot:
    """What the environment enricher needs to know about an agent."""

    id: str
    name: str = ""
    status: str = "unknown"
    active_modules: List[str] = field(default_factory=list)
    last_update: Optional[datetime] = None


# Zero-argument function returning the current agent, or None
AgentAccessor = Callable[[], Optional[AgentSnapshot]]
EmotionModuleAccessor = Callable[[], Optional[EmotionModule]]


class InMemoryMemoryProvider:
    """Process-local memory provider.

    Records are scored by word overlap with the query; the score is
    stored as ``relevance_score`` metadata on the returned copies.
    """

    def __init__(self):
        """Initialize an empty store."""
        self._records: Dict[str, List[MemoryRecord]] = {}

    def add(self, agent_id: str, record: MemoryRecord) -> None:
        """Store a memory for an agent."""
        self._records.setdefault(agent_id, []).append(record)

    def count(self, agent_id: str) -> int:
        """Number of memories stored for an agent."""
        return len(self._records.get(agent_id, []))

    async def search(self, agent_id: str, query: SearchQuery) -> MemorySearchResult:
        """Search an agent's memories.

        Args:
            agent_id: Owner of the memories.
            query: Search parameters; an empty query matches everything.

        Returns:
            Matching memories, newest first for empty queries and by
            relevance otherwise.
        """
        terms = {w for w in query.query.lower().split() if len(w) > 2}
        matches = []
        for record in self._records.get(agent_id, []):
            if query.types and record.type not in query.types:
                continue
            if query.since and record.timestamp < query.since:
                continue
            if query.until and record.timestamp > query.until:
                continue

            if terms:
                words = set(record.content.lower().split())
                overlap = len(terms & words) / len(terms)
                if overlap == 0:
                    continue
            else:
                overlap = 1.0

            scored = MemoryRecord(
                id=record.id,
                content=record.content,
                type=record.type,
                timestamp=record.timestamp,
                importance=record.importance,
                metadata={"relevance_score": round(overlap, 4), **record.metadata},
            )
            matches.append(scored)

        if terms:
            matches.sort(key=lambda m: m.relevance_score or 0.0, reverse=True)
        else:
            matches.sort(key=lambda m: m.timestamp, reverse=True)

        logger.debug(
            f"Memory search for {agent_id} returned {len(matches[: query.limit])} records"
        )
        return MemorySearchResult(success=True, memories=matches[: query.limit])

    async def health_check(self) -> bool:
        """The in-process store is always reachable."""
        return True

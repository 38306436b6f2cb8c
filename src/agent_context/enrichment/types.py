"""Data model of the enrichment pipeline.

Requests, per-enricher results, graph nodes, cache entries and the
aggregated execution result. Results are frozen once produced.
"""

import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Mapping, Optional

from agent_context.config.models import EnrichmentPriority, EnrichmentStage
from agent_context.context.types import UnifiedContext, clamp
from agent_context.utils.exceptions import EnrichmentErrorType


@dataclass(frozen=True)
class EnrichmentRequest:
    """One enrichment call.

    ``context`` is the caller's bag. The pipeline hands enrichers a
    read-only view of it, so the request is effectively immutable once
    dispatched.
    """

    agent_id: str
    context: Mapping[str, Any] = field(default_factory=dict)
    required_enrichers: Optional[List[str]] = None
    excluded_enrichers: List[str] = field(default_factory=list)
    timeout_ms: Optional[int] = None
    priority: EnrichmentPriority = EnrichmentPriority.MEDIUM
    cache_key: Optional[str] = None
    context_id: Optional[str] = None
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass(frozen=True)
class ContextSource:
    """Provenance of an enriched slice."""

    enricher_id: str
    timestamp: datetime
    confidence: float
    version: str = "1.0.0"

    def __post_init__(self):
        """Keep confidence within [0, 1]."""
        object.__setattr__(self, "confidence", clamp(self.confidence))


@dataclass(frozen=True)
class ContextEnrichmentResult:
    """One enricher's output."""

    success: bool
    enriched_context: Dict[str, Any] = field(default_factory=dict)
    sources: List[ContextSource] = field(default_factory=list)
    duration_ms: float = 0.0
    cached: bool = False
    error: Optional[str] = None
    error_type: Optional[EnrichmentErrorType] = None
    warnings: List[str] = field(default_factory=list)
    applicable: bool = True

    @property
    def confidence(self) -> float:
        """Mean confidence of the result's sources."""
        if not self.sources:
            return 0.0
        return sum(s.confidence for s in self.sources) / len(self.sources)


@dataclass
class DependencyGraphNode:
    """Scheduling unit derived from an enricher's configuration."""

    enricher_id: str
    stage: EnrichmentStage
    priority: EnrichmentPriority
    registration_index: int
    dependencies: List[str] = field(default_factory=list)
    dependents: List[str] = field(default_factory=list)
    required: bool = False

    @property
    def can_run_in_parallel(self) -> bool:
        """Nodes without dependencies may start as soon as their stage does."""
        return not self.dependencies

    @property
    def sort_key(self) -> tuple:
        """Stage, then priority, then registration order."""
        return (self.stage.order, int(self.priority), self.registration_index)


@dataclass
class EnrichmentCacheEntry:
    """Memoized enricher result."""

    key: str
    result: ContextEnrichmentResult
    created_at: float
    expires_at: float
    access_count: int = 0

    def is_valid(self, now: float) -> bool:
        """Valid strictly before ``expires_at``."""
        return now < self.expires_at


class EnricherStatus(str, Enum):
    """Outcome of one enricher within a run."""

    PENDING = "pending"
    EXECUTED = "executed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class EnrichmentError:
    """A per-request failure recorded against one enricher."""

    enricher_id: str
    error_type: EnrichmentErrorType
    message: str
    attempts: int = 0
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class TraceEntry:
    """What happened to one enricher during a run."""

    enricher_id: str
    stage: str
    status: EnricherStatus = EnricherStatus.PENDING
    started_at: Optional[datetime] = None
    duration_ms: float = 0.0
    attempts: int = 0
    cached: bool = False
    confidence: Optional[float] = None
    reason: Optional[str] = None


@dataclass
class PipelineTrace:
    """Stable per-context record consumed by external visualizers."""

    request_id: str
    agent_id: str
    context_id: str
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    entries: List[TraceEntry] = field(default_factory=list)

    def entry(self, enricher_id: str) -> Optional[TraceEntry]:
        """Look up the entry for an enricher."""
        for entry in self.entries:
            if entry.enricher_id == enricher_id:
                return entry
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with stable key names and ISO timestamps."""
        return {
            "request_id": self.request_id,
            "agent_id": self.agent_id,
            "context_id": self.context_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "entries": [
                {
                    "enricher_id": e.enricher_id,
                    "stage": e.stage,
                    "status": e.status.value,
                    "started_at": e.started_at.isoformat() if e.started_at else None,
                    "duration_ms": round(e.duration_ms, 3),
                    "attempts": e.attempts,
                    "cached": e.cached,
                    "confidence": e.confidence,
                    "reason": e.reason,
                }
                for e in self.entries
            ],
        }


@dataclass
class PipelineMetrics:
    """Timing figures for one run."""

    total_duration_ms: float = 0.0
    stage_durations_ms: Dict[str, float] = field(default_factory=dict)
    enricher_durations_ms: Dict[str, float] = field(default_factory=dict)
    parallel_executions: int = 0
    retries: int = 0


@dataclass
class PipelineExecutionResult:
    """Aggregated outcome of one pipeline run."""

    success: bool
    context: UnifiedContext
    enrichers_executed: List[str] = field(default_factory=list)
    enrichers_skipped: List[str] = field(default_factory=list)
    enrichers_failed: List[str] = field(default_factory=list)
    cache_hits: int = 0
    errors: List[EnrichmentError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    sources: List[ContextSource] = field(default_factory=list)
    metrics: PipelineMetrics = field(default_factory=PipelineMetrics)
    trace: Optional[PipelineTrace] = None
    timed_out: bool = False

    @property
    def enriched_context(self) -> Dict[str, Any]:
        """The merged namespaced bag."""
        return self.context.enrichments


@dataclass
class EnricherMetrics:
    """Running execution statistics for one enricher."""

    enricher_id: str
    window: int = 100
    execution_count: int = 0
    success_count: int = 0
    error_count: int = 0
    cache_hits: int = 0
    total_execution_time_ms: float = 0.0
    last_executed: Optional[datetime] = None
    recent_durations_ms: Deque[float] = field(default_factory=deque)

    def record(self, duration_ms: float, success: bool, cached: bool = False) -> None:
        """Record one invocation."""
        self.execution_count += 1
        self.total_execution_time_ms += duration_ms
        self.last_executed = datetime.now()
        if success:
            self.success_count += 1
        else:
            self.error_count += 1
        if cached:
            self.cache_hits += 1
        self.recent_durations_ms.append(duration_ms)
        while len(self.recent_durations_ms) > self.window:
            self.recent_durations_ms.popleft()

    @property
    def average_execution_time_ms(self) -> float:
        if self.execution_count == 0:
            return 0.0
        return self.total_execution_time_ms / self.execution_count

    @property
    def success_rate(self) -> float:
        if self.execution_count == 0:
            return 0.0
        return self.success_count / self.execution_count

    @property
    def cache_hit_rate(self) -> float:
        if self.execution_count == 0:
            return 0.0
        return self.cache_hits / self.execution_count

    def percentile(self, pct: float) -> float:
        """Nearest-rank percentile over the recent window."""
        if not self.recent_durations_ms:
            return 0.0
        ordered = sorted(self.recent_durations_ms)
        rank = max(0, min(len(ordered) - 1, int(round(pct / 100 * (len(ordered) - 1)))))
        return ordered[rank]

    def to_dict(self) -> Dict[str, Any]:
        """Summary suitable for logging and health reports."""
        return {
            "enricher_id": self.enricher_id,
            "execution_count": self.execution_count,
            "average_execution_time_ms": round(self.average_execution_time_ms, 3),
            "success_rate": round(self.success_rate, 4),
            "cache_hit_rate": round(self.cache_hit_rate, 4),
            "error_count": self.error_count,
            "last_executed": self.last_executed.isoformat() if self.last_executed else None,
            "p50_ms": self.percentile(50),
            "p95_ms": self.percentile(95),
            "p99_ms": self.percentile(99),
        }


@dataclass
class EnricherHealth:
    """Result of an enricher health check."""

    healthy: bool
    status: str
    details: Dict[str, Any] = field(default_factory=dict)
    last_check: datetime = field(default_factory=datetime.now)

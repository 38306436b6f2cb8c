"""Enrichment pipeline: data model, registry, scheduling, caching and events."""

from agent_context.enrichment.cache import EnrichmentCache, make_cache_key
from agent_context.enrichment.dependency_graph import DependencyGraph, GraphSpec
from agent_context.enrichment.events import EventChannel, PipelineEvent, PipelineEventType
from agent_context.enrichment.pipeline import EnrichmentPipeline
from agent_context.enrichment.registry import (
    EnricherMetadata,
    EnricherRegistration,
    EnricherRegistry,
)
from agent_context.enrichment.types import (
    ContextEnrichmentResult,
    ContextSource,
    DependencyGraphNode,
    EnricherHealth,
    EnricherMetrics,
    EnricherStatus,
    EnrichmentCacheEntry,
    EnrichmentError,
    EnrichmentRequest,
    PipelineExecutionResult,
    PipelineMetrics,
    PipelineTrace,
    TraceEntry,
)

__all__ = [
    "EnrichmentCache",
    "make_cache_key",
    "DependencyGraph",
    "GraphSpec",
    "EventChannel",
    "PipelineEvent",
    "PipelineEventType",
    "EnrichmentPipeline",
    "EnricherMetadata",
    "EnricherRegistration",
    "EnricherRegistry",
    "ContextEnrichmentResult",
    "ContextSource",
    "DependencyGraphNode",
    "EnricherHealth",
    "EnricherMetrics",
    "EnricherStatus",
    "EnrichmentCacheEntry",
    "EnrichmentError",
    "EnrichmentRequest",
    "PipelineExecutionResult",
    "PipelineMetrics",
    "PipelineTrace",
    "TraceEntry",
]

"""Configuration schema definitions for Agent Context.

This module defines Pydantic models for the enrichment pipeline, the
individual enrichers, the transformation layer and the runtime glue.
Every model forbids unknown keys so the option set of each component
stays explicit.
"""

from enum import Enum, IntEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class EnrichmentStage(str, Enum):
    """Ordered phases of a pipeline run."""

    PRE_PROCESSING = "pre_processing"
    CORE_ENRICHMENT = "core_enrichment"
    POST_PROCESSING = "post_processing"
    FINALIZATION = "finalization"

    @property
    def order(self) -> int:
        """Position of the stage within a run."""
        return _STAGE_ORDER.index(self)

    @classmethod
    def _missing_(cls, value: object) -> Optional["EnrichmentStage"]:
        """Handle case-insensitive stage names."""
        if isinstance(value, str):
            value_lower = value.lower()
            for member in cls:
                if member.value == value_lower or member.name.lower() == value_lower:
                    return member
        return None


_STAGE_ORDER = [
    EnrichmentStage.PRE_PROCESSING,
    EnrichmentStage.CORE_ENRICHMENT,
    EnrichmentStage.POST_PROCESSING,
    EnrichmentStage.FINALIZATION,
]


class EnrichmentPriority(IntEnum):
    """Scheduling priority; lower values run first."""

    CRITICAL = 0
    HIGH = 1
    MEDIUM = 2
    LOW = 3

    @classmethod
    def _missing_(cls, value: object) -> Optional["EnrichmentPriority"]:
        """Accept priority names such as ``"high"``."""
        if isinstance(value, str):
            name = value.strip().upper()
            if name in cls.__members__:
                return cls.__members__[name]
        return None


class TransformationStrategy(str, Enum):
    """How aggressively a transformer prunes its output."""

    FULL = "full"
    SELECTIVE = "selective"
    OPTIMIZED = "optimized"
    MINIMAL = "minimal"
    CACHED = "cached"

    @classmethod
    def _missing_(cls, value: object) -> Optional["TransformationStrategy"]:
        """Handle case-insensitive strategy names."""
        if isinstance(value, str):
            value_lower = value.lower()
            for member in cls:
                if member.value == value_lower:
                    return member
        return None


class EnricherConfig(BaseModel):
    """Policy for one enricher.

    Set at registration and optionally overridden when the pipeline
    is initialized.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    enabled: bool = Field(default=True, description="Whether the enricher runs")
    priority: EnrichmentPriority = Field(
        default=EnrichmentPriority.MEDIUM,
        description="Tie-break within a stage (CRITICAL runs first)",
    )
    stage: EnrichmentStage = Field(
        default=EnrichmentStage.CORE_ENRICHMENT,
        description="Stage the enricher belongs to",
    )
    timeout_ms: int = Field(
        default=5000, gt=0, description="Per-attempt timeout in milliseconds"
    )
    max_retries: int = Field(
        default=3, ge=0, description="Retries after the first failed attempt"
    )
    cache_enabled: bool = Field(default=True, description="Memoize results")
    cache_ttl_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Cache lifetime; falls back to the pipeline default when unset",
    )
    depends_on: list[str] = Field(
        default_factory=list,
        description="Enricher ids that must finish before this one starts",
    )
    required: bool = Field(
        default=False,
        description="A failure of a required enricher makes the run unsuccessful",
    )

    @field_validator("depends_on")
    @classmethod
    def validate_depends_on(cls, v: list[str]) -> list[str]:
        """Reject blank and duplicated dependency ids."""
        seen: list[str] = []
        for enricher_id in v:
            enricher_id = enricher_id.strip()
            if not enricher_id:
                raise ValueError("Dependency ids must be non-empty strings")
            if enricher_id in seen:
                raise ValueError(f"Duplicate dependency '{enricher_id}'")
            seen.append(enricher_id)
        return seen

    def with_overrides(self, overrides: Optional[dict[str, Any]]) -> "EnricherConfig":
        """Return a validated copy with the given fields replaced."""
        if not overrides:
            return self
        return EnricherConfig.model_validate({**self.model_dump(), **overrides})


class RetryPolicy(BaseModel):
    """Backoff between sequential retries of one enricher."""

    model_config = ConfigDict(extra="forbid")

    base_delay_ms: float = Field(default=100.0, ge=0)
    max_delay_ms: float = Field(default=2000.0, ge=0)
    exponential: bool = Field(
        default=True, description="Double the delay after every failed attempt"
    )
    jitter: bool = Field(default=False)


class PipelineConfig(BaseModel):
    """Configuration for the enrichment pipeline."""

    model_config = ConfigDict(extra="forbid")

    max_concurrency: int = Field(
        default=5, ge=1, description="Enrichers allowed to run at the same time"
    )
    default_timeout_ms: int = Field(
        default=5000, gt=0, description="Request timeout when none is given"
    )
    enable_caching: bool = Field(default=True)
    cache_ttl_seconds: float = Field(default=300.0, gt=0)
    cache_max_size: int = Field(default=1000, ge=1)
    cache_time_bucket_seconds: int = Field(
        default=60,
        ge=1,
        description="Granularity of the time component of cache keys",
    )
    enable_metrics: bool = Field(default=True)
    metrics_window: int = Field(
        default=100, ge=1, description="Recent durations kept for percentiles"
    )
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    circuit_failure_threshold: int = Field(default=5, ge=1)
    circuit_recovery_seconds: float = Field(default=60.0, gt=0)
    enricher_overrides: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description="Per-enricher EnricherConfig fields applied at initialization",
    )


class MemoryEnricherOptions(BaseModel):
    """Options for the memory enricher."""

    model_config = ConfigDict(extra="forbid")

    max_memories: int = Field(default=10, ge=1)
    search_radius_days: int = Field(default=30, ge=1)
    relevance_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    include_temporal_context: bool = Field(default=True)
    memory_types: list[str] = Field(
        default_factory=list, description="Restrict results to these types"
    )


class TemporalEnricherOptions(BaseModel):
    """Options for the temporal enricher."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    business_hours_start: str = Field(default="09:00")
    business_hours_end: str = Field(default="17:00")
    business_days: list[int] = Field(
        default_factory=lambda: [1, 2, 3, 4, 5],
        description="ISO weekdays, Monday is 1",
    )
    timezone: str = Field(default="UTC")
    include_seasonal_context: bool = Field(default=True)
    include_relative_time: bool = Field(default=True)
    include_chronological_markers: bool = Field(default=True)
    session_tracking_enabled: bool = Field(default=True)
    new_session_threshold_seconds: float = Field(default=300.0, gt=0)
    session_retention_seconds: float = Field(default=86400.0, gt=0)

    @field_validator("business_hours_start", "business_hours_end")
    @classmethod
    def validate_clock_time(cls, v: str) -> str:
        """Require HH:MM on a 24 hour clock."""
        try:
            hours, minutes = (int(part) for part in v.split(":"))
        except ValueError as e:
            raise ValueError(f"Expected HH:MM, got '{v}'") from e
        if not (0 <= hours <= 23 and 0 <= minutes <= 59):
            raise ValueError(f"Expected HH:MM, got '{v}'")
        return f"{hours:02d}:{minutes:02d}"

    @field_validator("business_days")
    @classmethod
    def validate_business_days(cls, v: list[int]) -> list[int]:
        """Keep ISO weekdays only."""
        for day in v:
            if day < 1 or day > 7:
                raise ValueError(f"Business day {day} is not an ISO weekday (1-7)")
        return sorted(set(v))


class EmotionalEnricherOptions(BaseModel):
    """Options for the emotional enricher."""

    model_config = ConfigDict(extra="forbid")

    history_depth: int = Field(default=10, ge=1)
    emotion_relevance_threshold: float = Field(default=0.2, ge=0.0, le=1.0)
    volatility_window_seconds: float = Field(default=300.0, gt=0)


class SocialEnricherOptions(BaseModel):
    """Options for the social enricher."""

    model_config = ConfigDict(extra="forbid")

    max_relationships: int = Field(default=20, ge=1)
    max_conversation_history: int = Field(default=10, ge=1)
    relationship_decay_days: int = Field(default=30, ge=1)
    relationship_cache_ttl_seconds: float = Field(default=120.0, gt=0)


class EnvironmentEnricherOptions(BaseModel):
    """Options for the environment enricher."""

    model_config = ConfigDict(extra="forbid")

    metrics_refresh_seconds: float = Field(
        default=30.0, ge=0, description="Minimum age before system metrics are re-read"
    )
    include_system_metrics: bool = Field(default=True)
    include_agent_info: bool = Field(default=True)
    include_runtime_info: bool = Field(default=True)


class TransformerOptions(BaseModel):
    """Defaults applied to transformation calls."""

    model_config = ConfigDict(extra="forbid")

    default_strategy: TransformationStrategy = Field(
        default=TransformationStrategy.SELECTIVE
    )
    cache_enabled: bool = Field(default=False)
    cache_max_size: int = Field(default=256, ge=1)
    validate_output: bool = Field(default=True)


class RuntimeAdapterOptions(BaseModel):
    """Options for the per-agent context cache."""

    model_config = ConfigDict(extra="forbid")

    context_retention_seconds: float = Field(default=3600.0, gt=0)
    sweep_interval_seconds: float = Field(default=60.0, gt=0)


class BootstrapOptions(BaseModel):
    """Options for the context bootstrapper."""

    model_config = ConfigDict(extra="forbid")

    enabled_enrichers: list[str] = Field(
        default_factory=lambda: [
            "temporal",
            "environment",
            "memory",
            "emotional",
            "social",
        ]
    )
    enable_timers: bool = Field(
        default=True, description="Run periodic health and performance checks"
    )
    health_check_interval_seconds: float = Field(default=60.0, gt=0)
    performance_check_interval_seconds: float = Field(default=300.0, gt=0)


class ContextSystemConfig(BaseModel):
    """Root configuration model for Agent Context.

    This model represents the complete configuration loaded from
    the YAML file.
    """

    model_config = ConfigDict(extra="forbid")

    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    memory: MemoryEnricherOptions = Field(default_factory=MemoryEnricherOptions)
    temporal: TemporalEnricherOptions = Field(default_factory=TemporalEnricherOptions)
    emotional: EmotionalEnricherOptions = Field(
        default_factory=EmotionalEnricherOptions
    )
    social: SocialEnricherOptions = Field(default_factory=SocialEnricherOptions)
    environment: EnvironmentEnricherOptions = Field(
        default_factory=EnvironmentEnricherOptions
    )
    transformer: TransformerOptions = Field(default_factory=TransformerOptions)
    runtime: RuntimeAdapterOptions = Field(default_factory=RuntimeAdapterOptions)
    bootstrap: BootstrapOptions = Field(default_factory=BootstrapOptions)

    @model_validator(mode="after")
    def validate_overrides_target_enabled(self) -> "ContextSystemConfig":
        """Ensure overrides only name enrichers the bootstrapper will register."""
        unknown = set(self.pipeline.enricher_overrides) - set(
            self.bootstrap.enabled_enrichers
        )
        if unknown:
            raise ValueError(
                f"Overrides reference enrichers that are not enabled: {sorted(unknown)}"
            )
        return self

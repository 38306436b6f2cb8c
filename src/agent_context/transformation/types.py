"""Data model of the transformation layer."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from agent_context.config.models import TransformationStrategy

T = TypeVar("T")


class ValidationSeverity(str, Enum):
    """How serious a validation issue is."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ValidationConfig(BaseModel):
    """Validation policy for transformed contexts."""

    model_config = ConfigDict(extra="forbid")

    strict: bool = Field(
        default=False, description="Treat warnings as errors"
    )
    min_score: float = Field(
        default=0.0, ge=0.0, le=1.0, description="Lowest score still considered valid"
    )


class TransformationConfig(BaseModel):
    """Per-call transformation options."""

    model_config = ConfigDict(extra="forbid")

    strategy: Optional[TransformationStrategy] = Field(
        default=None, description="Strategy; the transformer default when unset"
    )
    cache_enabled: Optional[bool] = Field(
        default=None, description="Memoize the result; the transformer default when unset"
    )
    validate_output: Optional[bool] = Field(
        default=None, description="Validate the output; the transformer default when unset"
    )
    validation: ValidationConfig = Field(default_factory=ValidationConfig)


@dataclass(frozen=True)
class ValidationIssue:
    """One field-level finding."""

    field: str
    message: str
    severity: ValidationSeverity
    code: str


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating a transformed context. Never raised."""

    valid: bool
    score: float
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class TransformationMetadata:
    """What a transformation kept, dropped and derived.

    ``items_dropped`` counts source items removed from list fields by the
    strategy; a non-empty mapping means the output cannot be reversed.
    """

    transformer_id: str
    transformer_version: str
    strategy: TransformationStrategy
    source_context_id: str
    source_version: int
    input_size: int
    output_size: int
    fields_transformed: List[str] = field(default_factory=list)
    fields_dropped: List[str] = field(default_factory=list)
    fields_added: List[str] = field(default_factory=list)
    items_dropped: Dict[str, int] = field(default_factory=dict)
    validation_passed: bool = True
    cache_hit: bool = False
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def lossy(self) -> bool:
        return bool(self.items_dropped)


@dataclass(frozen=True)
class TransformationPerformance:
    """Cost figures of one transformation."""

    duration_ms: float = 0.0
    memory_delta_bytes: int = 0
    compression_ratio: float = 0.0
    throughput: float = 0.0  # output bytes per millisecond


@dataclass(frozen=True)
class TransformationResult(Generic[T]):
    """One transform call."""

    success: bool
    transformed_context: Optional[T]
    strategy: TransformationStrategy
    metadata: Optional[TransformationMetadata] = None
    performance: TransformationPerformance = field(default_factory=TransformationPerformance)
    reversible: bool = False
    cached: bool = False
    validation: Optional[ValidationResult] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class TransformerCapabilities:
    """What a transformer supports."""

    target: str
    strategies: List[TransformationStrategy]
    reversible: bool
    cacheable: bool = True
    streamable: bool = False
    batchable: bool = True
    max_input_size: int = 10 * 1024 * 1024
    min_input_size: int = 0
    supported_formats: List[str] = field(default_factory=lambda: ["json"])
    details: Dict[str, Any] = field(default_factory=dict)

"""Context transformation: strategy-driven conversion of unified contexts."""

from agent_context.transformation.base import BaseContextTransformer, serialized_size
from agent_context.transformation.cognition import (
    CognitionContextTransformer,
    create_cognition_transformer,
)
from agent_context.transformation.memory import (
    MemoryContextTransformer,
    create_memory_transformer,
)
from agent_context.transformation.types import (
    TransformationConfig,
    TransformationMetadata,
    TransformationPerformance,
    TransformationResult,
    TransformerCapabilities,
    ValidationConfig,
    ValidationIssue,
    ValidationResult,
    ValidationSeverity,
)

__all__ = [
    "BaseContextTransformer",
    "serialized_size",
    "CognitionContextTransformer",
    "create_cognition_transformer",
    "MemoryContextTransformer",
    "create_memory_transformer",
    "TransformationConfig",
    "TransformationMetadata",
    "TransformationPerformance",
    "TransformationResult",
    "TransformerCapabilities",
    "ValidationConfig",
    "ValidationIssue",
    "ValidationResult",
    "ValidationSeverity",
]

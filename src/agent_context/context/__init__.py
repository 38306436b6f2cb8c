"""Unified context model shared by enrichers and transformers."""

from .types import (
    CognitionData,
    ContextEnvironment,
    ContextMessage,
    ContextState,
    MemoryData,
    UnifiedContext,
    clamp,
)

__all__ = [
    "CognitionData",
    "ContextEnvironment",
    "ContextMessage",
    "ContextState",
    "MemoryData",
    "UnifiedContext",
    "clamp",
]

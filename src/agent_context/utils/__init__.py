"""Utility functions and helpers for Agent Context.

This module contains shared utilities including logging setup,
custom exceptions, and retry helpers.
"""

from .logging import setup_logging, get_logger
from .exceptions import (
    AgentContextError,
    ConfigurationError,
    CircularDependencyError,
    EnricherNotFoundError,
    EnrichmentTimeoutError,
    ResourceUnavailableError,
    DependencyFailedError,
    ValidationError,
    ReversalError,
    EnricherStateError,
    EnrichmentErrorType,
    classify_error,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "AgentContextError",
    "ConfigurationError",
    "CircularDependencyError",
    "EnricherNotFoundError",
    "EnrichmentTimeoutError",
    "ResourceUnavailableError",
    "DependencyFailedError",
    "ValidationError",
    "ReversalError",
    "EnricherStateError",
    "EnrichmentErrorType",
    "classify_error",
]

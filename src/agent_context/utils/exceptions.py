"""Custom exceptions for Agent Context.

This module defines the error taxonomy used by the enrichment pipeline,
the enrichers and the transformation layer. Every exception carries an
``error_type`` so per-request failures can be recorded uniformly.
"""

import asyncio
from enum import Enum
from typing import Optional, Any


class EnrichmentErrorType(str, Enum):
    """Categories of enrichment failures."""

    TIMEOUT = "TIMEOUT"
    DEPENDENCY_FAILED = "DEPENDENCY_FAILED"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    RESOURCE_UNAVAILABLE = "RESOURCE_UNAVAILABLE"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    CIRCULAR_DEPENDENCY = "CIRCULAR_DEPENDENCY"
    ENRICHER_NOT_FOUND = "ENRICHER_NOT_FOUND"


class AgentContextError(Exception):
    """Base exception for all Agent Context errors.

    All custom exceptions in the package inherit from this class
    to allow for easy catching of package-specific errors.
    """

    error_type: EnrichmentErrorType = EnrichmentErrorType.RESOURCE_UNAVAILABLE

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        """Initialize the exception.

        Args:
            message: Error message.
            details: Optional dictionary with additional error details.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigurationError(AgentContextError):
    """Raised when there's an error in configuration.

    This includes invalid enricher options, unreadable YAML files and
    required context keys that no registered enricher provides.
    """

    error_type = EnrichmentErrorType.CONFIGURATION_ERROR


class CircularDependencyError(ConfigurationError):
    """Raised when the enricher dependency graph contains a cycle."""

    error_type = EnrichmentErrorType.CIRCULAR_DEPENDENCY

    def __init__(
        self,
        message: str,
        cycle: Optional[list[str]] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        """Initialize circular dependency error.

        Args:
            message: Error message.
            cycle: Enricher ids forming the cycle, first id repeated at the end.
            details: Additional error details.
        """
        super().__init__(message, details)
        self.cycle = cycle or []


class EnricherNotFoundError(AgentContextError):
    """Raised when an enricher id is not registered."""

    error_type = EnrichmentErrorType.ENRICHER_NOT_FOUND

    def __init__(
        self,
        message: str,
        enricher_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        """Initialize enricher not found error.

        Args:
            message: Error message.
            enricher_id: The id that could not be resolved.
            details: Additional error details.
        """
        super().__init__(message, details)
        self.enricher_id = enricher_id


class EnrichmentTimeoutError(AgentContextError):
    """Raised when an enricher or a whole run exceeds its time budget."""

    error_type = EnrichmentErrorType.TIMEOUT

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        """Initialize timeout error.

        Args:
            message: Error message.
            operation: Operation that timed out.
            timeout_seconds: Timeout duration in seconds.
            details: Additional error details.
        """
        super().__init__(message, details)
        self.operation = operation
        self.timeout_seconds = timeout_seconds


class ResourceUnavailableError(AgentContextError):
    """Raised when an external collaborator cannot be reached."""

    error_type = EnrichmentErrorType.RESOURCE_UNAVAILABLE


class DependencyFailedError(AgentContextError):
    """Raised when an enricher cannot run because a dependency failed."""

    error_type = EnrichmentErrorType.DEPENDENCY_FAILED


class ValidationError(AgentContextError):
    """Raised when validation fails.

    This includes invalid enricher results and malformed contexts
    handed to a transformer.
    """

    error_type = EnrichmentErrorType.VALIDATION_FAILED

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        """Initialize validation error.

        Args:
            message: Error message.
            field: Field that failed validation.
            value: Value that failed validation.
            details: Additional error details.
        """
        super().__init__(message, details)
        self.field = field
        self.value = value


class ReversalError(ValidationError):
    """Raised when a transformed context cannot be reversed losslessly."""


class EnricherStateError(AgentContextError):
    """Raised when an enricher or the system is used outside its lifecycle.

    For example enriching before ``initialize`` or after ``dispose``, or
    registering an agent before the bootstrapper is initialized.
    """

    error_type = EnrichmentErrorType.RESOURCE_UNAVAILABLE


def classify_error(error: BaseException) -> EnrichmentErrorType:
    """Map an exception onto the enrichment error taxonomy.

    Args:
        error: Any exception raised while enriching.

    Returns:
        The matching error type; unknown exceptions count as
        RESOURCE_UNAVAILABLE.
    """
    if isinstance(error, AgentContextError):
        return error.error_type
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return EnrichmentErrorType.TIMEOUT
    return EnrichmentErrorType.RESOURCE_UNAVAILABLE

"""Base class for context enrichers.

Every enricher follows the same lifecycle: Uninitialized -> Initialized ->
(Enriching)* -> Disposed. Subclasses supply the domain logic through
``_do_enrich`` and declare their static key contract through
``get_provided_keys`` and ``get_required_keys``; this class handles
config validation, operability checks, provenance and timing.
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from agent_context.config.loader import format_validation_errors
from agent_context.config.models import EnricherConfig
from agent_context.context.types import clamp
from agent_context.enrichment.types import (
    ContextEnrichmentResult,
    ContextSource,
    EnricherHealth,
    EnrichmentRequest,
)
from agent_context.utils.exceptions import (
    ConfigurationError,
    EnricherStateError,
    ValidationError,
)
from agent_context.utils.logging import get_logger


class EnricherLifecycle(str, Enum):
    """Lifecycle states of an enricher."""

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    DISPOSED = "disposed"


class BaseContextEnricher(ABC):
    """Abstract base class for all context enrichers.

    Key responsibilities:
    - Validate policy on ``initialize`` and run enricher-specific setup
    - Refuse to enrich unless enabled, initialized and not disposed
    - Wrap domain output with provenance ``{enricher_id, timestamp, confidence}``
    - Report health and release resources on ``dispose``
    """

    def __init__(
        self,
        enricher_id: str,
        name: str,
        version: str = "1.0.0",
        config: Optional[EnricherConfig] = None,
    ):
        """Initialize the enricher.

        Args:
            enricher_id: Unique id, also the registry key
            name: Human-readable name
            version: Enricher version recorded in provenance
            config: Policy; subclasses pass their defaults here
        """
        self.enricher_id = enricher_id
        self.name = name
        self.version = version
        self.config = config or EnricherConfig()
        self.lifecycle = EnricherLifecycle.UNINITIALIZED
        self.logger = get_logger(f"agent_context.enrichers.{enricher_id}")

    # Static contract

    @abstractmethod
    def get_provided_keys(self) -> List[str]:
        """Top-level context keys this enricher writes."""

    def get_required_keys(self) -> List[str]:
        """Context keys that must be produced by other enrichers first."""
        return []

    # Lifecycle

    async def initialize(
        self, config: Optional[Union[EnricherConfig, Mapping[str, Any]]] = None
    ) -> None:
        """Validate the policy and run enricher-specific setup.

        Args:
            config: Replacement policy; keeps the current one when omitted

        Raises:
            ConfigurationError: If the policy is invalid or setup fails
            EnricherStateError: If the enricher was already disposed
        """
        if self.lifecycle == EnricherLifecycle.DISPOSED:
            raise EnricherStateError(
                f"Enricher '{self.enricher_id}' cannot be initialized after dispose"
            )

        self.config = self._validate_config(config if config is not None else self.config)

        try:
            await self._do_initialize()
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(
                f"Enricher '{self.enricher_id}' failed to initialize: {e}",
                details={"enricher_id": self.enricher_id},
            ) from e

        self.lifecycle = EnricherLifecycle.INITIALIZED
        self.logger.info(f"{self.name} initialized")

    def _validate_config(
        self, config: Union[EnricherConfig, Mapping[str, Any]]
    ) -> EnricherConfig:
        """Re-validate a policy so copies built without validation are caught."""
        raw = config.model_dump() if isinstance(config, EnricherConfig) else dict(config)
        try:
            return EnricherConfig.model_validate(raw)
        except PydanticValidationError as e:
            raise ConfigurationError(
                f"Invalid configuration for enricher '{self.enricher_id}': "
                f"{format_validation_errors(e)}",
                details={"enricher_id": self.enricher_id},
            ) from e

    async def dispose(self) -> None:
        """Release resources. Safe to call more than once."""
        if self.lifecycle == EnricherLifecycle.DISPOSED:
            return
        try:
            await self._do_dispose()
        finally:
            self.lifecycle = EnricherLifecycle.DISPOSED
            self.logger.debug(f"{self.name} disposed")

    @property
    def is_initialized(self) -> bool:
        return self.lifecycle == EnricherLifecycle.INITIALIZED

    def is_operational(self) -> bool:
        """Enabled, initialized and not disposed."""
        return self.config.enabled and self.lifecycle == EnricherLifecycle.INITIALIZED

    # Enrichment

    def can_enrich(self, context: Mapping[str, Any]) -> bool:
        """Whether this enricher applies to the given context."""
        try:
            return self._do_can_enrich(context)
        except Exception as e:
            self.logger.warning(f"{self.name} applicability check failed: {e}")
            return False

    async def enrich(self, request: EnrichmentRequest) -> ContextEnrichmentResult:
        """Run the enricher for one request.

        Args:
            request: The request; its context is treated as read-only

        Returns:
            A successful result, or an inapplicable one when
            ``can_enrich`` rejects the context

        Raises:
            EnricherStateError: If the enricher is not operational
            ValidationError: If the output uses undeclared keys
            Exception: Whatever the domain logic raises
        """
        if not self.is_operational():
            raise EnricherStateError(
                f"Enricher '{self.enricher_id}' is not operational "
                f"(enabled={self.config.enabled}, state={self.lifecycle.value})",
                details={"enricher_id": self.enricher_id},
            )

        if not self.can_enrich(request.context):
            return ContextEnrichmentResult(
                success=False,
                applicable=False,
                warnings=[f"{self.name} does not apply to this context"],
            )

        start = time.perf_counter()
        enriched = await self._do_enrich(request)
        duration_ms = (time.perf_counter() - start) * 1000

        undeclared = sorted(set(enriched) - set(self.get_provided_keys()))
        if undeclared:
            raise ValidationError(
                f"Enricher '{self.enricher_id}' produced undeclared keys: {undeclared}",
                field="enriched_context",
                value=undeclared,
            )

        confidence = clamp(self.calculate_confidence(request.context, enriched))
        self.logger.debug(
            f"{self.name} enriched context for {request.agent_id} "
            f"in {duration_ms:.1f}ms (confidence {confidence:.2f})"
        )

        return ContextEnrichmentResult(
            success=True,
            enriched_context=enriched,
            sources=[
                ContextSource(
                    enricher_id=self.enricher_id,
                    timestamp=datetime.now(),
                    confidence=confidence,
                    version=self.version,
                )
            ],
            duration_ms=duration_ms,
        )

    async def health_check(self) -> EnricherHealth:
        """Report whether the enricher and its collaborators are usable."""
        if self.lifecycle != EnricherLifecycle.INITIALIZED:
            return EnricherHealth(healthy=False, status=self.lifecycle.value)
        try:
            details = await self._do_health_check()
        except Exception as e:
            self.logger.warning(f"{self.name} health check failed: {e}")
            return EnricherHealth(healthy=False, status="error", details={"error": str(e)})

        healthy = bool(details.pop("healthy", True))
        return EnricherHealth(
            healthy=healthy,
            status="healthy" if healthy else "unhealthy",
            details=details,
        )

    def sweep(self) -> int:
        """Reclaim long-lived local state; returns the number of entries removed."""
        return 0

    def get_cache_inputs(self, context: Mapping[str, Any]) -> Dict[str, Any]:
        """Inputs that determine this enricher's output, used for cache keys."""
        return dict(context)

    def calculate_confidence(
        self, context: Mapping[str, Any], enriched: Mapping[str, Any]
    ) -> float:
        """Weigh enriched-data volume against the size of the base context."""
        enriched_volume = _count_values(enriched)
        base_volume = _count_values(context)
        if enriched_volume == 0:
            return 0.0
        return clamp(0.3 + 0.7 * enriched_volume / (enriched_volume + base_volume))

    # Hooks for subclasses

    async def _do_initialize(self) -> None:
        """Enricher-specific setup."""

    @abstractmethod
    async def _do_enrich(self, request: EnrichmentRequest) -> Dict[str, Any]:
        """Produce the enricher's namespaced slice of context."""

    def _do_can_enrich(self, context: Mapping[str, Any]) -> bool:
        return True

    async def _do_health_check(self) -> Dict[str, Any]:
        """Enricher-specific health details; set ``healthy`` to False to fail."""
        return {}

    async def _do_dispose(self) -> None:
        """Enricher-specific cleanup."""


def _count_values(data: Any) -> int:
    """Number of leaf values in nested mappings and sequences."""
    if isinstance(data, Mapping):
        return sum(_count_values(v) for v in data.values())
    if isinstance(data, (list, tuple, set)):
        return sum(_count_values(v) for v in data)
    return 1

"""Enricher registry.

Holds enricher factories together with their default configuration and
descriptive metadata. The registry is an ordinary object: it is created
at startup, passed to the pipeline, and cleared at shutdown.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from agent_context.config.models import EnricherConfig
from agent_context.utils.exceptions import ConfigurationError, EnricherNotFoundError
from agent_context.utils.logging import get_logger

if TYPE_CHECKING:
    from agent_context.enrichers.base import BaseContextEnricher

logger = get_logger(__name__)


EnricherFactory = Callable[[EnricherConfig], "BaseContextEnricher"]


@dataclass
class EnricherMetadata:
    """Descriptive information about a registered enricher."""

    name: str = ""
    version: str = "1.0.0"
    description: str = ""
    author: str = ""
    tags: List[str] = field(default_factory=list)


@dataclass
class EnricherRegistration:
    """One registry entry."""

    enricher_id: str
    factory: EnricherFactory
    default_config: EnricherConfig
    metadata: EnricherMetadata
    registration_index: int


class EnricherRegistry:
    """Registry of enricher factories.

    Registration order is preserved and used as the final scheduling
    tie-break, so two pipelines built from the same registry always
    plan identically.
    """

    def __init__(self):
        """Initialize an empty enricher registry."""
        self._entries: Dict[str, EnricherRegistration] = {}
        self._registration_order: List[str] = []
        self._counter = 0

        logger.debug("Initialized empty EnricherRegistry")

    def register(
        self,
        enricher_id: str,
        factory: EnricherFactory,
        default_config: Optional[EnricherConfig] = None,
        metadata: Optional[EnricherMetadata] = None,
    ) -> EnricherRegistration:
        """Register an enricher factory.

        Args:
            enricher_id: Unique id for the enricher
            factory: Callable building an enricher from its config
            default_config: Policy used unless overridden at pipeline init
            metadata: Optional descriptive metadata

        Returns:
            The stored registration

        Raises:
            ValueError: If the id is blank or already registered
            TypeError: If factory is not callable
        """
        if not isinstance(enricher_id, str) or not enricher_id.strip():
            raise ValueError("Enricher id must be a non-empty string")

        if not callable(factory):
            raise TypeError(f"Enricher factory must be callable, got {type(factory)}")

        if enricher_id in self._entries:
            raise ValueError(f"Enricher '{enricher_id}' is already registered")

        registration = EnricherRegistration(
            enricher_id=enricher_id,
            factory=factory,
            default_config=default_config or EnricherConfig(),
            metadata=metadata or EnricherMetadata(name=enricher_id),
            registration_index=self._counter,
        )
        self._counter += 1
        self._entries[enricher_id] = registration
        self._registration_order.append(enricher_id)

        logger.debug(f"Registered enricher '{enricher_id}'")
        return registration

    def unregister(self, enricher_id: str) -> EnricherRegistration:
        """Remove an enricher from the registry.

        Raises:
            EnricherNotFoundError: If the id is not registered
        """
        registration = self.get(enricher_id)
        del self._entries[enricher_id]
        self._registration_order.remove(enricher_id)
        logger.debug(f"Unregistered enricher '{enricher_id}'")
        return registration

    def get(self, enricher_id: str) -> EnricherRegistration:
        """Look up a registration.

        Raises:
            EnricherNotFoundError: If the id is not registered
        """
        if enricher_id not in self._entries:
            available = ", ".join(self._registration_order) or "none"
            raise EnricherNotFoundError(
                f"Enricher '{enricher_id}' not found. Available: {available}",
                enricher_id=enricher_id,
            )
        return self._entries[enricher_id]

    def has(self, enricher_id: str) -> bool:
        """Check whether an id is registered."""
        return enricher_id in self._entries

    def list_ids(self) -> List[str]:
        """Registered ids in registration order."""
        return list(self._registration_order)

    def get_metadata(self, enricher_id: str) -> EnricherMetadata:
        """Metadata of a registered enricher."""
        return self.get(enricher_id).metadata

    def resolve_config(
        self, enricher_id: str, overrides: Optional[Dict[str, Any]] = None
    ) -> EnricherConfig:
        """Default config of an enricher with overrides applied.

        Raises:
            ConfigurationError: If the overrides do not validate
        """
        registration = self.get(enricher_id)
        try:
            return registration.default_config.with_overrides(overrides)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid overrides for enricher '{enricher_id}': {e}",
                details={"enricher_id": enricher_id},
            ) from e

    def create(
        self, enricher_id: str, overrides: Optional[Dict[str, Any]] = None
    ) -> "BaseContextEnricher":
        """Instantiate an enricher from its factory.

        Args:
            enricher_id: Registered id
            overrides: EnricherConfig fields replacing the defaults

        Returns:
            A new, uninitialized enricher
        """
        config = self.resolve_config(enricher_id, overrides)
        enricher = self._entries[enricher_id].factory(config)
        if enricher.enricher_id != enricher_id:
            raise ConfigurationError(
                f"Factory for '{enricher_id}' built enricher '{enricher.enricher_id}'",
                details={"enricher_id": enricher_id},
            )
        return enricher

    def clear(self) -> None:
        """Remove every registration."""
        self._entries.clear()
        self._registration_order.clear()
        logger.debug("Cleared enricher registry")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, enricher_id: object) -> bool:
        return enricher_id in self._entries

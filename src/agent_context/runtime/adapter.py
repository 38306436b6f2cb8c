"""Runtime context adapter.

Owns the per-agent ``UnifiedContext`` between interactions: creates it on
first use, runs the enrichment pipeline against it, hands it to
transformers and reclaims contexts that have been idle longer than the
retention period.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from agent_context.config.models import RuntimeAdapterOptions
from agent_context.context.types import ContextMessage, UnifiedContext
from agent_context.enrichment.pipeline import EnrichmentPipeline
from agent_context.enrichment.types import EnrichmentRequest, PipelineExecutionResult
from agent_context.transformation.base import BaseContextTransformer
from agent_context.transformation.types import TransformationConfig, TransformationResult
from agent_context.utils.exceptions import ConfigurationError, ValidationError
from agent_context.utils.logging import get_logger

logger = get_logger(__name__)

UPDATABLE_FIELDS = (
    "session_id",
    "content",
    "metadata",
    "cognition",
    "memory",
    "state",
    "environment",
)


@dataclass
class _CachedContext:
    context: UnifiedContext
    last_access: float
    update_count: int = 0


class RuntimeContextAdapter:
    """Per-agent context cache bridging the runtime and the pipeline."""

    def __init__(
        self,
        pipeline: EnrichmentPipeline,
        transformers: Optional[List[BaseContextTransformer]] = None,
        options: Optional[RuntimeAdapterOptions] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the adapter.

        Args:
            pipeline: Pipeline used by :meth:`enrich_context`
            transformers: Transformers available to :meth:`transform_context`
            options: Retention and sweep settings
            clock: Epoch seconds used for idle tracking
        """
        self.pipeline = pipeline
        self.options = options or RuntimeAdapterOptions()
        self.transformers: Dict[str, BaseContextTransformer] = {}
        self._clock = clock
        self._contexts: Dict[str, _CachedContext] = {}
        self._sweep_task: Optional[asyncio.Task] = None

        for transformer in transformers or []:
            self.register_transformer(transformer)

    def register_transformer(self, transformer: BaseContextTransformer) -> None:
        if transformer.transformer_id in self.transformers:
            raise ValueError(
                f"Transformer '{transformer.transformer_id}' is already registered"
            )
        self.transformers[transformer.transformer_id] = transformer
        logger.debug(f"Registered transformer '{transformer.transformer_id}'")

    # Context cache

    def get_context(self, agent_id: str) -> Optional[UnifiedContext]:
        cached = self._contexts.get(agent_id)
        if cached is None:
            return None
        cached.last_access = self._clock()
        return cached.context

    def get_or_create_context(
        self, agent_id: str, session_id: Optional[str] = None
    ) -> UnifiedContext:
        """Return the agent's context, creating it on first use."""
        context = self.get_context(agent_id)
        if context is not None:
            return context

        context = UnifiedContext(agent_id=agent_id, session_id=session_id)
        self._contexts[agent_id] = _CachedContext(context=context, last_access=self._clock())
        logger.debug(f"Created context {context.context_id} for agent {agent_id}")
        return context

    def update_context(self, agent_id: str, **updates: Any) -> Optional[UnifiedContext]:
        """Replace top-level fields of an agent's context.

        Args:
            agent_id: Agent whose context to update
            **updates: Field values keyed by name

        Returns:
            The updated context, or None if the agent has none

        Raises:
            ValidationError: If a field cannot be updated
        """
        unknown = [k for k in updates if k not in UPDATABLE_FIELDS]
        if unknown:
            raise ValidationError(
                f"Cannot update context fields: {unknown}",
                field=unknown[0],
            )

        cached = self._contexts.get(agent_id)
        if cached is None:
            logger.warning(f"No context to update for agent {agent_id}")
            return None

        for name, value in updates.items():
            setattr(cached.context, name, value)
        cached.context.touch()
        cached.update_count += 1
        cached.last_access = self._clock()
        return cached.context

    def add_message(self, agent_id: str, message: ContextMessage) -> UnifiedContext:
        """Append a message and make it the context's current content."""
        context = self.get_or_create_context(agent_id)
        context.messages.append(message)
        context.content = message.content
        context.touch()
        return context

    def clear_context(self, agent_id: str) -> bool:
        removed = self._contexts.pop(agent_id, None)
        if removed is not None:
            logger.debug(f"Cleared context for agent {agent_id}")
        return removed is not None

    def list_agents(self) -> List[str]:
        return list(self._contexts)

    # Pipeline and transformers

    async def enrich_context(
        self,
        agent_id: str,
        context_bag: Optional[Mapping[str, Any]] = None,
        **request_options: Any,
    ) -> PipelineExecutionResult:
        """Run the pipeline and merge its output into the agent's context.

        Args:
            agent_id: Agent to enrich for
            context_bag: Request context (message, user id, ...)
            **request_options: Extra ``EnrichmentRequest`` fields such as
                ``required_enrichers`` or ``timeout_ms``

        Returns:
            The pipeline result; its ``context`` is the cached context
        """
        bag = dict(context_bag or {})
        session_id = bag.get("session_id")
        context = self.get_or_create_context(
            agent_id, session_id if isinstance(session_id, str) else None
        )
        if isinstance(bag.get("message"), str):
            context.content = bag["message"]

        request = EnrichmentRequest(
            agent_id=agent_id,
            context=bag,
            context_id=context.context_id,
            **request_options,
        )
        result = await self.pipeline.execute(request, context)
        self._contexts[agent_id].last_access = self._clock()
        return result

    async def transform_context(
        self,
        agent_id: str,
        transformer_id: str = "cognition",
        config: Optional[TransformationConfig] = None,
    ) -> TransformationResult:
        """Transform the agent's current context.

        Raises:
            ConfigurationError: If no transformer has that id
        """
        transformer = self.transformers.get(transformer_id)
        if transformer is None:
            raise ConfigurationError(
                f"Transformer '{transformer_id}' not found. "
                f"Available: {', '.join(self.transformers) or 'none'}"
            )
        context = self.get_or_create_context(agent_id)
        return await transformer.transform(context, config)

    # Retention

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop contexts idle longer than the retention period.

        Returns:
            Number of contexts removed
        """
        now = self._clock() if now is None else now
        cutoff = now - self.options.context_retention_seconds
        expired = [a for a, c in self._contexts.items() if c.last_access < cutoff]
        for agent_id in expired:
            del self._contexts[agent_id]
        if expired:
            logger.debug(f"Swept {len(expired)} idle contexts")
        return len(expired)

    def start_sweeper(self) -> None:
        if self._sweep_task is not None and not self._sweep_task.done():
            return

        async def loop() -> None:
            while True:
                await asyncio.sleep(self.options.sweep_interval_seconds)
                self.sweep()

        self._sweep_task = asyncio.create_task(loop())

    async def stop_sweeper(self) -> None:
        task = self._sweep_task
        self._sweep_task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def get_stats(self) -> Dict[str, Any]:
        return {
            "active_contexts": len(self._contexts),
            "transformers": list(self.transformers),
            "updates": sum(c.update_count for c in self._contexts.values()),
            "sweeper_running": self._sweep_task is not None and not self._sweep_task.done(),
        }

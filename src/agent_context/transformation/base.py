"""Shared engine for context transformers.

A transformer extracts a target-specific view from a ``UnifiedContext``,
applies the selected strategy's pruning, measures what was kept and
dropped, validates the output and optionally memoizes it. Subclasses
provide the extraction, the pruning rules, field validation and, when
they declare themselves reversible, reconstruction.
"""

import json
import os
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import asdict, replace
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

import psutil

from agent_context.config.models import TransformationStrategy, TransformerOptions
from agent_context.context.types import UnifiedContext
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
from agent_context.utils.exceptions import ConfigurationError, ReversalError
from agent_context.utils.logging import get_logger

T = TypeVar("T")

# Strategy applied underneath the CACHED wrapper
CACHED_BASE_STRATEGY = TransformationStrategy.SELECTIVE


def serialized_size(value: Any) -> int:
    """Length of the JSON encoding, used for size accounting."""
    return len(json.dumps(value, default=str, sort_keys=True))


class BaseContextTransformer(ABC, Generic[T]):
    """Base class for transformers producing a plain keyed bag.

    This class owns strategy resolution, the minute-bucketed result cache,
    metadata and performance accounting and the validation scoring rule.
    """

    def __init__(
        self,
        transformer_id: str,
        target: str,
        version: str = "1.0.0",
        supported_strategies: Optional[List[TransformationStrategy]] = None,
        reversible: bool = False,
        options: Optional[TransformerOptions] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the transformer.

        Args:
            transformer_id: Unique id of the transformer
            target: Consumer the output is shaped for
            version: Transformer version recorded in metadata
            supported_strategies: Strategies accepted by ``transform``
            reversible: Whether ``reverse`` can rebuild a context
            options: Defaults for strategy, caching and validation
            clock: Epoch seconds used for the cache minute bucket
        """
        self.transformer_id = transformer_id
        self.target = target
        self.version = version
        self.supported_strategies = list(supported_strategies or list(TransformationStrategy))
        self.reversible = reversible
        self.options = options or TransformerOptions()
        self._clock = clock
        self._cache: "OrderedDict[str, TransformationResult[T]]" = OrderedDict()
        self._process = psutil.Process(os.getpid())
        self.logger = get_logger(f"agent_context.transformers.{transformer_id}")

    # Subclass hooks

    @abstractmethod
    def _extract(self, context: UnifiedContext) -> Dict[str, Any]:
        """Build the complete, unpruned view of the context."""

    @abstractmethod
    def _apply_strategy(
        self, view: Dict[str, Any], strategy: TransformationStrategy
    ) -> Tuple[Dict[str, Any], Dict[str, int]]:
        """Prune the view.

        Returns:
            The pruned output and, per list field holding source data,
            how many items were removed
        """

    @abstractmethod
    def _validate_fields(self, transformed: Dict[str, Any]) -> List[ValidationIssue]:
        """Field-level checks of a transformed context."""

    def _derived_fields(self) -> List[str]:
        """Output fields computed by the transformer rather than copied."""
        return []

    def _reconstruct(
        self, transformed: Dict[str, Any], metadata: TransformationMetadata
    ) -> UnifiedContext:
        raise ReversalError(
            f"Transformer '{self.transformer_id}' does not support reversal"
        )

    # Public API

    async def transform(
        self,
        context: UnifiedContext,
        config: Optional[TransformationConfig] = None,
    ) -> TransformationResult[T]:
        """Transform a context for the target consumer.

        Failures are returned as an unsuccessful result, never raised.

        Args:
            context: Context to transform
            config: Per-call options

        Returns:
            The transformation result
        """
        config = config or TransformationConfig()
        requested = config.strategy or self.options.default_strategy
        cache_enabled = (
            config.cache_enabled
            if config.cache_enabled is not None
            else self.options.cache_enabled
        )
        use_cache = requested == TransformationStrategy.CACHED or cache_enabled
        strategy = CACHED_BASE_STRATEGY if requested == TransformationStrategy.CACHED else requested

        start = time.perf_counter()
        try:
            if requested not in self.supported_strategies:
                raise ConfigurationError(
                    f"Strategy '{requested.value}' is not supported by "
                    f"transformer '{self.transformer_id}'"
                )

            cache_key = self.cache_key(context, strategy) if use_cache else None
            if cache_key is not None and cache_key in self._cache:
                self._cache.move_to_end(cache_key)
                self.logger.debug(f"Cache hit for transformation {cache_key}")
                return self._as_cached(self._cache[cache_key])

            result = await self._transform(context, strategy, config, start)
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            self.logger.error(
                f"Transformation by '{self.transformer_id}' failed after "
                f"{duration_ms:.1f}ms: {e}"
            )
            return TransformationResult(
                success=False,
                transformed_context=None,
                strategy=requested,
                performance=TransformationPerformance(duration_ms=duration_ms),
                error=str(e),
            )

        if cache_key is not None and result.success:
            self._store(cache_key, result)
        return result

    async def _transform(
        self,
        context: UnifiedContext,
        strategy: TransformationStrategy,
        config: TransformationConfig,
        start: float,
    ) -> TransformationResult[T]:
        rss_before = self._process.memory_info().rss

        view = self._extract(context)
        output, items_dropped = self._apply_strategy(view, strategy)

        validation = None
        validate = (
            config.validate_output
            if config.validate_output is not None
            else self.options.validate_output
        )
        if validate:
            validation = await self.validate(output, config.validation)

        duration_ms = (time.perf_counter() - start) * 1000
        input_size = serialized_size(asdict(context))
        output_size = serialized_size(output)
        derived = set(self._derived_fields())

        metadata = TransformationMetadata(
            transformer_id=self.transformer_id,
            transformer_version=self.version,
            strategy=strategy,
            source_context_id=context.context_id,
            source_version=context.version,
            input_size=input_size,
            output_size=output_size,
            fields_transformed=[f for f in output if f not in derived],
            fields_dropped=[f for f in view if f not in output],
            fields_added=[f for f in output if f in derived],
            items_dropped=items_dropped,
            validation_passed=validation.valid if validation else True,
        )
        performance = TransformationPerformance(
            duration_ms=duration_ms,
            memory_delta_bytes=self._process.memory_info().rss - rss_before,
            compression_ratio=input_size / output_size if output_size else 0.0,
            throughput=output_size / duration_ms if duration_ms > 0 else 0.0,
        )

        # Only strict validation rejects the output; otherwise callers decide
        success = validation is None or validation.valid or not config.validation.strict
        self.logger.debug(
            f"Transformation by '{self.transformer_id}' ({strategy.value}) completed in "
            f"{duration_ms:.2f}ms: {input_size} -> {output_size} bytes"
        )
        return TransformationResult(
            success=success,
            transformed_context=output,
            strategy=strategy,
            metadata=metadata,
            performance=performance,
            reversible=self.reversible and not metadata.lossy,
            validation=validation,
            error=None if success else "Transformed context failed validation",
        )

    async def validate(
        self,
        transformed: Dict[str, Any],
        config: Optional[ValidationConfig] = None,
    ) -> ValidationResult:
        """Validate a transformed context.

        Issues of LOW severity are warnings, the rest are errors; strict
        mode treats warnings as errors. The score is 1.0 without issues,
        0.8 with warnings only and 0.5 with errors.

        Args:
            transformed: Output of :meth:`transform`
            config: Validation policy

        Returns:
            The validation result
        """
        config = config or ValidationConfig()
        issues = self._validate_fields(transformed)
        errors = [i for i in issues if i.severity != ValidationSeverity.LOW]
        warnings = [i for i in issues if i.severity == ValidationSeverity.LOW]
        if config.strict:
            errors, warnings = errors + warnings, []

        if errors:
            score = 0.5
        elif warnings:
            score = 0.8
        else:
            score = 1.0
        return ValidationResult(
            valid=not errors and score >= config.min_score,
            score=score,
            errors=errors,
            warnings=warnings,
        )

    async def reverse(
        self, transformed: Dict[str, Any], metadata: TransformationMetadata
    ) -> UnifiedContext:
        """Rebuild a context from a transformed one.

        Args:
            transformed: Output of :meth:`transform`
            metadata: Metadata of the same transformation

        Returns:
            The reconstructed context

        Raises:
            ReversalError: If the transformer is not reversible or the
                strategy dropped source data
        """
        if not self.reversible:
            raise ReversalError(
                f"Transformer '{self.transformer_id}' does not support reversal"
            )
        if metadata.lossy:
            dropped = ", ".join(f"{k}={v}" for k, v in sorted(metadata.items_dropped.items()))
            raise ReversalError(
                f"Cannot reverse {metadata.strategy.value} transformation: "
                f"source items were dropped ({dropped})",
                details={"strategy": metadata.strategy.value},
            )
        return self._reconstruct(transformed, metadata)

    def get_capabilities(self) -> TransformerCapabilities:
        return TransformerCapabilities(
            target=self.target,
            strategies=list(self.supported_strategies),
            reversible=self.reversible,
        )

    # Cache

    def cache_key(self, context: UnifiedContext, strategy: TransformationStrategy) -> str:
        """Key from context id, context version, strategy and wall-clock minute."""
        minute = int(self._clock() // 60)
        return f"{self.transformer_id}:{context.context_id}:{context.version}:{strategy.value}:{minute}"

    def clear_cache(self) -> int:
        count = len(self._cache)
        self._cache.clear()
        return count

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def _store(self, key: str, result: TransformationResult[T]) -> None:
        self._cache[key] = result
        self._cache.move_to_end(key)
        while len(self._cache) > self.options.cache_max_size:
            self._cache.popitem(last=False)

    @staticmethod
    def _as_cached(result: TransformationResult[T]) -> TransformationResult[T]:
        metadata = result.metadata
        if metadata is not None:
            metadata = replace(metadata, cache_hit=True)
        return replace(result, metadata=metadata, cached=True)

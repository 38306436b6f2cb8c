"""Enrichment pipeline.

Runs registered enrichers for one request in dependency order:
stages sequentially, and inside a stage every enricher as its own task
that waits for its same-stage dependencies and then competes for a
bounded number of execution slots. Each invocation goes through the
cache, a per-enricher circuit breaker, a per-attempt timeout and
sequential retries. Results are merged into the ``UnifiedContext`` in
plan order once the run finishes, so the last writer in plan order wins
regardless of completion order.
"""

import asyncio
import dataclasses
import time
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set, Tuple

from agent_context.config.models import EnricherConfig, PipelineConfig
from agent_context.context.types import UnifiedContext
from agent_context.enrichment.cache import EnrichmentCache, make_cache_key
from agent_context.enrichment.dependency_graph import DependencyGraph, GraphSpec
from agent_context.enrichment.events import EventChannel, PipelineEvent, PipelineEventType
from agent_context.enrichment.registry import (
    EnricherFactory,
    EnricherMetadata,
    EnricherRegistry,
)
from agent_context.enrichment.types import (
    ContextEnrichmentResult,
    EnricherMetrics,
    EnricherStatus,
    EnrichmentCacheEntry,
    EnrichmentError,
    EnrichmentRequest,
    PipelineExecutionResult,
    PipelineMetrics,
    PipelineTrace,
    TraceEntry,
)
from agent_context.utils.exceptions import (
    ConfigurationError,
    EnricherNotFoundError,
    EnricherStateError,
    EnrichmentErrorType,
    EnrichmentTimeoutError,
    classify_error,
)
from agent_context.utils.logging import get_logger
from agent_context.utils.retry import CircuitBreaker, retry_async

if TYPE_CHECKING:
    from agent_context.enrichers.base import BaseContextEnricher

logger = get_logger(__name__)


@dataclass
class _RunState:
    """Mutable bookkeeping for one pipeline run."""

    request: EnrichmentRequest
    context_id: str
    base_bag: Dict[str, Any]
    selected: Set[str]
    required: Set[str]
    trace: PipelineTrace
    semaphore: asyncio.Semaphore
    statuses: Dict[str, EnricherStatus] = field(default_factory=dict)
    results: Dict[str, ContextEnrichmentResult] = field(default_factory=dict)
    done: Dict[str, asyncio.Event] = field(default_factory=dict)
    # Failed, or skipped because something upstream failed or timed out
    blocked: Set[str] = field(default_factory=set)
    errors: List[EnrichmentError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    cache_hits: int = 0
    retries: int = 0
    in_flight: int = 0
    max_in_flight: int = 0
    stage_durations_ms: Dict[str, float] = field(default_factory=dict)
    enricher_durations_ms: Dict[str, float] = field(default_factory=dict)


class EnrichmentPipeline:
    """Orchestrates enrichers for agent interactions.

    The explicit dependency graph (``depends_on``) is validated when the
    pipeline is constructed, so cycles and unknown dependencies fail
    before any request runs. ``initialize`` instantiates the enrichers
    and re-validates the graph including the edges implied by their
    required and provided keys.
    """

    def __init__(
        self,
        registry: EnricherRegistry,
        config: Optional[PipelineConfig] = None,
        event_channel: Optional[EventChannel] = None,
    ):
        """Initialize the pipeline.

        Args:
            registry: Registry holding the enricher factories
            config: Pipeline configuration
            event_channel: Optional channel receiving fire-and-forget events

        Raises:
            ConfigurationError: If overrides are invalid or name unknown enrichers
            CircularDependencyError: If ``depends_on`` entries form a cycle
            EnricherNotFoundError: If ``depends_on`` names an unknown enricher
        """
        self.registry = registry
        self.config = config or PipelineConfig()
        self.event_channel = event_channel

        self.enrichers: Dict[str, "BaseContextEnricher"] = {}
        self.graph: Optional[DependencyGraph] = None
        self.cache = EnrichmentCache(
            max_size=self.config.cache_max_size, on_evict=self._on_cache_evict
        )
        self._metrics: Dict[str, EnricherMetrics] = {}
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._init_failures: Dict[str, str] = {}
        self._initialized = False
        self._disposed = False
        self._maintenance_task: Optional[asyncio.Task] = None

        unknown = set(self.config.enricher_overrides) - set(registry.list_ids())
        if unknown:
            raise ConfigurationError(
                f"Overrides reference unregistered enrichers: {sorted(unknown)}"
            )

        self._declared_graph = DependencyGraph.build(
            [
                GraphSpec(
                    enricher_id=enricher_id,
                    config=self._resolve_config(enricher_id),
                    registration_index=registry.get(enricher_id).registration_index,
                )
                for enricher_id in registry.list_ids()
            ]
        )
        logger.debug(
            f"EnrichmentPipeline created with {len(registry)} registered enrichers"
        )

    # Lifecycle

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Instantiate, initialize and schedule every registered enricher.

        An enricher whose own setup fails is logged and excluded from
        execution; every run then records it as failed so its dependents
        are skipped.

        Raises:
            ConfigurationError: If the graph is invalid once the static
                key contract is known
            EnricherStateError: If the pipeline was disposed
        """
        if self._disposed:
            raise EnricherStateError("Pipeline has been disposed")
        if self._initialized:
            return

        logger.info(f"Initializing enrichment pipeline with {len(self.registry)} enrichers")
        for enricher_id in self.registry.list_ids():
            await self._instantiate(enricher_id)

        self.graph = self._build_graph()
        self._initialized = True

        plan = ", ".join(
            f"{stage.value}[{', '.join(ids)}]" for stage, ids in self.graph.execution_plan()
        )
        logger.info(f"Enrichment pipeline initialized: {plan or 'no enrichers'}")

    async def _instantiate(self, enricher_id: str) -> "BaseContextEnricher":
        enricher = self.registry.create(
            enricher_id, self.config.enricher_overrides.get(enricher_id)
        )
        try:
            await enricher.initialize()
        except ConfigurationError as e:
            self._init_failures[enricher_id] = str(e)
            logger.error(f"Enricher '{enricher_id}' failed to initialize and is excluded: {e}")
        else:
            self._init_failures.pop(enricher_id, None)

        self.enrichers[enricher_id] = enricher
        self._breakers[enricher_id] = CircuitBreaker(
            failure_threshold=self.config.circuit_failure_threshold,
            recovery_timeout=self.config.circuit_recovery_seconds,
            name=enricher_id,
        )
        self._metrics[enricher_id] = EnricherMetrics(
            enricher_id=enricher_id, window=self.config.metrics_window
        )
        return enricher

    def _resolve_config(self, enricher_id: str) -> EnricherConfig:
        return self.registry.resolve_config(
            enricher_id, self.config.enricher_overrides.get(enricher_id)
        )

    def _build_graph(self) -> DependencyGraph:
        specs = []
        for enricher_id in self.registry.list_ids():
            enricher = self.enrichers[enricher_id]
            specs.append(
                GraphSpec(
                    enricher_id=enricher_id,
                    config=enricher.config,
                    registration_index=self.registry.get(enricher_id).registration_index,
                    provided_keys=list(enricher.get_provided_keys()),
                    required_keys=list(enricher.get_required_keys()),
                )
            )
        return DependencyGraph.build(specs)

    async def register_enricher(
        self,
        enricher_id: str,
        factory: EnricherFactory,
        default_config: Optional[EnricherConfig] = None,
        metadata: Optional[EnricherMetadata] = None,
    ) -> None:
        """Register an enricher, initializing it when the pipeline is live.

        The registration is rolled back if it makes the graph invalid.

        Raises:
            ValueError: If the id is already registered
            ConfigurationError: If the graph becomes invalid
        """
        self.registry.register(enricher_id, factory, default_config, metadata)
        if not self._initialized:
            try:
                self._declared_graph = self._build_declared_graph()
            except Exception:
                self.registry.unregister(enricher_id)
                raise
            return

        enricher = await self._instantiate(enricher_id)
        try:
            self.graph = self._build_graph()
        except Exception:
            await enricher.dispose()
            self._forget(enricher_id)
            self.registry.unregister(enricher_id)
            raise
        logger.info(f"Registered enricher '{enricher_id}' on live pipeline")

    async def unregister_enricher(self, enricher_id: str) -> None:
        """Dispose and remove an enricher.

        Raises:
            EnricherNotFoundError: If the id is not registered
            ConfigurationError: If other enrichers depend on it
        """
        self.registry.get(enricher_id)
        graph = self.graph or self._declared_graph
        dependents = graph.nodes[enricher_id].dependents if enricher_id in graph.nodes else []
        if dependents:
            raise ConfigurationError(
                f"Cannot unregister '{enricher_id}': required by {sorted(dependents)}",
                details={"enricher_id": enricher_id},
            )

        enricher = self.enrichers.get(enricher_id)
        if enricher is not None:
            await enricher.dispose()
        self._forget(enricher_id)
        self.registry.unregister(enricher_id)
        self.cache.clear(enricher_id)

        self._declared_graph = self._build_declared_graph()
        if self._initialized:
            self.graph = self._build_graph()
        logger.info(f"Unregistered enricher '{enricher_id}'")

    def _build_declared_graph(self) -> DependencyGraph:
        return DependencyGraph.build(
            [
                GraphSpec(
                    enricher_id=enricher_id,
                    config=self._resolve_config(enricher_id),
                    registration_index=self.registry.get(enricher_id).registration_index,
                )
                for enricher_id in self.registry.list_ids()
            ]
        )

    def _forget(self, enricher_id: str) -> None:
        self.enrichers.pop(enricher_id, None)
        self._breakers.pop(enricher_id, None)
        self._metrics.pop(enricher_id, None)
        self._init_failures.pop(enricher_id, None)

    async def dispose(self) -> None:
        """Stop maintenance, dispose every enricher and drop cached results."""
        if self._disposed:
            return
        await self.stop_maintenance()
        for enricher_id, enricher in self.enrichers.items():
            try:
                await enricher.dispose()
            except Exception as e:
                logger.error(f"Error disposing enricher '{enricher_id}': {e}")
        self.cache.clear()
        self._disposed = True
        self._initialized = False
        logger.info("Enrichment pipeline disposed")

    # Execution

    def get_execution_plan(self) -> List[Tuple[str, List[str]]]:
        """Stages in order with their enricher ids in execution order."""
        graph = self.graph or self._declared_graph
        return [(stage.value, ids) for stage, ids in graph.execution_plan()]

    async def execute(
        self,
        request: EnrichmentRequest,
        context: Optional[UnifiedContext] = None,
    ) -> PipelineExecutionResult:
        """Run the pipeline for one request.

        Never raises for per-request failures: the result lists what was
        executed, skipped and failed, and ``success`` is False only when
        a required enricher did not produce its output.

        Args:
            request: The enrichment request
            context: Context to enrich; a new one is created when omitted

        Returns:
            The aggregated execution result

        Raises:
            EnricherStateError: If the pipeline was disposed
        """
        if self._disposed:
            raise EnricherStateError("Pipeline has been disposed")
        if not self._initialized:
            await self.initialize()

        start = time.perf_counter()
        unified = context or self._new_context(request)
        run = self._start_run(request, unified)

        logger.debug(
            f"Executing enrichment for agent {request.agent_id} "
            f"({len(run.selected)} enrichers selected)"
        )

        timeout_ms = request.timeout_ms or self.config.default_timeout_ms
        timed_out = False
        try:
            await asyncio.wait_for(self._run_stages(run), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            timed_out = True
            logger.warning(
                f"Enrichment for agent {request.agent_id} timed out after {timeout_ms}ms; "
                f"returning partial result"
            )
            self._mark_timed_out(run, timeout_ms)

        result = self._finish_run(run, unified, start, timed_out)
        self._publish(
            PipelineEventType.PIPELINE_COMPLETED,
            run,
            payload={
                "success": result.success,
                "executed": list(result.enrichers_executed),
                "failed": list(result.enrichers_failed),
                "skipped": list(result.enrichers_skipped),
                "timed_out": timed_out,
            },
        )
        logger.info(
            f"Enrichment for agent {request.agent_id} completed in "
            f"{result.metrics.total_duration_ms:.1f}ms: "
            f"{len(result.enrichers_executed)} executed, "
            f"{len(result.enrichers_failed)} failed, "
            f"{len(result.enrichers_skipped)} skipped"
        )
        return result

    def _new_context(self, request: EnrichmentRequest) -> UnifiedContext:
        kwargs: Dict[str, Any] = {"agent_id": request.agent_id}
        if request.context_id:
            kwargs["context_id"] = request.context_id
        session_id = request.context.get("session_id")
        if isinstance(session_id, str):
            kwargs["session_id"] = session_id
        message = request.context.get("message")
        if isinstance(message, str):
            kwargs["content"] = message
        return UnifiedContext(**kwargs)

    def _start_run(self, request: EnrichmentRequest, unified: UnifiedContext) -> _RunState:
        graph = self.graph
        registered = set(graph.nodes)
        run = _RunState(
            request=request,
            context_id=unified.context_id,
            base_bag={},
            selected=set(),
            required=set(),
            trace=PipelineTrace(
                request_id=request.request_id,
                agent_id=request.agent_id,
                context_id=unified.context_id,
            ),
            semaphore=asyncio.Semaphore(self.config.max_concurrency),
        )

        if request.required_enrichers is not None:
            requested = list(dict.fromkeys(request.required_enrichers))
            for enricher_id in requested:
                if enricher_id not in registered:
                    run.errors.append(
                        EnrichmentError(
                            enricher_id=enricher_id,
                            error_type=EnrichmentErrorType.ENRICHER_NOT_FOUND,
                            message=f"Enricher '{enricher_id}' is not registered",
                        )
                    )
                    run.blocked.add(enricher_id)
            run.required = set(requested)
            candidates = {i for i in requested if i in registered}
        else:
            candidates = registered - set(request.excluded_enrichers)
            run.required = {i for i in registered if self.enrichers[i].config.required}

        for stage, ids in graph.execution_plan():
            for enricher_id in ids:
                entry = TraceEntry(enricher_id=enricher_id, stage=stage.value)
                run.trace.entries.append(entry)
                enricher = self.enrichers[enricher_id]
                if enricher_id not in candidates:
                    reason = (
                        "excluded by request"
                        if enricher_id in request.excluded_enrichers
                        else "not requested"
                    )
                elif not enricher.config.enabled:
                    reason = "disabled"
                else:
                    run.selected.add(enricher_id)
                    run.statuses[enricher_id] = EnricherStatus.PENDING
                    continue
                entry.status = EnricherStatus.SKIPPED
                entry.reason = reason

        # Previous slices of selected enrichers are rewritten or, on failure, gone
        stale = [
            key
            for enricher_id in sorted(run.selected)
            for key in self.enrichers[enricher_id].get_provided_keys()
        ]
        unified.discard_enrichments(stale)
        run.base_bag = {**unified.to_bag(), **dict(request.context)}
        return run

    async def _run_stages(self, run: _RunState) -> None:
        for stage, ids in self.graph.execution_plan():
            stage_ids = [i for i in ids if i in run.selected]
            if not stage_ids:
                continue

            stage_start = time.perf_counter()
            for enricher_id in stage_ids:
                run.done[enricher_id] = asyncio.Event()
            try:
                await asyncio.gather(
                    *(self._run_enricher(enricher_id, run) for enricher_id in stage_ids)
                )
            finally:
                run.stage_durations_ms[stage.value] = (time.perf_counter() - stage_start) * 1000

    async def _run_enricher(self, enricher_id: str, run: _RunState) -> None:
        try:
            node = self.graph.nodes[enricher_id]
            for dep in node.dependencies:
                event = run.done.get(dep)
                if event is not None:
                    await event.wait()

            blocked_by = [d for d in node.dependencies if d in run.blocked]
            if blocked_by:
                self._skip(
                    run,
                    enricher_id,
                    f"dependency '{blocked_by[0]}' failed",
                    error_type=EnrichmentErrorType.DEPENDENCY_FAILED,
                )
                return

            if enricher_id in self._init_failures:
                self._fail(
                    run,
                    enricher_id,
                    EnrichmentErrorType.CONFIGURATION_ERROR,
                    f"Enricher failed to initialize: {self._init_failures[enricher_id]}",
                    attempts=0,
                )
                return

            await self._invoke(enricher_id, run)
        finally:
            event = run.done.get(enricher_id)
            if event is not None:
                event.set()

    def _view(self, enricher_id: str, run: _RunState) -> Dict[str, Any]:
        """Base context plus the outputs of the enricher's upstream enrichers."""
        view = dict(run.base_bag)
        upstream = self.graph.transitive_dependencies(enricher_id)
        for other in self.graph.ordered_ids():
            if other in upstream and run.statuses.get(other) == EnricherStatus.EXECUTED:
                view.update(run.results[other].enriched_context)
        return view

    async def _invoke(self, enricher_id: str, run: _RunState) -> None:
        enricher = self.enrichers[enricher_id]
        config = enricher.config
        request = run.request
        entry = run.trace.entry(enricher_id)
        view = self._view(enricher_id, run)

        if not enricher.can_enrich(view):
            self._skip(run, enricher_id, "not applicable to this context")
            return

        use_cache = self.config.enable_caching and config.cache_enabled
        cache_key = None
        if use_cache:
            cache_key = make_cache_key(
                enricher_id,
                request.agent_id,
                enricher.get_cache_inputs(view),
                context_id=run.context_id,
                time_bucket_seconds=self.config.cache_time_bucket_seconds,
                explicit_key=request.cache_key,
            )
            cached = self.cache.get(cache_key)
            if cached is not None:
                result = dataclasses.replace(cached, cached=True)
                run.cache_hits += 1
                entry.cached = True
                self._record_success(run, enricher_id, result, 0.0, attempts=0)
                return

        sub_request = dataclasses.replace(
            request,
            context=MappingProxyType(view),
            context_id=run.context_id,
            timeout_ms=config.timeout_ms,
        )
        timeout_seconds = config.timeout_ms / 1000
        attempts = 0

        async def attempt() -> ContextEnrichmentResult:
            nonlocal attempts
            attempts += 1
            async with run.semaphore:
                run.in_flight += 1
                run.max_in_flight = max(run.max_in_flight, run.in_flight)
                try:
                    return await asyncio.wait_for(
                        enricher.enrich(sub_request), timeout=timeout_seconds
                    )
                except asyncio.TimeoutError as e:
                    raise EnrichmentTimeoutError(
                        f"Enricher '{enricher_id}' timed out after {config.timeout_ms}ms",
                        operation=enricher_id,
                        timeout_seconds=timeout_seconds,
                    ) from e
                finally:
                    run.in_flight -= 1

        def on_retry(error: BaseException, attempt_number: int) -> None:
            run.retries += 1

        entry.started_at = datetime.now()
        self._publish(PipelineEventType.ENRICHER_STARTED, run, enricher_id)
        start = time.perf_counter()
        try:
            result = await self._breakers[enricher_id].call_async(
                retry_async,
                attempt,
                max_retries=config.max_retries,
                policy=self.config.retry,
                on_retry=on_retry,
                name=f"Enricher '{enricher_id}'",
            )
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            self._fail(
                run, enricher_id, classify_error(e), str(e), attempts, duration_ms
            )
            return

        duration_ms = (time.perf_counter() - start) * 1000
        if not result.applicable:
            self._skip(run, enricher_id, "not applicable to this context")
            return

        if use_cache and cache_key is not None:
            self.cache.set(
                cache_key,
                result,
                ttl_seconds=config.cache_ttl_seconds or self.config.cache_ttl_seconds,
            )
        self._record_success(run, enricher_id, result, duration_ms, attempts)

    # Outcome bookkeeping

    def _record_success(
        self,
        run: _RunState,
        enricher_id: str,
        result: ContextEnrichmentResult,
        duration_ms: float,
        attempts: int,
    ) -> None:
        run.statuses[enricher_id] = EnricherStatus.EXECUTED
        run.results[enricher_id] = result
        run.enricher_durations_ms[enricher_id] = duration_ms
        run.warnings.extend(result.warnings)

        entry = run.trace.entry(enricher_id)
        entry.status = EnricherStatus.EXECUTED
        entry.duration_ms = duration_ms
        entry.attempts = attempts
        entry.confidence = result.confidence

        if self.config.enable_metrics:
            self._metrics[enricher_id].record(duration_ms, success=True, cached=result.cached)
        self._publish(
            PipelineEventType.ENRICHER_COMPLETED,
            run,
            enricher_id,
            {"duration_ms": duration_ms, "cached": result.cached},
        )
        logger.debug(
            f"Enricher '{enricher_id}' completed in {duration_ms:.1f}ms"
            f"{' (cached)' if result.cached else ''}"
        )

    def _fail(
        self,
        run: _RunState,
        enricher_id: str,
        error_type: EnrichmentErrorType,
        message: str,
        attempts: int,
        duration_ms: float = 0.0,
    ) -> None:
        run.statuses[enricher_id] = EnricherStatus.FAILED
        run.blocked.add(enricher_id)
        run.enricher_durations_ms[enricher_id] = duration_ms
        run.errors.append(
            EnrichmentError(
                enricher_id=enricher_id,
                error_type=error_type,
                message=message,
                attempts=attempts,
            )
        )

        entry = run.trace.entry(enricher_id)
        entry.status = EnricherStatus.FAILED
        entry.duration_ms = duration_ms
        entry.attempts = attempts
        entry.reason = f"{error_type.value}: {message}"

        if self.config.enable_metrics:
            self._metrics[enricher_id].record(duration_ms, success=False)
        self._publish(
            PipelineEventType.ENRICHER_FAILED,
            run,
            enricher_id,
            {"error_type": error_type.value, "message": message, "attempts": attempts},
        )
        logger.error(
            f"Enricher '{enricher_id}' failed after {attempts} attempt(s) "
            f"[{error_type.value}]: {message}"
        )

    def _skip(
        self,
        run: _RunState,
        enricher_id: str,
        reason: str,
        error_type: Optional[EnrichmentErrorType] = None,
    ) -> None:
        run.statuses[enricher_id] = EnricherStatus.SKIPPED
        if error_type is not None:
            run.blocked.add(enricher_id)
            run.errors.append(
                EnrichmentError(enricher_id=enricher_id, error_type=error_type, message=reason)
            )

        entry = run.trace.entry(enricher_id)
        entry.status = EnricherStatus.SKIPPED
        entry.reason = reason

        self._publish(PipelineEventType.ENRICHER_SKIPPED, run, enricher_id, {"reason": reason})
        logger.debug(f"Enricher '{enricher_id}' skipped: {reason}")

    def _mark_timed_out(self, run: _RunState, timeout_ms: int) -> None:
        for enricher_id, status in run.statuses.items():
            if status == EnricherStatus.PENDING:
                self._skip(
                    run,
                    enricher_id,
                    f"request timed out after {timeout_ms}ms",
                    error_type=EnrichmentErrorType.TIMEOUT,
                )

    def _finish_run(
        self,
        run: _RunState,
        unified: UnifiedContext,
        start: float,
        timed_out: bool,
    ) -> PipelineExecutionResult:
        executed, skipped, failed = [], [], []
        sources = []
        written: Set[str] = set()
        for enricher_id in self.graph.ordered_ids():
            status = run.statuses.get(enricher_id)
            if status == EnricherStatus.EXECUTED:
                executed.append(enricher_id)
                result = run.results[enricher_id]
                unified.merge_enrichment(result.enriched_context)
                overwritten = sorted(written & set(result.enriched_context))
                written.update(result.enriched_context)
                if overwritten:
                    message = f"Enricher '{enricher_id}' overwrote keys: {overwritten}"
                    run.warnings.append(message)
                    logger.debug(message)
                sources.extend(result.sources)
            elif status == EnricherStatus.SKIPPED:
                skipped.append(enricher_id)
            elif status == EnricherStatus.FAILED:
                failed.append(enricher_id)

        # Requested ids that are not registered count as failures
        for error in run.errors:
            if (
                error.error_type == EnrichmentErrorType.ENRICHER_NOT_FOUND
                and error.enricher_id not in failed
            ):
                failed.append(error.enricher_id)

        run.trace.finished_at = datetime.now()
        unsuccessful = run.required & run.blocked
        if unsuccessful:
            logger.warning(f"Required enrichers did not complete: {sorted(unsuccessful)}")

        return PipelineExecutionResult(
            success=not unsuccessful,
            context=unified,
            enrichers_executed=executed,
            enrichers_skipped=skipped,
            enrichers_failed=failed,
            cache_hits=run.cache_hits,
            errors=run.errors,
            warnings=run.warnings,
            sources=sources,
            metrics=PipelineMetrics(
                total_duration_ms=(time.perf_counter() - start) * 1000,
                stage_durations_ms=run.stage_durations_ms,
                enricher_durations_ms=run.enricher_durations_ms,
                parallel_executions=run.max_in_flight,
                retries=run.retries,
            ),
            trace=run.trace,
            timed_out=timed_out,
        )

    def _publish(
        self,
        event_type: PipelineEventType,
        run: _RunState,
        enricher_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        if self.event_channel is None:
            return
        self.event_channel.publish(
            PipelineEvent(
                event_type=event_type,
                request_id=run.request.request_id,
                enricher_id=enricher_id,
                payload=payload or {},
            )
        )

    # Observability and maintenance

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Per-enricher execution statistics."""
        return {enricher_id: m.to_dict() for enricher_id, m in self._metrics.items()}

    def get_circuit_breaker(self, enricher_id: str) -> CircuitBreaker:
        """Circuit breaker guarding an enricher."""
        if enricher_id not in self._breakers:
            raise EnricherNotFoundError(
                f"No circuit breaker for enricher '{enricher_id}'", enricher_id=enricher_id
            )
        return self._breakers[enricher_id]

    async def get_health_status(self) -> Dict[str, Any]:
        """Health of every enricher plus circuit and cache state."""
        enrichers = {}
        for enricher_id, enricher in self.enrichers.items():
            health = await enricher.health_check()
            enrichers[enricher_id] = {
                "healthy": health.healthy,
                "status": health.status,
                "details": health.details,
                "circuit": self._breakers[enricher_id].state.value,
            }
            if enricher_id in self._init_failures:
                enrichers[enricher_id]["init_error"] = self._init_failures[enricher_id]

        return {
            "healthy": self._initialized
            and all(e["healthy"] for e in enrichers.values()),
            "initialized": self._initialized,
            "enrichers": enrichers,
            "cache": self.cache.stats(),
            "timestamp": datetime.now().isoformat(),
        }

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()

    def clear_cache(self, enricher_id: Optional[str] = None) -> int:
        """Drop cached results, for one enricher or all of them."""
        removed = self.cache.clear(enricher_id)
        logger.info(f"Cleared {removed} cached enrichment results")
        return removed

    def run_maintenance(self) -> Dict[str, int]:
        """Prune expired cache entries and sweep enricher-local state once."""
        counts = {"cache": self.cache.prune_expired()}
        for enricher_id, enricher in self.enrichers.items():
            try:
                counts[enricher_id] = enricher.sweep()
            except Exception as e:
                logger.warning(f"Sweep of enricher '{enricher_id}' failed: {e}")
        return counts

    def start_maintenance(self, interval_seconds: float = 60.0) -> None:
        """Run :meth:`run_maintenance` periodically in the background."""
        if self._maintenance_task is not None and not self._maintenance_task.done():
            return

        async def loop() -> None:
            while True:
                await asyncio.sleep(interval_seconds)
                counts = self.run_maintenance()
                if any(counts.values()):
                    logger.debug(f"Pipeline maintenance removed {counts}")

        self._maintenance_task = asyncio.create_task(loop())
        logger.debug(f"Started pipeline maintenance every {interval_seconds}s")

    async def stop_maintenance(self) -> None:
        task = self._maintenance_task
        self._maintenance_task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _on_cache_evict(self, key: str, entry: EnrichmentCacheEntry, reason: str) -> None:
        logger.debug(f"Evicted cache entry {key} ({reason}, {entry.access_count} hits)")

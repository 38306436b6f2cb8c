"""Tests for the enrichment pipeline."""

import asyncio

import pytest

from agent_context.config.models import (
    EnricherConfig,
    EnrichmentPriority,
    EnrichmentStage,
    PipelineConfig,
    RetryPolicy,
)
from agent_context.enrichment.events import EventChannel, PipelineEventType
from agent_context.enrichment.pipeline import EnrichmentPipeline
from agent_context.enrichment.types import EnricherStatus, EnrichmentRequest
from agent_context.utils.exceptions import (
    ConfigurationError,
    EnricherNotFoundError,
    EnricherStateError,
    EnrichmentErrorType,
)
from agent_context.utils.retry import CircuitState

from tests.helpers.fakes import StubEnricher, register_stub

PRE = EnrichmentStage.PRE_PROCESSING
CORE = EnrichmentStage.CORE_ENRICHMENT


def request(**kwargs) -> EnrichmentRequest:
    kwargs.setdefault("agent_id", "a1")
    kwargs.setdefault("context", {"message": "hello"})
    return EnrichmentRequest(**kwargs)


def errors_by_id(result):
    return {error.enricher_id: error for error in result.errors}


class TestPipelineExecution:
    """Test ordering, merging and dependency handling."""

    @pytest.mark.asyncio
    async def test_all_enrichers_execute_and_merge(self, registry, fast_pipeline_config):
        """Test that every selected enricher runs and its slice is merged."""
        register_stub(registry, "temporal", stage=PRE)
        register_stub(registry, "memory")
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)

        result = await pipeline.execute(request())

        assert result.success
        assert result.enrichers_executed == ["temporal", "memory"]
        assert result.enrichers_failed == []
        assert result.enriched_context == {
            "temporal_context": {"value": 1},
            "memory_context": {"value": 1},
        }
        assert [source.enricher_id for source in result.sources] == ["temporal", "memory"]
        assert result.context.agent_id == "a1"
        assert result.context.content == "hello"

    @pytest.mark.asyncio
    async def test_required_failure_skips_dependent(self, registry, fast_pipeline_config):
        """Test that a failing required enricher skips its dependent and fails the run."""
        instances = {}
        register_stub(
            registry, "A", stage=PRE, required=True, max_retries=2,
            always_fail=True, instances=instances,
        )
        register_stub(registry, "B", depends_on=["A"], instances=instances)
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)

        result = await pipeline.execute(request())

        assert result.enrichers_failed == ["A"]
        assert result.enrichers_skipped == ["B"]
        assert result.success is False
        assert instances["A"].calls == 3
        assert instances["B"].calls == 0
        assert result.metrics.retries == 2

        errors = errors_by_id(result)
        assert errors["A"].attempts == 3
        assert errors["A"].error_type == EnrichmentErrorType.RESOURCE_UNAVAILABLE
        assert errors["B"].error_type == EnrichmentErrorType.DEPENDENCY_FAILED
        assert "B_context" not in result.enriched_context

    @pytest.mark.asyncio
    async def test_optional_failure_keeps_success(self, registry, fast_pipeline_config):
        """Test that a failing optional enricher does not fail the run."""
        register_stub(registry, "flaky", max_retries=0, always_fail=True)
        register_stub(registry, "steady")
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)

        result = await pipeline.execute(request())

        assert result.success
        assert result.enrichers_failed == ["flaky"]
        assert result.enrichers_executed == ["steady"]

    @pytest.mark.asyncio
    async def test_transitive_dependents_skipped(self, registry, fast_pipeline_config):
        """Test that a failure propagates through the dependency chain."""
        register_stub(registry, "A", stage=PRE, max_retries=0, always_fail=True)
        register_stub(registry, "B", depends_on=["A"])
        register_stub(registry, "C", depends_on=["B"])
        register_stub(registry, "D")
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)

        result = await pipeline.execute(request())

        assert result.enrichers_skipped == ["B", "C"]
        assert result.enrichers_executed == ["D"]
        errors = errors_by_id(result)
        assert errors["C"].error_type == EnrichmentErrorType.DEPENDENCY_FAILED
        assert "'B'" in errors["C"].message

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, registry, fast_pipeline_config):
        """Test that an enricher succeeding on retry counts as executed."""
        instances = {}
        register_stub(registry, "A", max_retries=2, fail_times=1, instances=instances)
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)

        result = await pipeline.execute(request())

        assert result.enrichers_executed == ["A"]
        assert instances["A"].calls == 2
        assert result.trace.entry("A").attempts == 2
        assert result.metrics.retries == 1

    @pytest.mark.asyncio
    async def test_merge_follows_plan_order(self, registry, fast_pipeline_config):
        """Test that the later enricher in plan order wins even when it finishes first."""
        register_stub(
            registry, "slow", priority=EnrichmentPriority.HIGH,
            output={"shared_context": {"from": "slow"}}, delay=0.05,
        )
        register_stub(registry, "fast", output={"shared_context": {"from": "fast"}})
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)

        result = await pipeline.execute(request())

        assert pipeline.get_execution_plan() == [("core_enrichment", ["slow", "fast"])]
        assert result.enriched_context["shared_context"] == {"from": "fast"}
        assert "Enricher 'fast' overwrote keys: ['shared_context']" in result.warnings

    @pytest.mark.asyncio
    async def test_dependent_sees_upstream_output(self, registry, fast_pipeline_config):
        """Test that an enricher's view holds its dependencies' outputs only."""
        instances = {}
        register_stub(registry, "A", stage=PRE, instances=instances)
        register_stub(registry, "other", stage=PRE, instances=instances)
        register_stub(registry, "B", depends_on=["A"], instances=instances)
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)

        await pipeline.execute(request(context={"message": "hi", "user_id": "u1"}))

        seen = instances["B"].seen_contexts[0]
        assert seen["A_context"] == {"value": 1}
        assert "other_context" not in seen
        assert seen["user_id"] == "u1"
        assert seen["agent_id"] == "a1"

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, registry):
        """Test that no more than max_concurrency enrichers run at once."""
        for name in ("a", "b", "c", "d"):
            register_stub(registry, name, delay=0.02)
        pipeline = EnrichmentPipeline(registry, PipelineConfig(max_concurrency=2))

        result = await pipeline.execute(request())

        assert len(result.enrichers_executed) == 4
        assert result.metrics.parallel_executions == 2

    @pytest.mark.asyncio
    async def test_request_timeout_returns_partial_result(self, registry, fast_pipeline_config):
        """Test that a request timeout keeps finished results."""
        register_stub(registry, "quick", stage=PRE)
        register_stub(registry, "stuck", delay=5.0)
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)

        result = await pipeline.execute(request(timeout_ms=100))

        assert result.timed_out is True
        assert result.enrichers_executed == ["quick"]
        assert result.enrichers_skipped == ["stuck"]
        assert errors_by_id(result)["stuck"].error_type == EnrichmentErrorType.TIMEOUT
        assert result.enriched_context == {"quick_context": {"value": 1}}

    @pytest.mark.asyncio
    async def test_enricher_timeout_is_classified(self, registry, fast_pipeline_config):
        """Test that a per-enricher timeout fails only that enricher."""
        register_stub(registry, "slow", delay=1.0, timeout_ms=20, max_retries=0)
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)

        result = await pipeline.execute(request())

        assert result.enrichers_failed == ["slow"]
        assert result.timed_out is False
        assert errors_by_id(result)["slow"].error_type == EnrichmentErrorType.TIMEOUT

    @pytest.mark.asyncio
    async def test_undeclared_keys_fail_validation(self, registry, fast_pipeline_config):
        """Test that writing outside the declared keys is a validation failure."""
        instances = {}
        register_stub(
            registry, "sneaky", provided_keys=["sneaky_context"],
            output={"other_context": 1}, instances=instances,
        )
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)

        result = await pipeline.execute(request())

        assert result.enrichers_failed == ["sneaky"]
        assert errors_by_id(result)["sneaky"].error_type == EnrichmentErrorType.VALIDATION_FAILED
        assert instances["sneaky"].calls == 1


class TestRequestSelection:
    """Test required and excluded enricher selection."""

    @pytest.mark.asyncio
    async def test_required_enrichers_limit_the_run(self, registry, fast_pipeline_config):
        """Test that only the listed enrichers run."""
        register_stub(registry, "temporal", stage=PRE)
        register_stub(registry, "memory")
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)

        result = await pipeline.execute(request(required_enrichers=["memory"]))

        assert result.success
        assert result.enrichers_executed == ["memory"]
        assert result.enrichers_skipped == []
        assert result.trace.entry("temporal").reason == "not requested"

    @pytest.mark.asyncio
    async def test_unknown_required_enricher(self, registry, fast_pipeline_config):
        """Test that an unregistered required id fails the run."""
        register_stub(registry, "memory")
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)

        result = await pipeline.execute(request(required_enrichers=["memory", "ghost"]))

        assert result.success is False
        assert result.enrichers_executed == ["memory"]
        assert result.enrichers_failed == ["ghost"]
        assert errors_by_id(result)["ghost"].error_type == EnrichmentErrorType.ENRICHER_NOT_FOUND

    @pytest.mark.asyncio
    async def test_excluded_enrichers(self, registry, fast_pipeline_config):
        """Test that excluded enrichers do not run."""
        instances = {}
        register_stub(registry, "temporal", stage=PRE, instances=instances)
        register_stub(registry, "memory", instances=instances)
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)

        result = await pipeline.execute(request(excluded_enrichers=["temporal"]))

        assert result.enrichers_executed == ["memory"]
        assert instances["temporal"].calls == 0
        entry = result.trace.entry("temporal")
        assert entry.status == EnricherStatus.SKIPPED
        assert entry.reason == "excluded by request"

    @pytest.mark.asyncio
    async def test_disabled_enricher_not_run(self, registry, fast_pipeline_config):
        """Test that a disabled enricher is recorded as skipped in the trace."""
        register_stub(registry, "off", enabled=False)
        register_stub(registry, "on")
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)

        result = await pipeline.execute(request())

        assert result.enrichers_executed == ["on"]
        assert result.trace.entry("off").reason == "disabled"

    @pytest.mark.asyncio
    async def test_not_applicable_does_not_block_dependents(
        self, registry, fast_pipeline_config
    ):
        """Test that an inapplicable enricher is skipped without failing dependents."""
        instances = {}
        register_stub(registry, "social", stage=PRE, applicable=False, instances=instances)
        register_stub(registry, "summary", depends_on=["social"], instances=instances)
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)

        result = await pipeline.execute(request())

        assert result.success
        assert result.enrichers_skipped == ["social"]
        assert result.enrichers_executed == ["summary"]
        assert result.errors == []
        assert instances["social"].calls == 0


class TestPipelineResilience:
    """Test caching, circuit breaking and initialization failures."""

    @pytest.mark.asyncio
    async def test_second_run_hits_cache(self, registry, fast_pipeline_config):
        """Test that a repeated request is served from the cache."""
        instances = {}
        register_stub(registry, "memory", cache_enabled=True, instances=instances)
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)

        first = await pipeline.execute(request(cache_key="turn-1"))
        second = await pipeline.execute(request(cache_key="turn-1"))

        assert instances["memory"].calls == 1
        assert first.cache_hits == 0
        assert second.cache_hits == 1
        assert second.trace.entry("memory").cached is True
        assert second.enriched_context == first.enriched_context
        assert pipeline.get_cache_stats()["size"] == 1

    @pytest.mark.asyncio
    async def test_cache_hit_unaffected_by_caller_edits(self, registry, fast_pipeline_config):
        """Test that editing a merged context does not leak into later cache hits."""
        register_stub(registry, "memory", cache_enabled=True)
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)

        first = await pipeline.execute(request(cache_key="turn-1"))
        first.context.enrichments["memory_context"]["value"] = 999
        second = await pipeline.execute(request(cache_key="turn-1"))

        assert second.cache_hits == 1
        assert second.enriched_context == {"memory_context": {"value": 1}}

    @pytest.mark.asyncio
    async def test_cache_cleared(self, registry, fast_pipeline_config):
        """Test that clearing the cache forces re-execution."""
        instances = {}
        register_stub(registry, "memory", cache_enabled=True, instances=instances)
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)

        await pipeline.execute(request(cache_key="k"))
        assert pipeline.clear_cache("memory") == 1
        await pipeline.execute(request(cache_key="k"))

        assert instances["memory"].calls == 2

    @pytest.mark.asyncio
    async def test_open_circuit_rejects_calls(self, registry):
        """Test that an open circuit fails fast without calling the enricher."""
        instances = {}
        register_stub(registry, "flaky", max_retries=0, always_fail=True, instances=instances)
        config = PipelineConfig(
            retry=RetryPolicy(base_delay_ms=0, max_delay_ms=0),
            circuit_failure_threshold=1,
        )
        pipeline = EnrichmentPipeline(registry, config)

        await pipeline.execute(request())
        assert pipeline.get_circuit_breaker("flaky").state == CircuitState.OPEN

        result = await pipeline.execute(request())

        assert instances["flaky"].calls == 1
        error = errors_by_id(result)["flaky"]
        assert error.error_type == EnrichmentErrorType.RESOURCE_UNAVAILABLE
        assert "is open" in error.message

    @pytest.mark.asyncio
    async def test_init_failure_excludes_enricher(self, registry, fast_pipeline_config):
        """Test that an enricher failing setup is excluded and blocks dependents."""
        register_stub(registry, "broken", stage=PRE, init_error=RuntimeError("no backend"))
        register_stub(registry, "after", depends_on=["broken"])
        register_stub(registry, "fine")
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)

        result = await pipeline.execute(request())

        assert result.enrichers_failed == ["broken"]
        assert result.enrichers_skipped == ["after"]
        assert result.enrichers_executed == ["fine"]
        error = errors_by_id(result)["broken"]
        assert error.error_type == EnrichmentErrorType.CONFIGURATION_ERROR
        assert error.attempts == 0

        health = await pipeline.get_health_status()
        assert health["healthy"] is False
        assert "no backend" in health["enrichers"]["broken"]["init_error"]


class TestPipelineObservability:
    """Test events, traces and metrics."""

    @pytest.mark.asyncio
    async def test_events_published(self, registry, fast_pipeline_config):
        """Test that lifecycle events reach the channel."""
        register_stub(registry, "ok", stage=PRE)
        register_stub(registry, "bad", max_retries=0, always_fail=True)
        register_stub(registry, "after", stage=EnrichmentStage.POST_PROCESSING, depends_on=["bad"])
        channel = EventChannel()
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config, event_channel=channel)

        await pipeline.execute(request())

        events = [(e.event_type, e.enricher_id) for e in channel.drain()]
        assert (PipelineEventType.ENRICHER_STARTED, "ok") in events
        assert (PipelineEventType.ENRICHER_COMPLETED, "ok") in events
        assert (PipelineEventType.ENRICHER_FAILED, "bad") in events
        assert (PipelineEventType.ENRICHER_SKIPPED, "after") in events
        assert events[-1] == (PipelineEventType.PIPELINE_COMPLETED, None)

    @pytest.mark.asyncio
    async def test_full_channel_drops_events(self, registry, fast_pipeline_config):
        """Test that a full channel never blocks the pipeline."""
        register_stub(registry, "a")
        register_stub(registry, "b")
        channel = EventChannel(maxsize=1)
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config, event_channel=channel)

        result = await pipeline.execute(request())

        assert result.success
        assert len(channel) == 1
        assert channel.dropped > 0

    @pytest.mark.asyncio
    async def test_trace_serialization(self, registry, fast_pipeline_config):
        """Test that the trace lists every enricher in plan order."""
        register_stub(registry, "temporal", stage=PRE)
        register_stub(registry, "memory")
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)

        result = await pipeline.execute(request(context_id="ctx-1", excluded_enrichers=["memory"]))
        trace = result.trace.to_dict()

        assert trace["context_id"] == "ctx-1"
        assert [e["enricher_id"] for e in trace["entries"]] == ["temporal", "memory"]
        assert trace["entries"][0]["status"] == "executed"
        assert trace["entries"][1]["status"] == "skipped"
        assert trace["finished_at"] is not None

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, registry, fast_pipeline_config):
        """Test per-enricher execution statistics."""
        register_stub(registry, "memory")
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)

        await pipeline.execute(request())
        await pipeline.execute(request())

        metrics = pipeline.get_metrics()["memory"]
        assert metrics["execution_count"] == 2
        assert metrics["success_rate"] == 1.0
        assert metrics["error_count"] == 0
        assert "p95_ms" in metrics


class TestPipelineLifecycle:
    """Test registration changes and disposal."""

    @pytest.mark.asyncio
    async def test_register_on_live_pipeline(self, registry, fast_pipeline_config):
        """Test that an enricher registered after initialize runs."""
        register_stub(registry, "memory")
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)
        await pipeline.initialize()

        await pipeline.register_enricher(
            "late",
            lambda config: StubEnricher("late", config=config),
            default_config=EnricherConfig(cache_enabled=False, depends_on=["memory"]),
        )
        result = await pipeline.execute(request())

        assert result.enrichers_executed == ["memory", "late"]

    @pytest.mark.asyncio
    async def test_invalid_registration_rolled_back(self, registry, fast_pipeline_config):
        """Test that a registration breaking the graph is undone."""
        register_stub(registry, "memory")
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)
        await pipeline.initialize()

        with pytest.raises(EnricherNotFoundError):
            await pipeline.register_enricher(
                "late",
                lambda config: StubEnricher("late", config=config),
                default_config=EnricherConfig(depends_on=["ghost"]),
            )

        assert not registry.has("late")
        assert "late" not in pipeline.enrichers

    @pytest.mark.asyncio
    async def test_unregister(self, registry, fast_pipeline_config):
        """Test that unregistering refuses while dependents exist."""
        register_stub(registry, "A", stage=PRE)
        register_stub(registry, "B", depends_on=["A"])
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)
        await pipeline.initialize()

        with pytest.raises(ConfigurationError, match="required by"):
            await pipeline.unregister_enricher("A")

        await pipeline.unregister_enricher("B")
        await pipeline.unregister_enricher("A")

        assert registry.list_ids() == []
        assert pipeline.get_execution_plan() == []

    def test_unknown_override_rejected(self, registry):
        """Test that overrides must name registered enrichers."""
        register_stub(registry, "memory")

        with pytest.raises(ConfigurationError, match="unregistered"):
            EnrichmentPipeline(
                registry, PipelineConfig(enricher_overrides={"ghost": {"timeout_ms": 10}})
            )

    @pytest.mark.asyncio
    async def test_overrides_applied(self, registry, fast_pipeline_config):
        """Test that pipeline overrides replace registered defaults."""
        register_stub(registry, "memory")
        config = fast_pipeline_config.model_copy(
            update={"enricher_overrides": {"memory": {"stage": "finalization"}}}
        )
        pipeline = EnrichmentPipeline(registry, config)
        await pipeline.initialize()

        assert pipeline.get_execution_plan() == [("finalization", ["memory"])]

    @pytest.mark.asyncio
    async def test_dispose(self, registry, fast_pipeline_config):
        """Test that a disposed pipeline refuses new work."""
        instances = {}
        register_stub(registry, "memory", instances=instances)
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)
        await pipeline.initialize()

        await pipeline.dispose()

        assert not instances["memory"].is_initialized
        with pytest.raises(EnricherStateError):
            await pipeline.execute(request())

    @pytest.mark.asyncio
    async def test_maintenance(self, registry, fast_pipeline_config):
        """Test one maintenance pass and the background loop."""
        register_stub(registry, "memory")
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)
        await pipeline.initialize()

        assert pipeline.run_maintenance() == {"cache": 0, "memory": 0}

        pipeline.start_maintenance(interval_seconds=0.01)
        await asyncio.sleep(0.03)
        await pipeline.stop_maintenance()
        await pipeline.dispose()

    @pytest.mark.asyncio
    async def test_health_status(self, registry, fast_pipeline_config):
        """Test that an initialized pipeline of healthy enrichers reports healthy."""
        register_stub(registry, "memory")
        pipeline = EnrichmentPipeline(registry, fast_pipeline_config)
        await pipeline.initialize()

        health = await pipeline.get_health_status()

        assert health["healthy"] is True
        assert health["enrichers"]["memory"]["circuit"] == "closed"

        with pytest.raises(EnricherNotFoundError):
            pipeline.get_circuit_breaker("ghost")

"""Tests for the enricher dependency graph."""

import pytest

from agent_context.config.models import EnricherConfig, EnrichmentPriority, EnrichmentStage
from agent_context.enrichment.dependency_graph import DependencyGraph, GraphSpec, find_cycle
from agent_context.enrichment.pipeline import EnrichmentPipeline
from agent_context.utils.exceptions import (
    CircularDependencyError,
    ConfigurationError,
    EnricherNotFoundError,
)

from tests.helpers.fakes import register_stub


def spec(enricher_id, index, stage=EnrichmentStage.CORE_ENRICHMENT, **kwargs):
    """Build a GraphSpec with a config made from keyword arguments."""
    provided = kwargs.pop("provided_keys", [])
    required = kwargs.pop("required_keys", [])
    return GraphSpec(
        enricher_id=enricher_id,
        config=EnricherConfig(stage=stage, **kwargs),
        registration_index=index,
        provided_keys=provided,
        required_keys=required,
    )


class TestExecutionPlan:
    """Test deterministic plan ordering."""

    def test_stages_in_order(self):
        """Test that stages run in their declared order regardless of registration."""
        graph = DependencyGraph.build(
            [
                spec("final", 0, EnrichmentStage.FINALIZATION),
                spec("core", 1, EnrichmentStage.CORE_ENRICHMENT),
                spec("pre", 2, EnrichmentStage.PRE_PROCESSING),
            ]
        )

        stages = [stage for stage, _ in graph.execution_plan()]
        assert stages == [
            EnrichmentStage.PRE_PROCESSING,
            EnrichmentStage.CORE_ENRICHMENT,
            EnrichmentStage.FINALIZATION,
        ]
        assert graph.ordered_ids() == ["pre", "core", "final"]

    def test_priority_then_registration_tie_break(self):
        """Test ordering within a stage without dependencies."""
        graph = DependencyGraph.build(
            [
                spec("low", 0, priority=EnrichmentPriority.LOW),
                spec("medium_a", 1),
                spec("critical", 2, priority=EnrichmentPriority.CRITICAL),
                spec("medium_b", 3),
            ]
        )

        assert graph.ordered_ids() == ["critical", "medium_a", "medium_b", "low"]

    def test_dependency_overrides_priority(self):
        """Test that a dependency runs first even with lower priority."""
        graph = DependencyGraph.build(
            [
                spec("base", 0, priority=EnrichmentPriority.LOW),
                spec("derived", 1, priority=EnrichmentPriority.CRITICAL, depends_on=["base"]),
            ]
        )

        assert graph.ordered_ids() == ["base", "derived"]
        assert graph.nodes["base"].dependents == ["derived"]
        assert not graph.nodes["derived"].can_run_in_parallel

    def test_identical_inputs_plan_identically(self):
        """Test that building twice gives the same plan."""
        specs = [spec(f"e{i}", i, priority=EnrichmentPriority(i % 4)) for i in range(8)]
        assert (
            DependencyGraph.build(specs).ordered_ids()
            == DependencyGraph.build(list(specs)).ordered_ids()
        )

    def test_required_keys_add_edges(self):
        """Test that required keys depend on their providers."""
        graph = DependencyGraph.build(
            [
                spec("consumer", 0, required_keys=["memory_context"]),
                spec("provider", 1, provided_keys=["memory_context"]),
            ]
        )

        assert graph.nodes["consumer"].dependencies == ["provider"]
        assert graph.ordered_ids() == ["provider", "consumer"]

    def test_transitive_dependencies(self):
        """Test transitive upstream lookup."""
        graph = DependencyGraph.build(
            [
                spec("a", 0),
                spec("b", 1, depends_on=["a"]),
                spec("c", 2, depends_on=["b"]),
                spec("d", 3),
            ]
        )

        assert graph.transitive_dependencies("c") == {"a", "b"}
        assert graph.transitive_dependencies("d") == set()


class TestGraphValidation:
    """Test rejection of invalid graphs."""

    def test_cycle_detected(self):
        """Test that a two-node cycle is rejected with its path."""
        with pytest.raises(CircularDependencyError) as exc_info:
            DependencyGraph.build(
                [spec("a", 0, depends_on=["b"]), spec("b", 1, depends_on=["a"])]
            )

        assert exc_info.value.cycle == ["a", "b", "a"]
        assert "a -> b -> a" in str(exc_info.value)

    def test_longer_cycle_through_keys(self):
        """Test a cycle formed by key requirements."""
        with pytest.raises(CircularDependencyError):
            DependencyGraph.build(
                [
                    spec("a", 0, provided_keys=["a_context"], required_keys=["c_context"]),
                    spec("b", 1, provided_keys=["b_context"], required_keys=["a_context"]),
                    spec("c", 2, provided_keys=["c_context"], required_keys=["b_context"]),
                ]
            )

    def test_unknown_dependency(self):
        """Test that depends_on must name a registered enricher."""
        with pytest.raises(EnricherNotFoundError) as exc_info:
            DependencyGraph.build([spec("a", 0, depends_on=["ghost"])])
        assert exc_info.value.enricher_id == "ghost"

    def test_missing_required_key(self):
        """Test that a required key without a provider is a configuration error."""
        with pytest.raises(ConfigurationError, match="no registered enricher provides"):
            DependencyGraph.build([spec("a", 0, required_keys=["nobody_context"])])

    def test_dependency_in_later_stage(self):
        """Test that a dependency cannot run after its dependent."""
        with pytest.raises(ConfigurationError, match="later stage"):
            DependencyGraph.build(
                [
                    spec("early", 0, EnrichmentStage.PRE_PROCESSING, depends_on=["late"]),
                    spec("late", 1, EnrichmentStage.POST_PROCESSING),
                ]
            )

    def test_find_cycle_on_acyclic_graph(self):
        """Test that find_cycle returns None for a DAG."""
        graph = DependencyGraph.build([spec("a", 0), spec("b", 1, depends_on=["a"])])
        assert find_cycle(graph.nodes) is None


class TestPipelineGraphValidation:
    """Test graph validation when a pipeline is constructed."""

    def test_cycle_rejected_at_construction(self, registry):
        """Test that a depends_on cycle fails before any request runs."""
        register_stub(registry, "A", depends_on=["B"])
        register_stub(registry, "B", depends_on=["A"])

        with pytest.raises(CircularDependencyError):
            EnrichmentPipeline(registry)

    @pytest.mark.asyncio
    async def test_missing_required_key_rejected_at_initialize(self, registry):
        """Test that key requirements are checked once enrichers exist."""
        register_stub(registry, "consumer", required_keys=["absent_context"])
        pipeline = EnrichmentPipeline(registry)

        with pytest.raises(ConfigurationError, match="absent_context"):
            await pipeline.initialize()

"""Enricher dependency graph.

Builds the DAG of enrichers from explicit ``depends_on`` entries and from
the static key contract (``get_required_keys`` matched against other
enrichers' ``get_provided_keys``), rejects cycles with a three-color
depth-first search, and derives the deterministic execution plan:
stages in order, and within a stage a topological order tie-broken by
priority then registration order.
"""

import heapq
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from agent_context.config.models import EnricherConfig, EnrichmentStage
from agent_context.enrichment.types import DependencyGraphNode
from agent_context.utils.exceptions import (
    CircularDependencyError,
    ConfigurationError,
    EnricherNotFoundError,
)
from agent_context.utils.logging import get_logger

logger = get_logger(__name__)

WHITE, GRAY, BLACK = 0, 1, 2


@dataclass
class GraphSpec:
    """What the graph needs to know about one enricher."""

    enricher_id: str
    config: EnricherConfig
    registration_index: int
    provided_keys: List[str] = field(default_factory=list)
    required_keys: List[str] = field(default_factory=list)


class DependencyGraph:
    """Validated DAG of enrichers with a precomputed execution plan."""

    def __init__(self, nodes: Dict[str, DependencyGraphNode]):
        """Wrap already-validated nodes; use :meth:`build` to construct."""
        self.nodes = nodes
        self._plan = self._compute_plan()

    @classmethod
    def build(cls, specs: List[GraphSpec]) -> "DependencyGraph":
        """Build and validate the graph.

        Args:
            specs: One entry per enricher, in registration order

        Returns:
            The validated graph

        Raises:
            EnricherNotFoundError: If ``depends_on`` names an unknown enricher
            ConfigurationError: If a required key has no provider, or a
                dependency sits in a later stage than its dependent
            CircularDependencyError: If the dependencies form a cycle
        """
        by_id = {spec.enricher_id: spec for spec in specs}
        providers: Dict[str, List[str]] = {}
        for spec in specs:
            for key in spec.provided_keys:
                providers.setdefault(key, []).append(spec.enricher_id)

        nodes: Dict[str, DependencyGraphNode] = {}
        for spec in specs:
            dependencies: List[str] = []
            for dep in spec.config.depends_on:
                if dep not in by_id:
                    raise EnricherNotFoundError(
                        f"Enricher '{spec.enricher_id}' depends on unknown enricher '{dep}'",
                        enricher_id=dep,
                        details={"dependent": spec.enricher_id},
                    )
                dependencies.append(dep)

            for key in spec.required_keys:
                key_providers = [p for p in providers.get(key, []) if p != spec.enricher_id]
                if not key_providers:
                    raise ConfigurationError(
                        f"Enricher '{spec.enricher_id}' requires key '{key}' "
                        f"which no registered enricher provides",
                        details={"enricher_id": spec.enricher_id, "key": key},
                    )
                for provider in key_providers:
                    if provider not in dependencies:
                        dependencies.append(provider)

            nodes[spec.enricher_id] = DependencyGraphNode(
                enricher_id=spec.enricher_id,
                stage=spec.config.stage,
                priority=spec.config.priority,
                registration_index=spec.registration_index,
                dependencies=dependencies,
                required=spec.config.required,
            )

        for node in nodes.values():
            for dep in node.dependencies:
                nodes[dep].dependents.append(node.enricher_id)

        cycle = find_cycle(nodes)
        if cycle:
            raise CircularDependencyError(
                f"Circular dependency detected: {' -> '.join(cycle)}",
                cycle=cycle,
            )

        for node in nodes.values():
            for dep in node.dependencies:
                if nodes[dep].stage.order > node.stage.order:
                    raise ConfigurationError(
                        f"Enricher '{node.enricher_id}' ({node.stage.value}) depends on "
                        f"'{dep}' which runs in the later stage {nodes[dep].stage.value}",
                        details={"enricher_id": node.enricher_id, "dependency": dep},
                    )

        graph = cls(nodes)
        logger.debug(f"Built dependency graph with {len(nodes)} enrichers")
        return graph

    def execution_plan(self) -> List[Tuple[EnrichmentStage, List[str]]]:
        """Non-empty stages in order, each with its ordered enricher ids."""
        return [(stage, list(ids)) for stage, ids in self._plan]

    def ordered_ids(self) -> List[str]:
        """Every enricher id in plan order."""
        return [enricher_id for _, ids in self._plan for enricher_id in ids]

    def transitive_dependencies(self, enricher_id: str) -> Set[str]:
        """All enrichers that must finish before this one."""
        seen: Set[str] = set()
        stack = list(self.nodes[enricher_id].dependencies)
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self.nodes[current].dependencies)
        return seen

    def _compute_plan(self) -> List[Tuple[EnrichmentStage, List[str]]]:
        plan = []
        for stage in sorted(
            {node.stage for node in self.nodes.values()}, key=lambda s: s.order
        ):
            members = {i: n for i, n in self.nodes.items() if n.stage == stage}
            indegree = {
                i: sum(1 for d in n.dependencies if d in members) for i, n in members.items()
            }
            heap = [members[i].sort_key + (i,) for i, deg in indegree.items() if deg == 0]
            heapq.heapify(heap)

            ordered: List[str] = []
            while heap:
                enricher_id = heapq.heappop(heap)[-1]
                ordered.append(enricher_id)
                for dependent in members[enricher_id].dependents:
                    if dependent in indegree:
                        indegree[dependent] -= 1
                        if indegree[dependent] == 0:
                            heapq.heappush(heap, members[dependent].sort_key + (dependent,))

            plan.append((stage, ordered))
        return plan


def find_cycle(nodes: Dict[str, DependencyGraphNode]) -> Optional[List[str]]:
    """Three-color depth-first search for a dependency cycle.

    Args:
        nodes: Graph nodes keyed by enricher id

    Returns:
        The cycle as a list of ids with the first id repeated at the end,
        or None if the graph is acyclic
    """
    color = {enricher_id: WHITE for enricher_id in nodes}
    ordered = sorted(nodes, key=lambda i: nodes[i].registration_index)

    for root in ordered:
        if color[root] != WHITE:
            continue

        path: List[str] = [root]
        iterators = [iter(nodes[root].dependencies)]
        color[root] = GRAY

        while iterators:
            dep = next(iterators[-1], None)
            if dep is None:
                color[path.pop()] = BLACK
                iterators.pop()
                continue
            if color[dep] == GRAY:
                return path[path.index(dep):] + [dep]
            if color[dep] == WHITE:
                color[dep] = GRAY
                path.append(dep)
                iterators.append(iter(nodes[dep].dependencies))

    return None

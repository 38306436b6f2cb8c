"""Cognition context transformer.

Shapes a ``UnifiedContext`` for reasoning modules: the current thought,
thought history and reasoning chain, decisions, goals, plans and
constraints, plus derived cognitive load, reasoning depth, focus terms,
memory references and contextual factors.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from agent_context.config.models import TransformationStrategy, TransformerOptions
from agent_context.context.types import (
    CognitionData,
    ContextEnvironment,
    ContextState,
    MemoryData,
    UnifiedContext,
    clamp,
)
from agent_context.enrichment.scoring import ScoringStrategy, get_default_scoring_strategy
from agent_context.transformation.base import BaseContextTransformer
from agent_context.transformation.types import (
    TransformationMetadata,
    TransformerCapabilities,
    ValidationIssue,
    ValidationSeverity,
)

COGNITION_TRANSFORMER_ID = "cognition"

MINIMAL_THOUGHTS = 3
MINIMAL_REASONING_STEPS = 5
MINIMAL_CONTEXTUAL_FACTORS = 3
OPTIMIZED_MEMORY_RELEVANCE = 0.5
OPTIMIZED_MAX_MEMORIES = 10
OPTIMIZED_FACTOR_INFLUENCE = 0.2
MAX_REASONING_DEPTH = 10.0
FOCUS_TERMS = 3
_PUNCTUATION = str.maketrans("", "", ".,!?;:")

# Only present in the FULL output
FULL_ONLY_FIELDS = ("decision_history", "processing_metadata")

DERIVED_FIELDS = [
    "cognitive_load",
    "reasoning_depth",
    "focus",
    "contextual_factors",
    "decision_history",
    "processing_metadata",
]


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class CognitionContextTransformer(BaseContextTransformer[Dict[str, Any]]):
    """Transforms unified contexts into the cognition module's shape.

    Output is a deterministic function of the input context: no field
    depends on the wall clock.
    """

    def __init__(
        self,
        options: Optional[TransformerOptions] = None,
        scoring: Optional[ScoringStrategy] = None,
        **kwargs: Any,
    ):
        super().__init__(
            transformer_id=COGNITION_TRANSFORMER_ID,
            target="cognition",
            reversible=True,
            options=options,
            **kwargs,
        )
        self.scoring = scoring or get_default_scoring_strategy()

    def _derived_fields(self) -> List[str]:
        return DERIVED_FIELDS

    # Extraction

    def _extract(self, context: UnifiedContext) -> Dict[str, Any]:
        cognition: CognitionData = context.cognition or {}
        thoughts = list(cognition.get("thoughts", []))
        reasoning = list(cognition.get("reasoning_chain", []))

        return {
            "agent_id": context.agent_id,
            "session_id": context.session_id,
            "context_id": context.context_id,
            "timestamp": context.timestamp.isoformat(),
            "current_thought": self.current_thought(context),
            "thought_history": thoughts,
            "reasoning_chain": [
                {
                    "id": f"step_{index}",
                    "step": step,
                    "evidence": [],
                    "confidence": 0.8,
                    "dependencies": [f"step_{index - 1}"] if index else [],
                }
                for index, step in enumerate(reasoning)
            ],
            "active_decisions": [
                {
                    "id": decision.get("id", f"decision_{index}"),
                    "question": decision.get("description", ""),
                    "options": [
                        {"id": f"option_{i}", "description": option, "score": 0.5}
                        for i, option in enumerate(decision.get("options", []))
                    ],
                    "status": "pending",
                }
                for index, decision in enumerate(cognition.get("decisions", []))
            ],
            "decision_history": [],
            "current_goals": [
                {
                    "id": goal.get("id", f"goal_{index}"),
                    "description": goal.get("description", ""),
                    "priority": clamp(goal.get("priority", 0.5)),
                    "deadline": _iso(goal.get("deadline")),
                }
                for index, goal in enumerate(cognition.get("goals", []))
            ],
            "active_plans": [
                {
                    "id": plan.get("id", f"plan_{index}"),
                    "description": plan.get("goal", ""),
                    "steps": [
                        {
                            "id": step.get("id", f"step_{order}"),
                            "description": step.get("description", ""),
                            "order": order,
                            "dependencies": list(step.get("dependencies", [])),
                            "status": step.get("status", "pending"),
                        }
                        for order, step in enumerate(plan.get("steps", []))
                    ],
                    "status": plan.get("status", "draft"),
                }
                for index, plan in enumerate(cognition.get("plans", []))
            ],
            "constraints": [
                {
                    "id": constraint.get("id", f"constraint_{index}"),
                    "type": constraint.get("type", "logical"),
                    "description": constraint.get("description", ""),
                    "severity": clamp(constraint.get("severity", 0.5)),
                }
                for index, constraint in enumerate(cognition.get("constraints", []))
            ],
            "cognitive_load": self.cognitive_load(context),
            "reasoning_depth": self.reasoning_depth(context),
            "confidence": clamp(context.state.confidence),
            "focus": self.focus(context),
            "relevant_memories": self.memory_references(context),
            "memory_queries": list((context.memory or {}).get("memory_queries", [])),
            "available_actions": list(context.environment.capabilities),
            "contextual_factors": self.contextual_factors(context),
            "processing_metadata": {
                "cognitive_steps": len(thoughts),
                "memory_lookups": len((context.memory or {}).get("memory_queries", [])),
                "decision_points": len(cognition.get("decisions", [])),
                "reasoning_depth": self.reasoning_depth(context),
                "confidence": clamp(context.state.confidence),
            },
        }

    @staticmethod
    def current_thought(context: UnifiedContext) -> str:
        if context.messages:
            return context.messages[-1].content
        return context.content or ""

    @staticmethod
    def cognitive_load(context: UnifiedContext) -> float:
        """Load in [0, 1] from message count, state complexity and thought count."""
        load = min(len(context.messages) / 10, 0.3)
        load += context.state.complexity * 0.4
        if context.cognition:
            load += len(context.cognition.get("thoughts", [])) / 20 * 0.3
        return clamp(load)

    @staticmethod
    def reasoning_depth(context: UnifiedContext) -> float:
        """Depth in [0, 10]; 1 when the context carries no cognition data."""
        if not context.cognition:
            return 1.0
        thought_depth = len(context.cognition.get("thoughts", [])) / 5
        chain_depth = len(context.cognition.get("reasoning_chain", [])) / 3
        return clamp(max(thought_depth, chain_depth), 0.0, MAX_REASONING_DEPTH)

    def focus(self, context: UnifiedContext) -> List[str]:
        """First few longer words of the current thought."""
        text = self.current_thought(context).translate(_PUNCTUATION)
        return self.scoring.focus_terms(text, limit=FOCUS_TERMS, min_length=5)

    @staticmethod
    def memory_references(context: UnifiedContext) -> List[Dict[str, Any]]:
        """Memory references with recency relative to the context timestamp."""
        references = []
        for memory in (context.memory or {}).get("relevant_memories", []):
            last_accessed = memory.get("last_accessed")
            if last_accessed is not None:
                age_days = (context.timestamp - last_accessed).total_seconds() / 86400
                recency = clamp(1 - age_days)
            else:
                recency = 0.0
            references.append(
                {
                    "id": memory.get("id", ""),
                    "type": memory.get("type", "episodic"),
                    "relevance": clamp(memory.get("relevance", 0.0)),
                    "recency": recency,
                    "last_accessed": _iso(last_accessed),
                }
            )
        return references

    @staticmethod
    def contextual_factors(context: UnifiedContext) -> List[Dict[str, Any]]:
        factors = []
        if context.environment.platform:
            factors.append(
                {
                    "factor": "platform",
                    "value": context.environment.platform,
                    "influence": 0.3,
                    "reliability": 0.9,
                }
            )
        factors.append(
            {
                "factor": "engagement",
                "value": context.state.engagement,
                "influence": context.state.engagement - 0.5,
                "reliability": 0.8,
            }
        )
        factors.append(
            {
                "factor": "phase",
                "value": context.state.phase,
                "influence": 0.1,
                "reliability": 0.7,
            }
        )
        return factors

    # Strategies

    def _apply_strategy(
        self, view: Dict[str, Any], strategy: TransformationStrategy
    ) -> Tuple[Dict[str, Any], Dict[str, int]]:
        if strategy == TransformationStrategy.FULL:
            return dict(view), {}

        output = {k: v for k, v in view.items() if k not in FULL_ONLY_FIELDS}
        dropped: Dict[str, int] = {}

        if strategy == TransformationStrategy.MINIMAL:
            output["thought_history"] = view["thought_history"][-MINIMAL_THOUGHTS:]
            output["reasoning_chain"] = view["reasoning_chain"][-MINIMAL_REASONING_STEPS:]
            output["contextual_factors"] = view["contextual_factors"][:MINIMAL_CONTEXTUAL_FACTORS]
            for name in ("thought_history", "reasoning_chain", "contextual_factors"):
                removed = len(view[name]) - len(output[name])
                if removed:
                    dropped[name] = removed

        elif strategy == TransformationStrategy.OPTIMIZED:
            memories = sorted(
                (m for m in view["relevant_memories"] if m["relevance"] > OPTIMIZED_MEMORY_RELEVANCE),
                key=lambda m: m["relevance"],
                reverse=True,
            )[:OPTIMIZED_MAX_MEMORIES]
            output["relevant_memories"] = memories
            output["contextual_factors"] = sorted(
                (
                    f
                    for f in view["contextual_factors"]
                    if abs(f["influence"]) > OPTIMIZED_FACTOR_INFLUENCE
                ),
                key=lambda f: abs(f["influence"]),
                reverse=True,
            )
            for name in ("relevant_memories", "contextual_factors"):
                removed = len(view[name]) - len(output[name])
                if removed:
                    dropped[name] = removed

        return output, dropped

    # Validation

    def _validate_fields(self, transformed: Dict[str, Any]) -> List[ValidationIssue]:
        issues = []
        if not transformed.get("agent_id"):
            issues.append(
                ValidationIssue(
                    "agent_id", "Agent ID is required", ValidationSeverity.CRITICAL, "MISSING_AGENT_ID"
                )
            )
        if not transformed.get("context_id"):
            issues.append(
                ValidationIssue(
                    "context_id",
                    "Context ID is required",
                    ValidationSeverity.CRITICAL,
                    "MISSING_CONTEXT_ID",
                )
            )

        ranges = {
            "cognitive_load": (0.0, 1.0, "INVALID_COGNITIVE_LOAD"),
            "confidence": (0.0, 1.0, "INVALID_CONFIDENCE"),
            "reasoning_depth": (0.0, MAX_REASONING_DEPTH, "INVALID_REASONING_DEPTH"),
        }
        for name, (low, high, code) in ranges.items():
            value = transformed.get(name)
            if not isinstance(value, (int, float)) or not low <= value <= high:
                issues.append(
                    ValidationIssue(
                        name,
                        f"{name} must be between {low:g} and {high:g}",
                        ValidationSeverity.HIGH,
                        code,
                    )
                )

        if not transformed.get("current_thought"):
            issues.append(
                ValidationIssue(
                    "current_thought",
                    "No current thought to reason about",
                    ValidationSeverity.LOW,
                    "EMPTY_CURRENT_THOUGHT",
                )
            )
        return issues

    # Reversal

    def _reconstruct(
        self, transformed: Dict[str, Any], metadata: TransformationMetadata
    ) -> UnifiedContext:
        cognition: CognitionData = {
            "thoughts": list(transformed.get("thought_history", [])),
            "reasoning_chain": [s["step"] for s in transformed.get("reasoning_chain", [])],
            "decisions": [
                {
                    "id": d["id"],
                    "description": d["question"],
                    "options": [o["description"] for o in d.get("options", [])],
                }
                for d in transformed.get("active_decisions", [])
            ],
            "goals": [
                {
                    "id": g["id"],
                    "description": g["description"],
                    "priority": g["priority"],
                    "deadline": _parse(g.get("deadline")),
                }
                for g in transformed.get("current_goals", [])
            ],
            "plans": [
                {
                    "id": p["id"],
                    "goal": p["description"],
                    "steps": [
                        {
                            "id": s["id"],
                            "description": s["description"],
                            "dependencies": list(s["dependencies"]),
                            "status": s["status"],
                        }
                        for s in p.get("steps", [])
                    ],
                    "status": p["status"],
                }
                for p in transformed.get("active_plans", [])
            ],
            "constraints": [
                {
                    "id": c["id"],
                    "type": c["type"],
                    "description": c["description"],
                    "severity": c["severity"],
                }
                for c in transformed.get("constraints", [])
            ],
        }
        memory: MemoryData = {
            "relevant_memories": [
                {
                    "id": m["id"],
                    "type": m["type"],
                    "relevance": m["relevance"],
                    "last_accessed": _parse(m.get("last_accessed")),
                }
                for m in transformed.get("relevant_memories", [])
            ],
            "memory_queries": list(transformed.get("memory_queries", [])),
        }

        factors = {f["factor"]: f["value"] for f in transformed.get("contextual_factors", [])}
        state = ContextState(confidence=transformed.get("confidence", 0.5))
        if "engagement" in factors:
            state.engagement = clamp(factors["engagement"])
        if "phase" in factors:
            state.phase = factors["phase"]

        return UnifiedContext(
            agent_id=transformed["agent_id"],
            session_id=transformed.get("session_id"),
            context_id=transformed.get("context_id") or metadata.source_context_id,
            timestamp=_parse(transformed.get("timestamp")) or datetime.now(),
            version=metadata.source_version,
            content=transformed.get("current_thought", ""),
            state=state,
            environment=ContextEnvironment(
                platform=factors.get("platform"),
                capabilities=list(transformed.get("available_actions", [])),
            ),
            cognition=cognition,
            memory=memory,
        )

    def get_capabilities(self) -> TransformerCapabilities:
        capabilities = super().get_capabilities()
        capabilities.details["lossy_strategies"] = [
            TransformationStrategy.MINIMAL.value,
            TransformationStrategy.OPTIMIZED.value,
        ]
        capabilities.details["dependencies"] = ["cognition-module"]
        return capabilities


def create_cognition_transformer(
    options: Optional[TransformerOptions] = None,
) -> CognitionContextTransformer:
    """Build a cognition transformer with the given defaults."""
    return CognitionContextTransformer(options=options)

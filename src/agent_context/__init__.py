"""Agent Context - context enrichment and transformation for AI agents.

Assembles a per-interaction context for an agent by running pluggable
enrichers in dependency order, merging their namespaced outputs, and
converting the result into consumer-specific shapes.
"""

__version__ = "0.1.0"
__author__ = "Agent Context Team"

# Package metadata
__all__ = [
    "__version__",
    "__author__",
]

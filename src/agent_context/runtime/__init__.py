"""Runtime glue: per-agent context cache and system bootstrapping."""

from agent_context.runtime.adapter import RuntimeContextAdapter
from agent_context.runtime.bootstrapper import ContextBootstrapper, InitializationResult

__all__ = [
    "RuntimeContextAdapter",
    "ContextBootstrapper",
    "InitializationResult",
]

"""Context system bootstrapper.

Builds the registry, pipeline, transformers and runtime adapter from a
``ContextSystemConfig``, tracks registered agents and runs periodic
health checks and performance snapshots until shutdown.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from agent_context.config.loader import ConfigLoader
from agent_context.config.models import ContextSystemConfig
from agent_context.config.settings import ContextSettings, load_settings
from agent_context.context.types import UnifiedContext
from agent_context.enrichers.defaults import build_default_registry
from agent_context.enrichment.events import EventChannel
from agent_context.enrichment.pipeline import EnrichmentPipeline
from agent_context.enrichment.providers import (
    AgentAccessor,
    EmotionModuleAccessor,
    MemoryProvider,
)
from agent_context.enrichment.registry import EnricherRegistry
from agent_context.enrichment.scoring import ScoringStrategy
from agent_context.runtime.adapter import RuntimeContextAdapter
from agent_context.transformation.cognition import CognitionContextTransformer
from agent_context.transformation.memory import MemoryContextTransformer
from agent_context.utils.exceptions import AgentContextError, EnricherStateError
from agent_context.utils.logging import (
    get_current_log_files,
    get_logger,
    log_debug_system_state,
    setup_logging,
)

logger = get_logger(__name__)

CRITICAL_COMPONENTS = ("registry", "pipeline", "runtime_adapter")


@dataclass
class InitializationResult:
    """Outcome of :meth:`ContextBootstrapper.initialize`."""

    success: bool
    message: str
    duration_ms: float
    components_initialized: List[str] = field(default_factory=list)
    components_failed: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)


class ContextBootstrapper:
    """Starts, monitors and stops the context system.

    This class wires the components together in dependency order and
    reports per-component success. Initialization failures are returned
    in the result rather than raised.
    """

    def __init__(
        self,
        config: Optional[ContextSystemConfig] = None,
        memory_provider: Optional[MemoryProvider] = None,
        emotion_accessor: Optional[EmotionModuleAccessor] = None,
        agent_accessor: Optional[AgentAccessor] = None,
        scoring: Optional[ScoringStrategy] = None,
        event_channel: Optional[EventChannel] = None,
    ):
        """Initialize the bootstrapper.

        Args:
            config: System configuration; defaults apply when omitted
            memory_provider: Store used by the memory and social enrichers
            emotion_accessor: Returns the agent's emotion module
            agent_accessor: Returns the current agent snapshot
            scoring: Scoring strategy shared by the text-based enrichers
            event_channel: Optional channel for pipeline events
        """
        self.config = config or ContextSystemConfig()
        self.memory_provider = memory_provider
        self.emotion_accessor = emotion_accessor
        self.agent_accessor = agent_accessor
        self.scoring = scoring
        self.event_channel = event_channel

        self.registry: Optional[EnricherRegistry] = None
        self.pipeline: Optional[EnrichmentPipeline] = None
        self.adapter: Optional[RuntimeContextAdapter] = None

        self.initialized = False
        self.healthy = False
        self.agents: Dict[str, datetime] = {}
        self.errors: List[str] = []
        self.warnings: List[str] = []
        self.last_health: Optional[Dict[str, Any]] = None
        self._timers: List[asyncio.Task] = []

    @classmethod
    def from_settings(
        cls, settings: Optional[ContextSettings] = None, **collaborators: Any
    ) -> "ContextBootstrapper":
        """Configure logging and load configuration from the environment.

        Args:
            settings: Environment settings; read from the environment and
                ``.env`` when omitted
            **collaborators: Providers passed through to the constructor

        Returns:
            A bootstrapper ready to be initialized

        Raises:
            ConfigurationError: If the configured YAML file is invalid
        """
        settings = settings or load_settings()
        setup_logging(settings.log_level, Path(settings.log_dir))

        if settings.config_path:
            config = ConfigLoader(settings.config_path).load()
        else:
            config = ContextSystemConfig()
        if not settings.enable_timers:
            config = config.model_copy(
                update={
                    "bootstrap": config.bootstrap.model_copy(update={"enable_timers": False})
                }
            )
        return cls(config, **collaborators)

    async def initialize(self) -> InitializationResult:
        """Build every component and start the periodic checks.

        Returns:
            Which components came up and which failed
        """
        if self.initialized:
            return InitializationResult(
                success=True,
                message="Context system already initialized",
                duration_ms=0.0,
                components_initialized=list(CRITICAL_COMPONENTS),
            )

        start = time.perf_counter()
        initialized: List[str] = []
        failed: List[str] = []
        logger.info("Initializing context system...")

        async def step(name: str, build: Callable[[], Awaitable[None]]) -> None:
            try:
                await build()
            except AgentContextError as e:
                failed.append(name)
                self.errors.append(f"{name} initialization failed: {e}")
                logger.error(f"Failed to initialize {name}: {e}")
            else:
                initialized.append(name)
                logger.debug(f"{name} initialized")

        async def build_registry() -> None:
            self.registry = build_default_registry(
                self.config,
                memory_provider=self.memory_provider,
                emotion_accessor=self.emotion_accessor,
                agent_accessor=self.agent_accessor,
                scoring=self.scoring,
            )

        async def build_pipeline() -> None:
            pipeline = EnrichmentPipeline(
                self.registry, self.config.pipeline, event_channel=self.event_channel
            )
            await pipeline.initialize()
            self.pipeline = pipeline

        async def build_adapter() -> None:
            self.adapter = RuntimeContextAdapter(
                self.pipeline,
                transformers=[
                    CognitionContextTransformer(options=self.config.transformer),
                    MemoryContextTransformer(options=self.config.transformer),
                ],
                options=self.config.runtime,
            )

        await step("registry", build_registry)
        if self.registry is not None:
            await step("pipeline", build_pipeline)
        if self.pipeline is not None:
            await step("runtime_adapter", build_adapter)

        duration_ms = (time.perf_counter() - start) * 1000
        missing = [c for c in CRITICAL_COMPONENTS if c not in initialized]
        if missing:
            if self.pipeline is not None:
                await self.pipeline.dispose()
                self.pipeline = None
            message = f"Critical components failed to initialize: {', '.join(missing)}"
            logger.error(f"Context system initialization failed: {message}")
            return InitializationResult(
                success=False,
                message=message,
                duration_ms=duration_ms,
                components_initialized=initialized,
                components_failed=failed + [c for c in missing if c not in failed],
                warnings=list(self.warnings),
            )

        health = await self.pipeline.get_health_status()
        for enricher_id, status in health["enrichers"].items():
            if "init_error" in status:
                self.warnings.append(f"Enricher '{enricher_id}' excluded: {status['init_error']}")

        self.initialized = True
        self.healthy = True
        self.last_health = health
        if self.config.bootstrap.enable_timers:
            self._start_timers()

        logger.info(
            f"Context system initialized in {duration_ms:.1f}ms "
            f"({len(initialized)} components, {len(self.warnings)} warnings)"
        )
        return InitializationResult(
            success=True,
            message="Context system initialized successfully",
            duration_ms=duration_ms,
            components_initialized=initialized,
            components_failed=failed,
            warnings=list(self.warnings),
        )

    # Agents

    def register_agent(self, agent_id: str, session_id: Optional[str] = None) -> UnifiedContext:
        """Track an agent and create its context.

        Raises:
            EnricherStateError: If the system is not initialized
        """
        if not self.initialized or self.adapter is None:
            raise EnricherStateError("Context system not initialized")
        self.agents[agent_id] = datetime.now()
        context = self.adapter.get_or_create_context(agent_id, session_id)
        logger.debug(f"Agent registered with context system: {agent_id}")
        return context

    def unregister_agent(self, agent_id: str) -> bool:
        if not self.initialized or self.adapter is None or agent_id not in self.agents:
            return False
        self.adapter.clear_context(agent_id)
        del self.agents[agent_id]
        logger.debug(f"Agent unregistered from context system: {agent_id}")
        return True

    # Periodic checks

    def _start_timers(self) -> None:
        bootstrap = self.config.bootstrap
        self._timers = [
            asyncio.create_task(
                self._every(bootstrap.health_check_interval_seconds, self.perform_health_check)
            ),
            asyncio.create_task(
                self._every(
                    bootstrap.performance_check_interval_seconds,
                    self.collect_performance_metrics,
                )
            ),
        ]
        self.pipeline.start_maintenance(self.config.runtime.sweep_interval_seconds)
        self.adapter.start_sweeper()

    @staticmethod
    async def _every(interval: float, action: Callable[[], Awaitable[Any]]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await action()
            except Exception as e:
                logger.error(f"Periodic {action.__name__} failed: {e}")

    async def perform_health_check(self) -> bool:
        """Refresh ``healthy`` from the pipeline's health report."""
        try:
            health = await self.pipeline.get_health_status()
        except Exception as e:
            self.healthy = False
            self.errors.append(f"Health check failed: {e}")
            logger.error(f"Context system health check error: {e}")
            return False

        self.last_health = health
        unhealthy = [i for i, s in health["enrichers"].items() if not s["healthy"]]
        self.healthy = not unhealthy and health["initialized"]
        if unhealthy:
            logger.warning(f"Context system health check failed for enrichers: {unhealthy}")
        return self.healthy

    async def collect_performance_metrics(self) -> Dict[str, Any]:
        """Log a snapshot of pipeline and adapter statistics at DEBUG."""
        snapshot = {
            "timestamp": datetime.now().isoformat(),
            "total_agents": len(self.agents),
            "adapter": self.adapter.get_stats(),
            "cache": self.pipeline.get_cache_stats(),
            "enrichers": {
                i: f"{m['execution_count']} runs, avg {m['average_execution_time_ms']}ms, "
                f"p95 {m['p95_ms']:.1f}ms"
                for i, m in self.pipeline.get_metrics().items()
            },
        }
        log_debug_system_state(snapshot)
        return snapshot

    def get_status(self) -> Dict[str, Any]:
        return {
            "initialized": self.initialized,
            "healthy": self.healthy,
            "components": {
                "registry": self.registry is not None,
                "pipeline": self.pipeline is not None,
                "runtime_adapter": self.adapter is not None,
            },
            "statistics": {
                "total_agents": len(self.agents),
                "active_contexts": len(self.adapter.list_agents()) if self.adapter else 0,
                "timers_running": sum(1 for t in self._timers if not t.done()),
            },
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "log_files": {k: str(v) for k, v in get_current_log_files().items()},
        }

    async def shutdown(self) -> None:
        """Cancel timers, drop agent contexts and dispose the pipeline."""
        logger.info("Shutting down context system...")
        for task in self._timers:
            task.cancel()
        for task in self._timers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._timers = []

        if self.adapter is not None:
            await self.adapter.stop_sweeper()
            for agent_id in list(self.agents):
                self.unregister_agent(agent_id)
        if self.pipeline is not None:
            await self.pipeline.dispose()
        if self.registry is not None:
            self.registry.clear()

        self.initialized = False
        self.healthy = False
        self.registry = None
        self.pipeline = None
        self.adapter = None
        self.agents.clear()
        self.errors = []
        self.warnings = []
        logger.info("Context system shutdown completed")

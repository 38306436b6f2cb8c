"""Environment context enricher.

Snapshots process and system metrics and the agent's liveness. Metrics
are re-read at most once per refresh interval to bound overhead.
"""

import os
import platform
import sys
import time
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

import psutil

from agent_context.config.models import (
    EnricherConfig,
    EnrichmentPriority,
    EnrichmentStage,
    EnvironmentEnricherOptions,
)
from agent_context.enrichers.base import BaseContextEnricher
from agent_context.enrichment.providers import AgentAccessor
from agent_context.enrichment.types import EnrichmentRequest

ENVIRONMENT_CONTEXT_KEY = "environment_context"


def default_environment_config() -> EnricherConfig:
    return EnricherConfig(
        priority=EnrichmentPriority.MEDIUM,
        stage=EnrichmentStage.PRE_PROCESSING,
        timeout_ms=1000,
        max_retries=2,
        cache_ttl_seconds=60,
    )


class EnvironmentContextEnricher(BaseContextEnricher):
    """Adds system, agent and runtime information."""

    def __init__(
        self,
        agent_accessor: Optional[AgentAccessor] = None,
        config: Optional[EnricherConfig] = None,
        options: Optional[EnvironmentEnricherOptions] = None,
        enricher_id: str = "environment",
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the environment enricher.

        Args:
            agent_accessor: Returns the current agent snapshot, or None
            config: Enricher policy
            options: Refresh interval and which sections to include
            enricher_id: Registry id
            clock: Monotonic seconds used for the refresh interval
        """
        super().__init__(
            enricher_id=enricher_id,
            name="Environment Context Enricher",
            config=config or default_environment_config(),
        )
        self.agent_accessor = agent_accessor or (lambda: None)
        self.options = options or EnvironmentEnricherOptions()
        self._clock = clock
        self._process: Optional[psutil.Process] = None
        self._metrics: Optional[Dict[str, Any]] = None
        self._metrics_read_at = 0.0
        self.metrics_reads = 0

    def get_provided_keys(self) -> List[str]:
        return [ENVIRONMENT_CONTEXT_KEY]

    def get_cache_inputs(self, context: Mapping[str, Any]) -> Dict[str, Any]:
        # Output depends on the process, not the request content
        return {}

    async def _do_initialize(self) -> None:
        self._process = psutil.Process(os.getpid())
        # First cpu_percent call only primes the counter
        self._process.cpu_percent(interval=None)
        self.logger.debug(f"Environment enricher tracking pid {self._process.pid}")

    async def _do_enrich(self, request: EnrichmentRequest) -> Dict[str, Any]:
        environment: Dict[str, Any] = {}
        if self.options.include_system_metrics:
            environment["system_info"] = self.system_info()
        if self.options.include_agent_info:
            environment["agent_info"] = self._agent_info(request.agent_id)
        if self.options.include_runtime_info:
            environment["runtime_info"] = {
                "timestamp": datetime.now().isoformat(),
                "request_id": request.request_id or f"req_{uuid.uuid4().hex[:9]}",
                "process_session_id": f"session_{int(psutil.boot_time())}_{os.getpid()}",
            }
        return {ENVIRONMENT_CONTEXT_KEY: environment}

    def system_info(self) -> Dict[str, Any]:
        """Process metrics, re-read only after the refresh interval."""
        now = self._clock()
        if (
            self._metrics is not None
            and now - self._metrics_read_at < self.options.metrics_refresh_seconds
        ):
            return self._metrics

        self._metrics = self._read_metrics()
        self._metrics_read_at = now
        self.metrics_reads += 1
        return self._metrics

    def _read_metrics(self) -> Dict[str, Any]:
        process = self._process or psutil.Process(os.getpid())
        try:
            with process.oneshot():
                memory = process.memory_info()
                metrics = {
                    "rss_bytes": memory.rss,
                    "vms_bytes": memory.vms,
                    "cpu_percent": process.cpu_percent(interval=None),
                    "num_threads": process.num_threads(),
                    "uptime_seconds": max(0.0, time.time() - process.create_time()),
                }
        except psutil.Error as e:
            self.logger.warning(f"Failed to collect process metrics: {e}")
            metrics = {
                "rss_bytes": 0,
                "vms_bytes": 0,
                "cpu_percent": 0.0,
                "num_threads": 0,
                "uptime_seconds": 0.0,
            }
            return {"platform": "unknown", "python_version": "unknown", **metrics}

        return {
            "platform": sys.platform,
            "machine": platform.machine(),
            "python_version": platform.python_version(),
            "cpu_count": psutil.cpu_count(),
            "system_memory_percent": psutil.virtual_memory().percent,
            **metrics,
        }

    def _agent_info(self, agent_id: str) -> Dict[str, Any]:
        try:
            agent = self.agent_accessor()
        except Exception as e:
            self.logger.warning(f"Failed to collect agent info for {agent_id}: {e}")
            return {"id": agent_id, "status": "error", "active_modules": []}

        if agent is None:
            return {"id": agent_id, "status": "not_found", "active_modules": []}
        return {
            "id": agent.id,
            "name": agent.name,
            "status": agent.status or "unknown",
            "last_activity": (agent.last_update or datetime.now()).isoformat(),
            "active_modules": list(agent.active_modules),
        }

    def calculate_confidence(
        self, context: Mapping[str, Any], enriched: Mapping[str, Any]
    ) -> float:
        environment = enriched.get(ENVIRONMENT_CONTEXT_KEY)
        if not environment:
            return 0.1
        score = 0.5
        if environment.get("system_info", {}).get("platform", "unknown") != "unknown":
            score += 0.2
        agent_info = environment.get("agent_info", {})
        if agent_info.get("status", "unknown") not in ("unknown", "not_found", "error"):
            score += 0.2
        if agent_info.get("active_modules"):
            score += 0.1
        return min(0.95, score)

    async def _do_health_check(self) -> Dict[str, Any]:
        return {
            "healthy": True,
            "agent_available": self.agent_accessor() is not None,
            "metrics_cached": self._metrics is not None,
            "metrics_age_seconds": (
                self._clock() - self._metrics_read_at if self._metrics is not None else None
            ),
        }

    async def _do_dispose(self) -> None:
        self._metrics = None
        self._metrics_read_at = 0.0
        self._process = None

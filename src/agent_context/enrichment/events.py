"""Fire-and-forget notifications from the pipeline.

The pipeline publishes events to an optional bounded channel. Nothing in
the pipeline waits for or depends on a consumer; when the channel is full
the event is dropped.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from agent_context.utils.logging import get_logger

logger = get_logger(__name__)


class PipelineEventType(str, Enum):
    """Kinds of pipeline events."""

    ENRICHER_STARTED = "enricher_started"
    ENRICHER_COMPLETED = "enricher_completed"
    ENRICHER_FAILED = "enricher_failed"
    ENRICHER_SKIPPED = "enricher_skipped"
    PIPELINE_COMPLETED = "pipeline_completed"


@dataclass
class PipelineEvent:
    """One notification."""

    event_type: PipelineEventType
    request_id: str
    enricher_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    payload: Dict[str, Any] = field(default_factory=dict)


class EventChannel:
    """Bounded queue of pipeline events."""

    def __init__(self, maxsize: int = 1000):
        """Initialize the channel.

        Args:
            maxsize: Events held before new ones are dropped
        """
        self._queue: "asyncio.Queue[PipelineEvent]" = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def publish(self, event: PipelineEvent) -> bool:
        """Enqueue an event without waiting.

        Returns:
            False if the channel was full and the event was dropped
        """
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug(f"Event channel full, dropped {event.event_type.value}")
            return False
        return True

    async def get(self) -> PipelineEvent:
        """Wait for the next event."""
        return await self._queue.get()

    def drain(self) -> List[PipelineEvent]:
        """Remove and return every queued event."""
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def __len__(self) -> int:
        return self._queue.qsize()

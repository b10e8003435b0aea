"""Progress events emitted while a review runs.

Subscribers get every event as it happens; a bounded history is kept
for callers that poll instead.
"""

import asyncio
import json
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)


class EventType(str, Enum):
    """Types of events emitted by the scheduler."""

    REVIEW_STARTED = "review.started"
    FILE_STARTED = "file.started"
    CHUNK_ANALYZED = "chunk.analyzed"
    FILE_SYNTHESIZED = "file.synthesized"
    FINAL_SYNTHESIS = "review.final_synthesis"
    STAGE_FAILED = "review.stage_failed"
    STEP_LIMIT_EXCEEDED = "review.step_limit_exceeded"


@dataclass
class PipelineEvent:
    """One progress event for a change under review."""

    event_type: EventType
    change_ref: str
    data: dict[str, Any] = field(default_factory=dict)
    step: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "event": self.event_type.value,
            "change_ref": self.change_ref,
            "step": self.step,
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
            "data": self.data,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


EventHandler = Callable[[PipelineEvent], Awaitable[None]]


class EventBus:
    """Fan events out to async subscribers.

    One bus per scheduler; handler errors are logged and never reach
    the pipeline.
    """

    def __init__(self, max_history: int = 1000):
        self._handlers: list[EventHandler] = []
        self._history: deque[PipelineEvent] = deque(maxlen=max_history)

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Subscribe to events.

        Args:
            handler: Async function to call when events are emitted

        Returns:
            Unsubscribe function
        """
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def emit(self, event: PipelineEvent) -> None:
        """Record an event and deliver it to all subscribers."""
        self._history.append(event)

        if self._handlers:
            await asyncio.gather(
                *[self._safe_call(handler, event) for handler in self._handlers],
                return_exceptions=True,
            )

    async def _safe_call(self, handler: EventHandler, event: PipelineEvent) -> None:
        try:
            await handler(event)
        except Exception as e:
            logger.error("event_handler_failed", event=event.event_type.value, error=str(e))

    def get_recent_events(
        self,
        limit: int = 100,
        event_types: list[EventType] | None = None,
    ) -> list[PipelineEvent]:
        """Get recent events from history.

        Args:
            limit: Maximum events to return
            event_types: Optional filter by event types

        Returns:
            List of recent events, newest first
        """
        events = [
            e for e in reversed(self._history)
            if not event_types or e.event_type in event_types
        ]
        return events[:limit]

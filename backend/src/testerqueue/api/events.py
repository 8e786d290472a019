"""In-memory notification bus for queue and ticket events, with SSE streaming."""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, AsyncGenerator

logger = logging.getLogger(__name__)


class EventType(str, enum.Enum):
    QUEUE_STATE_CHANGED = "queue_state_changed"
    CONFIRMATION_STARTED = "confirmation_started"
    CONFIRMATION_ENDED = "confirmation_ended"
    TICKET_CREATED = "ticket_created"
    TICKET_CLOSED = "ticket_closed"


class EventBus:
    """Pub/sub bus keyed by region with a bounded replay buffer.

    Publishing is synchronous so stores can notify from inside a mutation
    without yielding to the event loop. Each subscriber queue is bounded; a
    subscriber that stops reading loses events instead of growing memory.
    """

    def __init__(self, buffer_size: int = 100, subscriber_queue_size: int = 100) -> None:
        self._subscribers: dict[str, list[asyncio.Queue]] = {}
        self._buffer: dict[str, deque[dict[str, Any]]] = {}
        self._buffer_size = buffer_size
        self._subscriber_queue_size = subscriber_queue_size

    def publish(self, region: str, event_type: EventType, data: dict[str, Any]) -> dict[str, Any]:
        """Push an event to all subscribers and buffer it."""
        event = {
            "type": event_type.value,
            "region": region,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        self._buffer.setdefault(region, deque(maxlen=self._buffer_size)).append(event)
        for queue in self._subscribers.get(region, []):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Dropping {event_type.value} for a stalled subscriber in {region}")
        return event

    def recent(self, region: str) -> list[dict[str, Any]]:
        return list(self._buffer.get(region, []))

    async def subscribe(self, region: str) -> AsyncGenerator[str, None]:
        """Yield SSE-formatted events. Replays buffer then streams live."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._subscriber_queue_size)

        # Register before snapshotting the buffer so nothing is missed in between
        self._subscribers.setdefault(region, []).append(queue)
        try:
            for event in list(self._buffer.get(region, [])):
                yield f"data: {json.dumps(event)}\n\n"

            while True:
                event = await queue.get()
                yield f"data: {json.dumps(event)}\n\n"
        finally:
            subs = self._subscribers.get(region, [])
            if queue in subs:
                subs.remove(queue)
            if region in self._subscribers and not self._subscribers[region]:
                del self._subscribers[region]

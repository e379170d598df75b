"""In-process async event bus for the autonomy core.

Diagnostic records and host notifications flow through here as Events.
Handlers run concurrently but errors are isolated: one broken handler
never crashes the bus or blocks other handlers.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

# Handler type: async function taking an Event
EventHandler = Callable[["Event"], Awaitable[None]]


class EventType(StrEnum):
    # Loop lifecycle
    LOOP_STARTED = "loop_started"
    LOOP_STOPPED = "loop_stopped"
    START_IGNORED = "start_ignored"
    STOP_IGNORED = "stop_ignored"
    PLANNING_UNIT_SET = "planning_unit_set"
    TRIGGER_ERROR = "trigger_error"
    PLANNING_ERROR = "planning_error"

    # Plan lifecycle
    PLAN_GENERATED = "plan_generated"
    PLAN_MONITORED = "plan_monitored"
    DRIFT_DETECTED = "drift_detected"
    PLAN_REPLANNED = "plan_replanned"
    PLAN_ABANDONED = "plan_abandoned"
    PLAN_COMPLETED = "plan_completed"
    PLAN_RESTORED = "plan_restored"
    SUBTASK_UPDATED = "subtask_updated"
    PLANNING_SKIPPED = "planning_skipped"
    PLANNING_CYCLE_ERROR = "planning_cycle_error"

    # Host notifications
    MESSAGE_RECEIVED = "message_received"
    RUN_ENDED = "run_ended"


@dataclass
class Event:
    """A typed event flowing through the bus."""

    type: str
    agent_id: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class EventBus:
    """In-process async event bus with error isolation.

    Events are queued and processed by a background asyncio task.
    Handlers registered via on() are called concurrently for each event;
    handlers registered via on_any() see every event.
    Handler errors are logged but never propagate.
    """

    def __init__(self, max_queue: int = 1000):
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._wildcard: list[EventHandler] = []
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=max_queue)
        self._task: asyncio.Task | None = None
        self._running = False

    def on(self, event_type: str, handler: EventHandler) -> None:
        """Register a handler for an event type. Can register multiple."""
        self._handlers[str(event_type)].append(handler)
        logger.debug("Registered handler for '%s': %s", event_type, handler.__qualname__)

    def on_any(self, handler: EventHandler) -> None:
        """Register a handler that receives every event."""
        self._wildcard.append(handler)

    def emit_nowait(self, event: Event) -> bool:
        """Queue an event without awaiting. Returns False if it was dropped."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Event bus queue full, dropping event: %s", event.type)
            return False
        return True

    async def emit(self, event: Event) -> None:
        """Emit an event. Non-blocking, queued for async processing."""
        self.emit_nowait(event)

    async def start(self) -> None:
        """Start the background processing loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._process_loop(), name="event-bus")
        logger.info("Event bus started")

    async def stop(self) -> None:
        """Stop the bus. Cancels the loop first, then drains remaining events."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            while not self._queue.empty():
                try:
                    event = self._queue.get_nowait()
                    await self._dispatch(event)
                except asyncio.QueueEmpty:
                    break
        logger.info("Event bus stopped")

    async def _process_loop(self) -> None:
        """Main processing loop, runs as background task."""
        while self._running:
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=1.0)
                await self._dispatch(event)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Unexpected error in event bus loop")

    async def _dispatch(self, event: Event) -> None:
        handlers = [*self._handlers.get(str(event.type), []), *self._wildcard]
        if not handlers:
            return
        await asyncio.gather(*(self._safe_handle(h, event) for h in handlers))

    async def _safe_handle(self, handler: EventHandler, event: Event) -> None:
        """Run handler with error isolation. Only CancelledError propagates."""
        try:
            await handler(event)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                "Handler %s failed for event %s",
                handler.__qualname__,
                event.type,
            )

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        """Number of events waiting in queue."""
        return self._queue.qsize()

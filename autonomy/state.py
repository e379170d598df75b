"""External state provider -- a rolling window of recent messages.

Listens to: message_received
snapshot() is what the planning cadence hands to the planner. The planner
treats the result as opaque and only passes it through to decomposition.
"""

from __future__ import annotations

from collections import deque
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable

from autonomy.config import Settings
from autonomy.events import Event, EventBus, EventType

StateProvider = Callable[[], Awaitable[dict[str, Any]]]


class MessageBuffer:
    """Keeps the last state_window messages seen by the agent."""

    def __init__(self, settings: Settings, bus: EventBus | None = None) -> None:
        self._settings = settings
        self._messages: deque[dict[str, Any]] = deque(maxlen=settings.state_window)
        if bus is not None:
            bus.on(EventType.MESSAGE_RECEIVED, self.on_message)

    def add(self, text: str, sender: str = "user", **extra: Any) -> None:
        self._messages.append(
            {
                "text": text,
                "sender": sender,
                "received_at": datetime.now(UTC).isoformat(),
                **extra,
            }
        )

    async def on_message(self, event: Event) -> None:
        text = event.data.get("text")
        if not text:
            return
        self.add(text, sender=event.data.get("sender", "user"))

    def __len__(self) -> int:
        return len(self._messages)

    async def snapshot(self) -> dict[str, Any]:
        return {
            "agent_id": self._settings.agent_id,
            "agent_name": self._settings.agent_name,
            "recent_messages": list(self._messages),
            "captured_at": datetime.now(UTC).isoformat(),
        }

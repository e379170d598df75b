"""Structured diagnostic records for the loop and planner.

Every record carries the actor id, an action tag and free-form fields.
Records go to the standard logger (fields attached as record attributes)
and, when a bus is attached, out over the event bus as Events.
"""

from __future__ import annotations

import logging
from typing import Any

from autonomy.events import Event, EventBus

logger = logging.getLogger(__name__)


class Diagnostics:
    """Logging collaborator shared by AutonomousLoop and Planner.

    record() never raises. Handler failures inside logging are already
    contained by the logging module; a broken bus is logged at debug level.
    """

    def __init__(
        self,
        agent_id: str,
        bus: EventBus | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.agent_id = agent_id
        self._bus = bus
        self._log = log or logger

    def record(
        self,
        action: str,
        message: str,
        *,
        level: int = logging.INFO,
        exc_info: bool = False,
        **fields: Any,
    ) -> None:
        action = str(action)
        self._log.log(
            level,
            "%s [agent=%s action=%s]",
            message,
            self.agent_id,
            action,
            exc_info=exc_info,
            extra={"agent_id": self.agent_id, "action": action, "fields": fields},
        )

        if self._bus is None:
            return
        try:
            self._bus.emit_nowait(Event(type=action, agent_id=self.agent_id, data=fields))
        except Exception:
            logger.debug("Failed to publish diagnostic %s", action, exc_info=True)

"""Autonomous loop -- drives trigger units and the planning unit on two cadences.

Owns two independent repeating timers:
1. Trigger cadence: every registered trigger unit runs sequentially, in
   registration order, with per-unit failure isolation.
2. Planning cadence: the single planning unit runs once per firing.

The loop holds no domain state beyond its registration tables and timer
handles. Unit failures are caught, reported, and never retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from autonomy.diagnostics import Diagnostics
from autonomy.events import EventType
from autonomy.loop.timer import RepeatingTimer, SleepFn

logger = logging.getLogger(__name__)

TriggerUnit = Callable[[], Awaitable[None]]
PlanningUnit = Callable[[], Awaitable[None]]

DEFAULT_TRIGGER_INTERVAL = 10.0
DEFAULT_PLANNING_INTERVAL = 60.0


class AutonomousLoop:
    """Two-cadence scheduler with idempotent start/stop.

    States are stopped and running only. stop() is immediate: it cancels
    future firings and does not wait for a batch already in flight.
    """

    def __init__(
        self,
        trigger_interval: float = DEFAULT_TRIGGER_INTERVAL,
        planning_interval: float = DEFAULT_PLANNING_INTERVAL,
        *,
        diagnostics: Diagnostics | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._trigger_interval = trigger_interval
        self._planning_interval = planning_interval
        self._diag = diagnostics or Diagnostics("autonomy-default")
        self._sleep = sleep
        self._triggers: list[TriggerUnit] = []
        self._planning_unit: PlanningUnit | None = None
        self._trigger_timer: RepeatingTimer | None = None
        self._planning_timer: RepeatingTimer | None = None
        self._running = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    @property
    def trigger_interval(self) -> float:
        return self._trigger_interval

    @property
    def planning_interval(self) -> float:
        return self._planning_interval

    @property
    def trigger_count(self) -> int:
        return len(self._triggers)

    @property
    def has_planning_unit(self) -> bool:
        return self._planning_unit is not None

    @property
    def has_planning_timer(self) -> bool:
        return self._planning_timer is not None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_trigger(self, unit: TriggerUnit) -> None:
        """Append a trigger unit. Duplicates are kept and run once per entry."""
        self._triggers.append(unit)
        logger.debug("Registered trigger #%d: %s", len(self._triggers), _unit_name(unit))

    def set_planning_unit(self, unit: PlanningUnit) -> None:
        """Replace the planning unit (last write wins).

        If the loop is running without a planning timer, one is armed now
        at the configured planning cadence. An existing timer keeps its
        phase; only the callback it reads is swapped.
        """
        self._planning_unit = unit
        self._diag.record(
            EventType.PLANNING_UNIT_SET,
            "Planning unit registered",
            unit=_unit_name(unit),
        )
        if self._running and self._planning_timer is None:
            self._arm_planning_timer()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(
        self,
        trigger_interval: float | None = None,
        planning_interval: float | None = None,
    ) -> None:
        """Arm the timers. A second call while running is a logged no-op."""
        if self._running:
            self._diag.record(
                EventType.START_IGNORED,
                "Autonomous loop already running",
                level=logging.WARNING,
            )
            return

        if trigger_interval is not None:
            self._trigger_interval = trigger_interval
        if planning_interval is not None:
            self._planning_interval = planning_interval

        self._trigger_timer = RepeatingTimer(
            self._trigger_interval,
            self._run_triggers,
            name="autonomy-triggers",
            sleep=self._sleep,
        )
        self._trigger_timer.start()
        if self._planning_unit is not None:
            self._arm_planning_timer()
        self._running = True

        self._diag.record(
            EventType.LOOP_STARTED,
            "Autonomous loop started",
            trigger_interval=self._trigger_interval,
            planning_interval=self._planning_interval,
            triggers=len(self._triggers),
        )

    async def stop(self) -> None:
        """Cancel both timers. Registrations survive for the next start()."""
        if not self._running:
            self._diag.record(
                EventType.STOP_IGNORED,
                "Autonomous loop not running",
                level=logging.WARNING,
            )
            return

        # Detach before awaiting so a start() during shutdown owns fresh timers
        self._running = False
        timers = (self._trigger_timer, self._planning_timer)
        self._trigger_timer = None
        self._planning_timer = None
        for timer in timers:
            if timer is not None:
                await timer.stop()

        self._diag.record(EventType.LOOP_STOPPED, "Autonomous loop stopped")

    # ------------------------------------------------------------------
    # Tick execution
    # ------------------------------------------------------------------

    def _arm_planning_timer(self) -> None:
        self._planning_timer = RepeatingTimer(
            self._planning_interval,
            self._run_planning_unit,
            name="autonomy-planning",
            sleep=self._sleep,
        )
        self._planning_timer.start()

    async def _run_triggers(self) -> None:
        """Run every trigger sequentially; one failure never skips the rest."""
        # Snapshot so triggers registered mid-tick wait for the next tick
        for index, unit in enumerate(list(self._triggers)):
            try:
                await unit()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._diag.record(
                    EventType.TRIGGER_ERROR,
                    "Error executing trigger",
                    level=logging.ERROR,
                    exc_info=True,
                    index=index,
                    unit=_unit_name(unit),
                    error=str(exc),
                )

    async def _run_planning_unit(self) -> None:
        unit = self._planning_unit
        if unit is None:
            return
        try:
            await unit()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._diag.record(
                EventType.PLANNING_ERROR,
                "Error executing planning unit",
                level=logging.ERROR,
                exc_info=True,
                unit=_unit_name(unit),
                error=str(exc),
            )


def _unit_name(unit: Callable) -> str:
    return getattr(unit, "__qualname__", None) or repr(unit)

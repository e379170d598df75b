"""AutonomousService -- wires one AutonomousLoop to one Planner.

Planning cadence: snapshot external state -> planner.plan(state) -> persist.
Trigger cadence (built-in unit): if the current plan has failed subtasks
or CRITICAL drift, snapshot state and run replan_if_needed().

Also listens to: run_ended (stops the loop)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from autonomy.config import Settings
from autonomy.diagnostics import Diagnostics
from autonomy.events import Event, EventBus, EventType
from autonomy.loop import AutonomousLoop, TriggerUnit
from autonomy.loop.timer import SleepFn
from autonomy.planning import (
    Decomposer,
    DriftDetector,
    Plan,
    Planner,
    SubtaskStatus,
)
from autonomy.state import StateProvider
from autonomy.storage.cache import PlanCache

logger = logging.getLogger(__name__)


async def _empty_state() -> dict[str, Any]:
    return {}


class AutonomousService:
    """Continuous planning for one agent.

    The service never mutates plan state itself; it only calls the
    planner's documented operations and persists what they leave behind.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        state_provider: StateProvider | None = None,
        decomposer: Decomposer | None = None,
        bus: EventBus | None = None,
        cache: PlanCache | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._state = state_provider or _empty_state
        self._cache = cache
        self.diagnostics = Diagnostics(settings.agent_id, bus)
        self.planner = Planner(
            settings.agent_id,
            decomposer=decomposer,
            drift=DriftDetector(
                stall_seconds=settings.subtask_stall_seconds,
                plan_stale_seconds=settings.plan_stale_seconds,
            ),
            diagnostics=self.diagnostics,
        )
        self.loop = AutonomousLoop(
            settings.trigger_interval,
            settings.planning_interval,
            diagnostics=self.diagnostics,
            sleep=sleep,
        )
        self.loop.set_planning_unit(self._planning_cycle)
        if settings.replan_trigger_enabled:
            self.loop.register_trigger(self._replan_check)
        if bus is not None:
            bus.on(EventType.RUN_ENDED, self._on_run_ended)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self.loop.running

    async def start(self) -> None:
        """Restore any persisted plan, then start the loop."""
        if self._cache is not None and self.planner.current_plan is None:
            plan = await self._cache.load_plan()
            if plan is not None and not self.planner.restore_plan(plan):
                logger.info("Ignoring persisted plan %s (%s)", plan.id, plan.status)
        await self.loop.start()

    async def stop(self) -> None:
        await self.loop.stop()
        await self._persist()

    async def _on_run_ended(self, event: Event) -> None:
        logger.info("Run ended for %s, stopping autonomous loop", event.agent_id)
        await self.stop()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    @property
    def current_plan(self) -> Plan | None:
        return self.planner.current_plan

    def register_trigger(self, unit: TriggerUnit) -> None:
        self.loop.register_trigger(unit)

    async def update_subtask_status(
        self,
        subtask_id: str,
        status: SubtaskStatus | str,
        plan_id: str | None = None,
    ) -> bool:
        updated = self.planner.update_subtask_status(subtask_id, status, plan_id=plan_id)
        if updated:
            await self._persist()
        return updated

    def status(self) -> dict[str, Any]:
        plan = self.planner.current_plan
        return {
            "agent_id": self._settings.agent_id,
            "running": self.loop.running,
            "trigger_interval": self.loop.trigger_interval,
            "planning_interval": self.loop.planning_interval,
            "triggers": self.loop.trigger_count,
            "planning_in_progress": self.planner.planning_in_progress,
            "plan_id": plan.id if plan else None,
            "tally": self.planner.monitor_plan(plan).model_dump() if plan else None,
        }

    # ------------------------------------------------------------------
    # Loop units
    # ------------------------------------------------------------------

    async def _planning_cycle(self) -> None:
        state = await self._state()
        await self.planner.plan(state)
        await self._persist()

    async def _replan_check(self) -> None:
        plan = self.planner.current_plan
        if plan is None or self.planner.needs_replan(plan) is None:
            return
        state = await self._state()
        replacement = await self.planner.replan_if_needed(state, plan)
        if replacement is not plan:
            await self._persist()

    async def _persist(self) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.save_plan(self.planner.current_plan)
        except Exception:
            logger.exception("Failed to persist current plan")

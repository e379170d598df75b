"""Planner -- owns the current plan and its generate/monitor/replan cycle.

The composite plan() routine is what the loop's planning cadence runs:
1. No current plan: generate one and stop.
2. Otherwise: tally subtask statuses and check for drift.
3. Discrepancies found: run the replan decision (CRITICAL drift or any
   failed subtask abandons the plan and installs a successor).
4. Every subtask completed: mark the plan completed and clear the slot.

A re-entrancy flag keeps plan() from overlapping with itself. Nothing
else is locked: a trigger calling replan_if_needed() while a cycle is in
flight races on the current-plan slot, and the last writer wins.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Callable
from uuid import uuid4

from autonomy.diagnostics import Diagnostics
from autonomy.events import EventType
from autonomy.planning.decompose import Decomposer, TemplateDecomposer
from autonomy.planning.drift import DriftDetector
from autonomy.planning.errors import PlanGenerationError
from autonomy.planning.schemas import (
    LIVE_PLAN_STATUSES,
    Discrepancy,
    Plan,
    PlanMetadata,
    PlanStatus,
    StatusTally,
    Subtask,
    SubtaskStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

_REPLAN_FAILED_TASKS = "Failed tasks detected"


class Planner:
    """Single owner of the current-plan slot.

    Other components read current_plan but change plan state only through
    update_subtask_status() and the planning operations below.
    """

    def __init__(
        self,
        agent_id: str = "autonomy-default",
        *,
        decomposer: Decomposer | None = None,
        drift: DriftDetector | None = None,
        diagnostics: Diagnostics | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._decomposer = decomposer or TemplateDecomposer()
        self._drift = drift or DriftDetector()
        self._diag = diagnostics or Diagnostics(agent_id)
        self._clock = clock
        self._current: Plan | None = None
        self._planning_in_progress = False

    @property
    def current_plan(self) -> Plan | None:
        return self._current

    @property
    def planning_in_progress(self) -> bool:
        return self._planning_in_progress

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_plan(self, state: dict[str, Any] | None) -> Plan:
        """Build a brand-new plan from a state snapshot.

        Returns a well-formed plan with at least one pending subtask or
        raises PlanGenerationError. Does not touch the current-plan slot.
        """
        decomposition = await self._decomposer.decompose(state or {})
        drafts = decomposition.subtasks
        if not drafts:
            raise PlanGenerationError("decomposition produced no subtasks")

        now = self._clock()
        plan_id = uuid4().hex
        ids = [f"{plan_id[:8]}-{n}" for n in range(1, len(drafts) + 1)]

        subtasks: list[Subtask] = []
        for index, draft in enumerate(drafts):
            for dep in draft.depends_on:
                if not 0 <= dep < index:
                    raise PlanGenerationError(
                        f"subtask {index} depends on invalid index {dep}"
                    )
            subtasks.append(
                Subtask(
                    id=ids[index],
                    description=draft.description,
                    status=SubtaskStatus.PENDING,
                    dependencies=[ids[dep] for dep in draft.depends_on],
                    created_at=now,
                    updated_at=now,
                )
            )

        plan = Plan(
            id=plan_id,
            goal=decomposition.goal,
            subtasks=subtasks,
            status=PlanStatus.CREATED,
            created_at=now,
            updated_at=now,
        )
        self._diag.record(
            EventType.PLAN_GENERATED,
            "New plan generated",
            plan_id=plan.id,
            subtasks=len(subtasks),
        )
        return plan

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    def monitor_plan(self, plan: Plan | None) -> StatusTally:
        """Tally subtasks per status. Read-only."""
        if plan is None:
            raise ValueError("Invalid plan provided")

        counts = Counter(s.status for s in plan.subtasks)
        tally = StatusTally(
            plan_id=plan.id,
            pending=counts[SubtaskStatus.PENDING],
            in_progress=counts[SubtaskStatus.IN_PROGRESS],
            completed=counts[SubtaskStatus.COMPLETED],
            failed=counts[SubtaskStatus.FAILED],
        )
        self._diag.record(
            EventType.PLAN_MONITORED,
            (
                f"Plan status: {tally.pending} pending, {tally.in_progress} in progress, "
                f"{tally.completed} completed, {tally.failed} failed"
            ),
            **tally.model_dump(),
        )
        return tally

    def check_for_drift(self, plan: Plan | None) -> list[Discrepancy]:
        """Evaluate plan health. CRITICAL discrepancies come first."""
        if plan is None:
            return []
        discrepancies = self._drift.check(plan, self._clock())
        if discrepancies:
            self._diag.record(
                EventType.DRIFT_DETECTED,
                "Plan discrepancies detected",
                plan_id=plan.id,
                discrepancies=[str(d) for d in discrepancies],
                critical=sum(1 for d in discrepancies if d.critical),
            )
        return discrepancies

    def needs_replan(self, plan: Plan) -> str | None:
        """Return the replan reason for plan, or None if it should stand."""
        if plan.has_failed_subtasks():
            return _REPLAN_FAILED_TASKS
        critical = [d for d in self._drift.check(plan, self._clock()) if d.critical]
        if critical:
            return "; ".join(str(d) for d in critical)
        return None

    # ------------------------------------------------------------------
    # Replanning
    # ------------------------------------------------------------------

    async def replan_if_needed(
        self, state: dict[str, Any] | None, current_plan: Plan | None
    ) -> Plan:
        """Replace current_plan if it has failed subtasks or CRITICAL drift.

        Returns the same object when no replan is needed. Otherwise the
        old plan is marked abandoned and a successor carrying lineage
        metadata is returned; if current_plan occupies the slot, the
        successor takes its place. A generation failure propagates and
        leaves current_plan untouched.
        """
        if current_plan is None:
            raise ValueError("Invalid plan provided")

        reason = self.needs_replan(current_plan)
        if reason is None:
            logger.debug("No replanning needed for plan %s", current_plan.id)
            return current_plan

        new_plan = await self.generate_plan(state)

        now = self._clock()
        current_plan.status = PlanStatus.ABANDONED
        current_plan.updated_at = max(now, current_plan.updated_at)
        self._diag.record(
            EventType.PLAN_ABANDONED,
            "Plan abandoned",
            plan_id=current_plan.id,
            reason=reason,
        )

        previous = current_plan.metadata
        origin = (
            previous.original_plan_created_at
            if previous is not None and previous.original_plan_created_at is not None
            else current_plan.created_at
        )
        new_plan.metadata = PlanMetadata(
            previous_plan_id=current_plan.id,
            replan_reason=reason,
            original_plan_created_at=origin,
        )

        if self._current is current_plan:
            self._current = new_plan

        self._diag.record(
            EventType.PLAN_REPLANNED,
            "Plan replaced",
            previous_plan_id=current_plan.id,
            plan_id=new_plan.id,
            reason=reason,
        )
        return new_plan

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def update_subtask_status(
        self,
        subtask_id: str,
        status: SubtaskStatus | str,
        plan_id: str | None = None,
    ) -> bool:
        """Set a subtask's status in the current plan.

        Returns False when there is no current plan, plan_id names a
        different plan, or the subtask does not exist.
        """
        plan = self._current
        if plan is None or (plan_id is not None and plan_id != plan.id):
            return False
        subtask = plan.get_subtask(subtask_id)
        if subtask is None:
            return False

        new_status = SubtaskStatus(status)
        previous = subtask.status
        now = self._clock()
        subtask.status = new_status
        subtask.updated_at = max(now, subtask.updated_at)
        plan.updated_at = max(now, plan.updated_at)
        if new_status in (SubtaskStatus.IN_PROGRESS, SubtaskStatus.COMPLETED) and plan.status in (
            PlanStatus.CREATED,
            PlanStatus.ACTIVE,
        ):
            plan.status = PlanStatus.IN_PROGRESS

        self._diag.record(
            EventType.SUBTASK_UPDATED,
            "Subtask status updated",
            plan_id=plan.id,
            subtask_id=subtask_id,
            previous=previous.value,
            status=new_status.value,
        )
        return True

    def restore_plan(self, plan: Plan) -> bool:
        """Adopt a persisted plan as current. Only live plans are accepted."""
        if plan.status not in LIVE_PLAN_STATUSES:
            return False
        self._current = plan
        self._diag.record(EventType.PLAN_RESTORED, "Plan restored", plan_id=plan.id)
        return True

    # ------------------------------------------------------------------
    # Composite cycle
    # ------------------------------------------------------------------

    async def plan(self, state: dict[str, Any] | None) -> None:
        """One planning cycle. Never raises; overlapping calls are skipped."""
        if self._planning_in_progress:
            self._diag.record(
                EventType.PLANNING_SKIPPED,
                "Planning cycle already in progress, skipping",
                level=logging.WARNING,
            )
            return

        self._planning_in_progress = True
        try:
            if self._current is None:
                self._current = await self.generate_plan(state)
                return

            plan = self._current
            self.monitor_plan(plan)
            discrepancies = self.check_for_drift(plan)
            if discrepancies:
                await self.replan_if_needed(state, plan)

            current = self._current
            if current is not None and current.is_complete():
                self._complete(current)
        except Exception as exc:
            self._diag.record(
                EventType.PLANNING_CYCLE_ERROR,
                "Error during planning cycle",
                level=logging.ERROR,
                exc_info=True,
                error=str(exc),
            )
        finally:
            self._planning_in_progress = False

    def _complete(self, plan: Plan) -> None:
        plan.status = PlanStatus.COMPLETED
        plan.updated_at = max(self._clock(), plan.updated_at)
        if self._current is plan:
            self._current = None
        self._diag.record(
            EventType.PLAN_COMPLETED,
            "Plan completed successfully",
            plan_id=plan.id,
        )

"""Drift detection -- compares a plan's recorded progress against its structure.

Checks:
- failed subtask -> CRITICAL
- dependency cycle -> CRITICAL (the plan can never complete)
- plan not updated for plan_stale_seconds -> CRITICAL (optional)
- dependency id not present in the plan -> INFO
- subtask started or completed before its dependencies completed -> INFO
- subtask in progress longer than stall_seconds -> INFO

Only CRITICAL discrepancies justify replanning. Informational drift is
reported and tolerated.
"""

from __future__ import annotations

from datetime import datetime

from autonomy.planning.schemas import Discrepancy, Plan, Severity, SubtaskStatus

_STARTED = frozenset({SubtaskStatus.IN_PROGRESS, SubtaskStatus.COMPLETED})


class DriftDetector:
    def __init__(
        self,
        stall_seconds: float | None = 900.0,
        plan_stale_seconds: float | None = None,
    ) -> None:
        self.stall_seconds = stall_seconds
        self.plan_stale_seconds = plan_stale_seconds

    def check(self, plan: Plan, now: datetime) -> list[Discrepancy]:
        """Return every discrepancy found in plan, CRITICAL ones first."""
        found: list[Discrepancy] = []
        found.extend(self._failed(plan))
        found.extend(self._cycles(plan))
        found.extend(self._stale(plan, now))
        found.extend(self._dependencies(plan))
        found.extend(self._stalled(plan, now))
        found.sort(key=lambda d: 0 if d.critical else 1)
        return found

    def _failed(self, plan: Plan) -> list[Discrepancy]:
        return [
            Discrepancy(
                severity=Severity.CRITICAL,
                code="subtask_failed",
                message=f"Subtask {s.id} failed: {s.description}",
                subtask_id=s.id,
            )
            for s in plan.subtasks
            if s.status == SubtaskStatus.FAILED
        ]

    def _cycles(self, plan: Plan) -> list[Discrepancy]:
        ids = {s.id for s in plan.subtasks}
        graph = {
            s.id: [d for d in s.dependencies if d in ids] for s in plan.subtasks
        }

        # Iterative DFS with white/grey/black colouring
        colour: dict[str, int] = dict.fromkeys(graph, 0)
        in_cycle: list[str] = []
        for root in graph:
            if colour[root]:
                continue
            stack = [(root, iter(graph[root]))]
            colour[root] = 1
            while stack:
                node, children = stack[-1]
                child = next(children, None)
                if child is None:
                    colour[node] = 2
                    stack.pop()
                elif colour[child] == 1:
                    if child not in in_cycle:
                        in_cycle.append(child)
                elif colour[child] == 0:
                    colour[child] = 1
                    stack.append((child, iter(graph[child])))

        return [
            Discrepancy(
                severity=Severity.CRITICAL,
                code="dependency_cycle",
                message=f"Subtask {sid} is part of a dependency cycle",
                subtask_id=sid,
            )
            for sid in in_cycle
        ]

    def _stale(self, plan: Plan, now: datetime) -> list[Discrepancy]:
        if self.plan_stale_seconds is None:
            return []
        idle = (now - plan.updated_at).total_seconds()
        if idle <= self.plan_stale_seconds:
            return []
        return [
            Discrepancy(
                severity=Severity.CRITICAL,
                code="plan_stale",
                message=f"Plan {plan.id} has made no progress for {int(idle)}s",
            )
        ]

    def _dependencies(self, plan: Plan) -> list[Discrepancy]:
        by_id = {s.id: s for s in plan.subtasks}
        found: list[Discrepancy] = []
        for subtask in plan.subtasks:
            for dep_id in subtask.dependencies:
                dep = by_id.get(dep_id)
                if dep is None:
                    found.append(
                        Discrepancy(
                            severity=Severity.INFO,
                            code="dangling_dependency",
                            message=f"Subtask {subtask.id} depends on unknown subtask {dep_id}",
                            subtask_id=subtask.id,
                        )
                    )
                elif subtask.status in _STARTED and dep.status != SubtaskStatus.COMPLETED:
                    found.append(
                        Discrepancy(
                            severity=Severity.INFO,
                            code="dependency_order",
                            message=(
                                f"Subtask {subtask.id} is {subtask.status.value} "
                                f"before dependency {dep_id} completed"
                            ),
                            subtask_id=subtask.id,
                        )
                    )
        return found

    def _stalled(self, plan: Plan, now: datetime) -> list[Discrepancy]:
        if self.stall_seconds is None:
            return []
        found: list[Discrepancy] = []
        for subtask in plan.subtasks:
            if subtask.status != SubtaskStatus.IN_PROGRESS:
                continue
            idle = (now - subtask.updated_at).total_seconds()
            if idle > self.stall_seconds:
                found.append(
                    Discrepancy(
                        severity=Severity.INFO,
                        code="subtask_stalled",
                        message=f"Subtask {subtask.id} in progress for {int(idle)}s",
                        subtask_id=subtask.id,
                    )
                )
        return found

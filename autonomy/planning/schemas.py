"""Pydantic models for plans, subtasks and drift reports.

These models define the public contract of the planning module. A Plan
round-trips through model_dump_json()/model_validate_json() unchanged,
which is all the persistence layer relies on.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(UTC)


class SubtaskStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class PlanStatus(StrEnum):
    CREATED = "created"
    ACTIVE = "active"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ABANDONED = "abandoned"


# Statuses a plan may hold while it occupies the current-plan slot
LIVE_PLAN_STATUSES = frozenset(
    {PlanStatus.CREATED, PlanStatus.ACTIVE, PlanStatus.IN_PROGRESS}
)


class Severity(StrEnum):
    CRITICAL = "CRITICAL"
    INFO = "INFO"


# --- Plans ---


class Subtask(BaseModel):
    """One ordered unit of work inside a plan."""

    id: str
    description: str
    status: SubtaskStatus = SubtaskStatus.PENDING
    dependencies: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PlanMetadata(BaseModel):
    """Replan lineage plus free-form keys."""

    model_config = ConfigDict(extra="allow")

    previous_plan_id: str | None = None
    replan_reason: str | None = None
    # Creation time of the first ancestor in a replan chain
    original_plan_created_at: datetime | None = None


class Plan(BaseModel):
    """A decomposition of the agent's current goal into subtasks.

    Subtask order is creation order, not execution order.
    """

    id: str
    goal: str | None = None
    subtasks: list[Subtask]
    status: PlanStatus = PlanStatus.CREATED
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    metadata: PlanMetadata | None = None

    def get_subtask(self, subtask_id: str) -> Subtask | None:
        for subtask in self.subtasks:
            if subtask.id == subtask_id:
                return subtask
        return None

    def is_complete(self) -> bool:
        return bool(self.subtasks) and all(
            s.status == SubtaskStatus.COMPLETED for s in self.subtasks
        )

    def has_failed_subtasks(self) -> bool:
        return any(s.status == SubtaskStatus.FAILED for s in self.subtasks)


class SubtaskDraft(BaseModel):
    """Decomposer output before the planner assigns ids and timestamps.

    depends_on holds indices of earlier drafts in the same list.
    """

    description: str = Field(min_length=1)
    depends_on: list[int] = Field(default_factory=list)


class Decomposition(BaseModel):
    """What a decomposer proposes: an optional goal and ordered drafts."""

    goal: str | None = None
    subtasks: list[SubtaskDraft]


# --- Monitoring ---


class StatusTally(BaseModel):
    """Per-status subtask counts for one plan."""

    plan_id: str
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.in_progress + self.completed + self.failed


class Discrepancy(BaseModel):
    """One detected deviation between expected and actual plan progress."""

    severity: Severity
    code: str  # subtask_failed, dependency_cycle, dangling_dependency, ...
    message: str
    subtask_id: str | None = None

    @property
    def critical(self) -> bool:
        return self.severity == Severity.CRITICAL

    def __str__(self) -> str:
        return f"{self.severity.value}: {self.message}"

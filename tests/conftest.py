"""Shared fixtures: settings, a virtual clock for timer tests, plan builders."""

from __future__ import annotations

import asyncio
import heapq
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from autonomy.config import Settings
from autonomy.planning.schemas import (
    Decomposition,
    Plan,
    PlanMetadata,
    PlanStatus,
    Subtask,
    SubtaskDraft,
    SubtaskStatus,
)

# ---------------------------------------------------------------------------
# Virtual clock
# ---------------------------------------------------------------------------


async def settle(rounds: int = 25) -> None:
    """Yield to the event loop until ready callbacks have run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class VirtualClock:
    """Drop-in replacement for asyncio.sleep driven by advance().

    Sleepers wake in deadline order and the loop settles between wakeups,
    so "after 250ms" means exactly the firings due by t=0.25.
    """

    def __init__(self) -> None:
        self.now = 0.0
        self._sleepers: list[tuple[float, int, asyncio.Future]] = []
        self._seq = 0

    async def sleep(self, delay: float) -> None:
        fut = asyncio.get_running_loop().create_future()
        self._seq += 1
        heapq.heappush(self._sleepers, (self.now + delay, self._seq, fut))
        await fut

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        await settle()
        while self._sleepers and self._sleepers[0][0] <= target + 1e-9:
            when, _, fut = heapq.heappop(self._sleepers)
            self.now = when
            if not fut.done():
                fut.set_result(None)
            await settle()
        self.now = target


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "_env_file": None,
        "agent_id": "test-agent",
        "agent_name": "Test Agent",
        "trigger_interval": 0.1,
        "planning_interval": 0.2,
        "event_bus_enabled": False,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture(autouse=True)
def _no_host_credentials(monkeypatch):
    """Keep real ANTHROPIC_* credentials from leaking into Settings."""
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("ANTHROPIC_AUTH_TOKEN", raising=False)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


# ---------------------------------------------------------------------------
# Plans and decomposers
# ---------------------------------------------------------------------------

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def make_plan(
    plan_id: str = "P0id",
    statuses: tuple[str, ...] = ("pending", "pending"),
    *,
    created_at: datetime = T0,
    status: PlanStatus = PlanStatus.ACTIVE,
    metadata: PlanMetadata | None = None,
    dependencies: dict[str, list[str]] | None = None,
) -> Plan:
    """Plan with subtasks t1..tN in the given statuses."""
    dependencies = dependencies or {}
    subtasks = [
        Subtask(
            id=f"t{n}",
            description=f"step {n}",
            status=SubtaskStatus(value),
            dependencies=dependencies.get(f"t{n}", []),
            created_at=created_at,
            updated_at=created_at,
        )
        for n, value in enumerate(statuses, start=1)
    ]
    return Plan(
        id=plan_id,
        subtasks=subtasks,
        status=status,
        created_at=created_at,
        updated_at=created_at,
        metadata=metadata,
    )


class FrozenClock:
    """Callable wall clock for the planner, moved by hand."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def tick(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingDecomposer:
    """Two-step decomposer that counts calls and can block or fail."""

    def __init__(self, fail: Exception | None = None) -> None:
        self.calls: list[dict[str, Any]] = []
        self.fail = fail
        self.gate: asyncio.Event | None = None

    async def decompose(self, state: dict[str, Any]) -> Decomposition:
        self.calls.append(state)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail is not None:
            raise self.fail
        return Decomposition(
            goal="test goal",
            subtasks=[
                SubtaskDraft(description="first"),
                SubtaskDraft(description="second", depends_on=[0]),
            ],
        )


@pytest.fixture
def decomposer() -> RecordingDecomposer:
    return RecordingDecomposer()

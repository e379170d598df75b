"""Tests for AutonomousLoop and RepeatingTimer.

Timer-driven tests inject VirtualClock.sleep so cadence assertions are
exact rather than wall-clock dependent.
"""

from __future__ import annotations

import asyncio
import logging

import pytest

from autonomy.events import EventType
from autonomy.loop import AutonomousLoop, RepeatingTimer
from autonomy.planning import Planner
from tests.conftest import RecordingDecomposer, VirtualClock, settle


def _actions(caplog: pytest.LogCaptureFixture, action: str) -> list[logging.LogRecord]:
    return [r for r in caplog.records if getattr(r, "action", None) == action]


class Counter:
    def __init__(self) -> None:
        self.calls = 0

    async def __call__(self) -> None:
        self.calls += 1


# ===========================================================================
# Lifecycle
# ===========================================================================


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_starts_stopped(self):
        loop = AutonomousLoop()
        assert loop.running is False
        assert loop.trigger_interval == 10.0
        assert loop.planning_interval == 60.0

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_timer_pair(self, clock: VirtualClock, caplog):
        caplog.set_level(logging.INFO)
        loop = AutonomousLoop(0.1, 0.2, sleep=clock.sleep)
        trigger = Counter()
        planning = Counter()
        loop.register_trigger(trigger)
        loop.set_planning_unit(planning)

        await loop.start()
        await loop.start()
        try:
            await clock.advance(0.25)
            assert trigger.calls == 2
            assert planning.calls == 1
            assert len(_actions(caplog, EventType.START_IGNORED)) == 1
            assert len(_actions(caplog, EventType.LOOP_STARTED)) == 1
        finally:
            await loop.stop()

    @pytest.mark.asyncio
    async def test_stop_twice_is_safe(self, clock: VirtualClock, caplog):
        caplog.set_level(logging.INFO)
        loop = AutonomousLoop(0.1, 0.2, sleep=clock.sleep)
        await loop.start()
        await loop.stop()
        await loop.stop()
        assert loop.running is False
        assert len(_actions(caplog, EventType.STOP_IGNORED)) == 1

    @pytest.mark.asyncio
    async def test_stop_without_start_is_safe(self):
        loop = AutonomousLoop()
        await loop.stop()
        assert loop.running is False

    @pytest.mark.asyncio
    async def test_start_during_stop_keeps_timer_handles(self, clock: VirtualClock):
        """A start() landing while stop() awaits its timers stays stoppable."""
        loop = AutonomousLoop(0.1, 0.2, sleep=clock.sleep)
        trigger = Counter()
        loop.register_trigger(trigger)
        loop.set_planning_unit(Counter())
        await loop.start()

        stopping = asyncio.create_task(loop.stop())
        await asyncio.sleep(0)
        await loop.start()
        await stopping

        assert loop.running is True
        assert loop.has_planning_timer is True

        await loop.stop()
        await clock.advance(0.3)
        assert trigger.calls == 0
        assert loop.running is False

    @pytest.mark.asyncio
    async def test_stop_halts_future_ticks(self, clock: VirtualClock):
        loop = AutonomousLoop(0.1, 0.2, sleep=clock.sleep)
        trigger = Counter()
        loop.register_trigger(trigger)
        await loop.start()
        await clock.advance(0.1)
        await loop.stop()
        await clock.advance(1.0)
        assert trigger.calls == 1

    @pytest.mark.asyncio
    async def test_restart_keeps_registrations(self, clock: VirtualClock):
        loop = AutonomousLoop(0.1, 0.2, sleep=clock.sleep)
        trigger = Counter()
        planning = Counter()
        loop.register_trigger(trigger)
        loop.set_planning_unit(planning)

        await loop.start()
        await loop.stop()
        await loop.start()
        try:
            await clock.advance(0.2)
            assert trigger.calls == 2
            assert planning.calls == 1
        finally:
            await loop.stop()

    @pytest.mark.asyncio
    async def test_start_overrides_cadences(self, clock: VirtualClock):
        loop = AutonomousLoop(10.0, 60.0, sleep=clock.sleep)
        trigger = Counter()
        loop.register_trigger(trigger)
        await loop.start(trigger_interval=0.05, planning_interval=0.5)
        try:
            assert loop.trigger_interval == 0.05
            assert loop.planning_interval == 0.5
            await clock.advance(0.2)
            assert trigger.calls == 4
        finally:
            await loop.stop()


# ===========================================================================
# Tick execution
# ===========================================================================


class TestTicks:
    @pytest.mark.asyncio
    async def test_cadence_scenario(self, clock: VirtualClock):
        """Trigger 100ms, planning 200ms: after 250ms, 2 triggers and 1 plan."""
        loop = AutonomousLoop(0.1, 0.2, sleep=clock.sleep)
        trigger = Counter()
        planning = Counter()
        loop.register_trigger(trigger)
        loop.set_planning_unit(planning)

        await loop.start()
        try:
            await clock.advance(0.25)
            assert trigger.calls == 2
            assert planning.calls == 1
        finally:
            await loop.stop()

    @pytest.mark.asyncio
    async def test_triggers_run_sequentially_in_order(self, clock: VirtualClock):
        loop = AutonomousLoop(0.1, 1.0, sleep=clock.sleep)
        order: list[str] = []
        active = 0

        def make(name: str):
            async def unit() -> None:
                nonlocal active
                active += 1
                assert active == 1
                order.append(name)
                await asyncio.sleep(0)
                active -= 1

            return unit

        for name in ("a", "b", "c"):
            loop.register_trigger(make(name))

        await loop.start()
        try:
            await clock.advance(0.1)
            assert order == ["a", "b", "c"]
        finally:
            await loop.stop()

    @pytest.mark.asyncio
    async def test_failing_trigger_is_isolated(self, clock: VirtualClock, caplog):
        caplog.set_level(logging.INFO)
        loop = AutonomousLoop(0.1, 1.0, sleep=clock.sleep)
        counters = [Counter() for _ in range(4)]

        async def broken() -> None:
            raise RuntimeError("boom")

        loop.register_trigger(counters[0])
        loop.register_trigger(counters[1])
        loop.register_trigger(broken)
        loop.register_trigger(counters[2])
        loop.register_trigger(counters[3])

        await loop.start()
        try:
            await clock.advance(0.1)
            assert [c.calls for c in counters] == [1, 1, 1, 1]
            errors = _actions(caplog, EventType.TRIGGER_ERROR)
            assert len(errors) == 1
            assert errors[0].fields["index"] == 2
            assert errors[0].fields["error"] == "boom"

            # Next tick is unaffected
            await clock.advance(0.1)
            assert [c.calls for c in counters] == [2, 2, 2, 2]
        finally:
            await loop.stop()

    @pytest.mark.asyncio
    async def test_duplicate_registration_runs_twice(self, clock: VirtualClock):
        loop = AutonomousLoop(0.1, 1.0, sleep=clock.sleep)
        trigger = Counter()
        loop.register_trigger(trigger)
        loop.register_trigger(trigger)
        await loop.start()
        try:
            await clock.advance(0.1)
            assert trigger.calls == 2
            assert loop.trigger_count == 2
        finally:
            await loop.stop()

    @pytest.mark.asyncio
    async def test_trigger_registered_while_running(self, clock: VirtualClock):
        loop = AutonomousLoop(0.1, 1.0, sleep=clock.sleep)
        await loop.start()
        try:
            await clock.advance(0.1)
            trigger = Counter()
            loop.register_trigger(trigger)
            await clock.advance(0.1)
            assert trigger.calls == 1
        finally:
            await loop.stop()

    @pytest.mark.asyncio
    async def test_planning_failure_does_not_touch_triggers(self, clock: VirtualClock, caplog):
        caplog.set_level(logging.INFO)
        loop = AutonomousLoop(0.1, 0.1, sleep=clock.sleep)
        trigger = Counter()

        async def broken_planning() -> None:
            raise ValueError("planning exploded")

        loop.register_trigger(trigger)
        loop.set_planning_unit(broken_planning)
        await loop.start()
        try:
            await clock.advance(0.3)
            assert trigger.calls == 3
            assert len(_actions(caplog, EventType.PLANNING_ERROR)) == 3
            assert _actions(caplog, EventType.TRIGGER_ERROR) == []
        finally:
            await loop.stop()

    @pytest.mark.asyncio
    async def test_hung_trigger_does_not_stall_next_tick(self, clock: VirtualClock):
        loop = AutonomousLoop(0.1, 1.0, sleep=clock.sleep)
        release = asyncio.Event()
        entered = Counter()

        async def hangs() -> None:
            await entered()
            await release.wait()

        loop.register_trigger(hangs)
        await loop.start()
        try:
            await clock.advance(0.3)
            assert entered.calls == 3
        finally:
            release.set()
            await loop.stop()

    @pytest.mark.asyncio
    async def test_stop_does_not_cancel_inflight_unit(self, clock: VirtualClock):
        loop = AutonomousLoop(0.1, 1.0, sleep=clock.sleep)
        release = asyncio.Event()
        finished = Counter()

        async def slow() -> None:
            await release.wait()
            await finished()

        loop.register_trigger(slow)
        await loop.start()
        await clock.advance(0.1)
        await loop.stop()
        assert finished.calls == 0

        release.set()
        await settle()
        assert finished.calls == 1


# ===========================================================================
# Planning unit registration
# ===========================================================================


class TestPlanningUnit:
    @pytest.mark.asyncio
    async def test_no_planning_timer_without_unit(self, clock: VirtualClock):
        loop = AutonomousLoop(0.1, 0.2, sleep=clock.sleep)
        await loop.start()
        try:
            assert loop.has_planning_timer is False
        finally:
            await loop.stop()

    @pytest.mark.asyncio
    async def test_setting_unit_while_running_arms_timer(self, clock: VirtualClock):
        loop = AutonomousLoop(0.1, 0.2, sleep=clock.sleep)
        await loop.start()
        try:
            await clock.advance(0.15)
            planning = Counter()
            loop.set_planning_unit(planning)
            assert loop.has_planning_timer is True
            # Timer phase starts now: first firing at 0.15 + 0.2
            await clock.advance(0.1)
            assert planning.calls == 0
            await clock.advance(0.1)
            assert planning.calls == 1
        finally:
            await loop.stop()

    @pytest.mark.asyncio
    async def test_replacing_unit_keeps_timer_phase(self, clock: VirtualClock):
        loop = AutonomousLoop(0.1, 0.2, sleep=clock.sleep)
        first = Counter()
        second = Counter()
        loop.set_planning_unit(first)
        await loop.start()
        try:
            await clock.advance(0.15)
            loop.set_planning_unit(second)
            await clock.advance(0.05)
            assert first.calls == 0
            assert second.calls == 1
        finally:
            await loop.stop()

    @pytest.mark.asyncio
    async def test_planning_reentrancy_through_planner(self, clock: VirtualClock, caplog):
        """A planning cycle blocked past the next tick makes that tick a skip."""
        caplog.set_level(logging.INFO)
        decomposer = RecordingDecomposer()
        decomposer.gate = asyncio.Event()
        planner = Planner("test-agent", decomposer=decomposer)

        loop = AutonomousLoop(1.0, 0.2, sleep=clock.sleep)

        async def planning_unit() -> None:
            await planner.plan({"agent_name": "Test"})

        loop.set_planning_unit(planning_unit)
        await loop.start()
        try:
            await clock.advance(0.2)
            assert planner.planning_in_progress is True
            await clock.advance(0.2)
            assert len(decomposer.calls) == 1
            assert len(_actions(caplog, EventType.PLANNING_SKIPPED)) == 1

            decomposer.gate.set()
            await settle()
            assert planner.current_plan is not None
            assert planner.planning_in_progress is False
        finally:
            await loop.stop()


# ===========================================================================
# RepeatingTimer
# ===========================================================================


class TestRepeatingTimer:
    @pytest.mark.asyncio
    async def test_rejects_non_positive_interval(self):
        async def noop() -> None:
            pass

        with pytest.raises(ValueError):
            RepeatingTimer(0, noop)

    @pytest.mark.asyncio
    async def test_fires_until_stopped(self, clock: VirtualClock):
        hits = Counter()
        timer = RepeatingTimer(0.5, hits, sleep=clock.sleep)
        timer.start()
        await clock.advance(1.6)
        await timer.stop()
        await clock.advance(5.0)
        assert hits.calls == 3
        assert timer.fire_count == 3
        assert timer.active is False

    @pytest.mark.asyncio
    async def test_callback_error_is_contained(self, clock: VirtualClock):
        calls = Counter()

        async def broken() -> None:
            await calls()
            raise RuntimeError("nope")

        timer = RepeatingTimer(0.1, broken, sleep=clock.sleep)
        timer.start()
        try:
            await clock.advance(0.3)
            assert calls.calls == 3
        finally:
            await timer.stop()

    @pytest.mark.asyncio
    async def test_runs_on_real_sleep(self):
        hits = Counter()
        timer = RepeatingTimer(0.01, hits)
        timer.start()
        await asyncio.sleep(0.1)
        await timer.stop()
        assert hits.calls >= 2

"""Loop module -- the two-cadence scheduler that drives autonomous work."""

from autonomy.loop.scheduler import AutonomousLoop, PlanningUnit, TriggerUnit
from autonomy.loop.timer import RepeatingTimer

__all__ = [
    "AutonomousLoop",
    "PlanningUnit",
    "RepeatingTimer",
    "TriggerUnit",
]

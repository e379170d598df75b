"""Planning error types."""


class PlanningError(Exception):
    """Base class for planner failures."""


class PlanGenerationError(PlanningError):
    """A well-formed plan could not be produced from the given state."""

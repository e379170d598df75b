"""Planning module -- plan generation, drift monitoring and replanning.

Public API: Planner plus the schema types from schemas.py.
"""

from autonomy.planning.decompose import Decomposer, LLMDecomposer, TemplateDecomposer
from autonomy.planning.drift import DriftDetector
from autonomy.planning.errors import PlanGenerationError, PlanningError
from autonomy.planning.planner import Planner
from autonomy.planning.schemas import (
    Decomposition,
    Discrepancy,
    Plan,
    PlanMetadata,
    PlanStatus,
    Severity,
    StatusTally,
    Subtask,
    SubtaskDraft,
    SubtaskStatus,
)

__all__ = [
    "Planner",
    # Strategies
    "Decomposer",
    "DriftDetector",
    "LLMDecomposer",
    "TemplateDecomposer",
    # Errors
    "PlanGenerationError",
    "PlanningError",
    # Plans
    "Decomposition",
    "Plan",
    "PlanMetadata",
    "PlanStatus",
    "Subtask",
    "SubtaskDraft",
    "SubtaskStatus",
    # Monitoring
    "Discrepancy",
    "Severity",
    "StatusTally",
]

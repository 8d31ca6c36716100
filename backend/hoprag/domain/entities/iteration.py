"""Domain entities for the analyze → critique → retry loop."""

from dataclasses import dataclass, field
from enum import Enum

from .retrieval import PlanExecutionResult


class IterationState(str, Enum):
    PLANNED = "planned"
    PLAN_EXECUTED = "plan_executed"
    ANALYZED = "analyzed"
    CRITIQUED = "critiqued"
    DONE = "done"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    BUDGET_EXCEEDED = "budget_exceeded"
    FAILED = "failed"


TERMINAL_STATES = frozenset({
    IterationState.DONE,
    IterationState.MAX_ITERATIONS_REACHED,
    IterationState.BUDGET_EXCEEDED,
    IterationState.FAILED,
})


@dataclass
class CritiqueResult:
    """Verdict of the critique collaborator on an analysis narrative."""

    is_valid: bool
    confidence: float = 0.0
    issues: list[str] = field(default_factory=list)
    corrections: list[str] = field(default_factory=list)


@dataclass
class IterationOutcome:
    """Final state of an iteration loop run."""

    state: IterationState
    narrative: str | None = None
    critique: CritiqueResult | None = None
    iterations: int = 0
    confidence: float = 0.0
    execution: PlanExecutionResult | None = None
    history: list[IterationState] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

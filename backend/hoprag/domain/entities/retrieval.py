"""Domain entities for retrieval plans and their execution results."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .schema import Cardinality


class StepAction(str, Enum):
    FETCH = "fetch"
    HOP = "hop"
    AGGREGATE = "aggregate"


class StepStatus(str, Enum):
    COMPLETED = "completed"
    EMPTY = "empty"
    SKIPPED = "skipped"
    FAILED = "failed"


class AggregationOperation(str, Enum):
    COUNT = "count"
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"


@dataclass(frozen=True)
class HoppingPath:
    """One join step between two collections.

    Records of ``to`` whose ``via`` field matches the ``source_field`` values
    of the ``from`` records are the hop's output. Cardinality is expressed
    from the requested direction.
    """

    source: str
    to: str
    via: str
    cardinality: Cardinality
    source_field: str = "id"


@dataclass
class AggregationSpec:
    """Aggregation requested by an ``aggregate`` step."""

    operation: AggregationOperation = AggregationOperation.COUNT
    field: str | None = None
    group_by: str | None = None


@dataclass
class RetrievalStep:
    """A single step of a retrieval plan."""

    step_id: str
    action: StepAction
    collection: str
    filter: dict[str, Any] = field(default_factory=dict)
    limit: int | None = None
    sort: dict[str, int] | None = None
    dependencies: list[str] = field(default_factory=list)
    hopping_path: HoppingPath | None = None
    produces_output_for: str | None = None
    text_query: str | None = None
    vector_query: str | None = None
    aggregation: AggregationSpec | None = None


@dataclass
class RetrievalPlan:
    """Ordered retrieval steps produced by the planner collaborator."""

    steps: list[RetrievalStep] = field(default_factory=list)
    estimated_complexity: str = "low"  # "low" | "medium" | "high"
    requires_critique: bool = False


@dataclass
class StepResult:
    """Outcome of one executed (or skipped) step."""

    step_id: str
    action: StepAction
    collection: str
    status: StepStatus
    documents: list[dict[str, Any]] = field(default_factory=list)
    ids: list[Any] = field(default_factory=list)
    method: str | None = None
    confidence: float = 0.0
    broken: bool = False
    error: str | None = None
    path: list[HoppingPath] = field(default_factory=list)
    produces_output_for: str | None = None
    duration_ms: int = 0


@dataclass
class HopChainResult:
    """Documents reached by a multi-hop traversal."""

    documents: list[dict[str, Any]] = field(default_factory=list)
    executed: list[HoppingPath] = field(default_factory=list)
    broken_at: HoppingPath | None = None

    @property
    def complete(self) -> bool:
        return self.broken_at is None


@dataclass
class PlanExecutionResult:
    """Per-step results plus the deduplicated, collection-tagged merge."""

    step_results: dict[str, StepResult] = field(default_factory=dict)
    flattened_documents: list[dict[str, Any]] = field(default_factory=list)

    @property
    def confidence(self) -> float:
        scored = [
            r.confidence for r in self.step_results.values()
            if r.status == StepStatus.COMPLETED
        ]
        if not scored:
            return 0.0
        return sum(scored) / len(scored)

    @property
    def failed_steps(self) -> list[str]:
        return [
            step_id for step_id, r in self.step_results.items()
            if r.status == StepStatus.FAILED
        ]

from .schema import (
    Cardinality,
    CollectionSchema,
    DEFAULT_OPERATORS,
    FieldDefinition,
    FieldType,
    Relationship,
)
from .retrieval import (
    AggregationOperation,
    AggregationSpec,
    HopChainResult,
    HoppingPath,
    PlanExecutionResult,
    RetrievalPlan,
    RetrievalStep,
    StepAction,
    StepResult,
    StepStatus,
)
from .search import SearchMethod, SearchQuery, SearchResult
from .iteration import CritiqueResult, IterationOutcome, IterationState, TERMINAL_STATES
from .request_context import ProgressCallback, RequestContext

__all__ = [
    "Cardinality",
    "CollectionSchema",
    "DEFAULT_OPERATORS",
    "FieldDefinition",
    "FieldType",
    "Relationship",
    "AggregationOperation",
    "AggregationSpec",
    "HopChainResult",
    "HoppingPath",
    "PlanExecutionResult",
    "RetrievalPlan",
    "RetrievalStep",
    "StepAction",
    "StepResult",
    "StepStatus",
    "SearchMethod",
    "SearchQuery",
    "SearchResult",
    "CritiqueResult",
    "IterationOutcome",
    "IterationState",
    "TERMINAL_STATES",
    "ProgressCallback",
    "RequestContext",
]

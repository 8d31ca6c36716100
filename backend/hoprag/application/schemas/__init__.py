from .retrieval import (
    AggregationSchema,
    HoppingPathSchema,
    IngestRequest,
    IngestResponse,
    PlanExecutionResponse,
    PlanRequest,
    SearchRequest,
    SearchResponse,
    StepResultSchema,
    StepSchema,
)
from .schema_registry import (
    CollectionDetailSchema,
    CollectionSummarySchema,
    FieldSchema,
    RelationshipSchema,
)

__all__ = [
    "AggregationSchema",
    "HoppingPathSchema",
    "IngestRequest",
    "IngestResponse",
    "PlanExecutionResponse",
    "PlanRequest",
    "SearchRequest",
    "SearchResponse",
    "StepResultSchema",
    "StepSchema",
    "CollectionDetailSchema",
    "CollectionSummarySchema",
    "FieldSchema",
    "RelationshipSchema",
]

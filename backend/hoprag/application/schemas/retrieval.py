"""Pydantic schemas for retrieval API requests and responses.

Plans are accepted in the planner's camelCase (``stepId``, ``query``,
``hoppingPath``, ``producesOutputFor``, ``requiresCritic``) or snake_case.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from hoprag.domain.entities.retrieval import (
    AggregationOperation,
    AggregationSpec,
    HoppingPath,
    PlanExecutionResult,
    RetrievalPlan,
    RetrievalStep,
    StepAction,
    StepResult,
)
from hoprag.domain.entities.schema import Cardinality
from hoprag.domain.entities.search import SearchQuery, SearchResult


# ── Request Schemas ──────────────────────────────────────────────────


class HoppingPathSchema(BaseModel):
    """A declared join between two collections."""

    model_config = ConfigDict(populate_by_name=True)

    source: str = Field(..., alias="from")
    to: str
    via: str
    cardinality: Cardinality = Cardinality.ONE_TO_MANY
    source_field: str = Field(default="id", alias="sourceField")

    def to_domain(self) -> HoppingPath:
        return HoppingPath(
            source=self.source,
            to=self.to,
            via=self.via,
            cardinality=self.cardinality,
            source_field=self.source_field,
        )

    @classmethod
    def from_domain(cls, path: HoppingPath) -> "HoppingPathSchema":
        return cls(
            source=path.source,
            to=path.to,
            via=path.via,
            cardinality=path.cardinality,
            source_field=path.source_field,
        )


class AggregationSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    operation: AggregationOperation = AggregationOperation.COUNT
    field: str | None = None
    group_by: str | None = Field(default=None, alias="groupBy")

    @model_validator(mode="after")
    def _field_required(self) -> "AggregationSchema":
        if self.operation != AggregationOperation.COUNT and not self.field:
            raise ValueError(f"'{self.operation.value}' aggregation requires a field")
        return self


class StepSchema(BaseModel):
    """One retrieval step as produced by the planner."""

    model_config = ConfigDict(populate_by_name=True)

    step_id: str = Field(..., min_length=1, alias="stepId")
    action: StepAction
    collection: str = Field(..., min_length=1)
    filter: dict[str, Any] = Field(default_factory=dict, alias="query")
    limit: int | None = Field(default=None, ge=1, le=1000)
    sort: dict[str, Any] | None = None
    dependencies: list[str] = []
    hopping_path: HoppingPathSchema | None = Field(default=None, alias="hoppingPath")
    produces_output_for: str | None = Field(default=None, alias="producesOutputFor")
    text_query: str | None = Field(default=None, alias="textQuery")
    vector_query: str | None = Field(default=None, alias="vectorQuery")
    aggregation: AggregationSchema | None = None

    def to_domain(self) -> RetrievalStep:
        return RetrievalStep(
            step_id=self.step_id,
            action=self.action,
            collection=self.collection,
            filter=dict(self.filter),
            limit=self.limit,
            sort=self.sort,
            dependencies=list(self.dependencies),
            hopping_path=self.hopping_path.to_domain() if self.hopping_path else None,
            produces_output_for=self.produces_output_for,
            text_query=self.text_query,
            vector_query=self.vector_query,
            aggregation=AggregationSpec(
                operation=self.aggregation.operation,
                field=self.aggregation.field,
                group_by=self.aggregation.group_by,
            ) if self.aggregation else None,
        )


class PlanRequest(BaseModel):
    """Request body for executing a retrieval plan."""

    model_config = ConfigDict(populate_by_name=True)

    steps: list[StepSchema] = Field(..., min_length=1)
    estimated_complexity: str = Field(default="low", alias="estimatedComplexity")
    requires_critique: bool = Field(default=False, alias="requiresCritic")

    @model_validator(mode="after")
    def _check_dependencies(self) -> "PlanRequest":
        seen: set[str] = set()
        for step in self.steps:
            if step.step_id in seen:
                raise ValueError(f"duplicate step id '{step.step_id}'")
            for dep in step.dependencies:
                if dep not in seen:
                    raise ValueError(
                        f"step '{step.step_id}' depends on '{dep}', which is not an earlier step"
                    )
            seen.add(step.step_id)
        return self

    def to_domain(self) -> RetrievalPlan:
        return RetrievalPlan(
            steps=[s.to_domain() for s in self.steps],
            estimated_complexity=self.estimated_complexity,
            requires_critique=self.requires_critique,
        )


class SearchRequest(BaseModel):
    """Request body for a single-collection search."""

    model_config = ConfigDict(populate_by_name=True)

    collection: str = Field(..., min_length=1)
    filter: dict[str, Any] = Field(default_factory=dict, alias="query")
    vector_query: str | None = Field(default=None, alias="vectorQuery")
    text_query: str | None = Field(default=None, alias="textQuery")
    limit: int | None = Field(default=None, ge=1, le=1000)
    skip: int = Field(default=0, ge=0)
    sort: dict[str, Any] | None = None

    def to_domain(self, tenant_id: str) -> SearchQuery:
        return SearchQuery(
            collection=self.collection,
            tenant_id=tenant_id,
            filter=dict(self.filter),
            vector_query=self.vector_query,
            text_query=self.text_query,
            limit=self.limit,
            skip=self.skip,
            sort=self.sort,
        )


class IngestRequest(BaseModel):
    """Request body for writing documents into a collection."""

    documents: list[dict[str, Any]] = Field(..., min_length=1, max_length=1000)


# ── Response Schemas ─────────────────────────────────────────────────


class SearchResponse(BaseModel):
    documents: list[dict[str, Any]] = []
    total_count: int = 0
    method: str
    confidence: float = 0.0

    @classmethod
    def from_domain(cls, result: SearchResult) -> "SearchResponse":
        return cls(
            documents=result.documents,
            total_count=result.total_count,
            method=result.method.value,
            confidence=result.confidence,
        )


class StepResultSchema(BaseModel):
    step_id: str
    action: str
    collection: str
    status: str
    documents: list[dict[str, Any]] = []
    ids: list[Any] = []
    method: str | None = None
    confidence: float = 0.0
    broken: bool = False
    error: str | None = None
    path: list[HoppingPathSchema] = []
    produces_output_for: str | None = None
    duration_ms: int = 0

    @classmethod
    def from_domain(cls, result: StepResult) -> "StepResultSchema":
        return cls(
            step_id=result.step_id,
            action=result.action.value,
            collection=result.collection,
            status=result.status.value,
            documents=result.documents,
            ids=result.ids,
            method=result.method,
            confidence=result.confidence,
            broken=result.broken,
            error=result.error,
            path=[HoppingPathSchema.from_domain(p) for p in result.path],
            produces_output_for=result.produces_output_for,
            duration_ms=result.duration_ms,
        )


class PlanExecutionResponse(BaseModel):
    """Per-step results plus the flattened document list."""

    step_results: dict[str, StepResultSchema] = {}
    flattened_documents: list[dict[str, Any]] = []
    confidence: float = 0.0
    failed_steps: list[str] = []

    @classmethod
    def from_domain(cls, result: PlanExecutionResult) -> "PlanExecutionResponse":
        return cls(
            step_results={
                step_id: StepResultSchema.from_domain(r)
                for step_id, r in result.step_results.items()
            },
            flattened_documents=result.flattened_documents,
            confidence=result.confidence,
            failed_steps=result.failed_steps,
        )


class IngestResponse(BaseModel):
    collection: str
    written: int

"""Unit tests for PlanOrchestrator — step dispatch, placeholders, skips and merging."""

import pytest

from hoprag.application.services.hop_executor import HopExecutor
from hoprag.application.services.path_finder import PathFinder
from hoprag.application.services.plan_orchestrator import PlanOrchestrator, resolve_reference
from hoprag.application.services.schema_registry import SchemaRegistry, SchemaRegistryLoader
from hoprag.application.services.search_service import SearchService
from hoprag.config import get_settings
from hoprag.domain.entities.request_context import RequestContext
from hoprag.domain.entities.retrieval import (
    AggregationOperation,
    AggregationSpec,
    HoppingPath,
    RetrievalPlan,
    RetrievalStep,
    StepAction,
    StepResult,
    StepStatus,
)
from hoprag.domain.entities.schema import (
    Cardinality,
    CollectionSchema,
    FieldDefinition,
    FieldType,
    Relationship,
)
from hoprag.infrastructure.memory import InMemoryDocumentStore


# ── Fixtures ─────────────────────────────────────────────────────────


async def _make_store() -> InMemoryDocumentStore:
    store = InMemoryDocumentStore()
    await store.upsert("companies", [
        {"id": "c1", "userId": "t1", "name": "Acme", "industry": ["Software"], "employeeCount": 120},
        {"id": "c2", "userId": "t1", "name": "Beta", "industry": ["Food"], "employeeCount": 40},
        {"id": "c3", "userId": "t2", "name": "Gamma", "industry": ["Software"], "employeeCount": 900},
    ])
    await store.upsert("employees", [
        {"id": "e1", "userId": "t1", "companyId": "c1", "fullName": "Ada", "isDecisionMaker": True},
        {"id": "e2", "userId": "t1", "companyId": "c1", "fullName": "Bob", "isDecisionMaker": False},
        {"id": "e3", "userId": "t1", "companyId": "c2", "fullName": "Cy", "isDecisionMaker": True},
        {"id": "e4", "userId": "t2", "companyId": "c3", "fullName": "Dee", "isDecisionMaker": True},
    ])
    return store


def _make_orchestrator(store, registry: SchemaRegistry | None = None) -> PlanOrchestrator:
    registry = registry or SchemaRegistryLoader(get_settings().schema_registry_file).load()
    return PlanOrchestrator(
        registry,
        SearchService(registry, store),
        HopExecutor(registry, store),
        PathFinder(registry),
    )


def _fetch(step_id: str, collection: str, filter=None, **kwargs) -> RetrievalStep:
    return RetrievalStep(step_id, StepAction.FETCH, collection, filter=filter or {}, **kwargs)


def _hop(step_id: str, source: str, target: str, via: str, **kwargs) -> RetrievalStep:
    return RetrievalStep(
        step_id,
        StepAction.HOP,
        target,
        hopping_path=HoppingPath(source, target, via, Cardinality.ONE_TO_MANY),
        **kwargs,
    )


def _ids(step_result: StepResult) -> list[str]:
    return sorted(d["id"] for d in step_result.documents)


# ── Fetch and hop ────────────────────────────────────────────────────


class TestFetchAndHop:
    @pytest.mark.asyncio
    async def test_fetch_then_hop(self):
        orchestrator = _make_orchestrator(await _make_store())
        plan = RetrievalPlan(steps=[
            _fetch("find_companies", "companies", {"industry": "Software"}),
            _hop("find_people", "companies", "employees", "companyId", dependencies=["find_companies"]),
        ])

        result = await orchestrator.execute(plan, "t1")

        companies = result.step_results["find_companies"]
        people = result.step_results["find_people"]
        assert companies.status == StepStatus.COMPLETED
        assert companies.ids == ["c1"]
        assert people.status == StepStatus.COMPLETED
        assert _ids(people) == ["e1", "e2"]
        assert people.method == "hop"
        assert [(p.source, p.to) for p in people.path] == [("companies", "employees")]
        assert result.failed_steps == []

    @pytest.mark.asyncio
    async def test_empty_fetch_skips_dependent_hop(self):
        orchestrator = _make_orchestrator(await _make_store())
        plan = RetrievalPlan(steps=[
            _fetch("find_companies", "companies", {"industry": "Mining"}),
            _hop("find_people", "companies", "employees", "companyId", dependencies=["find_companies"]),
        ])

        result = await orchestrator.execute(plan, "t1")

        assert result.step_results["find_companies"].status == StepStatus.EMPTY
        skipped = result.step_results["find_people"]
        assert skipped.status == StepStatus.SKIPPED
        assert skipped.broken is True
        assert skipped.documents == []
        assert "find_companies" in skipped.error
        assert result.flattened_documents == []

    @pytest.mark.asyncio
    async def test_hop_filter_narrows_targets(self):
        orchestrator = _make_orchestrator(await _make_store())
        plan = RetrievalPlan(steps=[
            _fetch("all_companies", "companies"),
            _hop(
                "deciders", "companies", "employees", "companyId",
                dependencies=["all_companies"], filter={"decision maker": "yes"},
            ),
        ])

        result = await orchestrator.execute(plan, "t1")
        assert _ids(result.step_results["deciders"]) == ["e1", "e3"]

    @pytest.mark.asyncio
    async def test_registry_join_wins_over_declared_via(self):
        orchestrator = _make_orchestrator(await _make_store())
        plan = RetrievalPlan(steps=[
            _fetch("find_companies", "companies", {"industry": "Software"}),
            _hop("find_people", "companies", "employees", "employerRef", dependencies=["find_companies"]),
        ])

        result = await orchestrator.execute(plan, "t1")

        people = result.step_results["find_people"]
        assert _ids(people) == ["e1", "e2"]
        assert people.path[0].via == "companyId"

    @pytest.mark.asyncio
    async def test_hop_without_declared_path_uses_dependency_collection(self):
        orchestrator = _make_orchestrator(await _make_store())
        plan = RetrievalPlan(steps=[
            _fetch("find_companies", "companies", {"industry": "Food"}),
            RetrievalStep("find_people", StepAction.HOP, "employees", dependencies=["find_companies"]),
        ])

        result = await orchestrator.execute(plan, "t1")
        assert _ids(result.step_results["find_people"]) == ["e3"]

    @pytest.mark.asyncio
    async def test_multi_hop_chain_through_intermediate_collection(self):
        registry = SchemaRegistry([
            CollectionSchema(
                name="companies",
                fields=(FieldDefinition("id", FieldType.IDENTIFIER),),
                relationships=(Relationship("id", "employees", Cardinality.ONE_TO_MANY, via="companyId"),),
            ),
            CollectionSchema(
                name="employees",
                fields=(
                    FieldDefinition("id", FieldType.IDENTIFIER),
                    FieldDefinition("companyId", FieldType.IDENTIFIER),
                ),
                relationships=(
                    Relationship("companyId", "companies", Cardinality.MANY_TO_ONE),
                    Relationship("id", "personas", Cardinality.ONE_TO_ONE, via="employeeId"),
                ),
            ),
            CollectionSchema(
                name="personas",
                fields=(
                    FieldDefinition("id", FieldType.IDENTIFIER),
                    FieldDefinition("employeeId", FieldType.IDENTIFIER),
                ),
                relationships=(Relationship("employeeId", "employees", Cardinality.ONE_TO_ONE),),
            ),
        ])
        store = await _make_store()
        await store.upsert("personas", [
            {"id": "p1", "userId": "t1", "employeeId": "e1"},
            {"id": "p3", "userId": "t1", "employeeId": "e3"},
            {"id": "p4", "userId": "t2", "employeeId": "e4"},
        ])
        orchestrator = _make_orchestrator(store, registry)
        plan = RetrievalPlan(steps=[
            _fetch("find_companies", "companies", {"id": "c1"}),
            _hop("find_personas", "companies", "personas", "employeeId", dependencies=["find_companies"]),
        ])

        result = await orchestrator.execute(plan, "t1")

        personas = result.step_results["find_personas"]
        assert _ids(personas) == ["p1"]
        assert [(p.source, p.to) for p in personas.path] == [
            ("companies", "employees"),
            ("employees", "personas"),
        ]

    @pytest.mark.asyncio
    async def test_failed_step_is_recorded_and_plan_continues(self):
        orchestrator = _make_orchestrator(await _make_store())
        plan = RetrievalPlan(steps=[
            _fetch("find_companies", "companies"),
            _hop("nowhere", "companies", "ghosts", "companyId", dependencies=["find_companies"]),
            _fetch("find_people", "employees"),
        ])

        result = await orchestrator.execute(plan, "t1")

        assert result.step_results["nowhere"].status == StepStatus.FAILED
        assert result.step_results["nowhere"].error
        assert result.failed_steps == ["nowhere"]
        assert result.step_results["find_people"].status == StepStatus.COMPLETED


# ── Placeholders ─────────────────────────────────────────────────────


class TestPlaceholders:
    @pytest.mark.asyncio
    async def test_output_tag_suffix_resolves_to_upstream_ids(self):
        orchestrator = _make_orchestrator(await _make_store())
        plan = RetrievalPlan(steps=[
            _fetch("step_1", "companies", {"industry": "Software"}, produces_output_for="company_ids"),
            _fetch("step_2", "employees", {"companyId": "FROM_STEP_1_COMPANY_IDS"}),
        ])

        result = await orchestrator.execute(plan, "t1")
        assert _ids(result.step_results["step_2"]) == ["e1", "e2"]

    @pytest.mark.asyncio
    async def test_negated_placeholder_becomes_nin(self):
        orchestrator = _make_orchestrator(await _make_store())
        plan = RetrievalPlan(steps=[
            _fetch("software", "companies", {"industry": "Software"}),
            _fetch("others", "employees", {"companyId": {"$ne": "FROM_STEP_software"}}),
        ])

        result = await orchestrator.execute(plan, "t1")
        assert _ids(result.step_results["others"]) == ["e3"]

    @pytest.mark.asyncio
    async def test_unresolved_placeholder_is_dropped(self):
        orchestrator = _make_orchestrator(await _make_store())
        plan = RetrievalPlan(steps=[
            _fetch("deciders", "employees", {"companyId": "FROM_STEP_ghost", "isDecisionMaker": True}),
        ])

        result = await orchestrator.execute(plan, "t1")
        assert _ids(result.step_results["deciders"]) == ["e1", "e3"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "filter",
        [
            {"companyId": "FROM_STEP_1_COMPANY_IDS"},
            {"companyId": {"$in": ["FROM_STEP_1_COMPANY_IDS"]}},
            {"companyId": {"$in": "FROM_STEP_1_COMPANY_IDS"}},
            {"companyId": ["FROM_STEP_1_COMPANY_IDS"]},
        ],
    )
    async def test_placeholder_to_empty_step_matches_nothing(self, filter):
        orchestrator = _make_orchestrator(await _make_store())
        plan = RetrievalPlan(steps=[
            _fetch("step_1", "companies", {"industry": "Mining"}, produces_output_for="company_ids"),
            _fetch("step_2", "employees", filter),
        ])

        result = await orchestrator.execute(plan, "t1")

        assert result.step_results["step_1"].ids == []
        people = result.step_results["step_2"]
        assert people.status == StepStatus.EMPTY
        assert people.broken is True
        assert people.documents == []
        assert "no ids" in people.error
        assert result.failed_steps == []

    @pytest.mark.asyncio
    async def test_exclusion_of_empty_step_keeps_everything(self):
        orchestrator = _make_orchestrator(await _make_store())
        plan = RetrievalPlan(steps=[
            _fetch("mining", "companies", {"industry": "Mining"}),
            _fetch("others", "employees", {"companyId": {"$ne": "FROM_STEP_mining"}}),
        ])

        result = await orchestrator.execute(plan, "t1")
        assert _ids(result.step_results["others"]) == ["e1", "e2", "e3"]

    @pytest.mark.asyncio
    async def test_or_branch_joined_to_empty_step_is_dropped(self):
        orchestrator = _make_orchestrator(await _make_store())
        plan = RetrievalPlan(steps=[
            _fetch("mining", "companies", {"industry": "Mining"}),
            _fetch("people", "employees", {"$or": [
                {"companyId": "FROM_STEP_mining"},
                {"isDecisionMaker": True},
            ]}),
        ])

        result = await orchestrator.execute(plan, "t1")
        assert _ids(result.step_results["people"]) == ["e1", "e3"]

    def test_reference_resolution_order(self):
        def _result(step_id, tag=None):
            return StepResult(step_id, StepAction.FETCH, "companies", StepStatus.COMPLETED,
                              produces_output_for=tag)

        results = {
            "step1": _result("step1", "company_ids"),
            "lookup": _result("lookup"),
        }
        assert resolve_reference("STEP1", results) is results["step1"]
        assert resolve_reference("company_ids", results) is results["step1"]
        assert resolve_reference("1_COMPANY_IDS", results) is results["step1"]
        assert resolve_reference("lookup_results", results) is results["lookup"]
        assert resolve_reference("unknown", results) is None


# ── Aggregation ──────────────────────────────────────────────────────


class TestAggregate:
    @pytest.mark.asyncio
    async def test_aggregate_with_spec(self):
        orchestrator = _make_orchestrator(await _make_store())
        plan = RetrievalPlan(steps=[
            RetrievalStep(
                "by_industry", StepAction.AGGREGATE, "companies",
                aggregation=AggregationSpec(AggregationOperation.COUNT, group_by="industry"),
            ),
        ])

        result = await orchestrator.execute(plan, "t1")

        rows = result.step_results["by_industry"].documents
        assert {r["group"]: r["value"] for r in rows} == {"Software": 1, "Food": 1}

    @pytest.mark.asyncio
    async def test_aggregate_without_spec_returns_records(self):
        orchestrator = _make_orchestrator(await _make_store())
        plan = RetrievalPlan(steps=[RetrievalStep("raw", StepAction.AGGREGATE, "companies")])

        result = await orchestrator.execute(plan, "t1")

        raw = result.step_results["raw"]
        assert raw.status == StepStatus.COMPLETED
        assert _ids(raw) == ["c1", "c2"]


# ── Merging and progress ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_flattened_documents_are_tagged_and_deduplicated():
    orchestrator = _make_orchestrator(await _make_store())
    plan = RetrievalPlan(steps=[
        _fetch("software", "companies", {"industry": "Software"}),
        _fetch("all", "companies"),
        _hop("people", "companies", "employees", "companyId", dependencies=["software"]),
    ])

    result = await orchestrator.execute(plan, "t1")

    keys = [(d["_collection"], d["id"]) for d in result.flattened_documents]
    assert keys == [
        ("companies", "c1"),
        ("companies", "c2"),
        ("employees", "e1"),
        ("employees", "e2"),
    ]


@pytest.mark.asyncio
async def test_progress_events_are_reported():
    events: list[tuple[str, dict]] = []

    async def _record(event, data):
        events.append((event, data))

    orchestrator = _make_orchestrator(await _make_store())
    context = RequestContext(tenant_id="t1", progress=_record)
    plan = RetrievalPlan(steps=[_fetch("find_companies", "companies")])

    await orchestrator.execute(plan, "t1", context=context)

    names = [name for name, _ in events]
    assert names == ["plan_started", "step_started", "step_completed", "plan_completed"]
    assert events[2][1]["status"] == "completed"
    assert all(data["request_id"] == context.request_id for _, data in events)


@pytest.mark.asyncio
async def test_failing_progress_callback_does_not_interrupt():
    async def _explode(event, data):
        raise RuntimeError("client went away")

    orchestrator = _make_orchestrator(await _make_store())
    context = RequestContext(tenant_id="t1", progress=_explode)
    plan = RetrievalPlan(steps=[_fetch("find_companies", "companies")])

    result = await orchestrator.execute(plan, "t1", context=context)
    assert result.step_results["find_companies"].status == StepStatus.COMPLETED

"""Plan orchestrator — executes retrieval plans step by step.

Steps run in plan order. Upstream ids flow into downstream filters through
``FROM_STEP_<ref>`` placeholders, hop steps are resolved against the schema
registry, and a step whose dependency came back empty is skipped rather
than queried. A failing step is recorded and never aborts the plan.
"""

import logging
import re
import time
from typing import Any

from hoprag.application.services.filter_sanitizer import FilterSanitizer
from hoprag.application.services.hop_executor import HopExecutor, collect_values
from hoprag.application.services.path_finder import PathFinder
from hoprag.application.services.schema_registry import SchemaRegistry
from hoprag.application.services.search_service import SearchService
from hoprag.domain.entities.request_context import RequestContext
from hoprag.domain.entities.retrieval import (
    HoppingPath,
    PlanExecutionResult,
    RetrievalPlan,
    RetrievalStep,
    StepAction,
    StepResult,
    StepStatus,
)
from hoprag.domain.entities.search import SearchQuery, SearchResult
from hoprag.domain.exceptions import PathNotFoundError, PlanValidationError
from hoprag.infrastructure.logging.colored_logger import RetrievalLogger, RetrievalStage

logger = logging.getLogger(__name__)
rlog = RetrievalLogger("PlanOrchestrator")

_PLACEHOLDER = re.compile(r"^\s*FROM_STEP_(?P<ref>\S+)\s*$", re.IGNORECASE)
_LIST_OPERATORS = ("$in", "$nin", "$all")
_NEGATED = {"$ne": "$nin", "$eq": "$in"}
_BLOCKING = (StepStatus.EMPTY, StepStatus.SKIPPED, StepStatus.FAILED)

_STAGES = {
    StepAction.FETCH: RetrievalStage.FETCH,
    StepAction.HOP: RetrievalStage.HOP,
    StepAction.AGGREGATE: RetrievalStage.AGGREGATE,
}


class _Unresolved(Exception):
    """A placeholder that names no executed step."""


class _EmptyUpstream(Exception):
    """A placeholder whose step produced no ids, so the join matches nothing."""


class PlanOrchestrator:
    """Runs fetch / hop / aggregate steps for one tenant."""

    def __init__(
        self,
        registry: SchemaRegistry,
        search_service: SearchService,
        hop_executor: HopExecutor,
        path_finder: PathFinder,
        sanitizer: FilterSanitizer | None = None,
        *,
        aggregate_default_limit: int = 100,
    ):
        self._registry = registry
        self._search = search_service
        self._hops = hop_executor
        self._paths = path_finder
        self._sanitizer = sanitizer or FilterSanitizer(registry)
        self._aggregate_limit = aggregate_default_limit

    async def execute(
        self,
        plan: RetrievalPlan,
        tenant_id: str,
        *,
        context: RequestContext | None = None,
    ) -> PlanExecutionResult:
        context = context or RequestContext(tenant_id=tenant_id)
        result = PlanExecutionResult()

        rlog.separator(f"plan {context.request_id[:8]}")
        rlog.step_start(
            RetrievalStage.PLAN,
            f"Executing {len(plan.steps)} steps",
            complexity=plan.estimated_complexity,
        )
        await context.notify("plan_started", steps=len(plan.steps))

        for step in plan.steps:
            await context.notify(
                "step_started", step_id=step.step_id, action=step.action.value,
                collection=step.collection,
            )
            start = time.monotonic()
            step_result = await self._run_step(step, result.step_results, tenant_id)
            step_result.duration_ms = int((time.monotonic() - start) * 1000)
            step_result.produces_output_for = step.produces_output_for
            result.step_results[step.step_id] = step_result

            await context.notify(
                "step_completed",
                step_id=step.step_id,
                status=step_result.status.value,
                documents=len(step_result.documents),
                error=step_result.error,
            )

        result.flattened_documents = self._flatten(result)
        rlog.step_complete(
            RetrievalStage.COMPLETE,
            f"{len(result.flattened_documents)} documents",
            failed=len(result.failed_steps),
        )
        await context.notify(
            "plan_completed",
            documents=len(result.flattened_documents),
            failed_steps=result.failed_steps,
        )
        return result

    # ── Step dispatch ────────────────────────────────────────────────

    async def _run_step(
        self,
        step: RetrievalStep,
        results: dict[str, StepResult],
        tenant_id: str,
    ) -> StepResult:
        blocker = _blocking_dependency(step, results)
        if blocker is not None:
            rlog.detail(f"Skipping {step.step_id}: {blocker}")
            return StepResult(
                step_id=step.step_id,
                action=step.action,
                collection=step.collection,
                status=StepStatus.SKIPPED,
                broken=True,
                error=blocker,
            )

        stage = _STAGES[step.action]
        rlog.step_start(stage, f"{step.step_id} → {step.collection}")
        try:
            filter = self._resolve_placeholders(step, results)
            if step.action == StepAction.HOP:
                step_result = await self._hop(step, filter, results, tenant_id)
            elif step.action == StepAction.AGGREGATE:
                step_result = await self._aggregate(step, filter, tenant_id)
            else:
                step_result = await self._fetch(step, filter, tenant_id, step.limit)
        except _EmptyUpstream as exc:
            rlog.detail(f"Skipping {step.step_id}: {exc}")
            return StepResult(
                step_id=step.step_id,
                action=step.action,
                collection=step.collection,
                status=StepStatus.EMPTY,
                broken=True,
                error=str(exc),
            )
        except Exception as exc:
            rlog.step_error(RetrievalStage.ERROR, f"{step.step_id} failed", error=exc)
            return StepResult(
                step_id=step.step_id,
                action=step.action,
                collection=step.collection,
                status=StepStatus.FAILED,
                error=str(exc),
            )

        rlog.step_complete(
            stage,
            f"{step.step_id}: {len(step_result.documents)} documents",
            status=step_result.status.value,
        )
        return step_result

    async def _fetch(
        self,
        step: RetrievalStep,
        filter: dict[str, Any],
        tenant_id: str,
        limit: int | None,
    ) -> StepResult:
        search_result = await self._search.search(
            SearchQuery(
                collection=step.collection,
                tenant_id=tenant_id,
                filter=filter,
                vector_query=step.vector_query,
                text_query=step.text_query,
                limit=limit,
                sort=step.sort,
            )
        )
        return self._from_search(step, search_result)

    async def _aggregate(
        self,
        step: RetrievalStep,
        filter: dict[str, Any],
        tenant_id: str,
    ) -> StepResult:
        if step.aggregation is None:
            # No aggregation spec: return the raw records for downstream analysis.
            return await self._fetch(step, filter, tenant_id, step.limit or self._aggregate_limit)
        search_result = await self._search.aggregate(
            step.collection, tenant_id, step.aggregation, filter
        )
        return self._from_search(step, search_result)

    async def _hop(
        self,
        step: RetrievalStep,
        filter: dict[str, Any],
        results: dict[str, StepResult],
        tenant_id: str,
    ) -> StepResult:
        chain = self._resolve_chain(step, results)
        source_docs = _source_documents(step, chain[0].source, results)

        if not source_docs:
            return StepResult(
                step_id=step.step_id,
                action=step.action,
                collection=step.collection,
                status=StepStatus.EMPTY,
                broken=True,
                path=chain,
            )

        target_filter = self._sanitizer.sanitize(chain[-1].to, filter).filter
        *leading, last = chain
        current = source_docs
        if leading:
            traversal = await self._hops.traverse(leading, source_docs, tenant_id)
            current = traversal.documents

        docs: list[dict[str, Any]] = []
        if current:
            docs = await self._hops.hop(
                last.source,
                collect_values(current, last.source_field),
                last.to,
                last.via,
                tenant_id,
                source_field=last.source_field,
                filter=target_filter,
                limit=step.limit,
            )

        return StepResult(
            step_id=step.step_id,
            action=step.action,
            collection=last.to,
            status=StepStatus.COMPLETED if docs else StepStatus.EMPTY,
            documents=docs,
            ids=self._ids(last.to, docs),
            method="hop",
            confidence=1.0 if docs else 0.0,
            broken=not docs,
            path=chain,
        )

    def _resolve_chain(self, step: RetrievalStep, results: dict[str, StepResult]) -> list[HoppingPath]:
        """Resolve the hop path against the registry; the registry wins over the plan."""
        declared = step.hopping_path
        if declared is not None:
            source, target = declared.source, declared.to
        elif step.dependencies and step.dependencies[0] in results:
            source, target = results[step.dependencies[0]].collection, step.collection
        else:
            raise PlanValidationError(step.step_id, "hop step needs a hopping path or a dependency")

        chain = self._paths.find_chain(source, target)
        if not chain:
            raise PathNotFoundError(source, target)

        if declared is not None and len(chain) == 1 and chain[0].via != declared.via:
            logger.warning(
                "Step %s declares via=%s for %s → %s; using registry via=%s",
                step.step_id, declared.via, source, target, chain[0].via,
            )
        return chain

    # ── Placeholders ─────────────────────────────────────────────────

    def _resolve_placeholders(
        self, step: RetrievalStep, results: dict[str, StepResult]
    ) -> dict[str, Any]:
        """Replace ``FROM_STEP_<ref>`` values with upstream ids; drop unresolvable ones."""
        return self._resolve_mapping(step.filter or {}, step.step_id, results)

    def _resolve_mapping(
        self, mapping: dict[str, Any], step_id: str, results: dict[str, StepResult]
    ) -> dict[str, Any]:
        resolved: dict[str, Any] = {}
        for key, value in mapping.items():
            try:
                if key in _LIST_OPERATORS and _is_placeholder(value):
                    resolved[key] = self._lookup(value, results, excluding=key == "$nin")
                elif key in _NEGATED and _is_placeholder(value):
                    resolved[_NEGATED[key]] = self._lookup(value, results, excluding=key == "$ne")
                elif _is_placeholder(value):
                    resolved[key] = {"$in": self._lookup(value, results)}
                elif key == "$or" and isinstance(value, list):
                    resolved[key] = self._resolve_branches(value, step_id, results)
                else:
                    resolved[key] = self._resolve_value(
                        value, step_id, results, excluding=key == "$nin"
                    )
            except _Unresolved:
                logger.warning("Step %s: dropping unresolved placeholder %s=%r", step_id, key, value)
        return resolved

    def _resolve_branches(
        self, branches: list[Any], step_id: str, results: dict[str, StepResult]
    ) -> list[Any]:
        """Resolve ``$or`` branches; a branch joined to an empty step can never match."""
        kept: list[Any] = []
        for branch in branches:
            try:
                kept.append(self._resolve_value(branch, step_id, results))
            except _EmptyUpstream as exc:
                logger.info("Step %s: dropping $or branch: %s", step_id, exc)
        if branches and not kept:
            raise _EmptyUpstream("every $or branch resolved to no ids")
        return kept

    def _resolve_value(
        self,
        value: Any,
        step_id: str,
        results: dict[str, StepResult],
        *,
        excluding: bool = False,
    ) -> Any:
        if isinstance(value, dict):
            return self._resolve_mapping(value, step_id, results)
        if isinstance(value, list):
            spliced: list[Any] = []
            resolved_any = False
            for item in value:
                if _is_placeholder(item):
                    try:
                        spliced.extend(self._lookup(item, results, excluding=True))
                        resolved_any = True
                    except _Unresolved:
                        logger.warning("Step %s: dropping unresolved placeholder %r", step_id, item)
                else:
                    spliced.append(self._resolve_value(item, step_id, results))
            if resolved_any and not spliced and not excluding:
                raise _EmptyUpstream(f"placeholders in {value!r} resolved to no ids")
            return spliced
        return value

    def _lookup(
        self, placeholder: str, results: dict[str, StepResult], *, excluding: bool = False
    ) -> list[Any]:
        """Ids produced by the referenced step.

        An inclusion that resolves to no ids can match nothing; exclusions
        (``$nin``) are allowed to be empty.
        """
        ref = _PLACEHOLDER.match(placeholder).group("ref")
        step_result = resolve_reference(ref, results)
        if step_result is None:
            raise _Unresolved(placeholder)
        if not step_result.ids and not excluding:
            raise _EmptyUpstream(f"{placeholder} resolved to no ids")
        return list(step_result.ids)

    # ── Results ──────────────────────────────────────────────────────

    def _from_search(self, step: RetrievalStep, search_result: SearchResult) -> StepResult:
        docs = search_result.documents
        return StepResult(
            step_id=step.step_id,
            action=step.action,
            collection=step.collection,
            status=StepStatus.COMPLETED if docs else StepStatus.EMPTY,
            documents=docs,
            ids=self._ids(step.collection, docs),
            method=search_result.method.value,
            confidence=search_result.confidence,
        )

    def _ids(self, collection: str, docs: list[dict[str, Any]]) -> list[Any]:
        schema = self._registry.get_schema(collection)
        return collect_values(docs, schema.id_field if schema else "id")

    def _flatten(self, result: PlanExecutionResult) -> list[dict[str, Any]]:
        seen: set[tuple[str, Any]] = set()
        flattened: list[dict[str, Any]] = []
        for step_result in result.step_results.values():
            schema = self._registry.get_schema(step_result.collection)
            id_field = schema.id_field if schema else "id"
            for doc in step_result.documents:
                doc_id = doc.get(id_field)
                if doc_id is not None:
                    key = (step_result.collection, str(doc_id))
                    if key in seen:
                        continue
                    seen.add(key)
                flattened.append({**doc, "_collection": step_result.collection})
        return flattened


# ── Helpers ──────────────────────────────────────────────────────────


def resolve_reference(ref: str, results: dict[str, StepResult]) -> StepResult | None:
    """Find the executed step a ``FROM_STEP_<ref>`` placeholder points at.

    Tried in order: a step id, an output tag, an output tag that ``ref``
    ends with (``1_COMPANY_IDS`` → ``company_ids``), a step id that ``ref``
    starts with. Matching is case-insensitive.
    """
    ref = ref.lower()
    for step_id, step_result in results.items():
        if step_id.lower() == ref:
            return step_result

    tagged = [r for r in results.values() if r.produces_output_for]
    for step_result in tagged:
        if step_result.produces_output_for.lower() == ref:
            return step_result
    for step_result in tagged:
        if ref.endswith("_" + step_result.produces_output_for.lower()):
            return step_result

    for step_id, step_result in results.items():
        if ref.startswith(step_id.lower() + "_"):
            return step_result
    return None


def _is_placeholder(value: Any) -> bool:
    return isinstance(value, str) and bool(_PLACEHOLDER.match(value))


def _blocking_dependency(step: RetrievalStep, results: dict[str, StepResult]) -> str | None:
    for dep in step.dependencies:
        dep_result = results.get(dep)
        if dep_result is None:
            return f"dependency '{dep}' has not run"
        if dep_result.status in _BLOCKING or dep_result.broken:
            return f"dependency '{dep}' is {dep_result.status.value}"
    return None


def _source_documents(
    step: RetrievalStep, source_collection: str, results: dict[str, StepResult]
) -> list[dict[str, Any]]:
    """Documents feeding a hop: matching dependencies first, else the latest result for the collection."""
    matching = [
        results[dep] for dep in step.dependencies
        if dep in results and results[dep].collection == source_collection
    ]
    if matching:
        return [doc for step_result in matching for doc in step_result.documents]

    for step_result in reversed(list(results.values())):
        if step_result.collection == source_collection and step_result.status == StepStatus.COMPLETED:
            return step_result.documents
    return []

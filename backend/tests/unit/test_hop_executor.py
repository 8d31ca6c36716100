"""Unit tests for HopExecutor — tenant-verified joins and hop chains."""

import pytest

from hoprag.application.services.hop_executor import HopExecutor, collect_values
from hoprag.application.services.path_finder import PathFinder
from hoprag.application.services.schema_registry import SchemaRegistryLoader
from hoprag.config import get_settings
from hoprag.domain.entities.retrieval import HopChainResult
from hoprag.infrastructure.memory import InMemoryDocumentStore


class CountingStore(InMemoryDocumentStore):
    """Records every find() call."""

    def __init__(self):
        super().__init__()
        self.find_calls: list[tuple[str, dict]] = []

    async def find(self, collection, filter, *, limit=None, skip=0, sort=None):
        self.find_calls.append((collection, filter))
        return await super().find(collection, filter, limit=limit, skip=skip, sort=sort)


# ── Fixtures ─────────────────────────────────────────────────────────


async def _make_store() -> CountingStore:
    store = CountingStore()
    await store.upsert("companies", [
        {"id": "c1", "userId": "t1", "name": "Acme"},
        {"id": "c2", "userId": "t1", "name": "Beta"},
        {"id": "c3", "userId": "t2", "name": "Gamma"},
    ])
    await store.upsert("employees", [
        {"id": "e1", "userId": "t1", "companyId": "c1", "fullName": "Ada", "isDecisionMaker": True,
         "embedding": [0.1, 0.2]},
        {"id": "e2", "userId": "t1", "companyId": "c1", "fullName": "Bob", "isDecisionMaker": False},
        {"id": "e3", "userId": "t1", "companyId": "c2", "fullName": "Cy", "isDecisionMaker": True},
        {"id": "e4", "userId": "t2", "companyId": "c3", "fullName": "Dee", "isDecisionMaker": True},
        # Foreign tenant record pointing at a t1 company.
        {"id": "e5", "userId": "t2", "companyId": "c1", "fullName": "Eve", "isDecisionMaker": True},
    ])
    await store.upsert("gtm_persona_intelligence", [
        {"id": "p1", "userId": "t1", "employeeId": "e1", "companyId": "c1"},
        {"id": "p3", "userId": "t1", "employeeId": "e3", "companyId": "c2"},
    ])
    return store


def _make_registry():
    return SchemaRegistryLoader(get_settings().schema_registry_file).load()


def _make_executor(store) -> HopExecutor:
    return HopExecutor(_make_registry(), store)


def _make_chain() -> list:
    finder = PathFinder(_make_registry())
    return [
        finder.find_path("companies", "employees"),
        finder.find_path("employees", "gtm_persona_intelligence"),
    ]


def _ids(docs) -> list[str]:
    return sorted(d["id"] for d in docs)


# ── hop ──────────────────────────────────────────────────────────────


class TestHop:
    @pytest.mark.asyncio
    async def test_empty_source_ids_skip_the_store(self):
        store = await _make_store()
        docs = await _make_executor(store).hop("companies", [], "employees", "companyId", "t1")
        assert docs == []
        assert store.find_calls == []

    @pytest.mark.asyncio
    async def test_one_to_many_hop_stays_in_tenant(self):
        store = await _make_store()
        docs = await _make_executor(store).hop("companies", ["c1"], "employees", "companyId", "t1")

        assert _ids(docs) == ["e1", "e2"]
        assert all("embedding" not in d for d in docs)

    @pytest.mark.asyncio
    async def test_foreign_source_ids_are_dropped(self):
        store = await _make_store()
        docs = await _make_executor(store).hop(
            "companies", ["c2", "c3"], "employees", "companyId", "t1"
        )
        assert _ids(docs) == ["e3"]

    @pytest.mark.asyncio
    async def test_only_foreign_ids_yield_nothing(self):
        store = await _make_store()
        docs = await _make_executor(store).hop("companies", ["c3"], "employees", "companyId", "t1")
        assert docs == []
        # Target collection is never queried.
        assert [c for c, _ in store.find_calls] == ["companies"]

    @pytest.mark.asyncio
    async def test_many_to_one_hop_uses_source_field(self):
        store = await _make_store()
        docs = await _make_executor(store).hop(
            "employees", ["c1", "c2"], "companies", "id", "t1", source_field="companyId"
        )
        assert _ids(docs) == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_filter_narrows_targets(self):
        store = await _make_store()
        docs = await _make_executor(store).hop(
            "companies", ["c1", "c2"], "employees", "companyId", "t1",
            filter={"isDecisionMaker": True},
        )
        assert _ids(docs) == ["e1", "e3"]

    @pytest.mark.asyncio
    async def test_limit_is_applied(self):
        store = await _make_store()
        docs = await _make_executor(store).hop(
            "companies", ["c1", "c2"], "employees", "companyId", "t1", limit=1
        )
        assert len(docs) == 1

    @pytest.mark.asyncio
    async def test_unknown_collection_yields_nothing(self):
        store = await _make_store()
        docs = await _make_executor(store).hop("companies", ["c1"], "ghosts", "companyId", "t1")
        assert docs == []


# ── traverse ─────────────────────────────────────────────────────────


class TestTraverse:
    @pytest.mark.asyncio
    async def test_two_hop_chain(self):
        store = await _make_store()
        executor = _make_executor(store)
        chain = _make_chain()

        result = await executor.traverse(chain, [{"id": "c1"}, {"id": "c2"}], "t1")

        assert isinstance(result, HopChainResult)
        assert result.complete
        assert _ids(result.documents) == ["p1", "p3"]
        assert result.executed == chain

    @pytest.mark.asyncio
    async def test_broken_chain_reports_where(self):
        store = await _make_store()
        executor = _make_executor(store)
        chain = _make_chain()

        # c9 reaches e9, which has no persona.
        await store.upsert("companies", [{"id": "c9", "userId": "t1"}])
        await store.upsert("employees", [{"id": "e9", "userId": "t1", "companyId": "c9"}])
        result = await executor.traverse(chain, [{"id": "c9"}], "t1")

        assert not result.complete
        assert result.broken_at == chain[1]
        assert result.executed == chain[:1]
        assert result.documents == []


def test_collect_values_flattens_and_dedupes():
    docs = [{"tags": ["a", "b"]}, {"tags": "b"}, {"tags": None}, {"other": 1}, {"tags": ["c"]}]
    assert collect_values(docs, "tags") == ["a", "b", "c"]

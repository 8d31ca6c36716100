"""Unit tests for the SearchService — method selection, fallbacks and hybrid fusion."""

import pytest

from hoprag.application.services.embedding_service import EmbeddingService
from hoprag.application.services.schema_registry import SchemaRegistry, SchemaRegistryLoader
from hoprag.application.services.search_service import SearchService, fuse_results
from hoprag.config import get_settings
from hoprag.domain.entities.retrieval import AggregationOperation, AggregationSpec
from hoprag.domain.entities.search import SearchMethod, SearchQuery
from hoprag.domain.exceptions import EmbeddingError
from hoprag.infrastructure.memory import InMemoryDocumentStore


# ── Fakes ────────────────────────────────────────────────────────────


class FakeEmbeddingProvider:
    """Maps anything mentioning software onto the first axis, the rest onto the second."""

    dimensions = 3

    def __init__(self):
        self.queries: list[str] = []

    async def generate_embeddings(self, texts):
        return [self._vector(t) for t in texts]

    async def generate_query_embedding(self, query):
        self.queries.append(query)
        return self._vector(query)

    @staticmethod
    def _vector(text: str) -> list[float]:
        return [1.0, 0.0, 0.0] if "soft" in text.lower() else [0.0, 1.0, 0.0]


class FailingEmbeddingProvider(FakeEmbeddingProvider):
    async def generate_query_embedding(self, query):
        raise RuntimeError("provider down")


class FailingStore(InMemoryDocumentStore):
    async def find(self, collection, filter, *, limit=None, skip=0, sort=None):
        raise RuntimeError("connection reset")


# ── Fixtures ─────────────────────────────────────────────────────────


def _make_registry() -> SchemaRegistry:
    return SchemaRegistryLoader(get_settings().schema_registry_file).load()


async def _make_store(store: InMemoryDocumentStore | None = None) -> InMemoryDocumentStore:
    store = store or InMemoryDocumentStore()
    await store.upsert("companies", [
        {
            "id": "c1", "userId": "t1", "name": "Acme Software", "industry": ["Software"],
            "annualRevenue": 5_000_000, "embedding": [1.0, 0.0, 0.0],
        },
        {
            "id": "c2", "userId": "t1", "name": "Beta Foods", "industry": ["Food"],
            "annualRevenue": 1_000_000, "embedding": [0.0, 1.0, 0.0],
        },
        {
            "id": "c3", "userId": "t2", "name": "Gamma Software", "industry": ["Software"],
            "annualRevenue": 9_000_000, "embedding": [1.0, 0.0, 0.0],
        },
    ])
    return store


def _make_service(store, provider=None, **kwargs) -> SearchService:
    embedding_service = EmbeddingService(provider) if provider is not None else None
    return SearchService(_make_registry(), store, embedding_service, **kwargs)


def _ids(result) -> list[str]:
    return [d["id"] for d in result.documents]


# ── Fusion ───────────────────────────────────────────────────────────


class TestFuseResults:
    def test_weighted_fusion_orders_by_combined_score(self):
        fused = fuse_results(
            [{"id": 1, "score": 0.9}],
            [{"id": 1, "score": 0.4}, {"id": 2, "score": 0.8}],
            vector_weight=0.5,
            limit=10,
        )
        assert [d["id"] for d in fused] == [1, 2]
        assert fused[0]["fused_score"] == pytest.approx(0.65)
        assert fused[1]["fused_score"] == pytest.approx(0.4)

    def test_fusion_is_stable(self):
        vector = [{"id": "a", "score": 0.5}, {"id": "b", "score": 0.5}]
        text = [{"id": "c", "score": 0.5}]
        first = fuse_results(vector, text, vector_weight=0.5, limit=10)
        second = fuse_results(vector, text, vector_weight=0.5, limit=10)
        assert [d["id"] for d in first] == [d["id"] for d in second] == ["a", "b", "c"]

    def test_rank_is_used_when_scores_are_missing(self):
        fused = fuse_results(
            [{"id": "a"}, {"id": "b"}], [], vector_weight=1.0, limit=10
        )
        assert [d["fused_score"] for d in fused] == [1.0, 0.5]

    def test_limit_applies_after_fusion(self):
        fused = fuse_results(
            [{"id": "a", "score": 0.1}], [{"id": "b", "score": 0.9}], vector_weight=0.5, limit=1
        )
        assert [d["id"] for d in fused] == ["b"]


# ── Method selection and tenant scope ────────────────────────────────


class TestMetadataSearch:
    @pytest.mark.asyncio
    async def test_filter_search_is_tenant_scoped_and_strips_embeddings(self):
        service = _make_service(await _make_store())
        result = await service.search(
            SearchQuery(collection="companies", tenant_id="t1", filter={"industry": "Software"})
        )

        assert result.method == SearchMethod.METADATA
        assert _ids(result) == ["c1"]
        assert result.total_count == 1
        assert result.confidence == 1.0
        assert "embedding" not in result.documents[0]

    @pytest.mark.asyncio
    async def test_owner_filter_cannot_widen_scope(self):
        service = _make_service(await _make_store())
        result = await service.search(
            SearchQuery(collection="companies", tenant_id="t1", filter={"userId": "t2"})
        )
        assert set(_ids(result)) == {"c1", "c2"}

    @pytest.mark.asyncio
    async def test_generic_revenue_value_is_dropped(self):
        service = _make_service(await _make_store())
        result = await service.search(
            SearchQuery(collection="companies", tenant_id="t1", filter={"annualRevenue": "revenue"})
        )
        assert set(_ids(result)) == {"c1", "c2"}

    @pytest.mark.asyncio
    async def test_sort_forces_metadata_search(self):
        service = _make_service(await _make_store(), FakeEmbeddingProvider())
        result = await service.search(
            SearchQuery(
                collection="companies", tenant_id="t1",
                vector_query="software", sort={"revenue": "desc"},
            )
        )
        assert result.method == SearchMethod.METADATA
        assert _ids(result) == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_unknown_collection_returns_empty(self):
        service = _make_service(await _make_store())
        result = await service.search(SearchQuery(collection="ghosts", tenant_id="t1"))
        assert result.documents == []
        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_store_failure_degrades_to_empty(self):
        service = _make_service(await _make_store(FailingStore()))
        result = await service.search(
            SearchQuery(collection="companies", tenant_id="t1", filter={"industry": "Software"})
        )
        assert result.documents == []
        assert result.confidence == 0.0


# ── Vector and text ──────────────────────────────────────────────────


class TestVectorAndText:
    @pytest.mark.asyncio
    async def test_cosine_scan_without_vector_index(self):
        provider = FakeEmbeddingProvider()
        service = _make_service(await _make_store(), provider)
        result = await service.search(
            SearchQuery(collection="companies", tenant_id="t1", vector_query="software vendors")
        )

        assert result.method == SearchMethod.VECTOR
        assert _ids(result) == ["c1", "c2"]
        assert result.documents[0]["score"] == pytest.approx(1.0)
        assert result.confidence == pytest.approx(1.0)
        assert provider.queries == ["software vendors"]

    @pytest.mark.asyncio
    async def test_vector_index_is_used_when_available(self):
        store = await _make_store(InMemoryDocumentStore(vector_index=True))
        service = _make_service(store, FakeEmbeddingProvider())
        result = await service.search(
            SearchQuery(collection="companies", tenant_id="t1", vector_query="food", limit=1)
        )
        assert result.method == SearchMethod.VECTOR
        assert _ids(result) == ["c2"]

    @pytest.mark.asyncio
    async def test_vector_query_without_embeddings_falls_back_to_text(self):
        service = _make_service(await _make_store())
        result = await service.search(
            SearchQuery(collection="companies", tenant_id="t1", vector_query="software")
        )
        assert result.method == SearchMethod.TEXT
        assert _ids(result) == ["c1"]
        assert result.confidence == 0.5

    @pytest.mark.asyncio
    async def test_embedding_failure_propagates_in_vector_mode(self):
        service = _make_service(await _make_store(), FailingEmbeddingProvider())
        with pytest.raises(EmbeddingError):
            await service.search(
                SearchQuery(collection="companies", tenant_id="t1", vector_query="software")
            )

    @pytest.mark.asyncio
    async def test_text_index_search(self):
        store = await _make_store(InMemoryDocumentStore(text_index=True))
        service = _make_service(store)
        result = await service.search(
            SearchQuery(collection="companies", tenant_id="t1", text_query="foods")
        )
        assert result.method == SearchMethod.TEXT
        assert _ids(result) == ["c2"]
        assert result.confidence == 0.7

    @pytest.mark.asyncio
    async def test_text_search_disabled_uses_substring_match(self):
        store = await _make_store(InMemoryDocumentStore(text_index=True))
        service = _make_service(store, text_search_enabled=False)
        result = await service.search(
            SearchQuery(collection="companies", tenant_id="t1", text_query="acme")
        )
        assert _ids(result) == ["c1"]
        assert result.confidence == 0.5

    @pytest.mark.asyncio
    async def test_blank_text_query_is_ignored(self):
        service = _make_service(await _make_store())
        result = await service.search(
            SearchQuery(collection="companies", tenant_id="t1", text_query="   ")
        )
        assert result.method == SearchMethod.METADATA
        assert sorted(_ids(result)) == ["c1", "c2"]
        assert result.confidence == 1.0

    @pytest.mark.asyncio
    async def test_blank_vector_query_leaves_text_mode(self):
        provider = FakeEmbeddingProvider()
        service = _make_service(await _make_store(), provider)
        result = await service.search(
            SearchQuery(collection="companies", tenant_id="t1", vector_query=" ", text_query="acme")
        )
        assert result.method == SearchMethod.TEXT
        assert _ids(result) == ["c1"]
        assert provider.queries == []


# ── Hybrid ───────────────────────────────────────────────────────────


class TestHybrid:
    @pytest.mark.asyncio
    async def test_hybrid_fuses_both_sides(self):
        store = await _make_store(InMemoryDocumentStore(text_index=True))
        service = _make_service(store, FakeEmbeddingProvider(), vector_weight=0.7)
        result = await service.search(
            SearchQuery(
                collection="companies", tenant_id="t1",
                vector_query="software", text_query="software",
            )
        )

        assert result.method == SearchMethod.HYBRID
        assert _ids(result) == ["c1", "c2"]
        assert result.documents[0]["fused_score"] == pytest.approx(1.0)
        assert result.documents[1]["fused_score"] == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_failed_vector_side_keeps_text_results(self):
        store = await _make_store(InMemoryDocumentStore(text_index=True))
        service = _make_service(store, FailingEmbeddingProvider(), vector_weight=0.5)
        result = await service.search(
            SearchQuery(
                collection="companies", tenant_id="t1",
                vector_query="software", text_query="software",
            )
        )
        assert result.method == SearchMethod.HYBRID
        assert _ids(result) == ["c1"]
        assert result.documents[0]["fused_score"] == pytest.approx(0.5)


# ── Aggregation and construction ─────────────────────────────────────


@pytest.mark.asyncio
async def test_aggregate_is_tenant_scoped():
    service = _make_service(await _make_store())
    result = await service.aggregate(
        "companies", "t1", AggregationSpec(AggregationOperation.SUM, "annualRevenue", "industry")
    )
    rows = {row["group"]: (row["value"], row["count"]) for row in result.documents}
    assert rows == {"Software": (5_000_000, 1), "Food": (1_000_000, 1)}


def test_invalid_vector_weight_is_rejected():
    with pytest.raises(ValueError):
        SearchService(SchemaRegistry(), InMemoryDocumentStore(), vector_weight=1.5)

"""Tests for the ChromaDB vector index."""

from unittest.mock import MagicMock

import pytest

from contribux.errors import DimensionMismatch, IndexUnavailable
from contribux.retrieval.filters import SearchFilters, filter_document
from contribux.retrieval.vectorstore import VectorIndex, VectorStoreConfig

from tests.helpers import make_opportunity, make_repository


def _unit(dimension: int, *hot: int) -> list[float]:
    vec = [0.0] * dimension
    for i in hot:
        vec[i] = 1.0
    norm = len(hot) ** 0.5
    return [v / norm for v in vec]


def _seed(index: VectorIndex):
    dim = index.dimension
    python = make_repository("r-py", language="Python")
    rust = make_repository("r-rs", language="Rust")
    index.upsert_many([
        ("o1", _unit(dim, 0), filter_document(make_opportunity("o1", "r-py"), python)),
        ("o2", _unit(dim, 0, 1), filter_document(make_opportunity("o2", "r-rs"), rust)),
        ("o3", _unit(dim, 5), filter_document(make_opportunity("o3", "r-py"), python)),
    ])


@pytest.mark.asyncio
async def test_search_orders_by_similarity(vector_index):
    """Test nearest neighbours come first and similarities are in [0, 1]."""
    _seed(vector_index)

    hits = await vector_index.search(_unit(vector_index.dimension, 0), SearchFilters(), 0.0, limit=10)

    assert [doc_id for doc_id, _ in hits][:2] == ["o1", "o2"]
    assert hits[0][1] == pytest.approx(1.0, abs=1e-4)
    assert hits[1][1] == pytest.approx(0.7071, abs=1e-3)
    assert all(0.0 <= score <= 1.0 for _, score in hits)


@pytest.mark.asyncio
async def test_threshold_excludes_distant_vectors(vector_index):
    """Test candidates below the similarity threshold are dropped."""
    _seed(vector_index)

    hits = await vector_index.search(_unit(vector_index.dimension, 0), SearchFilters(), 0.6)

    assert {doc_id for doc_id, _ in hits} == {"o1", "o2"}


@pytest.mark.asyncio
async def test_where_prefilter(vector_index):
    """Test structural filters restrict the candidate universe."""
    _seed(vector_index)

    hits = await vector_index.search(_unit(vector_index.dimension, 0), SearchFilters(language="rust"), 0.0)

    assert [doc_id for doc_id, _ in hits] == ["o2"]


@pytest.mark.asyncio
async def test_query_dimension_mismatch(vector_index):
    """Test wrong-length query vectors are fatal."""
    with pytest.raises(DimensionMismatch) as exc_info:
        await vector_index.search([1.0, 0.0], SearchFilters(), 0.0)

    assert exc_info.value.expected == vector_index.dimension
    assert exc_info.value.actual == 2
    assert not exc_info.value.retryable


def test_upsert_dimension_mismatch(vector_index):
    """Test wrong-length embeddings are never written."""
    doc = filter_document(make_opportunity(), make_repository())
    with pytest.raises(DimensionMismatch):
        vector_index.upsert("o1", [1.0], doc)
    assert vector_index.count() == 0


@pytest.mark.asyncio
async def test_empty_index_returns_nothing(vector_index):
    """Test searching an empty collection."""
    assert await vector_index.search(_unit(vector_index.dimension, 0), SearchFilters(), 0.0) == []


@pytest.mark.asyncio
async def test_backend_failure_is_index_unavailable():
    """Test client errors surface as retryable index failures."""
    client = MagicMock()
    client.get_or_create_collection.return_value.count.side_effect = RuntimeError("hnsw corrupted")
    index = VectorIndex(VectorStoreConfig(dimension=3), client=client)

    with pytest.raises(IndexUnavailable):
        await index.search([1.0, 0.0, 0.0], SearchFilters(), 0.0)


def test_delete_and_clear(vector_index):
    """Test vectors can be removed."""
    _seed(vector_index)

    vector_index.delete(["o1"])
    assert vector_index.count() == 2

    vector_index.clear()
    assert vector_index.count() == 0

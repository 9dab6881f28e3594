"""Shared fixtures."""

import uuid

import chromadb
import pytest
import pytest_asyncio

from contribux.ranking.ranker import OpportunityRanker
from contribux.retrieval.bm25 import BM25Config, LexicalIndex
from contribux.retrieval.cache import CacheConfig, InMemorySharedTier, ResultCache
from contribux.retrieval.embeddings import EmbeddingConfig, EmbeddingGateway
from contribux.retrieval.filters import RepositoryFilters
from contribux.retrieval.hybrid import HybridConfig, HybridQueryPlanner
from contribux.retrieval.indexer import CorpusIndexer
from contribux.retrieval.vectorstore import VectorIndex, VectorStoreConfig
from contribux.search.service import OpportunitySearchService
from contribux.storage.database import OpportunityDatabase
from contribux.storage.profiles import StaticProfileDirectory

from tests.helpers import HashingEmbeddingProvider, make_profile, sample_corpus

DIMENSION = 64


@pytest.fixture
def cache() -> ResultCache:
    return ResultCache(CacheConfig(), shared=InMemorySharedTier())


@pytest.fixture
def provider() -> HashingEmbeddingProvider:
    return HashingEmbeddingProvider(dimension=DIMENSION)


@pytest.fixture
def gateway(provider, cache) -> EmbeddingGateway:
    return EmbeddingGateway(provider, EmbeddingConfig(dimension=DIMENSION, batch_size=4), cache)


@pytest.fixture
def vector_index() -> VectorIndex:
    config = VectorStoreConfig(
        persist_directory=None,
        collection_name=f"test_{uuid.uuid4().hex}",
        dimension=DIMENSION,
    )
    return VectorIndex(config, client=chromadb.EphemeralClient())


@pytest.fixture
def lexical_index() -> LexicalIndex:
    return LexicalIndex()


@pytest.fixture
def repository_vector_index() -> VectorIndex:
    config = VectorStoreConfig(
        persist_directory=None,
        collection_name=f"test_repositories_{uuid.uuid4().hex}",
        dimension=DIMENSION,
    )
    return VectorIndex(config, client=chromadb.EphemeralClient())


@pytest.fixture
def repository_lexical_index() -> LexicalIndex:
    return LexicalIndex(BM25Config(neutral_sort_key="stars"))


@pytest_asyncio.fixture
async def db(tmp_path):
    database = OpportunityDatabase(str(tmp_path / "contribux.db"), embedding_dimension=DIMENSION)
    await database.connect()
    yield database
    await database.close()


@pytest_asyncio.fixture
async def search_service(
    db, lexical_index, vector_index, repository_lexical_index, repository_vector_index, gateway, cache,
):
    """Search service over the sample corpus, fully indexed."""
    repositories, opportunities = sample_corpus()
    for repository in repositories:
        await db.upsert_repository(repository)
    for opportunity in opportunities:
        await db.upsert_opportunity(opportunity)

    indexer = CorpusIndexer(
        db, lexical_index, vector_index, gateway, cache,
        repository_lexical=repository_lexical_index,
        repository_vector=repository_vector_index,
    )
    await indexer.sync()

    # Bag-of-words vectors of short queries sit well below production thresholds
    config = HybridConfig(similarity_threshold=0.1)
    planner = HybridQueryPlanner(lexical_index, vector_index, gateway, cache, config)
    repository_planner = HybridQueryPlanner(
        repository_lexical_index, repository_vector_index, gateway, cache, config,
        kind="repositories", filters_type=RepositoryFilters,
    )
    profiles = StaticProfileDirectory([make_profile("alice")])
    return OpportunitySearchService(
        planner, db, OpportunityRanker(), profiles, repository_planner=repository_planner,
    )

"""Tests for loading the store into the search indices."""

import threading

import pytest

from contribux.models.opportunities import OpportunityState
from contribux.retrieval.filters import RepositoryFilters, SearchFilters
from contribux.retrieval.indexer import CorpusIndexer

from tests.helpers import make_opportunity, make_repository, sample_corpus


async def _seed(db):
    repositories, opportunities = sample_corpus()
    for repository in repositories:
        await db.upsert_repository(repository)
    for opportunity in opportunities:
        await db.upsert_opportunity(opportunity)


@pytest.mark.asyncio
async def test_sync_embeds_and_indexes_open_opportunities(db, lexical_index, vector_index, gateway, provider):
    """Test sync embeds missing vectors once and skips closed opportunities."""
    await _seed(db)
    indexer = CorpusIndexer(db, lexical_index, vector_index, gateway)

    report = await indexer.sync()

    assert report.indexed == 4
    assert report.embedded == 4
    assert report.removed == 1
    assert lexical_index.count() == 4
    assert vector_index.count() == 4
    stored = await db.get_opportunities(["o-ts-parser"])
    assert stored["o-ts-parser"].embedding is not None

    calls = len(provider.calls)
    again = await indexer.sync()
    assert again.embedded == 0
    assert len(provider.calls) == calls


@pytest.mark.asyncio
async def test_sync_invalidates_cached_searches(db, lexical_index, vector_index, gateway, cache):
    """Test re-indexing drops fused results."""
    await _seed(db)
    await cache.set("search:stale", [])
    indexer = CorpusIndexer(db, lexical_index, vector_index, gateway, cache)

    report = await indexer.sync()

    assert report.invalidated == 1
    assert await cache.get("search:stale") is None


@pytest.mark.asyncio
async def test_mark_state_updates_both_indices(db, lexical_index, vector_index, gateway):
    """Test closing an opportunity removes it and reopening restores it."""
    await _seed(db)
    indexer = CorpusIndexer(db, lexical_index, vector_index, gateway)
    await indexer.sync()

    assert await indexer.mark_state("o-rs-leak", OpportunityState.CLOSED)
    assert await lexical_index.search("memory leak", SearchFilters()) == []
    assert vector_index.count() == 3

    assert await indexer.mark_state("o-rs-leak", OpportunityState.OPEN)
    hits = await lexical_index.search("memory leak", SearchFilters())
    assert [doc_id for doc_id, _ in hits] == ["o-rs-leak"]
    assert vector_index.count() == 4

    assert not await indexer.mark_state("missing", OpportunityState.CLOSED)


@pytest.mark.asyncio
async def test_index_opportunity(db, lexical_index, vector_index, gateway):
    """Test a single new opportunity becomes searchable immediately."""
    indexer = CorpusIndexer(db, lexical_index, vector_index, gateway)
    repository = make_repository("r9", language="Go")

    await indexer.index_opportunity(make_opportunity("o9", "r9", title="Flaky scheduler test"), repository)

    hits = await lexical_index.search("scheduler", SearchFilters(language="go"))
    assert [doc_id for doc_id, _ in hits] == ["o9"]
    assert vector_index.count() == 1
    assert (await db.get_opportunities(["o9"]))["o9"].embedding is not None


@pytest.mark.asyncio
async def test_sync_indexes_repositories(
    db, lexical_index, vector_index, repository_lexical_index, repository_vector_index, gateway, provider,
):
    """Test repositories get their own embeddings and indices."""
    await _seed(db)
    indexer = CorpusIndexer(
        db, lexical_index, vector_index, gateway,
        repository_lexical=repository_lexical_index,
        repository_vector=repository_vector_index,
    )

    report = await indexer.sync()

    assert report.repositories_indexed == 4
    assert report.repositories_embedded == 4
    assert repository_lexical_index.count() == 4
    assert repository_vector_index.count() == 4
    assert (await db.get_repositories(["r-rs"]))["r-rs"].embedding is not None
    hits = await repository_lexical_index.search("engine", RepositoryFilters(language="rust"))
    assert [doc_id for doc_id, _ in hits] == ["r-rs"]

    calls = len(provider.calls)
    again = await indexer.sync()
    assert again.repositories_embedded == 0
    assert len(provider.calls) == calls


@pytest.mark.asyncio
async def test_sync_without_repository_indices_skips_repositories(db, lexical_index, vector_index, gateway):
    """Test repository indexing is opt-in."""
    await _seed(db)

    report = await CorpusIndexer(db, lexical_index, vector_index, gateway).sync()

    assert report.repositories_indexed == 0
    assert (await db.get_repositories(["r-rs"]))["r-rs"].embedding is None


@pytest.mark.asyncio
async def test_index_writes_run_off_the_event_loop(db, lexical_index, vector_index, gateway, monkeypatch):
    """Test lexical and vector writes (including persistence) run in worker threads."""
    await _seed(db)
    loop_thread = threading.get_ident()
    threads = {}

    def recording(name, method):
        def wrapper(*args, **kwargs):
            threads[name] = threading.get_ident()
            return method(*args, **kwargs)
        return wrapper

    monkeypatch.setattr(lexical_index, "add_many", recording("lexical_add", lexical_index.add_many))
    monkeypatch.setattr(lexical_index, "delete", recording("lexical_delete", lexical_index.delete))
    monkeypatch.setattr(vector_index, "upsert_many", recording("vector_upsert", vector_index.upsert_many))

    await CorpusIndexer(db, lexical_index, vector_index, gateway).sync()

    assert set(threads) == {"lexical_add", "lexical_delete", "vector_upsert"}
    assert loop_thread not in threads.values()

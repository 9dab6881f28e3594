"""Loads the durable store into the lexical and vector indices."""

import asyncio
from dataclasses import dataclass
from typing import Optional

from ..logging_config import get_logger
from ..models.opportunities import Opportunity, OpportunityState, Repository
from ..storage.database import OpportunityDatabase
from .bm25 import LexicalIndex
from .cache import ResultCache
from .embeddings import EmbeddingGateway
from .filters import filter_document, repository_filter_document
from .vectorstore import VectorIndex

logger = get_logger(__name__)


@dataclass
class IndexReport:
    """Outcome of an index synchronization."""

    indexed: int = 0
    embedded: int = 0
    removed: int = 0
    invalidated: int = 0
    repositories_indexed: int = 0
    repositories_embedded: int = 0


class CorpusIndexer:
    """Keeps both indices consistent with the store.

    Records without a stored embedding are embedded through the gateway and
    written back, so later syncs reuse the vector. Repositories are indexed
    only when repository indices are given.
    """

    def __init__(
        self,
        db: OpportunityDatabase,
        lexical: LexicalIndex,
        vector: VectorIndex,
        embeddings: EmbeddingGateway,
        cache: Optional[ResultCache] = None,
        repository_lexical: Optional[LexicalIndex] = None,
        repository_vector: Optional[VectorIndex] = None,
    ):
        self._db = db
        self._lexical = lexical
        self._vector = vector
        self._embeddings = embeddings
        self._cache = cache
        self._repository_lexical = repository_lexical
        self._repository_vector = repository_vector

    async def sync(self) -> IndexReport:
        """Index every open opportunity and drop the rest from both indices."""
        report = IndexReport()
        everything = await self._db.list_opportunities(state=None)
        open_opps = [o for o in everything if o.state == OpportunityState.OPEN]
        closed_ids = [o.id for o in everything if o.state != OpportunityState.OPEN]

        repositories = await self._db.get_repositories(sorted({o.repository_id for o in open_opps}))

        missing = [o for o in open_opps if o.embedding is None]
        if missing:
            vectors = await self._embeddings.embed_batch(
                [o.search_text(repositories.get(o.repository_id)) for o in missing]
            )
            for opportunity, vector in zip(missing, vectors):
                opportunity.embedding = vector
                await self._db.upsert_opportunity(opportunity)
            report.embedded = len(missing)

        await self._write(open_opps, repositories)
        report.indexed = len(open_opps)

        if closed_ids:
            await self._remove(closed_ids)
            report.removed = len(closed_ids)

        if self._indexes_repositories:
            report.repositories_indexed, report.repositories_embedded = await self._sync_repositories()

        report.invalidated = await self._invalidate()
        logger.info(
            "Index sync: %d indexed, %d embedded, %d removed, %d repositories",
            report.indexed, report.embedded, report.removed, report.repositories_indexed,
        )
        return report

    @property
    def _indexes_repositories(self) -> bool:
        return self._repository_lexical is not None and self._repository_vector is not None

    async def _sync_repositories(self) -> tuple[int, int]:
        repositories = await self._db.list_repositories()
        missing = [r for r in repositories if r.embedding is None]
        if missing:
            vectors = await self._embeddings.embed_batch([r.search_text() for r in missing])
            for repository, vector in zip(missing, vectors):
                repository.embedding = vector
                await self._db.upsert_repository(repository)
        await self._write_repositories(repositories)
        return len(repositories), len(missing)

    async def index_opportunity(self, opportunity: Opportunity, repository: Repository) -> None:
        """Persist one opportunity and make it searchable (or unsearchable) at once."""
        if opportunity.embedding is None:
            opportunity.embedding = await self._embeddings.embed(opportunity.search_text(repository))
        if self._indexes_repositories and repository.embedding is None:
            repository.embedding = await self._embeddings.embed(repository.search_text())
        await self._db.upsert_repository(repository)
        await self._db.upsert_opportunity(opportunity)

        if opportunity.state == OpportunityState.OPEN:
            await self._write([opportunity], {repository.id: repository})
        else:
            await self._remove([opportunity.id])
        if self._indexes_repositories:
            await self._write_repositories([repository])
        await self._invalidate()

    async def mark_state(self, opportunity_id: str, state: OpportunityState) -> bool:
        """Change an opportunity's lifecycle state and update the indices."""
        if not await self._db.mark_state(opportunity_id, state):
            return False
        if state == OpportunityState.OPEN:
            found = await self._db.get_opportunities([opportunity_id])
            opportunity = found[opportunity_id]
            repositories = await self._db.get_repositories([opportunity.repository_id])
            await self._write([opportunity], repositories)
        else:
            await self._remove([opportunity_id])
        await self._invalidate()
        return True

    async def _write(self, opportunities: list[Opportunity], repositories: dict[str, Repository]) -> None:
        lexical_entries = []
        vector_entries = []
        for opportunity in opportunities:
            repository = repositories.get(opportunity.repository_id)
            doc = filter_document(opportunity, repository)
            lexical_entries.append((opportunity.id, opportunity.title, opportunity.search_text(repository), doc))
            if opportunity.embedding is not None:
                vector_entries.append((opportunity.id, opportunity.embedding, doc))

        await asyncio.to_thread(self._lexical.add_many, lexical_entries)
        await asyncio.to_thread(self._vector.upsert_many, vector_entries)

    async def _write_repositories(self, repositories: list[Repository]) -> None:
        lexical_entries = []
        vector_entries = []
        for repository in repositories:
            doc = repository_filter_document(repository)
            lexical_entries.append((repository.id, repository.name, repository.search_text(), doc))
            if repository.embedding is not None:
                vector_entries.append((repository.id, repository.embedding, doc))

        await asyncio.to_thread(self._repository_lexical.add_many, lexical_entries)
        await asyncio.to_thread(self._repository_vector.upsert_many, vector_entries)

    async def _remove(self, ids: list[str]) -> None:
        await asyncio.to_thread(self._lexical.delete, ids)
        await asyncio.to_thread(self._vector.delete, ids)

    async def _invalidate(self) -> int:
        if self._cache is None:
            return 0
        return await self._cache.invalidate("search:*")

"""Vector index using ChromaDB.

ChromaDB provides:
- Persistent local storage
- HNSW index for fast approximate nearest neighbor search
- Metadata ``where`` clauses, applied during the HNSW traversal

Each record is stored with its filter document as metadata, so the
structural filters of a search restrict the candidate universe before
similarity is computed.
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import numpy as np

from ..errors import ContribuxError, DimensionMismatch, IndexUnavailable
from ..logging_config import get_logger
from .filters import FilterDocument, StructuralFilters

logger = get_logger(__name__)


@dataclass
class VectorStoreConfig:
    """Configuration for the vector index."""

    # Persistence path (None keeps the collection in memory)
    persist_directory: str | None = ".chroma"

    collection_name: str = "opportunities"

    # Must match the embedding gateway
    dimension: int = 1024

    # HNSW parameters for quality/speed tradeoff
    hnsw_space: str = "cosine"
    hnsw_construction_ef: int = 200  # Higher = better quality, slower build
    hnsw_search_ef: int = 100  # Higher = better quality, slower search
    hnsw_m: int = 32  # Connections per node, higher = better quality


class VectorIndex:
    """ChromaDB-backed nearest-neighbor index over opportunity or repository embeddings."""

    def __init__(self, config: Optional[VectorStoreConfig] = None, client: Any = None):
        """Initialize the vector index.

        Args:
            config: Index configuration
            client: Pre-built ChromaDB client (tests pass an ``EphemeralClient``)
        """
        self.config = config or VectorStoreConfig()
        self._client = client
        self._collection = None

    @property
    def dimension(self) -> int:
        return self.config.dimension

    def _get_client(self):
        """Lazy initialize ChromaDB client."""
        if self._client is not None:
            return self._client

        import chromadb
        from chromadb.config import Settings

        settings = Settings(anonymized_telemetry=False, allow_reset=True)
        if self.config.persist_directory is None:
            self._client = chromadb.EphemeralClient(settings=settings)
        else:
            persist_path = Path(self.config.persist_directory)
            persist_path.mkdir(parents=True, exist_ok=True)
            self._client = chromadb.PersistentClient(path=str(persist_path), settings=settings)

        return self._client

    def _get_collection(self):
        """Get or create the collection."""
        if self._collection is not None:
            return self._collection

        self._collection = self._get_client().get_or_create_collection(
            name=self.config.collection_name,
            metadata={
                "hnsw:space": self.config.hnsw_space,
                "hnsw:construction_ef": self.config.hnsw_construction_ef,
                "hnsw:search_ef": self.config.hnsw_search_ef,
                "hnsw:M": self.config.hnsw_m,
            },
        )
        return self._collection

    def _check_dimension(self, vector: list[float], where: str) -> None:
        if len(vector) != self.config.dimension:
            raise DimensionMismatch(self.config.dimension, len(vector), where=where)

    def upsert(self, doc_id: str, embedding: list[float], filters: FilterDocument) -> None:
        """Insert or replace one vector."""
        self.upsert_many([(doc_id, embedding, filters)])

    def upsert_many(self, entries: list[tuple[str, list[float], FilterDocument]]) -> list[str]:
        """Insert or replace ``(id, embedding, filters)`` entries.

        Raises:
            DimensionMismatch: an embedding has the wrong length (nothing is written)
        """
        if not entries:
            return []

        for doc_id, embedding, _ in entries:
            self._check_dimension(embedding, f"embedding of {doc_id}")

        ids = [doc_id for doc_id, _, _ in entries]
        self._get_collection().upsert(
            ids=ids,
            embeddings=[[float(x) for x in embedding] for _, embedding, _ in entries],
            metadatas=[dict(filters) for _, _, filters in entries],
        )
        return ids

    async def search(
        self,
        query_vector: list[float],
        filters: Optional[StructuralFilters] = None,
        similarity_threshold: float = 0.0,
        limit: int = 100,
    ) -> list[tuple[str, float]]:
        """Nearest neighbours of ``query_vector`` inside the filtered universe.

        Returns:
            ``(id, similarity)`` pairs, most similar first, all at or above
            ``similarity_threshold``

        Raises:
            DimensionMismatch: the query vector has the wrong length
            IndexUnavailable: the backend failed
        """
        self._check_dimension(query_vector, "query vector")
        try:
            return await asyncio.to_thread(
                self._search_sync, query_vector, filters, similarity_threshold, limit
            )
        except ContribuxError:
            raise
        except Exception as e:
            logger.error("Vector search failed: %s", e, exc_info=True)
            raise IndexUnavailable(f"Vector index failed: {e}", index="vector") from e

    def _search_sync(
        self,
        query_vector: list[float],
        filters: Optional[StructuralFilters],
        similarity_threshold: float,
        limit: int,
    ) -> list[tuple[str, float]]:
        collection = self._get_collection()
        if collection.count() == 0:
            return []

        results = collection.query(
            query_embeddings=[[float(x) for x in query_vector]],
            n_results=limit,
            where=filters.to_where() if filters is not None else None,
            include=["distances"],
        )

        hits = []
        if results["ids"] and results["ids"][0]:
            for doc_id, distance in zip(results["ids"][0], results["distances"][0]):
                # Cosine distance lies in [0, 2]
                similarity = float(np.clip(1.0 - distance, 0.0, 1.0))
                if similarity >= similarity_threshold:
                    hits.append((doc_id, similarity))

        hits.sort(key=lambda x: (-x[1], x[0]))
        return hits

    def delete(self, ids: list[str]) -> None:
        """Delete vectors by ID."""
        if not ids:
            return
        self._get_collection().delete(ids=ids)

    def count(self) -> int:
        """Get total number of vectors in the index."""
        return self._get_collection().count()

    def clear(self) -> None:
        """Delete all vectors from the collection."""
        self._get_client().delete_collection(self.config.collection_name)
        self._collection = None

    def stats(self) -> dict:
        """Get index statistics."""
        return {
            "collection_name": self.config.collection_name,
            "document_count": self.count(),
            "dimension": self.config.dimension,
            "persist_directory": self.config.persist_directory,
        }

"""Hybrid retrieval over the opportunity and repository corpora.

This module combines:
- Semantic search (sentence-transformers or OpenAI embeddings + ChromaDB)
- Lexical search (BM25 plus title trigram similarity)
- Weighted score fusion with a shared set of structural pre-filters
- A two-tier result cache (in-process LRU in front of Redis)

Usage:
    from contribux.retrieval import HybridQueryPlanner, SearchFilters

    planner = HybridQueryPlanner(lexical, vector, gateway, cache)
    outcome = await planner.search("typescript parser", SearchFilters(language="TypeScript"))
"""

from .bm25 import BM25Config, LexicalIndex
from .cache import (
    CacheConfig,
    InMemorySharedTier,
    LocalCacheTier,
    RedisCacheTier,
    ResultCache,
    SharedCacheTier,
)
from .embeddings import (
    EmbeddingConfig,
    EmbeddingGateway,
    EmbeddingProvider,
    OpenAIEmbeddingProvider,
    SentenceTransformerProvider,
    create_provider,
)
from .filters import (
    RepositoryFilters,
    SearchFilters,
    StructuralFilters,
    filter_document,
    repository_filter_document,
)
from .hybrid import FusedCandidate, HybridConfig, HybridQueryPlanner, SearchOutcome
from .indexer import CorpusIndexer, IndexReport
from .vectorstore import VectorIndex, VectorStoreConfig

__all__ = [
    # Indices
    "LexicalIndex",
    "BM25Config",
    "VectorIndex",
    "VectorStoreConfig",
    "SearchFilters",
    "RepositoryFilters",
    "StructuralFilters",
    "filter_document",
    "repository_filter_document",
    # Embeddings
    "EmbeddingGateway",
    "EmbeddingConfig",
    "EmbeddingProvider",
    "SentenceTransformerProvider",
    "OpenAIEmbeddingProvider",
    "create_provider",
    # Cache
    "ResultCache",
    "CacheConfig",
    "LocalCacheTier",
    "SharedCacheTier",
    "InMemorySharedTier",
    "RedisCacheTier",
    # Planning
    "HybridQueryPlanner",
    "HybridConfig",
    "FusedCandidate",
    "SearchOutcome",
    "CorpusIndexer",
    "IndexReport",
]

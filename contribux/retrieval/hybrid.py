"""Hybrid query planning: lexical and vector search fused into one candidate list.

Pipeline:
1. Fingerprint the (normalized query, filters) pair and check the result cache
2. Embed the query (non-empty queries only)
3. Run lexical and vector search concurrently against the same filters
4. Fuse: ``lexical_weight * lexical + vector_weight * vector``
5. Cache the fused list (never personalized ranks)

If one source fails the other is returned alone and the outcome is marked
degraded. Degraded outcomes are not cached, so the next identical query
retries both sources.

The same planner serves opportunity and repository search; each instance is
bound to one pair of indices and tags its fingerprints with its record kind.
"""

import asyncio
import hashlib
import json
import time
from collections.abc import Awaitable
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from ..errors import DimensionMismatch, SearchUnavailable
from ..logging_config import get_logger, log_degraded
from .bm25 import LexicalIndex
from .cache import ResultCache
from .embeddings import EmbeddingGateway
from .filters import SearchFilters, StructuralFilters
from .vectorstore import VectorIndex

logger = get_logger(__name__)


@dataclass
class HybridConfig:
    """Configuration for hybrid query planning."""

    # Fusion weights
    lexical_weight: float = 0.3
    vector_weight: float = 0.7

    # Minimum cosine similarity for vector candidates
    similarity_threshold: float = 0.6

    # Candidates requested from each index
    candidate_limit: int = 200

    # Per-source timeouts in seconds (vector includes query embedding)
    lexical_timeout: float = 5.0
    vector_timeout: float = 10.0

    # Fused results are short-lived
    cache_ttl: float = 300.0

    def __post_init__(self):
        if self.lexical_weight < 0 or self.vector_weight < 0:
            raise ValueError("Fusion weights must be non-negative")
        if self.lexical_weight + self.vector_weight == 0:
            raise ValueError("At least one fusion weight must be positive")


@dataclass
class FusedCandidate:
    """A candidate with its fused score and per-source breakdown."""

    candidate_id: str
    fused_score: float
    lexical_score: Optional[float] = None
    vector_score: Optional[float] = None

    @property
    def sources(self) -> list[str]:
        sources = []
        if self.lexical_score is not None:
            sources.append("lexical")
        if self.vector_score is not None:
            sources.append("vector")
        return sources

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FusedCandidate":
        return cls(
            candidate_id=data["candidate_id"],
            fused_score=data["fused_score"],
            lexical_score=data.get("lexical_score"),
            vector_score=data.get("vector_score"),
        )


@dataclass
class SearchOutcome:
    """Fused candidates plus how they were obtained."""

    candidates: list[FusedCandidate]
    fingerprint: str
    degraded: bool = False
    cache_hit: bool = False
    timings: dict[str, float] = field(default_factory=dict)  # milliseconds per stage
    failures: dict[str, str] = field(default_factory=dict)  # source -> error code


class HybridQueryPlanner:
    """Plans and executes hybrid searches.

    Usage:
        planner = HybridQueryPlanner(lexical, vector, gateway, cache)
        outcome = await planner.search("typescript parser", SearchFilters(difficulty="beginner"))
        for candidate in outcome.candidates:
            print(candidate.candidate_id, candidate.fused_score, candidate.sources)
    """

    def __init__(
        self,
        lexical: LexicalIndex,
        vector: VectorIndex,
        embeddings: EmbeddingGateway,
        cache: ResultCache,
        config: Optional[HybridConfig] = None,
        kind: str = "opportunities",
        filters_type: type[StructuralFilters] = SearchFilters,
    ):
        self.config = config or HybridConfig()
        # Separates fingerprints of planners sharing one cache
        self.kind = kind
        self._filters_type = filters_type
        self._lexical = lexical
        self._vector = vector
        self._embeddings = embeddings
        self._cache = cache

    @staticmethod
    def fingerprint(normalized_query: str, filters: StructuralFilters, kind: str = "opportunities") -> str:
        """Cache key for a (normalized query, filters) pair of one record kind."""
        payload = json.dumps([kind, normalized_query, filters.fingerprint_pairs()], sort_keys=True, default=str)
        return "search:" + hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def fuse(
        self,
        lexical_hits: list[tuple[str, float]],
        vector_hits: list[tuple[str, float]],
    ) -> list[FusedCandidate]:
        """Combine per-source scores into one ordered candidate list.

        A candidate found by one source only is scored as if the other source
        gave it zero, which keeps the fused score monotonic in both inputs.
        """
        lexical = dict(lexical_hits)
        vector = dict(vector_hits)

        fused = []
        for candidate_id in lexical.keys() | vector.keys():
            lex = lexical.get(candidate_id)
            vec = vector.get(candidate_id)
            score = self.config.lexical_weight * (lex or 0.0) + self.config.vector_weight * (vec or 0.0)
            fused.append(FusedCandidate(candidate_id, score, lex, vec))

        fused.sort(key=lambda c: (-c.fused_score, -(c.vector_score or 0.0), c.candidate_id))
        return fused

    async def search(self, query_text: str, filters: Optional[StructuralFilters] = None) -> SearchOutcome:
        """Run a hybrid search.

        Raises:
            SearchUnavailable: every attempted source failed
            DimensionMismatch: the query embedding does not fit the vector index
        """
        filters = filters if filters is not None else self._filters_type()
        timings: dict[str, float] = {}

        normalized = self._embeddings.normalize(query_text)
        fingerprint = self.fingerprint(normalized, filters, self.kind)

        started = time.perf_counter()
        cached = await self._cache.get(fingerprint)
        timings["cache"] = _elapsed_ms(started)
        if cached is not None:
            return SearchOutcome(
                candidates=[FusedCandidate.from_dict(c) for c in cached],
                fingerprint=fingerprint,
                cache_hit=True,
                timings=timings,
            )

        # Queries made only of punctuation carry no terms: treat them as empty
        lexical_query = query_text if normalized else ""
        sources = {"lexical": self._timed(
            self._lexical.search(lexical_query, filters, self.config.candidate_limit),
            self.config.lexical_timeout,
            timings,
            "lexical",
        )}
        if normalized:
            sources["vector"] = self._timed(
                self._vector_search(normalized, filters),
                self.config.vector_timeout,
                timings,
                "vector",
            )

        results = dict(zip(sources, await asyncio.gather(*sources.values(), return_exceptions=True)))

        hits: dict[str, list[tuple[str, float]]] = {}
        failures: dict[str, BaseException] = {}
        for source, result in results.items():
            if isinstance(result, (DimensionMismatch, asyncio.CancelledError)):
                raise result
            if isinstance(result, BaseException):
                failures[source] = result
            else:
                hits[source] = result

        if not hits:
            logger.error(
                "Search failed on every source: %s",
                {s: repr(e) for s, e in failures.items()},
            )
            raise SearchUnavailable(
                "No search source is available",
                failures={s: _error_code(e) for s, e in failures.items()},
            ) from next(iter(failures.values()))

        for source, error in failures.items():
            log_degraded(
                source, _error_code(error),
                "Partial search failure, %s source unavailable: %r", source, error,
                kind=self.kind,
            )

        started = time.perf_counter()
        candidates = self.fuse(hits.get("lexical", []), hits.get("vector", []))
        timings["fusion"] = _elapsed_ms(started)

        degraded = bool(failures)
        if not degraded:
            await self._cache.set(fingerprint, [c.to_dict() for c in candidates], self.config.cache_ttl)

        return SearchOutcome(
            candidates=candidates,
            fingerprint=fingerprint,
            degraded=degraded,
            timings=timings,
            failures={s: _error_code(e) for s, e in failures.items()},
        )

    async def _vector_search(self, normalized_query: str, filters: StructuralFilters) -> list[tuple[str, float]]:
        query_vector = await self._embeddings.embed(normalized_query)
        return await self._vector.search(
            query_vector,
            filters,
            similarity_threshold=self.config.similarity_threshold,
            limit=self.config.candidate_limit,
        )

    async def _timed(self, coro: Awaitable, timeout: float, timings: dict[str, float], name: str):
        started = time.perf_counter()
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        finally:
            timings[name] = _elapsed_ms(started)

    async def invalidate(self, pattern: str = "search:*") -> int:
        """Drop cached fused results, e.g. after re-indexing."""
        return await self._cache.invalidate(pattern)

    def stats(self) -> dict:
        """Get planner statistics."""
        return {
            "lexical": self._lexical.stats(),
            "vector": self._vector.stats(),
            "embedding": self._embeddings.cache_stats(),
            "cache": self._cache.stats(),
            "kind": self.kind,
            "config": {
                "lexical_weight": self.config.lexical_weight,
                "vector_weight": self.config.vector_weight,
                "similarity_threshold": self.config.similarity_threshold,
                "candidate_limit": self.config.candidate_limit,
            },
        }


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


def _error_code(error: BaseException) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "Timeout"
    return getattr(error, "error_code", type(error).__name__)

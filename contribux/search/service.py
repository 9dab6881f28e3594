"""Opportunity and repository search: validate, plan, hydrate, rank, paginate."""

import math
import time
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from ..config import Settings
from ..errors import ContribuxError, InternalError, InvalidParameter, SearchUnavailable, Unauthorized
from ..logging_config import get_logger, log_degraded
from ..models.opportunities import OpportunityState, RankingContext, Repository, ScoredOpportunity
from ..ranking.ranker import OpportunityRanker, RankCandidate
from ..retrieval.bm25 import LexicalIndex
from ..retrieval.cache import ResultCache
from ..retrieval.embeddings import EmbeddingGateway, create_provider
from ..retrieval.filters import RepositoryFilters, SearchFilters
from ..retrieval.hybrid import HybridQueryPlanner
from ..retrieval.indexer import CorpusIndexer
from ..retrieval.vectorstore import VectorIndex
from ..storage.database import OpportunityDatabase
from ..storage.profiles import DatabaseProfileDirectory, ProfileDirectory

logger = get_logger(__name__)

MAX_QUERY_LENGTH = 1000
MAX_PER_PAGE = 100


class SearchRequest(BaseModel):
    """A personalized opportunity search."""

    query: str = Field(default="", max_length=MAX_QUERY_LENGTH)
    filters: SearchFilters = Field(default_factory=SearchFilters)
    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=20, ge=1, le=MAX_PER_PAGE)
    recently_shown: list[str] = Field(default_factory=list, max_length=500)
    recently_shown_repositories: list[str] = Field(default_factory=list, max_length=500)


class SearchMetadata(BaseModel):
    degraded: bool = False
    cache_hit: bool = False
    timings_ms: dict[str, float] = Field(default_factory=dict)
    unavailable_sources: list[str] = Field(default_factory=list)


class SearchResponse(BaseModel):
    results: list[ScoredOpportunity]
    total: int
    page: int
    per_page: int
    has_more: bool
    metadata: SearchMetadata


class RepositorySearchRequest(BaseModel):
    """A repository search. Results are ordered by quality-boosted relevance, not personalized."""

    query: str = Field(default="", max_length=MAX_QUERY_LENGTH)
    filters: RepositoryFilters = Field(default_factory=RepositoryFilters)
    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=20, ge=1, le=MAX_PER_PAGE)


class RepositorySearchResult(BaseModel):
    repository: Repository
    relevance: float
    fused_score: float
    lexical_score: float | None = None
    vector_score: float | None = None


class RepositorySearchResponse(BaseModel):
    results: list[RepositorySearchResult]
    total: int
    page: int
    per_page: int
    has_more: bool
    metadata: SearchMetadata


def repository_relevance(fused_score: float, repository: Repository) -> float:
    """Boost a fused score by repository health and (log-scaled) popularity."""
    boost = 1.0 + repository.health_score / 2 + math.log10(max(repository.stars, 1)) / 50
    return fused_score * boost


def _validate(model: type[BaseModel], payload: Any) -> Any:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise InvalidParameter(
            "Invalid search request",
            errors=[
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ],
        ) from e


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


class OpportunitySearchService:
    """Turns a query plus a caller identity into a ranked page of opportunities.

    The planner's fused results are shared between users through the cache;
    personalization happens afterwards, per request, and is never cached.
    """

    def __init__(
        self,
        planner: HybridQueryPlanner,
        db: OpportunityDatabase,
        ranker: OpportunityRanker,
        profiles: ProfileDirectory,
        repository_planner: Optional[HybridQueryPlanner] = None,
    ):
        self.planner = planner
        self.db = db
        self.ranker = ranker
        self.profiles = profiles
        self.repository_planner = repository_planner

    @staticmethod
    def parse_request(payload: SearchRequest | dict[str, Any]) -> SearchRequest:
        """Validate a raw request body.

        Raises:
            InvalidParameter: the body does not describe a valid search
        """
        return _validate(SearchRequest, payload)

    async def _authorize(self, user_id: Optional[str]):
        if not user_id:
            raise Unauthorized("Authentication required")
        profile = await self.profiles.get(user_id)
        if profile is None:
            raise Unauthorized("Unknown user", user_id=user_id)
        return profile

    async def search(
        self,
        user_id: Optional[str],
        payload: SearchRequest | dict[str, Any],
        context: Optional[RankingContext] = None,
    ) -> SearchResponse:
        """Run a personalized search.

        Raises:
            Unauthorized: missing or unknown user
            InvalidParameter: malformed request
            SearchUnavailable: no index or the store could not serve the request
        """
        started = time.perf_counter()
        request = self.parse_request(payload)
        profile = await self._authorize(user_id)

        outcome = await self.planner.search(request.query, request.filters)
        timings = dict(outcome.timings)

        stage = time.perf_counter()
        ids = [c.candidate_id for c in outcome.candidates]
        try:
            opportunities = await self.db.get_opportunities(ids)
            repositories = await self.db.get_repositories(
                sorted({o.repository_id for o in opportunities.values()})
            )
        except ContribuxError:
            raise
        except Exception as e:
            logger.error("Hydration failed: %s", e, exc_info=True)
            raise SearchUnavailable("Opportunity store unavailable") from e
        timings["hydrate"] = _elapsed_ms(stage)

        candidates = []
        for fused in outcome.candidates:
            opportunity = opportunities.get(fused.candidate_id)
            # Cached results may predate a close or stale transition
            if opportunity is None or opportunity.state != OpportunityState.OPEN:
                continue
            candidates.append(RankCandidate(
                opportunity=opportunity.model_copy(update={"embedding": None}),
                repository=self._strip(repositories.get(opportunity.repository_id)),
                relevance=fused.fused_score,
            ))

        if context is None:
            context = RankingContext(
                recently_shown=request.recently_shown,
                recently_shown_repositories=set(request.recently_shown_repositories),
            )

        stage = time.perf_counter()
        ranked = self.ranker.rank(candidates, profile, context)
        timings["rank"] = _elapsed_ms(stage)

        start = (request.page - 1) * request.per_page
        page = ranked[start:start + request.per_page]
        timings["total"] = _elapsed_ms(started)

        if outcome.degraded:
            self._report_degraded(user_id, outcome, "opportunities")
        logger.info(
            "Search user=%s query_len=%d candidates=%d page=%d cache_hit=%s total_ms=%.1f",
            user_id, len(request.query), len(ranked), request.page, outcome.cache_hit, timings["total"],
        )

        return SearchResponse(
            results=page,
            total=len(ranked),
            page=request.page,
            per_page=request.per_page,
            has_more=start + len(page) < len(ranked),
            metadata=SearchMetadata(
                degraded=outcome.degraded,
                cache_hit=outcome.cache_hit,
                timings_ms=timings,
                unavailable_sources=sorted(outcome.failures),
            ),
        )

    async def search_repositories(
        self,
        user_id: Optional[str],
        payload: RepositorySearchRequest | dict[str, Any],
    ) -> RepositorySearchResponse:
        """Hybrid repository search, ordered by quality-boosted relevance.

        Raises:
            Unauthorized: missing or unknown user
            InvalidParameter: malformed request
            SearchUnavailable: no index or the store could not serve the request
            InternalError: no repository planner is configured
        """
        started = time.perf_counter()
        request = _validate(RepositorySearchRequest, payload)
        await self._authorize(user_id)
        if self.repository_planner is None:
            raise InternalError("Repository search is not configured")

        outcome = await self.repository_planner.search(request.query, request.filters)
        timings = dict(outcome.timings)

        stage = time.perf_counter()
        try:
            repositories = await self.db.get_repositories([c.candidate_id for c in outcome.candidates])
        except ContribuxError:
            raise
        except Exception as e:
            logger.error("Repository hydration failed: %s", e, exc_info=True)
            raise SearchUnavailable("Repository store unavailable") from e
        timings["hydrate"] = _elapsed_ms(stage)

        results = []
        for fused in outcome.candidates:
            repository = repositories.get(fused.candidate_id)
            if repository is None:
                continue
            results.append(RepositorySearchResult(
                repository=self._strip(repository),
                relevance=repository_relevance(fused.fused_score, repository),
                fused_score=fused.fused_score,
                lexical_score=fused.lexical_score,
                vector_score=fused.vector_score,
            ))
        results.sort(key=lambda r: (-r.relevance, r.repository.id))

        start = (request.page - 1) * request.per_page
        page = results[start:start + request.per_page]
        timings["total"] = _elapsed_ms(started)

        if outcome.degraded:
            self._report_degraded(user_id, outcome, "repositories")
        logger.info(
            "Repository search user=%s query_len=%d candidates=%d page=%d cache_hit=%s total_ms=%.1f",
            user_id, len(request.query), len(results), request.page, outcome.cache_hit, timings["total"],
        )

        return RepositorySearchResponse(
            results=page,
            total=len(results),
            page=request.page,
            per_page=request.per_page,
            has_more=start + len(page) < len(results),
            metadata=SearchMetadata(
                degraded=outcome.degraded,
                cache_hit=outcome.cache_hit,
                timings_ms=timings,
                unavailable_sources=sorted(outcome.failures),
            ),
        )

    @staticmethod
    def _report_degraded(user_id: str, outcome, kind: str) -> None:
        sources = sorted(outcome.failures)
        log_degraded(
            "search", ",".join(outcome.failures[s] for s in sources),
            "Degraded %s search for user %s, unavailable: %s", kind, user_id, ", ".join(sources),
            kind=kind, user=user_id,
        )

    @staticmethod
    def _strip(repository):
        if repository is None:
            return None
        return repository.model_copy(update={"embedding": None})


@dataclass
class SearchStack:
    """Every long-lived component of a search process."""

    settings: Settings
    db: OpportunityDatabase
    cache: ResultCache
    embeddings: EmbeddingGateway
    lexical: LexicalIndex
    vector: VectorIndex
    planner: HybridQueryPlanner
    repository_lexical: LexicalIndex
    repository_vector: VectorIndex
    repository_planner: HybridQueryPlanner
    ranker: OpportunityRanker
    indexer: CorpusIndexer
    profiles: ProfileDirectory
    service: OpportunitySearchService

    async def close(self) -> None:
        await self.cache.close()
        await self.db.close()


async def create_search_stack(settings: Optional[Settings] = None) -> SearchStack:
    """Wire up and connect all components from ``settings``."""
    settings = settings or Settings.from_env()

    db = OpportunityDatabase(settings.db_path, embedding_dimension=settings.embedding.dimension)
    await db.connect()

    cache = ResultCache.from_config(settings.cache)
    embeddings = EmbeddingGateway(create_provider(settings.embedding), settings.embedding, cache)
    lexical = LexicalIndex(settings.bm25)
    vector = VectorIndex(settings.vectorstore)
    planner = HybridQueryPlanner(lexical, vector, embeddings, cache, settings.hybrid)
    repository_lexical = LexicalIndex(settings.repository_bm25)
    repository_vector = VectorIndex(settings.repository_vectorstore)
    repository_planner = HybridQueryPlanner(
        repository_lexical, repository_vector, embeddings, cache, settings.hybrid,
        kind="repositories", filters_type=RepositoryFilters,
    )
    ranker = OpportunityRanker(settings.ranker)
    indexer = CorpusIndexer(
        db, lexical, vector, embeddings, cache,
        repository_lexical=repository_lexical,
        repository_vector=repository_vector,
    )
    profiles = DatabaseProfileDirectory(db)
    service = OpportunitySearchService(planner, db, ranker, profiles, repository_planner=repository_planner)

    return SearchStack(
        settings=settings,
        db=db,
        cache=cache,
        embeddings=embeddings,
        lexical=lexical,
        vector=vector,
        planner=planner,
        repository_lexical=repository_lexical,
        repository_vector=repository_vector,
        repository_planner=repository_planner,
        ranker=ranker,
        indexer=indexer,
        profiles=profiles,
        service=service,
    )

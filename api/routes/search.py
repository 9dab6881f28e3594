"""
Opportunity and repository search routes.

The caller's identity arrives in the ``X-User-Id`` header, set by the
authenticating gateway in front of this service.
"""
import asyncio

from fastapi import APIRouter, Depends, Header

from api.deps import get_search_service
from api.models import (
    ErrorResponse,
    RepositorySearchRequest,
    RepositorySearchResponse,
    SearchRequest,
    SearchResponse,
)
from contribux.search.service import OpportunitySearchService

router = APIRouter(prefix="/api/search", tags=["search"])

_ERRORS = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


@router.post("/opportunities", response_model=SearchResponse, responses=_ERRORS)
async def search_opportunities(
    body: SearchRequest,
    x_user_id: str | None = Header(default=None),
    service: OpportunitySearchService = Depends(get_search_service),
):
    """
    Hybrid search plus personalized ranking.

    Returns one page of ranked opportunities. ``metadata.degraded`` is true
    when only one index could serve the query.
    """
    return await service.search(x_user_id, body)


@router.post("/repositories", response_model=RepositorySearchResponse, responses=_ERRORS)
async def search_repositories(
    body: RepositorySearchRequest,
    x_user_id: str | None = Header(default=None),
    service: OpportunitySearchService = Depends(get_search_service),
):
    """Hybrid repository search, boosted by repository health and stars."""
    return await service.search_repositories(x_user_id, body)


@router.get("/stats")
async def search_stats(service: OpportunitySearchService = Depends(get_search_service)):
    """Index, embedding and cache statistics."""
    # Vector stats count the Chroma collection, a blocking call
    stats = {"opportunities": await asyncio.to_thread(service.planner.stats)}
    if service.repository_planner is not None:
        stats["repositories"] = await asyncio.to_thread(service.repository_planner.stats)
    return stats

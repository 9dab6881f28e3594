"""
Request-scoped dependencies.

The search service is built once in the app lifespan and kept on ``app.state``.
"""
from fastapi import Request

from contribux.search.service import OpportunitySearchService


def get_search_service(request: Request) -> OpportunitySearchService:
    """The process-wide search service."""
    return request.app.state.search_service

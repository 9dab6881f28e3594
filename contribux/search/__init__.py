"""Personalized opportunity search."""

from .service import (
    OpportunitySearchService,
    SearchMetadata,
    SearchRequest,
    SearchResponse,
    SearchStack,
    create_search_stack,
)

__all__ = [
    "OpportunitySearchService",
    "SearchMetadata",
    "SearchRequest",
    "SearchResponse",
    "SearchStack",
    "create_search_stack",
]

"""
Pydantic models for API request/response validation.
"""
from typing import Any

from pydantic import BaseModel

from contribux.search.service import (
    RepositorySearchRequest,
    RepositorySearchResponse,
    RepositorySearchResult,
    SearchMetadata,
    SearchRequest,
    SearchResponse,
)

__all__ = [
    "ErrorResponse",
    "HealthResponse",
    "RepositorySearchRequest",
    "RepositorySearchResponse",
    "RepositorySearchResult",
    "SearchMetadata",
    "SearchRequest",
    "SearchResponse",
]


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    uptime: float


class ErrorResponse(BaseModel):
    """Body of every non-2xx response."""
    error: str  # 'InvalidParameter', 'Unauthorized', 'SearchUnavailable', ...
    message: str
    retryable: bool = False
    details: dict[str, Any] | None = None

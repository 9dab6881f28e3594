"""Data models for repositories, opportunities and ranking."""

from .opportunities import (
    DifficultyLevel,
    Opportunity,
    OpportunityMetadata,
    OpportunityState,
    RankingContext,
    Repository,
    ScoredOpportunity,
    UserProfile,
)

__all__ = [
    "DifficultyLevel",
    "Opportunity",
    "OpportunityMetadata",
    "OpportunityState",
    "RankingContext",
    "Repository",
    "ScoredOpportunity",
    "UserProfile",
]

"""Data models for repositories, contribution opportunities and ranking output."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DifficultyLevel(str, Enum):
    """Difficulty tiers, ordered from easiest to hardest."""

    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"

    @property
    def tier(self) -> int:
        return _TIER_ORDER.index(self)

    @classmethod
    def from_score(cls, difficulty_score: int) -> "DifficultyLevel":
        """Map a 1-10 difficulty score onto a tier."""
        if difficulty_score <= 3:
            return cls.BEGINNER
        if difficulty_score <= 6:
            return cls.INTERMEDIATE
        if difficulty_score <= 8:
            return cls.ADVANCED
        return cls.EXPERT


_TIER_ORDER = [
    DifficultyLevel.BEGINNER,
    DifficultyLevel.INTERMEDIATE,
    DifficultyLevel.ADVANCED,
    DifficultyLevel.EXPERT,
]


class OpportunityState(str, Enum):
    """Lifecycle of an opportunity. Opportunities are never deleted."""

    OPEN = "open"
    CLOSED = "closed"
    STALE = "stale"


class Repository(BaseModel):
    """A GitHub repository that owns contribution opportunities."""

    id: str
    owner: str
    name: str
    description: str = ""
    language: str | None = None
    topics: list[str] = Field(default_factory=list)
    stars: int = Field(default=0, ge=0)
    forks: int = Field(default=0, ge=0)
    health_score: float = Field(default=0.0, ge=0.0, le=1.0)
    embedding: list[float] | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def search_text(self) -> str:
        """Text indexed for lexical search and embedded for repository search."""
        parts = [self.full_name, self.description, self.language or ""]
        parts.extend(self.topics)
        return "\n".join(p for p in parts if p)


class OpportunityMetadata(BaseModel):
    """Structured issue metadata extracted at ingestion time."""

    labels: list[str] = Field(default_factory=list)
    skills_required: list[str] = Field(default_factory=list)
    difficulty: DifficultyLevel | None = None
    estimated_hours: int | None = Field(default=None, ge=0)
    mentorship_available: bool = False
    good_first_issue: bool = False
    hacktoberfest: bool = False
    priority: Literal["low", "medium", "high"] | None = None
    complexity: int | None = Field(default=None, ge=1, le=10)
    learning_opportunity: int | None = Field(default=None, ge=1, le=10)


class Opportunity(BaseModel):
    """A contribution opportunity (an issue or PR) in a repository."""

    id: str
    repository_id: str
    issue_number: int | None = None
    title: str
    description: str = ""
    url: str | None = None
    metadata: OpportunityMetadata = Field(default_factory=OpportunityMetadata)
    # Always populated: the ranker depends on both unconditionally
    difficulty_score: int = Field(default=5, ge=1, le=10)
    impact_score: int = Field(default=5, ge=1, le=10)
    embedding: list[float] | None = None
    state: OpportunityState = OpportunityState.OPEN
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("difficulty_score", "impact_score", mode="before")
    @classmethod
    def _default_missing_scores(cls, value: Any) -> Any:
        return 5 if value is None else value

    @property
    def difficulty_level(self) -> DifficultyLevel:
        """Declared tier, or one derived from the numeric difficulty score."""
        if self.metadata.difficulty is not None:
            return self.metadata.difficulty
        return DifficultyLevel.from_score(self.difficulty_score)

    def search_text(self, repository: Repository | None = None) -> str:
        """Text indexed for lexical search and embedded for vector search."""
        parts = [self.title, self.description]
        parts.extend(self.metadata.labels)
        parts.extend(self.metadata.skills_required)
        if repository is not None:
            parts.append(repository.full_name)
            if repository.language:
                parts.append(repository.language)
            parts.extend(repository.topics)
        return "\n".join(p for p in parts if p)


class UserProfile(BaseModel):
    """Profile of the developer searching. Read-only for the search engine."""

    user_id: str
    skills: list[str] = Field(default_factory=list)
    interests: list[str] = Field(default_factory=list)
    difficulty_preference: DifficultyLevel = DifficultyLevel.INTERMEDIATE
    time_commitment_hours: int | None = Field(default=None, ge=0)


class RankingContext(BaseModel):
    """Per-call ranking signals supplied by the caller. Never persisted."""

    recently_shown: list[str] = Field(default_factory=list)  # opportunity ids
    recently_shown_repositories: set[str] = Field(default_factory=set)
    signals: dict[str, Any] = Field(default_factory=dict)
    # Fixed per context so ranking the same inputs twice is deterministic
    now: datetime = Field(default_factory=_utcnow)


class ScoredOpportunity(BaseModel):
    """An opportunity with its personalized sub-scores and dense rank."""

    opportunity: Opportunity
    repository: Repository | None = None
    scores: dict[str, float]
    relevance: float = 0.0
    final_score: float
    rank: int = Field(ge=1)
    match_reasons: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

"""Structural pre-filters shared by the lexical and vector indices.

A filter model is compiled once into a list of ``Condition``s. The same
conditions render to a ChromaDB ``where`` clause (restricting the HNSW
traversal) and to a Python predicate over the flat filter document the
lexical index keeps per record, so both indices always see the same
candidate universe.

``SearchFilters`` applies to opportunities, ``RepositoryFilters`` to
repositories.
"""

import re
from abc import abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from ..models.opportunities import DifficultyLevel, Opportunity, OpportunityState, Repository

FilterDocument = dict[str, Any]


def flag_key(kind: str, value: str) -> str:
    """Metadata key marking set membership (``label__good_first_issue``).

    ChromaDB metadata values must be scalars, so list membership is stored
    as one boolean key per element.
    """
    text = value.strip().lower().replace("+", "plus").replace("#", "sharp")
    slug = re.sub(r"[^a-z0-9]+", "_", text).strip("_")
    return f"{kind}__{slug}"


def timestamp(value: datetime) -> float:
    """Epoch seconds; naive datetimes are UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def filter_document(opportunity: Opportunity, repository: Optional[Repository]) -> FilterDocument:
    """Build the flat, scalar-only document that filters are evaluated against."""
    meta = opportunity.metadata
    doc: FilterDocument = {
        "repository_id": opportunity.repository_id,
        "state": opportunity.state.value,
        "difficulty": meta.difficulty.value if meta.difficulty else "unspecified",
        "difficulty_score": opportunity.difficulty_score,
        "impact_score": opportunity.impact_score,
        "good_first_issue": meta.good_first_issue,
        "mentorship_available": meta.mentorship_available,
        "hacktoberfest": meta.hacktoberfest,
        "language": (repository.language or "").lower() if repository else "",
        "stars": repository.stars if repository else 0,
        "created_at": timestamp(opportunity.created_at),
        "updated_at": timestamp(opportunity.updated_at),
    }
    for label in meta.labels:
        doc[flag_key("label", label)] = True
    for skill in meta.skills_required:
        doc[flag_key("skill", skill)] = True
    if repository is not None:
        for topic in repository.topics:
            doc[flag_key("topic", topic)] = True
    return doc


def repository_filter_document(repository: Repository) -> FilterDocument:
    """Filter document of a repository."""
    doc: FilterDocument = {
        "language": (repository.language or "").lower(),
        "stars": repository.stars,
        "forks": repository.forks,
        "health_score": repository.health_score,
        "created_at": timestamp(repository.created_at),
        "updated_at": timestamp(repository.updated_at),
    }
    for topic in repository.topics:
        doc[flag_key("topic", topic)] = True
    return doc


@dataclass(frozen=True)
class Condition:
    """A single structural condition: ``key op value``.

    ``op`` is one of ``eq``, ``gte``, ``lte`` or ``any`` (at least one of the
    flag keys in ``value`` is set).
    """

    key: str
    op: str
    value: Any

    def matches(self, doc: FilterDocument) -> bool:
        if self.op == "any":
            return any(doc.get(k) is True for k in self.value)
        actual = doc.get(self.key)
        if actual is None:
            return False
        if self.op == "eq":
            return actual == self.value
        if self.op == "gte":
            return actual >= self.value
        if self.op == "lte":
            return actual <= self.value
        raise ValueError(f"Unknown filter operator: {self.op}")

    def to_where(self) -> dict[str, Any]:
        if self.op == "any":
            clauses = [{k: {"$eq": True}} for k in self.value]
            return clauses[0] if len(clauses) == 1 else {"$or": clauses}
        return {self.key: {f"${self.op}": self.value}}


class StructuralFilters(BaseModel):
    """Common behaviour of filter models: compile once, render twice."""

    @abstractmethod
    def conditions(self) -> list[Condition]:
        """Compile into structural conditions."""

    def matches(self, doc: FilterDocument) -> bool:
        """Predicate form, evaluated before any lexical scoring."""
        return all(c.matches(doc) for c in self.conditions())

    def to_where(self) -> dict[str, Any] | None:
        """ChromaDB ``where`` clause form (None when nothing is filtered)."""
        clauses = [c.to_where() for c in self.conditions()]
        if not clauses:
            return None
        return clauses[0] if len(clauses) == 1 else {"$and": clauses}

    def fingerprint_pairs(self) -> list[tuple[str, Any]]:
        """Sorted ``(name, value)`` pairs of the filters that are set."""
        pairs = []
        for name, value in self.model_dump(mode="json").items():
            if value is None or value == []:
                continue
            if isinstance(value, list):
                value = sorted({v.strip().lower() for v in value})
            elif name == "language":
                value = value.strip().lower()
            pairs.append((name, value))
        return sorted(pairs)

    def _date_conditions(self) -> list[Condition]:
        conds = []
        for field_name, key, op in (
            ("created_after", "created_at", "gte"),
            ("created_before", "created_at", "lte"),
            ("updated_after", "updated_at", "gte"),
            ("updated_before", "updated_at", "lte"),
        ):
            value = getattr(self, field_name, None)
            if value is not None:
                conds.append(Condition(key, op, timestamp(value)))
        return conds

    def _check_date_ranges(self) -> None:
        for low, high in (("created_after", "created_before"), ("updated_after", "updated_before")):
            lo, hi = getattr(self, low), getattr(self, high)
            if lo is not None and hi is not None and timestamp(lo) > timestamp(hi):
                raise ValueError(f"{low} must not be later than {high}")


class SearchFilters(StructuralFilters):
    """Structural filters accepted by an opportunity search."""

    language: str | None = Field(default=None, max_length=50)
    min_stars: int | None = Field(default=None, ge=0)
    topics: list[str] = Field(default_factory=list, max_length=20)
    difficulty: DifficultyLevel | None = None
    min_difficulty_score: int | None = Field(default=None, ge=1, le=10)
    max_difficulty_score: int | None = Field(default=None, ge=1, le=10)
    min_impact_score: int | None = Field(default=None, ge=1, le=10)
    max_impact_score: int | None = Field(default=None, ge=1, le=10)
    labels: list[str] = Field(default_factory=list, max_length=20)
    skills: list[str] = Field(default_factory=list, max_length=15)
    good_first_issue: bool | None = None
    mentorship_available: bool | None = None
    hacktoberfest: bool | None = None
    repository_id: str | None = None
    created_after: datetime | None = None
    created_before: datetime | None = None
    updated_after: datetime | None = None
    updated_before: datetime | None = None

    @model_validator(mode="after")
    def _check_ranges(self) -> "SearchFilters":
        for low, high in (
            ("min_difficulty_score", "max_difficulty_score"),
            ("min_impact_score", "max_impact_score"),
        ):
            lo, hi = getattr(self, low), getattr(self, high)
            if lo is not None and hi is not None and lo > hi:
                raise ValueError(f"{low} ({lo}) must not exceed {high} ({hi})")
        self._check_date_ranges()
        for name in ("topics", "labels", "skills"):
            if any(not v.strip() for v in getattr(self, name)):
                raise ValueError(f"{name} must not contain empty values")
        return self

    def conditions(self) -> list[Condition]:
        """Compile into structural conditions. Only open opportunities match."""
        conds = [Condition("state", "eq", OpportunityState.OPEN.value)]
        if self.language:
            conds.append(Condition("language", "eq", self.language.strip().lower()))
        if self.min_stars is not None:
            conds.append(Condition("stars", "gte", self.min_stars))
        if self.topics:
            conds.append(Condition("topics", "any", tuple(flag_key("topic", t) for t in self.topics)))
        if self.difficulty is not None:
            conds.append(Condition("difficulty", "eq", self.difficulty.value))
        if self.min_difficulty_score is not None:
            conds.append(Condition("difficulty_score", "gte", self.min_difficulty_score))
        if self.max_difficulty_score is not None:
            conds.append(Condition("difficulty_score", "lte", self.max_difficulty_score))
        if self.min_impact_score is not None:
            conds.append(Condition("impact_score", "gte", self.min_impact_score))
        if self.max_impact_score is not None:
            conds.append(Condition("impact_score", "lte", self.max_impact_score))
        if self.labels:
            conds.append(Condition("labels", "any", tuple(flag_key("label", v) for v in self.labels)))
        if self.skills:
            conds.append(Condition("skills", "any", tuple(flag_key("skill", v) for v in self.skills)))
        for flag in ("good_first_issue", "mentorship_available", "hacktoberfest"):
            value = getattr(self, flag)
            if value is not None:
                conds.append(Condition(flag, "eq", value))
        if self.repository_id:
            conds.append(Condition("repository_id", "eq", self.repository_id))
        conds.extend(self._date_conditions())
        return conds


class RepositoryFilters(StructuralFilters):
    """Structural filters accepted by a repository search."""

    language: str | None = Field(default=None, max_length=50)
    min_stars: int | None = Field(default=None, ge=0)
    topics: list[str] = Field(default_factory=list, max_length=20)
    min_health_score: float | None = Field(default=None, ge=0.0, le=1.0)
    created_after: datetime | None = None
    created_before: datetime | None = None
    updated_after: datetime | None = None
    updated_before: datetime | None = None

    @model_validator(mode="after")
    def _check_ranges(self) -> "RepositoryFilters":
        self._check_date_ranges()
        if any(not t.strip() for t in self.topics):
            raise ValueError("topics must not contain empty values")
        return self

    def conditions(self) -> list[Condition]:
        conds = []
        if self.language:
            conds.append(Condition("language", "eq", self.language.strip().lower()))
        if self.min_stars is not None:
            conds.append(Condition("stars", "gte", self.min_stars))
        if self.topics:
            conds.append(Condition("topics", "any", tuple(flag_key("topic", t) for t in self.topics)))
        if self.min_health_score is not None:
            conds.append(Condition("health_score", "gte", self.min_health_score))
        conds.extend(self._date_conditions())
        return conds

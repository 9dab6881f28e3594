"""Shared builders and test doubles."""

import hashlib
import re
from datetime import datetime, timedelta, timezone

import numpy as np

from contribux.models.opportunities import (
    DifficultyLevel,
    Opportunity,
    OpportunityMetadata,
    OpportunityState,
    Repository,
    UserProfile,
)
from contribux.retrieval.embeddings import EmbeddingProvider

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


class HashingEmbeddingProvider(EmbeddingProvider):
    """Deterministic bag-of-words embeddings: shared words mean similar vectors."""

    def __init__(self, dimension: int = 64, model_name: str = "hashing-test"):
        self.dimension = dimension
        self.model_name = model_name
        self.calls: list[list[str]] = []

    def vector(self, text: str) -> list[float]:
        vec = np.zeros(self.dimension)
        for token in re.findall(r"\w+", text.lower()):
            digest = int(hashlib.md5(token.encode()).hexdigest(), 16)
            vec[digest % self.dimension] += 1.0
        norm = np.linalg.norm(vec)
        if norm == 0:
            vec[0] = 1.0
            norm = 1.0
        return (vec / norm).tolist()

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self.vector(t) for t in texts]


def make_repository(repo_id: str = "r1", **overrides) -> Repository:
    fields = {
        "id": repo_id,
        "owner": "acme",
        "name": f"project-{repo_id}",
        "language": "Python",
        "stars": 1000,
        "created_at": NOW - timedelta(days=365),
        "updated_at": NOW,
    }
    fields.update(overrides)
    return Repository(**fields)


def make_opportunity(
    opp_id: str = "o1",
    repository_id: str = "r1",
    title: str = "Fix a bug",
    difficulty: DifficultyLevel | None = DifficultyLevel.INTERMEDIATE,
    skills: list[str] | None = None,
    labels: list[str] | None = None,
    state: OpportunityState = OpportunityState.OPEN,
    **overrides,
) -> Opportunity:
    metadata = overrides.pop("metadata", None) or OpportunityMetadata(
        difficulty=difficulty,
        skills_required=skills or [],
        labels=labels or [],
        good_first_issue=overrides.pop("good_first_issue", False),
        mentorship_available=overrides.pop("mentorship_available", False),
        estimated_hours=overrides.pop("estimated_hours", None),
    )
    fields = {
        "id": opp_id,
        "repository_id": repository_id,
        "title": title,
        "description": overrides.pop("description", ""),
        "metadata": metadata,
        "state": state,
        "created_at": NOW - timedelta(days=10),
        "updated_at": NOW,
    }
    fields.update(overrides)
    return Opportunity(**fields)


def make_profile(user_id: str = "alice", **overrides) -> UserProfile:
    fields = {
        "user_id": user_id,
        "skills": ["TypeScript"],
        "difficulty_preference": DifficultyLevel.BEGINNER,
    }
    fields.update(overrides)
    return UserProfile(**fields)


def sample_corpus() -> tuple[list[Repository], list[Opportunity]]:
    """Small corpus with equal popularity and freshness baselines."""
    repositories = [
        make_repository("r-ts", owner="acme", name="config-kit", language="TypeScript",
                        stars=1200, topics=["configuration", "parser"]),
        make_repository("r-py", owner="acme", name="datatools", language="Python", stars=1200),
        make_repository("r-ts2", owner="octo", name="web-ui", language="typescript", stars=1200),
        make_repository("r-rs", owner="ferris", name="engine", language="Rust", stars=1200),
    ]
    opportunities = [
        make_opportunity(
            "o-ts-parser", "r-ts",
            title="Add TypeScript support to configuration parser",
            description="The configuration parser only understands JavaScript files.",
            difficulty=DifficultyLevel.BEGINNER,
            skills=["TypeScript"],
            labels=["good first issue"],
            good_first_issue=True,
        ),
        make_opportunity(
            "o-py-docs", "r-py",
            title="Document typescript type stubs for data loaders",
            description="Write typescript notes for pandas based loaders.",
            difficulty=DifficultyLevel.BEGINNER,
            skills=["Pandas", "Sphinx"],
        ),
        make_opportunity(
            "o-ts-compiler", "r-ts2",
            title="Rewrite typescript compiler plugin",
            description="Port the plugin to the new typescript compiler API.",
            difficulty=DifficultyLevel.ADVANCED,
            skills=["TypeScript", "Compilers"],
        ),
        make_opportunity(
            "o-rs-leak", "r-rs",
            title="Fix memory leak in renderer",
            description="Frames are never released after resize.",
            difficulty=DifficultyLevel.INTERMEDIATE,
            skills=["Rust"],
        ),
        make_opportunity(
            "o-ts-closed", "r-ts",
            title="TypeScript migration of the CLI",
            difficulty=DifficultyLevel.BEGINNER,
            skills=["TypeScript"],
            state=OpportunityState.CLOSED,
        ),
    ]
    return repositories, opportunities

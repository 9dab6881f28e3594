"""Personalized sub-scores, each in [0, 1], plus human-readable explanations."""

import math
import re
from datetime import datetime, timezone

from ..models.opportunities import DifficultyLevel, Opportunity, Repository, UserProfile

SKILL_MATCH = "skill_match"
DIFFICULTY_MATCH = "difficulty_match"
IMPACT = "impact"
POPULARITY = "popularity"
FRESHNESS = "freshness"
DIVERSITY = "diversity"

SCORE_NAMES = (SKILL_MATCH, DIFFICULTY_MATCH, IMPACT, POPULARITY, FRESHNESS, DIVERSITY)


def skill_match(required: list[str], user_skills: list[str]) -> float:
    """Fraction of required skills the user has (case-insensitive)."""
    needed = {s.strip().lower() for s in required if s.strip()}
    if not needed:
        return 1.0
    have = {s.strip().lower() for s in user_skills}
    return len(needed & have) / len(needed)


def difficulty_match(
    opportunity_tier: DifficultyLevel,
    preferred_tier: DifficultyLevel,
    decay: float = 0.5,
) -> float:
    """Gaussian falloff over tier distance: 1.0, 0.61, 0.14, 0.01."""
    distance = opportunity_tier.tier - preferred_tier.tier
    return math.exp(-decay * distance * distance)


def impact(impact_score: int) -> float:
    """Map the 1-10 impact score onto [0, 1]."""
    return (min(max(impact_score, 1), 10) - 1) / 9


def popularity(stars: int, threshold: float = 1000.0) -> float:
    """Saturating star count: 0.63 at ``threshold`` stars."""
    return 1.0 - math.exp(-max(stars, 0) / threshold)


def freshness(updated_at: datetime, now: datetime, half_life_days: float = 30.0, floor: float = 0.1) -> float:
    """Exponential decay with age, never below ``floor``."""
    if updated_at.tzinfo is None:
        updated_at = updated_at.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    age_days = max((now - updated_at).total_seconds(), 0.0) / 86400.0
    return max(floor, 0.5 ** (age_days / half_life_days))


def diversity(repository_id: str, shown_repositories: set[str], repeat_score: float = 0.3) -> float:
    """Penalize repositories the user has already been shown."""
    return repeat_score if repository_id in shown_repositories else 1.0


def _slug(text: str) -> str:
    return re.sub(r"[\s_-]+", " ", text.strip().lower())


def explain(
    opportunity: Opportunity,
    repository: Repository | None,
    profile: UserProfile,
    scores: dict[str, float],
) -> tuple[list[str], list[str]]:
    """Match reasons and warnings for one scored opportunity."""
    meta = opportunity.metadata
    reasons: list[str] = []
    warnings: list[str] = []

    if scores[DIFFICULTY_MATCH] >= 1.0:
        reasons.append("Matches your skill level")
    if meta.skills_required and scores[SKILL_MATCH] > 0.7:
        reasons.append("Uses your skills")

    haystack = " ".join(
        [opportunity.title, opportunity.description, *meta.labels]
        + (list(repository.topics) if repository else [])
    )
    haystack = _slug(haystack)
    if any(_slug(i) and _slug(i) in haystack for i in profile.interests):
        reasons.append("Related to your interests")

    if meta.good_first_issue:
        reasons.append("Good first issue")
    if meta.mentorship_available:
        reasons.append("Mentorship available")
    if any(_slug(label) == "help wanted" for label in meta.labels):
        reasons.append("Help wanted")
    if meta.priority == "high":
        reasons.append("High priority contribution")

    hours = meta.estimated_hours
    available = profile.time_commitment_hours
    if hours is not None and available is not None:
        if hours <= available:
            reasons.append("Fits your available time")
        else:
            warnings.append(f"Time commitment ({hours}h) may exceed your available time")

    if meta.skills_required and scores[SKILL_MATCH] < 0.3:
        warnings.append("Requires skills you have not listed")
    if opportunity.difficulty_level.tier - profile.difficulty_preference.tier >= 2:
        warnings.append("Above your preferred difficulty")

    return reasons, warnings

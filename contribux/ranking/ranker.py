"""Multi-factor personalized ranking of fused search candidates.

Every candidate is scored on six independent factors, the factors are
combined with one validated weight table, and the whole set is sorted once.
Ranks are a dense permutation of 1..N; ties in final score keep the
candidates' input (relevance) order, then fall back to the identifier.
"""

from dataclasses import asdict, dataclass, field
from typing import Optional

from ..logging_config import get_logger
from ..models.opportunities import (
    Opportunity,
    RankingContext,
    Repository,
    ScoredOpportunity,
    UserProfile,
)
from . import scoring

logger = get_logger(__name__)


@dataclass(frozen=True)
class RankingWeights:
    """Weight of each sub-score in the final score."""

    skill_match: float = 0.30
    difficulty_match: float = 0.20
    impact: float = 0.20
    popularity: float = 0.10
    freshness: float = 0.10
    diversity: float = 0.10

    def __post_init__(self):
        weights = self.as_dict()
        negative = [name for name, w in weights.items() if w < 0]
        if negative:
            raise ValueError(f"Ranking weights must be non-negative: {', '.join(negative)}")
        total = sum(weights.values())
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Ranking weights must sum to 1.0, got {total:.6f}")

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass
class RankerConfig:
    """Configuration for the opportunity ranker."""

    weights: RankingWeights = field(default_factory=RankingWeights)

    # exp(-decay * tier_distance^2)
    difficulty_decay: float = 0.5

    # Stars at which popularity reaches 1 - 1/e
    popularity_threshold: float = 1000.0

    freshness_half_life_days: float = 30.0
    freshness_floor: float = 0.1

    # Diversity score of a repository the user was recently shown
    diversity_repeat_score: float = 0.3


@dataclass
class RankCandidate:
    """A hydrated search candidate."""

    opportunity: Opportunity
    repository: Optional[Repository] = None
    relevance: float = 0.0


class OpportunityRanker:
    """Personalized re-ranking.

    Usage:
        ranker = OpportunityRanker()
        ranked = ranker.rank(candidates, profile, RankingContext(recently_shown=["opp-7"]))
        for item in ranked:
            print(item.rank, item.opportunity.title, item.final_score)
    """

    def __init__(self, config: Optional[RankerConfig] = None):
        self.config = config or RankerConfig()

    def shown_repositories(self, candidates: list[RankCandidate], context: RankingContext) -> set[str]:
        """Repositories the user has recently seen.

        Explicit repository ids, plus the repositories of recently shown
        opportunities that are part of this candidate set.
        """
        shown = set(context.recently_shown_repositories)
        recent = set(context.recently_shown)
        for candidate in candidates:
            if candidate.opportunity.id in recent:
                shown.add(candidate.opportunity.repository_id)
        return shown

    def score(
        self,
        candidate: RankCandidate,
        profile: UserProfile,
        context: RankingContext,
        shown_repositories: set[str],
    ) -> dict[str, float]:
        """Compute the six sub-scores of one candidate."""
        cfg = self.config
        opportunity = candidate.opportunity
        stars = candidate.repository.stars if candidate.repository else 0
        return {
            scoring.SKILL_MATCH: scoring.skill_match(opportunity.metadata.skills_required, profile.skills),
            scoring.DIFFICULTY_MATCH: scoring.difficulty_match(
                opportunity.difficulty_level, profile.difficulty_preference, cfg.difficulty_decay
            ),
            scoring.IMPACT: scoring.impact(opportunity.impact_score),
            scoring.POPULARITY: scoring.popularity(stars, cfg.popularity_threshold),
            scoring.FRESHNESS: scoring.freshness(
                opportunity.updated_at, context.now, cfg.freshness_half_life_days, cfg.freshness_floor
            ),
            scoring.DIVERSITY: scoring.diversity(
                opportunity.repository_id, shown_repositories, cfg.diversity_repeat_score
            ),
        }

    def combine(self, scores: dict[str, float]) -> float:
        """Weighted sum of sub-scores."""
        return sum(weight * scores[name] for name, weight in self.config.weights.as_dict().items())

    def rank(
        self,
        candidates: list[RankCandidate],
        profile: UserProfile,
        context: Optional[RankingContext] = None,
    ) -> list[ScoredOpportunity]:
        """Score every candidate, then sort the whole set and assign ranks 1..N.

        Freshness is measured against ``context.now``. Without a context each
        call stamps its own ``now``, so repeat calls that must score identically
        should share one ``RankingContext``.
        """
        if not candidates:
            return []
        context = context or RankingContext()

        shown = self.shown_repositories(candidates, context)
        scored = []
        for position, candidate in enumerate(candidates):
            scores = self.score(candidate, profile, context, shown)
            final = self.combine(scores)
            scored.append((final, position, candidate, scores))

        scored.sort(key=lambda item: (-item[0], item[1], item[2].opportunity.id))

        results = []
        for rank, (final, _, candidate, scores) in enumerate(scored, start=1):
            reasons, warnings = scoring.explain(candidate.opportunity, candidate.repository, profile, scores)
            results.append(ScoredOpportunity(
                opportunity=candidate.opportunity,
                repository=candidate.repository,
                scores=scores,
                relevance=candidate.relevance,
                final_score=final,
                rank=rank,
                match_reasons=reasons,
                warnings=warnings,
            ))

        logger.debug("Ranked %d candidates for user %s", len(results), profile.user_id)
        return results

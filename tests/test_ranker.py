"""Tests for personalized ranking."""

from datetime import timedelta

import pytest

from contribux.models.opportunities import DifficultyLevel, RankingContext
from contribux.ranking import scoring
from contribux.ranking.ranker import OpportunityRanker, RankCandidate, RankerConfig, RankingWeights

from tests.helpers import NOW, make_opportunity, make_profile, make_repository


def _candidates(*opportunities, repositories=None):
    repositories = repositories or {}
    return [
        RankCandidate(o, repositories.get(o.repository_id, make_repository(o.repository_id)), relevance=0.5)
        for o in opportunities
    ]


@pytest.mark.parametrize("opp_tier,expected", [
    (DifficultyLevel.BEGINNER, 1.0),
    (DifficultyLevel.INTERMEDIATE, 0.6065),
    (DifficultyLevel.ADVANCED, 0.1353),
    (DifficultyLevel.EXPERT, 0.0111),
])
def test_difficulty_match_falloff(opp_tier, expected):
    """Test difficulty match decays with tier distance."""
    assert scoring.difficulty_match(opp_tier, DifficultyLevel.BEGINNER) == pytest.approx(expected, abs=1e-4)


def test_difficulty_match_symmetric():
    """Test easier and harder opportunities are penalized alike."""
    easier = scoring.difficulty_match(DifficultyLevel.BEGINNER, DifficultyLevel.INTERMEDIATE)
    harder = scoring.difficulty_match(DifficultyLevel.ADVANCED, DifficultyLevel.INTERMEDIATE)
    assert easier == pytest.approx(harder)


def test_skill_match():
    """Test skill match is the case-insensitive covered fraction."""
    assert scoring.skill_match(["TypeScript", "Rust"], ["typescript"]) == 0.5
    assert scoring.skill_match([], ["python"]) == 1.0
    assert scoring.skill_match(["Go"], []) == 0.0


def test_popularity_and_impact():
    """Test popularity saturates and impact is scaled to [0, 1]."""
    assert scoring.popularity(0) == 0.0
    assert scoring.popularity(1000) == pytest.approx(0.632, abs=1e-3)
    assert scoring.popularity(100_000) <= 1.0
    assert scoring.impact(1) == 0.0
    assert scoring.impact(10) == 1.0


def test_freshness_half_life_and_floor():
    """Test freshness halves every half-life and never drops below the floor."""
    assert scoring.freshness(NOW, NOW) == 1.0
    assert scoring.freshness(NOW - timedelta(days=30), NOW) == pytest.approx(0.5)
    assert scoring.freshness(NOW - timedelta(days=3650), NOW) == 0.1
    assert scoring.freshness(NOW.replace(tzinfo=None), NOW) == 1.0


def test_weights_validated():
    """Test weights must be non-negative and sum to one."""
    with pytest.raises(ValueError, match="sum to 1.0"):
        RankingWeights(skill_match=0.5)
    with pytest.raises(ValueError, match="non-negative"):
        RankingWeights(skill_match=0.6, difficulty_match=-0.1)
    RankingWeights(skill_match=1.0, difficulty_match=0, impact=0, popularity=0, freshness=0, diversity=0)


def test_rank_empty():
    """Test ranking nothing returns nothing."""
    assert OpportunityRanker().rank([], make_profile()) == []


def test_ranks_are_dense_and_sorted():
    """Test ranks are 1..N in non-increasing final score order."""
    ranker = OpportunityRanker()
    candidates = _candidates(
        make_opportunity("o1", difficulty=DifficultyLevel.EXPERT),
        make_opportunity("o2", difficulty=DifficultyLevel.BEGINNER, skills=["TypeScript"]),
        make_opportunity("o3", difficulty=DifficultyLevel.INTERMEDIATE),
    )

    ranked = ranker.rank(candidates, make_profile(), RankingContext(now=NOW))

    assert [r.rank for r in ranked] == [1, 2, 3]
    assert ranked[0].opportunity.id == "o2"
    scores = [r.final_score for r in ranked]
    assert scores == sorted(scores, reverse=True)
    assert all(0.0 <= r.final_score <= 1.0 for r in ranked)
    assert set(ranked[0].scores) == set(scoring.SCORE_NAMES)


def test_ties_keep_input_order():
    """Test equal final scores keep the relevance order of the input."""
    ranker = OpportunityRanker()
    candidates = _candidates(make_opportunity("z"), make_opportunity("a"))

    ranked = ranker.rank(candidates, make_profile(), RankingContext(now=NOW))

    assert ranked[0].final_score == ranked[1].final_score
    assert [r.opportunity.id for r in ranked] == ["z", "a"]


def test_rank_is_deterministic():
    """Test ranking the same inputs twice gives the same output."""
    ranker = OpportunityRanker()
    candidates = _candidates(*(make_opportunity(f"o{i}", impact_score=i) for i in range(1, 6)))
    context = RankingContext(now=NOW, recently_shown=["o2"])

    first = ranker.rank(candidates, make_profile(), context)
    second = ranker.rank(candidates, make_profile(), context)

    assert first == second


def test_recently_shown_repository_demoted():
    """Test diversity lowers opportunities from a repository already shown."""
    ranker = OpportunityRanker()
    candidates = _candidates(
        make_opportunity("seen", repository_id="r1"),
        make_opportunity("sibling", repository_id="r1"),
        make_opportunity("other", repository_id="r2"),
    )

    ranked = ranker.rank(candidates, make_profile(), RankingContext(now=NOW, recently_shown=["seen"]))
    by_id = {r.opportunity.id: r for r in ranked}

    assert by_id["sibling"].scores[scoring.DIVERSITY] == 0.3
    assert by_id["other"].scores[scoring.DIVERSITY] == 1.0
    assert ranked[0].opportunity.id == "other"


def test_explicit_repository_history():
    """Test repositories can be marked as shown directly."""
    ranker = OpportunityRanker(RankerConfig(diversity_repeat_score=0.0))
    candidates = _candidates(make_opportunity("o1", repository_id="r1"))

    ranked = ranker.rank(candidates, make_profile(), RankingContext(now=NOW, recently_shown_repositories={"r1"}))

    assert ranked[0].scores[scoring.DIVERSITY] == 0.0


def test_explanations():
    """Test reasons and warnings describe the match."""
    ranker = OpportunityRanker()
    profile = make_profile(interests=["configuration"], time_commitment_hours=4)
    good = make_opportunity(
        "good",
        title="Add TypeScript support to configuration parser",
        difficulty=DifficultyLevel.BEGINNER,
        skills=["TypeScript"],
        labels=["help wanted"],
        good_first_issue=True,
        estimated_hours=2,
    )
    hard = make_opportunity(
        "hard",
        title="Rewrite scheduler",
        difficulty=DifficultyLevel.ADVANCED,
        skills=["Rust", "Kernel"],
        estimated_hours=40,
    )

    ranked = {r.opportunity.id: r for r in ranker.rank(_candidates(good, hard), profile, RankingContext(now=NOW))}

    assert ranked["good"].match_reasons == [
        "Matches your skill level",
        "Uses your skills",
        "Related to your interests",
        "Good first issue",
        "Help wanted",
        "Fits your available time",
    ]
    assert ranked["good"].warnings == []
    assert ranked["hard"].warnings == [
        "Time commitment (40h) may exceed your available time",
        "Requires skills you have not listed",
        "Above your preferred difficulty",
    ]

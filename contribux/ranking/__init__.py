"""Personalized ranking of search candidates."""

from .ranker import OpportunityRanker, RankCandidate, RankerConfig, RankingWeights

__all__ = [
    "OpportunityRanker",
    "RankCandidate",
    "RankerConfig",
    "RankingWeights",
]

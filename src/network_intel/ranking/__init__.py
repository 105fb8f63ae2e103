from .scorer import (
    PATH_DEGREE_WEIGHT,
    PATH_STRENGTH_WEIGHT,
    SIMILARITY_WEIGHT,
    STRENGTH_WEIGHT,
    PathScorer,
    ScoredCandidate,
    SearchResult,
    WarmPath,
)

__all__ = [
    "PATH_DEGREE_WEIGHT",
    "PATH_STRENGTH_WEIGHT",
    "SIMILARITY_WEIGHT",
    "STRENGTH_WEIGHT",
    "PathScorer",
    "ScoredCandidate",
    "SearchResult",
    "WarmPath",
]

"""Module de rapprochement des identifiants."""

from specimatch.matching.matcher import IdentifierMatcher, match_all
from specimatch.matching.schema import (
    CandidateSpecimen,
    Confidence,
    MatchResult,
    MatchType,
    SourceRowSet,
)

__all__ = [
    "CandidateSpecimen",
    "Confidence",
    "IdentifierMatcher",
    "MatchResult",
    "MatchType",
    "SourceRowSet",
    "match_all",
]

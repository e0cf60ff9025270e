"""Stratégies de rapprochement, dans l'ordre strict de priorité."""

from __future__ import annotations

from collections.abc import Callable, Sequence

from specimatch.matching.schema import CandidateSpecimen, MatchType
from specimatch.normalize import strip_numeric_prefix

Strategy = Callable[[str, Sequence[CandidateSpecimen]], "CandidateSpecimen | None"]


def match_exact(value: str, candidates: Sequence[CandidateSpecimen]) -> CandidateSpecimen | None:
    """Égalité stricte avec tube_id, specimen_number ou id (premier candidat gagnant)."""
    for c in candidates:
        if c.tube_id == value or c.specimen_number == value or str(c.id) == value:
            return c
    return None


def match_value_in_tube_id(value: str, candidates: Sequence[CandidateSpecimen]) -> CandidateSpecimen | None:
    """La valeur source est contenue dans le tube_id ("GEMM_001_12M" dans "01_GEMM_001_12M")."""
    for c in candidates:
        if c.tube_id and value in c.tube_id:
            return c
    return None


def match_tube_id_in_value(value: str, candidates: Sequence[CandidateSpecimen]) -> CandidateSpecimen | None:
    """Le tube_id est contenu dans la valeur source ("GEMM_001" dans "GEMM_001_12M")."""
    for c in candidates:
        if c.tube_id and c.tube_id in value:
            return c
    return None


def match_normalized(value: str, candidates: Sequence[CandidateSpecimen]) -> CandidateSpecimen | None:
    """Comparaison après retrait du préfixe "<chiffres>_" ("01_GEMM_001_12M" ~ "GEMM_001_12M")."""
    normalized_value = strip_numeric_prefix(value)
    for c in candidates:
        if not c.tube_id:
            continue
        normalized_tube_id = strip_numeric_prefix(c.tube_id)
        if (
            normalized_tube_id == normalized_value
            or normalized_tube_id == value
            or c.tube_id == normalized_value
        ):
            return c
    return None


STRATEGIES: tuple[tuple[MatchType, Strategy], ...] = (
    (MatchType.EXACT, match_exact),
    (MatchType.PARTIAL_CSV_IN_SPECIMEN, match_value_in_tube_id),
    (MatchType.PARTIAL_SPECIMEN_IN_CSV, match_tube_id_in_value),
    (MatchType.PARTIAL_NORMALIZED, match_normalized),
)

"""Synthèse de validation des rapprochements, avant confirmation par l'utilisateur."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import pandas as pd

from specimatch import __version__
from specimatch.config import DEFAULT_SAMPLE_SIZE
from specimatch.matching.schema import Confidence, MatchResult, MatchType


@dataclass(frozen=True)
class MatchDetail:
    """Projection d'une ligne pour l'affichage d'audit."""

    source_identifier: str | None
    matched: bool
    match_type: MatchType
    confidence: Confidence
    matched_candidate_tube_id: str | None


@dataclass(frozen=True)
class ValidationSummary:
    """Statistiques dérivées d'une liste de MatchResult (recalculables à tout moment)."""

    total_rows: int
    matched_count: int
    unmatched_count: int
    exact_matches: int
    partial_matches: int
    metadata_fields: tuple[str, ...]
    unmatched_identifiers: tuple[str | None, ...]
    sample_metadata: tuple[dict[str, str], ...]
    match_details: tuple[MatchDetail, ...]


def summarize(
    match_results: Sequence[MatchResult],
    *,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
) -> ValidationSummary:
    """
    Agrège les résultats de rapprochement sans modifier l'entrée.

    metadata_fields ne contient que les clés des patchs des lignes rapprochées,
    dans l'ordre de première apparition.
    """
    matched = [r for r in match_results if r.is_matched]
    exact = sum(1 for r in matched if r.match_type is MatchType.EXACT)

    fields: dict[str, None] = {}
    for r in matched:
        for key in r.metadata_patch:
            fields.setdefault(key, None)

    details = tuple(
        MatchDetail(
            source_identifier=r.source_identifier,
            matched=r.is_matched,
            match_type=r.match_type,
            confidence=r.confidence,
            matched_candidate_tube_id=r.matched_candidate.tube_id if r.matched_candidate else None,
        )
        for r in match_results
    )

    return ValidationSummary(
        total_rows=len(match_results),
        matched_count=len(matched),
        unmatched_count=len(match_results) - len(matched),
        exact_matches=exact,
        partial_matches=len(matched) - exact,
        metadata_fields=tuple(fields),
        unmatched_identifiers=tuple(r.source_identifier for r in match_results if not r.is_matched),
        sample_metadata=tuple(dict(r.metadata_patch) for r in matched[:sample_size]),
        match_details=details,
    )


def build_details_df(summary: ValidationSummary) -> pd.DataFrame:
    """DataFrame des détails de rapprochement (une ligne par ligne source, ordre d'origine)."""
    rows = [
        {
            "source_identifier": d.source_identifier if d.source_identifier is not None else "",
            "matched": d.matched,
            "match_type": d.match_type.value,
            "confidence": d.confidence.value,
            "tube_id": d.matched_candidate_tube_id or "",
        }
        for d in summary.match_details
    ]
    return pd.DataFrame(rows, columns=["source_identifier", "matched", "match_type", "confidence", "tube_id"])


def build_summary_df(summary: ValidationSummary) -> pd.DataFrame:
    """DataFrame clé/valeur des compteurs de la synthèse."""
    rows = [
        ("nb_rows", summary.total_rows),
        ("nb_matched", summary.matched_count),
        ("nb_unmatched", summary.unmatched_count),
        ("nb_exact", summary.exact_matches),
        ("nb_partial", summary.partial_matches),
        ("metadata_fields", ", ".join(summary.metadata_fields)),
        ("version", __version__),
    ]
    return pd.DataFrame(rows, columns=["Key", "Value"])


def print_summary_console(summary: ValidationSummary, *, max_listed: int = 10) -> None:
    """Affiche la synthèse de validation en console."""
    print("\n=== Specimatch Validation ===")
    print(f"  Lignes:                 {summary.total_rows}")
    print(f"  Spécimens rapprochés:   {summary.matched_count}")
    print(f"  Lignes non rapprochées: {summary.unmatched_count}")
    print(f"  Exacts:                 {summary.exact_matches}")
    print(f"  Partiels:               {summary.partial_matches}")
    print(f"  Champs:                 {', '.join(summary.metadata_fields) or '-'}")
    if summary.unmatched_identifiers:
        shown = [str(i) if i is not None else "" for i in summary.unmatched_identifiers[:max_listed]]
        extra = len(summary.unmatched_identifiers) - len(shown)
        suffix = f" (+{extra} autres)" if extra > 0 else ""
        print(f"  Non rapprochés:         {', '.join(shown)}{suffix}")
    print("=============================\n")

"""Moteur de rapprochement : une correspondance par ligne source."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence

from specimatch.matching.schema import CandidateSpecimen, MatchResult, MatchType
from specimatch.matching.strategies import STRATEGIES, Strategy
from specimatch.normalize import safe_str

logger = logging.getLogger(__name__)


def build_metadata_patch(row: Mapping[str, str], match_column: str) -> dict[str, str]:
    """Copie toutes les colonnes de la ligne sauf la colonne de correspondance (valeurs vides conservées)."""
    return {key: safe_str(val) for key, val in row.items() if key != match_column}


class IdentifierMatcher:
    """Applique les stratégies ordonnées ; la première qui réussit l'emporte."""

    def __init__(self, strategies: Sequence[tuple[MatchType, Strategy]] = STRATEGIES) -> None:
        self.strategies = tuple(strategies)

    def match_row(
        self,
        row: Mapping[str, str],
        candidates: Sequence[CandidateSpecimen],
        match_column: str,
    ) -> MatchResult:
        """Rapproche une ligne. Ne lève jamais pour une donnée absente ou sans correspondance."""
        raw = row.get(match_column)
        value = safe_str(raw) if raw is not None else None
        patch = build_metadata_patch(row, match_column)

        if value:
            for match_type, strategy in self.strategies:
                found = strategy(value, candidates)
                if found is not None:
                    logger.debug("Ligne %r -> %r (%s)", value, found.id, match_type.value)
                    return MatchResult(row, value, found, match_type, patch)

        logger.debug("Ligne %r -> aucune correspondance", value)
        return MatchResult(row, value, None, MatchType.NONE, patch)

    def match_all(
        self,
        source_rows: Iterable[Mapping[str, str]],
        candidates: Iterable[CandidateSpecimen],
        match_column: str,
    ) -> list[MatchResult]:
        """
        Rapproche toutes les lignes source.

        Fonction pure : mêmes entrées (ordre des candidats compris) -> même sortie.
        Les égalités entre candidats sont tranchées par l'ordre du registre.

        Returns:
            Liste de MatchResult, une par ligne source, dans l'ordre source.
        """
        pool = tuple(candidates)
        results = [self.match_row(row, pool, match_column) for row in source_rows]
        n_matched = sum(1 for r in results if r.is_matched)
        logger.info("Rapprochement: %d/%d lignes rapprochées (%d candidats)", n_matched, len(results), len(pool))
        return results


def match_all(
    source_rows: Iterable[Mapping[str, str]],
    candidates: Iterable[CandidateSpecimen],
    match_column: str,
) -> list[MatchResult]:
    """Raccourci : rapprochement avec les stratégies par défaut."""
    return IdentifierMatcher().match_all(source_rows, candidates, match_column)

"""Schémas et types pour le rapprochement."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any


class MatchType(str, Enum):
    """Stratégie ayant produit la correspondance."""

    EXACT = "exact"
    PARTIAL_CSV_IN_SPECIMEN = "partial_csv_in_specimen"
    PARTIAL_SPECIMEN_IN_CSV = "partial_specimen_in_csv"
    PARTIAL_NORMALIZED = "partial_normalized"
    NONE = "none"

    @property
    def confidence(self) -> Confidence:
        if self is MatchType.EXACT:
            return Confidence.HIGH
        if self is MatchType.NONE:
            return Confidence.NONE
        return Confidence.MEDIUM


class Confidence(str, Enum):
    """Confiance grossière, dérivée uniquement du type de correspondance."""

    HIGH = "high"
    MEDIUM = "medium"
    NONE = "none"


@dataclass(frozen=True)
class SourceRowSet:
    """Données tabulaires parsées : en-têtes + lignes (header -> valeur texte)."""

    headers: tuple[str, ...]
    rows: tuple[Mapping[str, str], ...]

    @classmethod
    def from_records(cls, headers: list[str], records: list[dict[str, Any]]) -> SourceRowSet:
        """Construit un jeu de lignes immuable (chaque ligne est figée)."""
        rows = tuple(MappingProxyType(dict(r)) for r in records)
        return cls(headers=tuple(headers), rows=rows)

    def __iter__(self) -> Iterator[Mapping[str, str]]:
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class CandidateSpecimen:
    """Spécimen du projet éligible au rapprochement (instantané en lecture seule)."""

    id: Any
    tube_id: str | None = None
    specimen_number: str | None = None

    @classmethod
    def from_record(cls, d: Mapping[str, Any]) -> CandidateSpecimen:
        """Construit un candidat depuis un enregistrement API ou fichier (snake_case ou camelCase)."""
        tube_id = d.get("tube_id", d.get("tubeId"))
        specimen_number = d.get("specimen_number", d.get("specimenNumber"))
        return cls(
            id=d["id"],
            tube_id=_optional_str(tube_id),
            specimen_number=_optional_str(specimen_number),
        )

    def __repr__(self) -> str:
        return f"CandidateSpecimen(id={self.id!r}, tube_id={self.tube_id!r})"


def _optional_str(val: Any) -> str | None:
    if val is None or (isinstance(val, float) and val != val):
        return None
    return str(val)


@dataclass(frozen=True)
class MatchResult:
    """Résultat de rapprochement pour une ligne source."""

    source_row: Mapping[str, str]
    source_identifier: str | None
    matched_candidate: CandidateSpecimen | None
    match_type: MatchType
    metadata_patch: Mapping[str, str] = field(default_factory=dict)

    @property
    def confidence(self) -> Confidence:
        return self.match_type.confidence

    @property
    def is_matched(self) -> bool:
        return self.matched_candidate is not None

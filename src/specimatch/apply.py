"""Application des métadonnées aux spécimens rapprochés, par lots."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from specimatch.config import DEFAULT_BATCH_SIZE, NoMatchedRowsError, SpecimenStoreError
from specimatch.matching.schema import CandidateSpecimen, MatchResult
from specimatch.stores import SpecimenStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class ErrorReason(str, Enum):
    """Catégorie d'échec, pour le rapport agrégé uniquement."""

    CONSTRAINT_VIOLATION = "constraint_violation"
    INVALID_METADATA = "invalid_metadata"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    UNKNOWN = "unknown"

    @property
    def label(self) -> str:
        return _REASON_LABELS[self]


_REASON_LABELS = {
    ErrorReason.CONSTRAINT_VIOLATION: "Database constraint violation",
    ErrorReason.INVALID_METADATA: "Invalid metadata format",
    ErrorReason.NOT_FOUND: "Specimen not found",
    ErrorReason.PERMISSION_DENIED: "Permission denied",
    ErrorReason.UNKNOWN: "Unknown error",
}


def error_message(error: BaseException | Any) -> str:
    """Extrait le message d'une erreur (payload texte ou JSON, sinon str(exc))."""
    payload = error.payload if isinstance(error, SpecimenStoreError) else error
    if isinstance(payload, str):
        return payload
    if isinstance(payload, dict):
        for key in ("message", "msg", "error"):
            val = payload.get(key)
            if isinstance(val, str) and val:
                return val
    elif payload is not None:
        return str(payload)
    # payload muet : on retombe sur le message de l'exception
    return str(error) if isinstance(error, BaseException) else ""


def classify_error(error: BaseException | Any) -> ErrorReason:
    """Classe une erreur d'écriture par recherche de sous-chaînes connues (insensible à la casse)."""
    msg = error_message(error).lower()
    if "foreign key" in msg or "constraint" in msg:
        return ErrorReason.CONSTRAINT_VIOLATION
    if "metadata" in msg and "valid" in msg:
        return ErrorReason.INVALID_METADATA
    if "not found" in msg:
        return ErrorReason.NOT_FOUND
    if "authorization" in msg or "denied" in msg:
        return ErrorReason.PERMISSION_DENIED
    return ErrorReason.UNKNOWN


class CancellationToken:
    """Drapeau d'annulation partageable entre threads ; vérifié avant chaque lot."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class ApplyError:
    """Échec d'écriture pour un spécimen."""

    specimen: CandidateSpecimen
    reason: ErrorReason
    message: str
    result: MatchResult

    def __repr__(self) -> str:
        return f"ApplyError(specimen={self.specimen.id!r}, reason={self.reason.value})"


@dataclass
class ApplyOutcome:
    """Bilan d'une exécution de apply (non persisté)."""

    success_count: int = 0
    errors: list[ApplyError] = field(default_factory=list)
    cancelled: bool = False
    not_attempted: list[MatchResult] = field(default_factory=list)

    @property
    def failed_results(self) -> list[MatchResult]:
        """Sous-ensemble à relancer : échecs puis lignes non envoyées (annulation)."""
        return [e.result for e in self.errors] + list(self.not_attempted)


def top_error_reasons(errors: Sequence[ApplyError], limit: int | None = None) -> list[tuple[ErrorReason, int]]:
    """Compte les erreurs par catégorie, par fréquence décroissante."""
    counts = Counter(e.reason for e in errors)
    ranked = counts.most_common()
    return ranked[:limit] if limit is not None else ranked


def describe_outcome(outcome: ApplyOutcome) -> str:
    """Message utilisateur résumant le bilan."""
    if not outcome.errors and not outcome.cancelled:
        return f"Successfully updated {outcome.success_count} specimens with metadata"
    msg = f"Updated {outcome.success_count} specimens successfully"
    if outcome.errors:
        issues = ", ".join(f"{r.label} ({n})" for r, n in top_error_reasons(outcome.errors, 2))
        msg += f", but {len(outcome.errors)} failed. Common issues: {issues}."
    else:
        msg += "."
    if outcome.cancelled:
        msg += f" Cancelled before {len(outcome.not_attempted)} specimens were sent."
    return msg


def _batches(items: Sequence[MatchResult], size: int) -> list[Sequence[MatchResult]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class MetadataApplier:
    """Écrit les patchs de métadonnées via un SpecimenStore, lot par lot."""

    def __init__(self, store: SpecimenStore, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size doit être >= 1 (got {batch_size})")
        self.store = store
        self.batch_size = batch_size

    async def apply(
        self,
        matched_results: Sequence[MatchResult],
        progress: ProgressCallback | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> ApplyOutcome:
        """
        Applique les patchs, un appel par spécimen, concurrents au sein d'un lot.

        Chaque lot est attendu en entier (succès ou échec) avant le suivant :
        un échec n'interrompt ni ses voisins ni les lots suivants. Aucun retry.

        Raises:
            NoMatchedRowsError: Si matched_results est vide ou contient une ligne non rapprochée.
        """
        items = list(matched_results)
        if not items:
            raise NoMatchedRowsError("Aucun spécimen rapproché : rien à appliquer")
        if any(r.matched_candidate is None for r in items):
            raise NoMatchedRowsError("apply() n'accepte que des lignes rapprochées")

        total = len(items)
        processed = 0
        outcome = ApplyOutcome()
        batches = _batches(items, self.batch_size)

        for index, batch in enumerate(batches):
            if cancel_token is not None and cancel_token.cancelled:
                outcome.cancelled = True
                outcome.not_attempted = [r for b in batches[index:] for r in b]
                logger.info("Application annulée : %d spécimens non envoyés", len(outcome.not_attempted))
                break

            settled = await asyncio.gather(
                *(self._update(r) for r in batch),
                return_exceptions=True,
            )
            for result, error in zip(batch, settled):
                if not isinstance(error, BaseException):
                    outcome.success_count += 1
                    continue
                if not isinstance(error, Exception):
                    # CancelledError / KeyboardInterrupt : ne pas masquer
                    raise error
                specimen = result.matched_candidate
                reason = classify_error(error)
                message = error_message(error) or reason.label
                logger.warning("Échec métadonnées spécimen %r: %s", specimen.id, message)
                outcome.errors.append(ApplyError(specimen, reason, message, result))

            processed += len(batch)
            logger.info("Lot %d/%d : %d/%d spécimens traités", index + 1, len(batches), processed, total)
            self._notify(progress, processed, total)

        return outcome

    async def _update(self, result: MatchResult) -> None:
        await self.store.update_metadata(result.matched_candidate.id, dict(result.metadata_patch))

    @staticmethod
    def _notify(progress: ProgressCallback | None, processed: int, total: int) -> None:
        if progress is None:
            return
        try:
            progress(processed, total)
        except Exception:
            logger.exception("Erreur dans le callback de progression (ignorée)")

"""Workflow d'import de métadonnées : machine à états sans couche d'affichage."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from specimatch.apply import ApplyOutcome, CancellationToken, MetadataApplier, ProgressCallback
from specimatch.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_SAMPLE_SIZE,
    EmptySourceError,
    MissingMatchColumnError,
    NoCandidatesError,
    NoMatchedRowsError,
    WorkflowStateError,
)
from specimatch.matching.matcher import IdentifierMatcher
from specimatch.matching.schema import CandidateSpecimen, MatchResult, SourceRowSet
from specimatch.stores import SpecimenRegistry, SpecimenStore
from specimatch.summary import ValidationSummary, summarize

logger = logging.getLogger(__name__)


class WorkflowState(str, Enum):
    IDLE = "idle"
    ROWS_PARSED = "rows_parsed"
    COLUMN_SELECTED = "column_selected"
    MATCHED = "matched"
    REVIEWED = "reviewed"
    APPLYING = "applying"
    APPLIED = "applied"
    PARTIALLY_FAILED = "partially_failed"


_COLUMN_STATES = frozenset(
    {WorkflowState.ROWS_PARSED, WorkflowState.COLUMN_SELECTED, WorkflowState.MATCHED, WorkflowState.REVIEWED}
)
_MATCH_STATES = frozenset({WorkflowState.COLUMN_SELECTED, WorkflowState.MATCHED, WorkflowState.REVIEWED})


class UploadSession:
    """
    Session d'import : fichier parsé -> colonne -> rapprochement -> revue -> application.

    Les transitions sont déclenchées par des opérations nommées ; une opération
    hors de son état de départ lève WorkflowStateError.
    """

    def __init__(
        self,
        registry: SpecimenRegistry,
        store: SpecimenStore,
        project_id: Any,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
        matcher: IdentifierMatcher | None = None,
    ) -> None:
        self.registry = registry
        self.project_id = project_id
        self.sample_size = sample_size
        self.matcher = matcher or IdentifierMatcher()
        self.applier = MetadataApplier(store, batch_size=batch_size)

        self.state = WorkflowState.IDLE
        self.rows: SourceRowSet | None = None
        self.match_column: str | None = None
        self.candidates: list[CandidateSpecimen] | None = None
        self.results: list[MatchResult] = []
        self.outcome: ApplyOutcome | None = None
        self._pending: list[MatchResult] = []
        self._cancel_token: CancellationToken | None = None

    def _require(self, allowed: frozenset[WorkflowState] | set[WorkflowState], operation: str) -> None:
        if self.state not in allowed:
            raise WorkflowStateError(f"{operation}() impossible dans l'état {self.state.value}")

    def _clear_results(self) -> None:
        self.results = []
        self.outcome = None
        self._pending = []

    def load_rows(self, rows: SourceRowSet) -> None:
        if self.state is WorkflowState.APPLYING:
            raise WorkflowStateError("load_rows() impossible pendant l'application")
        if len(rows) == 0:
            raise EmptySourceError("Le fichier doit contenir au moins une ligne de données")
        self.rows = rows
        self.match_column = None
        self._clear_results()
        self.state = WorkflowState.ROWS_PARSED

    def select_column(self, column: str) -> None:
        self._require(_COLUMN_STATES, "select_column")
        if not column:
            raise MissingMatchColumnError("Sélectionnez une colonne de correspondance")
        if column not in self.rows.headers:
            raise MissingMatchColumnError(f"Colonne {column!r} absente des en-têtes: {list(self.rows.headers)}")
        self.match_column = column
        self._clear_results()
        self.state = WorkflowState.COLUMN_SELECTED

    async def fetch_candidates(self) -> list[CandidateSpecimen]:
        """Charge (une seule fois) les spécimens candidats du projet."""
        if self.candidates is None:
            self.candidates = list(await self.registry.get_candidates(self.project_id))
        return self.candidates

    async def run_match(self) -> ValidationSummary:
        self._require(_MATCH_STATES, "run_match")
        candidates = await self.fetch_candidates()
        if not candidates:
            raise NoCandidatesError(f"Aucun spécimen dans le projet {self.project_id}")
        self._clear_results()
        self.results = self.matcher.match_all(self.rows, candidates, self.match_column)
        self.state = WorkflowState.MATCHED
        return self.summary

    @property
    def summary(self) -> ValidationSummary | None:
        """Synthèse recalculée à partir des résultats courants."""
        if self.state in (WorkflowState.IDLE, WorkflowState.ROWS_PARSED, WorkflowState.COLUMN_SELECTED):
            return None
        return summarize(self.results, sample_size=self.sample_size)

    @property
    def matched_results(self) -> list[MatchResult]:
        return [r for r in self.results if r.is_matched]

    def confirm_review(self) -> ValidationSummary:
        self._require({WorkflowState.MATCHED}, "confirm_review")
        summary = self.summary
        if summary.matched_count == 0:
            raise NoMatchedRowsError("Aucun spécimen rapproché : impossible d'appliquer les métadonnées")
        self._pending = self.matched_results
        self.state = WorkflowState.REVIEWED
        return summary

    async def apply(self, progress: ProgressCallback | None = None) -> ApplyOutcome:
        self._require({WorkflowState.REVIEWED}, "apply")
        return await self._run_apply(progress)

    async def retry_failed(self, progress: ProgressCallback | None = None) -> ApplyOutcome:
        """Relance l'application sur le seul sous-ensemble en échec."""
        self._require({WorkflowState.PARTIALLY_FAILED}, "retry_failed")
        return await self._run_apply(progress)

    def cancel(self) -> None:
        """Aucun nouveau lot n'est envoyé ; les appels en cours se terminent."""
        self._require({WorkflowState.APPLYING}, "cancel")
        self._cancel_token.cancel()

    def reset(self) -> None:
        if self.state is WorkflowState.APPLYING:
            raise WorkflowStateError("reset() impossible pendant l'application")
        self.rows = None
        self.match_column = None
        self._clear_results()
        self.state = WorkflowState.IDLE

    async def _run_apply(self, progress: ProgressCallback | None) -> ApplyOutcome:
        self.state = WorkflowState.APPLYING
        self._cancel_token = CancellationToken()
        try:
            outcome = await self.applier.apply(self._pending, progress, cancel_token=self._cancel_token)
        except BaseException:
            self.state = WorkflowState.REVIEWED if self.outcome is None else WorkflowState.PARTIALLY_FAILED
            raise
        finally:
            self._cancel_token = None

        self.outcome = outcome
        self._pending = outcome.failed_results
        if self._pending:
            self.state = WorkflowState.PARTIALLY_FAILED
        else:
            self.state = WorkflowState.APPLIED
        logger.info(
            "Application terminée : %d succès, %d échecs, état %s",
            outcome.success_count,
            len(outcome.errors),
            self.state.value,
        )
        return outcome

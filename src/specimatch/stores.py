"""Registre et stockage des spécimens : interfaces, implémentations mémoire et HTTP."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

import httpx

from specimatch.config import DEFAULT_TIMEOUT, SpecimenStoreError
from specimatch.matching.schema import CandidateSpecimen

logger = logging.getLogger(__name__)


class SpecimenRegistry(Protocol):
    """Fournit les spécimens candidats d'un projet (lecture seule)."""

    async def get_candidates(self, project_id: Any) -> list[CandidateSpecimen]: ...


class SpecimenStore(Protocol):
    """Persiste un patch de métadonnées pour un spécimen (appels concurrents sûrs pour des id distincts)."""

    async def update_metadata(self, specimen_id: Any, metadata_patch: Mapping[str, str]) -> None: ...


class InMemorySpecimenRegistry:
    """Registre en mémoire : {project_id: candidats}, ou une liste unique pour tout projet."""

    def __init__(self, candidates: Mapping[Any, Sequence[CandidateSpecimen]] | Sequence[CandidateSpecimen]) -> None:
        if isinstance(candidates, Mapping):
            self._by_project = {k: list(v) for k, v in candidates.items()}
            self._all = None
        else:
            self._by_project = {}
            self._all = list(candidates)

    async def get_candidates(self, project_id: Any) -> list[CandidateSpecimen]:
        if self._all is not None:
            return list(self._all)
        return list(self._by_project.get(project_id, []))


class InMemorySpecimenStore:
    """
    Stockage en mémoire des métadonnées par spécimen.

    failures: {specimen_id: exception} pour simuler des échecs ciblés.
    """

    def __init__(
        self,
        known_ids: Sequence[Any] | None = None,
        *,
        failures: Mapping[Any, Exception] | None = None,
    ) -> None:
        self.known_ids = set(known_ids) if known_ids is not None else None
        self.metadata: dict[Any, dict[str, str]] = {}
        self.failures = dict(failures or {})
        self.calls: list[tuple[Any, dict[str, str]]] = []

    async def update_metadata(self, specimen_id: Any, metadata_patch: Mapping[str, str]) -> None:
        self.calls.append((specimen_id, dict(metadata_patch)))
        if specimen_id in self.failures:
            raise self.failures[specimen_id]
        if self.known_ids is not None and specimen_id not in self.known_ids:
            raise SpecimenStoreError(f"Specimen {specimen_id} not found", status_code=404)
        # Fusion des patchs ; la route PUT /api/specimens/{id}/metadata remplace la colonne entière
        self.metadata.setdefault(specimen_id, {}).update(metadata_patch)


def _error_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text or response.reason_phrase


class _HttpClientMixin:
    """Client httpx partagé (fourni par l'appelant ou créé à la demande)."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if client is None:
            if not base_url:
                raise ValueError("base_url requis sans client httpx")
            headers = {"Authorization": f"Bearer {token}"} if token else {}
            client = httpx.AsyncClient(base_url=base_url.rstrip("/"), headers=headers, timeout=timeout)
            self._owns_client = True
        else:
            self._owns_client = False
        self.client = client

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


class HttpSpecimenRegistry(_HttpClientMixin):
    """Registre via l'API REST : GET /api/projects/{id}/specimens."""

    async def get_candidates(self, project_id: Any) -> list[CandidateSpecimen]:
        url = f"/api/projects/{project_id}/specimens"
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as e:
            raise SpecimenStoreError(f"Impossible de charger les spécimens du projet {project_id}: {e}") from e
        if response.is_error:
            raise SpecimenStoreError(
                f"Chargement des spécimens du projet {project_id} refusé ({response.status_code})",
                payload=_error_payload(response),
                status_code=response.status_code,
            )
        try:
            data = response.json()
            records = data.get("specimens", []) if isinstance(data, dict) else data
            if not isinstance(records, list):
                raise TypeError(f"liste de spécimens attendue, reçu {type(records).__name__}")
            candidates = [CandidateSpecimen.from_record(r) for r in records]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise SpecimenStoreError(
                f"Réponse invalide pour les spécimens du projet {project_id}: {e}",
                payload=response.text,
                status_code=response.status_code,
            ) from e
        logger.info("Projet %s : %d spécimens candidats", project_id, len(candidates))
        return candidates


class HttpSpecimenStore(_HttpClientMixin):
    """Stockage via l'API REST : PUT /api/specimens/{id}/metadata avec {"metadata": patch}."""

    async def update_metadata(self, specimen_id: Any, metadata_patch: Mapping[str, str]) -> None:
        url = f"/api/specimens/{specimen_id}/metadata"
        try:
            response = await self.client.put(url, json={"metadata": dict(metadata_patch)})
        except httpx.HTTPError as e:
            raise SpecimenStoreError(f"Erreur réseau pour le spécimen {specimen_id}: {e}") from e
        if response.is_error:
            raise SpecimenStoreError(
                f"Mise à jour du spécimen {specimen_id} refusée ({response.status_code})",
                payload=_error_payload(response),
                status_code=response.status_code,
            )

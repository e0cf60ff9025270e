"""Configuration, exceptions et chargement du fichier config JSON."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_BATCH_SIZE = 10
DEFAULT_SAMPLE_SIZE = 3
DEFAULT_TIMEOUT = 30.0


class SpecimatchError(Exception):
    """Exception de base pour Specimatch."""


class ConfigError(SpecimatchError, ValueError):
    """Erreur de validation de la configuration."""


class ConfigFileError(SpecimatchError):
    """Erreur de chargement du fichier de configuration (fichier absent, JSON invalide)."""


class ReconcileInputError(SpecimatchError, ValueError):
    """Entrée insuffisante pour poursuivre le rapprochement (à signaler avant toute écriture)."""


class MissingMatchColumnError(ReconcileInputError):
    """Aucune colonne de correspondance sélectionnée, ou colonne absente des en-têtes."""


class NoCandidatesError(ReconcileInputError):
    """Le projet ne contient aucun spécimen candidat."""


class NoMatchedRowsError(ReconcileInputError):
    """Aucune ligne n'a été rapprochée d'un spécimen."""


class EmptySourceError(ReconcileInputError):
    """Le fichier source ne contient aucune ligne de données."""


class WorkflowStateError(SpecimatchError):
    """Opération interdite dans l'état courant du workflow."""


class SpecimenStoreError(SpecimatchError):
    """
    Échec d'un appel au registre ou au stockage des spécimens.

    payload conserve le corps d'erreur renvoyé (texte ou objet JSON) pour la classification.
    """

    def __init__(self, message: str, *, payload: Any = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.payload = payload if payload is not None else message
        self.status_code = status_code


@dataclass
class ReconcileConfig:
    """Configuration d'un import de métadonnées."""

    source_file: str = ""
    sheet: str | None = None  # None = première feuille
    header_row: int = 1
    match_column: str = ""
    project_id: str | None = None

    # Registre hors-ligne (CSV/XLSX/JSON) ou API
    candidates_file: str | None = None
    api_url: str | None = None
    timeout: float = DEFAULT_TIMEOUT

    batch_size: int = DEFAULT_BATCH_SIZE
    sample_size: int = DEFAULT_SAMPLE_SIZE

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ReconcileConfig:
        source_file = d.get("source_file", "")
        match_column = d.get("match_column", "")
        header_row = int(d.get("header_row", 1))
        batch_size = int(d.get("batch_size", DEFAULT_BATCH_SIZE))
        sample_size = int(d.get("sample_size", DEFAULT_SAMPLE_SIZE))
        timeout = float(d.get("timeout", DEFAULT_TIMEOUT))
        project_id = d.get("project_id")
        candidates_file = d.get("candidates_file")
        api_url = d.get("api_url")

        if not source_file:
            raise ConfigError("source_file requis")
        if not match_column or not str(match_column).strip():
            raise ConfigError("match_column requis")
        if header_row < 1:
            raise ConfigError(f"header_row doit être >= 1 (got {header_row})")
        if batch_size < 1:
            raise ConfigError(f"batch_size doit être >= 1 (got {batch_size})")
        if sample_size < 0:
            raise ConfigError(f"sample_size doit être >= 0 (got {sample_size})")
        if timeout <= 0:
            raise ConfigError(f"timeout doit être > 0 (got {timeout})")
        if not candidates_file and not api_url:
            raise ConfigError("candidates_file ou api_url requis")
        if api_url and project_id in (None, ""):
            raise ConfigError("project_id requis avec api_url")

        return cls(
            source_file=source_file,
            sheet=d.get("sheet"),
            header_row=header_row,
            match_column=str(match_column),
            project_id=str(project_id) if project_id not in (None, "") else None,
            candidates_file=candidates_file,
            api_url=api_url.rstrip("/") if api_url else None,
            timeout=timeout,
            batch_size=batch_size,
            sample_size=sample_size,
        )

    @classmethod
    def load(cls, path: str | Path) -> ReconcileConfig:
        """
        Charge la configuration depuis un fichier JSON.

        Raises:
            ConfigFileError: Si le fichier est absent ou le JSON invalide.
            ConfigError: Si la configuration est invalide.
        """
        path = Path(path).resolve()
        if not path.exists():
            raise ConfigFileError(f"Fichier de configuration introuvable: {path}")

        try:
            with open(path, encoding="utf-8") as f:
                d = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigFileError(f"JSON invalide dans {path}: {e}") from e
        except OSError as e:
            raise ConfigFileError(f"Impossible de lire {path}: {e}") from e

        if not isinstance(d, dict):
            raise ConfigFileError(f"Fichier de configuration invalide: {path} doit contenir un objet JSON")

        config = cls.from_dict(d)
        config.resolve_paths(path.parent)
        return config

    def resolve_paths(self, base_dir: Path) -> None:
        """
        Résout les chemins relatifs par rapport au répertoire de base (ex. dossier du fichier config).

        Modifie source_file et candidates_file en place.
        """
        base = Path(base_dir)
        if self.source_file and not Path(self.source_file).is_absolute():
            self.source_file = str((base / self.source_file).resolve())
        if self.candidates_file and not Path(self.candidates_file).is_absolute():
            self.candidates_file = str((base / self.candidates_file).resolve())

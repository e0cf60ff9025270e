"""Specimatch - Rapprochement de métadonnées tabulaires avec les spécimens d'un projet."""

from specimatch.config import (
    ConfigError,
    ConfigFileError,
    ReconcileInputError,
    SpecimatchError,
    SpecimenStoreError,
    WorkflowStateError,
)
from specimatch.io_tables import TableFileError

__all__ = [
    "__version__",
    "SpecimatchError",
    "ConfigError",
    "ConfigFileError",
    "ReconcileInputError",
    "SpecimenStoreError",
    "TableFileError",
    "WorkflowStateError",
]

__version__ = "0.1.0"

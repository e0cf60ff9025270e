"""Normalisation des identifiants de spécimens."""

from __future__ import annotations

import re
from typing import Any

# Préfixe de position "<chiffres>_" (ex. "01_GEMM_001_12M")
_NUMERIC_PREFIX = re.compile(r"^\d+_", re.ASCII)


def safe_str(val: Any) -> str:
    """Convertit une valeur en chaîne pour affichage/stockage."""
    if val is None or (isinstance(val, float) and (val != val or val == float("inf"))):
        return ""
    return str(val)


def strip_numeric_prefix(s: str) -> str:
    """
    Retire un préfixe numérique de tête suivi d'un underscore.

    Un seul préfixe est retiré : "01_02_X" → "02_X".

    Args:
        s: Identifiant brut.

    Returns:
        Identifiant sans préfixe (inchangé si aucun préfixe).
    """
    return _NUMERIC_PREFIX.sub("", s, count=1)

"""I/O tableurs : chargement des lignes source et des spécimens candidats (CSV, TSV, Excel, JSON)."""

from __future__ import annotations

import csv
import json
from pathlib import Path

import pandas as pd

from specimatch.config import EmptySourceError, SpecimatchError
from specimatch.matching.schema import CandidateSpecimen, SourceRowSet

# Formats supportés
SUPPORTED_INPUT_EXTENSIONS = (".csv", ".tsv", ".txt", ".xlsx", ".xls", ".ods")
_DELIMITERS = [",", ";", "\t", "|"]


class TableFileError(SpecimatchError):
    """Erreur de chargement d'un fichier (fichier absent, feuille inexistante, format invalide)."""


def _get_engine(path: Path) -> str | None:
    """Retourne le moteur pandas selon l'extension, ou None pour auto."""
    suffix = path.suffix.lower()
    if suffix == ".xlsx":
        return "openpyxl"
    if suffix == ".xls":
        return "xlrd"
    if suffix == ".ods":
        return "odf"
    return None


def _is_delimited(path: Path) -> bool:
    return path.suffix.lower() in (".csv", ".tsv", ".txt")


def _detect_delimiter(path: Path, encoding: str, *, skip_rows: int = 0) -> str | None:
    """Devine le séparateur ; .tsv est toujours tabulé."""
    if path.suffix.lower() == ".tsv":
        return "\t"
    try:
        with path.open("r", encoding=encoding, errors="replace") as f:
            for _ in range(skip_rows):
                if f.readline() == "":
                    return None
            sample_lines: list[str] = []
            for line in f:
                if line.strip() == "":
                    continue
                sample_lines.append(line)
                if len(sample_lines) >= 5:
                    break
    except OSError:
        return None
    if not sample_lines:
        return None
    sample = "".join(sample_lines)
    try:
        return csv.Sniffer().sniff(sample, delimiters=_DELIMITERS).delimiter
    except csv.Error:
        first = sample_lines[0]
        counts = {d: first.count(d) for d in _DELIMITERS}
        best = max(counts, key=counts.get)
        return best if counts[best] > 0 else None


def _default_delimiter(path: Path) -> str:
    return "\t" if path.suffix.lower() in (".tsv", ".txt") else ","


def list_sheets(filepath: str | Path) -> list[str]:
    """
    Liste les noms des feuilles d'un fichier tableur.

    Un fichier délimité n'a qu'une "feuille".

    Raises:
        TableFileError: Si le fichier est absent ou illisible.
    """
    path = Path(filepath)
    if not path.exists():
        raise TableFileError(f"Fichier introuvable: {path}")
    if _is_delimited(path):
        return ["(données)"]
    try:
        engine = _get_engine(path)
        with pd.ExcelFile(path, engine=engine) as xl:
            return [str(s) for s in xl.sheet_names]
    except ImportError as e:
        raise TableFileError(f"Format {path.suffix} non disponible ({e})") from e
    except Exception as e:
        raise TableFileError(f"Impossible de lire le fichier {path}: {e}") from e


def _clean(df: pd.DataFrame) -> pd.DataFrame:
    """En-têtes et cellules en texte, rognés ; cellules manquantes -> ""."""
    df = df.fillna("")
    df.columns = [str(c).strip() for c in df.columns]
    for col in df.columns:
        df[col] = df[col].astype(str).str.strip()
    return df


def load_table(
    filepath: str | Path,
    sheet_name: str | None = None,
    *,
    header_row: int = 1,
) -> pd.DataFrame:
    """
    Charge une feuille dans un DataFrame en préservant le texte (aucune conversion numérique).

    Args:
        filepath: Chemin vers le fichier.
        sheet_name: Nom de la feuille (None = première). Ignoré pour CSV/TSV.
        header_row: Numéro de ligne (1-based) contenant les en-têtes.

    Raises:
        TableFileError: Si le fichier est absent, illisible ou si la feuille n'existe pas.
    """
    path = Path(filepath)
    if not path.exists():
        raise TableFileError(f"Fichier introuvable: {path}")

    header_idx = max(header_row - 1, 0)
    if _is_delimited(path):
        for encoding in ("utf-8", "latin-1"):
            sep = _detect_delimiter(path, encoding, skip_rows=header_idx) or _default_delimiter(path)
            try:
                df = pd.read_csv(
                    path,
                    dtype=str,
                    keep_default_na=False,
                    encoding=encoding,
                    sep=sep,
                    skiprows=range(header_idx) if header_idx else None,
                )
                return _clean(df)
            except UnicodeDecodeError:
                continue
            except pd.errors.EmptyDataError as e:
                raise TableFileError(f"Fichier vide: {path}") from e
            except Exception as e:
                raise TableFileError(
                    f"Erreur CSV {path}: {e}. Vérifiez la ligne d'en-tête et le séparateur."
                ) from e
        raise TableFileError(f"Encodage non reconnu: {path}")

    try:
        engine = _get_engine(path)
        xl = pd.ExcelFile(path, engine=engine)
    except ImportError as e:
        raise TableFileError(f"Format {path.suffix} non disponible ({e})") from e
    except Exception as e:
        raise TableFileError(f"Impossible de lire le fichier {path}: {e}") from e

    with xl:
        if sheet_name is None:
            sheet_name = str(xl.sheet_names[0])
        elif sheet_name not in xl.sheet_names:
            sheets = [str(s) for s in xl.sheet_names]
            raise TableFileError(
                f"Feuille '{sheet_name}' introuvable dans {path}. Feuilles: {', '.join(sheets)}"
            )
        try:
            df = pd.read_excel(xl, sheet_name=sheet_name, dtype=str, keep_default_na=False, header=header_idx)
        except Exception as e:
            raise TableFileError(f"Erreur feuille '{sheet_name}' dans {path}: {e}") from e
    return _clean(df)


def dataframe_to_rows(df: pd.DataFrame) -> SourceRowSet:
    """Convertit un DataFrame texte en SourceRowSet (lignes entièrement vides ignorées)."""
    headers = [str(c) for c in df.columns]
    records = [
        {h: str(v) for h, v in zip(headers, values)}
        for values in df.itertuples(index=False, name=None)
        if any(str(v).strip() for v in values)
    ]
    return SourceRowSet.from_records(headers, records)


def load_source_rows(
    filepath: str | Path,
    sheet_name: str | None = None,
    *,
    header_row: int = 1,
) -> SourceRowSet:
    """
    Charge le fichier de métadonnées à rapprocher.

    Raises:
        TableFileError: Fichier illisible.
        EmptySourceError: Aucune ligne de données après l'en-tête.
    """
    rows = dataframe_to_rows(load_table(filepath, sheet_name, header_row=header_row))
    if not rows.headers or len(rows) == 0:
        raise EmptySourceError(f"Le fichier doit contenir une ligne d'en-tête et au moins une ligne de données: {filepath}")
    return rows


def load_candidates(filepath: str | Path) -> list[CandidateSpecimen]:
    """
    Charge les spécimens candidats depuis un export (JSON, CSV ou Excel).

    Le JSON peut être une liste d'objets ou {"specimens": [...]}. Colonnes attendues :
    id, tube_id, specimen_number.
    """
    path = Path(filepath)
    if not path.exists():
        raise TableFileError(f"Fichier introuvable: {path}")

    if path.suffix.lower() == ".json":
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise TableFileError(f"JSON invalide dans {path}: {e}") from e
        records = data.get("specimens", []) if isinstance(data, dict) else data
        if not isinstance(records, list):
            raise TableFileError(f"Liste de spécimens attendue dans {path}")
    else:
        df = load_table(path)
        if "id" not in df.columns:
            raise TableFileError(f"Colonne 'id' absente de {path}")
        records = [
            {k: (v if v != "" else None) for k, v in rec.items()}
            for rec in df.to_dict(orient="records")
        ]

    try:
        return [CandidateSpecimen.from_record(r) for r in records]
    except (KeyError, TypeError, AttributeError) as e:
        raise TableFileError(f"Enregistrement de spécimen invalide dans {path}: {e}") from e

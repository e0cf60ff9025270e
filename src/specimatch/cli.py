"""Interface en ligne de commande Specimatch."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

import httpx

from specimatch import __version__
from specimatch.apply import describe_outcome, top_error_reasons
from specimatch.config import DEFAULT_BATCH_SIZE, ConfigError, ReconcileConfig, SpecimatchError
from specimatch.io_tables import list_sheets, load_candidates, load_source_rows, load_table
from specimatch.stores import (
    HttpSpecimenRegistry,
    HttpSpecimenStore,
    InMemorySpecimenRegistry,
    InMemorySpecimenStore,
    SpecimenRegistry,
    SpecimenStore,
)
from specimatch.summary import build_details_df, print_summary_console
from specimatch.workflow import UploadSession, WorkflowState

logger = logging.getLogger(__name__)

TOKEN_ENV = "SPECIMATCH_API_TOKEN"
DETAILS_PREVIEW_ROWS = 20


def cmd_columns(filepath: str, sheet: str | None = None, header_row: int = 1) -> int:
    """Liste les en-têtes (colonnes candidates pour la correspondance)."""
    sheets = list_sheets(filepath)
    if sheet is None and len(sheets) > 1:
        print(f"Feuilles dans {filepath}: {', '.join(sheets)} (première utilisée)")
    df = load_table(filepath, sheet, header_row=header_row)
    print(f"Colonnes dans {filepath}:")
    for col in df.columns:
        print(f"  - {col}")
    return 0


def _print_details(session: UploadSession) -> None:
    df = build_details_df(session.summary)
    matched = df[df["matched"].astype(bool)]
    if matched.empty:
        return
    print(matched.head(DETAILS_PREVIEW_ROWS).to_string(index=False))
    if len(matched) > DETAILS_PREVIEW_ROWS:
        print(f"... et {len(matched) - DETAILS_PREVIEW_ROWS} autres correspondances")


async def _prepare_session(
    config: ReconcileConfig,
    registry: SpecimenRegistry,
    store: SpecimenStore,
) -> UploadSession:
    session = UploadSession(
        registry,
        store,
        config.project_id,
        batch_size=config.batch_size,
        sample_size=config.sample_size,
    )
    session.load_rows(load_source_rows(config.source_file, config.sheet, header_row=config.header_row))
    session.select_column(config.match_column)
    summary = await session.run_match()
    print_summary_console(summary)
    _print_details(session)
    return session


async def _run_match(config: ReconcileConfig) -> int:
    if not config.candidates_file:
        raise ConfigError("candidates_file requis pour match")
    registry = InMemorySpecimenRegistry(load_candidates(config.candidates_file))
    await _prepare_session(config, registry, InMemorySpecimenStore())
    print("Mode dry-run: aucune métadonnée écrite.")
    return 0


def cmd_match(config: ReconcileConfig) -> int:
    """Rapprochement seul (aucune écriture) et synthèse de validation."""
    return asyncio.run(_run_match(config))


def _print_progress(processed: int, total: int) -> None:
    print(f"  Progression: {processed}/{total} ({processed / total:.0%})")


async def _run_apply(config: ReconcileConfig, token: str | None, assume_yes: bool) -> int:
    if not config.api_url:
        raise ConfigError("api_url requis pour apply")
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    async with httpx.AsyncClient(base_url=config.api_url, headers=headers, timeout=config.timeout) as client:
        registry: SpecimenRegistry
        if config.candidates_file:
            registry = InMemorySpecimenRegistry(load_candidates(config.candidates_file))
        else:
            registry = HttpSpecimenRegistry(client=client)
        session = await _prepare_session(config, registry, HttpSpecimenStore(client=client))
        summary = session.confirm_review()

        if not assume_yes:
            answer = input(f"Mettre à jour {summary.matched_count} spécimens ? [o/N] ").strip().lower()
            if answer not in ("o", "oui", "y", "yes"):
                print("Abandon: aucune métadonnée écrite.")
                return 0

        outcome = await session.apply(_print_progress)

    print(describe_outcome(outcome))
    for reason, count in top_error_reasons(outcome.errors):
        print(f"  {reason.label}: {count}")
    for err in outcome.errors:
        logger.debug("Spécimen %r: %s", err.specimen.id, err.message)
    return 0 if session.state is WorkflowState.APPLIED else 1


def cmd_apply(config: ReconcileConfig, *, assume_yes: bool = False) -> int:
    """Rapprochement, confirmation puis écriture des métadonnées via l'API."""
    return asyncio.run(_run_apply(config, os.environ.get(TOKEN_ENV), assume_yes))


def _config_from_args(args: argparse.Namespace) -> ReconcileConfig:
    if args.config:
        return ReconcileConfig.load(args.config)
    if not args.file or not args.column:
        raise ConfigError("--config, ou FILE avec --column, requis")
    return ReconcileConfig.from_dict(
        {
            "source_file": args.file,
            "sheet": args.sheet,
            "match_column": args.column,
            "candidates_file": args.candidates,
            "api_url": getattr(args, "api_url", None),
            "project_id": getattr(args, "project", None),
            "batch_size": getattr(args, "batch_size", None) or DEFAULT_BATCH_SIZE,
        }
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="specimatch",
        description="Rapprochement d'un tableur de métadonnées avec les spécimens d'un projet",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", "-v", action="store_true", help="Journalisation détaillée")

    subparsers = parser.add_subparsers(dest="command", help="Commandes")

    p_cols = subparsers.add_parser("columns", help="Lister les colonnes d'un fichier")
    p_cols.add_argument("file", help="Fichier CSV/TSV/xlsx")
    p_cols.add_argument("--sheet", help="Feuille (défaut: première)")
    p_cols.add_argument("--header-row", type=int, default=1, help="Ligne d'en-tête (1-based)")

    for name, help_text in (("match", "Rapprocher sans écrire (dry-run)"), ("apply", "Rapprocher puis écrire")):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("file", nargs="?", help="Fichier de métadonnées")
        p.add_argument("--config", "-c", help="Fichier config JSON")
        p.add_argument("--column", help="Colonne contenant les identifiants de spécimens")
        p.add_argument("--sheet", help="Feuille (défaut: première)")
        p.add_argument("--candidates", help="Export des spécimens (JSON/CSV/xlsx)")
        if name == "apply":
            p.add_argument("--api-url", help="URL de l'API")
            p.add_argument("--project", help="Identifiant du projet")
            p.add_argument("--batch-size", type=int, help="Taille des lots")
            p.add_argument("--yes", "-y", action="store_true", help="Ne pas demander de confirmation")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )

    try:
        if args.command == "columns":
            return cmd_columns(args.file, args.sheet, args.header_row)
        if args.command == "match":
            return cmd_match(_config_from_args(args))
        if args.command == "apply":
            return cmd_apply(_config_from_args(args), assume_yes=args.yes)
    except SpecimatchError as e:
        print(f"Erreur: {e}")
        return 1

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())

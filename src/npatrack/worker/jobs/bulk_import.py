"""Job entrypoint that imports an NPA workbook and assigns the free rows.

Usage::

    npatrack-import data/npa.xlsx --owner owner-42 --branch "Main Branch"
    npatrack-import --persisted-branch "Main Branch" --owner owner-42
    npatrack-import --write-template debt_recovery_template.xlsx

Exit codes: 0 success, 1 failure, 2 when the create step rejected some rows.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Sequence

from npatrack.client.api import RecoveryApiClient
from npatrack.errors import AssignmentError, NpaTrackError, ValidationError
from npatrack.observability import get_observability
from npatrack.services.assignment.orchestrator import AssignmentOrchestrator, AssignmentOutcome, AssignmentPhase
from npatrack.services.customers.models import text_value
from npatrack.services.imports.normalizer import adapt_legacy_record, normalize_rows
from npatrack.services.imports.spreadsheet import read_workbook_rows, write_template
from npatrack.services.imports.workspace import ImportWorkspace
from npatrack.settings import Settings, get_settings

LOGGER = logging.getLogger("npatrack.worker.jobs.bulk_import")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_PARTIAL_CREATE = 2


def _configure_logging() -> None:
    level_name = os.getenv("NPATRACK_RUNTIME__LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import an NPA workbook and assign unassigned customers.")
    parser.add_argument("source", nargs="?", help="Workbook (.xlsx) or JSON list of records; defaults to cached rows")
    parser.add_argument("--owner", help="Owner id to assign the selected customers to")
    parser.add_argument("--branch", help="Assign every staged row of this branch")
    parser.add_argument(
        "--select",
        action="append",
        default=[],
        metavar="KEY",
        help="Record id or account number to assign (repeatable)",
    )
    parser.add_argument("--persisted-branch", help="Assign already-persisted records of this branch")
    parser.add_argument("--reassign", action="store_true", help="Also move records held by another owner")
    parser.add_argument("--workspace", type=Path, help="Workspace file (defaults to ingestion.workspace_path)")
    parser.add_argument("--dry-run", action="store_true", help="Report the unassigned rows without writing")
    parser.add_argument("--write-template", type=Path, metavar="PATH", help="Write a sample workbook and exit")
    return parser.parse_args(argv)


def _build_client(settings: Settings) -> RecoveryApiClient:
    return RecoveryApiClient(settings=settings)


def _load_source(source: Path, settings: Settings) -> List[Dict[str, Any]]:
    if source.suffix.lower() == ".json":
        with source.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        if not isinstance(data, list):
            raise ValidationError(f"{source} must contain a JSON list of records")
        return [adapt_legacy_record(item) for item in data if isinstance(item, dict)]
    rows = read_workbook_rows(source)
    return normalize_rows(
        rows,
        sequence_column=settings.ingestion.sequence_column,
        header_label=settings.ingestion.header_label,
    )


def _select(rows: Sequence[Dict[str, Any]], keys: Sequence[str]) -> List[Dict[str, Any]]:
    wanted = {key.strip() for key in keys if key.strip()}
    return [
        row
        for row in rows
        if text_value(row.get("record_id")) in wanted or text_value(row.get("account_number")) in wanted
    ]


def _log_outcome(outcome: AssignmentOutcome) -> None:
    if outcome.phase is AssignmentPhase.PARTIAL_CREATE_FAILURE:
        LOGGER.error(
            "Create step rejected %s record(s); %s created, none assigned",
            len(outcome.failed_entries),
            outcome.success_count,
        )
        for entry in outcome.failed_entries:
            LOGGER.error(
                "  %s: %s",
                entry.customer.get("account_number") or entry.customer.get("accountNumber") or "?",
                entry.reason,
            )
        return
    LOGGER.info(
        "Assignment to %s completed: matched=%s modified=%s",
        outcome.owner_id,
        outcome.matched_count,
        outcome.modified_count,
    )


def run(args: argparse.Namespace, settings: Settings) -> int:
    """Execute the import described by ``args``; returns the exit code."""

    if args.write_template:
        path = write_template(args.write_template)
        LOGGER.info("Template written to %s", path)
        return EXIT_OK

    if (args.branch or args.select or args.persisted_branch) and not args.owner:
        LOGGER.error("--owner is required when assigning")
        return EXIT_FAILURE

    client = _build_client(settings)
    try:
        orchestrator = AssignmentOrchestrator(
            client, observability=get_observability(component="assignment", settings=settings)
        )
        workspace = ImportWorkspace(args.workspace or settings.ingestion.workspace_path)
        orchestrator.subscribe(workspace.invalidate)

        if args.persisted_branch:
            if args.dry_run:
                LOGGER.info("Dry run: would assign branch %s to %s", args.persisted_branch, args.owner)
                return EXIT_OK
            outcome = orchestrator.assign_persisted_branch(args.persisted_branch, args.owner, reassign=args.reassign)
            _log_outcome(outcome)
            return EXIT_OK

        if args.source:
            workspace.replace_rows(_load_source(Path(args.source), settings))
        rows = workspace.rows
        if not rows:
            LOGGER.error("No rows to import; pass a workbook or JSON file")
            return EXIT_FAILURE

        selection = workspace.unassigned_view(client.fetch_assigned_keys())
        LOGGER.info(
            "%s of %s rows are unassigned (%s already assigned); branches: %s",
            len(selection.records),
            len(rows),
            selection.dropped,
            ", ".join(selection.branches) or "-",
        )
        if args.dry_run or not args.owner:
            return EXIT_OK

        if args.branch:
            outcome = orchestrator.assign_staged_branch(selection.records, args.branch, args.owner)
        elif args.select:
            outcome = orchestrator.assign_selected(_select(selection.records, args.select), args.owner)
        else:
            outcome = orchestrator.assign_selected(selection.records, args.owner)
        _log_outcome(outcome)
        if outcome.phase is AssignmentPhase.PARTIAL_CREATE_FAILURE:
            return EXIT_PARTIAL_CREATE
        return EXIT_OK
    except AssignmentError as exc:
        LOGGER.error(
            "%s (owner=%s, %s record(s) left unassigned: %s)",
            exc.message,
            exc.owner_id,
            len(exc.created_ids),
            ", ".join(exc.created_ids),
        )
        return EXIT_FAILURE
    except NpaTrackError as exc:
        LOGGER.error("Import failed: %s", exc.message)
        return EXIT_FAILURE
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.error("Unable to read %s: %s", args.source, exc)
        return EXIT_FAILURE
    finally:
        client.close()


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the ``npatrack-import`` console script."""

    _configure_logging()
    args = parse_args(argv)

    try:
        settings = get_settings()
    except Exception:
        LOGGER.exception("Unable to load settings for import job")
        return EXIT_FAILURE

    return run(args, settings)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

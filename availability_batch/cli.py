"""
Operator CLI for bulk availability edits.

Usage:
    availability-batch [--database-url URL] <command> [options]

Examples:
    # Create tables and register catalog items
    availability-batch init-db --items tour-1,tour-2,tour-3

    # Preview, then apply a change set read from YAML or JSON
    availability-batch preview --items tour-1,tour-2 --change change.yaml
    availability-batch start --items @selected.txt --change change.yaml

    # Continue an interrupted operation, check on it, or cancel it
    availability-batch resume op_3f2a...
    availability-batch progress op_3f2a...
    availability-batch cancel op_3f2a...

    # Drop checkpoints whose TTL has run out
    availability-batch purge

Every command prints its result as JSON on stdout.  Errors are printed as
JSON on stderr with a non-zero exit status.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Sequence

from availability_config import get_batch_settings
from availability_config.loader import load_yaml_file
from availability_kernel.db.engine import (
    create_tables,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from availability_kernel.exceptions import AvailabilityKernelError
from availability_kernel.logging_config import configure_logging, get_logger

from availability_batch.orchestrator import BatchOrchestrator
from availability_batch.stores.sql import SqlCheckpointStore, SqlItemStore

logger = get_logger("batch.cli")

DEFAULT_DATABASE_URL = "sqlite:///availability.db"
DATABASE_URL_ENV = "AVAILABILITY_DATABASE_URL"

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_INCOMPLETE = 3


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="availability-batch",
        description="Bulk-apply availability rules to catalog items.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--database-url",
        default=os.environ.get(DATABASE_URL_ENV, DEFAULT_DATABASE_URL),
        help=f"SQLAlchemy database URL (default: ${DATABASE_URL_ENV} or {DEFAULT_DATABASE_URL}).",
    )
    parser.add_argument(
        "--settings",
        type=Path,
        default=None,
        help="Batch settings YAML (default: packaged defaults).",
    )
    parser.add_argument("--actor", default=None, help="Operator id recorded on events.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")

    sub = parser.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init-db", help="Create tables and register catalog items.")
    init.add_argument("--items", default="", help="Item ids to register (comma list or @file).")

    start = sub.add_parser("start", help="Start (or continue) a batch operation.")
    start.add_argument("--items", required=True, help="Item ids (comma list or @file).")
    start.add_argument("--change", required=True, type=Path, help="Change set file (YAML/JSON).")
    start.add_argument("--operation-id", default=None, help="Explicit operation id.")

    resume = sub.add_parser("resume", help="Resume an interrupted operation.")
    resume.add_argument("operation_id")

    cancel = sub.add_parser("cancel", help="Cancel an operation (no rollback).")
    cancel.add_argument("operation_id")

    progress = sub.add_parser("progress", help="Show progress of an operation.")
    progress.add_argument("operation_id")

    preview = sub.add_parser("preview", help="Preview a change set on sample items.")
    preview.add_argument("--items", required=True, help="Item ids (comma list or @file).")
    preview.add_argument("--change", required=True, type=Path, help="Change set file (YAML/JSON).")
    preview.add_argument("--sample-size", type=int, default=None)

    sub.add_parser("stats", help="Show configured batch limits.")
    sub.add_parser("purge", help="Delete expired checkpoints.")

    return parser.parse_args(argv)


def _read_items(source: str) -> list[str]:
    """Comma-separated ids, or ``@path`` to a file with one id per line."""
    if source.startswith("@"):
        text = Path(source[1:]).read_text()
        tokens = text.replace(",", "\n").splitlines()
    else:
        tokens = source.split(",")
    return [t.strip() for t in tokens if t.strip()]


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _run_command(args: argparse.Namespace) -> int:
    if args.command == "init-db":
        create_tables()
        items = _read_items(args.items) if args.items else []
        with session_scope() as session:
            store = SqlItemStore(session)
            for item_id in items:
                store.add_item(item_id)
        _emit({"tables_created": True, "items_registered": len(items)})
        return EXIT_OK

    settings = get_batch_settings(args.settings)
    with session_scope() as session:
        if args.command == "purge":
            _emit({"checkpoints_purged": SqlCheckpointStore(session).purge_expired()})
            return EXIT_OK

        orchestrator = BatchOrchestrator.from_session(
            session, settings=settings, actor_id=args.actor,
        )

        if args.command == "stats":
            _emit(orchestrator.get_statistics())
            return EXIT_OK

        if args.command == "progress":
            progress = orchestrator.get_progress(args.operation_id)
            _emit(progress.to_dict() if progress is not None else None)
            return EXIT_OK if progress is not None else EXIT_ERROR

        if args.command == "cancel":
            _emit(orchestrator.cancel(args.operation_id).to_dict())
            return EXIT_OK

        if args.command == "preview":
            result = orchestrator.preview(
                _read_items(args.items),
                load_yaml_file(args.change),
                sample_size=args.sample_size,
            )
            _emit(result.to_dict())
            return EXIT_OK

        if args.command == "resume":
            result = orchestrator.resume(args.operation_id)
        else:
            result = orchestrator.start(
                _read_items(args.items),
                load_yaml_file(args.change),
                operation_id=args.operation_id,
                submitted_by=args.actor,
            )
        _emit(result.to_dict())
        return EXIT_OK if result.is_complete else EXIT_INCOMPLETE


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_logging(level=logging.DEBUG if args.verbose else logging.WARNING)
    init_engine_from_url(args.database_url)
    try:
        return _run_command(args)
    except AvailabilityKernelError as exc:
        error = exc.to_dict()
        error["error"] = error.pop("code")
        print(json.dumps(error, default=str), file=sys.stderr)
        return EXIT_ERROR
    except (OSError, ValueError, KeyError) as exc:
        print(json.dumps({"error": type(exc).__name__, "message": str(exc)}), file=sys.stderr)
        return EXIT_USAGE
    finally:
        reset_engine()


if __name__ == "__main__":
    sys.exit(main())

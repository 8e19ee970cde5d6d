from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import UTC, datetime
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from marketrecon.app import (
    import_candidates,
    list_batches,
    list_change_events,
    list_entities,
    list_record_errors,
    verify_audit_log,
)
from marketrecon.config import configure_logging
from marketrecon.domain.model import ChangeAction

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from types import FrameType

    from marketrecon.app import ImportResult

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile marketplace listing snapshots")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    import_cmd = subparsers.add_parser("import", help="Reconcile a JSON Lines candidate export")
    import_cmd.add_argument("path", help="JSON Lines file, or - for stdin")
    import_cmd.add_argument(
        "--source",
        dest="source_descriptor",
        help="Free-form description of where the candidates came from",
    )
    import_cmd.add_argument(
        "--strategy",
        default="unknown",
        help="Extraction strategy recorded for candidates that name none (default: %(default)s)",
    )
    import_cmd.add_argument(
        "--batch-size",
        type=int,
        help="Records per transaction (defaults to config)",
    )
    import_cmd.add_argument(
        "--max-records",
        type=int,
        help="Stop after this many candidates",
    )
    import_cmd.add_argument(
        "--no-pass",
        action="store_true",
        help="Submit loose batches without opening a pass (no soft-delete sweep)",
    )
    import_cmd.add_argument(
        "--resume",
        action="store_true",
        help="Continue a pass left open by a failed import instead of opening a new one",
    )

    entities = subparsers.add_parser("entities", help="List canonical entities")
    activity = entities.add_mutually_exclusive_group()
    activity.add_argument("--active", dest="active", action="store_const", const=True)
    activity.add_argument("--inactive", dest="active", action="store_const", const=False)
    entities.add_argument(
        "--since",
        type=str,
        help="ISO-8601 timestamp (UTC); only entities modified at or after it",
    )

    events = subparsers.add_parser("events", help="List audit log events in commit order")
    events.add_argument("--batch", dest="batch_id", help="Filter by batch id")
    events.add_argument("--entity", dest="entity_id", help="Filter by entity id")
    events.add_argument(
        "--action",
        choices=[action.value for action in ChangeAction],
        help="Filter by action",
    )

    batches = subparsers.add_parser("batches", help="List import batches")
    batches.add_argument("--pass", dest="pass_id", help="Filter by pass id")

    errors = subparsers.add_parser("errors", help="List skipped records")
    errors.add_argument("--batch", dest="batch_id", help="Filter by batch id")
    errors.add_argument(
        "--flagged",
        action="store_true",
        help="Only records flagged for manual review",
    )

    subparsers.add_parser("verify", help="Replay the audit log against stored state")

    return parser.parse_args(list(argv))


def _parse_iso_datetime(value: str) -> datetime:
    try:
        normalized = value.strip()
        if normalized.endswith("Z"):
            normalized = normalized[:-1] + "+00:00"
        dt = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"Invalid ISO timestamp: {value}") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _validate(args: argparse.Namespace) -> None:
    if args.command != "import":
        return
    if args.batch_size is not None and args.batch_size < 1:
        raise ValueError("Batch size must be at least 1")
    if args.max_records is not None and args.max_records < 0:
        raise ValueError("Max records must be non-negative")
    if args.no_pass and args.resume:
        raise ValueError("--resume only applies to pass imports")


def _emit(rows: Iterable[dict[str, object]]) -> None:
    for row in rows:
        sys.stdout.write(json.dumps(row, default=str, sort_keys=True) + "\n")


def _report_import(result: ImportResult) -> None:
    for batch in result.batches:
        log.info(
            "Batch %s %s: submitted=%d imported=%d updated=%d duplicates=%d restored=%d errors=%d",
            batch.batch_id,
            batch.status,
            batch.submitted,
            batch.imported,
            batch.updated,
            batch.duplicates,
            batch.restored,
            batch.errors,
        )
    summary = result.pass_summary
    if summary is None:
        return
    notable = summary.notable
    log.info(
        "Pass #%d: inserted=%d updated=%d restored=%d deleted=%d errored=%d",
        summary.sequence,
        summary.inserted,
        summary.updated,
        summary.restored,
        summary.deleted,
        summary.errored,
    )
    log.info(
        "Notable changes: price_drops=%d revenue_changes=%d category_changes=%d",
        len(notable.price_drops),
        len(notable.revenue_changes),
        len(notable.category_changes),
    )


def _run(args: argparse.Namespace) -> int:
    if args.command == "import":
        result = import_candidates(
            args.path,
            source_descriptor=args.source_descriptor,
            strategy=args.strategy,
            as_pass=not args.no_pass,
            resume=args.resume,
            batch_size=args.batch_size,
            max_records=args.max_records,
        )
        _report_import(result)
        return 0 if result.ok else 1
    if args.command == "entities":
        since = _parse_iso_datetime(args.since) if args.since else None
        _emit(
            {
                "entity_id": entity.entity_id,
                "is_active": entity.is_active,
                "missed_pass_count": entity.missed_pass_count,
                "content_hash": entity.content_hash,
                "updated_at": entity.updated_at,
                "fields": entity.fields,
            }
            for entity in list_entities(active=args.active, modified_since=since)
        )
        return 0
    if args.command == "events":
        action = ChangeAction(args.action) if args.action else None
        _emit(
            {
                "event_id": event.event_id,
                "batch_id": event.batch_id,
                "sequence": event.sequence,
                "action": event.action,
                "entity_id": event.entity_id,
                "field_name": event.field_name,
                "old_value": event.old_value,
                "new_value": event.new_value,
                "change_percentage": event.change_percentage,
                "occurred_at": event.occurred_at,
                "source": event.source,
            }
            for event in list_change_events(
                batch_id=args.batch_id,
                entity_id=args.entity_id,
                action=action,
            )
        )
        return 0
    if args.command == "batches":
        _emit(
            {
                "batch_id": batch.batch_id,
                "pass_id": batch.pass_id,
                "source_descriptor": batch.source_descriptor,
                "status": batch.status,
                "started_at": batch.started_at,
                "completed_at": batch.completed_at,
                "inserted": batch.inserted,
                "updated": batch.updated,
                "duplicates": batch.duplicates,
                "restored": batch.restored,
                "deleted": batch.deleted,
                "errored": batch.errored,
            }
            for batch in list_batches(pass_id=args.pass_id)
        )
        return 0
    if args.command == "errors":
        _emit(
            {
                "batch_id": entry.batch_id,
                "position": entry.position,
                "kind": entry.kind,
                "message": entry.message,
                "external_id": entry.external_id,
                "canonical_url": entry.canonical_url,
                "flagged_for_review": entry.flagged_for_review,
            }
            for entry in list_record_errors(
                batch_id=args.batch_id,
                flagged_for_review=True if args.flagged else None,
            )
        )
        return 0
    if args.command == "verify":
        verified = verify_audit_log()
        log.info("Audit log consistent for %d entities", verified)
        return 0
    raise ValueError(f"Unsupported command: {args.command}")


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
        _validate(parsed_args)
    except ValueError:
        configure_logging()
        log.exception("CLI validation error")
        sys.exit(2)

    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)
    try:
        exit_code = _run(parsed_args)
    except Exception:
        log.exception("Fatal error during %s", parsed_args.command)
        sys.exit(1)
    if exit_code:
        sys.exit(exit_code)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    """Console script entry point."""
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()

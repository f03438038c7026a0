"""
Admin CLI for operating the claim routing service.

Usage:
    claim-routing-admin audit-trail [--assignment-id ID] [--claim-id ID] [--action NAME] [--limit N]
    claim-routing-admin dead-letters [--reviewed | --unreviewed] [--limit N] [--stats]
    claim-routing-admin mark-reviewed --ids 1,2,3
    claim-routing-admin reprocess --ids 1,2,3 [--actor NAME]
"""

import argparse
import json
import sys
from datetime import datetime
from typing import Any

from claim_routing.config import Settings
from claim_routing.container import ServiceContainer
from claim_routing.core.exceptions import ClaimRoutingError
from claim_routing.observability.logger import configure_logging, get_logger, log_operation

logger = get_logger(__name__)


def format_timestamp(ts: datetime | str | None) -> str:
    """Format timestamp for display."""
    if ts is None:
        return "N/A"
    if isinstance(ts, str):
        return ts
    return ts.strftime("%Y-%m-%d %H:%M:%S")


def parse_ids(raw: str) -> list[int]:
    """Parse a comma-separated id list."""
    try:
        return [int(part) for part in raw.split(",") if part.strip()]
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"ids must be comma-separated integers: {raw}") from e


def audit_trail_command(args: argparse.Namespace, container: ServiceContainer) -> int:
    """Print audit entries, newest first."""
    entries = container.audit.query(
        assignment_id=args.assignment_id,
        claim_id=args.claim_id,
        action=args.action,
        limit=args.limit,
    )
    if args.json:
        print(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return 0

    if not entries:
        print("\nNo audit entries found.")
        return 0

    print(f"\n{'=' * 100}")
    print(f"AUDIT TRAIL ({len(entries)} entries)")
    print(f"{'=' * 100}\n")
    print(f"{'Timestamp':<20} {'Level':<8} {'Action':<28} {'Assignment':<11} {'Actor':<12} {'Message'}")
    print(f"{'-' * 100}")
    for entry in entries:
        status = ""
        if entry.previous_status or entry.new_status:
            status = f" [{entry.previous_status or '-'} -> {entry.new_status or '-'}]"
        print(
            f"{format_timestamp(entry.created_at):<20} {entry.level:<8} {entry.action[:27]:<28} "
            f"{str(entry.assignment_id or '-'):<11} {(entry.actor or '-')[:11]:<12} {entry.message}{status}"
        )
    print(f"\n{'=' * 100}\n")
    return 0


def dead_letters_command(args: argparse.Namespace, container: ServiceContainer) -> int:
    """List dead-lettered messages."""
    reviewed = None
    if args.reviewed:
        reviewed = True
    elif args.unreviewed:
        reviewed = False

    output: dict[str, Any] = {
        "records": [
            r.model_dump(mode="json")
            for r in container.dead_letters.list_records(reviewed=reviewed, limit=args.limit)
        ],
    }
    if args.stats:
        get_stats = getattr(container.dead_letters, "get_stats", None)
        if get_stats is None:
            logger.warning("Dead-letter statistics are not available for this storage backend")
        else:
            output["stats"] = get_stats()
    print(json.dumps(output, indent=2, default=str))
    return 0


def mark_reviewed_command(args: argparse.Namespace, container: ServiceContainer) -> int:
    """Flag dead letters as reviewed."""
    missing = [i for i in args.ids if not container.dead_letters.mark_reviewed(i)]
    print(json.dumps({"reviewed": [i for i in args.ids if i not in missing], "notFound": missing}, indent=2))
    return 1 if missing else 0


def reprocess_command(args: argparse.Namespace, container: ServiceContainer) -> int:
    """
    Run dead-lettered payloads through the pipeline again.

    Assignment creation is idempotent, so reprocessing a message whose
    first delivery did create an assignment reports it as a duplicate.
    """
    results = []
    for dead_letter_id in args.ids:
        record = container.dead_letters.get(dead_letter_id)
        if record is None:
            results.append({"deadLetterId": dead_letter_id, "success": False, "error": "not found"})
            continue

        container.dead_letters.request_reprocess(dead_letter_id)
        try:
            with log_operation("reprocess dead letter", logger=logger, dead_letter_id=dead_letter_id):
                outcome = container.pipeline.process(record.raw_payload, entrypoint="reprocess", actor=args.actor)
        except ClaimRoutingError as e:
            logger.warning(f"Reprocessing dead letter {dead_letter_id} failed: {e.error_type}: {e.message}")
            results.append({"deadLetterId": dead_letter_id, "success": False, "error": e.to_dict()})
            continue

        container.dead_letters.mark_reprocessed(dead_letter_id)
        results.append({
            "deadLetterId": dead_letter_id,
            "success": outcome.success,
            "status": outcome.status.value,
            "assignmentId": outcome.assignment.id if outcome.assignment else None,
        })

    print(json.dumps({"results": results}, indent=2, default=str))
    return 0 if all(r["success"] for r in results) else 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point for admin CLI."""
    parser = argparse.ArgumentParser(
        description="Admin CLI for the claim routing service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--env-file", help="Load settings from this .env file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    audit_parser = subparsers.add_parser("audit-trail", help="Show audit entries")
    audit_parser.add_argument("--assignment-id", type=int, help="Filter by assignment")
    audit_parser.add_argument("--claim-id", help="Filter by claim")
    audit_parser.add_argument("--action", help="Filter by action (e.g. reassign, dead_lettered)")
    audit_parser.add_argument("--limit", type=int, default=100, help="Maximum entries (default: 100)")
    audit_parser.add_argument("--json", action="store_true", help="Output JSON")

    dl_parser = subparsers.add_parser("dead-letters", help="List dead-lettered messages")
    review_filter = dl_parser.add_mutually_exclusive_group()
    review_filter.add_argument("--reviewed", action="store_true", help="Only reviewed records")
    review_filter.add_argument("--unreviewed", action="store_true", help="Only unreviewed records")
    dl_parser.add_argument("--limit", type=int, default=100, help="Maximum records (default: 100)")
    dl_parser.add_argument("--stats", action="store_true", help="Include statistics")

    reviewed_parser = subparsers.add_parser("mark-reviewed", help="Mark dead letters as reviewed")
    reviewed_parser.add_argument("--ids", type=parse_ids, required=True, help="Comma-separated dead letter ids")

    reprocess_parser = subparsers.add_parser("reprocess", help="Reprocess dead letters")
    reprocess_parser.add_argument("--ids", type=parse_ids, required=True, help="Comma-separated dead letter ids")
    reprocess_parser.add_argument("--actor", default="admin", help="Actor recorded in audit entries")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    settings = Settings.from_env(args.env_file)
    configure_logging(settings.log_level, settings.log_format)

    commands = {
        "audit-trail": audit_trail_command,
        "dead-letters": dead_letters_command,
        "mark-reviewed": mark_reviewed_command,
        "reprocess": reprocess_command,
    }

    try:
        container = ServiceContainer.from_settings(settings)
    except ClaimRoutingError as e:
        logger.error(f"Cannot reach storage: {e.message}")
        print(f"\nError: {e.message}", file=sys.stderr)
        return 1

    try:
        return commands[args.command](args, container)
    except ClaimRoutingError as e:
        logger.error(f"{args.command} failed: {e.error_type}: {e.message}", exc_info=True)
        print(f"\nError: {e.message}", file=sys.stderr)
        return 1
    finally:
        container.close()


if __name__ == "__main__":
    sys.exit(main())

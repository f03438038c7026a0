"""
Service CLI for the claim routing service.

Usage:
    claim-routing consume
    claim-routing serve [--host HOST] [--port PORT]
    claim-routing status
    claim-routing process-claim (--file <path> | --json <payload>)
    claim-routing evaluate-rules --rules <rules.yaml> (--file <path> | --json <payload>) [--summary]

Runtime settings come from the environment (see claim_routing.config).
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from claim_routing.config import Settings
from claim_routing.container import ServiceContainer
from claim_routing.core.exceptions import ClaimRoutingError
from claim_routing.core.rules import RuleConfigLoader, RuleMatcher
from claim_routing.ingestion.messages import decode_claim
from claim_routing.observability.logger import configure_logging, get_logger
from claim_routing.observability.metrics import start_metrics_server

logger = get_logger(__name__)


def _print(data: Any, stream=sys.stdout) -> None:
    print(json.dumps(data, indent=2, default=str), file=stream)


def _read_payload(args: argparse.Namespace) -> str:
    if args.file:
        return Path(args.file).read_text(encoding="utf-8")
    return args.json


def consume_command(args: argparse.Namespace, settings: Settings) -> int:
    """
    Run the queue consumer until SIGTERM/SIGINT.

    Returns:
        0 after an ordered shutdown, 1 if the consumer never started
    """
    container = ServiceContainer.from_settings(settings)
    start_metrics_server(settings.metrics_port)
    supervisor = container.supervisor
    supervisor.install_signal_handlers()

    try:
        logger.info("Consuming until SIGTERM/SIGINT (press Ctrl+C to stop)")
        if not supervisor.run_forever():
            _print({"status": "error", **supervisor.status()}, stream=sys.stderr)
            return 1
        logger.info("Shutdown complete")
        return 0
    finally:
        container.close()


def serve_command(args: argparse.Namespace, settings: Settings) -> int:
    """Serve the HTTP API with uvicorn."""
    import uvicorn

    from claim_routing.api.app import create_app

    container = ServiceContainer.from_settings(settings)
    app = create_app(container)
    uvicorn.run(
        app,
        host=args.host or settings.api_host,
        port=args.port or settings.api_port,
        log_config=None,
    )
    return 0


def status_command(args: argparse.Namespace, settings: Settings) -> int:
    """Check database and broker connectivity with the configured settings."""
    status: dict[str, Any] = {
        "storageBackend": settings.storage_backend,
        "topic": settings.assignment_topic,
        "groupId": settings.kafka_group_id,
        "selectionPolicy": settings.selection_policy,
    }
    try:
        container = ServiceContainer.from_settings(settings)
    except ClaimRoutingError as e:
        status.update({"database": "unavailable", "error": e.to_dict()})
        _print(status, stream=sys.stderr)
        return 1
    status["database"] = "ok"

    try:
        container.consumer.connect()
        status["queue"] = "ok"
    except ClaimRoutingError as e:
        status.update({"queue": "unavailable", "error": e.to_dict()})
    finally:
        container.consumer.close()
        container.close()

    healthy = status["queue"] == "ok"
    _print(status, stream=sys.stdout if healthy else sys.stderr)
    return 0 if healthy else 1


def process_claim_command(args: argparse.Namespace, settings: Settings) -> int:
    """Run the ingestion pipeline for one claim, synchronously."""
    container = ServiceContainer.from_settings(settings)
    try:
        outcome = container.pipeline.process(_read_payload(args), entrypoint="cli", actor=args.actor)
    except ClaimRoutingError as e:
        logger.error(f"Claim processing failed: {e.message}")
        _print(e.to_dict(), stream=sys.stderr)
        return 1
    finally:
        container.close()

    _print(outcome.to_dict())
    return 0 if outcome.success else 2


def evaluate_rules_command(args: argparse.Namespace, settings: Settings | None = None) -> int:
    """
    Evaluate a rules file against a claim without touching any storage.

    Returns:
        0 when a rule matched, 2 when no rule matched, 1 on invalid input
    """
    matcher = RuleMatcher()
    try:
        rules = RuleConfigLoader(args.rules).load_rules()
        claim = decode_claim(_read_payload(args))
    except (FileNotFoundError, ValueError) as e:
        message = e.message if isinstance(e, ClaimRoutingError) else str(e)
        logger.error(f"Cannot evaluate rules: {message}")
        _print({"status": "error", "error": message}, stream=sys.stderr)
        return 1

    result = matcher.resolve(claim, rules)
    output: dict[str, Any] = {
        **result.summary(),
        "assignmentType": claim.assignment_type,
        "evaluations": [e.model_dump() for e in result.evaluations],
    }
    if args.summary:
        output["rules"] = matcher.summarize(rules)
    _print(output)
    return 0 if result.matched else 2


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the service CLI."""
    parser = argparse.ArgumentParser(
        description="Claim routing service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Consume claims from the configured topic
  %(prog)s consume

  # Dry-run a claim against a rules file
  %(prog)s evaluate-rules --rules config/rules.yaml --file claim.json
        """,
    )
    parser.add_argument("--env-file", help="Load settings from this .env file")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("consume", help="Consume claims until terminated")

    serve_parser = subparsers.add_parser("serve", help="Serve the HTTP API")
    serve_parser.add_argument("--host", help="Bind address (default: API_HOST)")
    serve_parser.add_argument("--port", type=int, help="Port (default: API_PORT)")

    subparsers.add_parser("status", help="Check database and broker connectivity")

    for name, help_text in (
        ("process-claim", "Route one claim through the pipeline"),
        ("evaluate-rules", "Evaluate a rules file against a claim (offline)"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        source = sub.add_mutually_exclusive_group(required=True)
        source.add_argument("--file", help="Path to a JSON claim message")
        source.add_argument("--json", help="Inline JSON claim message")
        if name == "process-claim":
            sub.add_argument("--actor", default="cli", help="Actor recorded in audit entries (default: cli)")
        else:
            sub.add_argument("--rules", required=True, help="Rules YAML file")
            sub.add_argument("--summary", action="store_true", help="Include rule statistics")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.command == "evaluate-rules":
        configure_logging()
        return evaluate_rules_command(args)

    settings = Settings.from_env(args.env_file)
    configure_logging(settings.log_level, settings.log_format)

    commands = {
        "consume": consume_command,
        "serve": serve_command,
        "status": status_command,
        "process-claim": process_claim_command,
    }
    try:
        return commands[args.command](args, settings)
    except ClaimRoutingError as e:
        logger.error(f"{args.command} failed: {e.error_type}: {e.message}")
        _print({"status": "error", **e.to_dict()}, stream=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

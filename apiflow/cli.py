"""Command-line interface for validating, planning and running workflow documents.

This module serves as the main entry point for the CLI with all commands
consolidated in a single file.
"""
from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from . import __version__
from .config import Config, get_config
from .invokers import HttpOperationInvoker, OperationInvoker, RetryingInvoker
from .orchestration.loader import load_workflow
from .orchestration.state_manager import SQLiteRunStore
from .orchestration.workflow_engine import (
    ExecutionMode,
    ExecutionResult,
    ValidationError,
    WorkflowDocument,
    WorkflowError,
    WorkflowExecutionError,
    WorkflowExecutor,
    collect_violations,
    describe_plan,
    validate_document,
)
from .ui.console import ConsoleManager
from .utils.logging_factory import LoggingFactory

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration based on verbosity level.

    Args:
        verbose: If True, set to DEBUG level; otherwise INFO
    """
    LoggingFactory.configure_verbose(verbose)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="apiflow",
        description="Run dependency-ordered API workflows with compensating rollback",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Examples:
  # Check a document without calling anything
  apiflow validate shipping_zone.json

  # Show the execution order and parallel generations
  apiflow plan shipping_zone.json

  # Run against a GraphQL endpoint
  apiflow run shipping_zone.json --endpoint https://shop.example.com/graphql \\
      --header "Authorization=Bearer $TOKEN"

  # Run a REST workflow, independent steps in parallel, keeping an audit record
  apiflow run workflow.yaml --endpoint https://api.example.com --protocol rest \\
      --parallel --state-db runs.db --output result.json

Environment:
  API_ENDPOINT, API_PROTOCOL, API_HEADERS, REQUEST_TIMEOUT, MAX_API_RETRIES,
  EXECUTION_MODE, MAX_WORKERS, PERSIST_RUNS and STATE_DB_PATH provide defaults
  for the run options. A .env file is read when present.
        """,
    )

    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--json-output",
        action="store_true",
        help="Emit machine-readable JSON to stdout (logs go to stderr)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands", required=True)

    validate_parser = subparsers.add_parser(
        "validate",
        help="Validate a workflow document",
        description="Report every structural problem of a workflow document",
    )
    validate_parser.add_argument("document", help="Workflow document (.json, .yaml or .yml)")

    plan_parser = subparsers.add_parser(
        "plan",
        help="Show the execution plan",
        description="Print the deterministic execution order and parallel generations",
    )
    plan_parser.add_argument("document", help="Workflow document (.json, .yaml or .yml)")

    run_parser = subparsers.add_parser(
        "run",
        help="Execute a workflow against an HTTP API",
        description="Execute a workflow; on failure completed steps are compensated in reverse order",
    )
    run_parser.add_argument("document", help="Workflow document (.json, .yaml or .yml)")
    run_parser.add_argument("--endpoint", help="GraphQL endpoint or REST base URL (default: $API_ENDPOINT)")
    run_parser.add_argument(
        "--protocol",
        choices=["graphql", "rest"],
        help="Protocol for operations that do not declare one (default: $API_PROTOCOL or graphql)",
    )
    run_parser.add_argument(
        "--header",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Extra request header, may be repeated",
    )
    run_parser.add_argument("--parallel", action="store_true", help="Run independent steps concurrently")
    run_parser.add_argument("--max-workers", type=int, help="Thread pool size in parallel mode")
    run_parser.add_argument("--timeout", type=float, help="Per-request timeout in seconds")
    run_parser.add_argument("--retries", type=int, help="Retries for transient failures (0 disables)")
    run_parser.add_argument("--state-db", help="SQLite file to record the run in")
    run_parser.add_argument("--output", "-o", help="Write the run record as JSON to this file")

    return parser


def _load_document(path: str, console_manager: ConsoleManager) -> Optional[WorkflowDocument]:
    try:
        return load_workflow(path)
    except FileNotFoundError as e:
        console_manager.print_error(str(e))
    except ValidationError as e:
        console_manager.print_violations(Path(path).name, e.violations)
    return None


def validate_command(args: argparse.Namespace, console_manager: ConsoleManager) -> int:
    """Handle the validate command.

    Returns:
        0 if the document is valid, 1 otherwise
    """
    document = _load_document(args.document, console_manager)
    if document is None:
        return 1

    violations = collect_violations(document)
    console_manager.print_violations(document.name, violations)
    return 1 if violations else 0


def plan_command(args: argparse.Namespace, console_manager: ConsoleManager) -> int:
    """Handle the plan command."""
    document = _load_document(args.document, console_manager)
    if document is None:
        return 1

    try:
        validate_document(document)
        plan = describe_plan(document)
    except ValidationError as e:
        console_manager.print_violations(document.name, e.violations)
        return 1

    console_manager.print_plan(plan)
    return 0


def parse_headers(items: List[str]) -> Dict[str, str]:
    """Parse repeated ``NAME=VALUE`` options.

    Raises:
        ValueError: If an item has no ``=``
    """
    headers = {}
    for item in items:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Invalid header '{item}'. Expected NAME=VALUE")
        headers[name.strip()] = value.strip()
    return headers


def build_invoker(args: argparse.Namespace, config: Config) -> OperationInvoker:
    """Build the HTTP invoker for the run command, wrapped with retries when enabled.

    Raises:
        ValueError: If no endpoint is configured or a header is malformed
    """
    endpoint = args.endpoint or config.api_endpoint
    if not endpoint:
        raise ValueError("No endpoint given. Pass --endpoint or set API_ENDPOINT")

    headers = dict(config.api_headers)
    headers.update(parse_headers(args.header))

    invoker: OperationInvoker = HttpOperationInvoker(
        endpoint,
        protocol=args.protocol or config.api_protocol,
        headers=headers,
        timeout=args.timeout if args.timeout is not None else config.request_timeout,
    )

    retries = args.retries if args.retries is not None else config.max_retries
    if retries > 0:
        retry_config = dataclasses.replace(config.retry_config(), max_attempts=min(retries + 1, 10))
        invoker = RetryingInvoker(invoker, retry_config)
    return invoker


def _write_output(path: str, result: ExecutionResult) -> None:
    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
    logger.info(f"Run record written to {output}")


def run_command(args: argparse.Namespace, console_manager: ConsoleManager, config: Config) -> int:
    """Handle the run command.

    Returns:
        0 if every step completed, 1 otherwise
    """
    document = _load_document(args.document, console_manager)
    if document is None:
        return 1

    try:
        invoker = build_invoker(args, config)
    except ValueError as e:
        console_manager.print_error(str(e))
        return 1

    state_manager = None
    if args.state_db or config.persist_runs:
        state_manager = SQLiteRunStore(args.state_db or config.state_db_path)

    parallel = args.parallel or config.parallel
    executor = WorkflowExecutor(
        invoker,
        state_manager=state_manager,
        mode=ExecutionMode.PARALLEL if parallel else ExecutionMode.SEQUENTIAL,
        max_workers=args.max_workers or config.max_workers,
    )

    console_manager.print_stage(f"Running {document.name}", "starting")
    result: Optional[ExecutionResult] = None
    exit_code = 0
    try:
        with console_manager.progress_context("Executing steps", total=len(document.steps)) as progress:
            executor.add_listener("step_completed", lambda run_id, event, step: progress.advance(step.step_id))
            result = executor.execute(document)
        console_manager.print_stage(f"{document.name} completed", "complete")
    except WorkflowExecutionError as e:
        result = e.result
        exit_code = 1
        console_manager.print_error(str(e))
    except WorkflowError as e:
        console_manager.print_error(str(e))
        return 1
    except KeyboardInterrupt:
        console_manager.print_error("Run interrupted, completed steps were rolled back")
        return 1
    finally:
        invoker.close()

    if result is not None:
        console_manager.print_run_summary(result)
        if args.output:
            try:
                _write_output(args.output, result)
            except OSError as e:
                console_manager.print_error(f"Could not write {args.output}: {e}")
                return 1
    return exit_code


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = get_config()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    console_manager = ConsoleManager(verbose=args.verbose, json_output=args.json_output)
    console_manager.setup_logging(logging.getLogger("apiflow"))
    setup_logging(args.verbose)
    if config.log_file:
        LoggingFactory.initialize(
            level=logging.DEBUG if args.verbose else config.log_level,
            format_string=config.log_format,
            log_file=config.log_file,
            console=False,
        )

    try:
        if args.command == "validate":
            return validate_command(args, console_manager)
        elif args.command == "plan":
            return plan_command(args, console_manager)
        elif args.command == "run":
            return run_command(args, console_manager, config)
        else:
            parser.print_help()
            return 1
    except KeyboardInterrupt:
        logger.error("Operation cancelled by user")
        return 1


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
cigate command line: run CI templates and inspect the catalog.

Exit codes: 0 pass, 1 job or gate failure, 2 validation error, 3 catalog error.
"""

import argparse
import json
import logging
import signal
import sys
import threading
from typing import Dict, List, Optional

from cigate.backends import create_backend
from cigate.config import Config
from cigate.engine import RunEngine, RunRequest
from cigate.errors import EXIT_CATALOG, EXIT_PASS, EXIT_VALIDATION, CigateError
from cigate.events import Event, EventBus, EventType
from cigate.pipeline.loader import TemplateCatalog, TemplateLoader
from cigate.report import build_report, render_failures, render_graph, write_report
from cigate.utils.retry import RetryConfig

logger = logging.getLogger(__name__)


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="cigate", description="Run CI workflow templates")
    parser.add_argument(
        "--catalog",
        default=Config.CATALOG_PATH,
        help="Template catalog file or directory",
    )
    parser.add_argument(
        "--log-level",
        default=Config.LOG_LEVEL,
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Run a template")
    run.add_argument("--template", required=True, help="Template name")
    run.add_argument(
        "--input",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Input value (repeatable)",
    )
    run.add_argument(
        "--secret-ref",
        action="append",
        default=[],
        metavar="NAME",
        help="Name of a secret available to the run (repeatable)",
    )
    run.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-job timeout in seconds",
    )
    run.add_argument("--dry-run", action="store_true", help="Validate and print the plan only")
    run.add_argument("--fail-fast", action="store_true", help="Stop submitting jobs after the first failure")
    run.add_argument(
        "--backend",
        choices=("local", "http"),
        default=Config.BACKEND,
        help="Execution backend",
    )
    run.add_argument("--backend-url", default=Config.BACKEND_URL, help="Base URL for the http backend")
    run.add_argument("--json", action="store_true", help="Print JSON instead of text")
    run.add_argument("--report", default=None, help="Write a JSON report to this path")

    commands.add_parser("templates", help="List templates")

    show = commands.add_parser("show", help="Describe a template's inputs, secrets and jobs")
    show.add_argument("name", help="Template name")

    commands.add_parser("validate", help="Load the catalog and report problems")

    return parser.parse_args(argv)


def parse_inputs(pairs: List[str]) -> Dict[str, str]:
    """Parse repeated KEY=VALUE arguments. Values stay strings; the resolver coerces them."""
    inputs = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"Expected KEY=VALUE, got {pair!r}")
        inputs[key.strip()] = value
    return inputs


_PROGRESS = {
    EventType.JOB_SUBMITTED: "started",
    EventType.JOB_COMPLETED: "succeeded",
    EventType.JOB_FAILED: "failed",
    EventType.JOB_SKIPPED: "skipped",
    EventType.JOB_RETRIED: "retrying",
}


def _print_progress(event: Event) -> None:
    status = _PROGRESS.get(event.type)
    if status is None:
        return
    reason = event.data.get("reason") or event.data.get("error")
    suffix = f": {reason}" if reason else ""
    print(f"[{event.job_id}] {status}{suffix}", file=sys.stderr)


def _cmd_run(args: argparse.Namespace, catalog: TemplateCatalog) -> int:
    request = RunRequest(
        template=args.template,
        inputs=parse_inputs(args.input),
        secret_refs=args.secret_ref,
    )
    event_bus = EventBus()
    if not args.json:
        event_bus.subscribe(_print_progress)
    try:
        backend = create_backend(args.backend, url=args.backend_url, log_dir=Config.LOG_DIR or None)
    except ValueError as exc:
        # e.g. http without a URL
        print(f"[error] {exc}", file=sys.stderr)
        return EXIT_VALIDATION
    with backend:
        engine = RunEngine(
            catalog,
            backend,
            default_timeout=Config.JOB_TIMEOUT_SECONDS,
            retry_config=RetryConfig.from_settings(Config),
            fail_fast=args.fail_fast,
            event_bus=event_bus,
        )

        if args.dry_run:
            graph = engine.plan(request)
            print(json.dumps(graph.to_dict(), indent=2) if args.json else render_graph(graph))
            return EXIT_PASS

        cancel_event = threading.Event()

        def _cancel(signum, frame):
            logger.warning("Interrupt received; no further jobs will be submitted")
            cancel_event.set()

        previous = signal.signal(signal.SIGINT, _cancel)
        try:
            verdict = engine.run(request, timeout=args.timeout, cancel_event=cancel_event)
        finally:
            signal.signal(signal.SIGINT, previous)

    if args.report:
        write_report(verdict, args.report)
        logger.info(f"Wrote report to {args.report}")
    print(json.dumps(build_report(verdict), indent=2) if args.json else render_failures(verdict))
    return verdict.exit_code


def _cmd_templates(catalog: TemplateCatalog) -> int:
    for name in catalog.names():
        description = catalog.get(name).description
        print(f"{name:<20} {description}" if description else name)
    return EXIT_PASS


def _cmd_validate(catalog: TemplateCatalog) -> int:
    loader = TemplateLoader()
    for name in catalog.names():
        for warning in loader.lint(catalog.get(name)):
            print(f"[warn] {name}: {warning}")
    print(f"OK: {len(catalog)} template(s)")
    return EXIT_PASS


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        catalog = TemplateCatalog.from_yaml(args.catalog)
    except FileNotFoundError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return EXIT_CATALOG
    except CigateError as exc:
        print(f"[error] {exc.message}", file=sys.stderr)
        return exc.exit_code

    try:
        if args.command == "run":
            return _cmd_run(args, catalog)
        if args.command == "templates":
            return _cmd_templates(catalog)
        if args.command == "show":
            print(json.dumps(catalog.describe(args.name), indent=2))
            return EXIT_PASS
        return _cmd_validate(catalog)
    except argparse.ArgumentTypeError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return EXIT_VALIDATION
    except CigateError as exc:
        print(f"[error] {exc.message}", file=sys.stderr)
        return exc.exit_code


if __name__ == "__main__":
    sys.exit(main())

"""
Reconciliation command line trigger.

Usage:
    python -m reconciliation run-once [--json] [--fail-on-errors]
    python -m reconciliation currencies

Exit codes:
    0  pass completed
    1  pass aborted (pending invoices could not be loaded)
    2  configuration error
    3  pass completed with per-invoice errors (only with --fail-on-errors)
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from config import get_settings
from logging_config import setup_logging, get_logger
from sentry_integration import init_sentry
from reconciliation.exceptions import PendingLoadError, SourceConfigurationError
from reconciliation.services.reconciliation_service import build_reconciliation_service
from reconciliation.source_registry import currency_registry

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_ABORTED = 1
EXIT_CONFIG = 2
EXIT_INVOICE_ERRORS = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reconciliation",
        description="Reconcile on-chain payments against unpaid invoices"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_once = subparsers.add_parser("run-once", help="Run a single reconciliation pass")
    run_once.add_argument("--json", action="store_true", help="Print the summary as JSON")
    run_once.add_argument(
        "--fail-on-errors",
        action="store_true",
        help="Exit non-zero when any invoice could not be checked or updated"
    )

    subparsers.add_parser("currencies", help="List supported currencies and tolerances")

    return parser


def _print_summary(summary: dict):
    print(f"Run {summary['runId']}")
    print(f"  checked:   {summary['checked']}")
    print(f"  detected:  {summary['detected']}")
    print(f"  updated:   {summary['updated']}")
    print(f"  conflicts: {summary['conflicts']}")
    for entry in summary["ambiguous"]:
        print(f"  ⚠ ambiguous {entry['invoiceNumber']}: chose {entry['chosen']} of {len(entry['candidates'])}")
    for invoice_id in summary["truncated"]:
        print(f"  ⚠ truncated history for invoice {invoice_id}")
    for error in summary["errors"]:
        print(f"  ✗ {error['invoiceNumber']} [{error['kind']}]: {error['error']}")


def run_once(as_json: bool = False, fail_on_errors: bool = False) -> int:
    settings = get_settings()

    try:
        service = build_reconciliation_service(settings)
    except (SourceConfigurationError, ValueError) as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG

    try:
        result = asyncio.run(service.run_pass(trigger="cli"))
    except PendingLoadError as e:
        logger.error(f"Reconciliation pass aborted: {e}")
        return EXIT_ABORTED

    summary = result.to_dict()
    if as_json:
        print(json.dumps(summary, indent=2))
    else:
        _print_summary(summary)

    if fail_on_errors and summary["errors"]:
        return EXIT_INVOICE_ERRORS
    return EXIT_OK


def list_currencies() -> int:
    for cfg in currency_registry.get_all_configs():
        print(f"{cfg.currency.value:<5} tolerance={cfg.tolerance} decimals={cfg.decimals}")
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    settings = get_settings()
    setup_logging(
        level=settings.LOG_LEVEL,
        json_format=settings.is_production,
        service_name="cryptoinvoice-reconciler"
    )
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT)

    if args.command == "currencies":
        return list_currencies()
    return run_once(as_json=args.json, fail_on_errors=args.fail_on_errors)


if __name__ == "__main__":
    sys.exit(main())

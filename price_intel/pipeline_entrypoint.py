"""Pipeline entrypoint - standalone CLI for running batch jobs.

Usage:
    python -m price_intel.pipeline_entrypoint run                  # gap reconcile + ZIP + county
    python -m price_intel.pipeline_entrypoint run --skip-reconcile
    python -m price_intel.pipeline_entrypoint zip                  # ZIP pass only
    python -m price_intel.pipeline_entrypoint county               # county pass only
    python -m price_intel.pipeline_entrypoint backfill --weeks 4   # rebuild 4 completed weeks
    python -m price_intel.pipeline_entrypoint validate             # county stats vs recomputation
    python -m price_intel.pipeline_entrypoint reconcile            # extend all recently expired prices
    python -m price_intel.pipeline_entrypoint reenable-disabled    # monthly scrape retry
    python -m price_intel.pipeline_entrypoint seed-geo zips.csv    # load ZIP -> county map

Exit status: 0 success, 1 partial failure, 2 fatal error.
"""

import argparse
import signal
import sys
import threading
from datetime import datetime
from typing import Callable, Optional, Sequence

from sqlalchemy.orm import Session

from price_intel.core.clock import Clock, FixedClock, SystemClock
from price_intel.core.config import settings
from price_intel.core.errors import FatalInfrastructureError
from price_intel.core.logging import get_logger
from price_intel.ingestion.geo_csv import load_zip_to_county_csv
from price_intel.services.pipeline_service import PipelineResult, PipelineService

logger = get_logger("pipeline_entrypoint")

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_FATAL = 2


def _parse_instant(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO-8601 timestamp: {value!r}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="price_intel.pipeline_entrypoint",
        description="Price intelligence batch jobs",
    )
    parser.add_argument(
        "--now",
        type=_parse_instant,
        default=None,
        help="Run as of this instant (ISO-8601, UTC if naive) instead of the wall clock",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser(
        "run", help="Recover prices expired during a scheduling gap, then ZIP and county passes"
    )
    run.add_argument("--fuel-type", default=settings.DEFAULT_FUEL_TYPE)
    run.add_argument("--skip-reconcile", action="store_true")

    for name in ("zip", "county", "validate"):
        p = sub.add_parser(name)
        p.add_argument("--fuel-type", default=settings.DEFAULT_FUEL_TYPE)

    backfill = sub.add_parser("backfill", help="Rebuild completed weeks, oldest first")
    backfill.add_argument("--weeks", type=int, required=True)
    backfill.add_argument("--fuel-type", default=settings.DEFAULT_FUEL_TYPE)

    sub.add_parser("reconcile", help="Extend every recently-scraped price that expired (manual repair)")
    sub.add_parser("reenable-disabled", help="Re-enable all disabled suppliers")

    seed = sub.add_parser("seed-geo", help="Load the ZIP -> county CSV")
    seed.add_argument("path")

    return parser


def _exit_code(result: PipelineResult) -> int:
    return EXIT_PARTIAL if result.partial else EXIT_OK


def run_command(args: argparse.Namespace, db: Session, clock: Clock, stop_event: threading.Event) -> int:
    service = PipelineService(db, clock)

    if args.command == "run":
        result = service.run_nightly(args.fuel_type, skip_reconcile=args.skip_reconcile, stop_event=stop_event)
        logger.info(f"Pipeline run completed: {result.to_dict()}")
        return _exit_code(result)

    if args.command == "zip":
        return _exit_code(PipelineResult(summaries=[service.zip_pass(args.fuel_type, stop_event)]))

    if args.command == "county":
        return _exit_code(PipelineResult(summaries=[service.county_pass(args.fuel_type, stop_event)]))

    if args.command == "backfill":
        if args.weeks < 1:
            logger.error("--weeks must be at least 1")
            return EXIT_FATAL
        result = service.backfill(args.weeks, args.fuel_type, stop_event)
        logger.info(f"Backfill completed: {result.to_dict()}")
        return _exit_code(result)

    if args.command == "validate":
        report = service.validate(args.fuel_type)
        return _exit_code(PipelineResult(validation=report))

    if args.command == "reconcile":
        count = service.reconcile()
        logger.info(f"Reconciled {count} observations")
        return EXIT_OK

    if args.command == "reenable-disabled":
        count = service.reenable_disabled()
        logger.info(f"Re-enabled {count} suppliers")
        return EXIT_OK

    if args.command == "seed-geo":
        load_zip_to_county_csv(db, args.path)
        return EXIT_OK

    raise ValueError(f"Unknown command: {args.command}")


def main(
    argv: Optional[Sequence[str]] = None,
    stop_event: Optional[threading.Event] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> int:
    """Main entry point; returns the process exit status."""
    args = build_parser().parse_args(argv)
    clock: Clock = FixedClock(args.now) if args.now else SystemClock()
    stop_event = stop_event or threading.Event()

    if session_factory is None:
        from price_intel.core.db import SessionLocal

        session_factory = SessionLocal

    logger.info(f"Pipeline command '{args.command}' starting")
    try:
        with session_factory() as db:
            code = run_command(args, db, clock, stop_event)
    except FatalInfrastructureError as exc:
        logger.critical(f"Fatal infrastructure error, aborting: {exc}")
        return EXIT_FATAL
    except Exception as exc:  # noqa: BLE001
        logger.exception(f"Pipeline command '{args.command}' crashed: {exc}")
        return EXIT_FATAL

    logger.info(f"Pipeline command '{args.command}' finished with exit code {code}")
    return code


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _handle(signum, _frame):
        logger.warning(f"Received signal {signum}; finishing current partition then stopping")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


if __name__ == "__main__":
    _stop = threading.Event()
    _install_signal_handlers(_stop)
    sys.exit(main(stop_event=_stop))

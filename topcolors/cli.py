"""Command-line interface for the topcolors project."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Iterable

from .config import get_settings
from .crawl.fetch import close_session
from .crawl.sources import open_candidates
from .io.ledger import Ledger, LedgerError
from .io.models import RunSummary
from .io.outputs import ReportError, publish_results, write_metrics
from .pipeline.pool import IngestPipeline

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments for the top colors pipeline."""
    settings = get_settings()
    parser = argparse.ArgumentParser(
        description="Fetch JPEG URLs, record their three most frequent colors and "
        "write a report."
    )
    parser.add_argument(
        "--in",
        dest="input",
        required=True,
        help="Path to a text file containing image URLs, one per line.",
    )
    parser.add_argument(
        "--out",
        required=True,
        help="Report path; .parquet writes a parquet table, anything else CSV.",
    )
    parser.add_argument(
        "--ledger",
        default=settings.ledger_path,
        help="Path of the dedup ledger database (default: %(default)s).",
    )
    parser.add_argument(
        "--debris",
        action="store_true",
        help="Retain the ledger database on exit so later runs can reuse it.",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=settings.workers,
        help="Number of URLs fetched and decoded concurrently (default: %(default)s).",
    )
    parser.add_argument(
        "--queue-depth",
        type=int,
        default=settings.queue_depth,
        help="Capacity of the work and outcome queues (default: %(default)s).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=settings.fetch_timeout,
        help="Deadline in seconds for each image fetch (default: %(default)s).",
    )
    parser.add_argument(
        "--metrics",
        default=None,
        help="Optional path where a JSON run summary is written.",
    )
    parser.add_argument(
        "--progress",
        action="store_true",
        help="Show a progress bar while URLs are processed.",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help="Root log level (default: %(default)s).",
    )
    args = parser.parse_args(list(argv) if argv is not None else None)
    if args.workers < 1:
        parser.error("--workers must be at least 1")
    if args.queue_depth < 1:
        parser.error("--queue-depth must be at least 1")
    if args.timeout <= 0:
        parser.error("--timeout must be positive")
    return args


def configure_logging(level: str) -> None:
    """Configure the root logger."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )


def open_ledger(path: Path) -> Ledger:
    """Open the ledger at *path*, reusing one retained by an earlier run."""
    retained = path.exists()
    ledger = Ledger(path)
    try:
        ledger.initialize(require_fresh=not retained)
    except LedgerError:
        ledger.close()
        raise
    if retained:
        print(f"[ledger] reusing {path}")
    else:
        print(f"[ledger] created {path}")
    return ledger


def run(args: argparse.Namespace) -> RunSummary:
    """Run the pipeline described by *args* and write the report."""
    input_path = Path(args.input)
    out_path = Path(args.out)
    ledger_path = Path(args.ledger)

    if not input_path.exists():
        raise FileNotFoundError(f"Input file does not exist: {input_path}")

    ledger = open_ledger(ledger_path)
    try:
        pipeline = IngestPipeline(
            ledger,
            workers=args.workers,
            queue_depth=args.queue_depth,
            fetch_timeout=args.timeout,
            progress=args.progress,
        )
        with open_candidates(input_path) as candidates:
            summary = pipeline.run(candidates)
        rows = publish_results(ledger, out_path)
        print(f"[report] wrote {rows} rows to {out_path}")
        if args.metrics:
            metrics_path = write_metrics(Path(args.metrics), summary)
            print(f"[metrics] wrote {metrics_path}")
    finally:
        close_session()
        if args.debris:
            ledger.close()
        else:
            ledger.destroy()
    return summary


def _print_summary(summary: RunSummary) -> None:
    print(f"Admitted: {summary.admitted}")
    print(f"Resolved: {summary.resolved} (new entries {summary.written_resolved})")
    print(f"Failed: {summary.failed} (new entries {summary.written_failed})")
    print(f"Skipped duplicates: {summary.duplicates}")


def main(argv: Iterable[str] | None = None) -> int:
    """Entry point for the CLI."""
    args = parse_args(argv)
    configure_logging(args.log_level)
    try:
        summary = run(args)
    except (LedgerError, ReportError, OSError) as exc:
        logger.error("fatal: %s", exc)
        return 1
    _print_summary(summary)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

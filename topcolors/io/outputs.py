"""Output helpers for persisting pipeline results."""

from __future__ import annotations

import csv
import json
import logging
from dataclasses import asdict
from pathlib import Path

import pandas as pd

from .ledger import RESOLVED, Ledger, LedgerError
from .models import RunSummary

logger = logging.getLogger(__name__)

REPORT_COLUMNS = ["url", "color1", "color2", "color3"]


class ReportError(Exception):
    """Raised when the report sink rejects a write."""


def publish_results(ledger: Ledger, path: Path) -> int:
    """Write every resolved ledger entry to *path* and return the row count.

    Rows follow the ledger key order. ``.parquet`` paths are written with
    pandas; anything else is headerless CSV.
    """
    if RESOLVED not in ledger.partitions():
        raise LedgerError(f"partition {RESOLVED!r} not found")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.suffix.lower() == ".parquet":
            count = _write_parquet(ledger, path)
        else:
            count = _write_csv(ledger, path)
    except (OSError, csv.Error, ValueError) as exc:
        raise ReportError(f"failed to write {path}: {exc}") from exc
    logger.info("result saved to file: %s (%d rows)", path, count)
    return count


def _write_csv(ledger: Ledger, path: Path) -> int:
    count = 0
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)

        def visit(url: str, colors: tuple[str, str, str]) -> None:
            nonlocal count
            writer.writerow([url, *colors])
            count += 1

        with ledger.begin_read() as tx:
            tx.for_each_resolved(visit)
    return count


def _write_parquet(ledger: Ledger, path: Path) -> int:
    with ledger.begin_read() as tx:
        rows = [[url, *colors] for url, colors in tx.iter_resolved()]
    df = pd.DataFrame(rows, columns=REPORT_COLUMNS)
    df.to_parquet(path, index=False, engine="pyarrow")
    return len(df)


def write_metrics(path: Path, summary: RunSummary) -> Path:
    """Write a run summary to *path* as JSON and return the path."""
    payload = asdict(summary)
    payload["finished"] = summary.finished
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path

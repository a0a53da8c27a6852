"""Single-owner writer thread committing pipeline outcomes to the ledger."""

from __future__ import annotations

import logging
import queue
import threading

from ..io.ledger import Ledger, LedgerError
from ..io.models import Failed, Outcome, Resolved

logger = logging.getLogger(__name__)

STOP = object()


class LedgerWriter(threading.Thread):
    """Drain *outcomes* and commit each one in its own write transaction.

    This thread is the only code path that mutates the ledger. On a fatal
    error it records the exception, sets *abort*, and keeps draining the
    queue without writing so producers never block on a dead consumer.
    """

    def __init__(
        self,
        ledger: Ledger,
        outcomes: "queue.Queue[object]",
        abort: threading.Event,
    ) -> None:
        super().__init__(name="topcolors-ledger-writer", daemon=True)
        self._ledger = ledger
        self._outcomes = outcomes
        self._abort = abort
        self.error: Exception | None = None
        self.written_resolved = 0
        self.written_failed = 0
        self.ignored = 0

    def run(self) -> None:
        while True:
            item = self._outcomes.get()
            try:
                if item is STOP:
                    return
                if self.error is not None:
                    continue
                try:
                    self.commit(item)  # type: ignore[arg-type]
                except Exception as exc:  # noqa: BLE001 - any writer failure is fatal
                    logger.error("ledger write failed: %s", exc)
                    self.error = exc if isinstance(exc, LedgerError) else LedgerError(str(exc))
                    self._abort.set()
            finally:
                self._outcomes.task_done()

    def commit(self, outcome: Outcome) -> bool:
        """Write *outcome* and return whether a new entry was persisted."""
        url = outcome.candidate.url
        with self._ledger.begin_write() as tx:
            if isinstance(outcome, Resolved):
                inserted = tx.put_resolved(url, outcome.colors)
            elif isinstance(outcome, Failed):
                logger.info("recording failure for %s", url)
                inserted = tx.put_failed(url)
            else:
                raise LedgerError(f"unexpected outcome {outcome!r}")
        if not inserted:
            self.ignored += 1
            logger.debug("%s already present in ledger, entry left unchanged", url)
        elif isinstance(outcome, Resolved):
            self.written_resolved += 1
        else:
            self.written_failed += 1
        return inserted

    def stop(self) -> None:
        """Signal the thread to finish once queued outcomes are drained."""
        self._outcomes.put(STOP)
        self.join()

"""Bounded worker pool driving candidate URLs through fetch and histogram."""

from __future__ import annotations

import logging
import queue
import threading
from typing import BinaryIO, Callable, Iterable

from tqdm import tqdm

from ..crawl.fetch import DEFAULT_TIMEOUT, FetchError, fetch_image
from ..features.color import DecodeError, InsufficientColors, histogram, rank, top_colors
from ..io.ledger import FAILED, RESOLVED, Ledger, LedgerError
from ..io.models import CandidateURL, Failed, Outcome, Resolved, RunSummary
from .writer import STOP, LedgerWriter

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 4
DEFAULT_QUEUE_DEPTH = 16

Fetcher = Callable[..., BinaryIO]


class AdmissionGate:
    """Lock-guarded record of URLs already admitted during one run."""

    def __init__(self) -> None:
        self._seen: set[str] = set()
        self._lock = threading.Lock()

    def admit(self, url: str) -> bool:
        """Return True the first time *url* is offered, False afterwards."""
        with self._lock:
            if url in self._seen:
                return False
            self._seen.add(url)
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)


class _RunState:
    """Queues, counters and the abort flag shared by one run's threads."""

    def __init__(self, queue_depth: int, progress: bool) -> None:
        self.work: "queue.Queue[object]" = queue.Queue(maxsize=queue_depth)
        self.outcomes: "queue.Queue[object]" = queue.Queue(maxsize=queue_depth)
        self.abort = threading.Event()
        self.summary = RunSummary()
        self.error: Exception | None = None
        self._lock = threading.Lock()
        self._bar = tqdm(desc="Ingesting", unit="url", leave=False, disable=not progress)

    def finish(self, counter: str) -> None:
        with self._lock:
            setattr(self.summary, counter, getattr(self.summary, counter) + 1)
            self._bar.update(1)

    def fatal(self, exc: Exception) -> None:
        with self._lock:
            if self.error is None:
                self.error = exc
        self.abort.set()

    def close(self) -> None:
        self._bar.close()


class IngestPipeline:
    """Fetch, histogram and record candidate URLs with bounded concurrency.

    The calling thread reads candidates and feeds a bounded work queue; a fixed
    set of worker threads pulls from it. Workers only read the ledger; their
    outcomes are committed by a single :class:`LedgerWriter`.
    """

    def __init__(
        self,
        ledger: Ledger,
        workers: int = DEFAULT_WORKERS,
        queue_depth: int = DEFAULT_QUEUE_DEPTH,
        fetcher: Fetcher = fetch_image,
        fetch_timeout: float = DEFAULT_TIMEOUT,
        progress: bool = False,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be a positive integer")
        if queue_depth < 1:
            raise ValueError("queue_depth must be a positive integer")
        self._ledger = ledger
        self._workers = workers
        self._queue_depth = queue_depth
        self._fetcher = fetcher
        self._fetch_timeout = fetch_timeout
        self._progress = progress

    def run(self, candidates: Iterable[CandidateURL]) -> RunSummary:
        """Process every candidate and return the run summary.

        Raises the first fatal :class:`LedgerError` once all threads have stopped.
        """
        state = _RunState(self._queue_depth, self._progress)
        gate = AdmissionGate()
        writer = LedgerWriter(self._ledger, state.outcomes, state.abort)
        writer.start()
        threads = [
            threading.Thread(
                target=self._worker,
                args=(state,),
                name=f"topcolors-worker-{index}",
                daemon=True,
            )
            for index in range(self._workers)
        ]
        for thread in threads:
            thread.start()

        try:
            for candidate in candidates:
                if state.abort.is_set():
                    logger.error("aborting input read after fatal error")
                    break
                if not gate.admit(candidate.url):
                    logger.info("%s already queued in this run, ignoring", candidate.url)
                    state.finish("duplicates")
                    continue
                state.summary.admitted += 1
                state.work.put(candidate)
        finally:
            for _ in threads:
                state.work.put(STOP)
            for thread in threads:
                thread.join()
            writer.stop()
            state.close()

        summary = state.summary
        summary.written_resolved = writer.written_resolved
        summary.written_failed = writer.written_failed
        error = state.error or writer.error
        if error is not None:
            raise error
        return summary

    def _worker(self, state: _RunState) -> None:
        while True:
            item = state.work.get()
            try:
                if item is STOP:
                    return
                if state.abort.is_set():
                    continue
                try:
                    outcome = self.process(item)  # type: ignore[arg-type]
                except LedgerError as exc:
                    logger.error("ledger read failed: %s", exc)
                    state.fatal(exc)
                    continue
                except Exception as exc:  # noqa: BLE001 - surfaced from run()
                    logger.exception("unexpected error processing %s", item)
                    state.fatal(exc)
                    continue
                if outcome is None:
                    state.finish("duplicates")
                    continue
                state.outcomes.put(outcome)
                state.finish("resolved" if isinstance(outcome, Resolved) else "failed")
            finally:
                state.work.task_done()

    def process(self, candidate: CandidateURL) -> Outcome | None:
        """Run one candidate through the per-URL state machine.

        Returns ``None`` when the ledger already holds an entry for the URL,
        otherwise the outcome to commit. Only :class:`LedgerError` escapes.
        """
        url = candidate.url
        is_jpeg = candidate.looks_like_jpeg

        recorded = self._recorded_partition(url)
        if recorded == RESOLVED:
            logger.info("%s already ingested, ignoring", url)
            return None
        if recorded == FAILED:
            logger.info("%s is a known bad URL, ignoring", url)
            return None

        if not is_jpeg:
            logger.info("%s does not look to be a jpeg", url)
            return Failed(candidate, "not a jpeg")

        try:
            stream = self._fetcher(url, timeout=self._fetch_timeout)
        except FetchError as exc:
            logger.warning("fetch failed: %s", exc)
            return Failed(candidate, str(exc))

        try:
            colors = top_colors(rank(histogram(stream)))
        except (DecodeError, InsufficientColors) as exc:
            logger.warning("error counting colors in %s: %s", url, exc)
            return Failed(candidate, str(exc))
        finally:
            stream.close()

        logger.info("%s: top colors %s", url, ", ".join(colors))
        return Resolved(candidate, colors)

    def _recorded_partition(self, url: str) -> str | None:
        with self._ledger.begin_read() as tx:
            if tx.lookup_resolved(url) is not None:
                return RESOLVED
            if tx.lookup_failed(url):
                return FAILED
        return None

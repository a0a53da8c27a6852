"""Persistent dedup ledger recording the outcome of every processed URL.

The ledger is a single sqlite file holding two partitions (tables):

* ``resolved`` maps a URL to a JSON array of its three top colors.
* ``failed`` maps a URL to a presence marker.

Entries are inserted at most once and never updated or deleted. Reads happen
concurrently from worker threads through a pooled SQLAlchemy engine; writes are
expected from a single owner (see :mod:`topcolors.pipeline.writer`).
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Sequence

from sqlalchemy import (
    Column,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    insert,
    inspect,
    select,
)
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.pool import QueuePool
from tenacity import (  # type: ignore[import-untyped]
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .models import TopColors

logger = logging.getLogger(__name__)

RESOLVED = "resolved"
FAILED = "failed"
PARTITIONS = (RESOLVED, FAILED)
FAILED_MARKER = "T"

_BUSY_TIMEOUT = 30.0
_POOL_SIZE = 8
_BEGIN_OPTION = "topcolors_begin"

metadata = MetaData()

resolved_table = Table(
    RESOLVED,
    metadata,
    Column("url", String, primary_key=True, nullable=False),
    Column("colors", Text, nullable=False),
)

failed_table = Table(
    FAILED,
    metadata,
    Column("url", String, primary_key=True, nullable=False),
    Column("marker", String, nullable=False),
)

_TABLES = {RESOLVED: resolved_table, FAILED: failed_table}


class LedgerError(Exception):
    """Raised for any ledger failure; callers treat it as fatal."""


def _is_lock_contention(exc: BaseException) -> bool:
    if not isinstance(exc, OperationalError):
        return False
    message = str(exc.orig).lower()
    return "locked" in message or "busy" in message


_begin_retryer = Retrying(
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
    retry=retry_if_exception(_is_lock_contention),
    before_sleep=before_sleep_log(logger, logging.DEBUG),
    reraise=True,
)


def encode_colors(colors: Sequence[str]) -> str:
    if len(colors) != 3 or not all(isinstance(value, str) for value in colors):
        raise LedgerError(f"expected three hex strings, got {colors!r}")
    return json.dumps(list(colors))


def decode_colors(raw: str) -> TopColors:
    try:
        value = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise LedgerError(f"corrupt resolved value {raw!r}") from exc
    if not isinstance(value, list) or len(value) != 3 or not all(
        isinstance(item, str) for item in value
    ):
        raise LedgerError(f"corrupt resolved value {raw!r}")
    return (value[0], value[1], value[2])


def _wrap_db_error(exc: SQLAlchemyError) -> LedgerError:
    message = str(getattr(exc, "orig", None) or exc)
    if message.startswith("no such table"):
        name = message.rsplit(":", 1)[-1].strip()
        return LedgerError(f"missing partition {name!r}")
    return LedgerError(message)


def _create_engine(path: Path, busy_timeout: float) -> Engine:
    engine = create_engine(
        URL.create("sqlite", database=str(path)),
        poolclass=QueuePool,
        pool_size=_POOL_SIZE,
        max_overflow=-1,
        connect_args={"timeout": busy_timeout, "check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:
        # hand BEGIN/COMMIT to the "begin" hook below
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL")
        finally:
            cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn: Connection) -> None:
        mode = conn.get_execution_options().get(_BEGIN_OPTION, "DEFERRED")
        conn.exec_driver_sql(f"BEGIN {mode}")

    return engine


class ReadTransaction:
    """Read-only view of the ledger bound to one open transaction."""

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def _execute(self, statement):
        try:
            return self._conn.execute(statement)
        except SQLAlchemyError as exc:
            raise _wrap_db_error(exc) from exc

    def lookup_resolved(self, url: str) -> TopColors | None:
        raw = self._execute(
            select(resolved_table.c.colors).where(resolved_table.c.url == url)
        ).scalar_one_or_none()
        if raw is None:
            return None
        return decode_colors(raw)

    def lookup_failed(self, url: str) -> bool:
        row = self._execute(
            select(failed_table.c.url).where(failed_table.c.url == url)
        ).first()
        return row is not None

    def iter_resolved(self) -> Iterator[tuple[str, TopColors]]:
        """Yield resolved entries in byte-wise lexicographic URL order."""
        result = self._execute(
            select(resolved_table.c.url, resolved_table.c.colors).order_by(resolved_table.c.url)
        )
        try:
            for url, raw in result:
                yield url, decode_colors(raw)
        except SQLAlchemyError as exc:
            raise _wrap_db_error(exc) from exc

    def for_each_resolved(self, visit: Callable[[str, TopColors], None]) -> None:
        for url, colors in self.iter_resolved():
            visit(url, colors)

    def count_resolved(self) -> int:
        return int(self._execute(select(func.count()).select_from(resolved_table)).scalar_one())

    def count_failed(self) -> int:
        return int(self._execute(select(func.count()).select_from(failed_table)).scalar_one())

    def failed_urls(self) -> list[str]:
        result = self._execute(select(failed_table.c.url).order_by(failed_table.c.url))
        return list(result.scalars())


class WriteTransaction(ReadTransaction):
    """Ledger view that may also insert entries."""

    def put_resolved(self, url: str, colors: Sequence[str]) -> bool:
        """Insert a resolved entry; return False if *url* was already present."""
        result = self._execute(
            insert(resolved_table)
            .prefix_with("OR IGNORE")
            .values(url=url, colors=encode_colors(colors))
        )
        return result.rowcount == 1

    def put_failed(self, url: str) -> bool:
        """Insert a failure marker; return False if *url* was already present."""
        result = self._execute(
            insert(failed_table).prefix_with("OR IGNORE").values(url=url, marker=FAILED_MARKER)
        )
        return result.rowcount == 1


class Ledger:
    """Transactional key-value store backed by a sqlite file."""

    def __init__(self, path: str | Path, busy_timeout: float = _BUSY_TIMEOUT) -> None:
        self.path = Path(path)
        self.engine = _create_engine(self.path, busy_timeout)
        self._closed = False

    def __enter__(self) -> "Ledger":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _open(self, mode: str) -> Connection:
        conn = self.engine.connect().execution_options(**{_BEGIN_OPTION: mode})
        try:
            conn.begin()
        except BaseException:
            conn.close()
            raise
        return conn

    @contextmanager
    def _transaction(self, mode: str) -> Iterator[Connection]:
        if self._closed:
            raise LedgerError(f"ledger {self.path} is closed")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = _begin_retryer(self._open, mode)
        except OSError as exc:
            raise LedgerError(f"cannot open ledger {self.path}: {exc}") from exc
        except SQLAlchemyError as exc:
            raise LedgerError(f"BEGIN {mode} failed on {self.path}: {exc}") from exc
        try:
            yield conn
        except BaseException:
            try:
                conn.rollback()
            except SQLAlchemyError:
                logger.debug("rollback failed on %s", self.path, exc_info=True)
            conn.close()
            raise
        try:
            conn.commit()
        except SQLAlchemyError as exc:
            raise _wrap_db_error(exc) from exc
        finally:
            conn.close()

    @contextmanager
    def begin_read(self) -> Iterator[ReadTransaction]:
        """Open a read transaction released on every exit path."""
        with self._transaction("DEFERRED") as conn:
            yield ReadTransaction(conn)

    @contextmanager
    def begin_write(self) -> Iterator[WriteTransaction]:
        """Open a write transaction, committed on success and rolled back on error."""
        with self._transaction("IMMEDIATE") as conn:
            yield WriteTransaction(conn)

    def partitions(self) -> set[str]:
        """Return the names of the partitions present in the file."""
        with self._transaction("DEFERRED") as conn:
            try:
                inspector = inspect(conn)
                return {name for name in PARTITIONS if inspector.has_table(name)}
            except SQLAlchemyError as exc:
                raise _wrap_db_error(exc) from exc

    def initialize(self, require_fresh: bool = False) -> None:
        """Create both partitions.

        With *require_fresh* the call fails if either partition already exists;
        otherwise existing partitions are reused.
        """
        with self._transaction("IMMEDIATE") as conn:
            try:
                inspector = inspect(conn)
                for name in PARTITIONS:
                    if inspector.has_table(name):
                        if require_fresh:
                            raise LedgerError(f"partition {name!r} already exists")
                        continue
                    _TABLES[name].create(conn)
            except SQLAlchemyError as exc:
                raise _wrap_db_error(exc) from exc
        logger.debug("ledger %s initialized (fresh=%s)", self.path, require_fresh)

    def close(self) -> None:
        """Refuse new transactions and release every pooled connection."""
        self._closed = True
        self.engine.dispose()

    def destroy(self) -> None:
        """Close the ledger and delete its file and sqlite side files."""
        self.close()
        for suffix in ("", "-wal", "-shm", "-journal"):
            Path(f"{self.path}{suffix}").unlink(missing_ok=True)

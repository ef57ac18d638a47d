"""
SQLite storage medium shared by all catalog stores.

One writer connection, guarded by a lock, carries every mutation inside a
single ``BEGIN IMMEDIATE`` transaction. Reads run on per-thread reader
connections inside a deferred transaction, so each read sees one consistent
WAL snapshot and readers never wait on each other.

The database assumes exactly one process owns the file at a time.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .errors import CatalogError, StorageInitError, StorageIOError

logger = logging.getLogger(__name__)

MEMORY = ":memory:"


def _casefold(value):
    """SQL function: Unicode-aware lowercase for case-insensitive matching."""
    if value is None:
        return None
    return str(value).casefold()


class Database:
    """
    SQLite connection owner with single-writer / multi-reader discipline.

    Opening is explicit: construct, then ``open()``. Every sqlite3 error is
    surfaced as a typed catalog error: ``StorageInitError`` while opening,
    ``StorageIOError`` afterwards.
    """

    def __init__(self, db_path: str | Path):
        """
        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self._db_path = str(db_path)
        self._memory = self._db_path == MEMORY
        self._writer: Optional[sqlite3.Connection] = None
        self._write_lock = threading.RLock()
        self._local = threading.local()
        self._readers: list[sqlite3.Connection] = []
        self._readers_lock = threading.Lock()

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def is_open(self) -> bool:
        return self._writer is not None

    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None gives us manual transaction control
        conn = sqlite3.connect(
            self._db_path,
            check_same_thread=False,
            isolation_level=None,
            timeout=10.0,
        )
        conn.row_factory = sqlite3.Row
        # Wait up to 5 seconds for locks instead of failing immediately
        conn.execute("PRAGMA busy_timeout=5000")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.create_function("casefold", 1, _casefold, deterministic=True)
        return conn

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def open(self) -> None:
        """Open the writer connection and check the file is a usable database."""
        if self._writer is not None:
            return
        conn = None
        try:
            if not self._memory:
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = self._connect()
            if not self._memory:
                # WAL: readers keep their snapshot while the writer commits
                conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
        except (sqlite3.Error, OSError) as e:
            if conn is not None:
                conn.close()
            raise StorageInitError(f"Cannot open catalog database {self._db_path}: {e}") from e
        self._writer = conn
        logger.debug("Opened catalog database %s", self._db_path)

    def close(self) -> None:
        """Close all connections. Safe to call more than once."""
        with self._readers_lock:
            for conn in self._readers:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning("Error closing reader connection: %s", e)
            self._readers.clear()
            self._local = threading.local()
        with self._write_lock:
            if self._writer is not None:
                self._writer.close()
                self._writer = None
                logger.debug("Closed catalog database %s", self._db_path)

    def _require_writer(self) -> sqlite3.Connection:
        if self._writer is None:
            raise StorageIOError("Catalog database is not open")
        return self._writer

    def _reader(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            self._require_writer()
            try:
                conn = self._connect()
            except sqlite3.Error as e:
                raise StorageIOError(f"Cannot open reader connection: {e}") from e
            self._local.conn = conn
            with self._readers_lock:
                self._readers.append(conn)
        return conn

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a mutation atomically.

        Commits on success. Rolls back on any exception; sqlite3 errors are
        re-raised as StorageIOError, catalog errors pass through unchanged.
        """
        with self._write_lock:
            conn = self._require_writer()
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageIOError(f"Cannot start write transaction: {e}") from e
            try:
                yield conn
                conn.commit()
            except CatalogError:
                conn.rollback()
                raise
            except sqlite3.Error as e:
                conn.rollback()
                raise StorageIOError(f"Write failed: {e}") from e
            except BaseException:
                conn.rollback()
                raise

    @contextmanager
    def snapshot(self) -> Iterator[sqlite3.Connection]:
        """
        Run one or more reads against a single consistent snapshot.

        In-memory databases have no separate readers, so reads share the
        writer connection under the write lock.
        """
        if self._memory:
            with self._write_lock:
                conn = self._require_writer()
                try:
                    yield conn
                except sqlite3.Error as e:
                    raise StorageIOError(f"Read failed: {e}") from e
            return

        conn = self._reader()
        try:
            conn.execute("BEGIN")
        except sqlite3.Error as e:
            raise StorageIOError(f"Cannot start read transaction: {e}") from e
        try:
            yield conn
        except sqlite3.Error as e:
            raise StorageIOError(f"Read failed: {e}") from e
        finally:
            conn.rollback()


def update_columns(
    conn: sqlite3.Connection,
    table: str,
    id: str,
    values: dict,
    updated_at: str,
) -> bool:
    """
    Write only the given columns of one row and refresh updated_at.

    Column names come from each store's own whitelist, never from callers.

    Returns:
        True if the row exists
    """
    assignments = ", ".join(f"{column} = ?" for column in values)
    if assignments:
        assignments += ", "
    cursor = conn.execute(
        f"UPDATE {table} SET {assignments}updated_at = ? WHERE id = ?",
        (*values.values(), updated_at, id),
    )
    return cursor.rowcount > 0

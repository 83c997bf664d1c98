"""
worldstore/database.py -- Owner of the single SQLite connection.

``DatabaseManager`` opens the database file, enables foreign keys and WAL
journaling, runs the schema migrations, and hands the connection to the
stores.  It is the only object that opens or closes the handle.

The connection runs in autocommit mode; multi-statement units of work go
through :meth:`DatabaseManager.transaction`, which serialises writers with
a re-entrant lock and ``BEGIN IMMEDIATE``.  Reads go through
:meth:`DatabaseManager.read`, which takes the same lock, because every
thread shares the one connection.

Usage::

    from worldstore.config import StorageConfig
    from worldstore.database import DatabaseManager

    with DatabaseManager(StorageConfig(path="campaign.db")) as db:
        db.initialize().unwrap()
        ...
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator

from worldstore.config import StorageConfig
from worldstore.errors import StorageInitializationError, StorageNotInitializedError
from worldstore.migrations import MIGRATIONS, Migration, MigrationEngine
from worldstore.result import Fail, Ok, Result

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Opens, migrates and closes the storage database.

    Parameters
    ----------
    config : StorageConfig
        Path, read-only flag and busy timeout.
    migrations : iterable of Migration, optional
        Schema steps to apply (default ``MIGRATIONS``).
    """

    def __init__(self, config: StorageConfig, migrations: Iterable[Migration] = MIGRATIONS):
        self.config = config
        self.migration_engine = MigrationEngine(migrations)
        self._conn: sqlite3.Connection | None = None
        self._write_lock = threading.RLock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> Result[None, StorageInitializationError]:
        """Open the database and bring its schema up to date.

        On any failure the handle is closed again and a
        ``StorageInitializationError`` is returned.  Calling this on an
        already-initialized manager is a no-op.
        """
        if self._conn is not None:
            return Ok(None)

        try:
            conn = self._connect()
        except (sqlite3.Error, OSError) as exc:
            logger.exception("Could not open database at %s", self.config.path)
            return Fail(StorageInitializationError(
                f"Could not open database at '{self.config.path}'", exc
            ))

        try:
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute(f"PRAGMA busy_timeout = {int(self.config.busy_timeout * 1000)}")
            if self.config.read_only:
                result = self._check_read_only_schema(conn)
            else:
                conn.execute("PRAGMA journal_mode = WAL")
                result = self.migration_engine.migrate(conn)
        except sqlite3.Error as exc:
            result = Fail(StorageInitializationError(
                f"Could not configure database at '{self.config.path}'", exc
            ))

        if isinstance(result, Fail):
            conn.close()
            logger.error("Database initialization failed: %s", result.error)
            return result

        self._conn = conn
        logger.info(
            "Opened database %s (schema version %d%s)",
            self.config.path, result.value, ", read-only" if self.config.read_only else "",
        )
        return Ok(None)

    def _connect(self) -> sqlite3.Connection:
        path = self.config.path
        timeout = self.config.busy_timeout
        if self.config.is_memory:
            conn = sqlite3.connect(path, timeout=timeout, isolation_level=None,
                                   check_same_thread=False)
        elif self.config.read_only:
            uri = Path(path).resolve().as_uri() + "?mode=ro"
            conn = sqlite3.connect(uri, uri=True, timeout=timeout, isolation_level=None,
                                   check_same_thread=False)
        else:
            parent = os.path.dirname(os.path.abspath(path))
            os.makedirs(parent, exist_ok=True)
            conn = sqlite3.connect(path, timeout=timeout, isolation_level=None,
                                   check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _check_read_only_schema(self, conn: sqlite3.Connection) -> Result[int, StorageInitializationError]:
        """A read-only handle cannot migrate, so the schema must be current."""
        status = self.migration_engine.status(conn)
        if not status.is_current:
            return Fail(StorageInitializationError(
                f"Read-only database is at schema version {status.current_version}, "
                f"expected {status.latest_version}"
            ))
        return Ok(status.current_version)

    def close(self) -> None:
        """Close the connection.  Safe to call more than once."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug("Closed database %s", self.config.path)

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def __enter__(self):
        """Support usage as a context manager."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Close on context manager exit."""
        self.close()
        return False

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    @property
    def connection(self) -> sqlite3.Connection:
        """The open connection.

        Raises
        ------
        StorageNotInitializedError
            If :meth:`initialize` has not succeeded or the database is closed.
        """
        if self._conn is None:
            raise StorageNotInitializedError()
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block as one write transaction, rolling back on error."""
        conn = self.connection
        with self._write_lock:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Hold the connection for a block of reads.

        Every thread shares one connection, so a read issued while another
        thread's transaction is open would see its uncommitted rows.  Taking
        the writer lock keeps reads out of in-flight transactions and lets a
        multi-query read (count plus page) see one consistent state.
        """
        conn = self.connection
        with self._write_lock:
            yield conn

    def schema_version(self) -> int:
        return self.migration_engine.current_version(self.connection)

"""
worldstore/migrations.py -- Versioned schema migration engine.

The schema version is a single integer: the highest row of the append-only
``schema_version`` table (0 when the table does not exist yet).  Each
``Migration`` is a fixed, ordered batch of DDL statements that moves the
database from ``version - 1`` to ``version``.

All pending migrations for one run execute inside a single transaction.
Either every step succeeds and the version advances to the latest, or the
transaction is rolled back and nothing changes.  Running against a database
that is already current performs no DDL and no writes.  The engine never
downgrades and never skips a version.

Usage::

    from worldstore.migrations import MigrationEngine

    engine = MigrationEngine()
    result = engine.migrate(conn)      # Ok(latest_version) or Fail(...)
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Iterable, Sequence

from worldstore import schema
from worldstore.errors import StorageInitializationError
from worldstore.result import Fail, Ok, Result
from worldstore.utils import now_utc, to_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    """One schema step.

    Attributes
    ----------
    version : int
        The version the database is at after this step.
    description : str
        Short human-readable summary, used in log output.
    statements : tuple[str, ...]
        SQL statements executed in order.
    """

    version: int
    description: str
    statements: tuple[str, ...]


@dataclass(frozen=True)
class MigrationStatus:
    current_version: int
    latest_version: int
    pending_versions: tuple[int, ...]

    @property
    def is_current(self) -> bool:
        return not self.pending_versions and self.current_version == self.latest_version


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        version=1,
        description="entities table, full-text index and sync triggers",
        statements=(
            schema.CREATE_ENTITIES_TABLE,
            *schema.CREATE_ENTITIES_INDEXES,
            schema.CREATE_FTS_TABLE,
            *schema.CREATE_FTS_TRIGGERS,
        ),
    ),
    Migration(
        version=2,
        description="worlds and campaigns tables",
        statements=(
            schema.CREATE_WORLDS_TABLE,
            *schema.CREATE_WORLDS_INDEXES,
            schema.CREATE_CAMPAIGNS_TABLE,
            *schema.CREATE_CAMPAIGNS_INDEXES,
        ),
    ),
    Migration(
        version=3,
        description="entity duration, type-specific fields and connections",
        statements=(
            schema.ALTER_ENTITIES_ADD_DURATION,
            schema.ALTER_ENTITIES_ADD_TYPE_SPECIFIC_FIELDS,
            schema.ALTER_ENTITIES_ADD_CONNECTIONS,
        ),
    ),
)

SCHEMA_VERSION = MIGRATIONS[-1].version


def _check_sequence(migrations: Sequence[Migration]) -> None:
    """Raise ``ValueError`` unless versions run 1, 2, 3, ... without gaps."""
    if not migrations:
        raise ValueError("At least one migration is required")
    for expected, migration in enumerate(migrations, start=1):
        if migration.version != expected:
            raise ValueError(
                f"Migrations must be numbered consecutively from 1; "
                f"expected version {expected}, found {migration.version}"
            )
        if not migration.statements:
            raise ValueError(f"Migration {migration.version} has no statements")


class MigrationEngine:
    """Applies ``Migration`` steps to an open SQLite connection.

    The connection must be in autocommit mode (``isolation_level=None``) so
    that the engine controls the transaction explicitly.

    Parameters
    ----------
    migrations : iterable of Migration, optional
        The full ordered migration list (default ``MIGRATIONS``).
    """

    def __init__(self, migrations: Iterable[Migration] = MIGRATIONS):
        self.migrations = tuple(migrations)
        _check_sequence(self.migrations)

    @property
    def latest_version(self) -> int:
        return self.migrations[-1].version

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @staticmethod
    def current_version(conn: sqlite3.Connection) -> int:
        """Return the persisted schema version (0 for a fresh database)."""
        exists = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'schema_version'"
        ).fetchone()
        if exists is None:
            return 0
        row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] or 0

    def pending(self, current: int) -> list[Migration]:
        return [m for m in self.migrations if m.version > current]

    def status(self, conn: sqlite3.Connection) -> MigrationStatus:
        current = self.current_version(conn)
        return MigrationStatus(
            current_version=current,
            latest_version=self.latest_version,
            pending_versions=tuple(m.version for m in self.pending(current)),
        )

    # ------------------------------------------------------------------
    # Migration
    # ------------------------------------------------------------------

    def migrate(self, conn: sqlite3.Connection) -> Result[int, StorageInitializationError]:
        """Bring the schema up to the latest version in one transaction.

        Returns
        -------
        Result[int, StorageInitializationError]
            ``Ok(version)`` with the resulting schema version, or ``Fail``
            when the database is newer than this code or a step failed.
            On failure the transaction is rolled back.
        """
        try:
            current = self.current_version(conn)
        except sqlite3.Error as exc:
            return Fail(StorageInitializationError("Could not read the schema version", exc))

        if current > self.latest_version:
            return Fail(StorageInitializationError(
                f"Database schema version {current} is newer than the latest "
                f"supported version {self.latest_version}"
            ))
        if not self.pending(current):
            logger.debug("Schema already at version %d", current)
            return Ok(current)

        step = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            # Another connection may have migrated while we waited for the lock.
            current = self.current_version(conn)
            conn.execute(schema.CREATE_SCHEMA_VERSION_TABLE)
            for step in self.pending(current):
                logger.info("Applying schema migration %d: %s", step.version, step.description)
                for statement in step.statements:
                    conn.execute(statement)
                conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (step.version, to_iso(now_utc())),
                )
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            failed_at = step.version if step is not None else current + 1
            logger.error("Schema migration to version %d failed: %s", failed_at, exc)
            return Fail(StorageInitializationError(
                f"Schema migration to version {failed_at} failed", exc
            ))

        logger.info("Database schema migrated from version %d to %d", current, self.latest_version)
        return Ok(self.latest_version)

"""
worldstore/config.py -- Storage configuration and default database location.

The default database lives in the platform user-data directory (via
``platformdirs``).  Set ``WORLDSTORE_DB_PATH`` to point somewhere else, or
use ``StorageConfig.in_memory()`` for an ephemeral database in tests.
"""

from __future__ import annotations

import os
from pathlib import Path

from platformdirs import user_data_dir
from pydantic import BaseModel, ConfigDict, Field, field_validator

_APP_NAME = "Worldstore"
_APP_AUTHOR = "Worldstore"
_DB_FILENAME = "worldstore.db"

DB_PATH_ENV_VAR = "WORLDSTORE_DB_PATH"
MEMORY_PATH = ":memory:"


def get_user_data_dir() -> str:
    """Return the platform-appropriate user data directory."""
    return user_data_dir(_APP_NAME, _APP_AUTHOR)


def get_default_db_path() -> str:
    """Return the database path from the environment or the user data dir."""
    override = os.environ.get(DB_PATH_ENV_VAR, "").strip()
    if override:
        return override
    return os.path.join(get_user_data_dir(), _DB_FILENAME)


class StorageConfig(BaseModel):
    """Where and how to open the database.

    Attributes
    ----------
    path : str
        Filesystem path of the SQLite file, or ``":memory:"``.
    read_only : bool
        Open without write access.  No migrations are run; the schema must
        already be current.
    busy_timeout : float
        Seconds a writer waits for another writer's lock before failing.
    """

    model_config = ConfigDict(frozen=True)

    path: str = Field(default_factory=get_default_db_path)
    read_only: bool = False
    busy_timeout: float = Field(default=5.0, ge=0)

    @field_validator("path", mode="before")
    @classmethod
    def _coerce_path(cls, value):
        if isinstance(value, Path):
            return str(value)
        if not value or not str(value).strip():
            raise ValueError("path must not be empty")
        return value

    @classmethod
    def in_memory(cls) -> "StorageConfig":
        return cls(path=MEMORY_PATH)

    @property
    def is_memory(self) -> bool:
        return self.path == MEMORY_PATH

"""
Shared pytest fixtures for the worldstore test suite.

Provides:
    - db: an initialized in-memory DatabaseManager
    - store: an EntityStore on that database
    - world_store: a WorldStore on that database
    - db_path: a path for an on-disk database inside tmp_path
"""

import sys
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Ensure worldstore/ is importable regardless of where pytest is invoked
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).resolve().parent.parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from worldstore.config import StorageConfig  # noqa: E402
from worldstore.database import DatabaseManager  # noqa: E402
from worldstore.storage import EntityStore  # noqa: E402
from worldstore.worlds import WorldStore  # noqa: E402


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def db():
    """Return an initialized in-memory database, closed after the test."""
    manager = DatabaseManager(StorageConfig.in_memory())
    manager.initialize().unwrap()
    yield manager
    manager.close()


@pytest.fixture
def store(db):
    """Return an EntityStore backed by the in-memory database."""
    return EntityStore(db)


@pytest.fixture
def world_store(db):
    """Return a WorldStore backed by the in-memory database."""
    return WorldStore(db)


@pytest.fixture
def db_path(tmp_path):
    """Return a path for an on-disk database file (not yet created)."""
    return str(tmp_path / "data" / "campaign.db")

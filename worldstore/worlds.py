"""
worldstore/worlds.py -- Worlds and campaigns.

Worlds and campaigns only carry identity and a little metadata; entities
point at them by id.  Deleting a world removes its campaigns through the
``ON DELETE CASCADE`` foreign key.  Entity rows are left alone.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from worldstore.database import DatabaseManager
from worldstore.errors import NotFoundError, StorageOperationError, ValidationError
from worldstore.models.entity import Campaign, World
from worldstore.result import Fail, Ok, Result
from worldstore.utils import from_iso, generate_id, now_utc, to_iso

logger = logging.getLogger(__name__)


def _world_from_row(row: sqlite3.Row) -> World:
    return World(
        id=row["id"],
        name=row["name"],
        tagline=row["tagline"],
        created_at=from_iso(row["created_at"]),
        modified_at=from_iso(row["modified_at"]),
    )


def _campaign_from_row(row: sqlite3.Row) -> Campaign:
    return Campaign(
        id=row["id"],
        world_id=row["world_id"],
        name=row["name"],
        description=row["description"],
        created_at=from_iso(row["created_at"]),
        modified_at=from_iso(row["modified_at"]),
    )


class WorldStore:
    """CRUD for the ``worlds`` and ``campaigns`` tables."""

    def __init__(self, database: DatabaseManager):
        self.database = database

    @staticmethod
    def _failed(action: str, exc: Exception) -> Fail[StorageOperationError]:
        logger.warning("Could not %s: %s", action, exc)
        return Fail(StorageOperationError(f"Could not {action}", exc))

    def create_world(self, name: str, tagline: Optional[str] = None) -> Result[World, Exception]:
        if not name or not name.strip():
            return Fail(ValidationError("World name is required", field="name"))
        now = now_utc()
        world = World(id=generate_id(name), name=name, tagline=tagline,
                      created_at=now, modified_at=now)
        try:
            with self.database.transaction() as conn:
                conn.execute(
                    "INSERT INTO worlds (id, name, tagline, created_at, modified_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (world.id, world.name, world.tagline, to_iso(now), to_iso(now)),
                )
        except sqlite3.Error as exc:
            return self._failed(f"create world '{name}'", exc)
        return Ok(world)

    def get_world(self, world_id: str) -> Result[Optional[World], Exception]:
        try:
            with self.database.read() as conn:
                row = conn.execute(
                    "SELECT * FROM worlds WHERE id = ?", (world_id,)
                ).fetchone()
        except sqlite3.Error as exc:
            return self._failed(f"load world '{world_id}'", exc)
        return Ok(_world_from_row(row) if row is not None else None)

    def delete_world(self, world_id: str) -> Result[None, Exception]:
        """Delete a world and, by cascade, its campaigns."""
        try:
            with self.database.transaction() as conn:
                cursor = conn.execute("DELETE FROM worlds WHERE id = ?", (world_id,))
        except sqlite3.Error as exc:
            return self._failed(f"delete world '{world_id}'", exc)
        if cursor.rowcount == 0:
            return Fail(NotFoundError("World", world_id))
        return Ok(None)

    def create_campaign(self, world_id: str, name: str,
                        description: Optional[str] = None) -> Result[Campaign, Exception]:
        """Create a campaign inside an existing world.

        An unknown *world_id* fails the foreign key and is reported as
        ``StorageOperationError``.
        """
        if not name or not name.strip():
            return Fail(ValidationError("Campaign name is required", field="name"))
        now = now_utc()
        campaign = Campaign(id=generate_id(name), world_id=world_id, name=name,
                            description=description, created_at=now, modified_at=now)
        try:
            with self.database.transaction() as conn:
                conn.execute(
                    "INSERT INTO campaigns (id, world_id, name, description, created_at, modified_at) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (campaign.id, world_id, name, description, to_iso(now), to_iso(now)),
                )
        except sqlite3.Error as exc:
            return self._failed(f"create campaign '{name}'", exc)
        return Ok(campaign)

    def get_campaign(self, campaign_id: str) -> Result[Optional[Campaign], Exception]:
        try:
            with self.database.read() as conn:
                row = conn.execute(
                    "SELECT * FROM campaigns WHERE id = ?", (campaign_id,)
                ).fetchone()
        except sqlite3.Error as exc:
            return self._failed(f"load campaign '{campaign_id}'", exc)
        return Ok(_campaign_from_row(row) if row is not None else None)

    def list_campaigns(self, world_id: str) -> Result[list[Campaign], Exception]:
        try:
            with self.database.read() as conn:
                rows = conn.execute(
                    "SELECT * FROM campaigns WHERE world_id = ? ORDER BY modified_at DESC, id",
                    (world_id,),
                ).fetchall()
        except sqlite3.Error as exc:
            return self._failed(f"list campaigns of world '{world_id}'", exc)
        return Ok([_campaign_from_row(r) for r in rows])

"""
worldstore/models/entity.py -- Domain entities and the flat storage row.

``Entity`` is the domain shape handed to and returned from the storage
engine.  ``EntityRow`` is the flat, nullable, all-strings shape used at the
SQLite boundary; ``worldstore.mapper`` translates between the two.

``World`` and ``Campaign`` carry identity and metadata only.  Entities
reference them by id.
"""

from __future__ import annotations

import sqlite3
from dataclasses import asdict, dataclass, fields
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from worldstore.models.entity_type import EntityType
from worldstore.models.type_specific_fields import TypeSpecificFields
from worldstore.utils import generate_id, now_utc


class Connection(BaseModel):
    """A weak back-reference from one entity to another."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    type: EntityType


class Entity(BaseModel):
    """A character, location, faction, note or session.

    ``type_specific_fields``, when present, must be for the same
    ``EntityType`` as ``type``; the storage engine rejects a mismatch.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, validate_assignment=False)

    id: str
    type: EntityType
    name: str
    world_id: str
    campaign_id: Optional[str] = None
    description: Optional[str] = None
    secrets: Optional[str] = None
    content: Optional[str] = None
    summary: Optional[str] = None
    notes: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    connections: list[Connection] = Field(default_factory=list)
    forked_from: Optional[str] = None
    session_date: Optional[datetime] = None
    duration: Optional[int] = None
    created_at: datetime
    modified_at: datetime
    type_specific_fields: Optional[TypeSpecificFields] = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("name is required")
        return value

    @classmethod
    def new(cls, entity_type, name: str, *, world_id: str, **values: Any) -> "Entity":
        """Build a new entity with a fresh id and matching timestamps.

        Type-specific fields default to an empty instance for the type.
        """
        entity_type = EntityType(entity_type)
        now = now_utc()
        values.setdefault("type_specific_fields", TypeSpecificFields.create_empty(entity_type))
        return cls(
            id=generate_id(name),
            type=entity_type,
            name=name,
            world_id=world_id,
            created_at=now,
            modified_at=now,
            **values,
        )

    def fields_or_empty(self) -> TypeSpecificFields:
        """Return the type-specific fields, or an empty instance if unset."""
        if self.type_specific_fields is None:
            return TypeSpecificFields.create_empty(self.type)
        return self.type_specific_fields

    def connection_ids(self) -> list[str]:
        return [conn.id for conn in self.connections]


class World(BaseModel):
    id: str
    name: str
    tagline: Optional[str] = None
    created_at: datetime
    modified_at: datetime


class Campaign(BaseModel):
    id: str
    world_id: str
    name: str
    description: Optional[str] = None
    created_at: datetime
    modified_at: datetime


# ------------------------------------------------------------------
# Storage rows
# ------------------------------------------------------------------

@dataclass
class EntityRow:
    """Raw row of the ``entities`` table.

    ``tags`` and ``connections`` are JSON array strings;
    ``type_specific_fields`` is a JSON object string or None.
    """

    id: str
    type: str
    name: str
    description: str | None
    secrets: str | None
    content: str | None
    summary: str | None
    notes: str | None
    tags: str
    world_id: str
    campaign_id: str | None
    forked_from: str | None
    session_date: str | None
    created_at: str
    modified_at: str
    duration: int | None = None
    type_specific_fields: str | None = None
    connections: str = "[]"

    @classmethod
    def column_names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    @classmethod
    def from_sqlite(cls, row: sqlite3.Row) -> "EntityRow":
        """Build a row from a ``sqlite3.Row``, ignoring extra columns."""
        available = set(row.keys())
        return cls(**{name: row[name] for name in cls.column_names() if name in available})

    def as_params(self) -> dict[str, Any]:
        """Return the row as named parameters for an INSERT/UPDATE."""
        return asdict(self)

"""
worldstore/mapper.py -- Translation between ``Entity`` and ``EntityRow``.

Writing: tags and connections become JSON arrays, type-specific fields a
JSON object (NULL when absent or empty), timestamps ISO 8601 strings.
Columns that do not belong to the entity's type are written as NULL.

Reading is lenient about the JSON columns: malformed tags, connections or
type-specific fields degrade to empty values instead of failing the load.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError as PydanticValidationError

from worldstore.models.entity import Connection, Entity, EntityRow
from worldstore.models.entity_type import TYPE_ONLY_COLUMNS, EntityType
from worldstore.models.type_specific_fields import TypeSpecificFields
from worldstore.utils import compact_dumps, from_iso, safe_loads, to_iso

logger = logging.getLogger(__name__)


def _for_type(entity_type: EntityType, column: str, value):
    """Return *value* if *column* applies to *entity_type*, else None."""
    allowed = TYPE_ONLY_COLUMNS.get(column)
    if allowed is not None and entity_type not in allowed:
        return None
    return value


def to_row(entity: Entity) -> EntityRow:
    """Flatten an entity into its storage row."""
    etype = entity.type
    fields = entity.type_specific_fields
    serialized_fields = None
    if fields is not None and not fields.is_empty():
        serialized_fields = fields.to_serialized()

    return EntityRow(
        id=entity.id,
        type=etype.value,
        name=entity.name,
        description=entity.description,
        secrets=entity.secrets,
        content=_for_type(etype, "content", entity.content),
        summary=_for_type(etype, "summary", entity.summary),
        notes=_for_type(etype, "notes", entity.notes),
        tags=compact_dumps(list(entity.tags)),
        world_id=entity.world_id,
        campaign_id=entity.campaign_id,
        forked_from=entity.forked_from,
        session_date=_for_type(etype, "session_date", to_iso(entity.session_date)),
        created_at=to_iso(entity.created_at),
        modified_at=to_iso(entity.modified_at),
        duration=_for_type(etype, "duration", entity.duration),
        type_specific_fields=serialized_fields,
        connections=compact_dumps([conn.model_dump(mode="json") for conn in entity.connections]),
    )


def _decode_tags(blob: str | None) -> list[str]:
    parsed = safe_loads(blob, default=[])
    if not isinstance(parsed, list):
        return []
    return [tag for tag in parsed if isinstance(tag, str)]


def _decode_connections(blob: str | None) -> list[Connection]:
    parsed = safe_loads(blob, default=[])
    if not isinstance(parsed, list):
        return []
    connections = []
    for item in parsed:
        try:
            connections.append(Connection.model_validate(item))
        except PydanticValidationError:
            logger.debug("Dropping malformed connection entry: %r", item)
    return connections


def to_entity(row: EntityRow) -> Entity:
    """Rebuild a domain entity from its storage row.

    Raises
    ------
    ValueError
        If the row's type is unknown or a required column is unusable.
    """
    etype = EntityType(row.type)
    return Entity(
        id=row.id,
        type=etype,
        name=row.name,
        world_id=row.world_id,
        campaign_id=row.campaign_id,
        description=row.description,
        secrets=row.secrets,
        content=row.content,
        summary=row.summary,
        notes=row.notes,
        tags=_decode_tags(row.tags),
        connections=_decode_connections(row.connections),
        forked_from=row.forked_from,
        session_date=from_iso(row.session_date),
        duration=row.duration,
        created_at=from_iso(row.created_at),
        modified_at=from_iso(row.modified_at),
        type_specific_fields=TypeSpecificFields.from_serialized(etype, row.type_specific_fields),
    )

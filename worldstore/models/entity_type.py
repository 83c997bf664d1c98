"""
worldstore/models/entity_type.py -- The closed set of entity types.

Each type owns a fixed, ordered whitelist of type-specific field names.
The whitelist is a plain lookup table keyed by ``EntityType``; there is one
generic ``TypeSpecificFields`` container rather than a class per type.
"""

from __future__ import annotations

from enum import Enum


class EntityType(str, Enum):
    """Entity types a world or campaign can contain."""

    CHARACTER = "character"
    LOCATION = "location"
    FACTION = "faction"
    NOTE = "note"
    SESSION = "session"

    def __str__(self) -> str:
        return self.value


TYPE_SPECIFIC_FIELD_NAMES: dict[EntityType, tuple[str, ...]] = {
    EntityType.CHARACTER: ("appearance", "personality", "motivation", "voiceMannerisms"),
    EntityType.LOCATION: ("appearance", "atmosphere", "notableFeatures"),
    EntityType.FACTION: ("ideology", "goals", "resources", "structure"),
    EntityType.NOTE: ("content",),
    EntityType.SESSION: ("prepNotes",),
}

# Columns of the entities table that only carry data for certain types.
# Any other type stores NULL in them.
TYPE_ONLY_COLUMNS: dict[str, frozenset[EntityType]] = {
    "content": frozenset({EntityType.NOTE}),
    "summary": frozenset({EntityType.SESSION}),
    "notes": frozenset({EntityType.SESSION}),
    "session_date": frozenset({EntityType.SESSION}),
    "duration": frozenset({EntityType.SESSION}),
}


def is_entity_type(value) -> bool:
    """Return True if *value* names one of the known entity types."""
    if isinstance(value, EntityType):
        return True
    return value in {t.value for t in EntityType}


def to_entity_type(value) -> EntityType | None:
    """Convert a string to an ``EntityType``, returning None if unknown."""
    if isinstance(value, EntityType):
        return value
    try:
        return EntityType(value)
    except ValueError:
        return None

"""
worldstore/models/ -- Domain models for the storage core.

Submodules:
    entity_type           EntityType enum and the per-type field whitelist.
    type_specific_fields  Immutable, schema-validated per-type free-text fields.
    entity                Entity / World / Campaign models and the flat EntityRow.
"""

from worldstore.models.entity import Campaign, Connection, Entity, EntityRow, World
from worldstore.models.entity_type import TYPE_SPECIFIC_FIELD_NAMES, EntityType
from worldstore.models.type_specific_fields import TypeSpecificFields

__all__ = [
    "Campaign",
    "Connection",
    "Entity",
    "EntityRow",
    "EntityType",
    "TYPE_SPECIFIC_FIELD_NAMES",
    "TypeSpecificFields",
    "World",
]

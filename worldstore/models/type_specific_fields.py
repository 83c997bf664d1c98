"""
worldstore/models/type_specific_fields.py -- Immutable per-type free-text fields.

``TypeSpecificFields`` holds the optional free-text fields that only make
sense for one entity type (a character's *personality*, a faction's
*ideology*, ...).  The set of legal names is looked up in
``TYPE_SPECIFIC_FIELD_NAMES``; any other name is rejected on ``set`` and
reported as absent on ``get``.

Instances never change.  ``set`` returns ``Ok(new_instance)`` or
``Fail(ValidationError)``; the original stays as it was.

Persisted blobs are decoded leniently: a missing, blank or malformed blob
becomes an empty instance, unknown keys and non-string values are dropped.

The discriminated form (``to_discriminated_form``) is a Pydantic model from
the ``TypeSpecificFieldsForm`` union, tagged by ``type``, for callers that
want to branch on the entity type with ``match``.

Usage::

    fields = TypeSpecificFields.create_empty(EntityType.CHARACTER)
    fields = fields.set("appearance", "Tall").unwrap()
    fields.to_serialized()        # '{"appearance":"Tall"}'
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Annotated, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from worldstore.errors import ValidationError
from worldstore.models.entity_type import TYPE_SPECIFIC_FIELD_NAMES, EntityType
from worldstore.result import Fail, Ok, Result
from worldstore.utils import compact_dumps, safe_loads

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Discriminated field shapes
# ------------------------------------------------------------------

class _FieldsForm(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)


class CharacterFields(_FieldsForm):
    type: Literal[EntityType.CHARACTER] = EntityType.CHARACTER
    appearance: Optional[str] = None
    personality: Optional[str] = None
    motivation: Optional[str] = None
    voice_mannerisms: Optional[str] = Field(default=None, alias="voiceMannerisms")


class LocationFields(_FieldsForm):
    type: Literal[EntityType.LOCATION] = EntityType.LOCATION
    appearance: Optional[str] = None
    atmosphere: Optional[str] = None
    notable_features: Optional[str] = Field(default=None, alias="notableFeatures")


class FactionFields(_FieldsForm):
    type: Literal[EntityType.FACTION] = EntityType.FACTION
    ideology: Optional[str] = None
    goals: Optional[str] = None
    resources: Optional[str] = None
    structure: Optional[str] = None


class NoteFields(_FieldsForm):
    type: Literal[EntityType.NOTE] = EntityType.NOTE
    content: Optional[str] = None


class SessionFields(_FieldsForm):
    type: Literal[EntityType.SESSION] = EntityType.SESSION
    prep_notes: Optional[str] = Field(default=None, alias="prepNotes")


TypeSpecificFieldsForm = Annotated[
    Union[CharacterFields, LocationFields, FactionFields, NoteFields, SessionFields],
    Field(discriminator="type"),
]

_FORM_ADAPTER: TypeAdapter = TypeAdapter(TypeSpecificFieldsForm)

_FORM_MODELS: dict[EntityType, type[_FieldsForm]] = {
    EntityType.CHARACTER: CharacterFields,
    EntityType.LOCATION: LocationFields,
    EntityType.FACTION: FactionFields,
    EntityType.NOTE: NoteFields,
    EntityType.SESSION: SessionFields,
}


# ------------------------------------------------------------------
# TypeSpecificFields
# ------------------------------------------------------------------

class TypeSpecificFields:
    """Immutable mapping of legal field names to string values for one type.

    Parameters
    ----------
    entity_type : EntityType or str
        The entity type whose whitelist applies.
    fields : Mapping[str, str], optional
        Initial values.  Every key must be legal for *entity_type* and
        every value must be a string; anything else raises ``ValueError``.
        Use :meth:`from_serialized` for untrusted data.
    """

    __slots__ = ("_entity_type", "_fields")

    def __init__(self, entity_type, fields: Mapping[str, str] | None = None):
        entity_type = EntityType(entity_type)
        legal = TYPE_SPECIFIC_FIELD_NAMES[entity_type]
        data = dict(fields or {})
        for name, value in data.items():
            if name not in legal:
                raise ValueError(f"'{name}' is not a valid field for {entity_type} entities")
            if not isinstance(value, str):
                raise ValueError(f"Field '{name}' must be a string, got {type(value).__name__}")
        self._entity_type = entity_type
        self._fields = MappingProxyType(data)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def create_empty(cls, entity_type) -> "TypeSpecificFields":
        """Return an instance with no fields set."""
        return cls(entity_type)

    @classmethod
    def from_serialized(cls, entity_type, blob: str | None) -> "TypeSpecificFields":
        """Decode a persisted JSON object, dropping anything not legal.

        ``None``, blank text, invalid JSON and JSON that is not an object
        all produce an empty instance.  Keys outside the whitelist and
        values that are not strings are silently discarded.
        """
        entity_type = EntityType(entity_type)
        parsed = safe_loads(blob)
        if not isinstance(parsed, dict):
            if parsed is not None:
                logger.debug(
                    "Type-specific fields for %s are not a JSON object; using empty fields",
                    entity_type,
                )
            return cls(entity_type)

        fields = {}
        for name in TYPE_SPECIFIC_FIELD_NAMES[entity_type]:
            value = parsed.get(name)
            if isinstance(value, str):
                fields[name] = value
        return cls(entity_type, fields)

    @classmethod
    def from_discriminated_form(cls, form) -> "TypeSpecificFields":
        """Build an instance from a discriminated model or an equivalent dict."""
        if not isinstance(form, _FieldsForm):
            form = _FORM_ADAPTER.validate_python(form)
        values = form.model_dump(by_alias=True, exclude_none=True, exclude={"type"})
        return cls(form.type, values)

    # ------------------------------------------------------------------
    # Schema introspection
    # ------------------------------------------------------------------

    @property
    def entity_type(self) -> EntityType:
        return self._entity_type

    def legal_field_names(self) -> tuple[str, ...]:
        return TYPE_SPECIFIC_FIELD_NAMES[self._entity_type]

    def is_legal_field(self, name: str) -> bool:
        return name in TYPE_SPECIFIC_FIELD_NAMES[self._entity_type]

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def get(self, name: str) -> str | None:
        """Return the stored value, or None if unset or not legal."""
        if not self.is_legal_field(name):
            return None
        return self._fields.get(name)

    def set(self, name: str, value: str | None) -> Result["TypeSpecificFields", ValidationError]:
        """Return a copy with *name* set to *value* (cleared when None).

        Returns ``Fail(ValidationError)`` if *name* is not legal for this
        type or *value* is not a string.
        """
        if not self.is_legal_field(name):
            return Fail(ValidationError.illegal_field(name, self._entity_type.value))
        if value is not None and not isinstance(value, str):
            return Fail(ValidationError(f"Field '{name}' must be a string", field=name))

        updated = dict(self._fields)
        if value is None:
            updated.pop(name, None)
        else:
            updated[name] = value
        return Ok(TypeSpecificFields(self._entity_type, updated))

    def set_many(self, values: Mapping[str, str | None]) -> Result["TypeSpecificFields", ValidationError]:
        """Apply several :meth:`set` calls, failing on the first illegal name."""
        result: Result[TypeSpecificFields, ValidationError] = Ok(self)
        for name, value in values.items():
            result = result.and_then(lambda fields, n=name, v=value: fields.set(n, v))
        return result

    def as_dict(self) -> dict[str, str]:
        """Return a plain-dict copy of the set fields."""
        return dict(self._fields)

    def is_empty(self) -> bool:
        """True when no field holds a non-empty string."""
        return all(value == "" for value in self._fields.values())

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_serialized(self) -> str:
        """Serialise the set fields as a compact JSON object (``"{}"`` if none)."""
        return compact_dumps(dict(self._fields))

    def to_discriminated_form(self):
        """Return the tagged Pydantic model for this instance's type."""
        model = _FORM_MODELS[self._entity_type]
        return model.model_validate({"type": self._entity_type, **self._fields})

    # ------------------------------------------------------------------
    # Dunder helpers
    # ------------------------------------------------------------------

    def __eq__(self, other) -> bool:
        if not isinstance(other, TypeSpecificFields):
            return NotImplemented
        return self._entity_type == other._entity_type and dict(self._fields) == dict(other._fields)

    def __hash__(self) -> int:
        return hash((self._entity_type, frozenset(self._fields.items())))

    def __repr__(self) -> str:
        return f"TypeSpecificFields({self._entity_type.value!r}, {dict(self._fields)!r})"

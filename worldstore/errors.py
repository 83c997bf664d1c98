"""
worldstore/errors.py -- Error taxonomy for the storage core.

These classes are *returned* inside ``Fail(...)`` rather than raised.  They
still derive from ``Exception`` so that ``Fail.unwrap()`` can raise them and
so that they carry a normal ``str()`` message and an optional ``cause``.

    ValidationError             illegal field name, type mismatch (caller bug)
    NotFoundError               missing id on read/update/delete
    StorageInitializationError  cannot open the file or migrate the schema
    StorageOperationError       I/O or constraint failure during a CRUD call

``StorageNotInitializedError`` is the one exception that *is* raised: using
the database before ``initialize()`` is a contract violation, not a runtime
condition.
"""

from __future__ import annotations


class WorldstoreError(Exception):
    """Base class for every error returned by the storage core."""

    code = "WORLDSTORE_ERROR"

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class ValidationError(WorldstoreError):
    """A value object or entity failed validation."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field

    @classmethod
    def illegal_field(cls, field: str, entity_type: str) -> "ValidationError":
        return cls(
            f"'{field}' is not a valid field for {entity_type} entities",
            field=field,
        )

    @classmethod
    def type_mismatch(cls, declared: str, actual: str) -> "ValidationError":
        return cls(
            f"Type-specific fields are for '{actual}' but the entity is "
            f"a '{declared}'",
            field="type_specific_fields",
        )

    @classmethod
    def type_changed(cls, stored: str, requested: str) -> "ValidationError":
        return cls(
            f"Entity is stored as a '{stored}' and cannot be updated as a '{requested}'",
            field="type",
        )


class NotFoundError(WorldstoreError):
    """The requested row does not exist."""

    code = "NOT_FOUND"

    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind} with id '{entity_id}' not found")
        self.kind = kind
        self.entity_id = entity_id


class StorageInitializationError(WorldstoreError):
    """Opening or migrating the database failed."""

    code = "STORAGE_INITIALIZATION_ERROR"


class StorageOperationError(WorldstoreError):
    """A read or write against an open database failed."""

    code = "STORAGE_OPERATION_ERROR"


class StorageNotInitializedError(RuntimeError):
    """Raised when the database handle is used before ``initialize()``."""

    def __init__(self, message: str = "Database not initialized. Call initialize() first."):
        super().__init__(message)

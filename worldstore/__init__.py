"""
Worldstore -- Storage core for worldbuilding and campaign notes.

Package layout:
    models/      Entity types, type-specific fields, entity and world models
    result       Ok / Fail result type returned by every storage call
    errors       Error taxonomy carried inside Fail
    config       Database location and open options
    schema       DDL for each schema version
    migrations   Versioned, all-or-nothing schema migration engine
    database     Connection owner (open, migrate, transactions, close)
    mapper       Entity <-> storage row translation
    search       Search query model and FTS5 query building
    ranking      Ordering and highlighting of search hits
    storage      EntityStore: entity CRUD and full-text search
    worlds       WorldStore: worlds and campaigns
"""

__version__ = "0.3.0"

"""
worldstore/schema.py -- DDL for every schema version.

Each constant is a single SQL statement.  Migrations execute them one at a
time with ``Connection.execute`` so they all run inside the migration
transaction; ``executescript`` would commit first and break atomicity.
"""

# ---------------------------------------------------------------------------
# Bookkeeping
# ---------------------------------------------------------------------------

CREATE_SCHEMA_VERSION_TABLE = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
)
"""

# ---------------------------------------------------------------------------
# Version 1: entities, full-text index, sync triggers
# ---------------------------------------------------------------------------

CREATE_ENTITIES_TABLE = """
CREATE TABLE IF NOT EXISTS entities (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL CHECK(type IN ('character', 'location', 'faction', 'note', 'session')),
    name TEXT NOT NULL,
    description TEXT,
    secrets TEXT,
    content TEXT,
    summary TEXT,
    notes TEXT,
    tags TEXT NOT NULL DEFAULT '[]',
    world_id TEXT NOT NULL,
    campaign_id TEXT,
    forked_from TEXT,
    session_date TEXT,
    created_at TEXT NOT NULL,
    modified_at TEXT NOT NULL,
    FOREIGN KEY (forked_from) REFERENCES entities(id) ON DELETE SET NULL
)
"""

CREATE_ENTITIES_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_entities_world ON entities(world_id)",
    "CREATE INDEX IF NOT EXISTS idx_entities_campaign ON entities(campaign_id)",
    "CREATE INDEX IF NOT EXISTS idx_entities_type ON entities(type)",
    "CREATE INDEX IF NOT EXISTS idx_entities_forked_from ON entities(forked_from)",
    "CREATE INDEX IF NOT EXISTS idx_entities_modified ON entities(modified_at DESC)",
)

# Column order matters: snippet() addresses columns by index.
FTS_COLUMNS = ("name", "description", "secrets", "content", "summary", "notes", "tags")

CREATE_FTS_TABLE = """
CREATE VIRTUAL TABLE IF NOT EXISTS entities_fts USING fts5(
    name,
    description,
    secrets,
    content,
    summary,
    notes,
    tags,
    content='entities',
    content_rowid='rowid',
    tokenize='porter unicode61'
)
"""

_FTS_COLS = ", ".join(FTS_COLUMNS)
_NEW_COLS = ", ".join(f"NEW.{c}" for c in FTS_COLUMNS)
_OLD_COLS = ", ".join(f"OLD.{c}" for c in FTS_COLUMNS)

CREATE_FTS_TRIGGERS = (
    f"""
    CREATE TRIGGER IF NOT EXISTS entities_ai AFTER INSERT ON entities BEGIN
        INSERT INTO entities_fts(rowid, {_FTS_COLS})
        VALUES (NEW.rowid, {_NEW_COLS});
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS entities_ad AFTER DELETE ON entities BEGIN
        INSERT INTO entities_fts(entities_fts, rowid, {_FTS_COLS})
        VALUES ('delete', OLD.rowid, {_OLD_COLS});
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS entities_au AFTER UPDATE ON entities BEGIN
        INSERT INTO entities_fts(entities_fts, rowid, {_FTS_COLS})
        VALUES ('delete', OLD.rowid, {_OLD_COLS});
        INSERT INTO entities_fts(rowid, {_FTS_COLS})
        VALUES (NEW.rowid, {_NEW_COLS});
    END
    """,
)

# ---------------------------------------------------------------------------
# Version 2: worlds and campaigns
# ---------------------------------------------------------------------------

CREATE_WORLDS_TABLE = """
CREATE TABLE IF NOT EXISTS worlds (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    tagline TEXT,
    created_at TEXT NOT NULL,
    modified_at TEXT NOT NULL
)
"""

CREATE_WORLDS_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_worlds_modified ON worlds(modified_at DESC)",
)

CREATE_CAMPAIGNS_TABLE = """
CREATE TABLE IF NOT EXISTS campaigns (
    id TEXT PRIMARY KEY,
    world_id TEXT NOT NULL REFERENCES worlds(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    description TEXT,
    created_at TEXT NOT NULL,
    modified_at TEXT NOT NULL
)
"""

CREATE_CAMPAIGNS_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_campaigns_world ON campaigns(world_id)",
    "CREATE INDEX IF NOT EXISTS idx_campaigns_modified ON campaigns(modified_at DESC)",
)

# ---------------------------------------------------------------------------
# Version 3: entity detail columns
# ---------------------------------------------------------------------------

ALTER_ENTITIES_ADD_DURATION = "ALTER TABLE entities ADD COLUMN duration INTEGER"

ALTER_ENTITIES_ADD_TYPE_SPECIFIC_FIELDS = (
    "ALTER TABLE entities ADD COLUMN type_specific_fields TEXT"
)

ALTER_ENTITIES_ADD_CONNECTIONS = (
    "ALTER TABLE entities ADD COLUMN connections TEXT NOT NULL DEFAULT '[]'"
)

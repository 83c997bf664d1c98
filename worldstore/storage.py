"""
worldstore/storage.py -- CRUD and full-text search over entities.

``EntityStore`` is the single entry point for reading and writing
characters, locations, factions, notes and sessions.  Every public method
returns a ``Result``: expected conditions (missing id, type mismatch,
SQLite failure) come back as ``Fail``; nothing is raised except
``StorageNotInitializedError`` when the database has not been opened.

The ``entities_fts`` index is maintained by triggers, so a search issued
right after a write already sees that write.

Usage::

    from worldstore.config import StorageConfig
    from worldstore.database import DatabaseManager
    from worldstore.storage import EntityStore

    db = DatabaseManager(StorageConfig.in_memory())
    db.initialize().unwrap()
    store = EntityStore(db)

    hero = store.create("character", "Aria Vell", world_id="w1").unwrap()
    hits = store.search_text("aria").unwrap()
"""

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from worldstore import ranking
from worldstore.database import DatabaseManager
from worldstore.errors import NotFoundError, StorageOperationError, ValidationError
from worldstore.mapper import to_entity, to_row
from worldstore.models.entity import Connection, Entity, EntityRow
from worldstore.models.entity_type import EntityType
from worldstore.result import Fail, Ok, Result
from worldstore.search import (
    HIGHLIGHT_CLOSE,
    HIGHLIGHT_OPEN,
    SearchMode,
    SearchQuery,
    SearchResponse,
    SearchResult,
    SearchResultRow,
    build_fts_query,
)
from worldstore.utils import compact_dumps, now_utc, safe_loads

logger = logging.getLogger(__name__)

# Sentinel for "any campaign"; ``None`` means world-level entities only.
ANY_CAMPAIGN: Any = object()

_COLUMNS = EntityRow.column_names()
_INSERT_SQL = (
    f"INSERT INTO entities ({', '.join(_COLUMNS)}) "
    f"VALUES ({', '.join(':' + c for c in _COLUMNS)})"
)
_UPDATABLE = tuple(c for c in _COLUMNS if c not in ("id", "type", "created_at"))
_UPDATE_SQL = (
    f"UPDATE entities SET {', '.join(f'{c} = :{c}' for c in _UPDATABLE)} "
    f"WHERE id = :id"
)

# snippet() column indexes in entities_fts; name is handled separately.
_SNIPPET_COLUMNS = (1, 3, 4, 5)
_SNIPPET_TOKENS = 32


def _snippet_sql(column: int) -> str:
    return (
        f"snippet(entities_fts, {column}, '{HIGHLIGHT_OPEN}', '{HIGHLIGHT_CLOSE}', "
        f"'...', {_SNIPPET_TOKENS})"
    )


_SEARCH_SELECT = ", ".join(
    ["entities.*", "bm25(entities_fts) AS rank", f"{_snippet_sql(0)} AS snippet_name"]
    + [f"{_snippet_sql(c)} AS snippet_{c}" for c in _SNIPPET_COLUMNS]
)


@dataclass
class EntityFilter:
    """Criteria for :meth:`EntityStore.list` and :meth:`EntityStore.count`.

    ``tags`` must all be present on an entity for it to match.
    ``campaign_id=None`` selects world-level entities only; leave it at
    ``ANY_CAMPAIGN`` to ignore the campaign.
    """

    world_id: Optional[str] = None
    campaign_id: Any = ANY_CAMPAIGN
    types: tuple[EntityType, ...] = ()
    tags: tuple[str, ...] = ()
    include_forked: bool = True

    def where(self) -> tuple[list[str], list[Any]]:
        """Return SQL clauses and parameters for this filter."""
        return _filter_clauses(
            world_id=self.world_id,
            campaign_id=self.campaign_id,
            types=self.types,
            tags=self.tags,
            include_forked=self.include_forked,
        )


@dataclass
class Page:
    items: list[Entity] = field(default_factory=list)
    total: int = 0
    offset: int = 0

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


def _filter_clauses(world_id=None, campaign_id=ANY_CAMPAIGN, types=(), tags=(),
                    include_forked=True) -> tuple[list[str], list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if world_id is not None:
        clauses.append("entities.world_id = ?")
        params.append(world_id)
    if campaign_id is None:
        clauses.append("entities.campaign_id IS NULL")
    elif campaign_id is not ANY_CAMPAIGN:
        clauses.append("entities.campaign_id = ?")
        params.append(campaign_id)
    if types:
        values = [EntityType(t).value for t in types]
        clauses.append(f"entities.type IN ({', '.join('?' for _ in values)})")
        params.extend(values)
    for tag in tags:
        # Tags are stored as a JSON array; match the encoded element exactly.
        clauses.append("instr(entities.tags, ?) > 0")
        params.append(compact_dumps(tag))
    if not include_forked:
        clauses.append("entities.forked_from IS NULL")
    return clauses, params


def _where_sql(clauses: Iterable[str]) -> str:
    clauses = list(clauses)
    return " AND ".join(clauses) if clauses else "1"


class EntityStore:
    """Entity CRUD and search on top of an initialized ``DatabaseManager``."""

    def __init__(self, database: DatabaseManager):
        self.database = database

    @staticmethod
    def _failed(action: str, exc: Exception) -> Fail[StorageOperationError]:
        logger.warning("Could not %s: %s", action, exc)
        return Fail(StorageOperationError(f"Could not {action}", exc))

    @staticmethod
    def _check_fields(entity: Entity) -> Optional[ValidationError]:
        fields = entity.type_specific_fields
        if fields is not None and fields.entity_type is not entity.type:
            return ValidationError.type_mismatch(entity.type.value, fields.entity_type.value)
        return None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, entity_type, name: str, *, world_id: str,
               **values: Any) -> Result[Entity, Exception]:
        """Build a new entity (fresh id, timestamps) and insert it."""
        try:
            entity = Entity.new(entity_type, name, world_id=world_id, **values)
        except ValueError as exc:
            return Fail(ValidationError(f"Invalid entity: {exc}"))
        return self.add(entity)

    def add(self, entity: Entity) -> Result[Entity, Exception]:
        """Insert a prebuilt entity.

        A duplicate id is reported as ``StorageOperationError``.
        """
        mismatch = self._check_fields(entity)
        if mismatch is not None:
            return Fail(mismatch)
        try:
            params = to_row(entity).as_params()
            with self.database.transaction() as conn:
                conn.execute(_INSERT_SQL, params)
        except sqlite3.Error as exc:
            return self._failed(f"insert entity '{entity.id}'", exc)
        logger.debug("Inserted %s %s", entity.type.value, entity.id)
        return Ok(entity)

    def update(self, entity: Entity) -> Result[Entity, Exception]:
        """Overwrite a stored entity and refresh its ``modified_at``.

        ``created_at`` is never changed by an update, and the type is
        fixed: an entity whose ``type`` differs from the stored row is
        rejected with ``ValidationError``.
        """
        mismatch = self._check_fields(entity)
        if mismatch is not None:
            return Fail(mismatch)
        updated = entity.model_copy(update={
            "modified_at": now_utc(),
            "tags": list(entity.tags),
            "connections": list(entity.connections),
        })
        try:
            params = to_row(updated).as_params()
            with self.database.transaction() as conn:
                row = conn.execute(
                    "SELECT type FROM entities WHERE id = ?", (entity.id,)
                ).fetchone()
                if row is None:
                    logger.debug("Update of missing entity %s", entity.id)
                    return Fail(NotFoundError("Entity", entity.id))
                if row["type"] != entity.type.value:
                    return Fail(ValidationError.type_changed(row["type"], entity.type.value))
                conn.execute(_UPDATE_SQL, params)
        except sqlite3.Error as exc:
            return self._failed(f"update entity '{entity.id}'", exc)
        return Ok(updated)

    def delete(self, entity_id: str) -> Result[None, Exception]:
        """Delete an entity and drop it from every other entity's connections.

        Entities forked from the deleted one keep existing with
        ``forked_from`` cleared.  Everything happens in one transaction.
        """
        try:
            with self.database.transaction() as conn:
                exists = conn.execute(
                    "SELECT 1 FROM entities WHERE id = ?", (entity_id,)
                ).fetchone()
                if exists is None:
                    return Fail(NotFoundError("Entity", entity_id))
                cleaned = self._strip_connections(conn, entity_id)
                conn.execute("DELETE FROM entities WHERE id = ?", (entity_id,))
        except sqlite3.Error as exc:
            return self._failed(f"delete entity '{entity_id}'", exc)
        logger.debug("Deleted entity %s (%d connection lists cleaned)", entity_id, cleaned)
        return Ok(None)

    @staticmethod
    def _strip_connections(conn: sqlite3.Connection, entity_id: str) -> int:
        """Remove *entity_id* from other entities' connection lists."""
        candidates = conn.execute(
            "SELECT id, connections FROM entities WHERE id != ? AND instr(connections, ?) > 0",
            (entity_id, entity_id),
        ).fetchall()
        cleaned = 0
        for row in candidates:
            entries = safe_loads(row["connections"], default=[])
            if not isinstance(entries, list):
                continue
            kept = [e for e in entries if not (isinstance(e, dict) and e.get("id") == entity_id)]
            if len(kept) == len(entries):
                continue
            conn.execute(
                "UPDATE entities SET connections = ? WHERE id = ?",
                (compact_dumps(kept), row["id"]),
            )
            cleaned += 1
        return cleaned

    def add_connection(self, entity_id: str, target: Entity) -> Result[Entity, Exception]:
        """Append a connection to *target* on the entity with *entity_id*."""
        found = self.get(entity_id)
        if isinstance(found, Fail):
            return found
        entity = found.value
        if entity is None:
            return Fail(NotFoundError("Entity", entity_id))
        if target.id in entity.connection_ids():
            return Ok(entity)
        connection = Connection(id=target.id, name=target.name, type=target.type)
        return self.update(entity.model_copy(
            update={"connections": [*entity.connections, connection]}
        ))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, entity_id: str) -> Result[Optional[Entity], Exception]:
        """Return the entity, or ``Ok(None)`` if there is none with that id."""
        try:
            with self.database.read() as conn:
                row = conn.execute(
                    "SELECT * FROM entities WHERE id = ?", (entity_id,)
                ).fetchone()
            if row is None:
                return Ok(None)
            return Ok(to_entity(EntityRow.from_sqlite(row)))
        except (sqlite3.Error, ValueError) as exc:
            return self._failed(f"load entity '{entity_id}'", exc)

    def exists(self, entity_id: str) -> Result[bool, Exception]:
        try:
            with self.database.read() as conn:
                row = conn.execute(
                    "SELECT 1 FROM entities WHERE id = ?", (entity_id,)
                ).fetchone()
        except sqlite3.Error as exc:
            return self._failed(f"check entity '{entity_id}'", exc)
        return Ok(row is not None)

    def count(self, filter: EntityFilter | None = None) -> Result[int, Exception]:
        clauses, params = (filter or EntityFilter()).where()
        try:
            with self.database.read() as conn:
                row = conn.execute(
                    f"SELECT COUNT(*) FROM entities WHERE {_where_sql(clauses)}", params
                ).fetchone()
        except sqlite3.Error as exc:
            return self._failed("count entities", exc)
        return Ok(row[0])

    def list(self, filter: EntityFilter | None = None, limit: int = 100,
             offset: int = 0) -> Result[Page, Exception]:
        """Return one page of entities, most recently modified first."""
        clauses, params = (filter or EntityFilter()).where()
        where = _where_sql(clauses)
        limit = min(max(1, int(limit)), 1000)
        offset = max(0, int(offset))
        try:
            with self.database.read() as conn:
                total = conn.execute(
                    f"SELECT COUNT(*) FROM entities WHERE {where}", params
                ).fetchone()[0]
                rows = conn.execute(
                    f"SELECT * FROM entities WHERE {where} "
                    f"ORDER BY modified_at DESC, id LIMIT ? OFFSET ?",
                    [*params, limit, offset],
                ).fetchall()
            items = [to_entity(EntityRow.from_sqlite(r)) for r in rows]
        except (sqlite3.Error, ValueError) as exc:
            return self._failed("list entities", exc)
        return Ok(Page(items=items, total=total, offset=offset))

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search_text(self, text: str, entity_type=None, tags=None,
                    **options: Any) -> Result[SearchResponse, Exception]:
        """Shorthand for :meth:`search` with a natural-language query."""
        query = SearchQuery(
            text=text,
            types=() if entity_type is None else entity_type,
            tags=tags,
            **options,
        )
        return self.search(query)

    def search(self, query: SearchQuery) -> Result[SearchResponse, Exception]:
        """Run a full-text search, best match first.

        A query with no searchable words returns an empty response, except
        in filter mode where ``type:`` / ``tag:`` filters alone list the
        matching entities unranked.
        """
        started = time.perf_counter()
        filter_only = query.mode is SearchMode.FILTER
        query = query.resolved()
        match = build_fts_query(query.text, query.mode)
        filters = _filter_clauses(
            world_id=query.world_id,
            campaign_id=ANY_CAMPAIGN if query.campaign_id is None else query.campaign_id,
            types=query.types,
            tags=query.tags,
        )

        if match is None:
            if filter_only and (query.types or query.tags):
                return self._list_as_search(query, filters, started)
            return Ok(SearchResponse(results=[], total=0, offset=query.offset))

        clauses, params = filters
        where = _where_sql(["entities_fts MATCH ?", *clauses])
        params = [match, *params]
        try:
            with self.database.read() as conn:
                total = conn.execute(
                    f"SELECT COUNT(*) FROM entities_fts "
                    f"JOIN entities ON entities.rowid = entities_fts.rowid WHERE {where}",
                    params,
                ).fetchone()[0]
                rows = conn.execute(
                    f"SELECT {_SEARCH_SELECT} FROM entities_fts "
                    f"JOIN entities ON entities.rowid = entities_fts.rowid WHERE {where} "
                    f"ORDER BY rank, entities.modified_at DESC, entities.id "
                    f"LIMIT ? OFFSET ?",
                    [*params, query.limit, query.offset],
                ).fetchall()
            hits = []
            entities = {}
            for row in rows:
                hits.append(SearchResultRow(
                    id=row["id"],
                    rank=row["rank"],
                    modified_at=row["modified_at"],
                    snippet_name=row["snippet_name"],
                    snippet_content=self._best_snippet(row),
                ))
                entities[row["id"]] = to_entity(EntityRow.from_sqlite(row))
        except (sqlite3.Error, ValueError) as exc:
            return self._failed(f"search for {query.text!r}", exc)

        return Ok(SearchResponse(
            results=ranking.to_results(hits, entities),
            total=total,
            offset=query.offset,
            query_time_ms=(time.perf_counter() - started) * 1000,
        ))

    @staticmethod
    def _best_snippet(row: sqlite3.Row) -> Optional[str]:
        for column in _SNIPPET_COLUMNS:
            snippet = row[f"snippet_{column}"]
            if snippet and HIGHLIGHT_OPEN in snippet:
                return snippet
        return None

    def _list_as_search(self, query: SearchQuery, filters, started: float):
        clauses, params = filters
        where = _where_sql(clauses)
        try:
            with self.database.read() as conn:
                total = conn.execute(
                    f"SELECT COUNT(*) FROM entities WHERE {where}", params
                ).fetchone()[0]
                rows = conn.execute(
                    f"SELECT * FROM entities WHERE {where} "
                    f"ORDER BY modified_at DESC, id LIMIT ? OFFSET ?",
                    [*params, query.limit, query.offset],
                ).fetchall()
            results = [SearchResult(entity=to_entity(EntityRow.from_sqlite(r)), rank=0.0)
                       for r in rows]
        except (sqlite3.Error, ValueError) as exc:
            return self._failed("list entities for search", exc)
        return Ok(SearchResponse(
            results=results,
            total=total,
            offset=query.offset,
            query_time_ms=(time.perf_counter() - started) * 1000,
        ))

    def rebuild_search_index(self) -> Result[None, Exception]:
        """Rebuild ``entities_fts`` from the ``entities`` table."""
        try:
            with self.database.transaction() as conn:
                conn.execute("INSERT INTO entities_fts(entities_fts) VALUES ('rebuild')")
        except sqlite3.Error as exc:
            return self._failed("rebuild the search index", exc)
        logger.info("Rebuilt full-text search index")
        return Ok(None)

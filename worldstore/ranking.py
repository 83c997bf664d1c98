"""
worldstore/ranking.py -- Ordering and highlighting of full-text hits.

Turns the raw ``SearchResultRow`` list read from the FTS index into ordered
``SearchResult`` objects.  Order is best bm25 rank first; equal ranks are
resolved by ``modified_at`` descending (most recently touched first), then
by id, so identical queries always return identical orderings.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, Mapping

from worldstore.models.entity import Entity
from worldstore.search import HIGHLIGHT_OPEN, SearchHighlight, SearchResult, SearchResultRow
from worldstore.utils import from_iso

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def order_rows(rows: Iterable[SearchResultRow]) -> list[SearchResultRow]:
    """Sort hits best-first with a deterministic tie-break."""
    ordered = sorted(rows, key=lambda r: r.id)
    ordered.sort(key=lambda r: from_iso(r.modified_at) or _EPOCH, reverse=True)
    ordered.sort(key=lambda r: r.rank)
    return ordered


def extract_highlights(row: SearchResultRow) -> list[SearchHighlight]:
    """Return the snippets of *row* that actually contain a highlight."""
    highlights = []
    if row.snippet_name and HIGHLIGHT_OPEN in row.snippet_name:
        highlights.append(SearchHighlight(field="name", snippet=row.snippet_name))
    if row.snippet_content and HIGHLIGHT_OPEN in row.snippet_content:
        highlights.append(SearchHighlight(field="content", snippet=row.snippet_content))
    return highlights


def to_results(rows: Iterable[SearchResultRow],
               entities: Mapping[str, Entity]) -> list[SearchResult]:
    """Build ordered ``SearchResult`` objects from hits and their entities.

    Hits whose entity is missing from *entities* are skipped.
    """
    results = []
    for row in order_rows(rows):
        entity = entities.get(row.id)
        if entity is None:
            logger.debug("Search hit %s has no matching entity; skipping", row.id)
            continue
        results.append(SearchResult(entity=entity, rank=row.rank,
                                    highlights=extract_highlights(row)))
    return results

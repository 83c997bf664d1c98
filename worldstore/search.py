"""
worldstore/search.py -- Search query model and FTS5 query building.

A ``SearchQuery`` carries the raw text, how to interpret it
(``SearchMode``), and optional type / tag / world / campaign filters.
``build_fts_query`` turns it into an FTS5 ``MATCH`` expression; user words
are always double-quoted so punctuation in the input cannot break the
FTS5 syntax (boolean mode keeps AND / OR / NOT as operators).

Modes:
    natural    every word is a prefix term, any word may match (OR)
    all_terms  every word must match (implicit AND)
    boolean    ``&&``, ``||`` and ``!`` become AND, OR and NOT
    filter     ``type:<t>`` and ``tag:<t>`` words become filters; the rest
               is searched as in natural mode
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from worldstore.models.entity import Entity
from worldstore.models.entity_type import EntityType, to_entity_type

HIGHLIGHT_OPEN = "<mark>"
HIGHLIGHT_CLOSE = "</mark>"

_FILTER_TOKEN = re.compile(r"\b(type|tag):(\S+)")
_BOOLEAN_OPERATORS = {"AND", "OR", "NOT"}


class SearchMode(str, Enum):
    NATURAL = "natural"
    ALL_TERMS = "all_terms"
    BOOLEAN = "boolean"
    FILTER = "filter"


class SearchQuery(BaseModel):
    """A full-text search request."""

    model_config = ConfigDict(frozen=True)

    text: str
    mode: SearchMode = SearchMode.NATURAL
    types: tuple[EntityType, ...] = ()
    tags: tuple[str, ...] = ()
    world_id: Optional[str] = None
    campaign_id: Optional[str] = None
    limit: int = Field(default=50, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)

    @field_validator("types", mode="before")
    @classmethod
    def _coerce_types(cls, value):
        if value is None:
            return ()
        if isinstance(value, (str, EntityType)):
            return (value,)
        return tuple(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value):
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        return tuple(value)

    def resolved(self) -> "SearchQuery":
        """Return a copy with ``type:`` / ``tag:`` words moved into filters.

        Only applies in filter mode; other modes are returned unchanged.
        Unknown ``type:`` values are ignored.
        """
        if self.mode is not SearchMode.FILTER:
            return self
        types = list(self.types)
        tags = list(self.tags)
        for kind, value in _FILTER_TOKEN.findall(self.text):
            if kind == "type":
                entity_type = to_entity_type(value.lower())
                if entity_type is not None and entity_type not in types:
                    types.append(entity_type)
            elif value not in tags:
                tags.append(value)
        remaining = _FILTER_TOKEN.sub(" ", self.text)
        return self.model_copy(update={
            "text": " ".join(remaining.split()),
            "types": tuple(types),
            "tags": tuple(tags),
            "mode": SearchMode.NATURAL,
        })


def _quote(word: str) -> str | None:
    clean = word.replace('"', "")
    if not clean:
        return None
    return f'"{clean}"'


def build_fts_query(text: str, mode: SearchMode = SearchMode.NATURAL) -> str | None:
    """Convert user text into an FTS5 MATCH expression.

    Returns None when there is nothing to search for.
    """
    if mode is SearchMode.FILTER:
        text = _FILTER_TOKEN.sub(" ", text)
        mode = SearchMode.NATURAL

    if mode is SearchMode.BOOLEAN:
        text = text.replace("&&", " AND ").replace("||", " OR ").replace("!", " NOT ")
        parts = []
        for word in text.split():
            if word.upper() in _BOOLEAN_OPERATORS:
                # FTS5 NOT is binary, so "a AND NOT b" must become "a NOT b".
                if parts and parts[-1] in _BOOLEAN_OPERATORS:
                    parts[-1] = word.upper()
                else:
                    parts.append(word.upper())
                continue
            # Parentheses group terms; keep them outside the quotes.
            lead = len(word) - len(word.lstrip("("))
            trail = len(word) - len(word.rstrip(")"))
            core = word[lead:len(word) - trail]
            quoted = _quote(core)
            if quoted is None:
                continue
            parts.append("(" * lead + quoted + ")" * trail)
        while parts and parts[0] in _BOOLEAN_OPERATORS:
            parts.pop(0)
        while parts and parts[-1] in _BOOLEAN_OPERATORS:
            parts.pop()
        return " ".join(parts) or None

    quoted = [q for q in (_quote(word) for word in text.split()) if q]
    if not quoted:
        return None
    if mode is SearchMode.ALL_TERMS:
        return " ".join(quoted)
    return " OR ".join(f"{q}*" for q in quoted)


# ------------------------------------------------------------------
# Result shapes
# ------------------------------------------------------------------

@dataclass
class SearchResultRow:
    """One ranked hit as read from the FTS index.

    ``rank`` is the bm25 score: lower (more negative) is a better match.
    """

    id: str
    rank: float
    modified_at: str
    snippet_name: str | None = None
    snippet_content: str | None = None


@dataclass(frozen=True)
class SearchHighlight:
    field: str
    snippet: str


@dataclass
class SearchResult:
    entity: Entity
    rank: float
    highlights: list[SearchHighlight] = field(default_factory=list)

    @property
    def score(self) -> float:
        """Relevance as a positive number (higher is better)."""
        return -self.rank


@dataclass
class SearchResponse:
    results: list[SearchResult]
    total: int
    offset: int = 0
    query_time_ms: float = 0.0

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.results) < self.total

    @property
    def ids(self) -> list[str]:
        return [r.entity.id for r in self.results]

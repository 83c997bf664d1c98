"""
Shared helpers for the worldstore package.

Lenient JSON decoding for persisted blobs, entity id generation, and
ISO 8601 timestamps.
"""

import json
import logging
import re
import secrets
import unicodedata
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------

def safe_loads(text, default=None):
    """Parse a JSON string, returning *default* if it is missing or corrupt.

    Parameters
    ----------
    text : str or None
        The persisted JSON text.
    default
        Value returned when *text* is ``None``, blank, or not valid JSON
        (default ``None``).

    Returns
    -------
    object
        Parsed JSON content, or *default* on failure.
    """
    if text is None or not isinstance(text, str) or not text.strip():
        return default
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        logger.debug("Ignoring malformed JSON blob: %.60r", text)
        return default


def compact_dumps(data) -> str:
    """Serialise *data* as compact JSON without escaping non-ASCII text."""
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


# ---------------------------------------------------------------------------
# Identifiers and timestamps
# ---------------------------------------------------------------------------

def slugify(text: str) -> str:
    """Convert a human-readable name to a URL-friendly slug.

    Examples:
        "Grimnak the Bold"   -> "grimnak-the-bold"
        "The Rusty Anchor"   -> "the-rusty-anchor"
        "Elara's Grove"      -> "elaras-grove"
    """
    text = unicodedata.normalize("NFKD", text)
    text = text.encode("ascii", "ignore").decode("ascii")
    text = text.lower().replace("'", "")
    text = re.sub(r"[^a-z0-9]+", "-", text)
    return re.sub(r"-+", "-", text).strip("-")


def generate_id(name: str) -> str:
    """Generate an entity id in the format ``slugified-name-xxxxxxxx``.

    The 8-character hex suffix keeps ids unique when two entities share
    a name.
    """
    slug = slugify(name)[:48].rstrip("-") or "entity"
    return f"{slug}-{secrets.token_hex(4)}"


def now_utc() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    """Format a datetime as fixed-width ISO 8601 in UTC.

    Naive values are taken to be UTC already.  Aware values are converted,
    so stored text sorts in time order.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    """Parse an ISO 8601 string written by :func:`to_iso`."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

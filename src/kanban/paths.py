"""On-disk naming scheme for cards. Pure functions, no I/O.

    <base>/<column>/<ID>__<slug>.md
    <base>/done/<YYYY>/<MM>/<ID>__<slug>.md
"""

from __future__ import annotations

import re
import unicodedata
from datetime import UTC, datetime
from pathlib import Path

from kanban.models import normalize_id

SEPARATOR = "__"
EXTENSION = ".md"
DONE_COLUMN = "done"
EMPTY_SLUG = "card"

# Directories under .kanban/ that are not columns.
RESERVED_DIRS = frozenset({"generated", "notes", "templates"})

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def slugify(title: str) -> str:
    """Lowercase ASCII slug; punctuation dropped, word breaks become '-'."""
    folded = unicodedata.normalize("NFKD", title).encode("ascii", "ignore").decode("ascii")
    folded = folded.lower().replace("'", "")
    slug = _NON_ALNUM_RE.sub("-", folded).strip("-")
    return slug or EMPTY_SLUG


def filename_for(card_id: str, title: str) -> str:
    return f"{normalize_id(card_id)}{SEPARATOR}{slugify(title)}{EXTENSION}"


def card_id_from_name(name: str) -> str | None:
    """Id prefix of a card filename, or None if the name is not a card file."""
    if not name.lower().endswith(EXTENSION) or SEPARATOR not in name:
        return None
    prefix = name.split(SEPARATOR, 1)[0]
    return normalize_id(prefix) if prefix else None


def column_from_path(base: Path, path: Path) -> str | None:
    """Column = the path segment directly under the board base directory."""
    try:
        rel = path.relative_to(base)
    except ValueError:
        return None
    if len(rel.parts) < 2:
        return None
    return rel.parts[0]


def is_column_name(name: str) -> bool:
    return bool(name) and name not in RESERVED_DIRS and not name.startswith(".") and "/" not in name


def done_dir(base: Path, completed_at: str) -> Path:
    """Archive directory for a completion timestamp: done/<YYYY>/<MM>."""
    try:
        ts = datetime.fromisoformat(completed_at)
    except ValueError:
        ts = datetime.now(UTC)
    return base / DONE_COLUMN / f"{ts.year:04d}" / f"{ts.month:02d}"

"""Derived NDJSON indexes over the card tree.

The card files are the source of truth; both indexes are reconstructable at
any time with rebuild_card_index / rebuild_relation_index.

    cards.ndjson      {"id", "title", "column", "lane", "priority", "labels", "assignees", "completed_at"}
    relations.ndjson  {"type": "parent"|"depends"|"relates", "from": ID, "to": ID}

Every rewrite goes to a temp file in the same directory and is renamed over the
index, so readers never see a partially written file. Read-modify-write cycles
hold flock(LOCK_EX) on .kanban/.index.lock so two writers on the same host do
not drop each other's upserts.
"""

from __future__ import annotations

import contextlib
import fcntl
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from kanban.codec import decode
from kanban.errors import ConflictError, KanbanError
from kanban.models import Card, normalize_id
from kanban.paths import RESERVED_DIRS, card_id_from_name, column_from_path

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

logger = logging.getLogger("kanban.index")

CARD_INDEX = "cards.ndjson"
RELATION_INDEX = "relations.ndjson"
_LOCK_NAME = ".index.lock"

FALLBACK_WARNING = "relations: incremental update failed; ran full reindex"

Triple = tuple[str, str, str]


@dataclass
class ScannedCard:
    path: Path
    card: Card
    column: str


# ---------------------------------------------------------------------------
# Tree scan
# ---------------------------------------------------------------------------

def iter_card_files(base: Path) -> Iterator[Path]:
    """All card files under base, skipping reserved directories (generated/, notes/, ...)."""
    if not base.exists():
        return
    for dirpath, dirnames, filenames in os.walk(base):
        if dirpath == str(base):
            # Cards live in column directories, never directly under base.
            dirnames[:] = sorted(d for d in dirnames if d not in RESERVED_DIRS and not d.startswith("."))
            continue
        dirnames.sort()
        for name in sorted(filenames):
            if card_id_from_name(name) is not None:
                yield Path(dirpath) / name


def read_card_file(path: Path) -> Card:
    return decode(path.read_text(encoding="utf-8"))


def scan_cards(base: Path) -> list[ScannedCard]:
    """Load every parseable card. Unreadable or malformed files are skipped."""
    out: list[ScannedCard] = []
    for path in iter_card_files(base):
        try:
            card = read_card_file(path)
        except (OSError, UnicodeDecodeError, KanbanError) as exc:
            logger.debug("skipping unreadable card %s: %s", path, exc)
            continue
        column = column_from_path(base, path) or ""
        out.append(ScannedCard(path=path, card=card, column=column))
    return out


# ---------------------------------------------------------------------------
# File primitives
# ---------------------------------------------------------------------------

def atomic_write(path: Path, text: str) -> None:
    """Write text to path via temp file + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False,
    ) as tmp:
        tmp.write(text)
    try:
        os.replace(tmp.name, path)
    except OSError:
        with contextlib.suppress(OSError):
            os.unlink(tmp.name)
        raise


@contextlib.contextmanager
def index_lock(base: Path) -> Iterator[None]:
    base.mkdir(parents=True, exist_ok=True)
    with (base / _LOCK_NAME).open("a") as f:
        fcntl.flock(f, fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(f, fcntl.LOCK_UN)


def _read_lines(path: Path) -> list[dict[str, Any]]:
    """Parsed JSON objects from an NDJSON file; blank and broken lines are dropped."""
    if not path.exists():
        return []
    out: list[dict[str, Any]] = []
    with path.open(encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(obj, dict):
                out.append(obj)
    return out


def _dump_lines(objs: Iterable[dict[str, Any]]) -> str:
    return "".join(json.dumps(o, ensure_ascii=False) + "\n" for o in objs)


# ---------------------------------------------------------------------------
# Card index
# ---------------------------------------------------------------------------

def read_card_index(base: Path) -> list[dict[str, Any]]:
    return _read_lines(base / CARD_INDEX)


def upsert_card_index(base: Path, card: Card, column: str) -> None:
    """Replace the entry for card.id (case-insensitive) with a fresh projection."""
    key = card.key
    with index_lock(base):
        kept = [
            e for e in read_card_index(base)
            if normalize_id(str(e.get("id", ""))) != key
        ]
        kept.append(card.index_entry(column))
        atomic_write(base / CARD_INDEX, _dump_lines(kept))


def rebuild_card_index(base: Path) -> int:
    """Full rebuild of cards.ndjson from the tree. Returns the number of entries."""
    entries: dict[str, dict[str, Any]] = {}
    for sc in scan_cards(base):
        if sc.card.id:
            entries[sc.card.key] = sc.card.index_entry(sc.column)
    with index_lock(base):
        atomic_write(base / CARD_INDEX, _dump_lines(entries.values()))
    return len(entries)


# ---------------------------------------------------------------------------
# Relation index
# ---------------------------------------------------------------------------

def _triple(obj: dict[str, Any]) -> Triple:
    return (
        str(obj.get("type", "")),
        str(obj.get("from", "")),
        str(obj.get("to", "")),
    )


def _triple_key(t: Triple) -> Triple:
    return (t[0].lower(), t[1].upper(), t[2].upper())


def read_relation_index(base: Path) -> list[Triple]:
    return [_triple(o) for o in _read_lines(base / RELATION_INDEX)]


def _dump_triples(triples: Iterable[Triple]) -> str:
    seen: set[Triple] = set()
    objs = []
    for t in triples:
        k = _triple_key(t)
        if k in seen:
            continue
        seen.add(k)
        objs.append({"type": t[0], "from": t[1], "to": t[2]})
    return _dump_lines(objs)


def check_single_parent(triples: Iterable[Triple]) -> None:
    """Raise ConflictError if any child has two different parent targets."""
    parent_for: dict[str, str] = {}
    for typ, frm, to in triples:
        if typ.lower() != "parent":
            continue
        child, parent = frm.upper(), to.upper()
        prev = parent_for.setdefault(child, parent)
        if prev != parent:
            msg = f"conflict: multiple parent edges for child {child} ({prev} vs {parent})"
            raise ConflictError(msg)


def rebuild_relation_index(base: Path) -> int:
    """Full rebuild of relations.ndjson from card front matter. Returns the number of edges."""
    triples: list[Triple] = []
    for sc in scan_cards(base):
        if sc.card.id:
            triples.extend(sc.card.edges())
    text = _dump_triples(triples)
    with index_lock(base):
        atomic_write(base / RELATION_INDEX, text)
    return text.count("\n")


def _matches(t: Triple, pattern: Triple) -> bool:
    return (
        t[0].lower() == pattern[0].lower()
        and t[1].upper() == pattern[1].upper()
        and (pattern[2] == "*" or t[2].upper() == pattern[2].upper())
    )


def _apply_incremental(base: Path, remove: list[Triple], add: list[Triple]) -> None:
    with index_lock(base):
        existing = read_relation_index(base)
        add_keys = {_triple_key(a) for a in add}
        post = [
            t for t in existing
            if not any(_matches(t, r) for r in remove) and _triple_key(t) not in add_keys
        ]
        post.extend(add)
        check_single_parent(post)
        atomic_write(base / RELATION_INDEX, _dump_triples(post))


def update_relation_index(base: Path, remove: list[Triple], add: list[Triple]) -> list[str]:
    """Apply edge removals/additions incrementally.

    If the incremental path fails (e.g. a child would end up with two parents),
    fall back to a full rebuild from the card files and return a warning instead
    of failing the caller.
    """
    try:
        _apply_incremental(base, remove, add)
    except (KanbanError, OSError, ValueError) as exc:
        logger.warning("incremental relation update failed (%s); rebuilding", exc)
        rebuild_relation_index(base)
        return [FALLBACK_WARNING]
    return []


def reindex(base: Path) -> dict[str, int]:
    """Rebuild both indexes."""
    base.mkdir(parents=True, exist_ok=True)
    return {
        "cards": rebuild_card_index(base),
        "relations": rebuild_relation_index(base),
    }

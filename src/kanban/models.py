"""Data models for the file-based card store."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from typing import Any

# Crockford base32, as used by ULIDs.
_ULID_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ID_LENGTH = 26

RELATION_TYPES = ("parent", "depends", "relates")


def new_card_id() -> str:
    """Generate a ULID: 48-bit millisecond timestamp + 80 random bits, 26 chars uppercase."""
    value = (int(time.time() * 1000) << 80) | int.from_bytes(os.urandom(10), "big")
    chars = []
    for _ in range(ID_LENGTH):
        chars.append(_ULID_ALPHABET[value & 0x1F])
        value >>= 5
    return "".join(reversed(chars))


def normalize_id(card_id: str) -> str:
    """Canonical form used for comparison and storage keys."""
    return card_id.strip().upper()


def utc_now() -> str:
    return datetime.now(UTC).isoformat()


# Front-matter keys in the order they are written to disk.
FRONT_MATTER_KEYS = (
    "id",
    "title",
    "description",
    "lane",
    "priority",
    "size",
    "labels",
    "assignees",
    "parent",
    "depends_on",
    "relates",
    "created_at",
    "completed_at",
    "resume_hint",
    "next_steps",
    "blockers",
)

_LIST_KEYS = frozenset({"labels", "assignees", "depends_on", "relates", "next_steps", "blockers"})


@dataclass
class Card:
    """A card: front matter (authoritative state) plus an opaque Markdown body.

    Column membership is not stored here; it is derived from where the file
    lives on disk.
    """

    id: str = ""
    title: str = ""
    description: str | None = None
    lane: str | None = None
    priority: str | None = None
    size: int | None = None
    labels: list[str] | None = None
    assignees: list[str] | None = None
    parent: str | None = None
    depends_on: list[str] | None = None
    relates: list[str] | None = None
    created_at: str | None = None
    completed_at: str | None = None
    resume_hint: str | None = None           # one-line "where was I" for quick resume
    next_steps: list[str] | None = None
    blockers: list[str] | None = None
    body: str = ""

    @classmethod
    def new(cls, title: str, **kwargs: Any) -> Card:
        return cls(id=new_card_id(), title=title, created_at=utc_now(), **kwargs)

    @property
    def is_done(self) -> bool:
        # Setting completed_at is the one field change that is also a lifecycle transition.
        return self.completed_at is not None

    @property
    def key(self) -> str:
        return normalize_id(self.id)

    def front_matter(self) -> dict[str, Any]:
        """Front-matter mapping with unset fields omitted, in on-disk key order."""
        d: dict[str, Any] = {}
        for k in FRONT_MATTER_KEYS:
            v = getattr(self, k)
            if v is None:
                continue
            d[k] = list(v) if k in _LIST_KEYS else v
        return d

    @classmethod
    def from_front_matter(cls, fm: dict[str, Any], body: str = "") -> Card:
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for k, v in fm.items():
            if k not in known or k == "body" or v is None:
                continue
            if k in _LIST_KEYS:
                items = v if isinstance(v, list) else [v]
                kwargs[k] = [_as_str(x) for x in items if x is not None]
            elif k == "size":
                try:
                    kwargs[k] = int(v)
                except (TypeError, ValueError):
                    continue
            else:
                kwargs[k] = _as_str(v)
        kwargs.setdefault("id", "")
        kwargs.setdefault("title", "")
        return cls(body=body, **kwargs)

    def index_entry(self, column: str) -> dict[str, Any]:
        """Denormalized projection stored in cards.ndjson."""
        return {
            "id": self.id,
            "title": self.title,
            "column": column,
            "lane": self.lane,
            "priority": self.priority,
            "labels": self.labels,
            "assignees": self.assignees,
            "completed_at": self.completed_at,
        }

    def edges(self) -> list[tuple[str, str, str]]:
        """Relation edges declared in this card's front matter as (type, from, to)."""
        src = self.key
        out: list[tuple[str, str, str]] = []
        if self.parent:
            out.append(("parent", src, normalize_id(self.parent)))
        for d in self.depends_on or []:
            out.append(("depends", src, normalize_id(d)))
        for r in self.relates or []:
            out.append(("relates", src, normalize_id(r)))
        return out


def _as_str(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


@dataclass
class NoteEntry:
    """One immutable journal line in notes/<ID>.ndjson."""

    ts: str
    type: str
    text: str
    tags: list[str] | None = None
    author: str | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> NoteEntry:
        return cls(
            ts=str(d["ts"]),
            type=str(d.get("type", "worklog")),
            text=str(d.get("text", "")),
            tags=d.get("tags"),
            author=d.get("author"),
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"ts": self.ts, "type": self.type, "text": self.text}
        if self.tags is not None:
            d["tags"] = self.tags
        if self.author is not None:
            d["author"] = self.author
        return d


@dataclass
class Edge:
    """A typed relation between two cards. `to_id` may be "*" in removals (any target)."""

    type: str
    from_id: str
    to_id: str = "*"

    def triple(self) -> tuple[str, str, str]:
        return (self.type.lower(), normalize_id(self.from_id), normalize_id(self.to_id))


@dataclass
class ListFilter:
    columns: list[str] | None = None
    lane: str | None = None
    priority: str | None = None
    label: str | None = None
    assignee: str | None = None
    query: str | None = None
    include_done: bool = False
    offset: int = 0
    limit: int = 200


@dataclass
class ListPage:
    items: list[dict[str, Any]] = field(default_factory=list)
    next_offset: int | None = None
